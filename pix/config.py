"""Project manifest (.pix.yaml) parsing, validation and pipeline source fetch."""

from __future__ import annotations

import os
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor

import yaml

from pix import report
from pix.models import PipelineConfig, PipelineSource, ProjectConfig
from pix.project import DefinitionError, load_definition


DEFAULT_MANIFEST = ".pix.yaml"
CHECKOUT_DIR = os.path.join(".pipeline", "checkout")

_SOURCE_KEYS = {"path", "git", "ref", "sub_dir"}
_PIPELINE_KEYS = {"from", "default_args", "default_targets"}


class ConfigError(Exception):
    pass


class UnknownPipeline(ConfigError):
    def __init__(self, alias: str, known: list[str]):
        super().__init__(
            f"Unknown pipeline '{alias}'. Available pipelines: {', '.join(known) or '(none)'}"
        )
        self.alias = alias
        self.known = known


def pipeline_checkout_dir(repo: str, ref: str) -> str:
    """Local checkout directory of a remote git pipeline at a given ref."""
    repo_path = repo.split("://", 1)[-1].replace(":", "/")
    return os.path.join(CHECKOUT_DIR, repo_path, ref)


def parse_source(alias: str, raw) -> PipelineSource:
    if not isinstance(raw, dict):
        raise ConfigError(f"Pipeline '{alias}': 'from' must be a mapping")
    if ("path" in raw) == ("git" in raw):
        raise ConfigError(f"Pipeline '{alias}': 'from' requires exactly one of 'path' or 'git'")

    unknown = set(raw.keys()) - _SOURCE_KEYS
    if unknown:
        raise ConfigError(
            f"Pipeline '{alias}': unknown 'from' key(s): {', '.join(sorted(unknown))}"
        )
    if "git" in raw:
        return PipelineSource(
            git=str(raw["git"]),
            ref=str(raw.get("ref", "main")),
            sub_dir=str(raw.get("sub_dir", "")),
        )
    return PipelineSource(path=str(raw["path"]), sub_dir=str(raw.get("sub_dir", "")))


def parse_pipeline(alias: str, raw) -> PipelineConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Pipeline '{alias}' must be a mapping")
    if "from" not in raw:
        raise ConfigError(f"Pipeline '{alias}' missing 'from' field")
    unknown = set(raw.keys()) - _PIPELINE_KEYS
    if unknown:
        raise ConfigError(
            f"Pipeline '{alias}': unknown key(s): {', '.join(sorted(str(k) for k in unknown))}"
        )

    default_args = raw.get("default_args") or {}
    if not isinstance(default_args, dict):
        raise ConfigError(f"Pipeline '{alias}': 'default_args' must be a mapping")
    default_targets = raw.get("default_targets") or []
    if not isinstance(default_targets, list):
        raise ConfigError(f"Pipeline '{alias}': 'default_targets' must be a list")

    return PipelineConfig(
        alias=alias,
        source=parse_source(alias, raw["from"]),
        default_args={str(k): "" if v is None else str(v) for k, v in default_args.items()},
        default_targets=[str(t) for t in default_targets],
    )


def parse_manifest(raw) -> ProjectConfig:
    if not raw:
        raise ConfigError("Empty project manifest")
    if not isinstance(raw, dict) or not isinstance(raw.get("pipelines"), dict):
        raise ConfigError("Project manifest requires a 'pipelines' mapping")
    return ProjectConfig(pipelines={
        str(alias): parse_pipeline(str(alias), p) for alias, p in raw["pipelines"].items()
    })


# ── Remote pipelines ───────────────────────────────────────

def fetch_git_pipeline(repo: str, ref: str) -> str:
    """Shallow-clone repo@ref into its checkout dir unless already present."""
    checkout_dir = pipeline_checkout_dir(repo, ref)
    if os.path.isdir(checkout_dir):
        return checkout_dir

    report.internal(f"Fetching remote git pipeline {repo} ({ref}) ...")
    os.makedirs(checkout_dir, exist_ok=True)
    result = subprocess.run(
        ["git", "clone", "--depth", "1", "--branch", ref, repo, "."],
        cwd=checkout_dir, capture_output=True, text=True,
    )
    if result.returncode != 0:
        shutil.rmtree(checkout_dir, ignore_errors=True)
        raise ConfigError(
            f"Cannot fetch git pipeline {repo} ({ref}):\n{(result.stderr or result.stdout).strip()}"
        )
    return checkout_dir


def fetch_git_pipelines(project: ProjectConfig) -> None:
    """Fetch every distinct (repo, ref) in parallel; completion order is irrelevant."""
    sources = []
    for config in project.pipelines.values():
        key = (config.source.git, config.source.ref)
        if config.source.is_git and key not in sources:
            sources.append(key)
    if not sources:
        return

    with ThreadPoolExecutor(max_workers=len(sources)) as pool:
        futures = [pool.submit(fetch_git_pipeline, repo, ref) for repo, ref in sources]
        # result() re-raises the first ConfigError
        for future in futures:
            future.result()


def resolve_ctx_dir(source: PipelineSource) -> str:
    """Directory holding pipeline.py (the pipeline_ctx build context)."""
    root = pipeline_checkout_dir(source.git, source.ref) if source.is_git else source.path
    return os.path.normpath(os.path.join(root, source.sub_dir))


def load_config(path: str = DEFAULT_MANIFEST, fetch: bool = True) -> ProjectConfig:
    """Load .pix.yaml, fetch remote pipelines and load every pipeline definition.

    With ``fetch=False`` only the manifest is parsed (cache commands).
    """
    if not os.path.isfile(path):
        raise ConfigError(f"Cannot find a {path} file in the current working directory")

    with open(path) as f:
        raw = yaml.safe_load(f)
    project = parse_manifest(raw)
    report.debug(f"Loaded project manifest {path}")

    for config in project.pipelines.values():
        config.ctx_dir = resolve_ctx_dir(config.source)
    if not fetch:
        return project

    fetch_git_pipelines(project)
    for config in project.pipelines.values():
        try:
            config.definition = load_definition(config.ctx_dir)
        except DefinitionError as e:
            raise ConfigError(f"Pipeline '{config.alias}': {e}") from e

    return project


def get_pipeline(project: ProjectConfig, alias: str) -> PipelineConfig:
    if alias not in project.pipelines:
        raise UnknownPipeline(alias, list(project.pipelines))
    return project.pipelines[alias]


# ── Checkout cache ─────────────────────────────────────────

def update_checkout(repo: str, ref: str) -> bool:
    """Refresh an existing checkout to the remote ref. False if not cached."""
    checkout_dir = pipeline_checkout_dir(repo, ref)
    if not os.path.isdir(checkout_dir):
        return False
    for cmd in (["git", "fetch", "origin", ref], ["git", "reset", "--hard", "FETCH_HEAD"]):
        result = subprocess.run(cmd, cwd=checkout_dir, capture_output=True, text=True)
        if result.returncode != 0:
            raise ConfigError(f"Cannot update {checkout_dir}:\n{result.stderr.strip()}")
    return True


def clear_checkout(repo: str, ref: str) -> str:
    checkout_dir = pipeline_checkout_dir(repo, ref)
    shutil.rmtree(checkout_dir, ignore_errors=True)
    return checkout_dir
