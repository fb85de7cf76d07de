"""Run and shell translation — turn a pipeline plus CLI options into a build.

``pix run`` appends a private collector stage that copies every requested
target's declared outputs into a scratch image and builds that stage.
``pix shell`` lets the pipeline definition append an interactive stage and
builds it into a loadable local image.
"""

from __future__ import annotations

import os
import posixpath

from pix import env
from pix.models import (
    BuildArtifact,
    DockerOpt,
    Pipeline,
    PipelineConfig,
    PipelineSource,
    RunOptions,
    ShellOptions,
)
from pix.project import DefinitionError
from pix.sdk import PIPELINE_CTX, PipelineBuilder, as_pipeline, dump


OUTPUT_DIR = os.path.join(".pipeline", "output")

# Optional glob copied from targets without outputs: matches nothing, and
# buildx accepts a wildcard source with zero matches.
NOTHING_GLOB = "/pix.nothing*"

DEFAULT_SHELL_TARGET = ":default"

_CACHE_OPTS = ("no-cache", "no_cache_filter")


class PipelineError(Exception):
    pass


class UnknownTarget(PipelineError):
    def __init__(self, target: str, known: list[str]):
        super().__init__(
            f"Unknown target '{target}'. Available run targets: {', '.join(known) or '(none)'}"
        )
        self.target = target
        self.known = known


class UnknownShellTarget(PipelineError):
    def __init__(self, pipeline_name: str, target: str, known: list[str]):
        super().__init__(
            f"Pipeline {pipeline_name} does not define a '{target}' target. "
            f"Available shell targets: {', '.join(known) or '(none)'}"
        )
        self.target = target
        self.known = known


class ShellNotSupported(PipelineError):
    def __init__(self, pipeline_name: str):
        super().__init__(f"Pipeline {pipeline_name} does not provide a shell")
        self.pipeline_name = pipeline_name


class ShellStageMissing(PipelineError):
    def __init__(self, pipeline_name: str, shell_stage: str):
        super().__init__(f"Pipeline {pipeline_name} shell() did not define the '{shell_stage}' stage")
        self.shell_stage = shell_stage


class TagWithoutTarget(PipelineError):
    def __init__(self):
        super().__init__("--tag option requires a --target")


# ── Built-in variables ─────────────────────────────────────

def builtin_vars(target: str, source: PipelineSource) -> dict[str, str]:
    """Variables exposed to every build (as ARGs) and shell (as ENVs)."""
    builtins = {
        "PIX_PROJECT_NAME": env.git_project_name(),
        "PIX_COMMIT_SHA": env.git_commit_sha(),
        "PIX_PIPELINE_TARGET": target,
        "PIX_HOST_OS": env.host_os(),
        "PIX_HOST_UID": env.user_id(),
        "PIX_HOST_GID": env.group_id(),
    }
    if source.is_git:
        builtins.update({
            "PIX_PIPELINE_FROM_GIT_REPO": source.git,
            "PIX_PIPELINE_FROM_GIT_REF": source.ref,
            "PIX_PIPELINE_FROM_GIT_SUB_DIR": source.sub_dir,
        })
    else:
        builtins.update({
            "PIX_PIPELINE_FROM_PATH": source.path or "",
            "PIX_PIPELINE_FROM_SUB_DIR": source.sub_dir,
        })
    return builtins


def pipeline_build_args(target: str, source: PipelineSource, default_args: dict[str, str],
                        cli_args: list[str]) -> list[DockerOpt]:
    """Default args enriched with built-ins, then CLI args (last one wins)."""
    merged = {**default_args, **builtin_vars(target, source)}
    build_args: list[DockerOpt] = [("build_arg", f"{k}={v}") for k, v in merged.items()]
    build_args.extend(("build_arg", arg) for arg in cli_args)
    return build_args


def pipeline_envs(target: str, source: PipelineSource) -> list[DockerOpt]:
    return [("env", f"{k}={v}") for k, v in builtin_vars(target, source).items()]


# ── Run ────────────────────────────────────────────────────

def validate_run_options(opts: RunOptions) -> None:
    if opts.tag and not opts.target:
        raise TagWithoutTarget()


def resolve_run_targets(default_targets: list[str], target: str | None) -> list[str]:
    """An explicit --target replaces the default targets, it is not merged."""
    if target:
        return [target]
    return list(default_targets)


def validate_run_targets(pipeline: Pipeline, targets: list[str]) -> None:
    known = pipeline.stage_names("public")
    for target in targets:
        if target not in known:
            raise UnknownTarget(target, known)


def collector_name(pipeline: Pipeline) -> str:
    return f"{pipeline.name}.pipeline"


def add_collector_stage(pipeline: Pipeline, targets: list[str]) -> Pipeline:
    """Append the stage gathering each target's outputs into one scratch image."""
    builder = PipelineBuilder.from_pipeline(pipeline)
    builder.stage(collector_name(pipeline), from_="scratch", private=True)
    for target in targets:
        stage = pipeline.stage(target)
        if stage.outputs:
            for output in stage.outputs:
                builder.copy(output, "/" + posixpath.basename(output.rstrip("/")), from_=target)
        else:
            builder.copy(NOTHING_GLOB, "/", from_=target)
    return builder.build()


def _build_context(config: PipelineConfig) -> DockerOpt:
    return ("build_context", f"{PIPELINE_CTX}={config.ctx_dir}")


def run_build_options(pipeline: Pipeline, config: PipelineConfig,
                      opts: RunOptions) -> list[DockerOpt]:
    target = collector_name(pipeline)
    build_opts: list[DockerOpt] = [
        ("target", target),
        ("progress", opts.progress or "auto"),
        ("platform", f"linux/{env.arch()}"),
        _build_context(config),
    ]
    if opts.output:
        build_opts.append(("output", f"type=local,dest={OUTPUT_DIR}"))

    if opts.no_cache:
        build_opts.append("no-cache")
    else:
        no_cache = [s.name for s in pipeline.stages if not s.cache]
        no_cache.extend(opts.no_cache_filter)
        build_opts.extend(("no_cache_filter", stage) for stage in no_cache)

    if opts.ssh:
        build_opts.append(("ssh", "default"))

    build_opts.extend(pipeline_build_args(target, config.source, config.default_args, opts.args))
    return build_opts


def tag_build_options(build_opts: list[DockerOpt], target: str, tag: str) -> list[DockerOpt]:
    """Second pass: build the original target (not the collector) and tag it.

    Cache exclusions are dropped so the layers built by the first pass are
    reused.
    """
    tag_opts: list[DockerOpt] = []
    for opt in build_opts:
        key = opt if isinstance(opt, str) else opt[0]
        if key in _CACHE_OPTS or key == "output":
            continue
        if key == "target":
            opt = ("target", target)
        tag_opts.append(opt)
    tag_opts.extend(["load", ("tag", tag)])
    return tag_opts


def build_run_artifact(pipeline: Pipeline, config: PipelineConfig,
                       opts: RunOptions) -> BuildArtifact:
    validate_run_options(opts)
    targets = resolve_run_targets(config.default_targets, opts.target)
    validate_run_targets(pipeline, targets)

    derived = add_collector_stage(pipeline, targets)
    build_opts = run_build_options(pipeline, config, opts)

    tag_opts = None
    if opts.tag and opts.target:
        tag_opts = tag_build_options(build_opts, opts.target, opts.tag)

    return BuildArtifact(
        dockerfile=dump(derived),
        build_opts=build_opts,
        targets=targets,
        tag_build_opts=tag_opts,
    )


# ── Shell ──────────────────────────────────────────────────

def validate_shell_target(pipeline: Pipeline, target: str) -> None:
    """Shell may start from any stage, private ones included."""
    known = pipeline.stage_names("all")
    if target != DEFAULT_SHELL_TARGET and target not in known:
        raise UnknownShellTarget(pipeline.name, target, known)


def shell_run_options(shell_target: str, source: PipelineSource,
                      opts: ShellOptions) -> list[DockerOpt]:
    run_opts: list[DockerOpt] = ["rm", "interactive"]
    if not env.is_ci():
        run_opts.append("tty")
    if opts.host:
        cwd = os.getcwd()
        run_opts.extend([
            ("network", "host"),
            ("volume", f"{cwd}:{cwd}"),
            ("workdir", cwd),
        ])
    run_opts.extend(pipeline_envs(shell_target, source))
    return run_opts


def build_shell_artifact(pipeline: Pipeline, config: PipelineConfig,
                         opts: ShellOptions) -> BuildArtifact:
    definition = config.definition
    if definition is None or definition.shell is None:
        raise ShellNotSupported(pipeline.name)

    from_target = opts.target or DEFAULT_SHELL_TARGET
    validate_shell_target(pipeline, from_target)

    shell_target = f"{pipeline.name}.shell"
    image = f"pix/{pipeline.name}/shell"

    builder = PipelineBuilder.from_pipeline(pipeline)
    result = definition.shell(builder, shell_target, from_target)
    try:
        derived = as_pipeline(builder if result is None else result)
    except TypeError as e:
        raise DefinitionError(f"{definition.path}: shell() {e}") from e
    if shell_target not in derived.stage_names():
        raise ShellStageMissing(pipeline.name, shell_target)

    build_opts: list[DockerOpt] = [
        "load",
        ("target", shell_target),
        ("platform", f"linux/{env.arch()}"),
        _build_context(config),
        ("tag", image),
    ]
    if opts.ssh:
        build_opts.append(("ssh", "default"))
    build_opts.extend(pipeline_build_args(shell_target, config.source, config.default_args, opts.args))

    return BuildArtifact(
        dockerfile=dump(derived),
        build_opts=build_opts,
        run_opts=shell_run_options(shell_target, config.source, opts),
        image=image,
        targets=[shell_target],
    )
