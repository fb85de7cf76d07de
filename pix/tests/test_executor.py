"""Tests for the executor: temp files, output dir handling, exit statuses."""

import os
import tempfile
from unittest.mock import patch

import pytest

from pix import sdk
from pix.executor import BuildFailed, execute_run, execute_shell, write_pipeline_files
from pix.models import (
    PipelineConfig,
    PipelineDefinition,
    PipelineSource,
    RunOptions,
    ShellOptions,
)
from pix.pipeline import OUTPUT_DIR


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch):
    monkeypatch.setattr("pix.env.git_project_name", lambda: "proj")
    monkeypatch.setattr("pix.env.git_commit_sha", lambda: "sha")
    monkeypatch.setattr("pix.env.arch", lambda: "amd64")
    monkeypatch.setattr("pix.report._enabled", False)


@pytest.fixture
def workdir(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.chdir(tmpdir)
        monkeypatch.setattr(tempfile, "tempdir", tmpdir)
        yield tmpdir


def _pipeline():
    return (
        sdk.pipeline("demo", dockerignore=[".git", "_build"])
        .stage("build")
        .run("make")
        .output("/out/app")
        .build()
    )


def _shell(pipeline, shell_stage, from_target):
    pipeline.stage(shell_stage, from_="build")


def _config():
    definition = PipelineDefinition(path="pipeline.py", pipeline=_pipeline, shell=_shell)
    return PipelineConfig(
        alias="demo",
        source=PipelineSource(path="."),
        default_targets=["build"],
        definition=definition,
    )


def _option(opts, key):
    return next(o[1] for o in opts if isinstance(o, tuple) and o[0] == key)


# ── Pipeline files ──────────────────────────────────────────

def test_write_pipeline_files(workdir):
    path = write_pipeline_files("FROM scratch AS a\n", (".git", "_build"))
    assert path.startswith(workdir)
    assert path.endswith(".Dockerfile")
    with open(path) as f:
        assert f.read() == "FROM scratch AS a\n"
    with open(f"{path}.dockerignore") as f:
        assert f.read() == ".git\n_build"


def test_write_pipeline_files_unique_names(workdir):
    assert write_pipeline_files("", ()) != write_pipeline_files("", ())


# ── run ─────────────────────────────────────────────────────

def test_run_builds_with_generated_dockerfile(workdir):
    with patch("pix.executor.docker.build", return_value=0) as build:
        execute_run(_pipeline(), _config(), RunOptions())
    assert build.call_count == 1
    opts, ctx = build.call_args[0]
    assert ctx == "."
    with open(_option(opts, "file")) as f:
        assert "COPY --from=build /out/app /app" in f.read()


def test_run_output_clears_previous_outputs(workdir):
    stale = os.path.join(OUTPUT_DIR, "stale.txt")
    os.makedirs(OUTPUT_DIR)
    with open(stale, "w") as f:
        f.write("old")

    seen = {}

    def fake_build(opts, ctx):
        seen["stale"] = os.path.exists(stale)
        seen["output"] = _option(opts, "output")
        return 0

    with patch("pix.executor.docker.build", side_effect=fake_build):
        execute_run(_pipeline(), _config(), RunOptions(output=True))
    assert seen["stale"] is False
    assert seen["output"] == f"type=local,dest={OUTPUT_DIR}"


def test_run_without_output_keeps_output_dir(workdir):
    os.makedirs(OUTPUT_DIR)
    with patch("pix.executor.docker.build", return_value=0):
        execute_run(_pipeline(), _config(), RunOptions())
    assert os.path.isdir(OUTPUT_DIR)


def test_run_tag_runs_second_build(workdir):
    with patch("pix.executor.docker.build", return_value=0) as build:
        execute_run(_pipeline(), _config(), RunOptions(target="build", tag="demo:dev"))
    assert build.call_count == 2
    tag_opts = build.call_args_list[1][0][0]
    assert _option(tag_opts, "target") == "build"
    assert _option(tag_opts, "tag") == "demo:dev"


def test_run_failure_raises_with_status(workdir):
    with patch("pix.executor.docker.build", return_value=2) as build:
        with pytest.raises(BuildFailed) as exc:
            execute_run(_pipeline(), _config(), RunOptions(target="build", tag="demo:dev"))
    assert exc.value.status == 2
    # no tag pass after a failed build
    assert build.call_count == 1


# ── shell ───────────────────────────────────────────────────

def test_shell_builds_then_runs(workdir):
    with patch("pix.executor.docker.build", return_value=0) as build, \
         patch("pix.executor.docker.run", return_value=0) as run:
        execute_shell(_pipeline(), _config(), ShellOptions(ssh=True), ["make", "test"])
    assert _option(build.call_args[0][0], "target") == "demo.shell"
    image, run_opts, args = run.call_args[0]
    assert image == "pix/demo/shell"
    assert args == ["make", "test"]
    assert run.call_args[1] == {"ssh": True}


def test_shell_not_run_when_build_fails(workdir):
    with patch("pix.executor.docker.build", return_value=1), \
         patch("pix.executor.docker.run") as run:
        with pytest.raises(BuildFailed):
            execute_shell(_pipeline(), _config(), ShellOptions(), [])
    run.assert_not_called()


def test_shell_exit_status_propagates(workdir):
    with patch("pix.executor.docker.build", return_value=0), \
         patch("pix.executor.docker.run", return_value=42):
        with pytest.raises(BuildFailed) as exc:
            execute_shell(_pipeline(), _config(), ShellOptions(), ["false"])
    assert exc.value.status == 42
