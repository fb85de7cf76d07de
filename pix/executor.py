"""Executor — hand translated builds to docker and map exit statuses."""

from __future__ import annotations

import os
import shutil
import tempfile
import uuid

from pix import docker, report
from pix.models import BuildArtifact, Pipeline, PipelineConfig, RunOptions, ShellOptions
from pix.pipeline import OUTPUT_DIR, build_run_artifact, build_shell_artifact


class BuildFailed(Exception):
    def __init__(self, status: int, what: str = "docker build"):
        super().__init__(f"{what} failed with exit status {status}")
        self.status = status


def write_pipeline_files(dockerfile: str, dockerignore: tuple[str, ...] | list[str]) -> str:
    """Write the derived Dockerfile and its ``.dockerignore`` sidecar.

    Files go to the temp dir and are left there.
    """
    path = os.path.join(tempfile.gettempdir(), f"{uuid.uuid4().hex}.Dockerfile")
    with open(path, "w") as f:
        f.write(dockerfile)
    with open(f"{path}.dockerignore", "w") as f:
        f.write("\n".join(dockerignore))
    return path


def _check(status: int, what: str) -> None:
    if status != 0:
        raise BuildFailed(status, what)


def execute_run(pipeline: Pipeline, config: PipelineConfig, opts: RunOptions) -> BuildArtifact:
    artifact = build_run_artifact(pipeline, config, opts)
    dockerfile_path = write_pipeline_files(artifact.dockerfile, pipeline.dockerignore)

    if opts.output:
        shutil.rmtree(OUTPUT_DIR, ignore_errors=True)

    report.info(f"\nRunning pipeline (targets: {', '.join(artifact.targets)})\n")
    _check(docker.build(artifact.build_opts + [("file", dockerfile_path)], "."), "docker build")

    if artifact.tag_build_opts is not None:
        report.info(f"\nTagging {opts.target} as {opts.tag}\n")
        _check(docker.build(artifact.tag_build_opts + [("file", dockerfile_path)], "."),
               "docker build (tag)")

    report.success(f"\nPipeline {pipeline.name} completed")

    if opts.output:
        report.info(f"\nExported pipeline outputs to {OUTPUT_DIR}:")
        for name in sorted(os.listdir(OUTPUT_DIR)) if os.path.isdir(OUTPUT_DIR) else []:
            report.info(f"- {name}")

    return artifact


def execute_shell(pipeline: Pipeline, config: PipelineConfig, opts: ShellOptions,
                  cmd_args: list[str]) -> BuildArtifact:
    artifact = build_shell_artifact(pipeline, config, opts)
    dockerfile_path = write_pipeline_files(artifact.dockerfile, pipeline.dockerignore)

    report.info(f"\nBuilding pipeline (target={artifact.targets[0]})\n")
    _check(docker.build(artifact.build_opts + [("file", dockerfile_path)], "."), "docker build")

    report.info("\nEntering shell\n")
    _check(docker.run(artifact.image, artifact.run_opts, cmd_args, ssh=opts.ssh), "docker run")
    return artifact
