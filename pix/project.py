"""Pipeline definitions — load ``pipeline.py`` modules.

A pipeline definition is a Python file named ``pipeline.py`` that defines:

- ``pipeline()`` (required): returns the pipeline, either a built
  :class:`~pix.models.Pipeline` or a :class:`~pix.sdk.PipelineBuilder`.
- ``shell(pipeline, shell_stage, from_target)`` (optional): receives a
  builder seeded with the pipeline, the name of the stage to add and the
  stage to start from (``":default"`` when the user did not choose one). It
  must append the ``shell_stage`` stage and return the builder.

Example::

    from pix import sdk

    def pipeline():
        return (
            sdk.pipeline("app")
            .stage("app.toolchain", from_="python:3.12", private=True)
            .run("pip install tox")
            .stage("app.test", from_="app.toolchain")
            .copy(".", "/src")
            .run("cd /src && tox")
        )

    def shell(pipeline, shell_stage, from_target):
        if from_target == ":default":
            from_target = "app.toolchain"
        return pipeline.stage(shell_stage, from_=from_target, private=True).cmd(["bash"])
"""

from __future__ import annotations

import hashlib
import importlib.util
import os

from pix.models import Pipeline, PipelineDefinition
from pix.sdk import as_pipeline


PIPELINE_FILE = "pipeline.py"


class DefinitionError(Exception):
    pass


def load_definition(pipeline_dir: str) -> PipelineDefinition:
    """Import ``<pipeline_dir>/pipeline.py`` and resolve its callbacks."""
    path = os.path.abspath(os.path.join(pipeline_dir, PIPELINE_FILE))
    if not os.path.isfile(path):
        raise DefinitionError(f"Pipeline specification '{path}' file not found")

    digest = hashlib.sha1(path.encode()).hexdigest()[:12]
    spec = importlib.util.spec_from_file_location(f"pix_pipeline_{digest}", path)
    if spec is None or spec.loader is None:
        raise DefinitionError(f"Cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise DefinitionError(f"Failed to load {path}: {type(e).__name__}: {e}") from e

    factory = getattr(module, "pipeline", None)
    if not callable(factory):
        raise DefinitionError(f"{path} must define a pipeline() function")

    shell = getattr(module, "shell", None)
    return PipelineDefinition(
        path=path,
        pipeline=factory,
        shell=shell if callable(shell) else None,
    )


def compile_pipeline(definition: PipelineDefinition) -> Pipeline:
    """Call the definition's ``pipeline()``; a fresh pipeline on every call."""
    try:
        return as_pipeline(definition.pipeline())
    except TypeError as e:
        raise DefinitionError(f"{definition.path}: pipeline() {e}") from e
