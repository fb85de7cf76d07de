"""Pipeline SDK — build multi-stage Dockerfiles programmatically.

A pipeline definition (``pipeline.py``) builds its pipeline with a chain of
calls on a :class:`PipelineBuilder`::

    from pix import sdk

    def pipeline():
        return (
            sdk.pipeline("myapp", description="MyApp pipeline", dockerignore=[".git"])
            .stage("myapp.base", from_="python:3.12-slim", private=True)
            .run("pip install build")
            .stage("myapp.dist", from_="myapp.base")
            .copy(".", "/src")
            .copy("build.sh", "/", from_=sdk.PIPELINE_CTX)
            .run(["/build.sh"])
            .output("/src/dist")
        )

The builder owns mutable state while the chain runs; :meth:`PipelineBuilder.build`
freezes it into an immutable :class:`~pix.models.Pipeline`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from pix.models import Instruction, OptionValue, Pipeline, Stage


# Named build context pointing at the directory holding pipeline.py.
PIPELINE_CTX = "pipeline_ctx"


class NoStageDefined(Exception):
    def __init__(self, command: str):
        super().__init__(
            f"No stage defined before {command}. Use stage() to start a stage first."
        )
        self.command = command


class DuplicateStage(Exception):
    def __init__(self, name: str):
        super().__init__(f"Stage '{name}' is already defined")
        self.name = name


@dataclass
class _StageState:
    name: str
    description: str | None
    private: bool
    cache: bool
    instructions: list[Instruction] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    args: dict[str, str | None] = field(default_factory=dict)

    def freeze(self) -> Stage:
        return Stage(
            name=self.name,
            instructions=tuple(self.instructions),
            description=self.description,
            private=self.private,
            cache=self.cache,
            outputs=tuple(self.outputs),
            args=dict(self.args),
        )


def shell_or_exec_form(command: str | list[str] | tuple[str, ...]) -> list[str]:
    """Encode a command as shell form (verbatim) or exec form (JSON array)."""
    if isinstance(command, (list, tuple)):
        return ["[" + ", ".join(json.dumps(c) for c in command) + "]"]
    return [command]


def _quote(value) -> str:
    return json.dumps(str(value))


def _normalize_options(options: dict | None) -> tuple[tuple[str, OptionValue], ...]:
    if not options:
        return ()
    normalized = []
    for key, value in options.items():
        # from_ / chown_ style keys avoid clashing with Python keywords
        key = key.rstrip("_").replace("_", "-")
        normalized.append((key, value if isinstance(value, bool) else str(value)))
    return tuple(normalized)


class PipelineBuilder:
    def __init__(self, name: str, description: str = "",
                 dockerignore: list[str] | tuple[str, ...] | None = None):
        self.name = name
        self.description = description
        self.dockerignore = list(dockerignore or [])
        self._args: list[Instruction] = []
        self._declared_args: dict[str, str | None] = {}
        self._stages: list[_StageState] = []

    @classmethod
    def from_pipeline(cls, pipeline: Pipeline) -> PipelineBuilder:
        """Start a new builder seeded with the content of a built pipeline."""
        builder = cls(pipeline.name, pipeline.description, pipeline.dockerignore)
        builder._args = list(pipeline.args)
        builder._declared_args = dict(pipeline.declared_args)
        for stage in pipeline.stages:
            builder._stages.append(_StageState(
                name=stage.name,
                description=stage.description,
                private=stage.private,
                cache=stage.cache,
                instructions=list(stage.instructions),
                outputs=list(stage.outputs),
                args=dict(stage.args),
            ))
        return builder

    # ── Stages ─────────────────────────────────────────────

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    def _current(self, command: str) -> _StageState:
        if not self._stages:
            raise NoStageDefined(command)
        return self._stages[-1]

    def stage(self, name: str, from_: str = "scratch", description: str | None = None,
              private: bool = False, cache: bool = True) -> PipelineBuilder:
        """Start a new stage FROM the given base image or stage."""
        if name in self.stage_names:
            raise DuplicateStage(name)
        self._stages.append(_StageState(
            name=name, description=description, private=private, cache=cache,
        ))
        return self.append_instruction("FROM", None, [f"{from_} AS {name}"])

    def append_instruction(self, command: str, options: dict | None,
                           args: list[str]) -> PipelineBuilder:
        stage = self._current(command)
        stage.instructions.append(
            Instruction(command, _normalize_options(options), tuple(args))
        )
        return self

    def output(self, path: str | list[str]) -> PipelineBuilder:
        """Declare one or more output artifacts of the current stage."""
        stage = self._current("output")
        if isinstance(path, (list, tuple)):
            stage.outputs.extend(path)
        else:
            stage.outputs.append(path)
        return self

    # ── Instructions ───────────────────────────────────────

    def run(self, command: str | list[str], **options) -> PipelineBuilder:
        return self.append_instruction("RUN", options, shell_or_exec_form(command))

    def cmd(self, command: str | list[str]) -> PipelineBuilder:
        return self.append_instruction("CMD", None, shell_or_exec_form(command))

    def entrypoint(self, command: str | list[str]) -> PipelineBuilder:
        return self.append_instruction("ENTRYPOINT", None, shell_or_exec_form(command))

    def label(self, labels: dict[str, str]) -> PipelineBuilder:
        pairs = [f"{_quote(k)}={_quote(v)}" for k, v in labels.items()]
        return self.append_instruction("LABEL", None, pairs)

    def expose(self, port: str | int) -> PipelineBuilder:
        return self.append_instruction("EXPOSE", None, [str(port)])

    def env(self, envs: dict[str, str]) -> PipelineBuilder:
        pairs = [f"{k}={_quote(v)}" for k, v in envs.items()]
        return self.append_instruction("ENV", None, pairs)

    def add(self, source: str | list[str], destination: str, **options) -> PipelineBuilder:
        sources = list(source) if isinstance(source, (list, tuple)) else [source]
        return self.append_instruction("ADD", options, sources + [destination])

    def copy(self, source: str | list[str], destination: str, **options) -> PipelineBuilder:
        sources = list(source) if isinstance(source, (list, tuple)) else [source]
        return self.append_instruction("COPY", options, sources + [destination])

    def volume(self, volume: str | list[str]) -> PipelineBuilder:
        return self.append_instruction("VOLUME", None, shell_or_exec_form(volume))

    def user(self, user: str) -> PipelineBuilder:
        return self.append_instruction("USER", None, [user])

    def workdir(self, workdir: str) -> PipelineBuilder:
        return self.append_instruction("WORKDIR", None, [workdir])

    def stopsignal(self, signal: str) -> PipelineBuilder:
        return self.append_instruction("STOPSIGNAL", None, [signal])

    def shell(self, command: list[str]) -> PipelineBuilder:
        # SHELL only has an exec form
        if isinstance(command, str):
            raise TypeError(f"shell() expects a list of strings, got {command!r}")
        return self.append_instruction("SHELL", None, shell_or_exec_form(list(command)))

    def onbuild(self, instruction: str) -> PipelineBuilder:
        return self.append_instruction("ONBUILD", None, [instruction])

    def healthcheck(self, command: str | list[str] | None, **options) -> PipelineBuilder:
        if command is None:
            return self.append_instruction("HEALTHCHECK", None, ["NONE"])
        return self.append_instruction(
            "HEALTHCHECK", options, ["CMD"] + shell_or_exec_form(command)
        )

    def arg(self, name: str, default: str | None = None) -> PipelineBuilder:
        """ARG in the current stage scope; also recorded in the stage's args."""
        self.append_instruction("ARG", None, [_arg_decl(name, default)])
        self._stages[-1].args[str(name)] = default
        return self

    def global_arg(self, name: str, default: str | None = None) -> PipelineBuilder:
        """ARG in the global scope, before the first FROM."""
        self._args.append(Instruction("ARG", (), (_arg_decl(name, default),)))
        self._declared_args[str(name)] = default
        return self

    # ── Result ─────────────────────────────────────────────

    def build(self) -> Pipeline:
        return Pipeline(
            name=self.name,
            description=self.description,
            args=tuple(self._args),
            stages=tuple(s.freeze() for s in self._stages),
            declared_args=dict(self._declared_args),
            dockerignore=tuple(self.dockerignore),
        )


def _arg_decl(name: str, default: str | None) -> str:
    if default is None:
        return str(name)
    return f"{name}={_quote(default)}"


def pipeline(name: str, description: str = "",
             dockerignore: list[str] | None = None) -> PipelineBuilder:
    """Create a new pipeline builder."""
    return PipelineBuilder(name, description=description, dockerignore=dockerignore)


def as_pipeline(value: Pipeline | PipelineBuilder) -> Pipeline:
    """Accept either a built pipeline or a builder from a pipeline definition."""
    if isinstance(value, PipelineBuilder):
        return value.build()
    if isinstance(value, Pipeline):
        return value
    raise TypeError(f"Expected a Pipeline or PipelineBuilder, got {type(value).__name__}")


def dump_stage(stage: Stage) -> str:
    return "\n".join(i.serialize() for i in stage.instructions)


def dump(pipeline: Pipeline | PipelineBuilder) -> str:
    """Render the pipeline as Dockerfile text."""
    pipeline = as_pipeline(pipeline)
    global_args = "\n".join(i.serialize() for i in pipeline.args)
    stages = "\n\n".join(dump_stage(s) for s in pipeline.stages)
    return global_args + "\n\n" + stages + "\n"
