"""Data classes for pipelines, stages, project configuration and CLI options."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Union


OptionValue = Union[str, bool]


@dataclass(frozen=True)
class Instruction:
    command: str                                        # FROM, RUN, COPY, ...
    options: tuple[tuple[str, OptionValue], ...] = ()   # rendered as --key=value
    args: tuple[str, ...] = ()                          # positional, already encoded

    def option(self, key: str) -> OptionValue | None:
        for k, v in self.options:
            if k == key:
                return v
        return None

    def serialize(self) -> str:
        parts = [self.command]
        for key, value in self.options:
            if value is True:
                parts.append(f"--{key}")
            elif value is False:
                continue
            else:
                parts.append(f"--{key}={value}")
        parts.extend(a for a in self.args if a != "")
        return " ".join(parts)


@dataclass(frozen=True)
class Stage:
    name: str
    instructions: tuple[Instruction, ...] = ()
    description: str | None = None
    private: bool = False
    cache: bool = True
    outputs: tuple[str, ...] = ()
    args: Mapping[str, str | None] = field(default_factory=dict)   # read-only once built

    def __post_init__(self):
        object.__setattr__(self, "args", MappingProxyType(dict(self.args)))


@dataclass(frozen=True)
class Pipeline:
    name: str
    description: str = ""
    args: tuple[Instruction, ...] = ()                # global ARG instructions
    stages: tuple[Stage, ...] = ()                    # creation order
    declared_args: Mapping[str, str | None] = field(default_factory=dict)
    dockerignore: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "declared_args", MappingProxyType(dict(self.declared_args)))

    def stage(self, name: str) -> Stage | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def stage_names(self, visibility: str = "all") -> list[str]:
        if visibility == "public":
            return [s.name for s in self.stages if not s.private]
        return [s.name for s in self.stages]


@dataclass(frozen=True)
class PipelineSource:
    """Where a pipeline definition lives: a local path or a git repository."""
    path: str | None = None
    git: str | None = None
    ref: str = "main"
    sub_dir: str = ""

    @property
    def is_git(self) -> bool:
        return self.git is not None


@dataclass
class PipelineDefinition:
    """A loaded ``pipeline.py``: the pipeline factory and its optional shell."""
    path: str
    pipeline: Callable[[], Pipeline]
    shell: Callable | None = None


@dataclass
class PipelineConfig:
    alias: str
    source: PipelineSource
    default_args: dict[str, str] = field(default_factory=dict)
    default_targets: list[str] = field(default_factory=list)
    ctx_dir: str = "."
    definition: PipelineDefinition | None = None


@dataclass
class ProjectConfig:
    pipelines: dict[str, PipelineConfig] = field(default_factory=dict)


@dataclass
class RunOptions:
    target: str | None = None
    tag: str | None = None
    output: bool = False
    no_cache: bool = False
    no_cache_filter: list[str] = field(default_factory=list)
    args: list[str] = field(default_factory=list)     # KEY=value
    progress: str = "auto"
    ssh: bool = False


@dataclass
class ShellOptions:
    target: str | None = None
    host: bool = False
    ssh: bool = False
    args: list[str] = field(default_factory=list)     # KEY=value


DockerOpt = Union[str, tuple[str, str]]


@dataclass
class BuildArtifact:
    """Translator output: the derived Dockerfile plus docker options."""
    dockerfile: str
    build_opts: list[DockerOpt]
    run_opts: list[DockerOpt] = field(default_factory=list)
    image: str | None = None
    targets: list[str] = field(default_factory=list)
    tag_build_opts: list[DockerOpt] | None = None   # second pass for run --tag
