"""Tests for the pipeline SDK: builder, instructions and Dockerfile dump."""

import pytest

from pix import sdk
from pix.models import Instruction, Pipeline
from pix.sdk import (
    PIPELINE_CTX,
    DuplicateStage,
    NoStageDefined,
    PipelineBuilder,
    as_pipeline,
    dump,
    shell_or_exec_form,
)


def _last(builder: PipelineBuilder) -> str:
    return builder.build().stages[-1].instructions[-1].serialize()


# ── Stages ──────────────────────────────────────────────────

def test_stage_writes_from_instruction():
    p = sdk.pipeline("demo").stage("base").build()
    assert p.stages[0].instructions[0].serialize() == "FROM scratch AS base"


def test_stage_from_other_stage():
    p = sdk.pipeline("demo").stage("base").stage("build", from_="base").build()
    assert p.stages[1].instructions[0].serialize() == "FROM base AS build"


def test_stage_metadata():
    p = (
        sdk.pipeline("demo")
        .stage("tools", from_="alpine:3.20", private=True, cache=False, description="Toolchain")
        .build()
    )
    stage = p.stages[0]
    assert stage.private is True
    assert stage.cache is False
    assert stage.description == "Toolchain"


def test_stage_defaults():
    stage = sdk.pipeline("demo").stage("base").build().stages[0]
    assert stage.private is False
    assert stage.cache is True
    assert stage.outputs == ()
    assert stage.args == {}


def test_stages_keep_creation_order():
    p = sdk.pipeline("demo").stage("a").stage("b").stage("c").build()
    assert [s.name for s in p.stages] == ["a", "b", "c"]


def test_duplicate_stage_rejected():
    builder = sdk.pipeline("demo").stage("base")
    with pytest.raises(DuplicateStage, match="base"):
        builder.stage("base")


def test_instruction_before_stage_fails():
    with pytest.raises(NoStageDefined):
        sdk.pipeline("demo").run("echo hi")


def test_output_before_stage_fails():
    with pytest.raises(NoStageDefined):
        sdk.pipeline("demo").output("/out")


# ── Instructions ────────────────────────────────────────────

def test_shell_form_passthrough():
    assert shell_or_exec_form("make all && make test") == ["make all && make test"]


def test_exec_form_json_array():
    assert shell_or_exec_form(["make", "all"]) == ['["make", "all"]']


def test_exec_form_escapes_quotes():
    assert shell_or_exec_form(['say "hi"']) == ['["say \\"hi\\""]']


def test_run_shell_and_exec_forms():
    builder = sdk.pipeline("demo").stage("base").run("apk add git")
    assert _last(builder) == "RUN apk add git"
    builder.run(["sh", "-c", "echo hi"])
    assert _last(builder) == 'RUN ["sh", "-c", "echo hi"]'


def test_run_with_mount_option():
    builder = sdk.pipeline("demo").stage("base").run("go build", mount="type=cache,target=/root/.cache")
    assert _last(builder) == "RUN --mount=type=cache,target=/root/.cache go build"


def test_copy_from_stage():
    builder = sdk.pipeline("demo").stage("base").copy("/out/app", "/app", from_="build")
    assert _last(builder) == "COPY --from=build /out/app /app"


def test_copy_multiple_sources_and_bool_option():
    builder = sdk.pipeline("demo").stage("base").copy(["a.txt", "b.txt"], "/dst/", link=True)
    assert _last(builder) == "COPY --link a.txt b.txt /dst/"


def test_copy_underscore_option_renders_dash():
    builder = sdk.pipeline("demo").stage("base").copy("x", "/x", exclude_from="y")
    assert _last(builder) == "COPY --exclude-from=y x /x"


def test_add_instruction():
    builder = sdk.pipeline("demo").stage("base").add("https://example.com/a.tgz", "/tmp/", checksum="sha256:abc")
    assert _last(builder) == "ADD --checksum=sha256:abc https://example.com/a.tgz /tmp/"


def test_env_and_label_quoting():
    builder = sdk.pipeline("demo").stage("base").env({"MIX_ENV": "prod", "LANG": "C.UTF-8"})
    assert _last(builder) == 'ENV MIX_ENV="prod" LANG="C.UTF-8"'
    builder.label({"org.opencontainers.image.title": "demo"})
    assert _last(builder) == 'LABEL "org.opencontainers.image.title"="demo"'


def test_simple_instructions():
    builder = sdk.pipeline("demo").stage("base")
    builder.expose(8080)
    assert _last(builder) == "EXPOSE 8080"
    builder.user("nobody")
    assert _last(builder) == "USER nobody"
    builder.workdir("/build")
    assert _last(builder) == "WORKDIR /build"
    builder.stopsignal("SIGTERM")
    assert _last(builder) == "STOPSIGNAL SIGTERM"
    builder.volume(["/data"])
    assert _last(builder) == 'VOLUME ["/data"]'
    builder.shell(["/bin/bash", "-c"])
    assert _last(builder) == 'SHELL ["/bin/bash", "-c"]'
    builder.onbuild("RUN echo child")
    assert _last(builder) == "ONBUILD RUN echo child"


def test_shell_rejects_plain_string():
    builder = sdk.pipeline("demo").stage("base")
    with pytest.raises(TypeError, match="list of strings"):
        builder.shell("/bin/bash -c")
    assert len(builder.build().stages[0].instructions) == 1


def test_cmd_and_entrypoint():
    builder = sdk.pipeline("demo").stage("base").entrypoint([])
    assert _last(builder) == "ENTRYPOINT []"
    builder.cmd(["bash"])
    assert _last(builder) == 'CMD ["bash"]'
    builder.cmd("bash -l")
    assert _last(builder) == "CMD bash -l"


def test_healthcheck():
    builder = sdk.pipeline("demo").stage("base").healthcheck(None)
    assert _last(builder) == "HEALTHCHECK NONE"
    builder.healthcheck(["curl", "-f", "http://localhost/"], interval="30s")
    assert _last(builder) == 'HEALTHCHECK --interval=30s CMD ["curl", "-f", "http://localhost/"]'


def test_stage_arg_recorded():
    builder = sdk.pipeline("demo").stage("base").arg("VERSION").arg("MIX_ENV", "prod")
    p = builder.build()
    assert p.stages[0].args == {"VERSION": None, "MIX_ENV": "prod"}
    lines = [i.serialize() for i in p.stages[0].instructions]
    assert lines[1:] == ["ARG VERSION", 'ARG MIX_ENV="prod"']


def test_global_arg_without_stage():
    p = sdk.pipeline("demo").global_arg("ELIXIR_VERSION", "1.18").build()
    assert p.declared_args == {"ELIXIR_VERSION": "1.18"}
    assert p.args == (Instruction("ARG", (), ('ELIXIR_VERSION="1.18"',)),)


def test_output_declarations():
    p = (
        sdk.pipeline("demo")
        .stage("build")
        .output("/out/app")
        .output(["/out/docs", "/out/report.xml"])
        .build()
    )
    assert p.stages[0].outputs == ("/out/app", "/out/docs", "/out/report.xml")
    # outputs add no instruction
    assert len(p.stages[0].instructions) == 1


def test_outputs_belong_to_current_stage():
    p = sdk.pipeline("demo").stage("a").output("/a").stage("b").output("/b").build()
    assert p.stage("a").outputs == ("/a",)
    assert p.stage("b").outputs == ("/b",)


# ── Builder / Pipeline values ───────────────────────────────

def test_build_freezes_state():
    builder = sdk.pipeline("demo").stage("base").run("echo 1")
    first = builder.build()
    builder.run("echo 2").stage("other")
    assert len(first.stages) == 1
    assert len(first.stages[0].instructions) == 2


def test_built_args_are_read_only():
    builder = sdk.pipeline("demo").global_arg("G", "1").stage("base").arg("X", "1")
    p = builder.build()
    with pytest.raises(TypeError):
        p.stages[0].args["X"] = "2"
    with pytest.raises(TypeError):
        p.declared_args["G"] = "2"
    builder.arg("Y").global_arg("H")
    assert p.stages[0].args == {"X": "1"}
    assert p.declared_args == {"G": "1"}


def test_from_pipeline_does_not_alias():
    original = sdk.pipeline("demo", dockerignore=[".git"]).stage("base").arg("A", "1").build()
    extended = PipelineBuilder.from_pipeline(original).run("echo x").stage("extra").build()
    assert [s.name for s in original.stages] == ["base"]
    assert [s.name for s in extended.stages] == ["base", "extra"]
    assert extended.dockerignore == (".git",)
    assert extended.stage("base").args == {"A": "1"}


def test_pipeline_metadata():
    p = sdk.pipeline("demo", description="Demo pipeline", dockerignore=[".git", "_build"]).build()
    assert p.name == "demo"
    assert p.description == "Demo pipeline"
    assert p.dockerignore == (".git", "_build")
    assert p.stages == ()


def test_stage_names_visibility():
    p = sdk.pipeline("demo").stage("tools", private=True).stage("app").build()
    assert p.stage_names() == ["tools", "app"]
    assert p.stage_names("public") == ["app"]


def test_as_pipeline_accepts_both():
    builder = sdk.pipeline("demo").stage("base")
    assert isinstance(as_pipeline(builder), Pipeline)
    built = builder.build()
    assert as_pipeline(built) is built
    with pytest.raises(TypeError):
        as_pipeline("demo")


# ── Dump ────────────────────────────────────────────────────

def test_dump_full_pipeline():
    p = (
        sdk.pipeline("demo")
        .global_arg("VERSION", "1.0")
        .stage("base")
        .run("apk add git")
        .stage("build", from_="base")
        .copy("src", "/src")
        .copy("build.sh", "/", from_=PIPELINE_CTX)
        .run(["make", "all"])
        .output("/out/app")
    )
    assert dump(p) == (
        'ARG VERSION="1.0"\n'
        "\n"
        "FROM scratch AS base\n"
        "RUN apk add git\n"
        "\n"
        "FROM base AS build\n"
        "COPY src /src\n"
        "COPY --from=pipeline_ctx build.sh /\n"
        'RUN ["make", "all"]\n'
    )


def test_dump_global_args_come_first():
    p = sdk.pipeline("demo").stage("base").global_arg("LATE").global_arg("LATER", "x")
    text = dump(p)
    assert text.index("ARG LATE") < text.index("FROM scratch AS base")
    assert text.index("ARG LATE\n") < text.index('ARG LATER="x"')


def test_dump_is_deterministic():
    def make():
        return sdk.pipeline("demo").stage("a").run("x").stage("b", from_="a").run(["y"])
    assert dump(make()) == dump(make())
