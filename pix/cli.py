"""CLI entry point — pix ls / graph / run / shell / cache."""

from __future__ import annotations

import argparse
import os
import shutil
import subprocess
import sys

from pix import __version__, report
from pix.config import (
    ConfigError,
    clear_checkout,
    get_pipeline,
    load_config,
    pipeline_checkout_dir,
    update_checkout,
)
from pix.docker import DockerError
from pix.executor import BuildFailed, execute_run, execute_shell
from pix.graph import extract_graph, render_tree, to_dot
from pix.models import PipelineConfig, RunOptions, ShellOptions, Stage
from pix.pipeline import PipelineError, validate_run_options
from pix.project import DefinitionError, compile_pipeline
from pix.report import BLUE, BOLD, DIM, GREEN, UNDERLINE, YELLOW, color_enabled, style
from pix.sdk import DuplicateStage, NoStageDefined
from pix.settings import apply_env, load_settings


def _print_args(args: dict, indent: str) -> None:
    for k, v in args.items():
        if k.startswith("PIX_"):
            continue
        print(f"{indent}{style(k, DIM, BLUE)}: {v!r}")


def print_stage(stage: Stage) -> None:
    name = style(stage.name, DIM, GREEN) if stage.private else style(stage.name, GREEN)
    print(f"   ▸ {name}")
    if stage.description:
        print(f"      • Description: {style(stage.description, DIM)}")
    if stage.private:
        print("      • Private: true")
    if not stage.cache:
        print(f"      • Cache: {style('Disabled', DIM)}")
    if stage.args:
        print("      • Arguments:")
        _print_args(stage.args, "        - ")
    if stage.outputs:
        print("      • Outputs:")
        for output in stage.outputs:
            print(f"        - {style(output, DIM, YELLOW)}")
    print()


def print_pipeline(config: PipelineConfig, verbose: bool, hidden: bool) -> None:
    print(style(config.alias, BOLD, UNDERLINE))
    if not verbose:
        return

    pipeline = compile_pipeline(config.definition)
    if config.default_args:
        print("  Default arguments:")
        _print_args(config.default_args, "    ")
    if pipeline.description.strip():
        print("  Description:")
        for line in pipeline.description.strip().splitlines():
            print(f"    {style(line, DIM)}")
    if pipeline.declared_args:
        print("  Arguments:")
        _print_args(pipeline.declared_args, "    ")
    shell = "available" if config.definition.shell else "not available"
    print(f"  Shell: {style(shell, DIM)}")
    print(f"  Default targets: {style(', '.join(config.default_targets), DIM, GREEN)}")
    print("  Targets:")
    for stage in pipeline.stages:
        if hidden or not stage.private:
            print_stage(stage)


def _pipeline_config(args) -> PipelineConfig:
    project = load_config(args.manifest)
    return get_pipeline(project, args.pipeline)


def cmd_ls(args) -> None:
    project = load_config(args.manifest)
    configs = list(project.pipelines.values())
    if args.pipeline:
        configs = [get_pipeline(project, args.pipeline)]

    print(style("\nAvailable pipelines:\n", BOLD))
    for config in configs:
        print_pipeline(config, verbose=args.verbose, hidden=args.hidden)
        print()


def cmd_graph(args) -> None:
    config = _pipeline_config(args)
    pipeline = compile_pipeline(config.definition)

    if args.format == "dot":
        with open("graph.dot", "w") as f:
            f.write(to_dot(extract_graph(pipeline)))
        report.info("Generated graph.dot")
        dot = shutil.which("dot")
        if dot is None:
            report.info("'dot' command not found, cannot generate graph.png")
            return
        subprocess.run([dot, "-Tpng", "graph.dot", "-o", "graph.png"], check=False)
        report.info("Generated graph.png")
        return

    print("\nPipeline graph:\n")
    for line in render_tree(pipeline, color=color_enabled()):
        print(line)


def cmd_run(args) -> None:
    opts = RunOptions(
        target=args.target,
        tag=args.tag,
        output=args.output,
        no_cache=args.no_cache,
        no_cache_filter=list(args.no_cache_filter or []),
        args=list(args.arg or []),
        progress=args.progress,
        ssh=args.ssh,
    )
    # rejected before loading anything or calling docker
    validate_run_options(opts)

    config = _pipeline_config(args)
    pipeline = compile_pipeline(config.definition)
    execute_run(pipeline, config, opts)


def cmd_shell(args) -> None:
    opts = ShellOptions(
        target=args.target,
        host=args.host,
        ssh=args.ssh,
        args=list(args.arg or []),
    )
    config = _pipeline_config(args)
    pipeline = compile_pipeline(config.definition)
    execute_shell(pipeline, config, opts, list(args.cmd_args))


def cmd_cache(args) -> None:
    project = load_config(args.manifest, fetch=False)

    if args.action == "info":
        print("\nPipelines:")
    elif args.action == "update":
        print("\nUpdating remote git pipelines cache...")
    else:
        print("\nClearing remote git pipelines cache...")

    for alias, config in project.pipelines.items():
        source = config.source
        if not source.is_git:
            if args.action == "info":
                print(f"  - {alias}: local pipeline {source.path}")
            continue

        label = f"  - {alias}: git pipeline {source.git}@{source.ref}"
        checkout_dir = pipeline_checkout_dir(source.git, source.ref)
        if args.action == "info":
            status = f"CACHED {checkout_dir}" if os.path.isdir(checkout_dir) else "NOT CACHED"
        elif args.action == "update":
            updated = update_checkout(source.git, source.ref)
            status = f"UPDATED {checkout_dir}" if updated else "NOT CACHED"
        else:
            status = f"CLEARED {clear_checkout(source.git, source.ref)}"
        print(f"{label}\n    {status}")


def build_parser(settings=None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pix",
        description="Pix — Dockerfile pipelines for buildx",
    )
    parser.add_argument("--version", "-V", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("--manifest", default=".pix.yaml", help="Project manifest path")
    sub = parser.add_subparsers(dest="command")

    # pix ls
    ls_parser = sub.add_parser("ls", help="List the project's pipelines")
    ls_parser.add_argument("pipeline", nargs="?", default=None)
    ls_parser.add_argument("--verbose", action="store_true", help="Show pipeline details")
    ls_parser.add_argument("--hidden", action="store_true", help="Show also private targets")

    # pix graph
    graph_parser = sub.add_parser("graph", help="Print the pipeline stage graph")
    graph_parser.add_argument("pipeline")
    graph_parser.add_argument("--format", choices=["pretty", "dot"], default="pretty",
                              help='"dot" writes graph.dot (and graph.png if dot is installed)')

    # pix run
    run_parser = sub.add_parser("run", help="Run a pipeline")
    run_parser.add_argument("pipeline")
    run_parser.add_argument("--output", action="store_true",
                            help="Export the targets outputs under .pipeline/output")
    run_parser.add_argument("--target", default=None,
                            help="Run a specific target (default: the pipeline default targets)")
    run_parser.add_argument("--tag", default=None, help="Tag the TARGET docker image")
    run_parser.add_argument("--no-cache", action="store_true", help="Do not use the build cache")
    run_parser.add_argument("--no-cache-filter", action="append", metavar="TARGET",
                            help="Do not cache the given target (repeatable)")
    run_parser.add_argument("--arg", action="append", metavar="KEY=VALUE",
                            help="Set a pipeline ARG (repeatable)")
    run_parser.add_argument("--progress", default="auto",
                            choices=["auto", "plain", "tty", "rawjson"])
    run_parser.add_argument("--ssh", action="store_true", help="Forward the SSH agent to the build")

    # pix shell
    shell_parser = sub.add_parser("shell", help="Shell into a pipeline target")
    shell_parser.add_argument("pipeline")
    shell_parser.add_argument("cmd_args", nargs=argparse.REMAINDER, metavar="COMMAND",
                              help="One-off command to run in the shell")
    shell_parser.add_argument("--target", default=None, help="The stage to start the shell from")
    shell_parser.add_argument("--host", action="store_true",
                              help="Bind mount the current working directory")
    shell_parser.add_argument("--ssh", action="store_true", help="Forward the SSH agent")
    shell_parser.add_argument("--arg", action="append", metavar="KEY=VALUE",
                              help="Set a pipeline ARG (repeatable)")

    # pix cache
    cache_parser = sub.add_parser("cache", help="Remote pipelines cache management")
    cache_parser.add_argument("action", choices=["info", "update", "clear"])

    if settings is not None:
        for name, sub_parser in (("ls", ls_parser), ("graph", graph_parser),
                                 ("run", run_parser), ("shell", shell_parser)):
            defaults = settings.defaults_for(name)
            if defaults:
                sub_parser.set_defaults(**defaults)
    return parser


def main(argv: list[str] | None = None) -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        report.error(f"Settings error: {e}")
        sys.exit(1)
    apply_env(settings)

    parser = build_parser(settings)
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "ls":
            cmd_ls(args)
        elif args.command == "graph":
            cmd_graph(args)
        elif args.command == "run":
            cmd_run(args)
        elif args.command == "shell":
            cmd_shell(args)
        elif args.command == "cache":
            cmd_cache(args)
    except (ConfigError, DefinitionError) as e:
        report.error(f"Config error: {e}")
        sys.exit(1)
    except (NoStageDefined, DuplicateStage) as e:
        report.error(f"Pipeline definition error: {e}")
        sys.exit(1)
    except PipelineError as e:
        report.error(str(e))
        sys.exit(1)
    except DockerError as e:
        report.error(str(e))
        sys.exit(1)
    except BuildFailed as e:
        report.error(str(e))
        sys.exit(e.status)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
