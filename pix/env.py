"""Host environment probes: CI detection, platform, git project info, ids."""

from __future__ import annotations

import os
import platform
import shlex
import subprocess


def is_ci() -> bool:
    """True when running under a CI system (the ``CI`` variable is set)."""
    return os.environ.get("CI", "") != ""


def arch() -> str:
    """Docker platform architecture of the host.

    ``PIX_FORCE_PLATFORM_ARCH`` overrides detection (e.g. to build amd64
    images on an arm64 laptop).
    """
    forced = os.environ.get("PIX_FORCE_PLATFORM_ARCH")
    if forced:
        return forced
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "amd64"
    if machine in ("arm64", "aarch64"):
        return "arm64"
    return machine


def git_commit_sha(default: str = "") -> str:
    """Get current HEAD commit hash."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True,
        )
    except FileNotFoundError:
        return default
    return result.stdout.strip() if result.returncode == 0 else default


def git_project_name(default: str | None = None) -> str:
    """Basename of the git top-level directory (cwd when not in a repo)."""
    toplevel = default or os.getcwd()
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True, text=True,
        )
        if result.returncode == 0:
            toplevel = result.stdout.strip()
    except FileNotFoundError:
        pass
    return os.path.basename(toplevel.rstrip("/"))


def host_os() -> str:
    return platform.system()


def user_id() -> str:
    return str(os.getuid())


def group_id() -> str:
    return str(os.getgid())


def docker_run_opts() -> list[str]:
    """Extra ``docker run`` arguments from ``PIX_DOCKER_RUN_OPTS``."""
    return shlex.split(os.environ.get("PIX_DOCKER_RUN_OPTS", ""))


def docker_build_opts() -> list[str]:
    """Extra ``docker buildx build`` arguments from ``PIX_DOCKER_BUILD_OPTS``."""
    return shlex.split(os.environ.get("PIX_DOCKER_BUILD_OPTS", ""))
