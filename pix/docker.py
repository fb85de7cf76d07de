"""Docker CLI wrapper — ``docker buildx build`` and ``docker run``."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess

from pix import env, report
from pix.models import DockerOpt


DOCKER_DESKTOP_SSH_SOCKET = "/run/host-services/ssh-auth.sock"
DOCKER_SOCKET = "/var/run/docker.sock"


class DockerError(Exception):
    pass


def _docker() -> str:
    docker = shutil.which("docker")
    if docker is None:
        raise DockerError("Cannot run docker: 'docker' executable not found in PATH")
    return docker


def encode_opts(opts: list[DockerOpt]) -> list[str]:
    """Encode ``["load", ("build_arg", "A=1")]`` as ``["--load", "--build-arg", "A=1"]``."""

    def flag(key: str) -> str:
        key = key.replace("_", "-")
        return f"-{key}" if len(key) == 1 else f"--{key}"

    args: list[str] = []
    for opt in opts:
        if isinstance(opt, tuple):
            key, value = opt
            args.extend([flag(key), str(value)])
        else:
            args.append(flag(opt))
    return args


def _wait(proc: subprocess.Popen) -> int:
    try:
        proc.wait()
    except KeyboardInterrupt:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
        proc.wait()
        raise
    return proc.returncode


def _debug(cmd: list[str], dockerfile: str | None = None) -> None:
    report.debug(f"docker {cmd[1:]}")
    if dockerfile and os.path.isfile(dockerfile):
        with open(dockerfile) as f:
            report.debug(f.read())


# ── buildx ─────────────────────────────────────────────────

def buildx_builder() -> str | None:
    """Dedicated builder name when ``PIX_DOCKER_BUILDKIT_VERSION`` is set."""
    version = os.environ.get("PIX_DOCKER_BUILDKIT_VERSION")
    return f"pix-buildkit-{version}" if version else None


def setup_buildx() -> str | None:
    """Create the dedicated buildkit builder if missing. Returns its name."""
    builder = buildx_builder()
    if builder is None:
        return None

    docker = _docker()
    result = subprocess.run(
        [docker, "buildx", "inspect", "--builder", builder],
        capture_output=True, text=True,
    )
    if result.returncode == 0:
        return builder

    version = os.environ["PIX_DOCKER_BUILDKIT_VERSION"]
    report.internal(f"Creating docker buildx builder {builder} (buildkit {version}) ...")
    result = subprocess.run(
        [docker, "buildx", "create", "--bootstrap", "--name", builder,
         "--driver", "docker-container",
         "--driver-opt", f"image=moby/buildkit:{version}"],
        capture_output=True, text=True,
    )
    if result.returncode != 0:
        raise DockerError(f"Cannot create buildx builder {builder}:\n{result.stderr.strip()}")
    return builder


def build(opts: list[DockerOpt], ctx: str) -> int:
    """Run ``docker buildx build``; returns its exit status."""
    builder = setup_buildx()
    if builder:
        opts = [("builder", builder)] + list(opts)

    cmd = [_docker(), "buildx", "build"] + encode_opts(opts) + env.docker_build_opts() + [ctx]
    dockerfile = next((o[1] for o in opts if isinstance(o, tuple) and o[0] == "file"), None)
    _debug(cmd, dockerfile)

    return _wait(subprocess.Popen(cmd))


# ── run ────────────────────────────────────────────────────

def ssh_forward_opts() -> list[DockerOpt]:
    """Mount the host SSH agent socket into the container."""
    if platform.system() == "Darwin":
        report.debug("detected Darwin OS - assuming docker desktop SSH socket forwarding")
        ssh_sock = DOCKER_DESKTOP_SSH_SOCKET
    else:
        ssh_sock = os.environ.get("SSH_AUTH_SOCK")
        if not ssh_sock:
            report.debug("SSH socket NOT forwarded (SSH_AUTH_SOCK not set)")
            return []
        report.debug(f"forwarding SSH socket via {ssh_sock}")
    return [("env", f"SSH_AUTH_SOCK={ssh_sock}"), ("volume", f"{ssh_sock}:{ssh_sock}")]


def docker_outside_of_docker_opts() -> list[DockerOpt]:
    return [("volume", f"{DOCKER_SOCKET}:{DOCKER_SOCKET}")]


def run(image: str, opts: list[DockerOpt], args: list[str], ssh: bool = False) -> int:
    """Run ``docker run``; returns its exit status."""
    opts = list(opts)
    if ssh:
        opts.extend(ssh_forward_opts())
    opts.extend(docker_outside_of_docker_opts())

    cmd = [_docker(), "run"] + encode_opts(opts) + env.docker_run_opts() + [image] + list(args)
    _debug(cmd)

    return _wait(subprocess.Popen(cmd))
