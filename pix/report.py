"""Console reporting — colored info/error/internal/debug messages."""

from __future__ import annotations

import os
import sys


# ── ANSI color constants ────────────────────────────────────

GREEN = "\033[32m"
CYAN = "\033[36m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
MAGENTA = "\033[35m"
RED = "\033[31m"
BOLD = "\033[1m"
DIM = "\033[2m"
UNDERLINE = "\033[4m"
RESET = "\033[0m"


_enabled = True


def enable() -> None:
    global _enabled
    _enabled = True


def disable() -> None:
    global _enabled
    _enabled = False


def color_enabled(stream=None) -> bool:
    """Check whether colored output should be used."""
    if os.environ.get("NO_COLOR") or os.environ.get("PIX_NO_COLOR"):
        return False
    stream = stream or sys.stdout
    return hasattr(stream, "isatty") and stream.isatty()


def debug_enabled() -> bool:
    return os.environ.get("PIX_DEBUG") == "true"


def colorize(text: str, color: str) -> str:
    """Wrap text in ANSI color codes."""
    return f"{color}{text}{RESET}"


def style(text: str, *codes: str) -> str:
    """Apply one or more ANSI codes when stdout supports color."""
    if not color_enabled():
        return text
    return colorize(text, "".join(codes))


def _write(message: str, color: str | None, stream) -> None:
    if not _enabled:
        return
    if color and color_enabled(stream):
        message = colorize(message, color)
    print(message, file=stream, flush=True)


def info(message: str) -> None:
    _write(message, None, sys.stdout)


def success(message: str) -> None:
    _write(message, GREEN, sys.stdout)


def error(message: str) -> None:
    _write(message, RED, sys.stderr)


def internal(message: str) -> None:
    """Pix's own bookkeeping (fetches, builder setup): dimmed."""
    _write(message, DIM, sys.stdout)


def debug(message: str) -> None:
    if debug_enabled():
        _write(message, DIM, sys.stdout)
