"""Shared utility functions for the PWA Validator.

Provides async command execution, dev-server process handling, HTTP
health-check polling, name sanitising, JSON helpers, and Rich-based console
reporting.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


def _merge_env(env: dict[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    return {**os.environ, **env}


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a command asynchronously and capture its output.

    Args:
        cmd: Program and arguments.
        cwd: Working directory for the child process.
        timeout: Maximum wall-clock seconds before the process is killed.
        env: Optional extra environment variables merged on top of ``os.environ``.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple. A timed-out command yields
        returncode ``-1`` and a timeout message on stderr. A program that
        cannot be started yields returncode ``127``.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=_merge_env(env),
        )
    except (FileNotFoundError, PermissionError) as exc:
        return (127, "", f"Could not start {' '.join(cmd)}: {exc}")

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return (-1, "", f"Command timed out after {timeout:.0f}s: {' '.join(cmd)}")

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


async def start_process(
    cmd: list[str],
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
) -> asyncio.subprocess.Process:
    """Start a long-running process (e.g. a dev server).

    Stdout is discarded since nothing reads it while the process runs; stderr
    is kept for :func:`stop_process`.
    """
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=_merge_env(env),
    )


async def stop_process(process: asyncio.subprocess.Process, grace: float = 5.0) -> str:
    """Terminate *process* and return whatever it wrote to stderr.

    The process gets *grace* seconds to exit after ``terminate`` before it is
    killed.
    """
    if process.returncode is None:
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()

    stderr = b""
    if process.stderr is not None:
        try:
            stderr = await asyncio.wait_for(process.stderr.read(), timeout=grace)
        except asyncio.TimeoutError:
            stderr = b""
    return stderr.decode("utf-8", errors="replace").strip()


# ---------------------------------------------------------------------------
# Health-check polling
# ---------------------------------------------------------------------------


async def wait_for_health(
    url: str,
    timeout: float = 60,
    interval: float = 1.0,
    process: Optional[asyncio.subprocess.Process] = None,
) -> bool:
    """Poll *url* until it responds with HTTP 200 or *timeout* elapses.

    When *process* is given, polling stops early as soon as the process exits,
    since a dead dev server will never answer.

    Returns:
        ``True`` if a 200 response was received within the timeout window.
    """
    deadline = time.monotonic() + timeout

    async with httpx.AsyncClient(timeout=httpx.Timeout(5.0, connect=3.0)) as client:
        while time.monotonic() < deadline:
            if process is not None and process.returncode is not None:
                return False
            try:
                response = await client.get(url)
                if response.status_code == 200:
                    return True
            except httpx.HTTPError:
                # Not listening yet.
                pass

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval, remaining))

    return False


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary project name to a valid npm package name.

    * Lowercases the input.
    * Replaces spaces and characters other than ``a-z 0-9 - . _ ~`` with hyphens.
    * Collapses consecutive hyphens and strips leading/trailing ``-``, ``.``
      and ``_`` (npm names cannot start with a dot or underscore).

    Examples::

        sanitize_name("Joe's Pizza Shop") -> "joe-s-pizza-shop"
        sanitize_name("  .Hidden App ") -> "hidden-app"
    """
    result = re.sub(r"[^a-z0-9\-._~]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    result = result.strip("-._")
    return result or "pwa-app"


_NPM_NAME_RE = re.compile(r"^(?:@[a-z0-9\-~][a-z0-9\-._~]*/)?[a-z0-9\-~][a-z0-9\-._~]*$")


def is_valid_package_name(name: str) -> bool:
    """Return ``True`` if *name* is acceptable to npm (scoped names included)."""
    return len(name) <= 214 and bool(_NPM_NAME_RE.match(name))


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def parse_json_object(text: str) -> Optional[dict[str, Any]]:
    """Parse *text* as JSON and return it only if it is an object."""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def dump_json(data: Any) -> str:
    """Serialise *data* the way generated descriptors are written."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0.0s"

    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.1f}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


PHASE_COLORS: dict[str, str] = {
    "prevention": "bright_cyan",
    "detection": "bright_yellow",
    "autofix": "bright_magenta",
    "final": "bright_green",
}


def print_phase_header(index: int, name: str) -> None:
    """Print a full-width rule announcing a pipeline phase."""
    color = PHASE_COLORS.get(name, "white")
    console.print(
        Rule(
            f"[bold {color}] Phase {index}: {name.upper()} [/bold {color}]",
            style=color,
        )
    )


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
