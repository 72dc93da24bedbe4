"""Final verification -- install, build and start the remediated project.

The tree is written to a scratch directory and three stages run in order:
dependency install, production build, and a dev-server start that is probed
over HTTP and then stopped.  A stage only runs if the previous one passed.
Stage failures are recorded in the returned ``BuildTestResult``; they never
raise.
"""

from __future__ import annotations

import asyncio
import contextlib
import tempfile
import time
from pathlib import Path
from typing import Iterator, Optional

from pwa_validator.config import BuildConfig
from pwa_validator.models import BuildTestResult, ProjectTree
from pwa_validator.utils import (
    console,
    format_duration,
    run_command,
    start_process,
    stop_process,
    wait_for_health,
)

STAGE_INSTALL = "install"
STAGE_BUILD = "build"
STAGE_DEV_SERVER = "dev_server"


def collect_warnings(output: str) -> list[str]:
    """Lines of tool output that mention a warning."""
    return [line.strip() for line in output.splitlines() if "warn" in line.lower() and line.strip()]


class BuildVerifier:
    """Runs install -> build -> dev-server against a project tree."""

    def __init__(self, config: Optional[BuildConfig] = None) -> None:
        self.config = config or BuildConfig()

    async def verify(self, tree: ProjectTree, timeout_ms: Optional[int] = None) -> BuildTestResult:
        """Verify that *tree* installs, builds and serves.

        Args:
            tree: The remediated project.
            timeout_ms: Budget for the whole call.  Defaults to
                ``BuildConfig.timeout``.  A stage still running at the deadline
                is stopped and recorded as failed with a timeout message.

        Returns:
            A ``BuildTestResult`` whose ``time_taken_ms`` is the wall-clock
            duration of this call.
        """
        started = time.monotonic()
        budget = timeout_ms / 1000 if timeout_ms is not None else float(self.config.timeout)
        deadline = started + budget
        result = BuildTestResult()

        with self._workspace() as work_dir:
            await asyncio.to_thread(tree.write_to, work_dir)
            console.print(f"  [dim]Project materialised in {work_dir}[/dim]")

            result.install_success = await self._run_stage(
                STAGE_INSTALL, self.config.install_command, work_dir, deadline, result
            )
            if result.install_success:
                result.build_success = await self._run_stage(
                    STAGE_BUILD, self.config.build_command, work_dir, deadline, result
                )
            if result.build_success:
                result.dev_server_success = await self._start_dev_server(work_dir, deadline, result)

        result.time_taken_ms = int((time.monotonic() - started) * 1000)
        console.print(
            f"  Build test finished in {format_duration(result.time_taken_ms / 1000)} "
            f"(stages: {', '.join(result.stages_run) or 'none'})"
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        stage: str,
        command: list[str],
        work_dir: Path,
        deadline: float,
        result: BuildTestResult,
    ) -> bool:
        result.stages_run.append(stage)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            result.errors.append(f"{stage}: timed out before the stage could start")
            console.print(f"  [red]{stage} timed out[/red]")
            return False

        console.print(f"  Running {stage}: [bold]{' '.join(command)}[/bold]")
        returncode, stdout, stderr = await run_command(command, cwd=work_dir, timeout=remaining)
        result.warnings.extend(collect_warnings(f"{stdout}\n{stderr}"))

        if returncode == -1:
            result.errors.append(f"{stage}: timed out after {remaining:.1f}s: {stderr}")
            console.print(f"  [red]{stage} timed out[/red]")
            return False
        if returncode != 0:
            result.errors.append(f"{stage} failed (exit {returncode}): {stderr or stdout}")
            console.print(f"  [red]{stage} failed (exit {returncode})[/red]")
            return False

        console.print(f"  [green]+[/green] {stage} succeeded")
        return True

    async def _start_dev_server(self, work_dir: Path, deadline: float, result: BuildTestResult) -> bool:
        result.stages_run.append(STAGE_DEV_SERVER)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            result.errors.append(f"{STAGE_DEV_SERVER}: timed out before the stage could start")
            return False

        command = self.config.render_dev_command()
        url = self.config.dev_server_url
        console.print(f"  Starting dev server: [bold]{' '.join(command)}[/bold]")
        try:
            process = await start_process(command, cwd=work_dir)
        except (FileNotFoundError, PermissionError) as exc:
            result.errors.append(f"{STAGE_DEV_SERVER}: could not start: {exc}")
            return False

        exit_code: Optional[int] = None
        try:
            healthy = await wait_for_health(
                url,
                timeout=remaining,
                interval=self.config.health_interval,
                process=process,
            )
            exit_code = process.returncode
        finally:
            stderr = await stop_process(process)
        result.warnings.extend(collect_warnings(stderr))

        if not healthy:
            if exit_code is not None:
                reason = f"exited with code {exit_code} before answering"
            else:
                reason = f"did not respond at {url} within {remaining:.1f}s (timed out)"
            result.errors.append(f"{STAGE_DEV_SERVER}: {reason}" + (f": {stderr}" if stderr else ""))
            console.print(f"  [red]Dev server {reason}[/red]")
            return False

        console.print(f"  [green]+[/green] Dev server answered at {url}")
        return True

    # ------------------------------------------------------------------
    # Workspace
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _workspace(self) -> Iterator[Path]:
        if self.config.work_dir is not None:
            path = Path(self.config.work_dir)
            path.mkdir(parents=True, exist_ok=True)
            yield path
            return
        with tempfile.TemporaryDirectory(prefix="pwa-validate-") as tmp:
            yield Path(tmp)
