"""PWA Validator pipeline coordinator.

Runs the four validation phases in order over a private copy of the tree:

Phase 1: PREVENTION -- always-safe normalisations before any detection.
Phase 2: DETECTION  -- rule-based scan producing ordered findings.
Phase 3: AUTOFIX    -- apply catalog fixes and confirm by re-detection.
Phase 4: FINAL      -- optional install/build/dev-server test, then aggregation.

Usage::

    python -m pwa_validator.coordinator ./my-pwa
    python -m pwa_validator.coordinator ./my-pwa --features auth,payments --skip-build
"""

from __future__ import annotations

import asyncio
import inspect
import sys
import threading
import time
import traceback
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Literal, Optional, Union

from rich.panel import Panel
from rich.table import Table

from pwa_validator.autofix import AutoFixEngine
from pwa_validator.build_verifier import BuildVerifier
from pwa_validator.catalog import IssueCatalog, default_catalog
from pwa_validator.config import ValidateOptions, ValidatorConfig
from pwa_validator.detector import IssueDetector
from pwa_validator.models import (
    PHASE_ORDER,
    AppliedFix,
    BuildTestResult,
    FinalStatus,
    Finding,
    Phase,
    PhaseEvent,
    ProjectMetadata,
    ProjectTree,
    ValidationResult,
    compute_final_status,
)
from pwa_validator.prevention import PreventionScanner
from pwa_validator.utils import (
    console,
    format_duration,
    print_error,
    print_phase_header,
    print_success,
    print_summary_table,
    print_warning,
)

EventCallback = Callable[[PhaseEvent], Union[None, Awaitable[None]]]

# ---------------------------------------------------------------------------
# Exceptions and run objects
# ---------------------------------------------------------------------------


class PipelineFault(Exception):
    """Raised when a phase fails in a way the pipeline cannot recover from."""

    def __init__(self, phase: Phase, message: str) -> None:
        self.phase = phase
        super().__init__(f"Phase {phase.value}: {message}")


class CancellationToken:
    """Cooperative cancellation, checked at phase boundaries.

    ``cancel`` may be called from any thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ValidationRun:
    """Everything one validation run produced."""

    run_id: str
    tree: ProjectTree
    result: ValidationResult = field(default_factory=ValidationResult)
    events: list[PhaseEvent] = field(default_factory=list)
    phase: Optional[Phase] = None
    state: Literal["processing", "complete", "error", "cancelled"] = "processing"


@dataclass
class _Progress:
    """Intermediate values collected while the phases run."""

    prevented: int = 0
    prevention_rules: list[str] = field(default_factory=list)
    findings: Optional[list[Finding]] = None
    remaining: Optional[list[Finding]] = None
    applied: list[AppliedFix] = field(default_factory=list)
    build_test: Optional[BuildTestResult] = None

    @property
    def best_findings(self) -> list[Finding]:
        if self.remaining is not None:
            return self.remaining
        return self.findings or []


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ValidationCoordinator:
    """Drives the validation phases and aggregates the terminal result.

    The coordinator itself holds no per-run state, so one instance may serve
    concurrent runs.  The catalog is shared read-only.
    """

    def __init__(
        self,
        config: Optional[ValidatorConfig] = None,
        catalog: Optional[IssueCatalog] = None,
    ) -> None:
        self.config = config or ValidatorConfig()
        self.catalog = catalog or default_catalog()
        self.scanner = PreventionScanner()
        self.detector = IssueDetector(catalog=self.catalog, config=self.config.detection)
        self.fixer = AutoFixEngine(catalog=self.catalog, detector=self.detector, config=self.config.fix)
        self.verifier = BuildVerifier(config=self.config.build)

    async def run(
        self,
        tree: ProjectTree,
        options: Optional[ValidateOptions] = None,
        *,
        on_event: Optional[EventCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ValidationRun:
        """Validate and remediate a copy of *tree*.

        Never raises for pipeline failures: an unexpected exception in a phase
        yields ``final_status = ERROR`` with everything collected so far.
        Cancellation yields ``final_status = PROCESSING`` and ``cancelled``.
        """
        options = options or ValidateOptions()
        run = ValidationRun(run_id=uuid.uuid4().hex[:12], tree=tree.clone())
        progress = _Progress()
        run_start = time.monotonic()

        for index, phase in enumerate(PHASE_ORDER, start=1):
            if cancel_token is not None and cancel_token.cancelled:
                await self._emit(run, on_event, phase, "cancelled")
                run.state = "cancelled"
                run.result = self._aggregate(run, progress, cancelled=True)
                print_warning(f"Run {run.run_id} cancelled before phase {phase.value}")
                return run

            run.phase = phase
            print_phase_header(index, phase.value)

            if phase is Phase.FINAL and not options.run_build_test:
                console.print("  [dim]Build test skipped[/dim]")
                await self._emit(run, on_event, phase, "skipped")
                continue

            await self._emit(run, on_event, phase, "started")
            phase_start = time.monotonic()
            try:
                await self._run_phase(phase, run, progress, options)
            except Exception as exc:
                elapsed = time.monotonic() - phase_start
                fault = exc if isinstance(exc, PipelineFault) else PipelineFault(phase, f"{type(exc).__name__}: {exc}")
                await self._emit(run, on_event, phase, "failed", int(elapsed * 1000))
                print_error(f"Phase {phase.value} FAILED after {format_duration(elapsed)}: {exc}")
                console.print(f"[dim]{traceback.format_exc()}[/dim]")
                run.state = "error"
                run.result = self._aggregate(run, progress, fault=fault)
                return run

            elapsed = time.monotonic() - phase_start
            await self._emit(run, on_event, phase, "completed", int(elapsed * 1000))
            print_success(f"Phase {phase.value} completed in {format_duration(elapsed)}")

        run.state = "complete"
        run.result = self._aggregate(run, progress)
        console.print(
            f"[dim]Run {run.run_id} finished in {format_duration(time.monotonic() - run_start)}[/dim]"
        )
        return run

    async def stream(
        self,
        tree: ProjectTree,
        options: Optional[ValidateOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Union[PhaseEvent, ValidationRun]]:
        """Yield each ``PhaseEvent`` as it happens, then the finished run."""
        queue: asyncio.Queue[Optional[PhaseEvent]] = asyncio.Queue()
        task = asyncio.create_task(
            self.run(tree, options, on_event=queue.put_nowait, cancel_token=cancel_token)
        )
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            yield task.result()
        finally:
            if not task.done():
                task.cancel()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_phase(
        self,
        phase: Phase,
        run: ValidationRun,
        progress: _Progress,
        options: ValidateOptions,
    ) -> None:
        if phase is Phase.PREVENTION:
            fired = await asyncio.to_thread(self.scanner.apply_rules, run.tree)
            progress.prevention_rules = fired
            progress.prevented = len(fired)
            for name in fired:
                console.print(f"  [green]+[/green] {name}")
            console.print(f"  {len(fired)} prevention rule(s) applied")

        elif phase is Phase.DETECTION:
            progress.findings = await self.detector.detect(run.tree)
            errors = sum(1 for f in progress.findings if f.is_error)
            fixable = sum(1 for f in progress.findings if f.auto_fixable)
            console.print(
                f"  {len(progress.findings)} finding(s): {errors} error(s), "
                f"{len(progress.findings) - errors} warning(s), {fixable} auto-fixable"
            )

        elif phase is Phase.AUTOFIX:
            report = await self.fixer.remediate(
                run.tree,
                progress.findings or [],
                max_concurrency=options.max_fix_concurrency,
                applied=progress.applied,
            )
            progress.remaining = report.remaining_findings
            for fix in report.applied_fixes:
                console.print(
                    f"  [green]+[/green] {fix.description} "
                    f"[dim]({fix.strategy}, confidence {fix.confidence:.2f})[/dim]"
                )
            console.print(
                f"  {report.fixed_count} fix(es) applied in {report.rounds} round(s), "
                f"{len(report.remaining_findings)} finding(s) remain"
            )

        elif phase is Phase.FINAL:
            progress.build_test = await self.verifier.verify(run.tree, timeout_ms=options.timeout_ms)

    # ------------------------------------------------------------------
    # Events and aggregation
    # ------------------------------------------------------------------

    async def _emit(
        self,
        run: ValidationRun,
        on_event: Optional[EventCallback],
        phase: Phase,
        status: str,
        duration_ms: Optional[int] = None,
    ) -> None:
        event = PhaseEvent(
            run_id=run.run_id,
            phase=phase,
            status=status,
            timestamp_ms=_now_ms(),
            duration_ms=duration_ms,
        )
        run.events.append(event)
        if on_event is None:
            return
        try:
            outcome = on_event(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            print_warning(f"Phase event listener raised {type(exc).__name__}: {exc}")

    def _aggregate(
        self,
        run: ValidationRun,
        progress: _Progress,
        *,
        fault: Optional[PipelineFault] = None,
        cancelled: bool = False,
    ) -> ValidationResult:
        fixed_ids = {fix.finding_id for fix in progress.applied}
        findings = [f for f in progress.best_findings if f.id not in fixed_ids]
        errors = [f for f in findings if f.is_error]
        warnings = [f for f in findings if not f.is_error]

        suggestions: list[str] = []
        for warning in warnings:
            if not warning.auto_fixable and warning.suggested_fix and warning.suggested_fix not in suggestions:
                suggestions.append(warning.suggested_fix)

        build_test = progress.build_test
        if fault is not None:
            status = FinalStatus.ERROR
            is_valid = False
        elif cancelled:
            status = FinalStatus.PROCESSING
            is_valid = False
        else:
            status = compute_final_status(errors, build_test)
            is_valid = not errors

        return ValidationResult(
            run_id=run.run_id,
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            applied_fixes=list(progress.applied),
            auto_fixed_count=len(progress.applied),
            prevented_issues_count=progress.prevented,
            final_status=status,
            build_test=build_test,
            failed_phase=fault.phase if fault is not None else None,
            fault=str(fault) if fault is not None else None,
            cancelled=cancelled,
        )


async def validate(
    tree: ProjectTree,
    options: Optional[ValidateOptions] = None,
    *,
    on_event: Optional[EventCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    config: Optional[ValidatorConfig] = None,
    catalog: Optional[IssueCatalog] = None,
) -> ValidationResult:
    """Validate *tree* and return the terminal result.

    The caller's tree is never modified; use ``ValidationCoordinator.run``
    to get hold of the remediated tree as well.
    """
    coordinator = ValidationCoordinator(config=config, catalog=catalog)
    run = await coordinator.run(tree, options, on_event=on_event, cancel_token=cancel_token)
    return run.result


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

_STATUS_STYLES = {
    FinalStatus.READY_TO_USE: "bold green",
    FinalStatus.NEEDS_ATTENTION: "bold yellow",
    FinalStatus.PROCESSING: "bold cyan",
    FinalStatus.ERROR: "bold red",
}


def print_result(result: ValidationResult) -> None:
    """Render a validation result on the console."""
    summary = {
        "Run": result.run_id,
        "Status": result.final_status.value,
        "Errors": str(len(result.errors)),
        "Warnings": str(len(result.warnings)),
        "Auto-fixed": str(result.auto_fixed_count),
        "Prevented": str(result.prevented_issues_count),
        "Success rate": f"{result.success_rate:.1f}%",
    }
    if result.build_test is not None:
        bt = result.build_test
        summary["Build test"] = (
            f"install={'ok' if bt.install_success else 'fail'} "
            f"build={'ok' if bt.build_success else 'fail'} "
            f"dev={'ok' if bt.dev_server_success else 'fail'} "
            f"({format_duration(bt.time_taken_ms / 1000)})"
        )
    print_summary_table(summary, title="Validation Summary")

    if result.errors or result.warnings:
        table = Table(title="Remaining Findings", show_header=True, header_style="bold cyan")
        table.add_column("Severity", no_wrap=True)
        table.add_column("Rule", style="dim")
        table.add_column("File")
        table.add_column("Message")
        for finding in [*result.errors, *result.warnings]:
            color = "red" if finding.is_error else "yellow"
            location = f"{finding.file}:{finding.line}" if finding.line else finding.file
            table.add_row(f"[{color}]{finding.severity.value}[/{color}]", finding.rule_id, location, finding.message)
        console.print(table)

    for suggestion in result.suggestions:
        console.print(f"  [cyan]>[/cyan] {suggestion}")

    if result.fault:
        print_error(f"Pipeline fault in phase {result.failed_phase.value if result.failed_phase else '?'}: {result.fault}")

    style = _STATUS_STYLES[result.final_status]
    console.print(Panel(f"[{style}]{result.final_status.value}[/{style}]", border_style=style.split()[-1]))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def infer_metadata(
    tree: ProjectTree,
    project_name: str,
    framework: Optional[str] = None,
    typescript: Optional[bool] = None,
    features: Optional[list[str]] = None,
) -> ProjectMetadata:
    """Fill in whatever the caller did not specify from the tree's contents."""
    if framework is None:
        uses_vue = any(p.endswith(".vue") for p in tree.files) or '"vue"' in tree.files.get("package.json", "")
        framework = "vue" if uses_vue else "react"
    if typescript is None:
        typescript = tree.has("tsconfig.json") or any(p.endswith((".ts", ".tsx")) for p in tree.files)
    return ProjectMetadata(
        project_name=project_name,
        framework=framework,
        typescript=typescript,
        features=features or [],
    )


def write_back(original: ProjectTree, remediated: ProjectTree, root: Path) -> list[Path]:
    """Write *remediated* over the project *original* was loaded from.

    Paths the run renamed or dropped are removed from disk first, so the
    old and new spellings of a file never sit side by side.  Renamed binary
    assets are moved.  Only changed text files are rewritten.
    """
    for path in sorted(set(original.files) - set(remediated.files)):
        (root / path).unlink(missing_ok=True)

    # Asset order is preserved by path normalisation.
    if len(original.assets) == len(remediated.assets):
        for old, new in zip(original.assets, remediated.assets):
            if old != new and (root / old).exists():
                target = root / new
                target.parent.mkdir(parents=True, exist_ok=True)
                (root / old).rename(target)

    changed = {
        path for path, content in remediated.files.items()
        if original.files.get(path) != content
    }
    return remediated.write_to(root, only=changed)


def main() -> None:
    """CLI entry point for ``pwa-validate``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="PWA Validator -- validate and auto-remediate a generated PWA project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  pwa-validate ./my-pwa\n"
            "  pwa-validate ./my-pwa --features auth,payments --skip-build\n"
            "  pwa-validate ./my-pwa --write --report report.json\n"
        ),
    )
    parser.add_argument("project_dir", help="Path to the generated project")
    parser.add_argument("--framework", choices=["react", "vue"], default=None,
                        help="Project framework (default: detected)")
    parser.add_argument("--typescript", action=argparse.BooleanOptionalAction, default=None,
                        help="Whether the project uses TypeScript (default: detected)")
    parser.add_argument("--features", default="",
                        help="Comma-separated selected features, e.g. auth,chat")
    parser.add_argument("--skip-build", action="store_true",
                        help="Skip the install/build/dev-server test")
    parser.add_argument("--timeout", type=int, default=None,
                        help="Build test budget in seconds (default: from config)")
    parser.add_argument("--write", action="store_true",
                        help="Write remediated files back into the project directory")
    parser.add_argument("--report", default=None,
                        help="Write the validation result as JSON to this path")
    parser.add_argument("--config", default=None,
                        help="Load configuration from a JSON file instead of PWA_* variables")

    args = parser.parse_args()

    project_dir = Path(args.project_dir)
    if not project_dir.is_dir():
        console.print(f"[bold red]Error:[/bold red] Project directory not found: {project_dir}")
        sys.exit(1)

    config = ValidatorConfig.load(Path(args.config)) if args.config else ValidatorConfig.from_env()
    if args.timeout is not None:
        if args.timeout < 1:
            console.print(f"[bold red]Error:[/bold red] Invalid timeout: {args.timeout}")
            sys.exit(1)
        config.build.timeout = args.timeout

    original = ProjectTree.from_directory(project_dir)
    original.metadata = infer_metadata(
        original,
        project_name=project_dir.resolve().name,
        framework=args.framework,
        typescript=args.typescript,
        features=[f.strip() for f in args.features.split(",") if f.strip()],
    )

    console.print(
        Panel(
            f"[bold bright_cyan]PWA Validator[/bold bright_cyan]\n"
            f"Project   : {project_dir.resolve()}\n"
            f"Framework : {original.metadata.framework}"
            f"{' + TypeScript' if original.metadata.typescript else ''}\n"
            f"Features  : {', '.join(original.metadata.features) or '(none)'}",
            title="[bold]Validation Start[/bold]",
            border_style="bright_cyan",
        )
    )

    options = ValidateOptions(
        run_build_test=not args.skip_build,
        timeout_ms=config.build.timeout * 1000,
        max_fix_concurrency=config.fix.max_concurrency,
    )
    coordinator = ValidationCoordinator(config=config)
    run = asyncio.run(coordinator.run(original, options))
    print_result(run.result)

    if args.write:
        written = write_back(original, run.tree, project_dir)
        console.print(f"  Wrote {len(written)} remediated file(s) to {project_dir}")

    if args.report:
        run.result.save(Path(args.report))
        console.print(f"  Report saved to {args.report}")

    if run.result.final_status is not FinalStatus.READY_TO_USE:
        sys.exit(1)


if __name__ == "__main__":
    main()
