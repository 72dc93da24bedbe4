"""Auto-fix phase -- apply catalog strategies and confirm by re-detection.

For every auto-fixable finding the engine picks the highest-confidence
strategy whose precondition holds, applies it, and logs an ``AppliedFix``.
After each batch the detector is re-run on the touched files.  A fix that
did not clear its finding is rolled back and withdrawn, and the finding is
kept with ``auto_fixable`` forced off.  Each finding id is attempted at most
once.

Fixes on the same file are serialised by per-file locks (acquired in sorted
order); fixes on distinct files run concurrently under a semaphore.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from pwa_validator.catalog import FixStrategy, IssueCatalog, default_catalog
from pwa_validator.config import FixConfig
from pwa_validator.detector import IssueDetector
from pwa_validator.models import AppliedFix, Finding, ProjectTree
from pwa_validator.utils import console


@dataclass
class FixReport:
    """Outcome of :meth:`AutoFixEngine.remediate`."""

    tree: ProjectTree
    applied_fixes: list[AppliedFix] = field(default_factory=list)
    remaining_findings: list[Finding] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    rounds: int = 0

    @property
    def fixed_count(self) -> int:
        return len(self.applied_fixes)


@dataclass
class _Attempt:
    """An applied fix plus the content of its touched files before it ran."""

    fix: AppliedFix
    before: dict[str, Optional[str]]


def _restore(tree: ProjectTree, snapshot: dict[str, Optional[str]]) -> None:
    for path, content in snapshot.items():
        if content is None:
            tree.files.pop(path, None)
        else:
            tree.files[path] = content


class AutoFixEngine:
    """Applies fix strategies to detected findings."""

    def __init__(
        self,
        catalog: Optional[IssueCatalog] = None,
        detector: Optional[IssueDetector] = None,
        config: Optional[FixConfig] = None,
    ) -> None:
        self.catalog = catalog or default_catalog()
        self.detector = detector or IssueDetector(catalog=self.catalog)
        self.config = config or FixConfig()

    async def remediate(
        self,
        tree: ProjectTree,
        findings: list[Finding],
        *,
        max_concurrency: Optional[int] = None,
        applied: Optional[list[AppliedFix]] = None,
    ) -> FixReport:
        """Fix what can be fixed in *tree* (mutated in place).

        Args:
            tree: The project tree to repair.
            findings: Output of the detector for *tree*.
            max_concurrency: Upper bound on fixes applied at once; defaults
                to ``FixConfig.max_concurrency``.
            applied: Optional list that confirmed fixes are appended to as
                they are confirmed, so a caller keeps them even if a later
                step raises.

        Returns:
            A :class:`FixReport`.  No finding id is ever both in
            ``applied_fixes`` and ``remaining_findings``, and every change
            left in the tree belongs to a fix in ``applied_fixes``.
        """
        applied = applied if applied is not None else []
        report = FixReport(tree=tree, applied_fixes=applied)
        semaphore = asyncio.Semaphore(max_concurrency or self.config.max_concurrency)
        locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        attempted: set[str] = set()
        current = list(findings)

        for round_number in range(1, self.config.max_rounds + 1):
            batch = [f for f in current if f.auto_fixable and f.id not in attempted]
            if not batch:
                break
            report.rounds = round_number
            attempted.update(f.id for f in batch)

            log: list[_Attempt] = []
            await asyncio.gather(
                *(self._fix_one(tree, finding, semaphore, locks, report, log) for finding in batch)
            )

            touched = {f.file for f in batch}
            for attempt in log:
                touched.update(attempt.fix.touched_files)

            redetected = await self.detector.detect(tree, only_files=touched)
            still_present = {f.id for f in redetected}

            kept = self._roll_back_failed(tree, log, still_present, report)
            if len(kept) < len(log):
                redetected = await self.detector.detect(tree, only_files=touched)
            applied.extend(attempt.fix for attempt in kept)

            current = [f for f in current if f.file not in touched] + redetected
            current.sort(key=lambda f: (f.file, f.rule_id, f.id))

        remaining_ids = {f.id for f in current}
        # A later batch may reintroduce something an earlier batch fixed.
        applied[:] = [fix for fix in applied if fix.finding_id not in remaining_ids]

        report.remaining_findings = [
            f.model_copy(update={"auto_fixable": False}) if f.id in attempted and f.auto_fixable else f
            for f in current
        ]
        return report

    def _roll_back_failed(
        self,
        tree: ProjectTree,
        log: list[_Attempt],
        still_present: set[str],
        report: FixReport,
    ) -> list[_Attempt]:
        """Undo fixes that did not clear their finding; return the ones kept.

        *log* is in application order.  A later fix that touched a file an
        undone fix touched is undone too, since restoring the earlier
        snapshot would otherwise erase its edits.
        """
        undone: list[_Attempt] = []
        dirty: set[str] = set()
        kept: list[_Attempt] = []
        for attempt in log:
            fix = attempt.fix
            if fix.finding_id in still_present:
                report.failures.append(f"{fix.strategy}: {fix.finding_id} still present after fix")
                console.print(
                    f"  [yellow]Fix {fix.strategy} did not clear {fix.finding_id}; rolled back[/yellow]"
                )
            elif dirty.intersection(fix.touched_files):
                report.failures.append(f"{fix.strategy}: {fix.finding_id} rolled back with an earlier fix")
                console.print(f"  [yellow]Fix {fix.strategy} for {fix.finding_id} rolled back[/yellow]")
            else:
                kept.append(attempt)
                continue
            undone.append(attempt)
            dirty.update(fix.touched_files)

        for attempt in reversed(undone):
            _restore(tree, attempt.before)
        return kept

    # ------------------------------------------------------------------
    # Single fix
    # ------------------------------------------------------------------

    async def _fix_one(
        self,
        tree: ProjectTree,
        finding: Finding,
        semaphore: asyncio.Semaphore,
        locks: defaultdict[str, asyncio.Lock],
        report: FixReport,
        log: list[_Attempt],
    ) -> None:
        candidates = self.catalog.strategies_for(finding.rule_id)
        paths = {finding.file}
        for strategy in candidates:
            paths.update(strategy.targets(finding, tree))

        async with semaphore:
            async with contextlib.AsyncExitStack() as stack:
                for path in sorted(paths):
                    await stack.enter_async_context(locks[path])
                try:
                    attempt = await asyncio.to_thread(self._apply, tree, finding, sorted(paths))
                except Exception as exc:
                    report.failures.append(f"{finding.id}: {exc}")
                    console.print(f"  [red]Fix for {finding.id} failed: {exc}[/red]")
                    return
                if attempt is not None:
                    log.append(attempt)

    def _apply(self, tree: ProjectTree, finding: Finding, paths: list[str]) -> Optional[_Attempt]:
        strategy: Optional[FixStrategy] = self.catalog.select_strategy(finding, tree)
        if strategy is None:
            return None

        before = {path: tree.files.get(path) for path in paths}
        try:
            description = strategy.apply(finding, tree)
        except Exception:
            _restore(tree, before)
            raise
        touched = [path for path in paths if tree.files.get(path) != before[path]]

        fix = AppliedFix(
            finding_id=finding.id,
            kind=finding.kind,
            file=finding.file,
            description=description,
            strategy=strategy.name,
            confidence=strategy.confidence,
            touched_files=touched,
        )
        return _Attempt(fix=fix, before={path: before[path] for path in touched})
