"""Detection phase -- turns catalog rule hits into ordered findings.

Per-file rules are evaluated in worker threads, bounded by
``DetectionConfig.max_concurrency``.  Results are sorted after collection,
so the output order never depends on scheduling.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from pwa_validator.catalog import IssueCatalog, IssueRule, RuleHit, default_catalog
from pwa_validator.config import DetectionConfig
from pwa_validator.models import Finding, ProjectTree, finding_id, severity_for


class IssueDetector:
    """Scans a project tree against an :class:`IssueCatalog`."""

    def __init__(
        self,
        catalog: Optional[IssueCatalog] = None,
        config: Optional[DetectionConfig] = None,
    ) -> None:
        self.catalog = catalog or default_catalog()
        self.config = config or DetectionConfig()

    async def detect(
        self,
        tree: ProjectTree,
        only_files: Optional[Iterable[str]] = None,
    ) -> list[Finding]:
        """Return every finding for *tree*, ordered by file, rule id and id.

        Args:
            tree: The project to scan.  It is only read.
            only_files: When given, per-file rules run on these files only and
                the result is restricted to findings on them.

        A rule that raises is a catalog fault and the exception propagates.
        """
        wanted = set(only_files) if only_files is not None else None
        paths = [p for p in tree.paths() if wanted is None or p in wanted]
        file_rules = [r for r in self.catalog.rules if r.scope == "file"]
        project_rules = [r for r in self.catalog.rules if r.scope == "project"]

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def scan_file(path: str) -> list[Finding]:
            async with semaphore:
                return await asyncio.to_thread(self._scan_file, tree, path, file_rules)

        batches = await asyncio.gather(
            asyncio.to_thread(self._scan_project, tree, project_rules),
            *(scan_file(path) for path in paths),
        )

        findings: dict[str, Finding] = {}
        for batch in batches:
            for finding in batch:
                if wanted is not None and finding.file not in wanted:
                    continue
                existing = findings.get(finding.id)
                if existing is None or (finding.line or 0) < (existing.line or 0):
                    findings[finding.id] = finding
        return sorted(findings.values(), key=lambda f: (f.file, f.rule_id, f.id))

    # ------------------------------------------------------------------
    # Rule evaluation (runs in worker threads)
    # ------------------------------------------------------------------

    def _scan_file(self, tree: ProjectTree, path: str, rules: list[IssueRule]) -> list[Finding]:
        content = tree.files.get(path)
        if content is None:
            return []
        results: list[Finding] = []
        for rule in rules:
            if rule.matches(path, tree.metadata):
                results.extend(self._to_finding(rule, hit, tree) for hit in rule.check(path, content, tree))
        return results

    def _scan_project(self, tree: ProjectTree, rules: list[IssueRule]) -> list[Finding]:
        results: list[Finding] = []
        for rule in rules:
            results.extend(self._to_finding(rule, hit, tree) for hit in rule.check(tree))
        return results

    def _to_finding(self, rule: IssueRule, hit: RuleHit, tree: ProjectTree) -> Finding:
        finding = Finding(
            id=finding_id(rule.rule_id, hit.file, hit.key),
            rule_id=rule.rule_id,
            kind=rule.kind,
            category=rule.category,
            file=hit.file,
            message=hit.message,
            severity=severity_for(rule.category),
            suggested_fix=hit.suggested_fix,
            line=hit.line,
        )
        if self.catalog.select_strategy(finding, tree) is not None:
            finding = finding.model_copy(update={"auto_fixable": True})
        return finding
