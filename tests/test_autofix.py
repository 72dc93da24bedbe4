"""Unit tests for the auto-fix engine (pwa_validator.autofix).

Tests cover:
- Applying a single structural fix
- Withdrawing fixes that do not clear their finding
- Strategy exceptions recorded without aborting other fixes
- Each finding attempted at most once
- Per-file serialisation of concurrent fixes
- Multi-round remediation of a messy project
"""

from __future__ import annotations

import json
import threading
import time

import pytest

from pwa_validator.autofix import AutoFixEngine
from pwa_validator.catalog import FixStrategy, IssueCatalog, IssueRule, RuleHit, default_catalog
from pwa_validator.config import FixConfig
from pwa_validator.detector import IssueDetector
from pwa_validator.models import FindingCategory, IssueKind, ProjectTree


def _engine(catalog: IssueCatalog | None = None, **config) -> AutoFixEngine:
    catalog = catalog or default_catalog()
    return AutoFixEngine(catalog=catalog, detector=IssueDetector(catalog=catalog), config=FixConfig(**config))


async def _remediate(engine: AutoFixEngine, tree: ProjectTree, **kwargs):
    findings = await engine.detector.detect(tree)
    return await engine.remediate(tree, findings, **kwargs)


# ---------------------------------------------------------------------------
# Custom catalog pieces
# ---------------------------------------------------------------------------


def _todo_hits(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    return [
        RuleHit(file=path, key=str(number), message=f"TODO marker {number}")
        for number, line in enumerate(content.splitlines(), start=1)
        if "TODO" in line
    ]


TODO_RULE = IssueRule(
    "todo-marker",
    IssueKind.BEST_PRACTICE,
    FindingCategory.STRUCTURAL,
    _todo_hits,
    applies_to=lambda path, metadata: path.endswith(".txt"),
)


def _catalog_with(strategy: FixStrategy) -> IssueCatalog:
    return default_catalog().extend(rules=[TODO_RULE], strategies=[strategy])


# ---------------------------------------------------------------------------
# Single fixes
# ---------------------------------------------------------------------------


class TestSingleFix:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_manifest_created(self, tree_missing_manifest: ProjectTree):
        report = await _remediate(_engine(), tree_missing_manifest)

        assert report.fixed_count == 1
        fix = report.applied_fixes[0]
        assert fix.finding_id == "missing-manifest@public/manifest.json"
        assert fix.strategy == "create-manifest"
        assert fix.confidence == 1.0
        assert fix.touched_files == ["public/manifest.json"]
        assert report.remaining_findings == []
        assert report.rounds == 1

        manifest = json.loads(tree_missing_manifest.files["public/manifest.json"])
        assert manifest["display"] == "standalone"
        assert len(manifest["icons"]) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unfixable_finding_left_alone(self, tree_with_broken_package: ProjectTree):
        before = tree_with_broken_package.files["package.json"]
        report = await _remediate(_engine(), tree_with_broken_package)

        assert report.applied_fixes == []
        assert report.rounds == 0
        assert [f.rule_id for f in report.remaining_findings] == ["invalid-package-json"]
        assert tree_with_broken_package.files["package.json"] == before

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nothing_to_fix(self, clean_tree: ProjectTree):
        report = await _remediate(_engine(), clean_tree)
        assert report.fixed_count == 0
        assert report.remaining_findings == []


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailureHandling:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ineffective_fix_withdrawn(self, clean_tree: ProjectTree):
        noop = FixStrategy("noop", "todo-marker", 0.5, lambda finding, tree: "did nothing")
        clean_tree.files["notes.txt"] = "TODO: write docs\n"

        report = await _remediate(_engine(_catalog_with(noop)), clean_tree)

        assert report.applied_fixes == []
        (remaining,) = report.remaining_findings
        assert remaining.rule_id == "todo-marker"
        assert remaining.auto_fixable is False
        assert any("still present" in failure for failure in report.failures)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_raising_strategy_does_not_abort_others(self, tree_missing_manifest: ProjectTree):
        def explode(finding, tree):
            raise ValueError("cannot rewrite")

        broken = FixStrategy("explode", "todo-marker", 0.5, explode)
        tree_missing_manifest.files["notes.txt"] = "TODO\n"

        report = await _remediate(_engine(_catalog_with(broken)), tree_missing_manifest)

        assert [fix.strategy for fix in report.applied_fixes] == ["create-manifest"]
        assert [f.rule_id for f in report.remaining_findings] == ["todo-marker"]
        assert not report.remaining_findings[0].auto_fixable
        assert any("cannot rewrite" in failure for failure in report.failures)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ineffective_fix_rolled_back(self, clean_tree: ProjectTree):
        def scribble(finding, tree):
            tree.write(finding.file, tree.read(finding.file) + "GARBAGE\n")
            tree.write("notes.bak", "copy\n")
            return "scribbled"

        strategy = FixStrategy(
            "scribble", "todo-marker", 0.5, scribble,
            targets=lambda finding, tree: [finding.file, "notes.bak"],
        )
        clean_tree.files["notes.txt"] = "TODO: write docs\n"

        report = await _remediate(_engine(_catalog_with(strategy)), clean_tree)

        assert report.applied_fixes == []
        assert clean_tree.files["notes.txt"] == "TODO: write docs\n"
        assert not clean_tree.has("notes.bak")
        assert [f.id for f in report.remaining_findings] == ["todo-marker@notes.txt#1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_raising_strategy_rolled_back(self, clean_tree: ProjectTree):
        def half_done(finding, tree):
            tree.write(finding.file, "DONE\n")
            raise OSError("disk full")

        strategy = FixStrategy("half-done", "todo-marker", 0.5, half_done)
        clean_tree.files["notes.txt"] = "TODO\n"

        report = await _remediate(_engine(_catalog_with(strategy)), clean_tree)

        assert report.applied_fixes == []
        assert clean_tree.files["notes.txt"] == "TODO\n"
        assert any("disk full" in failure for failure in report.failures)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tree_only_holds_applied_changes(self, clean_tree: ProjectTree):
        def resolve(finding, tree):
            lines = tree.read(finding.file).split("\n")
            index = int(finding.key) - 1
            if "stubborn" in lines[index]:
                lines[index] += " !"
            else:
                lines[index] = lines[index].replace("TODO", "DONE")
            tree.write(finding.file, "\n".join(lines))
            return f"touched line {index + 1}"

        strategy = FixStrategy("resolve", "todo-marker", 0.5, resolve)
        clean_tree.files["notes.txt"] = "TODO stubborn\nTODO easy\n"

        report = await _remediate(_engine(_catalog_with(strategy)), clean_tree)

        kept = {fix.finding_id for fix in report.applied_fixes}
        assert "todo-marker@notes.txt#1" not in kept
        second = "DONE easy" if "todo-marker@notes.txt#2" in kept else "TODO easy"
        assert clean_tree.files["notes.txt"] == f"TODO stubborn\n{second}\n"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_each_finding_attempted_once(self, clean_tree: ProjectTree):
        calls: list[str] = []

        def record(finding, tree):
            calls.append(finding.id)
            return "recorded"

        strategy = FixStrategy("record", "todo-marker", 0.5, record)
        clean_tree.files["notes.txt"] = "TODO one\nTODO two\n"

        report = await _remediate(_engine(_catalog_with(strategy), max_rounds=5), clean_tree)

        assert sorted(calls) == ["todo-marker@notes.txt#1", "todo-marker@notes.txt#2"]
        assert report.rounds == 1
        assert len(report.remaining_findings) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_id_both_applied_and_remaining(self, messy_tree: ProjectTree):
        report = await _remediate(_engine(), messy_tree)
        applied = {fix.finding_id for fix in report.applied_fixes}
        remaining = {f.id for f in report.remaining_findings}
        assert not applied & remaining

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_applied_list_filled_in_place(self, tree_missing_manifest: ProjectTree):
        engine = _engine()
        sink: list = []
        findings = await engine.detector.detect(tree_missing_manifest)
        report = await engine.remediate(tree_missing_manifest, findings, applied=sink)
        assert report.applied_fixes is sink
        assert len(sink) == 1


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fixes_on_same_file_are_serialised(self, clean_tree: ProjectTree):
        lock = threading.Lock()
        active: dict[str, int] = {}
        peak: dict[str, int] = {}

        def slow_fix(finding, tree):
            with lock:
                active[finding.file] = active.get(finding.file, 0) + 1
                peak[finding.file] = max(peak.get(finding.file, 0), active[finding.file])
            time.sleep(0.02)
            line = int(finding.key)
            lines = tree.read(finding.file).split("\n")
            lines[line - 1] = lines[line - 1].replace("TODO", "DONE")
            tree.write(finding.file, "\n".join(lines))
            with lock:
                active[finding.file] -= 1
            return f"resolved line {line}"

        strategy = FixStrategy("resolve-todo", "todo-marker", 0.9, slow_fix)
        clean_tree.files["a.txt"] = "TODO 1\nTODO 2\nTODO 3\nTODO 4\n"
        clean_tree.files["b.txt"] = "TODO 1\nTODO 2\n"

        report = await _remediate(_engine(_catalog_with(strategy)), clean_tree, max_concurrency=4)

        assert report.fixed_count == 6
        assert report.remaining_findings == []
        assert peak == {"a.txt": 1, "b.txt": 1}
        assert "TODO" not in clean_tree.files["a.txt"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_target_fixed_once(self, vue_tree_missing_app: ProjectTree):
        report = await _remediate(_engine(), vue_tree_missing_app)

        created = [fix for fix in report.applied_fixes if "src/App.vue" in fix.touched_files]
        assert len(created) == 1
        assert vue_tree_missing_app.has("src/App.vue")
        assert vue_tree_missing_app.has("vite.config.ts")
        assert report.remaining_findings == []


# ---------------------------------------------------------------------------
# Multi-round remediation
# ---------------------------------------------------------------------------


class TestMessyProject:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_errors_resolved(self, messy_tree: ProjectTree):
        report = await _remediate(_engine(), messy_tree)

        assert [f for f in report.remaining_findings if f.is_error] == []
        assert report.rounds >= 2

        pkg = json.loads(messy_tree.files["package.json"])
        assert pkg["scripts"]["build"] == "vite build"
        assert "react-router-dom" in pkg["dependencies"]
        assert "vite" in pkg["devDependencies"]

        app = messy_tree.files["src/App.tsx"]
        assert app.startswith("import React from 'react';")
        assert 'className="app"' in app
        assert messy_tree.has("src/components/Header.tsx")
        assert messy_tree.has("src/App.css")
        assert messy_tree.has("public/manifest.json")
        assert messy_tree.has("vite.config.ts")

        html = messy_tree.files["index.html"]
        assert 'rel="manifest"' in html
        assert 'name="viewport"' in html

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_single_round_leaves_dependency_work(self, messy_tree: ProjectTree):
        report = await _remediate(_engine(max_rounds=1), messy_tree)

        assert report.rounds == 1
        remaining = {f.rule_id for f in report.remaining_findings}
        assert "missing-dependency" in remaining
        assert all(f.auto_fixable for f in report.remaining_findings if f.rule_id == "missing-dependency")
