"""Unit tests for the data models (pwa_validator.models).

Tests cover:
- Finding severity/category coupling, immutability and id keys
- AppliedFix confidence bounds
- BuildTestResult.success
- ValidationResult.success_rate and JSON persistence
- compute_final_status
- ProjectTree loading, cloning and writing
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from pwa_validator.models import (
    AppliedFix,
    BuildTestResult,
    FinalStatus,
    Finding,
    FindingCategory,
    IssueKind,
    ProjectMetadata,
    ProjectTree,
    Severity,
    ValidationResult,
    compute_final_status,
    finding_id,
)


def _finding(category: FindingCategory = FindingCategory.STRUCTURAL, key: str | None = None) -> Finding:
    severity = Severity.ERROR if category is FindingCategory.STRUCTURAL else Severity.WARNING
    return Finding(
        id=finding_id("missing-manifest", "public/manifest.json", key),
        rule_id="missing-manifest",
        kind=IssueKind.MANIFEST,
        category=category,
        file="public/manifest.json",
        message="Manifest missing",
        severity=severity,
    )


# ---------------------------------------------------------------------------
# Finding
# ---------------------------------------------------------------------------


class TestFinding:
    @pytest.mark.unit
    def test_structural_finding_is_error(self):
        assert _finding().severity is Severity.ERROR
        assert _finding().is_error

    @pytest.mark.unit
    def test_structural_finding_cannot_be_warning(self):
        with pytest.raises(ValidationError):
            Finding(
                id="missing-manifest@public/manifest.json",
                rule_id="missing-manifest",
                kind=IssueKind.MANIFEST,
                category=FindingCategory.STRUCTURAL,
                file="public/manifest.json",
                message="Manifest missing",
                severity=Severity.WARNING,
            )

    @pytest.mark.unit
    def test_style_finding_cannot_be_error(self):
        with pytest.raises(ValidationError):
            Finding(
                id="explicit-any@src/App.tsx",
                rule_id="explicit-any",
                kind=IssueKind.BEST_PRACTICE,
                category=FindingCategory.STYLE,
                file="src/App.tsx",
                message="any",
                severity=Severity.ERROR,
            )

    @pytest.mark.unit
    def test_finding_is_frozen(self):
        finding = _finding()
        with pytest.raises(ValidationError):
            finding.auto_fixable = True

    @pytest.mark.unit
    def test_model_copy_supersedes_without_mutating(self):
        finding = _finding()
        updated = finding.model_copy(update={"auto_fixable": True})
        assert updated.auto_fixable is True
        assert finding.auto_fixable is False

    @pytest.mark.unit
    def test_key_is_parsed_from_id(self):
        assert _finding(key="react-router-dom").key == "react-router-dom"
        assert _finding().key is None

    @pytest.mark.unit
    def test_finding_id_format(self):
        assert finding_id("missing-dependency", "package.json", "vite") == "missing-dependency@package.json#vite"
        assert finding_id("missing-manifest", "public/manifest.json") == "missing-manifest@public/manifest.json"


# ---------------------------------------------------------------------------
# AppliedFix / BuildTestResult
# ---------------------------------------------------------------------------


class TestAppliedFix:
    @pytest.mark.unit
    @pytest.mark.parametrize("confidence", [-0.1, 1.01])
    def test_confidence_out_of_range_rejected(self, confidence: float):
        with pytest.raises(ValidationError):
            AppliedFix(
                finding_id="x@y",
                kind=IssueKind.SYNTAX,
                file="y",
                description="d",
                strategy="s",
                confidence=confidence,
            )

    @pytest.mark.unit
    def test_bounds_accepted(self):
        for confidence in (0.0, 1.0):
            fix = AppliedFix(
                finding_id="x@y", kind=IssueKind.SYNTAX, file="y",
                description="d", strategy="s", confidence=confidence,
            )
            assert fix.confidence == confidence


class TestBuildTestResult:
    @pytest.mark.unit
    def test_success_requires_install_and_build(self):
        assert BuildTestResult(install_success=True, build_success=True).success is True
        assert BuildTestResult(install_success=True, build_success=False).success is False
        assert BuildTestResult(install_success=False, build_success=False).success is False

    @pytest.mark.unit
    def test_dev_server_does_not_affect_success(self):
        result = BuildTestResult(install_success=True, build_success=True, dev_server_success=False)
        assert result.success is True


# ---------------------------------------------------------------------------
# ValidationResult
# ---------------------------------------------------------------------------


class TestValidationResult:
    @pytest.mark.unit
    def test_success_rate_is_100_when_nothing_happened(self):
        assert ValidationResult().success_rate == 100.0

    @pytest.mark.unit
    def test_success_rate_counts_fixed_and_prevented(self):
        result = ValidationResult(auto_fixed_count=2, prevented_issues_count=1, errors=[_finding()])
        assert result.success_rate == 75.0

    @pytest.mark.unit
    def test_success_rate_zero_when_nothing_handled(self):
        assert ValidationResult(errors=[_finding()]).success_rate == 0.0

    @pytest.mark.unit
    def test_json_includes_computed_success_rate(self):
        data = json.loads(ValidationResult(auto_fixed_count=1).to_json())
        assert data["success_rate"] == 100.0
        assert data["final_status"] == "PROCESSING"

    @pytest.mark.unit
    def test_save_creates_parent_directories(self, tmp_path: Path):
        target = tmp_path / "reports" / "result.json"
        ValidationResult(run_id="abc").save(target)
        assert json.loads(target.read_text())["run_id"] == "abc"


class TestComputeFinalStatus:
    @pytest.mark.unit
    def test_ready_without_errors_or_build(self):
        assert compute_final_status([], None) is FinalStatus.READY_TO_USE

    @pytest.mark.unit
    def test_errors_need_attention(self):
        assert compute_final_status([_finding()], None) is FinalStatus.NEEDS_ATTENTION

    @pytest.mark.unit
    def test_failed_build_needs_attention(self):
        build = BuildTestResult(install_success=True, build_success=False)
        assert compute_final_status([], build) is FinalStatus.NEEDS_ATTENTION

    @pytest.mark.unit
    def test_successful_build_is_ready(self):
        build = BuildTestResult(install_success=True, build_success=True)
        assert compute_final_status([], build) is FinalStatus.READY_TO_USE


# ---------------------------------------------------------------------------
# ProjectTree
# ---------------------------------------------------------------------------


class TestProjectTree:
    @pytest.mark.unit
    def test_from_directory_skips_dependencies_and_binaries(self, tmp_path: Path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.tsx").write_text("console.log(1);\n")
        (tmp_path / "node_modules" / "react").mkdir(parents=True)
        (tmp_path / "node_modules" / "react" / "index.js").write_text("x")
        (tmp_path / "public").mkdir()
        (tmp_path / "public" / "icon.png").write_bytes(b"\x89PNG\r\n")

        tree = ProjectTree.from_directory(tmp_path)

        assert tree.paths() == ["src/main.tsx"]
        assert tree.assets == ["public/icon.png"]
        assert tree.exists("public/icon.png")
        assert not tree.has("public/icon.png")
        assert tree.metadata.project_name == tmp_path.name

    @pytest.mark.unit
    def test_from_directory_missing_raises(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            ProjectTree.from_directory(tmp_path / "nope")

    @pytest.mark.unit
    def test_clone_is_deep(self):
        tree = ProjectTree(files={"a.txt": "1"}, metadata=ProjectMetadata(features=["auth"]))
        copy = tree.clone()
        copy.files["a.txt"] = "2"
        copy.metadata.features.append("chat")
        assert tree.files["a.txt"] == "1"
        assert tree.metadata.features == ["auth"]

    @pytest.mark.unit
    def test_write_to_only_selected(self, tmp_path: Path):
        tree = ProjectTree(files={"a/b.txt": "b", "c.txt": "c"})
        written = tree.write_to(tmp_path, only={"a/b.txt"})
        assert written == [tmp_path / "a" / "b.txt"]
        assert (tmp_path / "a" / "b.txt").read_text() == "b"
        assert not (tmp_path / "c.txt").exists()
