"""Pydantic v2 models for the PWA validation pipeline.

Defines the project tree handed over by the generator, the findings produced
by detection, the fixes applied by the auto-fix engine, the build-test outcome,
and the terminal ``ValidationResult`` consumed by presentation layers.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """Finding severity. Errors block a successful build, warnings do not."""
    ERROR = "error"
    WARNING = "warning"


class FindingCategory(str, Enum):
    """Structural findings violate a required invariant; style findings are advisory."""
    STRUCTURAL = "structural"
    STYLE = "style"


class IssueKind(str, Enum):
    """What area of the project a finding concerns."""
    SYNTAX = "syntax"
    DEPENDENCY = "dependency"
    IMPORT = "import"
    BUILD = "build"
    STRUCTURE = "structure"
    MANIFEST = "manifest"
    NAMING = "naming"
    ACCESSIBILITY = "accessibility"
    SEO = "seo"
    BEST_PRACTICE = "best-practice"


class FinalStatus(str, Enum):
    """Terminal summary attached to a validation run."""
    READY_TO_USE = "READY_TO_USE"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    PROCESSING = "PROCESSING"
    ERROR = "ERROR"


class Phase(str, Enum):
    """The four ordered pipeline phases."""
    PREVENTION = "prevention"
    DETECTION = "detection"
    AUTOFIX = "autofix"
    FINAL = "final"


PHASE_ORDER: tuple[Phase, ...] = (Phase.PREVENTION, Phase.DETECTION, Phase.AUTOFIX, Phase.FINAL)

_SEVERITY_FOR_CATEGORY = {
    FindingCategory.STRUCTURAL: Severity.ERROR,
    FindingCategory.STYLE: Severity.WARNING,
}


def severity_for(category: FindingCategory) -> Severity:
    """Return the only severity a finding of *category* may carry."""
    return _SEVERITY_FOR_CATEGORY[category]


# ---------------------------------------------------------------------------
# Project tree
# ---------------------------------------------------------------------------

_SKIP_DIRS = {"node_modules", "__pycache__", ".git", "dist", "build", ".venv", "venv", ".cache"}

_BINARY_SUFFIXES = {
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".webp", ".avif", ".bmp",
    ".woff", ".woff2", ".ttf", ".otf", ".eot", ".mp3", ".mp4", ".zip", ".pdf",
}


class ProjectMetadata(BaseModel):
    """Generation metadata used to parameterise which catalog rules apply."""

    project_name: str = Field(default="pwa-app")
    framework: Literal["react", "vue"] = Field(default="react")
    typescript: bool = Field(default=True)
    features: list[str] = Field(default_factory=list, description="Selected feature ids, e.g. 'auth'")


class ProjectTree(BaseModel):
    """A materialised project: POSIX relative paths mapped to text content."""

    files: dict[str, str] = Field(default_factory=dict)
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)
    assets: list[str] = Field(
        default_factory=list, description="Binary files present in the project but not loaded as text"
    )

    def paths(self) -> list[str]:
        """All file paths in sorted order."""
        return sorted(self.files)

    def has(self, path: str) -> bool:
        return path in self.files

    def exists(self, path: str) -> bool:
        """True for text files and binary assets alike."""
        return path in self.files or path in self.assets

    def read(self, path: str) -> str:
        return self.files[path]

    def write(self, path: str, content: str) -> None:
        self.files[path] = content

    def clone(self) -> "ProjectTree":
        """Deep copy, so a run never mutates the caller's tree."""
        return self.model_copy(deep=True)

    @classmethod
    def from_directory(
        cls, root: str | Path, metadata: ProjectMetadata | None = None
    ) -> "ProjectTree":
        """Load every text file under *root*.

        Dependency, VCS and build-output directories are skipped, as are
        binary assets.  Raises ``FileNotFoundError`` when *root* is not a
        directory; other I/O errors propagate.
        """
        base = Path(root)
        if not base.is_dir():
            raise FileNotFoundError(f"Project directory not found: {base}")

        files: dict[str, str] = {}
        assets: list[str] = []
        for path in _walk(base):
            rel = path.relative_to(base).as_posix()
            if path.suffix.lower() in _BINARY_SUFFIXES:
                assets.append(rel)
                continue
            try:
                files[rel] = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                assets.append(rel)
        return cls(
            files=files,
            assets=assets,
            metadata=metadata or ProjectMetadata(project_name=base.name),
        )

    def write_to(self, root: str | Path, only: Optional[set[str]] = None) -> list[Path]:
        """Write the tree (or just the *only* paths) beneath *root*."""
        base = Path(root)
        written: list[Path] = []
        for rel in self.paths():
            if only is not None and rel not in only:
                continue
            target = base / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.files[rel], encoding="utf-8")
            written.append(target)
        return written


def _walk(root: Path) -> list[Path]:
    results: list[Path] = []
    for child in sorted(root.iterdir()):
        if child.is_dir():
            if child.name in _SKIP_DIRS:
                continue
            results.extend(_walk(child))
        elif child.is_file():
            results.append(child)
    return results


# ---------------------------------------------------------------------------
# Findings and fixes
# ---------------------------------------------------------------------------

class Finding(BaseModel):
    """A single detected issue tied to a file. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable id: rule_id@file[#key]")
    rule_id: str
    kind: IssueKind
    category: FindingCategory
    file: str
    message: str
    severity: Severity
    auto_fixable: bool = False
    suggested_fix: Optional[str] = None
    line: Optional[int] = None

    @model_validator(mode="after")
    def _severity_matches_category(self) -> "Finding":
        expected = severity_for(self.category)
        if self.severity is not expected:
            raise ValueError(
                f"{self.category.value} finding must have severity {expected.value!r}, "
                f"got {self.severity.value!r}"
            )
        return self

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def key(self) -> Optional[str]:
        """The ``#key`` suffix of the id, if the rule reported one."""
        rest = self.id[len(self.rule_id) + 1 + len(self.file):]
        return rest[1:] if rest.startswith("#") else None


def finding_id(rule_id: str, file: str, key: Optional[str] = None) -> str:
    """Build the stable id of a finding."""
    return f"{rule_id}@{file}#{key}" if key else f"{rule_id}@{file}"


class AppliedFix(BaseModel):
    """Record of one fix applied by the auto-fix engine."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    kind: IssueKind
    file: str
    description: str
    strategy: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    touched_files: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Build verification
# ---------------------------------------------------------------------------

class BuildTestResult(BaseModel):
    """Outcome of the install -> build -> dev-server verification."""

    install_success: bool = False
    build_success: bool = False
    dev_server_success: bool = False
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    time_taken_ms: int = Field(default=0, ge=0)
    stages_run: list[str] = Field(default_factory=list, description="Stages actually attempted, in order")

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        """A build test passes when install and build both succeeded."""
        return self.install_success and self.build_success


# ---------------------------------------------------------------------------
# Phase events
# ---------------------------------------------------------------------------

class PhaseEvent(BaseModel):
    """Progress notification emitted on a genuine phase transition."""

    run_id: str
    phase: Phase
    status: Literal["started", "completed", "failed", "cancelled", "skipped"]
    timestamp_ms: int
    duration_ms: Optional[int] = None


# ---------------------------------------------------------------------------
# Terminal result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Terminal record of a validation run."""

    run_id: str = ""
    is_valid: bool = False
    errors: list[Finding] = Field(default_factory=list)
    warnings: list[Finding] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    auto_fixed_count: int = Field(default=0, ge=0)
    prevented_issues_count: int = Field(default=0, ge=0)
    final_status: FinalStatus = FinalStatus.PROCESSING
    build_test: Optional[BuildTestResult] = None
    failed_phase: Optional[Phase] = None
    fault: Optional[str] = Field(default=None, description="Pipeline fault message when final_status is ERROR")
    cancelled: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def success_rate(self) -> float:
        """Share of known issues that were fixed or prevented, as a percentage."""
        handled = self.auto_fixed_count + self.prevented_issues_count
        total = handled + len(self.errors)
        if total == 0:
            return 100.0
        return round(handled / total * 100, 1)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    def save(self, path: Path) -> None:
        """Persist the result to a JSON file, creating parent directories as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")


def compute_final_status(errors: list[Finding], build_test: Optional[BuildTestResult]) -> FinalStatus:
    """READY_TO_USE iff no errors remain and any build test installed and built."""
    if errors:
        return FinalStatus.NEEDS_ATTENTION
    if build_test is not None and not build_test.success:
        return FinalStatus.NEEDS_ATTENTION
    return FinalStatus.READY_TO_USE
