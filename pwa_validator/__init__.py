"""PWA Validator -- validation and auto-remediation for generated PWA projects.

Quick usage::

    from pwa_validator import ProjectTree, ValidateOptions, validate

    tree = ProjectTree.from_directory("./my-pwa")
    result = await validate(tree, ValidateOptions(run_build_test=False))
    print(result.final_status, result.success_rate)
"""

from pwa_validator.autofix import AutoFixEngine, FixReport
from pwa_validator.build_verifier import BuildVerifier
from pwa_validator.catalog import CatalogError, FixStrategy, IssueCatalog, IssueRule, default_catalog
from pwa_validator.config import ValidateOptions, ValidatorConfig
from pwa_validator.coordinator import (
    CancellationToken,
    PipelineFault,
    ValidationCoordinator,
    ValidationRun,
    validate,
)
from pwa_validator.detector import IssueDetector
from pwa_validator.models import (
    AppliedFix,
    BuildTestResult,
    FinalStatus,
    Finding,
    FindingCategory,
    IssueKind,
    Phase,
    PhaseEvent,
    ProjectMetadata,
    ProjectTree,
    Severity,
    ValidationResult,
)
from pwa_validator.prevention import PreventionScanner

__version__ = "0.1.0"

__all__ = [
    "AppliedFix",
    "AutoFixEngine",
    "BuildTestResult",
    "BuildVerifier",
    "CancellationToken",
    "CatalogError",
    "FinalStatus",
    "Finding",
    "FindingCategory",
    "FixReport",
    "FixStrategy",
    "IssueCatalog",
    "IssueDetector",
    "IssueKind",
    "IssueRule",
    "Phase",
    "PhaseEvent",
    "PipelineFault",
    "PreventionScanner",
    "ProjectMetadata",
    "ProjectTree",
    "Severity",
    "ValidateOptions",
    "ValidationCoordinator",
    "ValidationResult",
    "ValidationRun",
    "ValidatorConfig",
    "default_catalog",
    "validate",
]
