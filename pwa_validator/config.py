"""PWA Validator configuration.

Centralised, typed configuration for the validation pipeline. All settings use
Pydantic v2 models so they can be validated at construction time and serialised
to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field


class DetectionConfig(BaseModel):
    """Tuning knobs for the issue detector."""

    max_concurrency: int = Field(
        default=8, ge=1, description="Maximum files evaluated concurrently by per-file rules"
    )


class FixConfig(BaseModel):
    """Tuning knobs for the auto-fix engine."""

    max_rounds: int = Field(
        default=3,
        ge=1,
        description="Maximum fix/re-detect batches per run (each finding is still attempted once)",
    )
    max_concurrency: int = Field(
        default=4, ge=1, description="Maximum fixes applied concurrently across distinct files"
    )


class BuildConfig(BaseModel):
    """Commands and limits for the install -> build -> dev-server verification."""

    install_command: list[str] = Field(
        default_factory=lambda: ["npm", "install", "--no-audit", "--no-fund"]
    )
    build_command: list[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    dev_command: list[str] = Field(
        default_factory=lambda: ["npm", "run", "dev", "--", "--port", "{port}", "--strictPort"]
    )
    dev_server_port: int = Field(default=23000, ge=23000)
    dev_server_path: str = Field(default="/")
    timeout: int = Field(
        default=300, ge=1, description="Default wall-clock budget for a whole verify call, in seconds"
    )
    health_interval: float = Field(
        default=1.0, gt=0, description="Seconds between dev-server health probes"
    )
    work_dir: Optional[Path] = Field(
        default=None,
        description="Directory the tree is materialised into; a temporary directory when unset",
    )

    @property
    def dev_server_url(self) -> str:
        """URL probed to decide whether the dev server came up."""
        path = self.dev_server_path if self.dev_server_path.startswith("/") else f"/{self.dev_server_path}"
        return f"http://localhost:{self.dev_server_port}{path}"

    def render_dev_command(self) -> list[str]:
        """Return the dev command with ``{port}`` substituted."""
        return [part.replace("{port}", str(self.dev_server_port)) for part in self.dev_command]


class ValidatorConfig(BaseModel):
    """Global PWA Validator configuration.

    Instances are typically created once by the CLI entry point or by the
    caller embedding the pipeline, then handed to ``ValidationCoordinator``.
    """

    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    fix: FixConfig = Field(default_factory=FixConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Parent directories are created.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "ValidatorConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "ValidatorConfig":
        """Build a ``ValidatorConfig`` from environment variables.

        Recognised variables (all optional):
            PWA_DETECT_CONCURRENCY, PWA_FIX_ROUNDS, PWA_FIX_CONCURRENCY,
            PWA_BUILD_TIMEOUT, PWA_DEV_PORT, PWA_DEV_PATH, PWA_WORK_DIR.
        """
        detection_kwargs: dict[str, Any] = {}
        if os.environ.get("PWA_DETECT_CONCURRENCY"):
            detection_kwargs["max_concurrency"] = int(os.environ["PWA_DETECT_CONCURRENCY"])

        fix_kwargs: dict[str, Any] = {}
        if os.environ.get("PWA_FIX_ROUNDS"):
            fix_kwargs["max_rounds"] = int(os.environ["PWA_FIX_ROUNDS"])
        if os.environ.get("PWA_FIX_CONCURRENCY"):
            fix_kwargs["max_concurrency"] = int(os.environ["PWA_FIX_CONCURRENCY"])

        build_kwargs: dict[str, Any] = {}
        if os.environ.get("PWA_BUILD_TIMEOUT"):
            build_kwargs["timeout"] = int(os.environ["PWA_BUILD_TIMEOUT"])
        if os.environ.get("PWA_DEV_PORT"):
            build_kwargs["dev_server_port"] = int(os.environ["PWA_DEV_PORT"])
        if os.environ.get("PWA_DEV_PATH"):
            build_kwargs["dev_server_path"] = os.environ["PWA_DEV_PATH"]
        if os.environ.get("PWA_WORK_DIR"):
            build_kwargs["work_dir"] = Path(os.environ["PWA_WORK_DIR"])

        return cls(
            detection=DetectionConfig(**detection_kwargs),
            fix=FixConfig(**fix_kwargs),
            build=BuildConfig(**build_kwargs),
        )


class ValidateOptions(BaseModel):
    """Per-run options supplied by the caller of ``validate``."""

    run_build_test: bool = Field(default=True)
    timeout_ms: int = Field(default=300_000, ge=1)
    max_fix_concurrency: int = Field(default=4, ge=1)
