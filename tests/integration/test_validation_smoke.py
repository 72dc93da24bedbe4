"""Validation pipeline smoke tests.

These tests load projects from disk, run every phase with the real catalog,
and write the remediated tree back.  The install/build/dev-server stage is
mocked at the subprocess boundary so the tests need no Node.js toolchain.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pwa_validator.config import ValidateOptions, ValidatorConfig
from pwa_validator.coordinator import ValidationCoordinator, ValidationRun
from pwa_validator.models import FinalStatus, ProjectMetadata, ProjectTree

MODULE = "pwa_validator.build_verifier"


def _patch_toolchain(install=(0, "", ""), build=(0, "", ""), healthy: bool = True):
    """Stub out npm and the dev-server probe."""
    process = MagicMock()
    process.returncode = None
    return (
        patch(f"{MODULE}.run_command", AsyncMock(side_effect=[install, build])),
        patch(f"{MODULE}.start_process", AsyncMock(return_value=process)),
        patch(f"{MODULE}.wait_for_health", AsyncMock(return_value=healthy)),
        patch(f"{MODULE}.stop_process", AsyncMock(return_value="")),
    )


@pytest.mark.integration
class TestValidationSmoke:
    """Full pipeline runs over on-disk projects."""

    @pytest.mark.asyncio
    async def test_messy_project_from_disk(
        self, messy_tree: ProjectTree, validator_config: ValidatorConfig, tmp_path: Path
    ) -> None:
        project = tmp_path / "messy-app"
        messy_tree.write_to(project)
        (project / "public" / "icons").mkdir(parents=True)
        (project / "public" / "icons" / "icon-192.png").write_bytes(b"\x89PNG\r\n\x1a\n")

        tree = ProjectTree.from_directory(project, metadata=messy_tree.metadata)
        assert tree.assets == ["public/icons/icon-192.png"]

        run_patch, start_patch, health_patch, stop_patch = _patch_toolchain()
        coordinator = ValidationCoordinator(config=validator_config)
        with run_patch, start_patch, health_patch, stop_patch:
            run = await coordinator.run(tree, ValidateOptions(timeout_ms=30_000))

        result = run.result
        assert result.final_status is FinalStatus.READY_TO_USE, result.to_json()
        assert result.build_test is not None and result.build_test.success
        assert result.build_test.dev_server_success

        # The verifier materialised the remediated tree in the work dir
        work_dir = validator_config.build.work_dir
        pkg = json.loads((work_dir / "package.json").read_text())
        assert pkg["name"] == "messy-app"
        assert "build" in pkg["scripts"]
        assert (work_dir / "public" / "manifest.json").exists()

        # Writing back only touches files that changed
        written = run.tree.write_to(
            project,
            only={p for p, c in run.tree.files.items() if tree.files.get(p) != c},
        )
        assert project / "src" / "main.tsx" not in written
        assert (project / "src" / "components" / "Header.tsx").exists()

    @pytest.mark.asyncio
    async def test_build_failure_reported(
        self, clean_tree: ProjectTree, validator_config: ValidatorConfig
    ) -> None:
        run_patch, start_patch, health_patch, stop_patch = _patch_toolchain(
            install=(0, "npm WARN deprecated inflight@1.0.6", ""),
            build=(1, "", "[vite]: Rollup failed to resolve import \"missing\""),
        )
        coordinator = ValidationCoordinator(config=validator_config)
        with run_patch, start_patch as start, health_patch, stop_patch:
            run = await coordinator.run(clean_tree)

        build = run.result.build_test
        assert run.result.final_status is FinalStatus.NEEDS_ATTENTION
        assert build is not None
        assert build.install_success and not build.build_success
        assert build.stages_run == ["install", "build"]
        assert build.warnings == ["npm WARN deprecated inflight@1.0.6"]
        assert "Rollup failed" in build.errors[0]
        start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generated_from_scratch(self, validator_config: ValidatorConfig) -> None:
        """A tree holding only a package.json is completed into a buildable project."""
        metadata = ProjectMetadata(project_name="scratch", framework="react", typescript=False)
        tree = ProjectTree(files={"package.json": '{"name": "scratch"}\n'}, metadata=metadata)

        coordinator = ValidationCoordinator(config=validator_config)
        events = []
        async for item in coordinator.stream(tree, ValidateOptions(run_build_test=False)):
            events.append(item)

        run = events[-1]
        assert isinstance(run, ValidationRun)
        assert run.result.final_status is FinalStatus.READY_TO_USE, run.result.to_json()
        for path in ("index.html", "src/main.jsx", "src/App.jsx", "vite.config.js",
                     "public/manifest.json", "public/sw.js"):
            assert run.tree.has(path), path
        assert "serviceWorker" in run.tree.files["src/main.jsx"]
        assert run.result.prevented_issues_count == 2
