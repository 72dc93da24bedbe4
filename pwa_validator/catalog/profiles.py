"""Framework profiles, dependency tables and required-file layout.

Everything the rules and fix strategies need to know about what a generated
PWA *should* contain for a given framework and feature selection lives here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pwa_validator.models import ProjectMetadata, ProjectTree
from pwa_validator.utils import is_valid_package_name, sanitize_name

# ---------------------------------------------------------------------------
# Well-known paths
# ---------------------------------------------------------------------------

PACKAGE_JSON = "package.json"
ENTRY_HTML = "index.html"
MANIFEST_PATH = "public/manifest.json"
MANIFEST_CANDIDATES = ("public/manifest.json", "public/manifest.webmanifest", "manifest.json")
SERVICE_WORKER_PATH = "public/sw.js"
SERVICE_WORKER_CANDIDATES = (
    "public/sw.js",
    "public/service-worker.js",
    "sw.js",
    "service-worker.js",
    "src/sw.js",
    "src/sw.ts",
    "src/service-worker.js",
    "src/service-worker.ts",
)
VITE_CONFIG_CANDIDATES = ("vite.config.ts", "vite.config.js", "vite.config.mjs", "vite.config.mts")

# ---------------------------------------------------------------------------
# Dependency tables
# ---------------------------------------------------------------------------

BASE_DEPENDENCIES: dict[str, dict[str, str]] = {
    "react": {
        "react": "^18.2.0",
        "react-dom": "^18.2.0",
        "react-router-dom": "^6.8.0",
    },
    "vue": {
        "vue": "^3.3.0",
        "vue-router": "^4.2.0",
    },
}

DEV_DEPENDENCIES: dict[str, dict[str, str]] = {
    "react": {
        "vite": "^5.0.0",
        "@vitejs/plugin-react": "^4.2.0",
    },
    "vue": {
        "vite": "^5.0.0",
        "@vitejs/plugin-vue": "^4.5.0",
    },
}

TYPESCRIPT_DEV_DEPENDENCIES: dict[str, dict[str, str]] = {
    "react": {
        "typescript": "^5.2.0",
        "@types/react": "^18.2.0",
        "@types/react-dom": "^18.2.0",
    },
    "vue": {
        "typescript": "^5.2.0",
        "vue-tsc": "^1.8.0",
    },
}

FEATURE_DEPENDENCIES: dict[str, dict[str, str]] = {
    "auth": {
        "react-hook-form": "^7.43.0",
        "@hookform/resolvers": "^2.9.0",
        "zod": "^3.20.0",
    },
    "chat": {"socket.io-client": "^4.6.0"},
    "payments": {
        "stripe": "^11.0.0",
        "@stripe/react-stripe-js": "^1.16.0",
    },
    "booking": {
        "react-datepicker": "^4.10.0",
        "date-fns": "^2.29.0",
    },
    "analytics": {"recharts": "^2.5.0"},
    "notifications": {"react-toastify": "^9.1.0"},
}

# Features that only make sense together with another feature.
FEATURE_REQUIREMENTS: dict[str, str] = {
    "payments": "auth",
    "booking": "auth",
}

# Every version the fixer may add on its own, keyed by package name.
KNOWN_VERSIONS: dict[str, str] = {}
for _table in (BASE_DEPENDENCIES, DEV_DEPENDENCIES, TYPESCRIPT_DEV_DEPENDENCIES, FEATURE_DEPENDENCIES):
    for _deps in _table.values():
        KNOWN_VERSIONS.update(_deps)

DEV_ONLY_PACKAGES = frozenset(
    name
    for table in (DEV_DEPENDENCIES, TYPESCRIPT_DEV_DEPENDENCIES)
    for deps in table.values()
    for name in deps
)

# ---------------------------------------------------------------------------
# Framework profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FrameworkProfile:
    """Where a framework keeps its entry points and what its scripts are."""

    framework: str
    typescript: bool
    entry_module: str
    entry_module_candidates: tuple[str, ...]
    app_component: str
    app_component_candidates: tuple[str, ...]
    vite_config: str
    component_suffix: str
    scripts: dict[str, str]
    vite_plugin: str
    vite_plugin_import: str

    @property
    def script_ext(self) -> str:
        return "ts" if self.typescript else "js"


def profile_for(metadata: ProjectMetadata) -> FrameworkProfile:
    """Return the profile matching *metadata*'s framework and language."""
    ts = metadata.typescript
    if metadata.framework == "vue":
        return FrameworkProfile(
            framework="vue",
            typescript=ts,
            entry_module="src/main.ts" if ts else "src/main.js",
            entry_module_candidates=("src/main.ts", "src/main.js"),
            app_component="src/App.vue",
            app_component_candidates=("src/App.vue",),
            vite_config="vite.config.ts" if ts else "vite.config.js",
            component_suffix=".vue",
            scripts={
                "dev": "vite",
                "build": "vue-tsc --noEmit && vite build" if ts else "vite build",
                "preview": "vite preview",
            },
            vite_plugin="vue",
            vite_plugin_import="@vitejs/plugin-vue",
        )
    return FrameworkProfile(
        framework="react",
        typescript=ts,
        entry_module="src/main.tsx" if ts else "src/main.jsx",
        entry_module_candidates=("src/main.tsx", "src/main.jsx", "src/main.ts", "src/main.js", "src/index.tsx", "src/index.jsx"),
        app_component="src/App.tsx" if ts else "src/App.jsx",
        app_component_candidates=("src/App.tsx", "src/App.jsx", "src/App.js", "src/App.ts"),
        vite_config="vite.config.ts" if ts else "vite.config.js",
        component_suffix=".tsx" if ts else ".jsx",
        scripts={"dev": "vite", "build": "vite build", "preview": "vite preview"},
        vite_plugin="react",
        vite_plugin_import="@vitejs/plugin-react",
    )


def first_present(tree: ProjectTree, candidates: tuple[str, ...]) -> Optional[str]:
    """Return the first of *candidates* that exists in *tree*."""
    for path in candidates:
        if tree.has(path):
            return path
    return None


# ---------------------------------------------------------------------------
# Expected content
# ---------------------------------------------------------------------------


def required_dependencies(metadata: ProjectMetadata) -> dict[str, str]:
    """Runtime dependencies the project must declare."""
    deps = dict(BASE_DEPENDENCIES[metadata.framework])
    for feature in sorted(set(metadata.features)):
        deps.update(FEATURE_DEPENDENCIES.get(feature, {}))
    return deps


def required_dev_dependencies(metadata: ProjectMetadata) -> dict[str, str]:
    """Toolchain packages the project must declare."""
    deps = dict(DEV_DEPENDENCIES[metadata.framework])
    if metadata.typescript:
        deps.update(TYPESCRIPT_DEV_DEPENDENCIES[metadata.framework])
    return deps


def package_name_for(metadata: ProjectMetadata) -> str:
    name = metadata.project_name
    return name if is_valid_package_name(name) else sanitize_name(name)


def build_package_json(metadata: ProjectMetadata) -> dict[str, Any]:
    """The complete package descriptor for a freshly generated project."""
    profile = profile_for(metadata)
    return {
        "name": package_name_for(metadata),
        "private": True,
        "version": "0.1.0",
        "type": "module",
        "scripts": dict(profile.scripts),
        "dependencies": dict(sorted(required_dependencies(metadata).items())),
        "devDependencies": dict(sorted(required_dev_dependencies(metadata).items())),
    }


def manifest_defaults(metadata: ProjectMetadata) -> dict[str, Any]:
    """Values used to fill required web-app-manifest keys."""
    name = metadata.project_name.strip() or "PWA App"
    return {
        "name": name,
        "short_name": name[:12],
        "start_url": "/",
        "display": "standalone",
        "theme_color": "#1976d2",
        "background_color": "#ffffff",
    }


REQUIRED_MANIFEST_KEYS = tuple(manifest_defaults(ProjectMetadata()))


def build_manifest(metadata: ProjectMetadata) -> dict[str, Any]:
    """A complete web-app manifest including the standard icon set."""
    manifest = manifest_defaults(metadata)
    manifest["icons"] = [
        {"src": "/icons/icon-192.png", "sizes": "192x192", "type": "image/png"},
        {"src": "/icons/icon-512.png", "sizes": "512x512", "type": "image/png"},
    ]
    return manifest
