"""Shared pytest fixtures for the PWA Validator test suite.

Provides reusable fixtures for:
- A clean React + TypeScript project tree that produces no findings
- Variants of it with a single defect (missing manifest, broken package.json)
- A messy tree exercising most fix strategies at once
- A Vue project tree
- Validator configuration with a temporary build work directory
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any

import pytest

from pwa_validator.catalog.profiles import build_manifest, build_package_json
from pwa_validator.config import ValidateOptions, ValidatorConfig
from pwa_validator.models import ProjectMetadata, ProjectTree
from pwa_validator.utils import dump_json


def _dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


def make_tree(files: dict[str, str], **metadata: Any) -> ProjectTree:
    """Build a ``ProjectTree`` from a path -> content mapping."""
    return ProjectTree(files=dict(files), metadata=ProjectMetadata(**metadata))


# ---------------------------------------------------------------------------
# React file contents
# ---------------------------------------------------------------------------

REACT_INDEX_HTML = _dedent("""
    <!doctype html>
    <html lang="en">
      <head>
        <meta charset="UTF-8" />
        <meta name="viewport" content="width=device-width, initial-scale=1.0" />
        <link rel="manifest" href="/manifest.json" />
        <title>Demo PWA</title>
      </head>
      <body>
        <div id="root"></div>
        <script type="module" src="/src/main.tsx"></script>
      </body>
    </html>
""")

REACT_MAIN = _dedent("""
    import { StrictMode } from 'react';
    import { createRoot } from 'react-dom/client';
    import App from './App';
    import './index.css';

    createRoot(document.getElementById('root')!).render(
      <StrictMode>
        <App />
      </StrictMode>,
    );

    if ('serviceWorker' in navigator) {
      navigator.serviceWorker.register('/sw.js');
    }
""")

REACT_APP = _dedent("""
    import { useState } from 'react';
    import './App.css';

    function App() {
      const [count, setCount] = useState(0);
      return (
        <main className="app">
          <h1>Demo PWA</h1>
          <img src="/logo.svg" alt="Demo logo" />
          <button onClick={() => setCount(count + 1)}>Count: {count}</button>
        </main>
      );
    }

    export default App;
""")

STYLESHEET = _dedent("""
    .app {
      display: flex;
      flex-direction: column;
    }
""")

VITE_CONFIG = _dedent("""
    import { defineConfig } from 'vite';
    import react from '@vitejs/plugin-react';

    export default defineConfig({
      plugins: [react()],
    });
""")

SERVICE_WORKER = "self.addEventListener('fetch', () => {});\n"


@pytest.fixture
def react_metadata() -> ProjectMetadata:
    return ProjectMetadata(project_name="demo-pwa", framework="react", typescript=True)


@pytest.fixture
def clean_files(react_metadata: ProjectMetadata) -> dict[str, str]:
    """File contents of a healthy React + TypeScript PWA."""
    return {
        "package.json": dump_json(build_package_json(react_metadata)),
        "index.html": REACT_INDEX_HTML,
        "vite.config.ts": VITE_CONFIG,
        "public/manifest.json": dump_json(build_manifest(react_metadata)),
        "public/sw.js": SERVICE_WORKER,
        "src/main.tsx": REACT_MAIN,
        "src/App.tsx": REACT_APP,
        "src/App.css": STYLESHEET,
        "src/index.css": STYLESHEET,
    }


@pytest.fixture
def clean_tree(clean_files: dict[str, str], react_metadata: ProjectMetadata) -> ProjectTree:
    """A tree on which detection reports nothing."""
    return ProjectTree(files=clean_files, metadata=react_metadata)


@pytest.fixture
def tree_missing_manifest(clean_tree: ProjectTree) -> ProjectTree:
    """The clean tree without its web app manifest."""
    tree = make_tree(clean_tree.files, **clean_tree.metadata.model_dump())
    del tree.files["public/manifest.json"]
    return tree


@pytest.fixture
def tree_with_broken_package(clean_tree: ProjectTree) -> ProjectTree:
    """The clean tree with a truncated, hand-edited package.json."""
    tree = make_tree(clean_tree.files, **clean_tree.metadata.model_dump())
    tree.files["package.json"] = '{\n  "name": "demo-pwa",\n  "scripts": {\n    "dev": "vite"\n'
    return tree


@pytest.fixture
def messy_tree() -> ProjectTree:
    """A tree with many fixable defects spread across several files."""
    files = {
        "package.json": (
            '{"name": "Messy App", "scripts": {"dev": "vite"}, '
            '"dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0",},}\n'
        ),
        "index.html": (
            "<html><head><title>Messy</title></head><body><div id=\"root\"></div>"
            "<script type=\"module\" src=\"/src/main.tsx\"></script></body></html>\n"
        ),
        "public/sw.js": SERVICE_WORKER,
        "src/main.tsx": REACT_MAIN,
        "src/App.tsx": _dedent("""
            import Header from './components/Header';
            import './App.css';

            const App: React.FC = () => {
              return (
                <div className=app>
                  <Header />
                </div>
              );
            };

            export default App;
        """),
        "src/index.css": _dedent("""
            body {
              margin: 0
              padding: 0;
            }
            .card {
              color: red;
        """),
    }
    return make_tree(files, project_name="Messy App", framework="react", typescript=True)


# ---------------------------------------------------------------------------
# Vue
# ---------------------------------------------------------------------------

VUE_MAIN = _dedent("""
    import { createApp } from 'vue';
    import App from './App.vue';

    createApp(App).mount('#app');

    if ('serviceWorker' in navigator) {
      navigator.serviceWorker.register('/sw.js');
    }
""")


@pytest.fixture
def vue_tree_missing_app() -> ProjectTree:
    """A Vue project whose root component and Vite config were never generated."""
    metadata = ProjectMetadata(project_name="vue-pwa", framework="vue", typescript=True)
    files = {
        "package.json": dump_json(build_package_json(metadata)),
        "index.html": REACT_INDEX_HTML.replace('id="root"', 'id="app"').replace("main.tsx", "main.ts"),
        "public/manifest.json": dump_json(build_manifest(metadata)),
        "public/sw.js": SERVICE_WORKER,
        "src/main.ts": VUE_MAIN,
    }
    return ProjectTree(files=files, metadata=metadata)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def validator_config(tmp_path: Path) -> ValidatorConfig:
    """Config whose build work directory lives under ``tmp_path``."""
    config = ValidatorConfig()
    config.build.work_dir = tmp_path / "build-work"
    return config


@pytest.fixture
def no_build() -> ValidateOptions:
    return ValidateOptions(run_build_test=False)
