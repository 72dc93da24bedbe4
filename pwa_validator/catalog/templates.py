"""Jinja2 rendering of generated project files.

Fix strategies that have to create source files (entry HTML, entry module,
App component, Vite config, service worker, stubs) render them from the
``.j2`` templates in ``pwa_validator/catalog/templates/``.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateRenderer:
    """Renders the file templates used by fix strategies."""

    def __init__(self, template_dir: str | Path | None = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render *template_path* (relative to the template directory)."""
        template = self.env.get_template(template_path)
        return template.render(**context)


@lru_cache(maxsize=1)
def get_renderer() -> TemplateRenderer:
    """Shared renderer over the bundled templates."""
    return TemplateRenderer()


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing``, ``some_thing`` or ``some thing`` to ``SomeThing``."""
    parts = re.split(r"[-_.\s]+", value)
    return "".join(word[:1].upper() + word[1:] for word in parts if word)
