"""Issue catalog -- known problem patterns and the fixes that resolve them.

The default catalog bundles the built-in rules from ``rules.py`` and the fix
strategies from ``fixes.py``.  It is built once and shared read-only.

Quick usage::

    from pwa_validator.catalog import default_catalog

    catalog = default_catalog()
    strategy = catalog.select_strategy(finding, tree)

Callers with project-specific checks extend it without touching the
built-ins::

    catalog = default_catalog().extend(rules=[my_rule], strategies=[my_fix])
"""

from functools import lru_cache

from pwa_validator.catalog.fixes import BUILTIN_STRATEGIES
from pwa_validator.catalog.registry import (
    CatalogError,
    FixStrategy,
    IssueCatalog,
    IssueRule,
    RuleHit,
)
from pwa_validator.catalog.rules import BUILTIN_RULES
from pwa_validator.catalog.templates import TemplateRenderer


@lru_cache(maxsize=1)
def default_catalog() -> IssueCatalog:
    """The built-in catalog, shared between runs."""
    return IssueCatalog(rules=BUILTIN_RULES, strategies=BUILTIN_STRATEGIES)


__all__ = [
    "CatalogError",
    "FixStrategy",
    "IssueCatalog",
    "IssueRule",
    "RuleHit",
    "TemplateRenderer",
    "default_catalog",
]
