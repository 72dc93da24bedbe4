"""Prevention phase -- always-safe normalisations applied before detection.

Each prevention rule rewrites the tree in place and reports whether it
changed anything.  Rules only touch files that already exist and parse;
missing or broken files are left for detection so that repairing them is
counted as a fix.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from pwa_validator.catalog.profiles import (
    MANIFEST_CANDIDATES,
    PACKAGE_JSON,
    first_present,
    manifest_defaults,
    package_name_for,
    profile_for,
    required_dependencies,
    required_dev_dependencies,
)
from pwa_validator.models import ProjectTree
from pwa_validator.utils import dump_json, is_valid_package_name, parse_json_object, sanitize_name


@dataclass(frozen=True)
class PreventionRule:
    """A named normalisation; ``apply`` returns ``True`` when it changed the tree."""

    name: str
    apply: Callable[[ProjectTree], bool]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _normalized_path(path: str) -> str:
    result = path.replace("\\", "/")
    while result.startswith("./"):
        result = result[2:]
    result = result.lstrip("/")
    stem, suffix = posixpath.splitext(result)
    return stem + suffix.lower()


def normalize_paths(tree: ProjectTree) -> bool:
    """Forward slashes, no leading ``./`` or ``/``, lower-case extensions.

    A rename that would overwrite another file is skipped; detection reports
    the resulting case collision instead.
    """
    changed = False
    for path in tree.paths():
        target = _normalized_path(path)
        if target == path or not target or tree.has(target):
            continue
        tree.files[target] = tree.files.pop(path)
        changed = True

    taken = set(tree.assets)
    assets = []
    for path in tree.assets:
        target = _normalized_path(path)
        if target != path and target and target not in taken and not tree.has(target):
            taken.discard(path)
            taken.add(target)
            path = target
            changed = True
        assets.append(path)
    tree.assets = assets
    return changed


def normalize_line_endings(tree: ProjectTree) -> bool:
    changed = False
    for path in tree.paths():
        content = tree.files[path]
        if "\r" not in content:
            continue
        tree.files[path] = content.replace("\r\n", "\n").replace("\r", "\n")
        changed = True
    return changed


def _load_package(tree: ProjectTree) -> Optional[dict]:
    return parse_json_object(tree.files.get(PACKAGE_JSON, ""))


def sanitize_package_name(tree: ProjectTree) -> bool:
    pkg = _load_package(tree)
    if pkg is None:
        return False
    name = pkg.get("name")
    if isinstance(name, str) and is_valid_package_name(name):
        return False
    fixed = sanitize_name(name) if isinstance(name, str) else package_name_for(tree.metadata)
    fixed = fixed[:214]
    if fixed == name:
        return False
    pkg["name"] = fixed
    tree.write(PACKAGE_JSON, dump_json(pkg))
    return True


def ensure_package_scripts(tree: ProjectTree) -> bool:
    pkg = _load_package(tree)
    if pkg is None:
        return False
    scripts = pkg.setdefault("scripts", {})
    if not isinstance(scripts, dict):
        return False
    missing = {
        name: command
        for name, command in profile_for(tree.metadata).scripts.items()
        if name not in scripts
    }
    if not missing:
        return False
    scripts.update(missing)
    tree.write(PACKAGE_JSON, dump_json(pkg))
    return True


def ensure_feature_dependencies(tree: ProjectTree) -> bool:
    pkg = _load_package(tree)
    if pkg is None:
        return False

    declared: set[str] = set()
    for section in ("dependencies", "devDependencies", "peerDependencies"):
        if isinstance(pkg.get(section), dict):
            declared.update(pkg[section])

    changed = False
    for section, wanted in (
        ("dependencies", required_dependencies(tree.metadata)),
        ("devDependencies", required_dev_dependencies(tree.metadata)),
    ):
        missing = {name: version for name, version in wanted.items() if name not in declared}
        if not missing:
            continue
        deps = pkg.setdefault(section, {})
        if not isinstance(deps, dict):
            continue
        deps.update(missing)
        pkg[section] = dict(sorted(deps.items()))
        changed = True

    if changed:
        tree.write(PACKAGE_JSON, dump_json(pkg))
    return changed


def ensure_manifest_keys(tree: ProjectTree) -> bool:
    path = first_present(tree, MANIFEST_CANDIDATES)
    if path is None:
        return False
    manifest = parse_json_object(tree.read(path))
    if manifest is None:
        return False
    missing = {
        key: value
        for key, value in manifest_defaults(tree.metadata).items()
        if not manifest.get(key)
    }
    if not missing:
        return False
    manifest.update(missing)
    tree.write(path, dump_json(manifest))
    return True


DEFAULT_PREVENTION_RULES: tuple[PreventionRule, ...] = (
    PreventionRule("normalize-paths", normalize_paths),
    PreventionRule("normalize-line-endings", normalize_line_endings),
    PreventionRule("sanitize-package-name", sanitize_package_name),
    PreventionRule("ensure-package-scripts", ensure_package_scripts),
    PreventionRule("ensure-feature-dependencies", ensure_feature_dependencies),
    PreventionRule("ensure-manifest-keys", ensure_manifest_keys),
)


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class PreventionScanner:
    """Runs the prevention rules in order over a tree."""

    def __init__(self, rules: Optional[Sequence[PreventionRule]] = None) -> None:
        self.rules: tuple[PreventionRule, ...] = tuple(rules or DEFAULT_PREVENTION_RULES)

    def apply_rules(self, tree: ProjectTree) -> list[str]:
        """Run every rule over *tree* and return the names of those that fired."""
        return [rule.name for rule in self.rules if rule.apply(tree)]

    def scan(self, tree: ProjectTree) -> tuple[ProjectTree, int]:
        """Normalise *tree* in place.

        Returns:
            The same tree and the number of distinct rules that changed it.
            A second scan of the result always returns a count of zero.
        """
        return tree, len(self.apply_rules(tree))
