"""Built-in detection rules.

Each check is a plain function returning :class:`RuleHit` records; the
detector turns hits into ``Finding`` objects and decides fixability.  Checks
must be pure functions of the tree they are given.
"""

from __future__ import annotations

import json
import posixpath
import re
from typing import Callable, Optional

from pwa_validator.catalog.profiles import (
    ENTRY_HTML,
    FEATURE_REQUIREMENTS,
    KNOWN_VERSIONS,
    MANIFEST_CANDIDATES,
    MANIFEST_PATH,
    PACKAGE_JSON,
    SERVICE_WORKER_CANDIDATES,
    SERVICE_WORKER_PATH,
    VITE_CONFIG_CANDIDATES,
    first_present,
    package_name_for,
    profile_for,
    required_dependencies,
    required_dev_dependencies,
)
from pwa_validator.catalog.registry import IssueRule, RuleHit
from pwa_validator.models import FindingCategory, IssueKind, ProjectMetadata, ProjectTree
from pwa_validator.utils import is_valid_package_name, parse_json_object

STRUCTURAL = FindingCategory.STRUCTURAL
STYLE = FindingCategory.STYLE

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".vue")
RESOLVE_SUFFIXES = (".tsx", ".ts", ".jsx", ".js", ".vue", ".json", ".mjs")
STYLESHEET_SUFFIXES = (".css", ".scss", ".sass", ".less")

NODE_BUILTINS = frozenset({
    "assert", "buffer", "child_process", "crypto", "events", "fs", "http", "https",
    "module", "os", "path", "process", "stream", "url", "util", "zlib",
})

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def suffix_of(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


def _by_suffix(*suffixes: str) -> Callable[[str, ProjectMetadata], bool]:
    def applies(path: str, metadata: ProjectMetadata) -> bool:
        return suffix_of(path) in suffixes

    return applies


def _is_source(path: str) -> bool:
    return suffix_of(path) in SOURCE_SUFFIXES and not path.startswith("public/")


def _line_of(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def blank_css_comments(content: str) -> str:
    """Replace CSS comments with spaces, keeping offsets and line numbers intact."""
    return re.sub(
        r"/\*.*?\*/",
        lambda m: re.sub(r"[^\n]", " ", m.group()),
        content,
        flags=re.DOTALL,
    )


def resolve_relative_import(tree: ProjectTree, importer: str, specifier: str) -> tuple[str, bool]:
    """Resolve *specifier* relative to *importer*.

    Returns ``(target, found)`` where *target* is the normalised path the
    import points at (without any inferred extension).
    """
    spec = specifier.split("?", 1)[0]
    target = posixpath.normpath(posixpath.join(posixpath.dirname(importer), spec))
    if tree.exists(target):
        return target, True
    for suffix in RESOLVE_SUFFIXES:
        if tree.exists(target + suffix) or tree.exists(f"{target}/index{suffix}"):
            return target, True
    return target, False


_RELATIVE_IMPORT_RE = re.compile(
    r"""(?:\bfrom\s+|\bimport\s+|\bimport\s*\(\s*)['"](\.{1,2}/[^'"\n]+)['"]"""
)
_BARE_IMPORT_RE = re.compile(
    r"""(?:\bfrom\s+|\bimport\s+|\bimport\s*\(\s*|\brequire\s*\(\s*)['"]([^'"\n./][^'"\n]*)['"]"""
)


def package_of(specifier: str) -> Optional[str]:
    """Map a bare import specifier to the npm package that provides it."""
    if specifier.startswith(("@/", "~", "#", "virtual:", "node:", "/")) or ":" in specifier:
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        return "/".join(parts[:2]) if len(parts) >= 2 else None
    if parts[0] in NODE_BUILTINS:
        return None
    return parts[0]


def _declared_dependencies(pkg: dict) -> set[str]:
    declared: set[str] = set()
    for section in ("dependencies", "devDependencies", "peerDependencies"):
        deps = pkg.get(section)
        if isinstance(deps, dict):
            declared.update(deps)
    return declared


# ---------------------------------------------------------------------------
# Project-scoped checks
# ---------------------------------------------------------------------------


def check_missing_package_json(tree: ProjectTree) -> list[RuleHit]:
    if tree.has(PACKAGE_JSON):
        return []
    return [RuleHit(
        file=PACKAGE_JSON,
        message="package.json is missing; npm cannot install or build the project",
        suggested_fix="Create a package.json declaring the framework, scripts and dependencies",
    )]


def check_missing_dependency(tree: ProjectTree) -> list[RuleHit]:
    pkg = parse_json_object(tree.files.get(PACKAGE_JSON, ""))
    if pkg is None:
        return []
    declared = _declared_dependencies(pkg)
    required = {
        **required_dependencies(tree.metadata),
        **required_dev_dependencies(tree.metadata),
    }

    hits: dict[str, RuleHit] = {}
    for name in sorted(required):
        if name not in declared:
            hits[name] = RuleHit(
                file=PACKAGE_JSON,
                key=name,
                message=f"Required dependency '{name}' is not declared in package.json",
                suggested_fix=f'Add "{name}": "{required[name]}" to package.json',
            )

    for path in tree.paths():
        if not _is_source(path):
            continue
        for match in _BARE_IMPORT_RE.finditer(tree.files[path]):
            name = package_of(match.group(1))
            if name is None or name in declared or name in hits:
                continue
            version = KNOWN_VERSIONS.get(name)
            hits[name] = RuleHit(
                file=PACKAGE_JSON,
                key=name,
                message=f"'{name}' is imported by {path} but not declared in package.json",
                suggested_fix=(
                    f'Add "{name}": "{version}" to package.json' if version
                    else f"Run npm install {name}"
                ),
            )
    return [hits[name] for name in sorted(hits)]


def check_missing_build_script(tree: ProjectTree) -> list[RuleHit]:
    pkg = parse_json_object(tree.files.get(PACKAGE_JSON, ""))
    if pkg is None:
        return []
    scripts = pkg.get("scripts")
    if not isinstance(scripts, dict):
        scripts = {}
    profile = profile_for(tree.metadata)
    return [
        RuleHit(
            file=PACKAGE_JSON,
            key=name,
            message=f"package.json has no '{name}' script",
            suggested_fix=f'Add "{name}": "{profile.scripts[name]}" to the scripts section',
        )
        for name in ("build", "dev")
        if name not in scripts
    ]


def check_missing_manifest(tree: ProjectTree) -> list[RuleHit]:
    if first_present(tree, MANIFEST_CANDIDATES):
        return []
    return [RuleHit(
        file=MANIFEST_PATH,
        message="Web app manifest is missing; the app cannot be installed as a PWA",
        suggested_fix="Create public/manifest.json with name, icons, start_url and display",
    )]


def check_missing_entry_html(tree: ProjectTree) -> list[RuleHit]:
    if tree.has(ENTRY_HTML):
        return []
    return [RuleHit(
        file=ENTRY_HTML,
        message="index.html is missing; Vite has no entry point to build",
        suggested_fix="Create index.html with a root element and the module script",
    )]


def check_missing_entry_module(tree: ProjectTree) -> list[RuleHit]:
    profile = profile_for(tree.metadata)
    if first_present(tree, profile.entry_module_candidates):
        return []
    return [RuleHit(
        file=profile.entry_module,
        message=f"Entry module {profile.entry_module} is missing",
        suggested_fix=f"Create {profile.entry_module} mounting the App component",
    )]


def check_missing_app_component(tree: ProjectTree) -> list[RuleHit]:
    profile = profile_for(tree.metadata)
    if first_present(tree, profile.app_component_candidates):
        return []
    return [RuleHit(
        file=profile.app_component,
        message=f"Root component {profile.app_component} is missing",
        suggested_fix=f"Create {profile.app_component}",
    )]


def check_missing_vite_config(tree: ProjectTree) -> list[RuleHit]:
    if first_present(tree, VITE_CONFIG_CANDIDATES):
        return []
    profile = profile_for(tree.metadata)
    return [RuleHit(
        file=profile.vite_config,
        message="Vite config is missing; the framework plugin will not be loaded",
        suggested_fix=f"Create {profile.vite_config} registering {profile.vite_plugin_import}",
    )]


def check_case_collision(tree: ProjectTree) -> list[RuleHit]:
    groups: dict[str, list[str]] = {}
    for path in [*tree.paths(), *sorted(tree.assets)]:
        groups.setdefault(path.lower(), []).append(path)
    hits = []
    for lowered, paths in sorted(groups.items()):
        if len(paths) < 2:
            continue
        paths = sorted(paths)
        hits.append(RuleHit(
            file=paths[0],
            key=lowered,
            message=f"Paths differ only by case: {', '.join(paths)}",
            suggested_fix="Rename one of the files; case-insensitive file systems cannot hold both",
        ))
    return hits


def check_missing_service_worker(tree: ProjectTree) -> list[RuleHit]:
    if first_present(tree, SERVICE_WORKER_CANDIDATES):
        return []
    pkg = parse_json_object(tree.files.get(PACKAGE_JSON, ""))
    if pkg is not None and "vite-plugin-pwa" in _declared_dependencies(pkg):
        return []
    return [RuleHit(
        file=SERVICE_WORKER_PATH,
        message="No service worker found; the app will not work offline",
        suggested_fix="Add public/sw.js and register it from the entry module",
    )]


def check_feature_conflict(tree: ProjectTree) -> list[RuleHit]:
    features = set(tree.metadata.features)
    return [
        RuleHit(
            file=PACKAGE_JSON,
            key=feature,
            message=f"Feature '{feature}' is selected without '{needed}'",
            suggested_fix=f"Enable the '{needed}' feature so {feature} flows can identify the user",
        )
        for feature, needed in sorted(FEATURE_REQUIREMENTS.items())
        if feature in features and needed not in features
    ]


# ---------------------------------------------------------------------------
# File-scoped checks
# ---------------------------------------------------------------------------


def check_invalid_json(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    try:
        json.loads(content)
    except json.JSONDecodeError as exc:
        return [RuleHit(
            file=path,
            message=f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})",
            suggested_fix=f"Fix the JSON syntax in {path}",
            line=exc.lineno,
        )]
    return []


def _is_package_json(path: str, metadata: ProjectMetadata) -> bool:
    return path == PACKAGE_JSON


def check_invalid_package_name(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    pkg = parse_json_object(content)
    if pkg is None:
        return []
    name = pkg.get("name")
    if isinstance(name, str) and is_valid_package_name(name):
        return []
    return [RuleHit(
        file=path,
        message=f"Package name {name!r} is not a valid npm package name",
        suggested_fix=f'Use a lower-case name such as "{package_name_for(tree.metadata)}"',
    )]


def _is_plain_json(path: str, metadata: ProjectMetadata) -> bool:
    name = posixpath.basename(path)
    if path == PACKAGE_JSON or name.startswith(("tsconfig", "jsconfig")) or path.startswith(".vscode/"):
        return False
    return suffix_of(path) in (".json", ".webmanifest")


_REACT_NAMESPACE_RE = re.compile(r"\bReact\.\w")
_REACT_DEFAULT_IMPORT_RE = re.compile(r"^\s*import\s+(?:type\s+)?(?:\*\s+as\s+)?React\b", re.MULTILINE)


def check_missing_react_import(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    usage = _REACT_NAMESPACE_RE.search(content)
    if usage is None or _REACT_DEFAULT_IMPORT_RE.search(content):
        return []
    return [RuleHit(
        file=path,
        message="'React' is referenced but never imported",
        suggested_fix="Add import React from 'react'",
        line=_line_of(content, usage.start()),
    )]


def _is_react_source(path: str, metadata: ProjectMetadata) -> bool:
    return metadata.framework == "react" and suffix_of(path) in (".js", ".jsx", ".ts", ".tsx")


# A tag opens with "<" that does not follow an operand, so "i<items.length" is a
# comparison rather than an element. Statement punctuation never sits inside a tag.
UNQUOTED_ATTR_RE = re.compile(
    r"(?<![\w)\]$.])(<[A-Za-z][\w.:-]*\b[^<>;(){}]*?\s)([A-Za-z_][\w:.-]*)=([^\s\"'{}<>=`;()]+)(?=[\s/>])"
)


def check_unquoted_attribute(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    match = UNQUOTED_ATTR_RE.search(content)
    if match is None:
        return []
    return [RuleHit(
        file=path,
        message=f"Unquoted JSX attribute value: {match.group(2)}={match.group(3)}",
        suggested_fix="Wrap attribute values in quotes or braces",
        line=_line_of(content, match.start(2)),
    )]


def check_missing_relative_import(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    hits = []
    for match in _RELATIVE_IMPORT_RE.finditer(content):
        specifier = match.group(1)
        target, found = resolve_relative_import(tree, path, specifier)
        if found or target.startswith("../"):
            continue
        hits.append(RuleHit(
            file=path,
            key=target,
            message=f"Import '{specifier}' does not resolve to a file",
            suggested_fix=f"Create {target} or correct the import path",
            line=_line_of(content, match.start(1)),
        ))
    return hits


def css_brace_balance(content: str) -> tuple[int, bool]:
    """Return ``(open_depth, went_negative)`` for a stylesheet."""
    text = blank_css_comments(content)
    text = re.sub(r"\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*'", "''", text)
    depth = 0
    negative = False
    for char in text:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth < 0:
                negative = True
                depth = 0
    return depth, negative


def check_unbalanced_css_braces(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    depth, negative = css_brace_balance(content)
    if negative:
        return [RuleHit(
            file=path,
            message="Stylesheet has a '}' without a matching '{'",
            suggested_fix=f"Remove the stray closing brace in {path}",
        )]
    if depth:
        return [RuleHit(
            file=path,
            message=f"Stylesheet has {depth} unclosed '{{'",
            suggested_fix=f"Close the open block(s) at the end of {path}",
        )]
    return []


_CSS_DECL_RE = re.compile(r"^\s*-{0,2}[a-zA-Z][-a-zA-Z0-9]*\s*:\s*[^;{}]*[^;\s{}]\s*$")
_CSS_DECL_START_RE = re.compile(r"^\s*-{0,2}[a-zA-Z][-a-zA-Z0-9]*\s*:")


def css_lines_missing_semicolon(content: str) -> list[int]:
    """Zero-based indices of declaration lines followed by another declaration without ``;``."""
    lines = blank_css_comments(content).split("\n")
    missing = []
    depth = 0
    for index, line in enumerate(lines):
        if depth > 0 and _CSS_DECL_RE.match(line) and not line.rstrip().endswith(","):
            following = next((l for l in lines[index + 1:] if l.strip()), "")
            if _CSS_DECL_START_RE.match(following) and "{" not in following:
                missing.append(index)
        depth += line.count("{") - line.count("}")
    return missing


def check_css_missing_semicolon(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    missing = css_lines_missing_semicolon(content)
    if not missing:
        return []
    return [RuleHit(
        file=path,
        message=f"{len(missing)} CSS declaration(s) missing a terminating ';'",
        suggested_fix="Terminate every declaration with a semicolon",
        line=missing[0] + 1,
    )]


_MANIFEST_LINK_RE = re.compile(r"<link\b[^>]*\brel\s*=\s*[\"']?manifest", re.IGNORECASE)
_VIEWPORT_META_RE = re.compile(r"<meta\b[^>]*\bname\s*=\s*[\"']?viewport", re.IGNORECASE)


def check_missing_manifest_link(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    if _MANIFEST_LINK_RE.search(content):
        return []
    return [RuleHit(
        file=path,
        message="index.html does not link the web app manifest",
        suggested_fix='Add <link rel="manifest" href="/manifest.json" /> to <head>',
    )]


def check_missing_viewport_meta(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    if _VIEWPORT_META_RE.search(content):
        return []
    return [RuleHit(
        file=path,
        message="index.html has no viewport meta tag; the layout will not scale on mobile",
        suggested_fix='Add <meta name="viewport" content="width=device-width, initial-scale=1.0" />',
    )]


def _is_entry_html(path: str, metadata: ProjectMetadata) -> bool:
    return path == ENTRY_HTML


def check_manifest_missing_icons(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    manifest = parse_json_object(content)
    if manifest is None:
        return []
    icons = manifest.get("icons")
    if isinstance(icons, list) and icons:
        return []
    return [RuleHit(
        file=path,
        message="Manifest declares no icons; browsers will not offer installation",
        suggested_fix="Add 192x192 and 512x512 PNG icons to the manifest",
    )]


def _is_manifest(path: str, metadata: ProjectMetadata) -> bool:
    return path in MANIFEST_CANDIDATES


_IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ALT_ATTR_RE = re.compile(r"(?:^|[\s:])alt\s*=", re.IGNORECASE)


def check_img_missing_alt(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    offenders = [m for m in _IMG_TAG_RE.finditer(content) if not _ALT_ATTR_RE.search(m.group())]
    if not offenders:
        return []
    return [RuleHit(
        file=path,
        message=f"{len(offenders)} <img> element(s) without alt text",
        suggested_fix="Describe each image with an alt attribute (alt=\"\" for decorative images)",
        line=_line_of(content, offenders[0].start()),
    )]


_EXPLICIT_ANY_RE = re.compile(r":\s*any\b|\bas\s+any\b|<any>|\bany\[\]")


def check_explicit_any(path: str, content: str, tree: ProjectTree) -> list[RuleHit]:
    matches = list(_EXPLICIT_ANY_RE.finditer(content))
    if not matches:
        return []
    return [RuleHit(
        file=path,
        message=f"{len(matches)} explicit 'any' type(s)",
        suggested_fix="Replace 'any' with a specific type or 'unknown'",
        line=_line_of(content, matches[0].start()),
    )]


def _is_any_source(path: str, metadata: ProjectMetadata) -> bool:
    return _is_source(path)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BUILTIN_RULES: tuple[IssueRule, ...] = (
    IssueRule("missing-package-json", IssueKind.DEPENDENCY, STRUCTURAL,
              check_missing_package_json, scope="project"),
    IssueRule("invalid-package-json", IssueKind.SYNTAX, STRUCTURAL,
              check_invalid_json, applies_to=_is_package_json),
    IssueRule("invalid-package-name", IssueKind.NAMING, STRUCTURAL,
              check_invalid_package_name, applies_to=_is_package_json),
    IssueRule("missing-dependency", IssueKind.DEPENDENCY, STRUCTURAL,
              check_missing_dependency, scope="project"),
    IssueRule("missing-build-script", IssueKind.BUILD, STRUCTURAL,
              check_missing_build_script, scope="project"),
    IssueRule("missing-manifest", IssueKind.MANIFEST, STRUCTURAL,
              check_missing_manifest, scope="project"),
    IssueRule("missing-entry-html", IssueKind.STRUCTURE, STRUCTURAL,
              check_missing_entry_html, scope="project"),
    IssueRule("missing-entry-module", IssueKind.STRUCTURE, STRUCTURAL,
              check_missing_entry_module, scope="project"),
    IssueRule("missing-app-component", IssueKind.STRUCTURE, STRUCTURAL,
              check_missing_app_component, scope="project"),
    IssueRule("missing-vite-config", IssueKind.BUILD, STRUCTURAL,
              check_missing_vite_config, scope="project"),
    IssueRule("invalid-json", IssueKind.SYNTAX, STRUCTURAL,
              check_invalid_json, applies_to=_is_plain_json),
    IssueRule("missing-react-import", IssueKind.IMPORT, STRUCTURAL,
              check_missing_react_import, applies_to=_is_react_source),
    IssueRule("unquoted-attribute", IssueKind.SYNTAX, STRUCTURAL,
              check_unquoted_attribute, applies_to=_by_suffix(".jsx", ".tsx")),
    IssueRule("missing-relative-import", IssueKind.IMPORT, STRUCTURAL,
              check_missing_relative_import, applies_to=_is_any_source),
    IssueRule("unbalanced-css-braces", IssueKind.SYNTAX, STRUCTURAL,
              check_unbalanced_css_braces, applies_to=_by_suffix(".css")),
    IssueRule("case-collision", IssueKind.NAMING, STRUCTURAL,
              check_case_collision, scope="project"),
    IssueRule("css-missing-semicolon", IssueKind.SYNTAX, STYLE,
              check_css_missing_semicolon, applies_to=_by_suffix(".css")),
    IssueRule("missing-service-worker", IssueKind.STRUCTURE, STYLE,
              check_missing_service_worker, scope="project"),
    IssueRule("missing-manifest-link", IssueKind.SEO, STYLE,
              check_missing_manifest_link, applies_to=_is_entry_html),
    IssueRule("missing-viewport-meta", IssueKind.ACCESSIBILITY, STYLE,
              check_missing_viewport_meta, applies_to=_is_entry_html),
    IssueRule("manifest-missing-icons", IssueKind.MANIFEST, STYLE,
              check_manifest_missing_icons, applies_to=_is_manifest),
    IssueRule("img-missing-alt", IssueKind.ACCESSIBILITY, STYLE,
              check_img_missing_alt, applies_to=_by_suffix(".jsx", ".tsx", ".vue", ".html")),
    IssueRule("explicit-any", IssueKind.BEST_PRACTICE, STYLE,
              check_explicit_any, applies_to=_by_suffix(".ts", ".tsx")),
    IssueRule("feature-conflict", IssueKind.BEST_PRACTICE, STYLE,
              check_feature_conflict, scope="project"),
)
