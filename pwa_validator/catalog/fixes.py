"""Built-in fix strategies.

Every strategy is deterministic: the same finding on the same tree always
produces the same edit.  Confidences are declared here and nowhere else.
"""

from __future__ import annotations

import json
import posixpath
import re
from typing import Any, Optional

from pwa_validator.catalog.profiles import (
    DEV_ONLY_PACKAGES,
    ENTRY_HTML,
    KNOWN_VERSIONS,
    MANIFEST_CANDIDATES,
    MANIFEST_PATH,
    PACKAGE_JSON,
    SERVICE_WORKER_CANDIDATES,
    SERVICE_WORKER_PATH,
    VITE_CONFIG_CANDIDATES,
    build_manifest,
    build_package_json,
    first_present,
    manifest_defaults,
    package_name_for,
    profile_for,
)
from pwa_validator.catalog.registry import FixStrategy
from pwa_validator.catalog.rules import (
    UNQUOTED_ATTR_RE,
    css_brace_balance,
    css_lines_missing_semicolon,
    suffix_of,
)
from pwa_validator.catalog.templates import get_renderer
from pwa_validator.models import Finding, ProjectTree
from pwa_validator.utils import dump_json, parse_json_object, sanitize_name

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def strip_trailing_commas(text: str) -> str:
    """Remove commas that directly precede ``}`` or ``]`` outside strings."""
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    while i < len(text):
        char = text[i]
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
            out.append(char)
        elif char == ",":
            j = i + 1
            while j < len(text) and text[j] in " \t\r\n":
                j += 1
            if j >= len(text) or text[j] not in "}]":
                out.append(char)
        else:
            out.append(char)
        i += 1
    return "".join(out)


def _parses(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _package(tree: ProjectTree) -> Optional[dict[str, Any]]:
    return parse_json_object(tree.files.get(PACKAGE_JSON, ""))


def _require_package(tree: ProjectTree) -> dict[str, Any]:
    pkg = _package(tree)
    if pkg is None:
        raise ValueError(f"{PACKAGE_JSON} is missing or does not parse")
    return pkg


def _require_key(finding: Finding) -> str:
    if finding.key is None:
        raise ValueError(f"Finding {finding.id} names no target")
    return finding.key


def _section_writable(pkg: dict[str, Any], section: str) -> bool:
    return section not in pkg or isinstance(pkg[section], dict)


def _mount_id(tree: ProjectTree) -> str:
    match = re.search(r"<div\s+id=[\"'](\w+)[\"']", tree.files.get(ENTRY_HTML, ""))
    if match:
        return match.group(1)
    return "app" if tree.metadata.framework == "vue" else "root"


def _template_context(tree: ProjectTree, **extra: Any) -> dict[str, Any]:
    profile = profile_for(tree.metadata)
    context: dict[str, Any] = {
        "project_name": tree.metadata.project_name,
        "framework": profile.framework,
        "typescript": profile.typescript,
        "theme_color": manifest_defaults(tree.metadata)["theme_color"],
        "mount_id": _mount_id(tree),
        "entry_module": first_present(tree, profile.entry_module_candidates) or profile.entry_module,
        "vite_plugin": profile.vite_plugin,
        "vite_plugin_import": profile.vite_plugin_import,
    }
    context.update(extra)
    return context


def _absent(finding: Finding, tree: ProjectTree) -> bool:
    return not tree.exists(finding.file)


def _insert_into_head(content: str, tag: str) -> str:
    index = content.lower().find("</head>")
    line_start = content.rfind("\n", 0, index) + 1
    indent = content[line_start:index]
    if indent.strip():
        return f"{content[:index]}{tag}{content[index:]}"
    return f"{content[:line_start]}{indent}  {tag}\n{content[line_start:]}"


# ---------------------------------------------------------------------------
# package.json
# ---------------------------------------------------------------------------


def create_package_json(finding: Finding, tree: ProjectTree) -> str:
    tree.write(PACKAGE_JSON, dump_json(build_package_json(tree.metadata)))
    return f"Created package.json for a {tree.metadata.framework} project"


def _commas_repairable(finding: Finding, tree: ProjectTree) -> bool:
    content = tree.files.get(finding.file)
    if content is None or _parses(content):
        return False
    return _parses(strip_trailing_commas(content))


def repair_trailing_commas(finding: Finding, tree: ProjectTree) -> str:
    tree.write(finding.file, strip_trailing_commas(tree.read(finding.file)))
    return f"Removed trailing commas from {finding.file}"


def _package_parses(finding: Finding, tree: ProjectTree) -> bool:
    return _package(tree) is not None


def sanitize_package_name(finding: Finding, tree: ProjectTree) -> str:
    pkg = _require_package(tree)
    name = pkg.get("name")
    fixed = (sanitize_name(name) if isinstance(name, str) else package_name_for(tree.metadata))[:214]
    pkg["name"] = fixed
    tree.write(PACKAGE_JSON, dump_json(pkg))
    return f"Renamed package to {fixed}"


def _dependency_addable(finding: Finding, tree: ProjectTree) -> bool:
    pkg = _package(tree)
    if pkg is None or finding.key not in KNOWN_VERSIONS:
        return False
    section = "devDependencies" if finding.key in DEV_ONLY_PACKAGES else "dependencies"
    return _section_writable(pkg, section)


def add_missing_dependency(finding: Finding, tree: ProjectTree) -> str:
    pkg = _require_package(tree)
    name = _require_key(finding)
    section = "devDependencies" if name in DEV_ONLY_PACKAGES else "dependencies"
    deps = pkg.setdefault(section, {})
    deps[name] = KNOWN_VERSIONS[name]
    pkg[section] = dict(sorted(deps.items()))
    tree.write(PACKAGE_JSON, dump_json(pkg))
    return f"Added {name}@{KNOWN_VERSIONS[name]} to {section}"


def _script_missing(finding: Finding, tree: ProjectTree) -> bool:
    pkg = _package(tree)
    if pkg is None or not _section_writable(pkg, "scripts"):
        return False
    return finding.key not in pkg.get("scripts", {})


def add_build_script(finding: Finding, tree: ProjectTree) -> str:
    """Add the missing script along with any other standard script that is absent."""
    pkg = _require_package(tree)
    scripts = pkg.setdefault("scripts", {})
    standard = profile_for(tree.metadata).scripts
    added = [name for name in standard if name not in scripts]
    for name in added:
        scripts[name] = standard[name]
    tree.write(PACKAGE_JSON, dump_json(pkg))
    return f"Added {', '.join(repr(name) for name in added)} script(s) to package.json"


# ---------------------------------------------------------------------------
# Structural files
# ---------------------------------------------------------------------------


def _manifest_absent(finding: Finding, tree: ProjectTree) -> bool:
    return first_present(tree, MANIFEST_CANDIDATES) is None


def create_manifest(finding: Finding, tree: ProjectTree) -> str:
    tree.write(MANIFEST_PATH, dump_json(build_manifest(tree.metadata)))
    return f"Created {MANIFEST_PATH} with required keys and icons"


def create_entry_html(finding: Finding, tree: ProjectTree) -> str:
    tree.write(ENTRY_HTML, get_renderer().render("index.html.j2", _template_context(tree)))
    return "Created index.html with viewport, manifest link and module entry"


def create_entry_module(finding: Finding, tree: ProjectTree) -> str:
    profile = profile_for(tree.metadata)
    template = "vue_main.j2" if profile.framework == "vue" else "react_main.j2"
    register = first_present(tree, SERVICE_WORKER_CANDIDATES) is not None
    content = get_renderer().render(template, _template_context(tree, register_sw=register))
    tree.write(finding.file, content)
    return f"Created {finding.file} mounting the App component"


def create_app_component(finding: Finding, tree: ProjectTree) -> str:
    profile = profile_for(tree.metadata)
    template = "vue_app.j2" if profile.framework == "vue" else "react_app.j2"
    tree.write(finding.file, get_renderer().render(template, _template_context(tree)))
    return f"Created root component {finding.file}"


def _vite_config_absent(finding: Finding, tree: ProjectTree) -> bool:
    return first_present(tree, VITE_CONFIG_CANDIDATES) is None


def create_vite_config(finding: Finding, tree: ProjectTree) -> str:
    tree.write(finding.file, get_renderer().render("vite_config.j2", _template_context(tree)))
    return f"Created {finding.file} with {profile_for(tree.metadata).vite_plugin_import}"


def _service_worker_absent(finding: Finding, tree: ProjectTree) -> bool:
    return first_present(tree, SERVICE_WORKER_CANDIDATES) is None


def _service_worker_targets(finding: Finding, tree: ProjectTree) -> list[str]:
    # Entry module is locked even when absent; create-entry-module may be writing it.
    profile = profile_for(tree.metadata)
    entry = first_present(tree, profile.entry_module_candidates) or profile.entry_module
    return [SERVICE_WORKER_PATH, entry]


def create_service_worker(finding: Finding, tree: ProjectTree) -> str:
    renderer = get_renderer()
    tree.write(SERVICE_WORKER_PATH, renderer.render("sw.js.j2", _template_context(tree)))
    entry = first_present(tree, profile_for(tree.metadata).entry_module_candidates)
    if entry and "serviceWorker" not in tree.read(entry):
        snippet = renderer.render("sw_register.j2", {})
        content = tree.read(entry).rstrip("\n")
        tree.write(entry, f"{content}\n\n{snippet}")
        return f"Created {SERVICE_WORKER_PATH} and registered it in {entry}"
    return f"Created {SERVICE_WORKER_PATH}"


# ---------------------------------------------------------------------------
# Source edits
# ---------------------------------------------------------------------------

_NAMED_REACT_IMPORT_RE = re.compile(
    r"^(\s*)import\s+(\{[^}]*\})\s+from\s+(['\"])react\3", re.MULTILINE
)


def add_react_import(finding: Finding, tree: ProjectTree) -> str:
    content = tree.read(finding.file)
    match = _NAMED_REACT_IMPORT_RE.search(content)
    if match:
        rewritten = (
            f"{match.group(1)}import React, {match.group(2)} from {match.group(3)}react{match.group(3)}"
        )
        content = content[:match.start()] + rewritten + content[match.end():]
    else:
        content = "import React from 'react';\n" + content
    tree.write(finding.file, content)
    return f"Added React import to {finding.file}"


def quote_jsx_attributes(finding: Finding, tree: ProjectTree) -> str:
    content = tree.read(finding.file)
    total = 0
    while True:
        content, count = UNQUOTED_ATTR_RE.subn(r'\1\2="\3"', content)
        total += count
        if not count:
            break
    tree.write(finding.file, content)
    return f"Quoted {total} JSX attribute value(s) in {finding.file}"


def _target_absent(finding: Finding, tree: ProjectTree) -> bool:
    return finding.key is not None and not tree.exists(finding.key)


def _stylesheet_creatable(finding: Finding, tree: ProjectTree) -> bool:
    return _target_absent(finding, tree) and suffix_of(finding.key or "") == ".css"


def _import_target(finding: Finding, tree: ProjectTree) -> list[str]:
    return [finding.key] if finding.key else []


def create_missing_stylesheet(finding: Finding, tree: ProjectTree) -> str:
    target = _require_key(finding)
    content = get_renderer().render("stylesheet.css.j2", {"source_file": target})
    tree.write(target, content)
    return f"Created empty stylesheet {target} imported by {finding.file}"


def component_stub_path(finding: Finding, tree: ProjectTree) -> Optional[str]:
    """Where a stub for the unresolved import should go, if one makes sense."""
    if not _target_absent(finding, tree):
        return None
    target = finding.key or ""
    stem, suffix = posixpath.splitext(posixpath.basename(target))
    if not stem[:1].isupper():
        return None
    profile = profile_for(tree.metadata)
    if profile.framework == "vue":
        return target if suffix == ".vue" else None
    if suffix == "":
        return target + profile.component_suffix
    if suffix in (".jsx", ".tsx"):
        return target
    return None


def _stub_creatable(finding: Finding, tree: ProjectTree) -> bool:
    path = component_stub_path(finding, tree)
    return path is not None and not tree.exists(path)


def _stub_targets(finding: Finding, tree: ProjectTree) -> list[str]:
    path = component_stub_path(finding, tree)
    return [path] if path else []


def create_component_stub(finding: Finding, tree: ProjectTree) -> str:
    path = component_stub_path(finding, tree)
    if path is None:
        raise ValueError(f"No stub location for {finding.key!r}")
    profile = profile_for(tree.metadata)
    template = "vue_component_stub.j2" if profile.framework == "vue" else "react_component_stub.j2"
    name = posixpath.splitext(posixpath.basename(path))[0]
    tree.write(path, get_renderer().render(template, _template_context(tree, component_name=name)))
    return f"Created placeholder component {path} imported by {finding.file}"


def _braces_closable(finding: Finding, tree: ProjectTree) -> bool:
    content = tree.files.get(finding.file)
    if content is None:
        return False
    depth, negative = css_brace_balance(content)
    return depth > 0 and not negative


def close_css_braces(finding: Finding, tree: ProjectTree) -> str:
    content = tree.read(finding.file)
    depth, _ = css_brace_balance(content)
    if not content.endswith("\n"):
        content += "\n"
    tree.write(finding.file, content + "}\n" * depth)
    return f"Closed {depth} open block(s) at the end of {finding.file}"


def add_css_semicolons(finding: Finding, tree: ProjectTree) -> str:
    content = tree.read(finding.file)
    lines = content.split("\n")
    missing = css_lines_missing_semicolon(content)
    for index in missing:
        stripped = lines[index].rstrip()
        lines[index] = stripped + ";" + lines[index][len(stripped):]
    tree.write(finding.file, "\n".join(lines))
    return f"Added {len(missing)} missing semicolon(s) in {finding.file}"


def _has_head(finding: Finding, tree: ProjectTree) -> bool:
    return "</head>" in tree.files.get(finding.file, "").lower()


def add_manifest_link(finding: Finding, tree: ProjectTree) -> str:
    tag = '<link rel="manifest" href="/manifest.json" />'
    tree.write(finding.file, _insert_into_head(tree.read(finding.file), tag))
    return f"Linked the web app manifest from {finding.file}"


def add_viewport_meta(finding: Finding, tree: ProjectTree) -> str:
    tag = '<meta name="viewport" content="width=device-width, initial-scale=1.0" />'
    tree.write(finding.file, _insert_into_head(tree.read(finding.file), tag))
    return f"Added viewport meta tag to {finding.file}"


def _file_present(finding: Finding, tree: ProjectTree) -> bool:
    return tree.has(finding.file)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BUILTIN_STRATEGIES: tuple[FixStrategy, ...] = (
    FixStrategy("create-package-json", "missing-package-json", 1.0,
                create_package_json, precondition=_absent),
    FixStrategy("repair-package-json-commas", "invalid-package-json", 0.9,
                repair_trailing_commas, precondition=_commas_repairable),
    FixStrategy("sanitize-package-name", "invalid-package-name", 1.0,
                sanitize_package_name, precondition=_package_parses),
    FixStrategy("add-missing-dependency", "missing-dependency", 1.0,
                add_missing_dependency, precondition=_dependency_addable),
    FixStrategy("add-build-script", "missing-build-script", 1.0,
                add_build_script, precondition=_script_missing),
    FixStrategy("create-manifest", "missing-manifest", 1.0,
                create_manifest, precondition=_manifest_absent),
    FixStrategy("create-entry-html", "missing-entry-html", 1.0,
                create_entry_html, precondition=_absent),
    FixStrategy("create-entry-module", "missing-entry-module", 0.95,
                create_entry_module, precondition=_absent),
    FixStrategy("create-app-component", "missing-app-component", 0.95,
                create_app_component, precondition=_absent),
    FixStrategy("create-vite-config", "missing-vite-config", 0.95,
                create_vite_config, precondition=_vite_config_absent),
    FixStrategy("repair-json-commas", "invalid-json", 0.9,
                repair_trailing_commas, precondition=_commas_repairable),
    FixStrategy("add-react-import", "missing-react-import", 0.95,
                add_react_import, precondition=_file_present),
    FixStrategy("quote-jsx-attributes", "unquoted-attribute", 0.9,
                quote_jsx_attributes, precondition=_file_present),
    FixStrategy("create-missing-stylesheet", "missing-relative-import", 0.95,
                create_missing_stylesheet, precondition=_stylesheet_creatable,
                targets=_import_target),
    FixStrategy("create-component-stub", "missing-relative-import", 0.8,
                create_component_stub, precondition=_stub_creatable,
                targets=_stub_targets),
    FixStrategy("close-css-braces", "unbalanced-css-braces", 0.85,
                close_css_braces, precondition=_braces_closable),
    FixStrategy("add-css-semicolons", "css-missing-semicolon", 0.9,
                add_css_semicolons, precondition=_file_present),
    FixStrategy("create-service-worker", "missing-service-worker", 1.0,
                create_service_worker, precondition=_service_worker_absent,
                targets=_service_worker_targets),
    FixStrategy("add-manifest-link", "missing-manifest-link", 0.9,
                add_manifest_link, precondition=_has_head),
    FixStrategy("add-viewport-meta", "missing-viewport-meta", 0.95,
                add_viewport_meta, precondition=_has_head),
)
