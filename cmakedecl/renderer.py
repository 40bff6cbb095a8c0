"""
renderer.py

Responsibility: Turn a `BuildDeclaration` back into files.

- `render_cmakelists()`: canonical CMakeLists.txt; parsing it again gives an equal declaration.
- `render_conanfile()`: conanfile.txt listing the declared dependencies for Conan.
- `render_template_dir()`: deterministic project scaffolding from a template directory.

Rules for template directories:
- Walk template files in sorted order to ensure deterministic output.
- For UTF-8 text files, if Jinja2 markers are present, render with the provided context.
- Non-text/binary files are copied byte-for-byte.

This module does not parse anything and does not run any build tool.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined

from cmakedecl.cmake_parser import PRESERVED_VARIABLES
from cmakedecl.model import BuildDeclaration, Dependency, Project, Target

logger = logging.getLogger(__name__)

# Packages CMake finds with its own modules; Conan never provides them.
CMAKE_PROVIDED_PACKAGES = frozenset({"Threads", "OpenMP", "OpenGL", "PkgConfig", "Python", "Python3", "Git", "Doxygen"})

CMAKELISTS_TEMPLATE = """\
cmake_minimum_required(VERSION {{ minimum }})
{{ project_line }}
{% if body %}

{% for line in body %}
{{ line }}
{% endfor %}
{% endif %}
"""

CONANFILE_TEMPLATE = """\
[requires]
{% for ref in requires %}
{{ ref }}
{% endfor %}

[generators]
CMakeDeps
CMakeToolchain
"""

_BARE_ARG_RE = re.compile(r"^[A-Za-z0-9_.+\-/:=,@%<>]+$")
_VAR_REF_RE = re.compile(r"\$\{([A-Za-z0-9_./+\-]*)\}")


class RenderError(RuntimeError):
    pass


@dataclass(frozen=True)
class RenderResult:
    rendered_files: int
    copied_files: int


def _environment() -> Environment:
    env = Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["cmake_quote"] = cmake_quote
    return env


def cmake_quote(value: str) -> str:
    """
    Spell a value as one CMake argument: bare when it is safe, otherwise quoted
    with `\\`, `"` and `$` escaped. References to directory variables such as
    `${CMAKE_CURRENT_SOURCE_DIR}` stay live.
    """
    if _BARE_ARG_RE.match(value):
        return value
    out: list[str] = []
    for i, ch in enumerate(value):
        if ch == "$":
            m = _VAR_REF_RE.match(value, i)
            if not (m and m.group(1) in PRESERVED_VARIABLES):
                out.append("\\")
        elif ch in '\\"':
            out.append("\\")
        out.append(ch)
    return '"' + "".join(out) + '"'


def _command(name: str, args: list[str]) -> str:
    return f"{name}({' '.join(cmake_quote(a) for a in args)})"


def _project_line(p: Project) -> str:
    languages = list(p.languages) or ["NONE"]
    args = [p.name]
    if p.version is None and p.description is None:
        args.extend(languages)
    else:
        if p.version is not None:
            args.extend(["VERSION", p.version])
        if p.description is not None:
            args.extend(["DESCRIPTION", p.description])
        args.extend(["LANGUAGES", *languages])
    return _command("project", args)


def _find_package_line(d: Dependency) -> str:
    args = [d.name]
    if d.version is not None:
        args.append(d.version)
    if d.exact:
        args.append("EXACT")
    if d.quiet:
        args.append("QUIET")
    if d.mode is not None:
        args.append(d.mode)
    if d.required:
        args.append("REQUIRED")
    if d.components:
        args.extend(["COMPONENTS", *d.components])
    if d.optional_components:
        args.extend(["OPTIONAL_COMPONENTS", *d.optional_components])
    return _command("find_package", args)


def _target_lines(t: Target) -> list[str]:
    if t.kind == "executable":
        lines = [_command("add_executable", [t.name, *t.options, *t.sources])]
    else:
        head = [t.name] + ([t.library_type] if t.library_type else [])
        lines = [_command("add_library", [*head, *t.options, *t.sources])]
    if t.links:
        scope = [t.link_scope] if t.link_scope else []
        lines.append(_command("target_link_libraries", [t.name, *scope, *t.links]))
    return lines


def render_cmakelists(decl: BuildDeclaration) -> str:
    """
    Render the canonical CMakeLists.txt for a declaration.

    Order: minimum version, project, language standard, other settings,
    find_package calls, then each target followed by its link line.
    """
    p = decl.project
    body: list[str] = []
    if p.standard is not None:
        body.append(_command("set", [f"CMAKE_{p.standard_language}_STANDARD", str(p.standard)]))
        if p.standard_required:
            body.append(_command("set", [f"CMAKE_{p.standard_language}_STANDARD_REQUIRED", "ON"]))
    for name, value in decl.settings.items():
        body.append(_command("set", [name, value]))
    body.extend(_find_package_line(d) for d in decl.dependencies)
    for t in decl.targets:
        body.extend(_target_lines(t))

    template = _environment().from_string(CMAKELISTS_TEMPLATE)
    return template.render(
        minimum=cmake_quote(decl.cmake_minimum_required),
        project_line=_project_line(p),
        body=body,
    )


def conan_requires(decl: BuildDeclaration, versions: Mapping[str, str] | None = None) -> list[str]:
    """
    Conan references (`name/version`) for the declared dependencies.

    `versions` overrides or supplies versions, keyed by dependency name as declared
    or by its lower-case Conan name. A required dependency without any version is an
    error; an optional one is skipped.
    """
    versions = dict(versions or {})
    refs: list[str] = []
    for dep in decl.dependencies:
        lowered = versions.pop(dep.name.lower(), None)
        given = versions.pop(dep.name, None) or lowered
        if dep.name in CMAKE_PROVIDED_PACKAGES:
            if given:
                logger.warning("Ignoring version %s for %s: provided by CMake itself", given, dep.name)
            else:
                logger.debug("Skipping %s: provided by CMake itself", dep.name)
            continue
        version = given or dep.version
        if not version:
            if dep.required:
                raise RenderError(f"No version known for required dependency {dep.name!r} (use --require {dep.name}=<version>)")
            logger.warning("Skipping optional dependency %s: no version given", dep.name)
            continue
        # Conan reference names are lower-case (CMake's `Boost` is Conan's `boost`).
        refs.append(f"{dep.name.lower()}/{version}")
    if versions:
        raise RenderError(f"Versions given for undeclared dependencies: {', '.join(sorted(versions))}")
    return refs


def render_conanfile(decl: BuildDeclaration, versions: Mapping[str, str] | None = None) -> str:
    template = _environment().from_string(CONANFILE_TEMPLATE)
    return template.render(requires=conan_requires(decl, versions))


def build_context(decl: BuildDeclaration, versions: Mapping[str, str] | None = None) -> dict[str, Any]:
    # Deterministic keys; templates should reference these.
    data = decl.to_dict()
    return {
        "cmake_minimum_required": decl.cmake_minimum_required,
        "project": data["project"],
        "dependencies": data["dependencies"],
        "targets": data["targets"],
        "settings": data["settings"],
        "cmakelists": render_cmakelists(decl),
        "conanfile": render_conanfile(decl, versions),
    }


def _is_binary_file(path: Path) -> bool:
    """
    Best-effort: treat a file as binary if it cannot be decoded as UTF-8.
    """
    try:
        path.read_text(encoding="utf-8")
        return False
    except UnicodeDecodeError:
        return True


def _iter_template_files(template_dir: Path) -> list[Path]:
    """
    Return all files under template_dir, in deterministic lexicographic order
    (relative path ordering).
    """
    files: list[Path] = []
    for root, _dirs, filenames in os.walk(template_dir):
        root_path = Path(root)
        for name in filenames:
            files.append(root_path / name)
    files.sort(key=lambda p: str(p.relative_to(template_dir)).replace(os.sep, "/"))
    return files


def render_template_dir(
    *,
    template_dir: str | Path,
    destination_dir: str | Path,
    context: dict[str, Any],
) -> RenderResult:
    """
    Render/copy a template directory into destination_dir.

    - Creates destination directories as needed.
    - Copies file permissions from template files.
    """
    tpl_dir = Path(template_dir).resolve()
    dst_dir = Path(destination_dir).resolve()

    if not tpl_dir.is_dir():
        raise RenderError(f"Template directory not found: {tpl_dir}")

    env = _environment()
    rendered = 0
    copied = 0

    for src_path in _iter_template_files(tpl_dir):
        rel = src_path.relative_to(tpl_dir)
        dst_path = dst_dir / rel
        dst_path.parent.mkdir(parents=True, exist_ok=True)

        if _is_binary_file(src_path):
            shutil.copy2(src_path, dst_path)
            copied += 1
            continue

        text = src_path.read_text(encoding="utf-8")
        if ("{{" in text) or ("{%" in text) or ("{#" in text):
            try:
                out = env.from_string(text).render(**context)
            except Exception as e:  # noqa: BLE001 - surface as RenderError
                raise RenderError(f"Failed rendering template file: {rel}") from e
            dst_path.write_text(out, encoding="utf-8", newline="\n")
            shutil.copystat(src_path, dst_path)
            rendered += 1
        else:
            shutil.copy2(src_path, dst_path)
            copied += 1
        logger.debug("Wrote %s", dst_path)

    logger.info("Scaffolded %s: %d rendered, %d copied", dst_dir, rendered, copied)
    return RenderResult(rendered_files=rendered, copied_files=copied)
