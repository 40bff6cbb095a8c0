"""
spec_parser.py

Responsibility: Load a build declaration written as YAML (or as YAML frontmatter
at the top of a markdown file) into the same `BuildDeclaration` the CMake reader
produces.

The mapping follows `BuildDeclaration.to_dict()`; a minimal document looks like:

    project:
      name: MyApp
      languages: [CXX]
      standard: 17
    dependencies: [hello, bye]
    targets:
      - name: app
        sources: [main.cpp]
        links: [hello::hello, bye::bye]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from cmakedecl.cmake_parser import parse_cmake_file, read_minimum_version, read_source
from cmakedecl.model import DEFAULT_MINIMUM_VERSION, BuildDeclaration, DeclarationError

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
MARKDOWN_SUFFIXES = (".md", ".markdown")


class SpecError(DeclarationError):
    pass


def _parse_yaml_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """
    If the markdown begins with YAML frontmatter delimited by '---', parse it.
    Returns (frontmatter_dict_or_none, remaining_markdown_text).
    """
    if not text.startswith("---\n"):
        return None, text

    end = text.find("\n---\n", 4)
    if end == -1:
        raise SpecError("YAML frontmatter starts with '---' but no closing '---' was found.")

    fm_text = text[4:end]
    rest = text[end + len("\n---\n") :]
    data = _load_yaml(fm_text)
    return data, rest


def _load_yaml(text: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise SpecError(f"Invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise SpecError("Declaration must be a mapping/object at the top level.")
    return data


def parse_spec_text(text: str, *, markdown: bool = False) -> BuildDeclaration:
    """
    Parse YAML text (or markdown with YAML frontmatter) into a validated declaration.
    """
    data = _load_data(text, markdown=markdown)
    try:
        return BuildDeclaration.from_dict(data).validate()
    except SpecError:
        raise
    except DeclarationError as e:
        raise SpecError(str(e)) from e


def _load_data(text: str, *, markdown: bool) -> dict[str, Any]:
    if not markdown:
        return _load_yaml(text)
    data, _rest = _parse_yaml_frontmatter(text)
    if data is None:
        raise SpecError("Markdown declarations need YAML frontmatter delimited by '---'.")
    return data


def _read_text(path: Path) -> str:
    if not path.exists():
        raise SpecError(f"Declaration file does not exist: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SpecError(f"Declaration file is not valid UTF-8: {path} ({e.reason} at byte {e.start})") from e


def parse_spec(spec_path: str | Path) -> BuildDeclaration:
    path = Path(spec_path)
    text = _read_text(path)
    logger.debug("Reading declaration %s", path)
    return parse_spec_text(text, markdown=path.suffix.lower() in MARKDOWN_SUFFIXES)


def _resolve(path: str | Path) -> tuple[Path, str]:
    p = Path(path)
    if p.is_dir():
        p = p / "CMakeLists.txt"
    suffix = p.suffix.lower()
    if p.name == "CMakeLists.txt" or suffix == ".cmake":
        return p, "cmake"
    if suffix in YAML_SUFFIXES:
        return p, "yaml"
    if suffix in MARKDOWN_SUFFIXES:
        return p, "markdown"
    raise SpecError(f"Cannot tell the declaration syntax of {p} (expected CMakeLists.txt, *.cmake, *.yaml or *.md)")


def load_declaration(path: str | Path, *, strict: bool = False) -> BuildDeclaration:
    """
    Read a declaration from any supported syntax, chosen by file name:
    `CMakeLists.txt` and `*.cmake` go to the CMake reader, `.yaml`/`.yml`/`.md`
    to the YAML reader.
    """
    p, syntax = _resolve(path)
    if syntax == "cmake":
        return parse_cmake_file(p, strict=strict)
    return parse_spec(p)


def load_minimum_version(path: str | Path) -> str | None:
    """
    Read only the `cmake_minimum_required` floor of a declaration, without
    validating the rest of it. YAML declarations without one get the default.
    """
    p, syntax = _resolve(path)
    if syntax == "cmake":
        return read_minimum_version(read_source(p), path=p)
    data = _load_data(_read_text(p), markdown=syntax == "markdown")
    return str(data.get("cmake_minimum_required") or DEFAULT_MINIMUM_VERSION).strip()


def dump_spec(decl: BuildDeclaration) -> str:
    """YAML form of a declaration; `parse_spec_text` reads it back unchanged."""
    return yaml.safe_dump(decl.to_dict(), sort_keys=False, default_flow_style=False)
