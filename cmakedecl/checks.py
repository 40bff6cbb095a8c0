"""
checks.py

Responsibility: Checks that involve the world outside the declaration itself.

- The consuming tool must meet the declared `cmake_minimum_required` floor. This check
  runs first; nothing else is looked at when it fails.
- Source files must exist. That is a build-time concern, so it is reported apart from
  declaration validation and only when a source directory is given.

Dependency resolution is left to the build tool.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from cmakedecl.model import BuildDeclaration, DeclarationError, parse_version

logger = logging.getLogger(__name__)

_CMAKE_VERSION_RE = re.compile(r"cmake version (\d+(?:\.\d+)*)")
_SOURCE_DIR_REFS = ("${CMAKE_SOURCE_DIR}", "${CMAKE_CURRENT_SOURCE_DIR}", "${CMAKE_CURRENT_LIST_DIR}", "${PROJECT_SOURCE_DIR}")


class SchemaVersionError(RuntimeError):
    pass


class ToolError(RuntimeError):
    pass


@dataclass(frozen=True)
class CheckReport:
    tool_version: tuple[int, ...]
    missing_sources: tuple[Path, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.missing_sources


def format_version(version: tuple[int, ...]) -> str:
    return ".".join(str(v) for v in version)


def _padded(version: tuple[int, ...]) -> tuple[int, ...]:
    return version + (0,) * (4 - len(version))


def detect_cmake_version(cmake: str = "cmake") -> tuple[int, ...]:
    """
    Run `<cmake> --version` and return the version it reports.
    """
    try:
        proc = subprocess.run([cmake, "--version"], check=True, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except OSError as e:
        raise ToolError(f"{e}\nError executing '{cmake} --version'. Are you sure '{cmake}' is installed?") from e
    except subprocess.CalledProcessError as e:
        raise ToolError(f"Command failed: {cmake} --version\n\n{e.stdout}") from e
    m = _CMAKE_VERSION_RE.search(proc.stdout)
    if not m:
        raise ToolError(f"Could not read a version from '{cmake} --version' output:\n{proc.stdout}")
    version = parse_version(m.group(1))
    logger.debug("Detected CMake %s", format_version(version))
    return version


def check_version_floor(floor: str, tool_version: str | tuple[int, ...]) -> tuple[int, ...]:
    """
    Raise `SchemaVersionError` when `tool_version` is below `floor`, a
    `cmake_minimum_required` value such as "3.24" or "3.24...3.28".
    Returns the tool version as a tuple.
    """
    if isinstance(tool_version, str):
        try:
            have = parse_version(tool_version)
        except DeclarationError as e:
            raise ToolError(f"Invalid tool version: {tool_version!r}") from e
    else:
        have = tuple(tool_version)
    need = parse_version(floor)
    if _padded(have) < _padded(need):
        raise SchemaVersionError(
            f"CMake {format_version(need)} or higher is required.  You are running version {format_version(have)}"
        )
    return have


def check_tool_version(decl: BuildDeclaration, tool_version: str | tuple[int, ...]) -> tuple[int, ...]:
    return check_version_floor(decl.cmake_minimum_required, tool_version)


def missing_sources(decl: BuildDeclaration, source_dir: str | Path) -> list[Path]:
    """
    Sources named by the declaration that do not exist under source_dir.

    Source-directory variables resolve to source_dir. Generated sources (under a
    binary directory) and generator expressions cannot be checked and are skipped.
    """
    root = Path(source_dir)
    missing: list[Path] = []
    for target in decl.targets:
        for source in target.sources:
            text = source
            for ref in _SOURCE_DIR_REFS:
                text = text.replace(ref, str(root))
            if "${" in text or "$<" in text:
                logger.debug("Not checking source %s of %s", source, target.name)
                continue
            path = Path(text)
            if not path.is_absolute():
                path = root / path
            if not path.exists() and path not in missing:
                logger.debug("Source %s of target %s is missing", path, target.name)
                missing.append(path)
    return missing


def check_declaration(
    decl: BuildDeclaration,
    *,
    tool_version: str | tuple[int, ...],
    source_dir: str | Path | None = None,
) -> CheckReport:
    have = check_tool_version(decl, tool_version)
    missing = missing_sources(decl, source_dir) if source_dir is not None else []
    return CheckReport(tool_version=have, missing_sources=tuple(missing))
