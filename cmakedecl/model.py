"""
model.py

Responsibility: Typed, immutable model of a build declaration and its invariants.

Both readers (`cmake_parser.py` and `spec_parser.py`) produce a `BuildDeclaration`
and call `validate()` before handing it out, so the rest of the package can treat
a declaration as well-formed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# CMake grew dependency providers in 3.24; declarations default to that floor.
DEFAULT_MINIMUM_VERSION = "3.24"

DEFAULT_LANGUAGES: tuple[str, ...] = ("C", "CXX")

KNOWN_LANGUAGES = frozenset(
    {"ASM", "ASM_MASM", "ASM_NASM", "ASM-ATT", "C", "CSharp", "CUDA", "CXX", "Fortran", "HIP", "ISPC", "Java", "OBJC", "OBJCXX", "Swift"}
)

_C_STANDARDS = frozenset({90, 99, 11, 17, 23})
_CXX_STANDARDS = frozenset({98, 11, 14, 17, 20, 23, 26})

STANDARDS: dict[str, frozenset[int]] = {
    "C": _C_STANDARDS,
    "OBJC": _C_STANDARDS,
    "CXX": _CXX_STANDARDS,
    "CUDA": _CXX_STANDARDS,
    "HIP": _CXX_STANDARDS,
    "OBJCXX": _CXX_STANDARDS,
}

TARGET_KINDS = ("executable", "library")
LIBRARY_TYPES = ("STATIC", "SHARED", "MODULE", "OBJECT", "INTERFACE")
EXECUTABLE_OPTIONS = ("WIN32", "MACOSX_BUNDLE", "EXCLUDE_FROM_ALL")
LIBRARY_OPTIONS = ("EXCLUDE_FROM_ALL",)
LINK_SCOPES = ("PRIVATE", "PUBLIC", "INTERFACE")
LOOKUP_MODES = ("MODULE", "CONFIG")

_VERSION_RE = re.compile(r"^\d+(\.\d+){0,3}$")
_TARGET_NAME_RE = re.compile(r"^[A-Za-z0-9_.+\-]+$")
_STANDARD_SETTING_RE = re.compile(r"^CMAKE_([A-Z]+)_STANDARD(_REQUIRED)?$")


class DeclarationError(ValueError):
    pass


def parse_version(text: str) -> tuple[int, ...]:
    """
    Parse a dotted version such as "3.24" or "3.24.1" into an int tuple.

    For a range like "3.24...3.28" only the lower bound is returned.
    """
    lower = text.split("...", 1)[0].strip()
    if not _VERSION_RE.match(lower):
        raise DeclarationError(f"Invalid version: {text!r}")
    return tuple(int(part) for part in lower.split("."))


def is_version(text: str) -> bool:
    parts = text.split("...", 1)
    return all(_VERSION_RE.match(p) for p in parts)


@dataclass(frozen=True)
class Project:
    """The single `project()` of a declaration."""

    name: str
    languages: tuple[str, ...] = DEFAULT_LANGUAGES
    standard: int | None = None
    standard_language: str | None = None
    standard_required: bool = False
    version: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class Dependency:
    """A `find_package()` lookup. Resolution is left to the consuming build tool."""

    name: str
    required: bool = True
    version: str | None = None
    exact: bool = False
    quiet: bool = False
    mode: str | None = None
    components: tuple[str, ...] = ()
    optional_components: tuple[str, ...] = ()

    @property
    def namespace(self) -> str:
        return self.name

    @property
    def handle(self) -> str:
        """Default namespaced link handle, e.g. `hello::hello`."""
        return f"{self.name}::{self.name}"


@dataclass(frozen=True)
class Target:
    """An executable or library built by the project."""

    name: str
    kind: str = "executable"
    library_type: str | None = None
    options: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    links: tuple[str, ...] = ()
    link_scope: str | None = None


@dataclass(frozen=True)
class BuildDeclaration:
    project: Project
    cmake_minimum_required: str = DEFAULT_MINIMUM_VERSION
    dependencies: tuple[Dependency, ...] = ()
    targets: tuple[Target, ...] = ()
    settings: dict[str, str] = field(default_factory=dict)

    def dependency(self, name: str) -> Dependency | None:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    def target(self, name: str) -> Target | None:
        for tgt in self.targets:
            if tgt.name == name:
                return tgt
        return None

    @property
    def link_edges(self) -> list[tuple[str, str]]:
        return [(t.name, link) for t in self.targets for link in t.links]

    def validate(self) -> BuildDeclaration:
        """
        Check every invariant and raise `DeclarationError` on the first violation.
        Returns self so readers can `return decl.validate()`.
        """
        if not is_version(self.cmake_minimum_required):
            raise DeclarationError(f"Invalid cmake_minimum_required version: {self.cmake_minimum_required!r}")
        _validate_project(self.project)

        seen_deps: set[str] = set()
        for dep in self.dependencies:
            _validate_dependency(dep)
            if dep.name in seen_deps:
                raise DeclarationError(f"Dependency declared more than once: {dep.name}")
            seen_deps.add(dep.name)

        target_names: set[str] = set()
        for tgt in self.targets:
            _validate_target(tgt)
            if tgt.name in target_names:
                raise DeclarationError(f"Target declared more than once: {tgt.name}")
            target_names.add(tgt.name)

        namespaces = {dep.namespace.lower() for dep in self.dependencies}
        for tgt in self.targets:
            for link in tgt.links:
                if link.startswith("$<"):
                    continue
                if "::" in link:
                    ns = link.split("::", 1)[0]
                    if ns.lower() not in namespaces:
                        raise DeclarationError(
                            f"Target {tgt.name!r} links {link!r} but no dependency {ns!r} is declared"
                        )
                elif link not in target_names:
                    raise DeclarationError(f"Target {tgt.name!r} links {link!r} which is neither a dependency nor a target")
                elif link == tgt.name:
                    raise DeclarationError(f"Target {tgt.name!r} links itself")

        for name, value in self.settings.items():
            if not name or not isinstance(value, str):
                raise DeclarationError(f"Invalid setting: {name!r}={value!r}")
            m = _STANDARD_SETTING_RE.match(name)
            if m and ((self.project.standard is None and not m.group(2)) or m.group(1) == self.project.standard_language):
                raise DeclarationError(f"Setting {name} overlaps the project standard; use project.standard instead")

        logger.debug(
            "Declaration %s valid: %d dependencies, %d targets",
            self.project.name,
            len(self.dependencies),
            len(self.targets),
        )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form used for YAML/JSON output; `from_dict` reverses it exactly."""
        p = self.project
        return {
            "cmake_minimum_required": self.cmake_minimum_required,
            "project": {
                "name": p.name,
                "version": p.version,
                "description": p.description,
                "languages": list(p.languages),
                "standard": p.standard,
                "standard_language": p.standard_language,
                "standard_required": p.standard_required,
            },
            "settings": dict(self.settings),
            "dependencies": [
                {
                    "name": d.name,
                    "required": d.required,
                    "version": d.version,
                    "exact": d.exact,
                    "quiet": d.quiet,
                    "mode": d.mode,
                    "components": list(d.components),
                    "optional_components": list(d.optional_components),
                }
                for d in self.dependencies
            ],
            "targets": [
                {
                    "name": t.name,
                    "kind": t.kind,
                    "library_type": t.library_type,
                    "options": list(t.options),
                    "sources": list(t.sources),
                    "links": list(t.links),
                    "link_scope": t.link_scope,
                }
                for t in self.targets
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildDeclaration:
        """
        Build a declaration from plain data (the `to_dict` shape).

        Accepted shorthands:
        - a dependency given as a bare string is a required dependency
        - `kind` defaults to "executable"
        - `standard_language` defaults to CXX when enabled, else the first language
        """
        if not isinstance(data, dict):
            raise DeclarationError("Declaration must be a mapping at the top level.")

        proj_raw = data.get("project")
        if isinstance(proj_raw, str):
            proj_raw = {"name": proj_raw}
        if not isinstance(proj_raw, dict):
            raise DeclarationError("`project` must be a mapping with at least a `name`.")

        languages = proj_raw.get("languages")
        languages = DEFAULT_LANGUAGES if languages is None else tuple(_str_list(languages, "project.languages"))
        standard = _opt_int(proj_raw.get("standard"), "project.standard")
        standard_language = _opt_str(proj_raw.get("standard_language"))
        if standard is not None and standard_language is None:
            standard_language = "CXX" if "CXX" in languages or not languages else languages[0]

        project = Project(
            name=str(proj_raw.get("name") or "").strip(),
            languages=languages,
            standard=standard,
            standard_language=standard_language if standard is not None else None,
            standard_required=_opt_bool(proj_raw.get("standard_required"), False, "project.standard_required"),
            version=_opt_str(proj_raw.get("version")),
            description=_opt_text(proj_raw.get("description")),
        )

        deps_raw = data.get("dependencies") or []
        if not isinstance(deps_raw, list):
            raise DeclarationError("`dependencies` must be a list when provided.")
        dependencies = tuple(_dependency_from(raw) for raw in deps_raw)

        targets_raw = data.get("targets") or []
        if not isinstance(targets_raw, list):
            raise DeclarationError("`targets` must be a list when provided.")
        targets = tuple(_target_from(raw) for raw in targets_raw)

        settings_raw = data.get("settings") or {}
        if not isinstance(settings_raw, dict):
            raise DeclarationError("`settings` must be a mapping when provided.")
        settings = {str(k): _setting_value(v) for k, v in settings_raw.items()}

        return cls(
            project=project,
            cmake_minimum_required=str(data.get("cmake_minimum_required") or DEFAULT_MINIMUM_VERSION).strip(),
            dependencies=dependencies,
            targets=targets,
            settings=settings,
        )


def minimum_version(decl: BuildDeclaration) -> tuple[int, ...]:
    return parse_version(decl.cmake_minimum_required)


def _validate_project(p: Project) -> None:
    if not p.name or any(ch.isspace() for ch in p.name):
        raise DeclarationError(f"Invalid project name: {p.name!r}")
    for lang in p.languages:
        if lang not in KNOWN_LANGUAGES:
            raise DeclarationError(f"Unknown language {lang!r} in project {p.name}")
    if len(set(p.languages)) != len(p.languages):
        raise DeclarationError(f"Duplicate language in project {p.name}: {', '.join(p.languages)}")
    if p.version is not None and not is_version(p.version):
        raise DeclarationError(f"Invalid project version: {p.version!r}")
    if p.standard is None:
        if p.standard_language is not None:
            raise DeclarationError("standard_language given without a standard")
        if p.standard_required:
            raise DeclarationError("standard_required given without a standard")
        return
    lang = p.standard_language
    if lang not in p.languages:
        raise DeclarationError(f"Standard set for {lang} but project {p.name} does not enable {lang}")
    allowed = STANDARDS.get(lang)
    if allowed is None:
        raise DeclarationError(f"Language {lang} has no standard setting")
    if p.standard not in allowed:
        raise DeclarationError(f"Unsupported {lang} standard: {p.standard}")


def _validate_dependency(d: Dependency) -> None:
    if not d.name or any(ch.isspace() for ch in d.name) or "/" in d.name or "::" in d.name:
        raise DeclarationError(f"Invalid dependency name: {d.name!r}")
    if d.version is not None and not is_version(d.version):
        raise DeclarationError(f"Invalid version {d.version!r} for dependency {d.name}")
    if d.exact and d.version is None:
        raise DeclarationError(f"EXACT needs a version (dependency {d.name})")
    if d.mode is not None and d.mode not in LOOKUP_MODES:
        raise DeclarationError(f"Invalid lookup mode {d.mode!r} for dependency {d.name}")
    comps = d.components + d.optional_components
    if any(not c for c in comps) or len(set(comps)) != len(comps):
        raise DeclarationError(f"Empty or repeated component for dependency {d.name}")


def _validate_target(t: Target) -> None:
    if not t.name or "::" in t.name or not _TARGET_NAME_RE.match(t.name):
        raise DeclarationError(f"Invalid target name: {t.name!r}")
    if t.kind not in TARGET_KINDS:
        raise DeclarationError(f"Invalid kind {t.kind!r} for target {t.name}")
    allowed_options = EXECUTABLE_OPTIONS if t.kind == "executable" else LIBRARY_OPTIONS
    for opt in t.options:
        if opt not in allowed_options:
            raise DeclarationError(f"Option {opt} not allowed on {t.kind} {t.name}")
    if t.kind == "executable" and t.library_type is not None:
        raise DeclarationError(f"Executable {t.name} cannot have a library type")
    if t.library_type is not None and t.library_type not in LIBRARY_TYPES:
        raise DeclarationError(f"Invalid library type {t.library_type!r} for target {t.name}")
    if not t.sources and t.library_type != "INTERFACE":
        raise DeclarationError(f"No sources given to target: {t.name}")
    if any(not s for s in t.sources):
        raise DeclarationError(f"Empty source file name in target {t.name}")
    if len(set(t.links)) != len(t.links):
        raise DeclarationError(f"Target {t.name} links the same item more than once")
    if t.link_scope is not None and t.link_scope not in LINK_SCOPES:
        raise DeclarationError(f"Invalid link scope {t.link_scope!r} for target {t.name}")
    if t.link_scope is not None and not t.links:
        raise DeclarationError(f"Link scope without links on target {t.name}")


def _dependency_from(raw: Any) -> Dependency:
    if isinstance(raw, str):
        return Dependency(name=raw.strip())
    if not isinstance(raw, dict):
        raise DeclarationError(f"Dependency entries must be strings or mappings, got: {raw!r}")
    mode = _opt_str(raw.get("mode"))
    return Dependency(
        name=str(raw.get("name") or "").strip(),
        required=_opt_bool(raw.get("required"), True, "required"),
        version=_opt_str(raw.get("version")),
        exact=_opt_bool(raw.get("exact"), False, "exact"),
        quiet=_opt_bool(raw.get("quiet"), False, "quiet"),
        mode=mode.upper() if mode else None,
        components=tuple(_str_list(raw.get("components") or [], "components")),
        optional_components=tuple(_str_list(raw.get("optional_components") or [], "optional_components")),
    )


def _target_from(raw: Any) -> Target:
    if not isinstance(raw, dict):
        raise DeclarationError(f"Target entries must be mappings, got: {raw!r}")
    library_type = _opt_str(raw.get("library_type"))
    link_scope = _opt_str(raw.get("link_scope"))
    return Target(
        name=str(raw.get("name") or "").strip(),
        kind=str(raw.get("kind") or "executable").strip(),
        library_type=library_type.upper() if library_type else None,
        options=tuple(_str_list(raw.get("options") or [], "options")),
        sources=tuple(_str_list(raw.get("sources") or [], "sources")),
        links=tuple(_str_list(raw.get("links") or [], "links")),
        link_scope=link_scope.upper() if link_scope else None,
    )


def _str_list(value: Any, what: str) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise DeclarationError(f"`{what}` must be a list of strings.")
    return [str(v) for v in value]


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _opt_text(value: Any) -> str | None:
    # Free text is kept as written; only an empty string means "not given".
    if value is None or value == "":
        return None
    return str(value)


def _opt_bool(value: Any, default: bool, what: str) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise DeclarationError(f"`{what}` must be true or false, got {value!r}")
    return value


def _opt_int(value: Any, what: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise DeclarationError(f"`{what}` must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise DeclarationError(f"`{what}` must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise DeclarationError(f"`{what}` must be an integer, got {value!r}") from e


def _setting_value(value: Any) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return "" if value is None else str(value)
