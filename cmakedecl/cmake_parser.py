"""
cmake_parser.py

Responsibility: Read a CMakeLists.txt into a `BuildDeclaration`.

Two stages:
- `tokenize()` turns CMake language source into command invocations (no evaluation).
- `parse_cmake()` evaluates the declarative subset of commands in order and builds
  the model: cmake_minimum_required, project, set/unset, find_package,
  add_executable, add_library, target_sources, target_link_libraries.

Control flow (`if`, `foreach`, `function`, ...) is never evaluated. Commands outside
the subset are skipped with a warning, or rejected when `strict=True`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from cmakedecl.model import (
    DEFAULT_LANGUAGES,
    EXECUTABLE_OPTIONS,
    LIBRARY_OPTIONS,
    LIBRARY_TYPES,
    LINK_SCOPES,
    BuildDeclaration,
    DeclarationError,
    Dependency,
    Project,
    Target,
    is_version,
)

logger = logging.getLogger(__name__)

# Directory variables only the configuring tool knows; references to them are kept as-is.
PRESERVED_VARIABLES = frozenset(
    {
        "CMAKE_SOURCE_DIR",
        "CMAKE_CURRENT_SOURCE_DIR",
        "CMAKE_CURRENT_LIST_DIR",
        "PROJECT_SOURCE_DIR",
        "CMAKE_BINARY_DIR",
        "CMAKE_CURRENT_BINARY_DIR",
        "PROJECT_BINARY_DIR",
    }
)

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_BRACKET_OPEN_RE = re.compile(r"\[(=*)\[")
_VAR_REF_RE = re.compile(r"\$\{([A-Za-z0-9_./+\-]*)\}")
_STANDARD_VAR_RE = re.compile(r"^CMAKE_([A-Z]+)_STANDARD(_REQUIRED)?$")

_ESCAPE_ENCODED = {"t": "\t", "n": "\n", "r": "\r"}
_ESCAPED_DOLLAR = "\x01"
_ESCAPED_SEMICOLON = "\x02"
_MAX_EXPANSION_DEPTH = 32

_PROJECT_KEYWORDS = ("VERSION", "DESCRIPTION", "HOMEPAGE_URL", "LANGUAGES")
_FIND_PACKAGE_OPTIONS = frozenset(
    {
        "GLOBAL",
        "NO_POLICY_SCOPE",
        "BYPASS_PROVIDER",
        "NAMES",
        "CONFIGS",
        "HINTS",
        "PATHS",
        "PATH_SUFFIXES",
        "REGISTRY_VIEW",
        "NO_DEFAULT_PATH",
        "NO_PACKAGE_ROOT_PATH",
        "NO_CMAKE_PATH",
        "NO_CMAKE_ENVIRONMENT_PATH",
        "NO_SYSTEM_ENVIRONMENT_PATH",
        "NO_CMAKE_PACKAGE_REGISTRY",
        "NO_CMAKE_SYSTEM_PATH",
        "NO_CMAKE_INSTALL_PREFIX",
        "NO_CMAKE_SYSTEM_PACKAGE_REGISTRY",
        "CMAKE_FIND_ROOT_PATH_BOTH",
        "ONLY_CMAKE_FIND_ROOT_PATH",
        "NO_CMAKE_FIND_ROOT_PATH",
    }
)
_TRUE_CONSTANTS = frozenset({"1", "ON", "YES", "TRUE", "Y"})


class CMakeParseError(DeclarationError):
    def __init__(self, message: str, *, path: str | Path | None = None, line: int | None = None) -> None:
        self.message = message
        self.path = str(path) if path is not None else None
        self.line = line
        location = self.path or "<string>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")


@dataclass(frozen=True)
class Argument:
    """A raw command argument; `value` excludes the quote/bracket delimiters."""

    value: str
    kind: str  # "unquoted", "quoted" or "bracket"
    line: int


@dataclass(frozen=True)
class Command:
    name: str  # lower-cased; CMake command names are case-insensitive
    args: tuple[Argument, ...]
    line: int


class _Lexer:
    def __init__(self, text: str, path: str | Path | None) -> None:
        self.text = text
        self.path = path
        self.pos = 0
        self.line = 1

    def error(self, message: str, line: int | None = None) -> CMakeParseError:
        return CMakeParseError(message, path=self.path, line=line or self.line)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def advance(self, count: int) -> str:
        chunk = self.text[self.pos : self.pos + count]
        self.line += chunk.count("\n")
        self.pos += len(chunk)
        return chunk

    def skip_blanks(self) -> None:
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch in " \t\r\n":
                self.advance(1)
            elif ch == "#":
                m = _BRACKET_OPEN_RE.match(self.text, self.pos + 1)
                if m:
                    self.advance(1)
                    self.read_bracket(m)
                else:
                    end = self.text.find("\n", self.pos)
                    self.advance((len(self.text) if end == -1 else end) - self.pos)
            else:
                return

    def read_bracket(self, m: re.Match[str]) -> str:
        start_line = self.line
        close = "]" + m.group(1) + "]"
        self.advance(len(m.group(0)))
        end = self.text.find(close, self.pos)
        if end == -1:
            raise self.error("Unterminated bracket", start_line)
        content = self.advance(end - self.pos)
        self.advance(len(close))
        # A newline right after the opening bracket is not part of the content.
        if content.startswith("\r\n"):
            return content[2:]
        if content.startswith("\n"):
            return content[1:]
        return content

    def read_quoted(self) -> str:
        start_line = self.line
        self.advance(1)
        i = self.pos
        while i < len(self.text):
            ch = self.text[i]
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                raw = self.advance(i - self.pos)
                self.advance(1)
                return raw
            i += 1
        raise self.error("Unterminated quoted argument", start_line)

    def read_unquoted(self) -> str:
        i = self.pos
        while i < len(self.text):
            ch = self.text[i]
            if ch == "\\":
                i += 2
                continue
            if ch in ' \t\r\n()#"':
                break
            i += 1
        if i == self.pos:
            raise self.error(f"Unexpected character {self.peek()!r}")
        return self.advance(i - self.pos)

    def arguments(self, command_line: int) -> list[Argument]:
        args: list[Argument] = []
        depth = 0
        while True:
            self.skip_blanks()
            ch = self.peek()
            line = self.line
            if ch == "":
                raise self.error("Unterminated command invocation", command_line)
            if ch == ")":
                self.advance(1)
                if depth == 0:
                    return args
                depth -= 1
                args.append(Argument(")", "unquoted", line))
            elif ch == "(":
                self.advance(1)
                depth += 1
                args.append(Argument("(", "unquoted", line))
            elif ch == '"':
                args.append(Argument(self.read_quoted(), "quoted", line))
            else:
                m = _BRACKET_OPEN_RE.match(self.text, self.pos) if ch == "[" else None
                if m:
                    args.append(Argument(self.read_bracket(m), "bracket", line))
                else:
                    args.append(Argument(self.read_unquoted(), "unquoted", line))

    def commands(self) -> Iterator[Command]:
        while True:
            self.skip_blanks()
            if self.pos >= len(self.text):
                return
            m = _IDENT_RE.match(self.text, self.pos)
            if not m:
                raise self.error(f"Expected a command name, found {self.peek()!r}")
            line = self.line
            name = self.advance(len(m.group(0)))
            while self.peek() in (" ", "\t"):
                self.advance(1)
            if self.peek() != "(":
                raise self.error(f"Expected '(' after command name {name!r}")
            self.advance(1)
            yield Command(name=name.lower(), args=tuple(self.arguments(line)), line=line)


def tokenize(text: str, *, path: str | Path | None = None) -> list[Command]:
    """Split CMake source into command invocations, dropping comments."""
    return list(_Lexer(_strip_bom(text), path).commands())


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text


def read_source(path: str | Path) -> str:
    p = Path(path)
    if not p.exists():
        raise CMakeParseError("File does not exist", path=p)
    try:
        return p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise CMakeParseError(f"File is not valid UTF-8: {e.reason} at byte {e.start}", path=p) from e


def read_minimum_version(text: str, *, path: str | Path | None = None) -> str | None:
    """
    The VERSION floor of the first cmake_minimum_required() call, or None when there is none.

    Only the commands up to that call are lexed, so errors further down the file
    (syntax or declaration) do not hide the floor.
    """
    for cmd in _Lexer(_strip_bom(text), path).commands():
        if cmd.name != "cmake_minimum_required":
            continue
        args: list[str] = []
        for arg in cmd.args:
            args.extend(evaluate_argument(arg, {}, path=path))
        if len(args) < 2 or args[0] != "VERSION" or not is_version(args[1]):
            raise CMakeParseError("cmake_minimum_required(): expected VERSION <min>[...<max>]", path=path, line=cmd.line)
        return args[1]
    return None


def _unescape(arg: Argument, path: str | Path | None) -> str:
    raw = arg.value
    quoted = arg.kind == "quoted"
    out: list[str] = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        nxt = raw[i + 1 : i + 2]
        if nxt == "":
            raise CMakeParseError("Trailing backslash in argument", path=path, line=arg.line)
        if nxt in _ESCAPE_ENCODED:
            out.append(_ESCAPE_ENCODED[nxt])
        elif nxt == ";":
            out.append(_ESCAPED_SEMICOLON)
        elif nxt == "$":
            out.append(_ESCAPED_DOLLAR)
        elif quoted and nxt == "\n":
            pass
        elif quoted and raw[i + 1 : i + 3] == "\r\n":
            i += 1
        elif nxt.isalnum():
            raise CMakeParseError(f"Invalid escape sequence \\{nxt}", path=path, line=arg.line)
        else:
            out.append(nxt)
        i += 2
    return "".join(out)


def _expand(text: str, variables: dict[str, str], *, path: str | Path | None, line: int) -> str:
    def lookup(m: re.Match[str]) -> str:
        name = m.group(1)
        if name in variables:
            return variables[name]
        if name in PRESERVED_VARIABLES:
            return m.group(0)
        logger.debug("%s:%d: variable %s is not defined; expanding to an empty string", path or "<string>", line, name)
        return ""

    for _ in range(_MAX_EXPANSION_DEPTH):
        expanded = _VAR_REF_RE.sub(lookup, text)
        if expanded == text:
            return text
        text = expanded
    raise CMakeParseError("Variable references nested too deeply", path=path, line=line)


def evaluate_argument(arg: Argument, variables: dict[str, str], *, path: str | Path | None = None) -> list[str]:
    """
    Evaluate one argument the way CMake does: bracket arguments are literal,
    quoted arguments are one value, unquoted arguments split on `;`.
    """
    if arg.kind == "bracket":
        return [arg.value]
    text = _expand(_unescape(arg, path), variables, path=path, line=arg.line)
    text = text.replace(_ESCAPED_DOLLAR, "$")
    if arg.kind == "quoted":
        return [text.replace(_ESCAPED_SEMICOLON, ";")]
    return [item.replace(_ESCAPED_SEMICOLON, ";") for item in text.split(";") if item]


def _truthy(value: str) -> bool:
    upper = value.upper()
    if upper in _TRUE_CONSTANTS:
        return True
    try:
        return float(value) != 0
    except ValueError:
        return False


@dataclass
class _TargetBuilder:
    name: str
    kind: str
    line: int
    library_type: str | None = None
    options: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    link_scope: str | None = None

    def build(self) -> Target:
        return Target(
            name=self.name,
            kind=self.kind,
            library_type=self.library_type,
            options=tuple(self.options),
            sources=tuple(self.sources),
            links=tuple(self.links),
            link_scope=self.link_scope,
        )


class _Reader:
    def __init__(self, path: str | Path | None, strict: bool) -> None:
        self.path = path
        self.strict = strict
        self.minimum: str | None = None
        self.project: Project | None = None
        self.variables: dict[str, str] = {}
        self.settings: dict[str, str] = {}
        self.standards: dict[str, int] = {}
        self.dependencies: list[Dependency] = []
        self.targets: dict[str, _TargetBuilder] = {}

    def error(self, cmd: Command, message: str) -> CMakeParseError:
        return CMakeParseError(f"{cmd.name}(): {message}", path=self.path, line=cmd.line)

    def unsupported(self, cmd: Command, reason: str) -> None:
        if self.strict:
            raise self.error(cmd, f"unsupported: {reason}")
        logger.warning("%s:%d: ignoring %s(): %s", self.path or "<string>", cmd.line, cmd.name, reason)

    def run(self, commands: list[Command]) -> BuildDeclaration:
        for cmd in commands:
            handler = getattr(self, f"_cmd_{cmd.name}", None)
            if handler is None:
                self.unsupported(cmd, "command is not part of the declarative subset")
                continue
            args: list[str] = []
            for arg in cmd.args:
                args.extend(evaluate_argument(arg, self.variables, path=self.path))
            handler(cmd, args)
        return self.finish()

    def finish(self) -> BuildDeclaration:
        if self.minimum is None:
            raise CMakeParseError("cmake_minimum_required() is missing", path=self.path)
        if self.project is None:
            raise CMakeParseError("project() is missing", path=self.path)

        # The first standard set for an enabled language belongs to the project; others
        # stay plain settings. With none enabled, the first one is kept so validation reports it.
        settings = dict(self.settings)
        project = self.project
        if self.standards:
            enabled = [lang for lang in self.standards if lang in project.languages]
            lang = enabled[0] if enabled else next(iter(self.standards))
            standard = self.standards[lang]
            settings.pop(f"CMAKE_{lang}_STANDARD", None)
            required = settings.pop(f"CMAKE_{lang}_STANDARD_REQUIRED", None)
            project = Project(
                name=project.name,
                languages=project.languages,
                standard=standard,
                standard_language=lang,
                standard_required=required is not None and _truthy(required),
                version=project.version,
                description=project.description,
            )

        decl = BuildDeclaration(
            project=project,
            cmake_minimum_required=self.minimum,
            dependencies=tuple(self.dependencies),
            targets=tuple(t.build() for t in self.targets.values()),
            settings=settings,
        )
        return decl.validate()

    def _cmd_cmake_minimum_required(self, cmd: Command, args: list[str]) -> None:
        if self.project is not None:
            raise self.error(cmd, "must be called before project()")
        if self.minimum is not None:
            raise self.error(cmd, "called more than once")
        if len(args) < 2 or args[0] != "VERSION":
            raise self.error(cmd, "expected VERSION <min>[...<max>]")
        if not is_version(args[1]):
            raise self.error(cmd, f"invalid version {args[1]!r}")
        extra = [a for a in args[2:] if a != "FATAL_ERROR"]
        if extra:
            raise self.error(cmd, f"unexpected arguments: {' '.join(extra)}")
        self.minimum = args[1]

    def _cmd_project(self, cmd: Command, args: list[str]) -> None:
        if self.minimum is None:
            raise self.error(cmd, "cmake_minimum_required() must be called before project()")
        if self.project is not None:
            raise self.error(cmd, "only one project() per declaration is supported")
        if not args:
            raise self.error(cmd, "missing project name")

        name, rest = args[0], args[1:]
        sections: dict[str, list[str]] = {}
        if rest and rest[0] not in _PROJECT_KEYWORDS:
            sections["LANGUAGES"] = list(rest)
        else:
            current: str | None = None
            for a in rest:
                if a in _PROJECT_KEYWORDS:
                    if a in sections:
                        raise self.error(cmd, f"{a} given more than once")
                    current = a
                    sections[a] = []
                else:
                    sections[current].append(a)

        for key in ("VERSION", "DESCRIPTION", "HOMEPAGE_URL"):
            if key in sections and len(sections[key]) != 1:
                raise self.error(cmd, f"{key} expects exactly one value")
        if "HOMEPAGE_URL" in sections:
            self.unsupported(cmd, "HOMEPAGE_URL is not recorded")

        if "LANGUAGES" not in sections or not sections["LANGUAGES"]:
            languages = DEFAULT_LANGUAGES
        elif sections["LANGUAGES"] == ["NONE"]:
            languages = ()
        else:
            languages = tuple(sections["LANGUAGES"])

        version = sections["VERSION"][0] if "VERSION" in sections else None
        self.project = Project(
            name=name,
            languages=languages,
            version=version,
            description=(sections["DESCRIPTION"][0] or None) if "DESCRIPTION" in sections else None,
        )
        self.variables["PROJECT_NAME"] = name
        self.variables["CMAKE_PROJECT_NAME"] = name
        if version is not None:
            self.variables["PROJECT_VERSION"] = version
        logger.debug("project %s (%s)", name, " ".join(languages) or "NONE")

    def _cmd_set(self, cmd: Command, args: list[str]) -> None:
        if not args:
            raise self.error(cmd, "missing variable name")
        name, values = args[0], args[1:]
        if "CACHE" in values or "PARENT_SCOPE" in values:
            self.unsupported(cmd, f"cache or parent-scope variable {name}")
            return
        if not values:
            self._unset(name)
            return
        value = ";".join(values)

        m = _STANDARD_VAR_RE.match(name)
        if m and not m.group(2):
            try:
                standard = int(value)
            except ValueError:
                raise self.error(cmd, f"{name} must be an integer, got {value!r}") from None
            self.standards[m.group(1)] = standard
        self.settings[name] = value
        self.variables[name] = value

    def _cmd_unset(self, cmd: Command, args: list[str]) -> None:
        if not args:
            raise self.error(cmd, "missing variable name")
        if len(args) > 1:
            self.unsupported(cmd, f"unset() options {' '.join(args[1:])}")
            return
        self._unset(args[0])

    def _unset(self, name: str) -> None:
        self.settings.pop(name, None)
        self.variables.pop(name, None)
        m = _STANDARD_VAR_RE.match(name)
        if m and not m.group(2):
            self.standards.pop(m.group(1), None)

    def _cmd_find_package(self, cmd: Command, args: list[str]) -> None:
        if not args:
            raise self.error(cmd, "missing package name")
        name, rest = args[0], args[1:]
        version: str | None = None
        if rest and is_version(rest[0]):
            version, rest = rest[0], rest[1:]

        exact = quiet = required = False
        mode: str | None = None
        components: list[str] = []
        optional: list[str] = []
        section: list[str] | None = None
        for a in rest:
            if a == "EXACT":
                exact = True
            elif a == "QUIET":
                quiet = True
            elif a in ("MODULE", "CONFIG", "NO_MODULE"):
                new_mode = "CONFIG" if a == "NO_MODULE" else a
                if mode is not None and mode != new_mode:
                    raise self.error(cmd, f"{a} conflicts with {mode}")
                mode = new_mode
            elif a == "REQUIRED":
                required = True
                section = components
            elif a == "COMPONENTS":
                section = components
            elif a == "OPTIONAL_COMPONENTS":
                section = optional
            elif a in _FIND_PACKAGE_OPTIONS:
                raise self.error(cmd, f"option {a} is not supported")
            elif section is not None:
                section.append(a)
            else:
                raise self.error(cmd, f"unexpected argument {a!r} for package {name}")

        self.dependencies.append(
            Dependency(
                name=name,
                required=required,
                version=version,
                exact=exact,
                quiet=quiet,
                mode=mode,
                components=tuple(components),
                optional_components=tuple(optional),
            )
        )
        logger.debug("find_package %s%s", name, " REQUIRED" if required else "")

    def _new_target(self, cmd: Command, name: str, kind: str) -> _TargetBuilder:
        if name in self.targets:
            raise self.error(cmd, f"cannot create target {name!r} because another target with the same name already exists")
        builder = _TargetBuilder(name=name, kind=kind, line=cmd.line)
        self.targets[name] = builder
        return builder

    def _cmd_add_executable(self, cmd: Command, args: list[str]) -> None:
        if not args:
            raise self.error(cmd, "missing target name")
        if len(args) > 1 and args[1] in ("IMPORTED", "ALIAS"):
            self.unsupported(cmd, f"{args[1]} executables")
            return
        builder = self._new_target(cmd, args[0], "executable")
        rest = args[1:]
        while rest and rest[0] in EXECUTABLE_OPTIONS:
            builder.options.append(rest.pop(0))
        builder.sources.extend(rest)

    def _cmd_add_library(self, cmd: Command, args: list[str]) -> None:
        if not args:
            raise self.error(cmd, "missing target name")
        if len(args) > 1 and args[1] in ("IMPORTED", "ALIAS", "UNKNOWN"):
            self.unsupported(cmd, f"{args[1]} libraries")
            return
        builder = self._new_target(cmd, args[0], "library")
        rest = args[1:]
        while rest:
            if rest[0] in LIBRARY_TYPES and builder.library_type is None:
                builder.library_type = rest.pop(0)
            elif rest[0] in LIBRARY_OPTIONS:
                builder.options.append(rest.pop(0))
            else:
                break
        builder.sources.extend(rest)

    def _existing_target(self, cmd: Command, args: list[str]) -> _TargetBuilder:
        if not args:
            raise self.error(cmd, "missing target name")
        builder = self.targets.get(args[0])
        if builder is None:
            raise self.error(cmd, f"target {args[0]!r} is not built by this project")
        return builder

    def _cmd_target_sources(self, cmd: Command, args: list[str]) -> None:
        builder = self._existing_target(cmd, args)
        if "FILE_SET" in args:
            self.unsupported(cmd, "file sets")
            return
        builder.sources.extend(a for a in args[1:] if a not in LINK_SCOPES)

    def _cmd_target_link_libraries(self, cmd: Command, args: list[str]) -> None:
        builder = self._existing_target(cmd, args)
        items = args[1:]
        scope: str | None = None
        if items and items[0] in LINK_SCOPES:
            scope = items.pop(0)
        if any(a in LINK_SCOPES or a in ("debug", "optimized", "general") for a in items):
            raise self.error(cmd, "mixed link scopes or configuration keywords are not supported")
        if builder.links and builder.link_scope != scope:
            raise self.error(cmd, f"all uses for target {builder.name!r} must use the same link signature")
        builder.link_scope = scope
        builder.links.extend(items)


def parse_cmake(text: str, *, path: str | Path | None = None, strict: bool = False) -> BuildDeclaration:
    """
    Parse CMake source text into a validated `BuildDeclaration`.
    Raises `CMakeParseError` for syntax/evaluation problems and `DeclarationError`
    when the resulting declaration breaks an invariant.
    """
    return _Reader(path, strict).run(tokenize(text, path=path))


def parse_cmake_file(path: str | Path, *, strict: bool = False) -> BuildDeclaration:
    p = Path(path)
    return parse_cmake(read_source(p), path=p, strict=strict)
