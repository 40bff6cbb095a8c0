"""
cli.py

Responsibility: CLI entrypoint for cmakedecl.

Sub-commands:
- `parse`: read a declaration (CMake or YAML) and print the model as JSON/YAML
- `render`: print the canonical CMakeLists.txt
- `conanfile`: print a conanfile.txt for the declared dependencies
- `check`: check the CMake version floor, then the source files
- `scaffold`: render a project skeleton from a template directory

This module should orchestrate behavior but keep concerns isolated:
- Reading: `cmake_parser.py`, `spec_parser.py`
- Writing: `renderer.py`
- Tool/filesystem checks: `checks.py`
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from cmakedecl import __version__
from cmakedecl.checks import (
    SchemaVersionError,
    ToolError,
    check_declaration,
    check_version_floor,
    detect_cmake_version,
    format_version,
)
from cmakedecl.model import BuildDeclaration, DeclarationError
from cmakedecl.renderer import RenderError, build_context, render_cmakelists, render_conanfile, render_template_dir
from cmakedecl.spec_parser import dump_spec, load_declaration, load_minimum_version

logger = logging.getLogger(__name__)

ENV_TEMPLATES_DIR = "CMAKEDECL_TEMPLATES_DIR"
ENV_CMAKE = "CMAKEDECL_CMAKE"


class CLIError(RuntimeError):
    pass


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load(args: argparse.Namespace) -> BuildDeclaration:
    return load_declaration(args.path, strict=bool(args.strict))


def _parse_requires(values: list[str] | None) -> dict[str, str]:
    """
    Turn repeated `--require NAME=VERSION` flags into a mapping.
    """
    out: dict[str, str] = {}
    for raw in values or []:
        name, sep, version = raw.partition("=")
        if not sep or not name.strip() or not version.strip():
            raise CLIError(f"--require expects NAME=VERSION, got {raw!r}")
        out[name.strip()] = version.strip()
    return out


def _emit(text: str, output: str | None) -> None:
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8", newline="\n")
        logger.info("Wrote %s", path)
    else:
        sys.stdout.write(text)


def _ensure_empty_dir(path: Path, *, overwrite: bool) -> None:
    path.mkdir(parents=True, exist_ok=True)
    if not overwrite:
        # If any children exist, refuse.
        if any(path.iterdir()):
            raise CLIError(f"Workdir is not empty: {path} (use --overwrite to allow)")


def parse_cmd(args: argparse.Namespace) -> int:
    decl = _load(args)
    if args.format == "json":
        _emit(json.dumps(decl.to_dict(), indent=2) + "\n", args.output)
    else:
        _emit(dump_spec(decl), args.output)
    return 0


def render_cmd(args: argparse.Namespace) -> int:
    _emit(render_cmakelists(_load(args)), args.output)
    return 0


def conanfile_cmd(args: argparse.Namespace) -> int:
    decl = _load(args)
    _emit(render_conanfile(decl, _parse_requires(args.require)), args.output)
    return 0


def check_cmd(args: argparse.Namespace) -> int:
    # The floor is checked before the rest of the declaration is read or validated.
    floor = load_minimum_version(args.path)
    tool_version = args.cmake_version or detect_cmake_version(args.cmake)
    try:
        if floor is not None:
            check_version_floor(floor, tool_version)
        decl = _load(args)
        report = check_declaration(decl, tool_version=tool_version, source_dir=args.source_dir)
    except SchemaVersionError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for path in report.missing_sources:
        print(f"error: missing source file: {path}", file=sys.stderr)
    if not report.ok:
        return 1

    print(
        f"ok: {decl.project.name} ({len(decl.dependencies)} dependencies, {len(decl.targets)} targets) "
        f"with CMake {format_version(report.tool_version)}"
    )
    return 0


def scaffold_cmd(args: argparse.Namespace) -> int:
    decl = _load(args)
    versions = _parse_requires(args.require)

    workdir = Path(args.workdir or Path("generated") / decl.project.name).resolve()
    template_dir = Path(args.templates_dir).resolve() / args.template
    context = build_context(decl, versions)

    _ensure_empty_dir(workdir, overwrite=bool(args.overwrite))
    result = render_template_dir(template_dir=template_dir, destination_dir=workdir, context=context)
    print(f"Scaffolded {workdir} ({result.rendered_files} rendered, {result.copied_files} copied)")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cmakedecl", description="Parse, check and render CMake build declarations")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    p.add_argument("--strict", action="store_true", help="Reject CMake commands outside the declarative subset")
    sub = p.add_subparsers(dest="command", required=True)

    def with_path(name: str, help_text: str) -> argparse.ArgumentParser:
        s = sub.add_parser(name, help=help_text)
        s.add_argument("path", help="CMakeLists.txt, a directory holding one, or a .yaml/.md declaration")
        return s

    s = with_path("parse", "Print the parsed declaration")
    s.add_argument("--format", choices=("json", "yaml"), default="json", help="Output format (default: json)")
    s.add_argument("-o", "--output", default=None, help="Write to a file instead of stdout")
    s.set_defaults(func=parse_cmd)

    s = with_path("render", "Print the canonical CMakeLists.txt")
    s.add_argument("-o", "--output", default=None, help="Write to a file instead of stdout")
    s.set_defaults(func=render_cmd)

    s = with_path("conanfile", "Print a conanfile.txt for the declared dependencies")
    s.add_argument("--require", action="append", metavar="NAME=VERSION", help="Dependency version (repeatable)")
    s.add_argument("-o", "--output", default=None, help="Write to a file instead of stdout")
    s.set_defaults(func=conanfile_cmd)

    s = with_path("check", "Check the CMake version floor, then the source files")
    s.add_argument("--cmake-version", default=None, help="Version to check against instead of running cmake")
    s.add_argument(
        "--cmake",
        default=os.environ.get(ENV_CMAKE, "cmake"),
        help=f"cmake executable (default: ${ENV_CMAKE} or cmake)",
    )
    s.add_argument("--source-dir", default=None, help="Check that source files exist under this directory")
    s.set_defaults(func=check_cmd)

    s = with_path("scaffold", "Render a project skeleton from a template")
    s.add_argument(
        "--templates-dir",
        default=os.environ.get(ENV_TEMPLATES_DIR, "templates"),
        help=f"Templates directory (default: ${ENV_TEMPLATES_DIR} or templates)",
    )
    s.add_argument("--template", default="executable", help="Template name (default: executable)")
    s.add_argument("--workdir", default=None, help="Directory to render into (default: generated/<project>)")
    s.add_argument("--require", action="append", metavar="NAME=VERSION", help="Dependency version (repeatable)")
    s.add_argument("--overwrite", action="store_true", help="Allow non-empty workdir")
    s.set_defaults(func=scaffold_cmd)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return int(args.func(args))
    except (CLIError, DeclarationError, RenderError, ToolError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
