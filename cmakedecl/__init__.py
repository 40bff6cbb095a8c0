"""
cmakedecl package

This package reads, checks and writes CMake build declarations: the
cmake_minimum_required / project / find_package / add_executable /
target_link_libraries layer of a CMakeLists.txt.

Key responsibilities are split across modules:
- `model.py`: immutable declaration model, invariants, dict serialization
- `cmake_parser.py`: CMake language lexer and declarative-subset reader
- `spec_parser.py`: the same declaration written as YAML (or markdown frontmatter)
- `renderer.py`: canonical CMakeLists.txt, conanfile.txt and project scaffolding
- `checks.py`: CMake version floor and source file checks
- `cli.py`: CLI entrypoint and orchestration (read -> check/render)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
