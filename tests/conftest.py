from __future__ import annotations

from pathlib import Path

import pytest

from cmakedecl.cmake_parser import parse_cmake_file
from cmakedecl.model import BuildDeclaration

RESOURCES = Path(__file__).parent / "resources"
REPO_ROOT = Path(__file__).parent.parent


@pytest.fixture
def resources() -> Path:
    return RESOURCES


@pytest.fixture
def basic_cmakelists() -> Path:
    return RESOURCES / "basic" / "CMakeLists.txt"


@pytest.fixture
def basic_decl(basic_cmakelists: Path) -> BuildDeclaration:
    return parse_cmake_file(basic_cmakelists)


@pytest.fixture
def templates_dir() -> Path:
    return REPO_ROOT / "templates"
