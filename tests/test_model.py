from __future__ import annotations

import pytest

from cmakedecl.model import (
    BuildDeclaration,
    DeclarationError,
    Dependency,
    Project,
    Target,
    minimum_version,
    parse_version,
)


def _decl(**overrides) -> BuildDeclaration:
    values = {
        "project": Project(name="MyApp", languages=("CXX",), standard=17, standard_language="CXX"),
        "dependencies": (Dependency(name="hello"), Dependency(name="bye")),
        "targets": (Target(name="app", sources=("main.cpp",), links=("hello::hello", "bye::bye")),),
    }
    values.update(overrides)
    return BuildDeclaration(**values)


def test_valid_declaration_returns_itself() -> None:
    decl = _decl()
    assert decl.validate() is decl


def test_dependency_handle_is_namespaced() -> None:
    assert Dependency(name="hello").handle == "hello::hello"


def test_lookups_by_name() -> None:
    decl = _decl()
    assert decl.dependency("bye") == Dependency(name="bye")
    assert decl.dependency("nope") is None
    assert decl.target("app").sources == ("main.cpp",)


def test_dict_round_trip_is_exact() -> None:
    decl = _decl(
        cmake_minimum_required="3.24...3.28",
        project=Project(
            name="MyApp",
            languages=("C", "CXX"),
            standard=20,
            standard_language="CXX",
            standard_required=True,
            version="1.0.0",
            description="Demo",
        ),
        dependencies=(
            Dependency(name="hello", version="0.1", exact=True),
            Dependency(name="Boost", required=False, mode="CONFIG", components=("filesystem",), optional_components=("regex",)),
        ),
        targets=(
            Target(name="greet", kind="library", library_type="SHARED", sources=("greet.cpp",)),
            Target(name="app", options=("WIN32",), sources=("main.cpp",), links=("greet", "hello::hello"), link_scope="PRIVATE"),
        ),
        settings={"CMAKE_C_STANDARD": "11", "FLAGS": "a;b"},
    )
    assert BuildDeclaration.from_dict(decl.to_dict()) == decl


def test_from_dict_shorthands() -> None:
    decl = BuildDeclaration.from_dict(
        {
            "project": {"name": "MyApp", "languages": ["CXX"], "standard": 17},
            "dependencies": ["hello", {"name": "bye"}],
            "targets": [{"name": "app", "sources": "main.cpp", "links": ["hello::hello", "bye::bye"]}],
        }
    )
    assert decl == _decl()
    assert decl.cmake_minimum_required == "3.24"


def test_from_dict_standard_language_falls_back_to_first_language() -> None:
    decl = BuildDeclaration.from_dict({"project": {"name": "x", "languages": ["C"], "standard": 11}})
    assert decl.project.standard_language == "C"


def test_from_dict_rejects_bad_shapes() -> None:
    with pytest.raises(DeclarationError, match="`project`"):
        BuildDeclaration.from_dict({"project": 3})
    with pytest.raises(DeclarationError, match="`dependencies`"):
        BuildDeclaration.from_dict({"project": "x", "dependencies": "hello"})
    with pytest.raises(DeclarationError, match="project.standard"):
        BuildDeclaration.from_dict({"project": {"name": "x", "standard": "seventeen"}})


@pytest.mark.parametrize("names", [("hello", ""), ("hello", "hello"), ("hel lo",), ("a::b",)])
def test_bad_dependency_names_fail(names: tuple[str, ...]) -> None:
    decl = _decl(dependencies=tuple(Dependency(name=n) for n in names), targets=())
    with pytest.raises(DeclarationError):
        decl.validate()


def test_namespace_match_is_case_insensitive() -> None:
    decl = _decl(
        dependencies=(Dependency(name="Protobuf"),),
        targets=(Target(name="app", sources=("main.cpp",), links=("protobuf::libprotobuf",)),),
    )
    decl.validate()


def test_generator_expressions_are_not_checked() -> None:
    decl = _decl(targets=(Target(name="app", sources=("main.cpp",), links=("$<$<CONFIG:Debug>:dbg::dbg>",)),))
    decl.validate()


@pytest.mark.parametrize(
    "target, message",
    [
        (Target(name="app", sources=("main.cpp",), links=("app",)), "links itself"),
        (Target(name="a::b", sources=("main.cpp",)), "Invalid target name"),
        (Target(name="app", kind="plugin", sources=("main.cpp",)), "Invalid kind"),
        (Target(name="app", library_type="STATIC", sources=("main.cpp",)), "cannot have a library type"),
        (Target(name="app", options=("GLOBAL",), sources=("main.cpp",)), "not allowed"),
        (Target(name="app", sources=("main.cpp",), links=("hello::hello", "hello::hello")), "more than once"),
        (Target(name="app", sources=("main.cpp",), link_scope="PRIVATE"), "Link scope without links"),
    ],
)
def test_bad_targets_fail(target: Target, message: str) -> None:
    with pytest.raises(DeclarationError, match=message):
        _decl(targets=(target,)).validate()


def test_duplicate_targets_fail() -> None:
    app = Target(name="app", sources=("main.cpp",))
    with pytest.raises(DeclarationError, match="Target declared more than once: app"):
        _decl(targets=(app, app)).validate()


def test_exact_needs_version() -> None:
    with pytest.raises(DeclarationError, match="EXACT needs a version"):
        _decl(dependencies=(Dependency(name="hello", exact=True),), targets=()).validate()


def test_setting_cannot_shadow_project_standard() -> None:
    with pytest.raises(DeclarationError, match="overlaps the project standard"):
        _decl(settings={"CMAKE_CXX_STANDARD_REQUIRED": "ON"}).validate()
    with pytest.raises(DeclarationError, match="overlaps the project standard"):
        _decl(project=Project(name="MyApp", languages=("CXX",)), settings={"CMAKE_CXX_STANDARD": "17"}).validate()


def test_unknown_language_fails() -> None:
    with pytest.raises(DeclarationError, match="Unknown language"):
        _decl(project=Project(name="MyApp", languages=("Rust",))).validate()


def test_parse_version() -> None:
    assert parse_version("3.24") == (3, 24)
    assert parse_version("3.24.1") == (3, 24, 1)
    assert parse_version("3.24...3.28") == (3, 24)
    assert minimum_version(_decl()) == (3, 24)
    with pytest.raises(DeclarationError):
        parse_version("three")


def test_description_is_kept_verbatim() -> None:
    decl = _decl(project=Project(name="MyApp", languages=("CXX",), standard=17, standard_language="CXX", description=" padded "))
    assert BuildDeclaration.from_dict(decl.to_dict()) == decl
    assert BuildDeclaration.from_dict({"project": {"name": "x", "description": ""}}).project.description is None


def test_standard_required_needs_a_standard() -> None:
    with pytest.raises(DeclarationError, match="standard_required given without a standard"):
        _decl(project=Project(name="MyApp", languages=("CXX",), standard_required=True)).validate()
    with pytest.raises(DeclarationError, match="standard_required given without a standard"):
        BuildDeclaration.from_dict({"project": {"name": "x", "standard_required": True}}).validate()


@pytest.mark.parametrize("standard", [17.5, "17.5"])
def test_fractional_standard_is_rejected(standard) -> None:
    with pytest.raises(DeclarationError, match="project.standard"):
        BuildDeclaration.from_dict({"project": {"name": "x", "languages": ["CXX"], "standard": standard}})


def test_integral_float_standard_is_accepted() -> None:
    assert BuildDeclaration.from_dict({"project": {"name": "x", "languages": ["CXX"], "standard": 17.0}}).project.standard == 17


@pytest.mark.parametrize(
    "raw, what",
    [
        ({"dependencies": [{"name": "hello", "required": "false"}]}, "required"),
        ({"dependencies": [{"name": "hello", "version": "1.0", "exact": "no"}]}, "exact"),
        ({"dependencies": [{"name": "hello", "quiet": 1}]}, "quiet"),
        ({"project": {"name": "x", "standard": 17, "standard_required": "yes"}}, "project.standard_required"),
    ],
)
def test_flags_must_be_booleans(raw: dict, what: str) -> None:
    data = {"project": {"name": "x"}, **raw}
    with pytest.raises(DeclarationError, match=f"`{what}` must be true or false"):
        BuildDeclaration.from_dict(data)


def test_missing_flags_take_defaults() -> None:
    decl = BuildDeclaration.from_dict({"project": {"name": "x"}, "dependencies": [{"name": "hello", "required": None}]})
    assert decl.dependencies[0] == Dependency(name="hello", required=True, exact=False, quiet=False)
