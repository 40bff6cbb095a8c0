from __future__ import annotations

import json

import pytest
import yaml

from cmakedecl import cli


def test_version_flag(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == "cmakedecl 0.1.0"


def test_parse_json(basic_cmakelists, capsys) -> None:
    assert cli.main(["parse", str(basic_cmakelists)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["project"]["name"] == "MyApp"
    assert data["project"]["standard"] == 17
    assert [d["name"] for d in data["dependencies"]] == ["hello", "bye"]
    assert data["targets"][0]["links"] == ["hello::hello", "bye::bye"]


def test_parse_yaml(basic_cmakelists, basic_decl, capsys) -> None:
    assert cli.main(["parse", str(basic_cmakelists), "--format", "yaml"]) == 0
    assert yaml.safe_load(capsys.readouterr().out) == basic_decl.to_dict()


def test_render_from_yaml(resources, basic_cmakelists, capsys) -> None:
    assert cli.main(["render", str(resources / "yaml" / "declaration.yaml")]) == 0
    assert capsys.readouterr().out == basic_cmakelists.read_text(encoding="utf-8")


def test_render_to_file(basic_cmakelists, tmp_path) -> None:
    out = tmp_path / "out" / "CMakeLists.txt"
    assert cli.main(["render", str(basic_cmakelists), "-o", str(out)]) == 0
    assert out.read_text(encoding="utf-8") == basic_cmakelists.read_text(encoding="utf-8")


def test_conanfile(basic_cmakelists, capsys) -> None:
    assert cli.main(["conanfile", str(basic_cmakelists), "--require", "hello=0.1", "--require", "bye=0.1"]) == 0
    assert capsys.readouterr().out.startswith("[requires]\nhello/0.1\nbye/0.1\n")


def test_conanfile_missing_version(basic_cmakelists, capsys) -> None:
    assert cli.main(["conanfile", str(basic_cmakelists), "--require", "hello=0.1"]) == 1
    assert "error: No version known for required dependency 'bye'" in capsys.readouterr().err


def test_bad_require_flag(basic_cmakelists, capsys) -> None:
    assert cli.main(["conanfile", str(basic_cmakelists), "--require", "hello"]) == 1
    assert "NAME=VERSION" in capsys.readouterr().err


def test_check_ok(basic_cmakelists, capsys) -> None:
    assert cli.main(["check", str(basic_cmakelists), "--cmake-version", "3.24"]) == 0
    assert capsys.readouterr().out.strip() == "ok: MyApp (2 dependencies, 1 targets) with CMake 3.24"


def test_check_version_floor(basic_cmakelists, capsys) -> None:
    assert cli.main(["check", str(basic_cmakelists), "--cmake-version", "3.20"]) == 1
    assert "CMake 3.24 or higher is required" in capsys.readouterr().err


def test_check_version_floor_comes_before_validation(tmp_path, capsys) -> None:
    path = tmp_path / "CMakeLists.txt"
    path.write_text(
        "cmake_minimum_required(VERSION 99.0)\nproject(x CXX)\nadd_executable(app main.cpp)\n"
        "target_link_libraries(app hello::hello)\n",
        encoding="utf-8",
    )
    assert cli.main(["check", str(path), "--cmake-version", "3.24"]) == 1
    err = capsys.readouterr().err
    assert "CMake 99.0 or higher is required.  You are running version 3.24" in err
    assert "hello" not in err


def test_check_yaml_version_floor(tmp_path, capsys) -> None:
    path = tmp_path / "decl.yaml"
    path.write_text('cmake_minimum_required: "3.30"\nproject: {name: x}\ndependencies: ["", ""]\n', encoding="utf-8")
    assert cli.main(["check", str(path), "--cmake-version", "3.24"]) == 1
    assert "CMake 3.30 or higher is required" in capsys.readouterr().err


def test_check_missing_sources(basic_cmakelists, tmp_path, capsys) -> None:
    code = cli.main(["check", str(basic_cmakelists), "--cmake-version", "3.28", "--source-dir", str(tmp_path)])
    assert code == 1
    assert f"missing source file: {tmp_path / 'main.cpp'}" in capsys.readouterr().err


def test_check_detects_cmake(basic_cmakelists, monkeypatch, capsys) -> None:
    seen = {}

    def fake_detect(cmake: str):
        seen["cmake"] = cmake
        return (3, 30, 2)

    monkeypatch.setenv(cli.ENV_CMAKE, "/opt/cmake/bin/cmake")
    monkeypatch.setattr(cli, "detect_cmake_version", fake_detect)
    assert cli.main(["check", str(basic_cmakelists)]) == 0
    assert seen["cmake"] == "/opt/cmake/bin/cmake"
    assert "with CMake 3.30.2" in capsys.readouterr().out


def test_strict_mode_rejects_unsupported_commands(tmp_path, capsys) -> None:
    path = tmp_path / "CMakeLists.txt"
    path.write_text('cmake_minimum_required(VERSION 3.24)\nproject(x CXX)\nmessage(STATUS "hi")\n', encoding="utf-8")
    assert cli.main(["parse", str(path)]) == 0
    capsys.readouterr()
    assert cli.main(["--strict", "parse", str(path)]) == 1
    assert "message(): unsupported" in capsys.readouterr().err


def test_invalid_declaration_reports_error(tmp_path, capsys) -> None:
    path = tmp_path / "CMakeLists.txt"
    path.write_text("cmake_minimum_required(VERSION 3.24)\nproject(x CXX)\nfind_package(a REQUIRED)\nfind_package(a REQUIRED)\n", encoding="utf-8")
    assert cli.main(["parse", str(path)]) == 1
    assert "error: Dependency declared more than once: a" in capsys.readouterr().err


@pytest.mark.parametrize("name", ["CMakeLists.txt", "decl.yaml"])
def test_non_utf8_declaration_reports_error(tmp_path, capsys, name: str) -> None:
    path = tmp_path / name
    path.write_bytes(b"cmake_minimum_required(VERSION 3.24)\nproject(caf\xff CXX)\n")
    assert cli.main(["parse", str(path)]) == 1
    assert "error:" in capsys.readouterr().err
    assert cli.main(["check", str(path), "--cmake-version", "3.24"]) == 1
    assert "not valid UTF-8" in capsys.readouterr().err


def test_scaffold(basic_cmakelists, templates_dir, tmp_path, capsys) -> None:
    workdir = tmp_path / "MyApp"
    args = [
        "scaffold",
        str(basic_cmakelists),
        "--templates-dir",
        str(templates_dir),
        "--workdir",
        str(workdir),
        "--require",
        "hello=0.1",
        "--require",
        "bye=0.1",
    ]
    assert cli.main(args) == 0
    assert "3 rendered, 1 copied" in capsys.readouterr().out
    assert (workdir / "CMakeLists.txt").read_text(encoding="utf-8") == basic_cmakelists.read_text(encoding="utf-8")
    assert (workdir / "main.cpp").exists()
    assert (workdir / ".gitignore").exists()

    assert cli.main(args) == 1
    assert "Workdir is not empty" in capsys.readouterr().err
    assert cli.main(args + ["--overwrite"]) == 0


def test_scaffold_templates_dir_from_environment(basic_cmakelists, templates_dir, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(cli.ENV_TEMPLATES_DIR, str(templates_dir))
    workdir = tmp_path / "out"
    args = ["scaffold", str(basic_cmakelists), "--workdir", str(workdir), "--require", "hello=0.1", "--require", "bye=0.1"]
    assert cli.main(args) == 0
    assert (workdir / "conanfile.txt").exists()


def test_scaffold_without_versions_leaves_workdir_alone(basic_cmakelists, templates_dir, tmp_path, capsys) -> None:
    workdir = tmp_path / "out"
    code = cli.main(["scaffold", str(basic_cmakelists), "--templates-dir", str(templates_dir), "--workdir", str(workdir)])
    assert code == 1
    assert "--require hello=<version>" in capsys.readouterr().err
    assert not workdir.exists()
