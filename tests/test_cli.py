from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from tdshape import cli
from tdshape.build_details import build_details_for_running_interpreter, dump_build_details

INHERITANCE_MODULE = """\
from typing import TypedDict


class Base(TypedDict, extra_items=int):
    name: str


class Child(Base):
    year: int
"""


def _invoke(args: list[str]):
    return CliRunner().invoke(cli.app, args)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_cli_help_lists_commands() -> None:
    result = _invoke(["--help"])
    assert result.exit_code == 0
    for command in ("check", "validate", "narrow", "show", "build-details"):
        assert command in result.output


def test_check_consistent_and_inconsistent(movies_path: Path, tmp_path: Path) -> None:
    ok = _invoke(["check", str(movies_path), "Film", "Movie", "--root", str(tmp_path)])
    assert ok.exit_code == 0
    assert "Film -> Movie: consistent" in ok.output
    bad = _invoke(["check", str(movies_path), "Movie", "Film", "--root", str(tmp_path)])
    assert bad.exit_code == 1
    assert "Movie -> Film: not consistent" in bad.output
    assert "- <extra>: [closed-target]" in bad.output


def test_check_json_output(movies_path: Path, tmp_path: Path) -> None:
    result = _invoke(
        ["check", str(movies_path), "is_bool", "is_int", "--root", str(tmp_path), "--json"]
    )
    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload == {"source": "is_bool", "target": "is_int", "consistent": False, "failures": []}


def test_check_numeric_promotion_from_config_and_flag(movies_path: Path, tmp_path: Path) -> None:
    _write(tmp_path, "tdshape.toml", "[consistency]\nnumeric_promotion = false\n")
    args = ["check", str(movies_path), "int", "float", "--root", str(tmp_path)]
    assert _invoke(args).exit_code == 1
    assert _invoke([*args, "--numeric-promotion"]).exit_code == 0
    assert _invoke(["check", str(movies_path), "int", "float", "--root", str(tmp_path / "none")]).exit_code == 0


def test_check_rejects_bad_input(movies_path: Path, tmp_path: Path) -> None:
    assert _invoke(["check", str(movies_path), "int +", "str"]).exit_code == 2
    assert _invoke(["check", str(tmp_path / "missing.py"), "int", "str"]).exit_code == 2


def test_validate_reports_and_ignores(tmp_path: Path) -> None:
    path = _write(tmp_path, "inheritance.py", INHERITANCE_MODULE)
    result = _invoke(["validate", str(path), "--root", str(tmp_path)])
    assert result.exit_code == 1
    assert f"{path}:8: Child.year: IllFormedDeclaration[field-violates-extra]" in result.output
    assert "1 diagnostic(s) in 1 file(s)" in result.output
    ignored = _invoke(["validate", str(path), "--root", str(tmp_path), "--ignore", "field-violates-extra"])
    assert ignored.exit_code == 0
    assert "0 diagnostic(s) in 1 file(s)" in ignored.output


def test_validate_ignore_from_config(tmp_path: Path) -> None:
    _write(tmp_path, "inheritance.py", INHERITANCE_MODULE)
    _write(tmp_path, "tdshape.toml", '[validation]\nignore = "field-violates-extra"\n')
    result = _invoke(["validate", str(tmp_path), "--root", str(tmp_path)])
    assert result.exit_code == 0


def test_validate_json_output(tmp_path: Path) -> None:
    path = _write(tmp_path, "inheritance.py", INHERITANCE_MODULE)
    _write(tmp_path, "clean.py", "from typing import TypedDict\nclass Clean(TypedDict):\n    name: str\n")
    result = _invoke(["validate", str(tmp_path), "--root", str(tmp_path), "--json"])
    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert [entry["path"] for entry in payload] == [str(tmp_path / "clean.py"), str(path)]
    assert payload[0]["diagnostics"] == []
    (diagnostic,) = payload[1]["diagnostics"]
    assert diagnostic["code"] == "field-violates-extra"
    assert diagnostic["line"] == 8


def test_narrow_command(movies_path: Path) -> None:
    result = _invoke(["narrow", str(movies_path), "is_str", "--declared", "int | str"])
    assert result.exit_code == 0
    assert "is_str (TypeIs) on int | str" in result.output
    assert "if true:  str" in result.output
    assert "if false: int" in result.output
    as_json = _invoke(["narrow", str(movies_path), "guard_int", "--declared", "int | str", "--json"])
    assert json.loads(as_json.output)["if_false"] == "int | str"
    assert _invoke(["narrow", str(movies_path), "missing"]).exit_code == 2


def test_show_command(movies_path: Path) -> None:
    result = _invoke(["show", str(movies_path)])
    assert result.exit_code == 0
    assert "Movie (extra_items)" in result.output
    assert "  <extra>: int | str [read-only]" in result.output
    assert "Film (closed)" in result.output
    assert "  year: int [not required]" in result.output
    as_json = _invoke(["show", str(movies_path), "--json"])
    names = [shape["name"] for shape in json.loads(as_json.output)]
    assert names == ["Movie", "Film", "Catalog"]


def test_build_details_emit_and_validate(tmp_path: Path) -> None:
    emitted = _invoke(["build-details"])
    assert emitted.exit_code == 0
    assert json.loads(emitted.output)["schema_version"] == 1
    target = tmp_path / "build-details.json"
    written = _invoke(["build-details", "--output", str(target)])
    assert written.exit_code == 0
    assert target.exists()
    validated = _invoke(["build-details", "--validate", str(target)])
    assert validated.exit_code == 0
    details = build_details_for_running_interpreter()
    assert f"valid (schema 1, {details.implementation.name} {details.language.version})" in validated.output


def test_build_details_validate_rejects_bad_document(tmp_path: Path) -> None:
    payload = json.loads(dump_build_details(build_details_for_running_interpreter()))
    payload["schema_version"] = 3
    path = _write(tmp_path, "build-details.json", json.dumps(payload))
    result = _invoke(["build-details", "--validate", str(path)])
    assert result.exit_code == 1


def test_verbose_flag_is_accepted(movies_path: Path, tmp_path: Path) -> None:
    result = _invoke(["--verbose", "check", str(movies_path), "Film", "Movie", "--root", str(tmp_path)])
    assert result.exit_code == 0


def test_validate_ignores_ordinary_functions(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "handlers.py",
        "from collections.abc import Callable\n"
        "from typing import TypedDict\n"
        "class Handler(TypedDict):\n"
        "    callback: Callable[[int], str]\n"
        "def make() -> Callable[..., int]: ...\n",
    )
    result = _invoke(["validate", str(path), "--root", str(tmp_path)])
    assert result.exit_code == 0
    assert "0 diagnostic(s) in 1 file(s)" in result.output


def test_narrow_optional_declared_type(movies_path: Path) -> None:
    result = _invoke(["narrow", str(movies_path), "is_str", "--declared", "int | str | None"])
    assert result.exit_code == 0
    assert "if true:  str" in result.output
    assert "if false: None | int" in result.output


def test_narrow_numeric_promotion_from_config(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "floats.py",
        "from typing import TypeIs\n"
        "def is_float(value: object) -> TypeIs[float]: ...\n",
    )
    args = ["narrow", str(path), "is_float", "--declared", "int | str", "--root", str(tmp_path)]
    promoted = _invoke(args)
    assert "if true:  int" in promoted.output
    _write(tmp_path, "tdshape.toml", "[consistency]\nnumeric_promotion = false\n")
    strict = _invoke(args)
    assert strict.exit_code == 0
    assert "if true:  Never" in strict.output
    assert "if false: int | str" in strict.output
