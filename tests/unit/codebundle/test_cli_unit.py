from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from codebundle import __version__, cli

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_parse_args_consolidate_options() -> None:
    settings = cli.parse_args(
        [
            "--concurrency",
            "50",
            "consolidate",
            "src",
            "--prefix",
            "user",
            "--pattern",
            "*svc*",
            "--output",
            "out.txt",
        ],
    )

    assert settings.command == "consolidate"
    assert settings.target == Path("src")
    assert settings.prefix == "user"
    assert settings.pattern == "*svc*"
    assert settings.output == Path("out.txt")
    assert settings.concurrency == 10  # noqa: PLR2004


@pytest.mark.unit
def test_parse_args_apply_collects_expectations() -> None:
    settings = cli.parse_args(["apply", "resp.txt", "--root", "proj", "--expect", "src/a.ts", "--expect", "src/*.json"])

    assert settings.response == "resp.txt"
    assert settings.root == Path("proj")
    assert settings.expect == ["src/a.ts", "src/*.json"]


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert __version__ in captured.out


@pytest.mark.unit
def test_parse_args_requires_command() -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args([])

    assert exc_info.value.code == 2  # noqa: PLR2004


@pytest.mark.unit
def test_main_missing_target_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["list", str(tmp_path / "missing")])

    assert exit_code == 2  # noqa: PLR2004
    assert "Cannot access" in capsys.readouterr().err


@pytest.mark.unit
def test_main_invalid_config_exits_2(tmp_path: Path) -> None:
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("unknown_key: 1\n", encoding="utf-8")

    assert cli.main(["--config", str(cfg), "list", str(tmp_path)]) == 2  # noqa: PLR2004


@pytest.mark.unit
def test_main_apply_without_markers_echoes_response(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    response = tmp_path / "resp.txt"
    response.write_text("I could not produce any files.", encoding="utf-8")

    exit_code = cli.main(["apply", str(response), "--root", str(tmp_path)])

    assert exit_code == 1
    assert "I could not produce any files." in capsys.readouterr().out


@pytest.mark.unit
def test_main_apply_missing_response_exits_2(tmp_path: Path) -> None:
    assert cli.main(["apply", str(tmp_path / "nope.txt")]) == 2  # noqa: PLR2004


@pytest.mark.unit
def test_main_consolidate_output_write_failure_exits_1(tmp_path: Path, mocker: MockerFixture) -> None:
    (tmp_path / "a.ts").write_text("export {};\n", encoding="utf-8")
    mocker.patch.object(cli, "write_file", return_value=False)

    exit_code = cli.main(["consolidate", str(tmp_path), "--output", str(tmp_path / "out.txt")])

    assert exit_code == 1
    assert not (tmp_path / "out.txt").exists()


@pytest.mark.unit
def test_main_list_prints_targets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "a.ts").write_text("export {};\n", encoding="utf-8")
    (tmp_path / "b.md").write_text("# b\n", encoding="utf-8")

    assert cli.main(["list", str(tmp_path)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == [str((tmp_path / "a.ts").resolve())]


@pytest.mark.unit
def test_main_wrongly_typed_config_value_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "c.yaml"
    cfg.write_text("include_extensions: 5\n", encoding="utf-8")

    assert cli.main(["--config", str(cfg), "list", str(tmp_path)]) == 2  # noqa: PLR2004
    assert "Invalid configuration" in capsys.readouterr().err
