from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from codebundle import apply
from codebundle.apply import (
    Outcome,
    add_path_comments,
    apply_extracted_files,
    matches_expected,
    resolve_inside,
    with_path_comment,
)
from codebundle.exceptions import FileReadError
from codebundle.response_parser import ExtractedFile, parse_multi_file_response

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


def _write(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.unit
def test_matches_expected_exact_and_glob() -> None:
    assert matches_expected("src/a.ts", ["src/a.ts"])
    assert matches_expected("./src/a.ts", ["src\\a.ts"])
    assert matches_expected("src/sub/a.ts", ["src/*.ts"])
    assert not matches_expected("src/b.json", ["src/*.ts", ""])


@pytest.mark.unit
def test_resolve_inside_refuses_escapes(tmp_path: Path) -> None:
    assert resolve_inside(tmp_path, "src/a.ts") == tmp_path.resolve() / "src" / "a.ts"
    assert resolve_inside(tmp_path, "../evil.ts") is None
    assert resolve_inside(tmp_path, "src/../../evil.ts") is None
    assert resolve_inside(tmp_path, "/etc/evil.ts") is None


@pytest.mark.unit
def test_apply_extracted_files_writes_new_files(tmp_path: Path) -> None:
    files = parse_multi_file_response(
        "// File: src/a.ts\n```ts\nexport const a = 1;\n```\n// File: src/b.json\n{\"k\": 1}\n",
    )

    summary = asyncio.run(apply_extracted_files(files, tmp_path))

    assert summary.written == 2  # noqa: PLR2004
    assert summary.ok
    assert (tmp_path / "src" / "a.ts").read_text(encoding="utf-8") == "export const a = 1;\n"
    assert (tmp_path / "src" / "b.json").read_text(encoding="utf-8") == '{"k": 1}\n'


@pytest.mark.unit
def test_apply_extracted_files_rejects_unexpected_and_escaping_paths(tmp_path: Path) -> None:
    files = [
        ExtractedFile(file_path="src/a.ts", content="a"),
        ExtractedFile(file_path="src/b.json", content="{}"),
        ExtractedFile(file_path="../evil.ts", content="x"),
    ]

    summary = asyncio.run(apply_extracted_files(files, tmp_path, expected=["src/*.ts", "../evil.ts"]))

    assert [o.outcome for o in summary.outcomes] == [Outcome.WRITTEN, Outcome.REJECTED, Outcome.REJECTED]
    assert not (tmp_path / "src" / "b.json").exists()
    assert not (tmp_path.parent / "evil.ts").exists()
    assert summary.ok


@pytest.mark.unit
def test_apply_extracted_files_detects_unchanged_content(tmp_path: Path) -> None:
    target = _write(tmp_path, "src/a.ts", "export const a = 1;\n\n")
    files = [ExtractedFile(file_path="src/a.ts", content="export const a = 1;")]

    summary = asyncio.run(apply_extracted_files(files, tmp_path))

    assert summary.unchanged == 1
    assert summary.written == 0
    assert target.read_text(encoding="utf-8") == "export const a = 1;\n\n"


@pytest.mark.unit
def test_apply_extracted_files_isolates_write_failure(tmp_path: Path, mocker: MockerFixture) -> None:
    real_write = apply.async_write_file

    async def flaky_write(path: Path, content: str) -> bool:
        if path.name == "bad.ts":
            return False
        return await real_write(path, content)

    mocker.patch("codebundle.apply.async_write_file", new=flaky_write)
    files = [
        ExtractedFile(file_path="src/good.ts", content="g"),
        ExtractedFile(file_path="src/bad.ts", content="b"),
    ]

    summary = asyncio.run(apply_extracted_files(files, tmp_path))

    assert summary.written == 1
    assert summary.errors == 1
    assert not summary.ok
    assert (tmp_path / "src" / "good.ts").exists()


@pytest.mark.unit
def test_with_path_comment_variants() -> None:
    assert with_path_comment("const a = 1;\n", "src/a.ts") == "// File: src/a.ts\n\nconst a = 1;\n"
    assert with_path_comment("// File: src/a.ts\n\nconst a = 1;\n", "src/a.ts") is None
    assert with_path_comment("\n\n// File: old/a.ts\nconst a = 1;", "src/a.ts") == "// File: src/a.ts\n\nconst a = 1;"
    assert with_path_comment("// File: src/a.ts\nconst a = 1;", "src/a.ts") == "// File: src/a.ts\n\nconst a = 1;"
    assert with_path_comment("// keep me\nx", "src/a.ts") == "// File: src/a.ts\n\n// keep me\nx"


@pytest.mark.unit
def test_add_path_comments_updates_skips_and_is_idempotent(tmp_path: Path) -> None:
    _write(tmp_path, "src/a.ts", "export const a = 1;\n")
    _write(tmp_path, "src/b.js", "// File: src/b.js\n\nmodule.exports = {};\n")
    _write(tmp_path, "src/c.json", "{}\n")
    _write(tmp_path, "src/app.env", "KEY=1\n")

    first = asyncio.run(add_path_comments(tmp_path))
    second = asyncio.run(add_path_comments(tmp_path))

    assert (first.updated, first.unchanged, first.skipped, first.errors) == (1, 1, 2, 0)
    assert (second.updated, second.unchanged, second.skipped) == (0, 2, 2)
    assert (tmp_path / "src" / "a.ts").read_text(encoding="utf-8") == "// File: src/a.ts\n\nexport const a = 1;\n"
    assert (tmp_path / "src" / "c.json").read_text(encoding="utf-8") == "{}\n"


@pytest.mark.unit
def test_add_path_comments_uses_project_root_for_markers(tmp_path: Path) -> None:
    _write(tmp_path, "pkg/src/a.ts", "x\n")

    asyncio.run(add_path_comments(tmp_path / "pkg" / "src", project_root=tmp_path))

    assert (tmp_path / "pkg" / "src" / "a.ts").read_text(encoding="utf-8").startswith("// File: pkg/src/a.ts\n\n")


@pytest.mark.unit
def test_add_path_comments_continues_after_read_failure(tmp_path: Path, mocker: MockerFixture) -> None:
    for name in ("a.ts", "b.ts", "c.ts", "d.ts", "e.ts"):
        _write(tmp_path, name, f"// {name}\n")
    real_read = apply.async_read_file

    async def flaky_read(path: Path) -> str:
        if path.name == "c.ts":
            raise FileReadError(path=path, reason="injected failure")
        return await real_read(path)

    mocker.patch("codebundle.apply.async_read_file", new=flaky_read)

    summary = asyncio.run(add_path_comments(tmp_path))

    assert summary.total == 5  # noqa: PLR2004
    assert summary.updated == 4  # noqa: PLR2004
    assert summary.errors == 1
    failed = [o for o in summary.outcomes if o.outcome == Outcome.ERROR]
    assert failed[0].path == "c.ts"
    assert "injected failure" in failed[0].message
    assert (tmp_path / "e.ts").read_text(encoding="utf-8").startswith("// File: e.ts\n\n")
    assert (tmp_path / "c.ts").read_text(encoding="utf-8") == "// c.ts\n"


@pytest.mark.unit
def test_batch_summary_render_lists_counts(tmp_path: Path) -> None:
    files = [ExtractedFile(file_path="src/a.ts", content="a")]

    rendered = asyncio.run(apply_extracted_files(files, tmp_path)).render()

    assert rendered.startswith("--- Summary ---")
    assert "Action:" in rendered
    assert any(line.split()[-1] == "1" and "Written" in line for line in rendered.splitlines())
    assert "Errors Encountered:" in rendered


@pytest.mark.unit
def test_with_path_comment_keeps_crlf_line_endings() -> None:
    updated = with_path_comment("\r\n// File: old.ts\r\nconst a = 1;\r\nconst b = 2;\r\n", "src/a.ts")

    assert updated == "// File: src/a.ts\r\n\r\nconst a = 1;\r\nconst b = 2;\r\n"
    assert with_path_comment("// File: src/a.ts\r\n\r\nx\r\n", "src/a.ts") is None


@pytest.mark.unit
def test_add_path_comments_preserves_crlf_on_disk(tmp_path: Path) -> None:
    target = tmp_path / "a.ts"
    target.write_bytes(b"const a = 1;\r\nconst b = 2;\r\n")

    summary = asyncio.run(add_path_comments(tmp_path))

    assert summary.updated == 1
    assert target.read_bytes() == b"// File: a.ts\r\n\r\nconst a = 1;\r\nconst b = 2;\r\n"
