"""Batch operations that write files back to a project.

Both entry points follow the same contract: every item is handled on its
own, failures are recorded as an ``error`` outcome for that item only, and
the summary is built after all items have finished.
"""

from __future__ import annotations

import asyncio
import fnmatch
from enum import StrEnum, auto
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, computed_field

from codebundle.collector import file_marker, list_target_files, marker_target, split_lines
from codebundle.concurrency import DEFAULT_CONCURRENCY, run_batch
from codebundle.exceptions import CodeBundleError
from codebundle.file_io import async_read_file, async_write_file, display_path, normalize_rel_path
from codebundle.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from codebundle.config import FileFilterConfig
    from codebundle.response_parser import ExtractedFile

NON_COMMENTABLE_EXTENSIONS = frozenset({".json", ".env"})


class Outcome(StrEnum):
    """What happened to one file of a batch."""

    WRITTEN = auto()
    UPDATED = auto()
    UNCHANGED = auto()
    SKIPPED = auto()
    REJECTED = auto()
    ERROR = auto()


class FileOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    outcome: Outcome
    message: str = ""


class BatchSummary(BaseModel):
    """Per-file outcomes of a batch and their tallies."""

    action: str
    outcomes: list[FileOutcome] = Field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @computed_field
    @property
    def total(self) -> int:
        return len(self.outcomes)

    @computed_field
    @property
    def written(self) -> int:
        return self.count(Outcome.WRITTEN)

    @computed_field
    @property
    def updated(self) -> int:
        return self.count(Outcome.UPDATED)

    @computed_field
    @property
    def unchanged(self) -> int:
        return self.count(Outcome.UNCHANGED)

    @computed_field
    @property
    def skipped(self) -> int:
        return self.count(Outcome.SKIPPED)

    @computed_field
    @property
    def rejected(self) -> int:
        return self.count(Outcome.REJECTED)

    @computed_field
    @property
    def errors(self) -> int:
        return self.count(Outcome.ERROR)

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def render(self) -> str:
        """Format the summary block printed at the end of a command."""
        rows = [
            ("Action", self.action),
            ("Total Files Targeted", self.total),
            ("Written", self.written),
            ("Updated", self.updated),
            ("No Changes Needed", self.unchanged),
            ("Skipped", self.skipped),
            ("Rejected", self.rejected),
            ("Errors Encountered", self.errors),
        ]
        width = max(len(label) for label, _ in rows) + 1
        lines = ["--- Summary ---"]
        lines.extend(f"  {label + ':':<{width}} {value}" for label, value in rows)
        lines.append("---------------")
        return "\n".join(lines)


def matches_expected(file_path: str, expected: Sequence[str]) -> bool:
    """Check a path against an allowlist of exact paths or glob patterns.

    Args:
        file_path (str): the relative path proposed by the model
        expected (Sequence[str]): allowed relative paths or globs (e.g. ``src/**/*.ts``)

    Returns:
        bool: True if the normalized path equals or matches one of `expected`
    """
    rel = normalize_rel_path(file_path)
    for raw in expected:
        pat = normalize_rel_path(raw)
        if not pat:
            continue
        if rel == pat or fnmatch.fnmatch(rel, pat):
            return True
    return False


def resolve_inside(root: Path, rel: str) -> Path | None:
    """Resolve `rel` under `root`, or None if it would land outside of it."""
    pure = PurePosixPath(rel)
    if pure.is_absolute() or Path(rel).is_absolute() or Path(rel).drive:
        return None
    real_root = root.resolve()
    target = (real_root / pure).resolve()
    try:
        target.relative_to(real_root)
    except ValueError:
        return None
    return target


async def _apply_one(
    item: ExtractedFile,
    root: Path,
    expected: Sequence[str] | None,
) -> FileOutcome:
    rel = normalize_rel_path(item.file_path)
    if expected is not None and not matches_expected(rel, expected):
        logger.warning("file_rejected_unexpected_path", path=rel)
        return FileOutcome(path=rel, outcome=Outcome.REJECTED, message="not an expected path")
    target = resolve_inside(root, rel)
    if target is None:
        logger.warning("file_rejected_outside_root", path=rel, root=str(root))
        return FileOutcome(path=rel, outcome=Outcome.REJECTED, message="outside project root")

    try:
        if await asyncio.to_thread(target.exists):
            current = await async_read_file(target)
            if current.replace("\r\n", "\n").strip() == item.content.replace("\r\n", "\n").strip():
                logger.info("file_unchanged", path=rel)
                return FileOutcome(path=rel, outcome=Outcome.UNCHANGED)
        new_content = f"{item.content}\n" if item.content else ""
        if await async_write_file(target, new_content):
            return FileOutcome(path=rel, outcome=Outcome.WRITTEN)
    except (CodeBundleError, OSError) as e:
        logger.error("file_apply_failed", path=rel, error=str(e))
        return FileOutcome(path=rel, outcome=Outcome.ERROR, message=str(e))
    return FileOutcome(path=rel, outcome=Outcome.ERROR, message="write failed")


async def apply_extracted_files(
    files: Sequence[ExtractedFile],
    root: str | Path,
    *,
    expected: Sequence[str] | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> BatchSummary:
    """Write parsed response files under `root`.

    Args:
        files (Sequence[ExtractedFile]): files from `parse_multi_file_response`
        root (str | Path): project root the relative paths are resolved against
        expected (Sequence[str] | None): optional allowlist of relative paths or
            globs; any other path is rejected instead of written
        concurrency (int): maximum number of files handled at once

    Returns:
        BatchSummary: one outcome per file, in input order
    """
    root_path = Path(root)
    outcomes = await run_batch(
        files,
        lambda item: _apply_one(item, root_path, expected),
        concurrency=concurrency,
    )
    summary = BatchSummary(action="apply", outcomes=outcomes)
    logger.info(
        "apply_completed",
        written=summary.written,
        unchanged=summary.unchanged,
        rejected=summary.rejected,
        errors=summary.errors,
    )
    return summary


def with_path_comment(content: str, rel: str) -> str | None:
    """Put a ``// File: <rel>`` marker at the top of `content`.

    Leading blank lines and leading marker lines (for any path) are replaced
    by the marker and one blank line. A file using CRLF line endings keeps them.

    Returns:
        str | None: the new content, or None when the marker is already in place
    """
    marker = file_marker(rel)
    newline = "\r\n" if "\r\n" in content else "\n"
    lines = split_lines(content)
    if lines[0].strip() == marker and (len(lines) == 1 or not lines[1].strip()):
        return None

    start = 0
    while start < len(lines) and (not lines[start].strip() or marker_target(lines[start].strip())):
        start += 1
    return f"{marker}{newline}{newline}" + newline.join(lines[start:])


async def _comment_one(path: Path, project_root: Path) -> FileOutcome:
    rel = display_path(path, project_root)
    if path.suffix.lower() in NON_COMMENTABLE_EXTENSIONS:
        logger.info("file_skipped_non_commentable", path=rel)
        return FileOutcome(path=rel, outcome=Outcome.SKIPPED, message="non-commentable file type")
    try:
        original = await async_read_file(path)
    except (CodeBundleError, OSError) as e:
        logger.error("file_processing_failed", path=rel, error=str(e))
        return FileOutcome(path=rel, outcome=Outcome.ERROR, message=str(e))

    updated = with_path_comment(original, rel)
    if updated is None:
        return FileOutcome(path=rel, outcome=Outcome.UNCHANGED)
    if await async_write_file(path, updated):
        return FileOutcome(path=rel, outcome=Outcome.UPDATED)
    return FileOutcome(path=rel, outcome=Outcome.ERROR, message="write failed")


async def add_path_comments(
    root_dir: str | Path,
    prefix: str | None = None,
    *,
    config: FileFilterConfig | None = None,
    project_root: str | Path | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> BatchSummary:
    """Make every target file start with its own ``// File:`` marker.

    Args:
        root_dir (str | Path): directory whose target files are processed
        prefix (str | None): optional basename prefix filter
        config (FileFilterConfig | None): filter rules, defaults when omitted
        project_root (str | Path | None): base for the paths written in markers;
            defaults to `root_dir`
        concurrency (int): maximum number of files handled at once

    Raises:
        PathAccessError: if `root_dir` is missing or not a directory.

    Returns:
        BatchSummary: one outcome per target file
    """
    targets = await list_target_files(root_dir, prefix, config=config)
    base = Path(project_root or root_dir).resolve()
    outcomes = await run_batch(targets, lambda p: _comment_one(p, base), concurrency=concurrency)
    summary = BatchSummary(action="add-path-comment", outcomes=outcomes)
    logger.info(
        "add_path_comment_completed",
        updated=summary.updated,
        unchanged=summary.unchanged,
        skipped=summary.skipped,
        errors=summary.errors,
    )
    return summary
