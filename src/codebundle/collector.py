"""Target-file discovery and source consolidation.

Files are found by a depth-first walk that prunes excluded names before it
stats or descends into them. Consolidation concatenates the selected files
into one document, each file introduced by a ``// File: <relative/path>``
marker line, which is the same marker `codebundle.response_parser` reads back.
"""

from __future__ import annotations

import asyncio
import os
import re
import stat
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from codebundle.concurrency import DEFAULT_CONCURRENCY, run_batch
from codebundle.config import TOOL_NAME, FileFilterConfig, glob_like_to_regex
from codebundle.exceptions import FileReadError, PathAccessError
from codebundle.file_io import async_read_file, display_path, is_regular_file
from codebundle.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

MARKER_PREFIX = "// File: "

_PATH_COMMENT_PATTERN = re.compile(r"^\s*//\s*File:\s*(.+?)\s*$")
_LINE_SPLIT_PATTERN = re.compile(r"\r?\n")


def file_marker(friendly_path: str) -> str:
    return f"{MARKER_PREFIX}{friendly_path}"


def split_lines(text: str) -> list[str]:
    return _LINE_SPLIT_PATTERN.split(text)


def marker_target(line: str) -> str | None:
    """Return the path named by a ``// File:`` marker line, or None."""
    m = _PATH_COMMENT_PATTERN.match(line)
    if not m:
        return None
    parts = m.group(1).split()
    return parts[0] if parts else None


def filter_lines(lines: Sequence[str], friendly_path: str) -> list[str]:
    """Strip a file's own leading path marker and collapse repeated lines.

    1. Leading blank lines are dropped, as are leading ``// File: <path>``
       lines whose path equals `friendly_path` (a trailing annotation after
       the path is tolerated). Markers naming another file stay.
    2. A non-blank line equal (after trimming) to the line right before it is
       dropped.

    Args:
        lines (Sequence[str]): the file content split into lines
        friendly_path (str): the POSIX relative path the file is published under

    Returns:
        list[str]: the filtered lines
    """
    start = 0
    while start < len(lines):
        first = lines[start].strip()
        if not first or marker_target(first) == friendly_path:
            start += 1
            continue
        break

    out: list[str] = []
    prev: str | None = None
    for line in lines[start:]:
        cur = line.strip()
        if cur and cur == prev:
            continue
        out.append(line)
        prev = cur
    return out


def now_iso() -> str:
    """Return the current local time with seconds precision."""
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")


def build_consolidation_header(root: Path, config: FileFilterConfig, timestamp: str | None = None) -> str:
    excludes = sorted(config.exclude_dir_names | config.exclude_filenames | config.exclude_wildcards)
    lines = [
        f"// Consolidated sources from: {root}",
        f"// Consolidation timestamp: {timestamp or now_iso()}",
        f"// Tool Name: {TOOL_NAME}",
        f"// Root Directory: {root}",
        f"// Include Extensions: {', '.join(sorted(config.include_extensions))}",
        f"// Exclude Patterns/Files: {', '.join(excludes)}",
    ]
    return "\n".join(lines) + "\n\n"


async def ensure_directory(root_dir: str | Path) -> Path:
    """Resolve `root_dir` and check it is a readable directory.

    Raises:
        PathAccessError: if the path is missing, not a directory or not readable.

    Returns:
        Path: the resolved absolute directory
    """
    root = Path(root_dir).resolve()
    try:
        st = await asyncio.to_thread(root.stat)
    except OSError as e:
        logger.error("root_access_failed", path=str(root_dir), error=str(e))
        raise PathAccessError(path=root, reason=e.strerror or str(e)) from e
    if not stat.S_ISDIR(st.st_mode):
        raise PathAccessError(path=root, reason="not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise PathAccessError(path=root, reason="permission denied")
    return root


async def _walk(
    directory: Path,
    config: FileFilterConfig,
    wildcards: list[re.Pattern[str]],
    ancestors: frozenset[Path],
) -> list[Path]:
    try:
        names = sorted(await asyncio.to_thread(os.listdir, directory))
    except OSError as e:
        logger.error("directory_read_failed", path=str(directory), error=str(e))
        return []

    results: list[Path] = []
    for name in names:
        if config.is_excluded_name(name, wildcards):
            continue
        path = directory / name
        try:
            st = await asyncio.to_thread(path.stat)
        except OSError as e:
            logger.warning("stat_failed", path=str(path), error=str(e))
            continue
        if stat.S_ISDIR(st.st_mode):
            real = await asyncio.to_thread(path.resolve)
            if real in ancestors:
                logger.warning("directory_cycle_skipped", path=str(path), target=str(real))
                continue
            results.extend(await _walk(path, config, wildcards, ancestors | {real}))
        else:
            results.append(path)
    return results


async def collect_files(root: Path, config: FileFilterConfig) -> list[Path]:
    """Return every non-excluded file under `root`, in name-sorted depth-first order."""
    real_root = await asyncio.to_thread(root.resolve)
    files = await _walk(root, config, config.wildcard_regexes(), frozenset({real_root}))
    logger.info("files_discovered", root=str(root), count=len(files))
    return files


def select_files(
    files: Sequence[Path],
    config: FileFilterConfig,
    *,
    prefix: str | None = None,
    pattern: str | None = None,
) -> list[Path]:
    """Apply the name and extension filters to discovered files.

    A `pattern` replaces the `prefix` filter entirely. Either way the file's
    extension must be in ``config.include_extensions``.

    Args:
        files (Sequence[Path]): discovered files
        config (FileFilterConfig): the filter configuration
        prefix (str | None): required basename prefix (ignored when `pattern` is set)
        pattern (str | None): wildcard matched case-insensitively against the basename

    Returns:
        list[Path]: the selected files, order preserved
    """
    name_regex = glob_like_to_regex(pattern) if pattern else None
    out: list[Path] = []
    for f in files:
        name = f.name
        if name_regex is not None:
            if not name_regex.match(name):
                continue
        elif prefix and not name.startswith(prefix):
            continue
        if not config.has_included_extension(f):
            continue
        out.append(f)
    return out


async def list_target_files(
    root_dir: str | Path,
    prefix: str | None = None,
    *,
    config: FileFilterConfig | None = None,
) -> list[Path]:
    """Find the files a command should operate on.

    Args:
        root_dir (str | Path): the directory to walk
        prefix (str | None): optional basename prefix filter
        config (FileFilterConfig | None): filter rules, defaults when omitted

    Raises:
        PathAccessError: if `root_dir` is missing or not a directory.

    Returns:
        list[Path]: absolute paths of the matching files
    """
    config = config or FileFilterConfig()
    root = await ensure_directory(root_dir)
    logger.info("target_search_started", root=str(root), prefix=prefix or "")
    targets = select_files(await collect_files(root, config), config, prefix=prefix)
    logger.info("target_files_found", root=str(root), count=len(targets))
    return targets


async def resolve_targets(
    target: str | Path,
    prefix: str | None = None,
    *,
    config: FileFilterConfig | None = None,
) -> list[Path]:
    """Turn a directory-or-file argument into a list of files.

    A directory is walked with `list_target_files`; a single regular file is
    returned as is unless its basename is an excluded filename.

    Raises:
        PathAccessError: if `target` does not exist or is neither file nor directory.
    """
    config = config or FileFilterConfig()
    path = Path(target)
    if path.is_dir():
        return await list_target_files(path, prefix, config=config)
    if not path.exists():
        raise PathAccessError(path=path, reason="path does not exist")
    if not is_regular_file(path):
        raise PathAccessError(path=path, reason="not a file or directory")
    if path.name in config.exclude_filenames:
        logger.info("target_file_excluded", path=str(path))
        return []
    return [path.resolve()]


async def _render_block(item: tuple[Path, str]) -> str | None:
    canonical, friendly = item
    try:
        data = await async_read_file(canonical)
    except (FileReadError, PathAccessError) as e:
        logger.warning("file_skipped_unreadable", path=friendly, error=str(e))
        return None

    filtered = filter_lines(split_lines(data), friendly)
    if not filtered and not data.strip():
        logger.info("file_skipped_empty", path=friendly)
        return None
    return f"{file_marker(friendly)}\n\n" + "\n".join(filtered) + "\n\n"


async def consolidate_sources(
    root_dir: str | Path,
    prefix: str | None = None,
    pattern: str | None = None,
    *,
    config: FileFilterConfig | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> str:
    """Concatenate the selected files under `root_dir` into one annotated document.

    Each physical file appears at most once: files are de-duplicated on their
    symlink-resolved path, and that canonical path (relative to the root)
    is the one written in the file's marker. Files that cannot be read are
    logged and left out.

    Args:
        root_dir (str | Path): the directory to consolidate
        prefix (str | None): optional basename prefix filter
        pattern (str | None): optional wildcard filter, takes precedence over `prefix`
        config (FileFilterConfig | None): filter rules, defaults when omitted
        concurrency (int): number of files read at the same time

    Raises:
        PathAccessError: if `root_dir` is missing or not a directory.

    Returns:
        str: the consolidation header followed by one block per file
    """
    config = config or FileFilterConfig()
    root = await ensure_directory(root_dir)
    logger.info("consolidation_started", root=str(root), prefix=prefix or "", pattern=pattern or "")

    candidates = select_files(await collect_files(root, config), config, prefix=prefix, pattern=pattern)

    seen: set[Path] = set()
    unique: list[tuple[Path, str]] = []
    for f in candidates:
        try:
            canonical = await asyncio.to_thread(f.resolve, True)
        except OSError as e:
            logger.warning("realpath_failed", path=str(f), error=str(e))
            continue
        if canonical in seen:
            continue
        seen.add(canonical)
        unique.append((canonical, display_path(canonical, root)))

    blocks = await run_batch(unique, _render_block, concurrency=concurrency)
    output = build_consolidation_header(root, config) + "".join(b for b in blocks if b is not None)
    logger.info(
        "consolidation_completed",
        root=str(root),
        files=sum(1 for b in blocks if b is not None),
        chars=len(output),
    )
    return output
