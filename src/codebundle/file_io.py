from __future__ import annotations

import asyncio
import stat
from pathlib import Path

from codebundle.exceptions import FileReadError, PathAccessError
from codebundle.logging import logger


def display_path(path: Path, root: Path) -> str:
    """Render `path` relative to `root` for logs and file markers.

    Args:
        path (Path): the path to "relativise"
        root (Path): the project root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return Path(path).relative_to(root).as_posix()
    except ValueError:
        return str(path)


def normalize_rel_path(text: str) -> str:
    """Normalize a user- or model-supplied relative path.

    Backslashes become forward slashes, surrounding whitespace and leading
    ``./`` segments are removed.

    Args:
        text (str): raw relative path

    Returns:
        str: the normalized POSIX-style relative path
    """
    out = text.strip().replace("\\", "/")
    while out.startswith("./"):
        out = out[2:]
    return out


def is_regular_file(path: Path) -> bool:
    try:
        return stat.S_ISREG(path.stat().st_mode)
    except OSError:
        return False


def read_file(path: Path) -> str:
    """Read a text file that must exist.

    Line endings are returned as stored.

    Args:
        path (Path): absolute path of the file to read

    Raises:
        PathAccessError: if the path does not exist or is not a regular file.
        FileReadError: if the file exists but cannot be read or decoded.

    Returns:
        str: the UTF-8 decoded content
    """
    p = Path(path)
    if not p.exists():
        raise PathAccessError(path=p, reason="file does not exist")
    if not is_regular_file(p):
        raise PathAccessError(path=p, reason="not a regular file")
    try:
        with p.open(encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("file_read_failed", path=str(p), error=str(e))
        raise FileReadError(path=p, reason=str(e)) from e


def write_file(path: Path, content: str) -> bool:
    """Write `content` to `path`, creating missing parent directories.

    Existing content is overwritten and line endings are written as given.
    Failures are logged and reported through the return value so that batch
    callers can keep going.

    Args:
        path (Path): absolute path of the file to write
        content (str): the full new content

    Returns:
        bool: True if the file was written, False on any I/O failure
    """
    p = Path(path)
    try:
        if not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)
            logger.info("directory_created", path=str(p.parent))
        p.write_text(content, encoding="utf-8", newline="")
    except OSError as e:
        logger.error("file_write_failed", path=str(p), error=str(e))
        return False
    logger.info("file_written", path=str(p), chars=len(content))
    return True


async def async_read_file(path: Path) -> str:
    return await asyncio.to_thread(read_file, path)


async def async_write_file(path: Path, content: str) -> bool:
    return await asyncio.to_thread(write_file, path, content)
