from __future__ import annotations

import re
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from codebundle.file_io import normalize_rel_path
from codebundle.logging import logger

FILE_HEADER_PATTERN = re.compile(r"^[ \t]*//[ \t]*File:[ \t]*(\S+)[ \t\r]*$", re.MULTILINE)
_FENCED_BLOCK_PATTERN = re.compile(r"^```[^\s`]*[ \t]*\r?\n(.*?)(?:\r?\n)?[ \t]*```$", re.DOTALL)
_FENCE_LINE_PATTERN = re.compile(r"^[ \t]*```", re.MULTILINE)

MIN_PATH_LENGTH = 3


class ExtractedFile(BaseModel):
    """One file recovered from a multi-file response."""

    model_config = ConfigDict(frozen=True)

    file_path: str = Field(..., description="Relative path, forward-slash normalized")
    content: str = Field(..., description="Trimmed, fence-stripped file content")


class _HeaderMatch(NamedTuple):
    file_path: str
    start: int
    end: int


def strip_code_fence(segment: str) -> str:
    """Unwrap a Markdown fence that encloses the whole segment.

    The segment is unwrapped only when it starts with a fence line (optionally
    carrying a language tag), ends with a closing fence, and has no other
    fence line in between. Anything else is returned unchanged.

    Args:
        segment (str): an already trimmed segment

    Returns:
        str: the inner content, trimmed, or the original segment
    """
    m = _FENCED_BLOCK_PATTERN.match(segment)
    if not m:
        return segment
    inner = m.group(1)
    if _FENCE_LINE_PATTERN.search(inner):
        return segment
    return inner.strip()


def is_plausible_path(file_path: str) -> bool:
    """Reject captures that are unlikely to be real relative paths."""
    if len(file_path) < MIN_PATH_LENGTH:
        return False
    return "/" in file_path or "." in file_path


def _find_headers(text: str) -> list[_HeaderMatch]:
    return [
        _HeaderMatch(file_path=normalize_rel_path(m.group(1)), start=m.start(), end=m.end())
        for m in FILE_HEADER_PATTERN.finditer(text)
    ]


def parse_multi_file_response(response_text: str) -> list[ExtractedFile]:
    """Split a model response into the files it declares.

    Every ``// File: <path>`` line opens a file whose content runs until the
    next such line or the end of the text. Each segment is trimmed and
    unwrapped from a single enclosing code fence. Segments with an empty or
    implausible path are dropped with a warning.

    An empty list is not an error: it means the response carried no file
    markers and should be shown to the user as is.

    Args:
        response_text (str): the raw response

    Returns:
        list[ExtractedFile]: the extracted files in document order
    """
    if not response_text or not response_text.strip():
        logger.warning("response_empty")
        return []

    headers = _find_headers(response_text)
    if not headers:
        logger.warning("response_without_file_markers", chars=len(response_text))
        return []

    extracted: list[ExtractedFile] = []
    for i, header in enumerate(headers):
        end = headers[i + 1].start if i + 1 < len(headers) else len(response_text)
        content = response_text[header.end : end].strip()
        unwrapped = strip_code_fence(content)
        if unwrapped is not content:
            logger.debug("code_fence_stripped", path=header.file_path)

        if not header.file_path:
            snippet = response_text[header.start : header.start + 50]
            logger.warning("segment_skipped_missing_path", header=snippet)
            continue
        if not is_plausible_path(header.file_path):
            logger.warning("segment_skipped_invalid_path", path=header.file_path)
            continue

        extracted.append(ExtractedFile(file_path=header.file_path, content=unwrapped))

    logger.info("response_parsed", files=len(extracted), markers=len(headers))
    return extracted
