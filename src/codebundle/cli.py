"""
codebundle — Move source code in and out of a single LLM-friendly text blob.

Commands
--------
- ``list``: print the files a directory contributes after filtering.
- ``consolidate``: concatenate those files, each behind a ``// File: <path>``
  marker, into one document.
- ``apply``: parse a multi-file response that uses the same markers and write
  the files it declares under a project root.
- ``add-path-comment``: make every target file start with its own marker.

Usage
-----
    codebundle consolidate src --output consolidated_output.txt
    codebundle apply response.txt --root . --expect "src/**/*.ts"
    codebundle --config codebundle.yaml add-path-comment src --root .
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from codebundle import __version__
from codebundle.apply import add_path_comments, apply_extracted_files
from codebundle.collector import consolidate_sources, resolve_targets
from codebundle.config import load_filter_config
from codebundle.exceptions import ConfigError, FileReadError, FileWriteError, PathAccessError
from codebundle.file_io import read_file, write_file
from codebundle.logging import logger, setup_logging
from codebundle.response_parser import parse_multi_file_response
from codebundle.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from codebundle.config import FileFilterConfig


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = argparse.ArgumentParser(
        prog="codebundle",
        description="Consolidate sources for an LLM and apply multi-file responses.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", type=str, default=None, help="Filter config file (.yaml/.yml/.toml).")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")
    p.add_argument("--concurrency", type=int, default=None, help="Files processed at once (1-10).")

    sub = p.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="List target files.")
    ls.add_argument("target", type=str, help="Directory or file.")
    ls.add_argument("--prefix", type=str, default="", help="Basename prefix filter.")

    cons = sub.add_parser("consolidate", help="Consolidate target files into one document.")
    cons.add_argument("target", type=str, help="Directory to consolidate.")
    cons.add_argument("--prefix", type=str, default="", help="Basename prefix filter.")
    cons.add_argument(
        "--pattern",
        type=str,
        default="",
        help="Basename wildcard (e.g. '*service*'); overrides --prefix.",
    )
    cons.add_argument("--output", type=str, default=None, help="Output file (default: stdout).")

    app = sub.add_parser("apply", help="Write the files declared in a response.")
    app.add_argument("response", type=str, help="Response file, '-' for stdin.")
    app.add_argument("--root", type=str, default=None, help="Project root (default: cwd).")
    app.add_argument(
        "--expect",
        action="append",
        default=[],
        help="Allowed relative path or glob (repeatable).",
    )

    com = sub.add_parser("add-path-comment", help="Prepend '// File: <path>' to target files.")
    com.add_argument("target", type=str, help="Directory to process.")
    com.add_argument("--prefix", type=str, default="", help="Basename prefix filter.")
    com.add_argument("--root", type=str, default=None, help="Base of the paths written in markers.")

    args = p.parse_args(argv)
    return Settings(**{k: v for k, v in vars(args).items() if v is not None})


def filter_config_for(settings: Settings, target: Path | None) -> FileFilterConfig:
    """Load the filter config, looking for a pyproject next to the target."""
    root = None
    if target is not None:
        root = target if target.is_dir() else target.parent
    return load_filter_config(settings.config, root=root)


async def _run_list(settings: Settings) -> int:
    target = Path(settings.target or ".")
    config = filter_config_for(settings, target)
    for path in await resolve_targets(target, settings.prefix or None, config=config):
        print(path)
    return 0


async def _run_consolidate(settings: Settings) -> int:
    target = Path(settings.target or ".")
    config = filter_config_for(settings, target)
    text = await consolidate_sources(
        target,
        settings.prefix or None,
        settings.pattern or None,
        config=config,
        concurrency=settings.concurrency,
    )
    if settings.output is None:
        sys.stdout.write(text)
        return 0
    if not write_file(settings.output.resolve(), text):
        raise FileWriteError(path=settings.output, reason="could not write consolidated output")
    print(f"Wrote {settings.output} chars={len(text)}")
    return 0


async def _run_apply(settings: Settings) -> int:
    if settings.response == "-":
        text = sys.stdin.read()
    else:
        text = read_file(Path(settings.response))

    files = parse_multi_file_response(text)
    if not files:
        print("No '// File: <path>' markers found; raw response follows for manual review.", file=sys.stderr)
        print(text)
        return 1

    root = settings.root or Path.cwd()
    summary = await apply_extracted_files(
        files,
        root,
        expected=settings.expect or None,
        concurrency=settings.concurrency,
    )
    for item in summary.outcomes:
        print(f"{item.outcome:<9} {item.path}" + (f"  ({item.message})" if item.message else ""))
    print(summary.render())
    return 0 if summary.ok else 1


async def _run_add_path_comment(settings: Settings) -> int:
    target = Path(settings.target or ".")
    config = filter_config_for(settings, target)
    summary = await add_path_comments(
        target,
        settings.prefix or None,
        config=config,
        project_root=settings.root,
        concurrency=settings.concurrency,
    )
    print(summary.render())
    return 0 if summary.ok else 1


COMMANDS = {
    "list": _run_list,
    "consolidate": _run_consolidate,
    "apply": _run_apply,
    "add-path-comment": _run_add_path_comment,
}


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)

    logger.info("command_started", command=settings.command)
    try:
        return asyncio.run(COMMANDS[settings.command](settings))
    except (PathAccessError, ConfigError) as e:
        logger.error("command_failed", command=settings.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (FileReadError, FileWriteError) as e:
        logger.error("command_failed", command=settings.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
