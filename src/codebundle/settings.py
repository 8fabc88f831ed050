from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from codebundle.concurrency import DEFAULT_CONCURRENCY, clamp_concurrency

ENV_FILE = find_dotenv(usecwd=True)
load_dotenv(ENV_FILE)


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "").strip() or default)
    except ValueError:
        return default


class Settings(BaseModel):
    """Options of one codebundle command invocation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str = Field(..., description="Sub-command to run.")
    target: Path | None = Field(default=None, description="Directory (or file) to operate on.")
    prefix: str = Field(default="", description="Basename prefix filter.")
    pattern: str = Field(default="", description="Basename wildcard filter, overrides prefix.")
    output: Path | None = Field(default=None, description="Consolidation output file.")
    response: str = Field(default="", description="Response file to apply, '-' for stdin.")
    root: Path | None = Field(default=None, description="Project root for apply and path comments.")
    expect: list[str] = Field(default_factory=list, description="Allowed paths or globs.")

    config: Path | None = Field(
        default_factory=lambda: _env_path("CODEBUNDLE_CONFIG"),
        description="Filter configuration file (.yaml, .yml or .toml).",
    )
    log_file: str = Field(
        default_factory=lambda: os.getenv("CODEBUNDLE_LOG_FILE", ""),
        description="Log file path.",
    )
    concurrency: int = Field(
        default_factory=lambda: _env_int("CODEBUNDLE_CONCURRENCY", DEFAULT_CONCURRENCY),
        validate_default=True,
        description="Files processed at the same time (1-10).",
    )

    @field_validator("concurrency")
    @classmethod
    def _clamp(cls, value: int) -> int:
        return clamp_concurrency(value)
