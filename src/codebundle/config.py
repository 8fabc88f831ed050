from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import tomlkit
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from tomlkit.exceptions import TOMLKitError

from codebundle.exceptions import ConfigError

TOOL_NAME = "codebundle"

DEFAULT_INCLUDE_EXTENSIONS = frozenset({".ts", ".js", ".json", ".env"})

DEFAULT_EXCLUDE_DIR_NAMES = frozenset({
    "node_modules",
    "dist",
    "build",
    ".git",
    "coverage",
})

DEFAULT_EXCLUDE_FILENAMES = frozenset({
    "package-lock.json",
    "consolidated_sources.ts",
    "consolidated_output.txt",  # default consolidation output
    "code.extractor.ts",
    "README.md",
    "docs.md",
})

CONFIG_KEYS = ("include_extensions", "exclude_dir_names", "exclude_filenames", "exclude_wildcards")

_REGEX_SPECIALS = re.compile(r"[-/\\^$*+?.()|\[\]{}]")


def glob_like_to_regex(pattern: str) -> re.Pattern[str]:
    """Convert a simple wildcard pattern into an anchored, case-insensitive regex.

    Only a leading and/or trailing ``*`` is meaningful:

    - ``*suffix``   matches names ending with ``suffix``
    - ``prefix*``   matches names starting with ``prefix``
    - ``*substr*``  matches names containing ``substr``
    - ``name``      matches ``name`` exactly
    - ``*`` / ``**`` matches any non-empty name

    Any other character, including a ``*`` in the middle, is matched literally.

    Args:
        pattern (str): the wildcard pattern

    Returns:
        re.Pattern[str]: a compiled pattern meant for ``.match`` against a basename
    """
    core = pattern.strip()
    leading = core.startswith("*")
    if leading:
        core = core[1:]
    trailing = core.endswith("*")
    if trailing:
        core = core[:-1]

    if not core and (leading or trailing):
        return re.compile(r"^.+$", re.IGNORECASE)

    escaped = _REGEX_SPECIALS.sub(lambda m: "\\" + m.group(0), core)
    head = ".*" if leading else ""
    tail = ".*" if trailing else ""
    return re.compile(f"^{head}{escaped}{tail}$", re.IGNORECASE | re.DOTALL)


def _string_items(value: Any) -> list[Any]:  # noqa: ANN401
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"expected a string or a list of strings, got {type(value).__name__}")  # noqa: TRY004
    return list(value)


class FileFilterConfig(BaseModel):
    """Include/exclude rules applied while collecting files.

    Attributes:
        include_extensions: Lowercase extensions with a leading dot that are kept.
        exclude_dir_names: Basenames pruned during traversal (files or directories).
        exclude_filenames: Exact basenames skipped even when otherwise matching.
        exclude_wildcards: Simple wildcard patterns (see `glob_like_to_regex`)
            matched case-insensitively against basenames.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_extensions: frozenset[str] = Field(default=DEFAULT_INCLUDE_EXTENSIONS)
    exclude_dir_names: frozenset[str] = Field(default=DEFAULT_EXCLUDE_DIR_NAMES)
    exclude_filenames: frozenset[str] = Field(default=DEFAULT_EXCLUDE_FILENAMES)
    exclude_wildcards: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("include_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> frozenset[str]:  # noqa: ANN401
        out: set[str] = set()
        for ext in _string_items(value):
            e = str(ext).strip().lower()
            if not e:
                continue
            out.add(e if e.startswith(".") else f".{e}")
        return frozenset(out)

    @field_validator("exclude_dir_names", "exclude_filenames", "exclude_wildcards", mode="before")
    @classmethod
    def _strip_names(cls, value: Any) -> frozenset[str]:  # noqa: ANN401
        return frozenset(s for s in (str(v).strip() for v in _string_items(value)) if s)

    def wildcard_regexes(self) -> list[re.Pattern[str]]:
        """Compile the exclusion wildcards."""
        return [glob_like_to_regex(p) for p in sorted(self.exclude_wildcards)]

    def is_excluded_name(self, name: str, wildcards: list[re.Pattern[str]] | None = None) -> bool:
        """Check whether a basename is pruned by the exclusion rules.

        Args:
            name (str): the basename of a file or directory
            wildcards (list[re.Pattern[str]] | None): precompiled wildcard regexes;
                compiled on the fly when omitted

        Returns:
            bool: True if the entry must be skipped
        """
        if name in self.exclude_dir_names or name in self.exclude_filenames:
            return True
        regexes = self.wildcard_regexes() if wildcards is None else wildcards
        return any(rx.match(name) for rx in regexes)

    def has_included_extension(self, path: Path) -> bool:
        return path.suffix.lower() in self.include_extensions

    def with_overrides(self, **overrides: Any) -> FileFilterConfig:  # noqa: ANN401
        """Return a validated copy with some fields replaced."""
        return FileFilterConfig.model_validate({**self.model_dump(), **overrides})


def _read_toml_table(path: Path) -> dict[str, Any] | None:
    try:
        doc = tomlkit.parse(path.read_text(encoding="utf-8")).unwrap()
    except (OSError, TOMLKitError) as e:
        raise ConfigError(source=path, reason=str(e)) from e
    tool = doc.get("tool", {})
    if not isinstance(tool, dict):
        raise ConfigError(source=path, reason="[tool] must be a table")
    table = tool.get(TOOL_NAME)
    if table is None:
        return None
    if not isinstance(table, dict):
        raise ConfigError(source=path, reason=f"[tool.{TOOL_NAME}] must be a table")
    return table


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(source=path, reason=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(source=path, reason="top-level YAML value must be a mapping")
    return data


def load_filter_config(config_path: Path | None = None, root: Path | None = None) -> FileFilterConfig:
    """Load a `FileFilterConfig` from a YAML/TOML file or a project's pyproject.

    Resolution order:

    1. ``config_path`` when given (``.yaml``/``.yml`` read as a mapping,
       ``.toml`` read from its ``[tool.codebundle]`` table).
    2. ``root/pyproject.toml`` when it carries a ``[tool.codebundle]`` table.
    3. Built-in defaults.

    Keys present in the source replace the corresponding defaults.

    Args:
        config_path (Path | None): explicit configuration file
        root (Path | None): project root searched for ``pyproject.toml``

    Raises:
        ConfigError: if the file is unreadable, malformed or has unknown keys.

    Returns:
        FileFilterConfig: the effective filter configuration
    """
    data: dict[str, Any] | None = None
    source: Path | None = None

    if config_path is not None:
        source = Path(config_path)
        if not source.is_file():
            raise ConfigError(source=source, reason="file not found")
        if source.suffix.lower() in {".yaml", ".yml"}:
            data = _read_yaml_mapping(source)
        elif source.suffix.lower() == ".toml":
            data = _read_toml_table(source) or {}
        else:
            raise ConfigError(source=source, reason="expected a .yaml, .yml or .toml file")
    elif root is not None and (Path(root) / "pyproject.toml").is_file():
        source = Path(root) / "pyproject.toml"
        data = _read_toml_table(source)

    if not data:
        return FileFilterConfig()

    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigError(source=source, reason=f"unknown keys: {', '.join(unknown)}")
    try:
        return FileFilterConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(source=source, reason=str(e)) from e
