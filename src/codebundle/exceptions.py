from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class CodeBundleError(Exception):
    """Base exception for errors in the codebundle package."""

    def __str__(self) -> str:
        return getattr(self, "message", self.__class__.__name__)


@dataclass(frozen=True)
class PathAccessError(CodeBundleError):
    """Raised when a root or target path is missing or of the wrong kind."""

    path: Path
    reason: str = "path does not exist or is not accessible"

    @property
    def message(self) -> str:
        return f"Cannot access '{self.path}': {self.reason}"


@dataclass(frozen=True)
class FileReadError(CodeBundleError):
    """Raised when a single file cannot be read."""

    path: Path
    reason: str

    @property
    def message(self) -> str:
        return f"Error reading '{self.path}': {self.reason}"


@dataclass(frozen=True)
class FileWriteError(CodeBundleError):
    """Raised when a single file cannot be written."""

    path: Path
    reason: str

    @property
    def message(self) -> str:
        return f"Error writing '{self.path}': {self.reason}"


@dataclass(frozen=True)
class ConfigError(CodeBundleError):
    """Raised when a filter configuration source cannot be parsed."""

    source: Path
    reason: str

    @property
    def message(self) -> str:
        return f"Invalid configuration in '{self.source}': {self.reason}"
