"""Standardized error types for workspace tools.

Each error serializes to a small JSON-friendly dict so the failure can be
shown to the user and, when useful, fed back to the model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


class ErrorCode:
    """Constants for error codes used in tool responses."""

    # Path errors
    FILE_NOT_FOUND = "file_not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    OUTSIDE_WORKSPACE = "outside_workspace"
    BINARY_FILE = "binary_file"

    # Search errors
    PATTERN_INVALID = "pattern_invalid"

    # General errors
    INTERNAL_ERROR = "internal_error"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"


@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class FileNotFoundToolError(ToolError):
    """Raised when a referenced path does not exist."""

    error_code: str = field(default=ErrorCode.FILE_NOT_FOUND)
    message: str = field(default="The requested path does not exist")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use list_dir or pathname_search to locate the file")

    path: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass
class NotADirectoryToolError(ToolError):
    error_code: str = field(default=ErrorCode.NOT_A_DIRECTORY)
    message: str = field(default="The requested path is not a directory")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use read_file for files")


@dataclass
class OutsideWorkspaceError(ToolError):
    """Raised when a path resolves outside every workspace folder."""

    error_code: str = field(default=ErrorCode.OUTSIDE_WORKSPACE)
    message: str = field(default="The requested path is outside the workspace")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use paths relative to the workspace root")


@dataclass
class BinaryFileError(ToolError):
    error_code: str = field(default=ErrorCode.BINARY_FILE)
    message: str = field(default="The file is not valid UTF-8 text")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Only text files can be read")


@dataclass
class PatternInvalidError(ToolError):
    error_code: str = field(default=ErrorCode.PATTERN_INVALID)
    message: str = field(default="The search pattern is not a valid regular expression")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Escape special characters or search for a literal string")


@dataclass
class InvalidParameterError(ToolError):
    """Error raised when a parameter value is invalid."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid parameter value")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check the parameter requirements")

    parameter: str | None = field(default=None)
    expected: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameter is not None:
            result["parameter"] = self.parameter
        if self.expected is not None:
            result["expected"] = self.expected
        return result


@dataclass
class MissingParameterError(ToolError):
    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="A required parameter is missing")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Provide every required parameter")

    parameter: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameter is not None:
            result["parameter"] = self.parameter
        return result


def error_from_dict(data: Mapping[str, Any]) -> ToolError:
    """Reconstruct a ToolError (base class) from its dictionary representation."""
    return ToolError(
        error_code=data.get("error", ErrorCode.INTERNAL_ERROR),
        message=data.get("message", "Unknown error"),
        details=dict(data.get("details", {})),
        suggestion=data.get("suggestion", ""),
    )


__all__ = [
    "ErrorCode",
    "ToolError",
    "FileNotFoundToolError",
    "NotADirectoryToolError",
    "OutsideWorkspaceError",
    "BinaryFileError",
    "PatternInvalidError",
    "InvalidParameterError",
    "MissingParameterError",
    "error_from_dict",
]
