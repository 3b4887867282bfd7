"""
Comfy Compiler - Exception Hierarchy
=====================================

Exception classes with:
- User-friendly vs developer messages (environment-aware)
- Structured error codes for programmatic handling
- Recovery suggestions for common errors

Only structural failures are raised. Resolution problems (unmappable widgets,
unresolvable bypass chains) are returned to the caller as warning lists.

Usage:
    from comfy_compiler.exceptions import WorkflowParseError

    try:
        graph = parse_workflow(text)
    except WorkflowParseError as e:
        print(e.user_message)
        logger.error(e.developer_message)
        original = e.source_text
"""

import os
from enum import Enum
from typing import Any

__all__ = [
    # Error levels and verbosity
    "ErrorLevel",
    "VerbosityLevel",
    "set_verbosity",
    "get_verbosity",
    # Result wrapper
    "Result",
    # Base exception
    "ComfyCompilerError",
    # Workflow errors
    "WorkflowError",
    "WorkflowParseError",
    "WorkflowValidationError",
    # Schema errors
    "SchemaError",
    # Validation errors
    "ValidationError",
    "InvalidParameterError",
    # Utilities
    "format_error_for_user",
    "collect_suggestions",
]


# =============================================================================
# ERROR LEVELS AND VERBOSITY
# =============================================================================


class ErrorLevel(Enum):
    """Error severity levels for filtering and display."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class VerbosityLevel(Enum):
    """
    Output verbosity levels for different audiences.

    ELI5: Simple explanations for non-technical users
    CASUAL: User-friendly messages for general users
    DEVELOPER: Full technical details for debugging
    """

    ELI5 = "eli5"
    CASUAL = "casual"
    DEVELOPER = "developer"


_current_verbosity: VerbosityLevel | None = None


def _get_verbosity() -> VerbosityLevel:
    """Get current verbosity from environment or global setting."""
    if _current_verbosity is not None:
        return _current_verbosity
    level = os.environ.get("COMFY_COMPILER_VERBOSITY", "casual").lower()
    try:
        return VerbosityLevel(level)
    except ValueError:
        return VerbosityLevel.CASUAL


def set_verbosity(level: VerbosityLevel | None):
    """Set the global verbosity level (None restores the environment default)."""
    global _current_verbosity
    _current_verbosity = level


def get_verbosity() -> VerbosityLevel:
    """Get the current verbosity level."""
    return _get_verbosity()


def _is_production() -> bool:
    return os.environ.get("COMFY_COMPILER_ENV", "development").lower() == "production"


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class ComfyCompilerError(Exception):
    """
    Base exception for all comfy_compiler errors.

    Attributes:
        message: Technical error message
        user_message: User-friendly explanation
        code: Error code for programmatic handling
        details: Dict with additional context
        suggestions: List of recovery suggestions
        level: Error severity level
    """

    _default_user_message = "An error occurred"
    _default_eli5_message = "Something went wrong"
    _default_suggestions: list[str] = []

    def __init__(
        self,
        message: str,
        *,
        user_message: str | None = None,
        eli5_message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
        suggestions: list[str] | None = None,
        level: ErrorLevel = ErrorLevel.ERROR,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self._user_message = user_message
        self._eli5_message = eli5_message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self._suggestions = suggestions
        self.level = level
        self.request_id = request_id

        if request_id:
            self.details["request_id"] = request_id

        if cause:
            self.__cause__ = cause

    @property
    def user_message(self) -> str:
        """Get user-friendly message (for UI display)."""
        return self._user_message or self._default_user_message

    @property
    def eli5_message(self) -> str:
        """Get simple explanation (for non-technical users)."""
        return self._eli5_message or self._default_eli5_message

    @property
    def developer_message(self) -> str:
        """Get full technical message (for logs/debugging)."""
        prefix = f"[{self.code}]"
        if self.request_id:
            prefix = f"[{self.code}:{self.request_id}]"
        msg = f"{prefix} {self.message}"
        filtered_details = {k: v for k, v in self.details.items() if k != "request_id"}
        if filtered_details:
            details_str = ", ".join(f"{k}={v}" for k, v in filtered_details.items())
            msg += f" ({details_str})"
        if self.cause:
            msg += f" [caused by: {type(self.cause).__name__}: {self.cause}]"
        return msg

    @property
    def suggestions(self) -> list[str]:
        """Get recovery suggestions."""
        return self._suggestions or self._default_suggestions

    def get_message(self, verbosity: VerbosityLevel | None = None) -> str:
        """Get message appropriate for the verbosity level."""
        level = verbosity or _get_verbosity()

        if level == VerbosityLevel.ELI5:
            return self.eli5_message
        elif level == VerbosityLevel.CASUAL:
            return self.user_message
        else:
            return self.developer_message

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        """
        Convert exception to dictionary for JSON serialization.

        Args:
            include_internal: Include developer details (False in production)
        """
        result = {
            "error": True,
            "code": self.code,
            "message": self.user_message,
            "suggestions": self.suggestions,
        }

        if self.request_id:
            result["request_id"] = self.request_id

        if include_internal or not _is_production():
            result["details"] = self.details
            result["developer_message"] = self.developer_message
            if self.cause:
                result["cause"] = str(self.cause)

        return result

    def __str__(self) -> str:
        if _is_production():
            return self.user_message
        return self.developer_message


# =============================================================================
# WORKFLOW ERRORS
# =============================================================================


class WorkflowError(ComfyCompilerError):
    """Base class for workflow-related errors."""

    _default_user_message = "Workflow error"
    _default_eli5_message = "The recipe for making the image has a problem"


class WorkflowParseError(WorkflowError):
    """
    Workflow text is not well-formed structured data.

    The only fatal error of a compilation call. The untouched input is kept
    on ``source_text`` so callers can hand it back instead of a partial result.
    """

    _default_user_message = "The workflow file could not be read"
    _default_eli5_message = "The recipe file is broken"
    _default_suggestions = [
        "Check that the file is valid JSON",
        "Export the workflow again from the graph editor",
    ]

    def __init__(
        self,
        message: str = "Failed to parse workflow",
        source_text: str | None = None,
        line: int | None = None,
        column: int | None = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if line is not None:
            details["line"] = line
        if column is not None:
            details["column"] = column
        super().__init__(message, code="WORKFLOW_PARSE_ERROR", details=details, **kwargs)
        self.source_text = source_text


class WorkflowValidationError(WorkflowError):
    """Workflow validation failed."""

    _default_user_message = "Workflow is invalid"
    _default_eli5_message = "Some parts of the recipe don't fit together"

    def __init__(
        self, message: str = "Workflow validation failed", errors: list | None = None, **kwargs
    ):
        details = kwargs.pop("details", {})
        if errors:
            details["validation_errors"] = errors
        super().__init__(message, code="WORKFLOW_VALIDATION_ERROR", details=details, **kwargs)
        self.errors = list(errors or [])


# =============================================================================
# SCHEMA ERRORS
# =============================================================================


class SchemaError(ComfyCompilerError):
    """Node type schema document is unusable."""

    _default_user_message = "Node information from the server is invalid"
    _default_eli5_message = "The server described its parts in a way we can't read"
    _default_suggestions = [
        "Refresh the node information from the server",
    ]

    def __init__(self, message: str = "Invalid node type schema", **kwargs):
        super().__init__(message, code="SCHEMA_ERROR", **kwargs)


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ComfyCompilerError):
    """Base class for validation errors."""

    _default_user_message = "Invalid input"
    _default_eli5_message = "Something you entered isn't quite right"


class InvalidParameterError(ValidationError):
    """Parameter value is invalid."""

    def __init__(
        self,
        parameter: str,
        value: Any,
        reason: str | None = None,
        allowed_values: list | None = None,
        **kwargs,
    ):
        msg = f"Invalid value for '{parameter}': {value}"
        if reason:
            msg += f" ({reason})"

        details = kwargs.pop("details", {})
        details["parameter"] = parameter
        details["value"] = str(value)
        if reason:
            details["reason"] = reason
        if allowed_values:
            details["allowed_values"] = allowed_values

        user_msg = f"Invalid {parameter}"
        if allowed_values:
            user_msg += f". Choose from: {', '.join(str(v) for v in allowed_values[:5])}"

        super().__init__(
            msg, code="INVALID_PARAMETER", user_message=user_msg, details=details, **kwargs
        )


# =============================================================================
# RESULT CLASS
# =============================================================================


class Result:
    """
    A result object that can be either success or failure.

    Usage:
        result = compiler.try_import(text)
        if result.ok:
            imported = result.value
        else:
            print(result.error.user_message)
    """

    def __init__(self, value: Any = None, error: ComfyCompilerError | None = None):
        self._value = value
        self._error = error

    @property
    def ok(self) -> bool:
        """True if this is a successful result."""
        return self._error is None

    @property
    def failed(self) -> bool:
        """True if this is a failed result."""
        return self._error is not None

    @property
    def value(self) -> Any:
        """Get the value. Raises if this is an error result."""
        if self._error:
            raise self._error
        return self._value

    @property
    def error(self) -> ComfyCompilerError | None:
        return self._error

    def value_or(self, default: Any) -> Any:
        """Get the value or a default if this is an error."""
        return self._value if self.ok else default

    def map(self, fn):
        """Apply a function to the value if successful."""
        if self.ok:
            return Result(value=fn(self._value))
        return self

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        if self.ok:
            return {"success": True, "value": self._value}
        return {"success": False, **self._error.to_dict(include_internal)}

    @classmethod
    def success(cls, value: Any) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ComfyCompilerError) -> "Result":
        return cls(error=error)

    @classmethod
    def from_exception(cls, fn, *args, **kwargs) -> "Result":
        """
        Execute a function and wrap compiler errors in a Result.

        Only ComfyCompilerError is captured; anything else is a bug and propagates.
        """
        try:
            return cls.success(fn(*args, **kwargs))
        except ComfyCompilerError as e:
            return cls.failure(e)

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self._value!r})"
        return f"Result.failure({self._error!r})"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def format_error_for_user(error: Exception, verbosity: VerbosityLevel | None = None) -> str:
    """Format any exception for user display."""
    level = verbosity or _get_verbosity()

    if isinstance(error, ComfyCompilerError):
        return error.get_message(level)

    if level == VerbosityLevel.ELI5:
        return "Something went wrong"
    elif level == VerbosityLevel.CASUAL:
        return f"Error: {type(error).__name__}"
    else:
        return f"{type(error).__name__}: {error}"


def collect_suggestions(error: Exception) -> list[str]:
    """Collect all recovery suggestions from an exception."""
    if isinstance(error, ComfyCompilerError):
        return error.suggestions
    return []
