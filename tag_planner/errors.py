"""
Error Taxonomy & Reporter

Classifies raw failure messages into error kinds, builds structured error
objects with actionable suggestions, and folds many errors into a single
aggregated report.

Per-resource failures travel through the engine as StructuredError values,
never as exceptions. Exceptions are reserved for broken top-level
arguments (PlanningError) and invalid launch commands (LaunchError).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class TagPlannerError(Exception):
    """Base class for tag planner exceptions."""

    pass


class PlanningError(TagPlannerError):
    """Raised when planning is called with missing or malformed arguments."""

    pass


class LaunchError(TagPlannerError):
    """Raised by a launcher when a command cannot be launched at all."""

    pass


class ErrorKind(Enum):
    """Flat classification of every failure the engine reports."""

    TAG_SPEC_INVALID = "TAG_SPEC_INVALID"
    TAG_OVERFLOW = "TAG_OVERFLOW"
    TAG_NAME_INVALID = "TAG_NAME_INVALID"
    TAG_RESOLUTION_FAILED = "TAG_RESOLUTION_FAILED"
    MULTIPLE_TAG_ERRORS = "MULTIPLE_TAG_ERRORS"
    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_COMMAND = "INVALID_COMMAND"
    TIMEOUT = "TIMEOUT"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
    SPAWN_FAILURE = "SPAWN_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorCategory(Enum):
    """Broad area an error belongs to."""

    TAG_RESOLUTION_ERROR = "TAG_RESOLUTION_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class ErrorPhase(Enum):
    """Pipeline phase in which an error was produced."""

    PLANNING = "planning"
    EXECUTION = "execution"
    TAG_RESOLUTION = "tag_resolution"
    SPAWNING = "spawning"


TAG_KINDS = frozenset(
    {
        ErrorKind.TAG_SPEC_INVALID,
        ErrorKind.TAG_OVERFLOW,
        ErrorKind.TAG_NAME_INVALID,
        ErrorKind.TAG_RESOLUTION_FAILED,
        ErrorKind.MULTIPLE_TAG_ERRORS,
    }
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StructuredError:
    """A single user-actionable error."""

    kind: ErrorKind
    message: str
    category: ErrorCategory = ErrorCategory.TAG_RESOLUTION_ERROR
    resource_id: Optional[str] = None
    tag_spec: Any = None
    context: dict = field(default_factory=dict)
    suggestions: list[str] = field(default_factory=list)
    phase: ErrorPhase = ErrorPhase.PLANNING
    timestamp: str = field(default_factory=_now)

    @property
    def errors(self) -> list[StructuredError]:
        """A single error is its own error list."""
        return [self]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "type": self.kind.value,
            "resource_id": self.resource_id,
            "tag_spec": _jsonable(self.tag_spec),
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "suggestions": list(self.suggestions),
            "metadata": {
                "timestamp": self.timestamp,
                "phase": self.phase.value,
            },
        }


@dataclass
class AggregatedError:
    """Several errors folded into one report."""

    errors: list[StructuredError]
    message: str
    kind: ErrorKind = ErrorKind.MULTIPLE_TAG_ERRORS
    category: ErrorCategory = ErrorCategory.TAG_RESOLUTION_ERROR
    kind_counts: dict[str, int] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def suggestions(self) -> list[str]:
        """Unique suggestions of the folded errors, in order."""
        seen: list[str] = []
        for error in self.errors:
            for suggestion in error.suggestions:
                if suggestion not in seen:
                    seen.append(suggestion)
        return seen

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.kind.value,
            "category": self.category.value,
            "message": self.message,
            "errors": [e.to_dict() for e in self.errors],
            "metadata": {
                "timestamp": self.timestamp,
                "error_count": self.error_count,
                "error_types": dict(self.kind_counts),
            },
        }


ReportedError = Union[StructuredError, AggregatedError]


def _jsonable(value: Any) -> Any:
    """Best-effort conversion of context values for serialization."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return repr(value)


# =============================================================================
# CLASSIFICATION
# =============================================================================

# Ordered: tag-specific phrasings are checked before generic ones
CLASSIFICATION_RULES: list[tuple[re.Pattern, ErrorKind, str]] = [
    (
        re.compile(r"tag overflow|overflow.*tag|tag.*index.*overflow"),
        ErrorKind.TAG_OVERFLOW,
        "Tag overflow",
    ),
    (
        re.compile(r"invalid tag spec|tag spec.*invalid"),
        ErrorKind.TAG_SPEC_INVALID,
        "Invalid tag specification",
    ),
    (
        re.compile(r"invalid tag name|tag name.*invalid|tag name.*validation.*failed"),
        ErrorKind.TAG_NAME_INVALID,
        "Invalid tag name",
    ),
    (
        re.compile(r"multiple.*tag.*error|multiple.*error.*tag|\d+.*error.*tag"),
        ErrorKind.MULTIPLE_TAG_ERRORS,
        "Multiple tag errors",
    ),
    (
        re.compile(r"tag resolution failed"),
        ErrorKind.TAG_RESOLUTION_FAILED,
        "Could not resolve tag specification",
    ),
    (
        re.compile(r"no such file or directory|command not found"),
        ErrorKind.COMMAND_NOT_FOUND,
        "Command not found in PATH",
    ),
    (
        re.compile(r"permission denied"),
        ErrorKind.PERMISSION_DENIED,
        "Insufficient permissions to execute",
    ),
    (
        re.compile(r"no command to execute|empty command"),
        ErrorKind.INVALID_COMMAND,
        "Empty or invalid command",
    ),
    (
        re.compile(r"timeout|timed out"),
        ErrorKind.TIMEOUT,
        "Operation timed out",
    ),
]


def classify(raw_message: Any) -> tuple[ErrorKind, str]:
    """
    Classify a raw failure message.

    Args:
        raw_message: Message produced by an adapter, launcher or resolver

    Returns:
        Tuple of (error kind, user-facing message)
    """
    if not isinstance(raw_message, str):
        return ErrorKind.UNKNOWN, "No error message provided"

    if raw_message.strip() == "":
        return ErrorKind.INVALID_COMMAND, "Empty or invalid command"

    msg_lower = raw_message.lower()

    for pattern, kind, user_message in CLASSIFICATION_RULES:
        if pattern.search(msg_lower):
            return kind, user_message

    if "tag" in msg_lower:
        return ErrorKind.TAG_RESOLUTION_FAILED, f"Tag-related error: {raw_message}"

    return ErrorKind.UNKNOWN, f"Unclassified error: {raw_message}"


# =============================================================================
# SUGGESTIONS
# =============================================================================

GENERIC_SUGGESTIONS = [
    "Check application logs for more details",
    "Try spawning the application manually",
    "Report this issue if problem persists",
]


def get_suggestions(kind: ErrorKind, context: Optional[dict] = None) -> list[str]:
    """Get actionable suggestions for an error kind."""
    context = context or {}

    if kind == ErrorKind.TAG_OVERFLOW:
        suggestions = ['Consider using absolute tag specification (e.g., "9")']
        original_index = context.get("original_index", context.get("resolved_index"))
        if original_index is not None:
            offset = original_index - context.get("base_slot", 1)
            suggestions.append(f"Check if relative offset +{offset} was intended")
        return suggestions

    if kind == ErrorKind.TAG_SPEC_INVALID:
        return [
            "Provide tag as number (relative offset) or string (absolute/named)",
            "Check project configuration syntax for tag specification",
            'Valid examples: tag = 2 (relative), tag = "3" (absolute), '
            'tag = "editor" (named)',
        ]

    if kind == ErrorKind.TAG_NAME_INVALID:
        return [
            "Tag names must start with a letter",
            "Use only letters, numbers, underscore, or dash in tag names",
            'Valid examples: "editor", "workspace-1", "dev_environment"',
        ]

    if kind == ErrorKind.TAG_RESOLUTION_FAILED:
        return [
            'Check tag specification format (0, N, "N", or "name")',
            "Ensure target tag exists or can be created",
            "Verify screen has available tag slots",
        ]

    if kind == ErrorKind.MULTIPLE_TAG_ERRORS:
        return ["Fix the individual errors listed below and retry"]

    if kind in (ErrorKind.COMMAND_NOT_FOUND, ErrorKind.SPAWN_FAILURE):
        app_name = context.get("command") or context.get("app_name") or "application"
        return [
            f"Check if '{app_name}' is installed",
            "Verify the command name is spelled correctly",
            "Add the application's directory to your PATH",
        ]

    if kind == ErrorKind.PERMISSION_DENIED:
        return [
            "Check file permissions for the executable",
            "Ensure you have execute permissions",
            "Try running with appropriate privileges",
        ]

    if kind == ErrorKind.INVALID_COMMAND:
        return [
            "Provide a valid command to execute",
            "Check command syntax",
            "Ensure command is not empty",
        ]

    if kind == ErrorKind.TIMEOUT:
        return [
            "Increase timeout value for slow-starting applications",
            "Check if application started but didn't create a window",
            "Try spawning manually to test behavior",
        ]

    if kind == ErrorKind.DEPENDENCY_FAILED:
        return [
            "Check that the resources this one depends on started",
            "Start the dependency manually and retry",
        ]

    return list(GENERIC_SUGGESTIONS)


# =============================================================================
# CONSTRUCTION & AGGREGATION
# =============================================================================


def build_error(
    resource_id: Optional[str],
    tag_spec: Any,
    kind: ErrorKind,
    message: str,
    context: Optional[dict] = None,
    phase: ErrorPhase = ErrorPhase.PLANNING,
    category: Optional[ErrorCategory] = None,
) -> StructuredError:
    """Build a structured error with kind-specific suggestions."""
    context = dict(context or {})
    if category is None:
        category = (
            ErrorCategory.TAG_RESOLUTION_ERROR
            if kind in TAG_KINDS
            else ErrorCategory.EXECUTION_ERROR
        )

    return StructuredError(
        kind=kind,
        message=message,
        category=category,
        resource_id=resource_id,
        tag_spec=tag_spec,
        context=context,
        suggestions=get_suggestions(kind, context),
        phase=phase,
    )


def build_error_from_message(
    resource_id: Optional[str],
    tag_spec: Any,
    raw_message: Any,
    context: Optional[dict] = None,
    phase: ErrorPhase = ErrorPhase.PLANNING,
) -> StructuredError:
    """Classify a raw message and build the matching structured error."""
    kind, user_message = classify(raw_message)
    context = dict(context or {})
    context.setdefault("user_message", user_message)
    message = raw_message if isinstance(raw_message, str) and raw_message else user_message
    return build_error(resource_id, tag_spec, kind, message, context, phase=phase)


def build_spawn_error(
    resource_id: str,
    command: str,
    raw_message: Any,
    tag_spec: Any = None,
) -> StructuredError:
    """Wrap a launcher failure into a SPAWN_FAILURE error."""
    cause, user_message = classify(raw_message)
    message = raw_message if isinstance(raw_message, str) and raw_message else "Unknown spawn failure"
    return build_error(
        resource_id,
        tag_spec,
        ErrorKind.SPAWN_FAILURE,
        message,
        {"command": command, "cause": cause.value, "user_message": user_message},
        phase=ErrorPhase.SPAWNING,
        category=ErrorCategory.EXECUTION_ERROR,
    )


def aggregate(errors: list[ReportedError]) -> Optional[ReportedError]:
    """
    Fold errors into one report.

    A single error passes through unchanged; several errors become an
    AggregatedError whose message counts them by kind, e.g.
    "2 errors occurred: 2x TAG_OVERFLOW". Nested aggregates are flattened.
    """
    flat: list[StructuredError] = []
    for error in errors or []:
        if isinstance(error, AggregatedError):
            flat.extend(error.errors)
        else:
            flat.append(error)

    if not flat:
        return None

    if len(flat) == 1:
        return flat[0]

    # dicts keep first-seen order, so the summary is deterministic
    kind_counts: dict[str, int] = {}
    for error in flat:
        kind_counts[error.kind.value] = kind_counts.get(error.kind.value, 0) + 1

    parts = [kind if count == 1 else f"{count}x {kind}" for kind, count in kind_counts.items()]
    message = f"{len(flat)} errors occurred: " + ", ".join(parts)

    return AggregatedError(
        errors=flat,
        message=message,
        kind_counts=kind_counts,
    )


def display_phase(error: StructuredError) -> ErrorPhase:
    """Phase an error is reported under: tag resolution or spawning."""
    if error.phase == ErrorPhase.SPAWNING or error.kind == ErrorKind.SPAWN_FAILURE:
        return ErrorPhase.SPAWNING
    return ErrorPhase.TAG_RESOLUTION


# =============================================================================
# SPAWN SUMMARY
# =============================================================================


@dataclass
class SpawnSummary:
    """Summary of a batch of launch attempts."""

    total_attempts: int
    successful: int
    failed: int
    error_types: dict[str, int] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=_now)

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful / self.total_attempts

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "total_attempts": self.total_attempts,
            "successful": self.successful,
            "failed": self.failed,
            "error_types": dict(self.error_types),
            "recommendations": list(self.recommendations),
            "success_rate": self.success_rate,
        }


def build_spawn_summary(attempts: list[Any]) -> SpawnSummary:
    """
    Summarize launch attempts.

    Each attempt needs a boolean `success` and, when failed, an `error`
    holding a StructuredError (or None).
    """
    summary = SpawnSummary(total_attempts=len(attempts), successful=0, failed=0)

    for attempt in attempts:
        if attempt.success:
            summary.successful += 1
            continue

        summary.failed += 1
        error = attempt.error
        if error is None:
            kind = ErrorKind.UNKNOWN.value
        else:
            kind = error.context.get("cause", error.kind.value)
        summary.error_types[kind] = summary.error_types.get(kind, 0) + 1

    if ErrorKind.COMMAND_NOT_FOUND.value in summary.error_types:
        summary.recommendations.append("Some applications may not be installed")
    if ErrorKind.PERMISSION_DENIED.value in summary.error_types:
        summary.recommendations.append(
            "Permission issues detected - check file permissions"
        )
    if ErrorKind.TAG_OVERFLOW.value in summary.error_types:
        summary.recommendations.append(
            "Tag overflow detected - consider using absolute tag specifications"
        )
    if ErrorKind.TAG_SPEC_INVALID.value in summary.error_types:
        summary.recommendations.append(
            "Invalid tag specifications found - check project configuration syntax"
        )
    if summary.failed > summary.successful:
        summary.recommendations.append("Consider reviewing project configuration")

    return summary
