"""
Display Formatting

Renders structured errors, start results and plan warnings as plain text
for a terminal. Multiple errors are grouped by phase, and whatever did
succeed is shown before what failed.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from tag_planner.errors import (
    AggregatedError,
    ErrorKind,
    ErrorPhase,
    StructuredError,
    display_phase,
)
from tag_planner.orchestrator import (
    PhaseError,
    SpawnedResource,
    StartFailure,
    StartSuccess,
)
from tag_planner.planner import OverflowWarning, SlotCreationRequest

PHASE_HEADERS = {
    ErrorPhase.TAG_RESOLUTION: "TAG RESOLUTION ERRORS:",
    ErrorPhase.SPAWNING: "SPAWNING ERRORS:",
}

PHASE_ORDER = [
    ErrorPhase.TAG_RESOLUTION,
    ErrorPhase.PLANNING,
    ErrorPhase.EXECUTION,
    ErrorPhase.SPAWNING,
]


def _join_sections(sections: Iterable[Optional[str]]) -> str:
    """Join non-empty sections with a blank line between them."""
    return "\n\n".join(s for s in sections if s)


def format_error(error: Optional[StructuredError], resource_id: Optional[str] = None) -> str:
    """One error line plus its suggestions as bullets."""
    if error is None:
        return "Unknown error occurred"

    line = f"  ✗ {error.resource_id or resource_id or 'unknown'}"

    if error.kind == ErrorKind.TAG_OVERFLOW:
        original = error.context.get("original_index", error.context.get("resolved_index"))
        final = error.context.get("final_index")
        if original is not None and final is not None:
            line += f": Tag overflow ({original} → {final})"
        else:
            line += f": {error.message or 'Tag overflow'}"
    else:
        line += f": {error.message or 'Error occurred'}"

    lines = [line]
    for suggestion in error.suggestions:
        lines.append(f"    • {suggestion}")
    return "\n".join(lines)


def format_multiple_errors(entries: list[PhaseError]) -> str:
    """Errors grouped under one header per phase."""
    if not entries:
        return "No errors to display"

    groups: dict[ErrorPhase, list[PhaseError]] = {}
    for entry in entries:
        groups.setdefault(entry.phase, []).append(entry)

    sections = []
    for phase in PHASE_ORDER:
        if phase not in groups:
            continue
        header = PHASE_HEADERS.get(phase, f"{phase.value.upper()} ERRORS:")
        lines = [header]
        lines.extend(format_error(e.error, e.resource_id) for e in groups[phase])
        sections.append("\n".join(lines))

    return _join_sections(sections)


def format_partial_success(spawned: list[SpawnedResource]) -> Optional[str]:
    """List of launched resources, or None when nothing launched."""
    if not spawned:
        return None

    lines = ["PARTIAL SUCCESS:"]
    for resource in spawned:
        lines.append(f"  ✓ {resource.name} (PID: {resource.pid})")
    return "\n".join(lines)


def format_warnings(warnings: Iterable[Any]) -> Optional[str]:
    """
    Preview warnings: overflow clamps and slots that will be created.

    Accepts OverflowWarning, SlotCreationRequest, or mappings with a
    resource_id and a message.
    """
    lines = ["WARNINGS:"]

    for warning in warnings or []:
        if isinstance(warning, OverflowWarning):
            lines.append(
                f"  ⚠ {warning.resource_id}: Tag overflow detected "
                f"({warning.original_index} → {warning.final_index})"
            )
            lines.append('    Suggestion: Consider using absolute tag specification (e.g., "9")')
        elif isinstance(warning, SlotCreationRequest):
            requested_by = ", ".join(warning.requested_by) or "unknown"
            lines.append(f'  ⚠ {requested_by}: Tag "{warning.name}" will be created')
        else:
            resource_id = warning.get("resource_id") or "unknown"
            lines.append(f"  ⚠ {resource_id}: {warning.get('message') or 'Warning'}")
            if warning.get("suggestion"):
                lines.append(f"    Suggestion: {warning['suggestion']}")

    if len(lines) == 1:
        return None
    return "\n".join(lines)


def _format_single_error(error: StructuredError) -> str:
    lines = [f"✗ Failed to process {error.resource_id or 'resource'}"]
    lines.append(f"  Error: {error.context.get('user_message') or error.message}")
    if error.suggestions:
        lines.append("  Suggestions:")
        for suggestion in error.suggestions:
            lines.append(f"    • {suggestion}")
    return "\n".join(lines)


def format_for_display(
    report: Any,
    partial_success: Optional[list[SpawnedResource]] = None,
) -> str:
    """
    Render any error, aggregated error or start result for the user.

    Args:
        report: StructuredError, AggregatedError, StartSuccess or StartFailure
        partial_success: Resources that did launch, shown first

    Returns:
        Multi-line text
    """
    if report is None:
        return "Unknown error occurred"

    if isinstance(report, (StartSuccess, StartFailure)):
        return format_start_response(report)

    if isinstance(report, AggregatedError):
        entries = [PhaseError(display_phase(e), e.resource_id, e) for e in report.errors]
        return _join_sections(
            [
                format_partial_success(partial_success or []),
                f"✗ {report.message}",
                format_multiple_errors(entries),
            ]
        )

    if isinstance(report, StructuredError):
        return _join_sections(
            [format_partial_success(partial_success or []), _format_single_error(report)]
        )

    return "Unknown error occurred"


def format_start_response(result: Any, project_name: Optional[str] = None) -> str:
    """Render the outcome of starting a project."""
    name = project_name or getattr(result, "project_name", None) or "unknown project"

    if isinstance(result, StartSuccess):
        if result.is_partial:
            header = (
                f"✓ Started {name} with errors "
                f"({result.total_spawned} of {result.total_attempted} resources)"
            )
            return _join_sections(
                [
                    header,
                    format_partial_success(result.spawned_resources),
                    format_multiple_errors(result.errors),
                    format_warnings(result.warnings),
                ]
            )

        lines = [f"✓ Started {name} successfully", f"  Spawned {result.total_spawned} resources"]
        for resource in result.spawned_resources:
            lines.append(f"  ✓ {resource.name} (PID: {resource.pid})")
        return _join_sections(["\n".join(lines), format_warnings(result.warnings)])

    if isinstance(result, StartFailure):
        metadata = result.metadata
        header = f"✗ Failed to start project: {name} ({metadata['error_count']} errors"
        if metadata["success_count"] > 0:
            header += f", {metadata['success_count']} success"
        header += ")"
        return _join_sections(
            [
                header,
                format_multiple_errors(result.errors) if result.errors else None,
            ]
        )

    return "Unknown response format"
