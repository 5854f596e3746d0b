"""
Start Orchestrator

Starts a project: resolves every resource to a slot in one batch, launches
each resolved resource, and folds tag-phase and launch-phase outcomes into a
single result.

Start succeeds when at least one resource was launched, or when there was
nothing to launch. Everything that went wrong along the way is still
reported, tagged with the phase it happened in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import ValidationError

from tag_planner.config import PlacementConfig
from tag_planner.coordinator import ProjectResolution, TagOperations, WorkflowCoordinator
from tag_planner.environment import EnvironmentAdapter, Slot
from tag_planner.errors import (
    ErrorCategory,
    ErrorKind,
    ErrorPhase,
    ReportedError,
    SpawnSummary,
    StructuredError,
    aggregate,
    build_error,
    build_spawn_error,
    build_spawn_summary,
    display_phase,
)
from tag_planner.launcher import Launcher, LaunchOptions, as_launch_result
from tag_planner.planner import OverflowWarning, Resource, coerce_resources

logger = logging.getLogger(__name__)


class FailureType(Enum):
    """How badly a start failed."""

    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    COMPLETE_FAILURE = "COMPLETE_FAILURE"


@dataclass
class SpawnedResource:
    """A resource that was launched."""

    name: str
    pid: int
    session_id: Optional[str]
    command: str
    tag_spec: Any
    slot: Optional[Slot] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "pid": self.pid,
            "session_id": self.session_id,
            "command": self.command,
            "tag_spec": self.tag_spec,
            "slot": self.slot.to_dict() if self.slot else None,
        }


@dataclass
class SpawnAttempt:
    """One launch attempt, successful or not."""

    resource_id: str
    success: bool
    pid: Optional[int] = None
    session_id: Optional[str] = None
    error: Optional[StructuredError] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "resource_name": self.resource_id,
            "success": self.success,
            "pid": self.pid,
            "session_id": self.session_id,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class PhaseError:
    """An error tagged with the start phase it belongs to."""

    phase: ErrorPhase
    resource_id: Optional[str]
    error: StructuredError

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "phase": self.phase.value,
            "resource_id": self.resource_id,
            "error": self.error.to_dict(),
        }


@dataclass
class StartSuccess:
    """At least one resource launched (or there was nothing to launch)."""

    project_name: str
    spawned_resources: list[SpawnedResource] = field(default_factory=list)
    tag_operations: Optional[TagOperations] = None
    warnings: list[OverflowWarning] = field(default_factory=list)
    errors: list[PhaseError] = field(default_factory=list)
    attempts: list[SpawnAttempt] = field(default_factory=list)
    total_attempted: int = 0

    success = True

    @property
    def total_spawned(self) -> int:
        return len(self.spawned_resources)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)

    @property
    def metadata(self) -> dict:
        return {
            "total_attempted": self.total_attempted,
            "success_count": self.total_spawned,
            "error_count": len(self.errors),
        }

    @property
    def spawn_summary(self) -> SpawnSummary:
        return build_spawn_summary(self.attempts)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {
            "project_name": self.project_name,
            "spawned_resources": [r.to_dict() for r in self.spawned_resources],
            "total_spawned": self.total_spawned,
            "total_attempted": self.total_attempted,
            "is_partial": self.is_partial,
            "metadata": self.metadata,
            "tag_operations": self.tag_operations.to_dict() if self.tag_operations else None,
        }
        if self.warnings:
            result["warnings"] = [w.to_dict() for w in self.warnings]
        if self.errors:
            result["errors"] = [e.to_dict() for e in self.errors]
        return result


@dataclass
class StartFailure:
    """Nothing could be launched."""

    project_name: Optional[str]
    errors: list[PhaseError] = field(default_factory=list)
    error: Optional[ReportedError] = None
    total_attempted: int = 0
    attempts: list[SpawnAttempt] = field(default_factory=list)

    success = False

    @property
    def success_count(self) -> int:
        return sum(1 for a in self.attempts if a.success)

    @property
    def error_type(self) -> FailureType:
        if self.success_count > 0:
            return FailureType.PARTIAL_FAILURE
        return FailureType.COMPLETE_FAILURE

    @property
    def metadata(self) -> dict:
        return {
            "total_attempted": self.total_attempted,
            "success_count": self.success_count,
            "error_count": len(self.errors),
        }

    @property
    def spawn_summary(self) -> SpawnSummary:
        return build_spawn_summary(self.attempts)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "project_name": self.project_name,
            "error_type": self.error_type.value,
            "errors": [e.to_dict() for e in self.errors],
            "metadata": self.metadata,
            "error": self.error.to_dict() if self.error else None,
        }


StartResult = Union[StartSuccess, StartFailure]


class StartOrchestrator:
    """Resolves and launches every resource of a project."""

    def __init__(
        self,
        adapter: EnvironmentAdapter,
        launcher: Launcher,
        config: Optional[PlacementConfig] = None,
    ):
        self._coordinator = WorkflowCoordinator(adapter, config)
        self._launcher = launcher

    def start(self, project_name: Any, resources: Any) -> StartResult:
        """
        Start a project.

        Args:
            project_name: Name of the project, used in reports
            resources: Resources (or mappings) with id, tag spec and command

        Returns:
            StartSuccess if anything launched or there was nothing to launch,
            StartFailure otherwise
        """
        if not isinstance(project_name, str) or not project_name.strip():
            return self._fatal(project_name, "project name is required", resources)
        if resources is None:
            return self._fatal(project_name, "resources list is required", resources)
        if isinstance(resources, (str, bytes, dict)) or not isinstance(resources, Iterable):
            return self._fatal(project_name, "resources must be a list", resources)
        if self._launcher is None:
            return self._fatal(project_name, "launcher is required", resources)

        entries = coerce_resources(resources)
        base_slot = self._coordinator.get_current_slot()
        outcome = self._coordinator.resolve_for_project(entries, base_slot)

        if not isinstance(outcome, ProjectResolution):
            errors = [PhaseError(display_phase(e), e.resource_id, e) for e in outcome.errors]
            logger.error(f"Tag resolution failed for project '{project_name}': {outcome.message}")
            return StartFailure(
                project_name=project_name,
                errors=errors,
                error=outcome,
                total_attempted=len(entries),
            )

        errors = [
            PhaseError(ErrorPhase.TAG_RESOLUTION, e.resource_id, e)
            for e in outcome.plan.errors
        ]
        for failure in outcome.execution.failures:
            if failure.structured_error is not None:
                requested_by = failure.requested_by[0] if failure.requested_by else None
                errors.append(
                    PhaseError(ErrorPhase.TAG_RESOLUTION, requested_by, failure.structured_error)
                )

        rejected = set(outcome.plan.rejected_positions)
        spawned: list[SpawnedResource] = []
        attempts: list[SpawnAttempt] = []

        for position, entry in enumerate(entries):
            if position in rejected:
                continue

            slot = outcome.resolved_slots.get(entry.id)
            if slot is None:
                error = build_error(
                    entry.id,
                    entry.spec,
                    ErrorKind.INTERNAL_ERROR,
                    f"No resolved tag for resource: {entry.id}",
                    phase=ErrorPhase.SPAWNING,
                    category=ErrorCategory.EXECUTION_ERROR,
                )
                attempts.append(SpawnAttempt(resource_id=entry.id, success=False, error=error))
                errors.append(PhaseError(ErrorPhase.SPAWNING, entry.id, error))
                continue

            attempt, resource = self._launch(entry, slot)
            attempts.append(attempt)
            if resource is not None:
                spawned.append(resource)
            else:
                errors.append(PhaseError(ErrorPhase.SPAWNING, entry.id, attempt.error))

        logger.info(f"Started {len(spawned)} of {len(entries)} resource(s) for '{project_name}'")

        if spawned or not entries:
            return StartSuccess(
                project_name=project_name,
                spawned_resources=spawned,
                tag_operations=outcome.tag_operations,
                warnings=list(outcome.plan.warnings),
                errors=errors,
                attempts=attempts,
                total_attempted=len(entries),
            )

        return StartFailure(
            project_name=project_name,
            errors=errors,
            error=aggregate([e.error for e in errors]),
            total_attempted=len(entries),
            attempts=attempts,
        )

    def _launch(
        self, resource: Resource, slot: Slot
    ) -> tuple[SpawnAttempt, Optional[SpawnedResource]]:
        """Launch one resource, turning every failure into a SPAWN_FAILURE."""
        try:
            options = LaunchOptions.for_resource(resource)
        except ValidationError as e:
            return self._failed(resource, f"invalid launch options: {e}"), None

        try:
            result = as_launch_result(self._launcher.launch(resource.command, slot, options))
        except Exception as e:
            result = as_launch_result((None, None, str(e)))

        if not result.success:
            return self._failed(resource, result.error), None

        logger.debug(f"Launched '{resource.id}' (PID: {result.pid}) on slot '{slot.name}'")
        spawned = SpawnedResource(
            name=resource.id,
            pid=result.pid,
            session_id=result.session_id,
            command=resource.command,
            tag_spec=resource.spec,
            slot=slot,
        )
        attempt = SpawnAttempt(
            resource_id=resource.id,
            success=True,
            pid=result.pid,
            session_id=result.session_id,
        )
        return attempt, spawned

    @staticmethod
    def _failed(resource: Resource, message: Optional[str]) -> SpawnAttempt:
        logger.warning(f"Could not launch '{resource.id}': {message}")
        error = build_spawn_error(resource.id, resource.command, message, resource.spec)
        return SpawnAttempt(resource_id=resource.id, success=False, error=error)

    @staticmethod
    def _fatal(project_name: Any, message: str, resources: Any) -> StartFailure:
        logger.error(message)
        error = build_error(
            None,
            None,
            ErrorKind.INTERNAL_ERROR,
            message,
            {"project_name": project_name},
            category=ErrorCategory.VALIDATION_ERROR,
        )
        total = len(resources) if isinstance(resources, list) else 0
        return StartFailure(
            project_name=project_name if isinstance(project_name, str) else None,
            errors=[PhaseError(ErrorPhase.TAG_RESOLUTION, None, error)],
            error=error,
            total_attempted=total,
        )


def start(
    project_name: Any,
    resources: Any,
    adapter: EnvironmentAdapter,
    launcher: Launcher,
    config: Optional[PlacementConfig] = None,
) -> StartResult:
    """Start every resource of a project."""
    return StartOrchestrator(adapter, launcher, config).start(project_name, resources)
