"""
Workflow Coordinator

Runs snapshot -> plan -> execute -> slot lookup for a whole project and
returns one concrete slot per resource.

Only missing top-level arguments are fatal. Every per-resource problem
becomes a recorded error plus a usable fallback slot, so one bad tag never
blocks the rest of the batch: unresolvable specs fall back to the base
slot, and named slots that could not be created fall back to a placeholder
carrying the base slot index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from tag_planner.config import DEFAULT_CONFIG, PlacementConfig
from tag_planner.environment import EnvironmentAdapter, Slot, Snapshot
from tag_planner.errors import (
    ErrorCategory,
    ErrorKind,
    PlanningError,
    ReportedError,
    StructuredError,
    aggregate,
    build_error,
)
from tag_planner.executor import CreatedSlot, CreationFailure, ExecutionResult, PlanExecutor
from tag_planner.planner import (
    OverflowWarning,
    Plan,
    ResourceAssignment,
    SlotCreationRequest,
    TagPlanner,
)
from tag_planner.tag_spec import NAME_PATTERN

logger = logging.getLogger(__name__)


@dataclass
class TagOperations:
    """What the tag phase did, for feedback to the caller."""

    created_slots: list[CreatedSlot] = field(default_factory=list)
    assignments: list[ResourceAssignment] = field(default_factory=list)
    warnings: list[OverflowWarning] = field(default_factory=list)
    errors: list[StructuredError] = field(default_factory=list)
    failures: list[CreationFailure] = field(default_factory=list)
    fallbacks: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def total_created(self) -> int:
        return len(self.created_slots)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "created_slots": [c.to_dict() for c in self.created_slots],
            "assignments": [a.to_dict() for a in self.assignments],
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "failures": [f.to_dict() for f in self.failures],
            "fallbacks": list(self.fallbacks),
            "metadata": dict(self.metadata),
            "total_created": self.total_created,
        }


@dataclass
class ProjectResolution:
    """One slot per resource plus the operations that produced them."""

    resolved_slots: dict[str, Slot]
    tag_operations: TagOperations
    plan: Plan
    execution: ExecutionResult
    snapshot: Snapshot

    @property
    def unresolved_ids(self) -> list[str]:
        """Resources whose spec could not be resolved (placed on a fallback)."""
        failed = dict.fromkeys(self.plan.failed_resource_ids)
        return [rid for rid in failed if self.plan.get_assignment(rid) is None]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "resolved_slots": {rid: s.to_dict() for rid, s in self.resolved_slots.items()},
            "tag_operations": self.tag_operations.to_dict(),
        }


ProjectOutcome = Union[ProjectResolution, ReportedError]


def _fatal(message: str, **context: Any) -> StructuredError:
    logger.error(message)
    return build_error(
        None,
        None,
        ErrorKind.INTERNAL_ERROR,
        message,
        context,
        category=ErrorCategory.VALIDATION_ERROR,
    )


class WorkflowCoordinator:
    """Coordinates the full tag resolution workflow for one adapter."""

    def __init__(
        self,
        adapter: EnvironmentAdapter,
        config: Optional[PlacementConfig] = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or DEFAULT_CONFIG

    @property
    def adapter(self) -> EnvironmentAdapter:
        return self._adapter

    def get_current_slot(self) -> int:
        """Index of the active slot, or the configured default if unreadable."""
        try:
            snapshot = self._adapter.get_snapshot()
            return snapshot.current_slot_index or self._config.default_base_slot
        except Exception as e:
            logger.warning(f"Could not read current slot, using default: {e}")
            return self._config.default_base_slot

    def resolve_for_project(self, resources: Any, base_slot: Any) -> ProjectOutcome:
        """
        Resolve every resource to a concrete slot.

        Args:
            resources: Resources (or mappings) with an id and a tag spec
            base_slot: Index of the active slot

        Returns:
            ProjectResolution, or a StructuredError / AggregatedError when the
            arguments are unusable or no resource could be resolved at all
        """
        if self._adapter is None:
            return _fatal("interface is required")
        if resources is None:
            return _fatal("resources list is required")
        if base_slot is None:
            return _fatal("base slot is required")

        try:
            snapshot = self._adapter.get_snapshot()
        except Exception as e:
            return _fatal(f"could not read environment snapshot: {e}")
        if snapshot is None:
            return _fatal("environment snapshot is required")

        try:
            plan = TagPlanner.plan(resources, snapshot, base_slot, self._config)
        except PlanningError as e:
            return _fatal(str(e), base_slot=base_slot)

        if plan.errors and not plan.assignments:
            logger.error(f"Tag resolution failed for all {len(plan.errors)} resource(s)")
            return aggregate(plan.errors)

        execution = PlanExecutor(self._adapter).execute(plan)

        operations = TagOperations(
            created_slots=list(execution.created_slots),
            assignments=list(plan.assignments),
            warnings=list(plan.warnings),
            errors=list(plan.errors),
            failures=list(execution.failures),
            metadata=dict(execution.metadata),
        )
        for failure in execution.failures:
            if failure.structured_error is not None:
                operations.errors.append(failure.structured_error)

        resolved_slots: dict[str, Slot] = {}
        failed_names = {f.slot_name for f in execution.failures}

        for assignment in plan.assignments:
            slot = self._slot_for_assignment(assignment, snapshot, execution, base_slot)
            if slot.placeholder or assignment.name in failed_names:
                operations.fallbacks.append(assignment.resource_id)
            resolved_slots[assignment.resource_id] = slot

        for error in plan.errors:
            # A repeated id keeps the slot of its first occurrence
            if error.resource_id is None or error.resource_id in resolved_slots:
                continue
            logger.warning(f"Resource '{error.resource_id}' falls back to slot {base_slot}")
            resolved_slots[error.resource_id] = self._base_slot(snapshot, base_slot)
            operations.fallbacks.append(error.resource_id)

        logger.info(
            f"Resolved {len(resolved_slots)} resource(s), "
            f"{len(operations.fallbacks)} on fallback slots"
        )
        return ProjectResolution(
            resolved_slots=resolved_slots,
            tag_operations=operations,
            plan=plan,
            execution=execution,
            snapshot=snapshot,
        )

    def _slot_for_assignment(
        self,
        assignment: ResourceAssignment,
        snapshot: Snapshot,
        execution: ExecutionResult,
        base_slot: int,
    ) -> Slot:
        """Turn an assignment into the concrete slot the launcher receives."""
        if assignment.is_named:
            slot = self._lookup(assignment.name)
            if slot is None:
                slot = execution.get_created_slot(assignment.name)
            if slot is None:
                logger.warning(
                    f"Slot '{assignment.name}' not found, using placeholder "
                    f"for '{assignment.resource_id}'"
                )
                slot = Slot(name=assignment.name, index=base_slot, placeholder=True)
            return slot

        slot = snapshot.numbered_slot(assignment.resolved_index)
        if slot is None:
            slot = Slot(
                name=str(assignment.resolved_index),
                index=assignment.resolved_index,
                placeholder=True,
            )
        return slot

    def _lookup(self, name: str) -> Optional[Slot]:
        try:
            return self._adapter.find_by_name(name)
        except Exception as e:
            logger.warning(f"Lookup of slot '{name}' failed: {e}")
            return None

    @staticmethod
    def _base_slot(snapshot: Snapshot, base_slot: int) -> Slot:
        slot = snapshot.numbered_slot(base_slot)
        if slot is None:
            slot = Slot(name=str(base_slot), index=base_slot, placeholder=True)
        return slot

    def resolve_tag(self, spec: Any, base_slot: Any) -> Union[Slot, ReportedError]:
        """Resolve a single tag spec through the batch workflow."""
        outcome = self.resolve_for_project([{"id": "single", "spec": spec}], base_slot)
        if isinstance(outcome, ProjectResolution):
            return outcome.resolved_slots["single"]
        return outcome

    def create_project_slot(self, project_name: Any) -> Union[Slot, StructuredError]:
        """Find or create the slot named after a project."""
        if not isinstance(project_name, str) or project_name == "":
            return build_error(
                None,
                project_name,
                ErrorKind.TAG_NAME_INVALID,
                "invalid tag name: project name is required",
            )
        if not NAME_PATTERN.match(project_name):
            return build_error(
                None,
                project_name,
                ErrorKind.TAG_NAME_INVALID,
                f"invalid tag name: '{project_name}' must start with a letter",
            )

        existing = self._lookup(project_name)
        if existing is not None:
            return existing

        plan = Plan(
            creations=[SlotCreationRequest(name=project_name, requested_by=[project_name])],
            metadata={"project": project_name},
        )
        execution = PlanExecutor(self._adapter).execute(plan)
        created = execution.get_created_slot(project_name)
        if created is not None:
            return created

        logger.warning(f"Could not create project slot '{project_name}', using placeholder")
        return Slot(name=project_name, placeholder=True)


def resolve_for_project(
    resources: Any,
    base_slot: Any,
    adapter: EnvironmentAdapter,
    config: Optional[PlacementConfig] = None,
) -> ProjectOutcome:
    """Resolve every resource of a project to a concrete slot."""
    return WorkflowCoordinator(adapter, config).resolve_for_project(resources, base_slot)


def get_current_slot(adapter: EnvironmentAdapter, config: Optional[PlacementConfig] = None) -> int:
    """Index of the active slot."""
    return WorkflowCoordinator(adapter, config).get_current_slot()


def resolve_tag(
    spec: Any,
    base_slot: Any,
    adapter: EnvironmentAdapter,
    config: Optional[PlacementConfig] = None,
) -> Union[Slot, ReportedError]:
    """Resolve one tag spec to a concrete slot."""
    return WorkflowCoordinator(adapter, config).resolve_tag(spec, base_slot)


def create_project_slot(
    project_name: Any,
    adapter: EnvironmentAdapter,
    config: Optional[PlacementConfig] = None,
) -> Union[Slot, StructuredError]:
    """Find or create the slot named after a project."""
    return WorkflowCoordinator(adapter, config).create_project_slot(project_name)
