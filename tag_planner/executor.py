"""
Plan Executor

Performs the side-effecting part of a Plan (named slot creation) through an
environment adapter. A failed creation is recorded and execution carries on
with the remaining creations.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from tag_planner.environment import EnvironmentAdapter, Slot
from tag_planner.errors import ErrorPhase, PlanningError, StructuredError, build_error_from_message
from tag_planner.planner import OverflowWarning, Plan, ResourceAssignment, SlotCreationRequest

logger = logging.getLogger(__name__)


class ExecutionStatus(Enum):
    """Overall outcome of executing a plan."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class CreatedSlot:
    """A slot created while executing a plan."""

    name: str
    slot: Slot
    operation: str = "create"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"name": self.name, "slot": self.slot.to_dict(), "operation": self.operation}


@dataclass
class CreationFailure:
    """A slot creation that did not succeed."""

    slot_name: str
    error: str
    structured_error: Optional[StructuredError] = None
    requested_by: list[str] = field(default_factory=list)
    operation: str = "create_slot"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "operation": self.operation,
            "slot_name": self.slot_name,
            "error": self.error,
            "requested_by": list(self.requested_by),
            "structured_error": self.structured_error.to_dict() if self.structured_error else None,
        }


@dataclass
class ExecutionResult:
    """Outcome of executing a plan."""

    created_slots: list[CreatedSlot] = field(default_factory=list)
    assignments: list[ResourceAssignment] = field(default_factory=list)
    failures: list[CreationFailure] = field(default_factory=list)
    warnings: list[OverflowWarning] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def overall_status(self) -> ExecutionStatus:
        return ExecutionStatus.PARTIAL_FAILURE if self.failures else ExecutionStatus.SUCCESS

    def get_created_slot(self, name: str) -> Optional[Slot]:
        """Get a slot created during this execution."""
        for created in self.created_slots:
            if created.name == name:
                return created.slot
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "created_slots": [c.to_dict() for c in self.created_slots],
            "assignments": [a.to_dict() for a in self.assignments],
            "failures": [f.to_dict() for f in self.failures],
            "warnings": [w.to_dict() for w in self.warnings],
            "metadata": {**self.metadata, "overall_status": self.overall_status.value},
        }


class PlanExecutor:
    """Executes tag plans against an environment adapter."""

    def __init__(self, adapter: EnvironmentAdapter) -> None:
        if adapter is None:
            raise PlanningError("adapter is required")
        self._adapter = adapter

    def execute(self, plan: Plan) -> ExecutionResult:
        """
        Create every requested slot and echo the plan's assignments.

        Args:
            plan: Plan from TagPlanner.plan()

        Returns:
            ExecutionResult; overall_status is SUCCESS iff nothing failed
        """
        if plan is None:
            raise PlanningError("plan is required")

        start_time = time.monotonic()
        result = ExecutionResult(
            assignments=list(plan.assignments),
            warnings=list(plan.warnings),
        )

        for request in plan.creations:
            slot, error = self._create(request)
            if slot is not None:
                result.created_slots.append(CreatedSlot(name=request.name, slot=slot))
                logger.debug(f"Created slot '{request.name}'")
                continue

            logger.warning(f"Could not create slot '{request.name}': {error}")
            result.failures.append(
                CreationFailure(
                    slot_name=request.name,
                    error=error,
                    structured_error=build_error_from_message(
                        None,
                        request.name,
                        error,
                        {"slot_name": request.name, "requested_by": list(request.requested_by)},
                        phase=ErrorPhase.EXECUTION,
                    ),
                    requested_by=list(request.requested_by),
                )
            )

        result.metadata = {
            "overall_status": result.overall_status.value,
            "execution_time_ms": int((time.monotonic() - start_time) * 1000),
            "plan_metadata": dict(plan.metadata),
        }

        logger.info(
            f"Executed plan: {len(result.created_slots)} created, "
            f"{len(result.failures)} failed ({result.overall_status.value})"
        )
        return result

    def _create(self, request: SlotCreationRequest) -> tuple[Optional[Slot], str]:
        """Call the adapter, turning every failure shape into an error message."""
        try:
            outcome: Any = self._adapter.create_named_slot(request.name)
        except Exception as e:
            return None, f"failed to create tag: {request.name} ({e})"

        if isinstance(outcome, tuple):
            slot, error = (tuple(outcome) + (None, None))[:2]
        else:
            slot, error = outcome, None

        if isinstance(slot, Slot):
            return slot, ""
        return None, error or f"failed to create tag: {request.name}"


def execute_plan(plan: Plan, adapter: EnvironmentAdapter) -> ExecutionResult:
    """Execute a plan with a one-off executor."""
    return PlanExecutor(adapter).execute(plan)
