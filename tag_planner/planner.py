"""
Operation Planner

Builds a Plan for a batch of resources: one assignment per resolvable
resource, deduplicated slot creations, overflow warnings and per-resource
errors. Pure: nothing here touches the environment.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from tag_planner.config import DEFAULT_CONFIG, PlacementConfig
from tag_planner.environment import Snapshot
from tag_planner.errors import (
    ErrorCategory,
    ErrorKind,
    PlanningError,
    StructuredError,
    build_error,
)
from tag_planner.resolver import ResolutionResult, resolve_tag_spec
from tag_planner.tag_spec import SpecKind

logger = logging.getLogger(__name__)


@dataclass
class Resource:
    """An application to place and launch."""

    id: str
    spec: Any
    command: str = ""
    working_dir: Optional[str] = None
    reuse: bool = False
    env_vars: dict[str, str] = field(default_factory=dict)
    options: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> Resource:
        """
        Build from a plain mapping. Accepts both engine keys (id, spec) and
        project-file keys (name, tag_spec / tag).
        """
        known = {"id", "name", "spec", "tag_spec", "tag", "command", "working_dir", "reuse", "env_vars"}
        resource_id = data.get("id", data.get("name"))
        if "spec" in data:
            spec = data["spec"]
        elif "tag_spec" in data:
            spec = data["tag_spec"]
        else:
            spec = data.get("tag")
        return cls(
            id=resource_id,
            spec=spec,
            command=data.get("command") or "",
            working_dir=data.get("working_dir"),
            reuse=bool(data.get("reuse", False)),
            env_vars=dict(data.get("env_vars") or {}),
            options={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class ResourceAssignment:
    """Resolved placement of one resource."""

    resource_id: str
    kind: SpecKind
    tag_spec: Any = None
    resolved_index: Optional[int] = None
    name: Optional[str] = None
    overflow: bool = False
    original_index: Optional[int] = None
    needs_creation: bool = False

    @property
    def is_named(self) -> bool:
        return self.kind == SpecKind.NAMED

    @classmethod
    def from_resolution(
        cls, resource_id: str, tag_spec: Any, resolution: ResolutionResult
    ) -> ResourceAssignment:
        return cls(
            resource_id=resource_id,
            kind=resolution.kind,
            tag_spec=tag_spec,
            resolved_index=resolution.resolved_index,
            name=resolution.name,
            overflow=resolution.overflow,
            original_index=resolution.original_index,
            needs_creation=resolution.needs_creation,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "resource_id": self.resource_id,
            "type": self.kind.value,
            "tag_spec": self.tag_spec,
            "resolved_index": self.resolved_index,
            "name": self.name,
            "overflow": self.overflow,
            "original_index": self.original_index,
            "needs_creation": self.needs_creation,
        }


@dataclass
class SlotCreationRequest:
    """A named slot that must be created before launching."""

    name: str
    requested_by: list[str] = field(default_factory=list)
    operation: str = "create"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "operation": self.operation,
            "requested_by": list(self.requested_by),
        }


@dataclass
class OverflowWarning:
    """A numbered slot was clamped to the top slot."""

    resource_id: str
    original_index: int
    final_index: int
    type: str = "overflow"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "resource_id": self.resource_id,
            "original_index": self.original_index,
            "final_index": self.final_index,
        }


@dataclass
class Plan:
    """Everything needed to realize a batch of tag specifications."""

    assignments: list[ResourceAssignment] = field(default_factory=list)
    creations: list[SlotCreationRequest] = field(default_factory=list)
    warnings: list[OverflowWarning] = field(default_factory=list)
    errors: list[StructuredError] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    # Input positions of the entries that got no assignment
    rejected_positions: list[int] = field(default_factory=list)

    @property
    def failed_resource_ids(self) -> list[str]:
        return [e.resource_id for e in self.errors if e.resource_id is not None]

    def get_assignment(self, resource_id: str) -> Optional[ResourceAssignment]:
        """Get assignment by resource ID."""
        for assignment in self.assignments:
            if assignment.resource_id == resource_id:
                return assignment
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "creations": [c.to_dict() for c in self.creations],
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "metadata": dict(self.metadata),
            "rejected_positions": list(self.rejected_positions),
        }


def coerce_resources(resources: Iterable[Any]) -> list[Any]:
    """Turn mappings into Resources, leaving anything else for the planner to reject."""
    coerced = []
    for entry in resources:
        if isinstance(entry, dict):
            coerced.append(Resource.from_dict(entry))
        else:
            coerced.append(entry)
    return coerced


class TagPlanner:
    """Plans tag operations for a batch of resources."""

    @classmethod
    def plan(
        cls,
        resources: Any,
        snapshot: Optional[Snapshot],
        base_slot: Any,
        config: Optional[PlacementConfig] = None,
    ) -> Plan:
        """
        Plan tag operations.

        Args:
            resources: Resources (or mappings) with an id and a tag spec
            snapshot: Current slot space
            base_slot: Index of the active slot, reference for relative specs
            config: Slot bounds

        Returns:
            Plan with assignments, creations, warnings and per-resource errors

        Raises:
            PlanningError: If resources, snapshot or base_slot is missing
                or malformed
        """
        cls._validate_arguments(resources, snapshot, base_slot)
        config = config or DEFAULT_CONFIG
        entries = coerce_resources(resources)

        plan = Plan(
            metadata={
                "base_slot": base_slot,
                "total_operations": len(entries),
                "current_slot_index": snapshot.current_slot_index,
            }
        )

        # Local to this call: which names have already been requested
        creations_by_name: dict[str, SlotCreationRequest] = {}
        seen_ids: set[str] = set()

        for position, entry in enumerate(entries):
            if not isinstance(entry, Resource) or not entry.id or not isinstance(entry.id, str):
                plan.errors.append(cls._malformed_entry_error(position, entry))
                plan.rejected_positions.append(position)
                continue

            if entry.id in seen_ids:
                logger.warning(f"Resource '{entry.id}' repeated at entry {position + 1}, skipping")
                plan.errors.append(cls._duplicate_id_error(position, entry))
                plan.rejected_positions.append(position)
                continue
            seen_ids.add(entry.id)

            resolution = resolve_tag_spec(
                entry.spec, base_slot, snapshot, config, resource_id=entry.id
            )

            if isinstance(resolution, StructuredError):
                logger.warning(f"Resource '{entry.id}': {resolution.message}")
                plan.errors.append(resolution)
                plan.rejected_positions.append(position)
                continue

            plan.assignments.append(
                ResourceAssignment.from_resolution(entry.id, entry.spec, resolution)
            )

            if resolution.overflow:
                logger.warning(
                    f"Resource '{entry.id}': slot {resolution.original_index} "
                    f"clamped to {resolution.resolved_index}"
                )
                plan.warnings.append(
                    OverflowWarning(
                        resource_id=entry.id,
                        original_index=resolution.original_index,
                        final_index=resolution.resolved_index,
                    )
                )

            if resolution.is_named and resolution.needs_creation:
                request = creations_by_name.get(resolution.name)
                if request is None:
                    request = SlotCreationRequest(name=resolution.name)
                    creations_by_name[resolution.name] = request
                    plan.creations.append(request)
                    logger.debug(f"Planned creation of slot '{resolution.name}'")
                request.requested_by.append(entry.id)

        logger.info(
            f"Planned {len(plan.assignments)} assignment(s), "
            f"{len(plan.creations)} creation(s), {len(plan.warnings)} warning(s), "
            f"{len(plan.errors)} error(s)"
        )
        return plan

    @classmethod
    def _validate_arguments(cls, resources: Any, snapshot: Any, base_slot: Any) -> None:
        """Reject the top-level arguments the batch cannot run without."""
        if resources is None:
            raise PlanningError("resources list is required")
        if isinstance(resources, (str, bytes, dict)) or not isinstance(resources, Iterable):
            raise PlanningError("resources must be a list")
        if snapshot is None:
            raise PlanningError("environment snapshot is required")
        if not isinstance(snapshot, Snapshot):
            raise PlanningError("snapshot must be a Snapshot")
        if base_slot is None:
            raise PlanningError("base slot is required")
        if isinstance(base_slot, bool) or not isinstance(base_slot, int):
            raise PlanningError("base slot must be a number")

    @classmethod
    def _malformed_entry_error(cls, position: int, entry: Any) -> StructuredError:
        resource_id = getattr(entry, "id", None)
        if not resource_id or not isinstance(resource_id, str):
            resource_id = f"#{position + 1}"
        return build_error(
            resource_id,
            getattr(entry, "spec", None),
            ErrorKind.INTERNAL_ERROR,
            f"resource entry {position + 1} must have an id and a tag spec",
            {"position": position, "entry_type": type(entry).__name__},
            category=ErrorCategory.VALIDATION_ERROR,
        )

    @classmethod
    def _duplicate_id_error(cls, position: int, entry: Resource) -> StructuredError:
        return build_error(
            entry.id,
            entry.spec,
            ErrorKind.INTERNAL_ERROR,
            f"duplicate resource id '{entry.id}'",
            {"position": position},
            category=ErrorCategory.VALIDATION_ERROR,
        )
