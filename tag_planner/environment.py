"""
Environment Snapshot & Adapters

Read-only view of the slot space and the adapter contract the engine uses
to reach the desktop environment. Two adapters ship with the package:

- DryRunAdapter: simulates slots 1-9 and records intended operations
- InMemoryAdapter: configurable slots and failures, used as a test double

Real window-manager bindings implement EnvironmentAdapter outside this
package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

NUMBERED_SLOT_COUNT = 9


@dataclass(frozen=True)
class Slot:
    """A workspace slot. Named slots carry no index."""

    name: str
    index: Optional[int] = None
    placeholder: bool = False

    @property
    def is_numbered(self) -> bool:
        return self.index is not None and not self.placeholder

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "index": self.index,
            "placeholder": self.placeholder,
        }


@dataclass(frozen=True)
class Snapshot:
    """Immutable read of the slot space."""

    current_slot_index: int
    available_slots: tuple[Slot, ...] = ()

    @property
    def slot_count(self) -> int:
        return len(self.available_slots)

    def find_by_name(self, name: str) -> Optional[Slot]:
        """Find an existing slot by name."""
        for slot in self.available_slots:
            if slot.name == name:
                return slot
        return None

    def numbered_slot(self, index: int) -> Optional[Slot]:
        """Find the numbered slot at index."""
        for slot in self.available_slots:
            if slot.index == index:
                return slot
        return None

    @classmethod
    def from_slots(cls, current_slot_index: int, slots: Iterable[Slot]) -> Snapshot:
        """Build a snapshot, dropping duplicate slot names (first wins)."""
        unique: list[Slot] = []
        seen: set[str] = set()
        for slot in slots:
            if slot.name in seen:
                continue
            seen.add(slot.name)
            unique.append(slot)
        return cls(current_slot_index=current_slot_index, available_slots=tuple(unique))

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        """
        Build a snapshot from the plain mapping a transport returns:
        {"current_tag_index": 2, "available_tags": [{"name": "1", "index": 1}]}
        """
        current = data.get("current_slot_index", data.get("current_tag_index", 1))
        raw_slots = data.get("available_slots", data.get("available_tags", []))
        slots = [Slot(name=str(s["name"]), index=s.get("index")) for s in raw_slots]
        return cls.from_slots(current or 1, slots)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "current_slot_index": self.current_slot_index,
            "available_slots": [s.to_dict() for s in self.available_slots],
            "slot_count": self.slot_count,
        }


@runtime_checkable
class EnvironmentAdapter(Protocol):
    """Contract for reading and changing the live slot space."""

    def get_snapshot(self) -> Snapshot:
        """Read the current slot space. Must never return None."""
        ...

    def find_by_name(self, name: str) -> Optional[Slot]:
        """Find a slot by name, None when missing."""
        ...

    def create_named_slot(self, name: str) -> tuple[Optional[Slot], Optional[str]]:
        """Create a named slot. Returns (slot, None) or (None, error message)."""
        ...


def numbered_slots(count: int = NUMBERED_SLOT_COUNT) -> list[Slot]:
    """Default numbered slots "1".."count"."""
    return [Slot(name=str(i), index=i) for i in range(1, count + 1)]


# =============================================================================
# DRY RUN
# =============================================================================


@dataclass
class OperationRecord:
    """An operation the dry-run adapter or launcher would have performed."""

    operation: str
    timestamp: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "operation": self.operation,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }


class DryRunAdapter:
    """Simulates the slot space without touching the desktop."""

    def __init__(self, current_slot_index: int = 1, slot_count: int = NUMBERED_SLOT_COUNT) -> None:
        self._current_slot_index = current_slot_index
        self._numbered = numbered_slots(slot_count)
        self._simulated: list[Slot] = []
        self._execution_log: list[OperationRecord] = []

    def _log_operation(self, operation: str, **details: Any) -> None:
        self._execution_log.append(
            OperationRecord(
                operation=operation,
                timestamp=datetime.now(timezone.utc).isoformat(),
                details=details,
            )
        )
        logger.debug(f"dry-run {operation}: {details}")

    def _find(self, name: str) -> Optional[Slot]:
        for slot in self._numbered + self._simulated:
            if slot.name == name:
                return slot
        return None

    def get_snapshot(self) -> Snapshot:
        self._log_operation("get_snapshot")
        return Snapshot.from_slots(self._current_slot_index, self._numbered + self._simulated)

    def find_by_name(self, name: str) -> Optional[Slot]:
        self._log_operation("find_slot", slot_name=name)
        if not name:
            return None
        return self._find(name)

    def create_named_slot(self, name: str) -> tuple[Optional[Slot], Optional[str]]:
        if not name:
            return None, "slot name is required"

        existing = self._find(name)
        if existing is not None:
            self._log_operation("create_slot", slot_name=name, result="existing_found")
            return existing, None

        slot = Slot(name=name)
        self._simulated.append(slot)
        self._log_operation("create_slot", slot_name=name, result="created")
        return slot, None

    def get_execution_log(self) -> list[OperationRecord]:
        """Operations recorded so far."""
        return self._execution_log.copy()

    def clear_execution_log(self) -> None:
        """Reset the log and all simulated slots."""
        self._execution_log = []
        self._simulated = []


# =============================================================================
# IN MEMORY
# =============================================================================


class InMemoryAdapter:
    """Deterministic adapter over an explicit slot list."""

    def __init__(
        self,
        slots: Optional[Iterable[Slot]] = None,
        current_slot_index: int = 1,
        fail_creations: bool | Iterable[str] = False,
        failure_message: str = "failed to create tag",
    ) -> None:
        self.slots: list[Slot] = list(slots) if slots is not None else numbered_slots()
        self.current_slot_index = current_slot_index
        self._fail_all = fail_creations is True
        self._fail_names = set() if isinstance(fail_creations, bool) else set(fail_creations)
        self._failure_message = failure_message
        self.creation_calls: list[str] = []
        self.lookup_calls: list[str] = []

    def get_snapshot(self) -> Snapshot:
        return Snapshot.from_slots(self.current_slot_index, self.slots)

    def find_by_name(self, name: str) -> Optional[Slot]:
        self.lookup_calls.append(name)
        for slot in self.slots:
            if slot.name == name:
                return slot
        return None

    def create_named_slot(self, name: str) -> tuple[Optional[Slot], Optional[str]]:
        self.creation_calls.append(name)
        if self._fail_all or name in self._fail_names:
            return None, f"{self._failure_message}: {name}"

        slot = Slot(name=name)
        self.slots.append(slot)
        return slot, None
