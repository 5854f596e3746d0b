"""
Tag Resolver

Pure resolution of one tag specification against a base slot and an
environment snapshot. No side effects: identical inputs always give
identical results, so it is safe to call repeatedly and concurrently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from tag_planner.config import DEFAULT_CONFIG, PlacementConfig
from tag_planner.environment import Snapshot
from tag_planner.errors import ErrorKind, StructuredError, build_error
from tag_planner.tag_spec import AbsoluteIndex, RelativeOffset, SpecKind, parse_tag_spec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionResult:
    """Where one tag specification lands."""

    kind: SpecKind
    resolved_index: Optional[int] = None  # numbered kinds only
    name: Optional[str] = None  # named kind only
    overflow: bool = False
    original_index: Optional[int] = None  # pre-clamp value when overflow
    needs_creation: bool = False

    @property
    def is_named(self) -> bool:
        return self.kind == SpecKind.NAMED

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.kind.value,
            "resolved_index": self.resolved_index,
            "name": self.name,
            "overflow": self.overflow,
            "original_index": self.original_index,
            "needs_creation": self.needs_creation,
        }


Resolution = Union[ResolutionResult, StructuredError]


def _numbered(kind: SpecKind, unclamped: int, config: PlacementConfig) -> ResolutionResult:
    overflow = unclamped > config.max_slot
    return ResolutionResult(
        kind=kind,
        resolved_index=config.clamp(unclamped),
        overflow=overflow,
        original_index=unclamped if overflow else None,
    )


def resolve_tag_spec(
    spec: Any,
    base_slot: Any,
    snapshot: Optional[Snapshot],
    config: Optional[PlacementConfig] = None,
    resource_id: Optional[str] = None,
) -> Resolution:
    """
    Resolve a tag specification.

    Args:
        spec: Raw tag value or an already parsed TagSpec
        base_slot: Index of the currently active slot
        snapshot: Current slot space
        config: Slot bounds (defaults to slots 1-9)
        resource_id: Attached to the error when resolution fails

    Returns:
        ResolutionResult, or a TAG_SPEC_INVALID StructuredError for bad input
    """
    config = config or DEFAULT_CONFIG

    if isinstance(base_slot, bool) or not isinstance(base_slot, int):
        return build_error(
            resource_id,
            spec,
            ErrorKind.TAG_SPEC_INVALID,
            f"invalid tag spec: base slot must be a number, got {base_slot!r}",
            {"base_slot": base_slot},
        )

    if snapshot is None:
        return build_error(
            resource_id,
            spec,
            ErrorKind.TAG_RESOLUTION_FAILED,
            "tag resolution failed: environment snapshot is required",
            {"base_slot": base_slot},
        )

    parsed, error_message = parse_tag_spec(spec)
    if parsed is None:
        return build_error(
            resource_id,
            spec,
            ErrorKind.TAG_SPEC_INVALID,
            error_message,
            {"base_slot": base_slot, "value_type": type(spec).__name__},
        )

    if isinstance(parsed, RelativeOffset):
        result = _numbered(SpecKind.RELATIVE, base_slot + parsed.offset, config)
    elif isinstance(parsed, AbsoluteIndex):
        result = _numbered(SpecKind.ABSOLUTE, parsed.index, config)
    else:
        existing = snapshot.find_by_name(parsed.name)
        result = ResolutionResult(
            kind=SpecKind.NAMED,
            name=parsed.name,
            needs_creation=existing is None,
        )

    logger.debug(f"Resolved {spec!r} (base {base_slot}) -> {result}")
    return result
