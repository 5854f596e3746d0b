"""
Placement Configuration

Pydantic settings for slot bounds, validation rules and launch behaviour,
loadable from the [tool.tag-planner] table of a pyproject.toml.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_TABLE = "tag-planner"


class PlacementConfig(BaseModel):
    """Configuration for tag resolution and launching."""

    max_slot: int = Field(default=9, ge=1, le=9)  # Clamp ceiling for numbered slots
    min_slot: int = Field(default=1, ge=1, le=1)
    default_base_slot: int = Field(default=1, ge=1, le=9)
    reject_negative_offsets: bool = True  # DSL rule, resolution still floors them
    startup_grace_seconds: float = Field(default=0.5, ge=0, le=30)  # Window to catch immediate exits

    def clamp(self, index: int) -> int:
        """Clamp a numbered slot index into [min_slot, max_slot]."""
        return max(self.min_slot, min(index, self.max_slot))


DEFAULT_CONFIG = PlacementConfig()


def load_config_from_pyproject(repo_root: str | Path) -> PlacementConfig:
    """Load configuration from pyproject.toml.

    Args:
        repo_root: Path to the project root

    Returns:
        PlacementConfig (defaults if not found)
    """
    pyproject_path = Path(repo_root) / "pyproject.toml"

    if not pyproject_path.exists():
        return PlacementConfig()

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)

        tool_config = data.get("tool", {}).get(CONFIG_TABLE, {})

        if not tool_config:
            return PlacementConfig()

        return PlacementConfig(**tool_config)

    except Exception as e:
        logger.warning(f"Could not parse {pyproject_path}: {e}")
        return PlacementConfig()
