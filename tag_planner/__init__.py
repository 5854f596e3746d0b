"""
Tag Planner - Places launched applications on workspace slots.

This module resolves tag specifications to slots, plans and executes the
slot operations they need, launches each resource on its slot, and reports
everything that went wrong in one structured result.
"""

from tag_planner.config import (
    PlacementConfig,
    DEFAULT_CONFIG,
    load_config_from_pyproject,
)
from tag_planner.tag_spec import (
    SpecKind,
    RelativeOffset,
    AbsoluteIndex,
    Named,
    TagSpec,
    parse_tag_spec,
    validate_spec,
    describe_spec,
)
from tag_planner.environment import (
    Slot,
    Snapshot,
    EnvironmentAdapter,
    DryRunAdapter,
    InMemoryAdapter,
    OperationRecord,
)
from tag_planner.errors import (
    TagPlannerError,
    PlanningError,
    LaunchError,
    ErrorKind,
    ErrorCategory,
    ErrorPhase,
    StructuredError,
    AggregatedError,
    SpawnSummary,
    classify,
    build_error,
    aggregate,
    build_spawn_summary,
)
from tag_planner.resolver import (
    ResolutionResult,
    resolve_tag_spec,
)
from tag_planner.planner import (
    TagPlanner,
    Plan,
    Resource,
    ResourceAssignment,
    SlotCreationRequest,
    OverflowWarning,
)
from tag_planner.executor import (
    PlanExecutor,
    ExecutionResult,
    ExecutionStatus,
    CreatedSlot,
    CreationFailure,
    execute_plan,
)
from tag_planner.coordinator import (
    WorkflowCoordinator,
    ProjectResolution,
    TagOperations,
    resolve_for_project,
    get_current_slot,
    resolve_tag,
    create_project_slot,
)
from tag_planner.launcher import (
    Launcher,
    LaunchOptions,
    LaunchResult,
    SubprocessLauncher,
    DryRunLauncher,
    build_launch_properties,
    build_command_with_env,
)
from tag_planner.orchestrator import (
    StartOrchestrator,
    StartSuccess,
    StartFailure,
    FailureType,
    SpawnedResource,
    SpawnAttempt,
    PhaseError,
    start,
)
from tag_planner.formatting import (
    format_for_display,
    format_start_response,
    format_warnings,
)

__all__ = [
    # config
    "PlacementConfig",
    "DEFAULT_CONFIG",
    "load_config_from_pyproject",
    # tag_spec
    "SpecKind",
    "RelativeOffset",
    "AbsoluteIndex",
    "Named",
    "TagSpec",
    "parse_tag_spec",
    "validate_spec",
    "describe_spec",
    # environment
    "Slot",
    "Snapshot",
    "EnvironmentAdapter",
    "DryRunAdapter",
    "InMemoryAdapter",
    "OperationRecord",
    # errors
    "TagPlannerError",
    "PlanningError",
    "LaunchError",
    "ErrorKind",
    "ErrorCategory",
    "ErrorPhase",
    "StructuredError",
    "AggregatedError",
    "SpawnSummary",
    "classify",
    "build_error",
    "aggregate",
    "build_spawn_summary",
    # resolver
    "ResolutionResult",
    "resolve_tag_spec",
    # planner
    "TagPlanner",
    "Plan",
    "Resource",
    "ResourceAssignment",
    "SlotCreationRequest",
    "OverflowWarning",
    # executor
    "PlanExecutor",
    "ExecutionResult",
    "ExecutionStatus",
    "CreatedSlot",
    "CreationFailure",
    "execute_plan",
    # coordinator
    "WorkflowCoordinator",
    "ProjectResolution",
    "TagOperations",
    "resolve_for_project",
    "get_current_slot",
    "resolve_tag",
    "create_project_slot",
    # launcher
    "Launcher",
    "LaunchOptions",
    "LaunchResult",
    "SubprocessLauncher",
    "DryRunLauncher",
    "build_launch_properties",
    "build_command_with_env",
    # orchestrator
    "StartOrchestrator",
    "StartSuccess",
    "StartFailure",
    "FailureType",
    "SpawnedResource",
    "SpawnAttempt",
    "PhaseError",
    "start",
    # formatting
    "format_for_display",
    "format_start_response",
    "format_warnings",
]
