"""
Tests for the Start Orchestrator.

Resolves all resources in one batch, launches each resolved resource, and
folds both phases into one result.

Acceptance Criteria:
- Start succeeds iff at least one resource launched or there were none
- A launch failure becomes a SPAWN_FAILURE error and launching continues
- Resources with unresolvable specs are reported, not launched
- Resources whose named slot could not be created launch on a placeholder
- Errors are tagged with their phase (tag_resolution or spawning)
- Complete failure carries an aggregated error and counts

Edge Cases:
- Empty resource list → success with nothing spawned
- Every spec invalid → complete failure without launching
- Launcher raising an exception → that resource fails, others continue
- Invalid launch options → that resource fails
- Missing project name or launcher → fatal failure value
- Repeated resource id → only the first occurrence is launched
"""

from unittest.mock import MagicMock

from tag_planner.environment import InMemoryAdapter, Slot
from tag_planner.errors import AggregatedError, ErrorKind, ErrorPhase, LaunchError
from tag_planner.launcher import DryRunLauncher, LaunchResult
from tag_planner.orchestrator import (
    FailureType,
    StartFailure,
    StartOrchestrator,
    StartSuccess,
    start,
)


# Test fixtures
PROJECT_RESOURCES = [
    {"name": "editor-app", "tag_spec": "editor", "command": "gedit"},
    {"name": "terminal", "tag_spec": 0, "command": "xterm"},
    {"name": "browser", "tag_spec": "3", "command": "firefox"},
]


def _launcher(failing=()):
    """Launcher double that fails the given commands."""
    launcher = MagicMock()
    pids = iter(range(1000, 2000))

    def launch(command, slot, options):
        if command in failing:
            return LaunchResult(error=f"Command not found: {command}")
        return LaunchResult(pid=next(pids), session_id=f"s-{command}")

    launcher.launch.side_effect = launch
    return launcher


class TestSuccessfulStart:
    def test_all_resources_spawned(self):
        adapter = InMemoryAdapter(current_slot_index=2)
        result = start("myproj", PROJECT_RESOURCES, adapter, _launcher())
        assert isinstance(result, StartSuccess)
        assert result.success is True
        assert result.total_spawned == 3
        assert [r.name for r in result.spawned_resources] == ["editor-app", "terminal", "browser"]
        assert result.errors == []

    def test_spawned_resource_details(self):
        result = start("myproj", PROJECT_RESOURCES, InMemoryAdapter(), _launcher())
        terminal = result.spawned_resources[1]
        assert terminal.pid == 1001
        assert terminal.session_id == "s-xterm"
        assert terminal.command == "xterm"
        assert terminal.tag_spec == 0

    def test_launches_on_resolved_slots(self):
        launcher = _launcher()
        start("myproj", PROJECT_RESOURCES, InMemoryAdapter(current_slot_index=2), launcher)
        slots = [c.args[1] for c in launcher.launch.call_args_list]
        assert slots == [Slot(name="editor"), Slot(name="2", index=2), Slot(name="3", index=3)]

    def test_base_slot_is_current_slot(self):
        launcher = _launcher()
        resources = [{"id": "a", "spec": 1, "command": "xterm"}]
        start("p", resources, InMemoryAdapter(current_slot_index=5), launcher)
        assert launcher.launch.call_args.args[1] == Slot(name="6", index=6)

    def test_passes_launch_options(self):
        launcher = _launcher()
        resources = [
            {"id": "a", "spec": 0, "command": "xterm", "working_dir": "/tmp", "floating": True}
        ]
        start("p", resources, InMemoryAdapter(), launcher)
        options = launcher.launch.call_args.args[2]
        assert options.working_dir == "/tmp"
        assert options.floating is True

    def test_tag_operations_reported(self):
        result = start("myproj", PROJECT_RESOURCES, InMemoryAdapter(), _launcher())
        assert result.tag_operations.total_created == 1

    def test_overflow_surfaces_as_warning(self):
        resources = [{"id": "a", "spec": 12, "command": "xterm"}]
        result = start("p", resources, InMemoryAdapter(current_slot_index=1), _launcher())
        assert isinstance(result, StartSuccess)
        assert result.warnings[0].original_index == 13
        assert "warnings" in result.to_dict()

    def test_to_dict_reports_counts(self):
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher(failing={"xterm"}))
        data = result.to_dict()
        assert data["total_spawned"] == 2
        assert data["total_attempted"] == 3
        assert data["is_partial"] is True
        assert data["metadata"] == {"total_attempted": 3, "success_count": 2, "error_count": 1}

    def test_clean_start_is_not_partial(self):
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher())
        assert result.is_partial is False
        assert result.to_dict()["metadata"]["error_count"] == 0

    def test_empty_resources_is_success(self):
        result = start("p", [], InMemoryAdapter(), _launcher())
        assert isinstance(result, StartSuccess)
        assert result.total_spawned == 0

    def test_dry_run(self):
        launcher = DryRunLauncher()
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), launcher)
        assert [r.pid for r in result.spawned_resources] == [9999, 10000, 10001]
        assert len(launcher.get_execution_log()) == 3


class TestPartialSuccess:
    def test_invalid_spec_still_starts_others(self):
        """One boolean spec and one valid spec: one spawned, one error."""
        launcher = _launcher()
        resources = [
            {"id": "bad", "spec": True, "command": "xterm"},
            {"id": "good", "spec": 0, "command": "gedit"},
        ]
        result = start("p", resources, InMemoryAdapter(), launcher)
        assert isinstance(result, StartSuccess)
        assert result.total_spawned == 1
        assert result.spawned_resources[0].name == "good"
        assert len(result.errors) == 1
        assert result.errors[0].phase == ErrorPhase.TAG_RESOLUTION
        assert result.errors[0].resource_id == "bad"
        assert result.errors[0].error.kind == ErrorKind.TAG_SPEC_INVALID
        assert launcher.launch.call_count == 1

    def test_launch_failure_does_not_stop_others(self):
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher(failing={"xterm"}))
        assert isinstance(result, StartSuccess)
        assert result.total_spawned == 2
        error = result.errors[0]
        assert error.phase == ErrorPhase.SPAWNING
        assert error.resource_id == "terminal"
        assert error.error.kind == ErrorKind.SPAWN_FAILURE
        assert error.error.context["cause"] == "COMMAND_NOT_FOUND"

    def test_launcher_exception_is_spawn_failure(self):
        launcher = MagicMock()
        launcher.launch.side_effect = [LaunchError("Empty command"), LaunchResult(pid=5)]
        resources = [
            {"id": "a", "spec": 0, "command": ""},
            {"id": "b", "spec": 0, "command": "xterm"},
        ]
        result = start("p", resources, InMemoryAdapter(), launcher)
        assert result.total_spawned == 1
        assert result.errors[0].error.context["cause"] == "INVALID_COMMAND"

    def test_tuple_returning_launcher(self):
        launcher = MagicMock()
        launcher.launch.return_value = (321, "snid-1")
        result = start("p", [{"id": "a", "spec": 0, "command": "x"}], InMemoryAdapter(), launcher)
        assert result.spawned_resources[0].pid == 321

    def test_invalid_launch_options(self):
        resources = [
            {"id": "a", "spec": 0, "command": "xterm", "width": "wide"},
            {"id": "b", "spec": 0, "command": "gedit"},
        ]
        result = start("p", resources, InMemoryAdapter(), _launcher())
        assert result.total_spawned == 1
        assert "invalid launch options" in result.errors[0].error.message

    def test_failed_slot_creation_launches_on_placeholder(self):
        launcher = _launcher()
        adapter = InMemoryAdapter(current_slot_index=4, fail_creations=True)
        result = start("p", PROJECT_RESOURCES, adapter, launcher)
        assert result.total_spawned == 3
        placeholder = launcher.launch.call_args_list[0].args[1]
        assert placeholder == Slot(name="editor", index=4, placeholder=True)
        assert result.errors[0].phase == ErrorPhase.TAG_RESOLUTION
        assert result.errors[0].resource_id == "editor-app"

    def test_repeated_id_launches_first_occurrence_only(self):
        launcher = _launcher()
        resources = [
            {"id": "a", "spec": 0, "command": "xterm"},
            {"id": "a", "spec": 2, "command": "gedit"},
            {"id": "b", "spec": 1, "command": "firefox"},
        ]
        result = start("p", resources, InMemoryAdapter(current_slot_index=3), launcher)
        assert isinstance(result, StartSuccess)
        assert [c.args[0] for c in launcher.launch.call_args_list] == ["xterm", "firefox"]
        assert len(result.errors) == 1
        assert result.errors[0].phase == ErrorPhase.TAG_RESOLUTION
        assert result.errors[0].error.message == "duplicate resource id 'a'"
        assert result.total_spawned + len(result.errors) == len(resources)

    def test_valid_entry_after_invalid_one_with_same_id(self):
        launcher = _launcher()
        resources = [
            {"id": "a", "spec": True, "command": "x"},
            {"id": "a", "spec": 0, "command": "xterm"},
            {"id": "b", "spec": 0, "command": "gedit"},
        ]
        result = start("p", resources, InMemoryAdapter(), launcher)
        assert [r.name for r in result.spawned_resources] == ["b"]
        kinds = [e.error.kind for e in result.errors]
        assert kinds == [ErrorKind.TAG_SPEC_INVALID, ErrorKind.INTERNAL_ERROR]
        assert launcher.launch.call_count == 1

    def test_spawn_summary(self):
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher(failing={"xterm"}))
        summary = result.spawn_summary
        assert summary.successful == 2
        assert summary.failed == 1


class TestCompleteFailure:
    def test_all_launches_fail(self):
        failing = {"gedit", "xterm", "firefox"}
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher(failing=failing))
        assert isinstance(result, StartFailure)
        assert result.success is False
        assert result.error_type == FailureType.COMPLETE_FAILURE
        assert result.metadata == {"total_attempted": 3, "success_count": 0, "error_count": 3}
        assert all(e.phase == ErrorPhase.SPAWNING for e in result.errors)
        assert isinstance(result.error, AggregatedError)
        assert result.error.error_count == 3

    def test_all_specs_invalid(self):
        launcher = _launcher()
        resources = [
            {"id": "a", "spec": True, "command": "x"},
            {"id": "b", "spec": None, "command": "y"},
        ]
        result = start("p", resources, InMemoryAdapter(), launcher)
        assert isinstance(result, StartFailure)
        assert result.metadata["error_count"] == 2
        assert all(e.phase == ErrorPhase.TAG_RESOLUTION for e in result.errors)
        launcher.launch.assert_not_called()

    def test_tag_and_spawn_errors_together(self):
        resources = [
            {"id": "a", "spec": True, "command": "x"},
            {"id": "b", "spec": 0, "command": "xterm"},
        ]
        result = start("p", resources, InMemoryAdapter(), _launcher(failing={"xterm"}))
        assert isinstance(result, StartFailure)
        assert [e.phase for e in result.errors] == [ErrorPhase.TAG_RESOLUTION, ErrorPhase.SPAWNING]
        assert result.error.message == "2 errors occurred: TAG_SPEC_INVALID, SPAWN_FAILURE"

    def test_to_dict(self):
        result = start("p", PROJECT_RESOURCES, InMemoryAdapter(), _launcher(failing={"gedit", "xterm", "firefox"}))
        data = result.to_dict()
        assert data["error_type"] == "COMPLETE_FAILURE"
        assert data["errors"][0]["phase"] == "spawning"


class TestFatalArguments:
    def test_missing_project_name(self):
        result = start("", PROJECT_RESOURCES, InMemoryAdapter(), _launcher())
        assert isinstance(result, StartFailure)
        assert result.error.kind == ErrorKind.INTERNAL_ERROR

    def test_missing_resources(self):
        result = start("p", None, InMemoryAdapter(), _launcher())
        assert "resources list is required" in result.error.message

    def test_resources_not_a_list(self):
        result = start("p", "gedit", InMemoryAdapter(), _launcher())
        assert isinstance(result, StartFailure)

    def test_missing_launcher(self):
        result = StartOrchestrator(InMemoryAdapter(), None).start("p", PROJECT_RESOURCES)
        assert result.error.message == "launcher is required"

    def test_missing_adapter(self):
        result = start("p", PROJECT_RESOURCES, None, _launcher())
        assert isinstance(result, StartFailure)
        assert result.error.kind == ErrorKind.INTERNAL_ERROR
        assert result.metadata["total_attempted"] == 3
