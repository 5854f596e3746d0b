"""
Tests for launchers and launch configuration.

Acceptance Criteria:
- SubprocessLauncher spawns argument arrays (never through a shell)
- The launched process learns its slot through the environment
- An immediate non-zero exit is a failed launch
- Missing commands, permission problems and bad working directories come
  back as error results, not exceptions
- Empty commands and shell syntax raise LaunchError before spawning
- DryRunLauncher returns deterministic fake pids and logs what it would do

Edge Cases:
- reuse=True returns the still-running process instead of spawning again
- Launchers returning (pid, session_id) or (None, None, error) tuples
- Extra launch options are kept
- Processes that outlive the startup window are reaped when they exit
"""

import os
import shlex
import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from tag_planner.config import PlacementConfig
from tag_planner.environment import Slot
from tag_planner.errors import LaunchError
from tag_planner.launcher import (
    ENV_SESSION_ID,
    ENV_SLOT_INDEX,
    ENV_SLOT_NAME,
    DryRunLauncher,
    Launcher,
    LaunchOptions,
    LaunchResult,
    SubprocessLauncher,
    as_launch_result,
    build_command_with_env,
    build_launch_properties,
    validate_command,
)
from tag_planner.planner import Resource


# Test fixtures
EDITOR_SLOT = Slot(name="editor")
NUMBERED_SLOT = Slot(name="3", index=3)


def _running_process(pid=4242):
    process = MagicMock()
    process.pid = pid
    process.wait.side_effect = subprocess.TimeoutExpired(cmd="x", timeout=0.5)
    process.poll.return_value = None
    return process


class TestLaunchOptions:
    def test_defaults(self):
        options = LaunchOptions()
        assert options.working_dir is None
        assert options.reuse is False
        assert options.env_vars == {}

    def test_extras_allowed(self):
        options = LaunchOptions(screen=2)
        assert options.model_extra == {"screen": 2}

    def test_rejects_zero_width(self):
        with pytest.raises(ValidationError):
            LaunchOptions(width=0)

    def test_for_resource(self):
        resource = Resource(
            id="a",
            spec=0,
            command="gedit",
            working_dir="/tmp",
            reuse=True,
            env_vars={"LANG": "C"},
            options={"floating": True, "width": 800},
        )
        options = LaunchOptions.for_resource(resource)
        assert options.working_dir == "/tmp"
        assert options.reuse is True
        assert options.env_vars == {"LANG": "C"}
        assert options.floating is True
        assert options.width == 800


class TestLaunchHelpers:
    def test_build_command_without_env(self):
        assert build_command_with_env("gedit", {}) == "gedit"
        assert build_command_with_env("gedit") == "gedit"

    def test_build_command_with_env(self):
        command = build_command_with_env("gedit", {"LANG": "C", "DEBUG": 1})
        assert command == "env LANG=C DEBUG=1 gedit"

    def test_build_launch_properties(self):
        options = LaunchOptions(floating=True, placement="centered", width=800, height=600)
        properties = build_launch_properties(NUMBERED_SLOT, options)
        assert properties == {
            "tag": NUMBERED_SLOT.to_dict(),
            "floating": True,
            "placement": "centered",
            "width": 800,
            "height": 600,
        }

    def test_minimal_launch_properties(self):
        assert build_launch_properties(None, LaunchOptions()) == {}

    def test_validate_command_rejects_empty(self):
        with pytest.raises(LaunchError):
            validate_command([])

    def test_validate_command_rejects_shell_syntax(self):
        with pytest.raises(LaunchError) as exc_info:
            validate_command(["ls", "&&", "rm"])
        assert "Dangerous character" in str(exc_info.value)

    def test_as_launch_result_tuples(self):
        assert as_launch_result((12, "s1")) == LaunchResult(pid=12, session_id="s1")
        assert as_launch_result((None, None, "boom")).error == "boom"
        assert as_launch_result(("Command not found: x",)).error == "Command not found: x"
        assert as_launch_result(None).success is False

    def test_launchers_satisfy_protocol(self):
        assert isinstance(DryRunLauncher(), Launcher)
        assert isinstance(SubprocessLauncher(base_env={}), Launcher)


class TestSubprocessLauncher:
    def test_spawns_argument_array_without_shell(self):
        with patch("tag_planner.launcher.subprocess.Popen") as popen:
            popen.return_value = _running_process()
            result = SubprocessLauncher(base_env={}).launch("gedit --new-window", EDITOR_SLOT)

        assert result.success
        assert result.pid == 4242
        args, kwargs = popen.call_args
        assert args[0] == ["gedit", "--new-window"]
        assert kwargs["shell"] is False

    def test_exports_slot_environment(self):
        with patch("tag_planner.launcher.subprocess.Popen") as popen:
            popen.return_value = _running_process()
            result = SubprocessLauncher(base_env={"HOME": "/home/u"}).launch(
                "xterm", NUMBERED_SLOT, LaunchOptions(env_vars={"LANG": "C"})
            )

        env = popen.call_args.kwargs["env"]
        assert env["HOME"] == "/home/u"
        assert env["LANG"] == "C"
        assert env[ENV_SLOT_NAME] == "3"
        assert env[ENV_SLOT_INDEX] == "3"
        assert env[ENV_SESSION_ID] == result.session_id

    def test_named_slot_has_no_index_variable(self):
        with patch("tag_planner.launcher.subprocess.Popen") as popen:
            popen.return_value = _running_process()
            SubprocessLauncher(base_env={}).launch("xterm", EDITOR_SLOT)

        env = popen.call_args.kwargs["env"]
        assert env[ENV_SLOT_NAME] == "editor"
        assert ENV_SLOT_INDEX not in env

    def test_immediate_nonzero_exit_is_failure(self):
        process = MagicMock()
        process.wait.return_value = 2
        with patch("tag_planner.launcher.subprocess.Popen", return_value=process):
            result = SubprocessLauncher(base_env={}).launch("xterm", EDITOR_SLOT)

        assert not result.success
        assert "exited immediately with code 2" in result.error

    def test_immediate_zero_exit_is_success(self):
        process = MagicMock()
        process.pid = 77
        process.wait.return_value = 0
        with patch("tag_planner.launcher.subprocess.Popen", return_value=process):
            result = SubprocessLauncher(base_env={}).launch("xdg-open x", EDITOR_SLOT)

        assert result.success
        assert result.pid == 77

    def test_no_grace_window_polls_once(self):
        process = _running_process()
        config = PlacementConfig(startup_grace_seconds=0)
        with patch("tag_planner.launcher.subprocess.Popen", return_value=process):
            result = SubprocessLauncher(config=config, base_env={}).launch("xterm", EDITOR_SLOT)

        assert result.success
        process.poll.assert_called()
        for wait_call in process.wait.call_args_list:
            assert "timeout" not in wait_call.kwargs

    def test_command_not_found(self):
        with patch("tag_planner.launcher.subprocess.Popen", side_effect=FileNotFoundError()):
            result = SubprocessLauncher(base_env={}).launch("nosuchapp", EDITOR_SLOT)
        assert result.error == "Command not found: nosuchapp"

    def test_permission_denied(self):
        with patch("tag_planner.launcher.subprocess.Popen", side_effect=PermissionError()):
            result = SubprocessLauncher(base_env={}).launch("./script.sh", EDITOR_SLOT)
        assert result.error == "Permission denied: ./script.sh"

    def test_missing_working_dir(self, tmp_path):
        missing = tmp_path / "missing"
        with patch("tag_planner.launcher.subprocess.Popen") as popen:
            result = SubprocessLauncher(base_env={}).launch(
                "xterm", EDITOR_SLOT, LaunchOptions(working_dir=str(missing))
            )
        assert "Working directory does not exist" in result.error
        popen.assert_not_called()

    def test_empty_command_raises(self):
        with pytest.raises(LaunchError):
            SubprocessLauncher(base_env={}).launch("   ", EDITOR_SLOT)

    def test_shell_syntax_raises(self):
        with pytest.raises(LaunchError):
            SubprocessLauncher(base_env={}).launch("ls; rm -rf x", EDITOR_SLOT)

    def test_unbalanced_quotes_raise(self):
        with pytest.raises(LaunchError):
            SubprocessLauncher(base_env={}).launch("echo 'oops", EDITOR_SLOT)

    def test_reuse_returns_running_process(self):
        with patch("tag_planner.launcher.subprocess.Popen") as popen:
            popen.return_value = _running_process(pid=500)
            launcher = SubprocessLauncher(base_env={})
            first = launcher.launch("xterm", EDITOR_SLOT)
            second = launcher.launch("xterm", EDITOR_SLOT, LaunchOptions(reuse=True))

        assert popen.call_count == 1
        assert second.pid == first.pid == 500
        assert second.session_id == first.session_id

    def test_reuse_spawns_again_when_process_ended(self):
        process = _running_process(pid=500)
        with patch("tag_planner.launcher.subprocess.Popen", return_value=process) as popen:
            launcher = SubprocessLauncher(base_env={})
            launcher.launch("xterm", EDITOR_SLOT)
            process.poll.return_value = 0
            launcher.launch("xterm", EDITOR_SLOT, LaunchOptions(reuse=True))

        assert popen.call_count == 2

    def test_real_missing_command(self):
        result = SubprocessLauncher().launch("definitely-not-a-real-command-xyz", EDITOR_SLOT)
        assert result.error == "Command not found: definitely-not-a-real-command-xyz"

    def test_real_immediate_failure(self):
        command = f"{shlex.quote(sys.executable)} -c 'raise SystemExit(3)'"
        config = PlacementConfig(startup_grace_seconds=10)
        result = SubprocessLauncher(config=config).launch(command, EDITOR_SLOT)
        assert not result.success
        assert "code 3" in result.error

    @pytest.mark.skipif(not os.path.isdir("/proc"), reason="needs /proc")
    def test_real_late_exit_is_reaped(self):
        command = shlex.join([sys.executable, "-c", "__import__('time').sleep(0.3)"])
        config = PlacementConfig(startup_grace_seconds=0.05)
        result = SubprocessLauncher(config=config).launch(command, EDITOR_SLOT)
        assert result.success

        proc_dir = f"/proc/{result.pid}"
        deadline = time.monotonic() + 10
        while os.path.exists(proc_dir) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not os.path.exists(proc_dir)

    def test_exited_processes_are_forgotten(self):
        finished = _running_process(pid=500)
        with patch("tag_planner.launcher.subprocess.Popen", return_value=finished):
            launcher = SubprocessLauncher(base_env={})
            launcher.launch("xterm", EDITOR_SLOT)
        finished.poll.return_value = 0

        with patch("tag_planner.launcher.subprocess.Popen", return_value=_running_process(pid=600)):
            launcher.launch("gedit", EDITOR_SLOT)

        assert "xterm" not in launcher._running
        assert "gedit" in launcher._running


class TestDryRunLauncher:
    def test_returns_fake_pids(self):
        launcher = DryRunLauncher()
        first = launcher.launch("gedit", EDITOR_SLOT)
        second = launcher.launch("firefox", NUMBERED_SLOT)
        assert first.pid == 9999
        assert second.pid == 10000
        assert first.session_id == "dry-run-1"

    def test_logs_intent(self):
        launcher = DryRunLauncher()
        launcher.launch("gedit", EDITOR_SLOT, LaunchOptions(env_vars={"A": "1"}, floating=True))
        log = launcher.get_execution_log()
        assert len(log) == 1
        record = log[0]
        assert record.operation == "launch"
        assert record.details["command"] == "env A=1 gedit"
        assert record.details["properties"]["floating"] is True
        assert record.details["result"] == "simulated"

    def test_empty_command_fails(self):
        result = DryRunLauncher().launch("", EDITOR_SLOT)
        assert not result.success
        assert result.error == "no command to execute"

    def test_clear_execution_log(self):
        launcher = DryRunLauncher()
        launcher.launch("gedit", EDITOR_SLOT)
        launcher.clear_execution_log()
        assert launcher.get_execution_log() == []
        assert launcher.launch("gedit", EDITOR_SLOT).pid == 9999
