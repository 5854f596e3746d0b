"""
Launchers

Start one external process on a resolved slot.

- SubprocessLauncher: spawns with subprocess.Popen (argument arrays only,
  shell=False) and reports an immediate non-zero exit as a failure
- DryRunLauncher: records the launch it would have made and returns
  deterministic fake pids

Launch failures come back as LaunchResult values carrying an error message.
LaunchError is raised only for commands that fail validation before spawning.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from tag_planner.config import DEFAULT_CONFIG, PlacementConfig
from tag_planner.environment import OperationRecord, Slot
from tag_planner.errors import LaunchError

logger = logging.getLogger(__name__)

# Exported to every launched process
ENV_SLOT_NAME = "TAG_PLANNER_SLOT"
ENV_SLOT_INDEX = "TAG_PLANNER_SLOT_INDEX"
ENV_SESSION_ID = "TAG_PLANNER_SESSION_ID"

# Shell metacharacters have no meaning without a shell
DANGEROUS_CHARS = [";", "&&", "||", "|", "`", "$", "\n", "\r"]


class LaunchOptions(BaseModel):
    """Per-resource launch settings. Unknown keys are kept as extras."""

    model_config = ConfigDict(extra="allow")

    working_dir: Optional[str] = None
    reuse: bool = False
    env_vars: dict[str, Any] = Field(default_factory=dict)
    floating: bool = False
    placement: Optional[str] = None
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def for_resource(cls, resource: Any) -> LaunchOptions:
        """Build options from a Resource's launch fields and extra options."""
        return cls(
            **{
                **dict(getattr(resource, "options", None) or {}),
                "working_dir": getattr(resource, "working_dir", None),
                "reuse": bool(getattr(resource, "reuse", False)),
                "env_vars": dict(getattr(resource, "env_vars", None) or {}),
            }
        )


@dataclass
class LaunchResult:
    """Outcome of one launch."""

    pid: Optional[int] = None
    session_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.pid is not None and self.error is None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "pid": self.pid,
            "session_id": self.session_id,
            "error": self.error,
        }


@runtime_checkable
class Launcher(Protocol):
    """Contract for starting a process on a slot."""

    def launch(self, command: str, slot: Slot, options: LaunchOptions) -> LaunchResult:
        ...


def as_launch_result(outcome: Any) -> LaunchResult:
    """
    Normalize what a launcher returned.

    Accepts a LaunchResult, a (pid, session_id) tuple or a
    (None, None, error) tuple.
    """
    if isinstance(outcome, LaunchResult):
        return outcome

    if isinstance(outcome, tuple):
        pid, session_id, error = (tuple(outcome) + (None, None, None))[:3]
        if isinstance(pid, int) and not isinstance(pid, bool):
            return LaunchResult(pid=pid, session_id=session_id)
        # Some launchers return the error string in the pid position
        if error is None and isinstance(pid, str):
            error = pid
        return LaunchResult(error=error or "Unknown spawn failure")

    return LaunchResult(error="Unknown spawn failure")


def build_launch_properties(slot: Optional[Slot], options: LaunchOptions) -> dict:
    """Window properties for the launched client."""
    properties: dict[str, Any] = {}

    if slot is not None:
        properties["tag"] = slot.to_dict()
    if options.floating:
        properties["floating"] = True
    if options.placement:
        properties["placement"] = options.placement
    if options.width:
        properties["width"] = options.width
    if options.height:
        properties["height"] = options.height

    return properties


def build_command_with_env(command: str, env_vars: Optional[dict] = None) -> str:
    """Prefix a command with `env K=V ...` when there are variables to set."""
    if not env_vars:
        return command
    env_setup = " ".join(f"{key}={value}" for key, value in env_vars.items())
    return f"env {env_setup} {command}"


def validate_command(args: list[str]) -> None:
    """Validate a command before spawning.

    Raises LaunchError if the command is empty or contains shell syntax.
    """
    if not args:
        raise LaunchError("Empty command")

    for i, arg in enumerate(args):
        for char in DANGEROUS_CHARS:
            if char in arg:
                raise LaunchError(
                    f"Dangerous character '{repr(char)}' in argument {i}: {arg[:50]}"
                )


def new_session_id(prefix: str = "tp") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def slot_environment(slot: Optional[Slot], session_id: str) -> dict[str, str]:
    """Variables telling the launched process where it was placed."""
    env = {ENV_SESSION_ID: session_id}
    if slot is not None:
        env[ENV_SLOT_NAME] = slot.name
        if slot.index is not None:
            env[ENV_SLOT_INDEX] = str(slot.index)
    return env


# =============================================================================
# SUBPROCESS
# =============================================================================


def _reap(process: subprocess.Popen) -> None:
    """Wait for a launched child so it never lingers as a zombie."""
    try:
        process.wait()
    except subprocess.SubprocessError as e:
        logger.debug(f"Stopped waiting for PID {process.pid}: {e}")


class SubprocessLauncher:
    """Launches commands as detached child processes."""

    def __init__(
        self,
        config: Optional[PlacementConfig] = None,
        base_env: Optional[dict[str, str]] = None,
    ):
        self._config = config or DEFAULT_CONFIG
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._running: dict[str, tuple[subprocess.Popen, str]] = {}

    def launch(
        self,
        command: str,
        slot: Optional[Slot],
        options: Optional[LaunchOptions] = None,
    ) -> LaunchResult:
        """Launch a command.

        Args:
            command: Command line, split with shlex (NO shell=True)
            slot: Slot the process is placed on
            options: Working directory, reuse flag and extra environment

        Returns:
            LaunchResult with pid and session id, or an error message

        Raises:
            LaunchError: If the command fails validation
        """
        options = options or LaunchOptions()
        self._forget_finished()

        if not isinstance(command, str) or not command.strip():
            raise LaunchError("Empty command")
        try:
            args = shlex.split(command)
        except ValueError as e:
            raise LaunchError(f"Cannot parse command '{command}': {e}") from e
        validate_command(args)

        if options.reuse:
            reused = self._find_running(command)
            if reused is not None:
                return reused

        if options.working_dir and not Path(options.working_dir).is_dir():
            return LaunchResult(error=f"Working directory does not exist: {options.working_dir}")

        session_id = new_session_id()
        env = {
            **self._base_env,
            **{str(k): str(v) for k, v in options.env_vars.items()},
            **slot_environment(slot, session_id),
        }

        try:
            process = subprocess.Popen(
                args,
                cwd=options.working_dir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                shell=False,  # NEVER shell=True
            )
        except FileNotFoundError:
            return LaunchResult(error=f"Command not found: {args[0]}")
        except PermissionError:
            return LaunchResult(error=f"Permission denied: {args[0]}")
        except Exception as e:
            return LaunchResult(error=str(e))

        exit_code = self._early_exit_code(process)
        if exit_code is not None and exit_code != 0:
            logger.warning(f"'{args[0]}' exited immediately with code {exit_code}")
            return LaunchResult(error=f"Command exited immediately with code {exit_code}: {args[0]}")

        logger.debug(f"Launched '{args[0]}' (PID: {process.pid})")
        if exit_code is None:
            threading.Thread(target=_reap, args=(process,), daemon=True).start()
        self._running[command] = (process, session_id)
        return LaunchResult(pid=process.pid, session_id=session_id)

    def _early_exit_code(self, process: subprocess.Popen) -> Optional[int]:
        """Exit code if the process ended within the startup grace window."""
        grace = self._config.startup_grace_seconds
        if grace <= 0:
            return process.poll()
        try:
            return process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            return None

    def _forget_finished(self) -> None:
        """Drop processes that have exited since they were launched."""
        for command, (process, _) in list(self._running.items()):
            if process.poll() is not None:
                logger.debug(f"'{command}' (PID: {process.pid}) exited with code {process.returncode}")
                del self._running[command]

    def _find_running(self, command: str) -> Optional[LaunchResult]:
        entry = self._running.get(command)
        if entry is None:
            return None
        process, session_id = entry
        if process.poll() is not None:
            del self._running[command]
            return None
        logger.debug(f"Reusing running process {process.pid} for '{command}'")
        return LaunchResult(pid=process.pid, session_id=session_id)


# =============================================================================
# DRY RUN
# =============================================================================


class DryRunLauncher:
    """Records launches instead of performing them."""

    MOCK_PID = 9999

    def __init__(self) -> None:
        self._execution_log: list[OperationRecord] = []
        self._launch_count = 0

    def launch(
        self,
        command: str,
        slot: Optional[Slot],
        options: Optional[LaunchOptions] = None,
    ) -> LaunchResult:
        options = options or LaunchOptions()

        if not isinstance(command, str) or not command.strip():
            return LaunchResult(error="no command to execute")

        session_id = f"dry-run-{self._launch_count + 1}"
        pid = self.MOCK_PID + self._launch_count
        self._launch_count += 1

        self._execution_log.append(
            OperationRecord(
                operation="launch",
                timestamp=datetime.now(timezone.utc).isoformat(),
                details={
                    "command": build_command_with_env(command, options.env_vars),
                    "properties": build_launch_properties(slot, options),
                    "working_dir": options.working_dir,
                    "result": "simulated",
                },
            )
        )
        logger.debug(f"dry-run launch: {command}")
        return LaunchResult(pid=pid, session_id=session_id)

    def get_execution_log(self) -> list[OperationRecord]:
        """Launches recorded so far."""
        return self._execution_log.copy()

    def clear_execution_log(self) -> None:
        """Reset the log and the fake pid counter."""
        self._execution_log = []
        self._launch_count = 0
