"""Subprocess invocation of an agent's AI command-line tool."""

import math
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path

# How long to wait for output to drain after the process group is killed.
DRAIN_TIMEOUT = 5


@dataclass
class ToolResult:
    exit_code: int
    output: str
    timed_out: bool = False


def in_container(
    container: str,
    command: list[str],
    workdir: str | None = None,
    timeout: float | None = None,
) -> list[str]:
    """Wrap a command so it runs inside a running container.

    Killing the local ``docker exec`` client leaves the command running in the
    container, so with ``timeout`` it is also bounded by coreutils ``timeout``
    there, which kills the command's whole process group.
    """
    wrapped = ["docker", "exec", "-i"]
    if workdir:
        wrapped += ["-w", workdir]
    wrapped.append(container)
    if timeout:
        wrapped += ["timeout", "-s", "KILL", str(math.ceil(timeout))]
    return wrapped + command


def _kill_group(proc: subprocess.Popen):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_agent_tool(
    command: list[str],
    stdin: str | None,
    cwd: str | Path | None,
    timeout: float,
) -> ToolResult:
    """Run a tool to completion, capturing stdout and stderr together.

    The child gets its own session so a Ctrl+C aimed at the worker does not
    interrupt the task it is running. On timeout the whole session is killed,
    including anything the tool started in the background.
    """
    if cwd is not None and not Path(cwd).is_dir():
        return ToolResult(exit_code=-1, output=f"Workspace {cwd} does not exist")

    try:
        proc = subprocess.Popen(
            command,
            stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            text=True,
            start_new_session=True,
        )
    except FileNotFoundError:
        return ToolResult(exit_code=127, output=f"{command[0]}: command not found")

    try:
        output, _ = proc.communicate(input=stdin, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        try:
            output, _ = proc.communicate(timeout=DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired:
            # A descendant left the session and still holds the pipe open.
            proc.kill()
            output = ""
        return ToolResult(exit_code=-1, output=output or "", timed_out=True)
    return ToolResult(exit_code=proc.returncode, output=output or "")
