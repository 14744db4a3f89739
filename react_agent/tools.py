"""Tool definitions and implementations for the agent.

Every tool takes a flat list of string arguments and returns the text the
model sees as its observation. File tools are confined to the project
directory they were built with.
"""

import os
import shlex
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from . import fmt
from .errors import PathEscapeError, ToolError

SHELL_TOOL_NAME = "run_terminal_command"
CANCELLED_BY_OPERATOR = "Operation cancelled by operator"

BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
COMMAND_TIMEOUT = 120
_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals

Confirm = Callable[[str], bool]


def console_confirm(question: str) -> bool:
    """Ask the operator on the console. Only ``y`` or ``Y`` counts as yes."""
    fmt.confirm_prompt(question)
    try:
        answer = input()
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def safe_resolve(file_path: str, project_dir: str) -> Path:
    """Resolve a tool path, ensuring it stays within the project directory.

    Relative paths are joined to the project directory, absolute paths are
    taken as given. Symlinks and ``..`` are resolved on both sides before
    the containment check.

    Raises:
        PathEscapeError: If the resolved path escapes the project directory.
    """
    base = Path(project_dir).resolve()

    if Path(file_path).is_absolute():
        resolved = Path(file_path).resolve()
    else:
        resolved = (base / file_path).resolve()

    if not resolved.is_relative_to(base):
        raise PathEscapeError(
            f"path {file_path!r} resolves to {resolved}, "
            f"which is outside project directory {base}"
        )
    return resolved


def _require_args(name: str, args: list[str], count: int, what: str) -> None:
    if len(args) != count:
        raise ToolError(f"{name} expects {what}, got {len(args)} argument(s)")


@dataclass
class Tool:
    """A named capability the model can call.

    handler receives the raw argument list and returns the observation text.
    """

    name: str
    description: str
    handler: Callable[[list[str]], str]

    def execute(self, args: list[str]) -> str:
        return self.handler(args)


@dataclass
class ToolRegistry:
    """Tools keyed by name, in registration order."""

    tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        self.tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    def names(self) -> list[str]:
        return list(self.tools)

    def tool_list(self) -> str:
        return "\n".join(
            f"- {tool.name}: {tool.description}" for tool in self.tools.values()
        )

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)

    def invoke(self, name: str, args: list[str]) -> str:
        """Run a tool by name.

        An unknown name is not an error: the returned text tells the model
        the tool does not exist so it can correct itself. Tool failures
        propagate as ToolError.
        """
        tool = self.get(name)
        if tool is None:
            return f"Tool {name!r} does not exist. Available tools: {', '.join(self.names())}"
        return tool.execute(args)


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------


def _path_kind(path: Path, label: str) -> str | None:
    """Return "dir", "file" or None when nothing exists at path."""
    try:
        if path.is_dir():
            return "dir"
        if path.exists():
            return "file"
    except OSError as exc:
        raise ToolError(f"cannot access {label}: {exc}") from exc
    return None


def _ensure_parent(path: Path, confirm: Confirm) -> bool:
    """Create a missing parent directory if the operator agrees."""
    parent = path.parent
    if _path_kind(parent, str(parent)) is not None:
        return True
    if not confirm(f"Parent directory '{parent}' does not exist. Create it?"):
        return False
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ToolError(f"failed to create directory {parent}: {exc}") from exc
    fmt.info(f"Created parent directory: {parent}")
    return True


def _read_file(args: list[str], project_dir: str) -> str:
    """Read a UTF-8 text file."""
    _require_args("read_file", args, 1, "one file path")
    resolved = safe_resolve(args[0], project_dir)

    kind = _path_kind(resolved, args[0])
    if kind is None:
        raise ToolError(f"path does not exist: {args[0]}")
    if kind == "dir":
        raise ToolError(f"path is a directory, not a file: {args[0]}")

    try:
        with open(resolved, "rb") as f:
            data = f.read()
    except OSError as exc:
        raise ToolError(f"failed to read {args[0]}: {exc}") from exc

    if b"\x00" in data[:BINARY_CHECK_BYTES]:
        raise ToolError(f"binary file detected: {args[0]}")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ToolError(f"failed to decode {args[0]} as UTF-8: {exc}") from exc


def _write_file(args: list[str], project_dir: str, confirm: Confirm) -> str:
    """Overwrite a file with the given content."""
    _require_args("write_to_file", args, 2, "a file path and the content")
    file_path, content = args
    resolved = safe_resolve(file_path, project_dir)

    if not _ensure_parent(resolved, confirm):
        return f"{CANCELLED_BY_OPERATOR}: file was not written"

    data = content.encode("utf-8")
    try:
        resolved.write_bytes(data)
    except OSError as exc:
        raise ToolError(f"failed to write {file_path}: {exc}") from exc
    return f"Wrote {len(data)} bytes to {resolved}"


def _create_directory(args: list[str], project_dir: str, confirm: Confirm) -> str:
    _require_args("create_directory", args, 1, "one directory path")
    resolved = safe_resolve(args[0], project_dir)

    if _path_kind(resolved, args[0]) == "dir":
        return f"Directory already exists: {resolved}"
    if not _ensure_parent(resolved, confirm):
        return f"{CANCELLED_BY_OPERATOR}: directory was not created"

    try:
        resolved.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ToolError(f"failed to create directory {args[0]}: {exc}") from exc
    return f"Created directory: {resolved}"


def _create_file(args: list[str], project_dir: str, confirm: Confirm) -> str:
    _require_args("create_file", args, 1, "one file path")
    resolved = safe_resolve(args[0], project_dir)

    if _path_kind(resolved, args[0]) is not None:
        if not confirm(f"File '{resolved}' already exists. Overwrite it?"):
            return f"{CANCELLED_BY_OPERATOR}: file was not created"
    if not _ensure_parent(resolved, confirm):
        return f"{CANCELLED_BY_OPERATOR}: file was not created"

    try:
        resolved.write_bytes(b"")
    except OSError as exc:
        raise ToolError(f"failed to create {args[0]}: {exc}") from exc
    return f"Created empty file: {resolved}"


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit."""
    if sys.platform != "win32":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    try:
        proc.kill()
    except OSError:
        pass
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass


def _run_terminal_command(
    args: list[str], project_dir: str, timeout: int = COMMAND_TIMEOUT
) -> str:
    """Run a shell command line in the project directory.

    Extra arguments are shell-quoted and appended to the first one.
    """
    if not args:
        raise ToolError("run_terminal_command expects a command line")
    command = args[0]
    if len(args) > 1:
        command = f"{command} {shlex.join(args[1:])}"

    if not Path(project_dir).is_dir():
        raise ToolError(f"project directory does not exist: {project_dir}")

    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", command]
    else:
        shell_cmd = ["/bin/sh", "-c", command]

    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=project_dir,
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    try:
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
    except OSError as exc:
        raise ToolError(f"failed to start shell command: {exc}") from exc

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_tree(proc)
        proc.communicate()
        raise ToolError(f"command timed out after {timeout}s: {command}")

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise ToolError(
            f"command failed with exit code {proc.returncode}: {err.strip() or out.strip()}"
        )
    return f"Command succeeded:\n{out}"


def create_default_tools(
    project_dir: str, confirm: Confirm = console_confirm
) -> ToolRegistry:
    """Build the registry of built-in tools bound to project_dir."""
    registry = ToolRegistry()
    registry.register(
        Tool(
            "read_file",
            "Read the contents of a file. Takes one argument: the file path, "
            "relative to the project directory or absolute inside it.",
            lambda args: _read_file(args, project_dir),
        )
    )
    registry.register(
        Tool(
            "write_to_file",
            "Write content to a file, replacing what it held. Takes two arguments: "
            "the file path and the content. Use \\n for newlines in the content.",
            lambda args: _write_file(args, project_dir, confirm),
        )
    )
    registry.register(
        Tool(
            SHELL_TOOL_NAME,
            "Run a shell command in the project directory and return its output. "
            "Takes one argument: the command line.",
            lambda args: _run_terminal_command(args, project_dir),
        )
    )
    registry.register(
        Tool(
            "create_directory",
            "Create a directory. Asks the operator before creating a missing "
            "parent directory. Takes one argument: the directory path.",
            lambda args: _create_directory(args, project_dir, confirm),
        )
    )
    registry.register(
        Tool(
            "create_file",
            "Create an empty file, asking the operator before overwriting an "
            "existing one or creating a missing parent directory. "
            "Use write_to_file afterwards to fill it. Takes one argument: the file path.",
            lambda args: _create_file(args, project_dir, confirm),
        )
    )
    return registry
