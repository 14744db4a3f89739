"""System prompt rendering."""

import sys
from pathlib import Path
from string import Template

from .errors import AgentError

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"

_OS_NAMES = {
    "darwin": "macOS",
    "win32": "Windows",
    "cygwin": "Windows",
    "linux": "Linux",
}


def operating_system_name(platform: str | None = None) -> str:
    """Map a sys.platform value to a display name."""
    platform = sys.platform if platform is None else platform
    return _OS_NAMES.get(platform, "Unknown")


def project_entries(project_dir: str) -> list[str]:
    """Names of the entries directly inside project_dir, sorted."""
    path = Path(project_dir)
    if not path.is_dir():
        raise AgentError(f"project directory does not exist or is not a directory: {project_dir}")
    try:
        return sorted(child.name for child in path.iterdir())
    except OSError as exc:
        raise AgentError(f"cannot list project directory {project_dir}: {exc}") from exc


def render_system_prompt(
    tool_list: str,
    operating_system: str,
    file_list: list[str],
    template: str | None = None,
) -> str:
    if template is None:
        template = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")
    return Template(template).safe_substitute(
        tool_list=tool_list,
        operating_system=operating_system,
        file_list=", ".join(file_list) or "(empty)",
    )
