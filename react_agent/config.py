"""Configuration file loading and merging for react-agent.

Reads TOML config from ~/.config/react-agent/config.toml (global) and
<project_dir>/react-agent.toml (project), plus environment variables
(optionally from a .env file). Precedence: CLI > project > global > env > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_MODEL = "moonshotai/kimi-k2"

ENV_API_KEY = "OPENROUTER_API_KEY"
ENV_API_BASE = "OPENAI_API_BASE"
ENV_MODEL = "OPENAI_MODEL_NAME"

PROJECT_CONFIG_NAME = "react-agent.toml"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "stream": bool,
    "temperature": (int, float),
    "max_output_tokens": int,
    "quiet": bool,
    "color": bool,
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "base_url": None,
    "stream": True,
    "temperature": None,
    "max_output_tokens": None,
    "quiet": False,
    "color": False,
    "no_color": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "react-agent"
    return Path.home() / ".config" / "react-agent"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types. Unknown keys only produce a warning."""
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int, reject it for numeric fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using {ENV_API_KEY}.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


# --- Public API ---


def load_env(dotenv_path: str | None = None) -> dict:
    """Read settings from the environment, loading a .env file first.

    Without dotenv_path, the .env file is searched for from the current
    directory upward. Variables already set in the environment are not
    overridden by .env.
    """
    if dotenv_path is None:
        dotenv_path = find_dotenv(usecwd=True)
    load_dotenv(dotenv_path, override=False)
    env = {}
    if os.environ.get(ENV_API_KEY):
        env["api_key"] = os.environ[ENV_API_KEY]
    if os.environ.get(ENV_API_BASE):
        env["base_url"] = os.environ[ENV_API_BASE]
    if os.environ.get(ENV_MODEL):
        env["model"] = os.environ[ENV_MODEL]
    return env


def load_config(project_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys actually set in config files.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(project_dir).resolve() / PROJECT_CONFIG_NAME
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to the argparse namespace where the CLI didn't set one.

    Remaining _UNSET sentinels are replaced with hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair.
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def require_api_key(args: argparse.Namespace) -> str:
    if not args.api_key:
        raise ConfigError(
            f"no API key configured: set {ENV_API_KEY}, use --api-key, "
            f"or add api_key to {PROJECT_CONFIG_NAME}"
        )
    return args.api_key

