"""Exception types for the agent loop, its tools and its configuration."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad config file, etc.)."""


class ApiError(AgentError):
    """Raised when the model transport fails."""


class ParseError(AgentError):
    """Raised when model output does not contain a usable action."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


class ToolError(AgentError):
    """Raised when a tool fails at the I/O or process level."""


class PathEscapeError(ToolError):
    """Raised when a tool path resolves outside the project directory."""


class RetryLimitError(AgentError):
    """Raised when the model keeps producing unusable output."""
