"""
Error taxonomy for the task pipeline.

Every task-level error is caught at the processor boundary and recorded on
the task; none of them terminates the daemon.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Invalid configuration value."""


class TaskTransitionError(AgentError):
    """A status change that would break the pending -> processing -> terminal order."""


class ValidationError(AgentError):
    """Required payload fields are missing."""


class DependencyMissingError(AgentError):
    """A required external tool is unavailable."""


class AuthenticationError(AgentError):
    """No usable GitHub token, or the token failed verification."""


class ScriptExecutionError(AgentError):
    """Non-zero exit or spawn failure of an external command."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class PostProcessingError(AgentError):
    """A secondary command failed. Logged only."""

    def __init__(self, message: str, command: str):
        super().__init__(message)
        self.command = command
