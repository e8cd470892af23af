"""SSH utilities for running the CLIs on a jump host."""

from .credentials import SSHCredentials
from .session import SESSION_ERRORS, SSHCommandResult, SSHConnectionError, SSHSession

__all__ = [
    "SESSION_ERRORS",
    "SSHCredentials",
    "SSHCommandResult",
    "SSHConnectionError",
    "SSHSession",
]
