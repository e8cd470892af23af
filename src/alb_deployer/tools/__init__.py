"""Typed wrappers around the az, helm and kubectl CLIs."""

from .azure import AzureCLI, flatten_outputs
from .base import CLITool, CommandError, CommandResult, Session
from .helm import Helm
from .kubectl import Kubectl

__all__ = [
    "AzureCLI",
    "CLITool",
    "CommandError",
    "CommandResult",
    "Helm",
    "Kubectl",
    "Session",
    "flatten_outputs",
]
