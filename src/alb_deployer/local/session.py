"""Local command execution session."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass
class LocalCommandResult:
    """Result of executing a local command."""
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class LocalSession:
    """
    Runs the az, helm and kubectl CLIs on the current machine.

    Provides the same interface as SSHSession so the tool wrappers do not
    care where a command executes.
    """

    def __init__(self, working_dir: Optional[str] = None, default_timeout: int = 1800) -> None:
        """
        Initialize local session.

        Args:
            working_dir: Working directory for commands. Defaults to the current directory.
            default_timeout: Timeout in seconds applied when `run` is given none.
                ARM deployments routinely take 10+ minutes, hence the generous default.
        """
        self.working_dir = working_dir or os.getcwd()
        self.default_timeout = default_timeout
        self._connected = False

    @property
    def target(self) -> str:
        return "local"

    def connect(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = True

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = False

    def __enter__(self) -> "LocalSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> LocalCommandResult:
        """
        Execute a command locally and wait for it to finish.

        Args:
            args: The argv to execute (no shell is involved)
            input_text: Optional text written to the command's stdin
            timeout: Total timeout in seconds

        Returns:
            LocalCommandResult with stdout, stderr and exit status. A missing
            binary or a timeout is reported as a failed result, not raised.
        """
        command = shlex.join(args)
        timeout = timeout or self.default_timeout
        try:
            process = subprocess.run(
                list(args),
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                check=False,
            )
        except FileNotFoundError:
            return LocalCommandResult(
                command=command,
                stdout="",
                stderr=f"{args[0]}: command not found",
                exit_status=127,
            )
        except subprocess.TimeoutExpired:
            return LocalCommandResult(
                command=command,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
            )

        return LocalCommandResult(
            command=command,
            stdout=process.stdout.strip(),
            stderr=process.stderr.strip(),
            exit_status=process.returncode,
        )
