"""SSH session management built on Paramiko."""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import paramiko

from .credentials import SSHCredentials

_CHUNK_SIZE = 32768


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


# Failures of the transport itself, as opposed to a command exiting non-zero
SESSION_ERRORS = (SSHConnectionError, paramiko.SSHException, OSError)


@dataclass
class SSHCommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class SSHSession:
    """Runs the az, helm and kubectl CLIs on a jump host via paramiko.SSHClient."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        default_timeout: int = 1800,
        poll_interval: float = 0.1,
    ) -> None:
        self.credentials = credentials
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    @property
    def target(self) -> str:
        return f"{self.credentials.username}@{self.credentials.host}:{self.credentials.port}"

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        self.credentials.validate()
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
            else:
                connect_kwargs["key_filename"] = self.credentials.key_path
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> SSHCommandResult:
        """
        Execute a command on the jump host.

        Args:
            args: The argv to execute; it is shell-quoted for the remote shell
            input_text: Optional text written to the remote stdin
            timeout: Total timeout in seconds

        Returns:
            SSHCommandResult with command output and exit status

        Note:
            Both streams are drained while waiting, so output larger than the
            channel window cannot stall the remote command.
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        command = shlex.join(args)
        timeout = timeout or self.default_timeout
        stdin, stdout, stderr = self._client.exec_command(command, timeout=timeout)

        if input_text is not None:
            stdin.write(input_text)
            stdin.flush()
            stdin.channel.shutdown_write()

        channel = stdout.channel
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        deadline = time.monotonic() + timeout

        while not channel.exit_status_ready():
            self._drain(channel, stdout_chunks, stderr_chunks)
            if time.monotonic() > deadline:
                channel.close()
                return SSHCommandResult(
                    command=command,
                    stdout=_decode(stdout_chunks),
                    stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                    exit_status=-1,
                )
            time.sleep(self.poll_interval)

        self._drain(channel, stdout_chunks, stderr_chunks)
        exit_status = channel.recv_exit_status()

        return SSHCommandResult(
            command=command,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
            exit_status=exit_status,
        )

    @staticmethod
    def _drain(channel: paramiko.Channel, stdout_chunks: List[bytes], stderr_chunks: List[bytes]) -> None:
        while channel.recv_ready():
            stdout_chunks.append(channel.recv(_CHUNK_SIZE))
        while channel.recv_stderr_ready():
            stderr_chunks.append(channel.recv_stderr(_CHUNK_SIZE))


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace").strip()
