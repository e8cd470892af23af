"""Shared plumbing for the CLI wrappers."""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Protocol, Sequence, Union

from ..local import LocalCommandResult
from ..ssh import SSHCommandResult
from ..utils.logging import get_logger

logger = get_logger(__name__)

CommandResult = Union[LocalCommandResult, SSHCommandResult]

_ALREADY_EXISTS = re.compile(r"already exists|RoleAssignmentExists|AlreadyExists", re.IGNORECASE)


class Session(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult: ...


class CommandError(RuntimeError):
    """Raised when an external CLI exits with a non-zero status."""

    def __init__(self, command: List[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Command {' '.join(command)} failed with code {exit_code}: {stderr}")

    @property
    def already_exists(self) -> bool:
        return bool(_ALREADY_EXISTS.search(self.stderr))


class CLITool:
    """Base for wrappers that run one binary through a session."""

    binary = ""

    def __init__(self, session: Session, binary: Optional[str] = None) -> None:
        self.session = session
        if binary:
            self.binary = binary

    def _run(self, args: List[str], input_text: Optional[str] = None) -> str:
        command = [self.binary] + args
        logger.debug("$ %s", " ".join(command))
        result = self.session.run(command, input_text=input_text)
        if not result.ok:
            raise CommandError(command, result.exit_status, result.stderr)
        return result.stdout

    def _run_json(self, args: List[str]) -> Any:
        output = self._run(args)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise CommandError([self.binary] + args, 0, f"Unparseable JSON output: {exc}") from exc

    def _run_tsv(self, args: List[str]) -> str:
        return self._run(args).strip()
