"""Command execution used by the host probes, with a recording variant for dry runs."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Mapping, Sequence
import shlex
import subprocess


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = (
            f"Command failed with exit code {result.returncode}: "
            f"{' '.join(map(shlex.quote, result.command))}\n"
            f"stderr: {result.stderr.strip()}"
        )
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    ``env`` replaces the child environment entirely when given; callers pass
    the sanitized snapshot so nothing stripped from it leaks back in.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        process = subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
        result = CommandResult(
            command=command,
            returncode=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    Queued responses are replayed in order; a queued exception is raised
    instead of returning.  With an empty queue every command succeeds with
    empty output.
    """

    def __init__(self, responses: Iterable[CommandResult | BaseException] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._responses: Deque[CommandResult | BaseException] = deque(responses or ())

    def queue(self, response: CommandResult | BaseException) -> None:
        self._responses.append(response)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
            )
        )
        if not self._responses:
            return CommandResult(command=command, returncode=0, stdout="", stderr="")
        response = self._responses.popleft()
        if isinstance(response, BaseException):
            raise response
        result = CommandResult(
            command=command,
            returncode=response.returncode,
            stdout=response.stdout,
            stderr=response.stderr,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def iter_formatted(self) -> Iterable[str]:
        for record in self.commands:
            parts: List[str] = ["[dry-run]"]
            if record.cwd:
                parts.append(f"(cwd={record.cwd})")
            parts.append(self.format_command(record.command))
            yield " ".join(parts)


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
]
