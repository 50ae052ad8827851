from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence
import logging

from .base import Operation, render
from ..errors import ActionFailed
from ..executors import CommandResult, Executor
from ..types import HostFacts

logger = logging.getLogger(__name__)


class CommandOperation(Operation):
    """Run external commands; strings go through ``sh -c``, lists run as argv."""

    name = "command"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_commands = spec.get("commands")
        if raw_commands is None:
            raw_command = spec.get("command") or spec.get("cmd")
            if raw_command is None:
                raise ValueError("command operation requires a command")
            raw_commands = [raw_command]
        if isinstance(raw_commands, (str, bytes)) or not isinstance(raw_commands, Sequence):
            raise ValueError("command operation commands must be a list")
        if not raw_commands:
            raise ValueError("command operation requires a command")
        for command in raw_commands:
            self._validate(command)
        self.commands = list(raw_commands)
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))
        self.env = self._normalize_env(spec.get("env"))

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        for raw in self.commands:
            command = self.render_command(raw, facts)
            result = executor.run(command, check=False, mutable=True, env=self.env)
            if result.returncode not in self.allowed_returns:
                logger.debug("command failed rc=%s cmd=%s", result.returncode, " ".join(command))
                raise ActionFailed(
                    f"rc={result.returncode} running {self._format(command)}",
                    diagnostic=summarize_output(result),
                )
        count = len(self.commands)
        return f"ran {count} command{'s' if count != 1 else ''}"

    def describe(self, facts: HostFacts) -> str:
        return "; ".join(self._format(self.render_command(raw, facts)) for raw in self.commands)

    @staticmethod
    def render_command(value: Any, facts: HostFacts) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", render(value, facts)]
        return [render(str(part), facts) for part in value]

    @staticmethod
    def _format(command: Sequence[str]) -> str:
        if len(command) == 3 and list(command[:2]) == ["sh", "-c"]:
            return command[2]
        return " ".join(command)

    @staticmethod
    def _validate(command: Any) -> None:
        if isinstance(command, str):
            if not command.strip():
                raise ValueError("command must not be empty")
            return
        if isinstance(command, Sequence) and command:
            return
        raise ValueError("each command must be a string or a non-empty list")

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("command env must be a mapping or list of KEY=VALUE strings")

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        if isinstance(value, int):
            return [int(value)]
        if isinstance(value, Iterable):
            return [int(v) for v in value]
        raise ValueError("command returns must be an int or list of ints")


def shell_check(command: Any, facts: HostFacts, executor: Executor) -> bool:
    """Read-only guard: true when ``command`` exits 0."""

    result = executor.run(CommandOperation.render_command(command, facts), check=False, mutable=False)
    return result.returncode == 0


def summarize_output(result: CommandResult) -> str:
    for text in (result.stderr, result.stdout):
        if not text:
            continue
        stripped = text.strip()
        if not stripped:
            continue
        lines = stripped.splitlines()[-5:]
        return "\n".join((line[:157] + "...") if len(line) > 160 else line for line in lines)
    return ""
