from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union
import logging
import os
import shutil
import subprocess
import time

from .errors import ActionTimeout

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations and fact probes."""

    def __init__(self, *, dry_run: bool = False):
        self.dry_run = dry_run
        self._deadline: Optional[float] = None

    @contextmanager
    def time_limit(self, seconds: Optional[float]) -> Iterator[None]:
        """Bound every command issued inside the block by one shared deadline."""

        previous = self._deadline
        self._deadline = None if seconds is None else time.monotonic() + seconds
        try:
            yield
        finally:
            self._deadline = previous

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        raise NotImplementedError

    def which(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def _effective_timeout(self, command: list[str], timeout: Optional[float]) -> Optional[float]:
        if self._deadline is None:
            return timeout
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise ActionTimeout(f"timeout before running {' '.join(command)}")
        return remaining if timeout is None else min(timeout, remaining)


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        effective_timeout = self._effective_timeout(cmd_list, timeout)
        logger.debug("run cmd=%s timeout=%s", " ".join(cmd_list), effective_timeout)
        try:
            proc = subprocess.run(
                cmd_list,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=effective_timeout,
                start_new_session=True,
            )
        except FileNotFoundError:
            result = CommandResult(cmd_list, "", f"{cmd_list[0]}: command not found", 127)
        except subprocess.TimeoutExpired as exc:
            raise ActionTimeout(
                f"timeout after {exc.timeout:.0f}s running {' '.join(cmd_list)}",
                diagnostic=_decode(exc.stderr) or _decode(exc.stdout),
            ) from None
        else:
            result = CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                result.stdout,
                result.stderr,
            )
        return result

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(errors="ignore")
        except FileNotFoundError:
            return None


def _decode(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
