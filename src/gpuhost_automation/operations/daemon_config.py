from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import Operation
from ..executors import Executor
from ..patcher import ConfigPatcher
from ..types import HostFacts

DOCKER_DAEMON_CONFIG = Path("/etc/docker/daemon.json")


class DaemonConfigOperation(Operation):
    """Merge dotted-key settings into the Docker daemon JSON config."""

    name = "daemon_config"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        settings = spec.get("settings")
        if not isinstance(settings, dict) or not settings:
            raise ValueError("daemon_config operation requires a settings mapping")
        self.settings = dict(settings)
        self.patcher = ConfigPatcher(Path(str(spec.get("path", DOCKER_DAEMON_CONFIG))))

    @property
    def path(self) -> Path:
        return self.patcher.path

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        if executor.dry_run:
            return "dry-run"
        changed = self.patcher.apply_settings(self.settings)
        return f"patched {self.path}" if changed else "noop"

    def describe(self, facts: HostFacts) -> str:
        keys = ", ".join(sorted(self.settings))
        return f"set {keys} in {self.path}"

    def satisfied(self, facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG002
        return self.patcher.satisfied(self.settings)
