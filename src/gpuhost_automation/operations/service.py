from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Operation, coerce_bool
from ..executors import Executor
from ..types import HostFacts

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        return executor.which(self.executable) is not None

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd services."""

    name = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("service") or spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.service = str(raw_name)
        self.enabled = coerce_bool(spec.get("enabled"))
        self.state = spec.get("state")
        self.restart = bool(coerce_bool(spec.get("restart", False)))
        if self.state not in {None, "running"}:
            raise ValueError("service state must be 'running'")
        self.systemctl = SystemCtl()

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        if not self.systemctl.available(executor):
            raise RuntimeError("systemctl is not available on this host")

        changes: list[str] = []

        if self.enabled and not self.systemctl.is_enabled(executor, self.service):
            logger.debug("Enabling service %s", self.service)
            self.systemctl.enable(executor, self.service)
            changes.append("enabled")

        if self.restart:
            logger.debug("Restarting service %s", self.service)
            self.systemctl.restart(executor, self.service)
            changes.append("restarted")
        elif self.state == "running" and not self.systemctl.is_active(executor, self.service):
            logger.debug("Starting service %s", self.service)
            self.systemctl.start(executor, self.service)
            changes.append("started")

        return ", ".join(changes) if changes else "noop"

    def describe(self, facts: HostFacts) -> str:
        verbs = []
        if self.enabled:
            verbs.append("enable")
        if self.restart:
            verbs.append("restart")
        elif self.state == "running":
            verbs.append("start")
        return f"{'/'.join(verbs) or 'check'} service {self.service}"

    def satisfied(self, facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG002
        if self.enabled and not self.systemctl.is_enabled(executor, self.service):
            return False
        if self.state == "running" and not self.systemctl.is_active(executor, self.service):
            return False
        return True
