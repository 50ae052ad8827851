from __future__ import annotations

import grp
import logging
import pwd
from typing import Any, Optional

from .base import Operation, render
from ..executors import Executor
from ..types import HostFacts

logger = logging.getLogger(__name__)


class GroupManager:
    def exists(self, group: str) -> bool:
        try:
            grp.getgrnam(group)
        except KeyError:
            return False
        return True

    def is_member(self, group: str, user: str) -> bool:
        try:
            entry = grp.getgrnam(group)
        except KeyError:
            return False
        if user in entry.gr_mem:
            return True
        try:
            return pwd.getpwnam(user).pw_gid == entry.gr_gid
        except KeyError:
            return False

    def add_group(self, executor: Executor, group: str) -> None:
        executor.run(["groupadd", group])

    def add_member(self, executor: Executor, group: str, user: str) -> None:
        executor.run(["usermod", "-aG", group, user])


class GroupMemberOperation(Operation):
    """Ensure a group exists and that a user belongs to it."""

    name = "group_member"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_group = spec.get("group")
        if not raw_group:
            raise ValueError("group_member operation requires a group")
        self.group = str(raw_group)
        raw_user = spec.get("user")
        self.user: Optional[str] = str(raw_user) if raw_user else None
        self.manager = GroupManager()

    def member(self, facts: HostFacts) -> Optional[str]:
        if self.user:
            return render(self.user, facts)
        return facts.user

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        changes: list[str] = []
        if not self.manager.exists(self.group):
            logger.debug("Creating group %s", self.group)
            self.manager.add_group(executor, self.group)
            changes.append(f"created {self.group}")
        user = self.member(facts)
        if user and not self.manager.is_member(self.group, user):
            logger.debug("Adding %s to group %s", user, self.group)
            self.manager.add_member(executor, self.group, user)
            changes.append(f"added {user}")
        return ", ".join(changes) if changes else "noop"

    def describe(self, facts: HostFacts) -> str:
        user = self.member(facts)
        suffix = f" with member {user}" if user else ""
        return f"ensure group {self.group}{suffix}"

    def satisfied(self, facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG002
        if not self.manager.exists(self.group):
            return False
        user = self.member(facts)
        return user is None or self.manager.is_member(self.group, user)
