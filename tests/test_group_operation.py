from gpuhost_automation.operations.group import GroupManager, GroupMemberOperation

from fakes import FakeExecutor, make_facts


class FakeGroupManager(GroupManager):
    def __init__(self, groups=None):
        self.groups: dict[str, set[str]] = {name: set(members) for name, members in (groups or {}).items()}
        self.actions: list[str] = []

    def exists(self, group: str) -> bool:
        return group in self.groups

    def is_member(self, group: str, user: str) -> bool:
        return user in self.groups.get(group, set())

    def add_group(self, executor, group: str) -> None:
        super().add_group(executor, group)
        self.groups[group] = set()
        self.actions.append(f"groupadd {group}")

    def add_member(self, executor, group: str, user: str) -> None:
        super().add_member(executor, group, user)
        self.groups[group].add(user)
        self.actions.append(f"usermod {user}")


def test_creates_group_and_adds_invoking_user():
    op = GroupMemberOperation({"group": "docker"})
    op.manager = FakeGroupManager()
    executor = FakeExecutor()

    assert op.satisfied(make_facts(), executor) is False
    details = op.apply(make_facts(), executor)

    assert details == "created docker, added alice"
    assert executor.calls == [["groupadd", "docker"], ["usermod", "-aG", "docker", "alice"]]
    assert op.satisfied(make_facts(), executor) is True


def test_explicit_user_wins_over_facts():
    op = GroupMemberOperation({"group": "docker", "user": "ci"})
    op.manager = FakeGroupManager({"docker": set()})

    assert op.apply(make_facts(), FakeExecutor()) == "added ci"
    assert op.describe(make_facts()) == "ensure group docker with member ci"


def test_existing_membership_is_noop():
    op = GroupMemberOperation({"group": "docker"})
    op.manager = FakeGroupManager({"docker": {"alice"}})
    executor = FakeExecutor()

    assert op.apply(make_facts(), executor) == "noop"
    assert executor.calls == []


def test_no_user_only_ensures_group():
    op = GroupMemberOperation({"group": "docker"})
    op.manager = FakeGroupManager({"docker": set()})

    assert op.satisfied(make_facts(user=None), FakeExecutor()) is True
