import pytest

from gpuhost_automation.operations.service import ServiceOperation, SystemCtl

from fakes import FakeExecutor, make_facts


class FakeSystemCtl:
    def __init__(self, enabled: bool = False, active: bool = False, present: bool = True):
        self.enabled = enabled
        self.active = active
        self.present = present
        self.actions: list[str] = []

    def available(self, executor) -> bool:  # noqa: ARG002
        return self.present

    def is_enabled(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.enabled

    def is_active(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.active

    def enable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = True
        self.actions.append("enable")

    def start(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = True
        self.actions.append("start")

    def restart(self, executor, service: str) -> None:  # noqa: ARG002
        self.actions.append("restart")


def test_service_enable_and_start():
    op = ServiceOperation({"name": "docker", "enabled": True, "state": "running"})
    fake = FakeSystemCtl(enabled=False, active=False)
    op.systemctl = fake

    assert op.satisfied(make_facts(), FakeExecutor()) is False
    details = op.apply(make_facts(), FakeExecutor())

    assert details == "enabled, started"
    assert fake.actions == ["enable", "start"]
    assert op.satisfied(make_facts(), FakeExecutor()) is True


def test_service_restart_only():
    op = ServiceOperation({"name": "docker", "restart": True})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake

    assert op.apply(make_facts(), FakeExecutor()) == "restarted"
    assert fake.actions == ["restart"]


def test_service_no_changes_returns_noop():
    op = ServiceOperation({"name": "docker", "enabled": True, "state": "running"})
    op.systemctl = FakeSystemCtl(enabled=True, active=True)

    assert op.apply(make_facts(), FakeExecutor()) == "noop"


def test_service_without_systemctl_fails():
    op = ServiceOperation({"name": "docker", "state": "running"})
    op.systemctl = FakeSystemCtl(present=False)

    with pytest.raises(RuntimeError, match="systemctl"):
        op.apply(make_facts(), FakeExecutor())


def test_service_rejects_unknown_state():
    with pytest.raises(ValueError):
        ServiceOperation({"name": "docker", "state": "stopped"})


def test_systemctl_issues_commands():
    executor = FakeExecutor(commands=("systemctl",), responses={("systemctl", "is-active", "docker"): (3, "inactive")})
    systemctl = SystemCtl()

    assert systemctl.available(executor) is True
    assert systemctl.is_enabled(executor, "docker") is True
    assert systemctl.is_active(executor, "docker") is False
    systemctl.start(executor, "docker")

    assert executor.calls[-1] == ["systemctl", "start", "docker"]
    assert executor.mutable_calls == [["systemctl", "start", "docker"]]
