from pathlib import Path

from gpuhost_automation import cli
from gpuhost_automation.errors import ActionFailed, FactUnavailable
from gpuhost_automation.operations.base import Operation
from gpuhost_automation.types import ActionResult, ActionStatus, PlannedAction, Rule

from fakes import FakeExecutor, make_facts


class StubCollector:
    facts = make_facts()

    def __init__(self, executor, **kwargs):  # noqa: ARG002
        self.executor = executor

    def collect(self):
        return self.facts


class BrokenCollector(StubCollector):
    def collect(self):
        raise FactUnavailable("cannot read /etc/os-release")


class RecordingOperation(Operation):
    def apply(self, facts, executor):  # noqa: ARG002
        executor.run(["touch", self.spec["marker"]])
        return "touched"


class RaisingOperation(Operation):
    def apply(self, facts, executor):  # noqa: ARG002
        raise ActionFailed("dnf exploded", "Error: Failed to download metadata")


def stub_host(monkeypatch, collector=StubCollector):
    executors = []

    def executor_factory(dry_run=False):
        executor = FakeExecutor(dry_run=dry_run)
        executors.append(executor)
        return executor

    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setattr(cli, "LocalExecutor", executor_factory)
    monkeypatch.setattr(cli, "FactCollector", collector)
    return executors


def test_format_result_failed(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    result = ActionResult("nvidia-driver", ActionStatus.FAILED, "rc=1 running dnf install", "No match\nfor argument")
    line = cli.format_result(result)
    assert line == "nvidia-driver failed - rc=1 running dnf install\n    No match\n    for argument"


def test_format_result_success(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    result = ActionResult("docker-engine", ActionStatus.SUCCEEDED, "manager=dnf installed=docker-ce")
    assert cli.format_result(result) == "docker-engine succeeded - manager=dnf installed=docker-ce"


def test_format_planned(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    assert cli.format_planned(PlannedAction("docker-compose", True, "install docker-compose")) == (
        "docker-compose would run - install docker-compose"
    )
    assert cli.format_planned(PlannedAction("docker-engine", False, "install docker-ce", "already satisfied")) == (
        "docker-engine would skip - install docker-ce [already satisfied]"
    )


def test_summary_counts(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    summary = cli.Summary()
    for status in (ActionStatus.SUCCEEDED, ActionStatus.SKIPPED, ActionStatus.SKIPPED, ActionStatus.FAILED):
        summary.add(ActionResult("x", status))
    assert summary.render() == "Succeeded: 1 | Skipped: 2 | Failed: 1"


def test_main_dry_run_reports_plan(monkeypatch, tmp_path: Path, capsys):
    executors = stub_host(monkeypatch)

    code = cli.main(
        [
            "provision",
            "--dry-run",
            "--config",
            str(tmp_path / "missing.conf"),
            "--daemon-config",
            str(tmp_path / "daemon.json"),
        ]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Host: fedora 39 | GPU: none | CUDA: n/a" in out
    assert "docker-engine would run" in out
    assert "docker-daemon-config would run" in out
    assert "nvidia-driver" not in out
    assert executors[0].dry_run is True
    assert executors[0].mutable_calls == []
    assert not (tmp_path / "daemon.json").exists()


def test_main_exit_code_counts_failures(monkeypatch, tmp_path: Path, capsys):
    executors = stub_host(monkeypatch)
    marker = str(tmp_path / "marker")
    ruleset = [
        Rule(id="driver", effect=lambda facts: RaisingOperation({})),
        Rule(id="cuda", effect=lambda facts: RecordingOperation({"marker": marker}), depends_on=("driver",)),
        Rule(id="docker", effect=lambda facts: RecordingOperation({"marker": marker})),
    ]
    monkeypatch.setattr(cli, "default_ruleset", lambda options: list(ruleset))

    code = cli.main(["provision", "--config", str(tmp_path / "missing.conf")])

    out = capsys.readouterr().out
    assert code == 2
    assert "driver failed - dnf exploded" in out
    assert "    Error: Failed to download metadata" in out
    assert "cuda failed - dependency 'driver' failed" in out
    assert "docker succeeded - touched" in out
    assert "Succeeded: 1 | Skipped: 0 | Failed: 2" in out
    assert executors[0].calls == [["touch", marker]]


def test_main_aborts_when_facts_unavailable(monkeypatch, tmp_path: Path, capsys):
    stub_host(monkeypatch, collector=BrokenCollector)

    code = cli.main(["provision", "--config", str(tmp_path / "missing.conf")])

    assert code == 1
    assert "os-release" in capsys.readouterr().err


def test_main_rejects_malformed_minimum(monkeypatch, tmp_path: Path, capsys):
    stub_host(monkeypatch)

    code = cli.main(["provision", "--config", str(tmp_path / "missing.conf"), "--min-cuda-version", "eleven"])

    assert code == 1
    assert "malformed version 'eleven'" in capsys.readouterr().err


def test_main_reports_bad_config(monkeypatch, tmp_path: Path, capsys):
    stub_host(monkeypatch)
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults\n")

    assert cli.main(["provision", "--config", str(cfg_path)]) == 1
    assert "Config load failed" in capsys.readouterr().err


def test_main_reports_unreadable_config(monkeypatch, tmp_path: Path, capsys):
    stub_host(monkeypatch)
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults]\n")

    def unreadable(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_text", unreadable)

    assert cli.main(["provision", "--config", str(cfg_path)]) == 1
    assert "Config load failed" in capsys.readouterr().err
