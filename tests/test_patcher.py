import json
from pathlib import Path

import pytest

from gpuhost_automation.errors import ConfigIOError
from gpuhost_automation.patcher import ConfigPatcher, has_settings, merge_settings, patch, set_key

NVIDIA_SETTINGS = {
    "runtimes.nvidia.path": "nvidia-container-runtime",
    "runtimes.nvidia.runtimeArgs": [],
    "exec-opts": ["native.cgroupdriver=cgroupfs"],
}


def test_set_key_creates_nested_maps():
    config: dict = {}
    set_key(config, "runtimes.nvidia.path", "nvidia-container-runtime")
    assert config == {"runtimes": {"nvidia": {"path": "nvidia-container-runtime"}}}


def test_set_key_replaces_non_mapping_intermediate():
    config = {"runtimes": "bogus"}
    set_key(config, "runtimes.nvidia.path", "x")
    assert config == {"runtimes": {"nvidia": {"path": "x"}}}


def test_patch_creates_missing_file(tmp_path: Path):
    target = tmp_path / "docker" / "daemon.json"
    changed = patch(target, merge_settings(NVIDIA_SETTINGS))

    assert changed is True
    data = json.loads(target.read_text())
    assert data["runtimes"]["nvidia"] == {"path": "nvidia-container-runtime", "runtimeArgs": []}
    assert data["exec-opts"] == ["native.cgroupdriver=cgroupfs"]


def test_patch_preserves_unrelated_keys(tmp_path: Path):
    target = tmp_path / "daemon.json"
    target.write_text(json.dumps({"log-driver": "journald", "runtimes": {"runc": {"path": "runc"}}}))

    patch(target, merge_settings(NVIDIA_SETTINGS))

    data = json.loads(target.read_text())
    assert data["log-driver"] == "journald"
    assert data["runtimes"]["runc"] == {"path": "runc"}
    assert data["runtimes"]["nvidia"]["path"] == "nvidia-container-runtime"


def test_patch_output_is_sorted_and_indented(tmp_path: Path):
    target = tmp_path / "daemon.json"
    patch(target, merge_settings({"zeta": 1, "alpha": {"b": 2, "a": 1}}))

    assert target.read_text() == '{\n    "alpha": {\n        "a": 1,\n        "b": 2\n    },\n    "zeta": 1\n}\n'


def test_patch_reports_no_change_on_second_apply(tmp_path: Path):
    target = tmp_path / "daemon.json"
    assert patch(target, merge_settings(NVIDIA_SETTINGS)) is True
    before = target.stat().st_mtime_ns
    assert patch(target, merge_settings(NVIDIA_SETTINGS)) is False
    assert target.stat().st_mtime_ns == before


def test_patch_leaves_file_untouched_when_transform_raises(tmp_path: Path):
    target = tmp_path / "daemon.json"
    original = b'{"log-driver":   "journald"}'
    target.write_bytes(original)

    def transform(config):
        config["half"] = "written"
        raise RuntimeError("transform exploded")

    with pytest.raises(RuntimeError):
        patch(target, transform)

    assert target.read_bytes() == original
    assert sorted(p.name for p in tmp_path.iterdir()) == ["daemon.json"]


def test_patch_rejects_unparseable_file(tmp_path: Path):
    target = tmp_path / "daemon.json"
    target.write_text("{not json")

    with pytest.raises(ConfigIOError):
        patch(target, merge_settings(NVIDIA_SETTINGS))
    assert target.read_text() == "{not json"


def test_patch_rejects_non_object_root(tmp_path: Path):
    target = tmp_path / "daemon.json"
    target.write_text("[1, 2]")
    with pytest.raises(ConfigIOError):
        patch(target, merge_settings(NVIDIA_SETTINGS))


def test_patch_write_failure_keeps_original(tmp_path: Path, monkeypatch):
    target = tmp_path / "daemon.json"
    target.write_text('{"a": 1}')

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("gpuhost_automation.patcher.os.replace", broken_replace)

    with pytest.raises(ConfigIOError, match="read-only"):
        patch(target, merge_settings({"b": 2}))
    assert target.read_text() == '{"a": 1}'
    assert sorted(p.name for p in tmp_path.iterdir()) == ["daemon.json"]


def test_patch_keeps_existing_mode(tmp_path: Path):
    target = tmp_path / "daemon.json"
    target.write_text("{}")
    target.chmod(0o600)

    patch(target, merge_settings({"a": 1}))

    assert (target.stat().st_mode & 0o777) == 0o600


def test_empty_file_is_treated_as_empty_config(tmp_path: Path):
    target = tmp_path / "daemon.json"
    target.write_text("")
    patch(target, merge_settings({"a": 1}))
    assert json.loads(target.read_text()) == {"a": 1}


def test_has_settings(tmp_path: Path):
    target = tmp_path / "daemon.json"
    assert has_settings(target, NVIDIA_SETTINGS) is False
    ConfigPatcher(target).apply_settings(NVIDIA_SETTINGS)
    assert has_settings(target, NVIDIA_SETTINGS) is True
    assert ConfigPatcher(target).satisfied({"exec-opts": ["native.cgroupdriver=systemd"]}) is False
