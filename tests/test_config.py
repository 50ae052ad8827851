from pathlib import Path

import pytest

from gpuhost_automation.config import DEFAULT_SMOKE_IMAGE, ProvisionConfig, load_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.conf")
    assert isinstance(config, ProvisionConfig)
    assert config.min_cuda_version == "11.8"
    assert config.daemon_config == Path("/etc/docker/daemon.json")
    assert config.command_timeout == 1800.0
    assert config.smoke_test_image == DEFAULT_SMOKE_IMAGE
    assert config.rules_file is None


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text(
        """
        [defaults]
        min_cuda_version = "12.2"
        daemon_config = "/srv/docker/daemon.json"
        command_timeout = 600
        rules_file = "/etc/gpuhost/rules.toml"
        smoke_test = false
        docker_user = "ci"
        log_level = "DEBUG"

        [repositories]
        docker = "https://mirror.example.invalid/docker-ce.repo"
        """
    )

    config = load_config(cfg_path)
    assert config.min_cuda_version == "12.2"
    assert config.daemon_config == Path("/srv/docker/daemon.json")
    assert config.command_timeout == 600.0
    assert config.rules_file == Path("/etc/gpuhost/rules.toml")
    assert config.smoke_test is False
    assert config.docker_user == "ci"
    assert config.log_level == "DEBUG"
    assert config.repositories == {"docker": "https://mirror.example.invalid/docker-ce.repo"}


def test_zero_timeout_disables_limit(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults]\ncommand_timeout = 0\n")
    assert load_config(cfg_path).command_timeout is None


def test_invalid_config_raises(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults\n")
    with pytest.raises(ValueError, match="main.conf"):
        load_config(cfg_path)


def test_unquoted_min_cuda_version_is_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults]\nmin_cuda_version = 12.10\n")
    with pytest.raises(ValueError, match="quoted string"):
        load_config(cfg_path)
