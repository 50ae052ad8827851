from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/gpuhost/main.conf")
DEFAULT_DAEMON_CONFIG = Path("/etc/docker/daemon.json")
DEFAULT_MIN_CUDA = "11.8"
DEFAULT_SMOKE_IMAGE = "nvidia/cuda:11.0.3-base-ubuntu18.04"
DEFAULT_TIMEOUT = 1800.0


@dataclass
class ProvisionConfig:
    min_cuda_version: str = DEFAULT_MIN_CUDA
    daemon_config: Path = DEFAULT_DAEMON_CONFIG
    command_timeout: Optional[float] = DEFAULT_TIMEOUT
    rules_file: Optional[Path] = None
    smoke_test: bool = True
    smoke_test_image: str = DEFAULT_SMOKE_IMAGE
    docker_user: Optional[str] = None
    log_level: str = "INFO"
    repositories: dict[str, str] = field(default_factory=dict)


def load_config(path: Path) -> ProvisionConfig:
    if not path.exists():
        return ProvisionConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    repositories = data.get("repositories", {})
    if not isinstance(repositories, dict):
        raise ValueError(f"{path}: [repositories] must be a table")
    min_cuda = defaults.get("min_cuda_version", DEFAULT_MIN_CUDA)
    if not isinstance(min_cuda, str):
        raise ValueError(f"{path}: min_cuda_version must be a quoted string such as \"12.10\"")
    rules_file = defaults.get("rules_file")
    docker_user = defaults.get("docker_user")
    return ProvisionConfig(
        min_cuda_version=min_cuda,
        daemon_config=Path(defaults.get("daemon_config", DEFAULT_DAEMON_CONFIG)),
        command_timeout=_timeout(defaults.get("command_timeout", DEFAULT_TIMEOUT)),
        rules_file=Path(rules_file) if rules_file else None,
        smoke_test=bool(defaults.get("smoke_test", True)),
        smoke_test_image=str(defaults.get("smoke_test_image", DEFAULT_SMOKE_IMAGE)),
        docker_user=str(docker_user) if docker_user else None,
        log_level=str(defaults.get("log_level", "INFO")),
        repositories={str(k): str(v) for k, v in repositories.items()},
    )


def _timeout(value: Any) -> Optional[float]:
    if value is None or value == 0:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("command_timeout must be numeric") from exc
