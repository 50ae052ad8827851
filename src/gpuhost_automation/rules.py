"""Built-in desired state for a GPU container host.

Rules are declared in execution-friendly order; the graph builder keeps that
order wherever dependencies allow. GPU rules only materialise when an NVIDIA
device was found, and the driver stack rules only when the reported CUDA
version is below the requested minimum.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import DEFAULT_DAEMON_CONFIG, DEFAULT_MIN_CUDA, DEFAULT_SMOKE_IMAGE, ProvisionConfig
from .errors import MalformedVersion
from .executors import Executor
from .operations import (
    DaemonConfigOperation,
    GroupMemberOperation,
    OperationChain,
    PackageOperation,
    RepositoryOperation,
    ServiceOperation,
)
from .types import HostFacts, Predicate, Rule
from .versions import Version, extract_cuda_version, meets, parse_version

logger = logging.getLogger(__name__)

REPOSITORY_TEMPLATES: dict[str, dict[str, str]] = {
    "cuda": {
        "fedora": (
            "https://developer.download.nvidia.com/compute/cuda/repos/"
            "fedora{{ version }}/x86_64/cuda-fedora{{ version }}.repo"
        ),
        "rhel": (
            "https://developer.download.nvidia.com/compute/cuda/repos/"
            "rhel{{ major_version }}/x86_64/cuda-rhel{{ major_version }}.repo"
        ),
    },
    "docker": {
        "fedora": "https://download.docker.com/linux/fedora/docker-ce.repo",
        "rhel": "https://download.docker.com/linux/centos/docker-ce.repo",
    },
    "nvidia_container": {
        "fedora": "https://nvidia.github.io/libnvidia-container/stable/rpm/nvidia-container-toolkit.repo",
        "rhel": "https://nvidia.github.io/libnvidia-container/stable/rpm/nvidia-container-toolkit.repo",
    },
}

CGROUP_SETTINGS = {"exec-opts": ["native.cgroupdriver=cgroupfs"]}
NVIDIA_RUNTIME_SETTINGS = {
    "runtimes.nvidia.path": "nvidia-container-runtime",
    "runtimes.nvidia.runtimeArgs": [],
}

DOCKER_PACKAGES = ["docker-ce", "docker-ce-cli", "containerd.io"]


@dataclass
class RuleOptions:
    min_cuda: Version = field(default_factory=lambda: parse_version(DEFAULT_MIN_CUDA))
    daemon_config: Path = DEFAULT_DAEMON_CONFIG
    smoke_test: bool = True
    smoke_test_image: str = DEFAULT_SMOKE_IMAGE
    docker_user: Optional[str] = None
    repositories: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ProvisionConfig) -> "RuleOptions":
        return cls(
            min_cuda=parse_version(config.min_cuda_version),
            daemon_config=config.daemon_config,
            smoke_test=config.smoke_test,
            smoke_test_image=config.smoke_test_image,
            docker_user=config.docker_user,
            repositories=dict(config.repositories),
        )

    def repository_url(self, name: str, family: str) -> str:
        if name in self.repositories:
            return self.repositories[name]
        try:
            return REPOSITORY_TEMPLATES[name][family]
        except KeyError:
            raise ValueError(f"no '{name}' repository known for distribution family '{family}'") from None


def cuda_adequate(facts: HostFacts, minimum: Version) -> bool:
    """Fact-only check used for applicability; unreadable versions count as inadequate."""

    if not facts.cuda_version:
        return False
    try:
        return meets(parse_version(facts.cuda_version), minimum)
    except MalformedVersion:
        logger.warning("CUDA version '%s' is not parseable; treating it as below minimum", facts.cuda_version)
        return False


def cuda_satisfied(minimum: Version) -> Predicate:
    """Live check against nvidia-smi, falling back to the installed ``cuda`` package.

    A malformed version string raises :class:`MalformedVersion`.
    """

    def check(facts: HostFacts, executor: Executor) -> bool:
        if executor.which("nvidia-smi"):
            result = executor.run(["nvidia-smi"], check=False, mutable=False)
            reported = extract_cuda_version(result.stdout) if result.returncode == 0 else None
            if reported is not None and meets(parse_version(reported), minimum):
                return True
        result = executor.run(["rpm", "-q", "--qf", "%{VERSION}", "cuda"], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return False
        return meets(parse_version(result.stdout.strip()), minimum)

    return check


def command_present(name: str) -> Predicate:
    def check(facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG001
        return executor.which(name) is not None

    return check


def gpu_container_works(image: str) -> Predicate:
    def check(facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG001
        result = executor.run(
            ["docker", "run", "--rm", "--gpus", "all", image, "nvidia-smi"],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            logger.warning("GPU container smoke test failed rc=%s", result.returncode)
        return result.returncode == 0

    return check


def daemon_settings(facts: HostFacts) -> dict[str, Any]:
    settings: dict[str, Any] = dict(CGROUP_SETTINGS)
    if facts.gpu_present:
        settings.update(NVIDIA_RUNTIME_SETTINGS)
    return settings


def default_ruleset(options: Optional[RuleOptions] = None) -> list[Rule]:
    options = options or RuleOptions()
    minimum = options.min_cuda

    def needs_gpu_stack(facts: HostFacts) -> bool:
        return facts.gpu_present and not cuda_adequate(facts, minimum)

    def gpu(facts: HostFacts) -> bool:
        return facts.gpu_present

    def repository(name: str, facts: HostFacts) -> RepositoryOperation:
        prerequisites = ["epel-release"] if name == "cuda" and facts.family == "rhel" else []
        return RepositoryOperation(
            {"url": options.repository_url(name, facts.family), "prerequisites": prerequisites}
        )

    def repository_present(name: str) -> Predicate:
        def check(facts: HostFacts, executor: Executor) -> bool:
            return repository(name, facts).present(facts, executor)

        return check

    def packages_installed(operation: PackageOperation) -> Predicate:
        return operation.installed

    kernel_headers = PackageOperation(
        {"packages": ["kernel-devel-{{ kernel_release }}", "kernel-headers-{{ kernel_release }}"]}
    )
    nvidia_driver = PackageOperation({"packages": ["nvidia-driver", "nvidia-settings"]})
    cuda = PackageOperation({"packages": ["cuda"]})
    docker_engine = PackageOperation({"packages": DOCKER_PACKAGES})
    docker_service = ServiceOperation({"service": "docker", "enabled": True, "state": "running"})
    docker_group = GroupMemberOperation({"group": "docker", "user": options.docker_user})
    restart_docker = ServiceOperation({"service": "docker", "restart": True})

    def docker_user(facts: HostFacts) -> bool:
        user = options.docker_user or facts.user
        return bool(user) and user != "root"

    def daemon_config(facts: HostFacts) -> DaemonConfigOperation:
        return DaemonConfigOperation({"path": str(options.daemon_config), "settings": daemon_settings(facts)})

    def daemon_config_present(facts: HostFacts, executor: Executor) -> bool:
        return daemon_config(facts).satisfied(facts, executor)

    smoke_test = gpu_container_works(options.smoke_test_image)

    def daemon_config_verified(facts: HostFacts, executor: Executor) -> bool:
        if not daemon_config_present(facts, executor):
            return False
        if facts.gpu_present and options.smoke_test:
            return smoke_test(facts, executor)
        return True

    return [
        Rule(
            id="nvidia-cuda-repo",
            description="NVIDIA CUDA package repository",
            applies=needs_gpu_stack,
            effect=lambda facts: repository("cuda", facts),
            precondition=repository_present("cuda"),
        ),
        Rule(
            id="nvidia-kernel-headers",
            description="kernel headers for the NVIDIA driver build",
            applies=needs_gpu_stack,
            effect=lambda facts: kernel_headers,
            precondition=packages_installed(kernel_headers),
            depends_on=("nvidia-cuda-repo",),
        ),
        Rule(
            id="nvidia-driver",
            description="NVIDIA driver",
            applies=needs_gpu_stack,
            effect=lambda facts: nvidia_driver,
            precondition=packages_installed(nvidia_driver),
            postcondition=packages_installed(nvidia_driver),
            depends_on=("nvidia-kernel-headers",),
        ),
        Rule(
            id="cuda-toolkit",
            description=f"CUDA >= {minimum}",
            applies=needs_gpu_stack,
            effect=lambda facts: cuda,
            precondition=cuda_satisfied(minimum),
            postcondition=cuda_satisfied(minimum),
            depends_on=("nvidia-driver",),
        ),
        Rule(
            id="docker-repo",
            description="Docker CE package repository",
            effect=lambda facts: repository("docker", facts),
            precondition=lambda facts, executor: (
                executor.which("docker") is not None or repository_present("docker")(facts, executor)
            ),
        ),
        Rule(
            id="docker-engine",
            description="Docker engine",
            effect=lambda facts: docker_engine,
            precondition=command_present("docker"),
            postcondition=command_present("docker"),
            depends_on=("docker-repo",),
        ),
        Rule(
            id="docker-service",
            description="Docker service enabled and running",
            effect=lambda facts: docker_service,
            precondition=docker_service.satisfied,
            depends_on=("docker-engine",),
        ),
        Rule(
            id="docker-compose",
            description="docker-compose",
            effect=lambda facts: PackageOperation({"packages": ["docker-compose"]}),
            precondition=command_present("docker-compose"),
            postcondition=command_present("docker-compose"),
        ),
        Rule(
            id="docker-group",
            description="docker group membership",
            applies=docker_user,
            effect=lambda facts: docker_group,
            precondition=docker_group.satisfied,
            depends_on=("docker-engine",),
        ),
        Rule(
            id="nvidia-container-toolkit",
            description="NVIDIA container runtime",
            applies=gpu,
            effect=lambda facts: OperationChain(
                [
                    repository("nvidia_container", facts),
                    PackageOperation({"packages": ["nvidia-container-toolkit"]}),
                ]
            ),
            precondition=command_present("nvidia-container-runtime"),
            postcondition=command_present("nvidia-container-runtime"),
            depends_on=("docker-service", "cuda-toolkit"),
        ),
        Rule(
            id="docker-daemon-config",
            description="Docker daemon settings",
            effect=lambda facts: OperationChain([daemon_config(facts), restart_docker]),
            precondition=daemon_config_present,
            postcondition=daemon_config_verified,
            depends_on=("docker-engine", "docker-service", "nvidia-container-toolkit"),
        ),
    ]

