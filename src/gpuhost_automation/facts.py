from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from .errors import FactUnavailable
from .executors import Executor
from .types import HostFacts
from .versions import extract_cuda_version

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")
PCI_DEVICES = Path("/sys/bus/pci/devices")
NVIDIA_PCI_VENDOR = "0x10de"

DISTRO_FAMILIES = {
    "fedora": "fedora",
    "rhel": "rhel",
    "centos": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
}

TRACKED_COMMANDS = (
    "docker",
    "docker-compose",
    "nvidia-smi",
    "nvidia-container-runtime",
    "lspci",
    "dnf",
    "yum",
    "rpm",
    "systemctl",
)

TRACKED_PACKAGES = (
    "docker-ce",
    "docker-compose",
    "nvidia-driver",
    "cuda",
    "nvidia-container-toolkit",
)


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        values[key.strip()] = value
    return values


class FactCollector:
    """Gathers host facts once per run using read-only probes."""

    def __init__(
        self,
        executor: Executor,
        *,
        os_release: Path = OS_RELEASE,
        pci_devices: Path = PCI_DEVICES,
        user: Optional[str] = None,
    ):
        self.executor = executor
        self.os_release = os_release
        self.pci_devices = pci_devices
        self.user = user
        self._facts: Optional[HostFacts] = None

    def collect(self) -> HostFacts:
        if self._facts is None:
            self._facts = self._collect()
        return self._facts

    def _collect(self) -> HostFacts:
        distro, version, family = self._identify_os()
        commands = frozenset(name for name in TRACKED_COMMANDS if self.executor.which(name))
        gpu_devices = self._gpu_devices(commands)
        cuda_version, driver_version = self._nvidia_versions(commands)
        facts = HostFacts(
            distro=distro,
            version=version,
            family=family,
            gpu_present=bool(gpu_devices),
            gpu_devices=tuple(gpu_devices),
            cuda_version=cuda_version,
            driver_version=driver_version,
            kernel_release=self._kernel_release(),
            user=self._invoking_user(),
            commands=commands,
            packages=self._package_versions(commands, TRACKED_PACKAGES),
        )
        logger.debug(
            "facts distro=%s version=%s gpu=%s cuda=%s commands=%s",
            facts.distro,
            facts.version,
            facts.gpu_present,
            facts.cuda_version,
            ",".join(sorted(facts.commands)),
        )
        return facts

    def _identify_os(self) -> tuple[str, str, str]:
        text = self.executor.read_file(self.os_release)
        if text is None:
            raise FactUnavailable(f"{self.os_release} not found; cannot identify the distribution")
        release = parse_os_release(text)
        distro = release.get("ID", "").lower()
        version = release.get("VERSION_ID", "")
        if not distro or not version:
            raise FactUnavailable(f"{self.os_release} does not declare ID and VERSION_ID")
        family = DISTRO_FAMILIES.get(distro)
        if family is None:
            for like in release.get("ID_LIKE", "").lower().split():
                family = DISTRO_FAMILIES.get(like)
                if family:
                    break
        if family is None:
            raise FactUnavailable(f"Linux distribution '{distro}' is not supported")
        return distro, version, family

    def _gpu_devices(self, commands: frozenset[str]) -> list[str]:
        if "lspci" in commands:
            result = self.executor.run(["lspci"], check=False, mutable=False)
            if result.returncode == 0:
                return [line.strip() for line in result.stdout.splitlines() if "nvidia" in line.lower()]
            logger.warning("lspci failed rc=%s; falling back to sysfs scan", result.returncode)
        return self._scan_sysfs()

    def _scan_sysfs(self) -> list[str]:
        devices: list[str] = []
        if not self.pci_devices.is_dir():
            return devices
        for device in sorted(self.pci_devices.iterdir()):
            vendor = self.executor.read_file(device / "vendor")
            if vendor and vendor.strip().lower() == NVIDIA_PCI_VENDOR:
                devices.append(f"{device.name} NVIDIA Corporation")
        return devices

    def _nvidia_versions(self, commands: frozenset[str]) -> tuple[Optional[str], Optional[str]]:
        if "nvidia-smi" not in commands:
            return None, None
        summary = self.executor.run(["nvidia-smi"], check=False, mutable=False)
        if summary.returncode != 0:
            logger.warning("nvidia-smi failed rc=%s; treating CUDA as absent", summary.returncode)
            return None, None
        cuda_version = extract_cuda_version(summary.stdout)
        query = self.executor.run(
            ["nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"],
            check=False,
            mutable=False,
        )
        driver_version = None
        if query.returncode == 0 and query.stdout.strip():
            driver_version = query.stdout.strip().splitlines()[0].strip()
        return cuda_version, driver_version

    def _kernel_release(self) -> str:
        result = self.executor.run(["uname", "-r"], check=False, mutable=False)
        return result.stdout.strip() if result.returncode == 0 else ""

    def _package_versions(self, commands: frozenset[str], packages: Iterable[str]) -> dict[str, str]:
        if "rpm" not in commands:
            return {}
        versions: dict[str, str] = {}
        for package in packages:
            result = self.executor.run(
                ["rpm", "-q", "--qf", "%{VERSION}", package],
                check=False,
                mutable=False,
            )
            if result.returncode == 0 and result.stdout.strip():
                versions[package] = result.stdout.strip()
        return versions

    def _invoking_user(self) -> Optional[str]:
        if self.user:
            return self.user
        return os.environ.get("SUDO_USER") or os.environ.get("USER") or None
