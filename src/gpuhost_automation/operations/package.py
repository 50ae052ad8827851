from __future__ import annotations

from typing import Iterable, Optional
import logging
import shutil

from .base import Operation, render, string_list
from ..executors import Executor
from ..types import HostFacts

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install packages using the detected package manager."""

    name = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages")
        self.packages = string_list(packages or [], "package names")
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.preferred_manager = spec.get("manager")

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        manager = PackageManagerFactory.create(self.preferred_manager)
        packages = self.rendered(facts)
        logger.debug("package-manager=%s packages=%s", manager.name, packages)
        _, details = manager.ensure_present(executor, packages)
        return f"manager={manager.name} {details}"

    def describe(self, facts: HostFacts) -> str:
        return f"install {' '.join(self.rendered(facts))}"

    def rendered(self, facts: HostFacts) -> list[str]:
        return [render(pkg, facts) for pkg in self.packages]

    def installed(self, facts: HostFacts, executor: Executor) -> bool:
        manager = PackageManagerFactory.create(self.preferred_manager)
        return all(manager.is_installed(executor, pkg) for pkg in self.rendered(facts))


class PackageManagerFactory:
    _MANAGERS = [
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object] = None) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            if shutil.which(binary):
                return factory()
        raise RuntimeError("No supported package manager found on PATH")


class PackageManager:
    name = "generic"

    def ensure_present(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError

    def add_repo(self, executor: Executor, url: str) -> None:
        raise NotImplementedError

    def expire_cache(self, executor: Executor) -> None:
        raise NotImplementedError


class DnfPackageManager(PackageManager):
    name = "dnf"
    repo_helper = "dnf-plugins-core"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["dnf", "install", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0

    def add_repo(self, executor: Executor, url: str) -> None:
        executor.run(["dnf", "config-manager", f"--add-repo={url}"])

    def expire_cache(self, executor: Executor) -> None:
        executor.run(["dnf", "clean", "expire-cache"])


class YumPackageManager(DnfPackageManager):
    name = "yum"
    repo_helper = "yum-utils"

    def install(self, executor: Executor, packages: list[str]) -> None:  # type: ignore[override]
        executor.run(["yum", "install", "-y", *packages])

    def add_repo(self, executor: Executor, url: str) -> None:  # type: ignore[override]
        executor.run(["yum-config-manager", f"--add-repo={url}"])

    def expire_cache(self, executor: Executor) -> None:  # type: ignore[override]
        executor.run(["yum", "clean", "expire-cache"])
