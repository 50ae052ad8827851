from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import urlparse
import logging

from .base import Operation, render, string_list
from .package import PackageManagerFactory
from ..executors import Executor
from ..types import HostFacts

logger = logging.getLogger(__name__)

REPOS_DIR = Path("/etc/yum.repos.d")


class RepositoryOperation(Operation):
    """Register a yum/dnf repository from a published ``.repo`` URL."""

    name = "repository"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_url = spec.get("url")
        if not raw_url:
            raise ValueError("repository operation requires a url")
        self.url = str(raw_url)
        self.prerequisites = string_list(spec.get("prerequisites") or [], "repository prerequisites")
        self.repos_dir = Path(str(spec.get("repos_dir", REPOS_DIR)))
        self.preferred_manager = spec.get("manager")

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        url = render(self.url, facts)
        manager = PackageManagerFactory.create(self.preferred_manager)
        prerequisites = [render(pkg, facts) for pkg in self.prerequisites]
        prerequisites.append(manager.repo_helper)
        manager.ensure_present(executor, prerequisites)
        if self.repo_file(facts).exists():
            logger.debug("repo file for %s already present", url)
            return "repo-present"
        logger.info("Adding repository %s", url)
        manager.add_repo(executor, url)
        manager.expire_cache(executor)
        return f"added-repo={self.repo_file(facts).name}"

    def describe(self, facts: HostFacts) -> str:
        return f"add repository {render(self.url, facts)}"

    def repo_file(self, facts: HostFacts) -> Path:
        name = Path(urlparse(render(self.url, facts)).path).name
        return self.repos_dir / name

    def present(self, facts: HostFacts, executor: Executor) -> bool:  # noqa: ARG002
        return self.repo_file(facts).exists()
