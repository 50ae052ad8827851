"""Declarative provisioning for GPU container hosts."""

from .facts import FactCollector
from .graph import build
from .patcher import patch
from .runner import ActionRunner
from .versions import meets, parse_version

__all__ = ["FactCollector", "ActionRunner", "build", "patch", "meets", "parse_version"]
