from __future__ import annotations

from typing import Iterable


class ProvisionError(Exception):
    """Base class for provisioning failures."""


class FactUnavailable(ProvisionError):
    """Raised when the host cannot be identified well enough to provision."""


class MalformedVersion(ProvisionError, ValueError):
    def __init__(self, text: object):
        super().__init__(f"malformed version '{text}'")
        self.text = text


class CyclicDependency(ProvisionError):
    def __init__(self, nodes: Iterable[str]):
        self.nodes = list(nodes)
        super().__init__(f"cyclic dependency between: {', '.join(self.nodes)}")


class ActionFailed(ProvisionError):
    """An action effect could not reach its desired state."""

    def __init__(self, reason: str, diagnostic: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.diagnostic = diagnostic


class ActionTimeout(ActionFailed):
    pass


class ConfigIOError(ActionFailed):
    pass
