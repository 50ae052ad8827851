from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .executors import Executor
    from .operations.base import Operation


@dataclass(frozen=True)
class HostFacts:
    distro: str
    version: str
    family: str = ""
    gpu_present: bool = False
    gpu_devices: tuple[str, ...] = ()
    cuda_version: Optional[str] = None
    driver_version: Optional[str] = None
    kernel_release: str = ""
    user: Optional[str] = None
    commands: frozenset[str] = frozenset()
    packages: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "gpu_devices", tuple(self.gpu_devices))
        object.__setattr__(self, "commands", frozenset(self.commands))
        object.__setattr__(self, "packages", MappingProxyType(dict(self.packages)))

    @property
    def major_version(self) -> str:
        return self.version.split(".", 1)[0]

    def has_command(self, name: str) -> bool:
        return name in self.commands

    def template_context(self) -> dict[str, Any]:
        return {
            "distro": self.distro,
            "family": self.family,
            "version": self.version,
            "major_version": self.major_version,
            "gpu_present": self.gpu_present,
            "cuda_version": self.cuda_version,
            "driver_version": self.driver_version,
            "kernel_release": self.kernel_release,
            "user": self.user,
            "packages": dict(self.packages),
        }


Predicate = Callable[[HostFacts, "Executor"], bool]


class ActionStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Action:
    """One materialised provisioning step.

    ``precondition`` answers "is the desired state already in place?"; a true
    result lets the runner skip the effect entirely.
    """

    id: str
    effect: "Operation"
    precondition: Optional[Predicate] = None
    postcondition: Optional[Predicate] = None
    depends_on: tuple[str, ...] = ()
    description: str = ""
    timeout: Optional[float] = None


@dataclass(frozen=True)
class Rule:
    id: str
    effect: Callable[[HostFacts], "Operation"]
    applies: Optional[Callable[[HostFacts], bool]] = None
    precondition: Optional[Predicate] = None
    postcondition: Optional[Predicate] = None
    depends_on: tuple[str, ...] = ()
    description: str = ""
    timeout: Optional[float] = None

    def applicable(self, facts: HostFacts) -> bool:
        return True if self.applies is None else bool(self.applies(facts))

    def materialize(self, facts: HostFacts, depends_on: tuple[str, ...]) -> Action:
        return Action(
            id=self.id,
            effect=self.effect(facts),
            precondition=self.precondition,
            postcondition=self.postcondition,
            depends_on=depends_on,
            description=self.description,
            timeout=self.timeout,
        )


@dataclass
class ActionResult:
    action: str
    status: ActionStatus
    details: str = ""
    diagnostic: str = ""

    @property
    def failed(self) -> bool:
        return self.status is ActionStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status is ActionStatus.SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.status is ActionStatus.SUCCEEDED


@dataclass
class PlannedAction:
    action: str
    would_run: bool
    description: str
    details: str = ""
