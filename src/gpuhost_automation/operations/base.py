from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import jinja2

from ..executors import Executor
from ..types import HostFacts

_ENV = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)


def render(value: str, facts: HostFacts) -> str:
    """Render ``{{ fact }}`` references in ``value`` against the host facts."""

    if "{" not in value:
        return value
    try:
        return _ENV.from_string(value).render(**facts.template_context())
    except jinja2.UndefinedError as exc:
        raise ValueError(f"cannot render '{value}': {exc.message}") from exc


class Operation(ABC):
    """Shared surface for the effects an action performs."""

    name = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def apply(self, facts: HostFacts, executor: Executor) -> str:
        """Perform the effect and return a short detail string."""

    def describe(self, facts: HostFacts) -> str:
        return self.name


class OperationChain(Operation):
    """Run several operations as one effect, stopping at the first error."""

    name = "chain"

    def __init__(self, operations: Sequence[Operation]):
        super().__init__({})
        if not operations:
            raise ValueError("chain requires at least one operation")
        self.operations = list(operations)

    def apply(self, facts: HostFacts, executor: Executor) -> str:
        details = [operation.apply(facts, executor) for operation in self.operations]
        return "; ".join(detail for detail in details if detail)

    def describe(self, facts: HostFacts) -> str:
        return "; ".join(operation.describe(facts) for operation in self.operations)


def coerce_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def string_list(value: Any, what: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError(f"{what} must be a string or list of strings")
