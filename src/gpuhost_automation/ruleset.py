from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .operations import OPERATION_REGISTRY, Operation
from .operations.exec import shell_check
from .operations.package import PackageOperation
from .operations.repository import RepositoryOperation
from .types import HostFacts, Predicate, Rule

RESERVED_KEYS = {"id", "type", "when", "depends_on", "unless", "verify", "timeout", "description"}

Condition = Callable[[HostFacts], bool]


def parse_condition(text: str) -> Condition:
    """Turn ``gpu_present``, ``has:<cmd>``, ``distro:<id>`` or ``family:<name>``
    (optionally prefixed with ``!``) into a fact predicate."""

    raw = text.strip()
    negate = raw.startswith("!")
    if negate:
        raw = raw[1:].strip()
    kind, sep, value = raw.partition(":")
    if not sep:
        if raw != "gpu_present":
            raise ValueError(f"unknown condition '{text}'")
        check: Condition = lambda facts: facts.gpu_present
    elif kind == "has" and value:
        check = lambda facts: facts.has_command(value)
    elif kind == "distro" and value:
        check = lambda facts: facts.distro == value
    elif kind == "family" and value:
        check = lambda facts: facts.family == value
    else:
        raise ValueError(f"unknown condition '{text}'")
    if negate:
        return lambda facts: not check(facts)
    return check


class RulesetLoader:
    """Loads extra provisioning rules from TOML files."""

    def load(self, path: Path) -> list[Rule]:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{path}: {exc}") from None
        return self.parse(data, str(path))

    def parse(self, data: dict[str, Any], source: str = "<rules>") -> list[Rule]:
        raw_rules = data.get("rules", [])
        if not isinstance(raw_rules, list):
            raise ValueError(f"{source}: 'rules' must be an array of tables")
        return [self._parse_rule(raw, f"{source} rule {index}") for index, raw in enumerate(raw_rules, start=1)]

    def _parse_rule(self, raw: Any, where: str) -> Rule:
        if not isinstance(raw, dict):
            raise ValueError(f"{where} must be a table")
        rule_id = raw.get("id")
        if not rule_id:
            raise ValueError(f"{where} is missing an id")
        where = f"{where} ('{rule_id}')"
        op_type = raw.get("type")
        operation_cls = OPERATION_REGISTRY.get(str(op_type)) if op_type else None
        if operation_cls is None:
            raise ValueError(f"{where} has unknown operation type '{op_type}'")
        spec = {k: v for k, v in raw.items() if k not in RESERVED_KEYS}
        try:
            operation = operation_cls(spec)
            applies = self._conditions(raw.get("when"))
        except ValueError as exc:
            raise ValueError(f"{where}: {exc}") from None

        return Rule(
            id=str(rule_id),
            description=str(raw.get("description", "")),
            applies=applies,
            effect=lambda facts: operation,
            precondition=self._precondition(raw.get("unless"), operation),
            postcondition=self._guard(raw.get("verify")),
            depends_on=tuple(self._string_list(raw.get("depends_on"), where)),
            timeout=self._timeout(raw.get("timeout"), where),
        )

    def _conditions(self, value: Any) -> Optional[Condition]:
        if value is None:
            return None
        items = [value] if isinstance(value, str) else list(value)
        checks = [parse_condition(str(item)) for item in items]
        return lambda facts: all(check(facts) for check in checks)

    def _precondition(self, unless: Any, operation: Operation) -> Optional[Predicate]:
        if unless is not None:
            return self._guard(unless)
        if isinstance(operation, PackageOperation):
            return operation.installed
        if isinstance(operation, RepositoryOperation):
            return operation.present
        return getattr(operation, "satisfied", None)

    @staticmethod
    def _guard(command: Any) -> Optional[Predicate]:
        if command is None:
            return None

        def check(facts: HostFacts, executor) -> bool:
            return shell_check(command, facts, executor)

        return check

    @staticmethod
    def _string_list(value: Any, where: str) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(item) for item in value]
        raise ValueError(f"{where}: depends_on must be a string or list")

    @staticmethod
    def _timeout(value: Any, where: str) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{where}: timeout must be numeric") from None
