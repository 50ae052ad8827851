from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional, Sequence

from .errors import CyclicDependency
from .types import Action, HostFacts, Rule

logger = logging.getLogger(__name__)


@dataclass
class ActionGraph:
    """Materialised actions kept in a dependency-respecting order."""

    actions: dict[str, Action] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[Action]:
        return (self.actions[aid] for aid in self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self.actions

    def get(self, action_id: str) -> Optional[Action]:
        return self.actions.get(action_id)

    def dependents(self, action_id: str) -> set[str]:
        """Every action that directly or transitively depends on ``action_id``."""

        found: set[str] = set()
        frontier = [action_id]
        while frontier:
            current = frontier.pop()
            for aid in self.order:
                if aid in found:
                    continue
                if current in self.actions[aid].depends_on:
                    found.add(aid)
                    frontier.append(aid)
        return found


def topological_order(ids: Sequence[str], deps: Mapping[str, Iterable[str]]) -> list[str]:
    """Kahn's algorithm; ties broken by the position of the id in ``ids``."""

    position = {aid: idx for idx, aid in enumerate(ids)}
    remaining: dict[str, set[str]] = {aid: set(deps.get(aid, ())) for aid in ids}
    in_degree: dict[str, int] = {aid: len(remaining[aid]) for aid in ids}

    ready = [aid for aid in ids if in_degree[aid] == 0]
    ordered: list[str] = []
    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for node in ids:
            if current in remaining[node]:
                in_degree[node] -= 1
                if in_degree[node] == 0:
                    ready.append(node)
                    ready.sort(key=position.__getitem__)

    if len(ordered) != len(ids):
        seen = set(ordered)
        raise CyclicDependency(aid for aid in ids if aid not in seen)
    return ordered


class GraphBuilder:
    def build(self, facts: HostFacts, ruleset: Sequence[Rule]) -> ActionGraph:
        declared = self._index(ruleset)
        # Contradictory ordering is a ruleset bug even when facts hide it.
        topological_order(list(declared), {rid: rule.depends_on for rid, rule in declared.items()})
        applicable = [rule for rule in ruleset if rule.applicable(facts)]
        present = {rule.id for rule in applicable}

        actions: dict[str, Action] = {}
        for rule in applicable:
            depends_on = self._resolve(rule.depends_on, declared, present)
            dropped = [dep for dep in rule.depends_on if dep not in present]
            if dropped:
                logger.debug(
                    "rule=%s dropped-deps=%s (not applicable) inherited=%s",
                    rule.id,
                    ",".join(dropped),
                    ",".join(dep for dep in depends_on if dep not in rule.depends_on),
                )
            actions[rule.id] = rule.materialize(facts, depends_on)

        skipped = [rid for rid in declared if rid not in present]
        if skipped:
            logger.debug("rules not applicable: %s", ",".join(skipped))

        ids = list(actions)
        order = topological_order(ids, {aid: action.depends_on for aid, action in actions.items()})
        return ActionGraph(actions=actions, order=order)

    @staticmethod
    def _resolve(depends_on: Sequence[str], declared: Mapping[str, Rule], present: set[str]) -> tuple[str, ...]:
        """Replace dependencies on absent rules with the present rules they reach."""

        resolved: list[str] = []
        seen: set[str] = set()
        pending = list(depends_on)
        while pending:
            dep = pending.pop(0)
            if dep in seen:
                continue
            seen.add(dep)
            if dep in present:
                resolved.append(dep)
            else:
                pending.extend(declared[dep].depends_on)
        return tuple(resolved)

    @staticmethod
    def _index(ruleset: Sequence[Rule]) -> dict[str, Rule]:
        index: dict[str, Rule] = {}
        for rule in ruleset:
            if rule.id in index:
                raise ValueError(f"duplicate rule id '{rule.id}'")
            index[rule.id] = rule
        for rule in ruleset:
            for dep in rule.depends_on:
                if dep not in index:
                    raise ValueError(f"rule '{rule.id}' depends on unknown rule '{dep}'")
        return index


def build(facts: HostFacts, ruleset: Sequence[Rule]) -> ActionGraph:
    return GraphBuilder().build(facts, ruleset)
