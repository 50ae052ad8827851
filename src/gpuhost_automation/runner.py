from __future__ import annotations

import logging
import subprocess
import threading
from typing import Callable, Optional

from .errors import ActionFailed, ActionTimeout
from .executors import CommandResult, Executor
from .graph import ActionGraph
from .operations.exec import summarize_output
from .types import Action, ActionResult, ActionStatus, HostFacts, PlannedAction

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Action], None]


class ActionRunner:
    """Walks an action graph in order, skipping work that is already done.

    Failures stay inside their subgraph: dependents of a failed action are
    marked failed without running, while unrelated actions carry on.
    """

    def __init__(
        self,
        facts: HostFacts,
        executor: Executor,
        *,
        force: bool = False,
        default_timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.facts = facts
        self.executor = executor
        self.force = force
        self.default_timeout = default_timeout
        self.progress_callback = progress_callback
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop before the next action; the one in flight runs to completion."""

        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, graph: ActionGraph) -> dict[str, ActionResult]:
        results: dict[str, ActionResult] = {}
        blocked: set[str] = set()
        for action in graph:
            if self.cancelled:
                result = ActionResult(action.id, ActionStatus.FAILED, "cancelled")
            elif action.id in blocked:
                failed_dep = next(dep for dep in action.depends_on if results[dep].failed)
                result = ActionResult(action.id, ActionStatus.FAILED, f"dependency '{failed_dep}' failed")
            else:
                if self.progress_callback:
                    self.progress_callback(action)
                result = self._execute(action)
                if result.failed:
                    dependents = graph.dependents(action.id)
                    if dependents:
                        logger.warning(
                            "action=%s failed; not running dependents %s",
                            action.id,
                            ",".join(aid for aid in graph.order if aid in dependents),
                        )
                    blocked |= dependents
            logger.debug("action=%s status=%s details=%s", action.id, result.status.value, result.details)
            results[action.id] = result
        return results

    def plan(self, graph: ActionGraph) -> list[PlannedAction]:
        """Evaluate preconditions only; effects are never invoked."""

        planned: list[PlannedAction] = []
        for action in graph:
            description = self._describe(action)
            try:
                satisfied = self._precondition_holds(action)
            except Exception as exc:  # noqa: BLE001
                logger.debug("plan action=%s precondition error: %s", action.id, exc)
                planned.append(PlannedAction(action.id, True, description, f"precondition error: {exc}"))
                continue
            details = "already satisfied" if satisfied else ""
            planned.append(PlannedAction(action.id, not satisfied, description, details))
        return planned

    def _execute(self, action: Action) -> ActionResult:
        timeout = action.timeout if action.timeout is not None else self.default_timeout
        try:
            with self.executor.time_limit(timeout):
                if self._precondition_holds(action):
                    return ActionResult(action.id, ActionStatus.SKIPPED, "already satisfied")
                logger.info("Running %s", action.id)
                detail = action.effect.apply(self.facts, self.executor)
                if action.postcondition is not None and not action.postcondition(self.facts, self.executor):
                    return ActionResult(action.id, ActionStatus.FAILED, "postcondition not met", detail or "")
        except ActionTimeout as exc:
            logger.error("action=%s timed out: %s", action.id, exc.reason)
            return ActionResult(action.id, ActionStatus.FAILED, f"timeout: {exc.reason}", exc.diagnostic)
        except ActionFailed as exc:
            logger.error("action=%s failed: %s", action.id, exc.reason)
            return ActionResult(action.id, ActionStatus.FAILED, exc.reason, exc.diagnostic)
        except subprocess.CalledProcessError as exc:
            command = " ".join(str(part) for part in exc.cmd)
            logger.error("action=%s command failed rc=%s: %s", action.id, exc.returncode, command)
            diagnostic = summarize_output(
                CommandResult(list(exc.cmd), exc.stdout or "", exc.stderr or "", exc.returncode)
            )
            return ActionResult(
                action.id,
                ActionStatus.FAILED,
                f"rc={exc.returncode} running {command}",
                diagnostic,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("action=%s failed: %s", action.id, exc, exc_info=True)
            return ActionResult(action.id, ActionStatus.FAILED, str(exc) or type(exc).__name__)
        return ActionResult(action.id, ActionStatus.SUCCEEDED, detail or "done")

    def _precondition_holds(self, action: Action) -> bool:
        if self.force or action.precondition is None:
            return False
        return bool(action.precondition(self.facts, self.executor))

    def _describe(self, action: Action) -> str:
        try:
            effect = action.effect.describe(self.facts)
        except Exception as exc:  # noqa: BLE001
            effect = f"<cannot describe: {exc}>"
        if action.description:
            return f"{action.description} ({effect})"
        return effect
