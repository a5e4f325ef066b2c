"""
Flow driver.

Walks a node graph from an entry node: runs the current node's phases,
resolves the returned action through the node's EdgeTable and continues
with the successor until none resolves. Each step is one iteration of a
flat loop, so cyclic graphs (chat loops, agent loops) run in bounded
memory however long they go.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import (
    CancellationError,
    ExecutionError,
    FlowError,
    PostProcessingError,
    PreparationError,
)
from .events import EventStreamer, StreamEventType
from .node import BaseNode, is_default_action, maybe_await
from ..utils.logger import get_logger


logger = get_logger()


def _check_action(node: BaseNode, action: Any, attempts: int = 0) -> Optional[str]:
    """Reject post results that cannot name an edge."""
    if action is None or isinstance(action, str):
        return action
    cause = TypeError(
        f"post must return a string action or None, got {type(action).__name__}: {action!r}"
    )
    raise PostProcessingError(node, cause=cause, attempts=attempts) from cause


class Termination(str, Enum):
    """How a run ended."""
    NO_SUCCESSOR = "no_successor"  # absent action, no default edge
    DEAD_END = "dead_end"          # explicit action with no matching edge
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunOutcome:
    """Summary of one run. Holds no per-step history."""
    result: Any = None
    steps: int = 0
    last_node: Optional[BaseNode] = None
    last_action: Optional[str] = None
    last_attempts: int = 0
    termination: Optional[Termination] = None
    error: Optional[FlowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "steps": self.steps,
            "last_node": self.last_node.name if self.last_node else None,
            "last_action": self.last_action,
            "last_attempts": self.last_attempts,
            "termination": self.termination.value if self.termination else None,
            "error": self.error.to_dict() if self.error else None,
        }


class Flow(BaseNode):
    """
    Driver for a node graph.

    A Flow is itself a node: placed inside another flow it runs its own
    graph against the same shared context, and its default ``post``
    returns the inner result as its action.

    Args:
        start: Entry node
        name: Display name, also the event namespace
        streamer: Optional EventStreamer receiving lifecycle events
    """

    def __init__(
        self,
        start: Optional[BaseNode] = None,
        name: Optional[str] = None,
        streamer: Optional[EventStreamer] = None,
    ):
        super().__init__(name=name)
        self.start_node = start
        self.streamer = streamer

    def start(self, start: BaseNode) -> BaseNode:
        """Set the entry node and return it, for chaining."""
        self.start_node = start
        return start

    # ==================== Events ====================

    def _emit(self, event: str, node: Optional[BaseNode] = None, event_type=StreamEventType.PROGRESS, **data):
        if self.streamer is None:
            return
        content = {"event": event, **data}
        if node is not None:
            content["node"] = node.name
        self.streamer.emit(
            self.name,
            event_type,
            content,
            node_id=node.name if node is not None else None,
        )

    def _on_retry(self, node: BaseNode, attempt: int, wait: float, error: Exception) -> None:
        logger.with_node("Flow").warning(
            f"{node.name}.exec attempt {attempt}/{getattr(node, 'max_retries', 1)} "
            f"failed ({type(error).__name__}: {error}); retrying in {wait:.2f}s"
        )
        self._emit("retry", node, attempt=attempt, wait=wait, error=str(error))

    # ==================== Step ====================

    async def _run_node(self, node: BaseNode, shared: Any, cancel_event: Optional[asyncio.Event]):
        """Run one node's phases; returns ``(action, attempts)``."""
        if isinstance(node, Flow):
            return await node._run_as_node(shared, cancel_event), 1

        try:
            prep_res = await maybe_await(node.prep(shared))
        except FlowError:
            raise
        except Exception as e:
            raise PreparationError(node, cause=e) from e

        try:
            exec_res, attempts, used_fallback = await node._exec(prep_res, self._on_retry)
        except FlowError:
            raise
        except Exception as e:
            raise ExecutionError(node, cause=e, attempts=1) from e

        if used_fallback:
            logger.with_node("Flow").warning(
                f"{node.name}.exec exhausted {attempts} attempts; using fallback"
            )
            self._emit("fallback", node, attempts=attempts)

        try:
            action = await maybe_await(node.post(shared, prep_res, exec_res))
        except FlowError:
            raise
        except Exception as e:
            raise PostProcessingError(node, cause=e, attempts=attempts) from e

        return _check_action(node, action, attempts), attempts

    async def _run_as_node(self, shared: Any, cancel_event: Optional[asyncio.Event]):
        try:
            prep_res = await maybe_await(self.prep(shared))
        except FlowError:
            raise
        except Exception as e:
            raise PreparationError(self, cause=e) from e

        inner = await self._orchestrate(shared, cancel_event)

        try:
            action = await maybe_await(self.post(shared, prep_res, inner.result))
        except FlowError:
            raise
        except Exception as e:
            raise PostProcessingError(self, cause=e) from e

        return _check_action(self, action)

    # ==================== Loop ====================

    async def _orchestrate(
        self,
        shared: Any,
        cancel_event: Optional[asyncio.Event] = None,
        outcome: Optional[RunOutcome] = None,
    ) -> RunOutcome:
        if self.start_node is None:
            raise ValueError(f"Flow {self.name!r} has no start node")

        outcome = outcome or RunOutcome()
        current: Optional[BaseNode] = self.start_node

        while current is not None:
            if cancel_event is not None and cancel_event.is_set():
                outcome.termination = Termination.CANCELLED
                raise CancellationError(current, attempts=0)

            self._emit("node_start", current, step=outcome.steps + 1)
            logger.with_node("Flow").debug(f"Step {outcome.steps + 1}: {current.name}")

            try:
                action, attempts = await self._run_node(current, shared, cancel_event)
            except CancellationError:
                outcome.termination = Termination.CANCELLED
                raise
            except FlowError:
                outcome.termination = Termination.FAILED
                raise

            outcome.steps += 1
            outcome.last_node = current
            outcome.last_action = action
            outcome.last_attempts = attempts
            outcome.result = action
            self._emit("node_end", current, action=action, attempts=attempts)

            successor = current.resolve(action)
            if successor is None:
                if is_default_action(action):
                    outcome.termination = Termination.NO_SUCCESSOR
                else:
                    outcome.termination = Termination.DEAD_END
                    logger.with_node("Flow").warning(
                        f"Flow ends: action {action!r} not found in "
                        f"{[label or 'default' for label in current.successors.labels()]} "
                        f"of {current.name}"
                    )
                    self._emit("dead_end", current, action=action)
            else:
                self._emit(
                    "transition",
                    current,
                    action=action if not is_default_action(action) else "default",
                    to=successor.name,
                )
            current = successor

        return outcome

    # ==================== Public API ====================

    async def run_outcome(self, shared: Any, cancel_event: Optional[asyncio.Event] = None) -> RunOutcome:
        """
        Run the graph and summarize it.

        Never raises FlowError: a failure is stored on ``outcome.error``
        with the shared context left as mutated up to that point.
        """
        outcome = RunOutcome()
        self._emit("flow_start", event_type=StreamEventType.METADATA)
        try:
            await self._orchestrate(shared, cancel_event, outcome)
        except FlowError as e:
            outcome.error = e
            outcome.result = None
            if isinstance(e, CancellationError):
                logger.with_node("Flow").info(f"{self.name} cancelled after {outcome.steps} steps")
            else:
                logger.with_node("Flow").error(f"{self.name} failed after {outcome.steps} steps: {e}")
            self._emit("error", event_type=StreamEventType.ERROR, failure=e.to_dict(), steps=outcome.steps)
            return outcome

        self._emit(
            "flow_end",
            event_type=StreamEventType.FINAL,
            steps=outcome.steps,
            termination=outcome.termination.value,
        )
        return outcome

    async def run(self, shared: Any, cancel_event: Optional[asyncio.Event] = None) -> Any:
        """
        Run the graph to completion.

        Returns:
            The post value of the last node executed

        Raises:
            PreparationError, ExecutionError, PostProcessingError,
            CancellationError
        """
        if self.successors:
            logger.with_node("Flow").warning(
                f"{self.name} has successors that run() will not follow; nest it in another Flow"
            )
        outcome = await self.run_outcome(shared, cancel_event)
        if outcome.error is not None:
            raise outcome.error
        return outcome.result

    def post(self, shared: Any, prep_res: Any, exec_res: Any) -> Optional[str]:
        return exec_res


async def run(
    entry: BaseNode,
    shared: Any,
    cancel_event: Optional[asyncio.Event] = None,
    streamer: Optional[EventStreamer] = None,
) -> RunOutcome:
    """Run a graph from ``entry`` against ``shared`` and return its outcome."""
    if isinstance(entry, Flow):
        flow = entry
        if streamer is not None:
            flow.streamer = streamer
    else:
        flow = Flow(entry, streamer=streamer)
    return await flow.run_outcome(shared, cancel_event)
