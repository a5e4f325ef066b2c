"""
Node abstraction and action-labeled edges.

A node runs in three phases: ``prep`` reads the shared context, ``exec``
does the node's work from the prepared value alone, and ``post`` writes
results back and returns an action label. The label picks the next node
from the node's EdgeTable.
"""

import asyncio
import inspect
import warnings
from collections import OrderedDict
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from .errors import ExecutionError, FlowError, node_name_of


# Reserved label of the default edge
DEFAULT_ACTION = ""

# Labels that select the default edge when returned from post
_DEFAULT_ALIASES = (None, DEFAULT_ACTION, "default")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def is_default_action(action: Optional[str]) -> bool:
    return action in _DEFAULT_ALIASES


class EdgeTable:
    """
    Ordered mapping from action label to successor node.

    The default edge lives under the reserved empty label. Resolution is
    asymmetric: an absent label uses the default edge, an explicit label
    only ever matches its own registration.
    """

    def __init__(self, owner: Any = None):
        self._owner = owner
        self._edges: "OrderedDict[str, BaseNode]" = OrderedDict()

    @staticmethod
    def normalize(action: Optional[str]) -> str:
        if is_default_action(action):
            return DEFAULT_ACTION
        if not isinstance(action, str):
            raise TypeError(f"Action label must be a string, got {type(action).__name__}")
        return action

    def register(self, action: Optional[str], node: "BaseNode") -> "BaseNode":
        """Register ``node`` under ``action``; last registration wins."""
        label = self.normalize(action)
        if label in self._edges and self._edges[label] is not node:
            warnings.warn(
                f"Overwriting successor for action {label or 'default'!r} on "
                f"{node_name_of(self._owner)}: "
                f"{node_name_of(self._edges[label])} -> {node_name_of(node)}",
                UserWarning,
                stacklevel=3,
            )
        self._edges[label] = node
        return node

    def resolve(self, action: Optional[str]) -> Optional["BaseNode"]:
        """Successor for ``action``, or None when the run should end."""
        if is_default_action(action):
            return self._edges.get(DEFAULT_ACTION)
        return self._edges.get(action)

    @property
    def default(self) -> Optional["BaseNode"]:
        return self._edges.get(DEFAULT_ACTION)

    def labels(self) -> List[str]:
        return list(self._edges)

    def items(self) -> Iterator[Tuple[str, "BaseNode"]]:
        return iter(self._edges.items())

    def __contains__(self, action: Optional[str]) -> bool:
        return self.normalize(action) in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def __bool__(self) -> bool:
        return bool(self._edges)

    def __repr__(self) -> str:
        edges = ", ".join(
            f"{label or 'default'!r}->{node_name_of(node)}" for label, node in self._edges.items()
        )
        return f"EdgeTable({edges})"


class BaseNode:
    """
    A unit of work with prep/exec/post phases and an edge table.

    Any phase may be a plain method or a coroutine. ``exec`` never receives
    the shared context.
    """

    name: Optional[str] = None

    def __init__(self, name: Optional[str] = None):
        self.name = name or type(self).name or type(self).__name__
        self.successors = EdgeTable(owner=self)

    # ==================== Wiring ====================

    def set_default_successor(self, node: "BaseNode") -> "BaseNode":
        """Successor used when post returns no label."""
        return self.successors.register(DEFAULT_ACTION, node)

    def set_successor(self, action: str, node: "BaseNode") -> "BaseNode":
        """Successor used when post returns exactly ``action``."""
        return self.successors.register(action, node)

    def resolve(self, action: Optional[str]) -> Optional["BaseNode"]:
        return self.successors.resolve(action)

    def next(self, node: "BaseNode", action: Optional[str] = DEFAULT_ACTION) -> "BaseNode":
        """Register a successor and return it, so ``a.next(b).next(c)`` chains."""
        return self.successors.register(action, node)

    def on(self, action: str, node: "BaseNode") -> "BaseNode":
        """Register a labeled successor and return self, so ``.on(...)`` calls chain."""
        self.successors.register(action, node)
        return self

    def __rshift__(self, other: "BaseNode") -> "BaseNode":
        return self.set_default_successor(other)

    def __sub__(self, action: str) -> "_ConditionalTransition":
        if isinstance(action, str):
            return _ConditionalTransition(self, action)
        raise TypeError("Action must be a string")

    # ==================== Phases ====================

    def prep(self, shared: Any) -> Any:
        return None

    def exec(self, prep_res: Any) -> Any:
        return None

    def post(self, shared: Any, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None

    async def _exec(self, prep_res: Any, on_retry=None) -> Tuple[Any, int, bool]:
        """Run the exec phase; returns ``(result, attempts, used_fallback)``."""
        return await maybe_await(self.exec(prep_res)), 1, False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} edges={self.successors.labels()}>"


class _ConditionalTransition:
    def __init__(self, src: BaseNode, action: str):
        self.src, self.action = src, action

    def __rshift__(self, tgt: BaseNode) -> BaseNode:
        return self.src.set_successor(self.action, tgt)


class Node(BaseNode):
    """
    Node with a retry policy on its exec phase.

    Args:
        max_retries: Total number of exec attempts (1 means no retry)
        wait: Seconds to wait before the next attempt
        exponential_backoff: Double the wait after every failed attempt
        max_wait: Upper bound for the wait
        fallback: Value, or ``callable(prep_res, exc)``, used once attempts
            are exhausted. Without one the failure aborts the run.
        name: Display name for logs, events and errors
    """

    def __init__(
        self,
        max_retries: int = 1,
        wait: float = 0.0,
        exponential_backoff: bool = False,
        max_wait: Optional[float] = None,
        fallback: Any = MISSING,
        name: Optional[str] = None,
    ):
        super().__init__(name=name)
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.wait = wait
        self.exponential_backoff = exponential_backoff
        self.max_wait = max_wait
        self.fallback = fallback

    def get_wait_time(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number ``attempt`` (0-based)."""
        if self.wait <= 0:
            return 0.0
        w = self.wait * (2 ** attempt) if self.exponential_backoff else self.wait
        return min(w, self.max_wait) if self.max_wait is not None else w

    def exec_fallback(self, prep_res: Any, exc: Exception) -> Any:
        """Result used when every attempt failed. Re-raises unless a fallback is declared."""
        if self.fallback is MISSING:
            raise exc
        if callable(self.fallback):
            return self.fallback(prep_res, exc)
        return self.fallback

    async def _exec_item(self, item: Any, on_retry=None) -> Tuple[Any, int, bool]:
        """
        Run exec with retries.

        Returns ``(result, attempts, used_fallback)``. Raises ExecutionError
        tagged with the attempt count when the fallback does not recover.
        """
        for attempt in range(self.max_retries):
            try:
                return await maybe_await(self.exec(item)), attempt + 1, False
            except Exception as e:
                if attempt == self.max_retries - 1:
                    try:
                        result = await maybe_await(self.exec_fallback(item, e))
                    except FlowError:
                        raise
                    except Exception as fallback_error:
                        raise ExecutionError(
                            self, cause=fallback_error, attempts=attempt + 1
                        ) from fallback_error
                    return result, attempt + 1, True
                w = self.get_wait_time(attempt)
                if on_retry is not None:
                    on_retry(self, attempt + 1, w, e)
                if w > 0:
                    await asyncio.sleep(w)

    async def _exec(self, prep_res: Any, on_retry=None) -> Tuple[Any, int, bool]:
        return await self._exec_item(prep_res, on_retry)


class BatchNode(Node):
    """
    Node whose exec runs once per item returned by prep.

    Each item gets its own retry budget. The attempt count reported for the
    step is the largest per-item count.
    """

    async def _exec(self, items: Optional[Iterable[Any]], on_retry=None) -> Tuple[List[Any], int, bool]:
        results, attempts, used_fallback = [], 0, False
        for item in (items or []):
            result, item_attempts, item_fallback = await self._exec_item(item, on_retry)
            results.append(result)
            attempts = max(attempts, item_attempts)
            used_fallback = used_fallback or item_fallback
        return results, attempts, used_fallback


class ParallelBatchNode(BatchNode):
    """
    BatchNode that runs items concurrently, keeping result order.

    When an item fails, the items still running are cancelled and awaited
    before the failure propagates, so no exec outlives the step.
    """

    def __init__(self, *args, concurrency_limit: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        if concurrency_limit is not None and concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.concurrency_limit = concurrency_limit

    async def _exec(self, items: Optional[Iterable[Any]], on_retry=None) -> Tuple[List[Any], int, bool]:
        semaphore = asyncio.Semaphore(self.concurrency_limit) if self.concurrency_limit else None

        async def run_item(item):
            if semaphore is None:
                return await self._exec_item(item, on_retry)
            async with semaphore:
                return await self._exec_item(item, on_retry)

        tasks = [asyncio.ensure_future(run_item(i)) for i in (items or [])]
        try:
            outcomes = await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)

        results = [result for result, _, _ in outcomes]
        attempts = max((n for _, n, _ in outcomes), default=0)
        used_fallback = any(fell_back for _, _, fell_back in outcomes)
        return results, attempts, used_fallback
