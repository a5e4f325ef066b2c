"""
Error taxonomy for flow runs.

Every fatal failure of a run surfaces as a FlowError naming the node and the
phase that failed. The original exception is chained as ``__cause__`` and
kept on ``cause``.
"""

from enum import Enum
from typing import Any, Optional


class Phase(str, Enum):
    """Node lifecycle phase."""
    PREP = "prep"
    EXEC = "exec"
    POST = "post"


def node_name_of(node: Any) -> str:
    """Display name for a node, falling back to its class name."""
    if node is None:
        return "<none>"
    return getattr(node, "name", None) or type(node).__name__


class FlowError(Exception):
    """Base class for structured run failures."""

    phase: Optional[Phase] = None

    def __init__(
        self,
        node: Any,
        cause: Optional[BaseException] = None,
        attempts: int = 0,
        message: Optional[str] = None,
    ):
        self.node = node
        self.node_name = node_name_of(node)
        self.cause = cause
        self.attempts = attempts
        super().__init__(message or self._default_message())

    def _default_message(self) -> str:
        phase = self.phase.value if self.phase else "run"
        text = f"{type(self).__name__} in {self.node_name}.{phase}"
        if self.cause is not None:
            text += f": {type(self.cause).__name__}: {self.cause}"
        return text

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "node": self.node_name,
            "phase": self.phase.value if self.phase else None,
            "attempts": self.attempts,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class PreparationError(FlowError):
    """A node's prep phase failed. Never retried."""
    phase = Phase.PREP


class ExecutionError(FlowError):
    """A node's exec phase failed after its retry budget and had no fallback."""
    phase = Phase.EXEC

    def _default_message(self) -> str:
        text = (
            f"{type(self).__name__} in {self.node_name}.exec "
            f"after {self.attempts} attempt{'s' if self.attempts != 1 else ''}"
        )
        if self.cause is not None:
            text += f": {type(self.cause).__name__}: {self.cause}"
        return text


class PostProcessingError(FlowError):
    """A node's post phase failed. The shared context may be partially mutated."""
    phase = Phase.POST


class CancellationError(FlowError):
    """The run observed its cancellation signal between steps."""

    def _default_message(self) -> str:
        return f"Run cancelled before {self.node_name}"
