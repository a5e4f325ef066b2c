"""
Core module containing configuration, the node/flow orchestrator, events and shared state.
"""

from .config import Config, settings
from .errors import (
    Phase,
    FlowError,
    PreparationError,
    ExecutionError,
    PostProcessingError,
    CancellationError,
)
from .node import DEFAULT_ACTION, MISSING, EdgeTable, BaseNode, Node, BatchNode, ParallelBatchNode
from .flow import Flow, RunOutcome, Termination, run
from .events import EventStreamer, StreamEvent, StreamEventType

__all__ = [
    "Config",
    "settings",
    "Phase",
    "FlowError",
    "PreparationError",
    "ExecutionError",
    "PostProcessingError",
    "CancellationError",
    "DEFAULT_ACTION",
    "MISSING",
    "EdgeTable",
    "BaseNode",
    "Node",
    "BatchNode",
    "ParallelBatchNode",
    "Flow",
    "RunOutcome",
    "Termination",
    "run",
    "EventStreamer",
    "StreamEvent",
    "StreamEventType",
]
