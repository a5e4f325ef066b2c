"""
BackpackFlow - a small graph-based orchestrator for asynchronous nodes.

Nodes run prep/exec/post phases against one shared context and pick their
successor by returning an action label. The example flows (chatbot, research
agent, MCP tool agent, streaming chat, structured extraction) are built on it.
"""

from .core import (
    DEFAULT_ACTION,
    BaseNode,
    BatchNode,
    CancellationError,
    EdgeTable,
    EventStreamer,
    ExecutionError,
    Flow,
    FlowError,
    Node,
    ParallelBatchNode,
    Phase,
    PostProcessingError,
    PreparationError,
    RunOutcome,
    StreamEventType,
    Termination,
    run,
)

__version__ = "1.0.0"
__author__ = "BackpackFlow Team"
