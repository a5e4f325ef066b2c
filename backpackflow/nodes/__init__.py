"""
Example node sets built on the core orchestrator.

- Chat: terminal chatbot looping on "continue"
- Research: decide/search/answer agent over Tavily
- Tool agent: MCP tool discovery, selection and execution
- Streaming: chunked replies published as events
- Extraction: resume text to a validated profile, single or batch
"""

from .base import LLMNode
from .chat import ChatNode, build_chat_flow
from .research import (
    Decision,
    SearchAnalysis,
    FinalAnswer,
    DecideNode,
    SearchNode,
    AnswerNode,
    build_research_flow,
)
from .tool_agent import (
    ToolSelection,
    MCPDiscoveryNode,
    ToolSelectionNode,
    ToolExecutionNode,
    ResponseNode,
    build_tool_agent_flow,
)
from .streaming import StreamingChatNode, ScriptedStreamLLM, build_streaming_flow
from .extraction import (
    ResumeProfile,
    ExtractionNode,
    BatchExtractionNode,
    ParallelBatchExtractionNode,
    build_extraction_flow,
)

__all__ = [
    "LLMNode",
    "ChatNode",
    "build_chat_flow",
    "Decision",
    "SearchAnalysis",
    "FinalAnswer",
    "DecideNode",
    "SearchNode",
    "AnswerNode",
    "build_research_flow",
    "ToolSelection",
    "MCPDiscoveryNode",
    "ToolSelectionNode",
    "ToolExecutionNode",
    "ResponseNode",
    "build_tool_agent_flow",
    "StreamingChatNode",
    "ScriptedStreamLLM",
    "build_streaming_flow",
    "ResumeProfile",
    "ExtractionNode",
    "BatchExtractionNode",
    "ParallelBatchExtractionNode",
    "build_extraction_flow",
]
