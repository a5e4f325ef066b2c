"""
Shared context definitions for the example flows.

The driver treats the shared context as opaque; these TypedDicts are the
concrete shapes each example's nodes agree on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict
from uuid import uuid4

from langchain_core.messages import BaseMessage, HumanMessage


# ==================== Enums ====================

class ChatAction(str, Enum):
    """Actions returned by the chat and streaming nodes."""
    CONTINUE = "continue"


class ResearchAction(str, Enum):
    """Actions returned by the research agent nodes."""
    SEARCH = "search"
    ANSWER = "answer"
    DECIDE = "decide"


class ToolAgentAction(str, Enum):
    """Actions returned by the tool agent nodes."""
    SELECT = "select"
    EXECUTE = "execute"
    RESPOND = "respond"


EXIT_COMMANDS = ("exit", "quit", "/quit", "bye")


# ==================== Data Classes ====================

@dataclass
class SearchResult:
    """A result from external web search."""
    title: str
    url: str
    content: str
    domain: str
    score: Optional[float] = None
    published_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "domain": self.domain,
            "score": self.score,
            "published_date": self.published_date
        }


@dataclass
class MCPTool:
    """A tool advertised by a connected MCP server."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    server_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "server_id": self.server_id
        }


@dataclass
class ToolRequest:
    """A tool call chosen by the selection node."""
    tool_name: str
    arguments: Dict[str, Any]
    server_id: str


@dataclass
class ToolResult:
    """Outcome of one tool call."""
    success: bool
    content: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "error": self.error,
            "execution_time": self.execution_time
        }


@dataclass
class StreamResult:
    """What one streamed reply produced."""
    content: str
    interrupted: bool
    chunk_count: int
    duration: float
    finished_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def char_count(self) -> int:
        return len(self.content)


# ==================== Shared Contexts ====================

class ChatState(TypedDict, total=False):
    """Shared context of the terminal chatbot."""
    messages: List[BaseMessage]
    session_id: str
    turns: int
    started_at: str


class ResearchState(TypedDict, total=False):
    """Shared context of the research agent."""
    question: str
    search_history: List[Dict[str, Any]]  # Serialized SearchAnalysis
    all_findings: List[str]
    search_count: int
    max_searches: int
    last_decision: Optional[Dict[str, Any]]  # Serialized Decision
    final_answer: Optional[Dict[str, Any]]  # Serialized FinalAnswer


class ToolAgentState(TypedDict, total=False):
    """Shared context of the MCP tool agent."""
    messages: List[BaseMessage]
    available_tools: List[MCPTool]
    connected_servers: List[str]
    pending_tool: Optional[ToolRequest]
    last_tool_request: Optional[ToolRequest]
    last_tool_result: Optional[ToolResult]
    final_response: str


class StreamState(TypedDict, total=False):
    """Shared context of the streaming chatbot."""
    messages: List[BaseMessage]
    interrupted: bool
    last_result: Optional[StreamResult]


class ExtractionState(TypedDict, total=False):
    """Shared context of the structured extraction demo."""
    resume_text: str
    resumes: List[Dict[str, str]]  # {"id": ..., "text": ...}
    extracted_profile: Optional[Dict[str, Any]]
    extracted_profiles: List[Dict[str, Any]]


# ==================== Factories ====================

def create_chat_state(session_id: Optional[str] = None) -> ChatState:
    """Create an empty chat context."""
    return ChatState(
        messages=[],
        session_id=session_id or str(uuid4()),
        turns=0,
        started_at=datetime.utcnow().isoformat(),
    )


def create_research_state(question: str, max_searches: int = 3) -> ResearchState:
    """
    Create initial state for a research run.

    Args:
        question: The question to research
        max_searches: Search budget before the agent must answer

    Returns:
        ResearchState: Initialized state dictionary
    """
    return ResearchState(
        question=question,
        search_history=[],
        all_findings=[],
        search_count=0,
        max_searches=max_searches,
        last_decision=None,
        final_answer=None,
    )


def create_tool_agent_state(user_message: str) -> ToolAgentState:
    return ToolAgentState(
        messages=[HumanMessage(content=user_message)],
        available_tools=[],
        connected_servers=[],
        pending_tool=None,
        last_tool_request=None,
        last_tool_result=None,
        final_response="",
    )


def create_stream_state() -> StreamState:
    return StreamState(messages=[], interrupted=False, last_result=None)


def create_extraction_state(
    resume_text: str = "",
    resumes: Optional[List[Dict[str, str]]] = None,
) -> ExtractionState:
    return ExtractionState(
        resume_text=resume_text,
        resumes=list(resumes or []),
        extracted_profile=None,
        extracted_profiles=[],
    )


# ==================== State Helper Functions ====================

def is_exit_command(text: Optional[str]) -> bool:
    """True when user input asks to end a conversation."""
    return text is not None and text.strip().lower() in EXIT_COMMANDS


def can_search_again(state: ResearchState) -> bool:
    """Check whether the research agent still has search budget."""
    return state.get("search_count", 0) < state.get("max_searches", 3)


def format_findings(state: ResearchState) -> str:
    """Render collected findings as context for the next LLM call."""
    findings = state.get("all_findings", [])
    if not findings:
        return "No previous research conducted yet."
    return "Previous research findings:\n" + "\n".join(f"- {f}" for f in findings)
