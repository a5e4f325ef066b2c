"""
Test configuration and fixtures.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add the project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables
os.environ.setdefault("BACKPACKFLOW_GEMINI_API_KEY", "test_key")
os.environ.setdefault("BACKPACKFLOW_TAVILY_API_KEY", "test_key")
os.environ.setdefault("BACKPACKFLOW_NODE_MAX_RETRIES", "2")
os.environ.setdefault("BACKPACKFLOW_NODE_RETRY_WAIT", "0")
os.environ.setdefault("BACKPACKFLOW_LOG_LEVEL", "DEBUG")

from backpackflow.core.node import maybe_await  # noqa: E402
from backpackflow.core.state import MCPTool, SearchResult, ToolResult  # noqa: E402


# ==================== Fake Collaborators ====================

class FakeLLM:
    """
    Scripted stand-in for GeminiLLM.

    ``structured`` pops the next queued value for the requested schema; an
    exception in the queue is raised instead of returned.
    """

    def __init__(
        self,
        replies: Optional[List[Any]] = None,
        structured: Optional[Dict[type, List[Any]]] = None,
        chunks: Optional[List[str]] = None,
    ):
        self.replies = list(replies or [])
        self.structured_queue = {k: list(v) for k, v in (structured or {}).items()}
        self.chunks = list(chunks or [])
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def _next(queue: List[Any]) -> Any:
        value = queue.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def complete(self, prompt, **kwargs) -> str:
        self.calls.append({"method": "complete", "prompt": prompt, **kwargs})
        return self._next(self.replies)

    async def structured(self, prompt, schema, **kwargs):
        self.calls.append({"method": "structured", "schema": schema, "prompt": prompt, **kwargs})
        return self._next(self.structured_queue[schema])

    async def stream(self, prompt, **kwargs):
        self.calls.append({"method": "stream", "prompt": prompt, **kwargs})
        for chunk in self.chunks:
            yield chunk


class FakeSearchTool:
    """Returns the same results for every query and records the queries."""

    def __init__(self, results: Optional[List[SearchResult]] = None):
        self.results = list(results or [])
        self.queries: List[str] = []

    async def search(self, query: str, max_results: Optional[int] = None) -> List[SearchResult]:
        self.queries.append(query)
        return self.results


class FakeMCPManager:
    """In-memory MCP server manager with fixed tools."""

    def __init__(self, tools: Optional[List[MCPTool]] = None, result: Optional[ToolResult] = None):
        self.tools = list(tools or [])
        self.result = result or ToolResult(success=True, content="ok")
        self.connected: List[str] = []
        self.requests = []

    async def connect_to_server(self, config, server_id: str) -> None:
        self.connected.append(server_id)

    async def discover_tools(self) -> List[MCPTool]:
        return [
            MCPTool(t.name, t.description, t.input_schema, self.connected[0])
            for t in self.tools
        ]

    async def execute_tool(self, request) -> ToolResult:
        self.requests.append(request)
        return self.result


class ScriptedInput:
    """Input source that returns queued lines, then None."""

    def __init__(self, lines: List[str]):
        self.lines = list(lines)
        self.prompts = 0

    def __call__(self) -> Optional[str]:
        self.prompts += 1
        return self.lines.pop(0) if self.lines else None


# ==================== Fixtures ====================

@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def sample_search_results():
    """Sample web search results."""
    return [
        SearchResult(
            title="Python 3.13 released",
            url="https://www.python.org/downloads/release/python-3130/",
            content="Python 3.13 ships a free-threaded build and a new REPL.",
            domain="python.org",
            score=0.92,
        ),
        SearchResult(
            title="What's new in Python 3.13",
            url="https://docs.python.org/3/whatsnew/3.13.html",
            content="An experimental JIT compiler and improved error messages.",
            domain="docs.python.org",
            score=0.88,
        ),
    ]


@pytest.fixture
def sample_tools():
    """Tools of a filesystem MCP server."""
    return [
        MCPTool(
            name="list_directory",
            description="List files in a directory",
            input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
            server_id="",
        ),
        MCPTool(
            name="read_file",
            description="Read a text file",
            input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
            server_id="",
        ),
    ]


def guard_exec(node, shared):
    """Wrap ``node.exec`` so the test fails if it ever receives ``shared``."""
    original = node.exec

    async def guarded(prep_res):
        assert prep_res is not shared, f"{node.name}.exec received the shared context"
        return await maybe_await(original(prep_res))

    node.exec = guarded
    return node
