"""
Tools module for external integrations (Gemini, Tavily, MCP, terminal input).
"""

from .gemini_llm import GeminiLLM, LLMError, get_llm
from .tavily_search import TavilySearchTool, SearchError, get_tavily_tool
from .mcp_client import MCPServerManager, MCPServerConfig, ToolTransportError
from .terminal import TerminalInput

__all__ = [
    "GeminiLLM",
    "LLMError",
    "get_llm",
    "TavilySearchTool",
    "SearchError",
    "get_tavily_tool",
    "MCPServerManager",
    "MCPServerConfig",
    "ToolTransportError",
    "TerminalInput",
]
