"""
MCP tool agent.

Connects to MCP servers, lets the model pick a tool for the user's
request, runs it and answers in natural language.

    discover --"select"--> select --"execute"--> execute --"respond"--> respond
                           select --"respond"--> respond
"""

import json
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, SystemMessage
from pydantic import BaseModel, Field

from .base import LLMNode
from ..core.config import settings, ModelConfig
from ..core.flow import Flow
from ..core.node import Node
from ..core.state import MCPTool, ToolAgentAction, ToolAgentState, ToolRequest, ToolResult
from ..tools.mcp_client import MCPServerConfig, MCPServerManager, ToolTransportError
from ..utils.helpers import strip_code_fences, to_display_text, truncate_text
from ..utils.logger import get_logger


logger = get_logger()


class ToolSelection(BaseModel):
    """The model's choice of tool, if any."""
    tool_name: Optional[str] = Field(
        default=None, description="Exact name of the tool to use, or null if no tool is needed"
    )
    arguments_json: str = Field(
        default="{}", description="Tool parameters as a JSON object string, '{}' when none"
    )
    reasoning: str = Field(description="Why this tool was chosen or why no tool is needed")

    def arguments(self) -> Dict[str, Any]:
        text = strip_code_fences(self.arguments_json or "").strip() or "{}"
        value = json.loads(text)
        if not isinstance(value, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(value).__name__}")
        return value


# ==================== Prompts ====================

SELECTION_SYSTEM_PROMPT = "You are a tool selection expert. Analyze user requests and select appropriate tools with proper parameters."

SELECTION_PROMPT = """Analyze this user request and decide whether one of the available tools can help.

User Request: "{message}"

Available Tools:
{tools}

Instructions:
1. If a tool can fulfil the request, set tool_name to its exact name and
   arguments_json to a JSON object with every required parameter from its schema.
   Use sensible defaults, e.g. "." for the current directory.
2. If no tool fits or the request is conversational, set tool_name to null
   and arguments_json to "{{}}".
3. Always explain your reasoning."""

RESPONSE_SYSTEM_PROMPT = """You are a helpful assistant. Answer the user's request.
When a tool result is provided, base the answer on it and present it clearly.
When the tool failed, explain what went wrong."""


def describe_tools(tools: List[MCPTool]) -> str:
    return "\n\n".join(
        f"- {t.name} ({t.server_id}): {t.description}\n"
        f"  Parameters: {json.dumps(t.input_schema.get('properties', {}), indent=2)}"
        for t in tools
    )


# ==================== Nodes ====================

class MCPDiscoveryNode(Node):
    """
    Connect to the configured servers and list their tools.

    Servers that fail to connect are skipped with a warning; the node fails
    only when none of them connects.
    """

    name = "MCPDiscovery"

    def __init__(self, mcp_manager: MCPServerManager, server_configs: List[MCPServerConfig], **kwargs):
        kwargs.setdefault("max_retries", settings.node_max_retries)
        kwargs.setdefault("wait", settings.node_retry_wait)
        super().__init__(**kwargs)
        self.mcp_manager = mcp_manager
        self.server_configs = list(server_configs)

    def prep(self, shared: ToolAgentState) -> List[MCPServerConfig]:
        return self.server_configs

    async def exec(self, server_configs: List[MCPServerConfig]) -> Dict[str, Any]:
        connected, failures = [], []
        for index, config in enumerate(server_configs):
            server_id = f"server_{index}_{config.name}"
            try:
                await self.mcp_manager.connect_to_server(config, server_id)
            except ToolTransportError as e:
                logger.with_node(self.name).warning(str(e))
                failures.append(e)
                continue
            connected.append(server_id)

        if server_configs and not connected:
            raise failures[-1]

        tools = await self.mcp_manager.discover_tools()
        return {"servers": connected, "tools": tools}

    def post(self, shared: ToolAgentState, prep_res: Any, exec_res: Dict[str, Any]) -> str:
        shared["connected_servers"] = exec_res["servers"]
        shared["available_tools"] = exec_res["tools"]
        return ToolAgentAction.SELECT.value


class ToolSelectionNode(LLMNode):
    """Ask the model which tool, if any, serves the user's last message."""

    name = "ToolSelection"
    generation = ModelConfig.TOOL_SELECTION

    def prep(self, shared: ToolAgentState) -> Dict[str, Any]:
        messages = shared.get("messages", [])
        return {
            "message": messages[-1].content if messages else "",
            "tools": list(shared.get("available_tools", [])),
        }

    async def exec(self, prep_res: Dict[str, Any]) -> Optional[ToolRequest]:
        tools: List[MCPTool] = prep_res["tools"]
        if not tools:
            return None

        selection = await self.llm.structured(
            SELECTION_PROMPT.format(message=prep_res["message"], tools=describe_tools(tools)),
            ToolSelection,
            system=SELECTION_SYSTEM_PROMPT,
            **self.generation_kwargs(),
        )
        self.log.info(f"Selected {selection.tool_name or 'no tool'}: {selection.reasoning[:80]}")

        if not selection.tool_name:
            return None

        tool = next((t for t in tools if t.name == selection.tool_name), None)
        if tool is None:
            self.log.warning(f"Model chose unknown tool {selection.tool_name!r}")
            return None

        return ToolRequest(
            tool_name=tool.name,
            arguments=selection.arguments(),
            server_id=tool.server_id,
        )

    def post(self, shared: ToolAgentState, prep_res: Any, exec_res: Optional[ToolRequest]) -> str:
        if exec_res is None:
            return ToolAgentAction.RESPOND.value
        shared["pending_tool"] = exec_res
        return ToolAgentAction.EXECUTE.value


class ToolExecutionNode(Node):
    """Run the pending tool call."""

    name = "ToolExecution"

    def __init__(self, mcp_manager: MCPServerManager, **kwargs):
        kwargs.setdefault("max_retries", settings.node_max_retries)
        kwargs.setdefault("wait", settings.node_retry_wait)
        super().__init__(**kwargs)
        self.mcp_manager = mcp_manager

    def prep(self, shared: ToolAgentState) -> Optional[ToolRequest]:
        return shared.get("pending_tool")

    async def exec(self, request: Optional[ToolRequest]) -> Optional[ToolResult]:
        if request is None:
            return None
        logger.with_node(self.name).info(f"Calling {request.tool_name} with {request.arguments}")
        return await self.mcp_manager.execute_tool(request)

    def post(self, shared: ToolAgentState, prep_res: Optional[ToolRequest], exec_res: Optional[ToolResult]) -> str:
        shared["last_tool_request"] = prep_res
        shared["last_tool_result"] = exec_res
        shared["pending_tool"] = None
        return ToolAgentAction.RESPOND.value


class ResponseNode(LLMNode):
    """Answer the user, using the tool result when there is one."""

    name = "Response"
    generation = ModelConfig.CHAT

    def prep(self, shared: ToolAgentState) -> Dict[str, Any]:
        return {
            "messages": list(shared.get("messages", [])),
            "request": shared.get("last_tool_request"),
            "result": shared.get("last_tool_result"),
        }

    async def exec(self, prep_res: Dict[str, Any]) -> str:
        system = RESPONSE_SYSTEM_PROMPT
        request: Optional[ToolRequest] = prep_res["request"]
        result: Optional[ToolResult] = prep_res["result"]

        if request is not None and result is not None:
            if result.success:
                outcome = truncate_text(to_display_text(result.content), 6000)
                system += f"\n\nTool {request.tool_name} returned:\n{outcome}"
            else:
                system += f"\n\nTool {request.tool_name} failed: {result.error}"

        prompt = [SystemMessage(content=system)] + prep_res["messages"]
        return await self.llm.complete(prompt, **self.generation_kwargs())

    def post(self, shared: ToolAgentState, prep_res: Any, exec_res: str) -> None:
        shared.setdefault("messages", []).append(AIMessage(content=exec_res))
        shared["final_response"] = exec_res
        return None


def build_tool_agent_flow(
    mcp_manager: MCPServerManager,
    server_configs: List[MCPServerConfig],
    llm: Optional[Any] = None,
) -> Flow:
    """Wire discovery, selection, execution and response."""
    discover = MCPDiscoveryNode(mcp_manager, server_configs)
    select = ToolSelectionNode(llm=llm)
    execute = ToolExecutionNode(mcp_manager)
    respond = ResponseNode(llm=llm)

    discover - ToolAgentAction.SELECT.value >> select
    select - ToolAgentAction.EXECUTE.value >> execute
    select - ToolAgentAction.RESPOND.value >> respond
    execute - ToolAgentAction.RESPOND.value >> respond

    return Flow(start=discover, name="tool_agent")
