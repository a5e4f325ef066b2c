"""
Terminal chatbot.

A single node wired to itself on ``"continue"``: every step reads one
line, answers it and loops until the user types an exit command.
"""

from typing import Any, Callable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .base import LLMNode
from ..core.config import ModelConfig
from ..core.flow import Flow
from ..core.node import maybe_await
from ..core.state import ChatAction, ChatState, is_exit_command


CHAT_SYSTEM_PROMPT = """You are a helpful, concise assistant chatting in a terminal.
Answer in plain text or light markdown. Keep replies short unless asked for detail."""


class ChatNode(LLMNode):
    """
    One conversational turn.

    Args:
        input_source: Callable returning the next user line (or an awaitable
            of it); None means end of input. Defaults to TerminalInput.
        on_reply: Called with each assistant reply, e.g. to print it
        system_prompt: System instruction sent with every turn
    """

    name = "Chat"
    generation = ModelConfig.CHAT

    def __init__(
        self,
        input_source: Optional[Callable[[], Any]] = None,
        on_reply: Optional[Callable[[str], Any]] = None,
        system_prompt: str = CHAT_SYSTEM_PROMPT,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if input_source is None:
            from ..tools.terminal import TerminalInput
            input_source = TerminalInput()
        self.input_source = input_source
        self.on_reply = on_reply
        self.system_prompt = system_prompt

    async def prep(self, shared: ChatState) -> Optional[List[BaseMessage]]:
        """Read the next line; None ends the conversation."""
        user_input = await maybe_await(self.input_source())

        if user_input is None or is_exit_command(user_input):
            self.log.info("User ended the conversation")
            return None

        history = list(shared.get("messages", []))
        return history + [HumanMessage(content=user_input)]

    async def exec(self, messages: Optional[List[BaseMessage]]) -> Optional[str]:
        if messages is None:
            return None
        prompt = [SystemMessage(content=self.system_prompt)] + messages
        return await self.llm.complete(prompt, **self.generation_kwargs())

    async def post(
        self,
        shared: ChatState,
        prep_res: Optional[List[BaseMessage]],
        exec_res: Optional[str],
    ) -> Optional[str]:
        if prep_res is None:
            return None

        shared.setdefault("messages", []).extend([prep_res[-1], AIMessage(content=exec_res)])
        shared["turns"] = shared.get("turns", 0) + 1

        if self.on_reply is not None:
            await maybe_await(self.on_reply(exec_res))

        return ChatAction.CONTINUE.value


def build_chat_flow(
    input_source: Optional[Callable[[], Any]] = None,
    on_reply: Optional[Callable[[str], Any]] = None,
    llm: Optional[Any] = None,
    **kwargs,
) -> Flow:
    """Create the chat loop: one ChatNode that follows itself on ``"continue"``."""
    chat = ChatNode(input_source=input_source, on_reply=on_reply, llm=llm, **kwargs)
    chat - ChatAction.CONTINUE.value >> chat
    return Flow(start=chat, name="chat")
