"""
Streaming chatbot.

Like the terminal chatbot, but replies are published chunk by chunk on an
EventStreamer as the model produces them, and a reply can be cut short by
setting the node's ``interrupt`` event.
"""

import asyncio
import time
from typing import Any, AsyncIterator, Callable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .base import LLMNode
from ..core.config import ModelConfig
from ..core.events import EventStreamer, StreamEventType
from ..core.flow import Flow
from ..core.node import maybe_await
from ..core.state import ChatAction, StreamResult, StreamState, is_exit_command


STREAM_NAMESPACE = "stream"

STREAM_SYSTEM_PROMPT = "You are a helpful assistant. Answer clearly and conversationally."


class StreamingChatNode(LLMNode):
    """
    One streamed conversational turn.

    Args:
        streamer: Receives a CHUNK event per text chunk and a FINAL event
            with the StreamResult
        input_source: Callable returning the next user line (or an awaitable
            of it); None means end of input. Defaults to TerminalInput.
        interrupt: Event that stops the current reply when set; cleared after
            every turn
        namespace: Event namespace for published chunks
    """

    name = "StreamingChat"
    generation = ModelConfig.CHAT

    def __init__(
        self,
        streamer: EventStreamer,
        input_source: Optional[Callable[[], Any]] = None,
        interrupt: Optional[asyncio.Event] = None,
        namespace: str = STREAM_NAMESPACE,
        system_prompt: str = STREAM_SYSTEM_PROMPT,
        **kwargs,
    ):
        # Retrying would replay chunks already published
        kwargs.setdefault("max_retries", 1)
        super().__init__(**kwargs)
        if input_source is None:
            from ..tools.terminal import TerminalInput
            input_source = TerminalInput()
        self.streamer = streamer
        self.input_source = input_source
        self.interrupt = interrupt or asyncio.Event()
        self.namespace = namespace
        self.system_prompt = system_prompt

    async def prep(self, shared: StreamState) -> Optional[List[BaseMessage]]:
        user_input = await maybe_await(self.input_source())
        if user_input is None or is_exit_command(user_input):
            return None
        return list(shared.get("messages", [])) + [HumanMessage(content=user_input)]

    async def exec(self, messages: Optional[List[BaseMessage]]) -> Optional[StreamResult]:
        if messages is None:
            return None

        started = time.monotonic()
        parts, interrupted = [], False
        prompt = [SystemMessage(content=self.system_prompt)] + messages

        chunks = self.llm.stream(prompt, **self.generation_kwargs())
        try:
            async for chunk in chunks:
                if self.interrupt.is_set():
                    interrupted = True
                    break
                parts.append(chunk)
                self.streamer.emit(self.namespace, StreamEventType.CHUNK, chunk, node_id=self.name)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        result = StreamResult(
            content="".join(parts),
            interrupted=interrupted,
            chunk_count=len(parts),
            duration=time.monotonic() - started,
        )
        self.streamer.emit(self.namespace, StreamEventType.FINAL, result, node_id=self.name)
        return result

    def post(
        self,
        shared: StreamState,
        prep_res: Optional[List[BaseMessage]],
        exec_res: Optional[StreamResult],
    ) -> Optional[str]:
        self.interrupt.clear()
        if prep_res is None:
            return None

        shared.setdefault("messages", []).extend([prep_res[-1], AIMessage(content=exec_res.content)])
        shared["interrupted"] = exec_res.interrupted
        shared["last_result"] = exec_res

        if exec_res.interrupted:
            self.log.info(f"Reply interrupted after {exec_res.chunk_count} chunks")
        return ChatAction.CONTINUE.value


class ScriptedStreamLLM:
    """
    Offline stand-in for the model that streams canned replies word by word.

    Used by ``backpackflow stream --demo`` to show streaming without an API key.
    """

    DEFAULT_REPLIES = (
        "Streaming means you see the answer as it is written, one chunk at a time. "
        "Each chunk here is published as an event and printed by a subscriber.",
        "You can interrupt a reply with Ctrl+C. The partial text is kept in the "
        "conversation and the chat goes on.",
    )

    def __init__(self, replies: Optional[List[str]] = None, delay: float = 0.05):
        self.replies = list(replies or self.DEFAULT_REPLIES)
        self.delay = delay
        self._turn = 0

    async def stream(self, prompt: Any, **kwargs) -> AsyncIterator[str]:
        reply = self.replies[self._turn % len(self.replies)]
        self._turn += 1
        for word in reply.split(" "):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word + " "


def build_streaming_flow(
    streamer: EventStreamer,
    input_source: Optional[Callable[[], Any]] = None,
    interrupt: Optional[asyncio.Event] = None,
    llm: Optional[Any] = None,
) -> Flow:
    """Create the streaming chat loop."""
    chat = StreamingChatNode(streamer, input_source=input_source, interrupt=interrupt, llm=llm)
    chat - ChatAction.CONTINUE.value >> chat
    return Flow(start=chat, name="streaming_chat")
