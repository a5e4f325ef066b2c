"""
Base class for nodes that call the language model.

Provides the lazily created LLM client, per-node generation parameters and
the configured retry policy.
"""

from typing import Any, Dict, Optional

from ..core.config import settings, ModelConfig
from ..core.node import Node
from ..utils.logger import get_logger


logger = get_logger()


class LLMNode(Node):
    """
    Node whose exec phase talks to the language model.

    Args:
        llm: Client with ``complete``/``stream``/``structured`` coroutines.
            Defaults to the shared GeminiLLM, created on first use.
        max_retries: Exec attempts, defaults to ``settings.node_max_retries``
        wait: Seconds between attempts, defaults to ``settings.node_retry_wait``
        **kwargs: Forwarded to Node (fallback, exponential_backoff, name, ...)
    """

    name = "LLMNode"

    # One of the ModelConfig dictionaries
    generation: Dict[str, Any] = ModelConfig.CHAT

    def __init__(
        self,
        llm: Optional[Any] = None,
        max_retries: Optional[int] = None,
        wait: Optional[float] = None,
        **kwargs,
    ):
        retry = settings.get_retry_config()
        super().__init__(
            max_retries=retry["max_retries"] if max_retries is None else max_retries,
            wait=retry["wait"] if wait is None else wait,
            **kwargs,
        )
        self._llm = llm

    @property
    def llm(self):
        """Lazy load the LLM client."""
        if self._llm is None:
            from ..tools.gemini_llm import get_llm
            self._llm = get_llm()
        return self._llm

    @property
    def log(self):
        return logger.with_node(self.name)

    def generation_kwargs(self) -> Dict[str, Any]:
        """Temperature and token limit for this node's calls."""
        return {
            "temperature": self.generation["temperature"],
            "max_tokens": self.generation["max_tokens"],
        }
