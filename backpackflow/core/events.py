"""
Namespaced event streaming.

Flows publish lifecycle events here and streaming nodes publish output
chunks. Subscribers are plain callables invoked synchronously in emit order.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..utils.logger import get_logger


logger = get_logger()


class StreamEventType(str, Enum):
    """Kinds of stream events."""
    PROGRESS = "progress"
    CHUNK = "chunk"
    METADATA = "metadata"
    FINAL = "final"
    ERROR = "error"


@dataclass
class StreamEvent:
    """A single event delivered to subscribers."""
    namespace: str
    type: StreamEventType
    content: Any
    node_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "type": self.type.value,
            "content": self.content,
            "node_id": self.node_id,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[StreamEvent], None]

WILDCARD = "*"


class EventStreamer:
    """
    Publish/subscribe hub keyed by namespace and event type.

    A subscriber registered with ``subscribe`` sees every event of its
    namespace; one registered with ``subscribe_to_type`` sees a single type.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)

    @staticmethod
    def _key(namespace: str, event_type: str) -> str:
        return f"{namespace}:{event_type}"

    def emit(
        self,
        namespace: str,
        event_type: StreamEventType,
        content: Any,
        node_id: Optional[str] = None,
    ) -> StreamEvent:
        """Deliver an event to matching subscribers and return it."""
        event = StreamEvent(
            namespace=namespace,
            type=event_type,
            content=content,
            node_id=node_id,
        )

        callbacks = (
            self._subscribers.get(self._key(namespace, event_type.value), [])
            + self._subscribers.get(self._key(namespace, WILDCARD), [])
        )
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.with_node("Events").warning(
                    f"Subscriber {getattr(callback, '__name__', callback)!r} "
                    f"failed on {namespace}:{event_type.value}: {e}"
                )

        return event

    def subscribe(self, namespace: str, callback: Subscriber) -> None:
        """Receive every event in a namespace."""
        self._subscribers[self._key(namespace, WILDCARD)].append(callback)

    def subscribe_to_type(
        self,
        namespace: str,
        event_type: StreamEventType,
        callback: Subscriber,
    ) -> None:
        """Receive one event type in a namespace."""
        self._subscribers[self._key(namespace, event_type.value)].append(callback)

    def unsubscribe(self, namespace: str, callback: Optional[Subscriber] = None) -> None:
        """Remove one namespace-wide subscriber, or all of them."""
        key = self._key(namespace, WILDCARD)
        if callback is None:
            self._subscribers.pop(key, None)
        elif callback in self._subscribers.get(key, []):
            self._subscribers[key].remove(callback)

    def clear(self) -> None:
        """Drop every subscriber."""
        self._subscribers.clear()

    def subscriber_count(self, namespace: str) -> int:
        prefix = f"{namespace}:"
        return sum(len(v) for k, v in self._subscribers.items() if k.startswith(prefix))
