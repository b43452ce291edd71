"""
Event sink used to dispatch reindex requests and to deliver record change
events to the index subscriber.
"""
import fnmatch
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Tuple, Union, runtime_checkable

from vectorindex.core.logging import get_logger

logger = get_logger(__name__)

REINDEX_EVENT = "query_index.reindex"

EventHandler = Callable[[str, Dict[str, Any]], Union[Awaitable[None], None]]


@runtime_checkable
class EventSink(Protocol):
    async def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class LocalEventBus:
    """
    In-process event bus. Handlers subscribe with a glob pattern
    ("customers.*.updated", "query_index.reindex") and are awaited in
    registration order. Every emitted event is kept in `emitted`.

    A failing handler is logged and does not stop the others.
    """

    def __init__(self):
        self._handlers: List[Tuple[str, EventHandler]] = []
        self.emitted: List[Tuple[str, Dict[str, Any]]] = []

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._handlers.append((pattern, handler))

    async def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        self.emitted.append((event_name, dict(payload)))
        for pattern, handler in self._handlers:
            if not fnmatch.fnmatchcase(event_name, pattern):
                continue
            try:
                result = handler(event_name, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("event_handler_failed", event_name=event_name, pattern=pattern, error=str(e))
