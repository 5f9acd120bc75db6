"""Ordered event stream for a single execution.

The controller keeps every emitted event in an append-only list. Consumers
pull events with ``async for``; each iterator replays from the first event so
a late subscriber still observes the full, ordered history. The iterator
survives ``workflow-suspended`` and only ends once the stream is closed
(terminal workflow event or ``abort()``).
"""

import asyncio
import inspect
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import logging
logger = logging.getLogger(__name__)

from .events import EventFactory, StreamEvent

EventListener = Callable[[StreamEvent], None]
PartFilter = Callable[[Dict[str, Any]], bool]


class StreamController:
    """Single ordered, append-only event channel for one execution."""

    def __init__(self, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        self._events: List[StreamEvent] = []
        self._changed = asyncio.Event()
        self._aborted = asyncio.Event()
        self._closed = False
        self._listeners: List[EventListener] = []

    @property
    def events(self) -> List[StreamEvent]:
        """Snapshot of all events emitted so far."""
        return list(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback invoked synchronously for every emitted event."""
        self._listeners.append(listener)

    def emit(self, event: StreamEvent) -> None:
        """Append an event to the stream.

        Events emitted after the stream is closed are dropped.
        """
        if self._closed:
            return

        self._events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in stream listener: {e}", exc_info=True)
        self._notify()

    def close(self) -> None:
        """Close the stream; pending iterators drain and stop."""
        if self._closed:
            return
        self._closed = True
        self._notify()

    def abort(self) -> None:
        """Abort the execution feeding this stream. Safe to call repeatedly."""
        if self._aborted.is_set():
            return
        logger.info(f"Stream for execution {self.execution_id} aborted")
        self._aborted.set()
        self.close()

    async def wait_aborted(self) -> None:
        await self._aborted.wait()

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        index = 0
        while True:
            waiter = self._changed
            while index < len(self._events):
                yield self._events[index]
                index += 1
            if self._closed:
                return
            await waiter.wait()


def _part_to_dict(part: Any) -> Dict[str, Any]:
    if isinstance(part, dict):
        return part
    if hasattr(part, "model_dump"):
        return part.model_dump()
    if hasattr(part, "to_dict"):
        return part.to_dict()
    return dict(vars(part))


def _convert_part(part: Dict[str, Any]) -> Dict[str, Any]:
    """Map one part of an agent stream onto stream event fields."""
    part_type = part.get("type", "unknown")
    metadata: Dict[str, Any] = {"originalType": part_type}
    input = None
    output = None

    if part_type == "text-delta":
        output = part.get("textDelta", part.get("text"))
    elif part_type == "tool-call":
        input = part.get("args")
        metadata.update(toolName=part.get("toolName"), toolCallId=part.get("toolCallId"))
    elif part_type == "tool-result":
        output = part.get("result")
        metadata.update(toolName=part.get("toolName"), toolCallId=part.get("toolCallId"))
    elif part_type == "finish":
        metadata.update(finishReason=part.get("finishReason"), usage=part.get("usage"))
    elif part_type == "error":
        metadata["error"] = part.get("error")

    return {"input": input, "output": output, "metadata": metadata}


class StreamWriter:
    """Write handle given to step code for custom events."""

    def __init__(
        self,
        controller: StreamController,
        execution_id: str,
        step_id: str,
        step_index: int,
    ):
        self._controller = controller
        self.execution_id = execution_id
        self.step_id = step_id
        self.step_index = step_index

    def for_step(self, step_id: str) -> "StreamWriter":
        """Writer attributing events to a nested step at the same index."""
        return StreamWriter(self._controller, self.execution_id, step_id, self.step_index)

    def write(self, type: str, **fields: Any) -> StreamEvent:
        """Append a custom event to the execution stream.

        Args:
            type: Event type
            **fields: Optional ``input``, ``output``, ``status``, ``metadata``,
                ``error`` or ``from_``; other keyword arguments land in metadata

        Returns:
            The emitted event
        """
        event = EventFactory.custom(
            self.execution_id,
            type,
            self.step_id,
            step_index=self.step_index,
            **fields,
        )
        self._controller.emit(event)
        return event

    async def pipe_from(
        self,
        source: Any,
        prefix: str = "",
        agent_id: Optional[str] = None,
        event_filter: Optional[PartFilter] = None,
    ) -> None:
        """Relay an agent's part stream into this execution's stream.

        Args:
            source: Async (or plain) iterable of parts; each part is a dict or an
                object with ``model_dump``/``to_dict``, carrying at least ``type``
            prefix: Prepended to every forwarded event type
            agent_id: Attributed source of the forwarded events
            event_filter: Predicate on the part dict; parts it rejects are skipped
        """
        async for raw in _iterate(source):
            part = _part_to_dict(raw)
            if event_filter is not None and not event_filter(part):
                continue
            converted = _convert_part(part)
            self.write(
                f"{prefix}{part.get('type', 'unknown')}",
                from_=agent_id or part.get("subAgentId") or part.get("subAgentName") or self.step_id,
                **converted,
            )


class NoOpStreamWriter(StreamWriter):
    """Writer for non-streamed runs; events are discarded."""

    def __init__(self, execution_id: str = "", step_id: str = "", step_index: int = 0):
        self.execution_id = execution_id
        self.step_id = step_id
        self.step_index = step_index

    def for_step(self, step_id: str) -> "StreamWriter":
        return NoOpStreamWriter(self.execution_id, step_id, self.step_index)

    def write(self, type: str, **fields: Any) -> Optional[StreamEvent]:
        return None

    async def pipe_from(
        self,
        source: Any,
        prefix: str = "",
        agent_id: Optional[str] = None,
        event_filter: Optional[PartFilter] = None,
    ) -> None:
        # The source is still drained so producers are not left blocked
        async for _ in _iterate(source):
            pass


async def _iterate(source: Any) -> AsyncIterator[Any]:
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    elif inspect.isawaitable(source):
        for item in await source:
            yield item
    else:
        for item in source:
            yield item
