"""Streaming transport between a running turn and the HTTP response.

The orchestrator writes StreamEvents into a bounded EventChannel; the
transport drains it into server-sent events. A turn always ends with
exactly one terminal event (done or error) and nothing is delivered after
it. Client disconnect closes the channel: the turn keeps running in the
background so in-flight work is persisted, but nothing more is streamed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

logger = logging.getLogger(__name__)

EventType = Literal["conversation_id", "content", "tool_call", "tool_result", "done", "error"]

TERMINAL_EVENTS = frozenset({"done", "error"})

GENERIC_ERROR = "An unexpected error occurred. Please try again."
TIMEOUT_ERROR = "The assistant took too long to respond. Please try again."


@dataclass(frozen=True)
class StreamEvent:
    """A single event of a turn, serialized as ``{"type": ..., **data}``."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def conversation(cls, conversation_id: str, is_new: bool) -> StreamEvent:
        return cls("conversation_id", {"conversation_id": conversation_id, "is_new": is_new})

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls("content", {"text": text})

    @classmethod
    def tool_call(cls, tool_name: str) -> StreamEvent:
        # Name only: input is not echoed before it has been validated.
        return cls("tool_call", {"tool_name": tool_name})

    @classmethod
    def tool_result(cls, tool_name: str, success: bool, output: Any) -> StreamEvent:
        return cls("tool_result", {"tool_name": tool_name, "success": success, "output": output})

    @classmethod
    def done(cls, conversation_id: str) -> StreamEvent:
        return cls("done", {"conversation_id": conversation_id})

    @classmethod
    def error(cls, message: str) -> StreamEvent:
        return cls("error", {"error": message})

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


class EventChannel:
    """Bounded single-producer, single-consumer event queue."""

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._terminated = False

    @property
    def closed(self) -> bool:
        """True once the consumer has gone away."""
        return self._closed

    @property
    def terminated(self) -> bool:
        """True once a terminal event has been accepted."""
        return self._terminated

    async def send(self, event: StreamEvent) -> bool:
        """Queue an event. Returns False if it was dropped.

        Events are dropped after close() and after a terminal event.
        """
        if self._terminated:
            logger.warning("Dropping %s event sent after terminal event", event.type)
            return False
        if self._closed:
            logger.debug("Dropping %s event: channel closed", event.type)
            return False
        if event.is_terminal:
            self._terminated = True
        await self._queue.put(event)
        return not self._closed

    async def receive(self) -> StreamEvent:
        return await self._queue.get()

    def close(self) -> None:
        """Stop accepting events and release a producer blocked on a full queue."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()


# Turns whose client went away; referenced here so they are not collected.
_detached_turns: set[asyncio.Task[None]] = set()


async def _produce(run: Callable[[EventChannel], Awaitable[None]], channel: EventChannel) -> None:
    try:
        await run(channel)
    except Exception:
        logger.exception("Turn failed outside of its own error handling")
        await channel.send(StreamEvent.error(GENERIC_ERROR))
        return
    if not channel.terminated and not channel.closed:
        logger.error("Turn finished without a terminal event")
        await channel.send(StreamEvent.error(GENERIC_ERROR))


async def stream_turn(
    run: Callable[[EventChannel], Awaitable[None]],
    *,
    timeout: float,
    queue_size: int = 64,
) -> AsyncIterator[StreamEvent]:
    """Run ``run(channel)`` in a background task and yield its events.

    The whole turn must finish within ``timeout`` seconds; otherwise the
    task is cancelled and an error event ends the stream.
    """
    loop = asyncio.get_running_loop()
    channel = EventChannel(queue_size)
    task = loop.create_task(_produce(run, channel))
    deadline = loop.time() + timeout
    finished = False

    try:
        while True:
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise TimeoutError
                event = await asyncio.wait_for(channel.receive(), remaining)
            except TimeoutError:
                logger.warning("Turn exceeded %.0fs wall-clock budget; cancelling", timeout)
                finished = True
                channel.close()
                task.cancel()
                # The cancelled turn still persists what it did; keep it alive until then.
                _detached_turns.add(task)
                task.add_done_callback(_detached_turns.discard)
                yield StreamEvent.error(TIMEOUT_ERROR)
                return

            if event.is_terminal:
                finished = True
            yield event
            if finished:
                return
    finally:
        if not finished:
            # Client went away: stop streaming but let the turn persist its work.
            channel.close()
            if not task.done():
                logger.info("Client disconnected; turn continues in background")
                _detached_turns.add(task)
                task.add_done_callback(_detached_turns.discard)
