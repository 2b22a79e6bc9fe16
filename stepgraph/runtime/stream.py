"""
Node Output Stream - Hands graph results from the producer to a consumer.

The step interpreter runs as its own asyncio task (the producer) and pushes
every NodeOutput into a queue. The consumer pulls them one at a time:

    async with graph.stream({"question": "..."}) as outputs:
        async for output in outputs:
            print(output.node, output.state)

Queue policy:
- queue_size=0 (default): unbounded, the producer never waits on the consumer
- queue_size>0: bounded, the producer suspends while the queue is full

A consumer that stops early should call ``aclose()`` (or leave the
``async with`` block); that cancels the producer wherever it is suspended.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from stepgraph.graph.node import NodeOutput

logger = logging.getLogger(__name__)

# Pushes one output downstream, suspending while a bounded queue is full
Emitter = Callable[[NodeOutput], Awaitable[None]]

# Runs the whole loop; returns True when it stopped on the iteration cap
Producer = Callable[[Emitter], Awaitable[bool]]


class _Completed:
    """Terminal marker: the producer finished normally."""


@dataclass(frozen=True)
class _Failed:
    """Terminal marker: the producer raised."""

    error: BaseException


_COMPLETED = _Completed()


class NodeOutputStream:
    """
    Lazy, single-pass async sequence of NodeOutput.

    Must be created while an event loop is running: the producer task is
    scheduled immediately and starts as soon as the caller yields control.

    Attributes:
        steps: Number of outputs produced so far
        truncated: True once the run ended because the iteration cap was hit
    """

    def __init__(self, producer: Producer, queue_size: int = 0, name: str | None = None):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._exhausted = False
        self._finished = False
        self._terminal: _Completed | _Failed | None = None
        self.steps = 0
        self.truncated = False
        self._task = asyncio.get_running_loop().create_task(self._run(producer), name=name)
        self._task.add_done_callback(self._on_producer_done)

    async def _emit(self, output: NodeOutput) -> None:
        await self._queue.put(output)
        self.steps += 1

    async def _finish(self, marker: "_Completed | _Failed") -> None:
        await self._queue.put(marker)
        self._finished = True

    async def _run(self, producer: Producer) -> None:
        try:
            self.truncated = bool(await producer(self._emit))
        except asyncio.CancelledError as e:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # Raised by an action awaiting a cancelled future, not a stop request
            await self._finish(_Failed(e))
        except Exception as e:
            await self._finish(_Failed(e))
        else:
            await self._finish(_COMPLETED)

    def _on_producer_done(self, task: asyncio.Task) -> None:
        """Queue a terminal marker when the producer died without one."""
        if self._finished:
            return
        self._finished = True
        if task.cancelled():
            marker = _Failed(asyncio.CancelledError("Graph run was cancelled"))
        else:
            marker = _Failed(task.exception())
        try:
            self._queue.put_nowait(marker)
        except asyncio.QueueFull:
            # Delivered by __anext__ once the queued outputs are drained
            self._terminal = marker

    def __aiter__(self) -> "NodeOutputStream":
        return self

    async def __anext__(self) -> NodeOutput:
        if self._exhausted:
            raise StopAsyncIteration

        if self._terminal is not None and self._queue.empty():
            item, self._terminal = self._terminal, None
        else:
            item = await self._queue.get()
        if item is _COMPLETED:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, _Failed):
            self._exhausted = True
            raise item.error
        return item

    async def aclose(self) -> None:
        """Stop consuming and cancel the producer if it is still running."""
        self._exhausted = True
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.debug(f"Producer cancelled after {self.steps} output(s)")

    async def __aenter__(self) -> "NodeOutputStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def done(self) -> bool:
        """True once the producer has stopped (finished, failed or cancelled)."""
        return self._task.done()

    @property
    def pending(self) -> int:
        """Items queued but not yet pulled, terminal marker included."""
        return self._queue.qsize()
