"""
Relay of Ollama's NDJSON generation stream as plain text.

Each relay owns one producer task that reads upstream bytes, decodes the
progress events and puts the text fragments on a bounded queue. The
consumer side (``iter_bytes``) is what the HTTP response writes out.

States: IDLE -> STREAMING -> COMPLETED | ERRORED | CANCELLED
Every terminal state releases the upstream response exactly once.
"""
import asyncio
import codecs
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from .config import DEFAULT_STREAM_QUEUE_SIZE
from .ollama_client import UpstreamUnavailable
from .structured_logging import log_relay_finished

logger = logging.getLogger(__name__)

# Longest unterminated line held while waiting for its newline
MAX_LINE_LENGTH = 1 << 20


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamEvent:
    response: Optional[str] = None
    done: bool = False
    error: Optional[str] = None


def parse_stream_event(line: str) -> Optional[StreamEvent]:
    """Parse one NDJSON line; None for anything that is not a JSON object."""
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    response = data.get("response")
    error = data.get("error")
    return StreamEvent(
        response=response if isinstance(response, str) else None,
        done=bool(data.get("done", False)),
        error=str(error) if error else None,
    )


class _End:
    pass


@dataclass(frozen=True)
class _Failure:
    error: BaseException


_END = _End()


class StreamRelay:
    """Forward the ``response`` text of each upstream event, in order.

    Args:
        source: Raw upstream body chunks
        release: Closes the upstream response; awaited exactly once
        max_pending: Fragments buffered ahead of a slow consumer
        max_line_length: Characters buffered for one unterminated line; a
            longer line is dropped as malformed
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        release: Optional[Callable[[], Awaitable[None]]] = None,
        max_pending: int = DEFAULT_STREAM_QUEUE_SIZE,
        max_line_length: int = MAX_LINE_LENGTH,
    ):
        self.source = source
        self.state = RelayState.IDLE
        self.fragments = 0
        self.bytes_sent = 0
        self.max_line_length = max_line_length
        self._release_cb = release
        self._released = False
        self._started_at = time.monotonic()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending_line = ""
        self._discarding = False

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield UTF-8 encoded text fragments until the relay terminates.

        Raises:
            UpstreamUnavailable: the upstream stream broke or reported an error
        """
        if self.state is not RelayState.IDLE:
            raise RuntimeError(f"Relay already started (state={self.state.value})")
        self.state = RelayState.STREAMING
        self._started_at = time.monotonic()
        producer = asyncio.create_task(self._pump())

        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    self.state = RelayState.COMPLETED
                    return
                if isinstance(item, _Failure):
                    self.state = RelayState.ERRORED
                    raise UpstreamUnavailable("Upstream stream interrupted") from item.error
                data = item.encode("utf-8")
                self.fragments += 1
                self.bytes_sent += len(data)
                yield data
        finally:
            if self.state is RelayState.STREAMING:
                # consumer went away mid-stream
                self.state = RelayState.CANCELLED
                logger.info("Stream relay cancelled by client")
            if not producer.done():
                producer.cancel()
            # runs to completion even if this task keeps being cancelled
            await asyncio.shield(self._shutdown(producer))

    async def aclose(self) -> None:
        """Release the upstream response. Safe to call any number of times.

        A relay closed before ``iter_bytes`` ever ran ends CANCELLED.
        """
        if self.state is RelayState.IDLE:
            self.state = RelayState.CANCELLED
        await self._release()

    async def _shutdown(self, producer: asyncio.Task) -> None:
        await asyncio.gather(producer, return_exceptions=True)
        await self._release()

    def _split_lines(self, chunk: bytes) -> list[str]:
        """Complete lines in chunk; the unterminated rest is kept for later."""
        text = self._pending_line + self._decoder.decode(chunk)
        *lines, self._pending_line = text.split("\n")

        if self._discarding:
            if not lines:
                self._pending_line = ""
                return []
            # first piece is the end of the dropped line
            lines = lines[1:]
            self._discarding = False

        if len(self._pending_line) > self.max_line_length:
            logger.warning(f"Dropping stream line longer than {self.max_line_length} characters")
            self._pending_line = ""
            self._discarding = True
        return lines

    async def _pump(self) -> None:
        try:
            async for chunk in self.source:
                for line in self._split_lines(chunk):
                    if await self._handle_line(line):
                        return
            tail = self._pending_line + self._decoder.decode(b"", final=True)
            self._pending_line = ""
            if self._discarding or not await self._handle_line(tail):
                await self._queue.put(_END)
        except Exception as e:
            logger.error(f"Upstream stream read failed: {e!r}")
            await self._queue.put(_Failure(e))

    async def _handle_line(self, line: str) -> bool:
        """Forward one line; True once the relay has reached a terminal item."""
        if not line.strip():
            return False

        event = parse_stream_event(line)
        if event is None:
            logger.debug(f"Skipping malformed stream line: {line[:100]!r}")
            return False

        if event.error:
            logger.error(f"Ollama reported a stream error: {event.error}")
            await self._queue.put(_Failure(UpstreamUnavailable(event.error)))
            return True

        if event.response:
            await self._queue.put(event.response)

        if event.done:
            await self._queue.put(_END)
            return True

        return False

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._release_cb is not None:
            try:
                await self._release_cb()
            except Exception as e:
                logger.warning(f"Failed to release upstream stream: {e!r}")
        log_relay_finished(
            self.state.value,
            fragments=self.fragments,
            bytes_sent=self.bytes_sent,
            duration_ms=(time.monotonic() - self._started_at) * 1000,
        )
