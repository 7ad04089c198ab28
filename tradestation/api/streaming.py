"""
Streaming sessions over chunked HTTP responses.

The streaming endpoints answer with one long-lived response whose body is a
newline-delimited sequence of JSON objects. This module turns that body into
typed events:

- DataFrame: an ordinary payload (quote, bar, order, position, ...)
- Heartbeat: sent by the server on an otherwise idle stream
- ErrorFrame: an error reported inside the stream

Key Components:
- FrameDecoder: splits the byte stream into complete lines
- classify_frame: parses one line and picks its event type
- StreamSession: connection lifecycle, decode loop, close/cancel, liveness
- StreamManager: concurrent stream limit and bulk close

Session states:
    CONNECTING -> OPEN -> CLOSING -> CLOSED
    CONNECTING/OPEN -> FAILED
CLOSED and FAILED are terminal.
"""

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Union

import aiohttp

from tradestation.api.exceptions import (
    DecodeError,
    FramingError,
    StreamLimitError,
    TransportError,
)
from tradestation.api.http import ApiRequest
from tradestation.lib.constants import (
    DEFAULT_MAX_CONCURRENT_STREAMS,
    DEFAULT_MAX_FRAME_BYTES,
    ERROR_FIELD,
    ERROR_METADATA_FIELDS,
    HEARTBEAT_FIELD,
)

logger = logging.getLogger(__name__)


class StreamStatus(Enum):
    """Stream session state."""
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()
    FAILED = auto()


TERMINAL_STATES = frozenset({StreamStatus.CLOSED, StreamStatus.FAILED})


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class DataFrame:
    """Ordinary stream payload."""
    payload: dict[str, Any]


@dataclass(frozen=True)
class Heartbeat:
    """Keep-alive frame.

    Attributes:
        timestamp: Server timestamp, if the frame carries one
        sequence: Heartbeat counter, if the frame carries one
        payload: Raw frame
    """
    timestamp: Optional[str] = None
    sequence: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorFrame:
    """Error reported by the server, or the final signal of a failed session.

    Attributes:
        message: Human readable message
        code: Server error code (the frame's Error field)
        payload: Raw frame (None for client-side failures)
        terminal: True when the session is failing and no events follow
    """
    message: str
    code: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    terminal: bool = False


StreamEvent = Union[DataFrame, Heartbeat, ErrorFrame]
EventCallback = Callable[[StreamEvent], Optional[Awaitable[None]]]


def classify_frame(line: Union[str, bytes]) -> StreamEvent:
    """
    Parse one frame and classify it.

    Args:
        line: One complete line of the stream body

    Returns:
        Heartbeat if the object has a Heartbeat field, ErrorFrame if it has an
        Error field and nothing but error metadata, DataFrame otherwise

    Raises:
        DecodeError: If the line is not a JSON object
    """
    try:
        frame = json.loads(line)
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the parser can follow
        raise DecodeError(f"Invalid JSON frame: {e}", frame=_preview(line)) from e

    if not isinstance(frame, dict):
        raise DecodeError(
            f"Frame is a JSON {type(frame).__name__}, expected an object",
            frame=_preview(line),
        )

    if HEARTBEAT_FIELD in frame:
        beat = frame[HEARTBEAT_FIELD]
        timestamp = frame.get("Timestamp")
        if timestamp is None and isinstance(beat, str):
            timestamp = beat
        sequence = beat if isinstance(beat, int) and not isinstance(beat, bool) else None
        return Heartbeat(timestamp=timestamp, sequence=sequence, payload=frame)

    if ERROR_FIELD in frame and set(frame) <= ERROR_METADATA_FIELDS:
        code = frame.get(ERROR_FIELD)
        message = frame.get("Message") or code or "Unknown stream error"
        return ErrorFrame(
            message=str(message),
            code=str(code) if code is not None else None,
            payload=frame,
        )

    return DataFrame(payload=frame)


def _preview(line: Union[str, bytes], limit: int = 120) -> str:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    return line if len(line) <= limit else f"{line[:limit]}..."


class FrameDecoder:
    """Splits a chunked byte stream into newline-delimited frames.

    Only complete lines are returned; the trailing partial line stays
    buffered until its newline arrives or the decoder is cleared.
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Bytes of the incomplete frame currently buffered."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """
        Add a chunk and return the complete frames it finished.

        Raises:
            FramingError: If the incomplete frame exceeds max_frame_bytes
        """
        self._buffer.extend(chunk)
        lines = []

        while True:
            index = self._buffer.find(b"\n")
            if index < 0:
                break
            line = bytes(self._buffer[:index]).strip()
            del self._buffer[:index + 1]
            if line:
                lines.append(line)

        if len(self._buffer) > self.max_frame_bytes:
            size = len(self._buffer)
            self._buffer.clear()
            raise FramingError(
                f"Incomplete frame of {size} bytes exceeds limit of "
                f"{self.max_frame_bytes} bytes; stream out of sync"
            )

        return lines

    def clear(self) -> None:
        """Discard any buffered partial frame."""
        self._buffer.clear()


# =============================================================================
# Stream Session
# =============================================================================

class StreamSession:
    """One streaming subscription.

    Events are delivered in arrival order to the callback, one at a time: the
    next frame is not decoded until the callback (sync or async) returns.
    Without a callback the session is an async iterator over its events,
    handing over one event at a time.

    Example:
        session = StreamSession(request, connect=lambda: invoker.open_stream(request),
                                on_event=handle)
        await session.open()
        ...
        await session.close()

        # Iterator style
        async with await client.open_stream(request) as session:
            async for event in session:
                if isinstance(event, DataFrame):
                    print(event.payload)
    """

    def __init__(
        self,
        request: ApiRequest,
        connect: Callable[[], Awaitable[aiohttp.ClientResponse]],
        on_event: Optional[EventCallback] = None,
        idle_timeout: Optional[float] = None,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        stream_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the session (no I/O until open()).

        Args:
            request: Stream-open request
            connect: Coroutine function returning the open 2xx response
            on_event: Callback for each event (None = iterator mode)
            idle_timeout: Seconds without any bytes before the stream is
                          failed as stalled (None = rely on the transport)
            max_frame_bytes: Limit for one incomplete frame
            stream_id: Identifier used in logs and StreamManager listings
            clock: Monotonic clock in seconds
        """
        self.request = request
        self.stream_id = stream_id or _default_stream_id(request)
        self.idle_timeout = idle_timeout

        self._connect = connect
        self._clock = clock
        self._decoder = FrameDecoder(max_frame_bytes)
        self._queue: Optional[asyncio.Queue] = None
        if on_event is None:
            self._queue = asyncio.Queue(maxsize=1)
            on_event = self._hand_off
        self._on_event = on_event

        self._status = StreamStatus.CONNECTING
        self._connecting = False
        self._response: Optional[aiohttp.ClientResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._terminal_callbacks: list[Callable[["StreamSession"], None]] = []

        self.error: Optional[BaseException] = None
        self.frames_received = 0
        self.malformed_frames = 0
        self.last_frame_time: Optional[float] = None
        self.last_heartbeat_time: Optional[float] = None

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        """Check if the session is connecting or open."""
        return self._status in (StreamStatus.CONNECTING, StreamStatus.OPEN)

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATES

    def add_terminal_callback(self, callback: Callable[["StreamSession"], None]) -> None:
        """Register a function called once when the session reaches CLOSED or FAILED."""
        if self.is_terminal:
            callback(self)
        else:
            self._terminal_callbacks.append(callback)

    def is_stalled(self, threshold: float) -> bool:
        """Check if an open stream has received nothing for `threshold` seconds."""
        if self._status is not StreamStatus.OPEN or self.last_frame_time is None:
            return False
        return self._clock() - self.last_frame_time > threshold

    async def open(self) -> "StreamSession":
        """
        Connect and start the decode loop.

        Returns:
            self, for chaining

        Raises:
            AuthError, HttpError, TransportError: If the stream cannot be opened
                (the session is FAILED afterwards, unless close() was called while
                connecting, in which case the session ends CLOSED)
            RuntimeError: If the session was already opened
        """
        if self._status is not StreamStatus.CONNECTING or self._connecting:
            raise RuntimeError(f"Stream {self.stream_id} can only be opened once")

        self._connecting = True
        logger.info(f"Opening stream {self.stream_id}")

        try:
            response = await self._connect()
        except asyncio.CancelledError:
            self._finish(StreamStatus.CLOSED)
            raise
        except Exception as e:
            self.error = e
            if self._status is StreamStatus.CLOSING:
                # close() was called while connecting; the close wins
                logger.info(f"Stream {self.stream_id} closed while connecting: {e}")
                self._finish(StreamStatus.CLOSED)
                return self
            logger.error(f"Stream {self.stream_id} failed to open: {e}")
            self._finish(StreamStatus.FAILED)
            raise

        if self._status is not StreamStatus.CONNECTING:
            # close() was called while connecting
            response.close()
            self._finish(StreamStatus.CLOSED)
            return self

        self._response = response
        self._status = StreamStatus.OPEN
        self.last_frame_time = self._clock()
        self._task = asyncio.get_running_loop().create_task(
            self._decode_loop(), name=f"stream:{self.stream_id}"
        )
        logger.info(f"Stream {self.stream_id} open")
        return self

    async def close(self) -> None:
        """
        Close the session.

        Stops the decode loop, discards any partial frame and releases the
        connection. Idempotent, and callable from the event callback itself
        or from any other task.
        """
        if self.is_terminal:
            return

        current = asyncio.current_task()

        if self._status is StreamStatus.CLOSING:
            if current is not self._task:
                await self._closed.wait()
            return

        previous = self._status
        self._status = StreamStatus.CLOSING
        logger.info(f"Closing stream {self.stream_id}")

        if previous is StreamStatus.CONNECTING:
            if self._connecting:
                # open() finishes the teardown once the connect attempt returns
                await self._closed.wait()
            else:
                self._finish(StreamStatus.CLOSED)
            return

        task = self._task
        if task is current:
            # Called from the callback; the loop exits after the callback returns
            return
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        else:
            self._release()
            self._finish(StreamStatus.CLOSED)

    async def wait_closed(self) -> StreamStatus:
        """Wait until the session is CLOSED or FAILED and return that status."""
        await self._closed.wait()
        return self._status

    # -------------------------------------------------------------------------
    # Decode loop
    # -------------------------------------------------------------------------

    async def _decode_loop(self) -> None:
        """Read chunks, decode frames and dispatch them until the stream ends."""
        final_status = StreamStatus.CLOSED

        try:
            while self._status is StreamStatus.OPEN:
                chunk = await self._read_chunk()
                if not chunk:
                    logger.info(f"Stream {self.stream_id} ended by server")
                    if self._status is StreamStatus.OPEN:
                        self._status = StreamStatus.CLOSING
                    break

                self.last_frame_time = self._clock()

                for line in self._decoder.feed(chunk):
                    if self._status is not StreamStatus.OPEN:
                        break
                    await self._handle_line(line)

        except FramingError as e:
            final_status = StreamStatus.FAILED
            await self._fail(e)
        except TransportError as e:
            final_status = StreamStatus.FAILED
            await self._fail(e)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            final_status = StreamStatus.FAILED
            await self._fail(TransportError(f"Stream connection error: {e}"))
        except Exception as e:
            final_status = StreamStatus.FAILED
            logger.exception(f"Unexpected error in stream {self.stream_id}")
            await self._fail(TransportError(f"Stream decode loop error: {e!r}"))
        finally:
            self._decoder.clear()
            self._release()
            self._finish(final_status)

    async def _read_chunk(self) -> bytes:
        content = self._response.content
        if self.idle_timeout is None:
            return await content.readany()

        try:
            return await asyncio.wait_for(content.readany(), timeout=self.idle_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"No data received for {self.idle_timeout}s; stream stalled"
            ) from e

    async def _handle_line(self, line: bytes) -> None:
        try:
            event = classify_frame(line)
        except DecodeError as e:
            self.malformed_frames += 1
            logger.warning(f"Skipping malformed frame on {self.stream_id}: {e.message}")
            return

        self.frames_received += 1
        if isinstance(event, Heartbeat):
            self.last_heartbeat_time = self._clock()

        await self._dispatch(event)

    async def _dispatch(self, event: StreamEvent) -> None:
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Stream callback error on {self.stream_id}: {e}")

    async def _hand_off(self, event: StreamEvent) -> None:
        """Queue an event for the iterator and wait until it is taken.

        The decode loop reads nothing further until the consumer has the
        event, so at most one decoded frame waits undelivered.
        """
        await self._queue.put(event)
        if isinstance(event, ErrorFrame) and event.terminal:
            return
        await self._queue.join()

    async def _fail(self, error: Exception) -> None:
        """Record a fatal error and deliver the terminal ErrorFrame."""
        self.error = error
        logger.error(f"Stream {self.stream_id} failed: {error}")
        await self._dispatch(ErrorFrame(message=str(error), terminal=True))

    def _release(self) -> None:
        if self._response is not None:
            self._response.close()
            self._response = None

    def _finish(self, status: StreamStatus) -> None:
        if self.is_terminal:
            return
        self._status = status
        self._closed.set()
        logger.info(f"Stream {self.stream_id} {status.name.lower()}")

        callbacks, self._terminal_callbacks = self._terminal_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Terminal callback error on {self.stream_id}: {e}")

    # -------------------------------------------------------------------------
    # Iterator / context manager
    # -------------------------------------------------------------------------

    def __aiter__(self) -> "StreamSession":
        if self._queue is None:
            raise TypeError(
                f"Stream {self.stream_id} delivers events to a callback; "
                f"open it without on_event to iterate"
            )
        return self

    async def __anext__(self) -> StreamEvent:
        queue = self._queue
        if not queue.empty():
            return self._take(queue.get_nowait())
        if self.is_terminal:
            raise StopAsyncIteration

        getter = asyncio.ensure_future(queue.get())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return self._take(getter.result())
        if not queue.empty():
            return self._take(queue.get_nowait())
        raise StopAsyncIteration

    def _take(self, event: StreamEvent) -> StreamEvent:
        # Releases the decode loop waiting in _hand_off
        self._queue.task_done()
        return event

    async def __aenter__(self) -> "StreamSession":
        if self._status is StreamStatus.CONNECTING and not self._connecting:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"StreamSession({self.stream_id!r}, status={self._status.name})"


def _default_stream_id(request: ApiRequest) -> str:
    params = json.dumps(dict(request.params or {}), sort_keys=True, default=str)
    return f"{request.path}:{params}"


# =============================================================================
# Stream Manager
# =============================================================================

class StreamManager:
    """Tracks open sessions and enforces the concurrent stream limit.

    Sessions count against the limit from the moment they start connecting
    and are dropped automatically when they reach CLOSED or FAILED.
    """

    def __init__(self, max_streams: int = DEFAULT_MAX_CONCURRENT_STREAMS):
        self.max_streams = max_streams
        self._sessions: list[StreamSession] = []

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> list[StreamSession]:
        return list(self._sessions)

    def active_streams(self) -> list[str]:
        """Identifiers of the sessions currently tracked."""
        return [session.stream_id for session in self._sessions]

    def register(self, session: StreamSession) -> None:
        """
        Start tracking a session.

        Raises:
            StreamLimitError: If max_streams sessions are already tracked
        """
        if len(self._sessions) >= self.max_streams:
            raise StreamLimitError(self.max_streams)
        self._sessions.append(session)
        session.add_terminal_callback(self._remove)

    async def open(self, session: StreamSession) -> StreamSession:
        """Register and open a session."""
        self.register(session)
        return await session.open()

    async def close_all(self) -> None:
        """Close every tracked session."""
        sessions = list(self._sessions)
        if sessions:
            logger.info(f"Closing {len(sessions)} active streams")
        await asyncio.gather(*(session.close() for session in sessions))

    def _remove(self, session: StreamSession) -> None:
        if session in self._sessions:
            self._sessions.remove(session)
