"""
RPC transport for nvbridge.

This module owns message framing and I/O for the link to the core process.
Frames are msgpack-RPC arrays, packed back to back on the stream:

    [0, msgid, method, params]   request
    [1, msgid, error, result]    response
    [2, method, params]          notification

A single lock serializes writes; a reader thread delivers notifications in
arrival order and resolves pending requests.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from typing import Any, BinaryIO, Callable, Protocol, Sequence

import msgpack
from msgpack.exceptions import BufferFull, UnpackException

from nvbridge.common.errors import BridgeConnectionError, ProtocolError, RpcError

logger = logging.getLogger(__name__)

__all__ = [
    "RpcTransport",
    "StreamTransport",
    "NotificationHandler",
    "DisconnectHandler",
    "frame_encode",
    "frame_validate",
]

REQUEST: int = 0
RESPONSE: int = 1
NOTIFICATION: int = 2

NotificationHandler = Callable[[str, list[Any]], None]
DisconnectHandler = Callable[[str, bool], None]

# Maximum buffered undecoded input to prevent memory exhaustion (1MB).
MAX_BUFFER_SIZE = 1024 * 1024

READ_CHUNK_SIZE = 64 * 1024


class RpcTransport(Protocol):
    """Call/notify surface the bridge needs from a transport."""

    def start(self) -> None:
        """Begin delivering inbound messages."""
        ...

    def notify(self, method: str, params: Sequence[Any]) -> None:
        """Send a fire-and-forget notification."""
        ...

    def request(self, method: str, params: Sequence[Any], timeout: float | None = None) -> Any:
        """Call a method and wait for its result."""
        ...

    def notificationHandler_register(self, handler: NotificationHandler) -> None:
        """Register a callback for inbound notifications."""
        ...

    def disconnectHandler_register(self, handler: DisconnectHandler) -> None:
        """Register a callback fired once when the link ends."""
        ...

    def close(self) -> None:
        """Close the transport; idempotent."""
        ...


class _Disconnected:
    """Sentinel delivered to pending requests when the link ends."""

    def __init__(self, reason: str) -> None:
        self.reason: str = reason


def frame_encode(frame: list[Any]) -> bytes:
    """
    Pack one frame.

    Args:
        frame:
            Frame array.

    Returns:
        msgpack bytes.

    Raises:
        ProtocolError:
            Raised when a value has no msgpack representation.
    """
    try:
        return msgpack.packb(frame, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ProtocolError(f"Unencodable frame: {exc}") from exc


def frame_validate(frame: Any) -> list[Any]:
    """
    Check an unpacked object is an RPC frame.

    Args:
        frame:
            Object produced by the unpacker.

    Returns:
        The frame array.

    Raises:
        ProtocolError:
            Raised when the object is not an array with a known type tag.
    """
    if not isinstance(frame, list) or not frame:
        raise ProtocolError(f"Frame must be a non-empty array: {frame!r}")
    kind = frame[0]
    if isinstance(kind, bool) or not isinstance(kind, int):
        raise ProtocolError(f"Frame type must be an integer: {frame!r}")
    if kind == NOTIFICATION and len(frame) == 3 and isinstance(frame[1], str):
        return frame
    if kind == REQUEST and len(frame) == 4 and isinstance(frame[1], int) and isinstance(frame[2], str):
        return frame
    if kind == RESPONSE and len(frame) == 4 and isinstance(frame[1], int):
        return frame
    raise ProtocolError(f"Malformed frame: {frame!r}")


class StreamTransport:
    """
    Transport over a pair of binary streams.

    Works for child-process pipes, inherited stdio, and socket file objects.
    """

    def __init__(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        name: str = "core",
        request_timeout: float = 10.0,
        max_buffer_size: int = MAX_BUFFER_SIZE,
        owns_streams: bool = True,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize transport.

        Args:
            reader:
                Stream the core writes to.
            writer:
                Stream the core reads from.
            name:
                Peer name for log context.
            request_timeout:
                Default request timeout in seconds.
            max_buffer_size:
                Maximum accepted frame size in bytes.
            owns_streams:
                Whether closing the transport closes the streams.
            on_close:
                Extra teardown hook (e.g. socket shutdown) run by `close`.
        """
        self.name: str = name
        self.request_timeout: float = request_timeout
        self.max_buffer_size: int = max_buffer_size
        self._reader: BinaryIO = reader
        self._writer: BinaryIO = writer
        self._owns_streams: bool = owns_streams
        self._on_close: Callable[[], None] | None = on_close

        self._write_lock: threading.Lock = threading.Lock()
        self._state_lock: threading.Lock = threading.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, queue.Queue[Any]] = {}
        self._notification_handlers: list[NotificationHandler] = []
        self._disconnect_handlers: list[DisconnectHandler] = []
        self._reader_thread: threading.Thread | None = None
        self._closing: bool = False
        self._disconnected: bool = False
        self.disconnect_reason: str | None = None

    @property
    def is_connected(self) -> bool:
        return not self._disconnected and not self._closing

    def start(self) -> None:
        """Start the reader thread; calling twice is a no-op."""
        if self._reader_thread is not None:
            return
        self._reader_thread = threading.Thread(
            target=self._read_loop, name=f"nvbridge-{self.name}-reader", daemon=True
        )
        self._reader_thread.start()

    def notificationHandler_register(self, handler: NotificationHandler) -> None:
        self._notification_handlers.append(handler)

    def disconnectHandler_register(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def notify(self, method: str, params: Sequence[Any]) -> None:
        """
        Send a notification.

        Args:
            method:
                RPC method name.
            params:
                Positional parameters.

        Raises:
            BridgeConnectionError:
                Raised when the link is closed or the write fails.
        """
        self.frame_write([NOTIFICATION, method, list(params)])

    def request(self, method: str, params: Sequence[Any], timeout: float | None = None) -> Any:
        """
        Call a method and block until the response arrives.

        Args:
            method:
                RPC method name.
            params:
                Positional parameters.
            timeout:
                Seconds to wait; defaults to `request_timeout`.

        Returns:
            Result value from the peer.

        Raises:
            RpcError:
                Raised when the peer answers with an error.
            BridgeConnectionError:
                Raised on timeout, write failure or disconnect.
        """
        msgid: int = next(self._ids)
        reply: queue.Queue[Any] = queue.Queue(maxsize=1)
        with self._state_lock:
            if self._disconnected:
                raise BridgeConnectionError(f"Not connected to {self.name}")
            self._pending[msgid] = reply

        try:
            self.frame_write([REQUEST, msgid, method, list(params)])
            wait: float = self.request_timeout if timeout is None else timeout
            try:
                outcome = reply.get(timeout=wait)
            except queue.Empty as exc:
                raise BridgeConnectionError(f"{method} timed out after {wait}s") from exc
        finally:
            with self._state_lock:
                self._pending.pop(msgid, None)

        if isinstance(outcome, _Disconnected):
            raise BridgeConnectionError(f"Connection to {self.name} lost: {outcome.reason}")
        error, result = outcome
        if error is not None:
            raise RpcError(method, error)
        return result

    def frame_write(self, frame: list[Any]) -> None:
        """
        Serialize and write one frame under the write lock.

        Args:
            frame:
                Frame array.

        Raises:
            BridgeConnectionError:
                Raised when the link is closed or the write fails.
        """
        data: bytes = frame_encode(frame)
        with self._write_lock:
            if not self.is_connected:
                raise BridgeConnectionError(f"Not connected to {self.name}")
            try:
                self._writer.write(data)
                self._writer.flush()
            except (OSError, ValueError) as exc:
                raise BridgeConnectionError(f"Failed to send to {self.name}: {exc}") from exc

    def close(self) -> None:
        """
        Close the transport.

        This method is idempotent.
        """
        with self._state_lock:
            if self._closing:
                return
            self._closing = True

        if self._owns_streams:
            with self._write_lock:
                try:
                    self._writer.close()
                except (OSError, ValueError) as exc:
                    logger.debug("Error closing writer for %s: %s", self.name, exc)
            if self._reader_thread is None:
                try:
                    self._reader.close()
                except (OSError, ValueError) as exc:
                    logger.debug("Error closing reader for %s: %s", self.name, exc)
        if self._on_close is not None:
            try:
                self._on_close()
            except OSError as exc:
                logger.debug("Close hook for %s failed: %s", self.name, exc)

        self.disconnect_signal("closed locally")
        logger.info("Connection to %s closed", self.name)

    def _read_loop(self) -> None:
        """Read and unpack frames until end of stream."""
        reason: str = "end of stream"
        unpacker = msgpack.Unpacker(raw=False, max_buffer_size=self.max_buffer_size)
        read: Callable[[int], bytes] = getattr(self._reader, "read1", self._reader.read)
        fed: int = 0
        try:
            while True:
                room: int = self.max_buffer_size - (fed - unpacker.tell())
                if room <= 0:
                    logger.error("Frame exceeds %s bytes, dropping connection", self.max_buffer_size)
                    reason = "buffer size limit exceeded"
                    break
                chunk: bytes = read(min(READ_CHUNK_SIZE, room))
                if not chunk:
                    break
                try:
                    unpacker.feed(chunk)
                except BufferFull:
                    logger.error("Frame exceeds %s bytes, dropping connection", self.max_buffer_size)
                    reason = "buffer size limit exceeded"
                    break
                fed += len(chunk)
                try:
                    for frame in unpacker:
                        self.frame_handle(frame)
                except (UnpackException, ValueError) as exc:
                    logger.error("Undecodable data from %s: %s", self.name, exc)
                    reason = f"undecodable stream: {exc}"
                    break
        except (OSError, ValueError) as exc:
            reason = f"read error: {exc}"
        finally:
            if self._owns_streams:
                try:
                    self._reader.close()
                except (OSError, ValueError):
                    pass
            self.disconnect_signal(reason)

    def frame_handle(self, frame: Any) -> None:
        """
        Validate and route one unpacked frame.

        Malformed frames are logged and dropped.

        Args:
            frame:
                Object produced by the unpacker.
        """
        try:
            frame = frame_validate(frame)
        except ProtocolError as exc:
            logger.warning("Dropping frame from %s: %s", self.name, exc)
            return

        kind: int = frame[0]
        if kind == NOTIFICATION:
            self.notification_deliver(frame[1], frame[2])
        elif kind == RESPONSE:
            self.response_deliver(frame[1], frame[2], frame[3])
        else:
            logger.warning("Rejecting unsupported request %s from %s", frame[2], self.name)
            try:
                self.frame_write([RESPONSE, frame[1], f"Unsupported method {frame[2]}", None])
            except BridgeConnectionError as exc:
                logger.debug("Could not reject request: %s", exc)

    def notification_deliver(self, method: str, params: Any) -> None:
        """Hand a notification to every registered handler, in order."""
        args: list[Any] = params if isinstance(params, list) else [params]
        logger.debug("Received %s from %s", method, self.name)
        for handler in list(self._notification_handlers):
            try:
                handler(method, args)
            except Exception:
                logger.exception("Notification handler failed for %s", method)

    def response_deliver(self, msgid: int, error: Any, result: Any) -> None:
        """Resolve the pending request matching `msgid`."""
        with self._state_lock:
            reply = self._pending.get(msgid)
        if reply is None:
            logger.warning("Response for unknown request id %s from %s", msgid, self.name)
            return
        try:
            reply.put_nowait((error, result))
        except queue.Full:
            logger.warning("Duplicate response for request id %s from %s", msgid, self.name)

    def disconnect_signal(self, reason: str) -> None:
        """
        Mark the link down, fail pending requests, and fire handlers once.

        Args:
            reason:
                Human readable reason.
        """
        with self._state_lock:
            if self._disconnected:
                return
            self._disconnected = True
            expected: bool = self._closing
            self.disconnect_reason = reason
            pending: list[queue.Queue[Any]] = list(self._pending.values())

        for reply in pending:
            try:
                reply.put_nowait(_Disconnected(reason))
            except queue.Full:
                continue

        if not expected:
            logger.warning("Connection to %s lost: %s", self.name, reason)
        for handler in list(self._disconnect_handlers):
            try:
                handler(reason, not expected)
            except Exception:
                logger.exception("Disconnect handler failed")
