"""
Shutdown coordination.

States and transitions:

    CONNECTED -> CLOSING_REQUESTED_LOCALLY -> SENT -> DISCONNECTED
    CONNECTED -> CORE_INITIATED_LEAVE -> DISCONNECTED

Any state may also move straight to DISCONNECTED when the link is lost.
A local close request sends the close notification at most once; the core's
leaving signal never sends anything.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Protocol

from nvbridge.common.errors import BridgeConnectionError

logger = logging.getLogger(__name__)

__all__ = ["ShutdownCoordinator", "ShutdownState"]


class ShutdownState(Enum):
    """Connection shutdown states"""

    CONNECTED = "connected"
    CLOSING_REQUESTED_LOCALLY = "closing_requested_locally"
    SENT = "sent"
    CORE_INITIATED_LEAVE = "core_initiated_leave"
    DISCONNECTED = "disconnected"


_TRANSITIONS: dict[ShutdownState, frozenset[ShutdownState]] = {
    ShutdownState.CONNECTED: frozenset(
        {
            ShutdownState.CLOSING_REQUESTED_LOCALLY,
            ShutdownState.CORE_INITIATED_LEAVE,
            ShutdownState.DISCONNECTED,
        }
    ),
    ShutdownState.CLOSING_REQUESTED_LOCALLY: frozenset(
        {ShutdownState.SENT, ShutdownState.DISCONNECTED}
    ),
    ShutdownState.SENT: frozenset({ShutdownState.DISCONNECTED}),
    ShutdownState.CORE_INITIATED_LEAVE: frozenset({ShutdownState.DISCONNECTED}),
    ShutdownState.DISCONNECTED: frozenset(),
}


class CloseSender(Protocol):
    def closeRequest_send(self) -> None:
        ...


class Closeable(Protocol):
    def close(self) -> None:
        ...


class ShutdownCoordinator:
    """
    Drives orderly teardown of one connection.

    Transitions are guarded by a lock and checked against a fixed table, so
    repeated close requests cannot send twice.
    """

    def __init__(self, sender: CloseSender, handle: Closeable) -> None:
        """
        Initialize coordinator.

        Args:
            sender:
                Dispatcher used to send the close notification.
            handle:
                Connection handle released on disconnect.
        """
        self._sender: CloseSender = sender
        self._handle: Closeable = handle
        self._lock: threading.Lock = threading.Lock()
        self._state: ShutdownState = ShutdownState.CONNECTED
        self._disconnected: threading.Event = threading.Event()
        self._listeners: list[Callable[[ShutdownState], None]] = []
        self.error: str | None = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def is_disconnected(self) -> bool:
        return self._disconnected.is_set()

    def listener_register(self, listener: Callable[[ShutdownState], None]) -> None:
        """Register a callback invoked after every state change."""
        self._listeners.append(listener)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until DISCONNECTED; returns False on timeout."""
        return self._disconnected.wait(timeout)

    def _transition(self, target: ShutdownState) -> bool:
        with self._lock:
            if target not in _TRANSITIONS[self._state]:
                return False
            previous: ShutdownState = self._state
            self._state = target
        logger.debug("Shutdown state %s -> %s", previous.value, target.value)
        for listener in list(self._listeners):
            listener(target)
        return True

    def closeRequest_local(self) -> None:
        """
        Request a graceful close from this side.

        Never raises and never waits for acknowledgement. A second request
        after the first is a no-op.
        """
        if not self._transition(ShutdownState.CLOSING_REQUESTED_LOCALLY):
            logger.debug("Close already requested (state %s)", self._state.value)
            return
        try:
            self._sender.closeRequest_send()
        except BridgeConnectionError as exc:
            logger.warning("Close notification not delivered: %s", exc)
            self.disconnected_enter(error=str(exc))
            return
        self._transition(ShutdownState.SENT)

    def coreLeave_handle(self) -> None:
        """Handle the core's leaving signal; sends nothing."""
        if self._transition(ShutdownState.CORE_INITIATED_LEAVE):
            logger.info("Core initiated shutdown")
        self.disconnected_enter()

    def connectionLost_handle(self, reason: str, unexpected: bool) -> None:
        """
        Handle the end of the transport.

        Unexpected loss (core crash, socket drop) is recorded in `error`.

        Args:
            reason:
                Disconnect reason.
            unexpected:
                Whether the link ended without a local close.
        """
        error: str | None = reason if unexpected and self._state == ShutdownState.CONNECTED else None
        self.disconnected_enter(error=error)

    def disconnected_enter(self, error: str | None = None) -> None:
        """
        Move to DISCONNECTED and release the connection handle.

        Args:
            error:
                Optional error flag for abnormal termination.
        """
        if not self._transition(ShutdownState.DISCONNECTED):
            return
        if error is not None:
            self.error = error
            logger.error("Disconnected from core: %s", error)
        self._handle.close()
        self._disconnected.set()
