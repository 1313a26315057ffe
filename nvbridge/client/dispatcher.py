"""
GUI protocol dispatcher.

This module maps GUI commands to notifications on the single GUI channel and
maps inbound GUI channel notifications to updates of the `GuiState` mirror.
Inbound handlers only replace the state snapshot; they never send.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Callable, Protocol, Sequence

from nvbridge.common.errors import (
    BridgeConnectionError,
    FontSpecError,
    ProtocolError,
    ValidationError,
)
from nvbridge.common.font import FontSpec, fontSpec_format, fontSpec_parse
from nvbridge.common.settings import settings
from nvbridge.common.types import GuiState
from nvbridge.protocol.message import (
    CloseEvent,
    DropFilesEvent,
    FontEvent,
    ForegroundEvent,
    GuiEvent,
    GuiMessageBuilder,
    GuiMessageParser,
    LinespaceEvent,
    MousehideEvent,
    UnknownEvent,
    WindowFullScreenEvent,
    WindowMaximizedEvent,
    commandPath_escape,
)

logger = logging.getLogger(__name__)

__all__ = ["GuiDispatcher", "CoreChannel"]

LeaveCallback = Callable[[], None]


class CoreChannel(Protocol):
    """Send surface of a live connection."""

    def notify(self, method: str, params: Sequence[Any]) -> None:
        ...

    def request(self, method: str, params: Sequence[Any], timeout: float | None = None) -> Any:
        ...


class GuiDispatcher:
    """
    Single writer of `GuiState` and sender of GUI channel notifications.

    Outbound sends from any thread are serialized through one lock. Readers
    obtain immutable snapshots through `state`.
    """

    def __init__(self, channel: CoreChannel | None = None) -> None:
        """
        Initialize dispatcher.

        Args:
            channel:
                Connection used for notifications and requests. May be bound
                later with `channel_bind` so the dispatcher can be registered
                for notifications before the connection starts delivering.
        """
        self._channel: CoreChannel | None = channel
        self._send_lock: threading.Lock = threading.Lock()
        self._state_lock: threading.Lock = threading.Lock()
        self._state: GuiState = GuiState()
        self._subscribed: bool = False
        self._leave_callbacks: list[LeaveCallback] = []
        self._handlers: dict[type, Callable[[Any], None]] = {
            ForegroundEvent: self.foregroundEvent_handle,
            WindowMaximizedEvent: self.windowMaximizedEvent_handle,
            WindowFullScreenEvent: self.windowFullScreenEvent_handle,
            FontEvent: self.fontEvent_handle,
            LinespaceEvent: self.linespaceEvent_handle,
            MousehideEvent: self.mousehideEvent_handle,
            DropFilesEvent: self.dropFilesEvent_handle,
            CloseEvent: self.closeEvent_handle,
            UnknownEvent: self.unknownEvent_handle,
        }

    @property
    def state(self) -> GuiState:
        """Current state snapshot."""
        with self._state_lock:
            return self._state

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    def channel_bind(self, channel: CoreChannel) -> None:
        self._channel = channel

    def channel_get(self) -> CoreChannel:
        """
        Return the bound channel.

        Raises:
            BridgeConnectionError:
                Raised when no connection is bound yet.
        """
        if self._channel is None:
            raise BridgeConnectionError("GUI dispatcher is not bound to a connection")
        return self._channel

    def leaveCallback_register(self, callback: LeaveCallback) -> None:
        """Register a callback for the core's `Close` (leaving) event."""
        self._leave_callbacks.append(callback)

    # =========================================================================
    # Connection setup
    # =========================================================================

    def subscription_establish(self) -> None:
        """
        Subscribe to the GUI channel once per connection.

        Raises:
            BridgeConnectionError, RpcError:
                Raised when the subscribe request fails.
        """
        if self._subscribed:
            return
        self.channel_get().request(settings.SUBSCRIBE_METHOD, [settings.GUI_CHANNEL])
        self._subscribed = True
        logger.debug("Subscribed to %s channel", settings.GUI_CHANNEL)

    # =========================================================================
    # Outbound
    # =========================================================================

    def send(self, event_name: str, args: Sequence[Any] = ()) -> None:
        """
        Send one GUI channel notification.

        Args:
            event_name:
                Event discriminator.
            args:
                Event arguments, in order.
        """
        params: list[Any] = [event_name, *args]
        with self._send_lock:
            self.channel_get().notify(settings.GUI_CHANNEL, params)
        logger.debug("Sent %s %s", event_name, list(args))

    def event_send(self, event: GuiEvent) -> None:
        """Encode and send a typed event."""
        params: list[Any] = GuiMessageBuilder.guiEvent_arguments(event)
        self.send(params[0], params[1:])

    # =========================================================================
    # Commands: no argument reads state, one argument validates and sends
    # =========================================================================

    def guiFont_command(self, text: str | None = None, force: bool = False) -> FontSpec | None:
        """
        Read or request the GUI font.

        Args:
            text:
                Font descriptor, or `None` to read the current font.
            force:
                Send text that fails the font grammar verbatim.

        Returns:
            Current font when reading, else `None`.

        Raises:
            FontSpecError:
                Raised before any I/O when text is invalid and not forced.
        """
        if text is None:
            return self.state.current_font
        spec: FontSpec = fontSpec_parse(text, force=force)
        self.event_send(FontEvent(fontSpec_format(spec)))
        return None

    def guiLinespace_command(self, pixels: int | None = None) -> int | None:
        """
        Read or request extra per-line pixel spacing.

        Raises:
            ValidationError:
                Raised when pixels is not an integer.
        """
        if pixels is None:
            return self.state.linespace
        if isinstance(pixels, bool) or not isinstance(pixels, int):
            raise ValidationError(f"Linespace must be an integer, got {pixels!r}")
        self.event_send(LinespaceEvent(pixels))
        return None

    def windowMaximized_command(self, enabled: bool | None = None) -> bool | None:
        """Read or request the maximized window state."""
        if enabled is None:
            return self.state.window_maximized
        self.event_send(WindowMaximizedEvent(flagArgument_validate("WindowMaximized", enabled)))
        return None

    def windowFullScreen_command(self, enabled: bool | None = None) -> bool | None:
        """Read or request the fullscreen window state."""
        if enabled is None:
            return self.state.window_full_screen
        self.event_send(WindowFullScreenEvent(flagArgument_validate("WindowFullScreen", enabled)))
        return None

    def guiMousehide_command(self, enabled: bool | None = None) -> bool | None:
        """Read or request hiding the mouse while typing."""
        if enabled is None:
            return self.state.mouse_hide
        self.event_send(MousehideEvent(flagArgument_validate("Mousehide", enabled)))
        return None

    def windowForeground_command(self) -> None:
        """Request window raise and focus."""
        self.event_send(ForegroundEvent())

    def filesDrop_command(self, paths: Sequence[str]) -> None:
        """
        Ask the core to open files, escaping each path for its command parser.

        Raises:
            ValidationError:
                Raised when paths is empty or contains non-strings.
        """
        if isinstance(paths, str) or not paths:
            raise ValidationError("DropFiles needs at least one path")
        if not all(isinstance(path, str) and path for path in paths):
            raise ValidationError(f"DropFiles paths must be non-empty strings: {list(paths)!r}")
        self.event_send(DropFilesEvent(tuple(commandPath_escape(path) for path in paths)))

    def closeRequest_send(self) -> None:
        """Send the close notification; used by the shutdown coordinator."""
        self.event_send(CloseEvent())

    def windowId_publish(self, window_id: int) -> None:
        """
        Publish the presentation window handle to the core.

        State is updated only after the core acknowledges the request.

        Raises:
            ValidationError:
                Raised when window_id is not an integer.
        """
        if isinstance(window_id, bool) or not isinstance(window_id, int):
            raise ValidationError(f"Window id must be an integer, got {window_id!r}")
        self.channel_get().request(settings.SET_VAR_METHOD, [settings.WINDOW_ID_VAR, window_id])
        self.state_update(window_id=window_id)

    # =========================================================================
    # Inbound
    # =========================================================================

    def notification_handle(self, method: str, args: Sequence[Any]) -> None:
        """
        Handle one inbound notification.

        Only GUI channel notifications are inspected. Malformed payloads are
        logged and dropped.

        Args:
            method:
                Notification method.
            args:
                Notification arguments.
        """
        if method != settings.GUI_CHANNEL:
            return
        try:
            event: GuiEvent = GuiMessageParser.guiEvent_parse(args)
        except ProtocolError as exc:
            logger.warning("Dropping GUI notification: %s", exc)
            return
        self._handlers[type(event)](event)

    def foregroundEvent_handle(self, event: ForegroundEvent) -> None:
        logger.debug("Core requested foreground")

    def windowMaximizedEvent_handle(self, event: WindowMaximizedEvent) -> None:
        self.state_update(window_maximized=event.enabled)

    def windowFullScreenEvent_handle(self, event: WindowFullScreenEvent) -> None:
        self.state_update(window_full_screen=event.enabled)

    def fontEvent_handle(self, event: FontEvent) -> None:
        """Store the core's font; unparseable platform strings are kept verbatim."""
        try:
            spec: FontSpec = fontSpec_parse(event.text)
        except FontSpecError as exc:
            logger.debug("Keeping unrecognized font %r verbatim: %s", event.text, exc)
            spec = fontSpec_parse(event.text, force=True)
        self.state_update(current_font=spec)

    def linespaceEvent_handle(self, event: LinespaceEvent) -> None:
        self.state_update(linespace=event.pixels)

    def mousehideEvent_handle(self, event: MousehideEvent) -> None:
        self.state_update(mouse_hide=event.enabled)

    def dropFilesEvent_handle(self, event: DropFilesEvent) -> None:
        logger.debug("Core acknowledged %s dropped files", len(event.paths))

    def closeEvent_handle(self, event: CloseEvent) -> None:
        logger.info("Core is leaving")
        for callback in list(self._leave_callbacks):
            callback()

    def unknownEvent_handle(self, event: UnknownEvent) -> None:
        logger.debug("Ignoring unknown GUI event %s", event.name)

    def state_update(self, **changes: Any) -> None:
        """Replace the state snapshot with `changes` applied atomically."""
        with self._state_lock:
            self._state = dataclasses.replace(self._state, **changes)


def flagArgument_validate(name: str, value: Any) -> bool:
    """
    Validate a boolean command argument.

    Raises:
        ValidationError:
            Raised when value is not a bool.
    """
    if not isinstance(value, bool):
        raise ValidationError(f"{name} expects true or false, got {value!r}")
    return value
