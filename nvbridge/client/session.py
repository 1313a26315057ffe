"""Session wiring: one connection, its GUI dispatcher and its shutdown coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nvbridge.client.connector import ConnectionHandle, Connector
from nvbridge.client.dispatcher import GuiDispatcher
from nvbridge.client.shutdown import ShutdownCoordinator
from nvbridge.common.types import ConnectionRequest, LaunchOptions

logger = logging.getLogger(__name__)

__all__ = ["BridgeSession", "session_open", "startupWindowState_apply"]


@dataclass
class BridgeSession:
    """Live objects for one connection to the core."""

    handle: ConnectionHandle
    dispatcher: GuiDispatcher
    coordinator: ShutdownCoordinator


def session_open(connector: Connector, request: ConnectionRequest) -> BridgeSession:
    """
    Connect, wire protocol and shutdown handling, and subscribe to GUI events.

    The handle is released if anything after the connect fails.

    Args:
        connector: Connection manager.
        request: Connection request.

    Returns:
        Wired session.
    """
    dispatcher: GuiDispatcher = GuiDispatcher()
    handle: ConnectionHandle = connector.establish(
        request, notification_handler=dispatcher.notification_handle, start=False
    )
    try:
        dispatcher.channel_bind(handle)
        coordinator: ShutdownCoordinator = ShutdownCoordinator(dispatcher, handle)
        dispatcher.leaveCallback_register(coordinator.coreLeave_handle)
        handle.transport.disconnectHandler_register(coordinator.connectionLost_handle)
        # Inbound delivery begins only once every handler is in place
        handle.transport.start()
        if not coordinator.is_disconnected:
            dispatcher.subscription_establish()
    except BaseException:
        handle.close()
        raise
    return BridgeSession(handle=handle, dispatcher=dispatcher, coordinator=coordinator)


def startupWindowState_apply(dispatcher: GuiDispatcher, options: LaunchOptions) -> None:
    """
    Send startup window hints through the regular window commands.

    Fullscreen takes precedence over maximized.

    Args:
        dispatcher: GUI dispatcher.
        options: Launch options.
    """
    if options.fullscreen:
        dispatcher.windowFullScreen_command(True)
    elif options.maximized:
        dispatcher.windowMaximized_command(True)
