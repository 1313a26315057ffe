"""nvbridge session entry point"""

import argparse
import logging
import signal
import sys
from types import FrameType
from typing import NoReturn, Optional

from nvbridge.cli import launchOptions_build, parser_create
from nvbridge.client.bootstrap import (
    configWithSettings_load,
    connectionRequestWithConfig_build,
    loggingWithConfig_setup,
)
from nvbridge.client.client_logging import logging_setup
from nvbridge.client.connector import Connector
from nvbridge.client.session import BridgeSession, session_open, startupWindowState_apply
from nvbridge.client.shutdown import ShutdownCoordinator
from nvbridge.common.errors import BridgeConnectionError, RpcError
from nvbridge.common.host import HostEnvironment
from nvbridge.common.settings import settings

logger = logging.getLogger(__name__)


def signalHandlers_install(coordinator: ShutdownCoordinator) -> None:
    """
    Route SIGINT/SIGTERM to the shutdown coordinator

    The first signal requests a graceful close; a second one disconnects
    immediately.

    Args:
        coordinator: Session shutdown coordinator
    """
    interrupts: list[int] = []

    def interrupt_handle(signum: int, frame: Optional[FrameType]) -> None:
        interrupts.append(signum)
        if len(interrupts) == 1:
            logger.info("Received signal %s, requesting close", signum)
            coordinator.closeRequest_local()
        else:
            logger.warning("Received signal %s again, disconnecting", signum)
            coordinator.disconnected_enter(error="interrupted")

    signal.signal(signal.SIGINT, interrupt_handle)
    signal.signal(signal.SIGTERM, interrupt_handle)


def session_wait(session: BridgeSession) -> int:
    """
    Block until the session is disconnected

    Args:
        session: Open session

    Returns:
        Process exit status
    """
    while not session.coordinator.wait(settings.SESSION_POLL_INTERVAL):
        pass
    if session.coordinator.error is not None:
        return 1
    return 0


def bridge_run(args: argparse.Namespace) -> NoReturn:
    """
    Run one bridge session from parsed arguments

    Args:
        args: Parsed CLI args (see nvbridge.cli.arguments_parse)
    """
    config = configWithSettings_load(args)
    host = HostEnvironment()
    loggingWithConfig_setup(config, host, logging_setup)

    options = launchOptions_build(args, config.core.executable)
    request = connectionRequestWithConfig_build(
        options, config, host, parser_create().format_usage()
    )

    connector = Connector(host=host)
    try:
        session = session_open(connector, request)
    except (BridgeConnectionError, RpcError) as e:
        logger.error("Failed to connect to core: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    with session.handle:
        signalHandlers_install(session.coordinator)
        try:
            startupWindowState_apply(session.dispatcher, options)
        except BridgeConnectionError as e:
            logger.error("Failed to apply startup window state: %s", e)
        logger.info("Bridge running. Press Ctrl+C to stop.")
        status = session_wait(session)

    sys.exit(status)
