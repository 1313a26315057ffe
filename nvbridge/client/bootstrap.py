"""Bootstrap helpers for config, logging, and connection-request wiring."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from nvbridge.client.connector import connectionRequest_build, launchOptions_validate
from nvbridge.common.config import Config, ConfigLoader
from nvbridge.common.errors import ConfigurationError
from nvbridge.common.host import HostEnvironment
from nvbridge.common.settings import settings
from nvbridge.common.types import ConnectionRequest, LaunchOptions

logger = logging.getLogger(__name__)


def configWithSettings_load(args: argparse.Namespace) -> Config:
    """
    Load config and initialize settings.

    Args:
        args: Parsed CLI args.

    Returns:
        Loaded config.
    """
    config_path: Path | None = Path(args.config) if args.config else None
    try:
        config: Config = ConfigLoader.configWithOverrides_load(
            file_path=config_path,
            executable=args.nvim,
            log_level=getattr(args, "log_level", None),
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigurationError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)
    settings.initialize(config)
    return config


def loggingWithConfig_setup(
    config: Config,
    host: HostEnvironment,
    logging_setup_func: Callable[..., None],
) -> None:
    """
    Setup logging from config, honouring the log-file environment variable.

    Args:
        config: Loaded config.
        host: Host environment.
        logging_setup_func: Logging setup callback.
    """
    logging_setup_func(
        config.logging.level,
        config.logging.format,
        config.logging.file,
        host.variable_get(config.logging.env_var),
    )


def connectionRequestWithConfig_build(
    options: LaunchOptions,
    config: Config,
    host: HostEnvironment,
    usage: str,
) -> ConnectionRequest:
    """
    Validate launch options and build the connection request.

    The mode check runs before the login environment is imported, so a
    conflicting command line never starts a process.

    Args:
        options: Launch options.
        config: Loaded config.
        host: Host environment.
        usage: Usage text shown with configuration errors.

    Returns:
        Connection request.
    """
    try:
        launchOptions_validate(options)
        if config.host.login_environment:
            host.loginEnvironment_load()
        return connectionRequest_build(options, config, host)
    except ConfigurationError as e:
        logger.error("%s", e)
        print(f"Error: {e}\n{usage}", file=sys.stderr)
        sys.exit(1)
