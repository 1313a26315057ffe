"""
Client logging policy.

This module centralizes logging setup and nvbridge version injection into
log message formats. Handlers never write to stdout, which may carry the RPC
channel in embed mode.
"""

from __future__ import annotations

import logging

from nvbridge import __version__

__all__ = ["logging_setup", "logFormatWithVersion_get"]


def logging_setup(
    level: str,
    log_format: str,
    log_file: str | None,
    extra_log_file: str | None = None,
) -> None:
    """
    Configure logging handlers and format.

    Args:
        level:
            Log level name.
        log_format:
            Base logging format string.
        log_file:
            Optional log-file path from config.
        extra_log_file:
            Optional log-file path from the environment.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    for path in dict.fromkeys(p for p in (log_file, extra_log_file) if p):
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=logFormatWithVersion_get(log_format),
        handlers=handlers,
        force=True,
    )


def logFormatWithVersion_get(log_format: str) -> str:
    """
    Inject runtime version tag into timestamped log format.

    Args:
        log_format:
            Base formatter string.

    Returns:
        Formatter string with embedded version token.
    """
    return log_format.replace("%(asctime)s", f"%(asctime)s [v{__version__}]")
