"""nvbridge command-line interface"""

import argparse
import sys
from typing import NoReturn, Optional, Sequence

from nvbridge import __version__
from nvbridge.common.types import LaunchOptions


def parser_create() -> argparse.ArgumentParser:
    """
    Build the argument parser

    Returns:
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="nvbridge",
        description="Connect a GUI presentation layer to a headless editor core",
        epilog="Additional arguments after -- are forwarded to the core.",
    )

    parser.add_argument("--version", action="version", version=f"nvbridge {__version__}")

    parser.add_argument(
        "--nvim",
        type=str,
        default=None,
        metavar="NVIM_PATH",
        help="Core executable path (overrides config, default: nvim)",
    )

    parser.add_argument(
        "--maximized", action="store_true", help="Maximize the window on startup"
    )

    parser.add_argument(
        "--fullscreen", action="store_true", help="Open the window in fullscreen on startup"
    )

    # Connection modes are validated by the connection manager so that
    # conflicts are reported the same way however they arise
    parser.add_argument(
        "--embed", action="store_true", help="Communicate with the core over stdin/out"
    )

    parser.add_argument(
        "--server",
        type=str,
        default=None,
        metavar="ADDR",
        help="Connect to an existing core instance (HOST:PORT or socket path)",
    )

    parser.add_argument(
        "--spawn",
        action="store_true",
        help="Call the core using the given positional arguments",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: search standard locations)",
    )

    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging (overrides config)"
    )

    parser.add_argument(
        "--info", action="store_true", help="Enable info logging (overrides config)"
    )

    parser.add_argument(
        "--warning", action="store_true", help="Enable warning logging (overrides config)"
    )

    parser.add_argument(
        "--error", action="store_true", help="Enable error logging (overrides config)"
    )

    parser.add_argument(
        "--critical", action="store_true", help="Enable critical logging (overrides config)"
    )

    parser.add_argument("files", nargs="*", metavar="file", help="Edit specified file(s)")

    return parser


def arguments_parse(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments

    Everything after `--spawn` (when it comes before any `--`) is the spawn
    executable and its arguments; everything after `--` is forwarded to the
    core untouched.

    Args:
        argv: Arguments without the program name; defaults to sys.argv[1:].

    Returns:
        Parsed CLI arguments with `spawn_arguments`, `forwarded_arguments`
        and `forward_marker` attached.
    """
    arguments: list[str] = list(sys.argv[1:] if argv is None else argv)
    parser = parser_create()

    marker: int = arguments.index("--") if "--" in arguments else -1
    spawn_index: int = arguments.index("--spawn") if "--spawn" in arguments else -1

    spawn_arguments: list[str] = []
    forwarded: list[str] = []
    if spawn_index != -1 and (marker == -1 or spawn_index < marker):
        args = parser.parse_args(arguments[: spawn_index + 1])
        spawn_arguments = arguments[spawn_index + 1:]
        marker = -1
    elif marker != -1:
        args = parser.parse_args(arguments[:marker])
        forwarded = arguments[marker + 1:]
    else:
        args = parser.parse_args(arguments)

    args.spawn_arguments = spawn_arguments
    args.forwarded_arguments = forwarded
    args.forward_marker = marker != -1
    return args


def launchOptions_build(args: argparse.Namespace, executable: str) -> LaunchOptions:
    """
    Convert parsed arguments into launch options

    Args:
        args: Parsed CLI args.
        executable: Core executable when --nvim is not given.

    Returns:
        Launch options.
    """
    return LaunchOptions(
        executable=args.nvim or executable,
        embed=args.embed,
        server=args.server,
        spawn=args.spawn,
        spawn_arguments=tuple(args.spawn_arguments),
        forwarded_arguments=tuple(args.forwarded_arguments),
        forward_marker=args.forward_marker,
        files=tuple(args.files),
        maximized=args.maximized,
        fullscreen=args.fullscreen,
    )


def logLevelOverride_get(args: argparse.Namespace) -> str | None:
    """
    Resolve explicit log level override flags.

    Args:
        args: Parsed CLI args.

    Returns:
        Selected log level or None.
    """
    if args.critical:
        return "CRITICAL"
    if args.error:
        return "ERROR"
    if args.warning:
        return "WARNING"
    if args.info:
        return "INFO"
    if args.debug:
        return "DEBUG"
    return None


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Main entry point for the nvbridge command"""
    args = arguments_parse(argv)
    args.log_level = logLevelOverride_get(args)

    from nvbridge.client.main import bridge_run

    try:
        bridge_run(args)
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    main()
