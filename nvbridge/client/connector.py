"""
Connection manager for nvbridge.

This module turns startup configuration into exactly one connection request
(spawn, embed, or server attach), computes the spawn argument list including
runtime-path injection, and acquires the link to the core process behind an
owning `ConnectionHandle`.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
import threading
from typing import Any, BinaryIO, Callable, Sequence

from nvbridge.client.transport import NotificationHandler, RpcTransport, StreamTransport
from nvbridge.common.config import Config
from nvbridge.common.errors import (
    AmbiguousConnectionMode,
    BridgeConnectionError,
    ConnectFailure,
    InvalidArguments,
    SpawnFailure,
    TransportUnavailable,
)
from nvbridge.common.host import HostEnvironment
from nvbridge.common.settings import settings
from nvbridge.common.types import (
    ConnectionMode,
    ConnectionRequest,
    EmbedRequest,
    ExitStatus,
    LaunchOptions,
    RuntimePathHint,
    ServerAttachRequest,
    SpawnRequest,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ConnectAttempt",
    "ConnectionHandle",
    "Connector",
    "connectionRequest_build",
    "launchOptions_validate",
    "runtimePath_resolve",
    "spawnArguments_build",
    "embedFlags_insert",
    "serverAddress_parse",
]

ProcessSpawner = Callable[[list[str]], "subprocess.Popen[bytes]"]
SocketOpener = Callable[[str], socket.socket]
StdioProvider = Callable[[], "tuple[BinaryIO | None, BinaryIO | None]"]
TransportFactory = Callable[..., RpcTransport]


def connectionRequest_build(
    options: LaunchOptions,
    config: Config,
    host: HostEnvironment,
) -> ConnectionRequest:
    """
    Build the single connection request described by the launch options.

    Validation happens here, before any process or socket activity.

    Args:
        options:
            Parsed command-line surface.
        config:
            Loaded configuration.
        host:
            Host environment used for runtime-path resolution.

    Returns:
        Spawn, embed or server-attach request.

    Raises:
        AmbiguousConnectionMode:
            Raised when more than one mode is requested.
        InvalidArguments:
            Raised when arguments do not fit the selected mode.
    """
    launchOptions_validate(options)

    if options.embed:
        return EmbedRequest()

    if options.server is not None:
        return ServerAttachRequest(address=options.server)

    if options.spawn:
        return SpawnRequest(
            executable=options.spawn_arguments[0],
            arguments=tuple(options.spawn_arguments[1:]),
        )

    hint: RuntimePathHint = runtimePath_resolve(config, host)
    arguments: list[str] = spawnArguments_build(
        startup_flags=config.core.startup_flags,
        runtime_hint=hint,
        forwarded=options.forwarded_arguments,
        files=options.files,
    )
    return SpawnRequest(executable=options.executable, arguments=tuple(arguments))


def launchOptions_validate(options: LaunchOptions) -> None:
    """
    Check the launch options select exactly one usable mode.

    Performs no I/O.

    Raises:
        AmbiguousConnectionMode:
            Raised when more than one mode is requested.
        InvalidArguments:
            Raised when arguments do not fit the selected mode.
    """
    requested: list[str] = []
    if options.embed:
        requested.append("--embed")
    if options.server is not None:
        requested.append("--server")
    if options.spawn:
        requested.append("--spawn")
    if len(requested) > 1:
        raise AmbiguousConnectionMode(requested)

    if options.embed:
        positionalArguments_reject(options, "--embed")
    elif options.server is not None:
        positionalArguments_reject(options, "--server")
    elif options.spawn:
        if not options.spawn_arguments:
            raise InvalidArguments("--spawn requires at least one positional argument")
        if options.files:
            raise InvalidArguments("--spawn takes its file arguments after the executable")


def positionalArguments_reject(options: LaunchOptions, mode_flag: str) -> None:
    """
    Reject file and forwarded arguments for modes that cannot pass them on.

    Raises:
        InvalidArguments:
            Raised when any positional argument or `--` was given.
    """
    if options.files or options.forwarded_arguments or options.forward_marker:
        raise InvalidArguments(f"{mode_flag} does not accept positional arguments")


def runtimePath_resolve(config: Config, host: HostEnvironment) -> RuntimePathHint:
    """
    Resolve the runtime directory to inject into the core's search path.

    Priority is fixed: environment override, configured default, then a path
    relative to the running program. The first existing directory wins.

    Args:
        config:
            Loaded configuration.
        host:
            Host environment.

    Returns:
        Hint listing the candidates and the resolved directory, if any.
    """
    candidates: list[str] = []
    override: str | None = host.variable_get(config.runtime.env_var)
    if override:
        candidates.append(override)
    if config.runtime.default_path:
        candidates.append(config.runtime.default_path)
    relative: str = os.path.normpath(
        str(host.programDirectory_get() / config.runtime.relative_path)
    )
    candidates.append(relative)

    for candidate in candidates:
        if host.directory_exists(candidate):
            logger.debug("Runtime path resolved to %s", candidate)
            return RuntimePathHint(candidates=tuple(candidates), resolved=candidate)
    logger.debug("No runtime path found among %s", candidates)
    return RuntimePathHint(candidates=tuple(candidates))


def spawnArguments_build(
    startup_flags: Sequence[str],
    runtime_hint: RuntimePathHint,
    forwarded: Sequence[str],
    files: Sequence[str],
) -> list[str]:
    """
    Build the core argument list for the default spawn mode.

    Order: runtime-path injection pair (at most one), fixed startup flags,
    forwarded trailing arguments, positional files.

    Args:
        startup_flags:
            Fixed startup flags from config.
        runtime_hint:
            Resolved runtime-path hint.
        forwarded:
            Arguments given after `--`.
        files:
            Positional file arguments.

    Returns:
        Argument list (without the executable).
    """
    arguments: list[str] = runtime_hint.injectionFlags_get()
    arguments.extend(startup_flags)
    arguments.extend(forwarded)
    arguments.extend(files)
    return arguments


def embedFlags_insert(arguments: Sequence[str], embed_flags: Sequence[str]) -> list[str]:
    """
    Insert the RPC-over-stdio flags into a core argument list.

    The core treats everything after a literal `--` as file names, so the
    flags go right before it when present.

    Args:
        arguments:
            Core arguments.
        embed_flags:
            Flags that make the core speak RPC on stdio.

    Returns:
        New argument list.
    """
    result: list[str] = list(arguments)
    if "--" in result:
        index: int = result.index("--")
        return result[:index] + list(embed_flags) + result[index:]
    return result + list(embed_flags)


def serverAddress_parse(address: str) -> tuple[str, int] | str:
    """
    Classify a server address.

    Args:
        address:
            `host:port` or a local socket path.

    Returns:
        `(host, port)` for TCP addresses, the path string for local sockets.

    Raises:
        ConnectFailure:
            Raised when the address is malformed.
    """
    if not address:
        raise ConnectFailure("Server address is empty")
    if os.sep in address or "/" in address or ":" not in address:
        return address

    host: str
    port_str: str
    host, port_str = address.rsplit(":", 1)
    if not host:
        raise ConnectFailure(f"Server address must be in format host:port: {address!r}")
    try:
        port: int = int(port_str)
    except ValueError as exc:
        raise ConnectFailure(f"Invalid port number: {port_str!r}") from exc
    if not 0 < port < 65536:
        raise ConnectFailure(f"Invalid port number: {port_str!r}")
    return host.strip("[]"), port


def socket_open(address: str) -> socket.socket:
    """
    Open a stream socket to a server address.

    Args:
        address:
            `host:port` or local socket path.

    Returns:
        Connected socket.

    Raises:
        ConnectFailure:
            Raised when the address is malformed, unreachable or refused.
    """
    target: tuple[str, int] | str = serverAddress_parse(address)
    try:
        if isinstance(target, tuple):
            return socket.create_connection(target)
        if not hasattr(socket, "AF_UNIX"):
            raise ConnectFailure(f"Local sockets are not supported on this platform: {address}")
        sock: socket.socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(target)
        except OSError:
            sock.close()
            raise
        return sock
    except OSError as exc:
        raise ConnectFailure(f"Failed to connect to {address}: {exc}") from exc


def process_spawn(argv: list[str]) -> "subprocess.Popen[bytes]":
    """Start the core with its stdin/stdout wired to pipes."""
    return subprocess.Popen(argv, stdin=subprocess.PIPE, stdout=subprocess.PIPE)


def stdio_get() -> "tuple[BinaryIO | None, BinaryIO | None]":
    """Return the inherited binary stdin/stdout, if any."""
    stdin = getattr(sys.stdin, "buffer", None) if sys.stdin is not None else None
    stdout = getattr(sys.stdout, "buffer", None) if sys.stdout is not None else None
    return stdin, stdout


class ConnectionHandle:
    """
    Owning handle for one live connection.

    Owns the transport and, in spawn mode, the child process. `close` is
    idempotent and releases both on every exit path; use the handle as a
    context manager to guarantee it.
    """

    def __init__(
        self,
        mode: ConnectionMode,
        transport: RpcTransport,
        process: "subprocess.Popen[bytes] | None" = None,
        shutdown_timeout: float = 2.0,
    ) -> None:
        self.mode: ConnectionMode = mode
        self.transport: RpcTransport = transport
        self.process: "subprocess.Popen[bytes] | None" = process
        self.shutdown_timeout: float = shutdown_timeout
        self.exit_status: ExitStatus | None = None
        self._closed: bool = False
        transport.disconnectHandler_register(self.transportLost_handle)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "ConnectionHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def notify(self, method: str, params: Sequence[Any]) -> None:
        self.transport.notify(method, params)

    def request(self, method: str, params: Sequence[Any], timeout: float | None = None) -> Any:
        return self.transport.request(method, params, timeout)

    def transportLost_handle(self, reason: str, unexpected: bool) -> None:
        """
        Record how the link ended.

        Args:
            reason:
                Disconnect reason from the transport.
            unexpected:
                Whether the link ended without a local close.
        """
        if self.exit_status is not None:
            return
        returncode: int | None = self.process.poll() if self.process is not None else None
        self.exit_status = ExitStatus(reason=reason, unexpected=unexpected, returncode=returncode)
        if unexpected:
            logger.error("Core connection ended unexpectedly: %s (exit code %s)", reason, returncode)

    def close(self) -> None:
        """
        Close the transport and terminate a spawned core.

        This method is idempotent.
        """
        if self._closed:
            return
        self._closed = True
        self.transport.close()
        if self.process is not None:
            self.process_terminate()

    def process_terminate(self) -> None:
        """Wait for the child to exit, terminating and then killing it if needed."""
        process = self.process
        if process is None or process.poll() is not None:
            return
        try:
            process.wait(timeout=self.shutdown_timeout)
            return
        except subprocess.TimeoutExpired:
            logger.warning("Core did not exit, terminating pid %s", process.pid)
        process.terminate()
        try:
            process.wait(timeout=self.shutdown_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Core ignored terminate, killing pid %s", process.pid)
            process.kill()
            process.wait()


class Connector:
    """
    Acquires connections for the three connection modes.

    Process spawn, socket connect, stdio access and transport construction
    are injected so callers can substitute fakes.
    """

    def __init__(
        self,
        config: Config | None = None,
        host: HostEnvironment | None = None,
        spawner: ProcessSpawner = process_spawn,
        socket_opener: SocketOpener = socket_open,
        stdio_provider: StdioProvider = stdio_get,
        transport_factory: TransportFactory = StreamTransport,
    ) -> None:
        # Without an explicit config, use the one loaded at startup
        self.config: Config = config if config is not None else settings.config
        self.host: HostEnvironment = host if host is not None else HostEnvironment()
        self._spawner: ProcessSpawner = spawner
        self._socket_opener: SocketOpener = socket_opener
        self._stdio_provider: StdioProvider = stdio_provider
        self._transport_factory: TransportFactory = transport_factory

    def establish(
        self,
        request: ConnectionRequest,
        notification_handler: NotificationHandler | None = None,
        start: bool = True,
    ) -> ConnectionHandle:
        """
        Acquire a live connection for a request.

        Connection errors are terminal for this attempt; nothing is retried
        here.

        Args:
            request:
                Connection request.
            notification_handler:
                Optional handler registered before inbound delivery starts.
            start:
                Start the transport before returning. Callers that still need
                to register handlers pass False and start it themselves.

        Returns:
            Owning connection handle.

        Raises:
            SpawnFailure, TransportUnavailable, ConnectFailure:
                Raised when the link cannot be acquired.
        """
        if isinstance(request, SpawnRequest):
            handle = self.spawn_establish(request)
        elif isinstance(request, EmbedRequest):
            handle = self.embed_establish()
        elif isinstance(request, ServerAttachRequest):
            handle = self.server_establish(request)
        else:
            raise TypeError(f"Unknown connection request {request!r}")

        if notification_handler is not None:
            handle.transport.notificationHandler_register(notification_handler)
        if start:
            handle.transport.start()
        logger.info("Connected to core (%s)", handle.mode.value)
        return handle

    def spawn_establish(self, request: SpawnRequest) -> ConnectionHandle:
        """
        Start the core as a child process.

        Raises:
            SpawnFailure:
                Raised when the executable is missing or fails to start.
        """
        executable: str | None = self.host.executable_find(request.executable)
        if executable is None:
            raise SpawnFailure(f"Unable to find core executable {request.executable!r}")

        argv: list[str] = [executable] + embedFlags_insert(
            request.arguments, self.config.core.embed_flags
        )
        logger.debug("Spawning core: %s", argv)
        try:
            process = self._spawner(argv)
        except OSError as exc:
            raise SpawnFailure(f"Failed to start {executable}: {exc}") from exc
        if process.stdin is None or process.stdout is None:
            process.kill()
            raise SpawnFailure(f"Failed to open pipes to {executable}")

        try:
            transport: RpcTransport = self._transport_factory(
                process.stdout,
                process.stdin,
                name=os.path.basename(executable),
                request_timeout=self.config.transport.request_timeout,
                max_buffer_size=self.config.transport.max_buffer_size,
            )
        except BaseException:
            process.kill()
            process.wait()
            raise
        return ConnectionHandle(
            ConnectionMode.SPAWN,
            transport,
            process=process,
            shutdown_timeout=self.config.core.shutdown_timeout,
        )

    def embed_establish(self) -> ConnectionHandle:
        """
        Bind to the inherited stdin/stdout.

        Raises:
            TransportUnavailable:
                Raised when the streams are missing, closed or one-way.
        """
        stdin, stdout = self._stdio_provider()
        if not streamPair_isDuplex(stdin, stdout):
            raise TransportUnavailable("Standard input/output are not usable for RPC")

        transport: RpcTransport = self._transport_factory(
            stdin,
            stdout,
            name="stdio",
            request_timeout=self.config.transport.request_timeout,
            max_buffer_size=self.config.transport.max_buffer_size,
            owns_streams=False,
        )
        return ConnectionHandle(ConnectionMode.EMBED, transport)

    def server_establish(self, request: ServerAttachRequest) -> ConnectionHandle:
        """
        Connect to a core listening on an address.

        Raises:
            ConnectFailure:
                Raised when the address is malformed, unreachable or refused.
        """
        sock: socket.socket = self._socket_opener(request.address)
        reader: BinaryIO = sock.makefile("rb")
        writer: BinaryIO = sock.makefile("wb")

        def socket_shutdown() -> None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        transport: RpcTransport = self._transport_factory(
            reader,
            writer,
            name=request.address,
            request_timeout=self.config.transport.request_timeout,
            max_buffer_size=self.config.transport.max_buffer_size,
            on_close=socket_shutdown,
        )
        return ConnectionHandle(ConnectionMode.SERVER_ATTACH, transport)


def streamPair_isDuplex(reader: BinaryIO | None, writer: BinaryIO | None) -> bool:
    """
    Check that two streams form a usable duplex channel.

    Args:
        reader:
            Input stream.
        writer:
            Output stream.

    Returns:
        `True` when reader is readable and writer is writable.
    """
    if reader is None or writer is None:
        return False
    try:
        if reader.closed or writer.closed:
            return False
        return bool(reader.readable()) and bool(writer.writable())
    except (OSError, ValueError):
        return False


class ConnectAttempt:
    """
    Connection attempt running on a background thread.

    Connects cannot be cancelled mid-flight; `abandon` instead guarantees
    that a late success is closed and never handed to the caller.
    """

    def __init__(self, connector: Connector, request: ConnectionRequest) -> None:
        self._connector: Connector = connector
        self._request: ConnectionRequest = request
        self._lock: threading.Lock = threading.Lock()
        self._done: threading.Event = threading.Event()
        self._handle: ConnectionHandle | None = None
        self._error: BaseException | None = None
        self._abandoned: bool = False
        self._thread: threading.Thread = threading.Thread(
            target=self._run, name="nvbridge-connect", daemon=True
        )

    def start(self) -> "ConnectAttempt":
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            handle: ConnectionHandle = self._connector.establish(self._request)
        except BridgeConnectionError as exc:
            with self._lock:
                self._error = exc
            self._done.set()
            return

        with self._lock:
            abandoned: bool = self._abandoned
            if not abandoned:
                self._handle = handle
        if abandoned:
            logger.debug("Discarding connection from abandoned attempt")
            handle.close()
        self._done.set()

    def abandon(self) -> None:
        """Discard the attempt; any eventual connection is closed silently."""
        with self._lock:
            self._abandoned = True
            handle: ConnectionHandle | None = self._handle
            self._handle = None
        if handle is not None:
            handle.close()

    def result(self, timeout: float | None = None) -> ConnectionHandle:
        """
        Wait for the attempt to finish.

        Args:
            timeout:
                Seconds to wait, or `None` to wait forever.

        Returns:
            Connection handle.

        Raises:
            TimeoutError:
                Raised when the attempt has not finished in time.
            BridgeConnectionError:
                Raised when the attempt failed or was abandoned.
        """
        if not self._done.wait(timeout):
            raise TimeoutError("Connection attempt still pending")
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._abandoned or self._handle is None:
                raise BridgeConnectionError("Connection attempt was abandoned")
            return self._handle
