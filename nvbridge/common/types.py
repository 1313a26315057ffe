"""Common types and data structures for nvbridge"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from nvbridge.common.font import FontSpec
from nvbridge.common.settings import settings


class ConnectionMode(Enum):
    """Ways of acquiring the link to the core process"""
    SPAWN = "spawn"
    EMBED = "embed"
    SERVER_ATTACH = "server"


@dataclass(frozen=True)
class SpawnRequest:
    """Start a fresh core process and talk over its pipes"""
    executable: str
    arguments: tuple[str, ...] = ()

    @property
    def mode(self) -> ConnectionMode:
        return ConnectionMode.SPAWN


@dataclass(frozen=True)
class EmbedRequest:
    """Talk to the core over this process's inherited stdin/stdout"""

    @property
    def mode(self) -> ConnectionMode:
        return ConnectionMode.EMBED


@dataclass(frozen=True)
class ServerAttachRequest:
    """Connect to a core already listening on host:port or a socket path"""
    address: str

    @property
    def mode(self) -> ConnectionMode:
        return ConnectionMode.SERVER_ATTACH


ConnectionRequest = Union[SpawnRequest, EmbedRequest, ServerAttachRequest]


@dataclass(frozen=True)
class RuntimePathHint:
    """Candidate runtime directories in priority order"""
    candidates: tuple[str, ...]
    resolved: Optional[str] = None

    def injectionFlags_get(self) -> list[str]:
        """Return the `--cmd set rtp+=` pair, or nothing when unresolved"""
        if self.resolved is None:
            return []
        return ["--cmd", settings.RUNTIME_PATH_COMMAND.format(path=self.resolved)]


@dataclass(frozen=True)
class LaunchOptions:
    """Raw command-line surface consumed by the connection manager"""
    executable: str = "nvim"
    embed: bool = False
    server: Optional[str] = None
    spawn: bool = False
    spawn_arguments: tuple[str, ...] = ()
    forwarded_arguments: tuple[str, ...] = ()
    forward_marker: bool = False  # a literal `--` was given
    files: tuple[str, ...] = ()
    maximized: bool = False
    fullscreen: bool = False


@dataclass(frozen=True)
class GuiState:
    """
    Snapshot of core-reported GUI state.

    Instances are immutable; the dispatcher swaps in a new snapshot on each
    update so readers never see a partially applied change.
    """
    window_maximized: bool = False
    window_full_screen: bool = False
    window_id: Optional[int] = None
    current_font: Optional[FontSpec] = None
    linespace: int = 0
    mouse_hide: bool = False


@dataclass
class ExitStatus:
    """How a connection ended"""
    reason: str = ""
    unexpected: bool = False
    returncode: Optional[int] = None
