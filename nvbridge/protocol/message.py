"""GUI channel protocol messages for nvbridge communication

Every GUI event travels as one RPC notification on the GUI channel whose
first argument names the event. Events are modelled as one dataclass per
discriminator; `UnknownEvent` carries anything this bridge does not know.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Sequence, Union

from nvbridge.common.errors import ProtocolError


class GuiEventName(Enum):
    """Discriminators understood on the GUI channel"""

    FOREGROUND = "Foreground"
    WINDOW_MAXIMIZED = "WindowMaximized"
    WINDOW_FULL_SCREEN = "WindowFullScreen"
    FONT = "Font"
    LINESPACE = "Linespace"
    MOUSEHIDE = "Mousehide"
    DROP_FILES = "DropFiles"
    CLOSE = "Close"


@dataclass(frozen=True)
class ForegroundEvent:
    """Raise and focus the window"""


@dataclass(frozen=True)
class WindowMaximizedEvent:
    enabled: bool


@dataclass(frozen=True)
class WindowFullScreenEvent:
    enabled: bool


@dataclass(frozen=True)
class FontEvent:
    text: str


@dataclass(frozen=True)
class LinespaceEvent:
    pixels: int


@dataclass(frozen=True)
class MousehideEvent:
    enabled: bool


@dataclass(frozen=True)
class DropFilesEvent:
    paths: tuple[str, ...]


@dataclass(frozen=True)
class CloseEvent:
    """Terminal notification: the core is leaving"""


@dataclass(frozen=True)
class UnknownEvent:
    """Discriminator from a newer core; ignored by the receiver"""

    name: str
    args: tuple[Any, ...] = ()


GuiEvent = Union[
    ForegroundEvent,
    WindowMaximizedEvent,
    WindowFullScreenEvent,
    FontEvent,
    LinespaceEvent,
    MousehideEvent,
    DropFilesEvent,
    CloseEvent,
    UnknownEvent,
]


def _flag_parse(name: str, args: Sequence[Any]) -> bool:
    if len(args) != 1:
        raise ProtocolError(f"{name} expects one argument, got {len(args)}")
    value = args[0]
    # Vimscript has no boolean literal on older cores; 0/1 arrive as ints
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    raise ProtocolError(f"{name} expects a boolean, got {value!r}")


def _text_parse(name: str, args: Sequence[Any]) -> str:
    if len(args) != 1 or not isinstance(args[0], str):
        raise ProtocolError(f"{name} expects one string argument, got {list(args)!r}")
    return args[0]


def _integer_parse(name: str, args: Sequence[Any]) -> int:
    if len(args) != 1:
        raise ProtocolError(f"{name} expects one argument, got {len(args)}")
    value = args[0]
    if isinstance(value, bool):
        raise ProtocolError(f"{name} expects an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ProtocolError(f"{name} expects an integer, got {value!r}")


def _paths_parse(name: str, args: Sequence[Any]) -> tuple[str, ...]:
    if not all(isinstance(path, str) for path in args):
        raise ProtocolError(f"{name} expects string paths, got {list(args)!r}")
    return tuple(args)


_DECODERS: Dict[GuiEventName, Callable[[Sequence[Any]], GuiEvent]] = {
    GuiEventName.FOREGROUND: lambda args: ForegroundEvent(),
    GuiEventName.WINDOW_MAXIMIZED: lambda args: WindowMaximizedEvent(
        _flag_parse("WindowMaximized", args)
    ),
    GuiEventName.WINDOW_FULL_SCREEN: lambda args: WindowFullScreenEvent(
        _flag_parse("WindowFullScreen", args)
    ),
    GuiEventName.FONT: lambda args: FontEvent(_text_parse("Font", args)),
    GuiEventName.LINESPACE: lambda args: LinespaceEvent(_integer_parse("Linespace", args)),
    GuiEventName.MOUSEHIDE: lambda args: MousehideEvent(_flag_parse("Mousehide", args)),
    GuiEventName.DROP_FILES: lambda args: DropFilesEvent(_paths_parse("DropFiles", args)),
    GuiEventName.CLOSE: lambda args: CloseEvent(),
}


class GuiMessageParser:
    """Parses GUI channel notification arguments into events"""

    @staticmethod
    def guiEvent_parse(args: Sequence[Any]) -> GuiEvent:
        """
        Parse notification arguments into a typed event.

        Args:
            args: Notification arguments; args[0] is the discriminator.

        Returns:
            Typed event, or UnknownEvent for discriminators this bridge
            does not know.

        Raises:
            ProtocolError: If the discriminator is missing or the arguments
                of a known event have the wrong shape.
        """
        if not isinstance(args, (list, tuple)) or not args:
            raise ProtocolError("GUI notification without event discriminator")
        name = args[0]
        if not isinstance(name, str):
            raise ProtocolError(f"GUI event discriminator must be a string, got {name!r}")

        try:
            event_name = GuiEventName(name)
        except ValueError:
            return UnknownEvent(name=name, args=tuple(args[1:]))
        return _DECODERS[event_name](args[1:])


class GuiMessageBuilder:
    """Builds GUI channel notification arguments from events"""

    @staticmethod
    def guiEvent_arguments(event: GuiEvent) -> list[Any]:
        """
        Build notification arguments for an event.

        Args:
            event: Event to encode.

        Returns:
            Argument list starting with the discriminator.

        Raises:
            ValueError: If asked to encode an UnknownEvent.
        """
        if isinstance(event, ForegroundEvent):
            return [GuiEventName.FOREGROUND.value]
        if isinstance(event, WindowMaximizedEvent):
            return [GuiEventName.WINDOW_MAXIMIZED.value, event.enabled]
        if isinstance(event, WindowFullScreenEvent):
            return [GuiEventName.WINDOW_FULL_SCREEN.value, event.enabled]
        if isinstance(event, FontEvent):
            return [GuiEventName.FONT.value, event.text]
        if isinstance(event, LinespaceEvent):
            return [GuiEventName.LINESPACE.value, event.pixels]
        if isinstance(event, MousehideEvent):
            return [GuiEventName.MOUSEHIDE.value, event.enabled]
        if isinstance(event, DropFilesEvent):
            return [GuiEventName.DROP_FILES.value, *event.paths]
        if isinstance(event, CloseEvent):
            return [GuiEventName.CLOSE.value]
        raise ValueError(f"Cannot encode GUI event {event!r}")


# Characters the core's command-line parser treats specially in file names
_FNAME_SPECIAL = " \t\n*?[{`$\\%#'\"|!<"


def commandPath_escape(path: str) -> str:
    """
    Escape a file path for the core's command parser (fnameescape rules).

    Args:
        path: File path.

    Returns:
        Escaped path safe to use as an `:edit` argument.
    """
    escaped = "".join(f"\\{char}" if char in _FNAME_SPECIAL else char for char in path)
    if escaped.startswith(("+", ">")) or escaped == "-":
        escaped = "\\" + escaped
    return escaped
