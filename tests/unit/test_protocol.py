"""Unit tests for GUI channel message parsing and building"""

import pytest

from nvbridge.common.errors import ProtocolError
from nvbridge.protocol.message import (
    CloseEvent,
    DropFilesEvent,
    FontEvent,
    ForegroundEvent,
    GuiMessageBuilder,
    GuiMessageParser,
    LinespaceEvent,
    MousehideEvent,
    UnknownEvent,
    WindowFullScreenEvent,
    WindowMaximizedEvent,
    commandPath_escape,
)


class TestGuiEventParse:
    """Test decoding of notification arguments"""

    @pytest.mark.parametrize(
        "args,expected",
        [
            (["Foreground"], ForegroundEvent()),
            (["WindowMaximized", True], WindowMaximizedEvent(True)),
            (["WindowMaximized", 0], WindowMaximizedEvent(False)),
            (["WindowFullScreen", 1], WindowFullScreenEvent(True)),
            (["Font", "Mono:h10"], FontEvent("Mono:h10")),
            (["Linespace", 4], LinespaceEvent(4)),
            (["Linespace", 4.0], LinespaceEvent(4)),
            (["Mousehide", False], MousehideEvent(False)),
            (["DropFiles", "a.txt", "b.txt"], DropFilesEvent(("a.txt", "b.txt"))),
            (["Close"], CloseEvent()),
        ],
    )
    def test_known_events(self, args, expected):
        """Test every known discriminator decodes to its event"""
        assert GuiMessageParser.guiEvent_parse(args) == expected

    def test_unknown_discriminator(self):
        """Test unknown names become UnknownEvent with their arguments"""
        event = GuiMessageParser.guiEvent_parse(["Frobnicate", 1, "x"])

        assert event == UnknownEvent(name="Frobnicate", args=(1, "x"))

    @pytest.mark.parametrize(
        "args",
        [
            [],
            [42],
            ["WindowMaximized"],
            ["WindowMaximized", "yes"],
            ["Font", 12],
            ["Linespace", "4"],
            ["Linespace", True],
            ["Linespace", 1.5],
            ["DropFiles", "a", 3],
        ],
    )
    def test_malformed_arguments_raise(self, args):
        """Test malformed payloads raise ProtocolError"""
        with pytest.raises(ProtocolError):
            GuiMessageParser.guiEvent_parse(args)


class TestGuiEventBuild:
    """Test encoding of events to notification arguments"""

    def test_window_maximized(self):
        """Test boolean event encoding"""
        assert GuiMessageBuilder.guiEvent_arguments(WindowMaximizedEvent(True)) == [
            "WindowMaximized",
            True,
        ]

    def test_drop_files_flattens_paths(self):
        """Test DropFiles paths are positional arguments"""
        event = DropFilesEvent(("a", "b"))

        assert GuiMessageBuilder.guiEvent_arguments(event) == ["DropFiles", "a", "b"]

    def test_argumentless_events(self):
        """Test events without payload encode to the name only"""
        assert GuiMessageBuilder.guiEvent_arguments(ForegroundEvent()) == ["Foreground"]
        assert GuiMessageBuilder.guiEvent_arguments(CloseEvent()) == ["Close"]

    def test_built_arguments_parse_back(self):
        """Test the builder output is accepted by the parser"""
        for event in (FontEvent("Mono:h9:i"), LinespaceEvent(-2), MousehideEvent(True)):
            args = GuiMessageBuilder.guiEvent_arguments(event)
            assert GuiMessageParser.guiEvent_parse(args) == event

    def test_unknown_event_cannot_be_sent(self):
        """Test UnknownEvent is receive-only"""
        with pytest.raises(ValueError):
            GuiMessageBuilder.guiEvent_arguments(UnknownEvent(name="Frobnicate"))


class TestCommandPathEscape:
    """Test file name escaping for the core's command parser"""

    def test_plain_path_unchanged(self):
        """Test a path without special characters is unchanged"""
        assert commandPath_escape("/home/user/notes.txt") == "/home/user/notes.txt"

    def test_spaces_and_specials_escaped(self):
        """Test spaces and wildcard characters are backslash escaped"""
        assert commandPath_escape("my file*.txt") == "my\\ file\\*.txt"
        assert commandPath_escape("a%b#c") == "a\\%b\\#c"

    def test_leading_plus_escaped(self):
        """Test a leading + is not taken as a command"""
        assert commandPath_escape("+cmd") == "\\+cmd"

    def test_lone_dash_escaped(self):
        """Test a lone dash is not taken as stdin"""
        assert commandPath_escape("-") == "\\-"
