"""Unit tests for session wiring and the session runner"""

import argparse

import pytest

from nvbridge.client.connector import ConnectionHandle
from nvbridge.client.dispatcher import GuiDispatcher
from nvbridge.client.main import session_wait
from nvbridge.client.session import session_open, startupWindowState_apply
from nvbridge.client.shutdown import ShutdownState
from nvbridge.common.errors import RpcError
from nvbridge.common.types import ConnectionMode, EmbedRequest, LaunchOptions


class _FakeTransport:
    """Transport double that answers requests and records traffic"""

    def __init__(self, subscribe_error=None, on_start=()):
        self.subscribe_error = subscribe_error
        self.on_start = list(on_start)
        self.notifications = []
        self.requests = []
        self.notification_handlers = []
        self.disconnect_handlers = []
        self.started = False
        self.closed = False

    def start(self):
        self.started = True
        for method, args in self.on_start:
            self.deliver(method, args)

    def notify(self, method, params):
        self.notifications.append((method, list(params)))

    def request(self, method, params, timeout=None):
        self.requests.append((method, list(params)))
        if self.subscribe_error is not None:
            raise RpcError(method, self.subscribe_error)
        return None

    def notificationHandler_register(self, handler):
        self.notification_handlers.append(handler)

    def disconnectHandler_register(self, handler):
        self.disconnect_handlers.append(handler)

    def close(self):
        if self.closed:
            return
        self.closed = True
        for handler in list(self.disconnect_handlers):
            handler("closed locally", False)

    def deliver(self, method, args):
        for handler in self.notification_handlers:
            handler(method, args)

    def drop(self, reason):
        for handler in list(self.disconnect_handlers):
            handler(reason, True)


class _FakeConnector:
    def __init__(self, transport):
        self.transport = transport

    def establish(self, request, notification_handler=None, start=True):
        handle = ConnectionHandle(ConnectionMode.EMBED, self.transport)
        if notification_handler is not None:
            self.transport.notificationHandler_register(notification_handler)
        if start:
            self.transport.start()
        return handle


class TestSessionOpen:
    """Test one connection is wired to its dispatcher and coordinator"""

    def test_subscribes_once(self):
        """Test opening a session subscribes to the GUI channel"""
        transport = _FakeTransport()

        session = session_open(_FakeConnector(transport), EmbedRequest())

        assert transport.requests == [("nvim_subscribe", ["Gui"])]
        assert session.dispatcher.is_subscribed
        assert session.coordinator.state == ShutdownState.CONNECTED

    def test_inbound_events_reach_dispatcher(self):
        """Test notifications delivered by the transport update state"""
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())

        transport.deliver("Gui", ["Linespace", 6])

        assert session.dispatcher.state.linespace == 6

    def test_core_close_disconnects_without_reply(self):
        """Test the core's Close ends the session and sends nothing back"""
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())

        transport.deliver("Gui", ["Close"])

        assert session.coordinator.state == ShutdownState.DISCONNECTED
        assert session.coordinator.error is None
        assert session.handle.is_closed
        assert transport.notifications == []

    def test_close_arriving_as_delivery_starts(self):
        """Test a Close delivered the moment the transport starts still ends the session"""
        transport = _FakeTransport(on_start=[("Gui", ["Close"])])

        session = session_open(_FakeConnector(transport), EmbedRequest())

        assert session.coordinator.state == ShutdownState.DISCONNECTED
        assert session.coordinator.error is None
        assert session.handle.is_closed
        assert transport.requests == []
        assert transport.notifications == []

    def test_events_arriving_as_delivery_starts_update_state(self):
        """Test events delivered from start reach the bound dispatcher"""
        transport = _FakeTransport(on_start=[("Gui", ["Linespace", 3])])

        session = session_open(_FakeConnector(transport), EmbedRequest())

        assert session.dispatcher.state.linespace == 3
        assert transport.requests == [("nvim_subscribe", ["Gui"])]

    def test_local_close_then_core_exit(self):
        """Test a local close followed by the link ending is clean"""
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())

        session.coordinator.closeRequest_local()
        transport.drop("end of stream")

        assert transport.notifications == [("Gui", ["Close"])]
        assert session.coordinator.is_disconnected
        assert session.coordinator.error is None

    def test_unexpected_loss_is_error(self):
        """Test a crash surfaces as Disconnected with an error"""
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())

        transport.drop("end of stream")

        assert session.coordinator.error == "end of stream"
        assert session.handle.exit_status.unexpected
        assert session_wait(session) == 1

    def test_subscribe_failure_releases_handle(self):
        """Test the handle is closed when subscription fails"""
        transport = _FakeTransport(subscribe_error="unknown method")

        with pytest.raises(RpcError):
            session_open(_FakeConnector(transport), EmbedRequest())

        assert transport.closed


class TestSessionWait:
    """Test the blocking session loop"""

    def test_clean_exit_status(self):
        """Test a clean disconnect returns status 0"""
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())
        transport.deliver("Gui", ["Close"])

        assert session_wait(session) == 0


class _RecordingDispatcher(GuiDispatcher):
    def __init__(self):
        super().__init__()
        self.sent = []

    def send(self, event_name, args=()):
        self.sent.append([event_name, *args])


class TestStartupWindowState:
    """Test startup window hints"""

    def test_fullscreen_beats_maximized(self):
        """Test fullscreen is sent instead of maximized when both are given"""
        dispatcher = _RecordingDispatcher()

        startupWindowState_apply(dispatcher, LaunchOptions(maximized=True, fullscreen=True))

        assert dispatcher.sent == [["WindowFullScreen", True]]

    def test_maximized(self):
        """Test maximized alone"""
        dispatcher = _RecordingDispatcher()

        startupWindowState_apply(dispatcher, LaunchOptions(maximized=True))

        assert dispatcher.sent == [["WindowMaximized", True]]

    def test_no_hints(self):
        """Test nothing is sent without hints"""
        dispatcher = _RecordingDispatcher()

        startupWindowState_apply(dispatcher, LaunchOptions())

        assert dispatcher.sent == []


class TestBootstrapHelpers:
    """Test config and connection-request bootstrap"""

    def test_config_with_overrides(self, tmp_path, reset_settings):
        """Test config is loaded, overridden and stored in settings"""
        from nvbridge.client.bootstrap import configWithSettings_load
        from nvbridge.common.settings import settings

        config_file = tmp_path / "config.yml"
        config_file.write_text("core:\n  executable: nvim\n")
        args = argparse.Namespace(config=str(config_file), nvim="/opt/nvim", log_level="INFO")

        config = configWithSettings_load(args)

        assert config.core.executable == "/opt/nvim"
        assert config.logging.level == "INFO"
        assert settings.config is config

    def test_missing_config_exits(self, tmp_path, reset_settings):
        """Test an explicit missing config file exits with status 1"""
        from nvbridge.client.bootstrap import configWithSettings_load

        args = argparse.Namespace(config=str(tmp_path / "missing.yml"), nvim=None, log_level=None)

        with pytest.raises(SystemExit) as exc_info:
            configWithSettings_load(args)
        assert exc_info.value.code == 1

    def test_ambiguous_mode_exits_before_login_shell(self):
        """Test conflicting modes exit without importing the login environment"""
        from nvbridge.client.bootstrap import connectionRequestWithConfig_build
        from nvbridge.common.config import Config, HostConfig
        from nvbridge.common.host import HostEnvironment

        class _Host(HostEnvironment):
            loaded = False

            def loginEnvironment_load(self):
                _Host.loaded = True
                return True

        config = Config(host=HostConfig(login_environment=True))

        with pytest.raises(SystemExit) as exc_info:
            connectionRequestWithConfig_build(
                LaunchOptions(embed=True, server="x:1"), config, _Host(environ={}), "usage"
            )
        assert exc_info.value.code == 1
        assert _Host.loaded is False


class TestSignalHandlers:
    """Test SIGINT/SIGTERM routing to the shutdown coordinator"""

    def test_first_signal_closes_second_disconnects(self, monkeypatch):
        """Test a repeated signal escalates from close request to disconnect"""
        import signal

        from nvbridge.client.main import signalHandlers_install

        installed = {}
        monkeypatch.setattr(signal, "signal", lambda signum, handler: installed.update({signum: handler}))
        transport = _FakeTransport()
        session = session_open(_FakeConnector(transport), EmbedRequest())

        signalHandlers_install(session.coordinator)
        installed[signal.SIGINT](signal.SIGINT, None)

        assert session.coordinator.state == ShutdownState.SENT

        installed[signal.SIGTERM](signal.SIGTERM, None)

        assert session.coordinator.is_disconnected
        assert session.coordinator.error == "interrupted"
