"""Unit tests for shutdown coordination"""

import pytest

from nvbridge.client.shutdown import ShutdownCoordinator, ShutdownState
from nvbridge.common.errors import BridgeConnectionError


class _FakeSender:
    def __init__(self, fail=False):
        self.sent = 0
        self.fail = fail

    def closeRequest_send(self):
        if self.fail:
            raise BridgeConnectionError("broken pipe")
        self.sent += 1


class _FakeHandle:
    def __init__(self):
        self.close_calls = 0

    def close(self):
        self.close_calls += 1


@pytest.fixture
def sender():
    return _FakeSender()


@pytest.fixture
def handle():
    return _FakeHandle()


@pytest.fixture
def coordinator(sender, handle):
    return ShutdownCoordinator(sender, handle)


class TestLocalClose:
    """Test locally initiated shutdown"""

    def test_close_sends_once(self, coordinator, sender):
        """Test two close requests send exactly one notification"""
        coordinator.closeRequest_local()
        coordinator.closeRequest_local()

        assert sender.sent == 1
        assert coordinator.state == ShutdownState.SENT

    def test_close_does_not_disconnect(self, coordinator, handle):
        """Test the local close does not wait or release the handle"""
        coordinator.closeRequest_local()

        assert not coordinator.is_disconnected
        assert handle.close_calls == 0

    def test_send_failure_disconnects_with_error(self, handle):
        """Test a dead link during close goes straight to DISCONNECTED"""
        coordinator = ShutdownCoordinator(_FakeSender(fail=True), handle)

        coordinator.closeRequest_local()

        assert coordinator.state == ShutdownState.DISCONNECTED
        assert coordinator.error == "broken pipe"
        assert handle.close_calls == 1

    def test_connection_lost_after_close_is_clean(self, coordinator):
        """Test the link ending after our close is not an error"""
        coordinator.closeRequest_local()

        coordinator.connectionLost_handle("end of stream", True)

        assert coordinator.state == ShutdownState.DISCONNECTED
        assert coordinator.error is None


class TestCoreLeave:
    """Test core initiated shutdown"""

    def test_core_leave_sends_nothing(self, coordinator, sender, handle):
        """Test the core's leaving signal does not send Close back"""
        coordinator.coreLeave_handle()

        assert sender.sent == 0
        assert coordinator.state == ShutdownState.DISCONNECTED
        assert coordinator.error is None
        assert handle.close_calls == 1

    def test_local_close_after_leave_is_noop(self, coordinator, sender):
        """Test close after the core left sends nothing"""
        coordinator.coreLeave_handle()

        coordinator.closeRequest_local()

        assert sender.sent == 0


class TestConnectionLost:
    """Test transport loss handling"""

    def test_unexpected_loss_sets_error(self, coordinator, handle):
        """Test an unexpected drop while connected is an error"""
        coordinator.connectionLost_handle("end of stream", True)

        assert coordinator.state == ShutdownState.DISCONNECTED
        assert coordinator.error == "end of stream"
        assert coordinator.wait(0)
        assert handle.close_calls == 1

    def test_expected_loss_is_clean(self, coordinator):
        """Test a local transport close is not an error"""
        coordinator.connectionLost_handle("closed locally", False)

        assert coordinator.error is None
        assert coordinator.is_disconnected

    def test_disconnect_is_terminal(self, coordinator, handle):
        """Test repeated disconnects release the handle once"""
        coordinator.disconnected_enter()
        coordinator.disconnected_enter(error="late")

        assert handle.close_calls == 1
        assert coordinator.error is None

    def test_listeners_see_each_transition(self, coordinator):
        """Test listeners receive every state change in order"""
        seen = []
        coordinator.listener_register(seen.append)

        coordinator.closeRequest_local()
        coordinator.connectionLost_handle("closed locally", False)

        assert seen == [
            ShutdownState.CLOSING_REQUESTED_LOCALLY,
            ShutdownState.SENT,
            ShutdownState.DISCONNECTED,
        ]
