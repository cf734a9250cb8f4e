"""
Session lifecycle scenarios.

Runs the controller end to end against the in-memory account: startup
validation, the optional family sweep, provisioning, serving until a signal
and the drain. The uvicorn server is replaced by a stand-in that marks the
session as listening and waits for ``should_exit``.

Running Tests:
    pytest tests/test_session_lifecycle.py -v
"""

import asyncio
import os
import signal
import socket
from unittest.mock import patch

import pytest

from devphone.core.errors import ConflictError
from devphone.core.lifecycle import LifecycleController, LifecycleState
from devphone.core.models import CREATION_ORDER
from devphone.core.naming import FAMILY_PREFIX
from devphone.main import create_app
from tests.conftest import PHONE_NUMBER, SESSION_NAME, make_settings

pytestmark = pytest.mark.integration


class StubServer:
    """Stands in for GatewayServer."""

    instances: list["StubServer"] = []

    def __init__(self, config, on_started=None):
        self.config = config
        self.on_started = on_started
        self.should_exit = False
        StubServer.instances.append(self)

    async def serve(self):
        self.on_started()
        while not self.should_exit:
            await asyncio.sleep(0.01)


class FailingServer(StubServer):
    """Server that cannot bind its port."""

    async def serve(self):
        raise SystemExit(1)


def send_signal_soon(sig: signal.Signals, delay: float = 0.05) -> None:
    asyncio.get_running_loop().call_later(delay, os.kill, os.getpid(), sig)


@pytest.fixture(autouse=True)
def reset_stub_servers():
    StubServer.instances.clear()
    yield
    StubServer.instances.clear()


@pytest.mark.asyncio
async def test_sigint_drains_bound_session(account, session):
    """Provision with a number, serve, SIGINT, everything reset."""
    number = account.add_number()
    controller = LifecycleController(
        make_settings(phone_number=PHONE_NUMBER), account, session=session
    )

    with patch("devphone.core.lifecycle.controller.GatewayServer", StubServer):
        send_signal_soon(signal.SIGINT)
        exit_code = await controller.run(create_app(controller))

    assert exit_code == 0
    assert controller.state == LifecycleState.TERMINATED
    assert StubServer.instances[0].should_exit
    assert account.labelled(SESSION_NAME) == []
    assert (number.voice_url, number.sms_url, number.status_callback) == ("", "", "")


@pytest.mark.asyncio
async def test_repeated_signals_drain_once(account, session):
    controller = LifecycleController(make_settings(), account, session=session)

    with patch("devphone.core.lifecycle.controller.GatewayServer", StubServer):
        send_signal_soon(signal.SIGTERM)
        send_signal_soon(signal.SIGINT)
        exit_code = await controller.run(create_app(controller))

    assert exit_code == 0
    assert account.calls.count("remove:conversation") == 1
    assert account.labelled(SESSION_NAME) == []


@pytest.mark.asyncio
async def test_clear_then_provision(account, session):
    """--clear removes earlier dev phones before this one is created."""
    for name in ("dev-phone-1111", "dev-phone-2222"):
        for kind in CREATION_ORDER:
            account.seed(kind, name)
    stale = account.add_number(
        "+15550000001",
        sms_url="https://dev-phone-1111-4321-dev.twil.io/incoming-message-handler",
        voice_url="https://dev-phone-1111-4321-dev.twil.io/incoming-call-handler",
    )
    controller = LifecycleController(make_settings(clear=True), account, session=session)

    with patch("devphone.core.lifecycle.controller.GatewayServer", StubServer):
        async def check_while_serving():
            while controller.state != LifecycleState.SERVING:
                await asyncio.sleep(0.01)
            labels = {r.label for r in account.labelled(FAMILY_PREFIX)}
            controller.request_shutdown()
            return labels

        checker = asyncio.ensure_future(check_while_serving())
        exit_code = await controller.run(create_app(controller))
        labels = await checker

    assert exit_code == 0
    assert labels == {SESSION_NAME}
    assert stale.sms_url == ""
    assert account.labelled(FAMILY_PREFIX) == []


@pytest.mark.asyncio
async def test_conflict_stops_before_provisioning(account, session):
    account.add_number(sms_url="https://example.com/sms")
    controller = LifecycleController(
        make_settings(phone_number=PHONE_NUMBER), account, session=session
    )

    with patch("devphone.core.lifecycle.controller.GatewayServer", StubServer):
        with pytest.raises(ConflictError):
            await controller.run(create_app(controller))

    assert controller.state == LifecycleState.IDLE
    assert not [c for c in account.calls if c.startswith("create:")]
    assert StubServer.instances == []


@pytest.mark.asyncio
async def test_server_failure_sweeps_session(account, session):
    """A server that never listens leaves nothing behind."""
    controller = LifecycleController(make_settings(), account, session=session)

    with patch("devphone.core.lifecycle.controller.GatewayServer", FailingServer):
        exit_code = await controller.run(create_app(controller))

    assert exit_code == 1
    assert controller.state == LifecycleState.TERMINATED
    assert account.labelled(SESSION_NAME) == []


@pytest.mark.asyncio
async def test_shutdown_before_serving(account, session):
    """A signal that lands after provisioning still drains."""
    controller = LifecycleController(make_settings(), account, session=session)
    real_provision = controller.provision

    async def provision_then_interrupt(number=None):
        await real_provision(number)
        controller.request_shutdown(signal.SIGINT)

    with patch.object(controller, "provision", provision_then_interrupt), patch(
        "devphone.core.lifecycle.controller.GatewayServer", StubServer
    ):
        exit_code = await controller.run(create_app(controller))

    assert exit_code == 0
    assert controller.state == LifecycleState.TERMINATED
    assert StubServer.instances == []
    assert account.labelled(SESSION_NAME) == []


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_listening_after_socket_is_bound(account, session):
    """The session serves only once the real server accepts connections."""
    port = free_port()
    controller = LifecycleController(make_settings(port=port), account, session=session)
    seen = []

    def on_serving():
        with socket.create_connection(("127.0.0.1", port), timeout=1):
            seen.append(controller.state)
        asyncio.get_running_loop().call_soon(controller.request_shutdown)

    controller.add_listening_callback(on_serving)
    exit_code = await controller.run(create_app(controller))

    assert exit_code == 0
    assert seen == [LifecycleState.SERVING]
    assert controller.state == LifecycleState.TERMINATED
    assert account.labelled(SESSION_NAME) == []


@pytest.mark.asyncio
async def test_port_in_use_sweeps_session(account, session):
    """uvicorn failing to bind aborts the session before it serves."""
    with socket.socket() as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        port = taken.getsockname()[1]
        controller = LifecycleController(make_settings(port=port), account, session=session)
        announced = []
        controller.add_listening_callback(lambda: announced.append(True))

        exit_code = await controller.run(create_app(controller))

    assert exit_code == 1
    assert announced == []
    assert controller.state == LifecycleState.TERMINATED
    assert account.labelled(SESSION_NAME) == []
