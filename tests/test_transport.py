"""
End-to-end tests over a real Socket.IO transport.

The full ASGI app (Socket.IO in front of FastAPI) is served by uvicorn in a
background thread and driven with ChatClient, so event names, handler
registration and the handshake cookie are exercised on the wire.

Tests cover:
- Identity push and room-scoped delivery between three clients
- Typing signals reaching other room members only
- Acknowledgments for joinRoom/sendMessage/refreshProfile
- Refused handshake for an expired credential
"""

import asyncio
import socket
import threading
import time
from datetime import timedelta

import pytest
import socketio
import uvicorn

from conftest import run
from groupchat.auth import issue_token
from groupchat.client import ChatClient
from groupchat.main import asgi_app


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="module")
def live_server():
    """Serve the app on a free local port; startup creates the tables."""
    port = _free_port()
    config = uvicorn.Config(asgi_app, host="127.0.0.1", port=port, log_config=None, lifespan="on")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline or not thread.is_alive():
            raise RuntimeError("uvicorn did not start")
        time.sleep(0.05)

    yield f"http://127.0.0.1:{port}"

    server.should_exit = True
    thread.join(timeout=10)


async def eventually(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


class TestLiveTransport:
    """Three clients against one server."""

    def test_scenario_a_over_the_wire(self, live_server, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        carol = make_user("carol")

        async def scenario():
            s = ChatClient(live_server, issue_token(alice))
            t = ChatClient(live_server, issue_token(bob), typing_window=0.2)
            u = ChatClient(live_server, issue_token(carol))
            clients = (s, t, u)
            for c in clients:
                await c.connect()
            try:
                await eventually(lambda: all(c.user_id is not None for c in clients))
                identities = [c.user_id for c in clients]

                join_acks = [
                    await s.join_room("42"),
                    await t.join_room("42"),
                    await u.join_room("7"),
                ]
                send_ack = await s.send_message("42", "hello")
                await eventually(lambda: len(t.room_messages("42")) == 1)
                await eventually(lambda: len(s.room_messages("42")) == 1)

                await t.keystroke("42")
                await eventually(lambda: s.typing_text("42") == "bob is typing...")
                await eventually(lambda: s.typing_text("42") == "")

                refresh_ack = await s.refresh_profile()
                return identities, join_acks, send_ack, refresh_ack
            finally:
                for c in clients:
                    await c.disconnect()

        identities, join_acks, send_ack, refresh_ack = run(scenario())

        assert identities == [alice, bob, carol]
        assert [ack["ok"] for ack in join_acks] == [True, True, True]
        assert send_ack["ok"] is True
        assert refresh_ack == {"ok": True}

    def test_room_isolation_and_sender_stamping(self, live_server, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        carol = make_user("carol")

        async def scenario():
            s = ChatClient(live_server, issue_token(alice))
            t = ChatClient(live_server, issue_token(bob))
            u = ChatClient(live_server, issue_token(carol))
            clients = (s, t, u)
            for c in clients:
                await c.connect()
            try:
                await t.join_room("42")
                await u.join_room("7")
                await s.send_message("42", "hello")
                await eventually(lambda: t.room_messages("42"))
                # Give a misrouted delivery time to arrive
                await asyncio.sleep(0.2)
                return t.room_messages("42"), u.messages, s.typing_text("42")
            finally:
                for c in clients:
                    await c.disconnect()

        received, elsewhere, typing_line = run(scenario())

        assert [(m["content"], m["senderId"], m["username"]) for m in received] == [("hello", alice, "alice")]
        assert elsewhere == []
        assert typing_line == ""

    def test_scenario_b_expired_credential_is_refused(self, live_server, make_user):
        alice = make_user("alice")

        async def scenario():
            client = ChatClient(live_server, issue_token(alice, expires_in=timedelta(seconds=-5)))
            with pytest.raises(socketio.exceptions.ConnectionError):
                await client.connect()
            await asyncio.sleep(0.2)
            return client.user_id

        assert run(scenario()) is None
