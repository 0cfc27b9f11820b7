import asyncio

import pytest

from fakes import FAST, FakeServer, eventually, settle
from notesync.client.connection import ConnectionManager, ConnectionState
from notesync.client.errors import AuthError, ConnectionFailed, NetworkError
from notesync.client.settings import ClientSettings


def _manager(server, settings=FAST):
    conn = ConnectionManager("ws://test/ws", server.factory, settings)
    states = []
    conn.add_state_listener(states.append)
    return conn, states


@pytest.mark.asyncio
async def test_connect_reports_connecting_then_connected():
    server = FakeServer()
    conn, states = _manager(server)

    transport = await conn.connect("token")

    assert transport is server.current
    assert conn.is_connected
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    await conn.dispose()


@pytest.mark.asyncio
async def test_retries_are_bounded_and_failure_is_terminal():
    server = FakeServer()
    server.fail_next = 100
    conn, states = _manager(server)

    with pytest.raises(ConnectionFailed):
        await conn.connect("token")

    assert server.attempts == FAST.max_reconnect_attempts
    assert conn.state is ConnectionState.FAILED
    assert states[-1] is ConnectionState.FAILED
    assert states.count(ConnectionState.CONNECTING) == FAST.max_reconnect_attempts

    # no further attempts once failed
    await asyncio.sleep(FAST.reconnect_delay * 5)
    assert server.attempts == FAST.max_reconnect_attempts
    await conn.dispose()


@pytest.mark.asyncio
async def test_success_before_budget_runs_out_resets_counter():
    server = FakeServer()
    server.fail_next = FAST.max_reconnect_attempts - 1
    conn, states = _manager(server)

    await conn.connect("token")

    assert conn.is_connected
    assert conn.failed_attempts == 0
    assert states == [
        ConnectionState.CONNECTING,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
    ]
    await conn.dispose()


@pytest.mark.asyncio
async def test_explicit_connect_after_failure_gets_a_fresh_budget():
    server = FakeServer()
    server.fail_next = FAST.max_reconnect_attempts
    conn, _ = _manager(server)

    with pytest.raises(ConnectionFailed):
        await conn.connect("token")

    server.fail_next = FAST.max_reconnect_attempts - 1
    await conn.connect("token")
    assert conn.is_connected
    assert server.attempts == 2 * FAST.max_reconnect_attempts
    await conn.dispose()


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried():
    server = FakeServer()
    server.reject_auth = True
    conn, _ = _manager(server)

    with pytest.raises(AuthError):
        await conn.connect("bad")

    assert server.attempts == 1
    assert conn.state is ConnectionState.DISCONNECTED
    await conn.dispose()


@pytest.mark.asyncio
async def test_connect_timeout_counts_as_failed_attempt():
    server = FakeServer()
    server.hang = True
    settings = ClientSettings(connect_timeout=0.01, reconnect_delay=0.001, max_reconnect_attempts=2)
    conn, _ = _manager(server, settings)

    with pytest.raises(ConnectionFailed):
        await conn.connect("token")
    assert server.attempts == 2
    await conn.dispose()


@pytest.mark.asyncio
async def test_only_one_attempt_in_flight():
    server = FakeServer()
    conn, _ = _manager(server)

    first, second = await asyncio.gather(conn.connect("token"), conn.connect("token"))

    assert first is second
    assert server.attempts == 1
    assert len(server.transports) == 1
    await conn.dispose()


@pytest.mark.asyncio
async def test_reconnects_after_peer_drop():
    server = FakeServer()
    conn, states = _manager(server)
    await conn.connect("token")
    first = server.current

    first.drop()
    await eventually(lambda: len(server.transports) == 2 and conn.is_connected)

    assert ConnectionState.DISCONNECTED in states
    assert server.current is not first
    await conn.dispose()


@pytest.mark.asyncio
async def test_disconnect_is_not_followed_by_reconnect():
    server = FakeServer()
    conn, _ = _manager(server)
    await conn.connect("token")

    await conn.disconnect()
    await asyncio.sleep(FAST.reconnect_delay * 5)

    assert conn.state is ConnectionState.DISCONNECTED
    assert server.attempts == 1
    assert server.current.closed
    await conn.dispose()


@pytest.mark.asyncio
async def test_emit_requires_connection():
    server = FakeServer()
    conn, _ = _manager(server)

    with pytest.raises(NetworkError):
        await conn.emit("note:update", {"noteId": "n1"})

    await conn.connect("token")
    await conn.emit("note:update", {"noteId": "n1", "content": "x"})
    assert server.current.sent == [{"event": "note:update", "data": {"noteId": "n1", "content": "x"}}]
    await conn.dispose()


@pytest.mark.asyncio
async def test_on_replaces_previous_handler():
    server = FakeServer()
    conn, _ = _manager(server)
    first, second = [], []
    conn.on("note-updated", first.append)
    conn.on("note-updated", second.append)
    await conn.connect("token")

    server.current.push("note-updated", {"noteId": "n1"})
    await settle()

    assert first == []
    assert second == [{"noteId": "n1"}]

    conn.off("note-updated")
    server.current.push("note-updated", {"noteId": "n2"})
    await settle()
    assert second == [{"noteId": "n1"}]
    await conn.dispose()


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_reader():
    server = FakeServer()
    conn, _ = _manager(server)
    seen = []

    def broken(data):
        raise RuntimeError("handler bug")

    conn.on("boom", broken)
    conn.on("ok", seen.append)
    await conn.connect("token")

    server.current.push("boom", {})
    server.current.push("ok", {"n": 1})
    await settle()

    assert seen == [{"n": 1}]
    assert conn.is_connected
    await conn.dispose()


@pytest.mark.asyncio
async def test_dispose_prevents_further_use():
    server = FakeServer()
    conn, _ = _manager(server)
    await conn.connect("token")
    await conn.dispose()

    with pytest.raises(RuntimeError):
        await conn.connect("token")
