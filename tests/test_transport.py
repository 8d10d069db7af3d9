import errno
import queue
import socket
import time

import pytest

from msvlink.transport import (
    AsyncTcpClient,
    AsyncTcpServer,
    SocketError,
    recv_some,
    send_all,
)

HOST = "127.0.0.1"


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _free_port():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind((HOST, 0))
    port = probe.getsockname()[1]
    probe.close()
    return port


@pytest.fixture
def server():
    events = queue.Queue()
    srv = AsyncTcpServer(
        0,
        host=HOST,
        on_receive=lambda c, d: events.put(("recv", c, d)),
        on_connect=lambda c: events.put(("connect", c, None)),
        on_disconnect=lambda c: events.put(("disconnect", c, None)),
    )
    srv.start()
    yield srv, events
    srv.stop()


def _client(port):
    states = queue.Queue()
    received = queue.Queue()
    client = AsyncTcpClient(
        HOST,
        port,
        on_receive=lambda s, d: received.put(d),
        on_connect=lambda s, flag: states.put(flag),
    )
    return client, states, received


def test_send_all_then_recv_some_round_trip():
    a, b = socket.socketpair()
    try:
        send_all(a, b"hello", timeout=1)
        assert recv_some(b, 1024, timeout=1) == b"hello"
    finally:
        a.close()
        b.close()


def test_recv_some_times_out_without_data():
    a, b = socket.socketpair()
    try:
        with pytest.raises(TimeoutError):
            recv_some(b, 16, timeout=0.05)
    finally:
        a.close()
        b.close()


def test_recv_some_reports_closed_peer():
    a, b = socket.socketpair()
    a.close()
    try:
        with pytest.raises(SocketError):
            recv_some(b, 16, timeout=1)
    finally:
        b.close()


def test_send_all_on_closed_socket_raises():
    a, b = socket.socketpair()
    a.close()
    b.close()
    with pytest.raises(SocketError) as info:
        send_all(a, b"x")
    assert info.value.errno == errno.EBADF


def test_server_client_exchange(server):
    srv, events = server
    client, states, received = _client(srv.port)
    client.connect()
    try:
        assert states.get(timeout=5) is True
        assert client.is_connected()
        kind, conn, _ = events.get(timeout=5)
        assert kind == "connect"
        assert _wait_for(lambda: srv.client_count() == 1)

        assert client.send(b"ping") is True
        kind, sender, data = events.get(timeout=5)
        assert (kind, data) == ("recv", b"ping")
        assert sender is conn

        assert srv.send_to_client(conn, b"pong") is True
        assert received.get(timeout=5) == b"pong"

        assert srv.client_ip(conn) == HOST
        assert srv.client_port(conn) == client.socket.getsockname()[1]
    finally:
        client.disconnect()
    assert states.get(timeout=5) is False
    assert not client.is_connected()
    kind, gone, _ = events.get(timeout=5)
    assert kind == "disconnect"
    assert gone is conn
    assert _wait_for(lambda: srv.client_count() == 0)


def test_close_client_notifies_both_sides(server):
    srv, events = server
    client, states, _ = _client(srv.port)
    client.connect()
    assert states.get(timeout=5) is True
    _, conn, _ = events.get(timeout=5)
    assert _wait_for(lambda: srv.client_count() == 1)

    srv.close_client(conn)
    kind, gone, _ = events.get(timeout=5)
    assert kind == "disconnect"
    assert gone is conn
    assert srv.client_count() == 0
    assert states.get(timeout=5) is False
    assert _wait_for(lambda: not client.is_connected())


def test_close_all_clients_empties_server(server):
    srv, events = server
    first, first_states, _ = _client(srv.port)
    second, second_states, _ = _client(srv.port)
    first.connect()
    second.connect()
    assert _wait_for(lambda: srv.client_count() == 2)

    srv.close_all_clients()
    assert srv.client_count() == 0
    assert first_states.get(timeout=5) is True
    assert first_states.get(timeout=5) is False
    assert second_states.get(timeout=5) is True
    assert second_states.get(timeout=5) is False


def test_stop_disconnects_clients(server):
    srv, _ = server
    client, states, _ = _client(srv.port)
    client.connect()
    assert states.get(timeout=5) is True
    assert _wait_for(lambda: srv.client_count() == 1)
    srv.stop()
    assert not srv.running
    assert states.get(timeout=5) is False
    assert srv.client_count() == 0


def test_start_is_idempotent(server):
    srv, _ = server
    port = srv.port
    srv.start()
    assert srv.running
    assert srv.port == port


def test_bind_conflict_raises(server):
    srv, _ = server
    other = AsyncTcpServer(srv.port, host=HOST)
    with pytest.raises(SocketError):
        other.start()
    assert not other.running


def test_connect_refused_raises():
    client = AsyncTcpClient(HOST, _free_port())
    with pytest.raises(SocketError):
        client.connect()
    assert not client.is_connected()


def test_send_without_connection_returns_false():
    client = AsyncTcpClient(HOST, _free_port())
    assert client.send(b"data") is False


def test_server_context_manager():
    with AsyncTcpServer(0, host=HOST) as srv:
        assert srv.running
        assert srv.port > 0
    assert not srv.running


def test_client_context_manager(server):
    srv, _ = server
    client, states, _ = _client(srv.port)
    with client:
        assert client.is_connected()
    assert not client.is_connected()
    assert states.get(timeout=5) is True
    assert states.get(timeout=5) is False