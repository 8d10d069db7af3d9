import time

import pytest

from msvlink.client import ClientOperation
from msvlink.comm import RemoteCallError
from msvlink.protocol import CallbackFunc, CommPorts, HImage, HValue, ImageHeader, IPPort


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        value = predicate()
        if value:
            return value
        time.sleep(0.02)
    return predicate()


def _produce(images, values):
    image = HImage(ImageHeader(2, 2, 1, 4), b"\x01\x02\x03\x04")
    return [image], []


@pytest.fixture
def pair():
    server = ClientOperation()
    server.init_sdk(
        CommPorts(is_act_as_server=1, port_name="PIC_PORT", localhost_ip=IPPort("127.0.0.1", 0))
    )
    server.register_function(CallbackFunc("pic_display_produce", 0, 0, 1, 0, func=_produce))
    server.start_work()
    ports = CommPorts(
        is_act_as_server=0,
        port_name="PIC_PORT",
        remote_ip=IPPort("127.0.0.1", server.comm.port),
    )
    client = ClientOperation()
    client.init_sdk(ports)
    client.start_work()
    yield server, client, ports
    client.free_sdk()
    server.free_sdk()


def test_do_action_returns_image(pair):
    _, client, ports = pair
    result = client.do_action(ports, "pic_display_produce", [HValue.of(1), HValue.of(2)], [], 5)
    assert result.errcode == 0
    assert len(result.images) == 1
    assert result.images[0].data == b"\x01\x02\x03\x04"
    assert result.images[0].header.channels == 1


def test_remote_functions_lists_registered(pair):
    _, client, ports = pair
    names = _wait_for(lambda: [f.name for f in client.remote_functions(ports)])
    assert "pic_display_produce" in names


def test_remote_commports_on_both_sides(pair):
    server, client, _ = pair
    assert client.remote_commports()[0].localhost_ip == IPPort("127.0.0.1", server.comm.port)
    assert len(_wait_for(lambda: server.remote_commports())) == 1


def test_unknown_function_times_out(pair):
    _, client, ports = pair
    with pytest.raises(RemoteCallError):
        client.do_action(ports, "missing", timeout=0.2)


def test_use_before_init_raises():
    op = ClientOperation()
    with pytest.raises(RuntimeError):
        op.start_work()
    with pytest.raises(RuntimeError):
        op.do_action(CommPorts(), "anything")


def test_free_sdk_releases_endpoint():
    op = ClientOperation()
    op.init_sdk(CommPorts(is_act_as_server=1, localhost_ip=IPPort("127.0.0.1", 0)))
    op.start_work()
    comm = op.comm
    op.free_sdk()
    assert op.comm is None
    assert comm.running is False
    with pytest.raises(RuntimeError):
        op.remote_commports()


def test_duplicate_registration_raises():
    with ClientOperation() as op:
        op.init_sdk(CommPorts(is_act_as_server=1))
        op.register_function(CallbackFunc("f", func=_produce))
        with pytest.raises(ValueError):
            op.register_function(CallbackFunc("f", func=_produce))
        assert [f.name for f in op.comm.local_functions()] == ["f"]