# msvlink

msvlink lets programs call named functions on one another over TCP. A
function receives a list of images and a list of typed values. It
returns images and values, and it can also return an error code and an
error message. The package was built for machine-vision set-ups, in
which a processing node offers functions that other nodes call.

## Building blocks

- `msvlink.protocol` holds the wire structures. All integers are
  little-endian.
  - `HValue` is a 96-byte record. It holds a type tag (`int`, `double`,
    `string` or `null`) and the value written as text.
    - `HValue.of(x)` wraps an `int`, a `float`, a `str` or `None`.
    - `as_int()`, `as_double()` and `as_str()` read the value back.
  - `ImageHeader` is 16 bytes: width, height, channels and length.
  - `HImage` is an `ImageHeader` followed by the raw pixel bytes.
  - `PacketHead` is 76 bytes. It holds the marker bytes `0xAA 0x55`, an
    `OperateType`, the function name (at most 64 bytes), the number of
    values, the number of images and the payload length.
  - `Packet.build(name, images, values)` lays out the values first and
    the images after them. `Packet.decode()` splits a packet back into
    its name, values and images.
- `msvlink.framing.PacketAssembler` rebuilds whole packets from a TCP
  byte stream.
  - `feed(data)` returns the packets that are complete.
  - It skips any bytes that come before a marker. If a full head's
    worth of data holds no marker at all, it throws that data away.
- `msvlink.transport` runs the sockets.
  - `AsyncTcpServer` and `AsyncTcpClient` run socket I/O on background
    threads. They report connects, disconnects and received chunks to
    callbacks.
  - `send_all` and `recv_some` are helpers for plain sockets. They take
    an optional readiness timeout in seconds.
- `msvlink.registry` keeps track of functions and peers.
  - `LocalFunctions` holds the functions this side offers.
  - `PeerTable` holds the connected peers. Each peer has a send queue
    and a receive queue of at most 128 packets, and a full queue drops
    its oldest packet.
  - `encode_function_list` and `decode_function_list` turn function
    descriptions into values and back.
- `msvlink.comm.ServerComm` is the broker.
  - It runs the local functions that peers ask for and sends the
    replies back as packets named `OnReturn_<name>`.
  - When a peer connects, each side asks the other for its functions
    through the built-in `ASK_FUNLIST` function.
- `msvlink.client.ClientOperation` is the entry point. It wraps one
  `ServerComm` with an `init_sdk` / `start_work` / `stop_work` /
  `free_sdk` life cycle.

## Writing a handler

A handler is called as `handler(images, values)`. It may return any of
these:

- a `CallResult`
- a pair `(images, values)`
- a tuple `(images, values, errcode, errmsg)`
- `None`

If the handler raises an exception during a local call, the result has
error code `-1`. Register a handler as a `CallbackFunc`. It takes the
function name, the four image and value counts, and `func=`.

A reply to a remote call carries the images and values only. The
handler's error code and message are not sent to the caller. A remote
call raises `msvlink.comm.RemoteCallError` in two cases:

- no matching peer is found, or
- no reply arrives before the timeout.

Timeouts are given in seconds.

## Example

```python
from msvlink.client import ClientOperation
from msvlink.protocol import CallbackFunc, CommPorts, HValue, IPPort


def add(images, values):
    return [], [HValue.of(sum(v.as_int() for v in values))]


server = ClientOperation()
server.init_sdk(CommPorts(is_act_as_server=1, localhost_ip=IPPort("127.0.0.1", 0)))
server.register_function(CallbackFunc("add", 0, 2, 0, 1, func=add))
server.start_work()

ports = CommPorts(is_act_as_server=0, remote_ip=IPPort("127.0.0.1", server.comm.port))
client = ClientOperation()
client.init_sdk(ports)
client.start_work()
result = client.do_action(ports, "add", [HValue.of(2), HValue.of(3)], [], timeout=2.0)
print(result.values[0].as_int())  # 5

client.free_sdk()
server.free_sdk()
```

- `remote_functions(ports)` lists the functions that a connected peer
  has announced.
- `remote_commports()` lists the addresses of the connected peers.

## Demo

`msvlink.demo` provides these functions:

- `pic_display_produce` answers with a random 640x480 RGB image.
- `pic_display_handle` sends back the first image it receives.
- `load_image(path)` reads an image file into an `HImage`. It uses
  Pillow to do this.

The `msvlink-demo` command can start a service or run a client:

```
msvlink-demo service --port 8000 --handler pic_display_produce
msvlink-demo client --host 127.0.0.1 --port 8000 --timeout 1.0
```

- The service runs until it is interrupted with Ctrl+C.
- The client calls a function named `pic_display` with the values 1
  and 2. Neither demo handler has that name, so a call made against
  the demo service gets no reply and ends with a timeout error.

## What it does not do

msvlink only moves function calls between processes. It does not
include any camera access, image processing or storage of results.
Every function has to be supplied by the program that registers it.
Connections are not re-established automatically after they drop.

## Development

```
pip install -e ".[test]"
pytest
```