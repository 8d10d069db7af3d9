"""Demonstration endpoints: a picture-producing service, an echo service and a client.

``pic_display_produce`` answers with a random 640x480 RGB image.
``pic_display_handle`` sends back the first image it is given.
``run_client`` calls ``pic_display`` on a service.
``run_service`` starts a service offering one of the two handlers.
"""

from __future__ import annotations

import argparse
import logging
import random
import time
from os import PathLike
from typing import Dict, List, Optional, Tuple, Union

from PIL import Image

from .client import ClientOperation
from .comm import CallResult, RemoteCallError
from .protocol import CallbackFunc, CommPorts, HImage, HValue, ImageHeader, IPPort

log = logging.getLogger(__name__)

PORT_NAME = "PIC_PORT"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_TIMEOUT = 1.0
CLIENT_FUNCTION = "pic_display"
CLIENT_VALUES = (1, 2)

PRODUCE_WIDTH = 640
PRODUCE_HEIGHT = 480
PRODUCE_CHANNELS = 3

SUCCESS_MESSAGE = "image read successfully"

_KEPT_MODES = {"L": 1, "LA": 2, "RGB": 3, "RGBA": 4}


def pic_display_produce(images, values) -> CallResult:
    """Produce one image of random RGB pixels; the inputs are ignored."""
    length = PRODUCE_WIDTH * PRODUCE_HEIGHT * PRODUCE_CHANNELS
    header = ImageHeader(PRODUCE_WIDTH, PRODUCE_HEIGHT, PRODUCE_CHANNELS, length)
    image = HImage(header, random.randbytes(length))
    log.info("produced an image, %d output image(s)", 1)
    return CallResult(images=[image], values=[], errcode=0, errmsg=SUCCESS_MESSAGE)


def pic_display_handle(images, values) -> CallResult:
    """Send back the first input image; no input image raises ``ValueError``."""
    images = list(images)
    if not images:
        raise ValueError("pic_display_handle needs one input image")
    first = images[0]
    log.info("received an image with %d channel(s)", first.header.channels)
    return CallResult(images=[first], values=[], errcode=0, errmsg=SUCCESS_MESSAGE)


def load_image(path: Union[str, "PathLike[str]"]) -> HImage:
    """Read an image file into an ``HImage`` with its channels kept, RGB order.

    Greyscale, greyscale with alpha, RGB and RGBA images keep their channels;
    other modes are converted to RGB, or RGBA when they carry transparency.
    A missing or unreadable file raises ``OSError``.
    """
    with Image.open(path) as img:
        img.load()
        if img.mode not in _KEPT_MODES:
            has_alpha = "A" in img.getbands() or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha else "RGB")
        width, height = img.size
        channels = _KEPT_MODES[img.mode]
        data = img.tobytes()
    return HImage(ImageHeader(width, height, channels, len(data)), data)


_HANDLERS: Dict[str, Tuple[object, int, int, int, int]] = {
    "pic_display_produce": (pic_display_produce, 0, 0, 1, 0),
    "pic_display_handle": (pic_display_handle, 1, 0, 1, 0),
}


def _client_ports(host: str, port: int) -> CommPorts:
    return CommPorts(
        is_act_as_server=0,
        port_name=PORT_NAME,
        localhost_ip=IPPort(host, port),
        remote_ip=IPPort(host, port),
    )


def run_client(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: float = DEFAULT_TIMEOUT) -> CallResult:
    """Connect to a service, call ``pic_display`` with the values 1 and 2, disconnect.

    Raises ``RemoteCallError`` when the call gets no answer and ``OSError``
    when the connection cannot be made.
    """
    ports = _client_ports(host, port)
    client = ClientOperation()
    client.init_sdk(ports)
    try:
        client.start_work()
        values: List[HValue] = [HValue.of(v) for v in CLIENT_VALUES]
        return client.do_action(ports, CLIENT_FUNCTION, values, [], timeout)
    finally:
        client.free_sdk()


def run_service(port: int = DEFAULT_PORT, handler_name: str = "pic_display_produce") -> ClientOperation:
    """Start a service on ``port`` offering the named handler and return it running.

    The caller stops it with ``free_sdk``.  An unknown handler name raises
    ``ValueError``.
    """
    try:
        func, in_images, in_params, out_images, out_params = _HANDLERS[handler_name]
    except KeyError:
        raise ValueError(
            f"unknown handler {handler_name!r}; choose from {', '.join(sorted(_HANDLERS))}"
        ) from None
    ports = CommPorts(
        is_act_as_server=1,
        port_name=PORT_NAME,
        localhost_ip=IPPort(DEFAULT_HOST, port),
    )
    service = ClientOperation()
    service.init_sdk(ports)
    service.register_function(
        CallbackFunc(handler_name, in_images, in_params, out_images, out_params, func=func)  # type: ignore[arg-type]
    )
    try:
        service.start_work()
    except Exception:
        service.free_sdk()
        raise
    return service


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="msvlink-demo", description="Picture service demo.")
    sub = parser.add_subparsers(dest="command", required=True)

    client = sub.add_parser("client", help="call pic_display on a service")
    client.add_argument("--host", default=DEFAULT_HOST)
    client.add_argument("--port", type=int, default=DEFAULT_PORT)
    client.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="seconds")

    service = sub.add_parser("service", help="offer a picture handler")
    service.add_argument("--port", type=int, default=DEFAULT_PORT)
    service.add_argument("--handler", choices=sorted(_HANDLERS), default="pic_display_produce")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "client":
        try:
            result = run_client(args.host, args.port, args.timeout)
        except RemoteCallError as exc:
            print(f"error: {exc.errmsg}")
            return 1
        except OSError as exc:
            print(f"error: {exc}")
            return 1
        print(f"call succeeded, images returned: {len(result.images)}")
        return 0

    try:
        service = run_service(args.port, args.handler)
    except OSError as exc:
        print(f"error: {exc}")
        return 1
    port = service.comm.port if service.comm is not None else args.port
    print(f"service on port {port} started, waiting for calls")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.free_sdk()
    return 0