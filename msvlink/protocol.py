"""Wire structures of the function-call protocol: values, images and packets.

All multi-byte integers are little-endian and the layouts follow the packed
sizes used on the wire: a value occupies 96 bytes, an image header 16 bytes
and a packet head 76 bytes.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional

HEAD_LABEL_1 = 0xAA
HEAD_LABEL_2 = 0x55
OPERATE_CODE_CARELESS = 0x00

VALUE_TYPE_SIZE = 32
VALUE_TEXT_SIZE = 64
HVALUE_SIZE = VALUE_TYPE_SIZE + VALUE_TEXT_SIZE
USER_DEFINE_SIZE = 64

_VALUE_STRUCT = struct.Struct(f"<{VALUE_TYPE_SIZE}s{VALUE_TEXT_SIZE}s")
_IMAGE_HEADER_STRUCT = struct.Struct("<4i")
_HEAD_STRUCT = struct.Struct(f"<BBBB{USER_DEFINE_SIZE}sBBxxI")

IMAGE_HEADER_SIZE = _IMAGE_HEADER_STRUCT.size
HEAD_SIZE = _HEAD_STRUCT.size

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(
    r"\s*([+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)


def _encode_cstring(text: str, size: int, what: str) -> bytes:
    raw = text.encode("utf-8")
    if len(raw) >= size:
        raise ValueError(f"{what} {text!r} does not fit in {size - 1} bytes")
    return raw


def _decode_cstring(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


@dataclass(frozen=True)
class HValue:
    """A typed scalar carried as text: "null", "int", "double" or "string"."""

    type_name: str = "null"
    text: str = ""

    def __post_init__(self) -> None:
        _encode_cstring(self.type_name, VALUE_TYPE_SIZE, "value type")
        _encode_cstring(self.text, VALUE_TEXT_SIZE, "value")

    @classmethod
    def of(cls, value: object) -> "HValue":
        """Wrap a Python int, float, str or None."""
        if value is None:
            return cls()
        if isinstance(value, bool) or isinstance(value, int):
            return cls("int", "%d" % int(value))
        if isinstance(value, float):
            return cls("double", "%f" % value)
        if isinstance(value, str):
            return cls("string", value)
        raise TypeError(f"cannot carry a value of type {type(value).__name__}")

    def as_int(self) -> int:
        """Leading integer of the text, 0 if there is none."""
        match = _INT_PREFIX.match(self.text)
        return int(match.group(1)) if match else 0

    def as_double(self) -> float:
        """Leading floating-point number of the text, 0.0 if there is none."""
        match = _FLOAT_PREFIX.match(self.text)
        return float(match.group(1)) if match else 0.0

    def as_str(self) -> str:
        return self.text

    def to_bytes(self) -> bytes:
        return _VALUE_STRUCT.pack(self.type_name.encode("utf-8"), self.text.encode("utf-8"))

    @classmethod
    def from_bytes(cls, data: bytes) -> "HValue":
        if len(data) < HVALUE_SIZE:
            raise ValueError(f"value needs {HVALUE_SIZE} bytes, got {len(data)}")
        type_raw, text_raw = _VALUE_STRUCT.unpack_from(data)
        return cls(_decode_cstring(type_raw), _decode_cstring(text_raw))


@dataclass(frozen=True)
class ImageHeader:
    width: int = 0
    height: int = 0
    channels: int = 0
    length: int = 0

    def to_bytes(self) -> bytes:
        return _IMAGE_HEADER_STRUCT.pack(self.width, self.height, self.channels, self.length)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ImageHeader":
        if len(data) < IMAGE_HEADER_SIZE:
            raise ValueError(f"image header needs {IMAGE_HEADER_SIZE} bytes, got {len(data)}")
        return cls(*_IMAGE_HEADER_STRUCT.unpack_from(data))


@dataclass(frozen=True)
class HImage:
    """Raw pixel data with its header; the header's length is the data size."""

    header: ImageHeader = field(default_factory=ImageHeader)
    data: bytes = b""

    def __post_init__(self) -> None:
        if self.header.length != len(self.data):
            raise ValueError(
                f"image header announces {self.header.length} bytes, data has {len(self.data)}"
            )

    def encoded_length(self) -> int:
        return self.header.length + IMAGE_HEADER_SIZE

    def to_bytes(self) -> bytes:
        return self.header.to_bytes() + self.data

    @classmethod
    def from_bytes(cls, data: bytes) -> "HImage":
        header = ImageHeader.from_bytes(data)
        if header.length < 0:
            raise ValueError(f"negative image length {header.length}")
        end = IMAGE_HEADER_SIZE + header.length
        if len(data) < end:
            raise ValueError(f"image needs {end} bytes, got {len(data)}")
        return cls(header, bytes(data[IMAGE_HEADER_SIZE:end]))


@dataclass(frozen=True)
class OperateType:
    code_1: int = OPERATE_CODE_CARELESS
    code_2: int = OPERATE_CODE_CARELESS

    def __post_init__(self) -> None:
        for code in (self.code_1, self.code_2):
            if not 0 <= code <= 0xFF:
                raise ValueError(f"operate code {code} is not a byte")

    def matches(self, other: "OperateType") -> bool:
        """Same category, and the same code unless either side does not care."""
        return self.code_1 == other.code_1 and (
            self.code_2 == other.code_2
            or other.code_2 == OPERATE_CODE_CARELESS
            or self.code_2 == OPERATE_CODE_CARELESS
        )


CAMERA_OPERATE_TYPE = OperateType(0x01, OPERATE_CODE_CARELESS)
CAMERA_COMMAND_SET = OperateType(0x01, 0x01)
CAMERA_REQUEST_GET = OperateType(0x01, 0x02)
CAMERA_COMMAND_SET_R = OperateType(0x01, 0x11)
CAMERA_REQUEST_GET_R = OperateType(0x01, 0x12)
IO_OPERATE_TYPE = OperateType(0x20, OPERATE_CODE_CARELESS)
PLC_OPERATE_TYPE = OperateType(0x30, OPERATE_CODE_CARELESS)
SYS_PARAM_OPERATE_TYPE = OperateType(0x40, OPERATE_CODE_CARELESS)
ALG_PARAM_OPERATE_TYPE = OperateType(0x50, OPERATE_CODE_CARELESS)
DB_PARAM_OPERATE_TYPE = OperateType(0x60, OPERATE_CODE_CARELESS)
RES_DATA_OPERATE_TYPE = OperateType(0x80, OPERATE_CODE_CARELESS)
RES_DATA_SEND_DATA = OperateType(0x80, 0x01)
ALARM_MSG_OPERATE_TYPE = OperateType(0x90, OPERATE_CODE_CARELESS)


@dataclass
class IPPort:
    ip: str = ""
    port: int = 0


@dataclass
class CommPorts:
    """Endpoint description: 1 acts as server, 0 as client, -1 unset."""

    is_act_as_server: int = -1
    port_name: str = ""
    localhost_ip: IPPort = field(default_factory=IPPort)
    remote_ip: IPPort = field(default_factory=IPPort)


Handler = Callable[[list, list], tuple]


@dataclass
class CallbackFunc:
    """A named callable with the counts of images and values it takes and gives."""

    name: str = ""
    input_images: int = 0
    input_params: int = 0
    output_images: int = 0
    output_params: int = 0
    func: Optional[Handler] = None


@dataclass(frozen=True)
class PacketHead:
    operate_type: OperateType = field(default_factory=OperateType)
    user_define: str = ""
    param_count: int = 0
    image_count: int = 0
    data_len: int = 0

    def __post_init__(self) -> None:
        if len(self.user_define.encode("utf-8")) > USER_DEFINE_SIZE:
            raise ValueError(f"name {self.user_define!r} exceeds {USER_DEFINE_SIZE} bytes")
        for count in (self.param_count, self.image_count):
            if not 0 <= count <= 0xFF:
                raise ValueError(f"count {count} does not fit in one byte")
        if not 0 <= self.data_len <= 0xFFFFFFFF:
            raise ValueError(f"data length {self.data_len} out of range")

    def to_bytes(self) -> bytes:
        return _HEAD_STRUCT.pack(
            HEAD_LABEL_1,
            HEAD_LABEL_2,
            self.operate_type.code_1,
            self.operate_type.code_2,
            self.user_define.encode("utf-8"),
            self.param_count,
            self.image_count,
            self.data_len,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "PacketHead":
        if len(data) < HEAD_SIZE:
            raise ValueError(f"packet head needs {HEAD_SIZE} bytes, got {len(data)}")
        label_1, label_2, code_1, code_2, name, params, images, data_len = _HEAD_STRUCT.unpack_from(
            data
        )
        if (label_1, label_2) != (HEAD_LABEL_1, HEAD_LABEL_2):
            raise ValueError(f"bad packet labels {label_1:#04x} {label_2:#04x}")
        return cls(OperateType(code_1, code_2), _decode_cstring(name), params, images, data_len)


class DecodedPacket(NamedTuple):
    func_name: str
    values: list
    images: list


@dataclass(frozen=True)
class Packet:
    """A head followed by its payload: values first, then images."""

    head: PacketHead = field(default_factory=PacketHead)
    data: bytes = b""

    def __post_init__(self) -> None:
        if self.head.data_len != len(self.data):
            raise ValueError(
                f"head announces {self.head.data_len} bytes, payload has {len(self.data)}"
            )

    @classmethod
    def build(cls, func_name: str, images, values) -> "Packet":
        images = list(images)
        values = list(values)
        payload = b"".join(v.to_bytes() for v in values) + b"".join(
            i.to_bytes() for i in images
        )
        head = PacketHead(
            user_define=func_name,
            param_count=len(values),
            image_count=len(images),
            data_len=len(payload),
        )
        return cls(head, payload)

    def to_bytes(self) -> bytes:
        return self.head.to_bytes() + self.data

    @classmethod
    def from_bytes(cls, data: bytes) -> "Packet":
        head = PacketHead.from_bytes(data)
        end = HEAD_SIZE + head.data_len
        if len(data) < end:
            raise ValueError(f"packet needs {end} bytes, got {len(data)}")
        return cls(head, bytes(data[HEAD_SIZE:end]))

    def decode(self) -> DecodedPacket:
        """Split the payload into the function name, values and images."""
        values = []
        offset = 0
        for _ in range(self.head.param_count):
            values.append(HValue.from_bytes(self.data[offset : offset + HVALUE_SIZE]))
            offset += HVALUE_SIZE
        images = []
        for _ in range(self.head.image_count):
            image = HImage.from_bytes(self.data[offset:])
            images.append(image)
            offset += image.encoded_length()
        return DecodedPacket(self.head.user_define, values, images)