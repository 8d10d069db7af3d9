import pytest

from msvlink.protocol import (
    HEAD_LABEL_1,
    HEAD_LABEL_2,
    HEAD_SIZE,
    HVALUE_SIZE,
    IMAGE_HEADER_SIZE,
    CallbackFunc,
    CommPorts,
    HImage,
    HValue,
    ImageHeader,
    IPPort,
    OperateType,
    Packet,
    PacketHead,
)


def _image(width=2, height=2, channels=3):
    length = width * height * channels
    return HImage(ImageHeader(width, height, channels, length), bytes(range(length)))


def test_hvalue_of_types():
    assert HValue.of(7) == HValue("int", "7")
    assert HValue.of("pic") == HValue("string", "pic")
    assert HValue.of(None) == HValue("null", "")
    assert HValue.of(1.5) == HValue("double", "1.500000")


def test_hvalue_rejects_unknown_type():
    with pytest.raises(TypeError):
        HValue.of([1])


def test_hvalue_text_too_long():
    with pytest.raises(ValueError):
        HValue.of("x" * 64)


def test_hvalue_numeric_parsing():
    assert HValue.of(42).as_int() == 42
    assert HValue.of(-3).as_int() == -3
    assert HValue.of("12abc").as_int() == 12
    assert HValue.of("abc").as_int() == 0
    assert HValue.of(2.25).as_double() == 2.25
    assert HValue.of("nope").as_double() == 0.0
    assert HValue.of("pic").as_str() == "pic"


def test_hvalue_round_trip_and_size():
    value = HValue.of("pic_display")
    raw = value.to_bytes()
    assert len(raw) == HVALUE_SIZE
    assert raw[:3] == b"str"
    assert HValue.from_bytes(raw) == value


def test_hvalue_from_short_bytes():
    with pytest.raises(ValueError):
        HValue.from_bytes(b"\0" * 10)


def test_image_header_round_trip():
    header = ImageHeader(640, 480, 3, 640 * 480 * 3)
    raw = header.to_bytes()
    assert len(raw) == IMAGE_HEADER_SIZE
    assert ImageHeader.from_bytes(raw) == header


def test_image_round_trip():
    image = _image()
    raw = image.to_bytes()
    assert len(raw) == image.encoded_length()
    assert image.encoded_length() == image.header.length + IMAGE_HEADER_SIZE
    assert HImage.from_bytes(raw) == image


def test_image_length_mismatch():
    with pytest.raises(ValueError):
        HImage(ImageHeader(1, 1, 3, 3), b"\x00")


def test_image_truncated_bytes():
    raw = _image().to_bytes()
    with pytest.raises(ValueError):
        HImage.from_bytes(raw[:-1])


def test_operate_type_matching():
    assert OperateType(0x01, 0x02).matches(OperateType(0x01, 0x02))
    assert OperateType(0x01, 0x02).matches(OperateType(0x01, 0x00))
    assert OperateType(0x01, 0x00).matches(OperateType(0x01, 0x11))
    assert not OperateType(0x01, 0x01).matches(OperateType(0x01, 0x02))
    assert not OperateType(0x20, 0x00).matches(OperateType(0x01, 0x00))


def test_operate_type_rejects_non_byte():
    with pytest.raises(ValueError):
        OperateType(256, 0)


def test_packet_head_layout():
    raw = PacketHead(user_define="ASK_FUNLIST").to_bytes()
    assert len(raw) == HEAD_SIZE
    assert raw[0] == HEAD_LABEL_1
    assert raw[1] == HEAD_LABEL_2
    assert raw[4:15] == b"ASK_FUNLIST"


def test_packet_head_round_trip():
    head = PacketHead(OperateType(0x40, 0x01), "fn", 2, 1, 300)
    assert PacketHead.from_bytes(head.to_bytes()) == head


def test_packet_head_bad_labels():
    raw = bytearray(PacketHead().to_bytes())
    raw[0] = 0
    with pytest.raises(ValueError):
        PacketHead.from_bytes(bytes(raw))


def test_packet_head_name_too_long():
    with pytest.raises(ValueError):
        PacketHead(user_define="n" * 65)


def test_packet_build_and_decode():
    values = [HValue.of(1), HValue.of(2)]
    images = [_image(), _image(1, 1, 1)]
    packet = Packet.build("pic_display", images, values)
    assert packet.head.param_count == 2
    assert packet.head.image_count == 2
    assert packet.head.data_len == len(packet.data)
    name, got_values, got_images = packet.decode()
    assert name == "pic_display"
    assert got_values == values
    assert got_images == images


def test_packet_wire_round_trip():
    packet = Packet.build("pic_display_produce", [_image()], [HValue.of("a")])
    raw = packet.to_bytes()
    assert len(raw) == HEAD_SIZE + packet.head.data_len
    assert Packet.from_bytes(raw) == packet


def test_packet_empty():
    packet = Packet.build("ASK_FUNLIST", [], [])
    assert packet.data == b""
    assert packet.decode() == ("ASK_FUNLIST", [], [])


def test_packet_truncated():
    raw = Packet.build("f", [], [HValue.of(5)]).to_bytes()
    with pytest.raises(ValueError):
        Packet.from_bytes(raw[:-1])


def test_packet_inconsistent_length():
    with pytest.raises(ValueError):
        Packet(PacketHead(data_len=4), b"\0")


def test_defaults_of_ports_and_callback():
    ports = CommPorts()
    assert ports.is_act_as_server == -1
    assert ports.localhost_ip == IPPort("", 0)
    func = CallbackFunc(name="ASK_FUNLIST", output_params=1)
    assert (func.input_images, func.input_params, func.output_params) == (0, 0, 1)
    assert func.func is None