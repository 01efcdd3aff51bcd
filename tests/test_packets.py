import pytest

from mqttcore.packets import (
    ACCEPTED,
    CODE_CONNECT_BAD_CLIENT_ID,
    CODE_CONNECT_BAD_PROTOCOL_VERSION,
    CODE_CONNECT_PROTOCOL_VIOLATION,
    FAILED,
    FixedHeader,
    MalformedPacketError,
    Packet,
    SubOptions,
    ValidationError,
)
from mqttcore.properties import PacketType, Properties, Reader, User, pack_string


def _body(encoded):
    reader = Reader(encoded)
    reader.read_byte()
    reader.read_vbi()
    return reader.read_rest()


def _header_len_ok(encoded):
    reader = Reader(encoded)
    reader.read_byte()
    remaining = reader.read_vbi()
    return remaining == reader.remaining()


def _connect_packet():
    password = b"password"
    return Packet(
        fixed_header=FixedHeader(type=PacketType.CONNECT),
        protocol_name=b"MQTT",
        protocol_version=5,
        clean_session=True,
        keepalive=30,
        client_identifier="zen",
        will_flag=True,
        will_qos=1,
        will_retain=True,
        will_topic="lwt",
        will_message=b"gone",
        will_properties=Properties(will_delay_interval=5),
        username_flag=True,
        username=b"mochi",
        password_flag=True,
        password=password,
        properties=Properties(session_expiry_interval=120, receive_maximum=10),
    )


def test_fixed_header_ping_bytes():
    assert Packet(fixed_header=FixedHeader(type=PacketType.PINGREQ)).pingreq_encode() == b"\xc0\x00"
    assert Packet(fixed_header=FixedHeader(type=PacketType.PINGRESP)).pingresp_encode() == b"\xd0\x00"


def test_fixed_header_decode():
    header = FixedHeader()
    header.decode(0x3B)
    assert header.type == PacketType.PUBLISH
    assert header.dup is True
    assert header.qos == 1
    assert header.retain is True


def test_fixed_header_round_trip():
    header = FixedHeader(type=PacketType.PUBLISH, dup=True, qos=2, retain=False)
    decoded = FixedHeader()
    decoded.decode(header.encode()[0])
    assert (decoded.type, decoded.dup, decoded.qos, decoded.retain) == (3, True, 2, False)


def test_connect_encode_minimal_bytes():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.CONNECT),
        protocol_name=b"MQTT",
        protocol_version=5,
        clean_session=True,
        keepalive=30,
        client_identifier="zen",
    )
    assert pk.connect_encode() == b"\x10\x10\x00\x04MQTT\x05\x02\x00\x1e\x00\x00\x03zen"


def test_connect_round_trip():
    original = _connect_packet()
    encoded = original.connect_encode()
    assert encoded[0] == PacketType.CONNECT << 4
    assert _header_len_ok(encoded)

    decoded = Packet(fixed_header=FixedHeader(type=PacketType.CONNECT))
    decoded.connect_decode(_body(encoded))
    for name in (
        "protocol_name", "protocol_version", "clean_session", "keepalive",
        "client_identifier", "will_flag", "will_qos", "will_retain", "will_topic",
        "will_message", "username_flag", "username", "password_flag", "password",
    ):
        assert getattr(decoded, name) == getattr(original, name), name
    assert decoded.properties.session_expiry_interval == 120
    assert decoded.properties.receive_maximum == 10
    assert decoded.will_properties.will_delay_interval == 5


def test_connect_decode_truncated():
    with pytest.raises(MalformedPacketError) as info:
        Packet().connect_decode(b"\x00")
    assert info.value.field == "protocol_name"


def test_connect_decode_invalid_property():
    data = b"\x00\x04MQTT\x05\x02\x00\x1e" + b"\x03\x23\x00\x01" + pack_string("zen")
    with pytest.raises(MalformedPacketError) as info:
        Packet().connect_decode(data)
    assert info.value.field == "properties"


def test_connect_validate_accepts_mqisdp():
    pk = Packet(protocol_name=b"MQIsdp", protocol_version=3, clean_session=True)
    assert pk.connect_validate() == ACCEPTED


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"protocol_name": b"BAD", "protocol_version": 3}, CODE_CONNECT_PROTOCOL_VIOLATION),
        ({"protocol_name": b"MQIsdp", "protocol_version": 4}, CODE_CONNECT_BAD_PROTOCOL_VERSION),
        ({"protocol_name": b"MQIsdp", "protocol_version": 3, "reserved_bit": 1},
         CODE_CONNECT_PROTOCOL_VIOLATION),
        ({"protocol_name": b"MQIsdp", "protocol_version": 3, "password_flag": True,
          "client_identifier": "zen"}, CODE_CONNECT_PROTOCOL_VIOLATION),
        ({"protocol_name": b"MQIsdp", "protocol_version": 3, "clean_session": False},
         CODE_CONNECT_BAD_CLIENT_ID),
    ],
)
def test_connect_validate_failures(kwargs, code):
    with pytest.raises(ValidationError) as info:
        Packet(**kwargs).connect_validate()
    assert info.value.code == code


def test_connack_encode_bytes():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.CONNACK))
    assert pk.connack_encode() == b"\x20\x03\x00\x00\x00"


def test_connack_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.CONNACK),
        session_present=True,
        return_code=0x86,
        properties=Properties(assigned_client_id="abc", server_keep_alive=60),
    )
    encoded = pk.connack_encode()
    decoded = Packet()
    decoded.connack_decode(_body(encoded))
    assert decoded.session_present is True
    assert decoded.return_code == 0x86
    assert decoded.properties.assigned_client_id == "abc"
    assert decoded.properties.server_keep_alive == 60


def test_connack_decode_empty():
    with pytest.raises(MalformedPacketError) as info:
        Packet().connack_decode(b"")
    assert info.value.field == "flags"


def test_disconnect_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.DISCONNECT),
        return_code=0x8B,
        properties=Properties(reason_string="bye", session_expiry_interval=0),
    )
    encoded = pk.disconnect_encode()
    assert encoded[0] == PacketType.DISCONNECT << 4
    decoded = Packet()
    decoded.disconnect_decode(_body(encoded))
    assert decoded.return_code == 0x8B
    assert decoded.properties.reason_string == "bye"
    assert decoded.properties.session_expiry_interval == 0


def test_puback_encode_bytes():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.PUBACK), packet_id=7)
    assert pk.puback_encode() == b"\x40\x04\x00\x07\x00\x00"


def test_puback_decode_short_forms():
    pk = Packet()
    pk.puback_decode(b"\x00\x07")
    assert pk.packet_id == 7
    assert pk.return_code == 0

    pk = Packet()
    pk.puback_decode(b"\x00\x07\x10")
    assert pk.packet_id == 7
    assert pk.return_code == 0x10
    assert pk.properties is None


def test_puback_decode_missing_packet_id():
    with pytest.raises(MalformedPacketError) as info:
        Packet().puback_decode(b"\x00")
    assert info.value.field == "packet_id"


@pytest.mark.parametrize(
    "ptype, encode, decode",
    [
        (PacketType.PUBACK, "puback_encode", "puback_decode"),
        (PacketType.PUBREC, "pubrec_encode", "pubrec_decode"),
        (PacketType.PUBREL, "pubrel_encode", "pubrel_decode"),
        (PacketType.PUBCOMP, "pubcomp_encode", "pubcomp_decode"),
    ],
)
def test_ack_round_trip_with_properties(ptype, encode, decode):
    pk = Packet(
        fixed_header=FixedHeader(type=ptype),
        packet_id=1234,
        return_code=0x10,
        properties=Properties(reason_string="why", user=[User("k", "v")]),
    )
    encoded = getattr(pk, encode)()
    assert encoded[0] >> 4 == ptype
    assert _header_len_ok(encoded)
    decoded = Packet()
    getattr(decoded, decode)(_body(encoded))
    assert decoded.packet_id == 1234
    assert decoded.return_code == 0x10
    assert decoded.properties.reason_string == "why"
    assert decoded.properties.user == [User("k", "v")]


@pytest.mark.parametrize("encode", ["pubrec_encode", "pubrel_encode", "pubcomp_encode"])
def test_ack_without_properties_omits_length(encode):
    pk = Packet(packet_id=9, return_code=0)
    body = _body(getattr(pk, encode)())
    assert body == b"\x00\x09\x00"


def test_publish_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1, retain=True),
        topic_name="a/b/c",
        packet_id=11,
        payload=b"hello",
        properties=Properties(content_type="text/plain", message_expiry=30),
    )
    encoded = pk.publish_encode()
    assert _header_len_ok(encoded)

    decoded = Packet()
    decoded.fixed_header.decode(encoded[0])
    decoded.publish_decode(_body(encoded))
    assert decoded.fixed_header.qos == 1
    assert decoded.fixed_header.retain is True
    assert decoded.topic_name == "a/b/c"
    assert decoded.packet_id == 11
    assert decoded.payload == b"hello"
    assert decoded.properties.content_type == "text/plain"
    assert decoded.properties.message_expiry == 30


def test_publish_qos0_has_no_packet_id():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH), topic_name="t", payload=b"x")
    body = _body(pk.publish_encode())
    assert body == pack_string("t") + b"\x00" + b"x"


def test_publish_encode_missing_packet_id():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1), topic_name="t")
    with pytest.raises(MalformedPacketError) as info:
        pk.publish_encode()
    assert info.value.field == "packet_id"


def test_publish_decode_truncated_topic():
    with pytest.raises(MalformedPacketError) as info:
        Packet().publish_decode(b"\x00\x05ab")
    assert info.value.field == "topic"


def test_publish_validate():
    ok = Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1), packet_id=3)
    assert ok.publish_validate() == ACCEPTED

    with pytest.raises(ValidationError) as info:
        Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1)).publish_validate()
    assert info.value.code == FAILED

    with pytest.raises(ValidationError) as info:
        Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH), packet_id=3).publish_validate()
    assert info.value.code == FAILED


def test_publish_copy():
    props = Properties(content_type="json")
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=2, dup=True, retain=True),
        topic_name="x/y",
        payload=b"data",
        packet_id=5,
        properties=props,
    )
    copied = pk.publish_copy()
    assert copied.fixed_header.type == PacketType.PUBLISH
    assert copied.fixed_header.qos == 0
    assert copied.fixed_header.dup is False
    assert copied.fixed_header.retain is True
    assert copied.topic_name == "x/y"
    assert copied.payload == b"data"
    assert copied.packet_id == 0
    assert copied.properties is props


def test_suback_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.SUBACK),
        packet_id=15,
        return_codes=bytes([0, 1, 2, 0x80]),
    )
    encoded = pk.suback_encode()
    assert _body(encoded) == b"\x00\x0f" + bytes([0, 1, 2, 0x80])
    decoded = Packet()
    decoded.suback_decode(_body(encoded) [:2] + b"\x00" + _body(encoded)[2:])
    assert decoded.packet_id == 15
    assert decoded.return_codes == bytes([0, 1, 2, 0x80])


def test_suback_with_properties_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.SUBACK),
        packet_id=2,
        return_codes=b"\x01",
        properties=Properties(reason_string="ok"),
    )
    decoded = Packet()
    decoded.suback_decode(_body(pk.suback_encode()))
    assert decoded.packet_id == 2
    assert decoded.return_codes == b"\x01"
    assert decoded.properties.reason_string == "ok"


def test_sub_options_round_trip():
    options = SubOptions(qos=2, no_local=True, retain_as_published=True)
    unpacked = SubOptions.unpack(options.pack())
    assert unpacked.qos == 2
    assert unpacked.no_local is True
    assert unpacked.retain_as_published is True


def test_sub_options_unpack_retain_handling():
    assert SubOptions.unpack(0x21).retain_handling == 2
    assert SubOptions.unpack(0x21).qos == 1


def test_subscribe_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.SUBSCRIBE, qos=1),
        packet_id=21,
        topics=["a/b", "c/#"],
        sub_oss=[SubOptions(qos=1), SubOptions(qos=2, no_local=True)],
        properties=Properties(subscription_identifier=300),
    )
    encoded = pk.subscribe_encode()
    assert _header_len_ok(encoded)
    decoded = Packet()
    decoded.subscribe_decode(_body(encoded))
    assert decoded.packet_id == 21
    assert decoded.topics == ["a/b", "c/#"]
    assert [o.qos for o in decoded.sub_oss] == [1, 2]
    assert decoded.sub_oss[1].no_local is True
    assert decoded.properties.subscription_identifier == 300


def test_subscribe_decode_bad_qos():
    data = b"\x00\x01\x00" + pack_string("a/b") + b"\x03"
    with pytest.raises(MalformedPacketError) as info:
        Packet().subscribe_decode(data)
    assert info.value.field == "qos"


def test_subscribe_encode_mismatched_options():
    pk = Packet(packet_id=1, topics=["a", "b"], sub_oss=[SubOptions()])
    with pytest.raises(ValueError):
        pk.subscribe_encode()


def test_subscribe_validate():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.SUBSCRIBE, qos=1), packet_id=1)
    assert pk.subscribe_validate() == ACCEPTED
    with pytest.raises(ValidationError) as info:
        Packet(fixed_header=FixedHeader(type=PacketType.SUBSCRIBE, qos=1)).subscribe_validate()
    assert info.value.code == FAILED


def test_unsuback_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.UNSUBACK),
        packet_id=33,
        properties=Properties(reason_string="done"),
    )
    encoded = pk.unsuback_encode()
    assert encoded[0] == PacketType.UNSUBACK << 4
    decoded = Packet()
    decoded.unsuback_decode(_body(encoded))
    assert decoded.packet_id == 33
    assert decoded.properties.reason_string == "done"


def test_unsubscribe_round_trip():
    pk = Packet(
        fixed_header=FixedHeader(type=PacketType.UNSUBSCRIBE, qos=1),
        packet_id=44,
        topics=["a/b", "x/+/y"],
        properties=Properties(user=[User("k", "v")]),
    )
    encoded = pk.unsubscribe_encode()
    assert _header_len_ok(encoded)
    decoded = Packet()
    decoded.unsubscribe_decode(_body(encoded))
    assert decoded.packet_id == 44
    assert decoded.topics == ["a/b", "x/+/y"]
    assert decoded.properties.user == [User("k", "v")]


def test_unsubscribe_decode_skips_empty_topics():
    data = b"\x00\x02\x00" + pack_string("") + pack_string("t")
    pk = Packet()
    pk.unsubscribe_decode(data)
    assert pk.topics == ["t"]


def test_unsubscribe_validate():
    pk = Packet(fixed_header=FixedHeader(type=PacketType.UNSUBSCRIBE, qos=1), packet_id=8)
    assert pk.unsubscribe_validate() == ACCEPTED
    with pytest.raises(ValidationError) as info:
        Packet(fixed_header=FixedHeader(type=PacketType.UNSUBSCRIBE, qos=1)).unsubscribe_validate()
    assert info.value.code == FAILED


def test_encode_sets_remaining_length():
    pk = _connect_packet()
    encoded = pk.connect_encode()
    assert pk.fixed_header.remaining == len(_body(encoded))