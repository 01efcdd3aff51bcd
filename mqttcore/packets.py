"""MQTT v5 control packets: encoding, decoding and validation."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .properties import (
    PacketType,
    Properties,
    Reader,
    encode_vbi,
    pack_binary,
    pack_string,
    pack_uint16,
)

ACCEPTED = 0x00
FAILED = 0xFF
CODE_CONNECT_BAD_PROTOCOL_VERSION = 0x01
CODE_CONNECT_BAD_CLIENT_ID = 0x02
CODE_CONNECT_PROTOCOL_VIOLATION = 0xFF

_MAX_FIELD_LEN = 65535


class MalformedPacketError(ValueError):
    """Raised when a packet cannot be encoded or decoded; ``field`` names the culprit."""

    def __init__(self, field_name: str, detail: str = "") -> None:
        self.field = field_name
        message = f"malformed packet: {field_name}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ValidationError(ValueError):
    """Raised when a packet breaks the protocol; ``code`` is the reply code."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        super().__init__(message)


def _read(field_name: str, read: Callable[..., Any], *args: Any) -> Any:
    try:
        return read(*args)
    except (EOFError, ValueError, UnicodeDecodeError) as exc:
        raise MalformedPacketError(field_name, str(exc)) from exc


def _pack_props(props: Optional[Properties], packet_type: int) -> bytes:
    return props.pack(packet_type) if props is not None else b""


def _with_length(block: bytes) -> bytes:
    return encode_vbi(len(block)) + block


def _optional_block(block: bytes) -> bytes:
    return _with_length(block) if block else b""


@dataclass
class FixedHeader:
    """The first byte and remaining length of every control packet."""

    type: int = 0
    dup: bool = False
    qos: int = 0
    retain: bool = False
    remaining: int = 0

    def encode(self) -> bytes:
        first = (self.type << 4) | (int(self.dup) << 3) | ((self.qos & 0x03) << 1) | int(self.retain)
        return bytes([first & 0xFF]) + encode_vbi(self.remaining)

    def decode(self, header_byte: int) -> None:
        self.type = header_byte >> 4
        self.dup = bool((header_byte >> 3) & 0x01)
        self.qos = (header_byte >> 1) & 0x03
        self.retain = bool(header_byte & 0x01)


@dataclass
class SubOptions:
    """Subscription options carried with each topic filter of a SUBSCRIBE."""

    qos: int = 0
    retain_handling: int = 0
    no_local: bool = False
    retain_as_published: bool = False

    def pack(self) -> int:
        value = self.qos & 0x03
        if self.no_local:
            value |= 1 << 2
        if self.retain_as_published:
            value |= 1 << 3
        value |= self.retain_handling & 0x30
        return value

    @classmethod
    def unpack(cls, value: int) -> SubOptions:
        return cls(
            qos=value & 0x03,
            no_local=bool((value >> 2) & 0x01),
            retain_as_published=bool((value >> 3) & 0x01),
            retain_handling=(value >> 4) & 0x03,
        )


@dataclass
class Packet:
    """An MQTT control packet of any type."""

    fixed_header: FixedHeader = field(default_factory=FixedHeader)
    protocol_name: bytes = b""
    protocol_version: int = 0
    clean_session: bool = False
    will_flag: bool = False
    will_qos: int = 0
    will_retain: bool = False
    username_flag: bool = False
    password_flag: bool = False
    reserved_bit: int = 0
    keepalive: int = 0
    client_identifier: str = ""
    will_topic: str = ""
    will_message: bytes = b""
    will_properties: Optional[Properties] = None
    username: bytes = b""
    password: bytes = b""
    session_present: bool = False
    return_code: int = 0
    properties: Optional[Properties] = None
    packet_id: int = 0
    topic_name: str = ""
    payload: bytes = b""
    return_codes: bytes = b""
    topics: list[str] = field(default_factory=list)
    sub_oss: list[SubOptions] = field(default_factory=list)

    # helpers

    def _finish(self, body: bytes) -> bytes:
        self.fixed_header.remaining = len(body)
        return self.fixed_header.encode() + body

    def _ensure_properties(self) -> Properties:
        if self.properties is None:
            self.properties = Properties()
        return self.properties

    def _unpack_properties(self, reader: Reader, packet_type: int) -> None:
        _read("properties", self._ensure_properties().unpack, reader, packet_type)

    def _pack_flags(self) -> int:
        flags = 0
        if self.username_flag:
            flags |= 1 << 7
        if self.password_flag:
            flags |= 1 << 6
        if self.will_flag:
            flags |= 1 << 2
            flags |= self.will_qos << 3
            if self.will_retain:
                flags |= 1 << 5
        if self.clean_session:
            flags |= 1 << 1
        return flags & 0xFF

    def _unpack_flags(self, flags: int) -> None:
        self.clean_session = bool((flags >> 1) & 1)
        self.will_flag = bool((flags >> 2) & 1)
        self.will_qos = (flags >> 3) & 3
        self.will_retain = bool((flags >> 5) & 1)
        self.password_flag = bool((flags >> 6) & 1)
        self.username_flag = bool((flags >> 7) & 1)

    def _ack_encode(self, packet_type: int, always_props: bool) -> bytes:
        body = pack_uint16(self.packet_id) + bytes([self.return_code])
        block = _pack_props(self.properties, packet_type)
        body += _with_length(block) if always_props else _optional_block(block)
        return self._finish(body)

    def _ack_decode(self, data: bytes) -> None:
        reader = Reader(data)
        size = len(data)
        self.packet_id = _read("packet_id", reader.read_uint16)
        if size == 2:
            return
        self.return_code = _read("return_code", reader.read_byte)
        if size == 3:
            return
        self._unpack_properties(reader, PacketType.PUBACK)

    def _require_packet_id(self) -> None:
        if self.fixed_header.qos > 0 and self.packet_id == 0:
            raise ValidationError(FAILED, "missing packet id")

    # CONNECT

    def connect_encode(self) -> bytes:
        body = bytearray(pack_binary(self.protocol_name))
        body.append(self.protocol_version)
        body.append(self._pack_flags())
        body += pack_uint16(self.keepalive)
        body += _with_length(_pack_props(self.properties, PacketType.CONNECT))
        body += pack_string(self.client_identifier)
        if self.will_flag:
            body += _with_length(_pack_props(self.will_properties, PacketType.CONNECT))
            body += pack_string(self.will_topic)
            body += pack_binary(self.will_message)
        if self.username_flag:
            body += pack_binary(self.username)
        if self.password_flag:
            body += pack_binary(self.password)
        return self._finish(bytes(body))

    def connect_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.protocol_name = _read("protocol_name", reader.read_binary)
        self.protocol_version = _read("protocol_version", reader.read_byte)
        self._unpack_flags(_read("flags", reader.read_byte))
        self.keepalive = _read("keepalive", reader.read_uint16)
        self._unpack_properties(reader, PacketType.CONNECT)
        self.client_identifier = _read("client_id", reader.read_string)
        if self.will_flag:
            self.will_properties = Properties()
            _read("will_properties", self.will_properties.unpack, reader, PacketType.CONNECT)
            self.will_topic = _read("will_topic", reader.read_string)
            self.will_message = _read("will_message", reader.read_binary)
        if self.username_flag:
            self.username = _read("username", reader.read_binary)
        if self.password_flag:
            self.password = _read("password", reader.read_binary)

    def connect_validate(self) -> int:
        """Return ACCEPTED or raise ValidationError with the CONNACK code."""
        name = self.protocol_name
        if name not in (b"MQIsdp", b"MQTT"):
            raise ValidationError(CODE_CONNECT_PROTOCOL_VIOLATION, "protocol violation")
        if (
            (name == b"MQIsdp" and self.protocol_version != 3)
            or (name == b"MQTT" and self.protocol_version != 4)
            or (name == b"MQTT" and self.protocol_version != 5)
        ):
            raise ValidationError(CODE_CONNECT_BAD_PROTOCOL_VERSION, "protocol violation")
        if self.reserved_bit != 0:
            raise ValidationError(CODE_CONNECT_PROTOCOL_VIOLATION, "protocol violation")
        if len(self.client_identifier.encode("utf-8")) > _MAX_FIELD_LEN:
            raise ValidationError(CODE_CONNECT_PROTOCOL_VIOLATION, "protocol violation")
        if self.password_flag and not self.username_flag:
            raise ValidationError(CODE_CONNECT_PROTOCOL_VIOLATION, "protocol violation")
        if len(self.username) > _MAX_FIELD_LEN or len(self.password) > _MAX_FIELD_LEN:
            raise ValidationError(CODE_CONNECT_PROTOCOL_VIOLATION, "protocol violation")
        if not self.clean_session and not self.client_identifier:
            raise ValidationError(CODE_CONNECT_BAD_CLIENT_ID, "protocol violation")
        return ACCEPTED

    # CONNACK / DISCONNECT / PING

    def connack_encode(self) -> bytes:
        body = bytes([1 if self.session_present else 0, self.return_code])
        body += _with_length(_pack_props(self.properties, PacketType.CONNACK))
        return self._finish(body)

    def connack_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.session_present = bool(_read("flags", reader.read_byte) & 0x01)
        self.return_code = _read("return_code", reader.read_byte)
        self._unpack_properties(reader, PacketType.CONNACK)

    def disconnect_encode(self) -> bytes:
        body = bytes([self.return_code])
        body += _with_length(_pack_props(self.properties, PacketType.DISCONNECT))
        return self._finish(body)

    def disconnect_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.return_code = _read("return_code", reader.read_byte)
        self._unpack_properties(reader, PacketType.DISCONNECT)

    def pingreq_encode(self) -> bytes:
        return self.fixed_header.encode()

    def pingresp_encode(self) -> bytes:
        return self.fixed_header.encode()

    # acknowledgements

    def puback_encode(self) -> bytes:
        return self._ack_encode(PacketType.PUBACK, always_props=True)

    def puback_decode(self, data: bytes) -> None:
        self._ack_decode(data)

    def pubcomp_encode(self) -> bytes:
        return self._ack_encode(PacketType.PUBCOMP, always_props=False)

    def pubcomp_decode(self, data: bytes) -> None:
        self._ack_decode(data)

    def pubrec_encode(self) -> bytes:
        return self._ack_encode(PacketType.PUBREC, always_props=False)

    def pubrec_decode(self, data: bytes) -> None:
        self._ack_decode(data)

    def pubrel_encode(self) -> bytes:
        return self._ack_encode(PacketType.PUBREL, always_props=False)

    def pubrel_decode(self, data: bytes) -> None:
        self._ack_decode(data)

    # PUBLISH

    def publish_encode(self) -> bytes:
        body = bytearray(pack_string(self.topic_name))
        if self.fixed_header.qos > 0:
            if self.packet_id == 0:
                raise MalformedPacketError("packet_id", "missing packet id")
            try:
                body += pack_uint16(self.packet_id)
            except struct.error as exc:
                raise MalformedPacketError("packet_id", str(exc)) from exc
        body += _with_length(_pack_props(self.properties, PacketType.PUBLISH))
        body += self.payload
        return self._finish(bytes(body))

    def publish_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.topic_name = _read("topic", reader.read_string)
        if self.fixed_header.qos > 0:
            self.packet_id = _read("packet_id", reader.read_uint16)
        self._unpack_properties(reader, PacketType.PUBLISH)
        self.payload = reader.read_rest()

    def publish_copy(self) -> Packet:
        """A new PUBLISH with the same topic, payload and properties and a fresh header."""
        return Packet(
            fixed_header=FixedHeader(type=PacketType.PUBLISH, retain=self.fixed_header.retain),
            topic_name=self.topic_name,
            payload=self.payload,
            properties=self.properties,
        )

    def publish_validate(self) -> int:
        self._require_packet_id()
        if self.fixed_header.qos == 0 and self.packet_id > 0:
            raise ValidationError(FAILED, "surplus packet id")
        return ACCEPTED

    # SUBSCRIBE / SUBACK

    def suback_encode(self) -> bytes:
        body = pack_uint16(self.packet_id)
        body += _optional_block(_pack_props(self.properties, PacketType.SUBACK))
        body += bytes(self.return_codes)
        return self._finish(body)

    def suback_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.packet_id = _read("packet_id", reader.read_uint16)
        self._unpack_properties(reader, PacketType.SUBACK)
        self.return_codes = reader.read_rest()

    def subscribe_encode(self) -> bytes:
        subs = bytearray()
        for topic, options in zip(self.topics, self.sub_oss, strict=True):
            subs += pack_string(topic)
            subs.append(options.pack())
        body = pack_uint16(self.packet_id)
        body += _optional_block(_pack_props(self.properties, PacketType.SUBSCRIBE))
        body += bytes(subs)
        return self._finish(body)

    def subscribe_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.packet_id = _read("packet_id", reader.read_uint16)
        self._unpack_properties(reader, PacketType.SUBSCRIBE)
        while reader.remaining():
            topic = _read("topic", reader.read_string)
            options = SubOptions.unpack(_read("qos", reader.read_byte))
            if not 0 <= options.qos <= 2:
                raise MalformedPacketError("qos", f"invalid qos {options.qos}")
            self.topics.append(topic)
            self.sub_oss.append(options)

    def subscribe_validate(self) -> int:
        self._require_packet_id()
        return ACCEPTED

    # UNSUBSCRIBE / UNSUBACK

    def unsuback_encode(self) -> bytes:
        body = pack_uint16(self.packet_id)
        body += _optional_block(_pack_props(self.properties, PacketType.UNSUBACK))
        return self._finish(body)

    def unsuback_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.packet_id = _read("packet_id", reader.read_uint16)
        self._unpack_properties(reader, PacketType.UNSUBACK)
        self.return_codes = reader.read_rest()

    def unsubscribe_encode(self) -> bytes:
        body = pack_uint16(self.packet_id)
        body += _optional_block(_pack_props(self.properties, PacketType.UNSUBSCRIBE))
        body += b"".join(pack_string(topic) for topic in self.topics)
        return self._finish(body)

    def unsubscribe_decode(self, data: bytes) -> None:
        reader = Reader(data)
        self.packet_id = _read("packet_id", reader.read_uint16)
        self._unpack_properties(reader, PacketType.UNSUBSCRIBE)
        while reader.remaining():
            topic = _read("topic", reader.read_string)
            if topic:
                self.topics.append(topic)

    def unsubscribe_validate(self) -> int:
        self._require_packet_id()
        return ACCEPTED