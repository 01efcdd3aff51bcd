"""MQTT v5 property definitions, wire primitives and property encoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional

_VBI_MAX = 268_435_455


class PacketType(IntEnum):
    """MQTT control packet types."""

    RESERVED = 0
    CONNECT = 1
    CONNACK = 2
    PUBLISH = 3
    PUBACK = 4
    PUBREC = 5
    PUBREL = 6
    PUBCOMP = 7
    SUBSCRIBE = 8
    SUBACK = 9
    UNSUBSCRIBE = 10
    UNSUBACK = 11
    PINGREQ = 12
    PINGRESP = 13
    DISCONNECT = 14
    AUTH = 15


class PropertyId(IntEnum):
    """Identifiers of the MQTT v5 packet properties."""

    PAYLOAD_FORMAT = 1
    MESSAGE_EXPIRY = 2
    CONTENT_TYPE = 3
    RESPONSE_TOPIC = 8
    CORRELATION_DATA = 9
    SUBSCRIPTION_IDENTIFIER = 11
    SESSION_EXPIRY_INTERVAL = 17
    ASSIGNED_CLIENT_ID = 18
    SERVER_KEEP_ALIVE = 19
    AUTH_METHOD = 21
    AUTH_DATA = 22
    REQUEST_PROBLEM_INFO = 23
    WILL_DELAY_INTERVAL = 24
    REQUEST_RESPONSE_INFO = 25
    RESPONSE_INFO = 26
    SERVER_REFERENCE = 28
    REASON_STRING = 31
    RECEIVE_MAXIMUM = 33
    TOPIC_ALIAS_MAXIMUM = 34
    TOPIC_ALIAS = 35
    MAXIMUM_QOS = 36
    RETAIN_AVAILABLE = 37
    USER = 38
    MAXIMUM_PACKET_SIZE = 39
    WILDCARD_SUB_AVAILABLE = 40
    SUB_ID_AVAILABLE = 41
    SHARED_SUB_AVAILABLE = 42


class Reader:
    """Sequential reader over a byte string using MQTT wire encodings.

    Reads past the end raise EOFError.
    """

    def __init__(self, data: bytes = b"") -> None:
        self._data = bytes(data)
        self._pos = 0

    def remaining(self) -> int:
        """Number of unread bytes."""
        return len(self._data) - self._pos

    def _take(self, size: int) -> bytes:
        if self.remaining() < size:
            raise EOFError(f"need {size} bytes, have {self.remaining()}")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def read_byte(self) -> int:
        return self._take(1)[0]

    def read_uint16(self) -> int:
        return struct.unpack(">H", self._take(2))[0]

    def read_uint32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def read_binary(self) -> bytes:
        """Read a two-byte length prefixed byte string."""
        return self._take(self.read_uint16())

    def read_string(self) -> str:
        """Read a two-byte length prefixed UTF-8 string."""
        return self.read_binary().decode("utf-8")

    def read_vbi(self) -> int:
        """Read a variable byte integer of at most four bytes."""
        value = 0
        multiplier = 1
        for _ in range(4):
            b = self.read_byte()
            value += (b & 0x7F) * multiplier
            if not b & 0x80:
                return value
            multiplier *= 128
        raise ValueError("malformed variable byte integer")

    def read_bytes(self, size: int) -> bytes:
        """Read up to ``size`` bytes; fewer are returned if fewer remain."""
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    def read_rest(self) -> bytes:
        """Read every remaining byte."""
        chunk = self._data[self._pos:]
        self._pos = len(self._data)
        return chunk


def encode_vbi(value: int) -> bytes:
    """Encode a non-negative integer as an MQTT variable byte integer."""
    if value < 0 or value > _VBI_MAX:
        raise ValueError(f"value {value} out of range for a variable byte integer")
    out = bytearray()
    while True:
        digit = value % 128
        value //= 128
        if value:
            digit |= 0x80
        out.append(digit)
        if not value:
            return bytes(out)


def pack_uint16(value: int) -> bytes:
    return struct.pack(">H", value)


def pack_uint32(value: int) -> bytes:
    return struct.pack(">I", value)


def pack_binary(value: bytes) -> bytes:
    return pack_uint16(len(value)) + bytes(value)


def pack_string(value: str) -> bytes:
    return pack_binary(value.encode("utf-8"))


@dataclass
class User:
    """A user property key/value pair; keys may repeat."""

    key: str
    value: str


_P = PacketType
_ALL_USER = frozenset({
    _P.CONNECT, _P.CONNACK, _P.PUBLISH, _P.PUBACK, _P.PUBREC, _P.PUBREL,
    _P.PUBCOMP, _P.SUBSCRIBE, _P.UNSUBSCRIBE, _P.SUBACK, _P.UNSUBACK,
    _P.DISCONNECT, _P.AUTH,
})

_VALID_PROPERTIES: dict[int, frozenset[int]] = {
    PropertyId.PAYLOAD_FORMAT: frozenset({_P.PUBLISH}),
    PropertyId.MESSAGE_EXPIRY: frozenset({_P.PUBLISH}),
    PropertyId.CONTENT_TYPE: frozenset({_P.PUBLISH}),
    PropertyId.RESPONSE_TOPIC: frozenset({_P.PUBLISH}),
    PropertyId.CORRELATION_DATA: frozenset({_P.PUBLISH}),
    PropertyId.TOPIC_ALIAS: frozenset({_P.PUBLISH}),
    PropertyId.SUBSCRIPTION_IDENTIFIER: frozenset({_P.PUBLISH, _P.SUBSCRIBE}),
    PropertyId.SESSION_EXPIRY_INTERVAL: frozenset({_P.CONNECT, _P.CONNACK, _P.DISCONNECT}),
    PropertyId.ASSIGNED_CLIENT_ID: frozenset({_P.CONNACK}),
    PropertyId.SERVER_KEEP_ALIVE: frozenset({_P.CONNACK}),
    PropertyId.WILDCARD_SUB_AVAILABLE: frozenset({_P.CONNACK}),
    PropertyId.SUB_ID_AVAILABLE: frozenset({_P.CONNACK}),
    PropertyId.SHARED_SUB_AVAILABLE: frozenset({_P.CONNACK}),
    PropertyId.RETAIN_AVAILABLE: frozenset({_P.CONNACK}),
    PropertyId.RESPONSE_INFO: frozenset({_P.CONNACK}),
    PropertyId.AUTH_METHOD: frozenset({_P.CONNECT, _P.CONNACK, _P.AUTH}),
    PropertyId.AUTH_DATA: frozenset({_P.CONNECT, _P.CONNACK, _P.AUTH}),
    PropertyId.REQUEST_PROBLEM_INFO: frozenset({_P.CONNECT}),
    PropertyId.WILL_DELAY_INTERVAL: frozenset({_P.CONNECT}),
    PropertyId.REQUEST_RESPONSE_INFO: frozenset({_P.CONNECT}),
    PropertyId.SERVER_REFERENCE: frozenset({_P.CONNACK, _P.DISCONNECT}),
    PropertyId.REASON_STRING: frozenset({
        _P.CONNACK, _P.PUBACK, _P.PUBREC, _P.PUBREL, _P.PUBCOMP,
        _P.SUBACK, _P.UNSUBACK, _P.DISCONNECT, _P.AUTH,
    }),
    PropertyId.RECEIVE_MAXIMUM: frozenset({_P.CONNECT, _P.CONNACK}),
    PropertyId.TOPIC_ALIAS_MAXIMUM: frozenset({_P.CONNECT, _P.CONNACK}),
    PropertyId.MAXIMUM_QOS: frozenset({_P.CONNECT, _P.CONNACK}),
    PropertyId.MAXIMUM_PACKET_SIZE: frozenset({_P.CONNECT, _P.CONNACK}),
    PropertyId.USER: _ALL_USER,
}


def validate_id(packet_type: int, prop_id: int) -> bool:
    """Whether property ``prop_id`` may appear in a packet of ``packet_type``."""
    return packet_type in _VALID_PROPERTIES.get(prop_id, frozenset())


_DECODERS: dict[int, tuple[str, Callable[[Reader], object]]] = {
    PropertyId.PAYLOAD_FORMAT: ("payload_format", Reader.read_byte),
    PropertyId.MESSAGE_EXPIRY: ("message_expiry", Reader.read_uint32),
    PropertyId.CONTENT_TYPE: ("content_type", Reader.read_string),
    PropertyId.RESPONSE_TOPIC: ("response_topic", Reader.read_string),
    PropertyId.CORRELATION_DATA: ("correlation_data", Reader.read_binary),
    PropertyId.SUBSCRIPTION_IDENTIFIER: ("subscription_identifier", Reader.read_vbi),
    PropertyId.SESSION_EXPIRY_INTERVAL: ("session_expiry_interval", Reader.read_uint32),
    PropertyId.ASSIGNED_CLIENT_ID: ("assigned_client_id", Reader.read_string),
    PropertyId.SERVER_KEEP_ALIVE: ("server_keep_alive", Reader.read_uint16),
    PropertyId.AUTH_METHOD: ("auth_method", Reader.read_string),
    PropertyId.AUTH_DATA: ("auth_data", Reader.read_binary),
    PropertyId.REQUEST_PROBLEM_INFO: ("request_problem_info", Reader.read_byte),
    PropertyId.WILL_DELAY_INTERVAL: ("will_delay_interval", Reader.read_uint32),
    PropertyId.REQUEST_RESPONSE_INFO: ("request_response_info", Reader.read_byte),
    PropertyId.RESPONSE_INFO: ("response_info", Reader.read_string),
    PropertyId.SERVER_REFERENCE: ("server_reference", Reader.read_string),
    PropertyId.REASON_STRING: ("reason_string", Reader.read_string),
    PropertyId.RECEIVE_MAXIMUM: ("receive_maximum", Reader.read_uint16),
    PropertyId.TOPIC_ALIAS_MAXIMUM: ("topic_alias_maximum", Reader.read_uint16),
    PropertyId.TOPIC_ALIAS: ("topic_alias", Reader.read_uint16),
    PropertyId.MAXIMUM_QOS: ("maximum_qos", Reader.read_byte),
    PropertyId.RETAIN_AVAILABLE: ("retain_available", Reader.read_byte),
    PropertyId.MAXIMUM_PACKET_SIZE: ("maximum_packet_size", Reader.read_uint32),
    PropertyId.WILDCARD_SUB_AVAILABLE: ("wildcard_sub_available", Reader.read_byte),
    PropertyId.SUB_ID_AVAILABLE: ("sub_id_available", Reader.read_byte),
    PropertyId.SHARED_SUB_AVAILABLE: ("shared_sub_available", Reader.read_byte),
}


@dataclass
class Properties:
    """All MQTT v5 properties; which are used depends on the packet type."""

    payload_format: Optional[int] = None
    message_expiry: Optional[int] = None
    content_type: str = ""
    response_topic: str = ""
    correlation_data: bytes = b""
    subscription_identifier: Optional[int] = None
    session_expiry_interval: Optional[int] = None
    assigned_client_id: str = ""
    server_keep_alive: Optional[int] = None
    auth_method: str = ""
    auth_data: bytes = b""
    request_problem_info: Optional[int] = None
    will_delay_interval: Optional[int] = None
    request_response_info: Optional[int] = None
    response_info: str = ""
    server_reference: str = ""
    reason_string: str = ""
    receive_maximum: Optional[int] = None
    topic_alias_maximum: Optional[int] = None
    topic_alias: Optional[int] = None
    maximum_qos: Optional[int] = None
    retain_available: Optional[int] = None
    user: list[User] = field(default_factory=list)
    maximum_packet_size: Optional[int] = None
    wildcard_sub_available: Optional[int] = None
    sub_id_available: Optional[int] = None
    shared_sub_available: Optional[int] = None

    def __str__(self) -> str:
        lines = []

        def add(label: str, value: object) -> None:
            lines.append(f"\t{label}:{value}\n")

        numeric_or_text = [
            ("PayloadFormat", self.payload_format),
            ("MessageExpiry", self.message_expiry),
            ("ContentType", self.content_type or None),
            ("ResponseTopic", self.response_topic or None),
            ("CorrelationData", self.correlation_data.hex().upper() or None),
            ("SubscriptionIdentifier", self.subscription_identifier),
            ("SessionExpiryInterval", self.session_expiry_interval),
            ("AssignedClientID", self.assigned_client_id or None),
            ("ServerKeepAlive", self.server_keep_alive),
            ("AuthMethod", self.auth_method or None),
            ("AuthData", self.auth_data.hex().upper() or None),
            ("RequestProblemInfo", self.request_problem_info),
            ("WillDelayInterval", self.will_delay_interval),
            ("RequestResponseInfo", self.request_response_info),
            ("ServerReference", self.server_reference or None),
            ("ReasonString", self.reason_string or None),
            ("ReceiveMaximum", self.receive_maximum),
            ("TopicAliasMaximum", self.topic_alias_maximum),
            ("TopicAlias", self.topic_alias),
            ("MaximumQOS", self.maximum_qos),
            ("RetainAvailable", self.retain_available),
            ("MaximumPacketSize", self.maximum_packet_size),
            ("WildcardSubAvailable", self.wildcard_sub_available),
            ("SubIDAvailable", self.sub_id_available),
            ("SharedSubAvailable", self.shared_sub_available),
        ]
        for label, value in numeric_or_text:
            if value is not None:
                add(label, value)
        if self.user:
            lines.append("\tUser Properties:\n")
            lines.extend(f"\t\t{u.key}:{u.value}\n" for u in self.user)
        return "".join(lines)

    def pack(self, packet_type: int) -> bytes:
        """Encode the properties that apply to ``packet_type``, without length prefix."""
        p = packet_type
        b = bytearray()

        def byte_prop(pid: int, value: Optional[int]) -> None:
            if value is not None:
                b.append(pid)
                b.append(value)

        def u16_prop(pid: int, value: Optional[int]) -> None:
            if value is not None:
                b.append(pid)
                b.extend(pack_uint16(value))

        def u32_prop(pid: int, value: Optional[int]) -> None:
            if value is not None:
                b.append(pid)
                b.extend(pack_uint32(value))

        def str_prop(pid: int, value: str) -> None:
            if value:
                b.append(pid)
                b.extend(pack_string(value))

        def bin_prop(pid: int, value: bytes) -> None:
            if value:
                b.append(pid)
                b.extend(pack_binary(value))

        ids = PropertyId
        if p == PacketType.PUBLISH:
            byte_prop(ids.PAYLOAD_FORMAT, self.payload_format)
            u32_prop(ids.MESSAGE_EXPIRY, self.message_expiry)
            str_prop(ids.CONTENT_TYPE, self.content_type)
            str_prop(ids.RESPONSE_TOPIC, self.response_topic)
            bin_prop(ids.CORRELATION_DATA, self.correlation_data)
            u16_prop(ids.TOPIC_ALIAS, self.topic_alias)

        if p in (PacketType.PUBLISH, PacketType.SUBSCRIBE):
            if self.subscription_identifier is not None:
                b.append(ids.SUBSCRIPTION_IDENTIFIER)
                b.extend(encode_vbi(self.subscription_identifier))

        if p in (PacketType.CONNECT, PacketType.CONNACK):
            u16_prop(ids.RECEIVE_MAXIMUM, self.receive_maximum)
            u16_prop(ids.TOPIC_ALIAS_MAXIMUM, self.topic_alias_maximum)
            byte_prop(ids.MAXIMUM_QOS, self.maximum_qos)
            u32_prop(ids.MAXIMUM_PACKET_SIZE, self.maximum_packet_size)

        if p == PacketType.CONNACK:
            str_prop(ids.ASSIGNED_CLIENT_ID, self.assigned_client_id)
            u16_prop(ids.SERVER_KEEP_ALIVE, self.server_keep_alive)
            byte_prop(ids.WILDCARD_SUB_AVAILABLE, self.wildcard_sub_available)
            byte_prop(ids.SUB_ID_AVAILABLE, self.sub_id_available)
            byte_prop(ids.SHARED_SUB_AVAILABLE, self.shared_sub_available)
            byte_prop(ids.RETAIN_AVAILABLE, self.retain_available)
            str_prop(ids.RESPONSE_INFO, self.response_info)

        if p == PacketType.CONNECT:
            byte_prop(ids.REQUEST_PROBLEM_INFO, self.request_problem_info)
            u32_prop(ids.WILL_DELAY_INTERVAL, self.will_delay_interval)
            byte_prop(ids.REQUEST_RESPONSE_INFO, self.request_response_info)

        if p in (PacketType.CONNECT, PacketType.CONNACK, PacketType.DISCONNECT):
            u32_prop(ids.SESSION_EXPIRY_INTERVAL, self.session_expiry_interval)

        if p in (PacketType.CONNECT, PacketType.CONNACK, PacketType.AUTH):
            str_prop(ids.AUTH_METHOD, self.auth_method)
            bin_prop(ids.AUTH_DATA, self.auth_data)

        if p in (PacketType.CONNACK, PacketType.DISCONNECT):
            str_prop(ids.SERVER_REFERENCE, self.server_reference)

        if p != PacketType.CONNECT:
            str_prop(ids.REASON_STRING, self.reason_string)

        for u in self.user:
            b.append(ids.USER)
            b.extend(pack_string(u.key))
            b.extend(pack_string(u.value))

        return bytes(b)

    def unpack(self, reader: Reader, packet_type: int) -> None:
        """Read a length-prefixed property block from ``reader`` into this object.

        Raises ValueError for a property not allowed in ``packet_type`` and
        EOFError for truncated data.
        """
        size = reader.read_vbi()
        if size == 0:
            return
        block = Reader(reader.read_bytes(size))
        while block.remaining():
            prop_id = block.read_byte()
            if not validate_id(packet_type, prop_id):
                raise ValueError(
                    f"invalid Prop type {prop_id} for packet {int(packet_type)}"
                )
            if prop_id == PropertyId.USER:
                key = block.read_string()
                value = block.read_string()
                self.user.append(User(key, value))
                continue
            decoder = _DECODERS.get(prop_id)
            if decoder is None:
                raise ValueError(f"unknown Prop type {prop_id}")
            attr, read = decoder
            setattr(self, attr, read(block))