# mqttcore

Building blocks for working with MQTT v5: packet encoding and decoding,
property handling, reason codes, and a topic index for subscriptions and
retained messages. The package has no dependencies outside the standard
library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `mqttcore.properties`

- `PacketType` and `PropertyId`: integer enumerations of the control packet
  types and the v5 property identifiers.
- `Properties`: a dataclass holding every v5 property. `pack(packet_type)`
  returns the encoded properties that apply to that packet type (without the
  length prefix); `unpack(reader, packet_type)` reads a length-prefixed
  property block, raising `ValueError` for a property not allowed in that
  packet type and `EOFError` for truncated data. `str()` gives a readable
  listing of the properties that are set.
- `User`: a user property key/value pair.
- `validate_id(packet_type, prop_id)`: whether a property may appear in a
  packet type.
- Wire primitives: `encode_vbi`, `pack_uint16`, `pack_uint32`, `pack_string`,
  `pack_binary`, and `Reader`, which reads bytes, 16- and 32-bit integers,
  length-prefixed strings and binary data, and variable byte integers.

### `mqttcore.packets`

- `Packet`: one dataclass for every control packet type, with
  `<type>_encode()` methods returning the wire bytes (fixed header included)
  and `<type>_decode(data)` methods filling the packet from the bytes that
  follow the fixed header. Covered types: CONNECT, CONNACK, DISCONNECT,
  PINGREQ, PINGRESP, PUBLISH, PUBACK, PUBREC, PUBREL, PUBCOMP, SUBSCRIBE,
  SUBACK, UNSUBSCRIBE and UNSUBACK.
- `connect_validate`, `publish_validate`, `subscribe_validate` and
  `unsubscribe_validate` return `ACCEPTED` or raise `ValidationError`, whose
  `code` holds the reply code.
- `publish_copy()` returns a new PUBLISH with the same topic, payload and
  properties and a fresh header keeping only the retain flag.
- `FixedHeader` (`encode()`, `decode(header_byte)`) and `SubOptions`
  (`pack()`, `SubOptions.unpack(value)`).
- Decoding failures raise `MalformedPacketError`, whose `field` names the
  part of the packet that could not be read.

### `mqttcore.reason_codes`

- `ReasonCode`: the v5 reason codes; `str()` gives the description and
  `is_error()` is true for 0x80 and above. Unnamed byte values are accepted
  and described as unknown.
- `ReasonCodeError`: an exception carrying an error reason code; building one
  from a non-error code raises `ValueError`.

### `mqttcore.trie`

- `TopicIndex`: a thread-safe trie of topic filters and retained messages.
  - `subscribe(filter, client, qos)` returns `(is_new, subscriber_count)`.
  - `unsubscribe(filter, client)` returns `(existed, remaining_count)`.
  - `subscribers(topic)` maps each client with a matching filter to its
    highest QoS. Top-level `+` and `#` do not match topics starting with `$`.
  - `retain_message(packet)` stores a packet with a payload on its topic
    (returning 1) or clears it for an empty payload (returning -1 if a
    retained message was removed, else 0).
  - `messages(filter)` lists retained messages matching a filter.
- `Leaf`: a node of the trie.
- `isolate_particle(filter, depth)`: the topic level at `depth` and whether
  more levels follow.

### `mqttcore.utils`

- `topic_match(filter, topic, handle_shared_subscription)`: filter matching
  with `+` and `#`, optionally stripping a `$share/<group>/` prefix.
- `in_slice_string`, `join_str_base`, `join_strings` (joins with `:`).
- `get_outbound_ip()`: the local address used to reach the internet; raises
  `OSError` when there is no route. No packets are sent.

## Example

```python
from mqttcore.packets import FixedHeader, Packet
from mqttcore.properties import PacketType
from mqttcore.trie import TopicIndex

index = TopicIndex()
index.subscribe("sensors/+/temperature", "client-1", 1)
print(index.subscribers("sensors/kitchen/temperature"))  # {'client-1': 1}

pk = Packet(
    fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1),
    topic_name="sensors/kitchen/temperature",
    packet_id=7,
    payload=b"21.5",
)
wire = pk.publish_encode()

decoded = Packet(fixed_header=FixedHeader(type=PacketType.PUBLISH, qos=1))
decoded.publish_decode(wire[2:])  # skip the two-byte fixed header
print(decoded.topic_name, decoded.packet_id, decoded.payload)
```

## What this package does not do

It is a library of protocol pieces, not a broker or a client. It opens no
listening sockets, manages no client sessions or connections, keeps no
persistent storage, and provides no command-line program. AUTH packets can
carry properties but have no encode or decode methods of their own.