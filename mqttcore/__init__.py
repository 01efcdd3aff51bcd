"""MQTT v5 packets, properties, reason codes, topic indexing and helpers."""

__version__ = "0.1.0"
__all__ = ["packets", "properties", "reason_codes", "trie", "utils"]