"""Small helpers: string joining, topic matching and outbound address lookup."""

from __future__ import annotations

import socket
from typing import Iterable


def in_slice_string(items: Iterable[str], value: str) -> bool:
    """Whether ``value`` appears in ``items``."""
    return value in items


def join_str_base(sep: str, elems: Iterable[str]) -> str:
    return sep.join(elems)


def join_strings(*args: str) -> str:
    """Join strings with a colon."""
    return join_str_base(":", args)


def topic_match(filter: str, topic: str, handle_shared_subscription: bool) -> bool:
    """Whether ``topic`` matches the subscription ``filter``.

    With ``handle_shared_subscription`` a ``$share/<group>/`` prefix is stripped
    from the filter first.
    """
    if not filter or not topic:
        return False

    filter_parts = filter.split("/")
    if handle_shared_subscription and len(filter_parts) > 2 and filter.startswith("$share/"):
        filter_parts = filter_parts[2:]

    topic_parts = topic.split("/")
    for i, left in enumerate(filter_parts):
        if left == "#":
            return len(topic_parts) >= len(filter_parts) - 1
        if i >= len(topic_parts):
            return False
        if left != "+" and left != topic_parts[i]:
            return False
    return len(filter_parts) == len(topic_parts)


def get_outbound_ip() -> str:
    """The local address used to reach the public internet.

    Raises OSError when no route is available.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(("8.8.8.8", 53))
        return sock.getsockname()[0]