"""A topic trie holding subscriptions and retained messages."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

from .packets import Packet


def isolate_particle(filter: str, depth: int) -> tuple[str, bool]:
    """Return the ``depth``-th level of a topic and whether more levels follow.

    A depth past the last level yields the last level; a negative depth yields
    an empty particle.
    """
    if depth < 0:
        return "", False
    parts = filter.split("/")
    index = min(depth, len(parts) - 1)
    return parts[index], index < len(parts) - 1


def _merge_highest(target: dict[str, int], source: dict[str, int]) -> None:
    for client, qos in source.items():
        if client not in target or target[client] < qos:
            target[client] = qos


def _is_system(key: str) -> bool:
    return key.startswith("$")


@dataclass(eq=False)
class Leaf:
    """A node of the topic trie."""

    key: str = ""
    filter: str = ""
    parent: Optional[Leaf] = field(default=None, repr=False)
    message: Packet = field(default_factory=Packet)
    leaves: dict[str, Leaf] = field(default_factory=dict)
    clients: dict[str, int] = field(default_factory=dict)

    def _scan_subscribers(self, topic: str, depth: int, clients: dict[str, int]) -> dict[str, int]:
        part, has_next = isolate_particle(topic, depth)
        for particle in (part, "+", "#"):
            # Top level wildcards never match topics starting with "$".
            if depth == 0 and _is_system(part) and particle in ("+", "#"):
                continue
            child = self.leaves.get(particle)
            if child is None:
                continue
            if not has_next or particle == "#":
                _merge_highest(clients, child.clients)
                if not has_next:
                    extra = child.leaves.get("#")
                    if extra is not None:
                        _merge_highest(clients, extra.clients)
            if particle == "#":
                return clients
            if has_next:
                child._scan_subscribers(topic, depth + 1, clients)
        return clients

    def _scan_all(self, messages: list[Packet]) -> None:
        for child in self.leaves.values():
            if child.message.fixed_header.retain:
                messages.append(child.message)
            child._scan_all(messages)

    def _top_children(self, depth: int):
        return (
            child for child in self.leaves.values()
            if not (depth == 0 and _is_system(child.key))
        )

    def _scan_messages(self, filter: str, depth: int, messages: list[Packet]) -> list[Packet]:
        particle, has_next = isolate_particle(filter, depth)
        if not has_next:
            if particle in ("+", "#"):
                messages.extend(
                    child.message for child in self._top_children(depth)
                    if child.message.fixed_header.retain
                )
            else:
                child = self.leaves.get(particle)
                if child is not None and child.message.fixed_header.retain:
                    messages.append(child.message)
        elif particle == "+":
            for child in self._top_children(depth):
                child._scan_messages(filter, depth + 1, messages)
        else:
            child = self.leaves.get(particle)
            if child is not None:
                child._scan_messages(filter, depth + 1, messages)

        if particle == "#":
            for child in self._top_children(depth):
                child._scan_all(messages)
        return messages


class TopicIndex:
    """Thread-safe trie of topic subscribers and retained messages."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.root = Leaf()

    def retain_message(self, message: Packet) -> int:
        """Store or clear the retained message on its topic.

        Returns 1 when a message was stored, -1 when a retained message was
        removed and 0 when nothing changed.
        """
        with self._lock:
            leaf = self._poperate(message.topic_name)
            if message.payload:
                leaf.message = message
                return 1
            previous = leaf.message
            result = -1 if previous.payload and previous.fixed_header.retain else 0
            self._unpoperate(message.topic_name, "", True)
            return result

    def subscribe(self, filter: str, client: str, qos: int) -> tuple[bool, int]:
        """Subscribe ``client`` to ``filter``; returns (is new, subscriber count)."""
        with self._lock:
            leaf = self._poperate(filter)
            is_new = client not in leaf.clients
            leaf.clients[client] = qos
            leaf.filter = filter
            return is_new, len(leaf.clients)

    def unsubscribe(self, filter: str, client: str) -> tuple[bool, int]:
        """Remove a subscription; returns (existed, remaining subscriber count)."""
        with self._lock:
            leaf = self._poperate(filter)
            existed = client in leaf.clients
            count = len(leaf.clients)
            removed = self._unpoperate(filter, client, False) and existed
            return removed, count - 1 if removed else count

    def subscribers(self, topic: str) -> dict[str, int]:
        """Clients with a filter matching ``topic``, mapped to their highest QoS."""
        with self._lock:
            return self.root._scan_subscribers(topic, 0, {})

    def messages(self, filter: str) -> list[Packet]:
        """Retained messages on topics matching ``filter``."""
        with self._lock:
            return self.root._scan_messages(filter, 0, [])

    def _poperate(self, topic: str) -> Leaf:
        node = self.root
        depth = 0
        has_next = True
        while has_next:
            particle, has_next = isolate_particle(topic, depth)
            depth += 1
            child = node.leaves.get(particle)
            if child is None:
                child = Leaf(key=particle, parent=node)
                node.leaves[particle] = child
            node = child
        return node

    def _unpoperate(self, filter: str, client: str, message: bool) -> bool:
        node = self.root
        depth = 0
        has_next = True
        while has_next:
            particle, has_next = isolate_particle(filter, depth)
            depth += 1
            child = node.leaves.get(particle)
            if child is None:
                return False
            node = child

        end = True
        while node.parent is not None:
            key = node.key
            if end:
                if client:
                    node.clients.pop(client, None)
                if message:
                    node.message = Packet()
                end = False
            orphaned = (
                not node.clients
                and not node.leaves
                and not node.message.fixed_header.retain
            )
            node = node.parent
            if orphaned:
                node.leaves.pop(key, None)
        return True