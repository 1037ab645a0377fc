"""Consistent hashing ring with virtual nodes."""

from __future__ import annotations

import bisect
import hashlib
import threading
from dataclasses import dataclass

_VNODE_MARKER = "-vnode-"


@dataclass(frozen=True)
class VirtualNode:
    """A point on the ring owned by a physical node."""

    vnode_id: str
    hash: int
    node_id: str


def hash_key(key: str) -> int:
    """Return the first 8 bytes of the key's SHA-256 digest as a big-endian integer."""
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")


def extract_node_id(vnode_id: str) -> str:
    """Return the physical node id of "<node>-vnode-<n>", or the id unchanged."""
    index = vnode_id.rfind(_VNODE_MARKER)
    return vnode_id if index < 0 else vnode_id[:index]


class ConsistentHashRing:
    """A thread-safe ring mapping hashes to physical nodes through virtual nodes."""

    def __init__(self) -> None:
        self._ring: list[int] = []
        self._ring_map: dict[int, str] = {}
        self._node_vnodes: dict[str, list[int]] = {}
        self._lock = threading.RLock()

    def add_node(self, node_id: str, virtual_node_count: int) -> None:
        """Place virtual_node_count virtual nodes of node_id on the ring."""
        with self._lock:
            hashes = []
            for index in range(virtual_node_count):
                vnode_id = f"{node_id}{_VNODE_MARKER}{index}"
                value = hash_key(vnode_id)
                self._ring.append(value)
                self._ring_map[value] = vnode_id
                hashes.append(value)
            self._node_vnodes[node_id] = hashes
            self._ring.sort()

    def remove_node(self, node_id: str) -> None:
        """Take node_id and its virtual nodes off the ring; unknown ids are ignored."""
        with self._lock:
            hashes = self._node_vnodes.pop(node_id, None)
            if hashes is None:
                return
            removed = set(hashes)
            for value in removed:
                self._ring_map.pop(value, None)
            self._ring = [value for value in self._ring if value not in removed]

    def _start_index(self, key_hash: int) -> int:
        index = bisect.bisect_left(self._ring, key_hash)
        return 0 if index >= len(self._ring) else index

    def _vnode(self, value: int) -> VirtualNode:
        vnode_id = self._ring_map.get(value, "")
        return VirtualNode(vnode_id=vnode_id, hash=value, node_id=extract_node_id(vnode_id))

    def get_nodes(self, key_hash: int, count: int) -> list[VirtualNode]:
        """Walk clockwise from key_hash, returning up to count distinct physical nodes."""
        with self._lock:
            if not self._ring:
                return []
            start = self._start_index(key_hash)
            size = len(self._ring)
            nodes: list[VirtualNode] = []
            seen: set[str] = set()
            for offset in range(size):
                if len(nodes) >= count:
                    break
                vnode = self._vnode(self._ring[(start + offset) % size])
                if vnode.node_id not in seen:
                    seen.add(vnode.node_id)
                    nodes.append(vnode)
            return nodes

    def clear(self) -> None:
        """Remove every node."""
        with self._lock:
            self._ring = []
            self._ring_map = {}
            self._node_vnodes = {}

    def node_count(self) -> int:
        """Return the number of physical nodes."""
        with self._lock:
            return len(self._node_vnodes)

    def virtual_nodes(self) -> list[VirtualNode]:
        """Return every virtual node in ring order."""
        with self._lock:
            return [self._vnode(value) for value in self._ring]

    def node_for_hash(self, key_hash: int) -> str:
        """Return the physical node owning key_hash, or "" on an empty ring."""
        with self._lock:
            if not self._ring:
                return ""
            return self._vnode(self._ring[self._start_index(key_hash)]).node_id

    def previous_hash(self, current_hash: int) -> int:
        """Return the ring hash before current_hash (wrapping); 0 if it is not on the ring."""
        with self._lock:
            try:
                index = self._ring.index(current_hash)
            except ValueError:
                return 0
            return self._ring[index - 1]