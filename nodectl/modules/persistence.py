"""Node record persistence.

The orchestration core talks to storage only through :class:`NodeStore`.
Saves are optimistic: the caller hands back the record at the version it read,
and a mismatch raises instead of overwriting a concurrent change.
"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..errors import ConcurrencyConflict, NodeNotFound
from ..models import NodeRecord, NodeType


class NodeStore(ABC):
    """Storage collaborator for node records."""

    @abstractmethod
    def get(self, node_id: str) -> NodeRecord:
        """Return a copy of the record.

        Raises:
            NodeNotFound: If no record exists
        """

    @abstractmethod
    def save(self, record: NodeRecord) -> NodeRecord:
        """Persist ``record`` if its version matches the stored one.

        A record with version 0 and an unused id is an insert.

        Returns:
            The stored record with its new version

        Raises:
            ConcurrencyConflict: If the stored version differs
        """

    @abstractmethod
    def delete(self, node_id: str) -> None:
        """Remove the record; unknown ids are ignored."""

    @abstractmethod
    def list_peers(self, infra_id: str, exclude_id: Optional[str] = None,
                   node_type: Optional[NodeType] = None) -> int:
        """Count records in ``infra_id`` other than ``exclude_id``, optionally by type."""

    @abstractmethod
    def list_nodes(self, infra_id: str, node_type: Optional[NodeType] = None) -> List[NodeRecord]:
        """Records in ``infra_id``, optionally filtered by type."""

    def find_primary(self, infra_id: str, exclude_id: Optional[str] = None) -> Optional[NodeRecord]:
        """The control-plane node holding the join secret, if any."""
        for record in self.list_nodes(infra_id, NodeType.CONTROL_PLANE):
            if record.is_primary and record.id != exclude_id:
                return record
        return None

    def find_load_balancer(self, infra_id: str) -> Optional[NodeRecord]:
        nodes = self.list_nodes(infra_id, NodeType.LOAD_BALANCER)
        return nodes[0] if nodes else None


class InMemoryNodeStore(NodeStore):
    """Thread-safe dict-backed store."""

    def __init__(self):
        self._records: Dict[str, NodeRecord] = {}
        self._lock = threading.Lock()

    def get(self, node_id: str) -> NodeRecord:
        with self._lock:
            record = self._records.get(node_id)
            if record is None:
                raise NodeNotFound(node_id)
            return record.copy()

    def save(self, record: NodeRecord) -> NodeRecord:
        with self._lock:
            current = self._records.get(record.id)
            actual = current.version if current else 0
            if record.version != actual:
                raise ConcurrencyConflict(record.id, record.version, actual)
            stored = record.copy(version=actual + 1)
            self._records[record.id] = stored
            return stored.copy()

    def delete(self, node_id: str) -> None:
        with self._lock:
            self._records.pop(node_id, None)

    def list_peers(self, infra_id: str, exclude_id: Optional[str] = None,
                   node_type: Optional[NodeType] = None) -> int:
        return sum(1 for r in self.list_nodes(infra_id, node_type) if r.id != exclude_id)

    def list_nodes(self, infra_id: str, node_type: Optional[NodeType] = None) -> List[NodeRecord]:
        with self._lock:
            return [
                r.copy() for r in self._records.values()
                if r.infra_id == infra_id and (node_type is None or r.type == node_type)
            ]
