"""Named remote operations mirrored from graph mutations."""

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from ..core.models import Cluster, GraphEdge, GraphNode, NodeState

NOTES_KEY = "_userNotes"

_TAGS_PREFIX = re.compile(r"^\[tags:(\[.*?\])\]\n")


class OperationName(str, Enum):
    """Remote store reducers, by wire name."""
    ADD_NODE = "addNode"
    REMOVE_NODE = "removeNode"
    ADD_EDGE = "addEdge"
    REMOVE_EDGE = "removeEdge"
    UPDATE_NODE_STATE = "updateNodeState"
    UPDATE_NODE_POSITION = "updateNodePosition"
    UPDATE_NODE_DATA = "updateNodeData"
    SET_CLUSTERS = "setClusters"
    CLEAR_RABBIT_HOLE = "clearRabbitHole"


@dataclass
class RemoteOperation:
    """A single operation waiting to be applied to the remote store."""

    name: OperationName
    rabbit_hole_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    # Identity
    op_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    # Delivery
    attempts: int = 0
    last_error: Optional[str] = None

    @property
    def entity_key(self) -> str:
        """Stable key of the entity this operation writes.

        Replaying an operation with the same key overwrites the same remote
        row, so redelivery after a lost acknowledgement is harmless.
        """
        if "nodeId" in self.payload:
            entity = f"node:{self.payload['nodeId']}"
        elif "edgeId" in self.payload:
            entity = f"edge:{self.payload['edgeId']}"
        elif self.name == OperationName.SET_CLUSTERS:
            entity = "clusters"
        else:
            entity = "graph"
        return f"{self.rabbit_hole_id}/{entity}/{self.name.value}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict for persistence."""
        return {
            "op_id": self.op_id,
            "name": self.name.value,
            "rabbit_hole_id": self.rabbit_hole_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteOperation":
        """Deserialize from dict."""
        return cls(
            name=OperationName(data["name"]),
            rabbit_hole_id=data["rabbit_hole_id"],
            payload=data.get("payload", {}),
            op_id=data["op_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
        )


class ParsedNotes(NamedTuple):
    notes: str
    tags: List[str]


def encode_notes(notes: Optional[str], tags: Optional[Iterable[str]]) -> str:
    """Fold tags into the notes string as a ``[tags:[...]]`` first line."""
    tags = list(tags or [])
    prefix = f"[tags:{json.dumps(tags)}]\n" if tags else ""
    return prefix + (notes or "")


def parse_persisted_notes(raw: Optional[str]) -> ParsedNotes:
    """Inverse of ``encode_notes``. A malformed prefix is kept as note text."""
    if not raw:
        return ParsedNotes("", [])
    match = _TAGS_PREFIX.match(raw)
    if not match:
        return ParsedNotes(raw, [])
    try:
        tags = json.loads(match.group(1))
    except json.JSONDecodeError:
        return ParsedNotes(raw, [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        return ParsedNotes(raw, [])
    return ParsedNotes(raw[match.end():], tags)


def node_data_payload(node: GraphNode) -> Dict[str, Any]:
    """Paper data as persisted, with notes and tags riding along."""
    data = node.data.to_wire()
    combined = encode_notes(node.user_notes, node.user_tags)
    if combined:
        data[NOTES_KEY] = combined
    return data


def add_node(rabbit_hole_id: str, node: GraphNode) -> RemoteOperation:
    return RemoteOperation(
        OperationName.ADD_NODE,
        rabbit_hole_id,
        {
            "rabbitHoleId": rabbit_hole_id,
            "nodeId": node.id,
            "data": node_data_payload(node),
            "state": node.state.value,
            "position": {"x": node.position.x, "y": node.position.y},
            "scores": node.scores.to_wire(),
            "addedAt": node.added_at,
        },
    )


def remove_node(rabbit_hole_id: str, node_id: str) -> RemoteOperation:
    return RemoteOperation(
        OperationName.REMOVE_NODE,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id, "nodeId": node_id},
    )


def add_edge(rabbit_hole_id: str, edge: GraphEdge) -> RemoteOperation:
    payload: Dict[str, Any] = {
        "rabbitHoleId": rabbit_hole_id,
        "edgeId": edge.id,
        "source": edge.source,
        "target": edge.target,
        "type": edge.type.value,
        "trust": edge.trust.value,
        "weight": edge.weight,
    }
    if edge.evidence is not None:
        payload["evidence"] = edge.evidence
    if edge.metadata is not None:
        payload["metadata"] = edge.metadata
    return RemoteOperation(OperationName.ADD_EDGE, rabbit_hole_id, payload)


def remove_edge(rabbit_hole_id: str, edge_id: str) -> RemoteOperation:
    return RemoteOperation(
        OperationName.REMOVE_EDGE,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id, "edgeId": edge_id},
    )


def update_node_state(rabbit_hole_id: str, node_id: str, state: NodeState) -> RemoteOperation:
    return RemoteOperation(
        OperationName.UPDATE_NODE_STATE,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id, "nodeId": node_id, "state": state.value},
    )


def update_node_position(rabbit_hole_id: str, node_id: str, x: float, y: float) -> RemoteOperation:
    return RemoteOperation(
        OperationName.UPDATE_NODE_POSITION,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id, "nodeId": node_id, "x": x, "y": y},
    )


def update_node_data(rabbit_hole_id: str, node: GraphNode) -> RemoteOperation:
    return RemoteOperation(
        OperationName.UPDATE_NODE_DATA,
        rabbit_hole_id,
        {
            "rabbitHoleId": rabbit_hole_id,
            "nodeId": node.id,
            "data": node_data_payload(node),
            "scores": node.scores.to_wire(),
        },
    )


def set_clusters(rabbit_hole_id: str, clusters: Iterable[Cluster]) -> RemoteOperation:
    return RemoteOperation(
        OperationName.SET_CLUSTERS,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id, "clusters": [c.to_wire() for c in clusters]},
    )


def clear_rabbit_hole(rabbit_hole_id: str) -> RemoteOperation:
    return RemoteOperation(
        OperationName.CLEAR_RABBIT_HOLE,
        rabbit_hole_id,
        {"rabbitHoleId": rabbit_hole_id},
    )
