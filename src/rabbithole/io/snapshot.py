"""Versioned JSON snapshots of a rabbit hole."""

import json
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional

from pydantic import Field, ValidationError

from ..core.models import Annotation, Cluster, GraphEdge, GraphNode, WeightConfig, WireModel
from ..graph.store import GraphStore, now_ms
from ..utils.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1

REQUIRED_ARRAYS = ("nodes", "edges", "clusters", "annotationNodes")


class GraphSnapshot(WireModel):
    """Everything needed to rebuild a ``GraphStore``."""
    version: Literal[1] = SNAPSHOT_VERSION
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    clusters: List[Cluster] = Field(default_factory=list)
    weights: WeightConfig = Field(default_factory=WeightConfig)
    query: str = ""
    annotation_nodes: List[Annotation] = Field(default_factory=list)
    updated_at: int = 0


def snapshot_from_store(store: GraphStore, updated_at: Optional[int] = None) -> GraphSnapshot:
    return GraphSnapshot(
        nodes=[node.model_copy(deep=True) for node in store.nodes.values()],
        edges=list(store.edges),
        clusters=list(store.clusters),
        weights=store.weights,
        query=store.query,
        annotation_nodes=list(store.annotations.values()),
        updated_at=now_ms() if updated_at is None else updated_at,
    )


def parse_snapshot(data: Any) -> Optional[GraphSnapshot]:
    """
    Validate persisted snapshot data.

    Returns:
        The snapshot, or None for anything that is not a version 1
        snapshot mapping carrying all four arrays. Never raises.
    """
    if not isinstance(data, Mapping):
        return None
    version = data.get("version")
    if type(version) is not int or version != SNAPSHOT_VERSION:
        logger.warning(f"Unsupported snapshot version: {version!r}")
        return None
    missing = [key for key in REQUIRED_ARRAYS if not isinstance(data.get(key), list)]
    if missing:
        logger.warning(f"Snapshot missing arrays: {', '.join(missing)}")
        return None

    payload = dict(data)
    if payload.get("weights") is None:
        payload.pop("weights", None)
    if payload.get("query") is None:
        payload["query"] = ""
    try:
        return GraphSnapshot.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Invalid snapshot: {e.error_count()} validation errors")
        return None


def apply_snapshot(store: GraphStore, snapshot: GraphSnapshot) -> GraphStore:
    """Replace the store's state with the snapshot. Nothing is sent remotely."""
    store.restore(
        nodes=snapshot.nodes,
        edges=snapshot.edges,
        clusters=snapshot.clusters,
        weights=snapshot.weights,
        query=snapshot.query,
        annotations=snapshot.annotation_nodes,
    )
    return store


def load_snapshot(data: Any, rabbit_hole_id: str, **store_kwargs: Any) -> GraphStore:
    """Build a store from snapshot data, or an empty one if the data is unusable."""
    store = GraphStore(rabbit_hole_id, **store_kwargs)
    snapshot = parse_snapshot(data)
    if snapshot is None:
        logger.info(f"Starting {rabbit_hole_id} from an empty graph")
        return store
    apply_snapshot(store, snapshot)
    logger.info(
        f"Loaded {rabbit_hole_id}: {len(store.nodes)} nodes, {len(store.edges)} edges, "
        f"{len(store.clusters)} clusters"
    )
    return store


def read_snapshot_file(path: Path) -> Optional[GraphSnapshot]:
    """Read and validate a snapshot file. Missing or unreadable files give None."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read snapshot {path}: {e}")
        return None
    return parse_snapshot(data)


def write_snapshot_file(path: Path, snapshot: GraphSnapshot) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot.to_wire(), indent=2), encoding="utf-8")
    logger.debug(f"Wrote snapshot to {path}")
    return path
