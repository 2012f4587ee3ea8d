"""The session graph: single owner of all mutable graph state.

Every mutation is applied to the in-memory graph first and unconditionally,
then mirrored to the write queue (if one is attached) as a named remote
operation. Analytics (centrality, communities, relevance) run over active
nodes only and are recomputed in full after structural changes.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.ids import generate_annotation_id, generate_edge_id
from ..core.models import (
    Annotation,
    AnnotationType,
    Cluster,
    EdgeTrust,
    EdgeType,
    GraphEdge,
    GraphNode,
    NodeState,
    PaperRecord,
    Position,
    WeightConfig,
)
from ..dedup.resolver import IdentityResolver
from ..enrich.centrality import CentralityAnalyzer
from ..enrich import communities
from ..enrich.communities import CommunityDetector
from ..enrich.scoring import ScoreEngine, compute_raw_scores
from ..layout.ego import EgoLayoutOptions, compute_ego_layout
from ..layout.force_layout import LayoutOptions, compute_layout, incremental_layout
from ..sync import operations as ops
from ..sync.operations import RemoteOperation
from ..sync.write_queue import WriteQueue
from ..utils.logging import get_logger
from .search import SearchHit, search_within_graph

logger = get_logger(__name__)

FRONTIER_STATES = frozenset({NodeState.DISCOVERED, NodeState.ENRICHED})

# Where a node materialized into an empty canvas lands.
DEFAULT_MATERIALIZE_POSITION = Position(x=400.0, y=300.0)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class IngestResult:
    """Outcome of ``GraphStore.ingest_papers``."""
    added_ids: List[str] = field(default_factory=list)
    merged_ids: List[str] = field(default_factory=list)

    @property
    def node_ids(self) -> List[str]:
        return list(dict.fromkeys([*self.added_ids, *self.merged_ids]))


class GraphStore:
    """
    Nodes, edges, clusters, weights, query and annotations of one rabbit hole.

    Attributes:
        rabbit_hole_id: Graph this store mirrors to the remote store
        write_queue: Destination of remote operations; None keeps the store local
        nodes: Node id -> node, in insertion order
        edges: Edges in insertion order; ids are unique
        clusters: Current community assignment
    """

    def __init__(
        self,
        rabbit_hole_id: str,
        write_queue: Optional[WriteQueue] = None,
        resolver: Optional[IdentityResolver] = None,
        score_engine: Optional[ScoreEngine] = None,
        centrality: Optional[CentralityAnalyzer] = None,
        community_detector: Optional[CommunityDetector] = None,
        layout_options: Optional[LayoutOptions] = None,
        seed: Optional[int] = None,
    ):
        self.rabbit_hole_id = rabbit_hole_id
        self.write_queue = write_queue
        self.resolver = resolver or IdentityResolver()
        self.score_engine = score_engine or ScoreEngine()
        self.centrality = centrality or CentralityAnalyzer()
        self.community_detector = community_detector or CommunityDetector()
        self.layout_options = layout_options or LayoutOptions()
        self._rng = random.Random(seed)

        self.nodes: Dict[str, GraphNode] = {}
        self.edges: List[GraphEdge] = []
        self.clusters: List[Cluster] = []
        self.weights = WeightConfig()
        self.query = ""
        self.query_embedding: Optional[List[float]] = None
        self.annotations: Dict[str, Annotation] = {}

    def _emit(self, op: RemoteOperation) -> None:
        if self.write_queue is not None:
            self.write_queue.submit(op)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_nodes(self, nodes: Iterable[GraphNode]) -> List[GraphNode]:
        """Insert (or replace) nodes, rescore, then persist the new nodes."""
        added = []
        for node in nodes:
            self.nodes[node.id] = node
            added.append(node)
        if not added:
            return added
        self.recalculate_scores()
        for node in added:
            if not node.is_active:
                node.scores = compute_raw_scores(node, 0.0, self.query_embedding)
            self._emit(ops.add_node(self.rabbit_hole_id, node))
        return added

    def remove_nodes(self, node_ids: Iterable[str]) -> List[str]:
        """Delete nodes together with their edges and cluster memberships."""
        removed = [node_id for node_id in dict.fromkeys(node_ids) if node_id in self.nodes]
        if not removed:
            return []
        gone = set(removed)
        for node_id in removed:
            del self.nodes[node_id]
        self.edges = [e for e in self.edges if e.source not in gone and e.target not in gone]
        trimmed = []
        for cluster in self.clusters:
            members = [node_id for node_id in cluster.node_ids if node_id not in gone]
            if members:
                trimmed.append(cluster.model_copy(update={"node_ids": members}))
        self.clusters = trimmed

        self.recalculate_scores()
        for node_id in removed:
            self._emit(ops.remove_node(self.rabbit_hole_id, node_id))
        logger.info(f"Removed {len(removed)} nodes from {self.rabbit_hole_id}")
        return removed

    def add_edges(self, edges: Iterable[GraphEdge]) -> List[GraphEdge]:
        """Append edges whose id is not present yet."""
        known = {e.id for e in self.edges}
        added = []
        for edge in edges:
            if edge.id in known:
                continue
            known.add(edge.id)
            self.edges.append(edge)
            added.append(edge)
            self._emit(ops.add_edge(self.rabbit_hole_id, edge))
        if added:
            self.recalculate_scores()
        return added

    def remove_edges(self, edge_ids: Iterable[str]) -> List[str]:
        gone = set(edge_ids)
        removed = [e.id for e in self.edges if e.id in gone]
        self.edges = [e for e in self.edges if e.id not in gone]
        if removed:
            self.recalculate_scores()
        for edge_id in removed:
            self._emit(ops.remove_edge(self.rabbit_hole_id, edge_id))
        return removed

    def update_node_state(self, node_id: str, state: NodeState) -> bool:
        """Move a node to ``state``. Archived nodes cannot leave that state."""
        node = self.nodes.get(node_id)
        if node is None:
            return False
        if node.state == NodeState.ARCHIVED and state != NodeState.ARCHIVED:
            logger.warning(f"Ignoring {state.value} for archived node {node_id}")
            return False
        node.state = state
        self._emit(ops.update_node_state(self.rabbit_hole_id, node_id, state))
        return True

    def expand_node(self, node_id: str) -> bool:
        """Mark a node as expanded; frontier nodes become enriched."""
        node = self.nodes.get(node_id)
        if node is None or not node.is_active:
            return False
        node.expanded_at = now_ms()
        if node.state == NodeState.DISCOVERED:
            return self.update_node_state(node_id, NodeState.ENRICHED)
        return True

    def materialize_node(self, node_id: str) -> bool:
        """Commit a node to the canvas, placing it if it has no position yet."""
        node = self.nodes.get(node_id)
        if node is None or not node.is_active:
            return False

        if node.position.at_origin:
            placed = [
                n.position for n in self.nodes.values()
                if n.state == NodeState.MATERIALIZED and n.id != node_id
            ]
            if placed:
                cx = sum(p.x for p in placed) / len(placed)
                cy = sum(p.y for p in placed) / len(placed)
                position = Position(
                    x=cx + (self._rng.random() - 0.5) * 220,
                    y=cy + (self._rng.random() - 0.5) * 220,
                )
            else:
                position = DEFAULT_MATERIALIZE_POSITION.model_copy()
            self.update_node_positions({node_id: position})

        return self.update_node_state(node_id, NodeState.MATERIALIZED)

    def archive_node(self, node_id: str) -> bool:
        """Archive a node and regroup the remaining active nodes without it."""
        if not self.update_node_state(node_id, NodeState.ARCHIVED):
            return False
        self.recalculate_all()
        self.persist_clusters()
        return True

    def update_node_positions(self, positions: Mapping[str, Position]) -> None:
        for node_id, position in positions.items():
            node = self.nodes.get(node_id)
            if node is None:
                continue
            node.position = Position(x=position.x, y=position.y)
            self._emit(ops.update_node_position(self.rabbit_hole_id, node_id, position.x, position.y))

    def update_node_data(self, node_id: str, data: Optional[PaperRecord] = None) -> bool:
        """Replace a node's paper data (if given) and persist data and scores."""
        node = self.nodes.get(node_id)
        if node is None:
            return False
        if data is not None:
            node.data = data
        self._emit(ops.update_node_data(self.rabbit_hole_id, node))
        return True

    def update_node_notes(self, node_id: str, notes: str, tags: Sequence[str] = ()) -> bool:
        node = self.nodes.get(node_id)
        if node is None:
            return False
        node.user_notes = notes or None
        node.user_tags = list(tags) or None
        return self.update_node_data(node_id)

    def set_clusters(self, clusters: Sequence[Cluster], persist: bool = True) -> None:
        """Replace clusters and point every node at its cluster (or none).

        With ``persist`` the change is sent remotely and relevance is rescored;
        ``recalculate_clusters`` passes False and leaves scoring to its caller.
        """
        self.clusters = list(clusters)
        membership = {node_id: c.id for c in self.clusters for node_id in c.node_ids}
        for node in self.nodes.values():
            node.cluster_id = membership.get(node.id)
        if persist:
            self._emit(ops.set_clusters(self.rabbit_hole_id, self.clusters))
            self.recalculate_scores()

    def merge_clusters(self, cluster_id_a: str, cluster_id_b: str) -> None:
        self.set_clusters(
            communities.merge_clusters(self.clusters, cluster_id_a, cluster_id_b, self.nodes)
        )

    def split_cluster(self, cluster_id: str, node_ids: Iterable[str]) -> None:
        self.set_clusters(
            communities.split_cluster(self.clusters, cluster_id, node_ids, self.nodes)
        )

    def set_weights(self, weights: WeightConfig) -> None:
        self.weights = weights
        self.recalculate_scores()

    def set_query(self, query: str, embedding: Optional[Sequence[float]] = None) -> None:
        self.query = query
        self.query_embedding = list(embedding) if embedding is not None else None

    def clear(self) -> None:
        self.nodes = {}
        self.edges = []
        self.clusters = []
        self.annotations = {}
        self._emit(ops.clear_rabbit_hole(self.rabbit_hole_id))
        logger.info(f"Cleared rabbit hole {self.rabbit_hole_id}")

    def restore(
        self,
        nodes: Iterable[GraphNode],
        edges: Iterable[GraphEdge],
        clusters: Iterable[Cluster],
        weights: Optional[WeightConfig] = None,
        query: str = "",
        annotations: Iterable[Annotation] = (),
    ) -> None:
        """Replace all state from persisted data. Nothing is sent remotely."""
        self.nodes = {node.id: node for node in nodes}
        self.edges = []
        known = set()
        for edge in edges:
            if edge.id not in known:
                known.add(edge.id)
                self.edges.append(edge)
        self.clusters = list(clusters)
        self.weights = weights or WeightConfig()
        self.query = query
        self.annotations = {a.id: a for a in annotations}

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def add_annotation(
        self,
        type: AnnotationType,
        content: str,
        attached_to_node_id: Optional[str] = None,
        cluster_id: Optional[str] = None,
    ) -> Annotation:
        """Create an annotation beside its node, or somewhere near the origin."""
        node = self.nodes.get(attached_to_node_id) if attached_to_node_id else None
        if node is not None:
            position = Position(x=node.position.x + 200, y=node.position.y - 50)
        else:
            position = Position(x=self._rng.random() * 400, y=self._rng.random() * 400)
        annotation = Annotation(
            id=generate_annotation_id(),
            type=type,
            content=content,
            position=position,
            attached_to_node_id=attached_to_node_id,
            cluster_id=cluster_id,
            created_at=now_ms(),
        )
        self.annotations[annotation.id] = annotation
        return annotation

    def update_annotation(self, annotation_id: str, content: str) -> bool:
        annotation = self.annotations.get(annotation_id)
        if annotation is None:
            return False
        annotation.content = content
        return True

    def remove_annotation(self, annotation_id: str) -> bool:
        return self.annotations.pop(annotation_id, None) is not None

    def annotations_for_node(self, node_id: str) -> List[Annotation]:
        return [a for a in self.annotations.values() if a.attached_to_node_id == node_id]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self.nodes.get(node_id)

    def node_edges(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.source == node_id or e.target == node_id]

    def active_nodes(self) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.is_active]

    def active_edges(self) -> List[GraphEdge]:
        """Edges whose endpoints are both active."""
        active = {n.id for n in self.nodes.values() if n.is_active}
        return [e for e in self.edges if e.source in active and e.target in active]

    def frontier_nodes(self) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.state in FRONTIER_STATES]

    def materialized_nodes(self) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.state == NodeState.MATERIALIZED]

    def cluster_nodes(self, cluster_id: str) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.cluster_id == cluster_id]

    def search(self, query: str, max_results: int = 10) -> List[SearchHit]:
        return search_within_graph(query, self.nodes, max_results)

    def sorted_nodes(self) -> List[GraphNode]:
        """All nodes, most relevant first."""
        return sorted(self.nodes.values(), key=lambda n: n.scores.relevance, reverse=True)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def recalculate_scores(self, current_year: Optional[int] = None) -> None:
        """Full rescore of the active nodes. Archived members do not count toward cluster size."""
        active = self.active_nodes()
        active_ids = {n.id for n in active}
        clusters = [
            c.model_copy(update={"node_ids": [i for i in c.node_ids if i in active_ids]})
            for c in self.clusters
        ]
        centrality = self.centrality.compute(active, self.edges)
        self.score_engine.recalculate(
            active,
            centrality=centrality,
            clusters=clusters,
            weights=self.weights,
            query_embedding=self.query_embedding,
            current_year=current_year,
        )

    def recalculate_clusters(self) -> None:
        """Re-detect communities over active nodes. Not persisted; see ``persist_clusters``."""
        self.set_clusters(
            self.community_detector.detect(self.active_nodes(), self.edges), persist=False
        )

    def recalculate_all(self, current_year: Optional[int] = None) -> None:
        """Communities first, so the cluster boost sees the current grouping."""
        self.recalculate_clusters()
        self.recalculate_scores(current_year)

    def persist_clusters(self) -> None:
        self._emit(ops.set_clusters(self.rabbit_hole_id, self.clusters))

    def persist_scores(self) -> None:
        """Send data and scores of every active node."""
        for node in self.active_nodes():
            self._emit(ops.update_node_data(self.rabbit_hole_id, node))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def ingest_papers(self, records: Iterable[PaperRecord], materialize: bool = False) -> IngestResult:
        """
        Resolve incoming records against the graph and add what is new.

        Records matching an existing node are merged into it; with
        ``materialize`` such nodes are also committed to the canvas. New
        records become nodes placed around the existing layout, after which
        communities and relevance are recalculated.
        """
        result = IngestResult()
        pending: Dict[str, GraphNode] = {}
        state = NodeState.MATERIALIZED if materialize else NodeState.DISCOVERED

        for record in records:
            resolved = self.resolver.resolve(record)
            existing = self.nodes.get(resolved.id) or self.resolver_match(resolved)
            if existing is not None:
                self.update_node_data(existing.id, self.resolver.merge(existing.data, resolved))
                if materialize and existing.state != NodeState.MATERIALIZED:
                    self.materialize_node(existing.id)
                result.merged_ids.append(existing.id)
                continue

            batch_match = pending.get(resolved.id) or next(
                (n for n in pending.values() if self.resolver.is_duplicate(n.data, resolved)), None
            )
            if batch_match is not None:
                batch_match.data = self.resolver.merge(batch_match.data, resolved)
                continue

            pending[resolved.id] = GraphNode(
                id=resolved.id, data=resolved, state=state, added_at=now_ms()
            )

        new_nodes = list(pending.values())
        if new_nodes:
            self._place(new_nodes)
            self.add_nodes(new_nodes)
            result.added_ids = [n.id for n in new_nodes]

        if new_nodes or result.merged_ids:
            self.recalculate_all()
            self.persist_clusters()
            self.persist_scores()
        logger.info(
            f"Ingested {len(result.added_ids)} new and {len(result.merged_ids)} known papers "
            f"into {self.rabbit_hole_id}"
        )
        return result

    def resolver_match(self, record: PaperRecord) -> Optional[GraphNode]:
        """Existing node describing the same paper as ``record``, if any."""
        match = self.resolver.find_match(record, (n.data for n in self.nodes.values()))
        if match is None:
            return None
        return next((n for n in self.nodes.values() if n.data is match), None)

    def _place(self, new_nodes: List[GraphNode]) -> None:
        active = self.active_nodes()
        if active:
            existing = {n.id: n.position for n in active}
            positions = incremental_layout(
                existing, new_nodes, active + new_nodes, self.edges, self.clusters, self.layout_options
            )
        else:
            positions = compute_layout(new_nodes, [], None, self.layout_options)
        for node in new_nodes:
            if node.id in positions:
                node.position = positions[node.id]

    def connect_nodes(
        self,
        source_id: str,
        target_id: str,
        edge_type: EdgeType,
        trust: EdgeTrust = EdgeTrust.INFERRED,
        weight: float = 0.5,
        evidence: Optional[str] = None,
    ) -> Optional[GraphEdge]:
        """Add an edge between two known nodes and recalculate."""
        if source_id not in self.nodes or target_id not in self.nodes:
            logger.warning(f"Cannot connect {source_id} -> {target_id}: unknown node")
            return None
        edge = GraphEdge(
            id=generate_edge_id(),
            source=source_id,
            target=target_id,
            type=edge_type,
            trust=trust,
            weight=weight,
            evidence=evidence,
        )
        self.add_edges([edge])
        self.recalculate_all()
        return edge

    def relayout(self, options: Optional[LayoutOptions] = None) -> Dict[str, Position]:
        """Full layout of the active nodes, applied and persisted."""
        positions = compute_layout(
            self.active_nodes(), self.active_edges(), self.clusters, options or self.layout_options
        )
        self.update_node_positions(positions)
        return positions

    def ego_layout(self, focus_id: str, options: Optional[EgoLayoutOptions] = None) -> Dict[str, Position]:
        """Focus view around ``focus_id``. A view only; node positions are untouched."""
        return compute_ego_layout(focus_id, self.active_nodes(), self.active_edges(), options)
