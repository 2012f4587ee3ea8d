"""Community detection and cluster bookkeeping."""

from __future__ import annotations

import hashlib
import random
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import networkx as nx  # type: ignore

from ..config.settings import settings
from ..core.ids import cluster_id_for, generate_cluster_id
from ..core.models import Cluster, GraphEdge, GraphNode
from ..core.normalization import title_tokens
from ..utils.logging import get_logger

logger = get_logger(__name__)

CLUSTER_COLORS = [
    "#6366f1",  # indigo
    "#f59e0b",  # amber
    "#10b981",  # emerald
    "#ef4444",  # red
    "#8b5cf6",  # violet
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#ec4899",  # pink
    "#14b8a6",  # teal
    "#84cc16",  # lime
    "#a855f7",  # purple
    "#3b82f6",  # blue
]

UNCATEGORIZED = "Uncategorized"

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "shall", "can", "this", "that",
    "these", "those", "it", "its", "not", "no", "nor", "so", "if", "than",
    "too", "very", "just", "about", "above", "after", "before", "between",
    "into", "through", "during", "out", "off", "over", "under", "again",
    "further", "then", "once", "here", "there", "when", "where", "why",
    "how", "all", "each", "every", "both", "few", "more", "most", "other",
    "some", "such", "only", "own", "same", "up", "down", "we", "our",
    "using", "based", "via", "towards", "toward",
})


def color_for_key(key: str) -> str:
    """Stable palette color for an arbitrary key (ad-hoc clusters)."""
    digest = int(hashlib.md5(key.encode()).hexdigest(), 16)
    return CLUSTER_COLORS[digest % len(CLUSTER_COLORS)]


def label_cluster(node_ids: Iterable[str], nodes: Mapping[str, GraphNode]) -> str:
    """Top title keywords of the members, e.g. ``"Graph / Neural / Networks"``."""
    counts: Counter = Counter()
    for node_id in node_ids:
        node = nodes.get(node_id)
        if node is None:
            continue
        words = {w for w in title_tokens(node.data.title, min_length=3) if w not in STOPWORDS}
        counts.update(words)

    if not counts:
        return UNCATEGORIZED
    top = counts.most_common(3)
    return " / ".join(word[0].upper() + word[1:] for word, _ in top)


def assign_cluster_colors(clusters: Sequence[Cluster]) -> List[Cluster]:
    """Recolor clusters by position in the palette, cycling."""
    return [
        cluster.model_copy(update={"color": CLUSTER_COLORS[i % len(CLUSTER_COLORS)]})
        for i, cluster in enumerate(clusters)
    ]


class CommunityDetector:
    """
    Weighted label propagation.

    Every node starts in its own community. On each pass the nodes are
    visited in a seeded shuffled order and each adopts the neighbouring
    community with the largest summed edge weight; ties keep the node's
    current community. Passes stop early once nothing changes.
    """

    def __init__(
        self,
        max_iterations: Optional[int] = None,
        seed: Optional[int] = None,
        default_weight: float = 0.5,
    ) -> None:
        self.max_iterations = (
            settings.label_propagation_iterations if max_iterations is None else max_iterations
        )
        self.seed = settings.community_seed if seed is None else seed
        self.default_weight = default_weight

    def build_graph(self, nodes: Sequence[GraphNode], edges: Iterable[GraphEdge]) -> nx.Graph:
        G = nx.Graph()
        G.add_nodes_from(node.id for node in nodes)
        for edge in edges:
            if edge.source == edge.target:
                continue
            if edge.source not in G or edge.target not in G:
                continue
            G.add_edge(edge.source, edge.target, weight=edge.weight or self.default_weight)
        return G

    def propagate(self, G: nx.Graph) -> Dict[str, str]:
        """Node id -> community id (the id of the community's seed node)."""
        rng = random.Random(self.seed)
        community = {node_id: node_id for node_id in G.nodes()}
        order = list(G.nodes())

        for iteration in range(self.max_iterations):
            changed = False
            rng.shuffle(order)
            for node_id in order:
                votes: Dict[str, float] = {}
                for neighbor, attrs in G[node_id].items():
                    label = community[neighbor]
                    votes[label] = votes.get(label, 0.0) + attrs["weight"]
                if not votes:
                    continue

                current = community[node_id]
                best, best_weight = current, votes.get(current, 0.0)
                for label, weight in votes.items():
                    if weight > best_weight:
                        best, best_weight = label, weight

                if best != current:
                    community[node_id] = best
                    changed = True

            if not changed:
                logger.debug(f"Label propagation converged after {iteration + 1} passes")
                break

        return community

    def detect(self, nodes: Sequence[GraphNode], edges: Iterable[GraphEdge]) -> List[Cluster]:
        """Group ``nodes`` into labeled, colored clusters."""
        if not nodes:
            return []

        G = self.build_graph(nodes, edges)
        community = self.propagate(G)

        groups: Dict[str, List[str]] = {}
        for node in nodes:
            groups.setdefault(community[node.id], []).append(node.id)

        by_id = {node.id: node for node in nodes}
        clusters = [
            Cluster(
                id=cluster_id_for(seed),
                label=label_cluster(member_ids, by_id),
                node_ids=member_ids,
                color=CLUSTER_COLORS[i % len(CLUSTER_COLORS)],
            )
            for i, (seed, member_ids) in enumerate(groups.items())
        ]
        logger.info(f"Detected {len(clusters)} communities across {len(nodes)} nodes")
        return clusters


def detect_communities(
    nodes: Sequence[GraphNode],
    edges: Iterable[GraphEdge],
    seed: Optional[int] = None,
) -> List[Cluster]:
    return CommunityDetector(seed=seed).detect(nodes, edges)


def merge_clusters(
    clusters: Sequence[Cluster],
    cluster_id_a: str,
    cluster_id_b: str,
    nodes: Mapping[str, GraphNode],
) -> List[Cluster]:
    """Fold cluster B into cluster A. Unknown ids leave the list unchanged."""
    a = next((c for c in clusters if c.id == cluster_id_a), None)
    b = next((c for c in clusters if c.id == cluster_id_b), None)
    if a is None or b is None or a.id == b.id:
        return list(clusters)

    member_ids = list(dict.fromkeys([*a.node_ids, *b.node_ids]))
    merged = Cluster(
        id=a.id,
        label=label_cluster(member_ids, nodes),
        node_ids=member_ids,
        color=a.color,
    )
    return [c for c in clusters if c.id not in (a.id, b.id)] + [merged]


def split_cluster(
    clusters: Sequence[Cluster],
    cluster_id: str,
    split_node_ids: Iterable[str],
    nodes: Mapping[str, GraphNode],
) -> List[Cluster]:
    """Move ``split_node_ids`` out of a cluster into a new one.

    A split that would leave either side empty is a no-op.
    """
    original = next((c for c in clusters if c.id == cluster_id), None)
    if original is None:
        return list(clusters)

    split_set = set(split_node_ids)
    remaining = [node_id for node_id in original.node_ids if node_id not in split_set]
    moved = [node_id for node_id in original.node_ids if node_id in split_set]
    if not remaining or not moved:
        return list(clusters)

    updated = original.model_copy(
        update={"node_ids": remaining, "label": label_cluster(remaining, nodes)}
    )
    used_colors = {c.color for c in clusters}
    new_id = generate_cluster_id()
    color = next((c for c in CLUSTER_COLORS if c not in used_colors), None) or color_for_key(new_id)
    new_cluster = Cluster(
        id=new_id,
        label=label_cluster(moved, nodes),
        node_ids=moved,
        color=color,
    )
    return [c for c in clusters if c.id != cluster_id] + [updated, new_cluster]
