"""Relevance scoring for graph nodes.

Every active node gets five raw feature scores derived from its metadata
(influence, recency, velocity, semantic similarity to the session query)
and from the citation graph (local centrality). The raw values are min-max
normalized across the active node set, combined into a weighted sum using
the session's ``WeightConfig``, and finally multiplied by two structural
boosts: one for authors that recur across the graph and one for membership
in a large cluster. Relevance is clamped to 1.0.

Usage:
    engine = ScoreEngine()
    engine.recalculate(nodes, centrality=pagerank, clusters=clusters,
                       weights=weights, query_embedding=embedding)
    df = engine.score_table(nodes, weights)

Scores are recomputed from raw metadata on every pass, so repeated
recalculation never compounds normalization.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd  # type: ignore

from ..config.settings import settings
from ..core.models import Cluster, GraphNode, NodeScores, WeightConfig, DEFAULT_WEIGHTS
from ..core.normalization import author_key
from ..utils.logging import get_logger

logger = get_logger(__name__)

SCORE_DIMENSIONS = (
    "influence",
    "recency",
    "semantic_similarity",
    "local_centrality",
    "velocity",
)

DIMENSION_LABELS = {
    "influence": "Influence",
    "recency": "Recency",
    "semantic_similarity": "Semantic Similarity",
    "local_centrality": "Local Centrality",
    "velocity": "Velocity",
}


def _current_year() -> int:
    return date.today().year


def influence_score(citation_count: int) -> float:
    """Log-scaled citation count so a few giants don't flatten the rest."""
    return math.log(citation_count + 1)


def recency_score(year: Optional[int], citation_count: int, current_year: Optional[int] = None) -> float:
    """Exponential decay on age plus a small bonus for having citations."""
    if not year:
        return 0.5
    age = max((current_year or _current_year()) - year, 0)
    return math.exp(-age / 10) + math.log(citation_count + 1) / 10


def velocity_score(year: Optional[int], citation_count: int, current_year: Optional[int] = None) -> float:
    """Citations per year since publication."""
    if not year or citation_count == 0:
        return 0.0
    age = max((current_year or _current_year()) - year, 1)
    return citation_count / age


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def compute_raw_scores(
    node: GraphNode,
    local_centrality: float = 0.0,
    query_embedding: Optional[Sequence[float]] = None,
    current_year: Optional[int] = None,
) -> NodeScores:
    """Raw, un-normalized feature scores for one node. Relevance is left at 0."""
    data = node.data
    return NodeScores(
        influence=influence_score(data.citation_count),
        recency=recency_score(data.year, data.citation_count, current_year),
        semantic_similarity=cosine_similarity(data.embedding, query_embedding),
        local_centrality=local_centrality,
        velocity=velocity_score(data.year, data.citation_count, current_year),
        relevance=0.0,
    )


def normalize_scores(nodes: Sequence[GraphNode]) -> Sequence[GraphNode]:
    """Min-max normalize every dimension across ``nodes``, in place.

    A dimension with no spread maps every node to 0.5.
    """
    if not nodes:
        return nodes
    for dim in SCORE_DIMENSIONS:
        values = [getattr(node.scores, dim) for node in nodes]
        low, high = min(values), max(values)
        spread = high - low
        for node, value in zip(nodes, values):
            setattr(node.scores, dim, 0.5 if spread == 0 else (value - low) / spread)
    return nodes


def compute_node_score(node: GraphNode, weights: WeightConfig) -> float:
    """Weighted sum of the node's (normalized) dimensions."""
    return sum(getattr(weights, dim) * getattr(node.scores, dim) for dim in SCORE_DIMENSIONS)


def compute_author_boosts(
    nodes: Sequence[GraphNode],
    factor: Optional[float] = None,
    cap: Optional[float] = None,
) -> Dict[str, float]:
    """Multiplier per node for authors that appear on two or more nodes."""
    factor = settings.author_boost_factor if factor is None else factor
    cap = settings.author_boost_cap if cap is None else cap

    counts: Counter = Counter()
    for node in nodes:
        for author in node.data.authors:
            counts[author_key(author.name)] += 1

    boosts: Dict[str, float] = {}
    for node in nodes:
        shared = max(
            (counts[author_key(a.name)] for a in node.data.authors if counts[author_key(a.name)] > 1),
            default=0,
        )
        boosts[node.id] = 1 + min(math.log2(shared) * factor, cap) if shared else 1.0
    return boosts


def compute_cluster_boosts(
    nodes: Sequence[GraphNode],
    clusters: Iterable[Cluster],
    factor: Optional[float] = None,
    cap: Optional[float] = None,
    min_size: Optional[int] = None,
) -> Dict[str, float]:
    """Multiplier per node for membership in a cluster of ``min_size`` or more."""
    factor = settings.cluster_boost_factor if factor is None else factor
    cap = settings.cluster_boost_cap if cap is None else cap
    min_size = settings.cluster_boost_min_size if min_size is None else min_size

    size_by_node: Dict[str, int] = {}
    for cluster in clusters:
        for node_id in cluster.node_ids:
            size_by_node[node_id] = len(cluster.node_ids)

    boosts: Dict[str, float] = {}
    for node in nodes:
        size = size_by_node.get(node.id, 1)
        boosts[node.id] = 1 + min(math.log2(size) * factor, cap) if size >= min_size else 1.0
    return boosts


@dataclass
class ScoreComponent:
    """One row of a node's score breakdown."""
    label: str
    raw: float
    weighted: float


def score_breakdown(node: GraphNode, weights: WeightConfig) -> List[ScoreComponent]:
    """Labeled per-dimension values for tooltip display."""
    return [
        ScoreComponent(
            label=DIMENSION_LABELS[dim],
            raw=getattr(node.scores, dim),
            weighted=getattr(node.scores, dim) * getattr(weights, dim),
        )
        for dim in SCORE_DIMENSIONS
    ]


class ScoreEngine:
    """Recompute relevance for a node set in one pass."""

    def __init__(
        self,
        author_boost_factor: Optional[float] = None,
        author_boost_cap: Optional[float] = None,
        cluster_boost_factor: Optional[float] = None,
        cluster_boost_cap: Optional[float] = None,
        cluster_boost_min_size: Optional[int] = None,
    ) -> None:
        self.author_boost_factor = author_boost_factor
        self.author_boost_cap = author_boost_cap
        self.cluster_boost_factor = cluster_boost_factor
        self.cluster_boost_cap = cluster_boost_cap
        self.cluster_boost_min_size = cluster_boost_min_size

    def recalculate(
        self,
        nodes: Iterable[GraphNode],
        centrality: Optional[Mapping[str, float]] = None,
        clusters: Iterable[Cluster] = (),
        weights: WeightConfig = DEFAULT_WEIGHTS,
        query_embedding: Optional[Sequence[float]] = None,
        current_year: Optional[int] = None,
    ) -> List[GraphNode]:
        """
        Raw scores, normalization, weighted sum, author boost, cluster boost, clamp.

        Archived nodes are skipped and keep their previous scores. Active
        nodes are updated in place and returned.

        Args:
            nodes: Nodes to score.
            centrality: Node id -> local centrality (PageRank); missing ids get 0.
            clusters: Current clusters, for the cluster-size boost.
            weights: Dimension weights.
            query_embedding: Session query embedding for semantic similarity.
            current_year: Reference year for recency and velocity.
        """
        active = [node for node in nodes if node.is_active]
        centrality = centrality or {}
        for node in active:
            node.scores = compute_raw_scores(
                node,
                local_centrality=centrality.get(node.id, 0.0),
                query_embedding=query_embedding,
                current_year=current_year,
            )

        normalize_scores(active)

        author_boosts = compute_author_boosts(
            active, self.author_boost_factor, self.author_boost_cap
        )
        cluster_boosts = compute_cluster_boosts(
            active,
            clusters,
            self.cluster_boost_factor,
            self.cluster_boost_cap,
            self.cluster_boost_min_size,
        )
        for node in active:
            relevance = compute_node_score(node, weights)
            relevance *= author_boosts.get(node.id, 1.0) * cluster_boosts.get(node.id, 1.0)
            node.scores.relevance = min(relevance, 1.0)

        logger.debug(f"Recalculated relevance for {len(active)} active nodes")
        return active

    def score_table(self, nodes: Iterable[GraphNode], weights: WeightConfig = DEFAULT_WEIGHTS) -> pd.DataFrame:
        """Ranked table of the current scores, most relevant first.

        Columns: rank, node_id, title, year, citation_count, the five
        dimensions, weighted_sum and relevance.
        """
        records = []
        for node in nodes:
            if not node.is_active:
                continue
            row = {
                "node_id": node.id,
                "title": node.data.title,
                "year": node.data.year,
                "citation_count": node.data.citation_count,
            }
            for dim in SCORE_DIMENSIONS:
                row[dim] = getattr(node.scores, dim)
            row["weighted_sum"] = compute_node_score(node, weights)
            row["relevance"] = node.scores.relevance
            records.append(row)

        columns = ["rank", "node_id", "title", "year", "citation_count", *SCORE_DIMENSIONS,
                   "weighted_sum", "relevance"]
        if not records:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(records)
        df = df.sort_values(by="relevance", ascending=False, kind="stable").reset_index(drop=True)
        df["rank"] = df.index + 1
        return df[columns]
