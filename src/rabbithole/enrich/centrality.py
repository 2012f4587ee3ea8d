"""Local centrality over the session graph.

PageRank is run by power iteration on a ``networkx.MultiDiGraph`` so that
parallel edges between the same pair each carry their own share of mass.
Citation-like and other directed edges follow ``source -> target``; the
relational edge types in ``SYMMETRIC_EDGE_TYPES`` are added in both
directions. Dangling nodes spread their mass uniformly over the graph.
The result is deliberately left unnormalized; the Score Engine min-max
normalizes it together with the other dimensions.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import networkx as nx  # type: ignore

from ..config.settings import settings
from ..core.models import GraphEdge, GraphNode, SYMMETRIC_EDGE_TYPES
from ..utils.logging import get_logger

logger = get_logger(__name__)


class CentralityAnalyzer:
    """Compute PageRank-style centrality for graph nodes."""

    def __init__(self, damping: Optional[float] = None, iterations: Optional[int] = None) -> None:
        self.damping = settings.pagerank_damping if damping is None else damping
        self.iterations = settings.pagerank_iterations if iterations is None else iterations

    def build_graph(self, nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> nx.MultiDiGraph:
        """Directed multigraph over ``nodes``; edges leaving the node set are ignored."""
        G = nx.MultiDiGraph()
        for node in nodes:
            G.add_node(node.id)
        for edge in edges:
            if edge.source not in G or edge.target not in G:
                continue
            G.add_edge(edge.source, edge.target, key=edge.id, type=edge.type, weight=edge.weight)
            if edge.type in SYMMETRIC_EDGE_TYPES:
                G.add_edge(edge.target, edge.source, key=f"{edge.id}:reverse",
                           type=edge.type, weight=edge.weight)
        logger.debug(
            f"Built centrality graph with {G.number_of_nodes()} nodes and {G.number_of_edges()} edges"
        )
        return G

    def pagerank(self, G: nx.MultiDiGraph) -> Dict[str, float]:
        n = G.number_of_nodes()
        if n == 0:
            return {}

        node_ids = list(G.nodes())
        out_links = {node_id: [target for _, target in G.out_edges(node_id)] for node_id in node_ids}
        scores = {node_id: 1.0 / n for node_id in node_ids}
        base = (1 - self.damping) / n

        for _ in range(self.iterations):
            new_scores = dict.fromkeys(node_ids, base)
            dangling_mass = 0.0
            for node_id in node_ids:
                links = out_links[node_id]
                if not links:
                    dangling_mass += self.damping * scores[node_id] / n
                    continue
                share = self.damping * scores[node_id] / len(links)
                for target in links:
                    new_scores[target] += share
            if dangling_mass:
                for node_id in node_ids:
                    new_scores[node_id] += dangling_mass
            scores = new_scores

        return scores

    def compute(self, nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> Dict[str, float]:
        """Node id -> centrality for every node in ``nodes``."""
        return self.pagerank(self.build_graph(nodes, edges))


def compute_pagerank(
    nodes: Iterable[GraphNode],
    edges: Iterable[GraphEdge],
    damping: Optional[float] = None,
    iterations: Optional[int] = None,
) -> Dict[str, float]:
    return CentralityAnalyzer(damping, iterations).compute(nodes, edges)


def graph_statistics(nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> Dict[str, float]:
    """Simple structural statistics of the graph.

    Returns:
        Dictionary with number of nodes, number of edges, density, average
        in-degree, average out-degree and the fraction of isolated nodes.
        Symmetric edge types are counted once.
    """
    G = nx.MultiDiGraph()
    for node in nodes:
        G.add_node(node.id)
    for edge in edges:
        if edge.source in G and edge.target in G:
            G.add_edge(edge.source, edge.target, key=edge.id)

    n = G.number_of_nodes()
    m = G.number_of_edges()
    density = m / (n * (n - 1)) if n > 1 else 0.0
    avg_in = sum(d for _, d in G.in_degree()) / n if n > 0 else 0.0
    avg_out = sum(d for _, d in G.out_degree()) / n if n > 0 else 0.0
    isolated = sum(1 for node_id in G.nodes() if G.degree(node_id) == 0)
    return {
        "num_nodes": n,
        "num_edges": m,
        "density": density,
        "avg_in_degree": avg_in,
        "avg_out_degree": avg_out,
        "isolated_fraction": isolated / n if n > 0 else 0.0,
    }
