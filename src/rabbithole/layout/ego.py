"""Focus-centric ("ego") layout around a single node."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx  # type: ignore
import numpy as np

from ..config.settings import settings
from ..core.models import GraphEdge, GraphNode, Position, SYMMETRIC_EDGE_TYPES
from ..utils.logging import get_logger
from .simulation import CollideForce, ForceSimulation, RadialForce

logger = get_logger(__name__)


@dataclass
class EgoLayoutOptions:
    ring_radius: float = field(default_factory=lambda: settings.ego_ring_radius)
    max_hops: int = field(default_factory=lambda: settings.ego_max_hops)
    cleanup_iterations: int = field(default_factory=lambda: settings.ego_cleanup_iterations)
    collide_radius: float = 60.0
    radial_strength: float = 0.3
    seed: Optional[int] = field(default_factory=lambda: settings.layout_seed)


@dataclass
class NeighborGroups:
    parents: List[str] = field(default_factory=list)
    children: List[str] = field(default_factory=list)
    siblings: List[str] = field(default_factory=list)


def classify_neighbors(focus_id: str, edges: Sequence[GraphEdge]) -> NeighborGroups:
    """
    Split the focus node's direct neighbours by how they connect.

    Relational edges (semantic similarity, shared author or venue) make a
    sibling regardless of direction. Any other edge pointing at the focus
    makes a parent, any other edge leaving it a child. A neighbour lands in
    the first group an edge assigns it to.
    """
    groups = NeighborGroups()
    seen = set()
    for edge in edges:
        if edge.source == focus_id and edge.target != focus_id:
            neighbor, outgoing = edge.target, True
        elif edge.target == focus_id and edge.source != focus_id:
            neighbor, outgoing = edge.source, False
        else:
            continue
        if neighbor in seen:
            continue
        seen.add(neighbor)

        if edge.type in SYMMETRIC_EDGE_TYPES:
            groups.siblings.append(neighbor)
        elif outgoing:
            groups.children.append(neighbor)
        else:
            groups.parents.append(neighbor)
    return groups


def fan_in_arc(
    node_ids: Sequence[str],
    center: Tuple[float, float],
    radius: float,
    arc_span: float,
    positions: Dict[str, Tuple[float, float]],
) -> None:
    """Spread ``node_ids`` evenly over an arc facing away from the origin."""
    if not node_ids:
        return
    cx, cy = center
    base_angle = math.atan2(cy, cx)
    if len(node_ids) == 1:
        start, step = 0.0, 0.0
    else:
        start, step = -arc_span / 2, arc_span / (len(node_ids) - 1)
    for i, node_id in enumerate(node_ids):
        angle = base_angle + start + step * i
        positions[node_id] = (
            cx + math.cos(angle) * radius * 0.3,
            cy + math.sin(angle) * radius * 0.3,
        )


def compute_ego_layout(
    focus_id: str,
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    options: Optional[EgoLayoutOptions] = None,
) -> Dict[str, Position]:
    """
    Lay the graph out around ``focus_id``.

    The focus sits on the origin; what it cites and what cites it are fanned
    above and below, relational neighbours to the sides, and farther hops on
    growing rings. A short collision and radial pass removes overlaps.

    Returns:
        Node id -> position for every node, or ``{}`` if the focus is unknown.
    """
    options = options or EgoLayoutOptions()
    node_ids = [n.id for n in nodes]
    known = set(node_ids)
    if focus_id not in known:
        return {}

    ring = options.ring_radius
    rng = np.random.default_rng(options.seed)

    G = nx.Graph()
    G.add_nodes_from(node_ids)
    G.add_edges_from(
        (e.source, e.target) for e in edges if e.source in known and e.target in known
    )
    hops: Dict[str, int] = dict(
        nx.single_source_shortest_path_length(G, focus_id, cutoff=options.max_hops)
    )

    present_edges = [e for e in edges if e.source in known and e.target in known]
    groups = classify_neighbors(focus_id, present_edges)

    positions: Dict[str, Tuple[float, float]] = {focus_id: (0.0, 0.0)}
    fan_in_arc(groups.parents, (0.0, -ring), ring * 0.8, math.pi * 0.6, positions)
    fan_in_arc(groups.children, (0.0, ring), ring * 0.8, math.pi * 0.6, positions)
    fan_in_arc(groups.siblings[0::2], (-ring, 0.0), ring * 0.5, math.pi * 0.4, positions)
    fan_in_arc(groups.siblings[1::2], (ring, 0.0), ring * 0.5, math.pi * 0.4, positions)

    for node_id, hop in hops.items():
        if hop <= 1 or node_id in positions:
            continue
        anchor = next(
            (n for n in G.neighbors(node_id) if hops.get(n) == hop - 1 and n in positions),
            None,
        )
        angle = rng.random() * math.pi * 2
        if anchor is not None:
            ax, ay = positions[anchor]
            radius = ring * 0.4 * hop
            positions[node_id] = (ax + math.cos(angle) * radius, ay + math.sin(angle) * radius)
        else:
            positions[node_id] = (math.cos(angle) * ring * hop, math.sin(angle) * ring * hop)

    far = ring * (options.max_hops + 1)
    for node_id in node_ids:
        if node_id not in positions:
            angle = rng.random() * math.pi * 2
            positions[node_id] = (math.cos(angle) * far, math.sin(angle) * far)

    ordered = list(positions)
    sim = ForceSimulation(ordered, np.array([positions[i] for i in ordered]), rng=rng)
    sim.add_force("collide", CollideForce(options.collide_radius, iterations=1))
    sim.add_force(
        "radial",
        RadialForce(
            [hops.get(i, options.max_hops) * ring * 0.8 for i in ordered],
            strength=options.radial_strength,
        ),
    )
    sim.run(options.cleanup_iterations)

    result = {node_id: Position(x=x, y=y) for node_id, (x, y) in sim.positions().items()}
    result[focus_id] = Position(x=0.0, y=0.0)
    logger.debug(
        f"Ego layout around {focus_id}: {len(groups.parents)} parents, "
        f"{len(groups.children)} children, {len(groups.siblings)} siblings"
    )
    return result
