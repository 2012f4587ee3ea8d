"""Force-directed layouts: full relayout, incremental insertion, animation."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..config.settings import settings
from ..core.models import Cluster, GraphEdge, GraphNode, Position
from ..utils.logging import get_logger
from .simulation import (
    AxisForce,
    CenterForce,
    ClusterForce,
    CollideForce,
    ForceSimulation,
    LinkForce,
    ManyBodyForce,
)

logger = get_logger(__name__)

PositionMap = Dict[str, Position]


@dataclass
class LayoutOptions:
    """Tunables shared by the full, incremental and animated layouts."""
    width: float = 1200.0
    height: float = 800.0
    iterations: int = field(default_factory=lambda: settings.layout_iterations)
    incremental_iterations: int = field(default_factory=lambda: settings.incremental_layout_iterations)
    node_radius: float = 62.0
    link_distance: float = 240.0
    charge_strength: float = -350.0
    cluster_strength: float = 0.3
    seed: Optional[int] = field(default_factory=lambda: settings.layout_seed)


@dataclass
class NodeDimensions:
    width: int
    height: int
    font_scale: float


def node_dimensions(citation_count: int, relevance: float) -> NodeDimensions:
    """Rendered card size; grows with citations and relevance."""
    log_citations = math.log10(citation_count + 1) / 4 if citation_count > 0 else 0.0
    t = min(log_citations * 0.6 + relevance * 0.4, 1.0)
    return NodeDimensions(
        width=round(180 + t * 140),
        height=round(80 + t * 60),
        font_scale=0.85 + t * 0.3,
    )


def collision_radius(node: GraphNode) -> float:
    dims = node_dimensions(node.data.citation_count, node.scores.relevance)
    return max(dims.width, dims.height) / 2 * 1.2


def compact_grid_positions(node_ids: Sequence[str], spacing: float) -> PositionMap:
    """Square-ish grid centered on the origin, filled row by row."""
    positions: PositionMap = {}
    if not node_ids:
        return positions
    cols = math.ceil(math.sqrt(len(node_ids)))
    rows = math.ceil(len(node_ids) / cols)
    x_offset = (cols - 1) * spacing / 2
    y_offset = (rows - 1) * spacing / 2
    for i, node_id in enumerate(node_ids):
        row, col = divmod(i, cols)
        positions[node_id] = Position(x=col * spacing - x_offset, y=row * spacing - y_offset)
    return positions


def compute_cluster_centroids(
    positions: Mapping[str, Tuple[float, float]], clusters: Iterable[Cluster]
) -> Dict[str, Tuple[float, float]]:
    """Mean position of each cluster's laid-out members. Empty clusters are skipped."""
    centroids: Dict[str, Tuple[float, float]] = {}
    for cluster in clusters:
        points = [positions[node_id] for node_id in cluster.node_ids if node_id in positions]
        if points:
            xs, ys = zip(*points)
            centroids[cluster.id] = (sum(xs) / len(xs), sum(ys) / len(ys))
    return centroids


def _layout_links(node_ids: Iterable[str], edges: Iterable[GraphEdge]) -> List[Tuple[str, str, float]]:
    known = set(node_ids)
    return [
        (edge.source, edge.target, edge.weight)
        for edge in edges
        if edge.source in known and edge.target in known
    ]


def _scatter(nodes: Sequence[GraphNode], options: LayoutOptions, rng: np.random.Generator) -> np.ndarray:
    """Keep existing positions; scatter nodes sitting at the origin."""
    pos = np.zeros((len(nodes), 2))
    for i, node in enumerate(nodes):
        if not node.position.at_origin:
            pos[i] = (node.position.x, node.position.y)
        else:
            pos[i] = ((rng.random() - 0.5) * options.width, (rng.random() - 0.5) * options.height)
    return pos


def _build_simulation(
    nodes: Sequence[GraphNode],
    positions: np.ndarray,
    links: List[Tuple[str, str, float]],
    clusters: Optional[Sequence[Cluster]],
    options: LayoutOptions,
    rng: np.random.Generator,
    fixed: Optional[Dict[str, Tuple[float, float]]] = None,
    center: bool = True,
) -> ForceSimulation:
    sim = ForceSimulation([n.id for n in nodes], positions, fixed=fixed, rng=rng)
    sim.add_force("link", LinkForce(links, distance=options.link_distance))
    sim.add_force("charge", ManyBodyForce(options.charge_strength))
    if center:
        sim.add_force("center", CenterForce(0.0, 0.0))
    sim.add_force("x", AxisForce(0, 0.0, 0.05))
    sim.add_force("y", AxisForce(1, 0.0, 0.05))
    sim.add_force("collide", CollideForce([collision_radius(n) for n in nodes], iterations=2))

    if clusters:
        start = sim.positions()
        centroids = compute_cluster_centroids(start, clusters)
        membership = {node_id: c.id for c in clusters for node_id in c.node_ids}
        sim.add_force("cluster", ClusterForce(membership, centroids, options.cluster_strength))
    return sim


def _to_positions(raw: Mapping[str, Tuple[float, float]]) -> PositionMap:
    return {node_id: Position(x=x, y=y) for node_id, (x, y) in raw.items()}


def compute_layout(
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    clusters: Optional[Sequence[Cluster]] = None,
    options: Optional[LayoutOptions] = None,
) -> PositionMap:
    """
    Full force-directed layout of ``nodes``.

    Nodes already placed keep their position as a starting point; nodes at
    the origin are scattered across a ``width`` x ``height`` box. A graph
    without usable edges is laid out as a compact grid instead.

    Returns:
        Node id -> position, one entry per node.
    """
    options = options or LayoutOptions()
    if not nodes:
        return {}

    links = _layout_links((n.id for n in nodes), edges)
    if not links:
        return compact_grid_positions([n.id for n in nodes], options.node_radius * 3.2)

    rng = np.random.default_rng(options.seed)
    sim = _build_simulation(nodes, _scatter(nodes, options, rng), links, clusters, options, rng)
    sim.run(options.iterations)
    logger.debug(f"Full layout of {len(nodes)} nodes after {options.iterations} ticks")
    return _to_positions(sim.positions())


def incremental_layout(
    existing_positions: Mapping[str, Position],
    new_nodes: Sequence[GraphNode],
    all_nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    clusters: Optional[Sequence[Cluster]] = None,
    options: Optional[LayoutOptions] = None,
) -> PositionMap:
    """
    Place ``new_nodes`` without moving anything already on screen.

    Existing nodes are pinned. Each new node starts at the average position
    of its already-positioned neighbours (with a little jitter), or on a
    ring around the existing centroid when it has none.

    Returns:
        ``existing_positions`` merged with the positions of the new nodes.
    """
    options = options or LayoutOptions()
    if not all_nodes:
        return {}

    rng = np.random.default_rng(options.seed)
    new_ids = {n.id for n in new_nodes}

    if existing_positions:
        center_x = sum(p.x for p in existing_positions.values()) / len(existing_positions)
        center_y = sum(p.y for p in existing_positions.values()) / len(existing_positions)
    else:
        center_x = center_y = 0.0

    seeded: Dict[str, Tuple[float, float]] = {}
    for node in new_nodes:
        neighbours = []
        for edge in edges:
            if edge.source == node.id and edge.target in existing_positions:
                neighbours.append(existing_positions[edge.target])
            elif edge.target == node.id and edge.source in existing_positions:
                neighbours.append(existing_positions[edge.source])

        if neighbours:
            avg_x = sum(p.x for p in neighbours) / len(neighbours)
            avg_y = sum(p.y for p in neighbours) / len(neighbours)
            seeded[node.id] = (
                avg_x + (rng.random() - 0.5) * 56,
                avg_y + (rng.random() - 0.5) * 56,
            )
        else:
            angle = rng.random() * math.pi * 2
            radius = max(options.node_radius * 3.5, 120) + rng.random() * 50
            seeded[node.id] = (
                center_x + math.cos(angle) * radius,
                center_y + math.sin(angle) * radius,
            )

    fixed: Dict[str, Tuple[float, float]] = {}
    start = np.zeros((len(all_nodes), 2))
    for i, node in enumerate(all_nodes):
        if node.id in existing_positions:
            p = existing_positions[node.id]
            start[i] = (p.x, p.y)
            if node.id not in new_ids:
                fixed[node.id] = (p.x, p.y)
        elif node.id in seeded:
            start[i] = seeded[node.id]

    links = _layout_links((n.id for n in all_nodes), edges)
    sim = _build_simulation(all_nodes, start, links, clusters, options, rng, fixed=fixed, center=False)
    sim.run(options.incremental_iterations)

    result: PositionMap = dict(existing_positions)
    placed = sim.positions()
    for node_id in new_ids:
        if node_id in placed:
            result[node_id] = Position(x=placed[node_id][0], y=placed[node_id][1])
    logger.debug(f"Incremental layout placed {len(new_ids)} nodes among {len(all_nodes)}")
    return result


class AnimatedLayout:
    """
    Tick a force simulation on the asyncio event loop.

    Each tick reports the current positions through ``on_tick``. The loop
    stops itself once the simulation has cooled below ``alpha_min``;
    ``reheat`` restarts it at a lower temperature.
    """

    def __init__(
        self,
        nodes: Sequence[GraphNode],
        edges: Sequence[GraphEdge],
        clusters: Optional[Sequence[Cluster]],
        on_tick: Callable[[PositionMap], None],
        options: Optional[LayoutOptions] = None,
        interval: float = 1 / 60,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.options = options or LayoutOptions()
        self.on_tick = on_tick
        self.interval = interval
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

        rng = np.random.default_rng(self.options.seed)
        links = _layout_links((n.id for n in nodes), edges)
        self.simulation = _build_simulation(
            nodes, _scatter(nodes, self.options, rng), links, clusters, self.options, rng
        )

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self._restart(1.0)

    def reheat(self) -> None:
        self._restart(0.3)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def positions(self) -> PositionMap:
        return _to_positions(self.simulation.positions())

    def _restart(self, alpha: float) -> None:
        self.simulation.alpha = alpha
        if self._handle is None:
            self._schedule()

    def _schedule(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval, self._step)

    def _step(self) -> None:
        self._handle = None
        self.simulation.tick()
        self.on_tick(self.positions())
        if self.simulation.settled:
            logger.debug("Animated layout settled")
            return
        self._schedule()
