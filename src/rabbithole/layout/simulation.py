"""Velocity-Verlet force simulation in the style of d3-force.

Nodes carry positions and velocities in numpy arrays. Each ``tick`` moves
alpha towards its target, lets every registered force add to the
velocities (some forces move positions directly), then applies velocity
decay and integrates. Fixed nodes are snapped back to their pinned
coordinates with zero velocity at the end of every tick.

Forces follow the d3 formulas so layouts look like the browser version:

    sim = ForceSimulation(ids, positions, rng=np.random.default_rng(0))
    sim.add_force("link", LinkForce(links, distance=240))
    sim.add_force("charge", ManyBodyForce(-350))
    sim.run(100)
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

ALPHA_MIN = 0.001
ALPHA_DECAY = 1 - ALPHA_MIN ** (1 / 300)
VELOCITY_DECAY = 0.4


class ForceSimulation:
    """Holds node state and applies forces tick by tick."""

    def __init__(
        self,
        node_ids: Sequence[str],
        positions: np.ndarray,
        fixed: Optional[Dict[str, Tuple[float, float]]] = None,
        rng: Optional[np.random.Generator] = None,
        alpha: float = 1.0,
        alpha_min: float = ALPHA_MIN,
        alpha_decay: float = ALPHA_DECAY,
        alpha_target: float = 0.0,
        velocity_decay: float = VELOCITY_DECAY,
    ) -> None:
        self.node_ids = list(node_ids)
        self.index = {node_id: i for i, node_id in enumerate(self.node_ids)}
        self.pos = np.array(positions, dtype=float).reshape(len(self.node_ids), 2)
        self.vel = np.zeros_like(self.pos)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.alpha = alpha
        self.alpha_min = alpha_min
        self.alpha_decay = alpha_decay
        self.alpha_target = alpha_target
        self.velocity_decay = velocity_decay

        self.fixed_mask = np.zeros(len(self.node_ids), dtype=bool)
        self.fixed_pos = np.zeros_like(self.pos)
        for node_id, (x, y) in (fixed or {}).items():
            i = self.index.get(node_id)
            if i is None:
                continue
            self.fixed_mask[i] = True
            self.fixed_pos[i] = (x, y)
            self.pos[i] = (x, y)

        self.forces: Dict[str, "Force"] = {}

    def __len__(self) -> int:
        return len(self.node_ids)

    def add_force(self, name: str, force: "Force") -> "ForceSimulation":
        force.initialize(self)
        self.forces[name] = force
        return self

    def jiggle(self, size: int = 1) -> np.ndarray:
        """Tiny random offsets for separating coincident points."""
        return (self.rng.random(size) - 0.5) * 1e-6

    def tick(self) -> None:
        self.alpha += (self.alpha_target - self.alpha) * self.alpha_decay
        for force in self.forces.values():
            force(self.alpha)

        free = ~self.fixed_mask
        self.vel[free] *= 1 - self.velocity_decay
        self.pos[free] += self.vel[free]
        self.pos[self.fixed_mask] = self.fixed_pos[self.fixed_mask]
        self.vel[self.fixed_mask] = 0.0

    def run(self, iterations: int) -> None:
        """Run a fixed number of ticks regardless of alpha."""
        for _ in range(iterations):
            self.tick()

    @property
    def settled(self) -> bool:
        return self.alpha < self.alpha_min

    def positions(self) -> Dict[str, Tuple[float, float]]:
        return {
            node_id: (float(self.pos[i, 0]), float(self.pos[i, 1]))
            for i, node_id in enumerate(self.node_ids)
        }


class Force:
    """Base class; subclasses read and write ``self.sim`` arrays."""

    sim: ForceSimulation

    def initialize(self, sim: ForceSimulation) -> None:
        self.sim = sim

    def __call__(self, alpha: float) -> None:
        raise NotImplementedError


class LinkForce(Force):
    """Springs between linked nodes, split by relative degree."""

    def __init__(
        self,
        links: Sequence[Tuple[str, str, float]],
        distance: float = 240.0,
        strength_factor: float = 0.5,
        iterations: int = 1,
    ) -> None:
        self.links = links
        self.distance = distance
        self.strength_factor = strength_factor
        self.iterations = iterations

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        resolved: List[Tuple[int, int, float]] = []
        count = np.zeros(len(sim), dtype=float)
        for source, target, weight in self.links:
            s, t = sim.index.get(source), sim.index.get(target)
            if s is None or t is None or s == t:
                continue
            resolved.append((s, t, weight * self.strength_factor))
            count[s] += 1
            count[t] += 1
        self._links = resolved
        self._bias = [count[s] / (count[s] + count[t]) for s, t, _ in resolved]

    def __call__(self, alpha: float) -> None:
        pos, vel = self.sim.pos, self.sim.vel
        for _ in range(self.iterations):
            for (s, t, strength), bias in zip(self._links, self._bias):
                dx = pos[t, 0] + vel[t, 0] - pos[s, 0] - vel[s, 0]
                dy = pos[t, 1] + vel[t, 1] - pos[s, 1] - vel[s, 1]
                if dx == 0:
                    dx = self.sim.jiggle()[0]
                if dy == 0:
                    dy = self.sim.jiggle()[0]
                length = np.hypot(dx, dy)
                k = (length - self.distance) / length * alpha * strength
                dx, dy = dx * k, dy * k
                vel[t, 0] -= dx * bias
                vel[t, 1] -= dy * bias
                vel[s, 0] += dx * (1 - bias)
                vel[s, 1] += dy * (1 - bias)


class ManyBodyForce(Force):
    """Pairwise charge; negative strength repels. Exact O(n^2)."""

    def __init__(self, strength: float = -350.0, distance_min: float = 1.0) -> None:
        self.strength = strength
        self.distance_min2 = distance_min * distance_min

    def __call__(self, alpha: float) -> None:
        n = len(self.sim)
        if n < 2:
            return
        pos = self.sim.pos
        dx = pos[None, :, 0] - pos[:, None, 0]
        dy = pos[None, :, 1] - pos[:, None, 1]
        off_diagonal = ~np.eye(n, dtype=bool)

        coincident_x = (dx == 0) & off_diagonal
        if coincident_x.any():
            dx[coincident_x] = self.sim.jiggle(int(coincident_x.sum()))
        coincident_y = (dy == 0) & off_diagonal
        if coincident_y.any():
            dy[coincident_y] = self.sim.jiggle(int(coincident_y.sum()))

        dist2 = dx * dx + dy * dy
        close = dist2 < self.distance_min2
        dist2[close] = np.sqrt(self.distance_min2 * dist2[close])
        np.fill_diagonal(dist2, 1.0)

        w = self.strength * alpha / dist2
        w[~off_diagonal] = 0.0
        self.sim.vel[:, 0] += (dx * w).sum(axis=1)
        self.sim.vel[:, 1] += (dy * w).sum(axis=1)


class CenterForce(Force):
    """Translate all nodes so their mean sits on ``(x, y)``."""

    def __init__(self, x: float = 0.0, y: float = 0.0, strength: float = 1.0) -> None:
        self.center = np.array([x, y], dtype=float)
        self.strength = strength

    def __call__(self, alpha: float) -> None:
        if len(self.sim) == 0:
            return
        shift = (self.sim.pos.mean(axis=0) - self.center) * self.strength
        self.sim.pos -= shift


class AxisForce(Force):
    """Pull towards a coordinate on one axis (d3 forceX / forceY)."""

    def __init__(self, axis: int, target: float = 0.0, strength: float = 0.05) -> None:
        self.axis = axis
        self.target = target
        self.strength = strength

    def __call__(self, alpha: float) -> None:
        a = self.axis
        self.sim.vel[:, a] += (self.target - self.sim.pos[:, a]) * self.strength * alpha


class CollideForce(Force):
    """Push apart overlapping circles using predicted positions."""

    def __init__(self, radii: Sequence[float] | float, strength: float = 1.0, iterations: int = 2) -> None:
        self.radii_input = radii
        self.strength = strength
        self.iterations = iterations

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        if np.isscalar(self.radii_input):
            self.radii = np.full(len(sim), float(self.radii_input))  # type: ignore[arg-type]
        else:
            self.radii = np.asarray(self.radii_input, dtype=float)

    def __call__(self, alpha: float) -> None:
        n = len(self.sim)
        pos, vel, radii = self.sim.pos, self.sim.vel, self.radii
        for _ in range(self.iterations):
            for i in range(n - 1):
                ri = radii[i]
                xi = pos[i, 0] + vel[i, 0]
                yi = pos[i, 1] + vel[i, 1]
                others = slice(i + 1, n)
                dx = xi - (pos[others, 0] + vel[others, 0])
                dy = yi - (pos[others, 1] + vel[others, 1])
                rj = radii[others]
                reach = ri + rj
                dist2 = dx * dx + dy * dy
                hit = dist2 < reach * reach
                if not hit.any():
                    continue

                dx, dy, rj, reach, dist2 = dx[hit], dy[hit], rj[hit], reach[hit], dist2[hit]
                zero_x = dx == 0
                if zero_x.any():
                    dx[zero_x] = self.sim.jiggle(int(zero_x.sum()))
                    dist2[zero_x] += dx[zero_x] ** 2
                zero_y = dy == 0
                if zero_y.any():
                    dy[zero_y] = self.sim.jiggle(int(zero_y.sum()))
                    dist2[zero_y] += dy[zero_y] ** 2

                dist = np.sqrt(dist2)
                k = (reach - dist) / dist * self.strength
                dx, dy = dx * k, dy * k
                rj2 = rj * rj
                share = rj2 / (ri * ri + rj2)

                vel[i, 0] += (dx * share).sum()
                vel[i, 1] += (dy * share).sum()
                targets = np.arange(i + 1, n)[hit]
                vel[targets, 0] -= dx * (1 - share)
                vel[targets, 1] -= dy * (1 - share)


class RadialForce(Force):
    """Pull each node towards a circle of its own radius around ``(x, y)``."""

    def __init__(
        self,
        radii: Sequence[float] | float,
        x: float = 0.0,
        y: float = 0.0,
        strength: float = 0.1,
    ) -> None:
        self.radii_input = radii
        self.center = np.array([x, y], dtype=float)
        self.strength = strength

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        if np.isscalar(self.radii_input):
            self.radii = np.full(len(sim), float(self.radii_input))  # type: ignore[arg-type]
        else:
            self.radii = np.asarray(self.radii_input, dtype=float)

    def __call__(self, alpha: float) -> None:
        delta = self.sim.pos - self.center
        delta[delta == 0] = 1e-6
        r = np.hypot(delta[:, 0], delta[:, 1])
        k = (self.radii - r) * self.strength * alpha / r
        self.sim.vel += delta * k[:, None]


class ClusterForce(Force):
    """Attract cluster members towards their cluster's centroid."""

    def __init__(
        self,
        membership: Dict[str, str],
        centroids: Dict[str, Tuple[float, float]],
        strength: float = 0.3,
    ) -> None:
        self.membership = membership
        self.centroids = centroids
        self.strength = strength

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        members, targets = [], []
        for node_id, cluster_id in self.membership.items():
            i = sim.index.get(node_id)
            centroid = self.centroids.get(cluster_id)
            if i is None or centroid is None:
                continue
            members.append(i)
            targets.append(centroid)
        self._members = np.array(members, dtype=int)
        self._targets = np.array(targets, dtype=float).reshape(len(members), 2)

    def __call__(self, alpha: float) -> None:
        if self._members.size == 0:
            return
        pos = self.sim.pos[self._members]
        self.sim.vel[self._members] += (self._targets - pos) * alpha * self.strength
