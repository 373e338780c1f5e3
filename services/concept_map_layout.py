# services/concept_map_layout.py
import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from services.graph_service import build_concept_graph

logger = logging.getLogger(__name__)


@dataclass
class LayoutConfig:
    """
    Tuning constants for the force simulation.

    Accepted envelope: centering 0.003-0.005, link_distance 150-180,
    damping 0.9-0.95.
    """
    width: float = 800.0
    height: float = 600.0
    repulsion: float = 2500.0
    min_distance: float = 1.0
    centering: float = 0.003
    link_distance: float = 180.0
    spring: float = 0.015
    damping: float = 0.9
    margin_x: float = 50.0
    margin_y: float = 30.0
    jitter: float = 100.0
    tick_interval: float = 1 / 60


@dataclass
class SimulatedNode:
    id: str
    label: str
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    pin: Optional[Tuple[float, float]] = None

    @property
    def pinned(self) -> bool:
        return self.pin is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "pinned": self.pinned,
        }


@dataclass
class SimulatedLink:
    source: str
    target: str
    relationship: str = "related to"


class ForceLayout:
    """
    Force-directed layout for a concept map.

    Each tick, every unpinned node is pushed away from every other node
    (inverse square), pulled toward the viewport center and pulled along
    its links toward the rest length. Velocities are damped, integrated
    and positions clamped inside the viewport margins. A dragged node is
    pinned to the pointer: it does not move under forces but still repels
    the others.
    """

    def __init__(self, config: Optional[LayoutConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or LayoutConfig()
        self._rng = rng or random.Random()
        self.nodes: Dict[str, SimulatedNode] = {}
        self.links: List[SimulatedLink] = []
        self.ticks = 0
        self._running = False
        self._stop_requested = False

    @property
    def center(self) -> Tuple[float, float]:
        return self.config.width / 2, self.config.height / 2

    @property
    def is_running(self) -> bool:
        return self._running

    def load_graph(self, concept_map: Optional[Dict[str, Any]]) -> int:
        """
        Replace the simulated graph. Nodes start at the viewport center
        plus random jitter; links with unknown endpoints are dropped.
        Returns the number of nodes.
        """
        G = build_concept_graph(concept_map)
        cx, cy = self.center
        spread = self.config.jitter

        self.nodes = {
            node_id: SimulatedNode(
                id=node_id,
                label=data.get("label", node_id),
                x=cx + (self._rng.random() - 0.5) * spread,
                y=cy + (self._rng.random() - 0.5) * spread,
            )
            for node_id, data in G.nodes(data=True)
        }
        self.links = [
            SimulatedLink(source=s, target=t, relationship=data.get("relationship", "related to"))
            for s, t, data in G.edges(data=True)
        ]
        self.ticks = 0
        return len(self.nodes)

    def _clamp(self, node: SimulatedNode) -> None:
        cfg = self.config
        node.x = min(max(node.x, cfg.margin_x), cfg.width - cfg.margin_x)
        node.y = min(max(node.y, cfg.margin_y), cfg.height - cfg.margin_y)

    def _separation(self, a: SimulatedNode, b: SimulatedNode) -> Tuple[float, float, float]:
        dx = b.x - a.x
        dy = b.y - a.y
        if dx == 0 and dy == 0:
            # Coincident nodes have no direction to push along
            angle = self._rng.random() * 2 * math.pi
            dx, dy = math.cos(angle) * 1e-3, math.sin(angle) * 1e-3
        return dx, dy, math.hypot(dx, dy)

    def tick(self) -> None:
        if not self.nodes:
            return

        cfg = self.config
        cx, cy = self.center
        nodes = list(self.nodes.values())

        for node in nodes:
            if node.pinned:
                node.x, node.y = node.pin
                node.vx = node.vy = 0.0

        for node in nodes:
            if node.pinned:
                continue
            for other in nodes:
                if other is node:
                    continue
                dx, dy, d = self._separation(node, other)
                force = -cfg.repulsion / max(d, cfg.min_distance) ** 2
                node.vx += dx / d * force
                node.vy += dy / d * force

            node.vx += (cx - node.x) * cfg.centering
            node.vy += (cy - node.y) * cfg.centering

        for link in self.links:
            source = self.nodes[link.source]
            target = self.nodes[link.target]
            dx = target.x - source.x
            dy = target.y - source.y
            d = math.hypot(dx, dy)
            if d <= 0:
                continue
            force = (d - cfg.link_distance) * cfg.spring
            fx = dx / d * force
            fy = dy / d * force
            if not source.pinned:
                source.vx += fx
                source.vy += fy
            if not target.pinned:
                target.vx -= fx
                target.vy -= fy

        for node in nodes:
            if node.pinned:
                continue
            node.vx *= cfg.damping
            node.vy *= cfg.damping
            node.x += node.vx
            node.y += node.vy
            if not (math.isfinite(node.x) and math.isfinite(node.y)):
                logger.warning(f"Layout: node {node.id!r} left the finite plane, re-centering")
                node.x, node.y = cx, cy
                node.vx = node.vy = 0.0
            self._clamp(node)

        self.ticks += 1

    def run(self, ticks: int) -> None:
        for _ in range(ticks):
            self.tick()

    def drag(self, node_id: str, x: float, y: float) -> SimulatedNode:
        node = self.nodes[node_id]
        node.pin = (float(x), float(y))
        node.x, node.y = node.pin
        node.vx = node.vy = 0.0
        return node

    def release(self, node_id: str) -> SimulatedNode:
        node = self.nodes[node_id]
        node.pin = None
        node.vx = node.vy = 0.0
        return node

    def distance(self, a: str, b: str) -> float:
        first, second = self.nodes[a], self.nodes[b]
        return math.hypot(second.x - first.x, second.y - first.y)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "width": self.config.width,
            "height": self.config.height,
            "ticks": self.ticks,
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "links": [
                {"source": link.source, "target": link.target, "relationship": link.relationship}
                for link in self.links
            ],
        }

    async def run_loop(self, interval: Optional[float] = None, max_ticks: Optional[int] = None) -> int:
        """
        Tick on a fixed interval until stop() is called or max_ticks is
        reached. An empty graph never starts the loop. Returns the number
        of ticks run.
        """
        if not self.nodes:
            logger.debug("Layout: empty graph, simulation not started")
            return 0
        if self._running:
            return 0

        interval = self.config.tick_interval if interval is None else interval
        self._running = True
        self._stop_requested = False
        count = 0
        try:
            while not self._stop_requested and (max_ticks is None or count < max_ticks):
                self.tick()
                count += 1
                await asyncio.sleep(interval)
        finally:
            self._running = False
        return count

    def stop(self) -> None:
        self._stop_requested = True
