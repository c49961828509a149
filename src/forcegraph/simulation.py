"""Force-directed layout simulation.

The simulation is a small state machine (``INITIALIZING -> RUNNING ->
STOPPED``) advanced one tick at a time. It never schedules itself directly:
``start()`` asks a :class:`FrameScheduler` for the next frame, so tests can
single-step ticks with :class:`ManualScheduler` while an event loop host uses
:class:`AsyncioScheduler`.
"""
from __future__ import annotations

import asyncio
import logging
import math
import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .graph import Edge, Node

LOGGER = logging.getLogger(__name__)

Snapshot = Mapping[str, Tuple[float, float]]
TickListener = Callable[[Snapshot], None]

INITIAL_RADIUS = 10.0
INITIAL_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


class SimulationState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class SimulationConfig:
    width: float = 1000.0
    height: float = 500.0
    alpha_min: float = 0.001
    alpha_decay: float = 1.0 - 0.001 ** (1.0 / 300.0)
    velocity_decay: float = 0.4
    max_iterations: int = 1000
    link_distance: float = 100.0
    charge: float = -15.0
    theta: float = 0.9
    distance_min: float = 1.0
    distance_max: float = math.inf
    collision_padding: float = 2.0
    collision_strength: float = 0.7
    center_strength: float = 0.1
    bounded: bool = False
    seed: int = 0


class FrameScheduler(Protocol):
    def request(self, callback: Callable[[], None]) -> object: ...

    def cancel(self, handle: object) -> None: ...


class ManualScheduler:
    """Queue of pending frames run explicitly by the caller."""

    def __init__(self) -> None:
        self._queue: Deque[Tuple[int, Callable[[], None]]] = deque()
        self._counter = 0

    def request(self, callback: Callable[[], None]) -> int:
        self._counter += 1
        self._queue.append((self._counter, callback))
        return self._counter

    def cancel(self, handle: object) -> None:
        self._queue = deque(item for item in self._queue if item[0] != handle)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def step(self) -> bool:
        if not self._queue:
            return False
        _, callback = self._queue.popleft()
        callback()
        return True

    def run(self, max_frames: Optional[int] = None) -> int:
        frames = 0
        while self._queue and (max_frames is None or frames < max_frames):
            self.step()
            frames += 1
        return frames


class AsyncioScheduler:
    """Frames on an asyncio loop, roughly one per ``frame_interval`` seconds."""

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        frame_interval: float = 1.0 / 60.0,
    ) -> None:
        self._loop = loop
        self.frame_interval = frame_interval

    def request(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self.frame_interval, callback)

    def cancel(self, handle: object) -> None:
        if isinstance(handle, asyncio.Handle):
            handle.cancel()


@dataclass
class _Link:
    source: Node
    target: Node
    distance: float
    strength: float
    bias: float


class _Quad:
    """Barnes-Hut cell: a leaf holds bodies, an internal cell four children."""

    __slots__ = ("x0", "y0", "size", "bodies", "children", "charge", "cx", "cy")

    def __init__(self, x0: float, y0: float, size: float) -> None:
        self.x0 = x0
        self.y0 = y0
        self.size = size
        self.bodies: List[int] = []
        self.children: Optional[List[Optional["_Quad"]]] = None
        self.charge = 0.0
        self.cx = 0.0
        self.cy = 0.0


class _QuadTree:
    MAX_DEPTH = 32

    def __init__(self, xs: Sequence[float], ys: Sequence[float], strengths: Sequence[float]) -> None:
        self.xs = xs
        self.ys = ys
        self.strengths = strengths
        x0, x1 = min(xs), max(xs)
        y0, y1 = min(ys), max(ys)
        size = max(x1 - x0, y1 - y0, 1.0)
        self.root = _Quad(x0, y0, size)
        for idx in range(len(xs)):
            self._insert(self.root, idx, 0)
        self._accumulate(self.root)

    def _insert(self, quad: _Quad, idx: int, depth: int) -> None:
        while True:
            if quad.children is None:
                if not quad.bodies or depth >= self.MAX_DEPTH:
                    quad.bodies.append(idx)
                    return
                first = quad.bodies[0]
                if self.xs[first] == self.xs[idx] and self.ys[first] == self.ys[idx]:
                    quad.bodies.append(idx)
                    return
                existing = quad.bodies
                quad.bodies = []
                quad.children = [None, None, None, None]
                for other in existing:
                    self._insert(self._child_for(quad, other), other, depth + 1)
            quad = self._child_for(quad, idx)
            depth += 1

    def _child_for(self, quad: _Quad, idx: int) -> _Quad:
        half = quad.size / 2.0
        right = self.xs[idx] >= quad.x0 + half
        bottom = self.ys[idx] >= quad.y0 + half
        slot = (2 if bottom else 0) + (1 if right else 0)
        assert quad.children is not None
        child = quad.children[slot]
        if child is None:
            child = _Quad(quad.x0 + (half if right else 0.0), quad.y0 + (half if bottom else 0.0), half)
            quad.children[slot] = child
        return child

    def _accumulate(self, quad: _Quad) -> None:
        charge = weight = sx = sy = 0.0
        if quad.children is None:
            for idx in quad.bodies:
                strength = self.strengths[idx]
                charge += strength
                weight += abs(strength)
                sx += abs(strength) * self.xs[idx]
                sy += abs(strength) * self.ys[idx]
        else:
            for child in quad.children:
                if child is None:
                    continue
                self._accumulate(child)
                charge += child.charge
                weight += abs(child.charge)
                sx += abs(child.charge) * child.cx
                sy += abs(child.charge) * child.cy
        quad.charge = charge
        if weight > 0:
            quad.cx = sx / weight
            quad.cy = sy / weight
        else:
            quad.cx = quad.x0 + quad.size / 2.0
            quad.cy = quad.y0 + quad.size / 2.0


class ForceSimulation:
    """Owns node positions and velocities for one dataset at a time."""

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        scheduler: Optional[FrameScheduler] = None,
    ) -> None:
        self.config = config or SimulationConfig()
        self.scheduler: FrameScheduler = scheduler or ManualScheduler()
        self.state = SimulationState.STOPPED
        self.alpha = 0.0
        self.alpha_target = 0.0
        self.iterations = 0
        self.nodes: List[Node] = []
        self.radii: Dict[str, float] = {}
        self._links: List[_Link] = []
        self._random = random.Random(self.config.seed)
        self._generation = 0
        self._handle: Optional[object] = None
        self._pending_pins: Dict[str, Optional[Tuple[float, float]]] = {}
        self._tick_listeners: List[TickListener] = []
        self._end_listeners: List[TickListener] = []

    def on_tick(self, listener: TickListener) -> None:
        self._tick_listeners.append(listener)

    def on_end(self, listener: TickListener) -> None:
        self._end_listeners.append(listener)

    def reset(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        radii: Optional[Mapping[str, float]] = None,
        previous: Optional[Snapshot] = None,
    ) -> None:
        """Cancel any running loop and load a new dataset."""
        self.stop(notify=False)
        self.state = SimulationState.INITIALIZING
        self._random = random.Random(self.config.seed)
        self.nodes = list(nodes)
        self.radii = dict(radii or {})
        self._pending_pins.clear()
        self.alpha = 1.0
        self.alpha_target = 0.0
        self.iterations = 0

        cx, cy = self.config.width / 2.0, self.config.height / 2.0
        for idx, node in enumerate(self.nodes):
            prior = previous.get(node.id) if previous else None
            if prior is not None:
                node.x, node.y = prior
            else:
                radius = INITIAL_RADIUS * math.sqrt(0.5 + idx)
                angle = idx * INITIAL_ANGLE
                node.x = cx + radius * math.cos(angle)
                node.y = cy + radius * math.sin(angle)
            node.vx = node.vy = 0.0
            node.fx = node.fy = None
        self._links = self._build_links(edges)
        LOGGER.debug("Simulation initialized with %d nodes, %d links", len(self.nodes), len(self._links))

    def resize(self, width: float, height: float) -> None:
        self.config.width = width
        self.config.height = height

    def start(self) -> None:
        """Begin (or resume) ticking on the scheduler."""
        self._cancel_pending()
        self._generation += 1
        self.state = SimulationState.RUNNING
        self.iterations = 0
        self._schedule(self._generation)

    def stop(self, notify: bool = True) -> None:
        was_running = self.state is SimulationState.RUNNING
        self._cancel_pending()
        self._generation += 1
        self.state = SimulationState.STOPPED
        if notify and was_running:
            self._emit(self._end_listeners)

    def run_to_completion(self) -> int:
        """Tick synchronously until converged; returns the tick count."""
        self._cancel_pending()
        self._generation += 1
        self.state = SimulationState.RUNNING
        self.iterations = 0
        ticks = 0
        while self.state is SimulationState.RUNNING:
            self.tick()
            ticks += 1
        return ticks

    def reheat(self, alpha_target: float) -> None:
        self.alpha_target = alpha_target
        if alpha_target > 0 and self.state is not SimulationState.RUNNING:
            self.start()

    def pin(self, node_id: str, x: float, y: float) -> None:
        """Hold a node at ``(x, y)``; takes effect before the next tick."""
        self._pending_pins[node_id] = (x, y)
        if self.state is not SimulationState.RUNNING:
            self._apply_pins()

    def unpin(self, node_id: str) -> None:
        self._pending_pins[node_id] = None
        if self.state is not SimulationState.RUNNING:
            self._apply_pins()

    def snapshot(self) -> Dict[str, Tuple[float, float]]:
        return {node.id: (node.x, node.y) for node in self.nodes}

    def tick(self) -> None:
        """Advance one step; moves to STOPPED on convergence or the cap."""
        cfg = self.config
        self._apply_pins()
        self.alpha += (self.alpha_target - self.alpha) * cfg.alpha_decay
        self._apply_link_force()
        self._apply_charge_force()
        self._apply_collision_force()
        self._integrate()
        self._apply_centering()
        if cfg.bounded:
            self._apply_bounds()
        self.iterations += 1

        if self.alpha < cfg.alpha_min or self.iterations >= cfg.max_iterations:
            if self.alpha >= cfg.alpha_min:
                LOGGER.debug("Simulation hit iteration cap at alpha %.4f", self.alpha)
            self._cancel_pending()
            self._generation += 1
            self.state = SimulationState.STOPPED

    def _schedule(self, generation: int) -> None:
        self._handle = self.scheduler.request(lambda: self._frame(generation))

    def _frame(self, generation: int) -> None:
        self._handle = None
        if generation != self._generation or self.state is not SimulationState.RUNNING:
            LOGGER.debug("Dropping stale simulation frame")
            return
        self.tick()
        current = self._generation
        self._emit(self._tick_listeners)
        if current != self._generation:
            # A listener restarted or reset the simulation.
            return
        if self.state is SimulationState.RUNNING:
            self._schedule(generation)
        else:
            self._emit(self._end_listeners)

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

    def _emit(self, listeners: Sequence[TickListener]) -> None:
        snapshot = self.snapshot()
        for listener in listeners:
            listener(snapshot)

    def _apply_pins(self) -> None:
        if not self._pending_pins:
            return
        by_id = {node.id: node for node in self.nodes}
        for node_id, position in self._pending_pins.items():
            node = by_id.get(node_id)
            if node is None:
                continue
            if position is None:
                node.fx = node.fy = None
            else:
                node.fx, node.fy = position
                node.x, node.y = position
                node.vx = node.vy = 0.0
        self._pending_pins.clear()

    def _build_links(self, edges: Sequence[Edge]) -> List[_Link]:
        by_id = {node.id: node for node in self.nodes}
        count: Dict[str, int] = {}
        usable: List[Edge] = []
        for edge in edges:
            if edge.is_self_loop or edge.source not in by_id or edge.target not in by_id:
                continue
            usable.append(edge)
            count[edge.source] = count.get(edge.source, 0) + 1
            count[edge.target] = count.get(edge.target, 0) + 1
        max_weight = max((edge.weight or 0.0 for edge in usable), default=0.0)

        links: List[_Link] = []
        for edge in usable:
            cs, ct = count[edge.source], count[edge.target]
            floor = self._radius(edge.source) + self._radius(edge.target) + self.config.collision_padding
            distance = max(self.config.link_distance * 2.0 / (cs + ct), floor)
            strength = 1.0 / min(cs, ct)
            if max_weight > 0 and edge.weight is not None:
                strength *= 0.5 + 0.5 * max(0.0, edge.weight) / max_weight
            links.append(
                _Link(
                    source=by_id[edge.source],
                    target=by_id[edge.target],
                    distance=distance,
                    strength=strength,
                    bias=cs / (cs + ct),
                )
            )
        return links

    def _radius(self, node_id: str) -> float:
        return self.radii.get(node_id, 0.0)

    def _jiggle(self) -> float:
        return (self._random.random() - 0.5) * 1e-6

    def _apply_link_force(self) -> None:
        for link in self._links:
            source, target = link.source, link.target
            dx = target.x + target.vx - source.x - source.vx or self._jiggle()
            dy = target.y + target.vy - source.y - source.vy or self._jiggle()
            length = math.hypot(dx, dy)
            scale = (length - link.distance) / length * self.alpha * link.strength
            dx *= scale
            dy *= scale
            target.vx -= dx * link.bias
            target.vy -= dy * link.bias
            source.vx += dx * (1.0 - link.bias)
            source.vy += dy * (1.0 - link.bias)

    def _apply_charge_force(self) -> None:
        if len(self.nodes) < 2:
            return
        cfg = self.config
        xs = [node.x for node in self.nodes]
        ys = [node.y for node in self.nodes]
        strengths = [cfg.charge] * len(self.nodes)
        tree = _QuadTree(xs, ys, strengths)
        theta2 = cfg.theta * cfg.theta
        min2 = cfg.distance_min * cfg.distance_min
        max2 = cfg.distance_max * cfg.distance_max

        for idx, node in enumerate(self.nodes):
            stack = [tree.root]
            while stack:
                quad = stack.pop()
                if quad.charge == 0:
                    continue
                dx = quad.cx - node.x
                dy = quad.cy - node.y
                dist2 = dx * dx + dy * dy
                if quad.children is not None and quad.size * quad.size / theta2 < dist2:
                    if dist2 < max2:
                        if dist2 < min2:
                            dist2 = math.sqrt(min2 * dist2)
                        node.vx += dx * quad.charge * self.alpha / dist2
                        node.vy += dy * quad.charge * self.alpha / dist2
                    continue
                if quad.children is not None:
                    stack.extend(child for child in quad.children if child is not None)
                    continue
                for other in quad.bodies:
                    if other == idx:
                        continue
                    ox = xs[other] - node.x or self._jiggle()
                    oy = ys[other] - node.y or self._jiggle()
                    d2 = ox * ox + oy * oy
                    if d2 >= max2:
                        continue
                    if d2 < min2:
                        d2 = math.sqrt(min2 * d2)
                    node.vx += ox * strengths[other] * self.alpha / d2
                    node.vy += oy * strengths[other] * self.alpha / d2

    def _apply_collision_force(self) -> None:
        if len(self.nodes) < 2:
            return
        cfg = self.config
        radii = [self._radius(node.id) + cfg.collision_padding / 2.0 for node in self.nodes]
        cell = max(2.0 * max(radii), 1.0)
        grid: Dict[Tuple[int, int], List[int]] = {}
        px = [node.x + node.vx for node in self.nodes]
        py = [node.y + node.vy for node in self.nodes]
        for idx in range(len(self.nodes)):
            grid.setdefault((int(math.floor(px[idx] / cell)), int(math.floor(py[idx] / cell))), []).append(idx)

        for (gx, gy), members in grid.items():
            for ox in (-1, 0, 1):
                for oy in (-1, 0, 1):
                    neighbors = grid.get((gx + ox, gy + oy))
                    if not neighbors:
                        continue
                    for i in members:
                        for j in neighbors:
                            if j <= i:
                                continue
                            self._collide(i, j, px, py, radii)

    def _collide(
        self, i: int, j: int, px: List[float], py: List[float], radii: List[float]
    ) -> None:
        a, b = self.nodes[i], self.nodes[j]
        ra, rb = radii[i], radii[j]
        reach = ra + rb
        dx = px[i] - px[j] or self._jiggle()
        dy = py[i] - py[j] or self._jiggle()
        dist = math.hypot(dx, dy)
        if dist >= reach:
            return
        push = (reach - dist) / dist * self.config.collision_strength
        share = rb * rb / (ra * ra + rb * rb)
        a.vx += dx * push * share
        a.vy += dy * push * share
        b.vx -= dx * push * (1.0 - share)
        b.vy -= dy * push * (1.0 - share)

    def _integrate(self) -> None:
        keep = 1.0 - self.config.velocity_decay
        for node in self.nodes:
            if node.pinned:
                node.x, node.y = node.fx, node.fy  # type: ignore[assignment]
                node.vx = node.vy = 0.0
                continue
            node.vx *= keep
            node.vy *= keep
            node.x += node.vx
            node.y += node.vy

    def _apply_centering(self) -> None:
        free = [node for node in self.nodes if not node.pinned]
        if not free:
            return
        cfg = self.config
        mean_x = sum(node.x for node in self.nodes) / len(self.nodes)
        mean_y = sum(node.y for node in self.nodes) / len(self.nodes)
        shift_x = (mean_x - cfg.width / 2.0) * cfg.center_strength
        shift_y = (mean_y - cfg.height / 2.0) * cfg.center_strength
        for node in free:
            node.x -= shift_x
            node.y -= shift_y

    def _apply_bounds(self) -> None:
        cfg = self.config
        for node in self.nodes:
            if node.pinned:
                continue
            radius = self._radius(node.id)
            node.x = min(max(node.x, radius), max(radius, cfg.width - radius))
            node.y = min(max(node.y, radius), max(radius, cfg.height - radius))
