"""Static room geometry, visitor legs and props; the ray-casting distance query."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

LEG_RADIUS = 0.05        # m (100 mm diameter cylinders)
LEG_SPACING = 0.18       # m between leg centres
BAG_RADIUS = 0.20        # m
PEDESTAL_RADIUS = 0.75   # m


class DistanceQuery(Protocol):
    """Nearest-surface distance along a ray, saturating at the query's range."""

    def cast(self, x: float, y: float, angle: float) -> float:
        ...


@dataclass(frozen=True)
class Segment:
    """Wall segment (metres)."""
    ax: float
    ay: float
    bx: float
    by: float


@dataclass
class Circle:
    """Circular obstacle: leg, bag or pedestal."""
    kind: str
    x: float
    y: float
    radius: float
    hidden: bool = False

    # "alive" motion state
    mobile: bool = False
    vx: float = 0.0
    vy: float = 0.0
    timer: float = 0.0


def dist2(x1: float, y1: float, x2: float, y2: float) -> float:
    """Euclidean distance between two points."""
    return math.hypot(x1 - x2, y1 - y2)


def ray_segment(ox: float, oy: float, dx: float, dy: float, seg: Segment) -> Optional[float]:
    """Distance along a unit ray to a segment, or None."""
    ex, ey = seg.bx - seg.ax, seg.by - seg.ay
    denom = dx * ey - dy * ex
    if abs(denom) < 1e-10:
        return None  # parallel
    fx, fy = seg.ax - ox, seg.ay - oy
    t = (fx * ey - fy * ex) / denom
    u = (fx * dy - fy * dx) / denom
    if t >= 0.0 and 0.0 <= u <= 1.0:
        return t
    return None


def ray_circle(ox: float, oy: float, dx: float, dy: float, cx: float, cy: float, r: float) -> Optional[float]:
    """Smallest non-negative distance along a unit ray to a circle, or None."""
    fx, fy = ox - cx, oy - cy
    b = 2.0 * (fx * dx + fy * dy)
    c = fx * fx + fy * fy - r * r
    disc = b * b - 4.0 * c
    if disc < 0.0:
        return None
    sq = math.sqrt(disc)
    t1 = (-b - sq) / 2.0
    t2 = (-b + sq) / 2.0
    if t1 >= 0.0:
        return t1
    if t2 >= 0.0:
        return t2
    return None


def point_segment_closest(px: float, py: float, seg: Segment) -> Tuple[float, float]:
    """Closest point on a segment to (px, py)."""
    ex, ey = seg.bx - seg.ax, seg.by - seg.ay
    L2 = ex * ex + ey * ey
    if L2 <= 1e-12:
        return seg.ax, seg.ay
    u = ((px - seg.ax) * ex + (py - seg.ay) * ey) / L2
    u = max(0.0, min(1.0, u))
    return seg.ax + u * ex, seg.ay + u * ey


@dataclass
class World:
    """Rectangular room plus props. Implements DistanceQuery."""
    width: float = 10.0
    height: float = 20.0
    max_range_m: float = 2.0
    walls: List[Segment] = field(default_factory=list)
    circles: List[Circle] = field(default_factory=list)
    time: float = 0.0

    def __post_init__(self):
        if not self.walls:
            self.walls = room_walls(self.width, self.height)

    # --- construction ---

    def add_wall(self, ax: float, ay: float, bx: float, by: float) -> None:
        self.walls.append(Segment(ax, ay, bx, by))

    def add_leg(self, x: float, y: float, mobile: bool = False) -> Circle:
        c = Circle("leg", *self._inside(x, y, LEG_RADIUS), radius=LEG_RADIUS, mobile=mobile)
        self.circles.append(c)
        return c

    def add_leg_pair(self, x: float, y: float, theta: float = 0.0, spacing: float = LEG_SPACING,
                     mobile: bool = False) -> Tuple[Circle, Circle]:
        """Two legs centred on (x, y), the pair axis at angle theta."""
        half = spacing / 2.0
        dx, dy = math.cos(theta) * half, math.sin(theta) * half
        return (self.add_leg(x - dx, y - dy, mobile), self.add_leg(x + dx, y + dy, mobile))

    def add_bag(self, x: float, y: float) -> Circle:
        c = Circle("bag", *self._inside(x, y, BAG_RADIUS), radius=BAG_RADIUS, timer=20.0)
        self.circles.append(c)
        return c

    def add_pedestal(self, x: float, y: float, radius: float = PEDESTAL_RADIUS) -> Circle:
        # Pedestals may sit partly outside the room.
        c = Circle("pedestal", x, y, radius=radius)
        self.circles.append(c)
        return c

    def _inside(self, x: float, y: float, r: float) -> Tuple[float, float]:
        return (min(max(x, r), self.width - r), min(max(y, r), self.height - r))

    def visible_circles(self) -> List[Circle]:
        return [c for c in self.circles if not c.hidden]

    # --- queries ---

    def cast(self, x: float, y: float, angle: float) -> float:
        """Distance (m) to the nearest surface along a ray, saturating at max_range_m."""
        dx, dy = math.cos(angle), math.sin(angle)
        nearest = self.max_range_m
        for seg in self.walls:
            t = ray_segment(x, y, dx, dy, seg)
            if t is not None and t < nearest:
                nearest = t
        for c in self.circles:
            if c.hidden:
                continue
            t = ray_circle(x, y, dx, dy, c.x, c.y, c.radius)
            if t is not None and t < nearest:
                nearest = t
        return nearest

    # --- "alive" props ---

    def update(self, dt: float, rng: random.Random) -> None:
        """
        Drift mobile legs with a damped random walk and let bags
        occasionally vanish and reappear elsewhere.
        """
        self.time += dt
        accel, max_v, damp = 0.55, 0.08, math.exp(-3.5 * dt)
        for c in self.circles:
            if c.kind == "leg" and c.mobile:
                c.vx = (c.vx + (rng.random() - 0.5) * accel * dt) * damp
                c.vy = (c.vy + (rng.random() - 0.5) * accel * dt) * damp
                sp = math.hypot(c.vx, c.vy)
                if sp > max_v:
                    c.vx, c.vy = c.vx / sp * max_v, c.vy / sp * max_v
                nx, ny = c.x + c.vx * dt, c.y + c.vy * dt
                cx, cy = self._inside(nx, ny, c.radius)
                if cx != nx:
                    c.vx *= -0.25
                if cy != ny:
                    c.vy *= -0.25
                c.x, c.y = cx, cy
            elif c.kind == "bag":
                c.timer -= dt
                if c.timer > 0.0:
                    continue
                if c.hidden:
                    c.x = c.radius + rng.random() * (self.width - 2 * c.radius)
                    c.y = c.radius + rng.random() * (self.height - 2 * c.radius)
                    c.hidden = False
                    c.timer = rng.uniform(12.0, 28.0)
                else:
                    c.hidden = True
                    c.timer = rng.uniform(0.6, 1.6)


def room_walls(width: float, height: float) -> List[Segment]:
    """Four walls of a width x height room with a corner at the origin."""
    return [
        Segment(0.0, 0.0, width, 0.0),
        Segment(width, 0.0, width, height),
        Segment(width, height, 0.0, height),
        Segment(0.0, height, 0.0, 0.0),
    ]


def default_world(max_range_m: float = 2.0) -> World:
    """Gallery room: two visitors, a bag and a pedestal."""
    w = World(width=10.0, height=20.0, max_range_m=max_range_m)
    w.add_leg_pair(3.0, 8.0, theta=0.3)
    w.add_leg_pair(7.0, 13.0, theta=-0.8)
    w.add_bag(8.0, 4.0)
    w.add_pedestal(5.0, 17.0)
    return w
