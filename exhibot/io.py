"""CSV/JSON I/O: world layouts, config overrides, metrics and event logs."""

from __future__ import annotations

import csv
import json
import math
import random
from dataclasses import asdict, fields, replace
from typing import Dict, List, Optional

from .events import FirmwareEvent
from .models import FirmwareConfig, RunMetrics
from .world import PEDESTAL_RADIUS, World, room_walls

WORLD_FIELDS = ["kind", "x", "y", "x2", "y2", "mobile"]
WORLD_KINDS = {"room", "wall", "leg", "leg_pair", "bag", "pedestal"}


def _to_float_opt(s: str) -> Optional[float]:
    """Convert string to float or None if empty."""
    s = (s or "").strip()
    if s == "":
        return None
    return float(s)


def _to_bool(s: str) -> bool:
    return (s or "").strip().lower() in {"1", "true", "yes", "y"}


def load_world_csv(path: str, max_range_m: float = 2.0) -> World:
    """
    Load a world layout CSV.

    Rows are `kind,x,y,x2,y2[,mobile]`:
    - room: x=width, y=height (at most one, defaults to 10 x 20 m)
    - wall: segment (x, y) -> (x2, y2)
    - leg: single leg at (x, y)
    - leg_pair: pair centred on (x, y), x2 = axis angle in degrees
    - bag: bag at (x, y)
    - pedestal: pedestal at (x, y), x2 = radius
    """
    with open(path, "r", newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise ValueError("Empty CSV or missing header row.")

        required = {"kind", "x", "y"}
        missing = required - set(reader.fieldnames)
        if missing:
            raise ValueError(f"World CSV missing required headers: {sorted(missing)}")

        room = None
        props = []
        for line_no, r in enumerate(reader, start=2):
            kind = (r.get("kind") or "").strip().lower()
            if kind not in WORLD_KINDS:
                raise ValueError(f"Unknown kind {kind!r} at line {line_no}")
            try:
                x = float(r["x"])
                y = float(r["y"])
                x2 = _to_float_opt(r.get("x2") or "")
                y2 = _to_float_opt(r.get("y2") or "")
            except (TypeError, ValueError) as e:
                raise ValueError(f"Bad number at line {line_no}: {e}") from e
            if not all(math.isfinite(v) for v in (x, y) + tuple(v for v in (x2, y2) if v is not None)):
                raise ValueError(f"Non-finite coordinate at line {line_no}")

            if kind == "room":
                if room is not None:
                    raise ValueError(f"Duplicate room row at line {line_no}")
                if x <= 0.0 or y <= 0.0:
                    raise ValueError(f"Room size must be positive at line {line_no}")
                room = (x, y)
                continue
            if kind == "wall" and (x2 is None or y2 is None):
                raise ValueError(f"Wall at line {line_no} needs x2 and y2")
            props.append((kind, x, y, x2, y2, _to_bool(r.get("mobile") or "")))

    width, height = room if room is not None else (10.0, 20.0)
    world = World(width=width, height=height, max_range_m=max_range_m)
    for kind, x, y, x2, y2, mobile in props:
        if kind == "wall":
            world.add_wall(x, y, x2, y2)
        elif kind == "leg":
            world.add_leg(x, y, mobile=mobile)
        elif kind == "leg_pair":
            world.add_leg_pair(x, y, theta=math.radians(x2 or 0.0), mobile=mobile)
        elif kind == "bag":
            world.add_bag(x, y)
        elif kind == "pedestal":
            world.add_pedestal(x, y, radius=x2 if x2 is not None else PEDESTAL_RADIUS)
    return world


def write_world_csv(path: str, world: World) -> None:
    """Write a world layout; legs are written one per row."""
    perimeter = room_walls(world.width, world.height)
    with open(path, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=WORLD_FIELDS)
        w.writeheader()
        w.writerow({"kind": "room", "x": world.width, "y": world.height})
        for seg in world.walls:
            if seg in perimeter:
                continue
            w.writerow({"kind": "wall", "x": seg.ax, "y": seg.ay, "x2": seg.bx, "y2": seg.by})
        for c in world.circles:
            row = {"kind": c.kind, "x": f"{c.x:.4f}", "y": f"{c.y:.4f}"}
            if c.kind == "pedestal":
                row["x2"] = c.radius
            if c.mobile:
                row["mobile"] = "1"
            w.writerow(row)


def write_metrics_csv(path: str, metrics: List[RunMetrics]) -> None:
    """Write metrics to CSV file."""
    if not metrics:
        return
    fieldnames = list(asdict(metrics[0]).keys())
    with open(path, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        for m in metrics:
            w.writerow(asdict(m))


def _coerce(value):
    """JSON lists -> tuples, so frozen params stay hashable."""
    if isinstance(value, list):
        return tuple(_coerce(v) for v in value)
    return value


def config_from_dict(overrides: Dict[str, Dict], base: Optional[FirmwareConfig] = None) -> FirmwareConfig:
    """Apply `{section: {key: value}}` overrides on top of a config."""
    config = base or FirmwareConfig()
    sections = {f.name for f in fields(FirmwareConfig)}
    for section, values in overrides.items():
        if section not in sections:
            raise ValueError(f"Unknown config section: {section!r} (expected one of {sorted(sections)})")
        if not isinstance(values, dict):
            raise ValueError(f"Config section {section!r} must be an object")
        group = getattr(config, section)
        known = {f.name for f in fields(group)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown keys in config section {section!r}: {sorted(unknown)}")
        group = replace(group, **{k: _coerce(v) for k, v in values.items()})
        config = replace(config, **{section: group})
    return config


def load_config_json(path: str, base: Optional[FirmwareConfig] = None) -> FirmwareConfig:
    """Load config overrides from a JSON file."""
    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path} at line {e.lineno}: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return config_from_dict(data, base)


def write_config_json(path: str, config: FirmwareConfig) -> None:
    """Dump a full config (useful as a template for overrides)."""
    with open(path, "w") as f:
        json.dump(asdict(config), f, indent=2)


class CsvEventSink:
    """Writes firmware events to a CSV file, one row per event."""

    def __init__(self, path: str, kinds=None):
        self.path = path
        self.kinds = set(kinds) if kinds else None
        self._file = open(path, "w", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=["tick", "kind", "state", "value", "detail"])
        self._writer.writeheader()

    def emit(self, event: FirmwareEvent) -> None:
        if self.kinds is not None and event.kind not in self.kinds:
            return
        self._writer.writerow(asdict(event))

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> "CsvEventSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# --------- Scenario generators ----------

def _write_rows(path: str, room, rows) -> None:
    with open(path, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=WORLD_FIELDS)
        w.writeheader()
        w.writerow({"kind": "room", "x": room[0], "y": room[1]})
        for row in rows:
            w.writerow(row)


def generate_gallery_world(path: str) -> None:
    """
    Default gallery: a few standing visitors, a bag and a pedestal.
    Mirrors `world.default_world()`.
    """
    rows = [
        {"kind": "leg_pair", "x": 3.0, "y": 8.0, "x2": 17.0},
        {"kind": "leg_pair", "x": 7.0, "y": 13.0, "x2": -46.0},
        {"kind": "bag", "x": 8.0, "y": 4.0},
        {"kind": "pedestal", "x": 5.0, "y": 17.0, "x2": 0.75},
    ]
    _write_rows(path, (10.0, 20.0), rows)
    print(f"Wrote gallery world: {path}")


def generate_empty_room(path: str, width: float = 10.0, height: float = 20.0) -> None:
    """
    Bare room, walls only.
    Baseline for false local-object locks: corners and oblique
    walls can still read as narrow objects or stay unknown.
    """
    _write_rows(path, (width, height), [])
    print(f"Wrote empty room: {path}")


def generate_crowded_world(path: str, visitors: int = 12, seed: int = 3) -> None:
    """
    Busy opening night: many visitors (some drifting), bags on the floor.
    """
    rng = random.Random(seed)
    rows = []
    for i in range(visitors):
        rows.append({
            "kind": "leg_pair",
            "x": f"{rng.uniform(1.0, 9.0):.3f}",
            "y": f"{rng.uniform(5.0, 19.0):.3f}",
            "x2": f"{rng.uniform(-90.0, 90.0):.1f}",
            "mobile": "1" if i % 3 == 0 else "",
        })
    for _ in range(3):
        rows.append({"kind": "bag", "x": f"{rng.uniform(1.0, 9.0):.3f}", "y": f"{rng.uniform(5.0, 19.0):.3f}"})
    rows.append({"kind": "pedestal", "x": 2.0, "y": 15.0, "x2": 0.6})
    rows.append({"kind": "pedestal", "x": 8.0, "y": 10.0, "x2": 0.6})
    _write_rows(path, (10.0, 20.0), rows)
    print(f"Wrote crowded world: {path}")


def generate_corridor_world(path: str) -> None:
    """
    Narrow corridor between two partition walls with a single visitor.
    Stresses the wall-vs-target split.
    """
    rows = [
        {"kind": "wall", "x": 3.5, "y": 2.0, "x2": 3.5, "y2": 18.0},
        {"kind": "wall", "x": 6.5, "y": 2.0, "x2": 6.5, "y2": 18.0},
        {"kind": "leg_pair", "x": 5.0, "y": 11.0, "x2": 0.0},
    ]
    _write_rows(path, (10.0, 20.0), rows)
    print(f"Wrote corridor world: {path}")
