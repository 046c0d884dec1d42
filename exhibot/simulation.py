"""Simulation engine: differential-drive kinematics and the closed-loop run."""

from __future__ import annotations

import csv
import math
import random
from collections import Counter
from typing import Dict, List, Optional

from .events import EventSink, FirmwareEvent
from .firmware import BehaviorEngine
from .models import (
    STATE_TIME_FIELDS,
    DriveParams,
    FirmwareConfig,
    FirmwareState,
    Pose,
    RobotContext,
    RunMetrics,
    SimParams,
    TickRecord,
)
from .motion import clamp, normalize_angle
from .sensors import SensorArray, as_distances
from .world import World, dist2, point_segment_closest


def step_drive(pose: Pose, left: float, right: float, dt: float, drive: DriveParams) -> Pose:
    """Step differential-drive kinematics forward by dt (angular rate clamped)."""
    v = 0.5 * (left + right)
    w = clamp((right - left) / drive.wheel_base, -drive.max_ang_speed, drive.max_ang_speed)
    pose.heading = normalize_angle(pose.heading + w * dt)
    pose.x += math.cos(pose.heading) * v * dt
    pose.y += math.sin(pose.heading) * v * dt
    return pose


def resolve_collisions(pose: Pose, world: World, radius: float) -> bool:
    """
    Push the robot disc out of walls and visible circles.

    Returns True if the robot was in contact with anything this tick.
    """
    contact = False
    for seg in world.walls:
        cx, cy = point_segment_closest(pose.x, pose.y, seg)
        d = dist2(pose.x, pose.y, cx, cy)
        if d < radius:
            contact = True
            if d > 1e-9:
                push = (radius - d) / d
                pose.x += (pose.x - cx) * push
                pose.y += (pose.y - cy) * push
    for c in world.visible_circles():
        min_d = radius + c.radius
        d = dist2(pose.x, pose.y, c.x, c.y)
        if d < min_d:
            contact = True
            if d > 1e-9:
                push = (min_d - d) / d
                pose.x += (pose.x - c.x) * push
                pose.y += (pose.y - c.y) * push
    return contact


class _TallySink:
    """Counts firmware events for the run metrics and forwards them."""

    def __init__(self, forward: Optional[EventSink] = None):
        self.forward = forward
        self.counts: Counter = Counter()

    def emit(self, event: FirmwareEvent) -> None:
        self.counts[(event.kind, event.value)] += 1
        if event.kind == "transition" and event.state == FirmwareState.SCAN.value:
            self.counts["scans"] += 1
        if self.forward is not None:
            self.forward.emit(event)

    def count(self, kind: str, value: Optional[str] = None) -> int:
        if value is not None:
            return self.counts[(kind, value)]
        return sum(n for key, n in self.counts.items() if isinstance(key, tuple) and key[0] == kind)


def simulate(
    world: World,
    config: Optional[FirmwareConfig] = None,
    sim_params: Optional[SimParams] = None,
    scenario: str = "",
    export_debug_csv: Optional[str] = None,
    sink: Optional[EventSink] = None,
    record: Optional[List[TickRecord]] = None,
) -> RunMetrics:
    """
    Run the firmware in closed loop against a world and return metrics.

    Per tick: world update (alive mode only), sensor read, firmware update,
    kinematics, collision push-out. If `record` is given, one TickRecord per
    tick is appended to it.
    """
    config = config or FirmwareConfig()
    sim_params = sim_params or SimParams()
    if sim_params.dt <= 0.0:
        raise ValueError(f"dt must be positive, got {sim_params.dt}")

    # Independent streams so that e.g. sensor noise changes leave the world untouched.
    sensor_rng = random.Random(sim_params.seed)
    engine_rng = random.Random(sim_params.seed + 1)
    world_rng = random.Random(sim_params.seed + 2)

    pose = Pose(sim_params.start_x, sim_params.start_y, sim_params.start_heading)
    context = RobotContext(heading=pose.heading, payload=config.behavior.payload_start)
    tally = _TallySink(sink)
    engine = BehaviorEngine(config, context=context, rng=engine_rng, sink=tally)
    sensors = SensorArray(config.sensor, rng=sensor_rng)
    channels = list(config.sensor.channel_offsets())

    times: Dict[str, float] = {name: 0.0 for name in STATE_TIME_FIELDS.values()}
    contact_ticks = 0
    distance = 0.0

    debug_writer = None
    debug_file = None
    if export_debug_csv:
        debug_file = open(export_debug_csv, "w", newline="")
        debug_writer = csv.DictWriter(
            debug_file,
            fieldnames=[
                "t", "x", "y", "heading", "state", "left", "right",
                *[f"d_{name}" for name in channels],
                "contact", "payload", "scan_cooldown", "action_cooldown",
            ],
        )
        debug_writer.writeheader()

    steps = int(round(sim_params.duration_s / sim_params.dt))
    dt = sim_params.dt
    try:
        for k in range(steps):
            t = k * dt
            if sim_params.alive_world:
                world.update(dt, world_rng)

            readings = as_distances(sensors.read(world, pose.x, pose.y, pose.heading, dt, tick=k))
            engine.update(dt, readings)
            state = engine.state
            times[STATE_TIME_FIELDS[state]] += dt

            px, py = pose.x, pose.y
            step_drive(pose, context.left_speed, context.right_speed, dt, config.drive)
            contact = resolve_collisions(pose, world, config.drive.robot_radius)
            if contact:
                contact_ticks += 1
            distance += dist2(px, py, pose.x, pose.y)

            if record is not None:
                record.append(TickRecord(
                    t=t, x=pose.x, y=pose.y, heading=pose.heading, state=state.value,
                    left=context.left_speed, right=context.right_speed,
                    readings=dict(readings), contact=contact,
                ))

            if debug_writer is not None:
                row = {
                    "t": f"{t:.3f}",
                    "x": f"{pose.x:.4f}",
                    "y": f"{pose.y:.4f}",
                    "heading": f"{pose.heading:.4f}",
                    "state": state.value,
                    "left": f"{context.left_speed:.3f}",
                    "right": f"{context.right_speed:.3f}",
                    "contact": "1" if contact else "0",
                    "payload": context.payload,
                    "scan_cooldown": f"{context.scan_cooldown:.3f}",
                    "action_cooldown": f"{context.action_cooldown:.3f}",
                }
                for name in channels:
                    v = readings.get(name)
                    row[f"d_{name}"] = "" if v is None else f"{v:.1f}"
                debug_writer.writerow(row)
    finally:
        if debug_file is not None:
            debug_file.close()

    return RunMetrics(
        scenario=scenario,
        seed=sim_params.seed,
        duration_s=steps * dt,
        steps=steps,
        scans=tally.counts["scans"],
        walls=tally.count("classification", "wall"),
        local_objects=tally.count("classification", "local_object"),
        empty_scans=tally.count("classification", "none"),
        unknown_scans=tally.count("classification", "?"),
        deposits=tally.count("action", "deposit"),
        escapes_wall=tally.count("transition", "wall"),
        escapes_deposit=tally.count("transition", "deposit"),
        escapes_default=tally.count("transition", "default"),
        contact_ticks=contact_ticks,
        faults=tally.count("fault"),
        payload_left=context.payload,
        distance_m=distance,
        **times,
    )
