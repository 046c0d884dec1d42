import csv
import math

import pytest

from exhibot.events import RecordingSink
from exhibot.models import DriveParams, FirmwareConfig, Pose, SimParams
from exhibot.simulation import resolve_collisions, simulate, step_drive
from exhibot.world import World, default_world


def test_step_drive_straight():
    pose = step_drive(Pose(1.0, 1.0, 0.0), 0.2, 0.2, 1.0, DriveParams())
    assert pose.x == pytest.approx(1.2)
    assert pose.y == pytest.approx(1.0)
    assert pose.heading == 0.0


def test_step_drive_clamps_angular_speed():
    pose = step_drive(Pose(0.0, 0.0, 0.0), -0.25, 0.25, 0.1, DriveParams())
    assert pose.heading == pytest.approx(0.2)
    assert (pose.x, pose.y) == pytest.approx((0.0, 0.0))


def test_resolve_collisions_pushes_out_of_wall():
    w = World()
    pose = Pose(0.05, 5.0, 0.0)
    assert resolve_collisions(pose, w, 0.15)
    assert pose.x == pytest.approx(0.15)
    assert not resolve_collisions(Pose(5.0, 5.0, 0.0), w, 0.15)


def test_resolve_collisions_pushes_out_of_circle():
    w = World()
    w.add_pedestal(5.0, 5.0, radius=0.5)
    pose = Pose(5.5, 5.0, 0.0)
    assert resolve_collisions(pose, w, 0.15)
    assert math.hypot(pose.x - 5.0, pose.y - 5.0) == pytest.approx(0.65)


def test_simulate_accounts_for_every_tick():
    record = []
    params = SimParams(duration_s=10.0, seed=3)
    m = simulate(default_world(), FirmwareConfig(), params, scenario="gallery", record=record)
    assert m.steps == 300
    assert len(record) == 300
    total = m.time_wander + m.time_scan + m.time_verify + m.time_approach + m.time_deposit + m.time_escape
    assert total == pytest.approx(10.0)
    assert m.faults == 0
    assert 0 <= m.payload_left <= 30
    assert m.scenario == "gallery"


def test_simulate_is_deterministic():
    params = SimParams(duration_s=20.0, seed=11)
    a = simulate(default_world(), FirmwareConfig(), params)
    b = simulate(default_world(), FirmwareConfig(), params)
    assert a == b


def test_facing_a_wall_starts_a_scan():
    sink = RecordingSink()
    params = SimParams(duration_s=5.0, start_x=5.0, start_y=1.0, start_heading=-math.pi / 2)
    m = simulate(World(), FirmwareConfig(), params, sink=sink)
    assert m.scans >= 1
    assert any(e.state == "Scan" for e in sink.of_kind("transition"))
    verdicts = m.walls + m.local_objects + m.empty_scans + m.unknown_scans
    assert verdicts == len(sink.of_kind("classification"))


def test_alive_world_runs():
    params = SimParams(duration_s=5.0, alive_world=True)
    w = default_world()
    w.add_leg_pair(5.0, 6.0, mobile=True)
    m = simulate(w, FirmwareConfig(), params)
    assert m.faults == 0
    assert w.time == pytest.approx(5.0)


def test_debug_csv_has_one_row_per_tick(tmp_path):
    path = tmp_path / "debug.csv"
    simulate(default_world(), FirmwareConfig(), SimParams(duration_s=2.0), export_debug_csv=str(path))
    with open(path, newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 60
    assert {"t", "state", "d_front", "d_left", "d_right", "payload"} <= set(rows[0])


def test_rejects_non_positive_dt():
    with pytest.raises(ValueError):
        simulate(default_world(), FirmwareConfig(), SimParams(dt=0.0))
