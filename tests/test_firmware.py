import math
import random
from types import SimpleNamespace

import pytest

from conftest import DT, FAR, make_engine
from exhibot.models import Classification, EscapeReason, FirmwareState


def near_target_sweep(engine):
    """Readings during a sweep: open space except a narrow object around samples 3-5."""
    n = len(engine.scan_buffer)
    if n in (3, 5):
        return {"front": 300.0, "left": 1800.0, "right": 1900.0}
    if n == 4:
        return {"front": 280.0, "left": 1800.0, "right": 1900.0}
    return dict(FAR)


def drive_to_lock(engine, max_ticks=200):
    """Wander -> Scan -> local object -> recenter; stops once the lock is latched."""
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    assert engine.state == FirmwareState.SCAN
    for _ in range(max_ticks):
        engine.update(DT, near_target_sweep(engine) if engine.state == FirmwareState.SCAN else FAR)
        if engine.state != FirmwareState.SCAN:
            return
    pytest.fail("scan never completed")


def test_starts_in_wander_with_full_payload(engine_and_sink):
    engine, _ = engine_and_sink
    assert engine.state == FirmwareState.WANDER
    assert engine.state_name == "Wander"
    assert engine.context.payload == 30
    assert not engine.target_locked
    assert engine.scan_buffer == ()


def test_identical_inputs_give_identical_outputs():
    script_rng = random.Random(99)
    script = []
    for _ in range(1500):
        script.append({
            name: (None if script_rng.random() < 0.05 else script_rng.uniform(250.0, 2000.0))
            for name in ("front", "left", "right")
        })

    runs = []
    for _ in range(2):
        engine, _ = make_engine(seed=7)
        trace = []
        for readings in script:
            engine.update(DT, readings)
            ctx = engine.context
            trace.append((engine.state_name, ctx.left_speed, ctx.right_speed, ctx.payload, ctx.heading))
        runs.append(trace)
    assert runs[0] == runs[1]


def test_dropouts_never_trigger_scan_or_escape():
    engine, sink = make_engine()
    for _ in range(900):
        engine.update(DT, {"front": None, "left": None, "right": None})
        assert engine.state == FirmwareState.WANDER
    engine.update(DT, {})
    assert engine.state == FirmwareState.WANDER
    assert sink.of_kind("transition") == []


def test_nearby_reading_starts_scan_toward_closer_side():
    engine, _ = make_engine()
    engine.update(DT, {"front": 1200.0, "left": 900.0, "right": 2000.0})
    assert engine.state == FirmwareState.SCAN
    assert engine.data.direction == 1

    heading = engine.context.heading
    engine.update(DT, {"front": 1200.0, "left": 900.0, "right": 2000.0})
    assert engine.context.left_speed == pytest.approx(-0.16)
    assert engine.context.right_speed == pytest.approx(0.16)
    assert engine.context.heading - heading == pytest.approx(0.32 / 0.20 * DT)


def test_wall_all_pattern_escapes_even_during_cooldown():
    engine, sink = make_engine()
    engine.context.scan_cooldown = 3.0
    engine.update(DT, {"front": 500.0, "left": 550.0, "right": 580.0})
    assert engine.state == FirmwareState.ESCAPE
    assert engine.data.profile.reason == EscapeReason.WALL
    assert engine.context.scan_cooldown == pytest.approx(4.0)
    assert sink.of_kind("transition")[-1].value == "wall"


@pytest.mark.parametrize("reason", list(EscapeReason))
@pytest.mark.parametrize("seed", range(4))
def test_every_escape_reason_returns_to_wander(reason, seed):
    dt = 0.01
    engine, _ = make_engine(seed=seed)
    engine.update(dt, FAR)
    engine.enter(FirmwareState.ESCAPE, reason)
    profile = engine.data.profile
    assert profile.reason == reason
    ticks = math.ceil((profile.total_duration + 1e-6) / dt) + 1
    for _ in range(ticks):
        engine.update(dt, FAR)
    assert engine.state == FirmwareState.WANDER
    assert not engine.target_locked


@pytest.mark.parametrize("seed", range(8))
def test_escape_terminates_within_profile_duration(seed):
    dt = 0.01
    engine, _ = make_engine(seed=seed)
    engine.update(dt, {"front": 500.0, "left": 520.0, "right": 580.0})
    profile = engine.data.profile
    assert profile.turn_direction == -1  # away from the nearer left side
    ticks = 0
    reversing = 0
    while engine.state == FirmwareState.ESCAPE:
        engine.update(dt, FAR)
        ticks += 1
        if engine.state == FirmwareState.ESCAPE and engine.context.left_speed == engine.context.right_speed < 0:
            reversing += 1
        assert ticks * dt <= profile.total_duration + dt + 1e-6
    assert engine.state == FirmwareState.WANDER
    assert reversing == pytest.approx(profile.back_duration / dt, abs=2)


def test_wall_scan_arms_cooldown_that_blocks_rescan():
    engine, sink = make_engine()
    engine.update(DT, {"front": 1000.0, "left": 1000.0, "right": 1000.0})
    assert engine.state == FirmwareState.SCAN

    flat = {"front": 900.0, "left": 905.0, "right": 895.0}
    for _ in range(60):
        engine.update(DT, flat)
        if engine.state != FirmwareState.SCAN:
            break
    assert engine.last_classification.kind == Classification.WALL
    assert engine.state == FirmwareState.ESCAPE
    assert engine.data.profile.reason == EscapeReason.WALL
    wall_tick = engine.tick

    near = {"front": 1000.0, "left": 1000.0, "right": 1000.0}
    rescan_tick = None
    for _ in range(200):
        engine.update(DT, near)
        if engine.state == FirmwareState.SCAN:
            rescan_tick = engine.tick
            break
        if engine.state == FirmwareState.WANDER:
            assert engine.context.scan_cooldown > 0.0
    assert rescan_tick is not None
    assert 120 <= rescan_tick - wall_tick <= 122


def test_scan_time_cap_forces_classification():
    engine, sink = make_engine(scan_sweep_deg=360.0)
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    ticks = 0
    while engine.state == FirmwareState.SCAN:
        engine.update(DT, FAR)
        ticks += 1
        assert ticks <= 32
    assert engine.last_classification.kind == Classification.NONE
    assert engine.state == FirmwareState.WANDER
    assert engine.context.scan_cooldown == pytest.approx(1.5)


@pytest.mark.parametrize("dt", [0.02, 0.025, 1.0 / 30.0])
def test_scan_buffer_fills_at_sensor_rate_for_any_tick_rate(dt):
    engine, _ = make_engine(scan_sweep_deg=360.0)
    engine.update(dt, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    assert engine.state == FirmwareState.SCAN
    while engine.state == FirmwareState.SCAN:
        engine.update(dt, FAR)
    # 1 s time cap at 30 Hz: one sample on entry plus one per sensor period.
    assert 29 <= engine.last_classification.stats.samples <= 31


def test_starved_scan_is_unknown_and_falls_back_to_wander():
    engine, _ = make_engine(scan_max_s=0.1)
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    for _ in range(10):
        engine.update(DT, {"front": 1200.0, "left": 1300.0, "right": 2000.0})
        if engine.state != FirmwareState.SCAN:
            break
    assert engine.last_classification.kind == Classification.UNKNOWN
    assert engine.last_classification.stats.samples < 5
    assert engine.state == FirmwareState.WANDER


def test_wander_scan_approach_deposit_end_to_end():
    engine, sink = make_engine()
    drive_to_lock(engine)
    assert engine.last_classification.kind == Classification.LOCAL_OBJECT
    assert engine.last_classification.distance_mm == pytest.approx(280.0)
    assert engine.target_locked
    assert engine.state == FirmwareState.VERIFY

    for _ in range(20):
        engine.update(DT, {"front": 800.0, "left": 900.0, "right": 1000.0})
        if engine.state == FirmwareState.APPROACH:
            break
    assert engine.state == FirmwareState.APPROACH
    assert engine.target_locked

    close = {"front": 300.0, "left": 650.0, "right": 650.0}
    engine.update(DT, close)
    assert engine.state == FirmwareState.DEPOSIT

    for _ in range(150):
        engine.update(DT, close)
        if engine.context.actions_triggered:
            break
        assert engine.context.left_speed == engine.context.right_speed == 0.0
    assert engine.context.actions_triggered == 1
    assert engine.context.payload == 20
    assert engine.state == FirmwareState.ESCAPE
    assert engine.data.profile.reason == EscapeReason.DEPOSIT
    assert engine.context.scan_cooldown == pytest.approx(6.0)
    assert not engine.target_locked

    for _ in range(300):
        engine.update(DT, FAR)
    assert engine.context.actions_triggered == 1
    assert len(sink.of_kind("action")) == 1


def test_skipping_verify_goes_straight_to_approach():
    engine, _ = make_engine(verify_s=0.0)
    drive_to_lock(engine)
    assert engine.state == FirmwareState.APPROACH
    assert engine.target_locked


def test_unlocked_approach_at_stop_distance_escapes():
    engine, _ = make_engine()
    engine.enter(FirmwareState.APPROACH)
    engine.update(DT, {"front": 300.0, "left": 650.0, "right": 650.0})
    assert engine.state == FirmwareState.ESCAPE
    assert engine.data.profile.reason == EscapeReason.DEFAULT
    assert engine.context.actions_triggered == 0


def test_wall_wins_over_pursuit():
    engine, _ = make_engine()
    engine.enter(FirmwareState.APPROACH)
    engine.update(DT, {"front": 300.0, "left": 400.0, "right": 400.0})
    assert engine.state == FirmwareState.ESCAPE
    assert engine.data.profile.reason == EscapeReason.WALL


def test_lost_target_gives_up_after_reacquire_window():
    engine, _ = make_engine()
    engine.enter(FirmwareState.APPROACH)
    ticks = 0
    while engine.state == FirmwareState.APPROACH:
        engine.update(DT, FAR)
        ticks += 1
        assert ticks <= 26
    assert engine.state == FirmwareState.WANDER
    assert engine.context.scan_cooldown == pytest.approx(1.5)


def test_approach_steers_toward_nearer_side():
    engine, _ = make_engine()
    engine.enter(FirmwareState.APPROACH)
    engine.update(DT, {"front": 900.0, "left": 700.0, "right": 1200.0})
    assert engine.state == FirmwareState.APPROACH
    assert engine.context.right_speed > engine.context.left_speed > 0.0


def test_cooldowns_decrement_once_per_tick_in_any_state():
    engine, _ = make_engine()
    engine.context.scan_cooldown = 1.0
    engine.context.action_cooldown = 2.0
    engine.enter(FirmwareState.ESCAPE, EscapeReason.DEFAULT)
    engine.update(0.1, FAR)
    assert engine.context.scan_cooldown == pytest.approx(0.9)
    assert engine.context.action_cooldown == pytest.approx(1.9)
    engine.context.scan_cooldown = 0.05
    engine.update(0.1, FAR)
    assert engine.context.scan_cooldown == 0.0


@pytest.mark.parametrize("bad_dt", [float("nan"), float("inf"), -1.0])
def test_bad_dt_is_treated_as_zero(bad_dt):
    engine, sink = make_engine()
    engine.context.scan_cooldown = 1.0
    engine.update(bad_dt, FAR)
    assert engine.context.scan_cooldown == 1.0
    assert sink.of_kind("clamp")


def test_large_dt_is_clamped():
    engine, sink = make_engine()
    engine.context.scan_cooldown = 1.0
    engine.update(5.0, FAR)
    assert engine.context.scan_cooldown == pytest.approx(0.75)
    assert len(sink.of_kind("clamp")) == 1


@pytest.mark.parametrize("readings", [None, {"front": "bad"}])
def test_update_fails_safe_on_bad_input(readings):
    engine, sink = make_engine()
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    assert engine.state == FirmwareState.SCAN
    engine.update(DT, readings)
    assert engine.fault is not None
    assert engine.state == FirmwareState.WANDER
    assert engine.context.left_speed == engine.context.right_speed == 0.0
    assert len(sink.of_kind("fault")) == 1


def test_unknown_state_variant_stops_and_recovers():
    engine, sink = make_engine()
    engine._data = SimpleNamespace()
    engine.update(DT, FAR)
    assert engine.state == FirmwareState.WANDER
    assert "RuntimeError" in engine.fault
    assert sink.of_kind("fault")
    engine.update(DT, FAR)
    assert engine.context.left_speed > 0.0


def test_enter_resets_state_timers():
    engine, _ = make_engine()
    engine.enter(FirmwareState.VERIFY)
    engine.update(DT, {"front": 800.0, "left": 900.0, "right": 1000.0})
    assert engine.data.elapsed == pytest.approx(DT)
    engine.enter(FirmwareState.VERIFY)
    assert engine.data.elapsed == 0.0


def test_heading_estimate_stays_wrapped():
    engine, _ = make_engine()
    engine.enter(FirmwareState.ESCAPE, EscapeReason.WALL)
    for _ in range(2000):
        engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
        assert -math.pi < engine.context.heading <= math.pi


class ClosedLogSink:
    def emit(self, event):
        raise OSError("log file closed")


def test_failing_event_sink_never_escapes_update():
    engine, _ = make_engine()
    engine.sink = ClosedLogSink()
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    assert engine.state == FirmwareState.WANDER
    assert engine.context.left_speed == engine.context.right_speed == 0.0
    assert "OSError" in engine.fault
    engine.update(DT, FAR)
    assert engine.state == FirmwareState.WANDER


def test_fault_recovery_is_reported_as_transition():
    engine, sink = make_engine()
    engine.update(DT, {"front": 1200.0, "left": 2000.0, "right": 2000.0})
    engine.update(DT, None)
    last_transition = sink.of_kind("transition")[-1]
    assert last_transition.state == "Wander"
    assert last_transition.detail == "from=Scan"
    assert sink.events[-1].kind == "fault"
