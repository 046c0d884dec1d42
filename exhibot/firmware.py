"""
Tick-driven behaviour engine.

The engine owns exactly one state variant at a time. Each variant is a small
dataclass holding only that state's timers and buffers; `enter()` is the one
place a variant is created, so every transition starts from fresh timers.
Cooldowns that must survive transitions live on the RobotContext.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Dict, List, Mapping, Optional, Tuple

from .classifier import classify
from .events import EventSink, FirmwareEvent, NullSink
from .models import (
    Classification,
    ClassificationResult,
    EscapeProfile,
    EscapeReason,
    FirmwareConfig,
    FirmwareState,
    RobotContext,
    ScanSample,
    SensorReading,
)
from .motion import (
    clamp,
    compute_escape_profile,
    integrate_sweep_angle,
    normalize_angle,
    pick_turn_direction,
    steer_by_balance,
    steer_toward,
)

# Timer comparisons tolerate float accumulation over many small dt.
EPS = 1e-9


def _label(state: Optional[FirmwareState]) -> str:
    return state.value if state is not None else "?"


# --------- State variants ----------

@dataclass
class WanderData:
    state: ClassVar[FirmwareState] = FirmwareState.WANDER
    next_turn: float = 0.0      # s until the next random turn
    turn_left: float = 0.0      # s remaining in the current turn
    turn_dir: int = 1
    jitter: float = 0.0         # m/s wheel differential
    jitter_left: float = 0.0


@dataclass
class ScanData:
    state: ClassVar[FirmwareState] = FirmwareState.SCAN
    direction: int = 1
    phase: str = "sweep"        # sweep | recenter
    elapsed: float = 0.0
    swept: float = 0.0          # rad, odometry since scan start
    sample_timer: float = 0.0
    samples: List[ScanSample] = field(default_factory=list)
    bearing: float = 0.0        # rad, recenter target in scan-start frame
    recenter_elapsed: float = 0.0


@dataclass
class VerifyData:
    state: ClassVar[FirmwareState] = FirmwareState.VERIFY
    elapsed: float = 0.0


@dataclass
class ApproachData:
    state: ClassVar[FirmwareState] = FirmwareState.APPROACH
    elapsed: float = 0.0
    lost_timer: float = 0.0
    last_side: int = 0          # +1 left, -1 right, 0 unknown


@dataclass
class DepositData:
    state: ClassVar[FirmwareState] = FirmwareState.DEPOSIT
    pause: float = 0.0
    elapsed: float = 0.0
    fired: bool = False


@dataclass
class EscapeData:
    state: ClassVar[FirmwareState] = FirmwareState.ESCAPE
    profile: Optional[EscapeProfile] = None
    elapsed: float = 0.0


class BehaviorEngine:
    """
    Firmware FSM: wander, scan/classify, verify, approach, deposit, escape.

    Call `update(dt, readings)` once per tick with the latest distance per
    channel (mm, None for a dropout). The engine writes wheel commands and
    counters to `context`; it never blocks and never raises.
    """

    def __init__(
        self,
        config: Optional[FirmwareConfig] = None,
        context: Optional[RobotContext] = None,
        rng: Optional[random.Random] = None,
        sink: Optional[EventSink] = None,
    ):
        self.config = config or FirmwareConfig()
        self.context = context or RobotContext(payload=self.config.behavior.payload_start)
        self.rng = rng if rng is not None else random.Random()
        self.sink = sink if sink is not None else NullSink()

        self._offsets = self.config.sensor.channel_offsets()
        self._raw: Dict[str, Optional[float]] = {name: None for name in self._offsets}
        self._readings: Dict[str, float] = {name: self.config.sensor.max_range_mm for name in self._offsets}
        self._tick = 0
        self._dt = 0.0
        self._locked = False
        self._last_classification: Optional[ClassificationResult] = None
        self.fault: Optional[str] = None

        self._handlers: Dict[type, Callable[[float], None]] = {
            WanderData: self._wander,
            ScanData: self._scan,
            VerifyData: self._verify,
            ApproachData: self._approach,
            DepositData: self._deposit,
            EscapeData: self._escape,
        }
        self._data = self._make(FirmwareState.WANDER)

    # --- observability ---

    @property
    def state(self) -> FirmwareState:
        return self._data.state

    @property
    def state_name(self) -> str:
        return self._data.state.value

    @property
    def data(self):
        """Active state variant (read-only by convention)."""
        return self._data

    @property
    def last_classification(self) -> Optional[ClassificationResult]:
        return self._last_classification

    @property
    def target_locked(self) -> bool:
        return self._locked

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def scan_buffer(self) -> Tuple[ScanSample, ...]:
        if isinstance(self._data, ScanData):
            return tuple(self._data.samples)
        return ()

    def _emit(self, kind: str, value: str = "", detail: str = "") -> None:
        self.sink.emit(FirmwareEvent(self._tick, kind, self.state_name, value, detail))

    # --- transitions ---

    def _make(self, state: FirmwareState, reason: EscapeReason = EscapeReason.DEFAULT):
        b = self.config.behavior
        if state == FirmwareState.WANDER:
            return WanderData(next_turn=self.rng.uniform(b.wander_turn_min_s, b.wander_turn_max_s))
        if state == FirmwareState.SCAN:
            # Sweep toward the nearer side channel.
            away = pick_turn_direction(self._side_bias(), b.tie_tolerance_mm, self.rng)
            return ScanData(direction=-away)
        if state == FirmwareState.VERIFY:
            return VerifyData()
        if state == FirmwareState.APPROACH:
            return ApproachData()
        if state == FirmwareState.DEPOSIT:
            return DepositData(pause=self.rng.uniform(b.deposit_pause_min_s, b.deposit_pause_max_s))
        if state == FirmwareState.ESCAPE:
            profile = compute_escape_profile(
                reason, self._side_bias(), self.config.escape, self.config.drive, self.rng, b.tie_tolerance_mm
            )
            return EscapeData(profile=profile)
        raise ValueError(f"Unknown firmware state: {state!r}")

    def enter(self, state: FirmwareState, reason: EscapeReason = EscapeReason.DEFAULT) -> None:
        """Switch to `state` with a fresh variant. Wheels stop until the next tick's handler runs."""
        previous = getattr(self._data, "state", None)
        self._data = self._make(state, reason)
        self.context.set_wheel_speeds(0.0, 0.0)
        if state == FirmwareState.ESCAPE:
            p = self._data.profile
            detail = f"from={_label(previous)} back={p.back_duration:.2f}s turn={p.turn_duration:.2f}s dir={p.turn_direction:+d}"
            self._emit("transition", reason.value, detail)
        else:
            self._emit("transition", "", f"from={_label(previous)}")

    def _escape_wall(self) -> None:
        b = self.config.behavior
        self.context.scan_cooldown = max(self.context.scan_cooldown, b.wall_cooldown_s)
        self.enter(FirmwareState.ESCAPE, EscapeReason.WALL)

    def _give_up(self) -> None:
        """Back to wandering without a target."""
        self._locked = False
        self.context.scan_cooldown = max(self.context.scan_cooldown, self.config.behavior.scan_cooldown_s)
        self.enter(FirmwareState.WANDER)

    # --- tick ---

    def update(self, dt: float, readings: Mapping[str, Optional[float]]) -> None:
        """Advance the firmware by one tick."""
        self._tick += 1
        try:
            self._dt = self._sanitize_dt(dt)
            self._decrement_cooldowns(self._dt)
            self._normalize(readings)
            handler = self._handlers.get(type(self._data))
            if handler is None:
                raise RuntimeError(f"no handler for state variant {type(self._data).__name__}")
            handler(self._dt)
            self._integrate_heading(self._dt)
        except Exception as e:
            self._fail_safe(e)

    def _fail_safe(self, error: Exception) -> None:
        """Stop, drop the target and restart in Wander."""
        self.context.set_wheel_speeds(0.0, 0.0)
        self.fault = f"{type(error).__name__}: {error}"
        self._locked = False
        try:
            self.enter(FirmwareState.WANDER)
            self._emit("fault", type(error).__name__, str(error))
        except Exception as sink_error:
            # enter() swaps the state before emitting, so only the report is lost.
            self.fault += f" (event sink: {type(sink_error).__name__}: {sink_error})"

    def _sanitize_dt(self, dt: float) -> float:
        max_dt = self.config.behavior.max_dt_s
        try:
            clean = float(dt)
        except (TypeError, ValueError):
            clean = 0.0
        if not math.isfinite(clean) or clean < 0.0:
            clean = 0.0
        clean = min(clean, max_dt)
        if clean != dt:
            self._emit("clamp", "dt", f"{dt!r} -> {clean:.4f}")
        return clean

    def _decrement_cooldowns(self, dt: float) -> None:
        ctx = self.context
        ctx.scan_cooldown = max(0.0, ctx.scan_cooldown - dt)
        ctx.action_cooldown = max(0.0, ctx.action_cooldown - dt)

    def _normalize(self, readings: Mapping[str, Optional[float]]) -> None:
        max_mm = self.config.sensor.max_range_mm
        for name in self._offsets:
            v = readings.get(name)
            if v is not None and not math.isfinite(v):
                v = None
            self._raw[name] = v
            self._readings[name] = max_mm if v is None else v

    def _integrate_heading(self, dt: float) -> None:
        ctx = self.context
        ctx.heading = normalize_angle(
            ctx.heading + integrate_sweep_angle(ctx.left_speed, ctx.right_speed, self.config.drive.wheel_base, dt)
        )

    # --- reading helpers ---

    def _nearest(self) -> float:
        return min(self._readings.values())

    def _side(self, name: str) -> float:
        return self._readings.get(name, self.config.sensor.max_range_mm)

    def _side_bias(self) -> float:
        return self._side("left") - self._side("right")

    def _wall_all(self) -> bool:
        """Every channel is close: we are up against a wall."""
        limit = self.config.behavior.wall_all_mm
        return all(v < limit for v in self._readings.values())

    def _wall_like(self) -> bool:
        """All channels hit and agree: a flat surface, not a target."""
        values = list(self._readings.values())
        cp = self.config.classifier
        return max(values) < cp.hit_mm and max(values) - min(values) < cp.wall_spread_mm

    def _snapshot(self) -> ScanSample:
        tick = self._tick
        return ScanSample(
            theta=self._data.swept,
            readings=tuple(SensorReading(self._raw[n], off, tick) for n, off in self._offsets.items()),
        )

    def _drive(self, left: float, right: float) -> None:
        m = self.config.drive.max_wheel_speed
        self.context.set_wheel_speeds(clamp(left, -m, m), clamp(right, -m, m))

    # --- state handlers ---

    def _wander(self, dt: float) -> None:
        b = self.config.behavior
        if self._wall_all():
            self._escape_wall()
            return
        if self.context.scan_cooldown <= 0.0 and self._nearest() < b.detect_mm:
            self.enter(FirmwareState.SCAN)
            return

        d = self._data
        d.next_turn -= dt
        if d.turn_left > 0.0:
            d.turn_left -= dt
        elif d.next_turn <= 0.0:
            d.turn_left = self.rng.uniform(b.wander_turn_dur_min_s, b.wander_turn_dur_max_s)
            d.turn_dir = self.rng.choice((-1, 1))
            d.next_turn = self.rng.uniform(b.wander_turn_min_s, b.wander_turn_max_s)

        if d.jitter_left > 0.0:
            d.jitter_left -= dt
        elif self.rng.random() < b.wander_jitter_prob:
            d.jitter = self.rng.uniform(-b.wander_jitter_mps, b.wander_jitter_mps)
            d.jitter_left = b.wander_jitter_s
        else:
            d.jitter = 0.0

        s = b.speed_wander
        turn = d.jitter
        if d.turn_left > 0.0:
            turn += 0.3 * s * d.turn_dir
        self._drive(s - turn, s + turn)

    def _scan(self, dt: float) -> None:
        b = self.config.behavior
        d = self._data
        if self._wall_all():
            self._escape_wall()
            return
        if d.phase == "recenter":
            self._recenter(dt)
            return

        d.elapsed += dt

        period = self.config.sensor.sample_period_s
        d.sample_timer += dt
        if not d.samples:
            d.samples.append(self._snapshot())
            d.sample_timer = 0.0
        elif d.sample_timer + EPS >= period:
            # Keep the remainder so the buffer fills at sensor rate for any tick rate.
            d.samples.append(self._snapshot())
            d.sample_timer = min(max(d.sample_timer - period, 0.0), period)

        if abs(d.swept) + EPS >= math.radians(b.scan_sweep_deg) or d.elapsed + EPS >= b.scan_max_s:
            self._finish_scan()
            return

        s = b.scan_turn_speed * d.direction
        self._drive(-s, s)
        d.swept += integrate_sweep_angle(-s, s, self.config.drive.wheel_base, dt)

    def _finish_scan(self) -> None:
        b = self.config.behavior
        d = self._data
        result = classify(d.samples, self.config.classifier)
        self._last_classification = result
        st = result.stats
        detail = f"samples={st.samples} hits={st.hits} asym={st.asym} span={st.hit_span_deg:.0f}deg flat={st.flat_frac:.2f}"
        if result.kind == Classification.LOCAL_OBJECT:
            detail += f" bearing={math.degrees(result.bearing):.0f}deg dist={result.distance_mm:.0f}mm"
        self._emit("classification", result.kind.value, detail)

        if result.kind == Classification.LOCAL_OBJECT:
            d.phase = "recenter"
            d.bearing = result.bearing
            d.recenter_elapsed = 0.0
            self.context.set_wheel_speeds(0.0, 0.0)
        elif result.kind == Classification.WALL:
            self._escape_wall()
        else:
            self.context.scan_cooldown = max(self.context.scan_cooldown, b.scan_cooldown_s)
            self.enter(FirmwareState.WANDER)

    def _recenter(self, dt: float) -> None:
        b = self.config.behavior
        d = self._data
        d.recenter_elapsed += dt
        err = normalize_angle(d.bearing - d.swept)
        if abs(err) <= math.radians(b.recenter_tol_deg) or d.recenter_elapsed >= b.recenter_max_s:
            self._locked = True
            self.enter(FirmwareState.VERIFY if b.verify_s > 0.0 else FirmwareState.APPROACH)
            return
        left, right = steer_toward(
            d.swept, d.bearing, b.recenter_gain, 0.0,
            max_wheel_speed=self.config.drive.max_wheel_speed, max_turn=b.scan_turn_speed,
        )
        self._drive(left, right)
        d.swept += integrate_sweep_angle(left, right, self.config.drive.wheel_base, dt)

    def _verify(self, dt: float) -> None:
        b = self.config.behavior
        d = self._data
        d.elapsed += dt
        if self._wall_all():
            self._escape_wall()
            return
        if self._nearest() <= b.approach_stop_mm or d.elapsed + EPS >= b.verify_s:
            self.enter(FirmwareState.APPROACH)
            return
        self._drive(b.creep_speed, b.creep_speed)

    def _approach(self, dt: float) -> None:
        b = self.config.behavior
        d = self._data
        ctx = self.context
        d.elapsed += dt
        if self._wall_all():
            self._escape_wall()
            return

        nearest = self._nearest()
        left_mm, right_mm = self._side("left"), self._side("right")
        lost_mm = b.lost_locked_mm if self._locked else b.lost_mm
        if nearest > lost_mm:
            d.lost_timer += dt
            if d.lost_timer + EPS >= b.reacquire_s:
                self._give_up()
                return
            side = d.last_side or 1
            s = b.scan_turn_speed * side
            self._drive(-s, s)
            return
        d.lost_timer = 0.0
        if left_mm + b.tie_tolerance_mm < right_mm:
            d.last_side = 1
        elif right_mm + b.tie_tolerance_mm < left_mm:
            d.last_side = -1

        if nearest <= b.approach_stop_mm:
            if self._locked and not self._wall_like() and ctx.payload > 0 and ctx.action_cooldown <= 0.0:
                self.enter(FirmwareState.DEPOSIT)
            else:
                self.enter(FirmwareState.ESCAPE, EscapeReason.DEFAULT)
            return
        if d.elapsed > b.approach_max_s:
            self.enter(FirmwareState.ESCAPE, EscapeReason.DEFAULT)
            return

        left, right = steer_by_balance(
            left_mm, right_mm, b.speed_approach, b.steer_gain, b.steer_max_frac,
            max_wheel_speed=self.config.drive.max_wheel_speed,
        )
        self._drive(left, right)

    def _deposit(self, dt: float) -> None:
        b = self.config.behavior
        d = self._data
        ctx = self.context
        ctx.set_wheel_speeds(0.0, 0.0)
        d.elapsed += dt
        if d.fired or d.elapsed + EPS < d.pause:
            return
        d.fired = True
        ctx.trigger_action(b.payload_per_action)
        ctx.scan_cooldown = max(ctx.scan_cooldown, b.deposit_cooldown_s)
        ctx.action_cooldown = max(ctx.action_cooldown, b.action_cooldown_s)
        self._emit("action", "deposit", f"payload={ctx.payload} actions={ctx.actions_triggered}")
        self._locked = False
        self.enter(FirmwareState.ESCAPE, EscapeReason.DEPOSIT)

    def _escape(self, dt: float) -> None:
        e = self.config.escape
        d = self._data
        p = d.profile
        d.elapsed += dt
        if d.elapsed < p.back_duration:
            self._drive(-e.escape_speed, -e.escape_speed)
        elif d.elapsed < p.total_duration:
            s = e.escape_turn_speed * p.turn_direction
            self._drive(-s, s)
        else:
            self._locked = False
            self.enter(FirmwareState.WANDER)
