"""Data models and tunables for the exhibition robot firmware simulator."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class FirmwareState(str, Enum):
    """Behaviour states of the firmware FSM."""
    WANDER = "Wander"
    SCAN = "Scan"
    VERIFY = "Verify"
    APPROACH = "Approach"
    DEPOSIT = "Deposit"
    ESCAPE = "Escape"


class Classification(str, Enum):
    """Verdict of a completed sweep."""
    WALL = "wall"
    LOCAL_OBJECT = "local_object"
    NONE = "none"
    UNKNOWN = "?"


class EscapeReason(str, Enum):
    """Why the robot is disengaging."""
    WALL = "wall"
    DEPOSIT = "deposit"
    DEFAULT = "default"


# --------- Configuration ----------

@dataclass(frozen=True)
class DriveParams:
    """Differential drive geometry and limits."""
    wheel_base: float = 0.20        # m between wheel contact points
    robot_radius: float = 0.15      # m (30 cm body)
    max_wheel_speed: float = 0.25   # m/s
    max_ang_speed: float = 2.0      # rad/s


@dataclass(frozen=True)
class SensorParams:
    """ToF-style distance sensor model."""
    min_range_mm: float = 40.0
    max_range_mm: float = 2000.0
    noise_sigma_mm: float = 15.0    # Gaussian sigma
    outlier_prob: float = 0.05      # probability of a spike
    outlier_amp_mm: float = 80.0
    dropout_prob: float = 0.02      # probability of no echo
    rate_hz: float = 30.0           # hardware refresh rate
    fov_deg: float = 27.0           # cone width
    cone_rays: int = 7
    channels_deg: Tuple[Tuple[str, float], ...] = (
        ("front", 0.0),
        ("left", 35.0),
        ("right", -35.0),
    )

    @property
    def max_range_m(self) -> float:
        return self.max_range_mm / 1000.0

    @property
    def sample_period_s(self) -> float:
        return 1.0 / max(self.rate_hz, 1e-9)

    def channel_offsets(self) -> Dict[str, float]:
        """Channel name -> angle offset from heading (radians)."""
        return {name: math.radians(deg) for name, deg in self.channels_deg}


@dataclass(frozen=True)
class ClassifierParams:
    """Sweep signature thresholds (mm / degrees / fractions)."""
    min_samples: int = 5
    hit_mm: float = 1400.0          # "hit" if nearest channel is closer
    far_mm: float = 1700.0          # "open space" if farther
    asym_mm: float = 150.0          # min channel disagreement for an asymmetry sample
    wall_flat_frac: float = 0.80
    wall_hit_frac: float = 0.65
    wall_moderate_hit_frac: float = 0.40
    wall_min_span_deg: float = 55.0
    wall_spread_mm: float = 140.0
    wall_std_mm: float = 90.0
    leg_span_deg: float = 60.0
    leg_open_frac: float = 0.10
    leg_spread_mm: float = 220.0
    leg_min_asym_samples: int = 1
    leg_max_flat_frac: float = 0.50


@dataclass(frozen=True)
class BehaviorParams:
    """Firmware behaviour thresholds, speeds and timers."""
    # Distances (mm)
    detect_mm: float = 1400.0       # any channel nearer -> start a scan
    wall_all_mm: float = 600.0      # every channel nearer -> wall contact
    approach_stop_mm: float = 320.0
    lost_mm: float = 1400.0         # target lost (not locked)
    lost_locked_mm: float = 1700.0  # target lost (locked)
    tie_tolerance_mm: float = 30.0  # side channels closer than this are symmetric

    # Speeds (m/s at the wheel)
    speed_wander: float = 0.25
    speed_approach: float = 0.14
    creep_speed: float = 0.06
    scan_turn_speed: float = 0.16

    # Scan
    scan_sweep_deg: float = 70.0
    scan_max_s: float = 1.0         # hard time cap
    recenter_tol_deg: float = 6.0
    recenter_max_s: float = 0.6
    recenter_gain: float = 2.0      # (m/s)/rad

    # Verify / approach
    verify_s: float = 0.4
    steer_gain: float = 0.0004      # (m/s)/mm of side imbalance
    steer_max_frac: float = 0.6
    reacquire_s: float = 0.8
    approach_max_s: float = 10.0

    # Cooldowns (s)
    scan_cooldown_s: float = 1.5    # after none/unknown scans
    wall_cooldown_s: float = 4.0    # after a wall verdict
    deposit_cooldown_s: float = 6.0 # after a deposit, explore elsewhere
    action_cooldown_s: float = 12.0 # minimum time between deposits

    # Deposit
    deposit_pause_min_s: float = 2.0
    deposit_pause_max_s: float = 4.0
    payload_start: int = 30
    payload_per_action: int = 10

    # Wander
    wander_turn_min_s: float = 15.0
    wander_turn_max_s: float = 30.0
    wander_turn_dur_min_s: float = 0.5
    wander_turn_dur_max_s: float = 1.5
    wander_jitter_prob: float = 0.02
    wander_jitter_mps: float = 0.05
    wander_jitter_s: float = 0.5

    # Tick hygiene
    max_dt_s: float = 0.25


@dataclass(frozen=True)
class EscapeParams:
    """Reverse + turn choreography per escape reason."""
    escape_speed: float = 0.20
    escape_turn_speed: float = 0.20
    default_back_s: float = 1.0
    default_turn_deg: Tuple[float, float] = (70.0, 140.0)
    wall_back_s: float = 1.3
    wall_turn_deg: Tuple[float, float] = (120.0, 175.0)
    deposit_back_s: float = 1.3
    deposit_turn_deg: Tuple[float, float] = (140.0, 200.0)


@dataclass(frozen=True)
class FirmwareConfig:
    """All firmware-facing parameter groups."""
    drive: DriveParams = field(default_factory=DriveParams)
    sensor: SensorParams = field(default_factory=SensorParams)
    classifier: ClassifierParams = field(default_factory=ClassifierParams)
    behavior: BehaviorParams = field(default_factory=BehaviorParams)
    escape: EscapeParams = field(default_factory=EscapeParams)


@dataclass
class SimParams:
    """Simulation parameters."""
    dt: float = 1.0 / 30.0
    duration_s: float = 120.0
    seed: int = 42
    start_x: float = 5.0
    start_y: float = 3.0
    start_heading: float = math.pi / 2
    alive_world: bool = False


# --------- Sensor / scan data ----------

@dataclass(frozen=True)
class SensorReading:
    """One channel reading."""
    distance_mm: Optional[float]    # None = dropout / no echo
    angle_offset: float             # rad relative to heading
    timestamp_tick: int = 0


@dataclass(frozen=True)
class ScanSample:
    """Readings taken at one point of a sweep."""
    theta: float                    # rad swept since scan start (signed)
    readings: Tuple[SensorReading, ...]


@dataclass(frozen=True)
class ScanStats:
    """Signature statistics computed over a sweep."""
    samples: int = 0
    hits: int = 0
    opens: int = 0
    asym: int = 0
    hit_frac: float = 0.0
    open_frac: float = 0.0
    flat_frac: float = 0.0
    hit_span_deg: float = 0.0
    hit_std_mm: float = 0.0
    mean_spread_mm: float = 0.0
    max_spread_mm: float = 0.0


@dataclass(frozen=True)
class ClassificationResult:
    """Classifier verdict; bearing/distance only for LOCAL_OBJECT."""
    kind: Classification
    bearing: Optional[float] = None       # rad, scan-start frame
    distance_mm: Optional[float] = None
    stats: ScanStats = field(default_factory=ScanStats)


@dataclass(frozen=True)
class EscapeProfile:
    """Reverse/turn plan, fixed for the whole escape."""
    reason: EscapeReason
    back_duration: float
    turn_duration: float
    turn_direction: int             # +1 = left (CCW), -1 = right (CW)

    @property
    def total_duration(self) -> float:
        return self.back_duration + self.turn_duration


# --------- Robot context ----------

@dataclass
class RobotContext:
    """Robot-side state the firmware writes to each tick."""
    heading: float = 0.0            # rad, odometry estimate
    left_speed: float = 0.0         # m/s
    right_speed: float = 0.0        # m/s
    payload: int = 30
    actions_triggered: int = 0
    scan_cooldown: float = 0.0      # s
    action_cooldown: float = 0.0    # s

    def set_wheel_speeds(self, left: float, right: float) -> None:
        self.left_speed = left
        self.right_speed = right

    def trigger_action(self, amount: int = 1) -> None:
        """Deposit payload at the current spot."""
        self.payload = max(0, self.payload - amount)
        self.actions_triggered += 1


# --------- Simulation records ----------

@dataclass
class Pose:
    """Ground-truth robot pose (world frame)."""
    x: float
    y: float
    heading: float


@dataclass
class TickRecord:
    """Single simulated tick, for plots and debug exports."""
    t: float
    x: float
    y: float
    heading: float
    state: str
    left: float
    right: float
    readings: Dict[str, Optional[float]] = field(default_factory=dict)
    contact: bool = False


@dataclass
class RunMetrics:
    """Metrics from a simulation run."""
    scenario: str
    seed: int
    duration_s: float
    steps: int

    time_wander: float
    time_scan: float
    time_verify: float
    time_approach: float
    time_deposit: float
    time_escape: float

    scans: int
    walls: int
    local_objects: int
    empty_scans: int
    unknown_scans: int
    deposits: int
    escapes_wall: int
    escapes_deposit: int
    escapes_default: int
    contact_ticks: int
    faults: int
    payload_left: int
    distance_m: float


STATE_TIME_FIELDS: Dict[FirmwareState, str] = {
    FirmwareState.WANDER: "time_wander",
    FirmwareState.SCAN: "time_scan",
    FirmwareState.VERIFY: "time_verify",
    FirmwareState.APPROACH: "time_approach",
    FirmwareState.DEPOSIT: "time_deposit",
    FirmwareState.ESCAPE: "time_escape",
}
