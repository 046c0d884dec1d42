"""Distance sensor model: cone sampling, noise, outliers, dropout and refresh rate."""

from __future__ import annotations

import math
import random
from typing import Dict, Mapping, Optional

from .models import SensorParams, SensorReading
from .world import DistanceQuery


def cone_distance(query: DistanceQuery, x: float, y: float, aim: float, fov: float, rays: int) -> float:
    """
    Nearest surface inside a sensing cone (metres).

    Casts `rays` rays spread evenly across the cone's angular width and keeps
    the minimum, so a narrow object anywhere in the cone is reported.
    """
    if rays <= 1 or fov <= 0.0:
        return query.cast(x, y, aim)
    half = fov / 2.0
    step = fov / (rays - 1)
    return min(query.cast(x, y, aim - half + i * step) for i in range(rays))


class RangeSensor:
    """
    One distance channel.

    Readings are refreshed at the hardware rate only; between refreshes the
    last value is returned, whatever the caller's tick rate.
    """

    def __init__(self, params: SensorParams, angle_offset: float = 0.0, rng: Optional[random.Random] = None):
        self.params = params
        self.angle_offset = angle_offset
        self.rng = rng if rng is not None else random.Random()
        self._since_sample = 0.0
        self._sampled = False
        self._last: Optional[float] = None

    @property
    def last(self) -> Optional[float]:
        return self._last

    def sample(self, ground_truth_distance_m: Optional[float], dt: float) -> Optional[float]:
        """Return the current reading (mm) or None for a dropout."""
        if math.isfinite(dt) and dt > 0.0:
            self._since_sample += dt
        period = self.params.sample_period_s
        if self._sampled and self._since_sample + 1e-9 < period:
            return self._last
        if self._sampled:
            self._since_sample = min(max(self._since_sample - period, 0.0), period)
        else:
            self._since_sample = 0.0
        self._sampled = True
        self._last = self.measure(ground_truth_distance_m)
        return self._last

    def measure(self, ground_truth_distance_m: Optional[float]) -> Optional[float]:
        """One raw measurement, ignoring the refresh rate."""
        p = self.params
        if self.rng.random() < p.dropout_prob:
            return None
        if ground_truth_distance_m is None or not math.isfinite(ground_truth_distance_m):
            mm = p.max_range_mm  # no hit within range
        else:
            mm = min(ground_truth_distance_m * 1000.0, p.max_range_mm)
        mm += self.rng.gauss(0.0, p.noise_sigma_mm)
        if self.rng.random() < p.outlier_prob:
            mm += p.outlier_amp_mm if self.rng.random() < 0.5 else -p.outlier_amp_mm
        return min(max(mm, p.min_range_mm), p.max_range_mm)


class SensorArray:
    """Named set of cone channels mounted on the robot."""

    def __init__(self, params: SensorParams, rng: Optional[random.Random] = None):
        self.params = params
        rng = rng if rng is not None else random.Random()
        self.channels: Dict[str, RangeSensor] = {
            name: RangeSensor(params, offset, rng)
            for name, offset in params.channel_offsets().items()
        }

    def read(self, query: DistanceQuery, x: float, y: float, heading: float, dt: float,
             tick: int = 0) -> Dict[str, SensorReading]:
        """Sample every channel for the given pose."""
        fov = math.radians(self.params.fov_deg)
        out: Dict[str, SensorReading] = {}
        for name, sensor in self.channels.items():
            truth = cone_distance(query, x, y, heading + sensor.angle_offset, fov, self.params.cone_rays)
            out[name] = SensorReading(sensor.sample(truth, dt), sensor.angle_offset, tick)
        return out


def as_distances(readings: Mapping[str, SensorReading]) -> Dict[str, Optional[float]]:
    """Channel -> distance_mm (None for dropouts), the firmware's input shape."""
    return {name: r.distance_mm for name, r in readings.items()}
