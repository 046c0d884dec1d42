"""Sweep classification: wall vs. local object from a buffer of scan samples."""

from __future__ import annotations

import math
import statistics
from typing import List, Optional, Sequence, Tuple

from .models import (
    Classification,
    ClassificationResult,
    ClassifierParams,
    ScanSample,
    ScanStats,
    SensorReading,
)


def _valid(readings: Sequence[SensorReading]) -> List[SensorReading]:
    return [r for r in readings if r.distance_mm is not None and math.isfinite(r.distance_mm)]


def _closest(readings: Sequence[SensorReading]) -> Optional[SensorReading]:
    valid = _valid(readings)
    if not valid:
        return None
    return min(valid, key=lambda r: r.distance_mm)


def sample_spread(sample: ScanSample) -> Tuple[Optional[float], float]:
    """(nearest distance, max - min) over the sample's valid channels."""
    valid = [r.distance_mm for r in _valid(sample.readings)]
    if not valid:
        return None, 0.0
    return min(valid), max(valid) - min(valid)


def is_asymmetric(sample: ScanSample, params: ClassifierParams) -> bool:
    """One channel sees something close while another sees open space."""
    valid = [r.distance_mm for r in _valid(sample.readings)]
    if len(valid) < 2:
        return False
    near, far = min(valid), max(valid)
    return near < params.hit_mm and far > params.far_mm and far - near >= params.asym_mm


def sweep_stats(samples: Sequence[ScanSample], params: ClassifierParams) -> ScanStats:
    """Signature statistics over a sweep."""
    n = len(samples)
    hit_d: List[float] = []
    hit_spread: List[float] = []
    hit_theta: List[float] = []
    opens = 0
    asym = 0
    flat = 0

    for s in samples:
        d_min, spread = sample_spread(s)
        if d_min is None or d_min > params.far_mm:
            opens += 1
        if d_min is not None and d_min < params.hit_mm:
            hit_d.append(d_min)
            hit_spread.append(spread)
            hit_theta.append(s.theta)
            if spread < params.wall_spread_mm:
                flat += 1
        if is_asymmetric(s, params):
            asym += 1

    hits = len(hit_d)
    if n == 0:
        return ScanStats()
    return ScanStats(
        samples=n,
        hits=hits,
        opens=opens,
        asym=asym,
        hit_frac=hits / n,
        open_frac=opens / n,
        flat_frac=flat / hits if hits else 0.0,
        hit_span_deg=abs(math.degrees(hit_theta[-1] - hit_theta[0])) if hits else 0.0,
        hit_std_mm=statistics.pstdev(hit_d) if hits >= 2 else 0.0,
        mean_spread_mm=statistics.fmean(hit_spread) if hits else 0.0,
        max_spread_mm=max(hit_spread) if hits else 0.0,
    )


def looks_local(stats: ScanStats, params: ClassifierParams) -> bool:
    """Narrow target: asymmetric, angularly compact, jagged."""
    return (
        stats.asym >= params.leg_min_asym_samples
        and stats.hit_span_deg <= params.leg_span_deg
        and stats.max_spread_mm >= params.leg_spread_mm
        and stats.flat_frac <= params.leg_max_flat_frac
    )


def looks_wall(stats: ScanStats, params: ClassifierParams) -> bool:
    """Extended flat surface, or a consistent return without asymmetry."""
    if stats.flat_frac >= params.wall_flat_frac:
        return True
    if stats.asym != 0:
        return False
    return (
        stats.hit_frac >= params.wall_hit_frac
        or stats.hit_span_deg >= params.wall_min_span_deg
        or (stats.mean_spread_mm <= params.wall_spread_mm and stats.hit_std_mm <= params.wall_std_mm)
        or (
            stats.open_frac <= params.leg_open_frac
            and stats.hit_frac >= params.wall_moderate_hit_frac
            and stats.mean_spread_mm < params.leg_spread_mm
        )
    )


def classify(samples: Sequence[ScanSample], params: Optional[ClassifierParams] = None) -> ClassificationResult:
    """
    Classify a completed sweep.

    Pure function of the buffer. Local objects take priority over walls;
    a buffer with too few samples is UNKNOWN, one with no hits is NONE.

    Returns:
        ClassificationResult; bearing (rad, scan-start frame) and distance
        are only set for LOCAL_OBJECT.
    """
    params = params or ClassifierParams()
    if len(samples) < params.min_samples:
        return ClassificationResult(Classification.UNKNOWN, stats=ScanStats(samples=len(samples)))

    stats = sweep_stats(samples, params)
    if stats.hits == 0:
        return ClassificationResult(Classification.NONE, stats=stats)

    if looks_local(stats, params):
        best_sample, best_reading = None, None
        for s in samples:
            r = _closest(s.readings)
            if r is None or r.distance_mm >= params.hit_mm:
                continue
            if best_reading is None or r.distance_mm < best_reading.distance_mm:
                best_sample, best_reading = s, r
        return ClassificationResult(
            Classification.LOCAL_OBJECT,
            bearing=best_sample.theta + best_reading.angle_offset,
            distance_mm=best_reading.distance_mm,
            stats=stats,
        )

    if looks_wall(stats, params):
        return ClassificationResult(Classification.WALL, stats=stats)

    return ClassificationResult(Classification.UNKNOWN, stats=stats)
