import math

from exhibot.classifier import classify, is_asymmetric, sample_spread, sweep_stats
from exhibot.models import Classification, ClassifierParams, ScanSample, SensorReading

OFFSETS = (0.0, math.radians(35.0), math.radians(-35.0))


def sample(theta_deg, front, left, right):
    readings = tuple(SensorReading(d, off) for d, off in zip((front, left, right), OFFSETS))
    return ScanSample(math.radians(theta_deg), readings)


def wall_buffer():
    """Flat surface at ~600 mm seen across a 60 degree sweep."""
    return [sample(i * 60.0 / 9, 600.0 + (i % 3 - 1) * 5, 605.0, 595.0) for i in range(10)]


def leg_buffer():
    """Open space with a narrow close object in the middle of the sweep."""
    buf = [sample(i * 8.0, 2000.0, 2000.0, 2000.0) for i in range(9)]
    buf[3] = sample(24.0, 300.0, 1800.0, 1900.0)
    buf[4] = sample(32.0, 280.0, 1800.0, 1900.0)
    buf[5] = sample(40.0, 310.0, 1850.0, 1900.0)
    return buf


def test_flat_buffer_is_wall():
    result = classify(wall_buffer())
    assert result.kind == Classification.WALL
    assert result.bearing is None
    assert result.stats.flat_frac == 1.0
    assert result.stats.asym == 0


def test_narrow_asymmetric_buffer_is_local_object():
    result = classify(leg_buffer())
    assert result.kind == Classification.LOCAL_OBJECT
    assert result.distance_mm == 280.0
    assert math.isclose(result.bearing, math.radians(32.0))
    assert result.stats.hits == 3
    assert result.stats.asym == 3
    assert math.isclose(result.stats.hit_span_deg, 16.0)


def test_bearing_includes_channel_offset():
    buf = leg_buffer()
    buf[4] = sample(32.0, 1800.0, 250.0, 1900.0)
    result = classify(buf)
    assert result.kind == Classification.LOCAL_OBJECT
    assert math.isclose(result.bearing, math.radians(32.0 + 35.0))


def test_too_few_samples_is_unknown():
    result = classify(wall_buffer()[:4])
    assert result.kind == Classification.UNKNOWN
    assert result.stats.samples == 4


def test_nothing_in_range_is_none():
    assert classify([sample(i * 7.0, 2000.0, 2000.0, 2000.0) for i in range(10)]).kind == Classification.NONE
    assert classify([sample(i * 7.0, None, None, None) for i in range(10)]).kind == Classification.NONE


def test_dropouts_are_ignored_in_spread():
    buf = wall_buffer()
    buf[2] = sample(13.0, 600.0, None, 598.0)
    buf[6] = sample(40.0, None, 603.0, None)
    assert classify(buf).kind == Classification.WALL


def test_wide_asymmetric_return_is_unknown():
    # Asymmetric but spans too far for a leg and too jagged for a wall.
    buf = [sample(i * 10.0, 1000.0, 1800.0, 1300.0) for i in range(10)]
    assert classify(buf).kind == Classification.UNKNOWN


def test_local_object_wins_over_wall_rule():
    params = ClassifierParams(wall_hit_frac=0.0)
    buf = leg_buffer()
    assert classify(buf, params).kind == Classification.LOCAL_OBJECT


def test_classify_is_pure():
    buf = leg_buffer()
    before = list(buf)
    assert classify(buf) == classify(buf)
    assert buf == before


def test_sample_helpers():
    s = sample(0.0, 300.0, 1800.0, None)
    assert sample_spread(s) == (300.0, 1500.0)
    assert is_asymmetric(s, ClassifierParams())
    assert not is_asymmetric(sample(0.0, 300.0, None, None), ClassifierParams())
    assert sample_spread(sample(0.0, None, None, None)) == (None, 0.0)


def test_sweep_stats_counts():
    stats = sweep_stats(leg_buffer(), ClassifierParams())
    assert stats.samples == 9
    assert stats.opens == 6
    assert math.isclose(stats.hit_frac, 3 / 9)
    assert stats.max_spread_mm == 1620.0
    assert stats.flat_frac == 0.0
