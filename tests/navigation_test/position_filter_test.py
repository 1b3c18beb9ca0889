import math

import pytest

from navigation.tracking.errors import InputError
from navigation.tracking.models import Position, RejectReason
from navigation.tracking.position_filter import PositionFilter

LAT0 = 12.9716
LNG0 = 77.5946
M_LAT = math.degrees(1 / 6_371_000)                                  # 1 m north
M_LNG = math.degrees(1 / (6_371_000 * math.cos(math.radians(LAT0))))  # 1 m east


def fix(north_m=0.0, east_m=0.0, t=0.0, accuracy=10.0, **kwargs):
    return Position(LAT0 + north_m * M_LAT, LNG0 + east_m * M_LNG, accuracy=accuracy, timestamp=t, **kwargs)


def test_first_fix_is_accepted_with_zero_kinematics():
    filt = PositionFilter()
    result = filt.ingest(fix())

    assert result.accepted
    assert result.reason is None
    assert result.position.speed_kmh == 0.0
    assert result.position.heading == 0.0
    assert result.position.smoothed.lat == pytest.approx(LAT0)
    assert filt.status() == {"has_position": True, "accuracy": 10.0, "history_size": 1}


def test_poor_accuracy_is_rejected_but_limit_is_inclusive():
    filt = PositionFilter()

    rejected = filt.ingest(fix(accuracy=150.0))
    assert not rejected.accepted
    assert rejected.reason is RejectReason.POOR_ACCURACY
    assert rejected.position is None

    assert filt.ingest(fix(accuracy=100.0)).accepted


def test_small_movement_is_noise():
    filt = PositionFilter()
    filt.ingest(fix(t=0))

    result = filt.ingest(fix(north_m=1.0, t=1))
    assert not result.accepted
    assert result.reason is RejectReason.NO_MOVEMENT
    assert len(filt.history) == 1


def test_implausible_jump_is_rejected():
    filt = PositionFilter()
    filt.ingest(fix(t=0))

    # 1 km in 10 s = 360 km/h
    result = filt.ingest(fix(north_m=1000.0, t=10))
    assert result.reason is RejectReason.IMPLAUSIBLE_SPEED


def test_speed_check_skipped_without_elapsed_time():
    filt = PositionFilter()
    filt.ingest(fix(t=5))

    assert filt.ingest(fix(north_m=1000.0, t=5)).accepted


def test_reported_speed_is_converted_to_kmh():
    filt = PositionFilter()
    result = filt.ingest(fix(speed=5.0))

    assert result.position.speed_kmh == pytest.approx(18.0)


def test_negative_reported_speed_falls_back_to_derived():
    filt = PositionFilter()
    filt.ingest(fix(t=0))
    result = filt.ingest(fix(north_m=100.0, t=10, speed=-1.0))

    assert result.position.speed_kmh == pytest.approx(36.0, rel=1e-3)


def test_derived_speed_uses_recent_history():
    filt = PositionFilter()
    filt.ingest(fix(north_m=0, t=0))
    filt.ingest(fix(north_m=100, t=10))
    result = filt.ingest(fix(north_m=200, t=20))

    assert result.position.speed_kmh == pytest.approx(36.0, rel=1e-3)


def test_derived_heading_follows_movement():
    filt = PositionFilter()
    filt.ingest(fix(t=0))
    east = filt.ingest(fix(east_m=100.0, t=10))

    assert east.position.heading == pytest.approx(90.0, abs=0.1)


def test_reported_heading_wins():
    filt = PositionFilter()
    filt.ingest(fix(t=0))
    result = filt.ingest(fix(north_m=100.0, t=10, heading=270.0))

    assert result.position.heading == 270.0


def test_smoothed_position_is_recency_weighted():
    filt = PositionFilter()
    first = fix(t=0)
    second = fix(north_m=90.0, t=10)
    filt.ingest(first)
    result = filt.ingest(second)

    expected = (first.lat * 1 + second.lat * 2) / 3
    assert result.position.smoothed.lat == pytest.approx(expected)
    assert result.position.smoothed.lng == pytest.approx(LNG0)


def test_history_is_bounded_and_reset_clears_it():
    filt = PositionFilter()
    for i in range(15):
        assert filt.ingest(fix(north_m=10.0 * i, t=float(i))).accepted

    assert len(filt.history) == 10
    assert filt.last_position.timestamp == 14.0

    filt.reset()
    assert filt.last_position is None
    assert filt.status()["has_position"] is False


def test_accepted_fixes_respect_accuracy_and_spacing():
    filt = PositionFilter()
    raw = [
        fix(0, t=0),
        fix(1, t=1),                    # noise
        fix(50, t=2, accuracy=500.0),   # poor accuracy
        fix(30, t=3),
        fix(31, t=4),                   # noise
        fix(60, t=5),
    ]
    accepted = [r for r in raw if filt.ingest(r).accepted]

    assert [p.timestamp for p in accepted] == [0, 3, 5]
    for prev, curr in zip(accepted, accepted[1:]):
        assert curr.accuracy <= 100
        assert abs(curr.lat - prev.lat) / M_LAT >= 2


@pytest.mark.parametrize("lat, lng", [(91.0, 0.0), (0.0, 181.0), (float("nan"), 0.0)])
def test_invalid_coordinates_are_rejected_at_construction(lat, lng):
    with pytest.raises(InputError):
        Position(lat, lng, accuracy=5.0, timestamp=0.0)
