import threading

import pytest

from navigation.tracking.errors import (
    InputError,
    LocationTimeout,
    PermissionDenied,
    PositionUnavailable,
    SourceExhausted,
)
from navigation.tracking.location_source import (
    ChannelClosed,
    PositionChannel,
    PushLocationSource,
    ReplayLocationSource,
)
from navigation.tracking.models import Position
from navigation.tracking.nav_config import NavConfig


def fix(t, lat=12.9716):
    return Position(lat, 77.5946, accuracy=5.0, timestamp=t)


# ---------------------------------------------------------------------------
# PushLocationSource
# ---------------------------------------------------------------------------

def test_push_source_returns_fresh_fixes():
    source = PushLocationSource(NavConfig(), clock=lambda: 100.0)
    source.push(fix(99.5))

    assert source.read(timeout=1).timestamp == 99.5


def test_push_source_skips_stale_fixes():
    source = PushLocationSource(NavConfig(location_max_age_s=1.0), clock=lambda: 100.0)
    source.push(fix(90.0))
    source.push(fix(99.8))

    assert source.read(timeout=1).timestamp == 99.8


def test_push_source_times_out():
    source = PushLocationSource(NavConfig(), clock=lambda: 100.0)
    with pytest.raises(LocationTimeout):
        source.read(timeout=0.05)


def test_push_source_only_stale_fixes_time_out():
    source = PushLocationSource(NavConfig(), clock=lambda: 100.0)
    source.push(fix(1.0))
    with pytest.raises(LocationTimeout):
        source.read(timeout=0.05)


def test_push_source_reports_failures():
    source = PushLocationSource(NavConfig(), clock=lambda: 100.0)
    source.fail(PermissionDenied("User denied geolocation"))

    with pytest.raises(PermissionDenied):
        source.read(timeout=1)


def test_close_wakes_a_blocked_reader():
    source = PushLocationSource(NavConfig(), clock=lambda: 100.0)
    errors = []

    def reader():
        try:
            source.read(timeout=5)
        except PositionUnavailable as e:
            errors.append(e)

    t = threading.Thread(target=reader)
    t.start()
    source.close()
    t.join(timeout=2)

    assert not t.is_alive()
    assert len(errors) == 1
    assert isinstance(errors[0], SourceExhausted)


# ---------------------------------------------------------------------------
# ReplayLocationSource
# ---------------------------------------------------------------------------

def test_replay_from_csv(tmp_path):
    trace = tmp_path / "trace.csv"
    trace.write_text(
        "lat,lng,accuracy,timestamp,speed\n"
        "12.9716,77.5946,5,0,\n"
        "12.9725,77.5946,8,10,10.5\n",
        encoding="utf-8",
    )
    source = ReplayLocationSource.from_csv(str(trace))

    assert len(source) == 2
    first = source.read()
    second = source.read()
    assert first.speed is None
    assert first.heading is None
    assert second.speed == 10.5
    assert second.accuracy == 8.0
    with pytest.raises(SourceExhausted):
        source.read()


def test_replay_csv_missing_columns(tmp_path):
    trace = tmp_path / "bad.csv"
    trace.write_text("lat,lng\n12.9,77.5\n", encoding="utf-8")

    with pytest.raises(InputError, match="accuracy, timestamp"):
        ReplayLocationSource.from_csv(str(trace))


def test_replay_csv_invalid_coordinates(tmp_path):
    trace = tmp_path / "bad.csv"
    trace.write_text("lat,lng,accuracy,timestamp\n123.0,77.5,5,0\n", encoding="utf-8")

    with pytest.raises(InputError):
        ReplayLocationSource.from_csv(str(trace))


# ---------------------------------------------------------------------------
# PositionChannel
# ---------------------------------------------------------------------------

def test_channel_preserves_order():
    channel = PositionChannel(maxsize=8)
    for t in range(5):
        channel.put(t)

    assert [channel.get(timeout=0.1) for _ in range(5)] == [0, 1, 2, 3, 4]
    assert channel.get(timeout=0.01) is None


def test_channel_drops_oldest_when_full():
    channel = PositionChannel(maxsize=3)
    for t in range(5):
        channel.put(t)

    assert channel.dropped == 2
    assert [channel.get(timeout=0.1) for _ in range(3)] == [2, 3, 4]


def test_closed_channel_drains_pending_fixes_first():
    channel = PositionChannel()
    channel.put(1)
    channel.put(2)
    channel.close()
    channel.put(3)

    assert channel.closed
    assert list(channel) == [1, 2]
    with pytest.raises(ChannelClosed):
        channel.get(timeout=0.1)


def test_close_on_full_channel_drops_oldest():
    channel = PositionChannel(maxsize=2)
    channel.put(1)
    channel.put(2)
    channel.close()

    assert channel.dropped == 1
    assert list(channel) == [2]


def test_close_with_discard_drops_pending_fixes():
    channel = PositionChannel()
    channel.put(1)
    channel.close()
    channel.close(discard=True)

    assert list(channel) == []
    with pytest.raises(ChannelClosed):
        channel.get(timeout=0.1)
