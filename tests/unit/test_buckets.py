"""
Unit tests for FLEETWATCH hourly alert buckets.
"""

from datetime import datetime, timedelta, timezone

from services.alerts.buckets import HourlyAlertBuckets
from services.alerts.models import AlertEvent, AlertKind
from tests.conftest import local


def temperature_event(channel_id, ts, value=-25.0):
    return AlertEvent(
        kind=AlertKind.TEMPERATURE,
        channel_id=channel_id,
        channel_name=f"Cámara {channel_id}",
        timestamp=ts,
        temperature=value,
        min_threshold=-21.0,
        max_threshold=15.0,
        values=(value, value, value),
    )


def connection_event(channel_id, ts, kind=AlertKind.DISCONNECTED):
    return AlertEvent(
        kind=kind,
        channel_id=channel_id,
        channel_name=f"Medidor {channel_id}",
        timestamp=ts,
        incident_started_at=ts,
    )


class TestWindows:
    """Tests for hour window arithmetic."""

    def test_window_truncates_to_local_hour(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        window = buckets.window_for(local(2024, 6, 12, 11, 47, 13))
        assert window == local(2024, 6, 12, 11, 0)
        assert buckets.hour_key(window) == "2024-06-12-11"

    def test_window_from_utc_timestamp(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        window = buckets.window_for(datetime(2024, 6, 12, 15, 10, tzinfo=timezone.utc))
        assert buckets.hour_key(window) == "2024-06-12-11"

    def test_next_window(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        window = local(2024, 6, 12, 23, 0)
        assert buckets.hour_key(buckets.next_window(window)) == "2024-06-13-00"

    def test_repeated_hour_at_dst_fall_back(self):
        """Test both 23:00 hours of a fall-back night get their own window."""
        buckets = HourlyAlertBuckets("America/Santiago")
        # 2024-04-07 00:00 -03 falls back to 2024-04-06 23:00 -04
        first = datetime(2024, 4, 7, 2, 30, tzinfo=timezone.utc)
        second = datetime(2024, 4, 7, 3, 30, tzinfo=timezone.utc)
        buckets.append(connection_event("1", first))
        buckets.append(connection_event("1", second))

        assert len(buckets) == 2
        assert [buckets.hour_key(w) for w in buckets.windows()] == ["2024-04-06-23", "2024-04-06-23"]
        assert buckets.windows_before(second) == [datetime(2024, 4, 7, 2, 0, tzinfo=timezone.utc)]

    def test_windows_before_excludes_current(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        buckets.append(temperature_event("1", local(2024, 6, 12, 9, 10)))
        buckets.append(temperature_event("1", local(2024, 6, 12, 10, 10)))
        buckets.append(temperature_event("1", local(2024, 6, 12, 11, 10)))

        closed = buckets.windows_before(local(2024, 6, 12, 11, 30))

        assert [buckets.hour_key(w) for w in closed] == ["2024-06-12-09", "2024-06-12-10"]


class TestAppendAndDrain:
    """Tests for appending and draining."""

    def test_events_grouped_by_channel_in_order(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        first = connection_event("1", local(2024, 6, 12, 9, 5))
        second = connection_event("1", local(2024, 6, 12, 9, 50), AlertKind.CONNECTED)
        other = connection_event("2", local(2024, 6, 12, 9, 20))
        for event in (first, other, second):
            buckets.append(event)

        window = local(2024, 6, 12, 9, 0)
        assert buckets.events(window, "1") == [first, second]
        assert len(buckets.events(window)) == 3

    def test_drain_removes_window(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        window = buckets.append(connection_event("1", local(2024, 6, 12, 9, 5)))

        snapshot = buckets.drain(window)

        assert list(snapshot) == ["1"]
        assert window not in buckets
        assert buckets.drain(window) == {}

    def test_snapshot_is_independent(self):
        """Test events appended after a drain do not appear in the snapshot."""
        buckets = HourlyAlertBuckets("America/Santiago")
        window = buckets.append(connection_event("1", local(2024, 6, 12, 9, 5)))
        snapshot = buckets.drain(window)
        buckets.append(connection_event("1", local(2024, 6, 12, 9, 6)))

        assert len(snapshot["1"]) == 1


class TestCarryForward:
    """Tests for moving held temperature events."""

    def test_only_temperature_events_move(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        source = local(2024, 6, 12, 9, 0)
        target = local(2024, 6, 12, 10, 0)
        buckets.append(temperature_event("1", local(2024, 6, 12, 9, 15)))
        buckets.append(connection_event("1", local(2024, 6, 12, 9, 20)))

        moved = buckets.carry_forward(source, target)

        assert moved == 1
        remaining = buckets.events(source, "1")
        assert [e.kind for e in remaining] == [AlertKind.DISCONNECTED]
        carried = buckets.events(target, "1")
        assert len(carried) == 1
        assert carried[0].postponed is True
        assert carried[0].values == (-25.0, -25.0, -25.0)

    def test_carry_preserves_existing_target_events(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        source = local(2024, 6, 12, 9, 0)
        target = local(2024, 6, 12, 10, 0)
        buckets.append(temperature_event("1", local(2024, 6, 12, 9, 15), -30.0))
        buckets.append(temperature_event("1", local(2024, 6, 12, 10, 5), -28.0))

        buckets.carry_forward(source, target)

        assert source not in buckets
        assert [e.temperature for e in buckets.events(target, "1")] == [-28.0, -30.0]

    def test_repeated_forwarding_loses_nothing(self):
        """Test events survive being carried across many windows."""
        buckets = HourlyAlertBuckets("America/Santiago")
        for channel in ("1", "2", "3"):
            buckets.append(temperature_event(channel, local(2024, 6, 12, 9, 15)))

        window = local(2024, 6, 12, 9, 0)
        for _ in range(8):
            target = buckets.next_window(window)
            buckets.carry_forward(window, target)
            window = target

        assert len(buckets) == 1
        assert sorted(e.channel_id for e in buckets.events(window)) == ["1", "2", "3"]
        assert buckets.stats()["temperature_events"] == 3


class TestCleanup:
    """Tests for stale window removal and stats."""

    def test_drop_before(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        buckets.append(temperature_event("1", local(2024, 6, 10, 9, 15)))
        buckets.append(connection_event("1", local(2024, 6, 10, 9, 20)))
        buckets.append(temperature_event("2", local(2024, 6, 12, 9, 15)))

        lost = buckets.drop_before(local(2024, 6, 12, 0, 0) - timedelta(hours=1))

        assert lost == 2
        assert len(buckets) == 1

    def test_stats(self):
        buckets = HourlyAlertBuckets("America/Santiago")
        buckets.append(temperature_event("1", local(2024, 6, 12, 9, 15)))
        buckets.append(connection_event("2", local(2024, 6, 12, 10, 15)))
        buckets.append(connection_event("3", local(2024, 6, 12, 10, 16)))

        assert buckets.stats() == {
            "windows": 2,
            "temperature_events": 1,
            "connection_events": 2,
        }
