"""Tests for the read side, alert lifecycle, and cleanup sweeps."""

from datetime import timedelta

import pytest

from weatherhub.errors import NotFound, ValidationFailed
from weatherhub.models.alert import AlertRecord
from weatherhub.models.minutely import MinutelyRecord
from weatherhub.models.weather_record import WeatherRecord
from weatherhub.services.query import QueryService, summarize_precipitation

from conftest import NOW


def _weather(db, loc, data_type, at, **kw):
    row = WeatherRecord(
        location_id=loc.id, data_type=data_type, data_timestamp=at,
        units="metric", is_forecast=data_type in ("hourly", "daily"), **kw,
    )
    db.add(row)
    db.commit()
    return row


def _minute(db, loc, at, precipitation=0.0, probability=None):
    row = MinutelyRecord(
        location_id=loc.id, data_timestamp=at, forecast_timestamp=NOW,
        precipitation=precipitation, precipitation_probability=probability,
    )
    db.add(row)
    db.commit()
    return row


def _alert(db, loc, event="Wind Advisory", severity="moderate", start=None, end=None, **kw):
    row = AlertRecord(
        location_id=loc.id, sender_name="NWS", event=event, severity=severity,
        start_time=start or NOW - timedelta(hours=1),
        end_time=end or NOW + timedelta(hours=1), **kw,
    )
    db.add(row)
    db.commit()
    return row


class TestWeatherQueries:
    def test_current_latest_by_data_timestamp(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "current", NOW - timedelta(minutes=10), temperature=1.0)
        _weather(db, loc, "current", NOW, temperature=2.0)
        assert QueryService(db, clock).current(loc.id).temperature == 2.0

    def test_current_none_when_empty(self, db, clock, make_location):
        loc = make_location()
        assert QueryService(db, clock).current(loc.id) is None

    def test_unknown_location(self, db, clock):
        with pytest.raises(NotFound):
            QueryService(db, clock).current(42)

    def test_hourly_future_only_and_limited(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "hourly", NOW - timedelta(hours=1), temperature=0.0)
        for i in range(5):
            _weather(db, loc, "hourly", NOW + timedelta(hours=i + 1), temperature=float(i))
        rows = QueryService(db, clock).hourly(loc.id, hours=3)
        assert [r.temperature for r in rows] == [0.0, 1.0, 2.0]

    @pytest.mark.parametrize("hours", [0, 49])
    def test_hourly_bounds(self, db, clock, make_location, hours):
        loc = make_location()
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).hourly(loc.id, hours=hours)

    def test_daily_includes_today(self, db, clock, make_location):
        loc = make_location()
        today = NOW.replace(hour=12, minute=0, second=0)
        _weather(db, loc, "daily", today - timedelta(days=1), temperature_max=1.0)
        _weather(db, loc, "daily", today, temperature_max=2.0)
        _weather(db, loc, "daily", today + timedelta(days=1), temperature_max=3.0)
        rows = QueryService(db, clock).daily(loc.id, days=7)
        assert [r.temperature_max for r in rows] == [2.0, 3.0]

    def test_daily_bounds(self, db, clock, make_location):
        loc = make_location()
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).daily(loc.id, days=9)

    def test_historical_range(self, db, clock, make_location):
        loc = make_location()
        for d in (10, 20, 30):
            _weather(db, loc, "historical", NOW - timedelta(days=d), temperature=float(d))
        rows = QueryService(db, clock).historical(
            loc.id, NOW - timedelta(days=25), NOW - timedelta(days=5),
        )
        assert [r.temperature for r in rows] == [20.0, 10.0]

    def test_historical_reversed_range(self, db, clock, make_location):
        loc = make_location()
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).historical(loc.id, NOW, NOW - timedelta(days=1))

    def test_historical_mixed_naive_and_aware_bounds(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "historical", NOW - timedelta(days=10), temperature=10.0)
        naive_start = (NOW - timedelta(days=25)).replace(tzinfo=None)
        rows = QueryService(db, clock).historical(loc.id, naive_start, NOW - timedelta(days=5))
        assert [r.temperature for r in rows] == [10.0]

        with pytest.raises(ValidationFailed):
            QueryService(db, clock).historical(loc.id, NOW.replace(tzinfo=None), NOW - timedelta(days=1))

    def test_list_weather_filters_type(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "current", NOW)
        _weather(db, loc, "hourly", NOW + timedelta(hours=1))
        rows = QueryService(db, clock).list_weather(data_type="hourly")
        assert [r.data_type for r in rows] == ["hourly"]

    def test_list_weather_bad_type(self, db, clock):
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).list_weather(data_type="weekly")

    def test_get_weather_missing(self, db, clock):
        with pytest.raises(NotFound):
            QueryService(db, clock).get_weather(1)


class TestMinutelyQueries:
    def test_next_hour_window(self, db, clock, make_location):
        loc = make_location()
        _minute(db, loc, NOW - timedelta(minutes=1))
        for i in range(3):
            _minute(db, loc, NOW + timedelta(minutes=i))
        _minute(db, loc, NOW + timedelta(minutes=61))
        rows = QueryService(db, clock).minutely_next_hour(loc.id)
        assert len(rows) == 3

    def test_precipitation_window_summary(self, db, clock, make_location):
        loc = make_location()
        _minute(db, loc, NOW, 0.0, 0.2)
        _minute(db, loc, NOW + timedelta(minutes=1), 0.5, 0.6)
        _minute(db, loc, NOW + timedelta(minutes=2), 1.5, 1.0)
        points, summary = QueryService(db, clock).precipitation_window(loc.id, minutes=30)
        assert len(points) == 3
        assert summary["total_precipitation"] == 2.0
        assert summary["max_precipitation"] == 1.5
        assert summary["minutes_with_precipitation"] == 2
        assert summary["avg_probability"] == 60.0

    def test_precipitation_window_mixed_bounds(self, db, clock, make_location):
        loc = make_location()
        _minute(db, loc, NOW + timedelta(minutes=5), 0.3)
        svc = QueryService(db, clock)
        points, _ = svc.precipitation_window(
            loc.id, start=NOW.replace(tzinfo=None), end=NOW + timedelta(minutes=10),
        )
        assert len(points) == 1
        with pytest.raises(ValidationFailed):
            svc.precipitation_window(loc.id, start=NOW, end=NOW.replace(tzinfo=None) - timedelta(minutes=1))

    @pytest.mark.parametrize("minutes", [0, 121])
    def test_precipitation_window_bounds(self, db, clock, make_location, minutes):
        loc = make_location()
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).precipitation_window(loc.id, minutes=minutes)

    def test_recent_grouped_by_hour(self, db, clock, make_location):
        loc = make_location()
        base = NOW.replace(minute=0, second=0)
        _minute(db, loc, base - timedelta(minutes=10), 0.2)
        _minute(db, loc, base + timedelta(minutes=5), 0.0)
        _minute(db, loc, base + timedelta(minutes=6), 0.4)
        grouped = QueryService(db, clock).minutely_recent(loc.id, grouped=True)
        this_hour = grouped[base.strftime("%Y-%m-%d %H:00")]
        assert this_hour["data_points"] == 2
        assert this_hour["minutes_with_precipitation"] == 1
        assert "total_minutes" not in this_hour
        assert len(grouped) == 2

    def test_summary_of_nothing(self):
        summary = summarize_precipitation([])
        assert summary["total_precipitation"] == 0
        assert summary["avg_probability"] is None
        assert summary["total_minutes"] == 0


class TestAlertLifecycle:
    def test_acknowledge_keeps_active(self, db, clock, make_location):
        alert = _alert(db, make_location())
        updated = QueryService(db, clock).acknowledge_alert(alert.id)
        assert updated.acknowledged_at == NOW
        assert updated.is_active is True

    def test_acknowledge_twice(self, db, clock, make_location):
        alert = _alert(db, make_location())
        svc = QueryService(db, clock)
        svc.acknowledge_alert(alert.id)
        clock.advance(minutes=5)
        assert svc.acknowledge_alert(alert.id).acknowledged_at == NOW + timedelta(minutes=5)

    def test_resolve_is_idempotent(self, db, clock, make_location):
        alert = _alert(db, make_location())
        svc = QueryService(db, clock)
        svc.resolve_alert(alert.id)
        again = svc.resolve_alert(alert.id)
        assert again.is_active is False
        assert again.resolved_at is not None

    def test_missing_alert(self, db, clock):
        with pytest.raises(NotFound):
            QueryService(db, clock).acknowledge_alert(404)

    def test_active_alerts_most_severe_first(self, db, clock, make_location):
        loc = make_location()
        _alert(db, loc, event="Minor thing", severity="minor")
        _alert(db, loc, event="Tornado Warning", severity="extreme")
        _alert(db, loc, event="Flood Watch", severity="severe")
        _alert(db, loc, event="Later", severity="extreme",
               start=NOW + timedelta(hours=2), end=NOW + timedelta(hours=4))
        _alert(db, loc, event="Resolved", severity="extreme", is_active=False)
        events = [a.event for a in QueryService(db, clock).active_alerts(loc.id)]
        assert events == ["Tornado Warning", "Flood Watch", "Minor thing"]

    def test_alerts_by_severity(self, db, clock, make_location):
        loc = make_location()
        _alert(db, loc, event="A", severity="severe")
        _alert(db, loc, event="B", severity="minor")
        rows = QueryService(db, clock).alerts_by_severity("severe")
        assert [a.event for a in rows] == ["A"]

    def test_alerts_bad_severity(self, db, clock):
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).alerts_by_severity("apocalyptic")

    def test_list_alerts_limit_bounds(self, db, clock):
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).list_alerts(limit=1001)

    def test_statistics(self, db, clock, make_location):
        loc = make_location()
        a = _alert(db, loc, event="Wind Advisory", severity="moderate")
        _alert(db, loc, event="Wind Advisory", severity="moderate", start=NOW - timedelta(hours=3))
        b = _alert(db, loc, event="Flood Watch", severity="severe")
        svc = QueryService(db, clock)
        svc.acknowledge_alert(a.id)
        svc.resolve_alert(b.id)

        stats = svc.alert_statistics(location_id=loc.id)

        assert stats["total_alerts"] == 3
        assert stats["active_alerts"] == 2
        assert stats["acknowledged_alerts"] == 1
        assert stats["resolved_alerts"] == 1
        assert stats["by_severity"]["moderate"] == 2
        assert stats["by_severity"]["extreme"] == 0
        assert stats["by_event_type"] == {"Wind Advisory": 2, "Flood Watch": 1}


class TestCleanup:
    def test_weather_cleanup_counts(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "historical", NOW - timedelta(days=40))
        _weather(db, loc, "historical", NOW - timedelta(days=31))
        _weather(db, loc, "historical", NOW - timedelta(days=5))
        result = QueryService(db, clock).cleanup_weather(days_old=30)
        assert result.deleted == 2
        assert result.cutoff == NOW - timedelta(days=30)
        assert db.query(WeatherRecord).count() == 1

    def test_weather_cleanup_nothing_to_do(self, db, clock, make_location):
        make_location()
        assert QueryService(db, clock).cleanup_weather(days_old=30).deleted == 0

    def test_weather_cleanup_by_type(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "historical", NOW - timedelta(days=40))
        _weather(db, loc, "daily", NOW - timedelta(days=40))
        result = QueryService(db, clock).cleanup_weather(days_old=30, data_type="daily")
        assert result.deleted == 1

    def test_alert_cleanup_resolved_only(self, db, clock, make_location):
        loc = make_location()
        old = NOW - timedelta(days=60)
        _alert(db, loc, event="Old resolved", start=old, end=old + timedelta(hours=2), resolved_at=old)
        _alert(db, loc, event="Old open", start=old, end=old + timedelta(hours=2))
        svc = QueryService(db, clock)
        assert svc.cleanup_alerts(days_old=30).deleted == 1
        assert svc.cleanup_alerts(days_old=30, resolved_only=False).deleted == 1
        assert db.query(AlertRecord).count() == 0

    def test_minutely_cleanup(self, db, clock, make_location):
        loc = make_location()
        _minute(db, loc, NOW - timedelta(hours=7))
        _minute(db, loc, NOW - timedelta(hours=1))
        assert QueryService(db, clock).cleanup_minutely(hours_old=6).deleted == 1

    def test_cleanup_bounds(self, db, clock):
        with pytest.raises(ValidationFailed):
            QueryService(db, clock).cleanup_weather(days_old=0)

    def test_table_counts(self, db, clock, make_location):
        loc = make_location()
        _weather(db, loc, "current", NOW)
        _alert(db, loc)
        counts = QueryService(db, clock).table_counts()
        assert counts == {
            "locations": 1, "weather_records": 1, "minutely_records": 0, "weather_alerts": 1,
        }
