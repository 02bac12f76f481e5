from datetime import timedelta

import pytest

from ravendb_exporter.core.duration import parse_duration, parse_interval


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.02:03:04.5000000", 93784.5),
        ("00:00:00", 0.0),
        ("00:01:30", 90.0),
        ("3.00:00:00", 3 * 86400.0),
        ("00:00:01.0000001", 1.0000001),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == pytest.approx(expected, abs=1e-9)


@pytest.mark.parametrize("text", ["not-a-duration", "", None, "1:2:3"])
def test_parse_duration_unmatched_is_zero(text):
    assert parse_duration(text) == 0.0


@pytest.mark.parametrize(
    "value, expected",
    [
        ("30s", timedelta(seconds=30)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("250ms", timedelta(milliseconds=250)),
        ("1.5m", timedelta(seconds=90)),
        (15, timedelta(seconds=15)),
        ("45", timedelta(seconds=45)),
        (timedelta(minutes=2), timedelta(minutes=2)),
    ],
)
def test_parse_interval(value, expected):
    assert parse_interval(value) == expected


@pytest.mark.parametrize("value", ["soon", "10 parsecs", True, [1]])
def test_parse_interval_invalid(value):
    with pytest.raises(ValueError):
        parse_interval(value)
