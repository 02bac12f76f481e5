import re
from datetime import timedelta

from ravendb_exporter.config.logging import get_logger

logger = get_logger(__name__)

TIMESPAN_RE = re.compile(
    r"((?P<days>\d+)\.)?(?P<hours>\d{2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})(\.(?P<fraction>\d{7}))?"
)
FRACTION_SCALE = 10_000_000

_GO_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_GO_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str | None) -> float:
    """
    Convert a .NET TimeSpan string (``[d.]hh:mm:ss[.fffffff]``) to seconds.

    Missing components count as zero. Text that does not look like a
    TimeSpan at all yields 0.0 instead of raising: RavenDB occasionally
    reports an empty CPU time and a zero reading is preferable to a failed
    scrape.
    """
    match = TIMESPAN_RE.search(text or "")
    if not match:
        logger.debug(f"Unrecognised TimeSpan {text!r}, using 0")
        return 0.0

    parts = match.groupdict()
    result = 0.0
    if parts["days"]:
        result += int(parts["days"]) * 24 * 60 * 60
    result += int(parts["hours"]) * 60 * 60
    result += int(parts["minutes"]) * 60
    result += int(parts["seconds"])
    if parts["fraction"]:
        result += int(parts["fraction"]) / FRACTION_SCALE
    return result


def parse_interval(value) -> timedelta:
    """
    Convert a query interval to a timedelta.

    Accepts a timedelta, a number of seconds, a numeric string or a Go style
    duration string such as ``"1h30m"``, ``"15s"`` or ``"250ms"``.

    Raises:
        ValueError: If the value cannot be interpreted
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid interval: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid interval: {value!r}")

    text = value.strip()
    if not text:
        return timedelta(0)
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    position = 0
    seconds = 0.0
    while position < len(text):
        match = _GO_DURATION_RE.match(text, position)
        if not match:
            raise ValueError(f"Invalid interval: {value!r}")
        number, unit = match.groups()
        seconds += float(number) * _GO_UNITS[unit]
        position = match.end()
    return timedelta(seconds=seconds)
