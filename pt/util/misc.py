import time
from datetime import datetime, timezone


# Current wall-clock time as integer epoch milliseconds. This is the default clock handed to the engine.
def epoch_millis():
    return time.time_ns() // 1_000_000


# Converts epoch milliseconds into an aware datetime in the given zone (UTC if none given).
def from_epoch_millis(ms, tz=None):
    return datetime.fromtimestamp(ms / 1000, tz or timezone.utc)


# The civil calendar date an instant falls on in the given zone. Day boundaries are always judged this way.
def local_date(ms, tz=None):
    return from_epoch_millis(ms, tz).date()


# 12-hour wall clock time without a leading zero, e.g. "2:03:11 PM"
def format_clock(ms, tz=None):
    dt = from_epoch_millis(ms, tz)
    return f"{dt.hour % 12 or 12}:{dt:%M:%S} {'AM' if dt.hour < 12 else 'PM'}"


# Date plus clock time, e.g. "10/18/2026, 2:03:11 PM"
def format_full_timestamp(ms, tz=None):
    dt = from_epoch_millis(ms, tz)
    return f"{dt.month}/{dt.day}/{dt.year}, {format_clock(ms, tz)}"


def format_duration(ms, centis=False):
    """Format a millisecond duration as HH:MM:SS (optionally .cc). Negative values clamp to zero."""
    ms = max(0, int(ms))
    seconds, rem_ms = divmod(ms, 1000)
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    text = f"{h:02d}:{m:02d}:{s:02d}"
    if centis:
        text += f".{rem_ms // 10:02d}"
    return text


# Pill counts display as whole numbers where possible, so 2.0 -> "2" but 1.5 stays "1.5"
def format_quantity(value):
    if value is None:
        return "-"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
