"""Bridges SessionState to a string-keyed store as a single JSON blob.

Nothing in here is allowed to break the session itself: write failures are
logged and swallowed, and anything unreadable on restore is treated as "no
session" so startup always succeeds.
"""

import json
import math
from datetime import date, datetime
from numbers import Real

from pt.common.logger import log
from pt.core.session import DoseEvent, SessionState
from pt.util import format_clock, format_full_timestamp, local_date

STORE_KEY = "pill_tracker_state"


class MalformedSnapshot(ValueError):
    """Stored blob exists but can't be turned back into a session."""


#region === Serialization ===

def state_to_dict(state):
    laps = []
    for i, event in enumerate(state.events):
        laps.append({
            "id": event.sequence_number,
            "pillCount": event.pill_quantity,
            "lapDuration": state.lap_duration(i),
            "totalTime": state.total_time(i),
            "timestamp": event.display_timestamp,
            "fullTimestamp": event.full_timestamp,
            "actualTimestamp": event.recorded_at_ms,
        })
    return {
        "laps": laps,
        "pillsRemaining": state.remaining_inventory,
        "initialPillCount": state.initial_inventory,
        "elapsedTime": state.elapsed_ms,
        "date": state.session_date.isoformat() if state.session_date else None,
        "isRunning": state.is_running,
    }


def _parse_date(raw, tz):
    if not isinstance(raw, str) or not raw:
        raise MalformedSnapshot(f"'date' must be an ISO-8601 string, got {raw!r}")
    try:
        if len(raw) == 10:
            return date.fromisoformat(raw)
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise MalformedSnapshot(f"Unparseable 'date' {raw!r}") from e
    if parsed.tzinfo is not None and tz is not None:
        try:
            parsed = parsed.astimezone(tz)
        except (OverflowError, ValueError) as e:
            raise MalformedSnapshot(f"'date' {raw!r} is out of range") from e
    return parsed.date()


# Ints too big for a float make math.isfinite raise instead of returning False
def _positive_number(value):
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    try:
        return math.isfinite(value) and value > 0
    except OverflowError:
        return False


def _same_quantity(stored, computed):
    if not isinstance(stored, Real):
        return False
    try:
        return abs(stored - computed) <= 1e-9
    except OverflowError:
        return False


def _parse_lap(lap, expected_id, tz):
    if not isinstance(lap, dict):
        raise MalformedSnapshot(f"Lap #{expected_id} is not an object")

    lap_id = lap.get("id")
    if isinstance(lap_id, bool) or lap_id != expected_id:
        raise MalformedSnapshot(f"Expected lap id {expected_id}, got {lap_id!r}")

    quantity = lap.get("pillCount")
    if not _positive_number(quantity):
        raise MalformedSnapshot(f"Lap #{expected_id} has an invalid pillCount {quantity!r}")

    stamp = lap.get("actualTimestamp")
    if isinstance(stamp, float) and stamp.is_integer():
        stamp = int(stamp)
    if isinstance(stamp, bool) or not isinstance(stamp, int):
        raise MalformedSnapshot(f"Lap #{expected_id} has an invalid actualTimestamp {stamp!r}")

    try:
        display, full = format_clock(stamp, tz), format_full_timestamp(stamp, tz)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedSnapshot(f"Lap #{expected_id} actualTimestamp {stamp!r} is out of range") from e

    return DoseEvent(
        sequence_number=expected_id,
        pill_quantity=quantity,
        recorded_at_ms=stamp,
        display_timestamp=display,
        full_timestamp=full,
    )


def state_from_dict(data, tz=None):
    """Rebuild a SessionState from a decoded blob, or raise MalformedSnapshot.

    Remaining inventory and elapsed time are recomputed from the laps; the
    stored values are only compared against, never trusted.
    """
    if not isinstance(data, dict):
        raise MalformedSnapshot("Snapshot root is not an object")

    laps = data.get("laps")
    if not isinstance(laps, list):
        raise MalformedSnapshot("'laps' is missing or not a list")

    initial = data.get("initialPillCount")
    if isinstance(initial, float) and initial.is_integer():
        initial = int(initial)
    if isinstance(initial, bool) or not isinstance(initial, int) or not _positive_number(initial):
        raise MalformedSnapshot(f"'initialPillCount' must be a positive integer, got {initial!r}")

    session_date = _parse_date(data.get("date"), tz)

    events = []
    for i, lap in enumerate(laps):
        event = _parse_lap(lap, i + 1, tz)
        if events and event.recorded_at_ms < events[-1].recorded_at_ms:
            raise MalformedSnapshot(f"Lap #{event.sequence_number} is older than the lap before it")
        events.append(event)

    is_running = data.get("isRunning", True)
    if not isinstance(is_running, bool):
        raise MalformedSnapshot(f"'isRunning' must be a boolean, got {is_running!r}")

    state = SessionState(
        events=tuple(events),
        is_running=is_running and bool(events),
        initial_inventory=initial,
        remaining_inventory=initial - sum(e.pill_quantity for e in events) if events else None,
        session_date=session_date,
    )

    stored_remaining = data.get("pillsRemaining")
    if state.remaining_inventory is not None and not _same_quantity(stored_remaining, state.remaining_inventory):
        log.warning(f"Stored pillsRemaining {stored_remaining!r} disagrees with laps, "
                    f"using recomputed {state.remaining_inventory}")
    stored_elapsed = data.get("elapsedTime")
    if stored_elapsed != state.elapsed_ms:
        log.info(f"Stored elapsedTime {stored_elapsed!r} replaced with {state.elapsed_ms} from lap timestamps")
    return state

#endregion === Serialization ===

#region === Adapter ===

class PersistenceAdapter:
    """Saves, restores and clears one session blob in ``store`` under ``key``.

    When an executor is given, the engine hooks installed by ``attach()``
    submit their work to it instead of running inline, so a slow store
    never holds up the caller.
    """

    def __init__(self, store, key=STORE_KEY, tz=None, executor=None):
        self.store = store
        self.key = key
        self._tz = tz
        self._executor = executor

    def save(self, state):
        try:
            payload = json.dumps(state_to_dict(state))
            self.store.set(self.key, payload)
        except Exception:
            log.error(f"Failed to save session under '{self.key}'", exc_info=True)
            return False
        log.info(f"Saved session with {len(state.events)} doses under '{self.key}'")
        return True

    def restore(self, now_ms):
        """Return today's SessionState, or None if there's nothing usable."""
        try:
            raw = self.store.get(self.key)
        except Exception:
            log.error(f"Failed to read session under '{self.key}'", exc_info=True)
            return None
        if raw is None:
            log.info(f"No stored session under '{self.key}', starting fresh.")
            return None

        # Bad JSON surfaces as ValueError, absurd nesting as RecursionError
        try:
            state = state_from_dict(json.loads(raw), self._tz)
        except (ValueError, RecursionError, TypeError):
            log.warning(f"Stored session under '{self.key}' is unreadable, starting fresh.", exc_info=True)
            return None

        today = local_date(now_ms, self._tz)
        if state.session_date != today:
            log.info(f"Stored session is from {state.session_date}, not today ({today}), ignoring it.")
            return None
        if not state.events:
            return None

        log.info(f"Restored session with {len(state.events)} doses from '{self.key}'")
        return state

    def clear(self):
        try:
            self.store.remove(self.key)
        except Exception:
            log.error(f"Failed to clear session under '{self.key}'", exc_info=True)
            return False
        log.info(f"Cleared stored session under '{self.key}'")
        return True

    # ---------- engine hooks ----------
    def attach(self, engine):
        engine.subscribe(self.handle_change)

    def handle_change(self, event_name, state):
        if event_name == "reset":
            self._dispatch(self.clear)
        else:
            self._dispatch(self.save, state)

    def _dispatch(self, fn, *args):
        if self._executor is None:
            fn(*args)
            return
        try:
            self._executor.submit(fn, *args)
        except RuntimeError:
            log.error(f"Persistence executor refused {fn.__name__}, running inline", exc_info=True)
            fn(*args)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

#endregion === Adapter ===
