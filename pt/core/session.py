"""Dose session state machine. Pure logic, no UI, no storage.

Elapsed time is never accumulated from ticks.  It is always the difference
between the first and newest dose timestamps in the log, so missed or late
ticks can't make it drift.
"""

import math
import threading
from dataclasses import dataclass, replace
from datetime import date
from numbers import Real

from pt.common.logger import log
from pt.util import epoch_millis, format_clock, format_full_timestamp, local_date

DEFAULT_INITIAL_INVENTORY = 10


class PreconditionViolation(RuntimeError):
    """An operation was called in a state that doesn't allow it.  Nothing was changed."""


class InvalidQuantity(PreconditionViolation):
    """A pill quantity or inventory count was not a usable number."""


@dataclass(frozen=True)
class DoseEvent:
    sequence_number: int
    pill_quantity: float
    recorded_at_ms: int
    display_timestamp: str = ""
    full_timestamp: str = ""


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of a dosing session.

    ``remaining_inventory`` is None until the first dose is recorded, and
    afterwards always equals ``initial_inventory`` minus the total quantity
    in ``events``.  It is allowed to go negative.
    """

    events: tuple = ()
    is_running: bool = False
    initial_inventory: int = DEFAULT_INITIAL_INVENTORY
    remaining_inventory: float | None = None
    session_date: date | None = None

    @property
    def started(self):
        return bool(self.events)

    @property
    def elapsed_ms(self):
        if len(self.events) <= 1:
            return 0
        return self.events[-1].recorded_at_ms - self.events[0].recorded_at_ms

    @property
    def total_taken(self):
        return sum(e.pill_quantity for e in self.events)

    def lap_duration(self, index):
        """Milliseconds between dose ``index`` and the one before it (0 for the first dose)."""
        if index <= 0:
            return 0
        return self.events[index].recorded_at_ms - self.events[index - 1].recorded_at_ms

    def total_time(self, index):
        return self.events[index].recorded_at_ms - self.events[0].recorded_at_ms

    @property
    def last_lap_ms(self):
        if not self.events:
            return 0
        return self.lap_duration(len(self.events) - 1)


def _check_quantity(quantity):
    if isinstance(quantity, bool) or not isinstance(quantity, Real):
        raise InvalidQuantity(f"Pill quantity must be a number, got {quantity!r}")
    if not math.isfinite(quantity) or quantity <= 0:
        raise InvalidQuantity(f"Pill quantity must be positive, got {quantity!r}")
    return quantity


def _check_inventory(count):
    if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
        raise InvalidQuantity(f"Initial inventory must be a positive whole number, got {count!r}")
    return count


class SessionEngine:
    """Owns one SessionState and the operations that move it forward.

    Every mutating call returns the new state and notifies subscribers with
    ``(event_name, state)``.  Mutations run under a single lock; ``state``
    and ``tick()`` read the current snapshot without locking.
    """

    def __init__(self, clock=epoch_millis, tz=None, default_inventory=DEFAULT_INITIAL_INVENTORY, state=None):
        self._clock = clock
        self._tz = tz
        self._default_inventory = _check_inventory(default_inventory)
        self._state = state if state is not None else SessionState(initial_inventory=self._default_inventory)
        self._lock = threading.Lock()
        self._subscribers = []

    @property
    def state(self):
        return self._state

    @property
    def default_inventory(self):
        return self._default_inventory

    # ---------- pub-sub ----------
    def subscribe(self, fn):
        """Register ``fn(event_name, state)``, called after every mutation."""
        self._subscribers.append(fn)

    def _notify(self, event_name, state):
        for fn in list(self._subscribers):
            try:
                fn(event_name, state)
            except Exception:
                log.error(f"Subscriber {fn!r} failed while handling '{event_name}'", exc_info=True)

    def _commit(self, event_name, state):
        self._state = state
        self._notify(event_name, state)
        return state

    def _make_event(self, sequence_number, quantity, now):
        return DoseEvent(
            sequence_number=sequence_number,
            pill_quantity=quantity,
            recorded_at_ms=now,
            display_timestamp=format_clock(now, self._tz),
            full_timestamp=format_full_timestamp(now, self._tz),
        )

    # ---------- operations ----------
    def start(self, first_dose_quantity, initial_inventory=None):
        with self._lock:
            current = self._state
            # Already have a log, so start just means "keep going"
            if current.events:
                log.debug("start() called on an existing session, resuming instead")
                return self._commit("resume", replace(current, is_running=True))

            quantity = _check_quantity(first_dose_quantity)
            inventory = _check_inventory(self._default_inventory if initial_inventory is None else initial_inventory)
            now = self._clock()
            first = self._make_event(1, quantity, now)
            state = SessionState(
                events=(first,),
                is_running=True,
                initial_inventory=inventory,
                remaining_inventory=inventory - quantity,
                session_date=local_date(now, self._tz),
            )
            log.debug(f"Started session at {now} with first dose {quantity} of {inventory} pills")
            return self._commit("start", state)

    def pause(self):
        with self._lock:
            current = self._state
            if not current.is_running:
                return current
            log.debug("Paused session")
            return self._commit("pause", replace(current, is_running=False))

    def resume(self):
        with self._lock:
            current = self._state
            if not current.events:
                raise PreconditionViolation("Cannot resume before a session has been started")
            if current.is_running:
                return current
            log.debug("Resumed session")
            return self._commit("resume", replace(current, is_running=True))

    def record_dose(self, quantity):
        with self._lock:
            current = self._state
            if not current.events:
                raise PreconditionViolation("Cannot record a dose before start()")
            if not current.is_running:
                raise PreconditionViolation("Cannot record a dose while the session is paused")
            quantity = _check_quantity(quantity)

            # Never let a backwards clock step reorder the log
            now = max(self._clock(), current.events[-1].recorded_at_ms)
            events = current.events + (self._make_event(len(current.events) + 1, quantity, now),)
            state = replace(
                current,
                events=events,
                remaining_inventory=current.initial_inventory - sum(e.pill_quantity for e in events),
            )
            log.debug(f"Recorded dose #{len(events)} of {quantity}, lap {state.last_lap_ms}ms, "
                      f"remaining {state.remaining_inventory}")
            return self._commit("dose", state)

    def reset(self):
        with self._lock:
            log.debug("Reset session")
            return self._commit("reset", SessionState(initial_inventory=self._default_inventory))

    def tick(self, now=None):
        """Current elapsed milliseconds for display.  Read-only."""
        state = self._state
        if not state.events:
            return 0
        if state.is_running:
            if now is None:
                now = self._clock()
            return max(0, now - state.events[0].recorded_at_ms)
        return state.elapsed_ms
