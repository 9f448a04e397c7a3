"""Tests for the dose session engine: ordering, inventory and timestamp-derived elapsed time.

Covers: pt.core.session
"""

import random
import unittest
from datetime import date, timezone

from pt.core.session import (
    InvalidQuantity,
    PreconditionViolation,
    SessionEngine,
    SessionState,
)


class FakeClock:
    """Hand-driven epoch-millis clock."""

    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


def _engine(now=0, default_inventory=10):
    clock = FakeClock(now)
    return SessionEngine(clock=clock, tz=timezone.utc, default_inventory=default_inventory), clock


# ──────────────────────────────────────────────────────────────────────────
# Walkthrough
# ──────────────────────────────────────────────────────────────────────────

class TestDoseWalkthrough(unittest.TestCase):
    """The start → dose → dose → reset walkthrough, checked at each step."""

    def test_full_walkthrough(self):
        engine, clock = _engine()
        notifications = []
        engine.subscribe(lambda name, state: notifications.append(name))

        state = engine.start(2, 10)
        self.assertEqual(len(state.events), 1)
        self.assertEqual(state.remaining_inventory, 8)
        self.assertEqual(state.elapsed_ms, 0)
        self.assertTrue(state.is_running)

        clock.now = 5000
        state = engine.record_dose(1)
        self.assertEqual(len(state.events), 2)
        self.assertEqual(state.remaining_inventory, 7)
        self.assertEqual(state.elapsed_ms, 5000)
        self.assertEqual(state.last_lap_ms, 5000)

        clock.now = 12000
        state = engine.record_dose(1.5)
        self.assertEqual(len(state.events), 3)
        self.assertEqual(state.remaining_inventory, 5.5)
        self.assertEqual(state.elapsed_ms, 12000)
        self.assertEqual(state.last_lap_ms, 7000)

        state = engine.reset()
        self.assertEqual(state.events, ())
        self.assertIsNone(state.remaining_inventory)
        self.assertFalse(state.is_running)
        self.assertEqual(notifications, ["start", "dose", "dose", "reset"])

    def test_each_call_returns_a_new_snapshot(self):
        engine, clock = _engine()
        first = engine.start(1, 5)
        clock.now = 100
        second = engine.record_dose(1)
        self.assertIsNot(first, second)
        self.assertEqual(len(first.events), 1)
        self.assertIs(engine.state, second)


# ──────────────────────────────────────────────────────────────────────────
# start / pause / resume
# ──────────────────────────────────────────────────────────────────────────

class TestLifecycle(unittest.TestCase):

    def test_fresh_engine_is_empty_and_stopped(self):
        engine, _ = _engine(default_inventory=30)
        state = engine.state
        self.assertFalse(state.started)
        self.assertFalse(state.is_running)
        self.assertIsNone(state.remaining_inventory)
        self.assertEqual(state.initial_inventory, 30)
        self.assertEqual(engine.tick(99999), 0)

    def test_start_uses_default_inventory(self):
        engine, _ = _engine(default_inventory=20)
        state = engine.start(1)
        self.assertEqual(state.initial_inventory, 20)
        self.assertEqual(state.remaining_inventory, 19)

    def test_start_sets_session_date_from_clock(self):
        # 2025-10-09T08:53:20Z
        engine, _ = _engine(now=1_760_000_000_000)
        state = engine.start(1, 10)
        self.assertEqual(state.session_date, date(2025, 10, 9))
        self.assertEqual(state.events[0].display_timestamp, "8:53:20 AM")
        self.assertEqual(state.events[0].full_timestamp, "10/9/2025, 8:53:20 AM")

    def test_start_on_existing_session_only_resumes(self):
        engine, clock = _engine()
        engine.start(2, 10)
        engine.pause()
        clock.now = 4000
        state = engine.start(5, 50)
        self.assertTrue(state.is_running)
        self.assertEqual(len(state.events), 1)
        self.assertEqual(state.initial_inventory, 10)
        self.assertEqual(state.remaining_inventory, 8)

    def test_pause_and_resume_leave_log_untouched(self):
        engine, clock = _engine()
        engine.start(1, 10)
        clock.now = 1000
        before = engine.record_dose(1)
        paused = engine.pause()
        self.assertFalse(paused.is_running)
        self.assertEqual(paused.events, before.events)
        clock.now = 60000
        resumed = engine.resume()
        self.assertTrue(resumed.is_running)
        self.assertEqual(resumed.events, before.events)

    def test_pause_on_empty_session_is_noop(self):
        engine, _ = _engine()
        calls = []
        engine.subscribe(lambda name, state: calls.append(name))
        state = engine.pause()
        self.assertFalse(state.is_running)
        self.assertEqual(calls, [])

    def test_resume_before_start_rejected(self):
        engine, _ = _engine()
        with self.assertRaises(PreconditionViolation):
            engine.resume()
        self.assertFalse(engine.state.is_running)

    def test_reset_reverts_to_default_inventory(self):
        engine, _ = _engine(default_inventory=12)
        engine.start(1, 90)
        state = engine.reset()
        self.assertEqual(state.initial_inventory, 12)
        self.assertIsNone(state.session_date)

    def test_start_after_reset_begins_new_log(self):
        engine, clock = _engine()
        engine.start(1, 10)
        clock.now = 500
        engine.record_dose(1)
        engine.reset()
        clock.now = 9000
        state = engine.start(3, 10)
        self.assertEqual([e.sequence_number for e in state.events], [1])
        self.assertEqual(state.events[0].recorded_at_ms, 9000)
        self.assertEqual(state.remaining_inventory, 7)


# ──────────────────────────────────────────────────────────────────────────
# record_dose
# ──────────────────────────────────────────────────────────────────────────

class TestRecordDose(unittest.TestCase):

    def test_dose_before_start_rejected(self):
        engine, _ = _engine()
        with self.assertRaises(PreconditionViolation):
            engine.record_dose(1)
        self.assertEqual(engine.state, SessionState(initial_inventory=10))

    def test_dose_while_paused_rejected(self):
        engine, _ = _engine()
        engine.start(1, 10)
        engine.pause()
        with self.assertRaises(PreconditionViolation):
            engine.record_dose(1)
        self.assertEqual(len(engine.state.events), 1)

    def test_invalid_quantities_rejected(self):
        engine, _ = _engine()
        engine.start(1, 10)
        for bad in (0, -1, float("nan"), float("inf"), "2", None, True):
            with self.subTest(quantity=bad):
                with self.assertRaises(InvalidQuantity):
                    engine.record_dose(bad)
        self.assertEqual(len(engine.state.events), 1)
        self.assertEqual(engine.state.remaining_inventory, 9)

    def test_invalid_inventory_rejected(self):
        engine, _ = _engine()
        for bad in (0, -5, 2.5, "10", True):
            with self.subTest(inventory=bad):
                with self.assertRaises(InvalidQuantity):
                    engine.start(1, bad)
        self.assertFalse(engine.state.started)

    def test_invalid_quantity_is_a_precondition_violation(self):
        self.assertTrue(issubclass(InvalidQuantity, PreconditionViolation))

    def test_inventory_goes_negative_without_clamping(self):
        engine, clock = _engine()
        engine.start(2, 3)
        clock.now = 10
        state = engine.record_dose(2)
        self.assertEqual(state.remaining_inventory, -1)
        clock.now = 20
        state = engine.record_dose(0.5)
        self.assertEqual(state.remaining_inventory, -1.5)

    def test_sequence_numbers_are_gap_free(self):
        engine, clock = _engine()
        engine.start(1, 100)
        for i in range(1, 10):
            clock.now = i * 1000
            engine.record_dose(1)
        self.assertEqual([e.sequence_number for e in engine.state.events], list(range(1, 11)))

    def test_backwards_clock_does_not_reorder_log(self):
        engine, clock = _engine(now=10_000)
        engine.start(1, 10)
        clock.now = 4_000
        state = engine.record_dose(1)
        self.assertEqual(state.events[-1].recorded_at_ms, 10_000)
        self.assertEqual(state.elapsed_ms, 0)

    def test_lap_and_total_per_event(self):
        engine, clock = _engine()
        engine.start(1, 10)
        for t in (3000, 3000, 10000):
            clock.now = t
            engine.record_dose(1)
        state = engine.state
        self.assertEqual([state.lap_duration(i) for i in range(4)], [0, 3000, 0, 7000])
        self.assertEqual([state.total_time(i) for i in range(4)], [0, 3000, 3000, 10000])
        self.assertEqual(state.total_taken, 4)

    def test_invariants_hold_over_random_sessions(self):
        rng = random.Random(1234)
        for _ in range(25):
            engine, clock = _engine(now=rng.randint(0, 10**12))
            initial = rng.randint(1, 40)
            quantities = [rng.choice((0.5, 1, 1.5, 2, 3))]
            stamps = [clock.now]
            engine.start(quantities[0], initial)
            for _ in range(rng.randint(0, 15)):
                clock.now += rng.choice((0, 1, 250, 60_000, 3_600_000))
                # Ticks are sporadic and must not matter
                for _ in range(rng.randint(0, 3)):
                    engine.tick(clock.now + rng.randint(0, 5000))
                q = rng.choice((0.5, 1, 1.5, 2, 3))
                engine.record_dose(q)
                quantities.append(q)
                stamps.append(clock.now)
                state = engine.state
                self.assertEqual(state.remaining_inventory, initial - sum(quantities))
                self.assertEqual(state.elapsed_ms, stamps[-1] - stamps[0])
            state = engine.state
            self.assertEqual([e.sequence_number for e in state.events], list(range(1, len(quantities) + 1)))
            self.assertEqual([e.recorded_at_ms for e in state.events], stamps)


# ──────────────────────────────────────────────────────────────────────────
# tick
# ──────────────────────────────────────────────────────────────────────────

class TestTick(unittest.TestCase):

    def test_tick_while_running_measures_from_first_dose(self):
        engine, clock = _engine(now=1000)
        engine.start(1, 10)
        self.assertEqual(engine.tick(1000), 0)
        self.assertEqual(engine.tick(4500), 3500)
        clock.now = 7000
        self.assertEqual(engine.tick(), 6000)

    def test_tick_while_paused_returns_stored_elapsed(self):
        engine, clock = _engine()
        engine.start(1, 10)
        clock.now = 5000
        engine.record_dose(1)
        engine.pause()
        self.assertEqual(engine.tick(999_999), 5000)

    def test_tick_is_read_only(self):
        engine, clock = _engine()
        engine.start(1, 10)
        before = engine.state
        for t in range(0, 100_000, 10):
            engine.tick(t)
        self.assertIs(engine.state, before)

    def test_missed_ticks_do_not_change_elapsed(self):
        dense, dense_clock = _engine()
        sparse, sparse_clock = _engine()
        dense.start(1, 10)
        sparse.start(1, 10)
        for t in range(10, 20_001, 10):
            dense.tick(t)
        dense_clock.now = sparse_clock.now = 20_000
        self.assertEqual(dense.record_dose(1).elapsed_ms, sparse.record_dose(1).elapsed_ms)
        self.assertEqual(dense.tick(30_000), sparse.tick(30_000))


# ──────────────────────────────────────────────────────────────────────────
# Subscribers
# ──────────────────────────────────────────────────────────────────────────

class TestSubscribers(unittest.TestCase):

    def test_failing_subscriber_does_not_block_mutation(self):
        engine, _ = _engine()
        seen = []

        def broken(name, state):
            raise OSError("disk full")

        engine.subscribe(broken)
        engine.subscribe(lambda name, state: seen.append(state))
        with self.assertLogs("pilltracker", level="ERROR"):
            state = engine.start(1, 10)
        self.assertEqual(len(state.events), 1)
        self.assertIs(seen[0], state)

    def test_rejected_operation_does_not_notify(self):
        engine, _ = _engine()
        calls = []
        engine.subscribe(lambda name, state: calls.append(name))
        with self.assertRaises(PreconditionViolation):
            engine.record_dose(1)
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
