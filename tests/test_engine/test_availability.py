"""Tests for the availability model and slot finder."""

from datetime import datetime

import pytest

from src.engine.availability import CalendarAvailabilityModel, SlotFinder, round_up
from src.engine.errors import ReasonCode, UnschedulableError
from src.engine.intervals import Interval
from src.engine.preferences import load_preferences


def t(day: int, hour: int, minute: int = 0) -> datetime:
    """Time on the test week; day 0 is Monday 2024-01-08."""
    return datetime(2024, 1, 8 + day, hour, minute)


class TestRoundUp:
    """Tests for round_up."""

    def test_rounds_to_next_slot(self):
        assert round_up(t(0, 14, 2), 5) == t(0, 14, 5)

    def test_exact_boundary_unchanged(self):
        assert round_up(t(0, 14, 15), 5) == t(0, 14, 15)

    def test_seconds_round_up(self):
        assert round_up(datetime(2024, 1, 8, 14, 15, 1), 15) == t(0, 14, 30)


class TestCalendarAvailabilityModel:
    """Test suite for CalendarAvailabilityModel."""

    def test_anchor_before_work_day(self, prefs):
        """Before work starts the anchor is the start of the work day."""
        model = CalendarAvailabilityModel(prefs, [], t(0, 7, 13))
        assert model.anchor == t(0, 9)

    def test_anchor_mid_afternoon(self, prefs):
        """The scan starts at 'now', rounded up, never at day start."""
        model = CalendarAvailabilityModel(prefs, [], t(0, 14, 2))
        assert model.anchor == t(0, 14, 5)
        first = next(model.free_intervals())
        assert first == Interval(t(0, 14, 5), t(0, 17))

    def test_weekend_skipped(self, prefs):
        model = CalendarAvailabilityModel(prefs, [], t(4, 16))
        intervals = list(model.free_intervals())
        assert intervals[0] == Interval(t(4, 16), t(4, 17))
        # Next interval is Monday, not Saturday
        assert intervals[1] == Interval(t(7, 9), t(7, 17))

    def test_event_blocks_with_buffer(self, prefs, make_event):
        """Fixed events are widened by the buffer on both sides."""
        event = make_event("standup", t(0, 10), t(0, 11))
        model = CalendarAvailabilityModel(prefs, [event], t(0, 8))
        assert model.free_on(t(0, 0).date()) == [
            Interval(t(0, 9), t(0, 9, 55)),
            Interval(t(0, 11, 5), t(0, 17)),
        ]

    def test_movable_events_do_not_block(self, prefs, make_event):
        event = make_event("focus", t(0, 10), t(0, 11), movable=True)
        model = CalendarAvailabilityModel(prefs, [event], t(0, 8))
        assert model.free_on(t(0, 0).date()) == [Interval(t(0, 9), t(0, 17))]

    def test_prep_wind_down_and_lunch(self):
        prefs = load_preferences({
            "prep_minutes": 15,
            "wind_down_minutes": 30,
            "lunch_protection": True,
        })
        model = CalendarAvailabilityModel(prefs, [], t(0, 8))
        assert model.free_on(t(0, 0).date()) == [
            Interval(t(0, 9, 15), t(0, 12)),
            Interval(t(0, 13), t(0, 16, 30)),
        ]

    def test_commitments_block_time(self, prefs):
        model = CalendarAvailabilityModel(prefs, [], t(0, 8), commitments=[Interval(t(0, 9), t(0, 10))])
        assert model.free_on(t(0, 0).date())[0] == Interval(t(0, 10), t(0, 17))
        assert not model.is_open(Interval(t(0, 9, 30), t(0, 10, 30)))
        assert model.is_open(Interval(t(0, 10), t(0, 11)))

    def test_is_open_rejects_outside_work_window(self, prefs):
        model = CalendarAvailabilityModel(prefs, [], t(0, 8))
        assert not model.is_open(Interval(t(0, 16, 30), t(0, 17, 30)))
        assert not model.is_open(Interval(t(5, 10), t(5, 11)))

    def test_capacity_minutes(self, prefs, make_event):
        event = make_event("meeting", t(0, 10), t(0, 11))
        model = CalendarAvailabilityModel(prefs, [event], t(0, 8))
        # 9:00-9:55 and 11:05-12:00
        assert model.capacity_minutes(t(0, 9), t(0, 12)) == 110
        # Monday around the meeting plus all of Tuesday
        assert model.capacity_minutes(t(0, 0), t(2, 0)) == 410 + 480
        assert model.capacity_minutes(t(0, 12), t(0, 11)) == 0

    def test_horizon_limits_free_intervals(self):
        prefs = load_preferences({"horizon_days": 2})
        model = CalendarAvailabilityModel(prefs, [], t(0, 8))
        assert list(model.free_intervals()) == [
            Interval(t(0, 9), t(0, 17)),
            Interval(t(1, 9), t(1, 17)),
        ]


class TestSlotFinder:
    """Test suite for SlotFinder."""

    def test_first_fit(self, prefs, make_task, make_event):
        """A 60-minute task skips a 55-minute gap."""
        event = make_event("meeting", t(0, 10), t(0, 11))
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [event], t(0, 8)))
        slot = finder.find_slot(make_task("a", estimated_minutes=60))
        assert slot == Interval(t(0, 11, 5), t(0, 12, 5))

    def test_not_before(self, prefs, make_task):
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        slot = finder.find_slot(make_task("a", estimated_minutes=30), not_before=t(0, 13, 20))
        assert slot.start == t(0, 13, 20)

    def test_deadline_no_capacity(self, prefs, make_task):
        """A task that cannot finish before its deadline is not placed late."""
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        with pytest.raises(UnschedulableError) as exc:
            finder.find_slot(make_task("a", estimated_minutes=60), deadline=t(0, 9, 30))
        assert exc.value.reason == ReasonCode.NO_CAPACITY

    def test_deep_work_energy_mismatch(self, make_task):
        prefs = load_preferences({"energy_curve": {h: 3 for h in range(24)}})
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        with pytest.raises(UnschedulableError) as exc:
            finder.find_slot(make_task("deep", estimated_minutes=60, requires_deep_work=True))
        assert exc.value.reason == ReasonCode.ENERGY_MISMATCH

    def test_deep_work_waits_for_peak(self, prefs, make_task):
        """After the morning peak, deep work moves to the afternoon peak."""
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 12, 30)))
        slot = finder.find_slot(make_task("deep", estimated_minutes=60, requires_deep_work=True))
        assert slot == Interval(t(0, 15), t(0, 16))

    def test_context_unavailable(self, make_task):
        prefs = load_preferences({"available_contexts": ["@home"]})
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        with pytest.raises(UnschedulableError) as exc:
            finder.find_slot(make_task("errand", contexts=["@office"]))
        assert exc.value.reason == ReasonCode.CONTEXT_UNAVAILABLE

    def test_context_window(self, make_task):
        prefs = load_preferences({
            "context_windows": {"@office": [{"start": "14:00", "end": "16:00"}]},
        })
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        slot = finder.find_slot(make_task("print", contexts=["@office"], estimated_minutes=30))
        assert slot == Interval(t(0, 14), t(0, 14, 30))

    def test_reserve_splits_and_adds_transition_buffer(self, make_task):
        prefs = load_preferences({"transition_buffer_minutes": 10})
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        first = finder.find_slot(make_task("a", estimated_minutes=30))
        finder.reserve(first)
        second = finder.find_slot(make_task("b", estimated_minutes=30))
        assert first == Interval(t(0, 9), t(0, 9, 30))
        assert second.start == t(0, 9, 40)

    def test_candidates_apply_filters(self, prefs, make_task):
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        candidates = finder.candidates(
            make_task("deep", estimated_minutes=60, requires_deep_work=True),
            deadline=t(0, 17),
        )
        assert candidates == [Interval(t(0, 9), t(0, 12)), Interval(t(0, 15), t(0, 17))]

    def test_free_is_a_copy(self, prefs):
        finder = SlotFinder(CalendarAvailabilityModel(prefs, [], t(0, 8)))
        finder.free.clear()
        assert finder.free
