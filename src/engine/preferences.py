"""Scheduling preferences.

One immutable value is loaded per run and passed explicitly to every
component; there is no module-level "current settings" object.
"""

from datetime import date, datetime, time, timedelta
from typing import Annotated, Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from src.engine.errors import PreferencesError
from src.engine.intervals import Interval, intersect_intervals

WEEKDAY_NAMES: Dict[str, int] = {
    "mon": 0, "monday": 0,
    "tue": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}

# Bimodal curve: morning peak around 10:00, post-lunch dip, afternoon peak at 15:00
DEFAULT_ENERGY_CURVE: Dict[int, int] = {
    7: 2, 8: 3, 9: 4, 10: 5, 11: 5, 12: 3,
    13: 2, 14: 3, 15: 4, 16: 4, 17: 3, 18: 2,
}

SCORING_DIMENSIONS: Tuple[str, ...] = (
    "priority",
    "due_date",
    "energy",
    "critical_path",
    "goal",
    "staleness",
)

DEFAULT_WEIGHTS: Dict[str, float] = {
    "priority": 3.0,
    "due_date": 2.5,
    "energy": 1.0,
    "critical_path": 2.0,
    "goal": 1.5,
    "staleness": 0.5,
}


def _parse_weekdays(value: Any) -> Any:
    """Accept weekday numbers (0=Monday) or names."""
    if value is None or isinstance(value, (str, int)):
        value = [value] if value is not None else []
    days = set()
    for item in value:
        if isinstance(item, str):
            key = item.strip().lower()
            if key.isdigit():
                days.add(int(key))
            elif key in WEEKDAY_NAMES:
                days.add(WEEKDAY_NAMES[key])
            else:
                raise ValueError(f"Unknown weekday: {item!r}")
        else:
            days.add(item)
    return frozenset(days)


def _coerce_time(value: Any) -> Any:
    # YAML 1.1 reads an unquoted 9:00 as the sexagesimal integer 540
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < 24 * 60:
            raise ValueError(f"Time out of range: {value}")
        return time(value // 60, value % 60)
    return value


LocalTime = Annotated[time, BeforeValidator(_coerce_time)]
Weekdays = Annotated[FrozenSet[int], BeforeValidator(_parse_weekdays)]


class ContextWindow(BaseModel):
    """Hours during which a context (e.g. "@office") is available."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: LocalTime
    end: LocalTime
    days: Optional[Weekdays] = None

    @model_validator(mode="after")
    def check_order(self) -> "ContextWindow":
        if self.end <= self.start:
            raise ValueError("context window end must be after start")
        return self

    def applies_to(self, day: date) -> bool:
        return self.days is None or day.weekday() in self.days

    def on(self, day: date) -> Interval:
        return Interval(
            start=datetime.combine(day, self.start),
            end=datetime.combine(day, self.end),
        )


class SchedulingPreferences(BaseModel):
    """Recognised scheduling options. Unknown keys are rejected."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    work_days: Weekdays = frozenset({0, 1, 2, 3, 4})
    work_start: LocalTime = time(9, 0)
    work_end: LocalTime = time(17, 0)
    prep_minutes: int = Field(0, ge=0)
    wind_down_minutes: int = Field(0, ge=0)
    energy_curve: Dict[int, int] = Field(default_factory=lambda: dict(DEFAULT_ENERGY_CURVE))
    default_energy: int = Field(3, ge=1, le=5)
    buffer_minutes: int = Field(5, ge=0)
    transition_buffer_minutes: int = Field(0, ge=0)
    lunch_protection: bool = False
    lunch_start: LocalTime = time(12, 0)
    lunch_minutes: int = Field(60, ge=0)
    stale_after_days: int = Field(7, ge=1)
    weights: Dict[str, float] = Field(default_factory=dict)
    deep_work_energy_threshold: int = Field(4, ge=1, le=5)
    goal_tolerance: float = Field(0.8, gt=0, le=1)
    horizon_days: int = Field(14, ge=1, le=366)
    round_to_minutes: int = Field(5, ge=1, le=60)
    place_overdue: bool = True
    available_contexts: Optional[FrozenSet[str]] = None
    context_windows: Dict[str, Tuple[ContextWindow, ...]] = Field(default_factory=dict)
    timezone: Optional[str] = None

    @field_validator("work_days")
    @classmethod
    def check_work_days(cls, value: FrozenSet[int]) -> FrozenSet[int]:
        if not value:
            raise ValueError("at least one work day is required")
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("work days must be between 0 (Monday) and 6 (Sunday)")
        return value

    @field_validator("energy_curve")
    @classmethod
    def check_energy_curve(cls, value: Dict[int, int]) -> Dict[int, int]:
        for hour, level in value.items():
            if not 0 <= hour <= 23:
                raise ValueError(f"energy curve hour out of range: {hour}")
            if not 1 <= level <= 5:
                raise ValueError(f"energy level for hour {hour} must be 1-5, got {level}")
        return value

    @field_validator("weights")
    @classmethod
    def check_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        for name, weight in value.items():
            if name not in SCORING_DIMENSIONS:
                raise ValueError(
                    f"unknown scoring dimension {name!r}; expected one of {', '.join(SCORING_DIMENSIONS)}"
                )
            if weight < 0:
                raise ValueError(f"weight for {name!r} must be non-negative")
        return value

    @field_validator("available_contexts", mode="before")
    @classmethod
    def coerce_contexts(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        return frozenset(value)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    @model_validator(mode="after")
    def check_window(self) -> "SchedulingPreferences":
        if self.work_end <= self.work_start:
            raise ValueError("work_end must be after work_start")
        if self.prep_minutes + self.wind_down_minutes >= self.work_minutes:
            raise ValueError("prep and wind-down blocks leave no working time")
        return self

    # ==================== Derived values ====================

    @property
    def work_minutes(self) -> int:
        start = self.work_start.hour * 60 + self.work_start.minute
        end = self.work_end.hour * 60 + self.work_end.minute
        return end - start

    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None

    def resolved_weights(self) -> Dict[str, float]:
        """Default weights overlaid with configured ones."""
        weights = dict(DEFAULT_WEIGHTS)
        weights.update(self.weights)
        return weights

    def is_work_day(self, day: date) -> bool:
        return day.weekday() in self.work_days

    def energy_at(self, hour: int) -> int:
        return self.energy_curve.get(hour, self.default_energy)

    def ambient_energy(self, start: datetime, end: datetime) -> float:
        """Minute-weighted mean energy level over [start, end)."""
        if end <= start:
            return float(self.energy_at(start.hour))

        total = 0.0
        cursor = start
        while cursor < end:
            next_hour = cursor.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
            segment_end = min(next_hour, end)
            total += self.energy_at(cursor.hour) * (segment_end - cursor).total_seconds()
            cursor = segment_end

        return total / (end - start).total_seconds()

    def deep_work_allowed(self, start: datetime, end: datetime) -> bool:
        """True if every hour touched by [start, end) is at or above the deep-work threshold."""
        cursor = start.replace(minute=0, second=0, microsecond=0)
        while cursor < end:
            if self.energy_at(cursor.hour) < self.deep_work_energy_threshold:
                return False
            cursor += timedelta(hours=1)
        return True

    def deep_work_windows(self, day: date) -> List[Interval]:
        """Maximal runs of hours on ``day`` whose energy meets the deep-work threshold."""
        windows: List[Interval] = []
        run_start: Optional[int] = None
        for hour in range(25):
            admissible = hour < 24 and self.energy_at(hour) >= self.deep_work_energy_threshold
            if admissible and run_start is None:
                run_start = hour
            elif not admissible and run_start is not None:
                start = datetime.combine(day, time(0)) + timedelta(hours=run_start)
                end = datetime.combine(day, time(0)) + timedelta(hours=hour)
                windows.append(Interval(start=start, end=end))
                run_start = None
        return windows

    def context_windows_on(self, contexts: Iterable[str], day: date) -> Optional[List[Interval]]:
        """Windows on ``day`` when all ``contexts`` are available.

        Returns None when the contexts impose no time restriction, and an
        empty list when they can never be satisfied on that day.
        """
        restriction: Optional[List[Interval]] = None
        for context in sorted(contexts):
            if self.available_contexts is not None and context not in self.available_contexts:
                return []
            windows = self.context_windows.get(context)
            if windows is None:
                continue
            todays = [w.on(day) for w in windows if w.applies_to(day)]
            restriction = todays if restriction is None else intersect_intervals(restriction, todays)
            if not restriction:
                return []
        return restriction

    def contexts_available(self, contexts: Iterable[str], start: datetime, end: datetime) -> bool:
        windows = self.context_windows_on(contexts, start.date())
        if windows is None:
            return True
        slot = Interval(start=start, end=end)
        return any(w.contains(slot) for w in windows)


def load_preferences(data: Optional[Mapping[str, Any]]) -> SchedulingPreferences:
    """Validate raw preference values.

    Raises:
        PreferencesError: if the mapping is missing or malformed
    """
    if data is None:
        raise PreferencesError("Scheduling preferences are missing")
    if isinstance(data, SchedulingPreferences):
        return data
    if not isinstance(data, Mapping):
        raise PreferencesError(
            f"Scheduling preferences must be a mapping, got {type(data).__name__}"
        )

    try:
        return SchedulingPreferences.model_validate(dict(data))
    except PydanticValidationError as e:
        raise PreferencesError(f"Malformed scheduling preferences: {e}") from e
