"""Appointment slot availability.

Pure functions that turn a doctor's weekly working hours and the intervals
already booked on a date into the bookable slots for that date. Nothing in
this module touches the database; callers load the inputs through
``hospital_api.scheduling.store``.

All intervals are half-open ``[start_time, end_time)`` so an appointment that
ends at 10:00 does not block a slot that starts at 10:00.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator, model_validator

REASON_DAY_OFF = 'doctor not available on this day'
REASON_FULLY_BOOKED = 'fully booked'
REASON_DATE_IN_PAST = 'date in past'
REASON_NO_UPCOMING_SLOTS = 'no remaining slots today'

DEFAULT_DAY_START = time(9, 0)
DEFAULT_DAY_END = time(17, 0)

# Any date works here; only the time-of-day arithmetic matters.
_ANCHOR_DATE = date(2000, 1, 3)


class Weekday(str, Enum):
    MONDAY = 'monday'
    TUESDAY = 'tuesday'
    WEDNESDAY = 'wednesday'
    THURSDAY = 'thursday'
    FRIDAY = 'friday'
    SATURDAY = 'saturday'
    SUNDAY = 'sunday'


WEEKDAYS = tuple(Weekday)


def weekday_for(target_date: date) -> Weekday:
    return WEEKDAYS[target_date.weekday()]


def to_minute(value: time) -> time:
    """Drop seconds; offset-aware times are rejected since all times are local."""
    if value.tzinfo is not None:
        raise ValueError('Times must not carry a UTC offset.')
    return value.replace(second=0, microsecond=0)


class DaySchedule(BaseModel):
    """Working hours for one weekday. Times are ignored when not available."""

    available: bool = False
    start_time: time = DEFAULT_DAY_START
    end_time: time = DEFAULT_DAY_END

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return to_minute(value)

    @model_validator(mode='after')
    def validate_working_hours(self) -> 'DaySchedule':
        if self.available and self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time on available days.')
        return self

    @field_serializer('start_time', 'end_time')
    def serialize_time(self, value: time) -> str:
        return value.strftime('%H:%M')


class WeeklySchedule(BaseModel):
    """A doctor's recurring schedule keyed by weekday.

    A weekday left unset behaves exactly like one marked unavailable.
    """

    model_config = ConfigDict(extra='forbid')

    monday: DaySchedule | None = None
    tuesday: DaySchedule | None = None
    wednesday: DaySchedule | None = None
    thursday: DaySchedule | None = None
    friday: DaySchedule | None = None
    saturday: DaySchedule | None = None
    sunday: DaySchedule | None = None

    def for_weekday(self, weekday: Weekday) -> DaySchedule | None:
        return getattr(self, weekday.value)

    def for_date(self, target_date: date) -> DaySchedule | None:
        return self.for_weekday(weekday_for(target_date))


class TimeInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_time: time
    end_time: time

    @model_validator(mode='after')
    def validate_order(self) -> 'TimeInterval':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self

    @property
    def display(self) -> str:
        return f"{self.start_time.strftime('%H:%M')} - {self.end_time.strftime('%H:%M')}"


class SlotAvailability(BaseModel):
    available: bool
    slots: list[TimeInterval] = []
    reason: str | None = None


def intervals_overlap(first: TimeInterval, second: TimeInterval) -> bool:
    return first.start_time < second.end_time and second.start_time < first.end_time


def interval_starting_at(start_time: time, duration_minutes: int) -> TimeInterval:
    """Build ``[start_time, start_time + duration)``; it may not cross midnight."""
    start = datetime.combine(_ANCHOR_DATE, start_time)
    end = start + timedelta(minutes=duration_minutes)
    if end.date() != _ANCHOR_DATE:
        raise ValueError('Interval must end on the same day it starts.')
    return TimeInterval(start_time=start_time, end_time=end.time())


def generate_candidate_slots(day: DaySchedule, slot_duration_minutes: int) -> list[TimeInterval]:
    step = timedelta(minutes=slot_duration_minutes)
    current = datetime.combine(_ANCHOR_DATE, day.start_time)
    day_end = datetime.combine(_ANCHOR_DATE, day.end_time)

    candidates: list[TimeInterval] = []
    while current + step <= day_end:
        candidates.append(TimeInterval(start_time=current.time(), end_time=(current + step).time()))
        current += step

    return candidates


def is_within_working_hours(schedule: WeeklySchedule, target_date: date, interval: TimeInterval) -> bool:
    day = schedule.for_date(target_date)
    if day is None or not day.available:
        return False
    return day.start_time <= interval.start_time and interval.end_time <= day.end_time


def is_on_slot_grid(
    schedule: WeeklySchedule,
    target_date: date,
    start_time: time,
    slot_duration_minutes: int,
) -> bool:
    day = schedule.for_date(target_date)
    if day is None or not day.available:
        return False

    offset = datetime.combine(_ANCHOR_DATE, start_time) - datetime.combine(_ANCHOR_DATE, day.start_time)
    if offset < timedelta(0):
        return False
    return offset % timedelta(minutes=slot_duration_minutes) == timedelta(0)


def compute_available_slots(
    doctor_schedule: WeeklySchedule,
    booked_intervals: Iterable[TimeInterval],
    target_date: date,
    slot_duration_minutes: int,
    today: date | None = None,
) -> SlotAvailability:
    """Return the bookable slots for ``target_date`` in chronological order.

    ``booked_intervals`` must already exclude cancelled appointments. When
    ``today`` is given, earlier dates are reported as unavailable instead of
    being computed.
    """
    if slot_duration_minutes <= 0:
        raise ValueError('slot_duration_minutes must be a positive integer.')

    if today is not None and target_date < today:
        return SlotAvailability(available=False, reason=REASON_DATE_IN_PAST)

    day = doctor_schedule.for_date(target_date)
    if day is None or not day.available:
        return SlotAvailability(available=False, reason=REASON_DAY_OFF)

    booked = list(booked_intervals)
    slots = [
        candidate
        for candidate in generate_candidate_slots(day, slot_duration_minutes)
        if not any(intervals_overlap(candidate, interval) for interval in booked)
    ]

    if not slots:
        return SlotAvailability(available=False, reason=REASON_FULLY_BOOKED)

    return SlotAvailability(available=True, slots=slots)


def drop_started_slots(availability: SlotAvailability, now: time) -> SlotAvailability:
    """Keep only slots that start after ``now``, for a date that is today."""
    if not availability.available:
        return availability

    upcoming = [slot for slot in availability.slots if slot.start_time > now]
    if not upcoming:
        return SlotAvailability(available=False, reason=REASON_NO_UPCOMING_SLOTS)

    return SlotAvailability(available=True, slots=upcoming)
