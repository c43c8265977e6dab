from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from rm_portal.config import Settings, settings
from rm_portal.errors import ValidationError
from rm_portal.models import RequisitionType

# 0=Sunday .. 6=Saturday
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


@dataclass(frozen=True)
class CutOffSchedule:
    days: tuple[int, ...]
    cutoff: time


@dataclass(frozen=True)
class CutOffWindow:
    weekday: int
    day_name: str
    date: date
    cutoff: time

    @property
    def label(self) -> str:
        return f'{self.day_name} {self.date.isoformat()} {self.cutoff:%H:%M}'


@dataclass(frozen=True)
class CutOffCheck:
    requisition_type: RequisitionType
    checked_at: datetime
    permitted_today: bool
    past_cutoff: bool
    next_window: CutOffWindow

    @property
    def message(self) -> str:
        kind = self.requisition_type.value.replace('-', ' ')
        if not self.past_cutoff:
            return f'Within the {kind} cut-off window'
        return f'The {kind} cut-off has passed; the next window is {self.next_window.label}'


def weekday_index(moment: datetime | date) -> int:
    return (moment.weekday() + 1) % 7


def parse_cutoff_time(raw: str) -> time:
    try:
        hour, minute = (int(part) for part in raw.strip().split(':', 1))
        return time(hour=hour, minute=minute)
    except ValueError as exc:
        raise ValidationError(f'Invalid cut-off time: {raw!r}') from exc


def build_schedule(days: list[int], cutoff: str) -> CutOffSchedule:
    if not days:
        raise ValidationError('A cut-off schedule needs at least one permitted day')
    invalid = [day for day in days if day < 0 or day > 6]
    if invalid:
        raise ValidationError(f'Invalid cut-off weekdays: {invalid}')
    return CutOffSchedule(days=tuple(sorted(set(days))), cutoff=parse_cutoff_time(cutoff))


def is_past_cutoff(schedule: CutOffSchedule, now: datetime, adjustment_hours: float = 0) -> bool:
    if weekday_index(now) not in schedule.days:
        # Off days fall between windows: this week's window has already closed.
        return True
    minutes_now = now.hour * 60 + now.minute
    limit = schedule.cutoff.hour * 60 + schedule.cutoff.minute + adjustment_hours * 60
    return minutes_now > limit


def next_cutoff(schedule: CutOffSchedule, now: datetime) -> CutOffWindow:
    today = weekday_index(now)
    for offset in range(1, 8):
        weekday = (today + offset) % 7
        if weekday in schedule.days:
            return CutOffWindow(
                weekday=weekday,
                day_name=DAY_NAMES[weekday],
                date=now.date() + timedelta(days=offset),
                cutoff=schedule.cutoff,
            )
    raise ValidationError('A cut-off schedule needs at least one permitted day')


def schedule_for(requisition_type: RequisitionType, config: Settings = settings) -> CutOffSchedule:
    if requisition_type == RequisitionType.PERISHABLE:
        return build_schedule(config.cutoff_perishable_days, config.cutoff_perishable_time)
    return build_schedule(config.cutoff_shelf_stable_days, config.cutoff_shelf_stable_time)


def local_now(now: datetime | None = None, config: Settings = settings) -> datetime:
    tz = ZoneInfo(config.cutoff_timezone)
    if now is None:
        return datetime.now(tz=tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def evaluate_cutoff(
    requisition_type: RequisitionType,
    now: datetime | None = None,
    *,
    config: Settings = settings,
) -> CutOffCheck:
    moment = local_now(now, config)
    schedule = schedule_for(requisition_type, config)
    return CutOffCheck(
        requisition_type=requisition_type,
        checked_at=moment,
        permitted_today=weekday_index(moment) in schedule.days,
        past_cutoff=is_past_cutoff(schedule, moment, config.cutoff_adjustment_hours),
        next_window=next_cutoff(schedule, moment),
    )
