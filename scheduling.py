"""
Расчет свободных слотов и проверка пересечений записей.

Все функции модуля чистые: они работают только с переданными данными
(записи, рабочие часы, момент времени) и не обращаются к базе или часам.
Интервалы полуоткрытые: [start, end).
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from errors import InvalidInterval
from models import OCCUPYING_STATUSES

DEFAULT_SLOT_GRANULARITY_MINUTES = 30


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """
    Пересекаются ли интервалы [a_start, a_end) и [b_start, b_end).

    Стыкующиеся интервалы (a_end == b_start) не пересекаются.
    Пустой или перевернутый интервал не пересекается ни с чем.
    """
    if a_end <= a_start or b_end <= b_start:
        return False
    return a_start < b_end and b_start < a_end


def validate_interval(start: datetime, end: datetime) -> None:
    if end <= start:
        raise InvalidInterval(start, end)


def parse_clock(value) -> time:
    """Время из строки HH:MM (или уже готовый time)."""
    if isinstance(value, time):
        return value
    return datetime.strptime(value.strip(), "%H:%M").time()


@dataclass(frozen=True)
class BusinessHours:
    open_time: time
    close_time: time

    def __post_init__(self):
        if self.close_time <= self.open_time:
            raise ValueError(
                f"close_time {self.close_time} must be after open_time {self.open_time}"
            )

    @classmethod
    def from_strings(cls, open_time: str, close_time: str) -> "BusinessHours":
        return cls(parse_clock(open_time), parse_clock(close_time))

    def bounds(self, day: date) -> Tuple[datetime, datetime]:
        return datetime.combine(day, self.open_time), datetime.combine(day, self.close_time)

    @property
    def length_minutes(self) -> int:
        opened, closed = self.bounds(date.min)
        return int((closed - opened).total_seconds() // 60)


@dataclass(frozen=True)
class Slot:
    start_time: datetime
    end_time: datetime

    @property
    def label(self) -> str:
        return self.start_time.strftime("%H:%M")

    def to_dict(self) -> dict:
        return {
            'start_time': self.start_time.strftime("%H:%M"),
            'end_time': self.end_time.strftime("%H:%M"),
        }


@dataclass(frozen=True)
class ConflictCheck:
    staff_id: object
    conflicting_ids: Tuple = ()

    @property
    def accepted(self) -> bool:
        return not self.conflicting_ids


def occupying_bookings(bookings: Iterable, staff_id, exclude_booking_id=None) -> List:
    """Записи мастера, которые занимают его время, в хронологическом порядке."""
    result = [
        b for b in bookings
        if b.staff_id == staff_id
        and b.status in OCCUPYING_STATUSES
        and (exclude_booking_id is None or b.id != exclude_booking_id)
    ]
    result.sort(key=lambda b: b.start_time)
    return result


def check_conflict(staff_id, start_time: datetime, end_time: datetime,
                   existing_bookings: Iterable, exclude_booking_id=None) -> ConflictCheck:
    """
    Можно ли поставить мастеру запись [start_time, end_time).

    exclude_booking_id нужен при переносе записи, чтобы она не конфликтовала
    сама с собой. Возвращает все пересекающиеся записи, а не первую.
    """
    validate_interval(start_time, end_time)
    conflicting = tuple(
        b.id for b in occupying_bookings(existing_bookings, staff_id, exclude_booking_id)
        if overlaps(start_time, end_time, b.start_time, b.end_time)
    )
    return ConflictCheck(staff_id=staff_id, conflicting_ids=conflicting)


def iter_available_slots(staff_id, day: date, duration_minutes: int, existing_bookings: Iterable,
                         business_hours: BusinessHours,
                         slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
                         not_before: Optional[datetime] = None) -> Iterator[Slot]:
    """
    Свободные слоты мастера на дату, от открытия с шагом slot_granularity_minutes.

    Слот длиной duration_minutes не должен выходить за закрытие и пересекаться
    с занимающими время записями. Слоты, начинающиеся раньше not_before,
    пропускаются (для сегодняшнего дня передается текущее время).
    Повторный вызов начинает перебор заново.
    """
    if slot_granularity_minutes <= 0:
        raise ValueError(f"slot granularity must be positive, got {slot_granularity_minutes}")
    if duration_minutes <= 0 or duration_minutes > business_hours.length_minutes:
        return

    opened, closed = business_hours.bounds(day)
    busy = occupying_bookings(existing_bookings, staff_id)
    step = timedelta(minutes=slot_granularity_minutes)
    duration = timedelta(minutes=duration_minutes)

    current = opened
    while current < closed:
        end = current + duration
        if end > closed:
            break
        if not_before is None or current >= not_before:
            if not any(overlaps(current, end, b.start_time, b.end_time) for b in busy):
                yield Slot(current, end)
        current += step


def compute_available_slots(staff_id, day: date, duration_minutes: int, existing_bookings: Iterable,
                            business_hours: BusinessHours,
                            slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
                            not_before: Optional[datetime] = None) -> List[Slot]:
    return list(iter_available_slots(
        staff_id, day, duration_minutes, list(existing_bookings), business_hours,
        slot_granularity_minutes, not_before,
    ))
