"""
Исключения системы бронирования салона красоты.
"""

from enum import Enum
from typing import Iterable, Tuple


class CouponRejection(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE_OR_EXPIRED = "inactive_or_expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"
    BELOW_MINIMUM_PURCHASE = "below_minimum_purchase"


class BookingError(Exception):
    """Базовая ошибка бронирования."""


class InvalidInterval(BookingError):
    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"end time {end} must be after start time {start}")


class BookingConflict(BookingError):
    def __init__(self, staff_id, conflicting_ids: Iterable):
        self.staff_id = staff_id
        self.conflicting_ids: Tuple = tuple(conflicting_ids)
        super().__init__(
            f"staff {staff_id} is already booked: {', '.join(map(str, self.conflicting_ids))}"
        )


class CouponInvalid(BookingError):
    def __init__(self, reason: CouponRejection, code=None):
        self.reason = reason
        self.code = code
        super().__init__(f"coupon {code!r} rejected: {reason.value}")


class ServiceUnavailable(BookingError):
    def __init__(self, service_id):
        self.service_id = service_id
        super().__init__(f"service {service_id} not found or inactive")


class NotFound(BookingError):
    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class BookingCodeExhausted(BookingError):
    """Не удалось подобрать уникальный код записи."""
