"""
Проверка купонов и расчет скидки.

Суммы считаются в Decimal с округлением до копеек, без float.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from errors import CouponInvalid, CouponRejection
from models import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal(100)


def as_decimal(value) -> Decimal:
    if value is None:
        raise ValueError("amount is required")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value)


def to_money(value) -> Decimal:
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_currently_valid(coupon, now: datetime) -> bool:
    if not coupon.is_active:
        return False
    if coupon.start_date is not None and coupon.start_date > now:
        return False
    if coupon.end_date is not None and coupon.end_date < now:
        return False
    return True


def calculate_discount(coupon, total_amount) -> Decimal:
    """Скидка без проверок применимости; не больше суммы заказа."""
    total = to_money(total_amount)
    value = as_decimal(coupon.discount_value)
    if value <= 0:
        raise ValueError(f"discount value must be positive, got {value}")

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        if value > HUNDRED:
            raise ValueError(f"percentage discount cannot exceed 100, got {value}")
        discount = to_money(total * value / HUNDRED)
        if coupon.maximum_discount_amount is not None:
            discount = min(discount, to_money(coupon.maximum_discount_amount))
    elif coupon.discount_type == DISCOUNT_FIXED:
        discount = to_money(value)
    else:
        raise ValueError(f"unknown discount type {coupon.discount_type!r}")

    # Фиксированная скидка больше суммы заказа не уводит итог в минус
    return min(discount, total)


@dataclass(frozen=True)
class CouponQuote:
    code: Optional[str]
    reason: Optional[CouponRejection] = None
    total_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    final_amount: Decimal = Decimal("0.00")

    @property
    def is_valid(self) -> bool:
        return self.reason is None

    def raise_for_reason(self) -> None:
        if self.reason is not None:
            raise CouponInvalid(self.reason, self.code)


def validate_and_apply(coupon, now: datetime, customer_id, prior_total_redemptions: int,
                       prior_user_redemptions: int, total_amount) -> CouponQuote:
    """
    Проверяет купон по шагам и считает скидку.

    Проверки идут по порядку, первая неудачная определяет причину отказа:
    купон не найден, неактивен или истек, исчерпан общий лимит, исчерпан
    лимит клиента (только если клиент известен), сумма меньше минимальной.
    """
    total = to_money(total_amount)
    code = getattr(coupon, 'code', None)

    reason = None
    if coupon is None:
        reason = CouponRejection.NOT_FOUND
    elif not is_currently_valid(coupon, now):
        reason = CouponRejection.INACTIVE_OR_EXPIRED
    elif coupon.usage_limit is not None and prior_total_redemptions >= coupon.usage_limit:
        reason = CouponRejection.USAGE_LIMIT_REACHED
    elif (customer_id is not None and coupon.per_user_limit is not None
          and prior_user_redemptions >= coupon.per_user_limit):
        reason = CouponRejection.PER_USER_LIMIT_REACHED
    elif (coupon.minimum_purchase_amount is not None
          and total < to_money(coupon.minimum_purchase_amount)):
        reason = CouponRejection.BELOW_MINIMUM_PURCHASE

    if reason is not None:
        logger.warning(f"Coupon {code!r} rejected: {reason.value}")
        return CouponQuote(code=code, reason=reason, total_amount=total, final_amount=total)

    discount = calculate_discount(coupon, total)
    return CouponQuote(
        code=code,
        total_amount=total,
        discount_amount=discount,
        final_amount=total - discount,
    )
