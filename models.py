"""
Модели базы данных для салона красоты.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric,
    String, Time, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db_config import Base

# Статусы записи; занимают время мастера только первые два
BOOKING_SCHEDULED = 'scheduled'
BOOKING_IN_PROGRESS = 'in_progress'
BOOKING_COMPLETED = 'completed'
BOOKING_CANCELLED = 'cancelled'

BOOKING_STATUSES = (BOOKING_SCHEDULED, BOOKING_IN_PROGRESS, BOOKING_COMPLETED, BOOKING_CANCELLED)
OCCUPYING_STATUSES = frozenset({BOOKING_SCHEDULED, BOOKING_IN_PROGRESS})

DISCOUNT_PERCENTAGE = 'percentage'
DISCOUNT_FIXED = 'fixed'


class Client(Base):
    __tablename__ = 'clients'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=False, unique=True)
    telegram_id = Column(Integer, unique=True)

    bookings = relationship("Booking", back_populates="client")


class Service(Base):
    __tablename__ = 'services'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    bookings = relationship("Booking", back_populates="service")

    __table_args__ = (
        CheckConstraint('duration_minutes > 0', name='ck_service_duration_positive'),
        CheckConstraint('price >= 0', name='ck_service_price_non_negative'),
    )


class Staff(Base):
    __tablename__ = 'staff'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    specialization = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)

    schedules = relationship("StaffSchedule", back_populates="staff")
    bookings = relationship("Booking", back_populates="staff")


class StaffSchedule(Base):
    """Рабочие часы мастера по дням недели (0 - понедельник)."""

    __tablename__ = 'staff_schedules'

    id = Column(Integer, primary_key=True)
    staff_id = Column(Integer, ForeignKey('staff.id'), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    staff = relationship("Staff", back_populates="schedules")

    __table_args__ = (
        UniqueConstraint('staff_id', 'weekday', name='uq_staff_schedule_weekday'),
        CheckConstraint('weekday BETWEEN 0 AND 6', name='ck_staff_schedule_weekday'),
    )


class Booking(Base):
    __tablename__ = 'bookings'

    id = Column(Integer, primary_key=True)
    booking_code = Column(String, nullable=False, unique=True)
    client_id = Column(Integer, ForeignKey('clients.id'), nullable=False)
    service_id = Column(Integer, ForeignKey('services.id'), nullable=False)
    staff_id = Column(Integer, ForeignKey('staff.id'), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=BOOKING_SCHEDULED)

    coupon_id = Column(Integer, ForeignKey('coupons.id'))
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False, default=0)

    notes = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    client = relationship("Client", back_populates="bookings")
    service = relationship("Service", back_populates="bookings")
    staff = relationship("Staff", back_populates="bookings")
    coupon = relationship("Coupon")

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_booking_interval'),
    )


class Coupon(Base):
    __tablename__ = 'coupons'

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)
    discount_type = Column(String, nullable=False)  # percentage, fixed
    discount_value = Column(Numeric(10, 2), nullable=False)
    minimum_purchase_amount = Column(Numeric(10, 2))
    maximum_discount_amount = Column(Numeric(10, 2))
    usage_limit = Column(Integer)
    per_user_limit = Column(Integer)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)

    redemptions = relationship("CouponRedemption", back_populates="coupon")

    __table_args__ = (
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name='ck_coupon_discount_type'),
        CheckConstraint('discount_value > 0', name='ck_coupon_discount_positive'),
        CheckConstraint(
            "discount_type != 'percentage' OR discount_value <= 100",
            name='ck_coupon_percentage_max'
        ),
    )


class CouponRedemption(Base):
    __tablename__ = 'coupon_redemptions'

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey('coupons.id'), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey('clients.id'), index=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'))
    amount_saved = Column(Numeric(10, 2), nullable=False)
    redeemed_at = Column(DateTime, nullable=False, default=datetime.now)

    coupon = relationship("Coupon", back_populates="redemptions")
