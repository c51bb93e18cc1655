"""
Модуль системы бронирования для салона красоты.

Здесь чистые функции из scheduling и coupons связываются с базой данных.
Проверка конфликта и запись выполняются в одной транзакции: строка мастера
(и купона) блокируется через SELECT ... FOR UPDATE до чтения занятых
интервалов, поэтому два параллельных запроса не могут оба пройти проверку.
"""

import logging
import re
import secrets
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import settings
from coupons import CouponQuote, to_money, validate_and_apply
from db_config import SessionLocal, get_db, make_session_factory
from errors import BookingCodeExhausted, BookingConflict, BookingError, NotFound, ServiceUnavailable
from models import (
    BOOKING_CANCELLED, BOOKING_SCHEDULED, BOOKING_STATUSES, OCCUPYING_STATUSES, Base, Booking,
    Client, Coupon, CouponRedemption, Service, Staff, StaffSchedule,
)
from scheduling import (
    BusinessHours, Slot, check_conflict, compute_available_slots, parse_clock, validate_interval,
)

logger = logging.getLogger(__name__)

MAX_BOOKING_CODE_ATTEMPTS = 100


def _as_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def _as_ids(service_ids) -> List[int]:
    if isinstance(service_ids, int):
        return [service_ids]
    return list(service_ids)


def booking_code_base(first_name: Optional[str], phone: Optional[str]) -> str:
    """ИМЯ-1234: имя заглавными буквами и последние 4 цифры телефона."""
    name = ''.join(ch for ch in (first_name or '').upper() if ch.isalpha())[:10] or 'GUEST'
    digits = re.sub(r'\D', '', phone or '')[-4:]
    return f"{name}-{digits or secrets.token_hex(2).upper()}"


class BookingSystem:
    def __init__(self, engine: Optional[Engine] = None, seed: bool = True,
                 business_hours: Optional[BusinessHours] = None,
                 slot_granularity_minutes: Optional[int] = None):
        self._session_factory = make_session_factory(engine) if engine is not None else SessionLocal
        Base.metadata.create_all(bind=self._session_factory.kw['bind'])

        self.default_hours = business_hours or BusinessHours.from_strings(
            settings.BUSINESS_OPEN, settings.BUSINESS_CLOSE
        )
        if slot_granularity_minutes is None:
            slot_granularity_minutes = settings.SLOT_GRANULARITY_MINUTES
        if slot_granularity_minutes <= 0:
            raise ValueError(f"slot granularity must be positive, got {slot_granularity_minutes}")
        self.slot_granularity_minutes = slot_granularity_minutes

        if seed:
            self._init_services_and_staff()
        logger.info("Booking system initialized")

    def _session(self) -> Session:
        return next(get_db(self._session_factory))

    def _init_services_and_staff(self) -> None:
        db = self._session()
        try:
            # Проверяем, есть ли уже данные в базе
            if db.query(Service).count() == 0:
                services = [
                    Service(name="Женская стрижка", duration_minutes=60, price=Decimal("1500.00")),
                    Service(name="Мужская стрижка", duration_minutes=30, price=Decimal("800.00")),
                    Service(name="Окрашивание", duration_minutes=120, price=Decimal("3000.00")),
                    Service(name="Маникюр", duration_minutes=90, price=Decimal("2000.00")),
                    Service(name="Педикюр", duration_minutes=90, price=Decimal("2500.00")),
                ]
                db.add_all(services)

                staff = [
                    Staff(name="Анна", specialization="Парикмахер"),
                    Staff(name="Елена", specialization="Колорист"),
                    Staff(name="Мария", specialization="Мастер маникюра"),
                    Staff(name="Ирина", specialization="Мастер педикюра"),
                ]
                db.add_all(staff)
                db.flush()

                # Стандартное расписание: будни по общим часам, выходные свободны
                for member in staff:
                    for weekday in range(7):
                        db.add(StaffSchedule(
                            staff_id=member.id,
                            weekday=weekday,
                            open_time=self.default_hours.open_time,
                            close_time=self.default_hours.close_time,
                            is_available=weekday < 5,
                        ))

                db.commit()

        except Exception as e:
            db.rollback()
            logger.error(f"Error initializing database: {e}")
            raise
        finally:
            db.close()

    # --- Клиенты -----------------------------------------------------------

    def add_client(self, name: str, phone: str, telegram_id: Optional[int] = None) -> Optional[int]:
        db = self._session()
        try:
            query = db.query(Client).filter(Client.phone == phone)
            if telegram_id is not None:
                query = db.query(Client).filter(
                    (Client.phone == phone) | (Client.telegram_id == telegram_id)
                )
            existing_client = query.first()

            if existing_client:
                return existing_client.id

            client = Client(name=name, phone=phone, telegram_id=telegram_id)
            db.add(client)
            db.commit()
            return client.id

        except IntegrityError:
            db.rollback()
            client = db.query(Client).filter(Client.phone == phone).first()
            return client.id if client else None
        except Exception as e:
            db.rollback()
            logger.error(f"Error adding client: {e}")
            return None
        finally:
            db.close()

    def get_client_id(self, phone: Optional[str] = None, telegram_id: Optional[int] = None) -> Optional[int]:
        db = self._session()
        try:
            query = db.query(Client)
            if phone:
                client = query.filter(Client.phone == phone).first()
            elif telegram_id:
                client = query.filter(Client.telegram_id == telegram_id).first()
            else:
                return None
            return client.id if client else None
        finally:
            db.close()

    # --- Услуги и мастера ----------------------------------------------------

    @staticmethod
    def _service_dict(service: Service) -> Dict:
        return {
            'id': service.id,
            'name': service.name,
            'duration': service.duration_minutes,
            'price': to_money(service.price),
        }

    def get_all_services(self) -> List[Dict]:
        db = self._session()
        try:
            services = db.query(Service).filter(Service.is_active.is_(True)).order_by(Service.id).all()
            return [self._service_dict(s) for s in services]
        finally:
            db.close()

    def get_service_by_id(self, service_id: int) -> Optional[Dict]:
        db = self._session()
        try:
            service = db.get(Service, service_id)
            if service and service.is_active:
                return self._service_dict(service)
            return None
        finally:
            db.close()

    def get_all_staff(self) -> List[Dict]:
        db = self._session()
        try:
            staff = db.query(Staff).filter(Staff.is_active.is_(True)).order_by(Staff.id).all()
            return [
                {
                    'id': m.id,
                    'name': m.name,
                    'specialization': m.specialization
                }
                for m in staff
            ]
        finally:
            db.close()

    def set_staff_schedule(self, staff_id: int, weekday: int, open_time, close_time,
                           is_available: bool = True) -> None:
        hours = BusinessHours(parse_clock(open_time), parse_clock(close_time))
        db = self._session()
        try:
            if db.get(Staff, staff_id) is None:
                raise NotFound('staff', staff_id)
            row = db.query(StaffSchedule).filter(
                StaffSchedule.staff_id == staff_id,
                StaffSchedule.weekday == weekday
            ).first()
            if row is None:
                row = StaffSchedule(staff_id=staff_id, weekday=weekday)
                db.add(row)
            row.open_time = hours.open_time
            row.close_time = hours.close_time
            row.is_available = is_available
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _business_hours(self, db: Session, staff_id: int, day: date) -> Optional[BusinessHours]:
        row = db.query(StaffSchedule).filter(
            StaffSchedule.staff_id == staff_id,
            StaffSchedule.weekday == day.weekday()
        ).first()
        if row is None:
            return self.default_hours
        if not row.is_available:
            return None
        return BusinessHours(row.open_time, row.close_time)

    def get_business_hours(self, staff_id: int, day: Union[date, str]) -> Optional[BusinessHours]:
        """Часы работы мастера на дату; None - выходной."""
        db = self._session()
        try:
            return self._business_hours(db, staff_id, _as_date(day))
        finally:
            db.close()

    def _services_total(self, db: Session, service_ids: Iterable[int]) -> Tuple[int, Decimal]:
        duration, price = 0, Decimal("0.00")
        for service_id in service_ids:
            service = db.get(Service, service_id)
            if service is None or not service.is_active:
                raise ServiceUnavailable(service_id)
            duration += service.duration_minutes
            price += to_money(service.price)
        return duration, price

    # --- Свободное время -----------------------------------------------------

    @staticmethod
    def _fetch_occupying_bookings(db: Session, staff_id: int, start: datetime, end: datetime) -> List[Booking]:
        return db.query(Booking).filter(
            Booking.staff_id == staff_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start
        ).order_by(Booking.start_time).all()

    def fetch_occupying_bookings(self, staff_id: int, start: datetime, end: datetime) -> List[Booking]:
        db = self._session()
        try:
            return self._fetch_occupying_bookings(db, staff_id, start, end)
        finally:
            db.close()

    def get_available_slots(self, staff_id: int, day: Union[date, str], service_ids,
                            not_before: Optional[datetime] = None) -> List[Slot]:
        day = _as_date(day)
        db = self._session()
        try:
            duration, _ = self._services_total(db, _as_ids(service_ids))
            hours = self._business_hours(db, staff_id, day)
            if hours is None:
                return []

            opened, closed = hours.bounds(day)
            bookings = self._fetch_occupying_bookings(db, staff_id, opened, closed)
            return compute_available_slots(
                staff_id, day, duration, bookings, hours,
                self.slot_granularity_minutes, not_before,
            )
        finally:
            db.close()

    # --- Купоны --------------------------------------------------------------

    @staticmethod
    def _redemption_counts(db: Session, coupon_id: int, client_id: Optional[int]) -> Tuple[int, int]:
        total = db.query(func.count(CouponRedemption.id)).filter(
            CouponRedemption.coupon_id == coupon_id
        ).scalar()
        per_client = 0
        if client_id is not None:
            per_client = db.query(func.count(CouponRedemption.id)).filter(
                CouponRedemption.coupon_id == coupon_id,
                CouponRedemption.client_id == client_id
            ).scalar()
        return total, per_client

    def _quote_coupon(self, db: Session, code: str, client_id: Optional[int], total_amount,
                      now: datetime, lock: bool = False) -> Tuple[Optional[Coupon], CouponQuote]:
        query = db.query(Coupon).filter(Coupon.code == code)
        if lock:
            query = query.with_for_update()
        coupon = query.first()

        total_used, client_used = (0, 0)
        if coupon is not None:
            total_used, client_used = self._redemption_counts(db, coupon.id, client_id)
        quote = validate_and_apply(coupon, now, client_id, total_used, client_used, total_amount)
        if coupon is None:
            quote = replace(quote, code=code)
        return coupon, quote

    def quote_coupon(self, code: str, client_id: Optional[int], total_amount,
                     now: Optional[datetime] = None) -> CouponQuote:
        db = self._session()
        try:
            _, quote = self._quote_coupon(db, code, client_id, total_amount, now or datetime.now())
            return quote
        finally:
            db.close()

    # --- Записи --------------------------------------------------------------

    @staticmethod
    def _lock_staff(db: Session, staff_id: int) -> Staff:
        staff = db.query(Staff).filter(Staff.id == staff_id).with_for_update().first()
        if staff is None or not staff.is_active:
            raise NotFound('staff', staff_id)
        return staff

    def _guard(self, db: Session, staff_id: int, start: datetime, end: datetime,
               exclude_booking_id: Optional[int] = None) -> None:
        bookings = self._fetch_occupying_bookings(db, staff_id, start, end)
        check = check_conflict(staff_id, start, end, bookings, exclude_booking_id)
        if not check.accepted:
            logger.warning(
                f"Booking conflict for staff {staff_id} at {start:%Y-%m-%d %H:%M}: {check.conflicting_ids}"
            )
            raise BookingConflict(staff_id, check.conflicting_ids)

    @staticmethod
    def _generate_booking_code(db: Session, first_name: Optional[str], phone: Optional[str]) -> str:
        base = booking_code_base(first_name, phone)
        code = base
        for counter in range(2, MAX_BOOKING_CODE_ATTEMPTS + 2):
            if db.query(Booking.id).filter(Booking.booking_code == code).first() is None:
                return code
            code = f"{base}-{counter}"
        raise BookingCodeExhausted(f"Unable to generate unique booking code for {base}")

    def generate_booking_code(self, first_name: Optional[str], phone: Optional[str]) -> str:
        db = self._session()
        try:
            return self._generate_booking_code(db, first_name, phone)
        finally:
            db.close()

    def create_booking(self, client_id: int, service_id: int, staff_id: int, start_time: datetime,
                       coupon_code: Optional[str] = None, notes: Optional[str] = None,
                       now: Optional[datetime] = None) -> Booking:
        now = now or datetime.now()
        db = self._session()
        try:
            client = db.get(Client, client_id)
            if client is None:
                raise NotFound('client', client_id)
            duration, total = self._services_total(db, [service_id])
            end_time = start_time + timedelta(minutes=duration)

            self._lock_staff(db, staff_id)

            coupon, quote = None, None
            if coupon_code:
                coupon, quote = self._quote_coupon(db, coupon_code, client_id, total, now, lock=True)
                quote.raise_for_reason()

            self._guard(db, staff_id, start_time, end_time)

            booking = Booking(
                booking_code=self._generate_booking_code(db, next(iter((client.name or '').split()), None),
                                                         client.phone),
                client_id=client_id,
                service_id=service_id,
                staff_id=staff_id,
                start_time=start_time,
                end_time=end_time,
                status=BOOKING_SCHEDULED,
                coupon_id=coupon.id if coupon else None,
                total_amount=total,
                discount_amount=quote.discount_amount if quote else Decimal("0.00"),
                final_amount=quote.final_amount if quote else total,
                notes=notes,
                created_at=now,
            )
            db.add(booking)
            db.flush()

            if coupon is not None:
                db.add(CouponRedemption(
                    coupon_id=coupon.id,
                    client_id=client_id,
                    booking_id=booking.id,
                    amount_saved=quote.discount_amount,
                    redeemed_at=now,
                ))

            db.commit()
            logger.info(f"Booking {booking.booking_code} created for staff {staff_id} at {start_time}")
            return booking

        except BookingError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Error creating booking: {e}")
            raise
        finally:
            db.close()

    def update_booking(self, booking_id: int, start_time: Optional[datetime] = None,
                       end_time: Optional[datetime] = None, staff_id: Optional[int] = None,
                       status: Optional[str] = None) -> Booking:
        """
        Перенос записи, смена мастера или статуса.

        Конфликт проверяется заново, если меняется время или мастер, а также
        при возврате отмененной записи в работу. Без нового end_time
        длительность записи сохраняется.
        """
        if status is not None and status not in BOOKING_STATUSES:
            raise ValueError(f"unknown booking status {status!r}")

        db = self._session()
        try:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise NotFound('booking', booking_id)

            new_staff = staff_id if staff_id is not None else booking.staff_id
            new_start = start_time or booking.start_time
            if end_time is not None:
                new_end = end_time
            else:
                new_end = new_start + (booking.end_time - booking.start_time)
            new_status = status or booking.status

            moved = (new_staff != booking.staff_id or new_start != booking.start_time
                     or new_end != booking.end_time)
            reactivated = booking.status not in OCCUPYING_STATUSES and new_status in OCCUPYING_STATUSES

            if moved:
                validate_interval(new_start, new_end)

            if new_status in OCCUPYING_STATUSES and (moved or reactivated):
                self._lock_staff(db, new_staff)
                self._guard(db, new_staff, new_start, new_end, exclude_booking_id=booking.id)

            booking.staff_id = new_staff
            booking.start_time = new_start
            booking.end_time = new_end
            booking.status = new_status
            db.commit()
            return booking

        except BookingError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Error updating booking {booking_id}: {e}")
            raise
        finally:
            db.close()

    def get_client_bookings(self, client_id: int) -> List[Dict]:
        db = self._session()
        try:
            bookings = db.query(Booking).filter(
                Booking.client_id == client_id,
                Booking.status.in_(OCCUPYING_STATUSES)
            ).order_by(Booking.start_time).all()

            return [
                {
                    'id': b.id,
                    'code': b.booking_code,
                    'date': b.start_time.date(),
                    'start_time': b.start_time.strftime("%H:%M"),
                    'service': b.service.name,
                    'master': b.staff.name,
                    'final_amount': to_money(b.final_amount),
                }
                for b in bookings
            ]
        finally:
            db.close()

    def cancel_booking(self, booking_id: int, client_id: Optional[int] = None) -> bool:
        """Отмена записи; с client_id отменяется только запись этого клиента."""
        db = self._session()
        try:
            booking = db.get(Booking, booking_id)
            if not booking:
                return False
            if client_id is not None and booking.client_id != client_id:
                logger.warning(f"Client {client_id} tried to cancel booking {booking_id} of another client")
                return False

            booking.status = BOOKING_CANCELLED
            db.commit()
            logger.info(f"Booking {booking.booking_code} cancelled")
            return True

        except Exception as e:
            db.rollback()
            logger.error(f"Error cancelling booking: {e}")
            return False
        finally:
            db.close()

    def working_days(self, staff_id: int, start: date, days: int) -> List[date]:
        """Дни, в которые мастер работает, начиная со start."""
        db = self._session()
        try:
            result = []
            for offset in range(days):
                day = start + timedelta(days=offset)
                if self._business_hours(db, staff_id, day) is not None:
                    result.append(day)
            return result
        finally:
            db.close()
