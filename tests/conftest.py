from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from booking_system import BookingSystem
from db_config import make_session_factory
from models import Client, Coupon, Service, Staff
from scheduling import BusinessHours


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def system(engine):
    return BookingSystem(
        engine=engine,
        seed=False,
        business_hours=BusinessHours(time(9, 0), time(18, 0)),
        slot_granularity_minutes=30,
    )


@pytest.fixture
def db(engine, system):
    session = make_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def salon(db):
    """Два мастера, две услуги, один клиент."""
    anna = Staff(name="Анна", specialization="Парикмахер", is_active=True)
    elena = Staff(name="Елена", specialization="Колорист", is_active=True)
    haircut = Service(name="Стрижка", duration_minutes=60, price=Decimal("1500.00"), is_active=True)
    quick = Service(name="Укладка", duration_minutes=30, price=Decimal("800.00"), is_active=True)
    client = Client(name="Ольга Петрова", phone="79001234567", telegram_id=42)
    db.add_all([anna, elena, haircut, quick, client])
    db.commit()
    return {
        'anna': anna.id,
        'elena': elena.id,
        'haircut': haircut.id,
        'quick': quick.id,
        'client': client.id,
    }


@pytest.fixture
def add_coupon(db):
    def _add(code="SALE", **fields):
        fields.setdefault('discount_type', 'percentage')
        fields.setdefault('discount_value', Decimal("10"))
        fields.setdefault('is_active', True)
        coupon = Coupon(code=code, **fields)
        db.add(coupon)
        db.commit()
        return coupon.id
    return _add
