"""
Модуль конфигурации базы данных.
"""

from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import settings

# Базовый класс для всех моделей
Base = declarative_base()


def make_engine(url: Optional[str] = None, **kwargs) -> Engine:
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        # Необходимо для SQLite
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=settings.SQL_ECHO, **kwargs)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine()
SessionLocal = make_session_factory(engine)


def get_db(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Генератор сессий базы данных.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
