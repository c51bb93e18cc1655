"""
Настройки приложения из переменных окружения (.env).
"""

import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///beauty_salon.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

BOT_TOKEN = os.getenv("BOT_TOKEN")

# Рабочие часы по умолчанию, если у мастера нет своего расписания
BUSINESS_OPEN = os.getenv("BUSINESS_OPEN", "09:00")
BUSINESS_CLOSE = os.getenv("BUSINESS_CLOSE", "18:00")
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "30"))

# Сколько дней вперед показывать в боте
BOOKING_DAYS_AHEAD = int(os.getenv("BOOKING_DAYS_AHEAD", "14"))
