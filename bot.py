"""
Telegram бот для бронирования услуг в салоне красоты.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from aiogram import Bot, Dispatcher, types
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup

import settings
from booking_system import BookingSystem
from errors import BookingConflict, BookingError, CouponInvalid, CouponRejection, ServiceUnavailable
from scheduling import Slot

logger = logging.getLogger(__name__)

NO_COUPON = "Без промокода"

COUPON_REJECTION_TEXT = {
    CouponRejection.NOT_FOUND: "❌ Такого промокода нет.",
    CouponRejection.INACTIVE_OR_EXPIRED: "❌ Промокод неактивен или срок его действия истек.",
    CouponRejection.USAGE_LIMIT_REACHED: "❌ Промокод больше недоступен: лимит использований исчерпан.",
    CouponRejection.PER_USER_LIMIT_REACHED: "❌ Вы уже использовали этот промокод.",
    CouponRejection.BELOW_MINIMUM_PURCHASE: "❌ Сумма заказа меньше минимальной для этого промокода.",
}

dp = Dispatcher(storage=MemoryStorage())
_booking: Optional[BookingSystem] = None


def get_booking_system() -> BookingSystem:
    global _booking
    if _booking is None:
        _booking = BookingSystem()
    return _booking


class BookingStates(StatesGroup):
    GET_NAME = State()
    GET_PHONE = State()
    CHOOSE_SERVICE = State()
    CHOOSE_MASTER = State()
    CHOOSE_DATE = State()
    CHOOSE_TIME = State()
    ENTER_COUPON = State()
    CONFIRM = State()


def format_money(amount: Decimal) -> str:
    return f"{amount:.2f} ₽"


def coupon_rejection_text(reason: CouponRejection) -> str:
    return COUPON_REJECTION_TEXT[reason]


def create_service_keyboard(services: List[Dict[str, Any]]) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text=f"{s['name']} ({s['duration']} мин)")]
            for s in services
        ],
        resize_keyboard=True
    )


def create_master_keyboard(masters: List[Dict[str, Any]]) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=m['name'])] for m in masters],
        resize_keyboard=True
    )


def create_date_keyboard(days: List[date]) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=d.strftime("%Y-%m-%d"))] for d in days],
        resize_keyboard=True
    )


def create_time_keyboard(slots: List[Slot]) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=s.label)] for s in slots],
        resize_keyboard=True
    )


def create_coupon_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(keyboard=[[KeyboardButton(text=NO_COUPON)]], resize_keyboard=True)


def slots_for(data: Dict[str, Any], now: Optional[datetime] = None) -> List[Slot]:
    """Свободные слоты для выбранных мастера и даты; на сегодня - только будущие."""
    now = now or datetime.now()
    selected_date = datetime.strptime(data['date'], "%Y-%m-%d").date()
    not_before = now if selected_date == now.date() else None
    return get_booking_system().get_available_slots(
        data['master_id'], selected_date, data['service_id'], not_before=not_before
    )


def confirmation_text(data: Dict[str, Any]) -> str:
    lines = [
        "📋 Подтвердите запись:\n",
        f"🧴 Услуга: {data['service_name']}",
        f"💇 Мастер: {data['master_name']}",
        f"📅 Дата: {data['date']}",
        f"⏰ Время: {data['time']}",
    ]
    if data.get('coupon_code'):
        lines.append(f"🎟 Промокод: {data['coupon_code']} (скидка {data['discount']})")
    lines.append(f"💰 К оплате: {data['final_amount']}\n")
    lines.append("Всё верно?")
    return "\n".join(lines)


@dp.message(Command("start"))
async def cmd_start(message: types.Message):
    await message.answer(
        "👋 Добро пожаловать в салон красоты!\n\n"
        "Доступные команды:\n"
        "📝 /book - Записаться на услугу\n"
        "📋 /my_bookings - Посмотреть ваши записи\n"
        "❌ /cancel - Отменить запись"
    )


@dp.message(Command("book"))
async def cmd_book(message: types.Message, state: FSMContext):
    await state.set_state(BookingStates.GET_NAME)
    await message.answer("👤 Введите ваше имя:")


@dp.message(BookingStates.GET_NAME)
async def process_name(message: types.Message, state: FSMContext):
    await state.update_data(name=message.text.strip())
    await state.set_state(BookingStates.GET_PHONE)
    await message.answer("📱 Введите ваш номер телефона:")


@dp.message(BookingStates.GET_PHONE)
async def process_phone(message: types.Message, state: FSMContext):
    phone = message.text.strip()
    if not phone.isdigit() or len(phone) < 10:
        await message.answer("❌ Пожалуйста, введите корректный номер телефона (только цифры):")
        return

    await state.update_data(phone=phone)
    await state.set_state(BookingStates.CHOOSE_SERVICE)

    services = get_booking_system().get_all_services()
    await message.answer("💅 Выберите услугу:", reply_markup=create_service_keyboard(services))


@dp.message(BookingStates.CHOOSE_SERVICE)
async def process_service(message: types.Message, state: FSMContext):
    services = get_booking_system().get_all_services()
    selected_service = next((s for s in services if s['name'] in message.text), None)

    if not selected_service:
        await message.answer("❌ Пожалуйста, выберите услугу из списка:")
        return

    await state.update_data(
        service_id=selected_service['id'],
        service_name=selected_service['name'],
        price=str(selected_service['price'])
    )
    await state.set_state(BookingStates.CHOOSE_MASTER)

    masters = get_booking_system().get_all_staff()
    await message.answer("💇 Выберите мастера:", reply_markup=create_master_keyboard(masters))


@dp.message(BookingStates.CHOOSE_MASTER)
async def process_master(message: types.Message, state: FSMContext):
    masters = get_booking_system().get_all_staff()
    selected_master = next((m for m in masters if m['name'] == message.text), None)

    if not selected_master:
        await message.answer("❌ Пожалуйста, выберите мастера из списка:")
        return

    await state.update_data(
        master_id=selected_master['id'],
        master_name=selected_master['name']
    )
    await state.set_state(BookingStates.CHOOSE_DATE)

    days = get_booking_system().working_days(
        selected_master['id'], datetime.now().date(), settings.BOOKING_DAYS_AHEAD
    )
    await message.answer("📅 Выберите дату:", reply_markup=create_date_keyboard(days))


@dp.message(BookingStates.CHOOSE_DATE)
async def process_date(message: types.Message, state: FSMContext):
    try:
        selected_date = datetime.strptime(message.text, "%Y-%m-%d").date()
        if selected_date < datetime.now().date():
            raise ValueError("date in the past")
    except ValueError:
        await message.answer("❌ Пожалуйста, выберите корректную дату в формате ГГГГ-ММ-ДД:")
        return

    await state.update_data(date=message.text)
    data = await state.get_data()
    slots = slots_for(data)

    if not slots:
        await message.answer("❌ На эту дату нет свободных слотов. Выберите другую дату:")
        return

    await state.set_state(BookingStates.CHOOSE_TIME)
    await message.answer("⏰ Выберите время:", reply_markup=create_time_keyboard(slots))


@dp.message(BookingStates.CHOOSE_TIME)
async def process_time(message: types.Message, state: FSMContext):
    data = await state.get_data()
    if not any(s.label == message.text for s in slots_for(data)):
        await message.answer("❌ Это время недоступно. Выберите время из списка:")
        return

    await state.update_data(time=message.text)
    await state.set_state(BookingStates.ENTER_COUPON)
    await message.answer("🎟 Введите промокод или нажмите «Без промокода»:",
                         reply_markup=create_coupon_keyboard())


@dp.message(BookingStates.ENTER_COUPON)
async def process_coupon(message: types.Message, state: FSMContext):
    data = await state.get_data()
    price = Decimal(data['price'])
    code = message.text.strip()

    if code == NO_COUPON:
        await state.update_data(coupon_code=None, final_amount=format_money(price))
    else:
        client_id = get_booking_system().get_client_id(phone=data['phone'])
        quote = get_booking_system().quote_coupon(code, client_id, price)
        if not quote.is_valid:
            await message.answer(coupon_rejection_text(quote.reason) + "\nВведите другой промокод:")
            return
        await state.update_data(
            coupon_code=code,
            discount=format_money(quote.discount_amount),
            final_amount=format_money(quote.final_amount)
        )

    await state.set_state(BookingStates.CONFIRM)
    keyboard = ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text="✅ Да"), KeyboardButton(text="❌ Нет")]
        ],
        resize_keyboard=True
    )
    await message.answer(confirmation_text(await state.get_data()), reply_markup=keyboard)


@dp.message(BookingStates.CONFIRM)
async def process_confirmation(message: types.Message, state: FSMContext):
    if message.text.lower() not in ['да', '✅ да']:
        await message.answer("❌ Запись отменена.", reply_markup=types.ReplyKeyboardRemove())
        await state.clear()
        return

    data = await state.get_data()
    booking = get_booking_system()
    client_id = booking.add_client(
        name=data['name'],
        phone=data['phone'],
        telegram_id=message.from_user.id
    )
    if client_id is None:
        logger.error(f"Failed to create client for user {message.from_user.id}")
        await message.answer("❌ Ошибка при создании клиента. Попробуйте снова.",
                             reply_markup=types.ReplyKeyboardRemove())
        await state.clear()
        return

    start_time = datetime.strptime(f"{data['date']} {data['time']}", "%Y-%m-%d %H:%M")
    try:
        created = booking.create_booking(
            client_id=client_id,
            service_id=data['service_id'],
            staff_id=data['master_id'],
            start_time=start_time,
            coupon_code=data.get('coupon_code')
        )
    except BookingConflict:
        await message.answer("❌ Это время только что заняли. Пожалуйста, выберите другое время: /book",
                             reply_markup=types.ReplyKeyboardRemove())
    except CouponInvalid as e:
        await message.answer(coupon_rejection_text(e.reason), reply_markup=types.ReplyKeyboardRemove())
    except ServiceUnavailable:
        await message.answer("❌ Услуга сейчас недоступна.", reply_markup=types.ReplyKeyboardRemove())
    except BookingError as e:
        logger.error(f"Error creating booking: {e}")
        await message.answer("❌ Ошибка при создании записи. Попробуйте позже.",
                             reply_markup=types.ReplyKeyboardRemove())
    else:
        await message.answer(
            "✅ Запись успешно создана!\n\n"
            f"🔖 Номер записи: {created.booking_code}\n"
            f"💰 К оплате: {format_money(created.final_amount)}\n\n"
            "Вы можете:\n"
            "📋 Посмотреть ваши записи: /my_bookings\n"
            "❌ Отменить запись: /cancel",
            reply_markup=types.ReplyKeyboardRemove()
        )

    await state.clear()


@dp.message(Command("my_bookings"))
async def cmd_my_bookings(message: types.Message):
    booking = get_booking_system()
    client_id = booking.get_client_id(telegram_id=message.from_user.id)
    bookings = booking.get_client_bookings(client_id) if client_id else []
    if not bookings:
        await message.answer("📋 У вас нет активных записей.")
        return

    response = "📋 Ваши записи:\n\n" + "\n\n".join(
        f"📅 {b['date']} в {b['start_time']} ({b['code']})\n"
        f"🧴 Услуга: {b['service']}\n"
        f"💇 Мастер: {b['master']}"
        for b in bookings
    )
    await message.answer(response)


@dp.message(Command("cancel"))
async def cmd_cancel(message: types.Message):
    booking = get_booking_system()
    client_id = booking.get_client_id(telegram_id=message.from_user.id)
    bookings = booking.get_client_bookings(client_id) if client_id else []
    if not bookings:
        await message.answer("❌ У вас нет записей для отмены.")
        return

    keyboard = InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text=f"❌ {b['date']} {b['start_time']} - {b['service']}",
                    callback_data=f"cancel_{b['id']}"
                )
            ] for b in bookings
        ]
    )
    await message.answer("Выберите запись для отмены:", reply_markup=keyboard)


@dp.callback_query(lambda c: c.data.startswith('cancel_'))
async def process_cancel(callback: types.CallbackQuery):
    booking_id = int(callback.data.split('_')[1])
    booking = get_booking_system()
    client_id = booking.get_client_id(telegram_id=callback.from_user.id)
    if client_id is not None and booking.cancel_booking(booking_id, client_id=client_id):
        await callback.message.edit_text("✅ Запись успешно отменена!")
    else:
        await callback.message.edit_text("❌ Ошибка при отмене записи. Попробуйте позже.")
    await callback.answer()


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if not settings.BOT_TOKEN:
        logger.error("BOT_TOKEN is not set, check the .env file")
        raise SystemExit(1)

    bot = Bot(token=settings.BOT_TOKEN)
    get_booking_system()
    logger.info("Starting bot...")
    await dp.start_polling(bot)


if __name__ == '__main__':
    import asyncio
    asyncio.run(main())
