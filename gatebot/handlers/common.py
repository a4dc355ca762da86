"""
Common handlers: /start, main menu routing.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.filters import CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from gatebot.keyboards import MainMenuCb, admin_main_menu

logger = logging.getLogger(__name__)
router = Router(name="common")


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext, is_admin: bool) -> None:
    await state.clear()
    name = message.from_user.first_name
    if not is_admin:
        await message.answer(
            f"👋 Hi, {name}!\n\n"
            f"This is the *TradeConnect* gate bot for access-point operators.\n"
            f"Your QR ticket is delivered by the registration service.",
            parse_mode=ParseMode.MARKDOWN,
        )
        return

    await message.answer(
        f"🛂 *TradeConnect Gate* — {name}\n\n"
        f"Scan attendee tickets, manage access codes\n"
        f"and watch entry statistics per event.\n\n"
        f"Choose a section:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )


# ── Main menu callback ────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(callback: CallbackQuery, is_admin: bool, state: FSMContext) -> None:
    await state.clear()
    if not is_admin:
        await callback.answer()
        return
    await callback.message.edit_text(
        "🛂 *TradeConnect Gate*\n\nChoose a section:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )
    await callback.answer()


@router.callback_query(F.data == "noop")
async def cq_noop(callback: CallbackQuery) -> None:
    await callback.answer()
