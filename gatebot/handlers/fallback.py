"""
Global fallback handler — included LAST in the dispatcher.

Catches any callback query that no other router handled.
Prevents infinite Telegram spinners from:
  - Stale keyboards after bot restart (MemoryStorage is wiped on redeploy)
  - Buttons left over from a finished scanning session
"""
import logging

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from gatebot.keyboards import admin_main_menu

logger = logging.getLogger(__name__)
router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(
    callback: CallbackQuery,
    state: FSMContext,
    is_admin: bool = False,
) -> None:
    await callback.answer("⚠️ This button is stale. Please start again.", show_alert=True)
    await state.clear()
    if not is_admin:
        return
    try:
        await callback.message.edit_text(
            "🔄 *Session reset.* Back to the main menu:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=admin_main_menu(),
        )
    except TelegramBadRequest as e:
        logger.debug("Fallback could not edit message: %s", e)
