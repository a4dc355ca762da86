"""
Operator panel entry point.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from gatebot.keyboards import AdminPanelCb, admin_main_menu
from gatebot.middlewares import IsAdmin

logger = logging.getLogger(__name__)
router = Router(name="admin_panel")
router.callback_query.filter(IsAdmin())


@router.callback_query(AdminPanelCb.filter(F.action == "back"))
async def cq_admin_home(callback: CallbackQuery, state: FSMContext) -> None:
    await state.clear()
    await callback.message.edit_text(
        "🛂 *TradeConnect Gate*\n\nChoose a section:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )
    await callback.answer()
