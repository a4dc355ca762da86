"""
Main menu keyboards.
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from gatebot.keyboards.callbacks import MainMenuCb, AdminPanelCb


def admin_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="📷 Scan tickets",    callback_data=AdminPanelCb(action="scan").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="🎫 Access codes",    callback_data=AdminPanelCb(action="codes").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📊 Statistics",      callback_data=AdminPanelCb(action="stats").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
