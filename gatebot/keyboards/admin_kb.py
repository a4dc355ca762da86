"""
Keyboards for the operator panel: event picker, scanner loop and code actions.
"""
from typing import List, Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from gatebot.keyboards.callbacks import AdminPanelCb, CodeCb, EventCb, ScanCb
from gatebot.models.models import AccessCode, CodeStatus, Event


def event_list_kb(events: List[Event], action: str) -> InlineKeyboardMarkup:
    """One button per event; ``action`` says what picking it leads to."""
    builder = InlineKeyboardBuilder()
    for e in events:
        when = f"  [{e.starts_at:%d.%m}]" if e.starts_at else ""
        builder.row(
            InlineKeyboardButton(
                text=f"📅 {e.name}{when}",
                callback_data=EventCb(action=action, eid=e.id).pack(),
            )
        )
    builder.row(
        InlineKeyboardButton(text="🔙 Back", callback_data=AdminPanelCb(action="back").pack()),
    )
    return builder.as_markup()


def scanner_kb(event_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="⏹ Stop scanning", callback_data=ScanCb(action="stop", eid=event_id).pack()),
    )
    return builder.as_markup()


def code_actions_kb(registration_id: int, active: Optional[AccessCode]) -> InlineKeyboardMarkup:
    """Actions that make sense for the registration's current code."""
    builder = InlineKeyboardBuilder()
    if active is None or active.status != CodeStatus.ACTIVE.value:
        builder.row(
            InlineKeyboardButton(
                text="🎫 Issue code",
                callback_data=CodeCb(action="issue", rid=registration_id).pack(),
            )
        )
    else:
        builder.row(
            InlineKeyboardButton(
                text="🔄 Regenerate",
                callback_data=CodeCb(action="regenerate", rid=registration_id, cid=active.id).pack(),
            ),
            InlineKeyboardButton(
                text="⛔ Invalidate",
                callback_data=CodeCb(action="invalidate", rid=registration_id, cid=active.id).pack(),
            ),
        )
        if active.anchor_hash:
            builder.row(
                InlineKeyboardButton(
                    text="🔗 Verify anchor",
                    callback_data=CodeCb(action="anchor", rid=registration_id, cid=active.id).pack(),
                )
            )
    builder.row(
        InlineKeyboardButton(text="🔙 Back", callback_data=AdminPanelCb(action="back").pack()),
    )
    return builder.as_markup()


def event_stats_kb(event_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(
            text="🕵️ Suspicious activity",
            callback_data=EventCb(action="suspicious", eid=event_id).pack(),
        )
    )
    builder.row(
        InlineKeyboardButton(text="🔄 Refresh", callback_data=EventCb(action="stats", eid=event_id).pack()),
        InlineKeyboardButton(text="🔙 Back",    callback_data=AdminPanelCb(action="stats").pack()),
    )
    return builder.as_markup()


def cancel_input_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=AdminPanelCb(action="back").pack()))
    return builder.as_markup()
