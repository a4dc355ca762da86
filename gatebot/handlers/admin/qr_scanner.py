"""
Operator QR scanner.

Workflow:
  1. Operator taps "📷 Scan tickets" and picks the event for this gate
  2. Bot enters waiting_token state; the operator is now an access point
  3. Every text message is treated as a scan: the operator decodes the
     attendee's QR ticket with any reader app and sends the result here
  4. Bot validates the token and answers GRANTED / DENIED with the reason

The scanner stays in the loop until "⏹ Stop scanning" is pressed, so a queue
of attendees can be processed without navigating menus.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.keyboards import (
    AdminPanelCb, EventCb, ScanCb,
    admin_main_menu, event_list_kb, scanner_kb,
)
from gatebot.middlewares import IsAdmin
from gatebot.services.access_service import AccessControlService
from gatebot.services.collaborators import ScanContext, get_event_by_id, list_events
from gatebot.services.outcomes import ReasonCode, ValidationResult
from gatebot.services.qr_service import extract_token
from gatebot.states import AdminQrScanStates

logger = logging.getLogger(__name__)
router = Router(name="admin_qr_scanner")
router.callback_query.filter(IsAdmin())
router.message.filter(IsAdmin())


# ── Entry: pick the event ─────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "scan"))
async def cq_scan_choose_event(callback: CallbackQuery, session: AsyncSession) -> None:
    events = await list_events(session)
    if not events:
        await callback.answer("No events.", show_alert=True)
        return
    await callback.message.edit_text(
        "📷 *Scan tickets*\n\nWhich event is this gate for?",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=event_list_kb(events, action="scan"),
    )
    await callback.answer()


@router.callback_query(EventCb.filter(F.action == "scan"))
async def cq_scan_start(
    callback: CallbackQuery,
    callback_data: EventCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    event = await get_event_by_id(session, callback_data.eid)
    if event is None:
        await callback.answer("Event not found.", show_alert=True)
        return

    await state.set_state(AdminQrScanStates.waiting_token)
    await state.update_data(event_id=event.id, event_name=event.name)
    await callback.message.edit_text(
        f"📷 *Scanning for {event.name}*\n\n"
        f"Decode the attendee's QR ticket with any reader app and send the\n"
        f"64-character token here. Each message is one scan.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=scanner_kb(event.id),
    )
    await callback.answer()


# ── Scan loop ─────────────────────────────────────────────────────────────────

@router.message(AdminQrScanStates.waiting_token)
async def msg_scan_token(
    message: Message,
    state: FSMContext,
    access: AccessControlService,
) -> None:
    data = await state.get_data()
    event_id = data["event_id"]
    raw = message.text or ""

    # Pasted scanner output may carry a prefix or URL around the token;
    # when nothing token-shaped is found the raw text goes through as-is
    # and is rejected with INVALID_HASH_FORMAT.
    token = extract_token(raw) or raw

    context = ScanContext(
        access_point=f"tg:{message.from_user.id}",
        device_info={"client": "telegram", "chat_id": message.chat.id},
        scanned_by=message.from_user.id,
    )
    result = await access.validate_result(token, event_id, context)
    await message.answer(
        _render_result(result),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=scanner_kb(event_id),
    )


# ── Stop ──────────────────────────────────────────────────────────────────────

@router.callback_query(ScanCb.filter(F.action == "stop"))
async def cq_scan_stop(callback: CallbackQuery, state: FSMContext) -> None:
    await state.clear()
    await callback.message.edit_text(
        "⏹ *Scanning stopped.*",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )
    await callback.answer()


# ── Helpers ───────────────────────────────────────────────────────────────────

_DENIAL_ICONS = {
    ReasonCode.QR_ALREADY_USED:     "🔁",
    ReasonCode.QR_EXPIRED:          "⌛",
    ReasonCode.QR_INVALIDATED:      "⛔",
    ReasonCode.EVENT_MISMATCH:      "🚧",
    ReasonCode.RATE_LIMITED:        "⏳",
    ReasonCode.INVALID_HASH_FORMAT: "⚠️",
}


def _render_result(result: ValidationResult) -> str:
    if result.is_valid:
        lines = [
            "✅ *ACCESS GRANTED*",
            "",
            f"🎫 Registration: `#{result.registration_id}`",
        ]
        for key, value in (result.metadata or {}).items():
            lines.append(f"• {key}: {value}")
        if result.needs_review:
            lines.append("")
            lines.append("🕵️ _Flagged for review: anchor check failed._")
        return "\n".join(lines)

    if result.retryable:
        return f"⚠️ *NO ANSWER*\n\n{result.message}"

    icon = _DENIAL_ICONS.get(result.reason, "❌")
    return f"{icon} *ACCESS DENIED*\n\n{result.message}\n`{result.reason.value}`"
