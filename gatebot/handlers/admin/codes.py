"""
Operator access-code management: look up a registration, issue its QR ticket,
regenerate it (lost phone, leaked screenshot) or revoke it.
"""
import logging
from typing import List

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import BufferedInputFile, CallbackQuery, Message
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.keyboards import (
    AdminPanelCb, CodeCb,
    admin_main_menu, cancel_input_kb, code_actions_kb,
)
from gatebot.middlewares import IsAdmin
from gatebot.models.models import AccessCode, CodeStatus
from gatebot.services.access_service import AccessControlService
from gatebot.services.collaborators import get_registration
from gatebot.services.qr_service import generate_qr_png
from gatebot.services.regeneration import codes_for_registration
from gatebot.states import AdminCodeStates
from gatebot.validators import InvalidateRequest, RegenerateRequest

logger = logging.getLogger(__name__)
router = Router(name="admin_codes")
router.callback_query.filter(IsAdmin())
router.message.filter(IsAdmin())


# ── Entry: registration lookup ────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "codes"))
async def cq_codes_entry(callback: CallbackQuery, state: FSMContext) -> None:
    await state.set_state(AdminCodeStates.enter_registration)
    await callback.message.edit_text(
        "🎫 *Access codes*\n\nSend the registration number:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(),
    )
    await callback.answer()


@router.message(AdminCodeStates.enter_registration)
async def msg_registration_id(message: Message, session: AsyncSession, state: FSMContext) -> None:
    raw = (message.text or "").strip().lstrip("#")
    if not raw.isdigit():
        await message.answer("⚠️ Send a numeric registration id, e.g. `1042`.",
                             parse_mode=ParseMode.MARKDOWN, reply_markup=cancel_input_kb())
        return

    await state.clear()
    await _send_registration_card(message, session, int(raw))


async def _send_registration_card(message: Message, session: AsyncSession, registration_id: int) -> None:
    reg = await get_registration(session, registration_id)
    if reg is None:
        await message.answer("❌ Registration not found.", reply_markup=admin_main_menu())
        return

    codes  = await codes_for_registration(session, registration_id)
    active = next((c for c in codes if c.status == CodeStatus.ACTIVE.value), None)
    await message.answer(
        _registration_card(reg.attendee_name, registration_id, reg.status, codes),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=code_actions_kb(registration_id, active),
    )


# ── Issue ─────────────────────────────────────────────────────────────────────

@router.callback_query(CodeCb.filter(F.action == "issue"))
async def cq_issue(
    callback: CallbackQuery,
    callback_data: CodeCb,
    access: AccessControlService,
) -> None:
    payload = await access.issue(callback_data.rid, issued_by=callback.from_user.id)
    if "error" in payload:
        await callback.answer(f"❌ {payload['message']}", show_alert=True)
        return

    await _send_ticket(callback.message, callback_data.rid, payload["token"], payload["expiresAt"])
    await callback.answer("✅ Code issued")


# ── Regenerate / invalidate: ask for a reason ─────────────────────────────────

@router.callback_query(CodeCb.filter(F.action.in_({"regenerate", "invalidate"})))
async def cq_ask_reason(callback: CallbackQuery, callback_data: CodeCb, state: FSMContext) -> None:
    await state.set_state(AdminCodeStates.enter_reason)
    await state.update_data(action=callback_data.action, rid=callback_data.rid, cid=callback_data.cid)
    verb = "regenerating" if callback_data.action == "regenerate" else "invalidating"
    await callback.message.edit_text(
        f"✏️ Reason for {verb} the code of registration `#{callback_data.rid}`:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(),
    )
    await callback.answer()


@router.message(AdminCodeStates.enter_reason)
async def msg_reason(message: Message, state: FSMContext, access: AccessControlService) -> None:
    data = await state.get_data()
    operator = message.from_user.id
    try:
        if data["action"] == "regenerate":
            req = RegenerateRequest(registration_id=data["rid"], reason=message.text or "")
        else:
            req = InvalidateRequest(code_id=data["cid"], reason=message.text or "")
    except ValidationError as e:
        await message.answer(f"⚠️ {e.errors()[0]['msg']}", reply_markup=cancel_input_kb())
        return

    await state.clear()

    if isinstance(req, RegenerateRequest):
        payload = await access.regenerate(req.registration_id, req.reason, regenerated_by=operator)
        if "error" in payload:
            await message.answer(f"❌ {payload['message']}", reply_markup=admin_main_menu())
            return
        new_code = payload["newCode"]
        await message.answer(
            f"🔄 Code `{payload['oldCode']['codeId'][:8]}` invalidated.",
            parse_mode=ParseMode.MARKDOWN,
        )
        await _send_ticket(message, req.registration_id, new_code["token"], new_code["expiresAt"])
        return

    payload = await access.invalidate(req.code_id, req.reason, invalidated_by=operator)
    if "error" in payload:
        await message.answer(f"❌ {payload['message']}", reply_markup=admin_main_menu())
        return
    await message.answer(
        f"⛔ Code `{req.code_id[:8]}` invalidated.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )


# ── Anchor check ──────────────────────────────────────────────────────────────

@router.callback_query(CodeCb.filter(F.action == "anchor"))
async def cq_verify_anchor(
    callback: CallbackQuery,
    callback_data: CodeCb,
    access: AccessControlService,
) -> None:
    payload = await access.verify_anchor(callback_data.cid)
    if "error" in payload:
        await callback.answer(f"❌ {payload['message']}", show_alert=True)
        return
    text = f"🔗 Anchor: {payload['status']}"
    if payload.get("tamperEvidence"):
        text += f"\n{payload['tamperEvidence']}"
    await callback.answer(text, show_alert=True)


# ── Helpers ───────────────────────────────────────────────────────────────────

async def _send_ticket(message: Message, registration_id: int, token: str, expires_at: str) -> None:
    """The only place a raw token is ever shown: rendered once as a QR image."""
    photo = BufferedInputFile(generate_qr_png(token), filename=f"ticket-{registration_id}.png")
    await message.answer_photo(
        photo,
        caption=(
            f"🎫 *Access ticket* — registration `#{registration_id}`\n"
            f"⌛ Valid until `{expires_at[:16].replace('T', ' ')}` UTC\n\n"
            f"Forward this image to the attendee."
        ),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )
    logger.info("Ticket for registration %d sent to operator chat %d", registration_id, message.chat.id)


def _registration_card(name: str, registration_id: int, status: str, codes: List[AccessCode]) -> str:
    lines = [
        f"👤 *{name}*",
        f"🎫 Registration `#{registration_id}` ({status})",
        "",
    ]
    if not codes:
        lines.append("_No access codes yet._")
    for c in codes[:5]:
        lines.append(f"{c.status_label} `{c.id[:8]}`  scans: {c.usage_count}")
    if len(codes) > 5:
        lines.append(f"… and {len(codes) - 5} older")
    return "\n".join(lines)
