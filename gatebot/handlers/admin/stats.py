"""
Operator statistics: access report and suspicious-activity check per event.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.types import CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from gatebot.keyboards import AdminPanelCb, EventCb, event_list_kb, event_stats_kb
from gatebot.middlewares import IsAdmin
from gatebot.services.collaborators import get_event_by_id, list_events
from gatebot.services.stats_service import (
    code_stats, scan_stats, detect_suspicious_patterns, format_stats_text,
)

logger = logging.getLogger(__name__)
router = Router(name="admin_stats")
router.callback_query.filter(IsAdmin())


@router.callback_query(AdminPanelCb.filter(F.action == "stats"))
async def cq_stats_entry(callback: CallbackQuery, session: AsyncSession) -> None:
    events = await list_events(session)
    if not events:
        await callback.answer("No events.", show_alert=True)
        return
    await callback.message.edit_text(
        "📊 *Statistics*\n\nChoose an event:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=event_list_kb(events, action="stats"),
    )
    await callback.answer()


@router.callback_query(EventCb.filter(F.action == "stats"))
async def cq_event_stats(callback: CallbackQuery, callback_data: EventCb, session: AsyncSession) -> None:
    event = await get_event_by_id(session, callback_data.eid)
    if event is None:
        await callback.answer("Event not found.", show_alert=True)
        return

    await callback.answer("⏳ Building report…")
    codes = await code_stats(session, event.id)
    scans = await scan_stats(session, event.id)
    await callback.message.edit_text(
        format_stats_text(codes, scans, event_name=event.name),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=event_stats_kb(event.id),
    )


@router.callback_query(EventCb.filter(F.action == "suspicious"))
async def cq_suspicious(callback: CallbackQuery, callback_data: EventCb, session: AsyncSession) -> None:
    report = await detect_suspicious_patterns(session, callback_data.eid)
    if report.is_clean:
        await callback.answer(
            f"✅ Nothing suspicious in the last {report.window_minutes} min.", show_alert=True
        )
        return

    lines = [f"🕵️ *Suspicious activity* (last {report.window_minutes} min)", ""]
    if report.repeated_failures:
        lines.append("*Repeated denials by access point:*")
        lines += [f"  • `{ap}`: {n}" for ap, n in report.repeated_failures]
    if report.rapid_presentations:
        lines.append("*Codes presented unusually often:*")
        lines += [f"  • `{cid[:8]}`: {n} scans" for cid, n in report.rapid_presentations]

    await callback.message.edit_text(
        "\n".join(lines),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=event_stats_kb(callback_data.eid),
    )
    await callback.answer()
