"""
TradeConnect Gate — QR access-control bot for event entrances
Entry point: creates the bot, registers routers + middleware, runs the
maintenance loop and handles graceful shutdown.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from gatebot.config import settings
from gatebot.middlewares import (
    AccessMiddleware, AdminMiddleware, DatabaseMiddleware, RateLimitMiddleware,
)
from gatebot.models.base import AsyncSessionFactory, Base, engine
from gatebot.services.access_service import AccessControlService, build_access_service
from gatebot.services.maintenance import Maintenance

# ── Handlers ──────────────────────────────────────────────────────────────────
from gatebot.handlers.common import router as common_router
from gatebot.handlers.admin.panel import router as admin_panel_router
from gatebot.handlers.admin.qr_scanner import router as admin_qr_scanner_router
from gatebot.handlers.admin.codes import router as admin_codes_router
from gatebot.handlers.admin.stats import router as admin_stats_router
from gatebot.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables on startup (alembic owns upgrades)."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready.")
    except (SQLAlchemyError, OSError) as e:
        logger.critical(
            "❌ Cannot connect to database!\n"
            "   URL: %s\n"
            "   Error: %s\n\n"
            "   → Locally: start PostgreSQL or use SQLite "
            "(DATABASE_URL=sqlite+aiosqlite:///./gate.db)",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


def build_dispatcher(access: AccessControlService) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())

    # ── Global error handler: callbacks are always answered ───────────────────
    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)
        update = event.update
        if update.callback_query:
            try:
                await update.callback_query.answer(
                    "⚠️ Something went wrong. Please try again.", show_alert=True
                )
            except TelegramAPIError:
                logger.debug("Could not answer failed callback")

    # ── Global middlewares ────────────────────────────────────────────────────
    dp.update.middleware(RateLimitMiddleware(rate=settings.SCAN_RATE_LIMIT, period=settings.SCAN_RATE_PERIOD))
    dp.update.middleware(DatabaseMiddleware())
    dp.update.middleware(AdminMiddleware())
    dp.update.middleware(AccessMiddleware(access))

    # ── Routers: order matters for handler priority ───────────────────────────
    dp.include_router(common_router)
    dp.include_router(admin_panel_router)
    dp.include_router(admin_qr_scanner_router)
    dp.include_router(admin_codes_router)
    dp.include_router(admin_stats_router)

    # !! Must be last: catches any callback not handled above !!
    dp.include_router(fallback_router)

    return dp


async def main() -> None:
    logger.info("Starting TradeConnect gate bot…")
    await create_tables()

    access = build_access_service(AsyncSessionFactory)
    if access.anchor is not None and access.anchor.enabled:
        logger.info("Integrity anchoring enabled (%s)", settings.ANCHOR_URL)

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    dp = build_dispatcher(access)

    # ── Graceful shutdown on SIGTERM (Docker / systemd) ───────────────────────
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _handle_signal():
        logger.info("Received shutdown signal, stopping…")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    maintenance = Maintenance(
        access,
        retention_days=settings.SCAN_RETENTION_DAYS,
        interval=settings.ANCHOR_POLL_SECONDS,
    )
    maintenance_task = asyncio.create_task(maintenance.run_forever(shutdown_event))
    polling_task = asyncio.create_task(
        dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    )

    try:
        logger.info("Bot is running. Press Ctrl+C to stop.")
        stop_waiter = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait({polling_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        logger.info("Shutting down…")
        shutdown_event.set()
        if not polling_task.done():
            await dp.stop_polling()
        await asyncio.gather(polling_task, maintenance_task, return_exceptions=True)
        await bot.session.close()
        await engine.dispose()
        logger.info("Shutdown complete.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
