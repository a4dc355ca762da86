"""
Rate-limiting middleware for the gate bot.

Limits how many updates a single Telegram user can send within a rolling
time window, so a stuck scanner or a spamming client cannot flood the
validator. Users over the limit get one throttle alert per update and the
update is dropped.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramAPIError
from aiogram.types import TelegramObject

from gatebot.services.throttle import SlidingWindowLimiter

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseMiddleware):
    """
    Parameters
    ----------
    rate    : maximum number of requests allowed per user per window
    period  : window size in seconds
    limiter : pre-built limiter (tests inject one with a fake clock)
    """

    def __init__(
        self,
        rate: int = 30,
        period: float = 60.0,
        limiter: Optional[SlidingWindowLimiter] = None,
    ) -> None:
        self._limiter = limiter or SlidingWindowLimiter(rate, period)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        if user is None:
            return await handler(event, data)

        if not self._limiter.hit(user.id):
            logger.info("User %d throttled", user.id)
            await self._throttle_response(data)
            return None

        return await handler(event, data)

    async def _throttle_response(self, data: Dict[str, Any]) -> None:
        """Send a throttle alert and acknowledge callbacks to clear spinners."""
        msg = "⏳ Too many requests. Please wait a moment and try again."

        update = data.get("event_update")
        if update is None:
            return

        try:
            if update.callback_query:
                await update.callback_query.answer(msg, show_alert=True)
            elif update.message:
                await update.message.answer(msg)
        except TelegramAPIError as e:
            logger.debug("Throttle notice not delivered: %s", e)
