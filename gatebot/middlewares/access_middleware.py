"""
Injects the shared AccessControlService into handler data under key "access".
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from gatebot.services.access_service import AccessControlService


class AccessMiddleware(BaseMiddleware):
    def __init__(self, access: AccessControlService) -> None:
        self._access = access

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data["access"] = self._access
        return await handler(event, data)
