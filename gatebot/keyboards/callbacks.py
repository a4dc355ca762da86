"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
Code ids are UUID strings (36 chars), which still fits.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str


class AdminPanelCb(CallbackData, prefix="adm"):
    action: str           # scan | codes | stats | back


class EventCb(CallbackData, prefix="evt"):
    action: str           # scan | stats | suspicious
    eid: int = 0          # event id


class ScanCb(CallbackData, prefix="scn"):
    action: str           # stop | anchor
    eid: int = 0


class CodeCb(CallbackData, prefix="cod"):
    action: str           # issue | regenerate | invalidate | anchor | history
    rid: int = 0          # registration id
    cid: str = ""         # access code id
