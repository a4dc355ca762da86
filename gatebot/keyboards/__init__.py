from gatebot.keyboards.callbacks import (
    MainMenuCb,
    AdminPanelCb,
    EventCb,
    ScanCb,
    CodeCb,
)
from gatebot.keyboards.main_menu import admin_main_menu, back_to_main
from gatebot.keyboards.admin_kb import (
    event_list_kb,
    scanner_kb,
    code_actions_kb,
    event_stats_kb,
    cancel_input_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "AdminPanelCb", "EventCb", "ScanCb", "CodeCb",
    # main menu
    "admin_main_menu", "back_to_main",
    # admin
    "event_list_kb", "scanner_kb", "code_actions_kb", "event_stats_kb", "cancel_input_kb",
]
