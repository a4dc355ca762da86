from aiogram.fsm.state import State, StatesGroup


class AdminQrScanStates(StatesGroup):
    """FSM for the scanner loop at an access point."""
    waiting_token = State()   # Event chosen; every text message is a scan


class AdminCodeStates(StatesGroup):
    """FSM for issue / regenerate / invalidate wizards."""
    enter_registration = State()   # Text input: registration id
    enter_reason       = State()   # Text input: regeneration / invalidation reason
