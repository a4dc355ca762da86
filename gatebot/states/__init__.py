from gatebot.states.admin_states import AdminQrScanStates, AdminCodeStates

__all__ = ["AdminQrScanStates", "AdminCodeStates"]
