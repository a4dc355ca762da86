# access_service and maintenance depend on gatebot.validators; import them by module path.
from gatebot.services.outcomes import (
    ReasonCode, REASON_MESSAGES, Failure, ValidationResult,
    AccessInfrastructureError, TokenCollisionError,
)
from gatebot.services.state_machine import (
    TRANSITIONS, TERMINAL_STATES,
    can_transition, is_expired, effective_status,
    is_valid_for_scan, denial_reason,
)
from gatebot.services.collaborators import (
    ScanContext, RegistrationDirectory, AttendanceRecorder,
    SqlRegistrationDirectory, SqlAttendanceRecorder,
)
from gatebot.services.anchor_service import (
    AnchorStatus, AnchorVerification, AnchorReceipt, AnchorUnavailableError,
    LedgerClient, IntegrityAnchor, build_integrity_anchor,
)
from gatebot.services.issuer import CodeIssuer, IssuedCode, get_active_code
from gatebot.services.scan_validator import ScanValidator
from gatebot.services.regeneration import RegenerationCoordinator, Regeneration, codes_for_registration
from gatebot.services.stats_service import (
    code_stats, scan_stats, detect_suspicious_patterns,
    purge_scan_attempts, format_stats_text,
)
from gatebot.services.throttle import SlidingWindowLimiter
from gatebot.services.qr_service import (
    make_qr_token, hash_token, extract_token,
    generate_qr_buffered, generate_qr_png,
)

__all__ = [
    # outcomes
    "ReasonCode", "REASON_MESSAGES", "Failure", "ValidationResult",
    "AccessInfrastructureError", "TokenCollisionError",
    # state machine
    "TRANSITIONS", "TERMINAL_STATES",
    "can_transition", "is_expired", "effective_status",
    "is_valid_for_scan", "denial_reason",
    # collaborators
    "ScanContext", "RegistrationDirectory", "AttendanceRecorder",
    "SqlRegistrationDirectory", "SqlAttendanceRecorder",
    # integrity anchor
    "AnchorStatus", "AnchorVerification", "AnchorReceipt", "AnchorUnavailableError",
    "LedgerClient", "IntegrityAnchor", "build_integrity_anchor",
    # lifecycle
    "CodeIssuer", "IssuedCode", "get_active_code",
    "ScanValidator",
    "RegenerationCoordinator", "Regeneration", "codes_for_registration",
    # stats
    "code_stats", "scan_stats", "detect_suspicious_patterns",
    "purge_scan_attempts", "format_stats_text",
    # throttle
    "SlidingWindowLimiter",
    # QR
    "make_qr_token", "hash_token", "extract_token",
    "generate_qr_buffered", "generate_qr_png",
]
