"""Domain models for the guest pass backend"""
from .resident import Resident
from .guest_pass import GuestPass, PassStatus
from .used_token import UsedToken
from .audit_log import AuditLog
from .pass_details import PassDetails

__all__ = [
    "Resident",
    "GuestPass",
    "PassStatus",
    "UsedToken",
    "AuditLog",
    "PassDetails",
]
