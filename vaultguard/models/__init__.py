from .audit import AuditLog, AuditStatus
from .rate_limit import IdentifierType, RateLimitWindow
from .setting import SettingEntry
from .threat import ThreatEvent, ThreatSeverity, ThreatType
from .user import User

__all__ = [
    "AuditLog",
    "AuditStatus",
    "IdentifierType",
    "RateLimitWindow",
    "SettingEntry",
    "ThreatEvent",
    "ThreatSeverity",
    "ThreatType",
    "User",
]
