from .auth import Token, UserCreate, UserLogin, UserResponse
from .threat import (
    RecorderStats,
    SettingUpdate,
    ThreatEventResponse,
    ThreatResolveRequest,
    ThreatSummary,
)

__all__ = [
    "RecorderStats",
    "SettingUpdate",
    "ThreatEventResponse",
    "ThreatResolveRequest",
    "ThreatSummary",
    "Token",
    "UserCreate",
    "UserLogin",
    "UserResponse",
]
