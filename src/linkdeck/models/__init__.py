"""Data models for LinkDeck."""

from .schemas import (
    AuthToken,
    ChangePasswordRequest,
    CreatedResponse,
    ExportDocument,
    ExportLink,
    ExportLinkGroup,
    GroupRecord,
    LinkGroupRead,
    LinkGroupRequest,
    LinkRead,
    LinkRecord,
    LinkRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    User,
    utcnow,
)

__all__ = [
    "AuthToken",
    "ChangePasswordRequest",
    "CreatedResponse",
    "ExportDocument",
    "ExportLink",
    "ExportLinkGroup",
    "GroupRecord",
    "LinkGroupRead",
    "LinkGroupRequest",
    "LinkRead",
    "LinkRecord",
    "LinkRequest",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "User",
    "utcnow",
]
