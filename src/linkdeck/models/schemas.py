"""SQLModel schemas for the LinkDeck remote store and its API payloads."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Tables
# =============================================================================


class GroupRecord(SQLModel, table=True):
    """A stored link group."""

    __tablename__ = "link_groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    sort_order: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    links: list["LinkRecord"] = Relationship(
        back_populates="group",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class LinkRecord(SQLModel, table=True):
    """A stored link."""

    __tablename__ = "links"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="link_groups.id", index=True)
    name: str
    url: str
    sort_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    group: Optional[GroupRecord] = Relationship(back_populates="links")


class User(SQLModel, table=True):
    """An admin account."""

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AuthToken(SQLModel, table=True):
    """An issued bearer token, stored by hash only."""

    __tablename__ = "auth_tokens"

    token_hash: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime


# =============================================================================
# Request / response payloads
# =============================================================================


class LoginRequest(SQLModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(SQLModel):
    token: str
    username: str


class ChangePasswordRequest(SQLModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class LinkGroupRequest(SQLModel):
    """Body for creating or updating a group (update takes name + position)."""

    name: str = Field(min_length=1)
    sort_order: int = Field(default=0, ge=0)


class LinkRequest(SQLModel):
    """Body for creating or updating a link."""

    group_id: int
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    sort_order: int = Field(default=0, ge=0)


class LinkRead(SQLModel):
    id: int
    group_id: int
    name: str
    url: str
    sort_order: int
    created_at: datetime
    updated_at: datetime


class LinkGroupRead(SQLModel):
    id: int
    name: str
    sort_order: int
    created_at: datetime
    updated_at: datetime
    links: list[LinkRead] = Field(default_factory=list)


class CreatedResponse(SQLModel):
    id: int
    message: str


class MessageResponse(SQLModel):
    message: str


# =============================================================================
# Export document (bulk replace)
# =============================================================================


class ExportLink(SQLModel):
    """A link in the export document, without timestamps."""

    id: Optional[int] = None
    group_id: Optional[int] = None
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    sort_order: int = 0


class ExportLinkGroup(SQLModel):
    """A group in the export document, without timestamps."""

    id: Optional[int] = None
    name: str = Field(min_length=1)
    sort_order: int = 0
    links: list[ExportLink] = Field(default_factory=list)


class ExportDocument(SQLModel):
    """The whole hierarchy as one document."""

    link_groups: list[ExportLinkGroup] = Field(default_factory=list)
