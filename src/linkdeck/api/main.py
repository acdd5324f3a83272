"""FastAPI application serving the LinkDeck remote store."""

import hashlib
import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, FastAPI, File, HTTPException, Response, UploadFile
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session, SQLModel, create_engine, select

from linkdeck import __version__
from linkdeck.deck_file import DeckFileError, deck_to_json, parse_deck
from linkdeck.models import (
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

logger = logging.getLogger(__name__)

# Database setup
DATABASE_URL = os.environ.get("LINKDECK_DATABASE_URL", "sqlite:///linkdeck.db")
engine = create_engine(DATABASE_URL, echo=False)

DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin"
DEFAULT_TOKEN_TTL_DAYS = 100
EXPORT_DISPOSITION = "attachment; filename=link-deck-export.json"

password_hasher = PasswordHasher()
bearer = HTTPBearer(auto_error=False)


def get_session() -> Session:
    """Get database session."""
    return Session(engine)


def init_db() -> None:
    """Initialize database tables and make sure an admin account exists."""
    SQLModel.metadata.create_all(engine)
    with get_session() as session:
        existing = session.exec(select(User).where(User.username == DEFAULT_USERNAME)).first()
        if existing is None:
            session.add(
                User(
                    username=DEFAULT_USERNAME,
                    password_hash=password_hasher.hash(DEFAULT_PASSWORD),
                )
            )
            session.commit()
            logger.warning("Created default user %r; change its password", DEFAULT_USERNAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    init_db()
    yield


app = FastAPI(
    title="LinkDeck API",
    description="Grouped bookmarks store with an admin API",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# Auth helpers
# =============================================================================


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_ttl() -> timedelta:
    """Token lifetime, from ``LINKDECK_TOKEN_TTL_DAYS``."""
    raw = os.environ.get("LINKDECK_TOKEN_TTL_DAYS")
    try:
        days = int(raw) if raw else DEFAULT_TOKEN_TTL_DAYS
    except ValueError:
        days = DEFAULT_TOKEN_TTL_DAYS
    return timedelta(days=days)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def verify_password(user: User, password: str) -> bool:
    try:
        return password_hasher.verify(user.password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> User:
    """Resolve the bearer token to a user or answer 401."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Authentication required")

    with get_session() as session:
        record = session.get(AuthToken, hash_token(credentials.credentials))
        if record is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        if _as_utc(record.expires_at) <= utcnow():
            session.delete(record)
            session.commit()
            raise HTTPException(status_code=401, detail="Token expired")
        user = session.get(User, record.user_id)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        session.expunge(user)
        return user


# =============================================================================
# Serialization
# =============================================================================


def _sorted_groups(session: Session) -> list[GroupRecord]:
    groups = session.exec(select(GroupRecord)).all()
    return sorted(groups, key=lambda g: (g.sort_order, g.id))


def _sorted_links(group: GroupRecord) -> list[LinkRecord]:
    return sorted(group.links, key=lambda link: (link.sort_order, link.id))


def _link_read(link: LinkRecord) -> LinkRead:
    return LinkRead(
        id=link.id,
        group_id=link.group_id,
        name=link.name,
        url=link.url,
        sort_order=link.sort_order,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


def _group_read(group: GroupRecord) -> LinkGroupRead:
    return LinkGroupRead(
        id=group.id,
        name=group.name,
        sort_order=group.sort_order,
        created_at=group.created_at,
        updated_at=group.updated_at,
        links=[_link_read(link) for link in _sorted_links(group)],
    )


def _list_groups() -> list[LinkGroupRead]:
    with get_session() as session:
        return [_group_read(group) for group in _sorted_groups(session)]


# =============================================================================
# Public routes
# =============================================================================


@app.get("/")
def root() -> dict:
    """Root endpoint with API info."""
    return {
        "name": "LinkDeck API",
        "version": __version__,
        "description": "Grouped bookmarks store",
        "docs_url": "/docs",
    }


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/api/login", response_model=LoginResponse)
def login(request: LoginRequest) -> LoginResponse:
    """Exchange username and password for a bearer token."""
    with get_session() as session:
        user = session.exec(select(User).where(User.username == request.username)).first()
        if user is None or not verify_password(user, request.password):
            logger.info("Rejected login for %r", request.username)
            raise HTTPException(status_code=401, detail="Invalid username or password")

        token = secrets.token_urlsafe(32)
        now = utcnow()
        session.add(
            AuthToken(
                token_hash=hash_token(token),
                user_id=user.id,
                created_at=now,
                expires_at=now + token_ttl(),
            )
        )
        session.commit()
        return LoginResponse(token=token, username=user.username)


@app.get("/api/links", response_model=list[LinkGroupRead])
def public_links() -> list[LinkGroupRead]:
    """All groups with their links, in display order."""
    return _list_groups()


# =============================================================================
# Admin: groups
# =============================================================================


@app.get("/api/admin/link-groups", response_model=list[LinkGroupRead])
def admin_list_groups(user: User = Depends(require_user)) -> list[LinkGroupRead]:
    return _list_groups()


@app.post("/api/admin/link-groups", response_model=CreatedResponse)
def create_group(
    request: LinkGroupRequest,
    user: User = Depends(require_user),
) -> CreatedResponse:
    """Create a link group."""
    with get_session() as session:
        group = GroupRecord(name=request.name, sort_order=request.sort_order)
        session.add(group)
        session.commit()
        session.refresh(group)
        return CreatedResponse(id=group.id, message="Link group created successfully")


@app.put("/api/admin/link-groups/{group_id}", response_model=MessageResponse)
def update_group(
    group_id: int,
    request: LinkGroupRequest,
    user: User = Depends(require_user),
) -> MessageResponse:
    """Update a group's name and position."""
    with get_session() as session:
        group = session.get(GroupRecord, group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Link group not found")
        group.name = request.name
        group.sort_order = request.sort_order
        group.updated_at = utcnow()
        session.add(group)
        session.commit()
        return MessageResponse(message="Link group updated successfully")


@app.delete("/api/admin/link-groups/{group_id}", response_model=MessageResponse)
def delete_group(group_id: int, user: User = Depends(require_user)) -> MessageResponse:
    """Delete a group together with its links."""
    with get_session() as session:
        group = session.get(GroupRecord, group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Link group not found")
        session.delete(group)
        session.commit()
        return MessageResponse(message="Link group deleted successfully")


@app.get("/api/admin/link-groups/{group_id}/links", response_model=list[LinkRead])
def group_links(group_id: int, user: User = Depends(require_user)) -> list[LinkRead]:
    with get_session() as session:
        group = session.get(GroupRecord, group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Link group not found")
        return [_link_read(link) for link in _sorted_links(group)]


# =============================================================================
# Admin: links
# =============================================================================


@app.post("/api/admin/links", response_model=CreatedResponse)
def create_link(request: LinkRequest, user: User = Depends(require_user)) -> CreatedResponse:
    """Create a link inside an existing group."""
    with get_session() as session:
        if session.get(GroupRecord, request.group_id) is None:
            raise HTTPException(status_code=404, detail="Link group not found")
        link = LinkRecord(
            group_id=request.group_id,
            name=request.name,
            url=request.url,
            sort_order=request.sort_order,
        )
        session.add(link)
        session.commit()
        session.refresh(link)
        return CreatedResponse(id=link.id, message="Link created successfully")


@app.put("/api/admin/links/{link_id}", response_model=MessageResponse)
def update_link(
    link_id: int,
    request: LinkRequest,
    user: User = Depends(require_user),
) -> MessageResponse:
    with get_session() as session:
        link = session.get(LinkRecord, link_id)
        if not link:
            raise HTTPException(status_code=404, detail="Link not found")
        if session.get(GroupRecord, request.group_id) is None:
            raise HTTPException(status_code=404, detail="Link group not found")
        link.group_id = request.group_id
        link.name = request.name
        link.url = request.url
        link.sort_order = request.sort_order
        link.updated_at = utcnow()
        session.add(link)
        session.commit()
        return MessageResponse(message="Link updated successfully")


@app.delete("/api/admin/links/{link_id}", response_model=MessageResponse)
def delete_link(link_id: int, user: User = Depends(require_user)) -> MessageResponse:
    with get_session() as session:
        link = session.get(LinkRecord, link_id)
        if not link:
            raise HTTPException(status_code=404, detail="Link not found")
        session.delete(link)
        session.commit()
        return MessageResponse(message="Link deleted successfully")


# =============================================================================
# Admin: account
# =============================================================================


@app.post("/api/admin/change-password", response_model=MessageResponse)
def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(require_user),
) -> MessageResponse:
    """Change the current user's password.

    A wrong current password answers 400 so the client keeps its session.
    """
    with get_session() as session:
        stored = session.get(User, user.id)
        if stored is None or not verify_password(stored, request.old_password):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        stored.password_hash = password_hasher.hash(request.new_password)
        stored.updated_at = utcnow()
        session.add(stored)
        session.commit()
        return MessageResponse(message="Password changed successfully")


# =============================================================================
# Admin: bulk replace
# =============================================================================


@app.get("/api/admin/export")
def export_data(user: User = Depends(require_user)) -> Response:
    """Download every group and link as one JSON document."""
    with get_session() as session:
        document = ExportDocument(
            link_groups=[
                ExportLinkGroup(
                    id=group.id,
                    name=group.name,
                    sort_order=group.sort_order,
                    links=[
                        ExportLink(
                            id=link.id,
                            group_id=link.group_id,
                            name=link.name,
                            url=link.url,
                            sort_order=link.sort_order,
                        )
                        for link in _sorted_links(group)
                    ],
                )
                for group in _sorted_groups(session)
            ]
        )
    return Response(
        content=deck_to_json(document),
        media_type="application/json",
        headers={"Content-Disposition": EXPORT_DISPOSITION},
    )


@app.post("/api/admin/import", response_model=MessageResponse)
async def import_data(
    file: UploadFile = File(...),
    user: User = Depends(require_user),
) -> MessageResponse:
    """Replace every group and link with the uploaded document.

    Ids in the document are not kept; the store assigns new ones. The whole
    replacement is one transaction.
    """
    content = await file.read()
    try:
        document = parse_deck(content, "json")
    except DeckFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    with get_session() as session:
        for link in session.exec(select(LinkRecord)).all():
            session.delete(link)
        for group in session.exec(select(GroupRecord)).all():
            session.delete(group)
        session.flush()
        for group_data in document.link_groups:
            group = GroupRecord(name=group_data.name, sort_order=group_data.sort_order)
            session.add(group)
            session.flush()
            for link_data in group_data.links:
                session.add(
                    LinkRecord(
                        group_id=group.id,
                        name=link_data.name,
                        url=link_data.url,
                        sort_order=link_data.sort_order,
                    )
                )
        session.commit()

    logger.info("Imported %d link groups", len(document.link_groups))
    return MessageResponse(message="Data imported successfully")
