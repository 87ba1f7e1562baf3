import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- 1. Auth subsystem tables ---

class AuthIdentity(SQLModel, table=True):
    """Credentials known to the auth subsystem. Its id is shared with `user.id`."""
    __tablename__ = "auth_identity"

    id: str = Field(default_factory=_new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    password: str
    created_at: datetime = Field(default_factory=utcnow)


class RevokedToken(SQLModel, table=True):
    """Access tokens invalidated by a sign-out before their expiry."""
    __tablename__ = "revoked_token"

    jti: str = Field(primary_key=True)
    revoked_at: datetime = Field(default_factory=utcnow)


# --- 2. Application tables ---

class Company(SQLModel, table=True):
    __tablename__ = "company"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    business_sector: str = ""
    services: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    target_audience: str = ""
    # (primary, secondary) hex colours
    brand_colors: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    logo_url: Optional[str] = None
    tone_of_voice: str = ""
    visual_style: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    """Application profile of a signed-up identity. Read-only once created."""
    __tablename__ = "user"

    id: str = Field(primary_key=True)
    email: str = Field(index=True)
    first_name: str = ""
    last_name: str = ""
    role: str = "user"
    company_id: Optional[str] = Field(default=None, foreign_key="company.id")
    created_at: datetime = Field(default_factory=utcnow)


class Pack(SQLModel, table=True):
    """A company's subscription plan for the current billing cycle."""
    __tablename__ = "pack"

    id: str = Field(default_factory=_new_id, primary_key=True)
    company_id: str = Field(foreign_key="company.id", index=True)
    pack_type: str = "essential"
    monthly_posts_limit: int = Field(default=30, ge=0)
    posts_used: int = Field(default=0, ge=0)
    price: float = 0.0
    status: str = "active"


class Template(SQLModel, table=True):
    __tablename__ = "template"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    category: str = "general"
    base_prompt: str = ""
    thumbnail_url: Optional[str] = None
    sectors: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    platforms: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    formats: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class GeneratedPost(SQLModel, table=True):
    """One successful generation. Never updated or deleted by the application."""
    __tablename__ = "generated_post"

    id: str = Field(default_factory=_new_id, primary_key=True)
    company_id: str = Field(foreign_key="company.id", index=True)
    platform: str
    format: str
    template_id: Optional[str] = Field(default=None, foreign_key="template.id")
    suggestion: str = ""
    image_url: str
    caption_text: str = ""
    hashtags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, index=True)
