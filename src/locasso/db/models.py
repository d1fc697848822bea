"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys generated in Python (no DB round-trip to learn the id)
- (external_id, provider) is unique at the database level — the store,
  not the application, arbitrates concurrent first sign-ins
- Role stored as a string-backed enum so new roles don't need a type migration
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Enum,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class UserRole(str, enum.Enum):
    ADMIN = "Admin"
    GUIDE = "Guide"
    TRAVELER = "Traveler"


class User(Base):
    """A person who signed in through one identity provider.

    Learn: The same human signing in with Apple and with Google gets two
    rows — identity is keyed by (external_id, provider), not by email.
    Only the identity service writes to this table.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint(
            "external_id", "provider", name="uq_users_external_id_provider"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=new_uuid
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    photo_url: Mapped[str] = mapped_column(
        String(2048), nullable=False, default=""
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=20,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=UserRole.TRAVELER,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_login_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User {self.id} provider={self.provider}>"
