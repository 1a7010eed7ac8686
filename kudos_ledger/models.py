"""SQLAlchemy models for organizations, installations, users and kudos."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import List

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kudos_ledger.db import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Platform(str, Enum):
    """Chat platforms an installation can belong to."""

    SLACK = "slack"
    GOOGLE_CHAT = "googlechat"


class Organization(Base):
    """Top-level tenant identity (a Slack team or Google Cloud project)."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    installations: Mapped[List["Installation"]] = relationship("Installation", back_populates="organization")


class Installation(Base):
    """One activation of the app on a (platform, tenant) pair."""

    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_installation_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    bot_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    team_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    organization: Mapped[Organization] = relationship("Organization", back_populates="installations")


class User(Base):
    """Global internal identity a kudos can be given to or from."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class InstallationUser(Base):
    """Binds a platform-local user identifier to a User within one installation."""

    __tablename__ = "installation_users"
    __table_args__ = (
        UniqueConstraint("installation_id", "external_user_id", name="uq_installation_users_external"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    installation_id: Mapped[int] = mapped_column(ForeignKey("installations.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    installation: Mapped[Installation] = relationship("Installation")
    user: Mapped[User] = relationship("User")


class Kudos(Base):
    """One recorded act of recognition. Rows are never updated or deleted."""

    __tablename__ = "kudos"
    __table_args__ = (
        CheckConstraint("length(trim(description)) > 0", name="ck_kudos_description_not_empty"),
        Index("ix_kudos_installation_recipient", "installation_id", "to_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    to_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    installation_id: Mapped[int] = mapped_column(ForeignKey("installations.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    from_user: Mapped[User] = relationship("User", foreign_keys=[from_user_id])
    to_user: Mapped[User] = relationship("User", foreign_keys=[to_user_id])
    installation: Mapped[Installation] = relationship("Installation")


class KudosLedgerError(Exception):
    """Base class for errors surfaced by the ledger core."""


class InstallationNotFound(KudosLedgerError):
    """Raised when no installation exists for an external tenant identifier."""

    def __init__(self, external_installation_id: str) -> None:
        super().__init__(f"No installation found for {external_installation_id!r}")
        self.external_installation_id = external_installation_id


class OrganizationAlreadyExists(KudosLedgerError):
    """Raised when creating an organization whose name is taken."""


class IdentityConflict(KudosLedgerError):
    """Raised when an identity insert collides with a concurrent writer."""


class PersistenceFailure(KudosLedgerError):
    """Raised when the store fails in a way the ledger does not handle itself."""
