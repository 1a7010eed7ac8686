"""Record kudos grants and compute running totals per installation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from kudos_ledger.commands import ExplicitId, LiteralUsername, Mention
from kudos_ledger.db import session_scope
from kudos_ledger.directory import require_installation
from kudos_ledger.identity import resolve, resolve_username
from kudos_ledger.models import Installation, Kudos, PersistenceFailure, User


@dataclass(frozen=True)
class GrantResult:
    kudos_id: int
    recipient_username: str
    sender_username: str
    description: str
    total: int
    platform: str
    created_at: datetime


def _resolve_recipient(
    session: Session, installation: Installation, mention: Mention | str, *, username: str | None = None
) -> User:
    if isinstance(mention, str):
        mention = ExplicitId(mention)
    if isinstance(mention, ExplicitId):
        return resolve(session, installation, mention.value, username=username)
    if isinstance(mention, LiteralUsername):
        return resolve_username(session, mention.value)
    raise TypeError(f"Unsupported mention type: {type(mention).__name__}")


def _count_received(session: Session, installation_id: int, user_id: int) -> int:
    return session.execute(
        select(func.count(Kudos.id)).where(
            Kudos.installation_id == installation_id,
            Kudos.to_user_id == user_id,
        )
    ).scalar_one()


def grant(
    installation_external_id: str,
    from_identity: str,
    to_identity: Mention | str,
    description: str,
    *,
    from_username: str | None = None,
    to_username: str | None = None,
) -> GrantResult:
    """Record one kudos from *from_identity* to *to_identity*.

    Sender and recipient resolution, the insert and the recount share one
    transaction: if any step fails nothing is persisted, including users
    created while resolving. *from_username* and *to_username* seed the
    username of a user seen for the first time; pass the platform handle so
    the same person is found again through an ``@handle`` mention.

    The call is not idempotent; a redelivered webhook records a second kudos.
    """

    cleaned = (description or "").strip()
    if not cleaned:
        raise ValueError("Description is required.")

    log = structlog.get_logger().bind(installation=installation_external_id)

    try:
        with session_scope() as session:
            installation = require_installation(session, installation_external_id)
            sender = resolve(session, installation, from_identity, username=from_username)
            recipient = _resolve_recipient(session, installation, to_identity, username=to_username)

            kudos = Kudos(
                from_user_id=sender.id,
                to_user_id=recipient.id,
                description=cleaned,
                installation_id=installation.id,
            )
            session.add(kudos)
            session.flush()

            total = _count_received(session, installation.id, recipient.id)
            result = GrantResult(
                kudos_id=kudos.id,
                recipient_username=recipient.username,
                sender_username=sender.username,
                description=kudos.description,
                total=total,
                platform=installation.platform,
                created_at=kudos.created_at,
            )
    except SQLAlchemyError as exc:
        log.error("kudos_grant_failed", error=str(exc))
        raise PersistenceFailure("Could not record kudos") from exc

    log.info(
        "kudos_granted",
        kudos_id=result.kudos_id,
        sender=result.sender_username,
        recipient=result.recipient_username,
        total=result.total,
    )
    return result


def count_for_user(installation_external_id: str, username: str) -> int:
    """Number of kudos *username* has received within one installation."""

    try:
        with session_scope() as session:
            installation = require_installation(session, installation_external_id)
            return session.execute(
                select(func.count(Kudos.id))
                .join(User, Kudos.to_user_id == User.id)
                .where(Kudos.installation_id == installation.id, User.username == username)
            ).scalar_one()
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not count kudos") from exc
