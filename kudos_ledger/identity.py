"""Resolve platform user identifiers to internal users.

Lookups and creates run inside the caller's session so that a grant can
resolve both parties and record the kudos in a single transaction. Every
insert is wrapped in a SAVEPOINT: when a concurrent request wins the race on
a unique constraint, only the savepoint is rolled back and the row written by
the winner is fetched instead.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from kudos_ledger.directory import require_installation
from kudos_ledger.models import IdentityConflict, Installation, InstallationUser, User

MAX_RESOLVE_ATTEMPTS = 3


def find_user_by_username(session: Session, username: str) -> User | None:
    return session.execute(select(User).where(User.username == username)).scalar_one_or_none()


def find_binding(session: Session, installation_id: int, external_user_id: str) -> InstallationUser | None:
    return session.execute(
        select(InstallationUser).where(
            InstallationUser.installation_id == installation_id,
            InstallationUser.external_user_id == external_user_id,
        )
    ).scalar_one_or_none()


def _insert_user(session: Session, username: str) -> User:
    user = User(username=username)
    try:
        with session.begin_nested():
            session.add(user)
            session.flush()
    except IntegrityError as exc:
        raise IdentityConflict(f"Username {username!r} was created concurrently") from exc
    return user


def _insert_binding(session: Session, installation: Installation, external_user_id: str, username: str) -> User:
    try:
        with session.begin_nested():
            user = find_user_by_username(session, username) or _insert_user(session, username)
            session.add(
                InstallationUser(
                    installation_id=installation.id,
                    external_user_id=external_user_id,
                    user_id=user.id,
                )
            )
            session.flush()
    except IntegrityError as exc:
        raise IdentityConflict(
            f"Binding for {external_user_id!r} in installation {installation.id} was created concurrently"
        ) from exc
    return user


def resolve_username(session: Session, username: str) -> User:
    """Get or create the user called *username* without an installation binding."""

    if not username:
        raise ValueError("Username is required.")

    for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
        user = find_user_by_username(session, username)
        if user is not None:
            return user
        try:
            return _insert_user(session, username)
        except IdentityConflict:
            structlog.get_logger().info("username_conflict_retry", username=username, attempt=attempt)

    raise IdentityConflict(f"Could not resolve username {username!r}")


def resolve(
    session: Session,
    installation: Installation | str,
    external_user_id: str,
    *,
    username: str | None = None,
) -> User:
    """Return the user bound to *external_user_id* in *installation*.

    *installation* is either a loaded :class:`Installation` or its external
    id; an unknown id raises :class:`InstallationNotFound`. On first sight of
    the identifier a binding is created, pointing at the user named
    *username* (defaults to the identifier itself), which is created if
    needed.
    """

    if not external_user_id:
        raise ValueError("External user id is required.")

    if isinstance(installation, str):
        installation = require_installation(session, installation)

    seed_username = username or external_user_id
    log = structlog.get_logger().bind(installation_id=installation.id, external_user_id=external_user_id)

    for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
        binding = find_binding(session, installation.id, external_user_id)
        if binding is not None:
            return binding.user

        try:
            user = _insert_binding(session, installation, external_user_id, seed_username)
        except IdentityConflict:
            log.info("identity_conflict_retry", attempt=attempt)
            continue

        log.info("identity_created", user_id=user.id, username=user.username)
        return user

    raise IdentityConflict(
        f"Could not resolve {external_user_id!r} in installation {installation.id} "
        f"after {MAX_RESOLVE_ATTEMPTS} attempts"
    )
