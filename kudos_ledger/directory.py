"""Installation directory: organizations and per-tenant installations."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from kudos_ledger.db import session_scope
from kudos_ledger.models import (
    Installation,
    InstallationNotFound,
    Organization,
    OrganizationAlreadyExists,
    Platform,
)


def find_installation(session: Session, external_installation_id: str) -> Installation | None:
    return session.execute(
        select(Installation).where(Installation.external_installation_id == external_installation_id)
    ).scalar_one_or_none()


def require_installation(session: Session, external_installation_id: str) -> Installation:
    """Return the installation or raise :class:`InstallationNotFound`."""

    installation = find_installation(session, external_installation_id)
    if installation is None:
        raise InstallationNotFound(external_installation_id)
    return installation


def get_installation_by_external_id(external_installation_id: str) -> Installation:
    """Look up an installation by team/space/project id in its own transaction."""

    with session_scope() as session:
        installation = require_installation(session, external_installation_id)
        session.expunge(installation)
        return installation


def create_organization(name: str) -> Organization:
    """Persist a new organization; names are unique."""

    with session_scope() as session:
        organization = Organization(name=name)
        session.add(organization)
        try:
            session.flush()
        except IntegrityError as exc:
            raise OrganizationAlreadyExists(f"Organization {name!r} already exists") from exc
        session.refresh(organization)
        session.expunge(organization)
        return organization


def get_or_create_organization(name: str) -> Organization:
    """Return the organization called *name*, creating it on first install."""

    with session_scope() as session:
        existing = session.execute(select(Organization).where(Organization.name == name)).scalar_one_or_none()
        if existing is not None:
            session.expunge(existing)
            return existing

    try:
        return create_organization(name)
    except OrganizationAlreadyExists:
        # A concurrent install created it between our read and insert.
        with session_scope() as session:
            organization = session.execute(select(Organization).where(Organization.name == name)).scalar_one()
            session.expunge(organization)
            return organization


def create_installation(
    *,
    platform: Platform | str,
    organization_id: int,
    external_installation_id: str,
    access_token: str | None,
    bot_token: str | None,
    team_name: str | None = None,
) -> Installation:
    """Record an installation, or refresh the tokens of an existing one.

    Re-running the OAuth flow for a tenant that is already installed keeps
    the original row (and therefore every kudos recorded against it).
    """

    platform_value = Platform(platform).value
    log = structlog.get_logger().bind(
        platform=platform_value, external_installation_id=external_installation_id
    )

    with session_scope() as session:
        installation = find_installation(session, external_installation_id)
        if installation is None:
            installation = Installation(
                platform=platform_value,
                organization_id=organization_id,
                external_installation_id=external_installation_id,
                access_token=access_token,
                bot_token=bot_token,
                team_name=team_name,
            )
            session.add(installation)
            log.info("installation_created", organization_id=organization_id)
        else:
            installation.access_token = access_token
            installation.bot_token = bot_token
            if team_name:
                installation.team_name = team_name
            log.info("installation_tokens_refreshed", installation_id=installation.id)

        session.flush()
        session.refresh(installation)
        session.expunge(installation)
        return installation


def register_space(space_name: str, project_id: str) -> Installation:
    """Bind a Google Chat space to the project-level installation.

    The OAuth install happens once per Google Cloud project; every space the
    bot is later added to becomes its own installation so totals stay scoped
    to that space.
    """

    project_installation = get_installation_by_external_id(project_id)
    return create_installation(
        platform=Platform.GOOGLE_CHAT,
        organization_id=project_installation.organization_id,
        external_installation_id=space_name,
        access_token=project_installation.access_token,
        bot_token=project_installation.bot_token,
        team_name=project_installation.team_name,
    )
