"""Multi-tenant kudos ledger for Slack and Google Chat."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .db import Base, get_engine, get_session_factory, session_scope  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import Installation, InstallationUser, Kudos, Organization, User  # noqa: F401
from .ledger import GrantResult, count_for_user, grant  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "Base",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "configure_logging",
    "Organization",
    "Installation",
    "User",
    "InstallationUser",
    "Kudos",
    "GrantResult",
    "grant",
    "count_for_user",
]
