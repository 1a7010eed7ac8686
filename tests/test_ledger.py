"""Tests for recording kudos and computing totals."""

from pathlib import Path
import sys

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kudos_ledger import config, ledger  # noqa: E402
from kudos_ledger.commands import ExplicitId, LiteralUsername  # noqa: E402
from kudos_ledger.db import Base, get_engine, get_session_factory, session_scope  # noqa: E402
from kudos_ledger.directory import create_installation, get_or_create_organization  # noqa: E402
from kudos_ledger.models import (  # noqa: E402
    InstallationNotFound,
    InstallationUser,
    Kudos,
    PersistenceFailure,
    Platform,
    User,
)


@pytest.fixture(autouse=True)
def setup_database(monkeypatch, tmp_path):
    db_path = tmp_path / "ledger.db"
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()

    engine = get_engine()
    Base.metadata.create_all(engine)

    yield

    Base.metadata.drop_all(engine)
    engine.dispose()
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


def _install(external_id: str, platform: Platform = Platform.SLACK) -> None:
    organization = get_or_create_organization(f"org-{external_id}")
    create_installation(
        platform=platform,
        organization_id=organization.id,
        external_installation_id=external_id,
        access_token=None,
        bot_token="xoxb-test",
    )


def _count(model) -> int:
    with session_scope() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_grant_records_kudos_and_running_total():
    _install("T1")

    first = ledger.grant("T1", "alice", ExplicitId("bob"), "helping with deploys")
    assert first.total == 1
    assert first.sender_username == "alice"
    assert first.recipient_username == "bob"
    assert first.description == "helping with deploys"
    assert first.platform == "slack"

    second = ledger.grant("T1", "alice", ExplicitId("bob"), "again")
    assert second.total == 2
    assert second.kudos_id != first.kudos_id

    assert _count(Kudos) == 2
    assert _count(User) == 2
    assert _count(InstallationUser) == 2


def test_grant_trims_description():
    _install("T1")

    result = ledger.grant("T1", "alice", "bob", "   shipping the release  ")

    assert result.description == "shipping the release"


def test_grant_rejects_blank_description():
    _install("T1")

    with pytest.raises(ValueError):
        ledger.grant("T1", "alice", ExplicitId("bob"), "   ")

    assert _count(Kudos) == 0
    assert _count(User) == 0


def test_totals_are_scoped_to_the_installation():
    _install("A")
    _install("B")

    ledger.grant("A", "alice", ExplicitId("bob"), "one")
    ledger.grant("A", "alice", ExplicitId("bob"), "two")
    result = ledger.grant("B", "carol", ExplicitId("bob"), "three")

    assert result.total == 1
    assert ledger.count_for_user("A", "bob") == 2
    assert ledger.count_for_user("B", "bob") == 1


def test_total_counts_received_kudos_not_sent():
    _install("T1")

    ledger.grant("T1", "bob", ExplicitId("alice"), "reviews")
    ledger.grant("T1", "bob", ExplicitId("alice"), "more reviews")
    result = ledger.grant("T1", "alice", ExplicitId("bob"), "pairing")

    assert result.total == 1
    assert ledger.count_for_user("T1", "alice") == 2


def test_sender_username_seed_is_applied():
    _install("T1")

    result = ledger.grant("T1", "U111", ExplicitId("U222"), "docs", from_username="alice")

    assert result.sender_username == "alice"
    assert result.recipient_username == "U222"


@pytest.mark.parametrize(
    "steps",
    [
        ("explicit", "sender", "literal"),
        ("sender", "explicit", "literal"),
        ("literal", "explicit", "sender"),
        ("literal", "sender", "explicit"),
    ],
)
def test_seeded_handles_keep_one_total_whatever_the_order(steps):
    _install("T1")
    actions = {
        "explicit": lambda: ledger.grant("T1", "U2", ExplicitId("U1"), "review", to_username="bob"),
        "literal": lambda: ledger.grant("T1", "U2", LiteralUsername("bob"), "docs"),
        "sender": lambda: ledger.grant("T1", "U1", ExplicitId("U3"), "pairing", from_username="bob"),
    }

    for step in steps:
        actions[step]()

    assert ledger.count_for_user("T1", "bob") == 2
    assert ledger.count_for_user("T1", "U1") == 0


def test_literal_username_recipient_has_no_binding():
    _install("T1")

    result = ledger.grant("T1", "alice", LiteralUsername("dave"), "coffee")

    assert result.recipient_username == "dave"
    assert result.total == 1
    with session_scope() as session:
        bound_ids = session.execute(select(InstallationUser.external_user_id)).scalars().all()
    assert bound_ids == ["alice"]


def test_unknown_installation_raises_and_writes_nothing():
    with pytest.raises(InstallationNotFound):
        ledger.grant("missing", "alice", ExplicitId("bob"), "nothing")

    assert _count(User) == 0
    assert _count(Kudos) == 0


def test_failed_insert_rolls_back_resolved_identities(monkeypatch):
    _install("T1")

    def broken_recipient(session, installation, mention, **kwargs):
        raise OperationalError("INSERT INTO users", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger, "_resolve_recipient", broken_recipient)

    with pytest.raises(PersistenceFailure):
        ledger.grant("T1", "alice", ExplicitId("bob"), "never stored")

    assert _count(User) == 0
    assert _count(InstallationUser) == 0
    assert _count(Kudos) == 0


def test_unexpected_error_also_rolls_back(monkeypatch):
    _install("T1")

    def broken_count(session, installation_id, user_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(ledger, "_count_received", broken_count)

    with pytest.raises(RuntimeError):
        ledger.grant("T1", "alice", ExplicitId("bob"), "never stored")

    assert _count(User) == 0
    assert _count(Kudos) == 0


def test_count_for_user_unknown_installation():
    with pytest.raises(InstallationNotFound):
        ledger.count_for_user("missing", "bob")


def test_count_for_user_without_kudos_is_zero():
    _install("T1")

    assert ledger.count_for_user("T1", "nobody") == 0
