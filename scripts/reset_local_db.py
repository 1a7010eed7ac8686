"""Create or reset the kudos ledger schema for local development.

Usage:
    python scripts/reset_local_db.py            # drop and recreate every table
    python scripts/reset_local_db.py --create   # only create missing tables

Environment:
    DATABASE_URL and SLACK_SIGNING_SECRET must be set in the current shell.
"""

from __future__ import annotations

import argparse

from kudos_ledger import models  # noqa: F401  (registers tables on Base.metadata)
from kudos_ledger.db import Base, get_engine


def reset_database(*, drop: bool = True) -> None:
    engine = get_engine()
    if drop:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    tables = ", ".join(sorted(Base.metadata.tables))
    print(f"Schema ready ({'reset' if drop else 'created'}): {tables}")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--create", action="store_true", help="create missing tables without dropping data")
    args = parser.parse_args()
    reset_database(drop=not args.create)


if __name__ == "__main__":
    main()
