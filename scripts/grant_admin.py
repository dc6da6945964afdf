"""
Grant (or revoke) the admin role for a user in the user directory.

The directory is the fallback the authorization resolver consults when the
identity provider's token carries no admin role claim.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backoffice.config import get_settings
from backoffice.db import ResourceStore, SqlResourceStore, create_store_engine
from backoffice.resources import USERS_TABLE
from backoffice.tables import TABLES

logger = logging.getLogger(__name__)


async def set_role(store: ResourceStore, email: str, role: str) -> dict:
    existing = await store.find_one("email", email, case_insensitive=True)
    if existing:
        updated = await store.update(existing["id"], {"role": role})
        logger.info("Set role=%s for existing user %s (id=%s)", role, email, existing["id"])
        return updated
    created = await store.insert({"email": email, "role": role})
    logger.info("Created user %s with role=%s (id=%s)", email, role, created["id"])
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant the admin role to a user")
    parser.add_argument("email", help="Email address of the user")
    parser.add_argument(
        "--role",
        default="admin",
        help="Role to set (use 'user' to revoke admin access)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL; defaults to DATABASE_URL",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    database_url = args.database_url or get_settings().database_url
    if not database_url:
        logger.error("DATABASE_URL is not configured")
        return 1

    store = SqlResourceStore(create_store_engine(database_url), TABLES[USERS_TABLE])
    asyncio.run(set_role(store, args.email, args.role))
    return 0


if __name__ == "__main__":
    sys.exit(main())
