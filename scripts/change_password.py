"""
Reset an admin password directly in the database.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sitestore.auth import MIN_PASSWORD_LENGTH, hash_password
from sitestore.config import get_settings
from sitestore.db import SqlDbClient

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Change an admin password")
    parser.add_argument("password", help="New password")
    parser.add_argument(
        "username",
        nargs="?",
        default=None,
        help="Admin login (defaults to ADMIN_USERNAME)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override the database URL from settings",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    username = args.username or settings.admin_username
    if len(args.password) < MIN_PASSWORD_LENGTH:
        logger.error("Password must be at least %d characters", MIN_PASSWORD_LENGTH)
        return 1

    db = SqlDbClient(args.database_url or settings.resolved_database_url)
    if db.get_admin(username) is None:
        logger.error("Admin user %s not found", username)
        return 1

    db.set_password_hash(username, hash_password(args.password))
    logger.info("Password changed for %s", username)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
