"""Database health check - verify required tables exist."""

from sqlalchemy import inspect

from ledger.db.session import LedgerStore
from ledger.log import get_logger

logger = get_logger(__name__)

# Required tables that must exist
REQUIRED_TABLES = [
    "users",
    "campaigns",
    "receipts",
    "donations",
    "referrals",
    "rewards_history",
]


def check_tables_exist(store: LedgerStore) -> None:
    """Verify all required tables exist in the database.

    Args:
        store: Ledger store to inspect

    Raises:
        RuntimeError: If any required table is missing
    """
    logger.info("Checking database schema...")

    existing = set(inspect(store.engine).get_table_names())
    for table_name in REQUIRED_TABLES:
        if table_name not in existing:
            raise RuntimeError(
                f"DB schema missing. Table '{table_name}' does not exist. "
                "Run 'python -m ledger init-db' first."
            )
        logger.debug(f"Table '{table_name}' exists")

    logger.info("All required tables exist")
