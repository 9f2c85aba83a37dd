"""Configuration management for the donation ledger."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Config:
    """Ledger configuration."""

    # Required
    db_url: str

    # Database pool settings (ignored for SQLite)
    db_pool_size: int = 10
    db_max_overflow: int = 20

    log_level: str = "INFO"

    # Receipt gateway
    ipfs_gateway_url: str = "https://ipfs.io/ipfs/"
    ipfs_fetch_timeout: int = 30

    # Donation path
    max_retries: int = 3
    apply_bonus: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        return cls(
            db_url=db_url,
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            db_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            ipfs_gateway_url=os.getenv("IPFS_GATEWAY_URL", "https://ipfs.io/ipfs/"),
            ipfs_fetch_timeout=int(os.getenv("IPFS_FETCH_TIMEOUT", "30")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            apply_bonus=os.getenv("LEDGER_APPLY_BONUS", "false").strip().lower() in _TRUE_VALUES,
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.db_url:
            raise ValueError("db_url is required")
        if self.db_pool_size <= 0:
            raise ValueError("db_pool_size must be > 0")
        if self.db_max_overflow < 0:
            raise ValueError("db_max_overflow must be >= 0")
        if not self.ipfs_gateway_url:
            raise ValueError("ipfs_gateway_url is required")
        if self.ipfs_fetch_timeout <= 0:
            raise ValueError("ipfs_fetch_timeout must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
