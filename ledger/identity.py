"""Identity resolution at the system boundary.

Users are keyed by a single normalized string: their wallet address
(lowercased) or, when they have no wallet, their lowercased email. Every
service receives identities that went through one of these functions.
"""

import re
from typing import Optional

from sqlalchemy.orm import Session
from web3 import Web3

from ledger.db.models import User
from ledger.errors import InvalidIdentity

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Lowercase and validate an email address.

    Raises:
        InvalidIdentity: If the value does not look like an email address
    """
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidIdentity(f"Invalid email address: {email!r}")
    return normalized


def normalize_address(address: str) -> str:
    """Lowercase and validate an Ethereum address.

    Mixed-case input must carry a valid EIP-55 checksum.

    Raises:
        InvalidIdentity: If the value is not an Ethereum address
    """
    stripped = (address or "").strip()
    if not Web3.is_address(stripped):
        raise InvalidIdentity(f"Invalid wallet address: {address!r}")
    hex_part = stripped[2:]
    if hex_part != hex_part.lower() and hex_part != hex_part.upper():
        if not Web3.is_checksum_address(stripped):
            raise InvalidIdentity(f"Invalid address checksum: {address!r}")
    return stripped.lower()


def resolve_identity(address: Optional[str] = None, email: Optional[str] = None) -> str:
    """Produce the identity key for a user from a wallet address or an email.

    The wallet address wins when both are given.

    Raises:
        InvalidIdentity: If neither value is usable
    """
    if address and address.strip():
        return normalize_address(address)
    if email and email.strip():
        return normalize_email(email)
    raise InvalidIdentity("A wallet address or an email is required")


def normalize_identity(value: str) -> str:
    """Normalize an identity string that may be either an address or an email."""
    if value and "@" in value:
        return resolve_identity(email=value)
    return resolve_identity(address=value)


def lookup_identity(session: Session, value: str) -> str:
    """Map an address or email onto the identity key of a stored user.

    An email is matched against the users' email column first, so a user
    registered with a wallet can be addressed by either. An email nobody
    registered falls through to the email-keyed identity, which the caller
    reports as not found.
    """
    identity = normalize_identity(value)
    if "@" in identity:
        owner = session.query(User.identity).filter(User.email == identity).first()
        if owner is not None:
            return owner.identity
    return identity
