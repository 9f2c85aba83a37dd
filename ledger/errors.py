"""Error taxonomy for the ledger core.

Every failure the services raise is a ``LedgerError`` carrying a stable
``kind`` string and a human readable message, so callers can report it as a
structured failure without inspecting exception types.
"""

from typing import Any, Dict


class LedgerError(Exception):
    """Base class for all ledger failures."""

    kind = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidIdentity(LedgerError):
    """Raised when neither a valid wallet address nor an email was given."""

    kind = "invalid_identity"


class UserNotFound(LedgerError):
    """Raised when an identity has no ledger row."""

    kind = "user_not_found"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"User not found: {identity}")


class CampaignNotFound(LedgerError):
    """Raised when a campaign id has no ledger row."""

    kind = "campaign_not_found"

    def __init__(self, campaign_id: int):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign not found: {campaign_id}")


class InvalidAmount(LedgerError):
    """Raised for non-positive or non-integer monetary amounts."""

    kind = "invalid_amount"


class DuplicateDonation(LedgerError):
    """Raised when a transaction hash has already been recorded.

    This is the expected outcome of a retried submission, not a bug.
    """

    kind = "duplicate_donation"

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Donation already recorded for transaction {tx_hash}")


class EmailAlreadyRegistered(LedgerError):
    kind = "email_already_registered"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already registered to another account: {email}")


class InvalidReferralCode(LedgerError):
    kind = "invalid_referral_code"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Invalid referral code: {code!r}")


class AlreadyReferred(LedgerError):
    kind = "already_referred"

    def __init__(self, identity: str, referrer: str):
        self.identity = identity
        self.referrer = referrer
        super().__init__(f"User {identity} already has a referrer ({referrer})")


class SelfReferral(LedgerError):
    kind = "self_referral"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"User {identity} cannot refer themselves")


class CodeGenerationExhausted(LedgerError):
    """Raised when every referral code candidate collided.

    Operational alert: the code space or the retry bound needs revisiting.
    """

    kind = "code_generation_exhausted"

    def __init__(self, identity: str, attempts: int):
        self.identity = identity
        self.attempts = attempts
        super().__init__(
            f"Failed to generate unique referral code for {identity} after {attempts} attempts"
        )


class StoreUnavailable(LedgerError):
    """Raised for transient store failures.

    The transaction has been rolled back, so the whole operation is safe to
    retry.
    """

    kind = "store_unavailable"


# Kinds reported as conflicts rather than validation failures
CONFLICT_KINDS = frozenset(
    {
        DuplicateDonation.kind,
        AlreadyReferred.kind,
        EmailAlreadyRegistered.kind,
    }
)
