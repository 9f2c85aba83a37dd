"""Referral registry: referral codes and one-shot referrer binding."""

import secrets
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger.db.models import Referral, User
from ledger.db.session import LedgerStore
from ledger.errors import (
    AlreadyReferred,
    CodeGenerationExhausted,
    InvalidReferralCode,
    SelfReferral,
    StoreUnavailable,
    UserNotFound,
)
from ledger.identity import lookup_identity
from ledger.log import get_logger
from ledger.services.impact import REASON_REFERRAL, lock_user, refresh_impact_score

logger = get_logger(__name__)

# Uppercase letters and digits without the easily confused I, O, 0 and 1
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


def generate_code() -> str:
    """Generate a candidate referral code.

    Uniqueness is not implied: the store's unique constraint decides.
    """
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def normalize_code(code: str) -> str:
    """Referral codes are case-insensitive and stored uppercase."""
    return (code or "").strip().upper()


def assign_code(
    session: Session,
    identity: str,
    code_generator: Callable[[], str] = generate_code,
) -> str:
    """Return the user's referral code, assigning one if it has none.

    Codes are immutable once assigned. Each candidate is written inside a
    SAVEPOINT so a collision on the unique constraint only discards that
    attempt.

    Raises:
        UserNotFound: If the identity has no ledger row
        CodeGenerationExhausted: If MAX_CODE_ATTEMPTS candidates all collided
    """
    user = lock_user(session, identity)
    if user.referral_code:
        return user.referral_code

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        candidate = normalize_code(code_generator())

        taken = session.query(User.identity).filter(User.referral_code == candidate).first()
        if taken is not None:
            logger.debug(f"Referral code collision ({attempt}/{MAX_CODE_ATTEMPTS}): {candidate}")
            continue

        try:
            with session.begin_nested():
                user.referral_code = candidate
                session.flush()
        except IntegrityError:
            # Lost a race with another transaction claiming the same code
            logger.debug(f"Referral code collision ({attempt}/{MAX_CODE_ATTEMPTS}): {candidate}")
            continue

        logger.info(f"Assigned referral code {candidate} to {identity}")
        return candidate

    logger.error(
        f"Referral code generation exhausted for {identity} after {MAX_CODE_ATTEMPTS} attempts"
    )
    raise CodeGenerationExhausted(identity, MAX_CODE_ATTEMPTS)


def bind_referral(session: Session, identity: str, referral_code: str) -> str:
    """Bind the owner of ``referral_code`` as the referrer of ``identity``.

    Sets ``referred_by``, increments the referrer's ``referral_count``,
    appends the referral log row and refreshes the referrer's impact score,
    all inside the caller's transaction.

    Args:
        session: Database session (caller owns the transaction)
        identity: Normalized identity of the referred user
        referral_code: Referrer's code, any case

    Returns:
        Referrer identity

    Raises:
        UserNotFound: If the referred user has no ledger row
        AlreadyReferred: If the user already has a referrer (checked first)
        InvalidReferralCode: If no user owns the code
        SelfReferral: If the code belongs to the user itself
    """
    referee = lock_user(session, identity)
    if referee.referred_by:
        raise AlreadyReferred(identity, referee.referred_by)

    code = normalize_code(referral_code)
    if not code:
        raise InvalidReferralCode(referral_code)

    referrer = (
        session.query(User)
        .filter(User.referral_code == code)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if referrer is None:
        raise InvalidReferralCode(code)

    if referrer.identity.lower() == referee.identity.lower():
        raise SelfReferral(identity)

    referee.referred_by = referrer.identity
    referrer.referral_count = (referrer.referral_count or 0) + 1
    session.add(
        Referral(
            referrer_identity=referrer.identity,
            referee_identity=referee.identity,
        )
    )
    session.flush()

    logger.info(f"Referral linked: {referee.identity} referred by {referrer.identity} ({code})")

    refresh_impact_score(session, referrer.identity, reason=REASON_REFERRAL)
    return referrer.identity


def get_referral_stats(session: Session, identity: str) -> Dict[str, Any]:
    """Read a user's referral statistics.

    Raises:
        UserNotFound: If the identity has no ledger row
    """
    user = session.get(User, identity)
    if user is None:
        raise UserNotFound(identity)

    logged = session.query(Referral).filter(Referral.referrer_identity == identity).count()
    return {
        "referral_code": user.referral_code,
        "referred_by": user.referred_by,
        "referral_count": user.referral_count or 0,
        "referrals_logged": logged,
    }


class ReferralRegistry:
    """Transactional entry points for referral codes and binding."""

    def __init__(
        self,
        store: LedgerStore,
        code_generator: Callable[[], str] = generate_code,
        max_retries: Optional[int] = None,
    ):
        """Initialize referral registry.

        Args:
            store: Ledger store
            code_generator: Candidate code source
            max_retries: Whole-transaction retries when a bind hits a lock conflict
        """
        self.store = store
        self.code_generator = code_generator
        self.max_retries = store.config.max_retries if max_retries is None else max_retries

    def get_or_create_code(self, identity: str) -> str:
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            return assign_code(session, identity, self.code_generator)

    def bind_referral(self, identity: str, referral_code: str) -> str:
        """Bind a referrer to an existing user. See ``bind_referral``.

        Two reciprocal binds lock the same pair of rows in opposite order; the
        database aborts one of them and the whole transaction is run again.
        """
        attempt = 0
        while True:
            try:
                with self.store.session() as session:
                    referee = lookup_identity(session, identity)
                    return bind_referral(session, referee, referral_code)
            except (StaleDataError, StoreUnavailable) as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"Referral bind for {identity} failed after {attempt} attempts: {e}")
                    if isinstance(e, StoreUnavailable):
                        raise
                    raise StoreUnavailable(f"Concurrent update conflict binding {identity}") from e
                logger.warning(
                    f"Retrying referral bind for {identity} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )

    def get_referral_stats(self, identity: str) -> Dict[str, Any]:
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            return get_referral_stats(session, identity)
