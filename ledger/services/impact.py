"""Impact score and reward token accrual.

The impact score is always recomputed from the user's authoritative counters
(``total_donated_wei`` and ``referral_count``) rather than accumulated from
deltas. Tokens are awarded on the increase of the score since the last
recomputation, at ``TOKEN_RATE`` tokens per point.

All functions here take an open session and run inside the caller's
transaction. The user row is locked before it is read so concurrent
donations from the same user serialize their read-modify-write.
"""

from dataclasses import dataclass
from decimal import Context, Decimal, localcontext
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ledger.db.models import RewardHistoryEntry, User
from ledger.errors import InvalidAmount, UserNotFound
from ledger.log import get_logger
from ledger.utils.formatting import MAX_WEI, WEI_PER_ETH, format_decimal, wei_to_eth

logger = get_logger(__name__)

# Score weights: points per ETH donated and per successful referral
DONATION_WEIGHT = 10
REFERRAL_WEIGHT = 5

# Reward tokens per impact score point
TOKEN_RATE = 10

# Bonus policy thresholds (both strict)
IMPACT_THRESHOLD = Decimal(100)
DONATION_THRESHOLD_WEI = WEI_PER_ETH // 2  # 0.5 ETH
BONUS_TOKENS = Decimal(50)

REASON_DONATION = "donation"
REASON_REFERRAL = "referral"
REASON_BONUS = "bonus"

_ZERO = Decimal(0)

# Enough digits that score and balance arithmetic never rounds
_EXACT = Context(prec=100)


@dataclass(frozen=True)
class ImpactUpdate:
    """Outcome of one recompute-and-award pass for a user."""

    identity: str
    previous_score: Decimal
    impact_score: Decimal
    tokens_awarded: Decimal
    reward_balance: Decimal
    total_donated_wei: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "previous_score": format_decimal(self.previous_score),
            "impact_score": format_decimal(self.impact_score),
            "tokens_awarded": format_decimal(self.tokens_awarded),
            "reward_balance": format_decimal(self.reward_balance),
            "total_donated_wei": str(self.total_donated_wei),
        }


@dataclass(frozen=True)
class RewardEligibility:
    eligible: bool
    bonus_amount: Decimal
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "bonus_amount": format_decimal(self.bonus_amount),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ImpactStats:
    identity: str
    impact_score: Decimal
    total_donated_wei: int
    referral_count: int
    reward_balance: Decimal
    referral_code: Optional[str]
    referred_by: Optional[str]

    @property
    def total_donated_eth(self) -> Decimal:
        return wei_to_eth(self.total_donated_wei)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "impact_score": format_decimal(self.impact_score),
            "total_donated_wei": str(self.total_donated_wei),
            "total_donated_eth": format_decimal(self.total_donated_eth),
            "referral_count": self.referral_count,
            "reward_balance": format_decimal(self.reward_balance),
            "referral_code": self.referral_code,
            "referred_by": self.referred_by,
        }


def _as_wei(amount: Any) -> int:
    """Coerce an amount to integer wei, refusing anything that could round."""
    if isinstance(amount, (bool, float)):
        raise InvalidAmount(f"Amount must be an integer number of wei, got {type(amount).__name__}")
    if isinstance(amount, Decimal):
        if not amount.is_finite() or amount != amount.to_integral_value():
            raise InvalidAmount(f"Amount must be an integer number of wei, got {amount}")
        return int(amount)
    if isinstance(amount, str):
        try:
            return int(amount.strip())
        except ValueError as e:
            raise InvalidAmount(f"Amount must be an integer number of wei, got {amount!r}") from e
    if isinstance(amount, int):
        return amount
    raise InvalidAmount(f"Amount must be an integer number of wei, got {type(amount).__name__}")


def compute_impact_score(total_donated_wei: int, referral_count: int) -> Decimal:
    """Compute the impact score for the given counters.

    ``score = total_donated_eth * DONATION_WEIGHT + referral_count * REFERRAL_WEIGHT``

    The sum is formed in integer wei and divided by 10**18 once, so the
    result is exact and identical for identical inputs.

    Args:
        total_donated_wei: Cumulative donated amount in wei
        referral_count: Number of users referred

    Returns:
        Exact impact score

    Raises:
        InvalidAmount: If either counter is negative
    """
    total_donated_wei = _as_wei(total_donated_wei)
    referral_count = int(referral_count)
    if total_donated_wei < 0:
        raise InvalidAmount(f"Total donated cannot be negative: {total_donated_wei}")
    if referral_count < 0:
        raise InvalidAmount(f"Referral count cannot be negative: {referral_count}")

    scaled = total_donated_wei * DONATION_WEIGHT + referral_count * REFERRAL_WEIGHT * WEI_PER_ETH
    with localcontext(_EXACT):
        return Decimal(scaled) / Decimal(WEI_PER_ETH)


def lock_user(session: Session, identity: str) -> User:
    """Load a user row with a write lock for the rest of the transaction.

    Raises:
        UserNotFound: If the identity has no ledger row
    """
    user = (
        session.query(User)
        .filter(User.identity == identity)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if user is None:
        raise UserNotFound(identity)
    return user


def _recompute(session: Session, user: User, reason: str, tx_hash: Optional[str]) -> ImpactUpdate:
    """Recompute the score from counters and award tokens for any increase."""
    previous_score = Decimal(user.impact_score or 0)
    new_score = compute_impact_score(user.total_donated_wei, user.referral_count or 0)

    # Never lower the score or the balance
    with localcontext(_EXACT):
        delta = max(_ZERO, new_score - previous_score)
        tokens_awarded = delta * TOKEN_RATE
        balance = Decimal(user.reward_balance or 0) + tokens_awarded
    user.impact_score = max(previous_score, new_score)

    if tokens_awarded > 0:
        user.reward_balance = balance
        session.add(
            RewardHistoryEntry(
                user_identity=user.identity,
                token_amount=tokens_awarded,
                reason=reason,
                tx_hash=tx_hash,
            )
        )
    session.flush()

    logger.info(
        f"Token distribution: {user.identity} earned {format_decimal(tokens_awarded)} CCT "
        f"(impact {format_decimal(previous_score)} -> {format_decimal(user.impact_score)}, reason={reason})"
    )

    return ImpactUpdate(
        identity=user.identity,
        previous_score=previous_score,
        impact_score=Decimal(user.impact_score),
        tokens_awarded=tokens_awarded,
        reward_balance=balance,
        total_donated_wei=int(user.total_donated_wei),
    )


def apply_donation(
    session: Session,
    identity: str,
    amount_wei: int,
    tx_hash: Optional[str] = None,
) -> ImpactUpdate:
    """Add a donation to the user's total and award tokens for the score increase.

    Args:
        session: Database session (caller owns the transaction)
        identity: Normalized donor identity
        amount_wei: Donated amount in wei, must be > 0
        tx_hash: Transaction hash recorded in the reward history

    Returns:
        ImpactUpdate describing the new state

    Raises:
        InvalidAmount: If amount_wei is not a positive uint256 integer
        UserNotFound: If the identity has no ledger row
    """
    amount_wei = _as_wei(amount_wei)
    if amount_wei <= 0:
        raise InvalidAmount(f"Donation amount must be positive, got {amount_wei}")
    if amount_wei > MAX_WEI:
        raise InvalidAmount(f"Donation amount exceeds the uint256 range: {amount_wei}")

    user = lock_user(session, identity)
    user.total_donated_wei = int(user.total_donated_wei or 0) + amount_wei
    return _recompute(session, user, REASON_DONATION, tx_hash)


def refresh_impact_score(
    session: Session,
    identity: str,
    reason: str = REASON_REFERRAL,
) -> ImpactUpdate:
    """Recompute a user's score without a new donation (e.g. after a referral)."""
    user = lock_user(session, identity)
    return _recompute(session, user, reason, None)


def check_reward_eligibility(impact_score: Decimal, donation_amount_wei: int) -> RewardEligibility:
    """Evaluate the flat bonus rule for a donation.

    Eligible only when the impact score is above IMPACT_THRESHOLD and the
    donation is above DONATION_THRESHOLD_WEI. Advisory: nothing is credited
    here, see ``award_bonus``.
    """
    meets_impact_threshold = Decimal(impact_score) > IMPACT_THRESHOLD
    meets_donation_threshold = _as_wei(donation_amount_wei) > DONATION_THRESHOLD_WEI

    eligible = meets_impact_threshold and meets_donation_threshold
    if eligible:
        reason = "Qualified for bonus reward"
    elif not meets_impact_threshold:
        reason = f"Impact score must be greater than {IMPACT_THRESHOLD}"
    else:
        reason = f"Donation must be greater than {format_decimal(wei_to_eth(DONATION_THRESHOLD_WEI))} ETH"

    return RewardEligibility(
        eligible=eligible,
        bonus_amount=BONUS_TOKENS if eligible else _ZERO,
        reason=reason,
    )


def award_bonus(
    session: Session,
    identity: str,
    eligibility: RewardEligibility,
    tx_hash: Optional[str] = None,
) -> Decimal:
    """Credit an eligible bonus to the user's reward balance.

    Returns:
        Tokens credited (zero when not eligible)
    """
    if not eligibility.eligible or eligibility.bonus_amount <= 0:
        return _ZERO

    user = lock_user(session, identity)
    with localcontext(_EXACT):
        user.reward_balance = Decimal(user.reward_balance or 0) + eligibility.bonus_amount
    session.add(
        RewardHistoryEntry(
            user_identity=user.identity,
            token_amount=eligibility.bonus_amount,
            reason=REASON_BONUS,
            tx_hash=tx_hash,
        )
    )
    session.flush()
    logger.info(f"Bonus reward: {identity} earned {format_decimal(eligibility.bonus_amount)} CCT")
    return eligibility.bonus_amount


def get_impact_stats(session: Session, identity: str) -> ImpactStats:
    """Read a user's impact statistics.

    Raises:
        UserNotFound: If the identity has no ledger row
    """
    user = session.get(User, identity)
    if user is None:
        raise UserNotFound(identity)

    return ImpactStats(
        identity=user.identity,
        impact_score=Decimal(user.impact_score or 0),
        total_donated_wei=int(user.total_donated_wei or 0),
        referral_count=user.referral_count or 0,
        reward_balance=Decimal(user.reward_balance or 0),
        referral_code=user.referral_code,
        referred_by=user.referred_by,
    )


def list_reward_history(session: Session, identity: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Return a user's reward history, newest first."""
    if session.get(User, identity) is None:
        raise UserNotFound(identity)

    entries = (
        session.query(RewardHistoryEntry)
        .filter(RewardHistoryEntry.user_identity == identity)
        .order_by(RewardHistoryEntry.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "token_amount": format_decimal(entry.token_amount),
            "reason": entry.reason,
            "tx_hash": entry.tx_hash,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in entries
    ]
