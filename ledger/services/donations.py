"""Donation recorder - records a donation and drives the impact engine atomically."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger.db.models import Campaign, Donation, Receipt, User
from ledger.db.session import LedgerStore
from ledger.errors import (
    CampaignNotFound,
    DuplicateDonation,
    StoreUnavailable,
    UserNotFound,
)
from ledger.identity import lookup_identity
from ledger.log import get_logger
from ledger.schemas import DonationSubmission
from ledger.services.impact import (
    ImpactUpdate,
    RewardEligibility,
    apply_donation,
    award_bonus,
    check_reward_eligibility,
)
from ledger.services.ipfs import ReceiptGateway
from ledger.utils.formatting import format_decimal, format_eth

logger = get_logger(__name__)

DONATION_STATUS_SUCCESS = "Success"
RECEIPT_STATUS_PINNED = "pinned"


@dataclass(frozen=True)
class DonationResult:
    """Persisted donation plus the impact update it caused."""

    tx_hash: str
    donor_identity: str
    campaign_id: int
    receipt_cid: Optional[str]
    amount_wei: int
    status: str
    created_at: Optional[datetime]
    impact: ImpactUpdate
    eligibility: RewardEligibility
    bonus_awarded: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "donor_identity": self.donor_identity,
            "campaign_id": self.campaign_id,
            "receipt_cid": self.receipt_cid,
            "amount_wei": str(self.amount_wei),
            "amount_eth": format_eth(self.amount_wei),
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "impact": self.impact.to_dict(),
            "eligibility": self.eligibility.to_dict(),
            "bonus_awarded": format_decimal(self.bonus_awarded),
        }


def upsert_receipt(
    session: Session,
    cid: str,
    size_bytes: Optional[int],
    gateway_url: Optional[str],
) -> Receipt:
    """Insert a receipt unless its CID is already stored (idempotent).

    Args:
        session: Database session
        cid: Receipt content identifier
        size_bytes: Receipt size
        gateway_url: Public gateway URL

    Returns:
        The stored receipt (existing rows are left untouched)
    """
    receipt = session.get(Receipt, cid)
    if receipt is not None:
        logger.debug(f"Receipt already stored: {cid}")
        return receipt

    try:
        with session.begin_nested():
            receipt = Receipt(
                cid=cid,
                size_bytes=size_bytes,
                pin_status=RECEIPT_STATUS_PINNED,
                gateway_url=gateway_url,
            )
            session.add(receipt)
            session.flush()
    except IntegrityError:
        # Stored concurrently by another transaction
        logger.debug(f"Receipt already stored (race condition): {cid}")
        receipt = session.get(Receipt, cid)
    return receipt


def insert_donation(
    session: Session,
    tx_hash: str,
    donor_identity: str,
    campaign_id: int,
    receipt_cid: Optional[str],
    amount_wei: int,
) -> Donation:
    """Insert a donation row keyed by its transaction hash.

    Raises:
        DuplicateDonation: If the transaction hash is already recorded
    """
    if session.get(Donation, tx_hash) is not None:
        raise DuplicateDonation(tx_hash)

    donation = Donation(
        tx_hash=tx_hash,
        donor_identity=donor_identity,
        campaign_id=campaign_id,
        receipt_cid=receipt_cid,
        amount_wei=amount_wei,
        status=DONATION_STATUS_SUCCESS,
    )
    try:
        with session.begin_nested():
            session.add(donation)
            session.flush()  # Flush to trigger the primary key check
    except IntegrityError:
        if session.get(Donation, tx_hash) is not None:
            # Recorded by a concurrent submission of the same transaction
            raise DuplicateDonation(tx_hash)
        raise
    return donation


class DonationRecorder:
    """Records donations as one all-or-nothing unit.

    Within a single transaction: upsert the receipt, insert the donation,
    apply it to the donor's impact score and reward balance and, when
    enabled, credit the bonus policy. Any failure rolls everything back.
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: Optional[ReceiptGateway] = None,
        max_retries: Optional[int] = None,
        apply_bonus: Optional[bool] = None,
    ):
        """Initialize donation recorder.

        Args:
            store: Ledger store
            gateway: Receipt gateway used to derive missing gateway URLs
            max_retries: Whole-transaction retries on concurrency conflicts
            apply_bonus: Credit the bonus policy when a donation qualifies
        """
        self.store = store
        self.gateway = gateway or ReceiptGateway(store.config.ipfs_gateway_url)
        self.max_retries = store.config.max_retries if max_retries is None else max_retries
        self.apply_bonus = store.config.apply_bonus if apply_bonus is None else apply_bonus

    def record(self, submission: DonationSubmission) -> DonationResult:
        """Record a donation.

        Args:
            submission: Validated donation submission

        Returns:
            DonationResult

        Raises:
            DuplicateDonation: If the transaction hash was already recorded
            UserNotFound: If the donor is not registered
            CampaignNotFound: If the campaign does not exist
            InvalidAmount: If the amount is not positive
            StoreUnavailable: If the store kept failing after retries
        """
        attempt = 0
        while True:
            try:
                with self.store.session() as session:
                    return self._record(session, submission)
            except (StaleDataError, StoreUnavailable) as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        f"Donation {submission.tx_hash} failed after {attempt} attempts: {e}"
                    )
                    if isinstance(e, StoreUnavailable):
                        raise
                    raise StoreUnavailable(
                        f"Concurrent update conflict recording {submission.tx_hash}"
                    ) from e
                logger.warning(
                    f"Retrying donation {submission.tx_hash} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )

    def _record(self, session: Session, submission: DonationSubmission) -> DonationResult:
        donor_identity = lookup_identity(session, submission.donor)

        if session.get(Donation, submission.tx_hash) is not None:
            raise DuplicateDonation(submission.tx_hash)
        if session.get(Campaign, submission.campaign_id) is None:
            raise CampaignNotFound(submission.campaign_id)
        if session.get(User, donor_identity) is None:
            raise UserNotFound(donor_identity)

        gateway_url = submission.receipt_gateway_url or self.gateway.get_gateway_url(
            submission.receipt_cid
        )
        receipt = upsert_receipt(
            session,
            cid=submission.receipt_cid,
            size_bytes=submission.receipt_size_bytes,
            gateway_url=gateway_url,
        )

        donation = insert_donation(
            session,
            tx_hash=submission.tx_hash,
            donor_identity=donor_identity,
            campaign_id=submission.campaign_id,
            receipt_cid=receipt.cid,
            amount_wei=submission.amount_wei,
        )

        impact = apply_donation(
            session,
            donor_identity,
            submission.amount_wei,
            tx_hash=submission.tx_hash,
        )

        # Advisory unless the bonus policy is switched on
        eligibility = check_reward_eligibility(impact.impact_score, submission.amount_wei)
        bonus_awarded = Decimal(0)
        if self.apply_bonus:
            bonus_awarded = award_bonus(session, donor_identity, eligibility, submission.tx_hash)

        logger.info(
            f"Recorded donation {donation.tx_hash}: {format_eth(donation.amount_wei)} ETH "
            f"from {donor_identity} to campaign {donation.campaign_id}"
        )

        return DonationResult(
            tx_hash=donation.tx_hash,
            donor_identity=donation.donor_identity,
            campaign_id=donation.campaign_id,
            receipt_cid=donation.receipt_cid,
            amount_wei=int(donation.amount_wei),
            status=donation.status,
            created_at=donation.created_at,
            impact=impact,
            eligibility=eligibility,
            bonus_awarded=bonus_awarded,
        )

    def get_donation(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Look up a recorded donation by transaction hash."""
        tx_hash = tx_hash.strip()
        if tx_hash.lower().startswith("0x"):
            tx_hash = tx_hash.lower()
        with self.store.session() as session:
            donation = session.get(Donation, tx_hash)
            if donation is None:
                return None
            return {
                "tx_hash": donation.tx_hash,
                "donor_identity": donation.donor_identity,
                "campaign_id": donation.campaign_id,
                "receipt_cid": donation.receipt_cid,
                "amount_wei": str(donation.amount_wei),
                "amount_eth": format_eth(donation.amount_wei),
                "status": donation.status,
                "created_at": donation.created_at.isoformat() if donation.created_at else None,
            }
