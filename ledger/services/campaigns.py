"""Campaign aggregator - campaign creation and read-side donation totals.

Donation amounts are summed in Python integers rather than with SQL SUM so
totals stay exact on every backend.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ledger.db.models import Campaign, Donation
from ledger.db.session import LedgerStore
from ledger.errors import CampaignNotFound
from ledger.identity import lookup_identity, normalize_identity
from ledger.log import get_logger
from ledger.schemas import CampaignInput
from ledger.utils.formatting import format_eth

logger = get_logger(__name__)

DEFAULT_CATEGORY = "General"


@dataclass(frozen=True)
class CampaignSummary:
    """Campaign with its aggregated donation totals."""

    id: int
    name: str
    description: str
    goal_wei: int
    raised_wei: int
    backers: int
    category: str
    verified: bool
    owner_identity: Optional[str]
    beneficiary_identity: Optional[str]
    cover_image_cid: Optional[str]
    created_at: Optional[datetime]

    @property
    def progress_percent(self) -> Decimal:
        """Share of the goal raised, capped at 100 and rounded to 2 places."""
        if self.goal_wei <= 0:
            return Decimal("0.00")
        progress = min(Decimal(self.raised_wei) * 100 / Decimal(self.goal_wei), Decimal(100))
        return progress.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.name,
            "description": self.description,
            "goal_wei": str(self.goal_wei),
            "goal_eth": format_eth(self.goal_wei),
            "raised_wei": str(self.raised_wei),
            "raised_eth": format_eth(self.raised_wei),
            "backers": self.backers,
            "category": self.category,
            "verified": self.verified,
            "owner_identity": self.owner_identity,
            "beneficiary_identity": self.beneficiary_identity or self.owner_identity,
            "cover_image_cid": self.cover_image_cid,
            "progress_percent": str(self.progress_percent),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _summarize(campaign: Campaign, raised_wei: int, backers: int) -> CampaignSummary:
    return CampaignSummary(
        id=campaign.id,
        name=campaign.name,
        description=campaign.description or "",
        goal_wei=int(campaign.goal_wei or 0),
        raised_wei=raised_wei,
        backers=backers,
        category=campaign.category or DEFAULT_CATEGORY,
        verified=bool(campaign.verified),
        owner_identity=campaign.owner_identity,
        beneficiary_identity=campaign.beneficiary_identity or campaign.owner_identity,
        cover_image_cid=campaign.cover_image_cid,
        created_at=campaign.created_at,
    )


def _donation_totals(session: Session, campaign_id: Optional[int] = None) -> Dict[int, List[int]]:
    """Map campaign id to [raised_wei, backers] from the donation rows."""
    query = session.query(Donation.campaign_id, Donation.amount_wei)
    if campaign_id is not None:
        query = query.filter(Donation.campaign_id == campaign_id)

    totals: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
    for cid, amount_wei in query:
        totals[cid][0] += int(amount_wei)
        totals[cid][1] += 1
    return totals


class CampaignService:
    """Campaign creation and aggregated views."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def create_campaign(self, data: CampaignInput) -> CampaignSummary:
        """Create a campaign; the beneficiary defaults to the owner."""
        owner = normalize_identity(data.owner) if data.owner else None
        beneficiary = normalize_identity(data.beneficiary) if data.beneficiary else owner

        with self.store.session() as session:
            campaign = Campaign(
                name=data.name,
                description=data.description or "",
                goal_wei=data.goal_wei,
                owner_identity=owner,
                beneficiary_identity=beneficiary,
                category=data.category or DEFAULT_CATEGORY,
                verified=data.verified,
                cover_image_cid=data.cover_image_cid,
            )
            session.add(campaign)
            session.flush()
            logger.info(f"Created campaign {campaign.id}: {campaign.name}")
            return _summarize(campaign, 0, 0)

    def get_summary(self, campaign_id: int) -> CampaignSummary:
        with self.store.session() as session:
            campaign = session.get(Campaign, campaign_id)
            if campaign is None:
                raise CampaignNotFound(campaign_id)
            raised_wei, backers = _donation_totals(session, campaign_id).get(campaign_id, [0, 0])
            return _summarize(campaign, raised_wei, backers)

    def list_summaries(self) -> List[CampaignSummary]:
        """All campaigns, newest first."""
        with self.store.session() as session:
            totals = _donation_totals(session)
            campaigns = session.query(Campaign).order_by(Campaign.id.desc()).all()
            return [_summarize(c, *totals.get(c.id, [0, 0])) for c in campaigns]

    def top_campaigns(self, limit: int = 3) -> List[CampaignSummary]:
        """Campaigns with the most raised, ties broken by newest."""
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        summaries = self.list_summaries()
        summaries.sort(key=lambda s: s.raised_wei, reverse=True)
        return summaries[:limit]

    def donor_dashboard(self, identity: str) -> Dict[str, Any]:
        """Totals for one donor across all campaigns."""
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            rows = (
                session.query(Donation.campaign_id, Donation.amount_wei)
                .filter(Donation.donor_identity == identity)
                .all()
            )

        total_wei = sum(int(amount) for _, amount in rows)
        return {
            "identity": identity,
            "total_donated_wei": str(total_wei),
            "total_donated_eth": format_eth(total_wei),
            "charities_supported": len({campaign_id for campaign_id, _ in rows}),
            "total_donations": len(rows),
        }

    def platform_totals(self) -> Dict[str, Any]:
        with self.store.session() as session:
            rows = session.query(Donation.donor_identity, Donation.amount_wei).all()

        total_wei = sum(int(amount) for _, amount in rows)
        return {
            "total_raised_wei": str(total_wei),
            "total_raised_eth": format_eth(total_wei),
            "unique_donors": len({donor for donor, _ in rows}),
            "total_donations": len(rows),
        }

    def backfill_beneficiaries(self) -> List[int]:
        """Set beneficiary to owner on campaigns that have none.

        Returns:
            IDs of the campaigns updated
        """
        updated: List[int] = []
        with self.store.session() as session:
            campaigns = (
                session.query(Campaign)
                .filter(
                    (Campaign.beneficiary_identity.is_(None)) | (Campaign.beneficiary_identity == ""),
                    Campaign.owner_identity.isnot(None),
                )
                .all()
            )
            for campaign in campaigns:
                campaign.beneficiary_identity = campaign.owner_identity
                updated.append(campaign.id)
                logger.info(f"Campaign {campaign.id} beneficiary set to owner {campaign.owner_identity}")

        if updated:
            logger.info(f"Backfill: updated beneficiary on {len(updated)} campaigns")
        return updated
