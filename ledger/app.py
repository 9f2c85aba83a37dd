"""Composition root: builds the store and wires it into every service."""

from dataclasses import dataclass

from ledger.config import Config
from ledger.db.session import LedgerStore
from ledger.log import get_logger
from ledger.services.campaigns import CampaignService
from ledger.services.donations import DonationRecorder
from ledger.services.ipfs import ReceiptGateway
from ledger.services.referrals import ReferralRegistry
from ledger.services.users import UserService

logger = get_logger(__name__)


@dataclass
class Ledger:
    """Process-scoped handle on the store and the services sharing it."""

    config: Config
    store: LedgerStore
    gateway: ReceiptGateway
    users: UserService
    campaigns: CampaignService
    referrals: ReferralRegistry
    donations: DonationRecorder

    @classmethod
    def from_config(cls, config: Config) -> "Ledger":
        store = LedgerStore(config)
        gateway = ReceiptGateway(config.ipfs_gateway_url, timeout=config.ipfs_fetch_timeout)
        return cls(
            config=config,
            store=store,
            gateway=gateway,
            users=UserService(store),
            campaigns=CampaignService(store),
            referrals=ReferralRegistry(store),
            donations=DonationRecorder(store, gateway=gateway),
        )

    def close(self) -> None:
        """Release pooled connections at process shutdown."""
        self.store.dispose()
        logger.debug("Ledger store closed")
