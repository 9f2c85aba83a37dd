"""Shared fixtures for ledger tests."""

import os

import pytest

from ledger.config import Config
from ledger.db.session import LedgerStore
from ledger.schemas import CampaignInput, DonationSubmission, RegistrationRequest
from ledger.services.campaigns import CampaignService
from ledger.services.donations import DonationRecorder
from ledger.services.ipfs import ReceiptGateway
from ledger.services.referrals import ReferralRegistry
from ledger.services.users import UserService

TEST_GATEWAY_URL = "https://gateway.test/ipfs/"
CAMPAIGN_OWNER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"


@pytest.fixture
def test_config():
    """Test configuration."""
    # Use test database URL from environment or an in-memory SQLite database
    db_url = os.getenv("TEST_DB_URL", "sqlite://")

    config = Config(
        db_url=db_url,
        ipfs_gateway_url=TEST_GATEWAY_URL,
        max_retries=3,
    )
    return config


@pytest.fixture
def store(test_config):
    """Ledger store with a fresh schema."""
    store = LedgerStore(test_config)
    store.create_tables()
    yield store
    store.drop_tables()
    store.dispose()


@pytest.fixture
def gateway():
    return ReceiptGateway(TEST_GATEWAY_URL)


@pytest.fixture
def users(store):
    return UserService(store)


@pytest.fixture
def referrals(store):
    return ReferralRegistry(store)


@pytest.fixture
def campaigns(store):
    return CampaignService(store)


@pytest.fixture
def recorder(store, gateway):
    return DonationRecorder(store, gateway=gateway)


@pytest.fixture
def make_user(store):
    """Register a user; ``code`` pins the referral code they are assigned."""

    def _make_user(address=None, email=None, name="Test Donor", referral_code=None, code=None):
        if email is None:
            email = f"{address[-8:]}@example.com"
        service = UserService(store, code_generator=lambda: code) if code else UserService(store)
        return service.register(
            RegistrationRequest(
                name=name,
                email=email,
                address=address,
                referral_code=referral_code,
            )
        )

    return _make_user


@pytest.fixture
def campaign(campaigns):
    """Campaign with a 10 ETH goal."""
    return campaigns.create_campaign(
        CampaignInput(
            name="Clean Water Wells",
            description="Wells for three villages",
            goal_wei=10 * 10**18,
            owner=CAMPAIGN_OWNER,
        )
    )


@pytest.fixture
def donate(recorder, campaign):
    """Record a donation against the default campaign."""

    def _donate(donor, amount_wei, tx_hash, cid="bafyreceipt001", campaign_id=None):
        return recorder.record(
            DonationSubmission(
                tx_hash=tx_hash,
                donor=donor,
                campaign_id=campaign_id if campaign_id is not None else campaign.id,
                amount_wei=amount_wei,
                receipt_cid=cid,
            )
        )

    return _donate
