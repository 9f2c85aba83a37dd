"""Tests for the donation recorder."""

from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.orm.exc import StaleDataError

import ledger.services.donations as donations_module
from ledger.db.models import Donation, Receipt, RewardHistoryEntry
from ledger.errors import (
    CampaignNotFound,
    DuplicateDonation,
    InvalidAmount,
    StoreUnavailable,
    UserNotFound,
)
from ledger.schemas import DonationSubmission
from ledger.services.donations import DonationRecorder
from ledger.services.impact import BONUS_TOKENS, apply_donation

WEI = 10**18
ALICE = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
STRANGER = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"
TX_1 = "0xdead000000000000000000000000000000000000000000000000000000000001"
TX_2 = "0xdead000000000000000000000000000000000000000000000000000000000002"


def _counts(store):
    with store.session() as session:
        return (
            session.query(Donation).count(),
            session.query(Receipt).count(),
            session.query(RewardHistoryEntry).count(),
        )


def test_record_donation(make_user, donate, recorder, campaign):
    make_user(ALICE)

    result = donate(ALICE, WEI, TX_1, cid="bafyreceipt001")

    assert result.tx_hash == TX_1
    assert result.donor_identity == ALICE
    assert result.campaign_id == campaign.id
    assert result.receipt_cid == "bafyreceipt001"
    assert result.amount_wei == WEI
    assert result.status == "Success"
    assert result.impact.impact_score == Decimal(10)
    assert result.impact.tokens_awarded == Decimal(100)
    assert result.bonus_awarded == 0

    stored = recorder.get_donation(TX_1)
    assert stored["donor_identity"] == ALICE
    assert stored["amount_wei"] == str(WEI)
    assert stored["amount_eth"] == "1.000"


def test_record_derives_receipt_gateway_url(store, make_user, donate):
    make_user(ALICE)

    donate(ALICE, WEI, TX_1, cid="ipfs://bafyreceipt001")

    with store.session() as session:
        receipt = session.get(Receipt, "bafyreceipt001")
        assert receipt.gateway_url == "https://gateway.test/ipfs/bafyreceipt001"
        assert receipt.pin_status == "pinned"


def test_tx_hash_is_normalized(make_user, donate, recorder):
    make_user(ALICE)

    result = donate(ALICE, WEI, TX_1.upper().replace("0X", "0x"))

    assert result.tx_hash == TX_1
    assert recorder.get_donation(TX_1.upper()) is not None


def test_duplicate_donation_is_rejected(store, make_user, donate, users):
    """Resubmitting a tx hash conflicts and leaves totals unchanged."""
    make_user(ALICE)
    donate(ALICE, 2 * WEI, TX_1)
    after_first = users.get_impact_stats(ALICE)

    with pytest.raises(DuplicateDonation) as exc_info:
        donate(ALICE, 2 * WEI, TX_1)

    assert exc_info.value.to_dict() == {
        "kind": "duplicate_donation",
        "message": f"Donation already recorded for transaction {TX_1}",
    }
    assert users.get_impact_stats(ALICE) == after_first
    assert _counts(store) == (1, 1, 1)


def test_duplicate_donation_with_different_amount(make_user, donate, users):
    make_user(ALICE)
    donate(ALICE, WEI, TX_1)

    with pytest.raises(DuplicateDonation):
        donate(ALICE, 7 * WEI, TX_1)

    assert users.get_impact_stats(ALICE)["total_donated_wei"] == str(WEI)


def test_receipt_shared_between_donations(store, make_user, donate):
    make_user(ALICE)

    donate(ALICE, WEI, TX_1, cid="bafyshared")
    donate(ALICE, WEI, TX_2, cid="bafyshared")

    assert _counts(store) == (2, 1, 2)


def test_unknown_donor_records_nothing(store, donate):
    with pytest.raises(UserNotFound):
        donate(STRANGER, WEI, TX_1)

    assert _counts(store) == (0, 0, 0)


def test_unknown_campaign(store, make_user, donate):
    make_user(ALICE)

    with pytest.raises(CampaignNotFound):
        donate(ALICE, WEI, TX_1, campaign_id=9999)

    assert _counts(store) == (0, 0, 0)


def test_failure_after_insert_rolls_back_everything(store, make_user, donate, users):
    """A zero amount fails in the engine after the receipt and donation rows were written."""
    make_user(ALICE)

    with pytest.raises(InvalidAmount):
        donate(ALICE, 0, TX_1)

    assert _counts(store) == (0, 0, 0)
    assert users.get_impact_stats(ALICE)["total_donated_wei"] == "0"


def test_bonus_is_advisory_by_default(make_user, donate, users):
    make_user(ALICE)

    result = donate(ALICE, 11 * WEI, TX_1)

    assert result.eligibility.eligible is True
    assert result.bonus_awarded == 0
    assert users.get_impact_stats(ALICE)["reward_balance"] == "1100"


def test_bonus_applied_when_enabled(store, gateway, make_user, campaign, users):
    make_user(ALICE)
    recorder = DonationRecorder(store, gateway=gateway, apply_bonus=True)

    result = recorder.record(
        DonationSubmission(
            tx_hash=TX_1,
            donor=ALICE,
            campaign_id=campaign.id,
            amount_wei=str(11 * WEI),
            receipt_cid="bafyreceipt001",
        )
    )

    assert result.bonus_awarded == BONUS_TOKENS
    assert users.get_impact_stats(ALICE)["reward_balance"] == "1150"
    reasons = [entry["reason"] for entry in users.get_reward_history(ALICE)]
    assert reasons == ["bonus", "donation"]


def test_bonus_not_applied_below_threshold(store, gateway, make_user, campaign, users):
    make_user(ALICE)
    recorder = DonationRecorder(store, gateway=gateway, apply_bonus=True)

    result = recorder.record(
        DonationSubmission(
            tx_hash=TX_1,
            donor=ALICE,
            campaign_id=campaign.id,
            amount_wei=WEI,
            receipt_cid="bafyreceipt001",
        )
    )

    assert result.eligibility.eligible is False
    assert result.bonus_awarded == 0
    assert users.get_impact_stats(ALICE)["reward_balance"] == "100"


def test_stale_update_is_retried(monkeypatch, make_user, donate, users):
    """A version conflict rolls back and the whole transaction runs again."""
    make_user(ALICE)
    calls = {"count": 0}

    def flaky_apply_donation(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleDataError("UPDATE statement on table 'users' expected to update 1 row(s)")
        return apply_donation(*args, **kwargs)

    monkeypatch.setattr(donations_module, "apply_donation", flaky_apply_donation)

    result = donate(ALICE, WEI, TX_1)

    assert calls["count"] == 2
    assert result.impact.tokens_awarded == Decimal(100)
    assert users.get_impact_stats(ALICE)["total_donated_wei"] == str(WEI)


def test_retries_exhausted(store, gateway, monkeypatch, make_user, campaign):
    make_user(ALICE)
    recorder = DonationRecorder(store, gateway=gateway, max_retries=2)
    calls = {"count": 0}

    def always_stale(*args, **kwargs):
        calls["count"] += 1
        raise StaleDataError("conflict")

    monkeypatch.setattr(donations_module, "apply_donation", always_stale)

    with pytest.raises(StoreUnavailable):
        recorder.record(
            DonationSubmission(
                tx_hash=TX_1,
                donor=ALICE,
                campaign_id=campaign.id,
                amount_wei=WEI,
                receipt_cid="bafyreceipt001",
            )
        )

    assert calls["count"] == 3
    assert _counts(store) == (0, 0, 0)


def test_get_donation_missing(recorder):
    assert recorder.get_donation(TX_2) is None


def test_result_to_dict(make_user, donate):
    make_user(ALICE)

    data = donate(ALICE, WEI // 2, TX_1).to_dict()

    assert data["amount_wei"] == str(WEI // 2)
    assert data["amount_eth"] == "0.500"
    assert data["impact"]["impact_score"] == "5"
    assert data["impact"]["tokens_awarded"] == "50"
    assert data["eligibility"]["eligible"] is False
    assert data["bonus_awarded"] == "0"


def test_wallet_donor_can_donate_by_email(make_user, donate, users):
    make_user(ALICE, email="alice@example.com")

    result = donate("Alice@Example.com", WEI, TX_1)

    assert result.donor_identity == ALICE
    assert users.get_impact_stats(ALICE)["total_donated_wei"] == str(WEI)


def test_amount_beyond_uint256_rejected(store, make_user, donate):
    make_user(ALICE)

    with pytest.raises(ValidationError):
        donate(ALICE, 10**80, TX_1)

    assert _counts(store) == (0, 0, 0)
