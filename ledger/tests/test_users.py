"""Tests for user registration and lookups."""

import pytest
from pydantic import ValidationError
from web3 import Web3

from ledger.errors import EmailAlreadyRegistered, InvalidIdentity, UserNotFound
from ledger.schemas import RegistrationRequest

ALICE = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
BOB = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"


def test_register_with_wallet(users):
    user = users.register(
        RegistrationRequest(
            name="Alice",
            email="Alice@Example.com",
            address=Web3.to_checksum_address(ALICE),
            phone="+1 555 0100",
        )
    )

    assert user["identity"] == ALICE
    assert user["email"] == "alice@example.com"
    assert user["phone"] == "+1 555 0100"
    assert len(user["referral_code"]) == 6
    assert user["referred_by"] is None
    assert user["created_at"] is not None


def test_register_without_wallet_uses_email(users):
    user = users.register(RegistrationRequest(name="Dana", email="Dana@Example.com"))

    assert user["identity"] == "dana@example.com"
    assert users.get_user("DANA@example.com")["name"] == "Dana"


def test_register_again_updates_profile(users):
    first = users.register(RegistrationRequest(name="Alice", email="alice@example.com", address=ALICE))
    second = users.register(
        RegistrationRequest(name="Alice Smith", email="alice@example.com", address=ALICE, phone="123")
    )

    assert second["name"] == "Alice Smith"
    assert second["phone"] == "123"
    assert second["referral_code"] == first["referral_code"]


def test_email_must_be_unique(users):
    users.register(RegistrationRequest(name="Alice", email="shared@example.com", address=ALICE))

    with pytest.raises(EmailAlreadyRegistered):
        users.register(RegistrationRequest(name="Bob", email="SHARED@example.com", address=BOB))

    with pytest.raises(UserNotFound):
        users.get_user(BOB)


def test_register_rejects_bad_address(users):
    with pytest.raises(InvalidIdentity):
        users.register(RegistrationRequest(name="Mallory", email="m@example.com", address="0x1234"))


def test_registration_request_rejects_bad_email():
    with pytest.raises(ValidationError):
        RegistrationRequest(name="Mallory", email="not-an-email")


def test_get_user_unknown(users):
    with pytest.raises(UserNotFound):
        users.get_user(BOB)


def test_find_by_email(users, make_user):
    make_user(ALICE, email="alice@example.com")

    assert users.find_by_email("ALICE@example.com")["identity"] == ALICE
    assert users.find_by_email("nobody@example.com") is None


def test_impact_stats_for_new_user(users, make_user):
    make_user(ALICE)

    stats = users.get_impact_stats(ALICE)

    assert stats["impact_score"] == "0"
    assert stats["total_donated_wei"] == "0"
    assert stats["total_donated_eth"] == "0"
    assert stats["referral_count"] == 0
    assert stats["reward_balance"] == "0"


def test_reward_history_unknown_user(users):
    with pytest.raises(UserNotFound):
        users.get_reward_history(BOB)


def test_wallet_user_found_by_email(users, make_user):
    make_user(ALICE, email="alice@example.com")

    assert users.get_user("Alice@Example.com")["identity"] == ALICE
    assert users.get_impact_stats("alice@example.com")["identity"] == ALICE
    assert users.get_reward_history("alice@example.com") == []


def test_unregistered_email_not_found(users, make_user):
    make_user(ALICE, email="alice@example.com")

    with pytest.raises(UserNotFound):
        users.get_impact_stats("bob@example.com")
