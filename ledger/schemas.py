"""Pydantic models validating submissions at the system boundary."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ledger.errors import InvalidIdentity
from ledger.identity import normalize_email
from ledger.services.ipfs import strip_ipfs_scheme
from ledger.utils.formatting import MAX_WEI


def _parse_wei(value: Any) -> Any:
    """Accept ints, integral Decimals and decimal strings up to uint256; refuse floats."""
    if isinstance(value, (bool, float)):
        raise ValueError("amounts must be integers or decimal strings in wei, not floats")
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise ValueError("amounts must be whole numbers of wei")
        value = int(value)
    elif isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text[:1] in "+-" else text
        if not digits.isdigit():
            raise ValueError("amounts must be whole numbers of wei")
        value = int(text)
    if isinstance(value, int) and value > MAX_WEI:
        raise ValueError("amounts must fit in uint256")
    return value


class DonationSubmission(BaseModel):
    """A donation as submitted by a client.

    Attributes:
        tx_hash: On-chain transaction hash (idempotency key)
        donor: Donor wallet address or email
        campaign_id: Campaign receiving the donation
        amount_wei: Donated amount in wei
        receipt_cid: Content identifier of the receipt
        receipt_size_bytes: Receipt size
        receipt_gateway_url: Gateway URL; derived from the CID when omitted
    """

    tx_hash: str = Field(min_length=1, max_length=100)
    donor: str = Field(min_length=1)
    campaign_id: int
    amount_wei: int
    receipt_cid: str = Field(min_length=1, max_length=255)
    receipt_size_bytes: Optional[int] = Field(default=None, ge=0)
    receipt_gateway_url: Optional[str] = None

    @field_validator("tx_hash")
    @classmethod
    def normalize_tx_hash(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("tx_hash is required")
        return v.lower() if v.lower().startswith("0x") else v

    @field_validator("donor")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("value is required")
        return v

    @field_validator("receipt_cid")
    @classmethod
    def normalize_cid(cls, v: str) -> str:
        v = strip_ipfs_scheme(v)
        if not v:
            raise ValueError("receipt_cid is required")
        return v

    @field_validator("amount_wei", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Any:
        return _parse_wei(v)


class RegistrationRequest(BaseModel):
    """Account creation, optionally with a wallet and a referral code."""

    name: str = Field(min_length=1, max_length=255)
    email: str
    address: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=64)
    referral_code: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        try:
            return normalize_email(v)
        except InvalidIdentity as e:
            raise ValueError(e.message) from e

    @field_validator("address", "phone", "referral_code")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class CampaignInput(BaseModel):
    """Campaign creation request. The beneficiary defaults to the owner."""

    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    goal_wei: int = Field(default=0, ge=0)
    owner: Optional[str] = None
    beneficiary: Optional[str] = None
    category: Optional[str] = None
    verified: bool = False
    cover_image_cid: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Campaign name is required")
        return v

    @field_validator("goal_wei", mode="before")
    @classmethod
    def parse_goal(cls, v: Any) -> Any:
        return _parse_wei(v)

    @field_validator("owner", "beneficiary", "category", "cover_image_cid")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ReferralBind(BaseModel):
    """Explicit referral bind for an existing user."""

    identity: str = Field(min_length=1)
    referral_code: str = Field(min_length=1, max_length=32)

    @field_validator("identity", "referral_code")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("value is required")
        return v
