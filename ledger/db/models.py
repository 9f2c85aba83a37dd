"""SQLAlchemy ORM models for the donation ledger.

Monetary values never pass through binary floating point. Wei amounts are
arbitrary precision integers and scores/token balances are exact decimals;
both use ``ExactNumeric``, which maps to NUMERIC on PostgreSQL and to a
decimal string elsewhere (SQLite would otherwise store NUMERIC as REAL).
"""

from datetime import datetime, timezone
from decimal import Decimal, localcontext

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

# 78 digits hold any uint256 value
AMOUNT_PRECISION = 78
DECIMAL_SCALE = 18


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExactNumeric(TypeDecorator):
    """Exact numeric column that survives every dialect without rounding.

    Values with ``scale == 0`` are loaded as ``int``, all others as
    ``Decimal``.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = AMOUNT_PRECISION, scale: int = 0):
        super().__init__(precision, scale)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))
        # sign + digits + decimal point
        return dialect.type_descriptor(String(self.precision + 2))

    def _quantize(self, value) -> Decimal:
        if isinstance(value, float):
            raise TypeError("float values are not accepted for exact numeric columns")
        with localcontext() as ctx:
            ctx.prec = self.precision + self.scale + 2
            return Decimal(value).quantize(Decimal(1).scaleb(-self.scale))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = self._quantize(value)
        if dialect.name == "postgresql":
            return value
        return format(value, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        value = Decimal(str(value)) if not isinstance(value, Decimal) else value
        if self.scale == 0:
            return int(value)
        with localcontext() as ctx:
            ctx.prec = self.precision + self.scale + 2
            if value == value.to_integral_value():
                return value.quantize(Decimal(1))
            return value.normalize()


class User(Base):
    """Ledger user keyed by normalized identity (wallet address or email)."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "referred_by IS NULL OR referred_by <> identity",
            name="ck_users_no_self_referral",
        ),
    )

    identity = Column(String(320), primary_key=True)
    name = Column(String(255), nullable=True)
    email = Column(String(320), nullable=False, unique=True)
    phone = Column(String(64), nullable=True)

    total_donated_wei = Column(ExactNumeric(AMOUNT_PRECISION, 0), nullable=False, default=0)
    referral_code = Column(String(6), nullable=True, unique=True, index=True)
    referred_by = Column(String(320), ForeignKey("users.identity"), nullable=True)
    referral_count = Column(Integer, nullable=False, default=0)
    impact_score = Column(ExactNumeric(AMOUNT_PRECISION, DECIMAL_SCALE), nullable=False, default=0)
    reward_balance = Column(ExactNumeric(AMOUNT_PRECISION, DECIMAL_SCALE), nullable=False, default=0)

    # Optimistic concurrency counter (compare-and-swap on every UPDATE)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<User(identity={self.identity}, impact_score={self.impact_score})>"


class Campaign(Base):
    """Fundraising campaign."""

    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    goal_wei = Column(ExactNumeric(AMOUNT_PRECISION, 0), nullable=False, default=0)
    owner_identity = Column(String(320), nullable=True)
    beneficiary_identity = Column(String(320), nullable=True)
    category = Column(String(100), nullable=False, default="General")
    verified = Column(Boolean, nullable=False, default=False)
    cover_image_cid = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    donations = relationship("Donation", back_populates="campaign")

    def __repr__(self):
        return f"<Campaign(id={self.id}, name={self.name})>"


class Receipt(Base):
    """Content-addressed donation receipt (IPFS CID)."""

    __tablename__ = "receipts"

    cid = Column(String(255), primary_key=True)
    size_bytes = Column(Integer, nullable=True)
    pin_status = Column(String(32), nullable=False, default="pinned")
    gateway_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Donation(Base):
    """Donation keyed by its on-chain transaction hash. Immutable once recorded."""

    __tablename__ = "donations"

    tx_hash = Column(String(100), primary_key=True)
    donor_identity = Column(String(320), ForeignKey("users.identity"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    receipt_cid = Column(String(255), ForeignKey("receipts.cid"), nullable=True)
    amount_wei = Column(ExactNumeric(AMOUNT_PRECISION, 0), nullable=False)
    status = Column(String(32), nullable=False, default="Success")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="donations")
    receipt = relationship("Receipt")

    def __repr__(self):
        return f"<Donation(tx_hash={self.tx_hash}, amount_wei={self.amount_wei})>"


class Referral(Base):
    """Append-only log of successful referral binds."""

    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_identity = Column(String(320), ForeignKey("users.identity"), nullable=False, index=True)
    referee_identity = Column(String(320), ForeignKey("users.identity"), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class RewardHistoryEntry(Base):
    """Append-only audit log of reward tokens credited to a user."""

    __tablename__ = "rewards_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_identity = Column(String(320), ForeignKey("users.identity"), nullable=False, index=True)
    token_amount = Column(ExactNumeric(AMOUNT_PRECISION, DECIMAL_SCALE), nullable=False)
    reason = Column(String(64), nullable=False)
    tx_hash = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
