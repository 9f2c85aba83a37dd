"""Donation ledger with impact scores, referrals and reward tokens."""

__version__ = "0.1.0"
