"""Utility functions for formatting monetary amounts."""

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Optional, Union

from web3 import Web3

from ledger.errors import InvalidAmount

# Wei to ETH conversion factor (10^18)
WEI_PER_ETH = 10**18

# Largest on-chain value (uint256)
MAX_WEI = 2**256 - 1


def wei_to_eth(wei: Optional[int]) -> Decimal:
    """Convert wei to ETH.

    Args:
        wei: Amount in wei (smallest unit of ETH)

    Returns:
        Decimal: Amount in ETH
    """
    if wei is None:
        return Decimal("0")
    return Decimal(Web3.from_wei(int(wei), "ether"))


def eth_to_wei(eth: Union[str, int, Decimal]) -> int:
    """Convert an ETH amount to wei.

    Args:
        eth: Amount in ETH as a decimal string, int or Decimal

    Returns:
        int: Amount in wei

    Raises:
        InvalidAmount: For floats, unparsable strings or sub-wei fractions
    """
    if isinstance(eth, (float, bool)):
        raise InvalidAmount("ETH amounts must be given as decimal strings, not floats")
    try:
        value = Decimal(str(eth).strip())
    except ArithmeticError as e:
        raise InvalidAmount(f"Invalid ETH amount: {eth!r}") from e
    if not value.is_finite():
        raise InvalidAmount(f"Invalid ETH amount: {eth!r}")
    if value < 0:
        raise InvalidAmount(f"ETH amount cannot be negative: {eth!r}")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value * WEI_PER_ETH
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(f"ETH amount has more than 18 decimal places: {eth!r}")
    return Web3.to_wei(value, "ether")


def format_eth(wei: Optional[int], places: int = 3) -> str:
    """Format a wei amount as an ETH string for display."""
    quantum = Decimal(1).scaleb(-places)
    return format(wei_to_eth(wei).quantize(quantum, rounding=ROUND_HALF_UP), "f")


def format_decimal(value: Optional[Decimal]) -> str:
    """Render an exact decimal without exponent notation."""
    if value is None:
        return "0"
    text = format(Decimal(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
