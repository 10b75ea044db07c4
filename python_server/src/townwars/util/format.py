"""Formatting and conversion utilities.

Currency formatting and tip conversion.
"""

from __future__ import annotations

# Reference ETH price used to size tips.
ETH_TO_USD = 3318.35


def format_dollars(cents: int) -> str:
    """Format an amount in cents as ``$d.cc``."""
    return f"${cents / 100:.2f}"


def tip_to_coins(eth_amount: float) -> int:
    """Coins granted for a tip, bucketed by its USD value."""
    usd = eth_amount * ETH_TO_USD
    if usd < 3.5:
        return 90
    if usd < 7.5:
        return 490
    return 990
