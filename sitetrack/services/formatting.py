"""Reply formatting helpers shared by onboarding and the domain handlers."""

from decimal import Decimal
from typing import Optional

from sitetrack.config import settings


def format_amount(amount: Decimal, currency: Optional[str] = None) -> str:
    """Format a money amount, e.g. ``UGX 1,000,000`` or ``USD 12.50``."""
    currency = currency or settings.default_currency
    if amount == amount.to_integral_value():
        return f"{currency} {int(amount):,}"
    return f"{currency} {amount:,.2f}"


def format_percent(ratio: Decimal) -> str:
    return f"{(ratio * 100).quantize(Decimal('0.1'))}%"
