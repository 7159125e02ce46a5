"""
Money helpers shared by the ledger services
"""
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce DB aggregates (which SQLite returns as floats or None) to Decimal"""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Any) -> str:
    """1,250 for whole amounts, 1,250.50 otherwise"""
    value = to_decimal(amount)
    if value == value.to_integral_value():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


def iso(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
