from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from pbl.domain.errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: object, field: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # floats go through repr so 0.1 stays 0.1
        value = repr(value)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number.") from exc
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number.")
    return number


def to_quantity(value: object, field: str = "Quantity") -> int:
    """Whole unit count; spreadsheet floats like 10.0 are accepted."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number.")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a whole number.") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field} must be a whole number.")
    return int(number)


def optional_decimal(value: object, field: str = "value") -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def from_db(value: object) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def to_db(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 rounded to 2 dp; 0 when whole is 0."""
    if whole == ZERO:
        return ZERO.quantize(CENT)
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def markup_percentage(purchase_price: Optional[Decimal], selling_price: Optional[Decimal]) -> Decimal:
    if purchase_price is None or selling_price is None or purchase_price <= ZERO:
        return ZERO.quantize(CENT)
    return percentage(selling_price - purchase_price, purchase_price)


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
