"""Money parsing and rounding helpers."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from storefront.exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def quantize_money(value) -> Decimal:
    """Round to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value, field: str = 'amount', allow_negative: bool = False) -> Decimal:
    """
    Parse a client-supplied amount (str, int, float or Decimal) into a Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValidationError: if the value is empty, not numeric, or negative.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'{field} is required')
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a number')
    if amount < 0 and not allow_negative:
        raise ValidationError(f'{field} cannot be negative')
    return quantize_money(amount)


def format_money(value, currency: str = 'KES') -> str:
    """Format an amount for display, e.g. KES 1,234.50."""
    if value is None:
        value = ZERO
    return f"{currency} {quantize_money(value):,.2f}"
