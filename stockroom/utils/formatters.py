"""
Formatting helpers for serialization boundaries.
Quantities and costs leave the core as fixed 4-place decimal strings.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union, Optional

FOUR_PLACES = Decimal('0.0001')
TWO_PLACES = Decimal('0.01')


def to_decimal(value: Union[int, float, Decimal, str, None], default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Coerce a number-like value to Decimal without going through binary float.

    Examples:
        to_decimal(1.1) -> Decimal('1.1')
        to_decimal('2.50') -> Decimal('2.50')
        to_decimal(None) -> None
        to_decimal('', Decimal('0')) -> Decimal('0')
        to_decimal('NaN') -> ValueError
    """
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        num = value
    else:
        try:
            num = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f'Invalid number: {value!r}')
    if not num.is_finite():
        raise ValueError(f'Invalid number: {value!r}')
    return num


def format_decimal(value: Union[int, float, Decimal, str, None], places: Decimal = FOUR_PLACES) -> Optional[str]:
    """
    Format a quantity or cost as a fixed-point string.

    Examples:
        format_decimal(Decimal('1.5')) -> "1.5000"
        format_decimal(3) -> "3.0000"
        format_decimal(None) -> None
    """
    if value is None:
        return None
    num = to_decimal(value)
    return str(num.quantize(places, rounding=ROUND_HALF_UP))


def format_money(value: Union[int, float, Decimal, str, None]) -> Optional[str]:
    """Format a currency amount with two decimals ("12.30")."""
    return format_decimal(value, TWO_PLACES)


def format_quantity(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Human-readable quantity for messages, without trailing zeros.

    Examples:
        format_quantity(Decimal('100.0000')) -> "100"
        format_quantity(Decimal('2.5000')) -> "2.5"
    """
    if value is None:
        return "0"
    num = to_decimal(value)
    if num == num.to_integral_value():
        return str(num.quantize(Decimal('1')))
    return format(num.normalize(), 'f')
