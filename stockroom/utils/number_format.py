"""Number parsing utilities for quantities entered by users or CSV files."""
import re
from decimal import Decimal, InvalidOperation

FRACTION_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)\s*$")
QUANTITY_PLACES = Decimal('0.0001')
MAX_DECIMAL_PLACES = 4


def exceeds_storage_scale(number: Decimal) -> bool:
    """
    True when the value carries more decimal places than quantity columns store.

    Trailing zeros do not count: "1.50000" fits, "0.00001" does not.
    """
    return number.normalize().as_tuple().exponent < -MAX_DECIMAL_PLACES


def _checked(number: Decimal, raw) -> Decimal:
    if not number.is_finite():
        raise ValueError(f'Invalid quantity: {raw}')
    if exceeds_storage_scale(number):
        raise ValueError(f'Quantity cannot have more than {MAX_DECIMAL_PLACES} decimal places: {raw}')
    return number


def parse_fraction_or_number(value) -> Decimal:
    """
    Parse a quantity that may be written as a fraction.

    Accepts plain numbers ("2", "0.25", 1.5) and simple fractions ("1/3").
    Fractions are resolved to 4 decimal places, the storage precision of
    quantity columns; plain numbers with more places are rejected.

    Raises:
        ValueError: if the value is empty, malformed, not finite ("NaN",
            "Infinity"), too precise, or divides by zero.
    """
    if value is None:
        raise ValueError('Quantity is required')

    if isinstance(value, Decimal):
        return _checked(value, value)
    if isinstance(value, (int, float)):
        return _checked(Decimal(str(value)), value)

    cleaned = str(value).strip()
    if not cleaned:
        raise ValueError('Quantity is required')

    match = FRACTION_PATTERN.match(cleaned)
    if match:
        numerator = Decimal(match.group(1))
        denominator = Decimal(match.group(2))
        if denominator == 0:
            raise ValueError(f'Invalid fraction (division by zero): {cleaned}')
        return (numerator / denominator).quantize(QUANTITY_PLACES)

    try:
        number = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise ValueError(f'Invalid quantity: {cleaned}')
    return _checked(number, cleaned)


def parse_positive_quantity(value, field='quantity') -> Decimal:
    """Parse a quantity and require it to be strictly positive."""
    quantity = parse_fraction_or_number(value)
    if quantity <= 0:
        raise ValueError(f'{field} must be greater than 0')
    return quantity
