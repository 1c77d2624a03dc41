"""Value normalization helpers used when persisting extractions."""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
]


def to_cents(dollars: Optional[Union[float, int, str]]) -> Optional[int]:
    """Convert decimal dollars to integer cents, rounding half away from zero."""
    if dollars is None:
        return None
    try:
        amount = Decimal(str(dollars))
    except InvalidOperation:
        LOGGER.debug(f"Failed to convert currency value: {dollars}")
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a calendar date permissively.

    Returns None for anything that is not a valid date instead of raising.
    """
    if value is None:
        return None

    value = str(value).strip()
    if not value or value.lower() in ["-", "n/a", "na", "none", "null"]:
        return None

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    LOGGER.debug(f"Failed to parse date value: {value}")
    return None


def to_int(value: Optional[float]) -> Optional[int]:
    """Round a numeric reading such as mileage to an int."""
    if value is None:
        return None
    number = Decimal(str(value))
    if not number.is_finite():
        return None
    return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))
