"""
Input validation shared by the REST routes and the import workflow.

Everything here runs before any network or database call, so malformed
input never costs an outbound request.
"""

import re
from typing import Optional

from config import Config

_NON_DIGITS = re.compile(r'[^0-9]')


class ValidationError(ValueError):
    """Raised for malformed user input."""
    pass


def clean_barcode(raw: str) -> str:
    """Strip everything except digits from a scanned or typed barcode."""
    return _NON_DIGITS.sub('', raw or '')


def validate_barcode(raw: Optional[str],
                     min_digits: int = Config.BARCODE_MIN_DIGITS,
                     max_digits: int = Config.BARCODE_MAX_DIGITS) -> str:
    """
    Validate a UPC/EAN style barcode.

    Args:
        raw: Barcode as entered, may contain spaces or dashes
        min_digits: Shortest accepted digit count (inclusive)
        max_digits: Longest accepted digit count (inclusive)

    Returns:
        The digits-only barcode

    Raises:
        ValidationError: If the input is blank or has the wrong length
    """
    if raw is None or not raw.strip():
        raise ValidationError('Barcode is required')

    barcode = clean_barcode(raw)
    if len(barcode) < min_digits or len(barcode) > max_digits:
        raise ValidationError('Invalid barcode format')

    return barcode


def validate_search_query(query: Optional[str]) -> str:
    """Return the stripped query or raise if it is empty."""
    if query is None or not query.strip():
        raise ValidationError('Search query is required')
    return query.strip()


def validate_release_id(value) -> int:
    """Parse a Discogs release id; it must be a positive integer."""
    try:
        release_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Invalid release ID')

    if release_id <= 0:
        raise ValidationError('Invalid release ID')
    return release_id


def parse_int_arg(value: Optional[str], default: int, minimum: int = 1,
                  maximum: Optional[int] = None, name: str = 'value') -> int:
    """Parse a numeric query-string argument, clamping it into range."""
    if value is None or value == '':
        return default

    try:
        number = int(value)
    except ValueError:
        raise ValidationError(f'{name} must be an integer')

    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number
