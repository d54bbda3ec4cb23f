"""
Field validators shared by marketplace models and serializers.
"""

import re
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError


def validate_phone_number(value):
    """
    Validate phone number format.

    Accepts international formats with optional country codes, spaces,
    dashes, and parentheses. Requires at least 10 digits.

    Args:
        value: Phone number string to validate

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:  # Empty string is allowed (optional field)
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses, and plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)
    if len(digits) < 10:
        raise ValidationError(
            'Phone number must contain at least 10 digits.',
            code='phone_too_short'
        )


def validate_positive_amount(value):
    """
    Validate that a monetary amount is strictly greater than zero.

    Args:
        value: Decimal (or number-like) amount

    Raises:
        ValidationError: If the amount is missing, not numeric or not positive
    """
    if value is None:
        return
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError('Amount must be a number.', code='invalid_amount')
    if not amount.is_finite() or amount <= 0:
        raise ValidationError('Amount must be greater than 0.', code='non_positive_amount')


def validate_latitude(value):
    if value is not None and not (-90 <= value <= 90):
        raise ValidationError('Latitude must be between -90 and 90.', code='invalid_latitude')


def validate_longitude(value):
    if value is not None and not (-180 <= value <= 180):
        raise ValidationError('Longitude must be between -180 and 180.', code='invalid_longitude')


def validate_date_window(start_date, end_date, field='end_date'):
    """
    Validate that a date window is well-formed (start <= end).

    Raises:
        ValidationError: keyed on ``field`` when the window is inverted
    """
    if start_date and end_date and start_date > end_date:
        raise ValidationError({
            field: 'End date must be on or after the start date.'
        })
