"""
Input validation helpers shared by the ledger operations.

Every helper raises ValidationError before any store access happens.
"""

from datetime import date, datetime
from typing import Any, Optional

from clubledger.utils.ledger_exceptions import ValidationError


def require(value: Any, field_name: str, user_message: str = None) -> Any:
    """Return ``value`` or raise when it is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field '{field_name}'",
                              user_message or f"❌ Please provide {field_name.replace('_', ' ')}.")
    return value


def parse_int(value: Any, field_name: str) -> int:
    """
    Parse raw form input into an int.

    Accepts ints and integral strings (surrounding whitespace and a sign are
    allowed). Booleans, fractions and anything else are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"'{field_name}' must be a whole number, got {value!r}",
                              f"❌ {field_name.replace('_', ' ').capitalize()} must be a whole number.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"'{field_name}' must be a whole number, got {value!r}",
                          f"❌ {field_name.replace('_', ' ').capitalize()} must be a whole number.")


def parse_percentage(value: Any, field_name: str = 'partner_percentage') -> int:
    """Parse a partner percentage in (0, 100]."""
    percentage = parse_int(value, field_name)
    if not 0 < percentage <= 100:
        raise ValidationError(f"'{field_name}' must be between 1 and 100, got {percentage}",
                              "❌ The partner percentage must be between 1 and 100.")
    return percentage


def ensure_distinct_partner(player_id: str, partner_id: Optional[str]):
    """Reject a partner that is the primary player."""
    if partner_id is not None and partner_id == player_id:
        raise ValidationError(f"Partner '{partner_id}' equals the primary player",
                              "❌ The partner cannot be the same player.")


def coerce_date(value: Any, field_name: str = 'date') -> date:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"'{field_name}' is not a valid date: {value!r}",
                          "❌ Please select a valid date.")
