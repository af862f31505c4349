"""Shared helpers for services and blueprints."""

import logging
from datetime import date, datetime

from bookclub.core.exceptions import NotFoundError, ValidationError
from bookclub.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or raise ``NotFoundError``.

    The events blueprint turns the exception into a 404 response, so views
    simply write ``event = get_or_404(ReadingEvent, event_id)``.
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def require_date(data: dict, field: str) -> date:
    """Like ``parse_date`` but raises ``ValidationError`` for missing/bad input."""
    parsed = parse_date(data.get(field))
    if parsed is None:
        raise ValidationError(f"{field} must be a valid date", details={field: "invalid"})
    return parsed


def count_words(text: str | None) -> int:
    """Length of the stripped text; every character counts, as for CJK prose."""
    if not text:
        return 0
    return len(text.strip())
