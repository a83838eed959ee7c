"""OData v2 helpers: key literals, entity metadata and value normalization."""

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

RATING_SCALE_MAX = Decimal("5.0")

_TAG_RE = re.compile(r"<[^>]*>")
_ODATA_DATE_RE = re.compile(r"/Date\((-?\d+)")


def results(value: Any) -> list[dict[str, Any]]:
    """
    Unwrap an OData v2 collection.

    Expanded navigation collections arrive as ``{"results": [...]}``; some
    merged documents carry plain lists. Anything else is treated as empty.

    Args:
        value: Raw collection value

    Returns:
        List of entity dicts (never None)
    """
    if isinstance(value, dict):
        value = value.get("results")
    if isinstance(value, list):
        return [entry for entry in value if isinstance(entry, dict)]
    return []


def int64_literal(value: Any) -> str:
    """Format an Edm.Int64 key value (``1234L``)."""
    return f"{int(value)}L"


def string_literal(value: Any) -> str:
    """Format an Edm.String key value with single quotes doubled."""
    text = "" if value is None else str(value)
    return "'" + text.replace("'", "''") + "'"


def form_key(form_content_id: int, form_data_id: int) -> str:
    """Key fragment shared by every entity of one form."""
    return (
        f"formContentId={int64_literal(form_content_id)},"
        f"formDataId={int64_literal(form_data_id)}"
    )


def entity_metadata(entity_type: str, key: str) -> dict[str, str]:
    """
    Build the ``__metadata`` block of a deep-upsert entity.

    Args:
        entity_type: Entity type name without namespace (e.g. "FormObjective")
        key: Comma-separated key predicate

    Returns:
        Dict with ``uri`` and namespaced ``type``
    """
    return {
        "uri": f"{entity_type}({key})",
        "type": f"SFOData.{entity_type}",
    }


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def is_rating_value(value: Any) -> bool:
    """True if the value parses as a finite number."""
    return _to_decimal(value) is not None


def normalize_rating(value: Any) -> str:
    """
    Normalize a backend rating to the shortest float string.

    ``"3.50"`` becomes ``"3.5"`` and ``"4.0"`` becomes ``"4"`` so the edit
    surface can compare and render ratings independent of source precision.
    Empty or unparseable values become ``""``.
    """
    if value is None or value == "":
        return ""
    number = _to_decimal(value)
    if number is None:
        return ""
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), "f")


def format_rating(value: Any) -> str:
    """
    Format a rating as fixed point with exactly one decimal place.

    Rounds half-up, so ``"4"`` -> ``"4.0"`` and ``"3.25"`` -> ``"3.3"``.

    Raises:
        ValueError: If the value is not numeric
    """
    number = _to_decimal(value)
    if number is None:
        raise ValueError(f"Not a rating value: {value!r}")
    return str(number.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def percent_of_max(rating: Any, scale_max: Decimal = RATING_SCALE_MAX) -> int:
    """Rating as a whole percentage of the rating scale (half-up)."""
    number = _to_decimal(rating) or Decimal(0)
    percent = number / scale_max * 100
    return int(percent.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clean_html(html: Optional[str]) -> str:
    """Strip tags and non-breaking space entities from rich-text fields."""
    if not html:
        return ""
    return _TAG_RE.sub("", html).replace("&nbsp;", " ").strip()


def parse_odata_date(value: Any) -> Optional[date]:
    """Parse a ``/Date(1700000000000)/`` literal into a UTC date."""
    if not isinstance(value, str):
        return None
    match = _ODATA_DATE_RE.search(value)
    if not match:
        return None
    millis = int(match.group(1))
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date()


def odata_error(body: Any) -> tuple[Optional[str], Optional[str]]:
    """
    Extract ``(code, message)`` from an OData v2 error body.

    Handles ``{"error": {"code": ..., "message": {"value": ...}}}`` as well as
    a plain string message.
    """
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if not isinstance(error, dict):
        return None, None
    message = error.get("message")
    if isinstance(message, dict):
        message = message.get("value")
    return error.get("code"), message
