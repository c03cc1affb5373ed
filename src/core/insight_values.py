"""Value parsing helpers shared by the validator, transformer, store and analytics engine.

The insights API returns every number as a string ("100.50", "1234") and
nests conversion data in arrays of ``{"action_type": ..., "value": ...}``.
"""

import math
import re
from datetime import date, datetime
from typing import Any

# Whole-number counters
COUNT_FIELDS = (
    "impressions",
    "reach",
    "clicks",
    "unique_clicks",
    "inline_link_clicks",
    "unique_inline_link_clicks",
)

# Money, rates and ratios
AMOUNT_FIELDS = (
    "frequency",
    "cpm",
    "cpc",
    "cpp",
    "ctr",
    "unique_ctr",
    "cost_per_unique_click",
    "spend",
    "inline_link_click_ctr",
    "unique_inline_link_click_ctr",
    "cost_per_unique_inline_link_click",
)

NUMERIC_FIELDS = COUNT_FIELDS + AMOUNT_FIELDS

# Arrays of {"action_type": str, "value": str}
STRUCTURED_FIELDS = (
    "actions",
    "action_values",
    "conversions",
    "conversion_values",
    "cost_per_conversion",
    "cost_per_action_type",
    "purchase_roas",
    "website_purchase_roas",
    "mobile_app_purchase_roas",
    "outbound_clicks",
    "outbound_clicks_ctr",
    "unique_outbound_clicks",
    "unique_outbound_clicks_ctr",
    "cost_per_unique_outbound_click",
)

DATE_FIELDS = ("date_start", "date_stop")

# Action types counted as conversions when the dedicated conversions arrays are absent
CONVERSION_ACTION_TYPES = frozenset(
    {
        "purchase",
        "omni_purchase",
        "offsite_conversion.fb_pixel_purchase",
        "onsite_web_purchase",
        "app_custom_event.fb_mobile_purchase",
        "lead",
        "offsite_conversion.fb_pixel_lead",
        "onsite_conversion.lead_grouped",
        "complete_registration",
        "offsite_conversion.fb_pixel_complete_registration",
    }
)

# Meta reports every interaction with an ad (clicks, reactions, shares, ...) under post_engagement
ENGAGEMENT_ACTION_TYPES = frozenset({"post_engagement"})

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%Y%m%d", "%d-%m-%Y", "%Y.%m.%d")


def is_missing(value: Any) -> bool:
    """True for the values treated as "no data": None, empty strings and NaN."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, float) and not math.isfinite(value):
        return True
    return False


def is_numeric_like(value: Any) -> bool:
    """True when value is a number or a string that parses as one."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    if isinstance(value, str):
        return bool(_NUMBER_RE.match(value.strip().replace(",", "")))
    return False


def parse_number(value: Any) -> float | None:
    """Parse a numeric value, returning None when it is missing or unparseable."""
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str) and is_numeric_like(value):
        number = float(value.strip().replace(",", ""))
        return number if math.isfinite(number) else None
    return None


def as_float(value: Any) -> float:
    """Parse a numeric value, treating missing as 0.0 (for aggregation only)."""
    number = parse_number(value)
    return number if number is not None else 0.0


def parse_date(value: Any) -> date | None:
    """Parse the date shapes the platform and legacy reports produce."""
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # ISO timestamps such as 2024-03-01T00:00:00+0000
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    if len(text) >= 24 and text[-5] in "+-":
        try:
            return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z").date()
        except ValueError:
            pass
    return None


def sum_action_values(entries: Any, action_types: frozenset[str] | None = None) -> float | None:
    """Sum ``value`` over an action array, optionally limited to some action types.

    Returns None when the array is absent or holds no matching entries.
    """
    if not isinstance(entries, list):
        return None

    total = None
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if action_types is not None and entry.get("action_type") not in action_types:
            continue
        number = parse_number(entry.get("value"))
        if number is None:
            continue
        total = (total or 0.0) + number
    return total


def derive_conversions(record: dict[str, Any]) -> tuple[float | None, float | None]:
    """Derive (conversion count, conversion value) from a raw insight record.

    The dedicated ``conversions``/``conversion_values`` arrays win; otherwise
    conversion-type entries of ``actions``/``action_values`` are used.
    """
    count = sum_action_values(record.get("conversions"))
    if count is None:
        count = sum_action_values(record.get("actions"), CONVERSION_ACTION_TYPES)

    value = sum_action_values(record.get("conversion_values"))
    if value is None:
        value = sum_action_values(record.get("action_values"), CONVERSION_ACTION_TYPES)

    return count, value
