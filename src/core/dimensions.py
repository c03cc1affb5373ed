"""Registry of the six insight dimensions and the record mapping shared by store and distributor.

Each dimension knows how to ask the platform for its data (level, breakdowns,
fields), which fields identify a record, and which table stores it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.core.database.models import (
    AdInsight,
    Base,
    CampaignInsight,
    DemographicInsight,
    DeviceInsight,
    PlatformInsight,
    RegionalInsight,
)
from src.core.insight_values import (
    AMOUNT_FIELDS,
    COUNT_FIELDS,
    DATE_FIELDS,
    STRUCTURED_FIELDS,
    derive_conversions,
    is_missing,
    parse_date,
    parse_number,
)

UNKNOWN_KEY_PART = "unknown"

_METRIC_FIELDS = [
    "impressions",
    "reach",
    "frequency",
    "clicks",
    "unique_clicks",
    "cpm",
    "cpc",
    "cpp",
    "ctr",
    "unique_ctr",
    "cost_per_unique_click",
    "spend",
    "inline_link_clicks",
    "inline_link_click_ctr",
    "outbound_clicks",
    "outbound_clicks_ctr",
    "actions",
    "action_values",
    "conversions",
    "conversion_values",
    "cost_per_conversion",
    "cost_per_action_type",
    "purchase_roas",
    "website_purchase_roas",
    "mobile_app_purchase_roas",
    "unique_inline_link_clicks",
    "unique_inline_link_click_ctr",
    "unique_outbound_clicks",
    "unique_outbound_clicks_ctr",
    "cost_per_unique_outbound_click",
    "cost_per_unique_inline_link_click",
]

_CAMPAIGN_ATTRIBUTES = ["objective", "optimization_goal", "buying_type", "attribution_setting"]

CAMPAIGN_FIELDS = ["campaign_id", "campaign_name", "adset_id", "adset_name"] + _CAMPAIGN_ATTRIBUTES + _METRIC_FIELDS
ACCOUNT_LEVEL_FIELDS = list(_METRIC_FIELDS)
REGIONAL_FIELDS = ["account_id", "account_name"] + _METRIC_FIELDS + _CAMPAIGN_ATTRIBUTES
_AD_IDENTIFIERS = ["campaign_id", "campaign_name", "adset_id", "adset_name", "ad_id", "ad_name"]
AD_LEVEL_FIELDS = _AD_IDENTIFIERS + _CAMPAIGN_ATTRIBUTES + _METRIC_FIELDS


@dataclass(frozen=True)
class DimensionSpec:
    """How one dimension is requested, identified and stored."""

    name: str
    label: str
    model: type[Base]
    level: str
    breakdowns: tuple[str, ...]
    fields: tuple[str, ...]
    key_fields: tuple[str, ...]
    required_fields: tuple[str, ...]
    descriptive_fields: tuple[str, ...] = ()
    optional_key_fields: tuple[str, ...] = ()
    legacy_names: tuple[str, ...] = ()

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def record_key(self, record: dict[str, Any]) -> tuple[str, ...]:
        """Dimension key of a raw or stored record, with absent optional parts as 'unknown'."""
        parts = []
        for field in self.key_fields:
            value = record.get(field)
            if is_missing(value):
                parts.append(UNKNOWN_KEY_PART if field in self.optional_key_fields else "")
            else:
                parts.append(str(value))
        return tuple(parts)


CAMPAIGNS = DimensionSpec(
    name="campaigns",
    label="Campaigns",
    model=CampaignInsight,
    level="campaign",
    breakdowns=(),
    fields=tuple(CAMPAIGN_FIELDS),
    key_fields=("campaign_id",),
    required_fields=("campaign_id", "campaign_name"),
    descriptive_fields=("campaign_name", "adset_id", "adset_name", *_CAMPAIGN_ATTRIBUTES),
)

DEMOGRAPHICS = DimensionSpec(
    name="demographics",
    label="Demographics",
    model=DemographicInsight,
    level="account",
    breakdowns=("age", "gender"),
    fields=tuple(ACCOUNT_LEVEL_FIELDS),
    key_fields=("age", "gender"),
    required_fields=("age", "gender"),
)

REGIONAL = DimensionSpec(
    name="regional",
    label="Regional",
    model=RegionalInsight,
    level="account",
    breakdowns=("region",),
    fields=tuple(REGIONAL_FIELDS),
    key_fields=("region",),
    required_fields=("region",),
    descriptive_fields=("account_id", "account_name"),
)

DEVICES = DimensionSpec(
    name="devices",
    label="Devices",
    model=DeviceInsight,
    level="account",
    breakdowns=("device_platform",),
    fields=tuple(REGIONAL_FIELDS),
    key_fields=("device_platform",),
    required_fields=("device_platform",),
)

PLATFORMS = DimensionSpec(
    name="platforms",
    label="Platforms",
    model=PlatformInsight,
    level="account",
    breakdowns=("publisher_platform", "platform_position"),
    fields=tuple(REGIONAL_FIELDS),
    key_fields=("publisher_platform", "platform_position"),
    required_fields=("publisher_platform",),
    optional_key_fields=("platform_position",),
)

AD_LEVEL = DimensionSpec(
    name="ad_level",
    label="Ad Level",
    model=AdInsight,
    level="ad",
    breakdowns=(),
    fields=tuple(AD_LEVEL_FIELDS),
    key_fields=("ad_id",),
    required_fields=("campaign_id", "campaign_name", "adset_id", "adset_name", "ad_id", "ad_name"),
    descriptive_fields=("ad_name", "campaign_id", "campaign_name", "adset_id", "adset_name", *_CAMPAIGN_ATTRIBUTES),
    legacy_names=("adLevel", "ad_level_data"),
)

# Collection and storage order
DIMENSIONS: tuple[DimensionSpec, ...] = (CAMPAIGNS, DEMOGRAPHICS, REGIONAL, DEVICES, PLATFORMS, AD_LEVEL)
DIMENSION_NAMES: tuple[str, ...] = tuple(spec.name for spec in DIMENSIONS)

_BY_NAME = {spec.name: spec for spec in DIMENSIONS}


def get_dimension(name: str) -> DimensionSpec:
    """Look up a dimension by its name or a legacy alias."""
    if name in _BY_NAME:
        return _BY_NAME[name]
    for spec in DIMENSIONS:
        if name in spec.legacy_names:
            return spec
    raise KeyError(f"Unknown dimension: {name}")


def dimension_records(payload: dict[str, Any], spec: DimensionSpec) -> Any:
    """Return the array stored for a dimension under its name or any legacy alias (None if absent)."""
    for key in (spec.name, *spec.legacy_names):
        if key in payload:
            return payload[key]
    return None


def _to_int(value: Any) -> int | None:
    number = parse_number(value)
    return int(round(number)) if number is not None else None


def map_record(
    spec: DimensionSpec, record: dict[str, Any], client_id: str, period: str, scraped_at: datetime
) -> dict[str, Any]:
    """Project one (raw or transformed) insight record onto its table's columns.

    Empty values become None. Numeric strings are parsed. Absent optional key
    parts become 'unknown'. Conversion totals are derived from the action arrays.
    """
    row: dict[str, Any] = {"client_id": client_id, "month_year": period, "scraped_at": scraped_at}

    for field, value in zip(spec.key_fields, spec.record_key(record), strict=True):
        row[field] = value

    for field in spec.descriptive_fields:
        value = record.get(field)
        row[field] = None if is_missing(value) else str(value)

    for field in COUNT_FIELDS:
        row[field] = _to_int(record.get(field))
    for field in AMOUNT_FIELDS:
        row[field] = parse_number(record.get(field))

    for field in STRUCTURED_FIELDS:
        value = record.get(field)
        column = "conversions_raw" if field == "conversions" else field
        row[column] = value if isinstance(value, list) and value else None

    for field in DATE_FIELDS:
        row[field] = parse_date(record.get(field))

    conversions, conversion_value = derive_conversions(record)
    row["conversions"] = conversions
    row["conversion_value"] = conversion_value

    return row


def stored_columns(spec: DimensionSpec) -> list[str]:
    """Column names of a dimension table in declaration order."""
    return [column.key for column in spec.model.__table__.columns]
