"""Pydantic models for collected insights and the results each pipeline stage returns."""

from datetime import date, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.dimensions import AD_LEVEL, CAMPAIGNS, DEMOGRAPHICS, DEVICES, PLATFORMS, REGIONAL
from src.core.insight_values import NUMERIC_FIELDS, is_missing, is_numeric_like

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class DateRange(BaseModel):
    """Inclusive reporting window in YYYY-MM-DD form."""

    since: str = Field(..., pattern=DATE_PATTERN)
    until: str = Field(..., pattern=DATE_PATTERN)

    @field_validator("since", "until")
    @classmethod
    def validate_calendar_date(cls, v):
        date.fromisoformat(v)
        return v

    @model_validator(mode="after")
    def validate_order(self):
        if self.until < self.since:
            raise ValueError(f"until ({self.until}) is before since ({self.since})")
        return self

    @property
    def days(self) -> int:
        return (date.fromisoformat(self.until) - date.fromisoformat(self.since)).days

    @property
    def month_identifier(self) -> str:
        return self.since[:7]

    def to_param(self) -> dict[str, str]:
        return {"since": self.since, "until": self.until}


class CollectionSummary(BaseModel):
    total_records: int = Field(0, ge=0)
    successful_endpoints: int = Field(0, ge=0)
    failed_endpoints: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class InsightsCollection(BaseModel):
    """Raw output of one collection run: one array per dimension plus metadata."""

    model_config = ConfigDict(extra="allow")

    account_id: str | None = None
    campaigns: list[dict[str, Any]] = Field(default_factory=list)
    demographics: list[dict[str, Any]] = Field(default_factory=list)
    regional: list[dict[str, Any]] = Field(default_factory=list)
    devices: list[dict[str, Any]] = Field(default_factory=list)
    platforms: list[dict[str, Any]] = Field(default_factory=list)
    ad_level: list[dict[str, Any]] = Field(default_factory=list)
    scraped_at: str
    date_range: DateRange
    month_identifier: str = Field(..., pattern=PERIOD_PATTERN)
    collection_summary: CollectionSummary = Field(default_factory=CollectionSummary)

    def records(self, dimension: str) -> list[dict[str, Any]]:
        return getattr(self, dimension)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# --- Per-dimension record shapes used by the validator ---


class InsightRecord(BaseModel):
    """Common shape of an insight row. Unknown fields pass through untouched."""

    model_config = ConfigDict(extra="allow")

    required_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def validate_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("record must be an object")

        missing = [field for field in cls.required_fields if is_missing(data.get(field))]
        if missing:
            raise ValueError(f"missing required field(s): {', '.join(missing)}")

        bad = [
            field
            for field in NUMERIC_FIELDS
            if field in data and not is_missing(data[field]) and not is_numeric_like(data[field])
        ]
        if bad:
            details = ", ".join(f"{field}={data[field]!r}" for field in bad)
            raise ValueError(f"non-numeric value for {details}")
        return data


class CampaignRecord(InsightRecord):
    required_fields = CAMPAIGNS.required_fields


class DemographicRecord(InsightRecord):
    required_fields = DEMOGRAPHICS.required_fields


class RegionalRecord(InsightRecord):
    required_fields = REGIONAL.required_fields


class DeviceRecord(InsightRecord):
    required_fields = DEVICES.required_fields


class PlatformRecord(InsightRecord):
    required_fields = PLATFORMS.required_fields


class AdLevelRecord(InsightRecord):
    required_fields = AD_LEVEL.required_fields


RECORD_MODELS: dict[str, type[InsightRecord]] = {
    "campaigns": CampaignRecord,
    "demographics": DemographicRecord,
    "regional": RegionalRecord,
    "devices": DeviceRecord,
    "platforms": PlatformRecord,
    "ad_level": AdLevelRecord,
}


# --- Stage results ---


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    validated_data: dict[str, Any] | None = None


class Transformation(BaseModel):
    """One value changed by the transformer."""

    dimension: str
    index: int
    field: str
    before: Any = None
    after: Any = None
    action: str = "normalized"


class TransformResult(BaseModel):
    data: dict[str, Any]
    transformations: list[Transformation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class QualityReport(BaseModel):
    overall_score: float = Field(..., ge=0, le=100)
    completeness_score: float = Field(..., ge=0, le=100)
    consistency_score: float = Field(..., ge=0, le=100)
    validity_score: float = Field(..., ge=0, le=100)
    classification: str
    total_records: int = 0
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class StorageResult(BaseModel):
    success: bool
    errors: list[str] = Field(default_factory=list)
    records_inserted: int = 0
    dimension_counts: dict[str, int] = Field(default_factory=dict)


class DistributionResult(BaseModel):
    success: bool
    records_distributed: int = 0
    tables_updated: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class PeriodSummary(BaseModel):
    month_year: str
    total_records: int
    dimension_counts: dict[str, int] = Field(default_factory=dict)
    last_scraped_at: datetime | None = None


class StorageSummary(BaseModel):
    client_id: str
    month_year: str
    total_records: int
    storage_time_ms: float


class ClientRunResult(BaseModel):
    client_id: str
    client_name: str | None = None
    success: bool
    error: str | None = None
    validation: ValidationResult | None = None
    quality_report: QualityReport | None = None
    transformations: int = 0
    storage: StorageResult | None = None
    storage_summary: StorageSummary | None = None


class BatchSummary(BaseModel):
    total_clients: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    total_records: int = 0
    total_time_ms: float = 0
    cancelled: bool = False


class BatchResult(BaseModel):
    success: bool
    summary: BatchSummary
    results: list[ClientRunResult] = Field(default_factory=list)


class CacheResponse(BaseModel):
    """Analytics lookup outcome. ``source`` is "cache", "fresh" or "stale_cache"."""

    success: bool
    data: dict[str, Any] | None = None
    cached: bool = False
    stale: bool = False
    source: str | None = None
    month_year: str | None = None
    last_updated: datetime | None = None
    warning: str | None = None
    error: str | None = None
