"""Pydantic models for the analytics snapshot served to clients.

Fields are snake_case in Python and camelCase on the wire (``by_alias=True``).
Values keep full precision; ``AnalyticsSnapshot.presentation()`` rounds.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AnalyticsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OverviewMetrics(AnalyticsModel):
    total_spend: float = 0.0
    active_campaigns: int = 0
    total_campaigns: int = 0
    total_ads: int = 0
    total_impressions: int = 0
    total_reach: int = 0
    delivery_source: str | None = None


class EngagementMetrics(AnalyticsModel):
    total_clicks: int = 0
    total_impressions: int = 0
    total_spend: float = 0.0
    ctr: float = 0.0
    avg_cpc: float = 0.0
    total_engagement: float | None = None
    engagement_rate: float | None = None


class CampaignSummary(AnalyticsModel):
    id: str
    name: str | None = None
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    objective: str = "NONE"
    buying_type: str = "UNKNOWN"
    optimization_goal: str = "Unknown"
    status: str = "Inactive"
    date_start: str | None = None
    date_stop: str | None = None
    duration_days: int | None = None


class CampaignTypeSummary(AnalyticsModel):
    objective: str
    total_spend: float = 0.0
    count: int = 0
    avg_spend: float = 0.0
    percentage: float = 0.0
    status: str = "Inactive"
    campaign_ids: list[str] = Field(default_factory=list)


class SegmentShare(AnalyticsModel):
    """Spend and delivery for one value of a breakdown (an age group, a device, ...)."""

    label: str
    spend: float = 0.0
    reach: int = 0
    impressions: int = 0
    clicks: int = 0
    percentage: float = 0.0


class DemographicAnalytics(AnalyticsModel):
    available: bool = False
    age_groups: list[SegmentShare] = Field(default_factory=list)
    genders: list[SegmentShare] = Field(default_factory=list)
    top_performing_ages: list[SegmentShare] = Field(default_factory=list)
    average_age: float | None = None
    total_spend: float = 0.0
    total_reach: int = 0
    # Summed reach of the demographic rows; None when nothing was reached
    total_audience: int | None = None


class RegionPerformance(AnalyticsModel):
    region: str
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    reach: int = 0
    ctr: float = 0.0
    cpc: float = 0.0
    percentage: float = 0.0


class RegionalAnalytics(AnalyticsModel):
    available: bool = False
    regions: list[RegionPerformance] = Field(default_factory=list)
    rank_by_spend: list[str] = Field(default_factory=list)
    rank_by_ctr: list[str] = Field(default_factory=list)
    top_region: str | None = None
    active_regions: int = 0


class DevicePlatformAnalytics(AnalyticsModel):
    available: bool = False
    devices: list[SegmentShare] = Field(default_factory=list)
    platforms: list[SegmentShare] = Field(default_factory=list)


class RoiEntry(AnalyticsModel):
    label: str
    spend: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    roas: float | None = None
    cost_per_conversion: float | None = None
    status: str = "Unknown"
    campaign_id: str | None = None
    objective: str | None = None


class RoiAnalytics(AnalyticsModel):
    available: bool = False
    campaigns: list[RoiEntry] = Field(default_factory=list)
    by_objective: list[RoiEntry] = Field(default_factory=list)
    by_segment: list[RoiEntry] = Field(default_factory=list)
    total_spend: float = 0.0
    total_conversions: float = 0.0
    total_conversion_value: float = 0.0
    overall_roas: float | None = None


class AdSummary(AnalyticsModel):
    ad_id: str
    ad_name: str | None = None
    campaign_id: str | None = None
    campaign_name: str | None = None
    adset_id: str | None = None
    adset_name: str | None = None
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    ctr: float = 0.0


class AudienceSegment(AnalyticsModel):
    age: str
    gender: str
    spend: float = 0.0
    clicks: int = 0
    ctr: float = 0.0
    cpc: float = 0.0
    score: float = 0.0


class ObjectiveEfficiency(AnalyticsModel):
    objective: str
    spend: float = 0.0
    count: int = 0
    avg_spend: float = 0.0
    # Campaigns per 1000 currency units spent
    efficiency: float = 0.0


class Recommendation(AnalyticsModel):
    type: str
    title: str
    description: str
    impact: str
    action: str


class AudienceInsights(AnalyticsModel):
    best_performing_age: str | None = None
    best_performing_gender: str | None = None
    best_region: str | None = None
    primary_device: str | None = None
    top_objective: str | None = None
    top_campaign: str | None = None


class AudienceProfile(AnalyticsModel):
    """Cross-dimension audience summary.

    ``profile_type`` is "segments" when demographic or regional rows exist and
    "campaign_only" when only campaigns are available.
    """

    available: bool = False
    profile_type: str | None = None
    top_segments: list[AudienceSegment] = Field(default_factory=list)
    top_regions: list[RegionPerformance] = Field(default_factory=list)
    top_objectives: list[ObjectiveEfficiency] = Field(default_factory=list)
    top_campaigns: list[CampaignSummary] = Field(default_factory=list)
    device_preferences: list[SegmentShare] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    total_spend: float = 0.0
    insights: AudienceInsights = Field(default_factory=AudienceInsights)


class DataAvailability(AnalyticsModel):
    campaigns: bool = False
    demographics: bool = False
    regional: bool = False
    devices: bool = False
    platforms: bool = False
    ad_level: bool = False


class AnalyticsSnapshot(AnalyticsModel):
    overview: OverviewMetrics
    engagement: EngagementMetrics
    campaigns: list[CampaignSummary] = Field(default_factory=list)
    campaign_types: list[CampaignTypeSummary] = Field(default_factory=list)
    demographics: DemographicAnalytics = Field(default_factory=DemographicAnalytics)
    regional: RegionalAnalytics = Field(default_factory=RegionalAnalytics)
    devices_and_platforms: DevicePlatformAnalytics = Field(default_factory=DevicePlatformAnalytics)
    roi: RoiAnalytics = Field(default_factory=RoiAnalytics)
    audience_profile: AudienceProfile = Field(default_factory=AudienceProfile)
    ad_level: list[AdSummary] = Field(default_factory=list)
    data_availability: DataAvailability = Field(default_factory=DataAvailability)
    period: str | None = None
    processed_at: str | None = None

    def to_storage(self) -> dict[str, Any]:
        """Full-precision JSON form persisted in the analytics cache."""
        return self.model_dump(mode="json", by_alias=True)

    def presentation(self, digits: int = 2) -> dict[str, Any]:
        """camelCase JSON with money and rates rounded for display."""
        return _round_floats(self.model_dump(mode="json", by_alias=True), digits)


def _round_floats(value: Any, digits: int) -> Any:
    if isinstance(value, float):
        return round(value, digits)
    if isinstance(value, dict):
        return {key: _round_floats(item, digits) for key, item in value.items()}
    if isinstance(value, list):
        return [_round_floats(item, digits) for item in value]
    return value
