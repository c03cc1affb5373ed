"""
Aggregation engine.

Turns the six dimension arrays of one period into an AnalyticsSnapshot:
overview, engagement, per-campaign and per-ad summaries, objective rollups,
demographic, regional and device/platform breakdowns, ROI and an audience
profile. Every function here is pure.
Inputs may be stored rows or raw platform records (numeric strings are parsed).
Divisions by zero yield 0 (or None where a ratio is "not applicable").
"""

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.core.analytics_models import (
    AdSummary,
    AnalyticsSnapshot,
    AudienceInsights,
    AudienceProfile,
    AudienceSegment,
    CampaignSummary,
    CampaignTypeSummary,
    DataAvailability,
    DemographicAnalytics,
    DevicePlatformAnalytics,
    EngagementMetrics,
    ObjectiveEfficiency,
    OverviewMetrics,
    Recommendation,
    RegionalAnalytics,
    RegionPerformance,
    RoiAnalytics,
    RoiEntry,
    SegmentShare,
)
from src.core.dimensions import DIMENSION_NAMES, UNKNOWN_KEY_PART, dimension_records, get_dimension
from src.core.insight_values import (
    ENGAGEMENT_ACTION_TYPES,
    as_float,
    derive_conversions,
    is_missing,
    parse_date,
    parse_number,
    sum_action_values,
)

logger = logging.getLogger(__name__)

Records = list[dict[str, Any]]

# Most granular first: used to pick where delivery totals come from
DELIVERY_PREFERENCE = ("ad_level", "campaigns", "demographics", "regional", "devices", "platforms")

# Upper bound assumed for open-ended age buckets such as "65+"
OPEN_AGE_BUCKET_SPAN = 10

_AGE_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_AGE_OPEN_RE = re.compile(r"^(\d+)\s*\+$")


@dataclass(frozen=True)
class RoiThresholds:
    profitable: float = 2.0
    break_even: float = 1.0

    def status(self, roas: float | None, conversions: float) -> str:
        if conversions <= 0 or roas is None:
            return "Unknown"
        if roas > self.profitable:
            return "Profitable"
        if roas >= self.break_even:
            return "Break-even"
        return "Loss"


def safe_divide(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _int(value: Any) -> int:
    return int(round(as_float(value)))


def _text(value: Any, default: str) -> str:
    return default if is_missing(value) else str(value)


def record_conversions(record: dict[str, Any]) -> tuple[float, float]:
    """(conversions, conversion value) of a stored row or a raw record."""
    if "conversion_value" in record and not isinstance(record.get("conversions"), list):
        return as_float(record.get("conversions")), as_float(record.get("conversion_value"))
    count, value = derive_conversions(record)
    return count or 0.0, value or 0.0


def _normalize(dimension_data: dict[str, Any]) -> dict[str, Records]:
    data: dict[str, Records] = {}
    for name in DIMENSION_NAMES:
        records = dimension_records(dimension_data, get_dimension(name)) or []
        data[name] = [record for record in records if isinstance(record, dict)] if isinstance(records, list) else []
    return data


def _delivery_source(data: dict[str, Records], field: str) -> str | None:
    for name in DELIVERY_PREFERENCE:
        if any(parse_number(record.get(field)) is not None for record in data[name]):
            return name
    return None


def _sum(records: Records, field: str) -> float:
    return sum(as_float(record.get(field)) for record in records)


# --- Overview & engagement ---


def calculate_overview(data: dict[str, Records]) -> OverviewMetrics:
    campaigns = data["campaigns"]
    source = _delivery_source(data, "impressions")
    reach_source = _delivery_source(data, "reach")
    return OverviewMetrics(
        total_spend=_sum(campaigns, "spend"),
        active_campaigns=sum(1 for campaign in campaigns if as_float(campaign.get("spend")) > 0),
        total_campaigns=len(campaigns),
        total_ads=len(data["ad_level"]),
        total_impressions=_int(_sum(data[source], "impressions")) if source else 0,
        total_reach=_int(_sum(data[reach_source], "reach")) if reach_source else 0,
        delivery_source=source,
    )


def calculate_engagement(data: dict[str, Records], total_spend: float) -> EngagementMetrics:
    source = _delivery_source(data, "impressions") or _delivery_source(data, "clicks")
    records = data[source] if source else []
    clicks = _int(_sum(records, "clicks"))
    impressions = _int(_sum(records, "impressions"))
    engagement = total_engagement(data, records)
    return EngagementMetrics(
        total_clicks=clicks,
        total_impressions=impressions,
        total_spend=total_spend,
        ctr=safe_divide(clicks, impressions) * 100,
        avg_cpc=safe_divide(total_spend, clicks),
        total_engagement=engagement,
        engagement_rate=safe_divide(engagement, impressions) * 100 if engagement is not None else None,
    )


def total_engagement(data: dict[str, Records], fallback: Records) -> float | None:
    """Summed post engagement, from ad-level rows when they carry it. None when no row reports it."""
    for records in (data["ad_level"], fallback):
        values = [sum_action_values(record.get("actions"), ENGAGEMENT_ACTION_TYPES) for record in records]
        values = [value for value in values if value is not None]
        if values:
            return sum(values)
    return None


# --- Campaigns ---


def _duration_days(start: Any, stop: Any) -> int | None:
    start_date, stop_date = parse_date(start), parse_date(stop)
    if start_date is None or stop_date is None:
        return None
    return (stop_date - start_date).days + 1


def analyze_campaigns(campaigns: Records) -> list[CampaignSummary]:
    summaries = []
    for campaign in campaigns:
        spend = as_float(campaign.get("spend"))
        start, stop = parse_date(campaign.get("date_start")), parse_date(campaign.get("date_stop"))
        summaries.append(
            CampaignSummary(
                id=_text(campaign.get("campaign_id"), UNKNOWN_KEY_PART),
                name=None if is_missing(campaign.get("campaign_name")) else str(campaign["campaign_name"]),
                spend=spend,
                impressions=_int(campaign.get("impressions")),
                clicks=_int(campaign.get("clicks")),
                objective=_text(campaign.get("objective"), "NONE"),
                buying_type=_text(campaign.get("buying_type"), "UNKNOWN"),
                optimization_goal=_text(campaign.get("optimization_goal"), "Unknown"),
                status="Active" if spend > 0 else "Inactive",
                date_start=start.isoformat() if start else None,
                date_stop=stop.isoformat() if stop else None,
                duration_days=_duration_days(start, stop),
            )
        )
    return sorted(summaries, key=lambda summary: (-summary.spend, summary.id))


def group_by_objective(campaigns: list[CampaignSummary]) -> list[CampaignTypeSummary]:
    total_spend = sum(campaign.spend for campaign in campaigns)
    groups: dict[str, list[CampaignSummary]] = defaultdict(list)
    for campaign in campaigns:
        groups[campaign.objective].append(campaign)

    summaries = []
    for objective, members in groups.items():
        group_spend = sum(member.spend for member in members)
        active = sum(1 for member in members if member.status == "Active")
        if active == len(members):
            status = "Active"
        elif active == 0:
            status = "Inactive"
        else:
            status = "Mixed"
        summaries.append(
            CampaignTypeSummary(
                objective=objective,
                total_spend=group_spend,
                count=len(members),
                avg_spend=safe_divide(group_spend, len(members)),
                percentage=safe_divide(group_spend, total_spend) * 100,
                status=status,
                campaign_ids=[member.id for member in members],
            )
        )
    return sorted(summaries, key=lambda summary: (-summary.total_spend, summary.objective))


# --- Breakdowns ---


def _segment_shares(records: Records, label_for) -> list[SegmentShare]:
    totals: dict[str, SegmentShare] = {}
    for record in records:
        label = label_for(record)
        share = totals.setdefault(label, SegmentShare(label=label))
        share.spend += as_float(record.get("spend"))
        share.reach += _int(record.get("reach"))
        share.impressions += _int(record.get("impressions"))
        share.clicks += _int(record.get("clicks"))

    total_spend = sum(share.spend for share in totals.values())
    for share in totals.values():
        share.percentage = safe_divide(share.spend, total_spend) * 100
    return list(totals.values())


def age_bucket_midpoint(bucket: str) -> float | None:
    """Midpoint of an age bucket like '25-34'; '65+' is treated as 65-75."""
    text = bucket.strip()
    match = _AGE_RANGE_RE.match(text)
    if match:
        return (int(match.group(1)) + int(match.group(2))) / 2
    match = _AGE_OPEN_RE.match(text)
    if match:
        return int(match.group(1)) + OPEN_AGE_BUCKET_SPAN / 2
    return None


def process_demographics(demographics: Records) -> DemographicAnalytics:
    if not demographics:
        return DemographicAnalytics(available=False)

    age_groups = sorted(
        _segment_shares(demographics, lambda r: _text(r.get("age"), UNKNOWN_KEY_PART)), key=lambda s: s.label
    )
    genders = sorted(
        _segment_shares(demographics, lambda r: _text(r.get("gender"), UNKNOWN_KEY_PART)), key=lambda s: s.label
    )

    weighted_reach = 0.0
    weighted_age = 0.0
    for group in age_groups:
        midpoint = age_bucket_midpoint(group.label)
        if midpoint is None or group.reach <= 0:
            continue
        weighted_reach += group.reach
        weighted_age += midpoint * group.reach

    total_reach = _int(_sum(demographics, "reach"))
    return DemographicAnalytics(
        available=True,
        age_groups=age_groups,
        genders=genders,
        top_performing_ages=sorted(age_groups, key=lambda s: (-s.spend, s.label)),
        average_age=weighted_age / weighted_reach if weighted_reach else None,
        total_spend=_sum(demographics, "spend"),
        total_reach=total_reach,
        total_audience=total_reach if total_reach > 0 else None,
    )


def process_regional(regional: Records) -> RegionalAnalytics:
    if not regional:
        return RegionalAnalytics(available=False)

    totals: dict[str, RegionPerformance] = {}
    for record in regional:
        name = _text(record.get("region"), "Unknown")
        region = totals.setdefault(name, RegionPerformance(region=name))
        region.spend += as_float(record.get("spend"))
        region.clicks += _int(record.get("clicks"))
        region.impressions += _int(record.get("impressions"))
        region.reach += _int(record.get("reach"))

    total_spend = sum(region.spend for region in totals.values())
    for region in totals.values():
        region.ctr = safe_divide(region.clicks, region.impressions) * 100
        region.cpc = safe_divide(region.spend, region.clicks)
        region.percentage = safe_divide(region.spend, total_spend) * 100

    by_spend = sorted(totals.values(), key=lambda region: (-region.spend, region.region))
    by_ctr = sorted(totals.values(), key=lambda region: (-region.ctr, region.region))
    return RegionalAnalytics(
        available=True,
        regions=by_spend,
        rank_by_spend=[region.region for region in by_spend],
        rank_by_ctr=[region.region for region in by_ctr],
        top_region=by_spend[0].region if by_spend else None,
        active_regions=sum(1 for region in by_spend if region.spend > 0),
    )


def process_devices_and_platforms(devices: Records, platforms: Records) -> DevicePlatformAnalytics:
    def by_spend(shares: list[SegmentShare]) -> list[SegmentShare]:
        return sorted(shares, key=lambda share: (-share.spend, share.label))

    def platform_label(record: dict[str, Any]) -> str:
        position = _text(record.get("platform_position"), UNKNOWN_KEY_PART)
        return f"{_text(record.get('publisher_platform'), UNKNOWN_KEY_PART)} / {position}"

    return DevicePlatformAnalytics(
        available=bool(devices or platforms),
        devices=by_spend(_segment_shares(devices, lambda r: _text(r.get("device_platform"), UNKNOWN_KEY_PART))),
        platforms=by_spend(_segment_shares(platforms, platform_label)),
    )


# --- ROI ---


def has_conversion_data(data: dict[str, Records]) -> bool:
    for records in data.values():
        for record in records:
            conversions, value = record_conversions(record)
            if conversions > 0 or value > 0:
                return True
    return False


def _roi_entry(
    label: str, spend: float, conversions: float, value: float, thresholds: RoiThresholds, **extra
) -> RoiEntry:
    roas = value / spend if spend > 0 else None
    return RoiEntry(
        label=label,
        spend=spend,
        conversions=conversions,
        conversion_value=value,
        roas=roas,
        cost_per_conversion=spend / conversions if conversions > 0 else None,
        status=thresholds.status(roas, conversions),
        **extra,
    )


def calculate_roi(data: dict[str, Records], thresholds: RoiThresholds) -> RoiAnalytics:
    if not has_conversion_data(data):
        return RoiAnalytics(available=False)

    campaigns = []
    objectives: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0, 0.0])
    for record in data["campaigns"]:
        spend = as_float(record.get("spend"))
        conversions, value = record_conversions(record)
        objective = _text(record.get("objective"), "NONE")
        campaigns.append(
            _roi_entry(
                _text(record.get("campaign_name"), _text(record.get("campaign_id"), UNKNOWN_KEY_PART)),
                spend,
                conversions,
                value,
                thresholds,
                campaign_id=_text(record.get("campaign_id"), UNKNOWN_KEY_PART),
                objective=objective,
            )
        )
        totals = objectives[objective]
        totals[0] += spend
        totals[1] += conversions
        totals[2] += value

    segments: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0, 0.0])
    for record in data["demographics"]:
        label = f"{_text(record.get('age'), UNKNOWN_KEY_PART)} {_text(record.get('gender'), UNKNOWN_KEY_PART)}"
        conversions, value = record_conversions(record)
        totals = segments[label]
        totals[0] += as_float(record.get("spend"))
        totals[1] += conversions
        totals[2] += value

    def rank(entries: list[RoiEntry]) -> list[RoiEntry]:
        return sorted(entries, key=lambda entry: (-(entry.roas or 0.0), -entry.conversion_value, entry.label))

    total_spend = sum(entry.spend for entry in campaigns)
    total_conversions = sum(entry.conversions for entry in campaigns)
    total_value = sum(entry.conversion_value for entry in campaigns)

    return RoiAnalytics(
        available=True,
        campaigns=rank(campaigns),
        by_objective=rank(
            [
                _roi_entry(objective, spend, conversions, value, thresholds, objective=objective)
                for objective, (spend, conversions, value) in objectives.items()
            ]
        ),
        by_segment=rank(
            [
                _roi_entry(label, spend, conversions, value, thresholds)
                for label, (spend, conversions, value) in segments.items()
            ]
        ),
        total_spend=total_spend,
        total_conversions=total_conversions,
        total_conversion_value=total_value,
        overall_roas=total_value / total_spend if total_spend > 0 else None,
    )


# --- Ads & audience profile ---


def summarize_ads(ads: Records) -> list[AdSummary]:
    summaries = []
    for ad in ads:
        clicks, impressions = _int(ad.get("clicks")), _int(ad.get("impressions"))
        summaries.append(
            AdSummary(
                ad_id=_text(ad.get("ad_id"), UNKNOWN_KEY_PART),
                ad_name=None if is_missing(ad.get("ad_name")) else str(ad["ad_name"]),
                campaign_id=None if is_missing(ad.get("campaign_id")) else str(ad["campaign_id"]),
                campaign_name=None if is_missing(ad.get("campaign_name")) else str(ad["campaign_name"]),
                adset_id=None if is_missing(ad.get("adset_id")) else str(ad["adset_id"]),
                adset_name=None if is_missing(ad.get("adset_name")) else str(ad["adset_name"]),
                spend=as_float(ad.get("spend")),
                impressions=impressions,
                clicks=clicks,
                reach=_int(ad.get("reach")),
                ctr=safe_divide(clicks, impressions) * 100,
            )
        )
    return sorted(summaries, key=lambda summary: (-summary.spend, summary.ad_id))


def _record_ctr(record: dict[str, Any]) -> float:
    impressions = as_float(record.get("impressions"))
    if impressions > 0:
        return as_float(record.get("clicks")) / impressions * 100
    return as_float(record.get("ctr"))


def _objective_efficiency(campaigns: list[CampaignSummary]) -> list[ObjectiveEfficiency]:
    return [
        ObjectiveEfficiency(
            objective=group.objective,
            spend=group.total_spend,
            count=group.count,
            avg_spend=group.avg_spend,
            efficiency=safe_divide(group.count, group.total_spend) * 1000,
        )
        for group in group_by_objective(campaigns)
    ]


def _campaign_only_profile(campaigns: list[CampaignSummary], devices: list[SegmentShare]) -> AudienceProfile:
    total_spend = sum(campaign.spend for campaign in campaigns)
    top_objectives = sorted(_objective_efficiency(campaigns), key=lambda o: (-o.spend, o.objective))[:5]
    top_campaigns = [campaign for campaign in campaigns if campaign.spend > 0][:5]
    device_preferences = devices[:3]

    recommendations = []
    if top_objectives:
        best = top_objectives[0]
        recommendations.append(
            Recommendation(
                type="objective",
                title=f"Focus on {best.objective.replace('_', ' ')} campaigns",
                description=f"Highest spending objective with {best.spend:.0f} total",
                impact="High",
                action="Analyze and replicate successful elements",
            )
        )
    if top_campaigns:
        best_campaign = top_campaigns[0]
        recommendations.append(
            Recommendation(
                type="campaign",
                title=f"Scale {best_campaign.name or best_campaign.id}",
                description=f"Top campaign with {best_campaign.spend:.0f} spend",
                impact="High",
                action="Increase budget or duplicate strategy",
            )
        )
    if device_preferences:
        recommendations.append(
            Recommendation(
                type="device",
                title=f"Optimize for {device_preferences[0].label}",
                description=f"Primary device with {device_preferences[0].spend:.0f} spend",
                impact="Medium",
                action="Create device-specific ad formats",
            )
        )

    return AudienceProfile(
        available=True,
        profile_type="campaign_only",
        top_objectives=top_objectives,
        top_campaigns=top_campaigns,
        device_preferences=device_preferences,
        recommendations=recommendations,
        total_spend=total_spend,
        insights=AudienceInsights(
            primary_device=device_preferences[0].label if device_preferences else None,
            top_objective=top_objectives[0].objective if top_objectives else None,
            top_campaign=(top_campaigns[0].name or top_campaigns[0].id) if top_campaigns else None,
        ),
    )


def process_audience_profile(
    data: dict[str, Records],
    campaigns: list[CampaignSummary],
    regional: RegionalAnalytics,
    devices: list[SegmentShare],
) -> AudienceProfile:
    """Top audience segments, regions, objectives and devices, plus recommendations.

    Segments are demographic rows with spend and CTR, ranked by CTR x ln(spend + 1).
    With neither demographic nor regional rows the profile is built from campaigns alone.
    """
    demographics = data["demographics"]
    if not demographics and not data["regional"] and not campaigns:
        return AudienceProfile(available=False)
    if not demographics and not data["regional"]:
        return _campaign_only_profile(campaigns, devices)

    total_spend = _sum(demographics, "spend") if demographics else sum(campaign.spend for campaign in campaigns)

    segments = []
    for record in demographics:
        spend = as_float(record.get("spend"))
        ctr = _record_ctr(record)
        if spend <= 0 or ctr <= 0:
            continue
        clicks = _int(record.get("clicks"))
        segments.append(
            AudienceSegment(
                age=_text(record.get("age"), "Unknown"),
                gender=_text(record.get("gender"), "Unknown"),
                spend=spend,
                clicks=clicks,
                ctr=ctr,
                cpc=safe_divide(spend, clicks),
                score=ctr * math.log(spend + 1),
            )
        )
    top_segments = sorted(segments, key=lambda s: (-s.score, s.age, s.gender))[:5]

    regions_by_name = {region.region: region for region in regional.regions}
    top_regions = [regions_by_name[name] for name in regional.rank_by_ctr[:3]]
    top_objectives = sorted(_objective_efficiency(campaigns), key=lambda o: (-o.efficiency, o.objective))[:3]
    device_preferences = devices[:2]

    recommendations = []
    if top_segments:
        best = top_segments[0]
        recommendations.append(
            Recommendation(
                type="scale",
                title=f"Scale {best.age} {best.gender} segment",
                description=f"High CTR ({best.ctr:.2f}%) with good volume",
                impact="High",
                action="Increase budget allocation",
            )
        )
    if top_regions:
        recommendations.append(
            Recommendation(
                type="geographic",
                title=f"Focus on {top_regions[0].region}",
                description=f"Best regional CTR at {top_regions[0].ctr:.2f}%",
                impact="Medium",
                action="Expand regional targeting",
            )
        )
    if device_preferences:
        share = safe_divide(device_preferences[0].spend, total_spend) * 100
        recommendations.append(
            Recommendation(
                type="device",
                title=f"Optimize for {device_preferences[0].label}",
                description=f"{share:.1f}% of spend",
                impact="Medium",
                action="Create device-specific creatives",
            )
        )

    return AudienceProfile(
        available=True,
        profile_type="segments",
        top_segments=top_segments,
        top_regions=top_regions,
        top_objectives=top_objectives,
        device_preferences=device_preferences,
        recommendations=recommendations,
        total_spend=total_spend,
        insights=AudienceInsights(
            best_performing_age=top_segments[0].age if top_segments else None,
            best_performing_gender=top_segments[0].gender if top_segments else None,
            best_region=top_regions[0].region if top_regions else None,
            primary_device=device_preferences[0].label if device_preferences else None,
        ),
    )


# --- Entry point ---


def generate_full_analytics(
    dimension_data: dict[str, Any],
    *,
    thresholds: RoiThresholds | None = None,
    period: str | None = None,
    now: datetime | None = None,
) -> AnalyticsSnapshot:
    """Compute the full analytics snapshot for one period's dimension arrays."""
    thresholds = thresholds or RoiThresholds()
    data = _normalize(dimension_data)

    overview = calculate_overview(data)
    engagement = calculate_engagement(data, overview.total_spend)
    campaigns = analyze_campaigns(data["campaigns"])
    regional = process_regional(data["regional"])
    devices_and_platforms = process_devices_and_platforms(data["devices"], data["platforms"])

    snapshot = AnalyticsSnapshot(
        overview=overview,
        engagement=engagement,
        campaigns=campaigns,
        campaign_types=group_by_objective(campaigns),
        demographics=process_demographics(data["demographics"]),
        regional=regional,
        devices_and_platforms=devices_and_platforms,
        roi=calculate_roi(data, thresholds),
        audience_profile=process_audience_profile(data, campaigns, regional, devices_and_platforms.devices),
        ad_level=summarize_ads(data["ad_level"]),
        data_availability=DataAvailability(**{name: bool(records) for name, records in data.items()}),
        period=period,
        processed_at=(now or datetime.now(UTC)).isoformat(),
    )
    logger.debug(
        f"[Analytics] period={period} spend={overview.total_spend} campaigns={overview.total_campaigns} "
        f"roi_available={snapshot.roi.available}"
    )
    return snapshot


def thresholds_from_config(config=None) -> RoiThresholds:
    """ROI thresholds from PipelineConfig (defaults to the global config)."""
    if config is None:
        from src.core.config import get_config

        config = get_config().pipeline
    return RoiThresholds(profitable=config.roi_profitable_threshold, break_even=config.roi_break_even_threshold)
