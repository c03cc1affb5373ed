"""Tests for the aggregation engine."""

from datetime import UTC, datetime

import pytest

from src.core.config import PipelineConfig
from src.services.analytics_engine import (
    RoiThresholds,
    age_bucket_midpoint,
    generate_full_analytics,
    safe_divide,
    thresholds_from_config,
)
from tests.fixtures import CollectionFactory, InsightRecordFactory

f = InsightRecordFactory
NOW = datetime(2024, 4, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def snapshot():
    return generate_full_analytics(CollectionFactory.create(), period="2024-03", now=NOW)


class TestOverviewAndEngagement:
    def test_single_campaign_with_string_metrics(self):
        data = {"campaigns": [f.campaign("c1", spend="100.50", clicks="40", impressions="2000")]}
        result = generate_full_analytics(data)

        assert result.overview.total_spend == 100.5
        assert result.engagement.ctr == pytest.approx(2.0)
        assert result.engagement.avg_cpc == pytest.approx(100.5 / 40)
        assert result.overview.delivery_source == "campaigns"

    def test_overview(self, snapshot):
        overview = snapshot.overview

        assert overview.total_spend == 150.0
        assert overview.active_campaigns == 2
        assert overview.total_campaigns == 2
        assert overview.total_ads == 2
        assert overview.total_impressions == 4000
        assert overview.total_reach == 3000
        assert overview.delivery_source == "ad_level"

    def test_engagement(self, snapshot):
        engagement = snapshot.engagement

        assert engagement.total_clicks == 80
        assert engagement.total_impressions == 4000
        assert engagement.ctr == pytest.approx(2.0)
        assert engagement.avg_cpc == pytest.approx(150 / 80)

    def test_zero_denominators(self):
        data = {"campaigns": [f.campaign("c1", spend="0", clicks="0", impressions="0")]}
        result = generate_full_analytics(data)

        assert result.engagement.ctr == 0.0
        assert result.engagement.avg_cpc == 0.0
        assert result.overview.active_campaigns == 0
        assert result.campaign_types[0].percentage == 0.0

    def test_empty_input(self):
        result = generate_full_analytics({})

        assert result.overview.total_spend == 0.0
        assert result.overview.delivery_source is None
        assert result.campaigns == []
        assert not result.demographics.available
        assert not result.regional.available
        assert not result.devices_and_platforms.available
        assert not result.roi.available
        assert not result.data_availability.campaigns

    def test_safe_divide(self):
        assert safe_divide(1, 0) == 0.0
        assert safe_divide(3, 2) == 1.5


class TestCampaigns:
    def test_sorted_by_spend_with_status_and_duration(self, snapshot):
        first, second = snapshot.campaigns

        assert (first.id, second.id) == ("c1", "c2")
        assert first.name == "Spring Sale"
        assert first.status == "Active"
        assert first.duration_days == 31
        assert first.date_start == "2024-03-01"

    def test_inactive_when_no_spend(self):
        result = generate_full_analytics({"campaigns": [f.campaign("c1", spend="0")]})
        assert result.campaigns[0].status == "Inactive"

    def test_campaign_defaults(self):
        result = generate_full_analytics({"campaigns": [{"campaign_id": "c1", "spend": "5"}]})
        campaign = result.campaigns[0]

        assert campaign.objective == "NONE"
        assert campaign.buying_type == "UNKNOWN"
        assert campaign.optimization_goal == "Unknown"
        assert campaign.duration_days is None

    def test_group_by_objective(self):
        campaigns = [
            f.campaign("c1", spend="60", objective="OUTCOME_SALES"),
            f.campaign("c2", spend="0", objective="OUTCOME_SALES"),
            f.campaign("c3", spend="40", objective="OUTCOME_LEADS"),
        ]
        types = generate_full_analytics({"campaigns": campaigns}).campaign_types

        sales, leads = types
        assert sales.objective == "OUTCOME_SALES"
        assert sales.total_spend == 60.0
        assert sales.count == 2
        assert sales.avg_spend == 30.0
        assert sales.percentage == pytest.approx(60.0)
        assert sales.status == "Mixed"
        assert leads.status == "Active"
        assert leads.campaign_ids == ["c3"]

    def test_all_inactive_group(self):
        campaigns = [f.campaign("c1", spend="0", objective="OUTCOME_AWARENESS")]
        assert generate_full_analytics({"campaigns": campaigns}).campaign_types[0].status == "Inactive"


class TestBreakdowns:
    def test_demographics(self, snapshot):
        demographics = snapshot.demographics

        assert demographics.available
        assert [group.label for group in demographics.age_groups] == ["25-34", "35-44"]
        assert demographics.average_age == pytest.approx(34.5)
        assert demographics.total_spend == 130.0
        female = next(g for g in demographics.genders if g.label == "female")
        assert female.percentage == pytest.approx(100 / 130 * 100)
        assert demographics.top_performing_ages[0].label == "25-34"

    def test_average_age_ignores_unknown_buckets(self):
        demographics = [
            f.demographic("65+", "male", reach="100"),
            f.demographic("Unknown", "male", reach="900"),
        ]
        result = generate_full_analytics({"demographics": demographics})
        assert result.demographics.average_age == pytest.approx(70.0)

    def test_average_age_without_reach(self):
        result = generate_full_analytics({"demographics": [f.demographic(reach="0")]})
        assert result.demographics.average_age is None

    @pytest.mark.parametrize("bucket,midpoint", [("18-24", 21.0), ("65+", 70.0), ("unknown", None)])
    def test_age_bucket_midpoint(self, bucket, midpoint):
        assert age_bucket_midpoint(bucket) == midpoint

    def test_regional_rankings(self):
        regional = [
            f.regional("Hamburg", spend="50", clicks="10", impressions="1000"),
            f.regional("Berlin", spend="50", clicks="30", impressions="1000"),
            f.regional("Bavaria", spend="100", clicks="30", impressions="1000"),
            f.regional("Saxony", spend="0", clicks="0", impressions="0"),
        ]
        result = generate_full_analytics({"regional": regional}).regional

        assert result.rank_by_spend == ["Bavaria", "Berlin", "Hamburg", "Saxony"]
        assert result.rank_by_ctr == ["Bavaria", "Berlin", "Hamburg", "Saxony"]
        assert result.top_region == "Bavaria"
        assert result.active_regions == 3
        assert result.regions[0].percentage == pytest.approx(50.0)
        assert result.regions[3].cpc == 0.0

    def test_devices_and_platforms(self, snapshot):
        devices = snapshot.devices_and_platforms

        assert devices.available
        assert [d.label for d in devices.devices] == ["mobile_app", "desktop"]
        assert devices.devices[0].percentage == pytest.approx(80.0)
        assert [p.label for p in devices.platforms] == ["facebook / feed", "instagram / story"]

    def test_platform_without_position(self):
        result = generate_full_analytics({"platforms": [f.platform("messenger", None)]})
        assert result.devices_and_platforms.platforms[0].label == "messenger / unknown"


class TestRoi:
    @pytest.fixture
    def roi_campaigns(self):
        return [
            f.with_purchases(f.campaign("c1", "Profit", spend="100"), 4, 300.0),
            f.with_purchases(f.campaign("c2", "Even", spend="50"), 2, 60.0),
            f.with_purchases(f.campaign("c3", "Loss", spend="40"), 1, 20.0),
            f.campaign("c4", "Nothing", spend="10"),
        ]

    def test_unavailable_without_conversions(self, snapshot):
        assert not snapshot.roi.available
        assert snapshot.roi.campaigns == []

    def test_campaign_statuses(self, roi_campaigns):
        roi = generate_full_analytics({"campaigns": roi_campaigns}).roi
        by_id = {entry.campaign_id: entry for entry in roi.campaigns}

        assert roi.available
        assert by_id["c1"].roas == 3.0
        assert by_id["c1"].status == "Profitable"
        assert by_id["c1"].cost_per_conversion == 25.0
        assert by_id["c2"].status == "Break-even"
        assert by_id["c3"].status == "Loss"
        assert by_id["c4"].status == "Unknown"
        assert by_id["c4"].cost_per_conversion is None
        assert [entry.campaign_id for entry in roi.campaigns][:3] == ["c1", "c2", "c3"]

    def test_totals(self, roi_campaigns):
        roi = generate_full_analytics({"campaigns": roi_campaigns}).roi

        assert roi.total_spend == 200.0
        assert roi.total_conversions == 7.0
        assert roi.total_conversion_value == 380.0
        assert roi.overall_roas == pytest.approx(1.9)

    def test_custom_thresholds(self, roi_campaigns):
        roi = generate_full_analytics({"campaigns": roi_campaigns}, thresholds=RoiThresholds(4.0, 2.5)).roi
        by_id = {entry.campaign_id: entry for entry in roi.campaigns}

        assert by_id["c1"].status == "Break-even"
        assert by_id["c2"].status == "Loss"

    def test_stored_rows_use_scalar_conversions(self):
        rows = [
            {
                "campaign_id": "c1",
                "campaign_name": "Stored",
                "spend": 80.0,
                "conversions": 2.0,
                "conversion_value": 240.0,
            }
        ]
        roi = generate_full_analytics({"campaigns": rows}).roi

        assert roi.available
        assert roi.campaigns[0].roas == 3.0

    def test_segments_from_demographics(self):
        demographics = [f.with_purchases(f.demographic("25-34", "female", spend="20"), 1, 50.0)]
        roi = generate_full_analytics({"demographics": demographics}).roi

        assert roi.available
        assert roi.by_segment[0].label == "25-34 female"
        assert roi.by_segment[0].roas == 2.5

    def test_thresholds_from_config(self):
        config = PipelineConfig(roi_profitable_threshold=3.0, roi_break_even_threshold=1.5)
        assert thresholds_from_config(config) == RoiThresholds(profitable=3.0, break_even=1.5)


class TestSnapshot:
    def test_metadata(self, snapshot):
        assert snapshot.period == "2024-03"
        assert snapshot.processed_at == NOW.isoformat()
        assert snapshot.data_availability.ad_level

    def test_presentation_is_camel_case_and_rounded(self, snapshot):
        data = snapshot.presentation()

        assert data["overview"]["totalSpend"] == 150.0
        assert data["dataAvailability"]["adLevel"] is True
        female = next(g for g in data["demographics"]["genders"] if g["label"] == "female")
        assert female["percentage"] == 76.92

    def test_storage_keeps_precision(self, snapshot):
        data = snapshot.to_storage()
        female = next(g for g in data["demographics"]["genders"] if g["label"] == "female")
        assert female["percentage"] == pytest.approx(100 / 130 * 100)


class TestEngagementActions:
    def test_post_engagement_from_ad_level(self):
        ads = [
            f.ad("a1", actions=[{"action_type": "post_engagement", "value": "120"}]),
            f.ad("a2", actions=[{"action_type": "post_engagement", "value": "80"}]),
        ]
        engagement = generate_full_analytics({"ad_level": ads}).engagement

        assert engagement.total_engagement == 200.0
        assert engagement.engagement_rate == pytest.approx(5.0)

    def test_no_engagement_actions(self, snapshot):
        assert snapshot.engagement.total_engagement is None
        assert snapshot.engagement.engagement_rate is None


class TestAdLevel:
    def test_ads_sorted_by_spend(self, snapshot):
        assert [ad.ad_id for ad in snapshot.ad_level] == ["a1", "a2"]
        assert snapshot.ad_level[0].campaign_id == "c1"
        assert snapshot.ad_level[0].ctr == pytest.approx(2.0)

    def test_carried_in_presentation(self, snapshot):
        assert snapshot.presentation()["adLevel"][1]["spend"] == 50.0


class TestAudienceProfile:
    def test_total_audience(self, snapshot):
        assert snapshot.demographics.total_audience == 3000

    def test_segment_profile(self, snapshot):
        profile = snapshot.audience_profile

        assert profile.available
        assert profile.profile_type == "segments"
        assert [(s.age, s.gender) for s in profile.top_segments] == [("25-34", "female"), ("35-44", "male")]
        assert profile.top_segments[0].score == pytest.approx(2.0 * 4.61512, rel=1e-4)
        assert [r.region for r in profile.top_regions] == ["Bavaria", "Berlin"]
        assert profile.top_objectives[0].objective == "OUTCOME_TRAFFIC"
        assert profile.top_objectives[0].efficiency == pytest.approx(2 / 150 * 1000)
        assert [d.label for d in profile.device_preferences] == ["mobile_app", "desktop"]
        assert profile.total_spend == 130.0
        assert profile.insights.best_performing_age == "25-34"
        assert profile.insights.best_region == "Bavaria"
        assert [r.type for r in profile.recommendations] == ["scale", "geographic", "device"]
        assert profile.recommendations[2].description == "76.9% of spend"

    def test_segments_without_spend_or_ctr_are_skipped(self):
        demographics = [f.demographic("18-24", "male", spend="0"), f.demographic("25-34", "female", clicks="0")]
        profile = generate_full_analytics({"demographics": demographics}).audience_profile

        assert profile.available
        assert profile.top_segments == []
        assert profile.insights.best_performing_age is None

    def test_campaign_only_profile(self):
        data = {
            "campaigns": [
                f.campaign("c1", "Summer Sale", objective="OUTCOME_SALES"),
                f.campaign("c2", "Paused", spend="0"),
            ],
            "devices": [f.device("mobile_app")],
        }
        profile = generate_full_analytics(data).audience_profile

        assert profile.profile_type == "campaign_only"
        assert profile.top_segments == []
        assert [c.id for c in profile.top_campaigns] == ["c1"]
        assert profile.top_objectives[0].objective == "OUTCOME_SALES"
        assert profile.insights.top_campaign == "Summer Sale"
        assert profile.insights.primary_device == "mobile_app"
        assert profile.insights.best_region is None
        assert [r.type for r in profile.recommendations] == ["objective", "campaign", "device"]

    def test_unavailable_without_data(self):
        profile = generate_full_analytics({"devices": [f.device("desktop")]}).audience_profile

        assert not profile.available
        assert profile.top_segments == []
