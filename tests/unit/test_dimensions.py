"""Tests for dimension definitions, record mapping and value parsing helpers."""

from datetime import UTC, date, datetime

import pytest

from src.core.dimensions import (
    AD_LEVEL,
    CAMPAIGNS,
    DIMENSION_NAMES,
    PLATFORMS,
    REGIONAL,
    dimension_records,
    get_dimension,
    map_record,
    stored_columns,
)
from src.core.insight_values import derive_conversions, is_missing, parse_date, parse_number, sum_action_values
from tests.fixtures import InsightRecordFactory

SCRAPED_AT = datetime(2024, 4, 1, 3, 0, tzinfo=UTC)


class TestDimensionLookup:
    def test_storage_order(self):
        assert DIMENSION_NAMES == ("campaigns", "demographics", "regional", "devices", "platforms", "ad_level")

    @pytest.mark.parametrize("name", ["ad_level", "adLevel", "ad_level_data"])
    def test_legacy_names_resolve(self, name):
        assert get_dimension(name) is AD_LEVEL

    def test_unknown_dimension(self):
        with pytest.raises(KeyError):
            get_dimension("audiences")

    def test_dimension_records_absent(self):
        assert dimension_records({}, REGIONAL) is None

    def test_table_names(self):
        assert CAMPAIGNS.table_name == "fb_campaigns"
        assert PLATFORMS.table_name == "fb_platforms"

    def test_stored_columns_include_keys(self):
        columns = stored_columns(PLATFORMS)
        assert {"client_id", "month_year", "publisher_platform", "platform_position"} <= set(columns)


class TestMapRecord:
    def test_campaign_row(self):
        record = InsightRecordFactory.with_purchases(InsightRecordFactory.campaign("c1", "Spring"), 4, 250.0)
        row = map_record(CAMPAIGNS, record, "client_a", "2024-03", SCRAPED_AT)

        assert row["client_id"] == "client_a"
        assert row["month_year"] == "2024-03"
        assert row["campaign_id"] == "c1"
        assert row["campaign_name"] == "Spring"
        assert row["spend"] == 100.0
        assert row["impressions"] == 2000
        assert row["date_start"] == date(2024, 3, 1)
        assert row["conversions"] == 4.0
        assert row["conversion_value"] == 250.0
        assert row["actions"] == record["actions"]
        assert row["scraped_at"] == SCRAPED_AT

    def test_conversions_array_goes_to_raw_column(self):
        record = InsightRecordFactory.campaign("c1")
        record["conversions"] = [{"action_type": "offsite_conversion.fb_pixel_lead", "value": "7"}]
        row = map_record(CAMPAIGNS, record, "client_a", "2024-03", SCRAPED_AT)

        assert row["conversions_raw"] == record["conversions"]
        assert row["conversions"] == 7.0

    def test_missing_metrics_are_null_not_zero(self):
        record = {"region": "Berlin", "spend": "", "clicks": None}
        row = map_record(REGIONAL, record, "client_a", "2024-03", SCRAPED_AT)

        assert row["spend"] is None
        assert row["clicks"] is None
        assert row["impressions"] is None
        assert row["conversions"] is None

    def test_absent_platform_position_is_unknown(self):
        row = map_record(PLATFORMS, {"publisher_platform": "messenger"}, "client_a", "2024-03", SCRAPED_AT)
        assert row["platform_position"] == "unknown"

    def test_record_key(self):
        assert PLATFORMS.record_key({"publisher_platform": "facebook"}) == ("facebook", "unknown")
        assert CAMPAIGNS.record_key({"campaign_id": 123}) == ("123",)


class TestValueHelpers:
    @pytest.mark.parametrize("value", [None, "", "   ", float("nan"), float("inf")])
    def test_missing(self, value):
        assert is_missing(value)

    @pytest.mark.parametrize("value", [0, "0", 0.0, "abc", []])
    def test_not_missing(self, value):
        assert not is_missing(value)

    @pytest.mark.parametrize(
        "value,expected",
        [("12.5", 12.5), ("1,234", 1234.0), (7, 7.0), ("-3e2", -300.0), ("abc", None), (True, None), ("", None)],
    )
    def test_parse_number(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["2024-03-05", "2024/03/05", "05/03/2024", "20240305", "2024-03-05T00:00:00+0000", "2024-03-05T10:00:00Z"],
    )
    def test_parse_date_formats(self, value):
        assert parse_date(value) == date(2024, 3, 5)

    def test_parse_date_rejects_garbage(self):
        assert parse_date("soon") is None
        assert parse_date(20240305) is None

    def test_sum_action_values_filters_types(self):
        entries = [
            {"action_type": "purchase", "value": "2"},
            {"action_type": "link_click", "value": "50"},
            {"action_type": "lead", "value": "1"},
            "junk",
        ]
        assert sum_action_values(entries) == 53.0
        assert sum_action_values(entries, frozenset({"purchase", "lead"})) == 3.0
        assert sum_action_values(entries, frozenset({"add_to_cart"})) is None
        assert sum_action_values(None) is None

    def test_derive_conversions_prefers_dedicated_arrays(self):
        record = {
            "conversions": [{"action_type": "purchase", "value": "5"}],
            "conversion_values": [{"action_type": "purchase", "value": "400"}],
            "actions": [{"action_type": "purchase", "value": "2"}],
            "action_values": [{"action_type": "purchase", "value": "100"}],
        }
        assert derive_conversions(record) == (5.0, 400.0)

    def test_derive_conversions_from_actions(self):
        record = InsightRecordFactory.with_purchases({}, 2, 80.0)
        assert derive_conversions(record) == (2.0, 80.0)

    def test_derive_conversions_without_data(self):
        assert derive_conversions({"spend": "10"}) == (None, None)
