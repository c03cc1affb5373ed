"""Tests for structural validation and the quality report."""

import pytest

from src.core.schemas import TransformResult
from src.services.data_validation import classify_score, generate_quality_report, validate
from tests.fixtures import CollectionFactory, InsightRecordFactory


class TestValidate:
    def test_valid_collection(self, sample_collection):
        result = validate(sample_collection)

        assert result.is_valid
        assert result.errors == []
        assert result.validated_data["campaigns"] == sample_collection["campaigns"]
        assert result.validated_data["month_identifier"] == "2024-03"

    def test_validation_does_not_coerce(self, sample_collection):
        result = validate(sample_collection)
        assert result.validated_data["campaigns"][0]["spend"] == "100.00"

    def test_missing_dimension_array(self, sample_collection):
        del sample_collection["regional"]
        result = validate(sample_collection)

        assert not result.is_valid
        assert "regional: missing dimension array" in result.errors
        assert result.validated_data is None

    def test_dimension_must_be_array(self, sample_collection):
        sample_collection["devices"] = {"device_platform": "desktop"}
        result = validate(sample_collection)

        assert not result.is_valid
        assert any(error.startswith("devices: expected an array") for error in result.errors)

    def test_record_missing_required_field(self, sample_collection):
        del sample_collection["campaigns"][1]["campaign_name"]
        result = validate(sample_collection)

        assert not result.is_valid
        assert any(e.startswith("campaigns[1]") and "campaign_name" in e for e in result.errors)

    def test_non_numeric_metric(self, sample_collection):
        sample_collection["demographics"][0]["spend"] = "lots"
        result = validate(sample_collection)

        assert not result.is_valid
        assert any(e.startswith("demographics[0]") and "spend" in e for e in result.errors)

    def test_platform_position_is_optional(self):
        payload = CollectionFactory.create(platforms=[InsightRecordFactory.platform("audience_network", None)])
        assert validate(payload).is_valid

    def test_bad_date_range(self, sample_collection):
        sample_collection["date_range"] = {"since": "2024-03-31", "until": "2024-03-01"}
        result = validate(sample_collection)

        assert not result.is_valid
        assert any(error.startswith("date_range") for error in result.errors)

    @pytest.mark.parametrize("month", ["2024-3", "March", "2024-13"])
    def test_bad_month_identifier(self, sample_collection, month):
        sample_collection["month_identifier"] = month
        result = validate(sample_collection)

        assert not result.is_valid
        assert any(error.startswith("month_identifier") for error in result.errors)

    def test_empty_collection_is_valid_with_warning(self):
        result = validate(CollectionFactory.empty())

        assert result.is_valid
        assert "No records collected for any dimension" in result.warnings

    def test_failed_endpoints_warn(self):
        payload = CollectionFactory.create(failed_endpoints=["regional: Server error 500"])
        result = validate(payload)

        assert result.is_valid
        assert "1 endpoint(s) failed during collection" in result.warnings

    def test_long_date_range_warns(self):
        payload = CollectionFactory.create(since="2024-01-01", until="2024-03-31")
        result = validate(payload, max_date_range_days=35)

        assert result.is_valid
        assert any("Date range spans" in warning for warning in result.warnings)

    def test_zero_spend_with_impressions_warns(self):
        campaigns = [InsightRecordFactory.campaign("c1", spend="0", impressions="500")]
        result = validate(CollectionFactory.create(campaigns=campaigns))

        assert result.is_valid
        assert "Campaigns report impressions but zero spend for the period" in result.warnings

    def test_legacy_dimension_name_is_canonicalized(self, sample_collection):
        sample_collection["adLevel"] = sample_collection.pop("ad_level")
        result = validate(sample_collection)

        assert result.is_valid
        assert "ad_level" in result.validated_data
        assert "adLevel" not in result.validated_data

    def test_non_object_payload(self):
        result = validate(["not", "a", "dict"])
        assert not result.is_valid


class TestQualityReport:
    @pytest.mark.parametrize(
        "score,label", [(95, "excellent"), (90, "excellent"), (80, "good"), (60, "fair"), (49.9, "poor")]
    )
    def test_classify_score(self, score, label):
        assert classify_score(score) == label

    def test_small_complete_collection(self, sample_collection):
        report = generate_quality_report(sample_collection)

        # 12 records for 6 endpoints: 12 / 60
        assert report.completeness_score == 20.0
        assert report.consistency_score == 100.0
        assert report.validity_score == 100.0
        assert report.overall_score == pytest.approx(73.33, abs=0.01)
        assert report.classification == "fair"
        assert report.total_records == 12

    def test_failed_endpoint_lowers_consistency(self):
        payload = CollectionFactory.create(failed_endpoints=["regional: x", "devices: y", "platforms: z"])
        report = generate_quality_report(payload)

        assert report.consistency_score == 50.0
        assert any("3 of 6 endpoints failed" in issue for issue in report.issues)

    def test_no_spend_and_bad_ctr_lower_validity(self):
        campaigns = [InsightRecordFactory.campaign("c1", spend="0", ctr="140")]
        report = generate_quality_report(CollectionFactory.create(campaigns=campaigns))

        assert report.validity_score == 70.0

    def test_transform_warnings_lower_validity(self, sample_collection):
        transform_result = TransformResult(data=sample_collection, warnings=["w"] * 15)
        report = generate_quality_report(sample_collection, transform_result)

        assert report.validity_score == 80.0

    def test_empty_collection(self):
        report = generate_quality_report(CollectionFactory.empty())

        assert report.completeness_score == 0.0
        assert report.overall_score == pytest.approx(66.67, abs=0.01)
        assert report.classification == "fair"
        assert "No records were collected" in report.issues
