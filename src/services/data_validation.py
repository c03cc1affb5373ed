"""
Structural validation and quality scoring for collected insights.

Validation never coerces: a payload with structural defects is reported as
invalid and the pipeline stops before storage. Suspicious but usable data
(no records, failed endpoints, long ranges, zero spend) only produces warnings.
"""

import logging
import re
from typing import Any

from pydantic import ValidationError

from src.core.dimensions import DIMENSIONS, dimension_records
from src.core.insight_values import as_float, parse_number
from src.core.schemas import (
    PERIOD_PATTERN,
    RECORD_MODELS,
    CollectionSummary,
    DateRange,
    InsightsCollection,
    QualityReport,
    TransformResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DATE_RANGE_DAYS = 35

# Records expected per successful endpoint before completeness is considered full
EXPECTED_RECORDS_PER_ENDPOINT = 10


def _format_errors(prefix: str, error: ValidationError) -> list[str]:
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()) if part != "__root__")
        path = f"{prefix}.{location}" if location else prefix
        messages.append(f"{path}: {detail.get('msg')}")
    return messages


def count_records(payload: dict[str, Any]) -> int:
    total = 0
    for spec in DIMENSIONS:
        records = dimension_records(payload, spec)
        if isinstance(records, list):
            total += len(records)
    return total


def validate(
    raw: dict[str, Any] | InsightsCollection, *, max_date_range_days: int = DEFAULT_MAX_DATE_RANGE_DAYS
) -> ValidationResult:
    """Validate the structure of a collection payload.

    Returns a ValidationResult; ``validated_data`` is the payload with every
    dimension under its canonical name, or None when invalid.
    """
    payload = raw.to_payload() if isinstance(raw, InsightsCollection) else raw
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(payload, dict):
        return ValidationResult(is_valid=False, errors=["payload: expected an object"])

    normalized: dict[str, Any] = {
        key: value
        for key, value in payload.items()
        if not any(key in (spec.name, *spec.legacy_names) for spec in DIMENSIONS)
    }

    # Dimension arrays and per-record shape
    for spec in DIMENSIONS:
        records = dimension_records(payload, spec)
        if records is None:
            errors.append(f"{spec.name}: missing dimension array")
            continue
        if not isinstance(records, list):
            errors.append(f"{spec.name}: expected an array, got {type(records).__name__}")
            continue
        model = RECORD_MODELS[spec.name]
        for index, record in enumerate(records):
            try:
                model.model_validate(record)
            except ValidationError as e:
                errors.extend(_format_errors(f"{spec.name}[{index}]", e))
        normalized[spec.name] = records

    # Metadata
    date_range = None
    try:
        date_range = DateRange.model_validate(payload.get("date_range"))
    except ValidationError as e:
        errors.extend(_format_errors("date_range", e))

    month = payload.get("month_identifier")
    if not isinstance(month, str):
        errors.append("month_identifier: required string in YYYY-MM format")
    else:
        if not re.match(PERIOD_PATTERN, month):
            errors.append(f"month_identifier: {month!r} is not in YYYY-MM format")
        elif date_range is not None and date_range.month_identifier != month:
            warnings.append(f"month_identifier {month} does not match date range start {date_range.since}")

    if "scraped_at" in payload and not isinstance(payload["scraped_at"], str):
        errors.append("scraped_at: expected an ISO timestamp string")

    if "account_id" in payload and payload["account_id"] is not None:
        if not str(payload["account_id"]).strip():
            errors.append("account_id: must not be empty")

    summary = None
    try:
        summary = CollectionSummary.model_validate(payload.get("collection_summary"))
    except ValidationError as e:
        errors.extend(_format_errors("collection_summary", e))

    # Quality warnings
    total_records = count_records(payload)
    if total_records == 0:
        warnings.append("No records collected for any dimension")

    if summary is not None and summary.failed_endpoints:
        warnings.append(f"{len(summary.failed_endpoints)} endpoint(s) failed during collection")

    if date_range is not None and date_range.days > max_date_range_days:
        warnings.append(f"Date range spans {date_range.days} days (more than {max_date_range_days})")

    campaigns = normalized.get("campaigns") if isinstance(normalized.get("campaigns"), list) else []
    if campaigns:
        total_spend = sum(as_float(record.get("spend")) for record in campaigns if isinstance(record, dict))
        total_impressions = sum(
            as_float(record.get("impressions")) for record in campaigns if isinstance(record, dict)
        )
        if total_spend == 0 and total_impressions > 0:
            warnings.append("Campaigns report impressions but zero spend for the period")

    is_valid = not errors
    if is_valid:
        logger.info(f"[Validator] Payload valid: {total_records} records, {len(warnings)} warning(s)")
    else:
        logger.warning(f"[Validator] Payload invalid: {len(errors)} error(s); first: {errors[0]}")

    return ValidationResult(
        is_valid=is_valid,
        errors=errors,
        warnings=warnings,
        validated_data=normalized if is_valid else None,
    )


def classify_score(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def generate_quality_report(
    data: dict[str, Any] | InsightsCollection, transform_result: TransformResult | None = None
) -> QualityReport:
    """Score a collection on completeness, consistency and validity (0-100 each)."""
    payload = data.to_payload() if isinstance(data, InsightsCollection) else data
    summary = CollectionSummary.model_validate(payload.get("collection_summary") or {})
    issues: list[str] = []
    recommendations: list[str] = []

    total_records = count_records(payload)
    endpoints = len(DIMENSIONS)

    # Completeness: records relative to what the successful endpoints should yield
    if summary.successful_endpoints > 0:
        expected = summary.successful_endpoints * EXPECTED_RECORDS_PER_ENDPOINT
        completeness = min(100.0, total_records / expected * 100)
    else:
        completeness = 0.0
    if total_records == 0:
        issues.append("No records were collected")
        recommendations.append("Check that the ad account had delivery during the date range")
    elif completeness < 50:
        issues.append(f"Only {total_records} records across {summary.successful_endpoints} endpoints")

    # Consistency: share of endpoints that answered
    failed = len(summary.failed_endpoints)
    consistency = max(0.0, 100.0 - failed / endpoints * 100)
    if failed:
        issues.append(f"{failed} of {endpoints} endpoints failed")
        recommendations.append("Re-run collection for the failed dimensions once the platform recovers")

    # Validity: plausibility of the numbers that were collected
    validity = 100.0
    campaigns = dimension_records(payload, DIMENSIONS[0]) or []
    if campaigns and not any(as_float(record.get("spend")) > 0 for record in campaigns if isinstance(record, dict)):
        validity -= 20
        issues.append("No campaign reports any spend")
        recommendations.append("Verify the access token can read spend for this account")

    implausible_ctr = False
    for spec in DIMENSIONS:
        for record in dimension_records(payload, spec) or []:
            if not isinstance(record, dict):
                continue
            ctr = parse_number(record.get("ctr"))
            if ctr is not None and (ctr < 0 or ctr > 100):
                implausible_ctr = True
    if implausible_ctr:
        validity -= 10
        issues.append("Some records report a CTR outside 0-100%")

    if transform_result is not None and transform_result.warnings:
        validity -= min(20, 2 * len(transform_result.warnings))
        issues.append(f"{len(transform_result.warnings)} value(s) could not be normalized")

    validity = max(0.0, validity)
    overall = round((completeness + consistency + validity) / 3, 2)

    return QualityReport(
        overall_score=overall,
        completeness_score=round(completeness, 2),
        consistency_score=round(consistency, 2),
        validity_score=round(validity, 2),
        classification=classify_score(overall),
        total_records=total_records,
        issues=issues,
        recommendations=recommendations,
    )
