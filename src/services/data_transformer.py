"""
Normalization of validated insights.

``transform`` is pure and total: it never raises on bad values. Numeric
strings become numbers, dates become ISO calendar dates, missing values
become None and duplicate records collapse to the last occurrence. Every
change is logged as a Transformation; values that cannot be normalized are
left untouched and reported as warnings.
"""

import copy
import logging
from typing import Any

from src.core.dimensions import DIMENSIONS, DimensionSpec, dimension_records
from src.core.errors import TransformationWarning
from src.core.insight_values import (
    COUNT_FIELDS,
    DATE_FIELDS,
    NUMERIC_FIELDS,
    STRUCTURED_FIELDS,
    is_missing,
    parse_date,
    parse_number,
)
from src.core.schemas import Transformation, TransformResult

logger = logging.getLogger(__name__)


class _RecordTransformer:
    def __init__(self, spec: DimensionSpec):
        self.spec = spec
        self.transformations: list[Transformation] = []
        self.warnings: list[str] = []

    def _log(self, index: int, field: str, before: Any, after: Any, action: str = "normalized") -> None:
        self.transformations.append(
            Transformation(
                dimension=self.spec.name, index=index, field=field, before=before, after=after, action=action
            )
        )

    def _warn(self, index: int, field: str, value: Any, reason: str) -> None:
        warning = TransformationWarning(
            f"{self.spec.name}[{index}].{field}: {reason} ({value!r}); left unchanged",
            details={"dimension": self.spec.name, "index": index, "field": field},
        )
        self.warnings.append(str(warning))

    def number(self, index: int, field: str, value: Any) -> Any:
        if is_missing(value):
            if value is not None:
                self._log(index, field, value if isinstance(value, str) else str(value), None, action="missing")
            return None
        if isinstance(value, bool):
            self._warn(index, field, value, "boolean is not a number")
            return value
        if isinstance(value, int | float):
            if field in COUNT_FIELDS and isinstance(value, float) and value.is_integer():
                return int(value)
            return value

        number = parse_number(value)
        if number is None:
            self._warn(index, field, value, "not a number")
            return value
        result: int | float = int(number) if field in COUNT_FIELDS and number.is_integer() else number
        self._log(index, field, value, result)
        return result

    def date(self, index: int, field: str, value: Any) -> Any:
        if is_missing(value):
            return None
        parsed = parse_date(value)
        if parsed is None:
            self._warn(index, field, value, "unrecognized date format")
            return value
        iso = parsed.isoformat()
        if iso != value:
            self._log(index, field, value if isinstance(value, str) else str(value), iso)
        return iso

    def structured(self, index: int, field: str, entries: Any) -> Any:
        if not isinstance(entries, list):
            if not is_missing(entries):
                self._warn(index, field, entries, "expected an array")
            return entries
        normalized = []
        for position, entry in enumerate(entries):
            if isinstance(entry, dict) and "value" in entry:
                entry = dict(entry)
                entry["value"] = self.number(index, f"{field}[{position}].value", entry["value"])
            normalized.append(entry)
        return normalized

    def record(self, index: int, record: dict[str, Any]) -> dict[str, Any]:
        result = dict(record)
        for field in NUMERIC_FIELDS:
            if field in result:
                result[field] = self.number(index, field, result[field])
        for field in DATE_FIELDS:
            if field in result:
                result[field] = self.date(index, field, result[field])
        for field in STRUCTURED_FIELDS:
            if field in result:
                result[field] = self.structured(index, field, result[field])
        return result

    def deduplicate(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Keep the last record for each dimension key, in first-seen key order."""
        by_key: dict[tuple[str, ...], int] = {}
        for index, record in enumerate(records):
            key = self.spec.record_key(record)
            if key in by_key:
                dropped = by_key[key]
                self._log(dropped, "*", list(key), None, action="deduplicated")
            by_key[key] = index

        seen: set[tuple[str, ...]] = set()
        ordered = []
        for record in records:
            key = self.spec.record_key(record)
            if key in seen:
                continue
            seen.add(key)
            ordered.append(records[by_key[key]])
        return ordered


def transform(validated: dict[str, Any]) -> TransformResult:
    """Normalize every dimension of a validated payload."""
    data = copy.deepcopy(validated)
    transformations: list[Transformation] = []
    warnings: list[str] = []

    for spec in DIMENSIONS:
        records = dimension_records(data, spec)
        for legacy in spec.legacy_names:
            data.pop(legacy, None)
        if not isinstance(records, list):
            data[spec.name] = []
            continue

        worker = _RecordTransformer(spec)
        normalized = [
            worker.record(index, record) if isinstance(record, dict) else record
            for index, record in enumerate(records)
        ]
        data[spec.name] = worker.deduplicate([record for record in normalized if isinstance(record, dict)])

        transformations.extend(worker.transformations)
        warnings.extend(worker.warnings)

    logger.info(f"[Transformer] {len(transformations)} transformation(s), {len(warnings)} warning(s)")
    for warning in warnings[:10]:
        logger.warning(f"[Transformer] {warning}")

    return TransformResult(data=data, transformations=transformations, warnings=warnings)
