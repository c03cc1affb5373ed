"""
Meta Marketing API insights client.

Fetches ``/{ad_account_id}/insights`` for one dimension at a time with:
- Connect/read timeouts on every request
- Exponential backoff retry (1s, 2s, 4s) on 429, 5xx, timeouts and connection errors
- No retry on other 4xx responses (bad request, auth, permissions)
- Cursor pagination via ``paging.next`` bounded by a page cap
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from src.core.config import AdsPlatformConfig
from src.core.dimensions import DimensionSpec
from src.core.errors import SourceUnavailableError
from src.core.schemas import DateRange

logger = logging.getLogger(__name__)

# Platform error codes that mean "slow down"
RATE_LIMIT_CODES = {4, 17, 32, 613, 80000, 80003, 80004, 80014}

# Platform error codes that refuse the whole account, not just one request
AUTH_ERROR_CODES = {102, 190}
PERMISSION_ERROR_CODES = {10, 200, 294}
UNKNOWN_OBJECT_SUBCODE = 33


@dataclass
class InsightsFetch:
    """All pages fetched for one dimension."""

    dimension: str
    records: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


class MetaInsightsClient:
    """Thin requests-based client for the Graph API insights edge."""

    USER_AGENT = "fb-insights-pipeline/1.0"

    def __init__(
        self,
        config: AdsPlatformConfig,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.config.connect_timeout, self.config.read_timeout)

    def insights_url(self, account_id: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{self.config.api_version}/{account_id}/insights"

    def build_params(self, spec: DimensionSpec, date_range: DateRange) -> dict[str, str]:
        params = {
            "fields": ",".join(spec.fields),
            "level": spec.level,
            "time_range": json.dumps(date_range.to_param()),
            "action_attribution_windows": json.dumps(self.config.attribution_window_list),
            "limit": str(self.config.page_limit),
        }
        if spec.breakdowns:
            params["breakdowns"] = ",".join(spec.breakdowns)
        return params

    def fetch_insights(self, account_id: str, spec: DimensionSpec, date_range: DateRange) -> InsightsFetch:
        """Fetch every page of one dimension's insights.

        Raises:
            SourceUnavailableError: When the platform refuses or cannot serve the request
        """
        result = InsightsFetch(dimension=spec.name)
        url: str | None = self.insights_url(account_id)
        params: dict[str, str] | None = self.build_params(spec, date_range)

        while url:
            if result.pages >= self.config.max_pages:
                result.truncated = True
                logger.warning(
                    f"[Insights] {spec.name}: stopped after {result.pages} pages for {account_id} "
                    f"({len(result.records)} records); more data available"
                )
                break

            body = self._get(url, params, spec.name)
            result.pages += 1

            data = body.get("data")
            if not isinstance(data, list):
                raise SourceUnavailableError(
                    f"Malformed response: 'data' is {type(data).__name__}, expected list",
                    details={"dimension": spec.name},
                )
            result.records.extend(record for record in data if isinstance(record, dict))

            # The next URL already carries every query parameter
            paging = body.get("paging") or {}
            url = paging.get("next") if isinstance(paging, dict) else None
            params = None

        logger.info(f"[Insights] {spec.name}: {len(result.records)} records in {result.pages} page(s) for {account_id}")
        return result

    def _get(self, url: str, params: dict[str, str] | None, dimension: str) -> dict[str, Any]:
        """GET with retry on transient failures."""
        from src.core.metrics import platform_request_duration, platform_request_total

        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "User-Agent": self.USER_AGENT,
            "Accept": "application/json",
        }
        attempts = self.config.max_retries + 1
        last_error: SourceUnavailableError | None = None

        for attempt in range(attempts):
            attempt_start = time.time()
            try:
                logger.debug(
                    f"[Insights] GET {dimension} attempt {attempt + 1}/{attempts} "
                    f"(token {mask_token(self.config.access_token)})"
                )
                response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
                platform_request_duration.labels(dimension=dimension).observe(time.time() - attempt_start)
                platform_request_total.labels(dimension=dimension, status=str(response.status_code)).inc()

                if 200 <= response.status_code < 300:
                    body = self._decode(response)
                    if "error" in body:
                        raise self._classify(response.status_code, body)
                    return body

                raise self._classify(response.status_code, self._decode(response, strict=False))

            except SourceUnavailableError as e:
                if not e.transient:
                    logger.warning(f"[Insights] {dimension}: {e} (will NOT retry)")
                    raise
                last_error = e

            except requests.exceptions.Timeout:
                platform_request_total.labels(dimension=dimension, status="timeout").inc()
                last_error = SourceUnavailableError(
                    f"Request timeout after {self.config.read_timeout}s", transient=True
                )

            except requests.exceptions.ConnectionError as e:
                platform_request_total.labels(dimension=dimension, status="connection_error").inc()
                last_error = SourceUnavailableError(f"Connection error: {str(e)[:200]}", transient=True)

            except requests.exceptions.RequestException as e:
                platform_request_total.labels(dimension=dimension, status="request_error").inc()
                last_error = SourceUnavailableError(f"Request exception: {str(e)[:200]}", transient=True)

            if attempt < attempts - 1:
                backoff_time = self.config.retry_base_delay * (2**attempt)
                logger.warning(f"[Insights] {dimension}: {last_error}; retrying in {backoff_time}s")
                self._sleep(backoff_time)

        assert last_error is not None
        logger.error(f"[Insights] {dimension}: giving up after {attempts} attempts: {last_error}")
        raise last_error

    @staticmethod
    def _decode(response: requests.Response, strict: bool = True) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            if not strict:
                return {}
            raise SourceUnavailableError(
                f"Malformed response: body is not JSON ({response.text[:100]!r})", status_code=response.status_code
            ) from e
        if not isinstance(body, dict):
            if not strict:
                return {}
            raise SourceUnavailableError("Malformed response: expected a JSON object", status_code=response.status_code)
        return body

    @staticmethod
    def _classify(status_code: int, body: dict[str, Any]) -> SourceUnavailableError:
        """Map an HTTP status and Graph API error envelope onto a SourceUnavailableError."""
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or f"HTTP {status_code}"
        code = error.get("code")
        subcode = error.get("error_subcode")
        details = {"type": error.get("type"), "error_subcode": subcode, "fbtrace_id": error.get("fbtrace_id")}

        if status_code == 429 or code in RATE_LIMIT_CODES:
            return SourceUnavailableError(
                f"Rate limit exceeded: {message}", status_code, code, transient=True, details=details
            )
        if status_code >= 500:
            return SourceUnavailableError(
                f"Server error {status_code}: {message}", status_code, code, transient=True, details=details
            )
        if code in AUTH_ERROR_CODES or status_code == 401:
            return SourceUnavailableError(
                f"Invalid or expired access token: {message}", status_code, code, fatal=True, details=details
            )
        if code in PERMISSION_ERROR_CODES or status_code == 403:
            return SourceUnavailableError(
                f"Permission denied for ad account: {message}", status_code, code, fatal=True, details=details
            )
        if code == 100 and subcode == UNKNOWN_OBJECT_SUBCODE:
            return SourceUnavailableError(
                f"Ad account not found or not accessible: {message}", status_code, code, fatal=True, details=details
            )
        if code == 100:
            return SourceUnavailableError(f"Invalid parameter: {message}", status_code, code, details=details)
        return SourceUnavailableError(f"Client error {status_code}: {message}", status_code, code, details=details)
