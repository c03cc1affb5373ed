"""Tests for the Graph API insights client: paging, retries and error classification."""

import json

import pytest
import requests

from src.adapters.meta_insights_client import MetaInsightsClient, mask_token
from src.core.config import AdsPlatformConfig
from src.core.dimensions import CAMPAIGNS, PLATFORMS
from src.core.errors import SourceUnavailableError
from src.core.schemas import DateRange
from tests.fixtures import MockGraphResponse, MockGraphSession

DATE_RANGE = DateRange(since="2024-03-01", until="2024-03-31")


@pytest.fixture
def sleeps():
    return []


def make_client(responses, sleeps, **config):
    settings = {"access_token": "secret_token_value", "max_retries": 2, "retry_base_delay": 1.0, **config}
    session = MockGraphSession(responses)
    client = MetaInsightsClient(AdsPlatformConfig(**settings), session=session, sleep=sleeps.append)
    return client, session


class TestRequestBuilding:
    def test_url_contains_version_and_account(self, sleeps):
        client, _ = make_client([], sleeps)
        assert client.insights_url("act_42") == "https://graph.facebook.com/v20.0/act_42/insights"

    def test_params_for_breakdown_dimension(self, sleeps):
        client, _ = make_client([], sleeps, page_limit=250)
        params = client.build_params(PLATFORMS, DATE_RANGE)

        assert params["level"] == "account"
        assert params["breakdowns"] == "publisher_platform,platform_position"
        assert params["limit"] == "250"
        assert json.loads(params["time_range"]) == {"since": "2024-03-01", "until": "2024-03-31"}
        windows = json.loads(params["action_attribution_windows"])
        assert windows == ["1d_click", "7d_click", "28d_click", "1d_view", "7d_view"]

    def test_campaign_params_have_no_breakdowns(self, sleeps):
        client, _ = make_client([], sleeps)
        params = client.build_params(CAMPAIGNS, DATE_RANGE)

        assert "breakdowns" not in params
        assert params["level"] == "campaign"
        assert "campaign_name" in params["fields"].split(",")

    def test_token_sent_as_bearer_header(self, sleeps):
        client, session = make_client([MockGraphResponse.page([])], sleeps)
        client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        headers = session.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret_token_value"
        assert session.get.call_args.kwargs["timeout"] == (10.0, 60.0)

    def test_mask_token(self):
        assert mask_token("abcdefghijklmnop") == "abcd...mnop"
        assert mask_token("short") == "***"


class TestPaging:
    def test_follows_next_links(self, sleeps):
        responses = [
            MockGraphResponse.page([{"campaign_id": "1"}, {"campaign_id": "2"}], next_url="https://next/page2"),
            MockGraphResponse.page([{"campaign_id": "3"}]),
        ]
        client, session = make_client(responses, sleeps)

        result = client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert [record["campaign_id"] for record in result.records] == ["1", "2", "3"]
        assert result.pages == 2
        assert not result.truncated
        second_call = session.get.call_args_list[1]
        assert second_call.args[0] == "https://next/page2"
        assert second_call.kwargs["params"] is None

    def test_stops_at_max_pages(self, sleeps):
        responses = [MockGraphResponse.page([{"campaign_id": str(i)}], next_url=f"https://next/{i}") for i in range(5)]
        client, session = make_client(responses, sleeps, max_pages=3)

        result = client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert result.pages == 3
        assert result.truncated
        assert len(result.records) == 3
        assert session.get.call_count == 3

    def test_empty_result(self, sleeps):
        client, _ = make_client([MockGraphResponse.page([])], sleeps)
        result = client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)
        assert result.records == []
        assert result.pages == 1

    def test_malformed_data_is_an_error(self, sleeps):
        client, _ = make_client([MockGraphResponse(200, {"data": "nope"})], sleeps)
        with pytest.raises(SourceUnavailableError, match="Malformed response"):
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

    def test_non_json_body_is_an_error(self, sleeps):
        client, _ = make_client([MockGraphResponse(200, None, text="<html>")], sleeps)
        with pytest.raises(SourceUnavailableError, match="not JSON"):
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)


class TestRetries:
    def test_rate_limit_is_retried_with_backoff(self, sleeps):
        responses = [
            MockGraphResponse.error(400, 17, "User request limit reached"),
            MockGraphResponse.error(429, 4, "Application request limit reached"),
            MockGraphResponse.page([{"campaign_id": "1"}]),
        ]
        client, session = make_client(responses, sleeps)

        result = client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert len(result.records) == 1
        assert session.get.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_server_errors_exhaust_retries(self, sleeps):
        responses = [MockGraphResponse(503, {}) for _ in range(3)]
        client, session = make_client(responses, sleeps)

        with pytest.raises(SourceUnavailableError) as exc_info:
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert exc_info.value.transient
        assert not exc_info.value.fatal
        assert session.get.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_timeouts_are_retried(self, sleeps):
        responses = [requests.exceptions.Timeout("slow"), MockGraphResponse.page([{"campaign_id": "1"}])]
        client, session = make_client(responses, sleeps)

        result = client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert len(result.records) == 1
        assert session.get.call_count == 2

    def test_connection_errors_raise_after_retries(self, sleeps):
        responses = [requests.exceptions.ConnectionError("reset") for _ in range(3)]
        client, _ = make_client(responses, sleeps)

        with pytest.raises(SourceUnavailableError, match="Connection error"):
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

    def test_invalid_parameter_is_not_retried(self, sleeps):
        client, session = make_client([MockGraphResponse.error(400, 100, "Invalid field")], sleeps)

        with pytest.raises(SourceUnavailableError) as exc_info:
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert session.get.call_count == 1
        assert sleeps == []
        assert not exc_info.value.fatal
        assert exc_info.value.platform_code == 100


class TestClassification:
    @pytest.mark.parametrize(
        "status,code,subcode",
        [
            (400, 190, None),
            (401, None, None),
            (403, 200, None),
            (400, 10, None),
            (400, 100, 33),
        ],
    )
    def test_account_level_errors_are_fatal(self, sleeps, status, code, subcode):
        response = MockGraphResponse.error(status, code, "refused", subcode=subcode)
        client, session = make_client([response], sleeps)

        with pytest.raises(SourceUnavailableError) as exc_info:
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

        assert exc_info.value.fatal
        assert not exc_info.value.transient
        assert session.get.call_count == 1

    def test_error_envelope_in_200_response(self, sleeps):
        client, _ = make_client([MockGraphResponse.error(200, 190, "Session has expired")], sleeps)

        with pytest.raises(SourceUnavailableError, match="expired access token"):
            client.fetch_insights("act_42", CAMPAIGNS, DATE_RANGE)

    def test_to_dict_carries_platform_details(self):
        error = MetaInsightsClient._classify(429, {"error": {"code": 4, "message": "slow down"}})
        data = error.to_dict()

        assert data["error_type"] == "source_unavailable"
        assert data["transient"] is True
        assert data["status_code"] == 429
        assert data["platform_code"] == 4
