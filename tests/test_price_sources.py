from __future__ import annotations

import json
from typing import Any, Optional

import pytest
import requests

import price_sources
from chart_data import PriceRecord
from price_sources import (
    PriceDataError,
    SpotQueryError,
    build_upstream_request,
    load_spot_records,
    proxy_spot_request,
    resolve_endpoint_type,
)

ENTRY = {"DateTime": "2024-03-04T12:00:00+02:00", "PriceNoTax": 0.08, "PriceWithTax": 0.1, "Rank": 1}


class FakeResponse:
    def __init__(self, status_code: int, body: Any = "", content_type: Optional[str] = "application/json"):
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)
        self.headers = {"content-type": content_type} if content_type else {}


class FakeSession:
    """Answers GETs from a path -> response table and records every call."""

    def __init__(self, responses: dict[str, Any]):
        self.responses = responses
        self.calls: list[tuple[str, Optional[dict]]] = []

    def get(self, url: str, params: Optional[dict] = None, timeout: int = 30):
        self.calls.append((url, params))
        answer = self.responses[url.rsplit("/", 1)[-1]]
        if isinstance(answer, Exception):
            raise answer
        return answer


# ---------------- query validation ----------------


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, "today"),
        ("", "today"),
        ("Today", "today"),
        ("tomorrow", "dayForward"),
        ("Day-Forward", "dayForward"),
        ("todayAndDayForward", "todayAndDayForward"),
        ("today-and-dayforward", "todayAndDayForward"),
        ("now", "justNow"),
        ("yesterday", None),
    ],
)
def test_resolve_endpoint_type(value, expected) -> None:
    assert resolve_endpoint_type(value) == expected


def test_build_upstream_request_translates_query() -> None:
    url, params = build_upstream_request(
        {
            "type": "todayAndDayForward",
            "region": "se3",
            "priceResolution": "15",
            "lookForwardHours": "3",
            "HomeAssistant": "true",
            "HomeAssistant15Min": "yes",
        }
    )

    assert url == "https://api.spot-hinta.fi/TodayAndDayForward"
    assert params == {
        "region": "SE3",
        "priceResolution": "15",
        "lookForwardHours": "3",
        "HomeAssistant": "true",
    }


def test_build_upstream_request_without_params() -> None:
    assert build_upstream_request({}) == ("https://api.spot-hinta.fi/Today", {})


@pytest.mark.parametrize(
    "query,message",
    [
        ({"type": "weekly"}, "Invalid type"),
        ({"priceResolution": "30"}, "priceResolution must be 15 or 60."),
        ({"priceResolution": "abc"}, "priceResolution must be 15 or 60."),
        ({"lookForwardHours": "7"}, "lookForwardHours must be an integer"),
        ({"lookForwardHours": "0"}, "lookForwardHours must be an integer"),
        ({"lookForwardHours": "2.5"}, "lookForwardHours must be an integer"),
    ],
)
def test_build_upstream_request_rejects_invalid_query(query, message) -> None:
    with pytest.raises(SpotQueryError, match=message) as excinfo:
        build_upstream_request(query)
    assert excinfo.value.status_code == 400


# ---------------- proxy ----------------


def test_proxy_answers_400_without_calling_upstream() -> None:
    session = FakeSession({})

    response = proxy_spot_request({"priceResolution": "45"}, session)

    assert response.status_code == 400
    assert json.loads(response.body) == {"error": "priceResolution must be 15 or 60."}
    assert session.calls == []


def test_proxy_passes_through_upstream_success() -> None:
    session = FakeSession({"Today": FakeResponse(200, [ENTRY])})

    response = proxy_spot_request({"region": "fi"}, session)

    assert response.ok
    assert json.loads(response.body) == [ENTRY]
    assert response.content_type == "application/json"
    assert response.headers["Cache-Control"] == "public, s-maxage=60, stale-while-revalidate=300"
    assert session.calls == [("https://api.spot-hinta.fi/Today", {"region": "FI"})]


def test_proxy_passes_through_upstream_errors_without_cache_header() -> None:
    session = FakeSession({"DayForward": FakeResponse(404, "Not found", content_type="text/plain")})

    response = proxy_spot_request({"type": "tomorrow"}, session)

    assert response.status_code == 404
    assert response.body == "Not found"
    assert response.content_type == "text/plain"
    assert "Cache-Control" not in response.headers


def test_proxy_defaults_content_type_to_json() -> None:
    session = FakeSession({"JustNow": FakeResponse(200, ENTRY, content_type=None)})

    response = proxy_spot_request({"type": "justNow"}, session)

    assert response.content_type == "application/json"


def test_proxy_answers_502_on_network_failure() -> None:
    session = FakeSession({"Today": requests.exceptions.ConnectionError("boom")})

    response = proxy_spot_request({}, session)

    assert response.status_code == 502
    assert json.loads(response.body) == {"error": "Upstream request failed."}


# ---------------- page-level loading ----------------


def test_load_spot_records_uses_combined_feed() -> None:
    session = FakeSession({"TodayAndDayForward": FakeResponse(200, [ENTRY, ENTRY])})

    records = load_spot_records("FI", "60", session=session)

    assert records == [PriceRecord.from_payload(ENTRY)] * 2
    assert session.calls == [
        ("https://api.spot-hinta.fi/TodayAndDayForward", {"region": "FI", "priceResolution": "60"})
    ]


def test_load_spot_records_falls_back_to_today_on_404() -> None:
    session = FakeSession(
        {
            "TodayAndDayForward": FakeResponse(404, "", content_type="text/plain"),
            "Today": FakeResponse(200, [ENTRY]),
        }
    )

    records = load_spot_records("EE", "15", session=session)

    assert [r.rank for r in records] == [1]
    assert [url.rsplit("/", 1)[-1] for url, _ in session.calls] == ["TodayAndDayForward", "Today"]


def test_load_spot_records_reports_fallback_failure() -> None:
    session = FakeSession(
        {
            "TodayAndDayForward": FakeResponse(404, ""),
            "Today": FakeResponse(500, {"error": "Service down"}),
        }
    )

    with pytest.raises(PriceDataError, match="Service down"):
        load_spot_records(session=session)


def test_load_spot_records_does_not_fall_back_on_other_errors() -> None:
    session = FakeSession({"TodayAndDayForward": FakeResponse(503, "", content_type="text/plain")})

    with pytest.raises(PriceDataError, match="Service Unavailable"):
        load_spot_records(session=session)
    assert len(session.calls) == 1


def test_load_spot_records_reports_network_failure() -> None:
    session = FakeSession({"TodayAndDayForward": requests.exceptions.Timeout("slow")})

    with pytest.raises(PriceDataError, match="Upstream request failed."):
        load_spot_records(session=session)


def test_load_spot_records_rejects_broken_json() -> None:
    session = FakeSession({"TodayAndDayForward": FakeResponse(200, "[{not json")})

    with pytest.raises(PriceDataError, match="Failed to load prices."):
        load_spot_records(session=session)


def test_load_spot_records_wraps_single_object() -> None:
    session = FakeSession({"TodayAndDayForward": FakeResponse(200, ENTRY)})

    assert load_spot_records(session=session) == [PriceRecord.from_payload(ENTRY)]


def test_session_retries_idempotent_gets() -> None:
    session = price_sources._build_session()

    retries = session.get_adapter("https://api.spot-hinta.fi").max_retries

    assert retries.total == 3
    assert 503 in retries.status_forcelist
    assert retries.raise_on_status is False
