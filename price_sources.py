from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import config
from chart_data import PriceRecord, normalize_payload

# ----------------------------------------
# spot-hinta.fi (Nord Pool day-ahead, JSON)
# ----------------------------------------
# Endpoints return a list of {DateTime, PriceNoTax, PriceWithTax, Rank},
# /JustNow a single object. Prices are EUR/kWh.
# Query: region (FI, SE1..SE4, ...), priceResolution (15|60),
# lookForwardHours (1..6), HomeAssistant / HomeAssistant15Min ("true"|"false").
# ----------------------------------------

SPOT_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; Streamlit-Spot/1.0)"}
CACHE_CONTROL = f"public, s-maxage={config.CACHE_SECONDS}, stale-while-revalidate=300"
FLAG_PARAMS = ("HomeAssistant", "HomeAssistant15Min")


class SpotQueryError(ValueError):
    """Raised when a spot price query carries invalid parameters."""
    status_code = 400


class PriceDataError(Exception):
    """Raised when the price feed cannot provide usable data."""


@dataclass(frozen=True)
class SpotResponse:
    status_code: int
    body: str
    content_type: str = "application/json"
    headers: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_json(self) -> bool:
        return "application/json" in (self.content_type or "")


def _error_response(status_code: int, message: str) -> SpotResponse:
    return SpotResponse(
        status_code=status_code,
        body=json.dumps({"error": message}),
        headers={"content-type": "application/json"},
    )

def _parse_number(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except ValueError:
        return None

def resolve_endpoint_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return "today"
    return config.SPOT_TYPE_ALIASES.get(str(value).lower())

def build_upstream_request(query: Mapping[str, Any]) -> tuple[str, dict]:
    """
    Validate a spot query and translate it into the upstream URL and params.
    Raises SpotQueryError for an unknown type, a priceResolution other than
    15/60, or a lookForwardHours that is not an integer in 1..6.
    """
    endpoint = resolve_endpoint_type(query.get("type"))
    if endpoint is None:
        raise SpotQueryError("Invalid type. Use: today, dayForward, todayAndDayForward, justNow.")

    params = {}
    region = query.get("region")
    if region:
        params["region"] = str(region).upper()

    price_resolution = query.get("priceResolution")
    if price_resolution not in (None, ""):
        parsed = _parse_number(price_resolution)
        if parsed not in config.PRICE_RESOLUTIONS:
            raise SpotQueryError("priceResolution must be 15 or 60.")
        params["priceResolution"] = str(int(parsed))

    look_forward = query.get("lookForwardHours")
    if look_forward not in (None, ""):
        parsed = _parse_number(look_forward)
        low, high = config.LOOK_FORWARD_HOURS
        if parsed is None or not parsed.is_integer() or not low <= parsed <= high:
            raise SpotQueryError("lookForwardHours must be an integer between 1 and 6.")
        params["lookForwardHours"] = str(int(parsed))

    for flag in FLAG_PARAMS:
        if query.get(flag) in ("true", "false"):
            params[flag] = query[flag]

    return f"{config.SPOT_BASE_URL}{config.SPOT_ENDPOINTS[endpoint]}", params

def _build_session() -> requests.Session:
    # --- Retry logic for network resilience ---
    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,  # hand back the last upstream response
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session = requests.Session()
    session.headers.update(SPOT_HEADERS)
    session.mount("https://", adapter)
    return session

def proxy_spot_request(
    query: Mapping[str, Any],
    session: Optional[requests.Session] = None,
    timeout: int = 30,
) -> SpotResponse:
    """
    Forward a spot query upstream and pass status, body and content type back.
    400 on invalid query parameters, 502 when the upstream cannot be reached.
    Successful responses carry a short shared-cache directive.
    """
    try:
        url, params = build_upstream_request(query)
    except SpotQueryError as exc:
        return _error_response(exc.status_code, str(exc))

    session = session or _build_session()
    try:
        resp = session.get(url, params=params or None, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logging.warning(f"spot-hinta.fi: request to {url} failed: {e}")
        return _error_response(502, "Upstream request failed.")

    content_type = resp.headers.get("content-type") or "application/json"
    headers = {"content-type": content_type}
    if 200 <= resp.status_code < 300:
        headers["Cache-Control"] = CACHE_CONTROL
    else:
        logging.debug(f"spot-hinta.fi: {url} answered {resp.status_code}")
    return SpotResponse(resp.status_code, resp.text, content_type, headers)

# ---------------------------------------------------------
# Page-level loading
# ---------------------------------------------------------
def _decode(response: SpotResponse) -> Any:
    if not response.is_json:
        return response.body
    try:
        return json.loads(response.body)
    except ValueError as ex:
        raise PriceDataError("Failed to load prices.") from ex

def _error_message(response: SpotResponse) -> str:
    try:
        payload = _decode(response)
    except PriceDataError:
        payload = response.body
    if isinstance(payload, dict):
        error_value = payload.get("error")
        if isinstance(error_value, str) and error_value.strip():
            return error_value
    if isinstance(payload, str) and payload.strip():
        return payload
    try:
        return HTTPStatus(response.status_code).phrase
    except ValueError:
        return f"HTTP {response.status_code}"

def load_spot_records(
    region: str = config.DEFAULT_REGION,
    price_resolution: str = "60",
    session: Optional[requests.Session] = None,
) -> list[PriceRecord]:
    """
    Load today's and (when published) tomorrow's prices.
    The combined feed answers 404 before the next day's auction results are
    out; in that case the today-only feed is used instead.
    """
    session = session or _build_session()
    base_query = {"region": region, "priceResolution": price_resolution}

    primary = proxy_spot_request({**base_query, "type": "todayAndDayForward"}, session)
    if primary.ok:
        return normalize_payload(_decode(primary))

    if primary.status_code == 404:
        logging.info(f"spot-hinta.fi: no day-forward prices for {region}, falling back to today")
        fallback = proxy_spot_request({**base_query, "type": "today"}, session)
        if not fallback.ok:
            raise PriceDataError(_error_message(fallback))
        return normalize_payload(_decode(fallback))

    raise PriceDataError(_error_message(primary))
