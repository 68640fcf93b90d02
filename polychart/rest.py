import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import Config
from .models import RawAggregate
from .timespans import Timespan

log = logging.getLogger("polychart.rest")

_OK_STATUSES = frozenset({"OK", "DELAYED"})


class NetworkError(Exception):
    """Network-related errors"""

    pass


class MarketDataError(Exception):
    """Request rejected by the API (bad key, unknown ticker, plan limits)"""

    pass


class MarketDataClient:
    """Blocking REST client for aggregates and ticker reference data"""

    def __init__(self, config: Config) -> None:
        self.config: Config = config
        self.session: requests.Session = requests.Session()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = dict(params or {})
        query["apiKey"] = self.config.API_KEY
        url: str = f"{self.config.REST_BASE_URL}{path}"
        try:
            log.debug(f"GET {path} {params or ''}")
            response: requests.Response = self.session.get(
                url, params=query, timeout=self.config.REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Network error: {e}") from e

        if response.status_code in (401, 403):
            raise MarketDataError(f"Not authorized ({response.status_code}) for {path}")
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"HTTP {response.status_code} for {path}")
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise MarketDataError(str(e)) from e

        try:
            data: Dict[str, Any] = response.json()
        except ValueError as e:
            raise MarketDataError(f"Malformed response for {path}: {e}") from e
        if not isinstance(data, dict):
            raise MarketDataError(f"Unexpected response for {path}: {data!r}")
        status: Optional[str] = data.get("status")
        if status is not None and status not in _OK_STATUSES:
            raise MarketDataError(
                f"API error ({status}): {data.get('error') or data.get('message', 'Unknown error')}"
            )
        return data

    @retry(
        stop=stop_after_attempt(Config.RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1, min=Config.RETRY_MIN_WAIT, max=Config.RETRY_MAX_WAIT
        ),
        retry=retry_if_exception_type(NetworkError),
        reraise=True,
    )
    def fetch_bars(
        self,
        ticker: str,
        multiplier: int,
        unit: Timespan,
        from_ts: int,
        to_ts: int,
        sort: str = "desc",
        limit: Optional[int] = None,
    ) -> List[RawAggregate]:
        """Fetch one page of aggregates in [from_ts, to_ts]; empty when there is no data"""
        if to_ts < self.config.START_OF_DATA_MS:
            log.info(f"{ticker}: range ends before the start of available data")
            return []

        unit = Timespan(unit)
        data: Dict[str, Any] = self._get(
            f"/v2/aggs/ticker/{ticker}/range/{multiplier}/{unit.value}/{from_ts}/{to_ts}",
            {
                "adjusted": str(self.config.ADJUSTED).lower(),
                "sort": sort,
                "limit": limit or self.config.PAGE_SIZE,
            },
        )
        results: List[Dict[str, Any]] = data.get("results") or []
        log.info(
            f"Fetched {len(results)} {unit.value}x{multiplier} bars for {ticker} "
            f"({from_ts} - {to_ts}, {sort})"
        )
        try:
            return [RawAggregate.model_validate(r) for r in results]
        except ValidationError as e:
            raise MarketDataError(f"Malformed aggregate for {ticker}: {e}") from e

    @retry(
        stop=stop_after_attempt(Config.RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1, min=Config.RETRY_MIN_WAIT, max=Config.RETRY_MAX_WAIT
        ),
        retry=retry_if_exception_type(NetworkError),
        reraise=True,
    )
    def ticker_details(self, ticker: str) -> Dict[str, Any]:
        data: Dict[str, Any] = self._get(f"/v3/reference/tickers/{ticker}")
        return data.get("results") or {}

    def ws_ticker(self, ticker: str) -> str:
        """Name used on the websocket; crypto pairs need the X:BASE-QUOTE form"""
        if not ticker.startswith("X:"):
            return ticker
        details: Dict[str, Any] = self.ticker_details(ticker)
        base: Optional[str] = details.get("base_currency_symbol")
        quote: Optional[str] = details.get("currency_symbol")
        if not base or not quote:
            raise MarketDataError(f"No currency pair in ticker details for {ticker}")
        return f"X:{base}-{quote}"
