"""Bybit v5 public market REST client (testnet/mainnet) with retries.

Only unauthenticated market-data endpoints are exposed. The simulator never
places orders, so requests are not signed.

Env vars:
- TESTNET=true|false (default false)
- BYBIT_CATEGORY=linear (linear|inverse|spot)
- BYBIT_HTTP_TOTAL_TIMEOUT=20 (seconds across all retries of one call)
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Iterable, Optional

import httpx


DEFAULT_BASE_MAINNET = "https://api.bybit.com"
DEFAULT_BASE_TESTNET = "https://api-testnet.bybit.com"
TICKERS_PATH = "/v5/market/tickers"

# Rate limit / system busy codes that succeed on a later attempt.
TRANSIENT_RET_CODES = frozenset({10006, 10016, 10018})
# Statuses the CDN answers with an HTML page instead of JSON.
EDGE_STATUSES = frozenset({403, 502, 520, 521})

logger = logging.getLogger("levsim.exchange.bybit")


class BybitAPIError(Exception):
    def __init__(self, ret_code: int, ret_msg: str, data: Any | None = None):
        super().__init__(f"Bybit API error {ret_code}: {ret_msg}")
        self.ret_code = ret_code
        self.ret_msg = ret_msg
        self.data = data


class EdgeProtectionError(BybitAPIError):
    """Edge returned HTML/non-JSON (403/5xx) on every attempt."""


class _RetryableResponse(Exception):
    def __init__(self, error: BybitAPIError) -> None:
        super().__init__(str(error))
        self.error = error


def _parse_price(raw: Any) -> Optional[float]:
    if raw in (None, ""):
        return None
    try:
        price = float(raw)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


class BybitV5Client:
    """Thin wrapper over ``/v5/market`` endpoints.

    ``http_client`` may be injected (for example with ``httpx.MockTransport``);
    an injected client is left open by :meth:`close`.
    """

    def __init__(
        self,
        *,
        testnet: bool | None = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        category: str | None = None,
        http_client: Optional[httpx.Client] = None,
        backoff_base: float = 1.0,
    ) -> None:
        if testnet is None:
            testnet = os.environ.get("TESTNET", "false").lower() == "true"
        self.testnet = testnet
        self.base_url = (base_url or (DEFAULT_BASE_TESTNET if testnet else DEFAULT_BASE_MAINNET)).rstrip("/")
        self.default_category = category or os.environ.get("BYBIT_CATEGORY", "linear")
        self.backoff_base = backoff_base
        self.total_timeout = float(os.environ.get("BYBIT_HTTP_TOTAL_TIMEOUT", "20"))
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=min(5.0, timeout)),
            headers={
                "Accept": "application/json",
                # Some Bybit edges return non-JSON without UA
                "User-Agent": "levsim/0.1 (+httpx)",
            },
        )

    def _sleep_before_retry(self, attempt: int) -> None:
        if self.backoff_base > 0:
            time.sleep(self.backoff_base * 2**attempt)

    def _send_once(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """One GET; raises ``_RetryableResponse`` for answers worth repeating."""
        response = self._client.get(f"{self.base_url}{path}", params=params)
        status = response.status_code
        if status == 429:
            raise _RetryableResponse(BybitAPIError(429, f"rate limited at {path}"))
        try:
            payload = response.json()
        except ValueError:
            body = (response.text or "")[:200]
            detail = {"status": status, "body": body}
            if status in EDGE_STATUSES:
                raise _RetryableResponse(
                    EdgeProtectionError(status, f"HTTP {status} non-JSON at {path}: {body}", detail)
                )
            raise BybitAPIError(status, f"HTTP {status} non-JSON response: {body}", detail)
        ret_code = payload.get("retCode", 0)
        if ret_code != 0:
            error = BybitAPIError(ret_code, payload.get("retMsg", "unknown"), payload)
            if ret_code in TRANSIENT_RET_CODES:
                raise _RetryableResponse(error)
            raise error
        return payload

    def _get(self, path: str, *, params: Dict[str, Any] | None = None, max_retries: int = 2) -> Dict[str, Any]:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        deadline = time.monotonic() + self.total_timeout
        for attempt in range(max_retries + 1):
            if time.monotonic() > deadline:
                raise BybitAPIError(408, f"total timeout exceeded {self.total_timeout}s for {path}")
            final = attempt >= max_retries
            try:
                return self._send_once(path, query)
            except httpx.RequestError as exc:
                if final:
                    raise
                logger.debug("Transport error on %s (attempt %d): %s", path, attempt + 1, exc)
            except _RetryableResponse as retry:
                if final:
                    raise retry.error from None
                logger.debug("Retrying %s after %s", path, retry.error)
            self._sleep_before_retry(attempt)
        raise AssertionError("unreachable")

    # -------- Public market endpoints --------
    def get_tickers(self, category: Optional[str] = None, symbol: Optional[str] = None) -> Dict[str, Any]:
        return self._get(TICKERS_PATH, params={"category": category or self.default_category, "symbol": symbol})

    def get_last_price(self, symbol: str, category: Optional[str] = None) -> Optional[float]:
        """Last traded price for ``symbol`` or ``None`` if the ticker has none."""
        prices = self.get_last_prices([symbol], category=category, single_request=True)
        return prices.get(symbol.upper())

    def get_last_prices(
        self,
        symbols: Iterable[str],
        category: Optional[str] = None,
        *,
        single_request: bool = False,
    ) -> Dict[str, float]:
        """Positive last prices keyed by upper-case symbol.

        With ``single_request`` the one requested symbol is queried directly;
        otherwise the whole category is fetched once and filtered.
        """
        wanted = {symbol.upper() for symbol in symbols}
        if not wanted:
            return {}
        only = next(iter(wanted)) if single_request and len(wanted) == 1 else None
        response = self.get_tickers(category=category, symbol=only)
        prices: Dict[str, float] = {}
        for item in response.get("result", {}).get("list") or []:
            name = str(item.get("symbol", "")).upper()
            if name not in wanted:
                continue
            price = _parse_price(item.get("lastPrice"))
            if price is not None:
                prices[name] = price
        return prices

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "BybitV5Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()


__all__ = [
    "BybitAPIError",
    "BybitV5Client",
    "DEFAULT_BASE_MAINNET",
    "DEFAULT_BASE_TESTNET",
    "EdgeProtectionError",
]
