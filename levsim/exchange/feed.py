from __future__ import annotations

"""Price feeds consumed by the simulator tick loop."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Iterable, Mapping, Optional, Protocol

import httpx

from .bybit_v5 import BybitAPIError, BybitV5Client

logger = logging.getLogger("levsim.exchange.feed")


class PriceFeed(Protocol):
    def get_price(self, symbol: str) -> Optional[float]:
        ...

    def get_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        ...


class StaticPriceFeed:
    """In-memory prices, for replay drivers and tests."""

    def __init__(self, prices: Optional[Mapping[str, float]] = None) -> None:
        self._prices: dict[str, float] = {}
        self._lock = threading.Lock()
        if prices:
            self.update(prices)

    def update(self, prices: Mapping[str, float]) -> None:
        with self._lock:
            for symbol, price in prices.items():
                self._prices[symbol.upper()] = float(price)

    def set_price(self, symbol: str, price: float) -> None:
        self.update({symbol: price})

    def remove(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(symbol.upper(), None)

    def get_price(self, symbol: str) -> Optional[float]:
        with self._lock:
            return self._prices.get(symbol.upper())

    def get_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        with self._lock:
            return {
                symbol.upper(): self._prices[symbol.upper()]
                for symbol in symbols
                if symbol.upper() in self._prices
            }


class BybitPriceFeed:
    """Last-trade prices from Bybit tickers.

    Small batches issue one request per symbol in parallel; batches of at
    least ``bulk_threshold`` symbols read the whole category in one call.

    A symbol whose request fails or does not finish within ``timeout`` is left
    out of the result; callers treat that as "no price this tick".
    """

    def __init__(
        self,
        client: BybitV5Client,
        *,
        category: Optional[str] = None,
        max_workers: int = 8,
        timeout: float = 10.0,
        bulk_threshold: int = 20,
    ) -> None:
        self._client = client
        self._bulk_threshold = bulk_threshold
        self._category = category
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="price-feed")

    def get_price(self, symbol: str) -> Optional[float]:
        try:
            return self._client.get_last_price(symbol.upper(), category=self._category)
        except (BybitAPIError, httpx.HTTPError) as exc:
            logger.warning("Price fetch failed for %s: %s", symbol, exc)
            return None
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected price fetch failure for %s: %s", symbol, exc)
            return None

    def get_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        unique = sorted({symbol.upper() for symbol in symbols})
        if not unique:
            return {}
        if self._bulk_threshold > 0 and len(unique) >= self._bulk_threshold:
            return self._get_prices_bulk(unique)
        futures = {self._executor.submit(self.get_price, symbol): symbol for symbol in unique}
        done, pending = wait(futures, timeout=self._timeout)
        for future in pending:
            future.cancel()
            logger.warning("Price fetch timed out for %s after %.1fs", futures[future], self._timeout)
        prices: dict[str, float] = {}
        for future in done:
            price = future.result()
            if price is not None:
                prices[futures[future]] = price
        return prices

    def _get_prices_bulk(self, symbols: list[str]) -> dict[str, float]:
        try:
            return self._client.get_last_prices(symbols, category=self._category)
        except (BybitAPIError, httpx.HTTPError) as exc:
            logger.warning("Bulk price fetch failed for %d symbols: %s", len(symbols), exc)
            return {}
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected bulk price fetch failure: %s", exc)
            return {}

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["BybitPriceFeed", "PriceFeed", "StaticPriceFeed"]
