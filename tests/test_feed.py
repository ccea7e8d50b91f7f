import httpx
import pytest

from levsim.exchange import (
    BybitAPIError,
    BybitPriceFeed,
    BybitV5Client,
    EdgeProtectionError,
    StaticPriceFeed,
)

PRICES = {"BTCUSDT": "50000.5", "ETHUSDT": "2500.25"}


def _ticker_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        symbol = request.url.params.get("symbol")
        if symbol == "BADUSDT":
            return httpx.Response(200, json={"retCode": 10001, "retMsg": "params error"})
        if symbol is None:
            items = [{"symbol": name, "lastPrice": price} for name, price in PRICES.items()]
            items.append({"symbol": "DEADUSDT", "lastPrice": ""})
            return httpx.Response(200, json={"retCode": 0, "result": {"list": items}})
        if symbol not in PRICES:
            return httpx.Response(200, json={"retCode": 0, "result": {"list": []}})
        return httpx.Response(
            200,
            json={
                "retCode": 0,
                "retMsg": "OK",
                "result": {"list": [{"symbol": symbol, "lastPrice": PRICES[symbol]}]},
            },
        )

    return handler


def _client(handler) -> BybitV5Client:
    return BybitV5Client(
        base_url="https://bybit.test",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        backoff_base=0.0,
    )


class TestBybitV5Client:
    def test_last_price(self):
        calls = []
        client = _client(_ticker_handler(calls))
        assert client.get_last_price("BTCUSDT") == pytest.approx(50000.5)
        request = calls[0]
        assert request.url.path == "/v5/market/tickers"
        assert request.url.params["category"] == "linear"

    def test_unknown_symbol_has_no_price(self):
        client = _client(_ticker_handler([]))
        assert client.get_last_price("XYZUSDT") is None

    def test_api_error_raised(self):
        client = _client(_ticker_handler([]))
        with pytest.raises(BybitAPIError) as excinfo:
            client.get_tickers(symbol="BADUSDT")
        assert excinfo.value.ret_code == 10001

    def test_rate_limit_retried(self):
        calls = []
        inner = _ticker_handler([])

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, text="slow down")
            return inner(request)

        client = _client(handler)
        assert client.get_last_price("ETHUSDT") == pytest.approx(2500.25)
        assert len(calls) == 2

    def test_edge_html_raises_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, text="<html>blocked</html>")

        client = _client(handler)
        with pytest.raises(EdgeProtectionError):
            client.get_tickers(symbol="BTCUSDT")
        assert len(calls) == 3


class TestBybitPriceFeed:
    def test_batch_omits_failed_symbols(self):
        feed = BybitPriceFeed(_client(_ticker_handler([])), max_workers=4, timeout=5.0)
        try:
            prices = feed.get_prices(["btcusdt", "ETHUSDT", "BADUSDT", "XYZUSDT"])
        finally:
            feed.close()
        assert prices == {"BTCUSDT": pytest.approx(50000.5), "ETHUSDT": pytest.approx(2500.25)}

    def test_large_batch_uses_one_category_request(self):
        calls = []
        feed = BybitPriceFeed(_client(_ticker_handler(calls)), bulk_threshold=2)
        try:
            prices = feed.get_prices(["BTCUSDT", "ethusdt", "DEADUSDT"])
        finally:
            feed.close()
        assert prices == {"BTCUSDT": pytest.approx(50000.5), "ETHUSDT": pytest.approx(2500.25)}
        assert len(calls) == 1
        assert "symbol" not in calls[0].url.params

    def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        feed = BybitPriceFeed(_client(handler))
        try:
            assert feed.get_price("BTCUSDT") is None
            assert feed.get_prices(["BTCUSDT"]) == {}
        finally:
            feed.close()

    def test_empty_request(self):
        feed = BybitPriceFeed(_client(_ticker_handler([])))
        try:
            assert feed.get_prices([]) == {}
        finally:
            feed.close()


class TestStaticPriceFeed:
    def test_update_and_lookup(self):
        feed = StaticPriceFeed({"btcusdt": 100.0})
        feed.set_price("ETHUSDT", 10.0)
        assert feed.get_price("BTCUSDT") == 100.0
        assert feed.get_prices(["BTCUSDT", "ETHUSDT", "SOLUSDT"]) == {"BTCUSDT": 100.0, "ETHUSDT": 10.0}
        feed.remove("BTCUSDT")
        assert feed.get_price("BTCUSDT") is None
