"""Tests for the Avito price gateway with HTTP stubbed out."""

import pytest
import requests

from fetchers import PRICE_FETCHERS, avito, get_price_fetcher
from tracker.errors import PriceLookupError


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(avito._fetch.retry, "sleep", lambda seconds: None)


@pytest.fixture
def http(monkeypatch):
    calls = []
    responses = []

    def fake_get(url, params=None, timeout=None):
        calls.append({"url": url, "params": params, "timeout": timeout})
        result = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(avito.SESSION, "get", fake_get)
    return calls, responses


def test_api_price_from_value_dict(http):
    calls, responses = http
    responses.append(FakeResponse(json_data={"id": 789, "price": {"value": "12 500", "metric": "₽"}}))

    assert avito.get_actual_price("789", "k") == 12500
    assert calls[0]["url"].endswith("/items/789")
    assert calls[0]["params"] == {"key": "k"}
    assert calls[0]["timeout"] == avito.AVITO_TIMEOUT


def test_page_price_when_no_key(http):
    calls, responses = http
    html = '<html><body><span itemprop="price" content="4990">4 990 ₽</span></body></html>'
    responses.append(FakeResponse(text=html))

    assert avito.get_actual_price("789", "") == 4990
    assert calls[0]["params"] is None


def test_not_found_is_lookup_error(http):
    _, responses = http
    responses.append(FakeResponse(status_code=404))

    with pytest.raises(PriceLookupError, match="not found"):
        avito.get_actual_price("789", "k")


def test_forbidden_is_lookup_error(http):
    _, responses = http
    responses.append(FakeResponse(status_code=403))

    with pytest.raises(PriceLookupError, match="403"):
        avito.get_actual_price("789", "k")


def test_timeout_is_retried_then_lookup_error(http):
    calls, responses = http
    responses.append(requests.Timeout("read timed out"))

    with pytest.raises(PriceLookupError, match="in time"):
        avito.get_actual_price("789", "k")
    assert len(calls) == avito.AVITO_MAX_ATTEMPTS


def test_server_error_then_success(http):
    calls, responses = http
    responses.extend([FakeResponse(status_code=502), FakeResponse(json_data={"price": 700})])

    assert avito.get_actual_price("789", "k") == 700
    assert len(calls) == 2


def test_missing_price_is_lookup_error(http):
    _, responses = http
    responses.append(FakeResponse(json_data={"price": None}))

    with pytest.raises(PriceLookupError, match="No price"):
        avito.get_actual_price("789", "k")


def test_invalid_json_is_lookup_error(http):
    _, responses = http
    responses.append(FakeResponse(json_data=None, text="<html>"))

    with pytest.raises(PriceLookupError):
        avito.get_actual_price("789", "k")


@pytest.mark.parametrize(
    "raw, expected",
    [(1500, 1500), (99.6, 100), ("12 500 ₽", 12500), ("1\xa0200", 1200), ("3500.00", 3500), ("", None), (True, None)],
)
def test_parse_price_value(raw, expected):
    assert avito.parse_price_value(raw) == expected


def test_extract_api_price_nested_result():
    assert avito.extract_api_price({"result": {"price": {"value_signed": "2 000 ₽"}}}) == 2000
    assert avito.extract_api_price([]) is None


def test_extract_page_price_from_meta():
    html = '<meta property="product:price:amount" content="15000">'
    assert avito.extract_page_price(html) == 15000
    assert avito.extract_page_price("<p>nothing</p>") is None


def test_fetcher_registry():
    assert get_price_fetcher("Avito") is avito.get_actual_price
    assert "avito" in PRICE_FETCHERS
    with pytest.raises(ValueError):
        get_price_fetcher("ebay")
