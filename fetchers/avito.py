# fetchers/avito.py
import os
import re
from typing import Any, Iterable, Optional

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from tracker.errors import PriceLookupError
from tracker.logger import get_logger

logger = get_logger(__name__)

AVITO_API_KEY = os.getenv("AVITO_API_KEY", "").strip()
AVITO_API_URL = os.getenv("AVITO_API_URL", "https://m.avito.ru/api/15/items/{item_id}")
AVITO_PAGE_URL = os.getenv("AVITO_PAGE_URL", "https://www.avito.ru/{item_id}")
AVITO_TIMEOUT = float(os.getenv("AVITO_TIMEOUT", "10"))
AVITO_MAX_ATTEMPTS = int(os.getenv("AVITO_MAX_ATTEMPTS", "3"))
USER_AGENT = os.getenv(
    "AVITO_USER_AGENT",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_0 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.0 "
    "Mobile/15A372 Safari/604.1",
)

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT, "Accept-Language": "ru-RU,ru;q=0.9"})

_PRICE_SELECTORS = (
    "[itemprop='price']",
    "meta[property='product:price:amount']",
)


class AvitoUnavailable(Exception):
    """Avito answered with a 5xx status."""


@retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, AvitoUnavailable)),
    wait=wait_exponential_jitter(initial=1, max=10),
    stop=stop_after_attempt(AVITO_MAX_ATTEMPTS),
    reraise=True,
)
def _fetch(url: str, params: Optional[dict[str, str]] = None) -> requests.Response:
    logger.debug("Fetching Avito URL: %s", url)
    resp = SESSION.get(url, params=params, timeout=AVITO_TIMEOUT)
    if resp.status_code >= 500:
        logger.warning("Avito returned %s at %s.", resp.status_code, url)
        raise AvitoUnavailable(f"status {resp.status_code}")
    return resp


def parse_price_value(raw: Any) -> Optional[int]:
    """Normalize Avito price values like ``12500``, ``"12 500 ₽"`` or ``"12500.00"``."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(round(raw))
    if isinstance(raw, str):
        whole = raw.replace("\xa0", " ").split(".", 1)[0].split(",", 1)[0]
        digits = re.sub(r"\D", "", whole)
        return int(digits) if digits else None
    return None


def extract_api_price(data: Any) -> Optional[int]:
    """Pull the price out of a mobile API item payload."""
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("result"), dict):
        data = data["result"]

    price = data.get("price")
    if isinstance(price, dict):
        for key in ("value", "value_signed", "valueSigned"):
            parsed = parse_price_value(price.get(key))
            if parsed is not None:
                return parsed
        return None
    return parse_price_value(price)


def _select_first(root: BeautifulSoup, selectors: Iterable[str]) -> Tag | None:
    for sel in selectors:
        found = root.select_one(sel)
        if found is not None:
            return found
    return None


def extract_page_price(html: str) -> Optional[int]:
    """Read the price from a public listing page's schema.org / OpenGraph markup."""
    soup = BeautifulSoup(html, "html.parser")
    tag = _select_first(soup, _PRICE_SELECTORS)
    if tag is None:
        return None
    content = tag.get("content")
    if isinstance(content, str) and content.strip():
        return parse_price_value(content)
    return parse_price_value(tag.get_text(strip=True))


def get_actual_price(item_id: str, api_key: Optional[str] = None) -> int:
    """
    Return the current price of an Avito listing.

    Uses the mobile JSON API when an API key is available and falls back to
    the public listing page otherwise. Every failure, including timeouts,
    is raised as PriceLookupError with a message fit for end users.
    """
    key = AVITO_API_KEY if api_key is None else api_key.strip()

    try:
        if key:
            resp = _fetch(AVITO_API_URL.format(item_id=item_id), {"key": key})
        else:
            resp = _fetch(AVITO_PAGE_URL.format(item_id=item_id))
    except requests.Timeout as exc:
        logger.warning("Avito lookup for item %s timed out: %s", item_id, exc)
        raise PriceLookupError(f"Avito did not respond in time for item {item_id}. Please try again later.") from exc
    except (requests.RequestException, AvitoUnavailable) as exc:
        logger.warning("Avito lookup for item %s failed: %s", item_id, exc)
        raise PriceLookupError(f"Avito is unavailable right now (item {item_id}). Please try again later.") from exc

    if resp.status_code == 404:
        raise PriceLookupError(f"Item {item_id} was not found on Avito.")
    if resp.status_code != 200:
        logger.warning("Avito returned status %s for item %s.", resp.status_code, item_id)
        raise PriceLookupError(f"Avito rejected the price request for item {item_id} (status {resp.status_code}).")

    if key:
        try:
            price = extract_api_price(resp.json())
        except ValueError as exc:
            logger.warning("Avito returned invalid JSON for item %s: %s", item_id, exc)
            raise PriceLookupError(f"Avito returned an unreadable answer for item {item_id}.") from exc
    else:
        price = extract_page_price(resp.text)

    if price is None:
        raise PriceLookupError(f"No price is listed for item {item_id}.")

    logger.debug("Avito price for item %s: %d", item_id, price)
    return price
