# fetchers/__init__.py
from typing import Callable, Optional

from . import avito

PriceFetcher = Callable[[str, Optional[str]], int]

PRICE_FETCHERS: dict[str, PriceFetcher] = {
    "avito": avito.get_actual_price,
}


def get_price_fetcher(marketplace: str) -> PriceFetcher:
    try:
        return PRICE_FETCHERS[marketplace.strip().lower()]
    except KeyError:
        raise ValueError(f"No price fetcher registered for marketplace '{marketplace}'") from None
