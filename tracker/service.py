# tracker/service.py
import os
from typing import Optional

from fetchers import get_price_fetcher

from .item_url import underscore_suffix_item_id
from .lifecycle import SubscriptionService
from .notifier import NotificationDispatcher, build_confirmation_url
from .storage import Storage

MARKETPLACE = os.getenv("MARKETPLACE", "avito")


def create_service(
    storage: Optional[Storage] = None,
    marketplace: str = MARKETPLACE,
    api_key: Optional[str] = None,
) -> SubscriptionService:
    """Wire a SubscriptionService to SQLite, the marketplace gateway and email."""
    storage = storage or Storage()
    storage.ensure_db()
    return SubscriptionService(
        storage=storage,
        price_lookup=get_price_fetcher(marketplace),
        events=NotificationDispatcher(storage),
        confirmation_url=build_confirmation_url,
        parse_item_id=underscore_suffix_item_id,
        api_key=api_key,
    )
