import os
import random
import time
from typing import Optional

from tracker.diff import is_notable_change
from tracker.errors import PriceLookupError
from tracker.logger import get_logger
from tracker.models import Item
from tracker.notifier import NotificationDispatcher
from tracker.storage import Storage
from fetchers import PriceFetcher, get_price_fetcher

logger = get_logger(__name__)

POLL_MINUTES = int(os.getenv("POLL_MINUTES", "30"))
MODE = os.getenv("MODE", "daemon").lower()  # "daemon" or "once"
MARKETPLACE = os.getenv("MARKETPLACE", "avito")
ITEM_SPACING_SECONDS = float(os.getenv("ITEM_SPACING_SECONDS", "5"))


def jitter_sleep_minutes(minutes: int) -> None:
    base = max(1, minutes)
    jitter = random.uniform(-0.1 * base, 0.1 * base)
    total = base + jitter
    logger.info("Sleeping %.1f minutes before next cycle.", total)
    time.sleep(total * 60)


def check_item(
    item: Item,
    storage: Storage,
    fetch_price: PriceFetcher,
    dispatcher: NotificationDispatcher,
    api_key: Optional[str] = None,
) -> bool:
    """
    Re-read the price of one watched item.
    Returns True when subscribers were told about a change.
    """
    try:
        current = fetch_price(item.id, api_key)
    except PriceLookupError as e:
        logger.warning("Skipping item %s this cycle: %s", item.id, e)
        return False

    if current == item.price:
        logger.debug("No price change for item %s (%d).", item.id, current)
        storage.update_item_price(item.id, current)
        return False

    before = item.price
    storage.update_item_price(item.id, current)

    if not is_notable_change(before, current):
        logger.info(
            "Item %s moved %d -> %d, below notification threshold.",
            item.id, before, current,
        )
        return False

    item.price = current
    subscriptions = storage.active_subscriptions(item.id)
    sent = dispatcher.send_price_change(item, before, current, subscriptions)
    logger.info(
        "Item %s price %d -> %d; notified %d subscriber(s).",
        item.id, before, current, sent,
    )
    return True


def run_once(
    storage: Optional[Storage] = None,
    fetch_price: Optional[PriceFetcher] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    spacing_seconds: float = ITEM_SPACING_SECONDS,
) -> int:
    storage = storage or Storage()
    storage.ensure_db()
    fetch_price = fetch_price or get_price_fetcher(MARKETPLACE)
    dispatcher = dispatcher or NotificationDispatcher(storage)

    items = storage.watched_items()
    random.shuffle(items)
    logger.debug("Checking %d watched item(s): %s", len(items), [it.id for it in items])

    changed = 0
    for index, item in enumerate(items):
        if index and spacing_seconds > 0:
            time.sleep(random.uniform(spacing_seconds * 0.5, spacing_seconds * 1.5))
        try:
            if check_item(item, storage, fetch_price, dispatcher):
                changed += 1
        except Exception as e:
            logger.exception("Error checking item %s: %s", item.id, e)

    logger.info("Price check finished: %d of %d item(s) changed.", changed, len(items))
    return 0


def run_daemon() -> None:
    logger.info("Starting daemon; poll every %d minutes.", POLL_MINUTES)
    storage = Storage()
    fetch_price = get_price_fetcher(MARKETPLACE)
    dispatcher = NotificationDispatcher(storage)

    while True:
        try:
            seed = time.time_ns()
            random.seed(seed)
            logger.debug("Daemon cycle start with seed %d.", seed)
            run_once(storage, fetch_price, dispatcher)
        except Exception as e:
            logger.exception("Unhandled error in daemon loop: %s", e)

        jitter_sleep_minutes(POLL_MINUTES)


if __name__ == "__main__":
    try:
        if MODE == "once":
            raise SystemExit(run_once())
        else:
            run_daemon()
    except Exception as e:
        logger.exception("Fatal monitor error: %s", e)
        raise SystemExit(2)
