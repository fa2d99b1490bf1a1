# tracker/notifier.py
import os
import smtplib
from typing import Callable, Iterable, Optional
from urllib.parse import urlencode

from .emailer import send_email
from .logger import get_logger
from .models import ChangeReason, Item, Subscription, SubscriptionChanged
from .report_html import (
    build_confirmation_html,
    build_confirmation_text,
    build_price_change_html,
    build_price_change_text,
    build_status_text,
)
from .storage import Storage

logger = get_logger(__name__)

CONFIRM_SCHEME = os.getenv("CONFIRM_SCHEME", "https").strip() or "https"
CONFIRM_PATH = os.getenv("CONFIRM_PATH", "/subscriptions/confirm")

SUBJECT_PREFIX = "[Listing Watch]"

Sender = Callable[[str, Optional[str], str, list[str]], bool]


def build_confirmation_url(subscription: Subscription, host: str) -> str:
    """Link the subscriber follows to confirm; host may carry its own scheme."""
    base = (host or "localhost").strip().rstrip("/")
    if "://" not in base:
        base = f"{CONFIRM_SCHEME}://{base}"
    query = urlencode(
        {
            "itemId": subscription.item_id,
            "userId": subscription.user_id,
            "code": subscription.verification_code,
        }
    )
    return f"{base}{CONFIRM_PATH}?{query}"


class NotificationDispatcher:
    """
    Consumes SubscriptionChanged events and mails the subscriber.
    Instances are callable so they can be handed to SubscriptionService as
    its event channel.
    """

    def __init__(self, storage: Storage, send: Sender = send_email):
        self.storage = storage
        self.send = send

    def __call__(self, event: SubscriptionChanged) -> None:
        self.dispatch(event)

    def dispatch(self, event: SubscriptionChanged) -> bool:
        sub = event.subscription
        if not sub.email:
            logger.error(
                "Subscription (item=%s, user=%s) has no email; dropping %s event.",
                sub.item_id, sub.user_id, event.reason.value,
            )
            return False

        item = self.storage.get_item(sub.item_id)

        if event.reason is ChangeReason.CREATED:
            url = build_confirmation_url(sub, event.host)
            subject = f"{SUBJECT_PREFIX} Confirm your subscription to item {sub.item_id}"
            html_body = build_confirmation_html(sub, item, url)
            text_body = build_confirmation_text(sub, item, url)
        else:
            verb = "resumed" if event.reason is ChangeReason.RESUBSCRIBED else "stopped"
            subject = f"{SUBJECT_PREFIX} Notifications {verb} for item {sub.item_id}"
            html_body = None
            text_body = build_status_text(sub, item, event.reason)

        logger.debug("Dispatching %s notification to %s", event.reason.value, sub.email)
        try:
            return self.send(subject, html_body, text_body, [sub.email])
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send %s notification to %s for item %s: %s",
                event.reason.value, sub.email, sub.item_id, e,
            )
            raise

    def send_price_change(
        self, item: Item, before: int, after: int, subscriptions: Iterable[Subscription]
    ) -> int:
        """Mail a price-change report to each subscriber; returns how many were sent."""
        recipients = sorted({s.email for s in subscriptions if s.email})
        if not recipients:
            logger.info("No subscribers to notify about item %s.", item.id)
            return 0

        subject = f"{SUBJECT_PREFIX} Price changed for item {item.id}"
        html_body = build_price_change_html(item, before, after)
        text_body = build_price_change_text(item, before, after)

        sent = 0
        # One message per subscriber
        for email in recipients:
            if self.send(subject, html_body, text_body, [email]):
                sent += 1
        return sent
