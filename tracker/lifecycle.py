# tracker/lifecycle.py
import secrets
from typing import Callable, Optional

from .errors import AlreadyVerified, PriceLookupError, UnknownSubscription, UnknownUser
from .item_url import ItemIdParser, underscore_suffix_item_id
from .logger import get_logger
from .models import (
    ChangeReason,
    ConfirmResult,
    Item,
    Page,
    SubscribeOutcome,
    SubscribeStatus,
    Subscription,
    SubscriptionChanged,
    User,
)
from .storage import Storage

logger = get_logger(__name__)

PriceLookup = Callable[[str, Optional[str]], int]
EventSink = Callable[[SubscriptionChanged], None]
ConfirmationUrlBuilder = Callable[[Subscription, str], str]


def new_verification_code() -> str:
    return secrets.token_urlsafe(24)


class SubscriptionService:
    """
    Decides subscription transitions for (item, user) pairs.

    State is re-read from storage on every call. Events go to ``events`` only
    after the change they describe has been committed.
    """

    def __init__(
        self,
        storage: Storage,
        price_lookup: PriceLookup,
        events: EventSink,
        confirmation_url: ConfirmationUrlBuilder,
        parse_item_id: ItemIdParser = underscore_suffix_item_id,
        api_key: Optional[str] = None,
    ):
        self.storage = storage
        self.price_lookup = price_lookup
        self.events = events
        self.confirmation_url = confirmation_url
        self.parse_item_id = parse_item_id
        self.api_key = api_key

    def subscribe(self, email: str, item_url: str, host: str) -> SubscribeOutcome:
        email = email.strip()
        item_id = self.parse_item_id(item_url)

        existing = self.storage.find_subscription_by_email(item_id, email)
        if existing is not None and existing.verified and not existing.active:
            outcome = self._resubscribe(existing, host)
            if outcome is not None:
                return outcome

        return self._subscribe_new(email, item_url, item_id, host)

    def unsubscribe(self, item_id: str, user_id: int, host: str = "localhost") -> bool:
        subscription = self.storage.find_subscription(item_id, user_id)
        if subscription is None or not self.storage.set_active(item_id, user_id, False):
            logger.info("Unsubscribe for unknown subscription (item=%s, user=%s).", item_id, user_id)
            return False

        saved = self.storage.find_subscription(item_id, user_id) or subscription
        logger.info("Deactivated subscription (item=%s, user=%s).", item_id, user_id)
        self._emit(saved, host, ChangeReason.DEACTIVATED)
        return True

    def confirm(self, item_id: str, verification_code: str, user_id: int) -> ConfirmResult:
        subscription = self.storage.find_subscription(item_id, user_id)
        if subscription is None:
            return ConfirmResult.NOT_FOUND
        if not secrets.compare_digest(
            subscription.verification_code.encode(), (verification_code or "").encode()
        ):
            return ConfirmResult.INVALID_CODE
        # The guarded update decides; the snapshot may be stale
        if subscription.verified or not self.storage.mark_verified(item_id, user_id):
            return ConfirmResult.ALREADY_VERIFIED

        logger.info("Confirmed subscription (item=%s, user=%s).", item_id, user_id)
        return ConfirmResult.CONFIRMED

    def confirm_subscription(self, item_id: str, verification_code: str, user_id: int) -> bool:
        """Same as confirm(), with not-found and already-verified raised as faults."""
        result = self.confirm(item_id, verification_code, user_id)
        if result is ConfirmResult.NOT_FOUND:
            raise UnknownSubscription(item_id, user_id)
        if result is ConfirmResult.ALREADY_VERIFIED:
            raise AlreadyVerified(item_id, user_id)
        return result is ConfirmResult.CONFIRMED

    def get_user_subscriptions(self, user_id: int, page: int = 0, limit: int = 20) -> Page:
        if page < 0:
            raise ValueError(f"page must be >= 0, got {page}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if self.storage.get_user(user_id) is None:
            raise UnknownUser(user_id)
        return self.storage.list_user_subscriptions(user_id, page, limit)

    def _resubscribe(self, subscription: Subscription, host: str) -> Optional[SubscribeOutcome]:
        """Reactivate a verified, inactive subscription; None if another request got there first."""
        if not self.storage.reactivate(subscription.item_id, subscription.user_id):
            logger.info(
                "Subscription (item=%s, user=%s) changed before reactivation; re-checking.",
                subscription.item_id, subscription.user_id,
            )
            return None

        saved = self.storage.find_subscription(subscription.item_id, subscription.user_id) or subscription
        logger.info(
            "Reactivated subscription (item=%s, user=%s).",
            subscription.item_id, subscription.user_id,
        )
        self._emit(saved, host, ChangeReason.RESUBSCRIBED)
        return SubscribeOutcome(
            status=SubscribeStatus.RESUBSCRIBED,
            message="You are subscribed again.",
            subscription=saved,
        )

    def _subscribe_new(self, email: str, item_url: str, item_id: str, host: str) -> SubscribeOutcome:
        try:
            price = self.price_lookup(item_id, self.api_key)
        except PriceLookupError as exc:
            logger.warning("Price lookup for item %s failed: %s", item_id, exc)
            return SubscribeOutcome(status=SubscribeStatus.LOOKUP_FAILED, message=str(exc))

        item = self.storage.get_or_create_item(item_id, item_url, price)
        user = self.storage.get_or_create_user(email)

        duplicate = self._duplicate_outcome(item, user, host)
        if duplicate is not None:
            return duplicate

        created = self.storage.insert_subscription(
            Subscription(
                item_id=item.id,
                user_id=user.id,
                verification_code=new_verification_code(),
                verified=False,
                active=True,
            )
        )
        if created is None:
            # A concurrent request created the pair between the re-check and the insert
            duplicate = self._duplicate_outcome(item, user, host)
            if duplicate is not None:
                return duplicate
            raise RuntimeError(
                f"Subscription (item={item.id}, user={user.id}) neither inserted nor found"
            )

        logger.info("Created subscription (item=%s, user=%s, email=%s).", item.id, user.id, email)
        self._emit(created, host, ChangeReason.CREATED)
        return SubscribeOutcome(
            status=SubscribeStatus.CREATED,
            message=f"Subscribed {email} to {item_url} (item {item.id}). Check your inbox to confirm.",
            subscription=created,
        )

    def _duplicate_outcome(self, item: Item, user: User, host: str) -> Optional[SubscribeOutcome]:
        existing = self.storage.find_subscription(item.id, user.id)
        if existing is None:
            return None

        message = "Subscription already exists."
        url = None
        if not existing.verified:
            url = self.confirmation_url(existing, host)
            message += f" Please confirm your subscription: {url}"

        logger.info("Duplicate subscribe for item=%s, user=%s.", item.id, user.id)
        return SubscribeOutcome(
            status=SubscribeStatus.DUPLICATE,
            message=message,
            subscription=existing,
            confirmation_url=url,
        )

    def _emit(self, subscription: Subscription, host: str, reason: ChangeReason) -> None:
        try:
            self.events(SubscriptionChanged(subscription=subscription, host=host, reason=reason))
        except Exception:
            # The state change is already committed
            logger.exception(
                "Failed to deliver %s event for item=%s, user=%s.",
                reason.value, subscription.item_id, subscription.user_id,
            )
