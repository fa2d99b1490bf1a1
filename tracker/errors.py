# tracker/errors.py


class TrackerError(Exception):
    """Base class for subscription tracking faults callers are expected to handle."""


class PriceLookupError(TrackerError):
    """The marketplace price lookup failed or timed out.

    The message is meant for end users and is surfaced verbatim by
    ``SubscriptionService.subscribe``.
    """


class InvalidItemUrl(TrackerError, ValueError):
    """A listing URL did not carry a marketplace item identifier."""

    def __init__(self, url: str, reason: str = "no item identifier found"):
        self.url = url
        super().__init__(f"Invalid item URL {url!r}: {reason}")


class UnknownSubscription(TrackerError):
    def __init__(self, item_id: str, user_id: int):
        self.item_id = item_id
        self.user_id = user_id
        super().__init__(f"Unknown subscription (item={item_id}, user={user_id})")


class AlreadyVerified(TrackerError):
    def __init__(self, item_id: str, user_id: int):
        self.item_id = item_id
        self.user_id = user_id
        super().__init__(f"Subscription already verified (item={item_id}, user={user_id})")


class UnknownUser(TrackerError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"Unknown user with id {user_id}")
