# tracker/models.py
import enum
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Item:
    """
    A tracked marketplace listing.
    Prices are whole currency units as reported by the marketplace.
    """
    id: str
    url: str
    price: int = -1


@dataclass
class User:
    id: int
    email: str


@dataclass
class Subscription:
    """
    One user's interest in one item, unique per (item_id, user_id).
    ``email`` is joined in from the owning user when read from storage.
    """
    item_id: str
    user_id: int
    verification_code: str
    verified: bool = False
    active: bool = True
    email: str = ""
    created_at: str = ""


class ChangeReason(str, enum.Enum):
    CREATED = "created"
    RESUBSCRIBED = "resubscribed"
    DEACTIVATED = "deactivated"


@dataclass(frozen=True)
class SubscriptionChanged:
    subscription: Subscription
    host: str
    reason: ChangeReason


class SubscribeStatus(str, enum.Enum):
    RESUBSCRIBED = "resubscribed"
    LOOKUP_FAILED = "lookup_failed"
    DUPLICATE = "duplicate"
    CREATED = "created"


@dataclass
class SubscribeOutcome:
    status: SubscribeStatus
    message: str
    subscription: Optional[Subscription] = None
    # Only set for a duplicate that still awaits confirmation
    confirmation_url: Optional[str] = None


class ConfirmResult(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_CODE = "invalid_code"
    ALREADY_VERIFIED = "already_verified"
    CONFIRMED = "confirmed"


@dataclass
class Page:
    items: List[Subscription] = field(default_factory=list)
    page: int = 0
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
