import pytest

from tracker.errors import PriceLookupError
from tracker.lifecycle import SubscriptionService
from tracker.notifier import build_confirmation_url
from tracker.storage import Storage


class StubPriceLookup:
    """Price gateway stand-in that records calls."""

    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.calls = []

    def __call__(self, item_id, api_key=None):
        self.calls.append((item_id, api_key))
        if self.error is not None:
            raise PriceLookupError(self.error)
        return self.prices.get(item_id, 1000)


class RecordingSink:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def reasons(self):
        return [e.reason.value for e in self.events]


@pytest.fixture
def storage(tmp_path):
    s = Storage(str(tmp_path / "test.sqlite3"))
    s.ensure_db()
    return s


@pytest.fixture
def prices():
    return StubPriceLookup()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(storage, prices, sink):
    return SubscriptionService(
        storage=storage,
        price_lookup=prices,
        events=sink,
        confirmation_url=build_confirmation_url,
        api_key="test-key",
    )
