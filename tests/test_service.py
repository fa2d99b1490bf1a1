from fetchers import avito
from tracker.item_url import underscore_suffix_item_id
from tracker.notifier import NotificationDispatcher, build_confirmation_url
from tracker.service import create_service


def test_create_service_wires_defaults(storage):
    service = create_service(storage, marketplace="avito", api_key="k")

    assert service.storage is storage
    assert service.price_lookup is avito.get_actual_price
    assert isinstance(service.events, NotificationDispatcher)
    assert service.events.storage is storage
    assert service.confirmation_url is build_confirmation_url
    assert service.parse_item_id is underscore_suffix_item_id
    assert service.api_key == "k"
