# tracker/item_url.py
import re
from typing import Callable
from urllib.parse import urlparse

from .errors import InvalidItemUrl

ItemIdParser = Callable[[str], str]

_ITEM_ID_RE = re.compile(r"^[A-Za-z0-9]+$")


def underscore_suffix_item_id(item_url: str) -> str:
    """
    Return the marketplace item id from a listing URL.

    Avito-style listing URLs end in ``<slug>_<id>``, e.g.
    ``https://www.avito.ru/moskva/telefony/iphone_12_2345678901`` -> ``2345678901``.
    Query string and fragment are ignored.
    """
    if not item_url or not item_url.strip():
        raise InvalidItemUrl(item_url or "", "empty URL")

    path = urlparse(item_url.strip()).path.rstrip("/")
    if "_" not in path:
        raise InvalidItemUrl(item_url, "no '_' separator before the item id")

    item_id = path.rsplit("_", 1)[1]
    if not _ITEM_ID_RE.match(item_id):
        raise InvalidItemUrl(item_url, f"malformed item id {item_id!r}")
    return item_id
