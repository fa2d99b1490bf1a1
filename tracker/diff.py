# tracker/diff.py
import os
from typing import Optional

PRICE_NOTIFY_THRESHOLD = float(os.getenv("PRICE_NOTIFY_THRESHOLD", "5"))


def price_change_pct(before: Optional[int], after: Optional[int]) -> Optional[float]:
    """
    Signed percentage change from before to after.
    Returns None when either price is unknown (None or negative).
    """
    if before is None or after is None or before < 0 or after < 0:
        return None
    if before == 0:
        return 0.0 if after == 0 else 100.0
    return (after - before) * 100.0 / before


def is_notable_change(
    before: Optional[int], after: Optional[int], threshold: float = PRICE_NOTIFY_THRESHOLD
) -> bool:
    if before == after:
        return False

    pct = price_change_pct(before, after)
    # Unknown on either side is always worth reporting
    if pct is None:
        return True
    return abs(pct) >= threshold
