"""
FormStock Service — Response aggregation

Groups claimed (item, quantity) pairs by item. Used when a submission lists
the same item twice and when a bulk delete has to work out how much stock
each item gets back.
"""
from collections.abc import Iterable


def aggregate_quantities(pairs: Iterable[tuple[str | None, int | None]]) -> dict[str, int]:
    """
    Sum quantities per item id.

    Pairs without an item id are skipped (their item was deleted). Null,
    zero and negative quantities add nothing, so a restore never subtracts.
    The result does not depend on the order of ``pairs``.
    """
    totals: dict[str, int] = {}
    for item_id, quantity in pairs:
        if not item_id:
            continue
        totals[item_id] = totals.get(item_id, 0) + max(quantity or 0, 0)
    return totals
