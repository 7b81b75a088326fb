"""
FormStock Service — Item ledger

Eligibility rules and point reads over form_items. The ledger row is the only
source of truth for current_stock; nothing here trusts a client snapshot.
"""
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formstock.models.form import FormItem


def is_eligible(item: FormItem, declared_amount: Decimal | float | int) -> bool:
    """An item is offered only if active, in stock, and its price floor is met."""
    return (
        bool(item.is_active)
        and item.current_stock > 0
        and Decimal(item.price) <= Decimal(str(declared_amount))
    )


def max_claimable(item: FormItem) -> int:
    return min(item.max_per_response, item.current_stock)


def clamp_quantity(item: FormItem, requested: int) -> int:
    """
    Clamp a requested quantity into [1, max_claimable(item)].

    Out-of-range requests are pulled to the nearest bound rather than
    rejected. Callers must check eligibility first: with no stock left the
    upper bound is 0 and the result is 0.
    """
    upper = max_claimable(item)
    if upper < 1:
        return 0
    return max(1, min(requested, upper))


def offer_set(items: Iterable[FormItem], declared_amount: Decimal | float | int) -> list[FormItem]:
    """Items a respondent declaring ``declared_amount`` may choose from."""
    if Decimal(str(declared_amount)) <= 0:
        return []
    return [item for item in items if is_eligible(item, declared_amount)]


async def get_item(db: AsyncSession, item_id: str) -> FormItem | None:
    result = await db.execute(select(FormItem).where(FormItem.id == item_id))
    return result.scalar_one_or_none()


async def load_form_items(
    db: AsyncSession, form_id: str, item_ids: Iterable[str] | None = None
) -> dict[str, FormItem]:
    """Fresh rows for a form's items, keyed by id (optionally restricted to ``item_ids``)."""
    query = select(FormItem).where(FormItem.form_id == form_id)
    if item_ids is not None:
        query = query.where(FormItem.id.in_(list(item_ids)))
    result = await db.execute(query.execution_options(populate_existing=True))
    return {item.id: item for item in result.scalars().all()}


async def read_stock(
    db: AsyncSession, item_id: str, for_update: bool = False
) -> tuple[int, int, int] | None:
    """
    (current_stock, initial_stock, version_id) straight from the row, bypassing
    the identity map. ``for_update`` holds a row lock until the transaction ends.
    """
    query = select(FormItem.current_stock, FormItem.initial_stock, FormItem.version_id).where(
        FormItem.id == item_id
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    row = result.one_or_none()
    if row is None:
        return None
    return row[0], row[1], row[2]
