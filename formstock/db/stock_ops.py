"""
FormStock Service — Stock mutation with atomic updates and optimistic locking

Two ways to move current_stock:
  - apply_delta:   signed change (restores, manual corrections). Clamped at 0,
                   optionally capped at initial_stock on restore.
  - reserve_stock: guarded decrement used by submissions. Never clamps a
                   decrement silently; it shrinks the granted quantity instead.

Preferred path is a single UPDATE computing the new value in SQL. When that
statement fails (or STOCK_ATOMIC_UPDATES is off) the version_id column acts
as the conflict detector:
  - READ:  fetch current stock + version_id
  - WRITE: UPDATE WHERE version_id = <read_version>
  - If another transaction committed first → StaleDataError → retry
"""
import asyncio
import logging

from sqlalchemy import case, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formstock.core.config import get_settings
from formstock.core.errors import EligibilityError, NotFoundError
from formstock.core.optimistic_lock import StaleDataError, backoff_delay, with_optimistic_retry
from formstock.db.ledger import read_stock
from formstock.models.form import FormItem

settings = get_settings()
logger = logging.getLogger(__name__)


def bound_stock(current: int, initial: int, delta: int, cap_at_initial: bool | None = None) -> int:
    """
    New stock after applying ``delta``: never negative, and on restore never
    lifted above initial_stock when capping is on. A row already above its
    initial stock (manual edit in flight) is not pushed down by a restore.
    """
    if cap_at_initial is None:
        cap_at_initial = settings.STOCK_RESTORE_CAP_AT_INITIAL
    new_stock = max(0, current + delta)
    if delta > 0 and cap_at_initial and new_stock > initial:
        new_stock = max(current, initial)
    return new_stock


def _bounded_stock_expr(delta: int):
    """SQL twin of bound_stock, evaluated against the row being updated."""
    new_value = FormItem.current_stock + delta
    if delta < 0:
        return case((new_value < 0, 0), else_=new_value)
    if settings.STOCK_RESTORE_CAP_AT_INITIAL:
        return case(
            (new_value <= FormItem.initial_stock, new_value),
            (FormItem.current_stock >= FormItem.initial_stock, FormItem.current_stock),
            else_=FormItem.initial_stock,
        )
    return new_value


async def _apply_delta_atomic(db: AsyncSession, item_id: str, delta: int) -> int:
    async with db.begin_nested():
        # row stays locked until commit, so `before` is what the UPDATE sees
        before = await read_stock(db, item_id, for_update=True)
        if before is None:
            raise NotFoundError(f"Item '{item_id}' not found.")
        result = await db.execute(
            update(FormItem)
            .where(FormItem.id == item_id)
            .values(current_stock=_bounded_stock_expr(delta), version_id=FormItem.version_id + 1)
            .returning(FormItem.current_stock, FormItem.initial_stock)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"Item '{item_id}' not found.")

    new_stock, initial = row
    if new_stock != before[0] + delta:
        logger.warning(
            "Stock delta clamped for %s: %d%+d landed on %d (initial=%d)",
            item_id, before[0], delta, new_stock, initial,
        )
    return new_stock


@with_optimistic_retry()
async def _apply_delta_versioned(db: AsyncSession, item_id: str, delta: int) -> int:
    row = await read_stock(db, item_id)
    if row is None:
        raise NotFoundError(f"Item '{item_id}' not found.")

    current, initial, version = row
    new_stock = bound_stock(current, initial, delta)

    async with db.begin_nested():
        result = await db.execute(
            update(FormItem)
            .where(FormItem.id == item_id, FormItem.version_id == version)
            .values(current_stock=new_stock, version_id=version + 1)
            .execution_options(synchronize_session=False)
        )
    if result.rowcount == 0:
        # version moved on since read_stock
        raise StaleDataError("Optimistic lock conflict: item version changed concurrently.")

    if new_stock != current + delta:
        logger.warning(
            "Stock delta clamped for %s: %d%+d landed on %d (initial=%d)",
            item_id, current, delta, new_stock, initial,
        )
    return new_stock


async def apply_delta(db: AsyncSession, item_id: str, delta: int) -> int:
    """
    Apply a signed delta to one item's current_stock and return the new value.

    The write joins the caller's transaction; committing is the caller's job.
    Raises NotFoundError for an unknown item and StaleDataError when the
    version-checked path keeps losing races.
    """
    if delta == 0:
        row = await read_stock(db, item_id)
        if row is None:
            raise NotFoundError(f"Item '{item_id}' not found.")
        return row[0]

    if settings.STOCK_ATOMIC_UPDATES:
        try:
            return await _apply_delta_atomic(db, item_id, delta)
        except SQLAlchemyError:
            logger.warning(
                "Atomic stock update failed for %s, falling back to version check",
                item_id, exc_info=True,
            )

    return await _apply_delta_versioned(db, item_id, delta)


async def reserve_stock(db: AsyncSession, item_id: str, requested: int) -> int:
    """
    Take up to ``requested`` units of an item and return how many were granted.

    The decrement only lands if the row still holds enough stock (atomic
    path) or still carries the version we read (fallback path). When another
    submission got there first the live stock is re-read and the quantity
    shrunk to what is left. With nothing left, raises EligibilityError.
    """
    if requested < 1:
        raise ValueError("requested quantity must be at least 1")

    quantity = requested
    attempts = settings.STOCK_RESERVE_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        row = await read_stock(db, item_id)
        if row is None:
            raise EligibilityError(f"Item '{item_id}' no longer exists.", item_id=item_id)

        available, _initial, version = row
        if available <= 0:
            raise EligibilityError(f"Item '{item_id}' is out of stock.", item_id=item_id)
        if quantity > available:
            logger.warning(
                "Item %s has %d left, reducing claim from %d", item_id, available, quantity,
            )
            quantity = available

        if settings.STOCK_ATOMIC_UPDATES:
            guard = FormItem.current_stock >= quantity
        else:
            guard = FormItem.version_id == version

        result = await db.execute(
            update(FormItem)
            .where(FormItem.id == item_id, guard)
            .values(current_stock=FormItem.current_stock - quantity, version_id=FormItem.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return quantity

        if attempt < attempts:
            delay = backoff_delay(attempt)
            logger.warning(
                "Stock reservation conflict on %s (attempt %d/%d), retrying in %.3fs",
                item_id, attempt, attempts, delay,
            )
            await asyncio.sleep(delay)

    raise StaleDataError(f"Could not reserve stock for '{item_id}' after {attempts} attempts.")
