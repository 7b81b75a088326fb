"""
FormStock Service — Form administration and analytics

Owner-side persistence: forms, items, manual stock edits, duplication and
the analytics rollup. Every lookup is scoped to the calling owner.
"""
import logging
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formstock.core.aggregation import aggregate_quantities
from formstock.core.config import get_settings
from formstock.core.errors import NotFoundError
from formstock.core.optimistic_lock import StaleDataError, with_optimistic_retry
from formstock.models.form import Form, FormItem, FormResponse, ResponseItem
from formstock.schemas.form import FormCreate, FormUpdate, ItemCreate, ItemUpdate

settings = get_settings()
logger = logging.getLogger(__name__)


def _new_item(form_id: str, payload: ItemCreate) -> FormItem:
    return FormItem(
        form_id=form_id,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        initial_stock=payload.initial_stock,
        current_stock=payload.initial_stock,
        max_per_response=payload.max_per_response,
        is_active=payload.is_active,
    )


async def get_owned_form(db: AsyncSession, form_id: str, owner_id: str) -> Form:
    result = await db.execute(
        select(Form)
        .where(Form.id == form_id, Form.owner_id == owner_id)
        .options(selectinload(Form.items))
        .execution_options(populate_existing=True)
    )
    form = result.scalar_one_or_none()
    if form is None:
        raise NotFoundError("Form not found.")
    return form


async def get_public_form(db: AsyncSession, form_id: str) -> Form:
    result = await db.execute(
        select(Form)
        .where(Form.id == form_id)
        .options(selectinload(Form.items))
        .execution_options(populate_existing=True)
    )
    form = result.scalar_one_or_none()
    if form is None or not form.is_active:
        raise NotFoundError("Form not found or no longer accepting responses.")
    return form


async def list_forms(db: AsyncSession, owner_id: str) -> list[tuple[Form, int]]:
    """Owner's forms, newest first, each with its response count."""
    counts = (
        select(FormResponse.form_id, func.count(FormResponse.id).label("response_count"))
        .group_by(FormResponse.form_id)
        .subquery()
    )
    result = await db.execute(
        select(Form, func.coalesce(counts.c.response_count, 0))
        .outerjoin(counts, counts.c.form_id == Form.id)
        .where(Form.owner_id == owner_id)
        .order_by(Form.created_at.desc())
    )
    return [(form, count) for form, count in result.all()]


async def create_form(db: AsyncSession, owner_id: str, payload: FormCreate) -> Form:
    form = Form(
        owner_id=owner_id,
        title=payload.title,
        description=payload.description,
        is_active=payload.is_active,
        is_public=payload.is_public,
        custom_questions=[q.model_dump() for q in payload.custom_questions],
    )
    db.add(form)
    await db.flush()
    db.add_all(_new_item(form.id, item) for item in payload.items)
    await db.commit()
    logger.info("Form %s created by %s with %d items", form.id, owner_id, len(payload.items))
    return await get_owned_form(db, form.id, owner_id)


async def update_form(db: AsyncSession, form: Form, payload: FormUpdate) -> Form:
    changes = payload.model_dump(exclude_unset=True)
    if "custom_questions" in changes and payload.custom_questions is not None:
        changes["custom_questions"] = [q.model_dump() for q in payload.custom_questions]
    for key, value in changes.items():
        if value is None and key in ("title", "is_active", "is_public", "custom_questions"):
            continue
        setattr(form, key, value)
    await db.commit()
    return await get_owned_form(db, form.id, form.owner_id)


async def delete_form(db: AsyncSession, form: Form) -> None:
    """Drop a form with its responses, claim lines and items. No stock is restored."""
    response_ids = select(FormResponse.id).where(FormResponse.form_id == form.id)
    await db.execute(delete(ResponseItem).where(ResponseItem.response_id.in_(response_ids)))
    await db.execute(delete(FormResponse).where(FormResponse.form_id == form.id))
    await db.execute(delete(FormItem).where(FormItem.form_id == form.id))
    await db.execute(delete(Form).where(Form.id == form.id))
    await db.commit()
    logger.info("Form %s deleted", form.id)


async def duplicate_form(db: AsyncSession, form: Form, owner_id: str) -> Form:
    """Copy a form and its items with fresh stock; responses are not copied."""
    copy = Form(
        owner_id=owner_id,
        title=f"{form.title} (copy)"[:255],
        description=form.description,
        is_active=form.is_active,
        is_public=form.is_public,
        custom_questions=list(form.custom_questions or []),
    )
    db.add(copy)
    await db.flush()
    db.add_all(
        FormItem(
            form_id=copy.id,
            name=item.name,
            description=item.description,
            price=item.price,
            initial_stock=item.initial_stock,
            current_stock=item.initial_stock,
            max_per_response=item.max_per_response,
            is_active=item.is_active,
        )
        for item in form.items
    )
    await db.commit()
    logger.info("Form %s duplicated as %s", form.id, copy.id)
    return await get_owned_form(db, copy.id, owner_id)


async def add_item(db: AsyncSession, form: Form, payload: ItemCreate) -> FormItem:
    item = _new_item(form.id, payload)
    db.add(item)
    await db.commit()
    return item


async def _get_form_item(db: AsyncSession, form: Form, item_id: str) -> FormItem:
    result = await db.execute(
        select(FormItem)
        .where(FormItem.id == item_id, FormItem.form_id == form.id)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError("Item not found.")
    return item


@with_optimistic_retry()
async def update_item(db: AsyncSession, form: Form, item_id: str, payload: ItemUpdate) -> FormItem:
    """
    Owner edit of an item. Stock fields are written with a version check so a
    concurrent submission is never overwritten silently; setting
    current_stock keeps initial_stock >= current_stock.
    """
    item = await _get_form_item(db, form, item_id)
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key == "description"
    }

    initial = changes.get("initial_stock", item.initial_stock)
    if "current_stock" in changes:
        initial = max(initial, changes["current_stock"])
        changes["initial_stock"] = initial
    elif "initial_stock" in changes and initial < item.current_stock:
        changes["initial_stock"] = item.current_stock

    expected_version = item.version_id
    values = dict(changes)
    if "initial_stock" in values or "current_stock" in values:
        values["version_id"] = expected_version + 1

    if values:
        result = await db.execute(
            update(FormItem)
            .where(FormItem.id == item.id, FormItem.version_id == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise StaleDataError("Item changed while being edited.")
        await db.commit()
        logger.info("Item %s edited: %s", item.id, sorted(changes))

    return await _get_form_item(db, form, item_id)


async def delete_item(db: AsyncSession, form: Form, item_id: str) -> None:
    """Remove an item. Claim lines keep their response but lose the item link."""
    item = await _get_form_item(db, form, item_id)
    await db.execute(
        update(ResponseItem).where(ResponseItem.form_item_id == item.id).values(form_item_id=None)
    )
    await db.execute(delete(FormItem).where(FormItem.id == item.id))
    await db.commit()


async def form_analytics(db: AsyncSession, form: Form) -> dict:
    """Totals, most requested items and latest responses for one form."""
    responses = await db.execute(
        select(FormResponse.id, FormResponse.created_at, FormResponse.customer_name, FormResponse.order_amount)
        .where(FormResponse.form_id == form.id)
        .order_by(FormResponse.created_at.desc())
    )
    rows = responses.all()

    lines = await db.execute(
        select(ResponseItem.form_item_id, ResponseItem.quantity)
        .join(FormResponse, FormResponse.id == ResponseItem.response_id)
        .where(FormResponse.form_id == form.id)
    )
    requested = aggregate_quantities(lines.all())
    names = {item.id: item.name for item in form.items}
    ranked = sorted(
        ((item_id, qty) for item_id, qty in requested.items() if item_id in names),
        key=lambda pair: (-pair[1], names[pair[0]]),
    )[: settings.ANALYTICS_TOP_ITEMS]

    return {
        "form_id": form.id,
        "total_responses": len(rows),
        "total_items": len(form.items),
        "total_stock_used": sum(item.initial_stock - item.current_stock for item in form.items),
        "total_sales_amount": float(sum((Decimal(r.order_amount) for r in rows), Decimal("0"))),
        "most_requested_items": [
            {"item_id": item_id, "name": names[item_id], "quantity": qty} for item_id, qty in ranked
        ],
        "recent_responses": [
            {
                "id": r.id,
                "created_at": r.created_at,
                "customer_name": r.customer_name,
                "order_amount": float(r.order_amount),
            }
            for r in rows[: settings.ANALYTICS_RECENT_RESPONSES]
        ],
    }
