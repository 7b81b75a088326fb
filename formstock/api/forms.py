"""
FormStock Service — Owner form routes (forms, items, duplication, analytics)
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from formstock.api.deps import as_http_exception, get_current_owner
from formstock.core.errors import FormStockError
from formstock.core.optimistic_lock import StaleDataError
from formstock.core.stock_cache import cache_stock_levels
from formstock.db import form_ops
from formstock.db.database import get_db
from formstock.schemas.form import (
    AnalyticsRead,
    FormCreate,
    FormRead,
    FormSummary,
    FormUpdate,
    ItemCreate,
    ItemRead,
    ItemUpdate,
)

router = APIRouter(prefix="/forms", tags=["forms"])


async def _owned(db: AsyncSession, form_id: str, owner_id: str):
    try:
        return await form_ops.get_owned_form(db, form_id, owner_id)
    except FormStockError as exc:
        raise as_http_exception(exc)


@router.post("", response_model=FormRead, status_code=status.HTTP_201_CREATED)
async def create_form(payload: FormCreate, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    return await form_ops.create_form(db, owner_id, payload)


@router.get("", response_model=list[FormSummary])
async def list_forms(owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    rows = await form_ops.list_forms(db, owner_id)
    return [
        FormSummary(
            id=form.id,
            title=form.title,
            is_active=form.is_active,
            is_public=form.is_public,
            created_at=form.created_at,
            response_count=count,
        )
        for form, count in rows
    ]


@router.get("/{form_id}", response_model=FormRead)
async def get_form(form_id: str, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    return await _owned(db, form_id, owner_id)


@router.patch("/{form_id}", response_model=FormRead)
async def update_form(
    form_id: str,
    payload: FormUpdate,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    form = await _owned(db, form_id, owner_id)
    return await form_ops.update_form(db, form, payload)


@router.delete("/{form_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_form(form_id: str, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    form = await _owned(db, form_id, owner_id)
    await form_ops.delete_form(db, form)


@router.post("/{form_id}/duplicate", response_model=FormRead, status_code=status.HTTP_201_CREATED)
async def duplicate_form(form_id: str, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    form = await _owned(db, form_id, owner_id)
    return await form_ops.duplicate_form(db, form, owner_id)


@router.post("/{form_id}/items", response_model=ItemRead, status_code=status.HTTP_201_CREATED)
async def add_item(
    form_id: str,
    payload: ItemCreate,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    form = await _owned(db, form_id, owner_id)
    return await form_ops.add_item(db, form, payload)


@router.patch("/{form_id}/items/{item_id}", response_model=ItemRead)
async def update_item(
    form_id: str,
    item_id: str,
    payload: ItemUpdate,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    """Edit an item. A manual current_stock also lifts initial_stock when it exceeds it."""
    form = await _owned(db, form_id, owner_id)
    try:
        item = await form_ops.update_item(db, form, item_id, payload)
    except FormStockError as exc:
        raise as_http_exception(exc)
    except StaleDataError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Item stock changed concurrently. Reload and try again.",
        )
    await cache_stock_levels({item.id: item.current_stock})
    return item


@router.delete("/{form_id}/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    form_id: str,
    item_id: str,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    form = await _owned(db, form_id, owner_id)
    try:
        await form_ops.delete_item(db, form, item_id)
    except FormStockError as exc:
        raise as_http_exception(exc)


@router.get("/{form_id}/analytics", response_model=AnalyticsRead)
async def get_analytics(form_id: str, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    form = await _owned(db, form_id, owner_id)
    return await form_ops.form_analytics(db, form)
