"""
FormStock Service — Owner response routes (list / bulk delete)
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from formstock.api.deps import as_http_exception, get_current_owner
from formstock.core.errors import FormStockError, PartialFailure
from formstock.core.stock_cache import cache_stock_levels
from formstock.db.database import get_db
from formstock.db.form_ops import get_owned_form
from formstock.db.response_ops import delete_responses, list_responses
from formstock.schemas.response import (
    DeleteResponsesRequest,
    DeleteResponsesResult,
    ResponseItemRead,
    ResponseRead,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/forms/{form_id}/responses", tags=["responses"])


@router.get("", response_model=list[ResponseRead])
async def get_responses(form_id: str, owner_id: str = Depends(get_current_owner), db: AsyncSession = Depends(get_db)):
    """All responses of an owned form, newest first, with their claimed items."""
    try:
        await get_owned_form(db, form_id, owner_id)
    except FormStockError as exc:
        raise as_http_exception(exc)

    responses = await list_responses(db, form_id)
    return [
        ResponseRead(
            id=r.id,
            created_at=r.created_at,
            customer_name=r.customer_name,
            customer_document=r.customer_document,
            customer_email=r.customer_email,
            representative_name=r.representative_name,
            representative_email=r.representative_email,
            gift_negotiated=r.gift_negotiated,
            sale_amount=float(r.order_amount),
            notes=r.notes,
            answers=r.answers or {},
            response_items=[
                ResponseItemRead(
                    id=line.id,
                    quantity=line.quantity,
                    item_id=line.form_item_id,
                    item_name=line.form_item.name if line.form_item else None,
                    item_price=float(line.form_item.price) if line.form_item else None,
                )
                for line in r.items
            ],
        )
        for r in responses
    ]


@router.post("/delete", response_model=DeleteResponsesResult)
async def remove_responses(
    form_id: str,
    payload: DeleteResponsesRequest,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete the selected responses and restore the stock they claimed.
    Partial restore failures return 500 with the item ids to retry.
    """
    try:
        await get_owned_form(db, form_id, owner_id)
        outcome = await delete_responses(db, form_id, payload.response_ids)
    except PartialFailure as exc:
        logger.error("Partial delete on form %s, failed items: %s", form_id, exc.failed_item_ids)
        await cache_stock_levels(exc.completed.get("stock_levels", {}))
        raise as_http_exception(exc)
    except FormStockError as exc:
        raise as_http_exception(exc)

    await cache_stock_levels(outcome.stock_levels)

    return DeleteResponsesResult(
        deleted_response_ids=outcome.deleted_response_ids,
        restored=outcome.restored,
    )
