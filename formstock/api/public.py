"""
FormStock Service — Public (respondent) routes

Flow for a submission:
  1. Idempotency-Key replay handled by IdempotencyMiddleware
  2. Eligibility re-derived from the ledger, quantities clamped
  3. Header + claim lines + stock reservations in one transaction
  4. Redis stock cache refreshed (best effort)
"""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from formstock.api.deps import as_http_exception
from formstock.core.errors import FormStockError
from formstock.core.stock_cache import cache_stock_levels
from formstock.db.database import get_db
from formstock.db.form_ops import get_public_form
from formstock.db.ledger import max_claimable, offer_set
from formstock.db.response_ops import submit_response
from formstock.schemas.form import PublicFormRead, PublicItemRead
from formstock.schemas.questions import parse_questions
from formstock.schemas.response import GrantedClaim, ResponseSubmission, SubmissionResponse

router = APIRouter(prefix="/public/forms", tags=["public"])


@router.get("/{form_id}", response_model=PublicFormRead)
async def get_form_offer(
    form_id: str,
    order_amount: Decimal = Query(Decimal("0"), ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Form header plus the items a respondent declaring ``order_amount`` may claim."""
    try:
        form = await get_public_form(db, form_id)
    except FormStockError as exc:
        raise as_http_exception(exc)

    offered = offer_set(form.items, order_amount)
    await cache_stock_levels({item.id: item.current_stock for item in form.items})

    return PublicFormRead(
        id=form.id,
        title=form.title,
        description=form.description,
        custom_questions=parse_questions(form.custom_questions),
        order_amount=float(order_amount),
        items=[
            PublicItemRead(
                id=item.id,
                name=item.name,
                description=item.description,
                price=float(item.price),
                current_stock=item.current_stock,
                max_per_response=item.max_per_response,
                max_claimable=max_claimable(item),
            )
            for item in offered
        ],
    )


@router.post("/{form_id}/responses", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_response(form_id: str, payload: ResponseSubmission, db: AsyncSession = Depends(get_db)):
    """Submit a response claiming items. Returns the new response id and granted quantities."""
    try:
        outcome = await submit_response(db, form_id, payload)
    except FormStockError as exc:
        raise as_http_exception(exc)

    await cache_stock_levels(outcome.stock_levels)

    return SubmissionResponse(
        response_id=outcome.response_id,
        items=[GrantedClaim(item_id=item_id, quantity=qty) for item_id, qty in outcome.granted.items()],
    )
