"""
FormStock Service — Response lifecycle (submit / delete)

Submit:  VALIDATING → PERSISTING → ITEMS_PERSISTED → STOCK_APPLIED → DONE
         Header, claim lines and stock reservations share one transaction,
         so a failure at any step leaves nothing behind.

Delete:  LOADING → AGGREGATED → RESTORED → ITEMS_DELETED → DONE
         Each item's restore and the deletion of its claim lines commit
         together. A failed item keeps its lines, so retrying the whole
         request restores it exactly once.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formstock.core.aggregation import aggregate_quantities
from formstock.core.errors import (
    EligibilityError,
    FormStockError,
    NotFoundError,
    PartialFailure,
    PersistenceError,
    ValidationError,
)
from formstock.core.optimistic_lock import StaleDataError
from formstock.db.ledger import clamp_quantity, is_eligible, load_form_items
from formstock.db.stock_ops import apply_delta, reserve_stock
from formstock.models.form import Form, FormItem, FormResponse, ResponseItem
from formstock.schemas.questions import parse_questions, validate_answers
from formstock.schemas.response import ResponseSubmission

logger = logging.getLogger(__name__)


class SubmissionState(str, PyEnum):
    VALIDATING = "validating"
    PERSISTING = "persisting"
    ITEMS_PERSISTED = "items_persisted"
    STOCK_APPLIED = "stock_applied"
    DONE = "done"
    FAILED = "failed"


class DeletionState(str, PyEnum):
    LOADING = "loading"
    AGGREGATED = "aggregated"
    RESTORED = "restored"
    ITEMS_DELETED = "items_deleted"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SubmissionResult:
    response_id: str | None = None
    granted: dict[str, int] = field(default_factory=dict)
    stock_levels: dict[str, int] = field(default_factory=dict)
    state: SubmissionState = SubmissionState.VALIDATING


@dataclass
class DeletionResult:
    deleted_response_ids: list[str] = field(default_factory=list)
    restored: dict[str, int] = field(default_factory=dict)
    stock_levels: dict[str, int] = field(default_factory=dict)
    failed_item_ids: list[str] = field(default_factory=list)
    state: DeletionState = DeletionState.LOADING


def _ineligibility_reason(item: FormItem, amount: Decimal) -> str:
    if not item.is_active:
        return f"Item '{item.name}' is no longer available."
    if item.current_stock <= 0:
        return f"Item '{item.name}' is out of stock."
    return f"Item '{item.name}' requires a minimum order of {Decimal(item.price):.2f}."


async def _load_open_form(db: AsyncSession, form_id: str) -> Form:
    result = await db.execute(select(Form).where(Form.id == form_id))
    form = result.scalar_one_or_none()
    if form is None or not form.is_active:
        raise NotFoundError("Form not found or no longer accepting responses.")
    return form


async def submit_response(db: AsyncSession, form_id: str, payload: ResponseSubmission) -> SubmissionResult:
    """
    Validate a submission against fresh ledger state and persist it.

    Quantities above an item's cap or its remaining stock are clamped; the
    granted quantities are what the claim lines record and what stock loses.
    """
    outcome = SubmissionResult()
    amount = payload.order_amount

    if amount <= 0:
        raise ValidationError("Order amount must be greater than zero.")
    if not payload.items:
        raise ValidationError("Select at least one item.")

    requested = aggregate_quantities((claim.item_id, claim.quantity) for claim in payload.items)
    requested = {item_id: qty for item_id, qty in requested.items() if qty > 0}
    if not requested:
        raise ValidationError("Select at least one item.")

    try:
        form = await _load_open_form(db, form_id)
        answers = validate_answers(parse_questions(form.custom_questions), payload.answers)
        items = await load_form_items(db, form_id, requested.keys())
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Could not load form %s for submission", form_id)
        raise PersistenceError("Could not load the form. Please retry.") from exc

    granted: dict[str, int] = {}
    for item_id, quantity in requested.items():
        item = items.get(item_id)
        if item is None:
            raise EligibilityError(f"Item '{item_id}' is not part of this form.", item_id=item_id)
        if not is_eligible(item, amount):
            raise EligibilityError(_ineligibility_reason(item, amount), item_id=item_id)
        granted[item_id] = clamp_quantity(item, quantity)

    total = sum(Decimal(items[i].price) * q for i, q in granted.items())
    if total > amount:
        raise ValidationError(
            f"Selected items total {total:.2f}, which exceeds the order amount of {amount:.2f}."
        )

    try:
        outcome.state = SubmissionState.PERSISTING
        response = FormResponse(
            form_id=form_id,
            customer_name=payload.customer_name.strip(),
            customer_document=payload.customer_document.strip(),
            customer_email=str(payload.customer_email),
            representative_name=payload.representative_name.strip(),
            representative_email=str(payload.representative_email),
            gift_negotiated=payload.gift_negotiated.strip(),
            order_amount=amount,
            notes=payload.notes or None,
            answers=answers,
        )
        db.add(response)
        await db.flush()

        lines = {
            item_id: ResponseItem(response_id=response.id, form_item_id=item_id, quantity=quantity)
            for item_id, quantity in granted.items()
        }
        db.add_all(lines.values())
        await db.flush()
        outcome.state = SubmissionState.ITEMS_PERSISTED

        for item_id in sorted(granted):
            taken = await reserve_stock(db, item_id, granted[item_id])
            if taken != granted[item_id]:
                lines[item_id].quantity = taken
                granted[item_id] = taken
        outcome.state = SubmissionState.STOCK_APPLIED

        levels = await db.execute(
            select(FormItem.id, FormItem.current_stock).where(FormItem.id.in_(list(granted)))
        )
        outcome.stock_levels = {item_id: stock for item_id, stock in levels.all()}
        await db.commit()
    except FormStockError:
        await db.rollback()
        outcome.state = SubmissionState.FAILED
        raise
    except (SQLAlchemyError, StaleDataError) as exc:
        await db.rollback()
        outcome.state = SubmissionState.FAILED
        logger.exception("Response submission failed for form %s", form_id)
        raise PersistenceError("Could not save the response. Please retry.") from exc

    outcome.response_id = response.id
    outcome.granted = granted
    outcome.state = SubmissionState.DONE
    logger.info("Response %s stored for form %s: %s", response.id, form_id, granted)
    return outcome


def _normalise_ids(response_ids: Any) -> list[str]:
    if not isinstance(response_ids, list):
        raise ValidationError("responseIds must be a list of response ids.")
    if not all(isinstance(response_id, str) and response_id for response_id in response_ids):
        raise ValidationError("responseIds must contain non-empty strings only.")
    ids = list(dict.fromkeys(response_ids))
    if not ids:
        raise ValidationError("No responses selected.")
    return ids


async def _load_claimed_items(db: AsyncSession, form_id: str, ids: list[str]) -> tuple[list[str], list[str]]:
    """Ids of the form's responses among ``ids`` and the items their claim lines point at."""
    result = await db.execute(
        select(FormResponse.id).where(FormResponse.form_id == form_id, FormResponse.id.in_(ids))
    )
    scoped = list(result.scalars().all())
    if not scoped:
        return [], []
    result = await db.execute(
        select(ResponseItem.form_item_id)
        .where(ResponseItem.response_id.in_(scoped), ResponseItem.form_item_id.is_not(None))
        .distinct()
    )
    return scoped, sorted(result.scalars().all())


async def _release_item_lines(db: AsyncSession, scoped: list[str], item_id: str) -> int:
    """
    Delete one item's claim lines of the given responses and return the
    quantity they held. Lines another request already removed are not
    returned, so their stock is never given back twice.
    """
    result = await db.execute(
        delete(ResponseItem)
        .where(ResponseItem.response_id.in_(scoped), ResponseItem.form_item_id == item_id)
        .returning(ResponseItem.form_item_id, ResponseItem.quantity)
        .execution_options(synchronize_session=False)
    )
    return aggregate_quantities(result.all()).get(item_id, 0)


async def delete_responses(db: AsyncSession, form_id: str, response_ids: Any) -> DeletionResult:
    """
    Delete responses of a form and give their claimed stock back.

    Unknown ids (or ids of another form) are ignored, which makes a retry
    after a partial failure safe. Each item's lines are deleted and its
    stock restored in one transaction, and only the lines that transaction
    actually removed count towards the restore. Raises PartialFailure
    listing the items whose restore failed; their claim lines and parent
    headers are kept.
    """
    outcome = DeletionResult()
    ids = _normalise_ids(response_ids)

    try:
        scoped, item_ids = await _load_claimed_items(db, form_id, ids)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        outcome.state = DeletionState.FAILED
        logger.exception("Could not load claim lines for form %s", form_id)
        raise PersistenceError("Could not load the selected responses.") from exc

    if not scoped:
        outcome.state = DeletionState.DONE
        return outcome
    outcome.state = DeletionState.AGGREGATED

    for item_id in item_ids:
        quantity = 0
        try:
            quantity = await _release_item_lines(db, scoped, item_id)
            level = await apply_delta(db, item_id, quantity) if quantity > 0 else None
            await db.commit()
            if level is not None:
                outcome.stock_levels[item_id] = level
                outcome.restored[item_id] = quantity
        except NotFoundError:
            # item vanished after the load: its lines go, nothing to give back
            await db.rollback()
            logger.warning("Item %s disappeared before its stock could be restored", item_id)
            try:
                await _release_item_lines(db, scoped, item_id)
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                logger.exception("Could not drop claim lines of missing item %s", item_id)
                outcome.failed_item_ids.append(item_id)
        except (SQLAlchemyError, StaleDataError):
            await db.rollback()
            logger.exception("Stock restore failed for item %s (+%d)", item_id, quantity)
            outcome.failed_item_ids.append(item_id)

    if not outcome.failed_item_ids:
        outcome.state = DeletionState.RESTORED

    try:
        await db.execute(
            delete(ResponseItem).where(
                ResponseItem.response_id.in_(scoped), ResponseItem.form_item_id.is_(None)
            )
        )
        outcome.state = DeletionState.ITEMS_DELETED

        still_claimed = await db.execute(
            select(ResponseItem.response_id).where(ResponseItem.response_id.in_(scoped)).distinct()
        )
        keep = set(still_claimed.scalars().all())
        removable = [response_id for response_id in scoped if response_id not in keep]
        removed: list[str] = []
        if removable:
            result = await db.execute(
                delete(FormResponse)
                .where(FormResponse.id.in_(removable))
                .returning(FormResponse.id)
                .execution_options(synchronize_session=False)
            )
            removed = list(result.scalars().all())
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        outcome.state = DeletionState.FAILED
        logger.exception("Stock restored but responses of form %s could not be deleted", form_id)
        raise PersistenceError(
            "Stock was restored but the responses could not be deleted. Please retry."
        ) from exc

    gone = set(removed)
    outcome.deleted_response_ids = [response_id for response_id in scoped if response_id in gone]

    if outcome.failed_item_ids:
        outcome.state = DeletionState.FAILED
        raise PartialFailure(
            "Some responses could not be deleted: stock was not fully restored.",
            failed_item_ids=outcome.failed_item_ids,
            completed={
                "deleted_response_ids": outcome.deleted_response_ids,
                "restored": outcome.restored,
                "stock_levels": outcome.stock_levels,
            },
        )

    outcome.state = DeletionState.DONE
    logger.info(
        "Deleted %d responses of form %s, restored %s",
        len(outcome.deleted_response_ids), form_id, outcome.restored,
    )
    return outcome


async def list_responses(db: AsyncSession, form_id: str) -> list[FormResponse]:
    """Responses of a form, newest first, with claim lines and their items loaded."""
    result = await db.execute(
        select(FormResponse)
        .where(FormResponse.form_id == form_id)
        .options(selectinload(FormResponse.items).selectinload(ResponseItem.form_item))
        .order_by(FormResponse.created_at.desc())
    )
    return list(result.scalars().all())
