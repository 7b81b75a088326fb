"""
Submission and bulk deletion of responses against the item ledger.

Covers the three reference scenarios (cap clamping, restore on delete,
racing submissions), conservation of stock, atomic failure handling and
retry after a partial delete.
"""
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import claimed_quantity, response_count, seed_form, stock_of, submission
from formstock.core.errors import (
    EligibilityError,
    NotFoundError,
    PartialFailure,
    PersistenceError,
    ValidationError,
)
from formstock.db import response_ops
from formstock.db.database import SessionLocal
from formstock.db.form_ops import delete_item
from formstock.db.response_ops import DeletionState, SubmissionState, delete_responses, submit_response
from formstock.models.form import FormItem, FormResponse, ResponseItem
from formstock.schemas.response import ResponseSubmission


async def submit(db, form_id, items, order_amount=100, **overrides):
    payload = ResponseSubmission.model_validate(submission(items, order_amount=order_amount, **overrides))
    return await submit_response(db, form_id, payload)


async def lines_of(db, response_id):
    result = await db.execute(
        select(ResponseItem.form_item_id, ResponseItem.quantity).where(ResponseItem.response_id == response_id)
    )
    return dict(result.all())


# ─── Scenarios ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_quantity_above_cap_is_clamped(session):
    """initial 5, cap 3: asking for 10 grants 3 and leaves 2."""
    form, (item,) = await seed_form(session, [{"initial_stock": 5, "max_per_response": 3, "price": 50}])

    outcome = await submit(session, form.id, [(item.id, 10)])

    assert outcome.state == SubmissionState.DONE
    assert outcome.granted == {item.id: 3}
    assert outcome.stock_levels == {item.id: 2}
    assert await lines_of(session, outcome.response_id) == {item.id: 3}
    assert await stock_of(session, item.id) == 2


@pytest.mark.asyncio
async def test_claim_then_delete_round_trips_stock(session):
    """Stock 10, price 50, cap 2: ordering 100 and claiming 2 leaves 8; deleting restores 10."""
    form, (item,) = await seed_form(session, [{"initial_stock": 10, "price": 50, "max_per_response": 2}])

    outcome = await submit(session, form.id, [(item.id, 2)], order_amount=100)
    assert outcome.granted == {item.id: 2}
    assert await stock_of(session, item.id) == 8

    deleted = await delete_responses(session, form.id, [outcome.response_id])

    assert deleted.state == DeletionState.DONE
    assert deleted.restored == {item.id: 2}
    assert deleted.deleted_response_ids == [outcome.response_id]
    assert await stock_of(session, item.id) == 10
    assert await response_count(session, form.id) == 0
    assert await claimed_quantity(session, item.id) == 0


@pytest.mark.asyncio
async def test_deleting_several_responses_sums_their_claims(session):
    form, (item,) = await seed_form(session, [{"initial_stock": 5, "max_per_response": 5}])
    first = await submit(session, form.id, [(item.id, 2)])
    second = await submit(session, form.id, [(item.id, 3)])
    assert await stock_of(session, item.id) == 0

    outcome = await delete_responses(session, form.id, [first.response_id, second.response_id, first.response_id])

    assert outcome.restored == {item.id: 5}
    assert sorted(outcome.deleted_response_ids) == sorted([first.response_id, second.response_id])
    assert await stock_of(session, item.id) == 5


@pytest.mark.asyncio
async def test_racing_submission_gets_what_is_left(session, monkeypatch):
    """
    Both respondents loaded the form while 5 units were left and each asks
    for 3. The first gets 3; the second is granted the remaining 2.
    """
    form, (item,) = await seed_form(session, [{"initial_stock": 5, "max_per_response": 3}])
    snapshot = FormItem(
        id=item.id,
        form_id=form.id,
        name=item.name,
        price=item.price,
        initial_stock=5,
        current_stock=5,
        max_per_response=3,
        is_active=True,
    )

    async def stale_items(db, form_id, item_ids=None):
        return {item.id: snapshot}

    first = await submit(session, form.id, [(item.id, 3)])
    assert first.granted == {item.id: 3}

    monkeypatch.setattr(response_ops, "load_form_items", stale_items)
    second = await submit(session, form.id, [(item.id, 3)])

    assert second.granted == {item.id: 2}
    assert await lines_of(session, second.response_id) == {item.id: 2}
    assert await stock_of(session, item.id) == 0

    with pytest.raises(EligibilityError):
        await submit(session, form.id, [(item.id, 1)])
    assert await response_count(session, form.id) == 2
    assert await stock_of(session, item.id) == 0


# ─── Submission rules ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_duplicate_claims_for_one_item_are_merged(session):
    form, (item,) = await seed_form(session, [{"initial_stock": 5, "max_per_response": 3}])

    outcome = await submit(session, form.id, [(item.id, 1), (item.id, 1)])

    assert outcome.granted == {item.id: 2}
    assert await lines_of(session, outcome.response_id) == {item.id: 2}


@pytest.mark.asyncio
async def test_price_floor_above_order_amount(session):
    form, (item,) = await seed_form(session, [{"price": 150}])

    with pytest.raises(EligibilityError) as exc_info:
        await submit(session, form.id, [(item.id, 1)], order_amount=100)

    assert exc_info.value.item_id == item.id
    assert await response_count(session, form.id) == 0
    assert await stock_of(session, item.id) == 10


@pytest.mark.asyncio
async def test_inactive_item_cannot_be_claimed(session):
    form, (item,) = await seed_form(session, [{"is_active": False}])

    with pytest.raises(EligibilityError, match="no longer available"):
        await submit(session, form.id, [(item.id, 1)])


@pytest.mark.asyncio
async def test_item_of_another_form(session):
    form, _ = await seed_form(session, [{}])
    _, (foreign,) = await seed_form(session, [{}])

    with pytest.raises(EligibilityError):
        await submit(session, form.id, [(foreign.id, 1)])
    assert await stock_of(session, foreign.id) == 10


@pytest.mark.asyncio
async def test_selection_total_above_order_amount(session):
    form, (item,) = await seed_form(session, [{"price": 40, "max_per_response": 3}])

    with pytest.raises(ValidationError, match="exceeds the order amount"):
        await submit(session, form.id, [(item.id, 3)], order_amount=100)
    assert await stock_of(session, item.id) == 10


@pytest.mark.asyncio
async def test_non_positive_order_amount(session):
    form, (item,) = await seed_form(session, [{}])

    with pytest.raises(ValidationError):
        await submit(session, form.id, [(item.id, 1)], order_amount=0)


@pytest.mark.asyncio
async def test_submission_without_items(session):
    form, _ = await seed_form(session, [{}])

    with pytest.raises(ValidationError):
        await submit(session, form.id, [])


@pytest.mark.asyncio
async def test_closed_form_rejects_submissions(session):
    form, (item,) = await seed_form(session, [{}], is_active=False)

    with pytest.raises(NotFoundError):
        await submit(session, form.id, [(item.id, 1)])


@pytest.mark.asyncio
async def test_answers_are_checked_and_stored(session):
    questions = [{"id": "q-size", "type": "radio", "label": "Size", "required": True, "options": ["S", "M"]}]
    form, (item,) = await seed_form(session, [{}], questions=questions)

    with pytest.raises(ValidationError):
        await submit(session, form.id, [(item.id, 1)])

    outcome = await submit(
        session, form.id, [(item.id, 1)],
        answers=[{"question_id": "q-size", "type": "radio", "value": "M"}],
    )
    response = await session.get(FormResponse, outcome.response_id)
    assert response.answers == {"q-size": {"type": "radio", "value": "M"}}
    assert response.order_amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_failed_reservation_leaves_nothing_behind(session, monkeypatch):
    form, (first, second) = await seed_form(session, [{"name": "pen"}, {"name": "mug"}])

    async def failing_reserve(db, item_id, requested):
        raise OperationalError("UPDATE form_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(response_ops, "reserve_stock", failing_reserve)

    with pytest.raises(PersistenceError):
        await submit(session, form.id, [(first.id, 1), (second.id, 1)])

    assert await response_count(session, form.id) == 0
    assert await claimed_quantity(session, first.id) == 0
    assert await stock_of(session, first.id) == 10
    assert await stock_of(session, second.id) == 10


# ─── Deletion rules ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_empty_selection_is_rejected_without_changes(session):
    form, (item,) = await seed_form(session, [{}])
    await submit(session, form.id, [(item.id, 1)])

    with pytest.raises(ValidationError):
        await delete_responses(session, form.id, [])

    assert await stock_of(session, item.id) == 9
    assert await response_count(session, form.id) == 1


@pytest.mark.asyncio
async def test_unknown_and_foreign_ids_are_ignored(session):
    form, (item,) = await seed_form(session, [{}])
    other_form, (other_item,) = await seed_form(session, [{}])
    other = await submit(session, other_form.id, [(other_item.id, 1)])

    outcome = await delete_responses(session, form.id, ["does-not-exist", other.response_id])

    assert outcome.state == DeletionState.DONE
    assert outcome.deleted_response_ids == []
    assert await response_count(session, other_form.id) == 1
    assert await stock_of(session, other_item.id) == 9


@pytest.mark.asyncio
async def test_lines_of_deleted_items_are_skipped(session):
    form, (kept, removed) = await seed_form(session, [{"name": "pen"}, {"name": "mug"}])
    outcome = await submit(session, form.id, [(kept.id, 1), (removed.id, 1)])
    await delete_item(session, form, removed.id)

    result = await delete_responses(session, form.id, [outcome.response_id])

    assert result.restored == {kept.id: 1}
    assert result.deleted_response_ids == [outcome.response_id]
    assert await stock_of(session, kept.id) == 10
    assert await response_count(session, form.id) == 0


@pytest.mark.asyncio
async def test_partial_restore_failure_then_retry_restores_once(session, monkeypatch):
    form, (pen, mug) = await seed_form(
        session,
        [{"name": "pen", "initial_stock": 5, "max_per_response": 3},
         {"name": "mug", "initial_stock": 5, "max_per_response": 3}],
    )
    both = await submit(session, form.id, [(pen.id, 2), (mug.id, 1)])
    pen_only = await submit(session, form.id, [(pen.id, 1)])
    ids = [both.response_id, pen_only.response_id]

    real_apply_delta = response_ops.apply_delta

    async def mug_fails(db, item_id, delta):
        if item_id == mug.id:
            raise OperationalError("UPDATE form_items", {}, Exception("connection reset"))
        return await real_apply_delta(db, item_id, delta)

    monkeypatch.setattr(response_ops, "apply_delta", mug_fails)

    with pytest.raises(PartialFailure) as exc_info:
        await delete_responses(session, form.id, ids)

    failure = exc_info.value
    assert failure.failed_item_ids == [mug.id]
    assert failure.detail["failed_item_ids"] == [mug.id]
    assert failure.completed["deleted_response_ids"] == [pen_only.response_id]
    assert await stock_of(session, pen.id) == 5
    assert await stock_of(session, mug.id) == 4
    assert await lines_of(session, both.response_id) == {mug.id: 1}
    assert await response_count(session, form.id) == 1

    monkeypatch.setattr(response_ops, "apply_delta", real_apply_delta)
    retry = await delete_responses(session, form.id, ids)

    assert retry.restored == {mug.id: 1}
    assert retry.deleted_response_ids == [both.response_id]
    assert await stock_of(session, pen.id) == 5
    assert await stock_of(session, mug.id) == 5
    assert await response_count(session, form.id) == 0


@pytest.mark.asyncio
async def test_stock_plus_claims_equals_initial_throughout(session):
    form, items = await seed_form(
        session,
        [{"name": f"gift-{n}", "initial_stock": 6, "max_per_response": 2} for n in range(3)],
    )

    async def assert_conserved():
        for item in items:
            assert await stock_of(session, item.id) + await claimed_quantity(session, item.id) == 6

    responses = []
    for round_ in range(5):
        picks = [(item.id, 1 + (round_ + i) % 3) for i, item in enumerate(items)]
        try:
            outcome = await submit(session, form.id, picks)
        except EligibilityError:
            break
        responses.append(outcome.response_id)
        await assert_conserved()

    await delete_responses(session, form.id, responses[::2])
    await assert_conserved()
    await delete_responses(session, form.id, responses[1::2])
    await assert_conserved()
    for item in items:
        assert await stock_of(session, item.id) == 6


@pytest.mark.asyncio
async def test_overlapping_deletes_restore_a_response_once(session, monkeypatch):
    """
    A second delete request that loaded the same response before the first
    one committed finds its claim lines gone and gives nothing back.
    """
    form, (item,) = await seed_form(session, [{"initial_stock": 10, "max_per_response": 5}])
    first = await submit(session, form.id, [(item.id, 2)])
    await submit(session, form.id, [(item.id, 3)])
    assert await stock_of(session, item.id) == 5

    async with SessionLocal() as other:
        loaded_early = await response_ops._load_claimed_items(other, form.id, [first.response_id])
        await other.commit()

        winner = await delete_responses(session, form.id, [first.response_id])
        assert winner.restored == {item.id: 2}

        async def early_load(db, form_id, ids):
            return loaded_early

        monkeypatch.setattr(response_ops, "_load_claimed_items", early_load)
        late = await delete_responses(other, form.id, [first.response_id])

    assert late.restored == {}
    assert late.deleted_response_ids == []
    assert await stock_of(session, item.id) == 7
    assert await claimed_quantity(session, item.id) == 3


@pytest.mark.asyncio
async def test_committed_submission_is_reported_even_if_store_fails_afterwards(session, monkeypatch):
    form, (item,) = await seed_form(session, [{"initial_stock": 10, "max_per_response": 2}])
    committed = False
    real_commit, real_execute = session.commit, session.execute

    async def commit():
        nonlocal committed
        await real_commit()
        committed = True

    async def execute(*args, **kwargs):
        if committed:
            raise OperationalError("SELECT", {}, Exception("connection lost"))
        return await real_execute(*args, **kwargs)

    monkeypatch.setattr(session, "commit", commit)
    monkeypatch.setattr(session, "execute", execute)

    outcome = await submit(session, form.id, [(item.id, 2)])
    monkeypatch.undo()

    assert outcome.state == SubmissionState.DONE
    assert outcome.stock_levels == {item.id: 8}
    assert await stock_of(session, item.id) == 8
    assert await response_count(session, form.id) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_ids", ["abc", None, {"id": "x"}, [1, 2], [""]])
async def test_malformed_selection_is_rejected_without_changes(session, bad_ids):
    form, (item,) = await seed_form(session, [{}])
    await submit(session, form.id, [(item.id, 1)])

    with pytest.raises(ValidationError):
        await delete_responses(session, form.id, bad_ids)

    assert await stock_of(session, item.id) == 9
    assert await response_count(session, form.id) == 1
