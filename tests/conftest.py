"""
FormStock test fixtures

Runs the service against a throwaway SQLite file (aiosqlite) and an
in-memory Redis stand-in. Environment is set before the package is imported
because settings are read at import time.
"""
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

_DB_PATH = os.path.join(tempfile.gettempdir(), f"formstock-test-{uuid.uuid4().hex[:8]}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["METRICS_ENABLED"] = "false"
os.environ["OPT_LOCK_BASE_DELAY_MS"] = "1"
os.environ["OPT_LOCK_MAX_DELAY_MS"] = "5"
os.environ["OPT_LOCK_JITTER_MS"] = "1"

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import func, select

from formstock.core.config import get_settings
from formstock.core.redis_client import set_redis
from formstock.db.database import Base, SessionLocal, engine
from formstock.main import app
from formstock.models.form import Form, FormItem, FormResponse, ResponseItem

settings = get_settings()


class InMemoryRedis:
    """Just enough of the redis.asyncio client for the cache and idempotency paths."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = str(value)

    async def delete(self, key):
        self.store.pop(key, None)

    async def ping(self):
        return True

    async def aclose(self):
        self.store.clear()


# ─── Fixtures ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def redis_stub():
    fake = InMemoryRedis()
    set_redis(fake)
    yield fake
    set_redis(None)


@pytest_asyncio.fixture
async def session():
    async with SessionLocal() as db:
        yield db


@pytest_asyncio.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def make_token(owner_id: str = "owner-1") -> str:
    claims = {"sub": owner_id, "exp": datetime.now(tz=timezone.utc) + timedelta(minutes=5)}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers(owner_id: str = "owner-1") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(owner_id)}"}


async def seed_form(db, items, owner_id: str = "owner-1", questions=None, is_active=True) -> tuple[Form, list[FormItem]]:
    """Insert a form with items given as dicts of FormItem columns."""
    form = Form(
        owner_id=owner_id,
        title="Holiday gifts",
        is_active=is_active,
        is_public=True,
        custom_questions=questions or [],
    )
    db.add(form)
    await db.flush()
    rows = []
    for fields in items:
        initial = fields.get("initial_stock", 10)
        rows.append(
            FormItem(
                form_id=form.id,
                name=fields.get("name", f"item-{len(rows)}"),
                price=Decimal(str(fields.get("price", 0))),
                initial_stock=initial,
                current_stock=fields.get("current_stock", initial),
                max_per_response=fields.get("max_per_response", 1),
                is_active=fields.get("is_active", True),
            )
        )
    db.add_all(rows)
    await db.commit()
    return form, rows


async def stock_of(db, item_id: str) -> int:
    result = await db.execute(select(FormItem.current_stock).where(FormItem.id == item_id))
    return result.scalar_one()


async def claimed_quantity(db, item_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(ResponseItem.quantity), 0)).where(ResponseItem.form_item_id == item_id)
    )
    return result.scalar_one()


async def response_count(db, form_id: str) -> int:
    result = await db.execute(select(func.count(FormResponse.id)).where(FormResponse.form_id == form_id))
    return result.scalar_one()


def submission(items, order_amount=100, answers=None, **overrides) -> dict:
    payload = {
        "customer_name": "Ana Souza",
        "customer_document": "12.345.678/0001-90",
        "customer_email": "ana@example.com",
        "representative_name": "Bruno Lima",
        "representative_email": "bruno@example.com",
        "gift_negotiated": "Gift basket",
        "order_amount": order_amount,
        "notes": None,
        "answers": answers or [],
        "items": [{"item_id": item_id, "quantity": qty} for item_id, qty in items],
    }
    payload.update(overrides)
    return payload
