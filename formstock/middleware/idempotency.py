"""
FormStock Service — Idempotent response submission

A respondent may resend a submission (double click, flaky network). When the
request carries an ``Idempotency-Key`` header, the first final outcome for
that key is kept in Redis and replayed verbatim for later attempts, so stock
is claimed once. 5xx outcomes are not kept and the client may retry them.
Redis being down only disables the replay.
"""
import json
import logging
import re

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from formstock.core.config import get_settings
from formstock.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_FORMAT = "idempotent:{path}:{key}"
SUBMISSION_PATH = re.compile(r"^/public/forms/[^/]+/responses/?$")
REPLAY_HEADER = "X-Idempotency-Replay"


def _guarded(request: Request) -> str | None:
    """Redis key for a guarded submission, or None when the request is not one."""
    if request.method != "POST" or not SUBMISSION_PATH.match(request.url.path):
        return None
    key = request.headers.get("Idempotency-Key")
    if not key:
        return None
    return IDEMPOTENCY_KEY_FORMAT.format(path=request.url.path, key=key)


def _replay(raw: str) -> JSONResponse:
    stored = json.loads(raw)
    return JSONResponse(content=stored["body"], status_code=stored["status_code"], headers={REPLAY_HEADER: "true"})


async def _drain(response: Response) -> bytes:
    chunks = [chunk async for chunk in response.body_iterator]
    return b"".join(chunks)


class IdempotencyMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        cache_key = _guarded(request)
        if cache_key is None:
            return await call_next(request)

        redis = get_redis()
        try:
            previous = await redis.get(cache_key)
        except (RedisError, OSError) as exc:
            logger.warning("Idempotency store unreachable, submitting without replay: %s", exc)
            return await call_next(request)
        if previous:
            logger.info("Replaying stored outcome for %s", cache_key)
            return _replay(previous)

        response = await call_next(request)
        body = await _drain(response)

        if response.status_code < 500:
            try:
                content = json.loads(body)
            except ValueError:
                content = body.decode("utf-8", errors="replace")
            record = json.dumps({"status_code": response.status_code, "body": content})
            try:
                await redis.setex(cache_key, settings.IDEMPOTENCY_KEY_TTL_SECONDS, record)
            except (RedisError, OSError) as exc:
                logger.warning("Submission outcome not stored for replay: %s", exc)

        return Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
