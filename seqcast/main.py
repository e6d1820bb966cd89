# seqcast/main.py
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from seqcast.broadcaster import Broadcaster, LagPolicy, Subscription
from seqcast.metrics import PUSH_LATENCY
from seqcast.settings import Settings

logger = logging.getLogger(__name__)


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


async def sse_frames(sub: Subscription, limit: Optional[int] = None) -> AsyncIterator[str]:
    """
    Render a subscription as server-sent events.

    Each value becomes a `data:` frame. Under LagPolicy.RAISE a gap is sent as
    an `event: lagged` frame carrying the missed count; under SKIP it is
    dropped. The subscription is closed however the stream ends, including
    when the client disconnects and the response task is cancelled.
    """
    sent = 0
    try:
        async for delivery in sub.events():
            if delivery.is_lag:
                if sub.policy is LagPolicy.RAISE:
                    yield f"event: lagged\ndata: {delivery.missed}\n\n"
                continue
            yield f"data: {delivery.value}\n\n"
            sent += 1
            if limit is not None and sent >= limit:
                break
    finally:
        sub.close()


def create_app(settings: Optional[Settings] = None,
               broadcaster: Optional[Broadcaster] = None) -> FastAPI:
    settings = settings or Settings()
    owns_broadcaster = broadcaster is None
    bc = broadcaster or Broadcaster.from_settings(settings)

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        logger.info("broadcaster ready (capacity=%d, initial=%d, lag_policy=%s)",
                    bc.state.capacity, bc.state.initial_value, bc.lag_policy.value)
        try:
            yield
        finally:
            if owns_broadcaster:
                bc.close()

    app = FastAPI(title=settings.APP_NAME, lifespan=_lifespan)
    app.state.settings = settings
    app.state.broadcaster = bc

    @app.post("/push")
    async def push(broadcaster: Broadcaster = Depends(get_broadcaster)):
        start = time.time()
        ok = broadcaster.push()
        PUSH_LATENCY.observe(time.time() - start)
        return {"ok": ok}

    @app.get("/subscribe")
    async def subscribe(limit: Optional[int] = Query(None, ge=1),
                        broadcaster: Broadcaster = Depends(get_broadcaster)):
        # open before returning so values pushed from now on are not missed
        sub = broadcaster.subscribe()
        return StreamingResponse(
            sse_frames(sub, limit),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/health")
    def health(broadcaster: Broadcaster = Depends(get_broadcaster)):
        return {"ok": True, "subscribers": broadcaster.subscriber_count}

    # ---------- metrics ----------
    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
