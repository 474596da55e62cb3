from __future__ import annotations

import logging
from typing import Sequence

from fastapi import APIRouter, BackgroundTasks, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.domain.entities.side_effect import SideEffectIntent
from booking_reconciler.wiring.dependencies import get_dispatch_intents_use_case, get_reconcile_webhook_use_case


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhooks/calendly")
async def calendly_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
    return await _handle(Provider.CALENDLY, request, background_tasks)


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
    return await _handle(Provider.STRIPE, request, background_tasks)


async def _handle(provider: Provider, request: Request, background_tasks: BackgroundTasks) -> Response:
    try:
        try:
            use_case = get_reconcile_webhook_use_case()
            dispatcher = get_dispatch_intents_use_case()
        except Exception as e:
            logger.exception("Failed to initialize use case", extra={"provider": provider.value, "error": str(e)})
            return Response(status_code=500)

        # signatures cover the exact bytes, so the body must not be re-serialized
        body = await request.body()

        def enqueue(intents: Sequence[SideEffectIntent]) -> None:
            background_tasks.add_task(dispatcher.dispatch_all, list(intents))

        result = await run_in_threadpool(
            use_case.handle_webhook, provider, body, dict(request.headers), enqueue
        )
        logger.info(
            "Webhook received",
            extra={"provider": provider.value, "status": result.status_code, "outcome": result.outcome},
        )
        return JSONResponse(
            status_code=result.status_code,
            content={"outcome": result.outcome, "booking_id": result.booking_id, "detail": result.detail},
        )
    except Exception as e:
        logger.exception("Fatal error in webhook handler", extra={"provider": provider.value, "error": str(e)})
        return Response(status_code=500)
