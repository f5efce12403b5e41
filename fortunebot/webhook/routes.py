"""
routes.py — LINE webhook endpoint and event dispatcher.

POST /webhook
  1. Verify X-Line-Signature (skipped when no channel secret is configured)
  2. ensure_ready() on the session store — 503 before any event is touched,
     so LINE redelivers the whole batch later
  3. dispatch_events(): one concurrent task per event, joined before responding

No ordering between events, not even two events for the same user in one
batch. One event blowing up never aborts its siblings.
"""
import asyncio
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from fortunebot.cache import StoreError, StoreUnavailableError, delete_session, ensure_ready
from fortunebot.config import settings
from fortunebot.dialogue.orchestrator import ReplyHandle, TurnResources, run_turn
from fortunebot.webhook.schemas import WebhookEvent, WebhookRequest, to_dialogue_input
from fortunebot.webhook.signature import InvalidSignatureError, verify_signature

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhook"])

DEPARTURE_EVENTS = {"unfollow", "leave"}


# ---------------------------------------------------------------------------
# Per-event handling
# ---------------------------------------------------------------------------

async def handle_event(event: WebhookEvent, resources: TurnResources) -> dict:
    """
    Route one event. Returns an outcome dict for the batch response:
      {"user_id", "event_type", "status", ...}
    status: ok | reverted | error | deleted | skipped | ignored
    """
    user_id = event.user_id
    base = {"user_id": user_id, "event_type": event.type}

    if not user_id:
        logger.warning("Event without source.userId skipped event_type=%s", event.type)
        return {**base, "status": "skipped"}

    if event.type in DEPARTURE_EVENTS:
        logger.info("User left or unfollowed user_id=%s", user_id)
        try:
            await delete_session(resources.redis, user_id)
        except StoreError:
            logger.error("Session delete failed user_id=%s", user_id, exc_info=True)
            return {**base, "status": "error"}
        return {**base, "status": "deleted"}

    dialogue_input = to_dialogue_input(event)
    if dialogue_input is None:
        logger.info("Unhandled event type=%s user_id=%s", event.type, user_id)
        return {**base, "status": "ignored"}

    handle = ReplyHandle.issue(event.reply_token)
    outcome = await run_turn(resources, user_id, dialogue_input, handle)
    return {**base, **outcome.as_dict()}


async def dispatch_events(events: List[WebhookEvent], resources: TurnResources) -> List[dict]:
    """Fan out one task per event; collect every outcome, failed ones included."""
    results = await asyncio.gather(
        *(handle_event(event, resources) for event in events),
        return_exceptions=True,
    )
    outcomes = []
    for event, result in zip(events, results):
        if isinstance(result, BaseException):
            logger.error(
                "Event processing crashed user_id=%s event_type=%s",
                event.user_id, event.type, exc_info=result,
            )
            outcomes.append({"user_id": event.user_id, "event_type": event.type, "status": "error"})
        else:
            outcomes.append(result)
    return outcomes


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@router.post("/webhook")
async def line_webhook(request: Request) -> dict:
    """
    Receive a batch of LINE events.

    Returns:
      200: {"results": [per-event outcome, ...]}
      401: signature missing or wrong
      422: body is not a webhook payload
      503: session store unavailable (LINE retries the batch)
    """
    body = await request.body()

    if settings.line_channel_secret:
        try:
            verify_signature(settings.line_channel_secret, body, request.headers.get("x-line-signature"))
        except InvalidSignatureError as exc:
            logger.warning("Rejected webhook: %s", exc)
            raise HTTPException(status_code=401, detail="Invalid signature")
    else:
        logger.debug("LINE_CHANNEL_SECRET not set — signature verification skipped")

    try:
        payload = WebhookRequest.model_validate_json(body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

    resources: TurnResources = request.app.state.turn_resources
    try:
        await ensure_ready(resources.redis)
    except StoreUnavailableError:
        logger.error("Session store unavailable — rejecting batch of %d events", len(payload.events))
        raise HTTPException(status_code=503, detail="Session store is temporarily unavailable.")

    results = await dispatch_events(payload.events, resources)
    logger.info("Webhook batch processed events=%d", len(results))
    return {"results": results}
