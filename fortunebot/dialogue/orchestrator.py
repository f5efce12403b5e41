"""
orchestrator.py — Runs one inbound event end-to-end (a "turn").

Flow per turn (strictly sequential, every step awaited before the next):
  1. load_session()            — miss / undecodable / store error → fresh Session
  2. transition()              — pure; yields next Session, messages, optional RunGeneration
  3. side effect, if any:      generate → ledger append → confirmation reply → reset
                               any failure → revert to awaiting_theme + apology (if the
                               reply handle is still usable)
  4. save_session()            — ALWAYS runs (finally), even after an unexpected
                                 error or cancellation in 1–3

The reply handle is single-use: once a reply was attempted, nothing else is
sent for this turn, failures are only logged.

There is no per-user lock. Two events for the same user processed concurrently
both load the same state and the later save wins.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from fortunebot.cache import StoreError, load_session, save_session
from fortunebot.config import settings
from fortunebot.dialogue.schemas import (
    DialogueInput,
    OutboundMessage,
    RunGeneration,
    Session,
    Step,
    TextReply,
)
from fortunebot.dialogue.state_machine import (
    GENERATION_FAILED_TEXT,
    INTERNAL_ERROR_TEXT,
    complete,
    confirmation_message,
    fresh_session,
    revert,
    transition,
)
from fortunebot.messaging.line_client import ReplyDeliveryError

logger = logging.getLogger(__name__)

Generate = Callable[[str, str, str], Awaitable[str]]
AppendLedger = Callable[[str, str, str, str, str], Awaitable[Any]]
Reply = Callable[[str, List[OutboundMessage]], Awaitable[None]]


class ReplyHandleUnavailable(RuntimeError):
    """The reply token is missing, already used, or past its validity window."""


# ---------------------------------------------------------------------------
# Reply handle
# ---------------------------------------------------------------------------

@dataclass
class ReplyHandle:
    """
    Single-use reply token plus the monotonic deadline after which the
    platform is assumed to reject it.
    """
    token: Optional[str]
    expires_at: float
    consumed: bool = False

    @classmethod
    def issue(cls, token: Optional[str], window: Optional[float] = None) -> "ReplyHandle":
        window = settings.reply_window_seconds if window is None else window
        return cls(token=token, expires_at=time.monotonic() + window)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def usable(self) -> bool:
        return bool(self.token) and not self.consumed and self.remaining() > 0


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@dataclass
class TurnResources:
    """Everything a turn talks to. Built once in main.py lifespan."""
    redis: Any
    generate: Generate
    append_ledger: AppendLedger
    reply: Reply
    generation_timeout: float = field(default_factory=lambda: settings.generation_timeout_seconds)
    reply_margin: float = field(default_factory=lambda: settings.reply_margin_seconds)


@dataclass
class TurnOutcome:
    user_id: str
    status: str                  # "ok" | "reverted" | "error"
    step: int
    persisted: bool

    def as_dict(self) -> dict:
        return {"user_id": self.user_id, "status": self.status, "step": self.step, "persisted": self.persisted}


# ---------------------------------------------------------------------------
# Reply helpers
# ---------------------------------------------------------------------------

async def _send(resources: TurnResources, handle: ReplyHandle, messages: List[OutboundMessage]) -> None:
    """Use the handle. Raises if it is unusable or the platform rejects the reply."""
    if not handle.usable:
        raise ReplyHandleUnavailable("Reply handle consumed or expired")
    handle.consumed = True
    await resources.reply(handle.token, messages)


async def _deliver(
    resources: TurnResources,
    handle: ReplyHandle,
    messages: List[OutboundMessage],
    user_id: str,
) -> None:
    """Best-effort reply: failures are logged, never raised."""
    if not messages:
        return
    try:
        await _send(resources, handle, messages)
    except ReplyHandleUnavailable:
        logger.warning("Reply skipped, handle unavailable user_id=%s", user_id)
    except ReplyDeliveryError as exc:
        logger.error("Reply delivery failed user_id=%s: %s", user_id, exc)


# ---------------------------------------------------------------------------
# Side effect
# ---------------------------------------------------------------------------

def generation_budget(resources: TurnResources, handle: ReplyHandle) -> float:
    """
    Seconds the generation call may take: the configured limit, capped so that
    reply_margin is still left on the handle for the ledger append and the
    confirmation. Zero means there is no time to generate at all.
    """
    return max(0.0, min(resources.generation_timeout, handle.remaining() - resources.reply_margin))


async def _run_generation(
    resources: TurnResources,
    user_id: str,
    session: Session,
    effect: RunGeneration,
    handle: ReplyHandle,
) -> tuple[Session, bool]:
    """
    generate → append → confirm → reset. No automatic retry.
    Returns the session to persist (fresh on success, reverted on failure)
    and whether the whole sequence succeeded.
    """
    timeout = generation_budget(resources, handle)
    try:
        if not handle.usable:
            # Nobody could be told the outcome; do not spend a generation on it
            raise ReplyHandleUnavailable("Reply handle expired before generation")
        if timeout <= 0:
            raise asyncio.TimeoutError("Reply window too short to generate and confirm")
        logger.info("Generating user_id=%s theme=%s timeout=%.1fs", user_id, effect.theme, timeout)
        report = await asyncio.wait_for(
            resources.generate(effect.name, effect.birth, effect.theme),
            timeout=timeout,
        )
        await resources.append_ledger(user_id, effect.name, effect.birth, effect.theme, report)
        logger.info("Ledger append done user_id=%s", user_id)
        await _send(resources, handle, [confirmation_message(effect.name, effect.theme)])
    except Exception as exc:
        logger.error(
            "Request processing failed user_id=%s error_type=%s",
            user_id, type(exc).__name__, exc_info=True,
        )
        await _deliver(resources, handle, [TextReply(text=GENERATION_FAILED_TEXT)], user_id)
        return revert(session), False

    logger.info("Request complete user_id=%s — session reset", user_id)
    return complete(session), True


# ---------------------------------------------------------------------------
# Turn
# ---------------------------------------------------------------------------

async def run_turn(
    resources: TurnResources,
    user_id: str,
    event_input: DialogueInput,
    handle: ReplyHandle,
) -> TurnOutcome:
    session = fresh_session()
    status = "ok"
    persisted = False

    try:
        try:
            loaded = await load_session(resources.redis, user_id)
            if loaded is None:
                logger.info("Initializing new session user_id=%s", user_id)
            else:
                session = loaded
            logger.info("Turn start user_id=%s step=%s input=%s", user_id, session.step, event_input.kind)

            result = transition(session, event_input)
            session = result.session

            if result.effect is None:
                await _deliver(resources, handle, result.messages, user_id)
            else:
                session, succeeded = await _run_generation(resources, user_id, session, result.effect, handle)
                if not succeeded:
                    status = "reverted"
        except Exception:
            logger.error("Unexpected error in turn user_id=%s", user_id, exc_info=True)
            status = "error"
            if session.step == Step.generating:
                session = revert(session)
            await _deliver(resources, handle, [TextReply(text=INTERNAL_ERROR_TEXT)], user_id)
    except BaseException:
        # Cancellation, or an error raised by the handler above
        logger.error("Turn aborted user_id=%s step=%s", user_id, session.step)
        if session.step == Step.generating:
            session = revert(session)
        raise
    finally:
        persisted = await _persist(resources, user_id, session)

    if not persisted:
        status = "error"
    return TurnOutcome(user_id=user_id, status=status, step=session.step, persisted=persisted)


async def _persist(resources: TurnResources, user_id: str, session: Session) -> bool:
    try:
        await save_session(resources.redis, user_id, session)
    except StoreError:
        logger.error("Session NOT persisted user_id=%s step=%s", user_id, session.step, exc_info=True)
        return False
    return True
