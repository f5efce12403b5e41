"""
line_client.py — LINE Messaging API reply delivery.

Components:
  build_theme_quick_reply() — text message with one postback button per theme
  to_line_message()         — OutboundMessage → LINE message object
  LineReplyClient           — POST /v2/bot/message/reply over a shared httpx.AsyncClient

A reply token authorizes exactly one reply. Any non-2xx answer (invalid,
expired or already used token) surfaces as ReplyDeliveryError; the caller
decides whether that matters.
"""
import logging
from typing import List
from urllib.parse import quote

import httpx

from fortunebot.dialogue.schemas import OutboundMessage, TextReply, ThemePrompt

logger = logging.getLogger(__name__)

REPLY_PATH = "/v2/bot/message/reply"
# LINE rejects replies with more than five message objects
MAX_MESSAGES_PER_REPLY = 5


class ReplyDeliveryError(RuntimeError):
    """The platform did not accept the reply."""


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def theme_postback_data(theme: str) -> str:
    return f"action=select_theme&theme={quote(theme)}"


def build_theme_quick_reply(text: str, themes: List[str]) -> dict:
    items = [
        {
            "type": "action",
            "action": {
                "type": "postback",
                "label": theme,
                "data": theme_postback_data(theme),
                "displayText": f"{theme}について相談する",
            },
        }
        for theme in themes
    ]
    return {"type": "text", "text": text, "quickReply": {"items": items}}


def to_line_message(message: OutboundMessage) -> dict:
    if isinstance(message, ThemePrompt):
        return build_theme_quick_reply(message.text, message.themes)
    if isinstance(message, TextReply):
        return {"type": "text", "text": message.text}
    raise TypeError(f"Unsupported outbound message: {type(message).__name__}")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class LineReplyClient:
    def __init__(self, http: httpx.AsyncClient, channel_access_token: str) -> None:
        self._http = http
        self._token = channel_access_token

    async def reply(self, reply_token: str, messages: List[OutboundMessage]) -> None:
        if not messages:
            return
        if len(messages) > MAX_MESSAGES_PER_REPLY:
            raise ValueError(f"At most {MAX_MESSAGES_PER_REPLY} messages per reply, got {len(messages)}")

        body = {
            "replyToken": reply_token,
            "messages": [to_line_message(m) for m in messages],
        }
        try:
            response = await self._http.post(
                REPLY_PATH,
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            raise ReplyDeliveryError(f"Reply request failed: {exc}") from exc

        if response.status_code >= 400:
            # Body is LINE's {"message": ...} error — no user content in it
            raise ReplyDeliveryError(
                f"Reply rejected status={response.status_code} body={response.text[:200]}"
            )
        logger.debug("Reply delivered messages=%d", len(messages))
