"""
schemas.py — LINE webhook payload contracts (Pydantic v2).

Only the fields the dialogue needs are modelled; everything else LINE sends
is ignored (extra="ignore") so new platform fields never cause a 422.
"""
from typing import List, Optional
from urllib.parse import parse_qs

from pydantic import BaseModel, ConfigDict, Field

from fortunebot.dialogue.schemas import (
    DialogueInput,
    TextInput,
    ThemeSelected,
    UnknownPostback,
    UnsupportedMessage,
)

SELECT_THEME_ACTION = "select_theme"


class _LineModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EventSource(_LineModel):
    type: str = "user"
    user_id: Optional[str] = Field(default=None, alias="userId")


class EventMessage(_LineModel):
    id: Optional[str] = None
    type: str
    text: Optional[str] = None


class EventPostback(_LineModel):
    data: str = ""


class WebhookEvent(_LineModel):
    type: str
    source: Optional[EventSource] = None
    reply_token: Optional[str] = Field(default=None, alias="replyToken")
    timestamp: Optional[int] = None
    message: Optional[EventMessage] = None
    postback: Optional[EventPostback] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.source.user_id if self.source else None


class WebhookRequest(_LineModel):
    destination: Optional[str] = None
    events: List[WebhookEvent] = Field(default_factory=list)


def parse_postback(data: str) -> DialogueInput:
    """'action=select_theme&theme=<url-encoded label>' → ThemeSelected, anything else → UnknownPostback."""
    params = parse_qs(data or "")
    action = params.get("action", [""])[0]
    theme = params.get("theme", [""])[0]
    if action == SELECT_THEME_ACTION and theme:
        return ThemeSelected(theme=theme)
    return UnknownPostback(data=data or "")


def to_dialogue_input(event: WebhookEvent) -> Optional[DialogueInput]:
    """Map a message/postback event to a state machine input; None for other event types."""
    if event.type == "message" and event.message is not None:
        if event.message.type == "text":
            return TextInput(text=event.message.text or "")
        return UnsupportedMessage(message_type=event.message.type)
    if event.type == "postback" and event.postback is not None:
        return parse_postback(event.postback.data)
    return None
