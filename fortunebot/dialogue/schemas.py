"""
schemas.py — Dialogue data contracts.

Defines:
  - Step, Theme enums
  - Session            (the persisted per-user record: step, name, birth, theme)
  - TextInput, ThemeSelected, UnsupportedMessage, UnknownPostback
                       (tagged inputs fed to the state machine)
  - TextReply, ThemePrompt
                       (tagged outbound messages; only these two shapes exist)
  - RunGeneration      (side-effect instruction for the orchestrator)
  - Transition         (state machine result)

LOCKED WIRE FORMAT for Session (stored as JSON under '<prefix>:<userId>'):
  {"step": int, "name": str, "birth": str, "theme": str}
"""
from enum import Enum, IntEnum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Step(IntEnum):
    start = 0            # Nothing asked yet
    awaiting_name = 1
    awaiting_birth = 2
    awaiting_theme = 3
    generating = 4       # Entered and left within a single turn


class Theme(str, Enum):
    love = "恋愛運"
    work = "仕事運"
    health = "健康運"
    money = "金運"
    general = "総合運"


# Display order of the quick-reply buttons
THEMES: List[str] = [t.value for t in Theme]


# ---------------------------------------------------------------------------
# Session — the only persistent entity
# ---------------------------------------------------------------------------

class Session(BaseModel):
    """
    Per-user dialogue progress.

    step is a plain int, not Step: a stored record may carry a value this
    version does not know, and the state machine must see it to reset it.
    Unknown keys in stored JSON are dropped.
    """
    model_config = ConfigDict(extra="ignore")

    step: int = Step.start.value
    name: str = ""
    birth: str = ""
    theme: str = ""

    def to_record(self) -> dict:
        return {"step": int(self.step), "name": self.name, "birth": self.birth, "theme": self.theme}


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class TextInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class ThemeSelected(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["theme_selected"] = "theme_selected"
    theme: str


class UnsupportedMessage(BaseModel):
    """A message event whose type is not text (sticker, image, ...)."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unsupported_message"] = "unsupported_message"
    message_type: str


class UnknownPostback(BaseModel):
    """A postback that is not a well-formed theme selection."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown_postback"] = "unknown_postback"
    data: str = ""


DialogueInput = Union[TextInput, ThemeSelected, UnsupportedMessage, UnknownPostback]


# ---------------------------------------------------------------------------
# Outbound messages
# ---------------------------------------------------------------------------

class TextReply(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class ThemePrompt(BaseModel):
    """Text followed by one selectable option per theme."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["theme_prompt"] = "theme_prompt"
    text: str
    themes: List[str] = Field(default_factory=lambda: list(THEMES))


OutboundMessage = Union[TextReply, ThemePrompt]


# ---------------------------------------------------------------------------
# Side effect + transition result
# ---------------------------------------------------------------------------

class RunGeneration(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    birth: str
    theme: str


class Transition(BaseModel):
    session: Session
    messages: List[OutboundMessage] = Field(default_factory=list)
    effect: Optional[RunGeneration] = None
