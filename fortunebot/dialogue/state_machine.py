"""
state_machine.py — Pure step-transition logic for the intake dialogue.

    start → awaiting_name → awaiting_birth → awaiting_theme → generating

transition(session, input) returns the next Session, the messages to reply
with, and at most one RunGeneration instruction. No I/O happens here; the
orchestrator executes the instruction and calls complete() or revert().

User-facing text is Japanese. Internal reasons are never shown to the user.
"""
import re
from typing import Optional

from fortunebot.dialogue.schemas import (
    THEMES,
    DialogueInput,
    OutboundMessage,
    RunGeneration,
    Session,
    Step,
    TextInput,
    TextReply,
    ThemePrompt,
    ThemeSelected,
    Transition,
    UnknownPostback,
    UnsupportedMessage,
)

# ---------------------------------------------------------------------------
# User-facing text
# ---------------------------------------------------------------------------

GREETING_TEXT = "こんにちは！占いを始めますね。\nまず、あなたのお名前を教えていただけますか？"
NAME_REQUIRED_TEXT = "お名前を入力してください。"
BIRTH_PROMPT_TEMPLATE = "{name}さんですね！\n次に、生年月日を教えてください。（例：1993-07-21 や 1993/7/21）"
BIRTH_INVALID_TEXT = "生年月日を正しい形式で入力してください。（例：1993-07-21）"
THEME_PROMPT_TEXT = "ありがとうございます！\n最後に、占ってほしいテーマを選んでください。"
THEME_FALLBACK_TEXT = "下のボタンから占ってほしいテーマを選んでくださいね。"
PROCESSING_TEXT = "ありがとうございます。現在、占い結果を作成中です。少々お待ちください。"
TEXT_ONLY_TEXT = "テキストメッセージで話しかけてくださいね。"
SESSION_RESET_TEXT = "セッションがリセットされました。もう一度最初からお願いします。"
UNEXPECTED_OPERATION_TEXT = "予期しない操作が行われました。最初からやり直してください。"
NAME_ONLY_PROMPT_TEXT = "お名前を教えてください。"
CONFIRMATION_TEMPLATE = (
    "ありがとうございます、{name}さん。\n"
    "テーマ「{theme}」で承りました。\n\n"
    "占い師が内容を確認した後、結果をお送りしますので、少々お待ちくださいね。"
)
GENERATION_FAILED_TEXT = "申し訳ありません、リクエストの処理中にエラーが発生しました。もう一度テーマを選び直してください。"
INTERNAL_ERROR_TEXT = "申し訳ありません、処理中にエラーが発生しました。"


# ---------------------------------------------------------------------------
# Birth date validation
# ---------------------------------------------------------------------------

# YYYY[-/]M[-/]D, month 1–12 and day 1–31, leading zeros optional
BIRTH_DATE_REGEX = re.compile(r"^(\d{4})[-/](0?[1-9]|1[0-2])[-/](0?[1-9]|[12]\d|3[01])$")


def normalize_birth(text: str) -> Optional[str]:
    """
    Return the canonical 'YYYY-MM-DD' form, or None if text is not a date.

    Only the pattern is checked; impossible calendar days such as 2001-02-30
    are accepted as typed.
    """
    match = BIRTH_DATE_REGEX.match(text)
    if match is None:
        return None
    year, month, day = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

def fresh_session() -> Session:
    return Session()


def complete(session: Session) -> Session:
    """Full clear after a request was generated, recorded and confirmed."""
    return fresh_session()


def revert(session: Session) -> Session:
    """Step back to theme selection after a failed side effect; fields are kept."""
    return session.model_copy(update={"step": Step.awaiting_theme.value})


def confirmation_message(name: str, theme: str) -> TextReply:
    return TextReply(text=CONFIRMATION_TEMPLATE.format(name=name, theme=theme))


def _is_consistent(step: Step, session: Session) -> bool:
    """From awaiting_theme on, name and birth must already be captured."""
    if step >= Step.awaiting_theme:
        return bool(session.name) and bool(session.birth)
    return True


def _stay(session: Session, *messages: OutboundMessage) -> Transition:
    return Transition(session=session, messages=list(messages))


def _restart(notice: str) -> Transition:
    """Reset every field and ask for the name again."""
    session = fresh_session().model_copy(update={"step": Step.awaiting_name.value})
    return Transition(
        session=session,
        messages=[TextReply(text=f"{notice}\n{NAME_ONLY_PROMPT_TEXT}")],
    )


# ---------------------------------------------------------------------------
# Transition
# ---------------------------------------------------------------------------

def transition(session: Session, event_input: DialogueInput) -> Transition:
    try:
        step = Step(session.step)
    except ValueError:
        return _restart(SESSION_RESET_TEXT)

    if not _is_consistent(step, session):
        return _restart(SESSION_RESET_TEXT)

    if step is Step.generating:
        return _stay(session, TextReply(text=PROCESSING_TEXT))

    if isinstance(event_input, UnknownPostback):
        return _restart(UNEXPECTED_OPERATION_TEXT)

    if isinstance(event_input, ThemeSelected):
        return _on_theme_selected(step, session, event_input.theme)

    if isinstance(event_input, UnsupportedMessage):
        return _stay(session, TextReply(text=TEXT_ONLY_TEXT))

    if isinstance(event_input, TextInput):
        return _on_text(step, session, event_input.text.strip())

    raise TypeError(f"Unsupported dialogue input: {type(event_input).__name__}")


def _on_text(step: Step, session: Session, text: str) -> Transition:
    if step is Step.start:
        return Transition(
            session=session.model_copy(update={"step": Step.awaiting_name.value}),
            messages=[TextReply(text=GREETING_TEXT)],
        )

    if step is Step.awaiting_name:
        if not text:
            return _stay(session, TextReply(text=NAME_REQUIRED_TEXT))
        return Transition(
            session=session.model_copy(update={"step": Step.awaiting_birth.value, "name": text}),
            messages=[TextReply(text=BIRTH_PROMPT_TEMPLATE.format(name=text))],
        )

    if step is Step.awaiting_birth:
        birth = normalize_birth(text)
        if birth is None:
            return _stay(session, TextReply(text=BIRTH_INVALID_TEXT))
        return Transition(
            session=session.model_copy(update={"step": Step.awaiting_theme.value, "birth": birth}),
            messages=[ThemePrompt(text=THEME_PROMPT_TEXT)],
        )

    # awaiting_theme: free text is never a theme, show the buttons again
    return _stay(session, ThemePrompt(text=THEME_FALLBACK_TEXT))


def _on_theme_selected(step: Step, session: Session, theme: str) -> Transition:
    if step is not Step.awaiting_theme:
        return _restart(UNEXPECTED_OPERATION_TEXT)

    if theme not in THEMES:
        return _stay(session, ThemePrompt(text=THEME_FALLBACK_TEXT))

    return Transition(
        session=session.model_copy(update={"step": Step.generating.value, "theme": theme}),
        effect=RunGeneration(name=session.name, birth=session.birth, theme=theme),
    )
