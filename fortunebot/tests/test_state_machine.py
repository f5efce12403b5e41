"""
Dialogue state machine tests — pure, no I/O.

Groups:
  1. Step-by-step happy path (fresh → name → birth → theme)
  2. Birth date validation and normalization
  3. Fallbacks and protocol violations (reset paths)
  4. Whole-table property: every result lands on a defined Step
"""
from __future__ import annotations

import pytest

from fortunebot.dialogue.schemas import (
    THEMES,
    RunGeneration,
    Session,
    Step,
    TextInput,
    TextReply,
    ThemePrompt,
    ThemeSelected,
    UnknownPostback,
    UnsupportedMessage,
)
from fortunebot.dialogue.state_machine import (
    BIRTH_INVALID_TEXT,
    GREETING_TEXT,
    NAME_REQUIRED_TEXT,
    PROCESSING_TEXT,
    SESSION_RESET_TEXT,
    TEXT_ONLY_TEXT,
    THEME_FALLBACK_TEXT,
    UNEXPECTED_OPERATION_TEXT,
    complete,
    fresh_session,
    normalize_birth,
    revert,
    transition,
)

AT_THEME = Session(step=3, name="花子", birth="1993-07-21")


# ===========================================================================
# GROUP 1: Happy path
# ===========================================================================

def test_fresh_user_any_text_gets_name_prompt() -> None:
    result = transition(fresh_session(), TextInput(text="こんにちは"))
    assert result.session == Session(step=1, name="", birth="", theme="")
    assert result.messages == [TextReply(text=GREETING_TEXT)]
    assert result.effect is None


def test_name_captured_and_birth_prompted() -> None:
    result = transition(Session(step=1), TextInput(text="  花子 "))
    assert result.session == Session(step=2, name="花子")
    assert len(result.messages) == 1
    assert "花子さんですね" in result.messages[0].text
    assert "生年月日" in result.messages[0].text


def test_birth_captured_and_theme_buttons_shown() -> None:
    result = transition(Session(step=2, name="花子"), TextInput(text="1993-07-21"))
    assert result.session == Session(step=3, name="花子", birth="1993-07-21")
    assert len(result.messages) == 1
    assert isinstance(result.messages[0], ThemePrompt)
    assert result.messages[0].themes == THEMES


def test_theme_selection_requests_generation() -> None:
    result = transition(AT_THEME, ThemeSelected(theme="恋愛運"))
    assert result.session.step == Step.generating
    assert result.session.theme == "恋愛運"
    assert result.effect == RunGeneration(name="花子", birth="1993-07-21", theme="恋愛運")
    # Confirmation is sent by the orchestrator only after the side effect succeeds
    assert result.messages == []


def test_transition_does_not_mutate_input_session() -> None:
    before = Session(step=1)
    transition(before, TextInput(text="花子"))
    assert before == Session(step=1)


# ===========================================================================
# GROUP 2: Birth date
# ===========================================================================

@pytest.mark.parametrize("text", ["1993/7/21", "1993-07-21", "1993/07/21", "1993-7-21"])
def test_birth_variants_normalize_to_one_format(text: str) -> None:
    result = transition(Session(step=2, name="花子"), TextInput(text=text))
    assert result.session.step == Step.awaiting_theme
    assert result.session.birth == "1993-07-21"


@pytest.mark.parametrize("text", ["1993-13-01", "abc", "", "93-7-21", "1993-00-10", "1993-1-32", "1993.07.21"])
def test_invalid_birth_leaves_session_unchanged(text: str) -> None:
    session = Session(step=2, name="花子")
    result = transition(session, TextInput(text=text))
    assert result.session == session
    assert result.messages == [TextReply(text=BIRTH_INVALID_TEXT)]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("2000-1-1", "2000-01-01"),
        ("1999/12/31", "1999-12-31"),
        ("2001-02-30", "2001-02-30"),   # pattern check only
        ("1993-13-01", None),
        ("1993/7/21 ", None),           # caller strips
    ],
)
def test_normalize_birth(text: str, expected) -> None:
    assert normalize_birth(text) == expected


# ===========================================================================
# GROUP 3: Fallbacks and resets
# ===========================================================================

def test_empty_name_reprompts() -> None:
    result = transition(Session(step=1), TextInput(text="   "))
    assert result.session == Session(step=1)
    assert result.messages == [TextReply(text=NAME_REQUIRED_TEXT)]


def test_free_text_at_theme_step_reshows_buttons() -> None:
    result = transition(AT_THEME, TextInput(text="恋愛運"))
    assert result.session == AT_THEME
    assert result.effect is None
    assert result.messages == [ThemePrompt(text=THEME_FALLBACK_TEXT)]


def test_unknown_theme_label_reshows_buttons() -> None:
    result = transition(AT_THEME, ThemeSelected(theme="宝くじ運"))
    assert result.session == AT_THEME
    assert result.effect is None
    assert isinstance(result.messages[0], ThemePrompt)


@pytest.mark.parametrize("event_input", [TextInput(text="まだですか"), ThemeSelected(theme="金運")])
def test_generating_step_answers_already_processing(event_input) -> None:
    session = Session(step=4, name="花子", birth="1993-07-21", theme="恋愛運")
    result = transition(session, event_input)
    assert result.session == session
    assert result.messages == [TextReply(text=PROCESSING_TEXT)]
    assert result.effect is None


@pytest.mark.parametrize("step", [0, 1, 2])
def test_theme_selection_out_of_order_resets(step: int) -> None:
    result = transition(Session(step=step, name="花子" if step == 2 else ""), ThemeSelected(theme="金運"))
    assert result.session == Session(step=1)
    assert result.messages[0].text.startswith(UNEXPECTED_OPERATION_TEXT)
    assert result.effect is None


def test_unknown_postback_resets() -> None:
    result = transition(AT_THEME, UnknownPostback(data="action=buy"))
    assert result.session == Session(step=1)
    assert UNEXPECTED_OPERATION_TEXT in result.messages[0].text


@pytest.mark.parametrize("step", [-1, 5, 99])
def test_unknown_step_value_resets(step: int) -> None:
    result = transition(Session(step=step, name="花子", birth="1993-07-21"), TextInput(text="hi"))
    assert result.session == Session(step=1)
    assert result.messages[0].text.startswith(SESSION_RESET_TEXT)
    assert "お名前" in result.messages[0].text


def test_theme_step_without_name_is_treated_as_corrupt() -> None:
    result = transition(Session(step=3, name="", birth="1993-07-21"), ThemeSelected(theme="金運"))
    assert result.session == Session(step=1)
    assert result.effect is None


def test_non_text_message_keeps_step() -> None:
    session = Session(step=2, name="花子")
    result = transition(session, UnsupportedMessage(message_type="sticker"))
    assert result.session == session
    assert result.messages == [TextReply(text=TEXT_ONLY_TEXT)]


def test_revert_keeps_captured_fields() -> None:
    generating = Session(step=4, name="花子", birth="1993-07-21", theme="恋愛運")
    assert revert(generating) == Session(step=3, name="花子", birth="1993-07-21", theme="恋愛運")


def test_reset_is_idempotent() -> None:
    assert complete(fresh_session()) == fresh_session()
    assert complete(complete(AT_THEME)) == complete(AT_THEME) == Session()


# ===========================================================================
# GROUP 4: Every transition lands on a defined step
# ===========================================================================

_SESSIONS = [
    Session(step=0),
    Session(step=1),
    Session(step=2, name="花子"),
    Session(step=3, name="花子", birth="1993-07-21"),
    Session(step=4, name="花子", birth="1993-07-21", theme="金運"),
    Session(step=42, name="花子"),
]
_INPUTS = [
    TextInput(text=""),
    TextInput(text="花子"),
    TextInput(text="1993/7/21"),
    ThemeSelected(theme="総合運"),
    UnknownPostback(data=""),
    UnsupportedMessage(message_type="image"),
]


@pytest.mark.parametrize("session", _SESSIONS)
@pytest.mark.parametrize("event_input", _INPUTS)
def test_result_step_is_always_defined(session: Session, event_input) -> None:
    result = transition(session, event_input)
    assert result.session.step in {s.value for s in Step}
    if result.session.step >= Step.awaiting_theme:
        assert result.session.name and result.session.birth
