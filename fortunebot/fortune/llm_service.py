"""
llm_service.py — Mistral async generation layer for fortune reports.

Components:
  SYSTEM_PROMPT        — fortune-teller role and writing rules (Japanese)
  build_user_prompt()  — consultant name, birth date and theme
  generate_fortune()   — async Mistral call wrapped in an asyncio.Semaphore
  FortuneGenerator     — binds client + semaphore into the
                         generate(name, birth, theme) callable the orchestrator uses

No module-level asyncio.Semaphore — it is created in main.py lifespan and
passed in (avoids RuntimeError: no running event loop at import).
No retry here: a failed call fails the turn.
"""
import asyncio
import logging

from mistralai import Mistral

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mistral API constants
# ---------------------------------------------------------------------------

MISTRAL_TEMPERATURE = 0.7
MISTRAL_MAX_TOKENS = 1500
MIN_REPORT_CHARS = 100


class GenerationError(RuntimeError):
    """The model returned nothing usable."""


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """あなたは東洋・西洋の伝統的占術に精通した占い師です。

守るべきルール:
1. 四柱推命、九星気学、西洋占星術、宿曜占星術、姓名判断、数秘術を、それぞれの正規の手順で個別に鑑定し、最後に結果を照合して総合的な結論を出してください。
2. 出生時間・出生地・名前の正確な字体は提供されません。提供された情報で可能な範囲の鑑定を行い、精度に限界がある点は簡潔に触れてください。
3. スピリチュアルな表現は避け、論理的・現実的で具体的な行動のアドバイスを必ず含めてください。
4. すべて丁寧な日本語の自然文で書き、表や箇条書きに頼らないでください。
5. 分量は500〜1000文字程度にまとめてください。
6. 鑑定結果は占い師が確認してからお客様に届けられます。"""


def build_user_prompt(name: str, birth: str, theme: str) -> str:
    return (
        "以下の相談者情報に基づいて、一般診断プランで占ってください。\n\n"
        "相談者情報：\n"
        f"- 名前: {name}\n"
        f"- 生年月日: {birth}\n"
        f"- 相談テーマ: {theme}\n\n"
        "一般診断プランの内容：\n"
        "本来の性格・資質・人生テーマ、直近1年間の運勢の流れとチャンス・リスク、"
        f"そして特に「{theme}」について重点的に鑑定し、すぐに取り組むべき行動指針を示してください。"
    )


# ---------------------------------------------------------------------------
# Main async generation function
# ---------------------------------------------------------------------------

async def generate_fortune(
    client: Mistral,
    model: str,
    name: str,
    birth: str,
    theme: str,
    semaphore: asyncio.Semaphore,
) -> str:
    """
    Generate a fortune report draft. Returns the report text.
    Raises GenerationError on an empty completion; SDK errors propagate as-is.
    """
    logger.info("Calling Mistral API model=%s theme=%s", model, theme)

    async with semaphore:
        response = await client.chat.complete_async(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(name, birth, theme)},
            ],
            temperature=MISTRAL_TEMPERATURE,
            max_tokens=MISTRAL_MAX_TOKENS,
        )

    if not response or not response.choices:
        raise GenerationError("Mistral returned no choices")
    content = response.choices[0].message.content or ""
    if isinstance(content, list):
        content = "".join(getattr(chunk, "text", "") or "" for chunk in content)
    report = content.strip()
    if not report:
        raise GenerationError("Mistral returned an empty report")
    if len(report) < MIN_REPORT_CHARS:
        logger.warning("Report shorter than expected report_len=%d", len(report))

    logger.info("Mistral response received report_len=%d", len(report))
    return report


class FortuneGenerator:
    """generate(name, birth, theme) -> report, with the client and semaphore bound."""

    def __init__(self, client: Mistral, model: str, semaphore: asyncio.Semaphore) -> None:
        self.client = client
        self.model = model
        self.semaphore = semaphore

    async def __call__(self, name: str, birth: str, theme: str) -> str:
        return await generate_fortune(self.client, self.model, name, birth, theme, self.semaphore)
