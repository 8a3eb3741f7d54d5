"""Draft owner replies to reviews with an LLM."""

import logging
from collections.abc import AsyncIterator

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.config import settings
from src.core.llm.clients import generate_text, stream_text
from src.core.llm.prompts import REPLY_SYSTEM_PROMPT, REPLY_USER_PROMPT, TONE_GUIDANCE
from src.core.models.enums import ReplyTone
from src.core.observability import observe

logger = logging.getLogger(__name__)

REPLY_MAX_TOKENS = 400


class ReviewInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rating: int = Field(ge=1, le=5)
    text: str = ""
    author_name: str | None = None


class ReplyConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    business_name: str = Field(min_length=1)
    business_type: str | None = None
    tone: ReplyTone = ReplyTone.professional
    custom_instructions: str | None = None


def build_prompt(review: ReviewInput, config: ReplyConfig) -> tuple[str, str]:
    """Return ``(system, user)`` prompts for one review."""
    business_type = f" ({config.business_type})" if config.business_type else ""
    custom = ""
    if config.custom_instructions:
        custom = f"\n<owner_instructions>\n{config.custom_instructions.strip()}\n</owner_instructions>"
    system = REPLY_SYSTEM_PROMPT.format(
        business_name=config.business_name,
        business_type=business_type,
        tone_guidance=TONE_GUIDANCE[config.tone.value],
        custom_instructions=custom,
    )
    user = REPLY_USER_PROMPT.format(
        author_name=review.author_name or "Anonymous",
        rating=review.rating,
        text=review.text.strip() or "(no text, rating only)",
    )
    return system, user


@observe(name="generate_review_reply")
async def generate_reply(review: ReviewInput, config: ReplyConfig, model: str | None = None) -> str:
    system, user = build_prompt(review, config)
    model = model or settings.reply_model
    reply = await generate_text(model, system, prompt=user, max_tokens=REPLY_MAX_TOKENS)
    logger.info("Generated %d-char reply with %s", len(reply), model)
    return reply.strip()


@observe(name="stream_review_reply")
async def stream_reply(
    review: ReviewInput, config: ReplyConfig, model: str | None = None
) -> AsyncIterator[str]:
    system, user = build_prompt(review, config)
    async for chunk in stream_text(
        model or settings.reply_model, system, prompt=user, max_tokens=REPLY_MAX_TOKENS
    ):
        yield chunk
