"""Provider SDK access for reply drafting, routed by model id prefix."""

from collections.abc import AsyncIterator
from functools import lru_cache

from anthropic import AsyncAnthropic
from google import genai
from google.genai import types
from openai import AsyncOpenAI

from src.core.config import settings
from src.core.llm.prompts import PromptAdapter

PROVIDER_PREFIXES = {"gpt-": "openai", "claude-": "anthropic", "gemini-": "google"}


@lru_cache(maxsize=1)
def anthropic_client() -> AsyncAnthropic:
    return AsyncAnthropic(api_key=settings.anthropic_api_key)


@lru_cache(maxsize=1)
def openai_client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=settings.openai_api_key)


@lru_cache(maxsize=1)
def google_client() -> genai.Client:
    return genai.Client(api_key=settings.google_ai_api_key)


def provider_for(model: str) -> str:
    for prefix, provider in PROVIDER_PREFIXES.items():
        if model.startswith(prefix):
            return provider
    raise ValueError(f"Unknown model prefix: {model}")


def _messages(messages: list[dict[str, str]] | None, prompt: str | None) -> list[dict[str, str]]:
    if prompt is not None and messages is None:
        messages = [{"role": "user", "content": prompt}]
    if not messages:
        raise ValueError("Either messages or prompt is required")
    return messages


def _gemini_request(system: str, messages: list[dict[str, str]], max_tokens: int) -> dict:
    if len(messages) == 1:
        contents = messages[0]["content"]
    else:
        contents = [
            {"role": "user" if m["role"] == "user" else "model", "parts": [{"text": m["content"]}]}
            for m in messages
        ]
    return {
        "contents": contents,
        "config": types.GenerateContentConfig(
            system_instruction=system, max_output_tokens=max_tokens
        ),
    }


async def generate_text(
    model: str,
    system: str,
    messages: list[dict[str, str]] | None = None,
    max_tokens: int = 1024,
    *,
    prompt: str | None = None,
) -> str:
    """Single completion from whichever provider owns ``model``.

    Pass either ``messages`` (chat turns) or ``prompt`` (one user turn).
    """
    messages = _messages(messages, prompt)
    provider = provider_for(model)

    if provider == "openai":
        resp = await openai_client().chat.completions.create(
            model=model,
            max_completion_tokens=max_tokens,
            **PromptAdapter.for_openai(system, messages),
        )
        return resp.choices[0].message.content or ""
    if provider == "anthropic":
        resp = await anthropic_client().messages.create(
            model=model, max_tokens=max_tokens, **PromptAdapter.for_claude(system, messages)
        )
        return resp.content[0].text
    resp = await google_client().aio.models.generate_content(
        model=model, **_gemini_request(system, messages, max_tokens)
    )
    return resp.text or ""


async def stream_text(
    model: str,
    system: str,
    messages: list[dict[str, str]] | None = None,
    max_tokens: int = 1024,
    *,
    prompt: str | None = None,
) -> AsyncIterator[str]:
    """Like :func:`generate_text` but yields text chunks as they arrive."""
    messages = _messages(messages, prompt)
    provider = provider_for(model)

    if provider == "openai":
        stream = await openai_client().chat.completions.create(
            model=model,
            max_completion_tokens=max_tokens,
            stream=True,
            **PromptAdapter.for_openai(system, messages),
        )
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content
    elif provider == "anthropic":
        async with anthropic_client().messages.stream(
            model=model, max_tokens=max_tokens, **PromptAdapter.for_claude(system, messages)
        ) as stream:
            async for text in stream.text_stream:
                yield text
    else:
        stream = await google_client().aio.models.generate_content_stream(
            model=model, **_gemini_request(system, messages, max_tokens)
        )
        async for chunk in stream:
            if chunk.text:
                yield chunk.text
