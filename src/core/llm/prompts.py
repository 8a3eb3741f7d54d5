from typing import Any

REPLY_SYSTEM_PROMPT = """<role>
You write public owner replies to customer reviews for {business_name}{business_type}.
</role>

<rules>
- {tone_guidance}
- Keep it to 2-4 sentences; plain text only, no markdown, no hashtags
- Address the reviewer by first name when it is known
- Thank positive reviewers for something specific they mentioned
- For negative reviews: acknowledge, apologize once, offer to continue offline
- NEVER invent facts, discounts, promises or policies
- NEVER mention that the reply was generated
</rules>
{custom_instructions}"""

TONE_GUIDANCE = {
    "professional": "Tone: professional and courteous",
    "friendly": "Tone: warm and friendly",
    "casual": "Tone: relaxed and conversational",
}

REPLY_USER_PROMPT = """Reviewer: {author_name}
Rating: {rating}/5
Review: {text}

Write the reply."""


class PromptAdapter:
    """Adapts prompts for different LLM providers with prompt caching."""

    @staticmethod
    def for_claude(
        system: str,
        messages: list[dict[str, str]],
        cache: bool = True,
    ) -> dict[str, Any]:
        """Format for Anthropic Claude API with 1h TTL prompt caching."""
        system_blocks = [{"type": "text", "text": system}]
        if cache:
            system_blocks[0]["cache_control"] = {"type": "ephemeral", "ttl": "1h"}

        return {
            "system": system_blocks,
            "messages": messages,
        }

    @staticmethod
    def for_openai(
        system: str,
        messages: list[dict[str, str]],
    ) -> dict[str, Any]:
        """Format for OpenAI API (auto-caching)."""
        return {
            "messages": [
                {"role": "system", "content": system},
                *messages,
            ],
        }
