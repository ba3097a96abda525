"""LLM collaborators: reply generation and preference analysis."""

import json
import logging
from typing import Any, Protocol

from groq import AsyncGroq

from .storage.models import ProfilePatch

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Synaptide, an AI assistant with perfect memory.
You remember all prior interactions with the user and use that knowledge to provide personalized, contextual responses.
Be helpful, friendly, and conversational. If asked about your capabilities, emphasize your ability to remember
the entire conversation history and adapt to the user's preferences over time.
Your responses should be concise but informative."""

ANALYSIS_PROMPT = """Analyze the conversation history and extract information about the user's interests, communication style, and preferences.

Return ONLY valid JSON:
{
  "interests": ["<topic>", ...],
  "communicationStyle": "<one word, e.g. formal, casual, technical, neutral>",
  "preferences": {"<name>": "<value>", ...}
}

Rules:
- Only stable signals, not passing moods
- Use "neutral" when the style is unclear
- Empty lists and objects are fine when nothing new was learned
"""

FALLBACK_REPLY = "I'm having trouble generating a response. Please try again."

_ROLES = {"user", "assistant", "system"}


class ResponseGenerator(Protocol):
    """Turns a conversation history into the next assistant reply."""

    async def generate(self, history: list[dict[str, str]]) -> str: ...


class PreferenceAnalyzer(Protocol):
    """Extracts preference signals from a conversation history."""

    async def analyze(self, history: list[dict[str, str]]) -> ProfilePatch: ...


def _strip_code_fence(content: str) -> str:
    """Remove a markdown code block the model may wrap JSON in."""
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = [line for line in text.split("\n") if not line.startswith("```")]
    return "\n".join(lines)


class GroqResponseGenerator:
    """ResponseGenerator backed by a Groq chat completion."""

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, history: list[dict[str, str]]) -> str:
        """Generate the next reply.

        Args:
            history: Ordered turns as {"role", "content"} dicts.

        Returns:
            The reply text, or FALLBACK_REPLY when the call fails or
            returns nothing.
        """
        messages: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(
            {
                "role": turn.get("role") if turn.get("role") in _ROLES else "assistant",
                "content": turn.get("content", ""),
            }
            for turn in history
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            logger.error("Reply generation failed: %s", e)
            return FALLBACK_REPLY

        content = response.choices[0].message.content or ""
        return content.strip() or FALLBACK_REPLY


class GroqPreferenceAnalyzer:
    """PreferenceAnalyzer backed by a JSON-mode Groq completion."""

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        temperature: float = 0.3,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    async def analyze(self, history: list[dict[str, str]]) -> ProfilePatch:
        """Analyze a conversation.

        Returns:
            The extracted patch, empty if there is nothing to analyze or
            on error.
        """
        if not history:
            return ProfilePatch()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ANALYSIS_PROMPT},
                    {
                        "role": "user",
                        "content": "Analyze these messages to understand user preferences: "
                        + json.dumps(history, ensure_ascii=False),
                    },
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
        except Exception as e:
            logger.warning("Preference analysis failed: %s", e)
            return ProfilePatch()

        return self._parse_response(response.choices[0].message.content or "")

    def _parse_response(self, content: str) -> ProfilePatch:
        """Parse the model output into a patch, empty on malformed JSON."""
        try:
            data = json.loads(_strip_code_fence(content))
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse analysis response: %s", e)
            return ProfilePatch()

        if not isinstance(data, dict):
            logger.warning("Invalid analysis structure: expected an object")
            return ProfilePatch()

        return ProfilePatch.from_dict(data)
