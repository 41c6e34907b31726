"""
OpenAI client for conversational replies and image captions.
"""
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You're a chill, witty chat bot with a slightly sarcastic sense of humor. Keep responses brief and casual.
Key traits:
- Use humor and light sarcasm when appropriate
- Keep responses short and punchy (1-2 sentences max usually)
- Match the language of the user's message
- Feel free to use emojis occasionally, but don't overdo it

You can trigger one bot command per reply when the user asks for something it covers:
- "!img <query>" to send an image
- "!pfp" to send the profile picture of the quoted user
- "!song <artist> - <title>" or "!song <title>" to find a song

Always respond with a JSON object in this format:
{
  "response": "your response text here",
  "command": null or a command string starting with !,
  "terminate": true when the user ends the conversation, otherwise false
}
"""

CAPTION_PROMPT = 'Generate a short, witty caption (maximum 1 line) with emojis for an image based on this search query: "{query}"'

FALLBACK_RESPONSE = "Even AI gets tongue-tied sometimes 🤐"


class AIClientError(Exception):
    """Raised when the AI backend cannot produce a reply."""


@dataclass(frozen=True)
class AIReply:
    """Structured reply of the conversational model."""
    response: str
    command: Optional[str] = None
    terminate: bool = False

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "AIReply":
        """
        Parse the model output, falling back to a canned reply on malformed JSON.
        """
        try:
            data = json.loads(raw or "")
        except (json.JSONDecodeError, TypeError):
            logger.warning("AI reply is not valid JSON", extra={"raw_length": len(raw or "")})
            return cls(response=FALLBACK_RESPONSE)
        if not isinstance(data, dict):
            return cls(response=FALLBACK_RESPONSE)

        command = data.get("command")
        if not isinstance(command, str) or not command.strip().startswith("!"):
            command = None
        return cls(
            response=str(data.get("response") or "").strip(),
            command=command.strip() if command else None,
            terminate=bool(data.get("terminate", False)),
        )


class OpenAIClient:
    """Client for interacting with the OpenAI chat completions API."""

    def __init__(self, api_key: str, base_url: str = None, model: str = "gpt-4o-mini", max_tokens: int = 1000):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key
            base_url: Optional base URL for API (defaults to OpenAI's endpoint)
            model: Model to use
            max_tokens: Maximum tokens for API requests
        """
        client_kwargs = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url

        self.client = AsyncOpenAI(**client_kwargs)
        self.model = model
        self.max_tokens = max_tokens
        logger.info(
            "OpenAI client initialized",
            extra={
                "model": model,
                "max_tokens": max_tokens,
                "base_url": base_url or "default"
            }
        )

    async def generate_reply(
        self,
        user_message: str,
        history: Optional[List[Dict[str, str]]] = None,
        quoted_text: Optional[str] = None
    ) -> AIReply:
        """
        Generate a conversational reply.

        Args:
            user_message: Text of the user's message
            history: Previous turns as chat-completion messages
            quoted_text: Text of the message the user replied to, if any

        Returns:
            Parsed structured reply

        Raises:
            AIClientError: If the API call fails
        """
        content = user_message
        if quoted_text:
            content = f"Quoted message: {quoted_text}\nMessage: {user_message}"

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(history or [])
        messages.append({"role": "user", "content": content})

        raw = await self._complete(
            messages,
            temperature=1.0,
            response_format={"type": "json_object"}
        )
        return AIReply.from_json(raw)

    async def generate_caption(self, query: str) -> str:
        """
        Generate a one-line caption for an image search query.

        Raises:
            AIClientError: If the API call fails
        """
        raw = await self._complete(
            [{"role": "user", "content": CAPTION_PROMPT.format(query=query)}],
            temperature=0.9
        )
        return (raw or "").strip().strip('"')

    async def _complete(self, messages: List[Dict[str, str]], **kwargs) -> Optional[str]:
        try:
            logger.debug(
                "Sending completion request to OpenAI",
                extra={"message_count": len(messages)}
            )
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                **kwargs
            )
            content = response.choices[0].message.content
            logger.info(
                "Completion received",
                extra={
                    "tokens_used": response.usage.total_tokens if response.usage else None,
                    "response_length": len(content) if content else 0
                }
            )
            return content

        except RateLimitError as e:
            logger.error("OpenAI rate limit exceeded", exc_info=True)
            raise AIClientError("AI rate limit exceeded. Try again later.") from e

        except APIConnectionError as e:
            logger.error("Failed to connect to OpenAI API", exc_info=True)
            raise AIClientError("Could not connect to the AI service.") from e

        except APIError as e:
            logger.error("OpenAI API error", exc_info=True)
            raise AIClientError(f"AI service error: {e}") from e
