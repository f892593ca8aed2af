"""Language model completion client.

The rest of the pipeline only sees ``CompletionClient.complete``; anything that
goes wrong inside it surfaces as ``CompletionFailure``.
"""
import logging
from typing import Any, Optional, Protocol, Sequence

from openai import APITimeoutError, OpenAI, OpenAIError

from support_chat.config import Settings
from support_chat.core.exceptions import CompletionFailure
from support_chat.models.conversation import ChatTurn, Sender

logger = logging.getLogger(__name__)

_OPENAI_ROLES = {
    Sender.USER: "user",
    Sender.AI: "assistant",
}


class CompletionClient(Protocol):
    def complete(self, system_prompt: str, turns: Sequence[ChatTurn], timeout: float) -> str:
        """Return the model's reply to ``turns`` (oldest first)."""
        ...


def build_openai_messages(system_prompt: str, turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
    """Convert chat turns to OpenAI format: [{"role": "...", "content": "..."}]."""
    messages = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        messages.append({"role": _OPENAI_ROLES[turn.role], "content": turn.content})
    return messages


class OpenAICompletionClient:
    """Chat completions through the OpenAI SDK."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        max_tokens: int = 400,
        temperature: float = 0.1,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client
        if self._client is None and api_key:
            # No SDK-level retries: a failed call is reported, not replayed
            self._client = OpenAI(api_key=api_key, max_retries=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompletionClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            max_tokens=settings.LLM_MAX_COMPLETION_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )

    def complete(self, system_prompt: str, turns: Sequence[ChatTurn], timeout: float) -> str:
        """
        Call the chat completions API once.

        Raises:
            CompletionFailure: If no API key is configured, the API call fails
                or times out, or the response has no message content
        """
        if self._client is None:
            raise CompletionFailure("OPENAI_API_KEY is not configured")

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=build_openai_messages(system_prompt, turns),
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=timeout,
            )
        except APITimeoutError as exc:
            raise CompletionFailure(f"OpenAI request timed out after {timeout}s") from exc
        except OpenAIError as exc:
            raise CompletionFailure(f"OpenAI request failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise CompletionFailure("Malformed completion response") from exc

        if content is not None and not isinstance(content, str):
            raise CompletionFailure("Malformed completion response")

        return content or ""
