"""
Chat-completions client.

The model tier is an argument of every call, resolved to a model name
here. Nothing about the tier is stored on the client, so one instance is
safe to share between concurrently processed sessions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from sales_agent.config import settings
from sales_agent.schemas.conversation_schema import ModelTier, ToolCall

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The language model request failed."""


@dataclass
class ModelReply:
    """A complete (non-streamed) model response."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def model_for(tier: ModelTier) -> str:
    if tier == ModelTier.ADVANCED:
        return settings.model.llm_model_advanced
    return settings.model.llm_model


class LLMClient:
    """Thin async wrapper over the OpenAI chat-completions API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client or AsyncOpenAI(timeout=settings.model.request_timeout_sec)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tier: ModelTier = ModelTier.BASELINE,
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelReply:
        """Run one completion; returns text and any requested tool calls."""
        kwargs: dict[str, Any] = {
            "model": model_for(tier),
            "messages": messages,
            "temperature": settings.model.llm_temperature if temperature is None else temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice or "auto"
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIError as exc:
            raise LLMError(f"{type(exc).__name__}: {exc}") from exc

        message = response.choices[0].message
        tool_calls = [
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
            for call in message.tool_calls or []
        ]
        logger.debug(
            "Completion on %s: %d chars, %d tool calls",
            kwargs["model"], len(message.content or ""), len(tool_calls),
        )
        return ModelReply(content=message.content or "", tool_calls=tool_calls)

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tier: ModelTier = ModelTier.BASELINE,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Stream a tool-free completion as text deltas."""
        try:
            response = await self._client.chat.completions.create(
                model=model_for(tier),
                messages=messages,
                temperature=settings.model.llm_temperature if temperature is None else temperature,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as exc:
            raise LLMError(f"{type(exc).__name__}: {exc}") from exc
