"""Chat message schemas shared by the store, the tool loop and the model client."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class ModelTier(str, Enum):
    """Which model a turn runs on. Chosen per turn, never stored."""

    BASELINE = "baseline"
    ADVANCED = "advanced"


class ToolCall(BaseModel):
    """A tool request emitted by the model."""

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the JSON arguments; malformed or non-object input yields {}."""
        try:
            parsed = json.loads(self.arguments or "{}")
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_openai(cls, payload: dict[str, Any]) -> "ToolCall":
        function = payload.get("function") or {}
        return cls(
            id=payload["id"],
            name=function.get("name", ""),
            arguments=function.get("arguments") or "{}",
        )


class ChatMessage(BaseModel):
    """One message of a session transcript."""

    role: Role
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_tool_request(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    def to_openai(self) -> dict[str, Any]:
        """Render in the chat-completions wire format."""
        payload: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == Role.TOOL:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        return payload
