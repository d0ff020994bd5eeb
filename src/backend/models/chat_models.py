"""
Pydantic models for conversation data handed to and from the agent core.

Two message shapes exist:
- ChatMessage: what the persistence collaborator stores (text + attachments)
- ChatCompletionMessage: what goes over the wire to the model endpoint
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.constants import TOOL_NAME_DELIMITER

Role = Literal["system", "user", "assistant", "tool"]
ToolChoice = Literal["auto", "none"]


class EndpointConfig(BaseModel):
    """Model endpoint selected by the user.

    An empty ``model`` selects auto mode in the decision engine.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    provider_id: str = "openai"
    base_url: str = ""
    api_key: str = ""
    model: str = ""
    system_prompt: str | None = None
    folder_id: str | None = None

    @property
    def is_auto(self) -> bool:
        return not self.model.strip()


class Attachment(BaseModel):
    """File attached to a user message. Only images reach the model."""

    type: Literal["image", "file"] = "image"
    uri: str
    mime_type: str | None = None
    name: str | None = None


class ChatMessage(BaseModel):
    """A conversation message owned by the persistence collaborator."""

    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def has_images(self) -> bool:
        return any(a.type == "image" for a in self.attachments)


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str


class ImageURLPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = TextPart | ImageURLPart


class FunctionCall(BaseModel):
    """Function name and (possibly still incomplete) JSON argument string."""

    name: str = ""
    arguments: str = ""


class ToolCall(BaseModel):
    """A model-issued tool invocation."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall = Field(default_factory=FunctionCall)

    @property
    def tool_name(self) -> str:
        """Tool part of ``serverId__toolName`` (whole name when undelimited)."""
        _, sep, rest = self.function.name.partition(TOOL_NAME_DELIMITER)
        return rest if sep else self.function.name


class ChatCompletionMessage(BaseModel):
    """A message in the wire format of ``/chat/completions``."""

    role: Role
    content: str | list[ContentPart] | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the request body; ``content`` is always present (null allowed)."""
        payload: dict[str, Any] = {"role": self.role, "content": None}
        if isinstance(self.content, list):
            payload["content"] = [part.model_dump() for part in self.content]
        else:
            payload["content"] = self.content
        if self.tool_calls:
            payload["tool_calls"] = [call.model_dump() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


class Usage(BaseModel):
    """Token accounting reported by the endpoint."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Usage:
        return cls(
            prompt_tokens=payload.get("prompt_tokens"),
            completion_tokens=payload.get("completion_tokens"),
            total_tokens=payload.get("total_tokens"),
        )


class ChatCompletionResult(BaseModel):
    """Fully accumulated output of one completion call."""

    full_content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Usage | None = None
