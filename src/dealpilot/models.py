"""
Defines the core Pydantic data models for the agent.

These models serve as the formal, validated data contract between the pillars
(store, tools, LLM, engine), aligning with the message conventions of the
OpenAI SDK.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
Role = Literal["user", "assistant", "system"]

# Placeholder id carried by the assistant message while it is still streaming.
STREAMING_ID = "streaming"


def new_id() -> str:
    return str(uuid.uuid4())


# --- Models ---
class ToolCall(BaseModel):
    """A tool invocation requested by the model, before validation."""

    id: str = Field(default_factory=new_id)
    function_name: str
    function_args: str = "{}"


class ToolInvocation(BaseModel):
    """A tool call after it went through the registry."""

    id: str = Field(default_factory=new_id)
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    is_error: bool = False


class ChatMessage(BaseModel):
    """Represents a single message within a conversation.

    Messages are frozen: the streaming assistant message is replaced, never
    edited in place, and sealed with a permanent id on finalization.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    id: str = Field(default_factory=new_id)
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_streaming(self) -> bool:
        return self.id == STREAMING_ID


class Conversation(BaseModel):
    """Represents a complete chat conversation session."""

    id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Credential(BaseModel):
    """An API key paired with the model it should be used with."""

    api_key: SecretStr
    model: str


EventType = Literal["delta", "tool_call", "finalized", "degraded", "error", "cancelled"]


class AgentEvent(BaseModel):
    """A notification pushed to engine subscribers."""

    type: EventType
    conversation_id: str
    delta: Optional[str] = None
    content: Optional[str] = None
    message: Optional[ChatMessage] = None
    tool_call: Optional[ToolInvocation] = None
    error: Optional[str] = None
