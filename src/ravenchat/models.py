"""
Defines the core Pydantic data models for the application.

These models serve as the formal, validated data contract between all other pillars,
aligning with the OpenAI-compatible chat-completions wire format used by every
supported provider.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
Role = Literal[USER_ROLE, ASSISTANT_ROLE, SYSTEM_ROLE]

STANDARD_MODE = "standard"
REASONING_MODE = "reasoning"
WEB_SEARCH_MODE = "web-search"
VISION_MODE = "vision"
FeatureMode = Literal[STANDARD_MODE, REASONING_MODE, WEB_SEARCH_MODE, VISION_MODE]
FEATURE_MODES = (STANDARD_MODE, REASONING_MODE, WEB_SEARCH_MODE, VISION_MODE)

DEFAULT_SESSION_TITLE = "New Chat"

# A message body is either plain text or a list of multimodal parts such as
# {"type": "text", "text": ...} and {"type": "image_url", "image_url": {"url": ...}}
Content = Union[str, List[Dict[str, Any]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Models ---
class Citation(BaseModel):
    """A web source attached to a completion by the provider."""

    url: str
    title: str = ""
    content: Optional[str] = None


class Attachment(BaseModel):
    """A file attached to a user message, already encoded as a URL or text."""

    type: Literal["image", "document"]
    name: str
    url: str
    size: int = 0


class ChatMessage(BaseModel):
    """Represents a single message within a chat session."""

    role: Role
    content: Content = ""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=_now)
    reasoning: Optional[str] = None
    citations: Optional[List[Citation]] = None
    attachments: Optional[List[Attachment]] = None

    def text(self) -> str:
        """Returns the plain-text view of the content."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )

    def to_wire(self) -> Dict[str, Any]:
        """The ``{role, content}`` shape sent to the provider."""
        return {"role": self.role, "content": self.content}


class ChatSession(BaseModel):
    """Represents a complete chat session and the options it was started with."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_SESSION_TITLE
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    feature_mode: FeatureMode = STANDARD_MODE
    model: str = ""

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        return next((msg for msg in self.messages if msg.id == message_id), None)


class Model(BaseModel):
    """A provider model entry with the capability flags used for filtering."""

    id: str
    name: str
    description: Optional[str] = None
    supports_reasoning: bool = False
    supports_images: bool = False
    supports_web_search: bool = False
    is_free: bool = False
    prompt_price: float = 0.0
    completion_price: float = 0.0
