"""
Base chat-completion provider protocol.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class TurnRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: TurnRole
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@runtime_checkable
class ChatModel(Protocol):
    """
    Protocol for chat-completion models.

    Implementations raise ``UpstreamRequestError`` carrying the HTTP status so
    callers can tell an overload (503) apart from other failures.
    """

    @property
    def model_id(self) -> str:
        ...

    async def complete(
        self,
        messages: List[ChatMessage],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the text of the first completion choice."""
        ...
