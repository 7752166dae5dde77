"""
Chat-completion provider interfaces and implementations.
"""

from .base import ChatMessage, ChatModel, TurnRole
from .openai import OpenAIChatProvider

__all__ = ["ChatMessage", "ChatModel", "TurnRole", "OpenAIChatProvider"]
