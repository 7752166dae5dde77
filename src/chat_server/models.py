# Request/response models for the chat HTTP API

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.query.models import ContextType, ExternalContext, UserContext, UserRole


class ApiModel(BaseModel):
    # Widget clients send camelCase; snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True)


class ExternalContextModel(ApiModel):
    type: ContextType
    value: str = Field(min_length=1)

    def to_domain(self) -> ExternalContext:
        return ExternalContext(type=self.type, value=self.value)


class UserContextModel(ApiModel):
    user_id: str = Field(alias="userId", min_length=1)
    role: UserRole

    def to_domain(self) -> UserContext:
        return UserContext(user_id=self.user_id, role=self.role)


class HistoryTurn(ApiModel):
    role: Optional[str] = None
    sender: Optional[str] = None
    content: Optional[str] = None
    text: Optional[str] = None


ChatHistoryField = Union[str, List[HistoryTurn], None]


def history_payload(history: ChatHistoryField):
    if history is None or isinstance(history, str):
        return history
    return [turn.model_dump(exclude_none=True) for turn in history]


class ChatRequestBody(ApiModel):
    query: Optional[str] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    context: Optional[ExternalContextModel] = None
    user: Optional[UserContextModel] = None
    chat_history: ChatHistoryField = Field(default=None, alias="chatHistory")
    onboarding_answers: Optional[Dict[str, Any]] = Field(
        default=None, alias="onboardingAnswers"
    )


class ChatResponseBody(BaseModel):
    response: str


class SuggestedQuestionsBody(ApiModel):
    client_id: Optional[str] = Field(default=None, alias="clientId")
    context: Optional[ExternalContextModel] = None
    user: Optional[UserContextModel] = None
    chat_history: ChatHistoryField = Field(default=None, alias="chatHistory")


class SuggestedQuestionsResponse(BaseModel):
    questions: List[str]


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str


class ErrorResponse(BaseModel):
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
