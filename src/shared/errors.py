"""
Error taxonomy for the chat pipeline.

Each error carries the HTTP status the chat server maps it to and whether the
caller may retry. Component-level failures (a single vector query, an
aggregate lookup) are absorbed where they happen and never reach this level;
what is defined here is what propagates to the top of a chat request.
"""

from typing import Any, Dict, Optional


class RealtyRagError(Exception):
    """Base class for errors surfaced by the chat pipeline."""

    status_code: int = 500
    retryable: bool = False
    error_code: str = "internal_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


# ---- Input validation (4xx, never retried) ----


class InputValidationError(RealtyRagError):
    status_code = 400
    error_code = "invalid_input"


class MissingQueryError(InputValidationError):
    error_code = "missing_query"

    def __init__(self, message: str = "Query is required"):
        super().__init__(message)


class InvalidEmbeddingError(InputValidationError):
    error_code = "invalid_embedding"


# ---- Configuration problems (fatal for the request) ----


class ConfigurationError(RealtyRagError):
    error_code = "configuration_error"


class TenantNotFoundError(ConfigurationError):
    status_code = 404
    error_code = "tenant_not_found"

    def __init__(self, client_id: str):
        super().__init__(
            f"Configuration not found for client: {client_id}",
            details={"client_id": client_id},
        )
        self.client_id = client_id


class PromptTemplateMissingError(ConfigurationError):
    error_code = "prompt_template_missing"

    def __init__(self, client_id: str):
        super().__init__(
            f"No system prompt template configured for client: {client_id}",
            details={"client_id": client_id},
        )
        self.client_id = client_id


# ---- Upstream failures ----


class UpstreamTransientError(RealtyRagError):
    status_code = 503
    retryable = True
    error_code = "upstream_unavailable"


class ModelOverloadedError(UpstreamTransientError):
    error_code = "model_overloaded"

    def __init__(
        self,
        message: str = (
            "The AI model is temporarily overloaded. "
            "Please try again in a few moments."
        ),
        *,
        attempts: int = 0,
    ):
        super().__init__(message, details={"attempts": attempts})
        self.attempts = attempts


class ModelInvocationError(RealtyRagError):
    status_code = 502
    error_code = "model_error"

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message, details={"upstream_status": status})
        self.status = status


class UpstreamRequestError(RuntimeError):
    """
    Raised by HTTP-backed providers for non-2xx answers.

    Kept separate from the pipeline taxonomy: callers decide whether a given
    status is transient for them.
    """

    def __init__(self, service: str, status: Optional[int], detail: str):
        super().__init__(f"{service} request failed ({status}): {detail}")
        self.service = service
        self.status = status
        self.detail = detail
