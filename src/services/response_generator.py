"""
Response generation: one chat completion per request, retried on overload.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.providers.chat.base import ChatMessage, ChatModel, TurnRole
from src.shared.config import GenerationConfig
from src.shared.errors import (
    ModelInvocationError,
    ModelOverloadedError,
    UpstreamRequestError,
)
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    chat_completion_retries_total,
    chat_completion_total,
)
from src.shared.observability.tracing import get_tracer
from src.shared.resilience import RetryExhausted, RetryPolicy, retry_async

logger = get_logger(__name__)
tracer = get_tracer(__name__)

# 529 is the "overloaded" status some OpenAI-compatible gateways use
OVERLOAD_STATUSES = frozenset({503, 529})


def is_overload(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamRequestError) and exc.status in OVERLOAD_STATUSES


class ResponseGenerator:
    def __init__(
        self,
        model: ChatModel,
        config: Optional[GenerationConfig] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.model = model
        self.config = config or GenerationConfig()
        self.policy = RetryPolicy(
            max_retries=self.config.max_retries,
            delay_seconds=self.config.retry_delay_seconds,
        )
        self._sleep = sleep

    @staticmethod
    def build_messages(
        system_prompt: str, turns: List[ChatMessage], question: str
    ) -> List[ChatMessage]:
        return [
            ChatMessage(role=TurnRole.SYSTEM, content=system_prompt),
            *turns,
            ChatMessage(role=TurnRole.USER, content=question),
        ]

    async def generate(
        self, system_prompt: str, turns: List[ChatMessage], question: str
    ) -> str:
        """
        Ask the model for an answer.

        Raises:
            ModelOverloadedError: the model kept signalling overload
            ModelInvocationError: any other model failure
        """
        messages = self.build_messages(system_prompt, turns, question)
        with tracer.start_as_current_span("generate_response") as span:
            span.set_attribute("model_id", self.model.model_id)
            span.set_attribute("turns", len(turns))
            return await self.complete(messages, max_tokens=self.config.max_response_tokens)

    async def complete(
        self,
        messages: List[ChatMessage],
        *,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Single completion call wrapped in the overload retry policy."""
        model_id = self.model.model_id

        def on_retry(attempt: int, exc: BaseException) -> None:
            chat_completion_retries_total.labels(model_id=model_id).inc()
            logger.warning(
                "model_overloaded_retrying",
                model_id=model_id,
                attempt=attempt,
                retries_left=self.policy.max_retries - attempt + 1,
                delay_seconds=self.policy.delay_for(attempt),
            )

        retry_kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        try:
            answer = await retry_async(
                lambda: self.model.complete(
                    messages,
                    max_tokens=max_tokens,
                    temperature=self.config.temperature,
                    response_format=response_format,
                ),
                policy=self.policy,
                is_retryable=is_overload,
                on_retry=on_retry,
                **retry_kwargs,
            )
        except RetryExhausted as exc:
            chat_completion_total.labels(model_id=model_id, status="overloaded").inc()
            logger.error("model_overloaded", model_id=model_id, attempts=exc.attempts)
            raise ModelOverloadedError(attempts=exc.attempts) from exc
        except UpstreamRequestError as exc:
            chat_completion_total.labels(model_id=model_id, status="error").inc()
            logger.error(
                "model_invocation_failed",
                model_id=model_id,
                status=exc.status,
                detail=exc.detail,
            )
            raise ModelInvocationError(
                f"Chat completion failed: {exc.detail}", status=exc.status
            ) from exc

        chat_completion_total.labels(model_id=model_id, status="success").inc()
        return answer
