import pytest

from conftest import FakeChatModel, overloaded
from src.providers.chat.base import ChatMessage, TurnRole
from src.services.response_generator import ResponseGenerator, is_overload
from src.shared.config import GenerationConfig
from src.shared.errors import (
    ModelInvocationError,
    ModelOverloadedError,
    UpstreamRequestError,
)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_messages_are_system_history_question():
    model = FakeChatModel(["Temos dois T2."])
    generator = ResponseGenerator(model, GenerationConfig(max_response_tokens=256))
    turns = [
        ChatMessage(TurnRole.USER, "Olá"),
        ChatMessage(TurnRole.ASSISTANT, "Bom dia!"),
    ]

    answer = await generator.generate("SYSTEM", turns, "Tem T2?")

    assert answer == "Temos dois T2."
    call = model.calls[0]
    assert call["max_tokens"] == 256
    assert [(m.role, m.content) for m in call["messages"]] == [
        (TurnRole.SYSTEM, "SYSTEM"),
        (TurnRole.USER, "Olá"),
        (TurnRole.ASSISTANT, "Bom dia!"),
        (TurnRole.USER, "Tem T2?"),
    ]


@pytest.mark.asyncio
async def test_overload_is_retried_with_fixed_delay():
    model = FakeChatModel([overloaded(), overloaded(529), "ok"])
    sleep = SleepRecorder()
    generator = ResponseGenerator(model, GenerationConfig(), sleep=sleep)

    answer = await generator.generate("S", [], "Q")

    assert answer == "ok"
    assert len(model.calls) == 3
    assert sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_persistent_overload_raises_retryable_error():
    model = FakeChatModel([overloaded()])
    generator = ResponseGenerator(model, GenerationConfig(), sleep=SleepRecorder())

    with pytest.raises(ModelOverloadedError) as exc_info:
        await generator.generate("S", [], "Q")

    assert len(model.calls) == 3
    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
async def test_other_failures_are_not_retried():
    model = FakeChatModel([UpstreamRequestError("chat", 400, "bad request"), "unused"])
    sleep = SleepRecorder()
    generator = ResponseGenerator(model, GenerationConfig(), sleep=sleep)

    with pytest.raises(ModelInvocationError) as exc_info:
        await generator.generate("S", [], "Q")

    assert len(model.calls) == 1
    assert sleep.delays == []
    assert exc_info.value.retryable is False
    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_retry_count_is_configurable():
    model = FakeChatModel([overloaded()])
    generator = ResponseGenerator(
        model, GenerationConfig(max_retries=0), sleep=SleepRecorder()
    )

    with pytest.raises(ModelOverloadedError):
        await generator.generate("S", [], "Q")

    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_complete_passes_response_format():
    model = FakeChatModel(['{"questions": []}'])
    generator = ResponseGenerator(model)

    await generator.complete(
        [ChatMessage(TurnRole.SYSTEM, "p")], response_format={"type": "json_object"}
    )

    assert model.calls[0]["response_format"] == {"type": "json_object"}


def test_is_overload():
    assert is_overload(overloaded(503))
    assert is_overload(overloaded(529))
    assert not is_overload(overloaded(500))
    assert not is_overload(RuntimeError("boom"))
