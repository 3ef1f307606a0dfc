from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from kline_agent.errors import StructuredOutputError
from kline_agent.llm_connector import LLMConnector, strip_code_fences


def _client(content):
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
    create = AsyncMock(return_value=response)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))), create


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_connector_requires_key_without_client() -> None:
    with pytest.raises(ValueError):
        LLMConnector(api_key="")


@pytest.mark.asyncio
async def test_chat_uses_default_model_and_temperature() -> None:
    client, create = _client("hello")
    llm = LLMConnector(api_key="", default_model="base-model", temperature=0.1, client=client)

    assert await llm.chat("sys", "user", max_tokens=10) == "hello"
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "base-model"
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 10
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


@pytest.mark.asyncio
async def test_chat_structured_parses_fenced_json() -> None:
    client, create = _client('```json\n{"action": "NO_OP", "reason": "flat"}\n```')
    llm = LLMConnector(api_key="k", client=client)

    data = await llm.chat_structured("sys", "user", model="judge")
    assert data == {"action": "NO_OP", "reason": "flat"}
    assert create.await_args.kwargs["response_format"] == {"type": "json_object"}
    assert create.await_args.kwargs["model"] == "judge"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["not json at all", "[1, 2, 3]"])
async def test_chat_structured_rejects_non_objects(content) -> None:
    client, _ = _client(content)
    llm = LLMConnector(api_key="k", client=client)
    with pytest.raises(StructuredOutputError) as exc_info:
        await llm.chat_structured("sys", "user")
    assert exc_info.value.raw == content


@pytest.mark.asyncio
async def test_analyze_image_sends_base64_data_url() -> None:
    client, create = _client("uptrend")
    llm = LLMConnector(api_key="k", client=client)

    assert await llm.analyze_image("sys", "describe", "aGVsbG8=", model="vision") == "uptrend"
    content = create.await_args.kwargs["messages"][1]["content"]
    assert content[1]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="
