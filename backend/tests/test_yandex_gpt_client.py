"""
Tests for the YandexGPT client (wire level, httpx.MockTransport)
"""
import json

import httpx
import pytest

from dbms_advisor.core.config import Settings
from dbms_advisor.core.yandex_gpt_client import YandexGPTClient, YandexGPTError


def make_settings(**overrides) -> Settings:
    values = {"yandex_api_key": "test-key", "yandex_folder_id": "b1gfolder", "_env_file": None}
    values.update(overrides)
    return Settings(**values)


def completion(text: str) -> dict:
    return {
        "result": {
            "alternatives": [{"message": {"role": "assistant", "text": text}, "status": "ALTERNATIVE_STATUS_FINAL"}],
            "modelVersion": "23.10.2024",
        }
    }


def test_payload_shape():
    client = YandexGPTClient(make_settings())

    payload = client.build_payload("вопрос", system_prompt="роль")

    assert payload["modelUri"] == "gpt://b1gfolder/yandexgpt-32k/rc"
    assert payload["completionOptions"] == {"stream": False, "temperature": 0.6, "maxTokens": "1500"}
    assert payload["messages"] == [
        {"role": "system", "text": "роль"},
        {"role": "user", "text": "вопрос"},
    ]


@pytest.mark.asyncio
async def test_generate_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["folder"] = request.headers["x-folder-id"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion("Private Cloud\nОбоснование: ..."))

    client = YandexGPTClient(make_settings(), transport=httpx.MockTransport(handler))
    try:
        response = await client.generate("вопрос", system_prompt="роль")
    finally:
        await client.close()

    assert response.text.startswith("Private Cloud")
    assert response.status == "ALTERNATIVE_STATUS_FINAL"
    assert seen["auth"] == "Api-Key test-key"
    assert seen["folder"] == "b1gfolder"
    assert seen["body"]["messages"][1]["text"] == "вопрос"


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 2:
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json=completion("On-Premise"))

    client = YandexGPTClient(make_settings(), transport=httpx.MockTransport(handler), retry_delay=0)
    response = await client.generate("вопрос")

    assert response.text == "On-Premise"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"message": "Unauthenticated"})

    client = YandexGPTClient(make_settings(), transport=httpx.MockTransport(handler), retry_delay=0)
    with pytest.raises(YandexGPTError):
        await client.generate("вопрос")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_unexpected_shape_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": {"alternatives": []}})

    client = YandexGPTClient(make_settings(), transport=httpx.MockTransport(handler), retry_delay=0)
    with pytest.raises(YandexGPTError, match="Unexpected"):
        await client.generate("вопрос")


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = YandexGPTClient(
        make_settings(), transport=httpx.MockTransport(handler), max_retries=2, retry_delay=0
    )
    with pytest.raises(YandexGPTError):
        await client.generate("вопрос")

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_unconfigured_client_raises():
    client = YandexGPTClient(make_settings(yandex_api_key=None))

    assert not client.configured
    with pytest.raises(YandexGPTError):
        await client.generate("вопрос")


@pytest.mark.real_llm
@pytest.mark.asyncio
async def test_real_yandex_gpt():
    """Calls the real API; needs YANDEX_API_KEY and YANDEX_FOLDER_ID"""
    client = YandexGPTClient(Settings())
    try:
        response = await client.generate("Ответь одним словом: столица России?")
    finally:
        await client.close()
    assert response.text
