"""
Tests for the advisor service and the agreement check
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from dbms_advisor.core.config import Settings
from dbms_advisor.core.scoring import compute_recommendation
from dbms_advisor.core.yandex_gpt_client import YandexGPTError, YandexGPTResponse
from dbms_advisor.services.advisor_service import (ADVISOR_SYSTEM_PROMPT, AdvisorService,
                                                   AdvisorUnavailableError, advisor_agrees,
                                                   build_advisor_summary)


def make_service(generate, timeout=30) -> AdvisorService:
    settings = Settings(
        yandex_api_key="k", yandex_folder_id="f", llm_timeout_seconds=timeout, _env_file=None
    )
    client = Mock()
    client.configured = True
    client.generate = generate
    client.close = AsyncMock()
    return AdvisorService(client=client, settings=settings)


def test_summary_lists_criteria_without_scores(catalog):
    result = compute_recommendation(
        catalog,
        ["Латентность", "Объём данных"],
        {"Латентность": 4, "Объём данных": 2},
        special_values={"Объём данных": "Большой"},
    )

    summary = build_advisor_summary(result)

    assert summary.splitlines() == [
        "Критерий: Латентность",
        "  Приоритет: 4",
        "Критерий: Объём данных",
        "  Приоритет: 2",
        "  Значение: Большой",
    ]
    assert "OnPrem" not in summary


@pytest.mark.parametrize("recommendation, text, expected", [
    ("Public Cloud", "Public Cloud\nОбоснование: масштабируемость.", True),
    ("Public Cloud", "**Public Cloud**\nОбоснование: ...", True),
    ("On-Premise", "On-Premise\nОбоснование: не Public Cloud, потому что ...", True),
    ("On-Premise", "Private Cloud\nОбоснование: On-Premise дороже.", False),
    ("Private Cloud", "Рекомендую: private cloud", True),
    ("Private Cloud", "", False),
    ("Private Cloud", None, False),
    ("Требуется дополнительная оценка (On-Premise/Public Cloud)", "On-Premise", False),
])
def test_advisor_agrees(recommendation, text, expected):
    assert advisor_agrees(recommendation, text) is expected


@pytest.mark.asyncio
async def test_consult_returns_stripped_text(catalog):
    generate = AsyncMock(return_value=YandexGPTResponse(model="m", text="  Public Cloud\nОбоснование: x \n"))
    service = make_service(generate)
    result = compute_recommendation(catalog, ["Масштабируемость"], {"Масштабируемость": 5})

    text = await service.consult(result)

    assert text == "Public Cloud\nОбоснование: x"
    prompt = generate.call_args.args[0]
    assert "Критерий: Масштабируемость" in prompt
    assert generate.call_args.kwargs["system_prompt"] == ADVISOR_SYSTEM_PROMPT


@pytest.mark.asyncio
async def test_consult_wraps_client_errors(catalog):
    service = make_service(AsyncMock(side_effect=YandexGPTError("HTTP 500")))
    result = compute_recommendation(catalog, ["Латентность"], {"Латентность": 1})

    with pytest.raises(AdvisorUnavailableError):
        await service.consult(result)


@pytest.mark.asyncio
async def test_consult_times_out(catalog):
    async def slow(*args, **kwargs):
        await asyncio.sleep(5)

    service = make_service(slow, timeout=0.05)
    result = compute_recommendation(catalog, ["Латентность"], {"Латентность": 1})

    with pytest.raises(AdvisorUnavailableError):
        await service.consult(result)


@pytest.mark.asyncio
async def test_consult_unconfigured(catalog):
    settings = Settings(yandex_api_key=None, yandex_folder_id=None, _env_file=None)
    service = AdvisorService(settings=settings)
    result = compute_recommendation(catalog, ["Латентность"], {"Латентность": 1})

    assert not service.enabled
    with pytest.raises(AdvisorUnavailableError):
        await service.consult(result)
