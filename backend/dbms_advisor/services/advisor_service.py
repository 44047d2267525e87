"""
AdvisorService - second opinion from a language model on the computed recommendation
"""
import asyncio
import re
from typing import Optional

from dbms_advisor.core.catalog import DeploymentOption
from dbms_advisor.core.config import Settings, get_settings
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.scoring import NEEDS_EVALUATION_PREFIX, ScoringResult
from dbms_advisor.core.yandex_gpt_client import YandexGPTClient, YandexGPTError

logger = LoggingConfig.get_logger(__name__)


class AdvisorUnavailableError(Exception):
    """Advisor is not configured, failed or timed out"""
    pass


ADVISOR_SYSTEM_PROMPT = """
Ты — эксперт по выбору инфраструктурных решений для баз данных. К тебе обращается пользователь, который прошел тест для определения оптимального типа развертывания СУБД: On-Premise, Private Cloud или Public Cloud.
Пользователь выбрал важные для него критерии из списка и установил их приоритет от 1 (низкий) до 5 (высокий).

Вот список всех возможных критериев:
- Юрисдикция данных: Насколько важна локализация данных и соответствие местным законам.
- Отраслевые стандарты: Требования к сертификации и соответствию отраслевым нормам (например, PCI DSS, HIPAA).
- Физическая безопасность: Насколько важно физическое расположение серверов и меры их защиты.
- Объём данных: Объем хранимых и обрабатываемых данных (Малый, Средний, Большой).
- Латентность: Требования к задержкам при доступе к данным.
- Вариативность нагрузки: Насколько часто и сильно меняется нагрузка на БД.
- Начальные инвестиции: Бюджет на первоначальное развертывание (оборудование, лицензии).
- Постоянные затраты: Регулярные расходы на поддержку, лицензии, электричество, персонал.
- Срок использования: Планируемый срок эксплуатации системы (Краткосрочный, Долгосрочный).
- Квалификация персонала: Наличие и уровень экспертизы команды по управлению БД и инфраструктурой.
- Время до запуска: Насколько быстро нужно развернуть систему.
- Масштабируемость: Требования к возможности быстрого увеличения или уменьшения ресурсов.

Тебе предоставят информацию о том, какие конкретно критерии выбрал пользователь, какие приоритеты он им назначил, и какие значения он указал для "специальных" критериев (Объём данных, Срок использования).

Твоя задача:
1. Проанализируй выбор пользователя: какие критерии для него наиболее важны (высокий приоритет), какие менее важны. Обрати внимание на комбинацию критериев.
2. На основе этого анализа дай **одну** четкую рекомендацию: какой из трех типов СУБД (**On-Premise**, **Private Cloud** или **Public Cloud**) лучше всего подходит для ситуации пользователя.
3. Предоставь краткое, но емкое **обоснование** своей рекомендации, объясняя, почему именно этот тип подходит лучше всего, исходя из приоритетов и выбора пользователя.

Формат ответа СТРОГО:
<On-Premise/Private Cloud/Public Cloud>
Обоснование: [Твое обоснование здесь]

Пример:
Public Cloud
Обоснование: Пользователь указал высокий приоритет для Масштабируемости и Времени до запуска, а также выбрал Краткосрочный срок использования. Public Cloud наилучшим образом удовлетворяет этим требованиям, позволяя быстро развернуть систему и гибко масштабировать ресурсы без значительных начальных инвестиций. Низкий приоритет Физической безопасности также делает Public Cloud приемлемым вариантом.
"""

# Keyword of each option as it is searched for in the advisor's answer
_OPTION_KEYWORDS = {
    DeploymentOption.ON_PREM: re.compile(r"on[\s-]?prem", re.IGNORECASE),
    DeploymentOption.PRIVATE: re.compile(r"private", re.IGNORECASE),
    DeploymentOption.PUBLIC: re.compile(r"public", re.IGNORECASE),
}


def build_advisor_summary(result: ScoringResult) -> str:
    """Criteria, priorities and special values; scores are left out on purpose"""
    lines = []
    for item in result.details:
        lines.append(f"Критерий: {item.name}")
        lines.append(f"  Приоритет: {item.priority}")
        if item.special_value:
            lines.append(f"  Значение: {item.special_value}")
    return "\n".join(lines)


def _options_named(line: str) -> list:
    return [option for option, pattern in _OPTION_KEYWORDS.items() if pattern.search(line)]


def advisor_agrees(recommendation: str, advisor_text: Optional[str]) -> bool:
    """
    Best-effort check that the advisor named the same option.

    The answer format puts the option on its own first line, so the first line
    naming any option decides; otherwise the whole text is searched.
    """
    if not advisor_text or recommendation.startswith(NEEDS_EVALUATION_PREFIX):
        return False

    recommended = next(
        (option for option in DeploymentOption.ordered() if option.label == recommendation),
        None,
    )
    if recommended is None:
        return False

    for line in advisor_text.splitlines():
        named = _options_named(line)
        if named:
            return named == [recommended]

    return bool(_OPTION_KEYWORDS[recommended].search(advisor_text))


class AdvisorService:
    """Consults YandexGPT with a bounded timeout"""

    def __init__(self, client: Optional[YandexGPTClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.client = client or YandexGPTClient(self.settings)

    @property
    def enabled(self) -> bool:
        return self.client.configured

    async def consult(self, result: ScoringResult) -> str:
        """
        Ask the model for its own recommendation.

        Raises:
            AdvisorUnavailableError: not configured, request failed or timed out
        """
        if not self.enabled:
            raise AdvisorUnavailableError("Yandex API Key или Folder ID не установлены")

        prompt = (
            "Вот какие критерии и приоритеты выбрал пользователь: \n"
            f"{build_advisor_summary(result)}"
        )
        timeout = float(self.settings.llm_timeout_seconds)
        try:
            response = await asyncio.wait_for(
                self.client.generate(prompt, system_prompt=ADVISOR_SYSTEM_PROMPT),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Advisor timed out", extra={"timeout_seconds": timeout})
            raise AdvisorUnavailableError(f"Advisor did not answer within {timeout:.0f}s") from e
        except YandexGPTError as e:
            logger.warning("Advisor request failed", extra={"error": str(e)})
            raise AdvisorUnavailableError(str(e)) from e

        return response.text.strip()

    async def close(self) -> None:
        await self.client.close()
