"""
Prompt rendering for the wizard

Builds transport-neutral prompts: a text, an optional keyboard of choices and
a slot name a transport may use to edit an earlier message in place.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from dbms_advisor.core import wizard_actions as actions
from dbms_advisor.core.catalog import CriterionCatalog, DeploymentOption, ScoreTriple
from dbms_advisor.core.scoring import ScoreSource, ScoringResult

MARKDOWN = "Markdown"

SLOT_CRITERIA = "criteria"
SLOT_PRIORITY = "priority"
SLOT_SPECIAL = "special"
SLOT_OVERRIDE = "override"

PRIORITY_RANGE = range(1, 6)
WEIGHT_RANGE = range(1, 11)
WEIGHTS_PER_ROW = 5

GREETING_TEXT = "Привет! Я бот для выбора типа СУБД (On-Premise, Private, Public). Давайте начнём чеклист."
RESET_TEXT = "Чеклист сброшен. Давайте начнем заново."
IDLE_HINT_TEXT = "Чтобы начать чеклист, введите /start"
RESTART_HINT_TEXT = "Чтобы начать новый чеклист, введите /start"
MISSING_SESSION_TEXT = "Произошла ошибка состояния. Пожалуйста, начните заново с /start."
EMPTY_SELECTION_TEXT = "Пожалуйста, выберите хотя бы один критерий."
INVALID_ACTION_TEXT = "Это действие сейчас недоступно. Пожалуйста, используйте кнопки ниже."
USE_BUTTONS_TEXT = "Пожалуйста, используйте кнопки для переопределения весов."
ADVISOR_FAILED_TEXT = "Не удалось получить рекомендацию от AI."
PERSIST_FAILED_TEXT = "Произошла ошибка при сохранении результатов."

_SOURCE_LABELS = {
    ScoreSource.BASELINE: "базовый",
    ScoreSource.OVERRIDE: "переопределенный",
}


class Choice(BaseModel):
    """One button"""
    label: str
    token: str


class Prompt(BaseModel):
    """One outgoing message"""
    text: str
    keyboard: List[List[Choice]] = Field(default_factory=list)
    parse_mode: Optional[str] = None
    slot: Optional[str] = None
    edit: bool = False


def message(text: str) -> Prompt:
    return Prompt(text=text)


def criteria_prompt(catalog: CriterionCatalog, selected: List[str], edit: bool = False) -> Prompt:
    rows = []
    for criterion in catalog:
        mark = "✓" if criterion.name in selected else "○"
        rows.append([Choice(label=f"{mark} {criterion.name}", token=actions.toggle_token(criterion.name))])
    rows.append([Choice(label="✅ Готово", token=actions.DONE_CRITERIA)])
    return Prompt(
        text="Выберите критерии, которые важны для вашей компании:",
        keyboard=rows,
        slot=SLOT_CRITERIA,
        edit=edit,
    )


def priority_prompt(catalog: CriterionCatalog, name: str) -> Prompt:
    criterion = catalog.require(name)
    row = [Choice(label=str(p), token=actions.priority_token(name, p)) for p in PRIORITY_RANGE]
    return Prompt(
        text=f"Установите приоритет для критерия:\n\n*{name}*\n{criterion.description}",
        keyboard=[row],
        parse_mode=MARKDOWN,
        slot=SLOT_PRIORITY,
        edit=True,
    )


def special_prompt(catalog: CriterionCatalog, name: str) -> Prompt:
    spec = catalog.special_spec(name)
    if spec is None:
        # Special criterion without a configured option set
        return Prompt(text=f"Укажите значение для '{name}':", slot=SLOT_SPECIAL, edit=True)
    rows = [
        [Choice(label=option, token=actions.special_token(spec.prefix, index))]
        for index, option in enumerate(spec.options)
    ]
    return Prompt(text=spec.prompt, keyboard=rows, parse_mode=MARKDOWN, slot=SLOT_SPECIAL, edit=True)


def override_question_prompt() -> Prompt:
    return Prompt(
        text="Хотите ли переопределить базовые баллы (веса) для выбранных критериев?",
        keyboard=[[
            Choice(label="Да", token=actions.OVERRIDE_YES),
            Choice(label="Нет", token=actions.OVERRIDE_NO),
        ]],
    )


def override_list_prompt(selected: List[str], overridden: List[str]) -> Prompt:
    rows = []
    for name in selected:
        label = f"✓ {name}" if name in overridden else name
        rows.append([Choice(label=label, token=actions.override_select_token(name))])
    rows.append([Choice(label="✅ Готово", token=actions.OVERRIDE_DONE)])
    return Prompt(
        text="Выберите критерий, для которого хотите изменить веса:",
        keyboard=rows,
        slot=SLOT_OVERRIDE,
    )


def weight_prompt(name: str, draft: ScoreTriple, step: int) -> Prompt:
    option = DeploymentOption.ordered()[step]
    current = draft.get(option)

    lines = [f"Изменение весов для критерия *{name}*", "", "*Текущие веса:*"]
    for each in DeploymentOption.ordered():
        lines.append(f"• {each.label}: {draft.get(each)}")
    lines.append("")
    lines.append(f"Выберите новое значение для *{option.label}*:")

    rows: List[List[Choice]] = []
    row: List[Choice] = []
    for value in WEIGHT_RANGE:
        label = f"• {value} •" if value == current else str(value)
        row.append(Choice(label=label, token=actions.weight_token(step, value)))
        if len(row) == WEIGHTS_PER_ROW:
            rows.append(row)
            row = []
    if row:
        rows.append(row)
    rows.append([Choice(label="❌ Отмена", token=actions.OVERRIDE_CANCEL)])

    return Prompt(
        text="\n".join(lines),
        keyboard=rows,
        parse_mode=MARKDOWN,
        slot=SLOT_OVERRIDE,
        edit=True,
    )


def result_text(result: ScoringResult) -> str:
    totals = result.totals
    text = (
        "Итоговые баллы:\n"
        f"On-Premise: {totals.on_prem}\n"
        f"Private Cloud: {totals.private}\n"
        f"Public Cloud: {totals.public}\n\n"
    )
    if not result.needs_evaluation:
        return text + f"Рекомендуется {result.winners[0].label}."
    tied = ", ".join(option.label for option in result.winners)
    return text + f"Варианты ({tied}) равны по баллам, нужна дополнительная оценка."


def source_label(source: ScoreSource, special_value: Optional[str]) -> str:
    if source == ScoreSource.SPECIAL:
        return f"специальный ({special_value or 'не указан'})"
    return _SOURCE_LABELS[source]


def breakdown_text(result: ScoringResult) -> str:
    lines = ["Детализация расчета:", ""]
    for item in result.details:
        s, w = item.scores, item.weighted
        lines.append(f"Критерий: {item.name}")
        lines.append(f"  Приоритет: {item.priority}")
        lines.append(
            f"  Баллы ({source_label(item.source, item.special_value)}): "
            f"OnPrem={s.on_prem}, Private={s.private}, Public={s.public}"
        )
        lines.append(
            f"  С учетом приоритета: OnPrem={w.on_prem}, Private={w.private}, Public={w.public}"
        )
        lines.append("")
    return "\n".join(lines)


def advisor_prompt(text: str) -> Prompt:
    return Prompt(text=f"*Рекомендация AI*:\n{text}", parse_mode=MARKDOWN)
