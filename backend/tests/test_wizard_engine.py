"""
Tests for the wizard controller (step machine)
"""
import pytest
from sqlalchemy.exc import OperationalError

from dbms_advisor.core import wizard_prompts as prompts
from dbms_advisor.core.catalog import ScoreTriple
from dbms_advisor.core.wizard_engine import WizardController
from dbms_advisor.core.wizard_session import WizardStep
from dbms_advisor.models.answer import AnswerSource
from fakes import ADVISOR_ANSWER, FakeAdvisor, FakeRecorder

SID = "100500"


def texts(reply):
    return [p.text for p in reply.prompts]


def labels(prompt):
    return [choice.label for row in prompt.keyboard for choice in row]


async def select_and_prioritize(controller, selected, priorities):
    await controller.handle_text(SID, "/start")
    for name in selected:
        await controller.handle_action(SID, f"crit_{name}")
    await controller.handle_action(SID, "done_criteria")
    reply = None
    for name in selected:
        reply = await controller.handle_action(SID, f"prio_{name}_{priorities[name]}")
    return reply


@pytest.mark.asyncio
async def test_start_creates_fresh_session(controller, store):
    reply = await controller.handle_text(SID, "/start")

    assert reply.conversation_reset
    assert reply.prompts[0].text == prompts.GREETING_TEXT
    assert reply.prompts[1].slot == prompts.SLOT_CRITERIA
    assert "✅ Готово" in labels(reply.prompts[1])
    assert store.get(SID).step == WizardStep.SELECTING_CRITERIA


@pytest.mark.asyncio
@pytest.mark.parametrize("text, greeting", [
    ("/start@dbms_advisor_bot", prompts.GREETING_TEXT),
    ("/reset@dbms_advisor_bot", prompts.RESET_TEXT),
])
async def test_group_chat_commands_with_bot_name(controller, store, text, greeting):
    reply = await controller.handle_text(SID, text)

    assert reply.conversation_reset
    assert reply.prompts[0].text == greeting
    assert store.get(SID).step == WizardStep.SELECTING_CRITERIA


@pytest.mark.asyncio
async def test_first_free_text_gets_hint(controller, store):
    reply = await controller.handle_text(SID, "привет")

    assert texts(reply) == [prompts.IDLE_HINT_TEXT]
    assert store.get(SID).step == WizardStep.IDLE


@pytest.mark.asyncio
async def test_toggle_marks_criterion(controller, store):
    await controller.handle_text(SID, "/start")

    reply = await controller.handle_action(SID, "crit_Латентность")

    prompt = reply.prompts[0]
    assert prompt.edit and prompt.slot == prompts.SLOT_CRITERIA
    assert "✓ Латентность" in labels(prompt)
    assert store.get(SID).selected_criteria == ["Латентность"]

    reply = await controller.handle_action(SID, "crit_Латентность")
    assert "○ Латентность" in labels(reply.prompts[0])
    assert store.get(SID).selected_criteria == []


@pytest.mark.asyncio
async def test_finish_with_empty_selection_rejected(controller, store):
    await controller.handle_text(SID, "/start")

    reply = await controller.handle_action(SID, "done_criteria")

    assert reply.prompts[0].text == prompts.EMPTY_SELECTION_TEXT
    assert reply.prompts[1].slot == prompts.SLOT_CRITERIA
    assert store.get(SID).step == WizardStep.SELECTING_CRITERIA


@pytest.mark.asyncio
async def test_full_flow_without_override(controller, store, advisor, recorder):
    """Юрисдикция данных at priority 5 -> 40/25/20, On-Premise"""
    await controller.handle_text(SID, "/start")
    await controller.handle_action(SID, "crit_Юрисдикция данных")

    reply = await controller.handle_action(SID, "done_criteria")
    assert reply.prompts[0].slot == prompts.SLOT_PRIORITY
    assert "*Юрисдикция данных*" in reply.prompts[0].text

    reply = await controller.handle_action(SID, "prio_Юрисдикция данных_5")
    assert labels(reply.prompts[0]) == ["Да", "Нет"]
    assert store.get(SID).step == WizardStep.CONFIRMING_OVERRIDE

    reply = await controller.handle_action(SID, "override_no")

    assert reply.session_closed
    assert reply.result.totals.as_tuple() == (40, 25, 20)
    assert "Рекомендуется On-Premise." in reply.prompts[0].text
    assert reply.prompts[1].text.startswith("Детализация расчета:")
    assert ADVISOR_ANSWER in reply.prompts[2].text
    assert reply.prompts[-1].text == prompts.RESTART_HINT_TEXT
    assert store.get(SID) is None

    assert len(advisor.calls) == 1
    assert len(recorder.rows) == 1
    row = recorder.rows[0]
    assert row["session_id"] == SID
    assert row["algorithm_result"] == "On-Premise"
    assert row["gpt_answer"] == ADVISOR_ANSWER
    # Advisor said Public Cloud
    assert row["match"] is False
    assert row["source"] == AnswerSource.TELEGRAM
    assert row["user_input"]["criteria_priorities"] == {"Юрисдикция данных": 5}


@pytest.mark.asyncio
async def test_priorities_asked_in_selection_order(controller, store):
    await controller.handle_text(SID, "/start")
    await controller.handle_action(SID, "crit_Масштабируемость")
    await controller.handle_action(SID, "crit_Латентность")

    reply = await controller.handle_action(SID, "done_criteria")
    assert "*Масштабируемость*" in reply.prompts[0].text

    reply = await controller.handle_action(SID, "prio_Масштабируемость_2")
    assert "*Латентность*" in reply.prompts[0].text
    assert store.get(SID).step == WizardStep.ASSIGNING_PRIORITIES

    await controller.handle_action(SID, "prio_Латентность_3")
    session = store.get(SID)
    assert session.all_priorities_assigned()
    assert session.step == WizardStep.CONFIRMING_OVERRIDE


@pytest.mark.asyncio
async def test_special_values_resolved_after_priorities(controller, store):
    reply = await select_and_prioritize(
        controller,
        ["Объём данных", "Срок использования"],
        {"Объём данных": 1, "Срок использования": 2},
    )
    assert store.get(SID).step == WizardStep.RESOLVING_SPECIAL_VALUES
    assert reply.prompts[0].slot == prompts.SLOT_SPECIAL
    assert labels(reply.prompts[0]) == ["Малый", "Средний", "Большой"]

    reply = await controller.handle_action(SID, "sdata_0")
    assert labels(reply.prompts[0]) == ["Краткосрочный", "Долгосрочный"]

    reply = await controller.handle_action(SID, "susage_1")
    assert store.get(SID).special_values == {"Объём данных": "Малый", "Срок использования": "Долгосрочный"}
    assert labels(reply.prompts[0]) == ["Да", "Нет"]

    reply = await controller.handle_action(SID, "override_no")
    # 8/7/9 * 1 + 9/7/6 * 2
    assert reply.result.totals.as_tuple() == (26, 21, 21)


@pytest.mark.asyncio
async def test_override_flow(controller, store, recorder):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})

    reply = await controller.handle_action(SID, "override_yes")
    assert store.get(SID).step == WizardStep.SELECTING_OVERRIDE_TARGET
    assert labels(reply.prompts[0]) == ["Латентность", "✅ Готово"]
    assert not reply.prompts[0].edit

    reply = await controller.handle_action(SID, "override_select_Латентность")
    weight = reply.prompts[0]
    assert weight.edit and weight.slot == prompts.SLOT_OVERRIDE
    # Seeded from the baseline 8/6/5; current value marked
    assert "• 8 •" in labels(weight)
    assert "❌ Отмена" in labels(weight)

    reply = await controller.handle_action(SID, "weight_0_5")
    # Private Cloud step shows its baseline
    assert "• 6 •" in labels(reply.prompts[0])
    reply = await controller.handle_action(SID, "weight_1_5")
    assert "• 5 •" in labels(reply.prompts[0])
    reply = await controller.handle_action(SID, "weight_2_5")

    session = store.get(SID)
    assert session.overrides == {"Латентность": ScoreTriple.of(5, 5, 5)}
    assert session.step == WizardStep.SELECTING_OVERRIDE_TARGET
    assert session.override_draft is None
    assert "✓ Латентность" in labels(reply.prompts[0])

    reply = await controller.handle_action(SID, "override_done")

    assert reply.session_closed
    assert reply.result.totals.as_tuple() == (15, 15, 15)
    assert reply.result.needs_evaluation
    assert "равны по баллам" in reply.prompts[0].text
    assert recorder.rows[0]["user_input"]["overridden_scores"] == {
        "Латентность": {"on_prem": 5, "private": 5, "public": 5}
    }


@pytest.mark.asyncio
async def test_override_seed_uses_special_mapping(controller, store):
    await select_and_prioritize(controller, ["Объём данных"], {"Объём данных": 1})
    await controller.handle_action(SID, "sdata_2")
    await controller.handle_action(SID, "override_yes")

    await controller.handle_action(SID, "override_select_Объём данных")

    assert store.get(SID).override_draft == ScoreTriple.of(4, 8, 9)


@pytest.mark.asyncio
async def test_cancel_override_discards_draft(controller, store):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})
    await controller.handle_action(SID, "override_yes")
    await controller.handle_action(SID, "override_select_Латентность")
    await controller.handle_action(SID, "weight_0_1")

    reply = await controller.handle_action(SID, "override_cancel")

    session = store.get(SID)
    assert session.overrides == {}
    assert session.override_draft is None
    assert session.step == WizardStep.SELECTING_OVERRIDE_TARGET
    assert "Латентность" in labels(reply.prompts[0])


@pytest.mark.asyncio
async def test_stale_weight_step_rejected(controller, store):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})
    await controller.handle_action(SID, "override_yes")
    await controller.handle_action(SID, "override_select_Латентность")

    reply = await controller.handle_action(SID, "weight_2_1")

    session = store.get(SID)
    assert reply.prompts[0].text == prompts.INVALID_ACTION_TEXT
    assert session.override_step == 0
    assert session.override_draft == ScoreTriple.of(8, 6, 5)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["weight_0_0", "weight_0_11"])
async def test_weight_out_of_range_rejected(controller, store, token):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})
    await controller.handle_action(SID, "override_yes")
    await controller.handle_action(SID, "override_select_Латентность")

    reply = await controller.handle_action(SID, token)

    assert reply.prompts[0].text == prompts.INVALID_ACTION_TEXT
    assert store.get(SID).override_draft == ScoreTriple.of(8, 6, 5)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["prio_Латентность_0", "prio_Латентность_6", "prio_Масштабируемость_3"])
async def test_bad_priority_rejected(controller, store, token):
    await controller.handle_text(SID, "/start")
    await controller.handle_action(SID, "crit_Латентность")
    await controller.handle_action(SID, "done_criteria")

    reply = await controller.handle_action(SID, token)

    session = store.get(SID)
    assert reply.prompts[0].text == prompts.INVALID_ACTION_TEXT
    assert reply.prompts[1].slot == prompts.SLOT_PRIORITY
    assert session.priorities == {}
    assert session.step == WizardStep.ASSIGNING_PRIORITIES


@pytest.mark.asyncio
async def test_action_for_other_step_rejected(controller, store):
    await controller.handle_text(SID, "/start")

    reply = await controller.handle_action(SID, "override_yes")

    assert reply.prompts[0].text == prompts.INVALID_ACTION_TEXT
    assert store.get(SID).step == WizardStep.SELECTING_CRITERIA


@pytest.mark.asyncio
async def test_unknown_criterion_toggle_rejected(controller, store):
    await controller.handle_text(SID, "/start")

    await controller.handle_action(SID, "crit_Нет такого")

    assert store.get(SID).selected_criteria == []


@pytest.mark.asyncio
async def test_unknown_token_ignored(controller, store):
    await controller.handle_text(SID, "/start")

    reply = await controller.handle_action(SID, "something_else")

    assert reply.prompts == []
    assert store.get(SID).step == WizardStep.SELECTING_CRITERIA


@pytest.mark.asyncio
async def test_action_without_session(controller):
    reply = await controller.handle_action(SID, "done_criteria")

    assert texts(reply) == [prompts.MISSING_SESSION_TEXT]


@pytest.mark.asyncio
async def test_text_during_override_shows_list(controller, store):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})
    await controller.handle_action(SID, "override_yes")
    await controller.handle_action(SID, "override_select_Латентность")

    reply = await controller.handle_text(SID, "8 6 5")

    assert reply.prompts[0].text == prompts.USE_BUTTONS_TEXT
    assert reply.prompts[1].slot == prompts.SLOT_OVERRIDE
    assert store.get(SID).step == WizardStep.SELECTING_OVERRIDE_TARGET


@pytest.mark.asyncio
async def test_reset_mid_flow(controller, store):
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})

    reply = await controller.handle_text(SID, "/reset")

    session = store.get(SID)
    assert reply.prompts[0].text == prompts.RESET_TEXT
    assert session.step == WizardStep.SELECTING_CRITERIA
    assert session.selected_criteria == [] and session.priorities == {}


@pytest.mark.asyncio
async def test_advisor_failure_degrades(catalog, store, failing_advisor, recorder):
    controller = WizardController(catalog, store, advisor=failing_advisor, recorder=recorder)
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})

    reply = await controller.handle_action(SID, "override_no")

    assert reply.session_closed
    assert reply.result.recommendation == "On-Premise"
    assert prompts.ADVISOR_FAILED_TEXT in texts(reply)
    assert recorder.rows[0]["gpt_answer"] is None
    assert recorder.rows[0]["match"] is False


@pytest.mark.asyncio
async def test_persistence_failure_degrades(catalog, store, advisor):
    recorder = FakeRecorder(error=OperationalError("INSERT", {}, Exception("db down")))
    controller = WizardController(catalog, store, advisor=advisor, recorder=recorder)
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})

    reply = await controller.handle_action(SID, "override_no")

    assert reply.session_closed
    assert prompts.PERSIST_FAILED_TEXT in texts(reply)
    assert reply.prompts[-1].text == prompts.RESTART_HINT_TEXT
    assert store.get(SID) is None


@pytest.mark.asyncio
async def test_agreement_recorded(catalog, store, recorder):
    advisor = FakeAdvisor(text="On-Premise\nОбоснование: данные должны оставаться в стране.")
    controller = WizardController(catalog, store, advisor=advisor, recorder=recorder)
    await select_and_prioritize(controller, ["Юрисдикция данных"], {"Юрисдикция данных": 5})

    reply = await controller.handle_action(SID, "override_no")

    assert reply.match is True
    assert recorder.rows[0]["match"] is True


@pytest.mark.asyncio
async def test_controller_without_collaborators(catalog, store):
    controller = WizardController(catalog, store)
    await select_and_prioritize(controller, ["Латентность"], {"Латентность": 3})

    reply = await controller.handle_action(SID, "override_no")

    assert reply.session_closed
    assert prompts.ADVISOR_FAILED_TEXT in texts(reply)
    assert prompts.PERSIST_FAILED_TEXT not in texts(reply)


@pytest.mark.asyncio
async def test_api_source_recorded(controller, recorder):
    await controller.handle_text(SID, "/start", source=AnswerSource.API)
    await controller.handle_action(SID, "crit_Латентность")
    await controller.handle_action(SID, "done_criteria")
    await controller.handle_action(SID, "prio_Латентность_2")

    await controller.handle_action(SID, "override_no")

    assert recorder.rows[0]["source"] == AnswerSource.API
