"""
Wizard controller: drives a session through the checklist steps

Transport-neutral. Takes free text or callback tokens for a session id and
returns the prompts to show. The advisor and the answer recorder are optional
collaborators; their failures are reported to the user and never abort the
computed result.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dbms_advisor.core import wizard_prompts as prompts
from dbms_advisor.core.catalog import CriterionCatalog, DeploymentOption, ScoreTriple
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import (advisor_agreement_total, recommendations_total,
                                       wizard_actions_total)
from dbms_advisor.core.scoring import ScoringResult, resolve_scores, score_session
from dbms_advisor.core.wizard_actions import (AnswerOverride, AssignPriority,
                                              CancelOverrideEdit, ChooseSpecialValue,
                                              FinishCriteria, FinishOverrides, MalformedAction,
                                              SelectOverrideTarget, SetWeight, ToggleCriterion,
                                              action_name, parse_action)
from dbms_advisor.core.wizard_prompts import Prompt
from dbms_advisor.core.wizard_session import SessionStore, WizardSession, WizardStep
from dbms_advisor.models.answer import AnswerSource
from dbms_advisor.services.advisor_service import advisor_agrees

logger = LoggingConfig.get_logger(__name__)

START_COMMAND = "/start"
RESET_COMMAND = "/reset"

_OVERRIDE_STEPS = (WizardStep.SELECTING_OVERRIDE_TARGET, WizardStep.EDITING_OVERRIDE_WEIGHT)


class InvalidActionError(Exception):
    """Action does not fit the session's current step or carries bad values"""

    def __init__(self, reason: str, text: str = prompts.INVALID_ACTION_TEXT):
        super().__init__(reason)
        self.reason = reason
        self.text = text


class WizardReply(BaseModel):
    """What the transport should show after one input"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompts: List[Prompt] = Field(default_factory=list)
    session_closed: bool = False
    conversation_reset: bool = False
    result: Optional[ScoringResult] = None
    advisor_text: Optional[str] = None
    match: Optional[bool] = None


class WizardController:
    """
    Step machine of the checklist

    Inputs of one session are serialized with the store's per-session lock.
    Each handler validates before it mutates, so a rejected action leaves the
    session as it was.
    """

    def __init__(
        self,
        catalog: CriterionCatalog,
        store: SessionStore,
        advisor: Any = None,
        recorder: Any = None,
    ):
        self.catalog = catalog
        self.store = store
        self.advisor = advisor
        self.recorder = recorder
        self._handlers: Dict[type, Callable] = {
            ToggleCriterion: self._toggle_criterion,
            FinishCriteria: self._finish_criteria,
            AssignPriority: self._assign_priority,
            ChooseSpecialValue: self._choose_special_value,
            AnswerOverride: self._answer_override,
            SelectOverrideTarget: self._select_override_target,
            SetWeight: self._set_weight,
            CancelOverrideEdit: self._cancel_override_edit,
            FinishOverrides: self._finish_overrides,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_text(
        self, session_id: str, text: str, source: AnswerSource = AnswerSource.TELEGRAM
    ) -> WizardReply:
        """Free text or a command"""
        # Group chats address commands as /start@BotName
        command = (text or "").strip().split(" ", 1)[0].split("@", 1)[0].lower()

        async with self.store.lock(session_id):
            if command in (START_COMMAND, RESET_COMMAND):
                self.store.create(session_id, WizardStep.SELECTING_CRITERIA, source.value)
                wizard_actions_total.labels(action=command.lstrip("/"), outcome="accepted").inc()
                logger.info(
                    "Checklist started",
                    extra={"session_id": session_id, "command": command, "source": source.value},
                )
                greeting = prompts.GREETING_TEXT if command == START_COMMAND else prompts.RESET_TEXT
                return WizardReply(
                    prompts=[prompts.message(greeting), prompts.criteria_prompt(self.catalog, [])],
                    conversation_reset=True,
                )

            session = self.store.get_or_create(session_id, source.value)
            session.touch()
            wizard_actions_total.labels(action="text", outcome="ignored").inc()

            if session.step == WizardStep.IDLE:
                return WizardReply(prompts=[prompts.message(prompts.IDLE_HINT_TEXT)])

            if session.step in _OVERRIDE_STEPS:
                # Text breaks off the weight editor; the list is shown again
                session.clear_override_draft()
                session.step = WizardStep.SELECTING_OVERRIDE_TARGET
                return WizardReply(
                    prompts=[prompts.message(prompts.USE_BUTTONS_TEXT), self._override_list(session)]
                )

            return WizardReply(
                prompts=[prompts.message(prompts.INVALID_ACTION_TEXT), *self.current_prompts(session)]
            )

    async def handle_action(self, session_id: str, token: str) -> WizardReply:
        """Callback token of a pressed button"""
        action = parse_action(token, self.catalog.special_prefixes)
        if action is None:
            wizard_actions_total.labels(action="unknown", outcome="ignored").inc()
            logger.debug("Unknown action token ignored", extra={"session_id": session_id, "token": token})
            return WizardReply()

        name = action_name(action)
        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if session is None:
                wizard_actions_total.labels(action=name, outcome="no_session").inc()
                logger.warning("Action without a session", extra={"session_id": session_id, "token": token})
                return WizardReply(prompts=[prompts.message(prompts.MISSING_SESSION_TEXT)])

            session.touch()
            try:
                if isinstance(action, MalformedAction):
                    raise InvalidActionError(action.reason)
                reply = await self._handlers[type(action)](session, action)
            except InvalidActionError as e:
                wizard_actions_total.labels(action=name, outcome="rejected").inc()
                logger.warning(
                    "Action rejected",
                    extra={
                        "session_id": session_id,
                        "token": token,
                        "step": session.step.value,
                        "reason": e.reason,
                    },
                )
                return WizardReply(prompts=[prompts.message(e.text), *self.current_prompts(session)])

            wizard_actions_total.labels(action=name, outcome="accepted").inc()
            logger.debug(
                "Action accepted",
                extra={"session_id": session_id, "token": token, "step": session.step.value},
            )
            return reply

    def current_prompts(self, session: WizardSession) -> List[Prompt]:
        """Prompt(s) of the step the session is in"""
        step = session.step
        if step == WizardStep.IDLE:
            return [prompts.message(prompts.IDLE_HINT_TEXT)]
        if step == WizardStep.SELECTING_CRITERIA:
            return [prompts.criteria_prompt(self.catalog, session.selected_criteria, edit=True)]
        if step == WizardStep.ASSIGNING_PRIORITIES:
            name = session.next_unassigned_priority()
            return [prompts.priority_prompt(self.catalog, name)] if name else []
        if step == WizardStep.RESOLVING_SPECIAL_VALUES:
            name = session.next_unresolved_special(self.catalog)
            return [prompts.special_prompt(self.catalog, name)] if name else []
        if step == WizardStep.CONFIRMING_OVERRIDE:
            return [prompts.override_question_prompt()]
        if step == WizardStep.SELECTING_OVERRIDE_TARGET:
            return [self._override_list(session)]
        if step == WizardStep.EDITING_OVERRIDE_WEIGHT:
            return [prompts.weight_prompt(session.override_target, session.override_draft, session.override_step)]
        return []

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _expect(session: WizardSession, *steps: WizardStep) -> None:
        if session.step not in steps:
            raise InvalidActionError(f"not allowed in step {session.step.value}")

    def _expect_selected(self, session: WizardSession, name: str) -> None:
        if name not in self.catalog:
            raise InvalidActionError(f"unknown criterion {name!r}")
        if not session.is_selected(name):
            raise InvalidActionError(f"criterion {name!r} is not selected")

    async def _toggle_criterion(self, session: WizardSession, action: ToggleCriterion) -> WizardReply:
        self._expect(session, WizardStep.SELECTING_CRITERIA)
        if action.name not in self.catalog:
            raise InvalidActionError(f"unknown criterion {action.name!r}")

        selected = session.toggle_criterion(action.name)
        logger.info(
            "Criterion toggled",
            extra={"session_id": session.session_id, "criterion": action.name, "selected": selected},
        )
        return WizardReply(
            prompts=[prompts.criteria_prompt(self.catalog, session.selected_criteria, edit=True)]
        )

    async def _finish_criteria(self, session: WizardSession, action: FinishCriteria) -> WizardReply:
        self._expect(session, WizardStep.SELECTING_CRITERIA)
        if not session.selected_criteria:
            raise InvalidActionError("empty selection", prompts.EMPTY_SELECTION_TEXT)

        session.step = WizardStep.ASSIGNING_PRIORITIES
        logger.info(
            "Criteria selected",
            extra={"session_id": session.session_id, "criteria": list(session.selected_criteria)},
        )
        return await self._next_priority(session)

    async def _next_priority(self, session: WizardSession) -> WizardReply:
        name = session.next_unassigned_priority()
        if name is not None:
            return WizardReply(prompts=[prompts.priority_prompt(self.catalog, name)])
        return await self._after_priorities(session)

    async def _assign_priority(self, session: WizardSession, action: AssignPriority) -> WizardReply:
        self._expect(session, WizardStep.ASSIGNING_PRIORITIES)
        self._expect_selected(session, action.name)
        if action.name in session.priorities:
            raise InvalidActionError(f"priority of {action.name!r} already assigned")
        if action.priority not in prompts.PRIORITY_RANGE:
            raise InvalidActionError(f"priority {action.priority} out of range")

        session.priorities[action.name] = action.priority
        logger.info(
            "Priority assigned",
            extra={
                "session_id": session.session_id,
                "criterion": action.name,
                "priority": action.priority,
            },
        )
        return await self._next_priority(session)

    async def _after_priorities(self, session: WizardSession) -> WizardReply:
        if session.has_special(self.catalog):
            session.step = WizardStep.RESOLVING_SPECIAL_VALUES
            name = session.next_unresolved_special(self.catalog)
            if name is not None:
                return WizardReply(prompts=[prompts.special_prompt(self.catalog, name)])

        session.step = WizardStep.CONFIRMING_OVERRIDE
        return WizardReply(prompts=[prompts.override_question_prompt()])

    async def _choose_special_value(self, session: WizardSession, action: ChooseSpecialValue) -> WizardReply:
        self._expect(session, WizardStep.RESOLVING_SPECIAL_VALUES)
        spec = self.catalog.special_spec_by_prefix(action.prefix)
        if spec is None:
            raise InvalidActionError(f"unknown special prefix {action.prefix!r}")
        self._expect_selected(session, spec.criterion)
        if session.special_values.get(spec.criterion):
            raise InvalidActionError(f"value of {spec.criterion!r} already chosen")
        value = spec.value_at(action.index)
        if value is None:
            raise InvalidActionError(f"special value index {action.index} out of range")

        session.special_values[spec.criterion] = value
        logger.info(
            "Special value chosen",
            extra={"session_id": session.session_id, "criterion": spec.criterion, "value": value},
        )

        name = session.next_unresolved_special(self.catalog)
        if name is not None:
            return WizardReply(prompts=[prompts.special_prompt(self.catalog, name)])
        session.step = WizardStep.CONFIRMING_OVERRIDE
        return WizardReply(prompts=[prompts.override_question_prompt()])

    async def _answer_override(self, session: WizardSession, action: AnswerOverride) -> WizardReply:
        self._expect(session, WizardStep.CONFIRMING_OVERRIDE)
        if not action.wants_override:
            return await self._compute(session)

        session.step = WizardStep.SELECTING_OVERRIDE_TARGET
        return WizardReply(prompts=[self._override_list(session)])

    def _override_seed(self, session: WizardSession, name: str) -> ScoreTriple:
        """Existing override, else the scores the criterion would get now"""
        scores, _, _ = resolve_scores(self.catalog, name, session.overrides, session.special_values)
        return scores

    async def _select_override_target(self, session: WizardSession, action: SelectOverrideTarget) -> WizardReply:
        self._expect(session, WizardStep.SELECTING_OVERRIDE_TARGET)
        self._expect_selected(session, action.name)

        session.begin_override(action.name, self._override_seed(session, action.name))
        session.step = WizardStep.EDITING_OVERRIDE_WEIGHT
        return WizardReply(
            prompts=[prompts.weight_prompt(action.name, session.override_draft, session.override_step)]
        )

    async def _set_weight(self, session: WizardSession, action: SetWeight) -> WizardReply:
        self._expect(session, WizardStep.EDITING_OVERRIDE_WEIGHT)
        if action.step != session.override_step:
            raise InvalidActionError(f"stale weight step {action.step}, expected {session.override_step}")
        if action.value not in prompts.WEIGHT_RANGE:
            raise InvalidActionError(f"weight {action.value} out of range")

        options = DeploymentOption.ordered()
        session.override_draft = session.override_draft.replace(options[action.step], action.value)

        if session.override_step < len(options) - 1:
            session.override_step += 1
            return WizardReply(
                prompts=[prompts.weight_prompt(session.override_target, session.override_draft, session.override_step)]
            )

        name = session.override_target
        session.overrides[name] = session.override_draft
        logger.info(
            "Scores overridden",
            extra={
                "session_id": session.session_id,
                "criterion": name,
                "scores": session.override_draft.model_dump(),
            },
        )
        session.clear_override_draft()
        session.step = WizardStep.SELECTING_OVERRIDE_TARGET
        return WizardReply(prompts=[self._override_list(session)])

    async def _cancel_override_edit(self, session: WizardSession, action: CancelOverrideEdit) -> WizardReply:
        self._expect(session, WizardStep.EDITING_OVERRIDE_WEIGHT)
        session.clear_override_draft()
        session.step = WizardStep.SELECTING_OVERRIDE_TARGET
        return WizardReply(prompts=[self._override_list(session)])

    async def _finish_overrides(self, session: WizardSession, action: FinishOverrides) -> WizardReply:
        self._expect(session, WizardStep.SELECTING_OVERRIDE_TARGET)
        return await self._compute(session)

    def _override_list(self, session: WizardSession) -> Prompt:
        return prompts.override_list_prompt(session.selected_criteria, list(session.overrides))

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _compute(self, session: WizardSession) -> WizardReply:
        session.step = WizardStep.COMPUTING
        result = score_session(session, self.catalog)
        recommendation = result.recommendation
        source = AnswerSource(session.source)

        recommendations_total.labels(
            recommendation="needs_evaluation" if result.needs_evaluation else result.winners[0].value,
            source=source.value,
        ).inc()
        logger.info(
            "Recommendation computed",
            extra={
                "session_id": session.session_id,
                "totals": result.totals.model_dump(),
                "recommendation": recommendation,
            },
        )

        out: List[Prompt] = [
            prompts.message(prompts.result_text(result)),
            prompts.message(prompts.breakdown_text(result)),
        ]

        advisor_text = await self._consult_advisor(session, result)
        if advisor_text:
            out.append(prompts.advisor_prompt(advisor_text))
        else:
            out.append(prompts.message(prompts.ADVISOR_FAILED_TEXT))

        match = self._agreement(result, advisor_text)

        if not await self._record(session, source, recommendation, advisor_text, match):
            out.append(prompts.message(prompts.PERSIST_FAILED_TEXT))

        out.append(prompts.message(prompts.RESTART_HINT_TEXT))
        self.store.discard(session.session_id)

        return WizardReply(
            prompts=out,
            session_closed=True,
            result=result,
            advisor_text=advisor_text,
            match=match,
        )

    async def _consult_advisor(self, session: WizardSession, result: ScoringResult) -> Optional[str]:
        if self.advisor is None:
            logger.warning("Advisor is not set up", extra={"session_id": session.session_id})
            return None
        try:
            return await self.advisor.consult(result) or None
        except Exception as e:
            logger.error(
                f"Advisor failed for session {session.session_id}: {e}",
                exc_info=True,
            )
            return None

    def _agreement(self, result: ScoringResult, advisor_text: Optional[str]) -> bool:
        match = advisor_agrees(result.recommendation, advisor_text)
        if advisor_text:
            advisor_agreement_total.labels(match=str(match).lower()).inc()
        return match

    async def _record(
        self,
        session: WizardSession,
        source: AnswerSource,
        recommendation: str,
        advisor_text: Optional[str],
        match: bool,
    ) -> bool:
        if self.recorder is None:
            return True
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.recorder.record(
                    session.session_id,
                    session.user_input(),
                    recommendation,
                    advisor_text,
                    match,
                    source,
                ),
            )
            return True
        except Exception as e:
            logger.error(f"Failed to save answer for session {session.session_id}: {e}", exc_info=True)
            return False
