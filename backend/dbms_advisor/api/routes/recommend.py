"""
Stateless recommendation endpoint
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from starlette.concurrency import run_in_threadpool

from dbms_advisor.core.catalog import CriterionCatalog, ScoreTriple, UnknownCriterionError
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import recommendations_total
from dbms_advisor.core.scoring import ScoringResult, compute_recommendation
from dbms_advisor.core.wizard_prompts import PRIORITY_RANGE
from dbms_advisor.models.answer import AnswerSource
from dbms_advisor.services.advisor_service import (AdvisorService, AdvisorUnavailableError,
                                                   advisor_agrees)
from dbms_advisor.services.answer_service import AnswerService
from dbms_advisor.services.wizard_service import (get_advisor_service, get_answer_service,
                                                  get_catalog)

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["recommend"])


class OverriddenScores(BaseModel):
    on_prem: int
    private: int
    public: int


class RecommendationRequest(BaseModel):
    """Complete checklist answers in one request"""
    selected_criteria: List[str] = Field(..., description="Selected criterion names")
    criteria_priorities: Dict[str, int] = Field(default_factory=dict, description="Priority 1..5 per criterion")
    overridden_scores: Dict[str, OverriddenScores] = Field(default_factory=dict)
    special_values: Dict[str, str] = Field(default_factory=dict)
    include_ai_analysis: bool = Field(default=False, description="Also ask the AI advisor")

    @field_validator("selected_criteria")
    @classmethod
    def _unique_and_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one criterion must be selected")
        if len(set(value)) != len(value):
            raise ValueError("selected criteria must not repeat")
        return value

    @field_validator("criteria_priorities")
    @classmethod
    def _priorities_in_range(cls, value: Dict[str, int]) -> Dict[str, int]:
        for name, priority in value.items():
            if priority not in PRIORITY_RANGE:
                raise ValueError(f"priority of {name!r} must be between 1 and 5")
        return value

    @model_validator(mode="after")
    def _answers_for_selected_only(self) -> "RecommendationRequest":
        selected = set(self.selected_criteria)
        for field in ("criteria_priorities", "overridden_scores", "special_values"):
            extra = [name for name in getattr(self, field) if name not in selected]
            if extra:
                raise ValueError(f"{field} has entries for unselected criteria: {extra}")
        return self


class CriterionDetail(BaseModel):
    name: str
    priority: int
    source: str
    on_prem_score: int
    private_score: int
    public_score: int
    on_prem_weighted: int
    private_weighted: int
    public_weighted: int


class RecommendationResponse(BaseModel):
    on_prem_total: int
    private_total: int
    public_total: int
    recommendation: str
    details: List[CriterionDetail]
    ai_analysis: Optional[str] = None


def to_response(result: ScoringResult, ai_analysis: Optional[str] = None) -> RecommendationResponse:
    return RecommendationResponse(
        on_prem_total=result.totals.on_prem,
        private_total=result.totals.private,
        public_total=result.totals.public,
        recommendation=result.recommendation,
        details=[
            CriterionDetail(
                name=item.name,
                priority=item.priority,
                source=item.source.value,
                on_prem_score=item.scores.on_prem,
                private_score=item.scores.private,
                public_score=item.scores.public,
                on_prem_weighted=item.weighted.on_prem,
                private_weighted=item.weighted.private,
                public_weighted=item.weighted.public,
            )
            for item in result.details
        ],
        ai_analysis=ai_analysis,
    )


@router.post("/recommend", response_model=RecommendationResponse, response_model_exclude_none=True)
async def recommend(
    request: RecommendationRequest,
    catalog: CriterionCatalog = Depends(get_catalog),
    advisor: AdvisorService = Depends(get_advisor_service),
    answers: AnswerService = Depends(get_answer_service),
):
    """
    Score a complete set of answers

    Unknown criterion names are rejected with 400. The AI analysis is
    best-effort: when the advisor fails the field is omitted.
    """
    overrides = {
        name: ScoreTriple.of(s.on_prem, s.private, s.public)
        for name, s in request.overridden_scores.items()
    }
    try:
        result = compute_recommendation(
            catalog,
            request.selected_criteria,
            request.criteria_priorities,
            overrides,
            request.special_values,
        )
    except UnknownCriterionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    recommendations_total.labels(
        recommendation="needs_evaluation" if result.needs_evaluation else result.winners[0].value,
        source=AnswerSource.API.value,
    ).inc()

    ai_analysis = None
    if request.include_ai_analysis:
        try:
            ai_analysis = await advisor.consult(result)
        except AdvisorUnavailableError as e:
            logger.warning("AI analysis skipped", extra={"error": str(e)})

    match = advisor_agrees(result.recommendation, ai_analysis)
    user_input = {
        "selected_criteria": list(request.selected_criteria),
        "criteria_priorities": dict(request.criteria_priorities),
        "overridden_scores": {name: s.model_dump() for name, s in request.overridden_scores.items()},
        "special_values": dict(request.special_values),
    }
    try:
        await run_in_threadpool(
            answers.record,
            "api",
            user_input,
            result.recommendation,
            ai_analysis,
            match,
            AnswerSource.API,
        )
    except Exception as e:
        # The computed result is still returned
        logger.error(f"Failed to save API answer: {e}", exc_info=True)

    return to_response(result, ai_analysis)
