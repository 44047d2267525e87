"""
Scoring engine: weighted sum of per-criterion score triples

Pure functions over the catalog and the user's input. All arithmetic is integer.
"""
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from dbms_advisor.core.catalog import (NEUTRAL_SCORES, ZERO_SCORES, CriterionCatalog,
                                       DeploymentOption, ScoreTriple)
from dbms_advisor.core.logging_config import LoggingConfig

if TYPE_CHECKING:
    from dbms_advisor.core.wizard_session import WizardSession

logger = LoggingConfig.get_logger(__name__)

DEFAULT_PRIORITY = 1
NEEDS_EVALUATION_PREFIX = "Требуется дополнительная оценка"


class ScoreSource(str, Enum):
    """Откуда взяты баллы критерия"""
    BASELINE = "baseline"
    SPECIAL = "special"
    OVERRIDE = "override"


class CriterionContribution(BaseModel):
    """Вклад одного критерия в итоговые баллы"""
    name: str
    priority: int
    source: ScoreSource
    special_value: Optional[str] = None
    scores: ScoreTriple
    weighted: ScoreTriple


class ScoringResult(BaseModel):
    """Итог расчёта"""
    totals: ScoreTriple
    winners: List[DeploymentOption]
    details: List[CriterionContribution]

    @property
    def needs_evaluation(self) -> bool:
        return len(self.winners) != 1

    @property
    def recommendation(self) -> str:
        if not self.needs_evaluation:
            return self.winners[0].label
        return f"{NEEDS_EVALUATION_PREFIX} ({'/'.join(o.label for o in self.winners)})"


def resolve_scores(
    catalog: CriterionCatalog,
    name: str,
    overrides: Mapping[str, ScoreTriple],
    special_values: Mapping[str, str],
) -> Tuple[ScoreTriple, ScoreSource, Optional[str]]:
    """
    Effective score triple of one criterion: override > special value > baseline.

    Returns (scores, source, special_value). Raises UnknownCriterionError.
    """
    criterion = catalog.require(name)

    if name in overrides:
        return overrides[name], ScoreSource.OVERRIDE, special_values.get(name)

    if criterion.is_special:
        value = special_values.get(name)
        if value is None:
            logger.warning(
                "Special value missing, neutral scores used",
                extra={"criterion": name},
            )
            return NEUTRAL_SCORES, ScoreSource.SPECIAL, None
        scores = catalog.special_scores(name, value)
        if scores is None:
            logger.warning(
                "Unknown special value, neutral scores used",
                extra={"criterion": name, "special_value": value},
            )
            scores = NEUTRAL_SCORES
        return scores, ScoreSource.SPECIAL, value

    return criterion.base_scores, ScoreSource.BASELINE, None


def pick_winners(totals: ScoreTriple) -> List[DeploymentOption]:
    """All options sharing the maximum total, in fixed option order"""
    best = max(totals.as_tuple())
    return [option for option in DeploymentOption.ordered() if totals.get(option) == best]


def compute_recommendation(
    catalog: CriterionCatalog,
    selected: Iterable[str],
    priorities: Mapping[str, int],
    overrides: Optional[Mapping[str, ScoreTriple]] = None,
    special_values: Optional[Mapping[str, str]] = None,
) -> ScoringResult:
    """
    Compute per-option totals and a recommendation.

    Missing priority defaults to 1. Ties at the maximum (including an empty
    selection, where all totals are zero) name every tied option.
    """
    overrides = overrides or {}
    special_values = special_values or {}

    totals = ZERO_SCORES
    details: List[CriterionContribution] = []

    for name in selected:
        priority = priorities.get(name)
        if priority is None:
            logger.warning(
                "Priority missing, default used",
                extra={"criterion": name, "priority": DEFAULT_PRIORITY},
            )
            priority = DEFAULT_PRIORITY

        scores, source, special_value = resolve_scores(catalog, name, overrides, special_values)
        weighted = scores.scaled(priority)
        totals = totals.add(weighted)

        details.append(CriterionContribution(
            name=name,
            priority=priority,
            source=source,
            special_value=special_value,
            scores=scores,
            weighted=weighted,
        ))

    return ScoringResult(totals=totals, winners=pick_winners(totals), details=details)


def score_session(session: "WizardSession", catalog: CriterionCatalog) -> ScoringResult:
    """Score a completed WizardSession"""
    return compute_recommendation(
        catalog,
        session.selected_criteria,
        session.priorities,
        session.overrides,
        session.special_values,
    )
