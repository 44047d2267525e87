"""
Action tokens (button callback data) exchanged with the transport

Tokens follow a fixed prefix/segment convention, e.g. ``prio_<criterion>_<1..5>``.
Criterion names never contain underscores, so the value segment is split off
from the right.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

CRITERION_PREFIX = "crit_"
DONE_CRITERIA = "done_criteria"
PRIORITY_PREFIX = "prio_"
OVERRIDE_YES = "override_yes"
OVERRIDE_NO = "override_no"
OVERRIDE_SELECT_PREFIX = "override_select_"
OVERRIDE_DONE = "override_done"
OVERRIDE_CANCEL = "override_cancel"
WEIGHT_PREFIX = "weight_"


@dataclass(frozen=True)
class ToggleCriterion:
    name: str


@dataclass(frozen=True)
class FinishCriteria:
    pass


@dataclass(frozen=True)
class AssignPriority:
    name: str
    priority: int


@dataclass(frozen=True)
class ChooseSpecialValue:
    prefix: str
    index: int


@dataclass(frozen=True)
class AnswerOverride:
    wants_override: bool


@dataclass(frozen=True)
class SelectOverrideTarget:
    name: str


@dataclass(frozen=True)
class FinishOverrides:
    pass


@dataclass(frozen=True)
class CancelOverrideEdit:
    pass


@dataclass(frozen=True)
class SetWeight:
    step: int
    value: int


@dataclass(frozen=True)
class MalformedAction:
    """Token with a known prefix but unusable segments"""
    token: str
    reason: str


Action = Union[
    ToggleCriterion, FinishCriteria, AssignPriority, ChooseSpecialValue,
    AnswerOverride, SelectOverrideTarget, FinishOverrides, CancelOverrideEdit,
    SetWeight, MalformedAction,
]


def action_name(action: Action) -> str:
    """Short label for logs and metrics"""
    return type(action).__name__


def _parse_int(text: str) -> Optional[int]:
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


def parse_action(token: str, special_prefixes: Iterable[str] = ()) -> Optional[Action]:
    """
    Parse a callback token.

    Returns None for tokens that match no known pattern (they must be ignored
    without side effects) and MalformedAction when the prefix is known but
    the segments are not.
    """
    if not token:
        return None

    if token == DONE_CRITERIA:
        return FinishCriteria()
    if token == OVERRIDE_YES:
        return AnswerOverride(True)
    if token == OVERRIDE_NO:
        return AnswerOverride(False)
    if token == OVERRIDE_DONE:
        return FinishOverrides()
    if token == OVERRIDE_CANCEL:
        return CancelOverrideEdit()

    if token.startswith(CRITERION_PREFIX):
        name = token[len(CRITERION_PREFIX):]
        if not name:
            return MalformedAction(token, "empty criterion")
        return ToggleCriterion(name)

    if token.startswith(PRIORITY_PREFIX):
        name, sep, value = token[len(PRIORITY_PREFIX):].rpartition("_")
        priority = _parse_int(value)
        if not sep or not name or priority is None:
            return MalformedAction(token, "bad priority token")
        return AssignPriority(name, priority)

    if token.startswith(OVERRIDE_SELECT_PREFIX):
        name = token[len(OVERRIDE_SELECT_PREFIX):]
        if not name:
            return MalformedAction(token, "empty criterion")
        return SelectOverrideTarget(name)

    if token.startswith(WEIGHT_PREFIX):
        parts = token.split("_")
        if len(parts) != 3:
            return MalformedAction(token, "bad weight token")
        step, value = _parse_int(parts[1]), _parse_int(parts[2])
        if step is None or value is None:
            return MalformedAction(token, "bad weight token")
        return SetWeight(step, value)

    prefix, sep, index = token.partition("_")
    if sep and prefix in set(special_prefixes):
        parsed = _parse_int(index)
        if parsed is None:
            return MalformedAction(token, "bad special value index")
        return ChooseSpecialValue(prefix, parsed)

    return None


def toggle_token(name: str) -> str:
    return f"{CRITERION_PREFIX}{name}"


def priority_token(name: str, priority: int) -> str:
    return f"{PRIORITY_PREFIX}{name}_{priority}"


def special_token(prefix: str, index: int) -> str:
    return f"{prefix}_{index}"


def override_select_token(name: str) -> str:
    return f"{OVERRIDE_SELECT_PREFIX}{name}"


def weight_token(step: int, value: int) -> str:
    return f"{WEIGHT_PREFIX}{step}_{value}"
