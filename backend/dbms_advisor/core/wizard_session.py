"""
Wizard session state and in-memory session store
"""
import asyncio
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from dbms_advisor.core.catalog import CriterionCatalog, ScoreTriple
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import wizard_active_sessions

logger = LoggingConfig.get_logger(__name__)


class WizardStep(str, Enum):
    """Шаги мастера"""
    IDLE = "idle"
    SELECTING_CRITERIA = "selecting_criteria"
    ASSIGNING_PRIORITIES = "assigning_priorities"
    RESOLVING_SPECIAL_VALUES = "resolving_special_values"
    CONFIRMING_OVERRIDE = "confirming_override"
    SELECTING_OVERRIDE_TARGET = "selecting_override_target"
    EDITING_OVERRIDE_WEIGHT = "editing_override_weight"
    COMPUTING = "computing"


class WizardSession:
    """
    Mutable state of one user's conversation

    priorities, special_values and overrides only ever hold keys that are
    present in selected_criteria; deselecting a criterion drops them.
    """

    def __init__(self, session_id: str, step: WizardStep = WizardStep.IDLE, source: str = "telegram"):
        self.session_id = session_id
        self.step = step
        self.source = source
        self.selected_criteria: List[str] = []
        self.priorities: Dict[str, int] = {}
        self.overrides: Dict[str, ScoreTriple] = {}
        self.special_values: Dict[str, str] = {}
        # Override sub-dialog (only while EDITING_OVERRIDE_WEIGHT)
        self.override_target: Optional[str] = None
        self.override_step: int = 0
        self.override_draft: Optional[ScoreTriple] = None
        self.created_at = time.monotonic()
        self.updated_at = self.created_at

    def __repr__(self):
        return (
            f"<WizardSession(id={self.session_id}, step={self.step.value}, "
            f"selected={len(self.selected_criteria)})>"
        )

    def touch(self) -> None:
        self.updated_at = time.monotonic()

    def is_selected(self, name: str) -> bool:
        return name in self.selected_criteria

    def toggle_criterion(self, name: str) -> bool:
        """Select or deselect a criterion. Returns True if it is now selected."""
        if name in self.selected_criteria:
            self.selected_criteria.remove(name)
            self.priorities.pop(name, None)
            self.special_values.pop(name, None)
            self.overrides.pop(name, None)
            return False
        self.selected_criteria.append(name)
        return True

    def next_unassigned_priority(self) -> Optional[str]:
        for name in self.selected_criteria:
            if name not in self.priorities:
                return name
        return None

    def all_priorities_assigned(self) -> bool:
        return len(self.priorities) == len(self.selected_criteria)

    def has_special(self, catalog: CriterionCatalog) -> bool:
        return any(catalog.is_special(name) for name in self.selected_criteria)

    def next_unresolved_special(self, catalog: CriterionCatalog) -> Optional[str]:
        for name in self.selected_criteria:
            if catalog.is_special(name) and not self.special_values.get(name):
                return name
        return None

    def all_specials_resolved(self, catalog: CriterionCatalog) -> bool:
        return self.next_unresolved_special(catalog) is None

    def begin_override(self, name: str, seed: ScoreTriple) -> None:
        self.override_target = name
        self.override_step = 0
        self.override_draft = seed

    def clear_override_draft(self) -> None:
        self.override_target = None
        self.override_step = 0
        self.override_draft = None

    def user_input(self) -> Dict[str, Any]:
        """Everything the user entered, in a JSON-friendly shape"""
        return {
            "selected_criteria": list(self.selected_criteria),
            "criteria_priorities": dict(self.priorities),
            "overridden_scores": {
                name: triple.model_dump() for name, triple in self.overrides.items()
            },
            "special_values": dict(self.special_values),
        }


class SessionStore:
    """
    Registry of active wizard sessions keyed by session id

    Access to the map is guarded by a threading.Lock. lock(session_id) hands
    out one asyncio.Lock per session so that actions of the same session are
    processed one at a time.
    """

    def __init__(self):
        self._sessions: Dict[str, WizardSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._mutex = threading.Lock()

    def __len__(self) -> int:
        with self._mutex:
            return len(self._sessions)

    def _update_gauge(self) -> None:
        wizard_active_sessions.set(len(self._sessions))

    def get(self, session_id: str) -> Optional[WizardSession]:
        with self._mutex:
            return self._sessions.get(session_id)

    def create(
        self, session_id: str, step: WizardStep = WizardStep.IDLE, source: str = "telegram"
    ) -> WizardSession:
        """Create a fresh session, replacing any existing one"""
        session = WizardSession(session_id, step, source)
        with self._mutex:
            self._sessions[session_id] = session
            self._update_gauge()
        logger.debug("Session created", extra={"session_id": session_id, "step": step.value})
        return session

    def get_or_create(self, session_id: str, source: str = "telegram") -> WizardSession:
        with self._mutex:
            session = self._sessions.get(session_id)
            if session is None:
                session = WizardSession(session_id, source=source)
                self._sessions[session_id] = session
                self._update_gauge()
            return session

    def discard(self, session_id: str) -> bool:
        with self._mutex:
            removed = self._sessions.pop(session_id, None) is not None
            # A holder keeps its reference; later callers get a fresh lock
            self._locks.pop(session_id, None)
            self._update_gauge()
        if removed:
            logger.debug("Session discarded", extra={"session_id": session_id})
        return removed

    def lock(self, session_id: str) -> asyncio.Lock:
        with self._mutex:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[session_id] = lock
            return lock

    def evict_idle(self, ttl_seconds: float) -> int:
        """Drop sessions not touched for ttl_seconds. Returns the number evicted."""
        deadline = time.monotonic() - ttl_seconds
        with self._mutex:
            stale = [
                sid for sid, session in self._sessions.items()
                if session.updated_at < deadline
                and not (sid in self._locks and self._locks[sid].locked())
            ]
            for sid in stale:
                del self._sessions[sid]
                self._locks.pop(sid, None)
            self._update_gauge()
        if stale:
            logger.info("Idle sessions evicted", extra={"evicted": len(stale)})
        return len(stale)
