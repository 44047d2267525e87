"""
Process-wide wizard components
"""
from typing import Optional

from dbms_advisor.core.catalog import CriterionCatalog
from dbms_advisor.core.wizard_engine import WizardController
from dbms_advisor.core.wizard_session import SessionStore
from dbms_advisor.services.advisor_service import AdvisorService
from dbms_advisor.services.answer_service import AnswerService

# Global instances
_catalog: Optional[CriterionCatalog] = None
_session_store: Optional[SessionStore] = None
_advisor_service: Optional[AdvisorService] = None
_answer_service: Optional[AnswerService] = None
_wizard_controller: Optional[WizardController] = None


def get_catalog() -> CriterionCatalog:
    global _catalog
    if _catalog is None:
        _catalog = CriterionCatalog.default()
    return _catalog


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


def get_advisor_service() -> AdvisorService:
    global _advisor_service
    if _advisor_service is None:
        _advisor_service = AdvisorService()
    return _advisor_service


def get_answer_service() -> AnswerService:
    global _answer_service
    if _answer_service is None:
        _answer_service = AnswerService()
    return _answer_service


def get_wizard_controller() -> WizardController:
    """Get or create the controller shared by the bot and the HTTP API"""
    global _wizard_controller
    if _wizard_controller is None:
        _wizard_controller = WizardController(
            get_catalog(),
            get_session_store(),
            advisor=get_advisor_service(),
            recorder=get_answer_service(),
        )
    return _wizard_controller
