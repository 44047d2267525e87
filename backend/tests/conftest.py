"""
Pytest configuration and fixtures
"""
import os
import sys
from pathlib import Path

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Test defaults, set before settings are first loaded
os.environ.setdefault("RUN_REAL_LLM_TESTS", "0")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
if os.environ.get("RUN_REAL_LLM_TESTS") != "1":
    os.environ.pop("YANDEX_API_KEY", None)
    os.environ.pop("YANDEX_FOLDER_ID", None)
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.pop("BOT_TOKEN", None)

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dbms_advisor.core.catalog import CriterionCatalog
from dbms_advisor.core.database import init_db
from dbms_advisor.core.wizard_engine import WizardController
from dbms_advisor.core.wizard_session import SessionStore
from dbms_advisor.services.advisor_service import AdvisorUnavailableError
from dbms_advisor.services.answer_service import AnswerService
from fakes import FakeAdvisor, FakeRecorder


@pytest.fixture
def catalog() -> CriterionCatalog:
    return CriterionCatalog.default()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def advisor() -> FakeAdvisor:
    return FakeAdvisor()


@pytest.fixture
def failing_advisor() -> FakeAdvisor:
    return FakeAdvisor(error=AdvisorUnavailableError("Advisor did not answer within 30s"))


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def controller(catalog, store, advisor, recorder) -> WizardController:
    return WizardController(catalog, store, advisor=advisor, recorder=recorder)


@pytest.fixture(scope="function")
def session_factory():
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    """Create a database session for testing"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def answer_service(session_factory) -> AnswerService:
    return AnswerService(session_factory)


@pytest.fixture(scope="function")
def client(db: Session, catalog, store, controller, advisor, answer_service):
    """Create test client with dependency overrides"""
    from fastapi.testclient import TestClient

    import main
    from dbms_advisor.core.database import get_db
    from dbms_advisor.services.wizard_service import (get_advisor_service, get_answer_service,
                                                      get_catalog, get_session_store,
                                                      get_wizard_controller)

    app = main.app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_wizard_controller] = lambda: controller
    app.dependency_overrides[get_advisor_service] = lambda: advisor
    app.dependency_overrides[get_answer_service] = lambda: answer_service
    # No context manager: the lifespan (database init, Telegram polling) is not run
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Test-run safety: skip `real_llm` marked tests by default unless explicit flag
# ---------------------------------------------------------------------------
def pytest_collection_modifyitems(config, items):
    """Skip real-LLM tests unless RUN_REAL_LLM_TESTS=1 is set in env."""
    if os.environ.get("RUN_REAL_LLM_TESTS", "0") == "1":
        return
    skip_marker = pytest.mark.skip(reason="Real LLM tests disabled. Set RUN_REAL_LLM_TESTS=1 to enable.")
    for item in items:
        if "real_llm" in getattr(item, "keywords", {}):
            item.add_marker(skip_marker)
