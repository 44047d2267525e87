"""
Health check endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from dbms_advisor import __version__
from dbms_advisor.core.catalog import CriterionCatalog
from dbms_advisor.core.config import get_settings
from dbms_advisor.core.database import get_db
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.wizard_session import SessionStore
from dbms_advisor.services.wizard_service import get_catalog, get_session_store

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": get_settings().app_name,
    }


@router.get("/health/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    catalog: CriterionCatalog = Depends(get_catalog),
    store: SessionStore = Depends(get_session_store),
):
    """
    Detailed health check with component status

    The advisor and the bot are optional: when not configured they are
    reported as disabled and do not make the service unhealthy.
    """
    settings = get_settings()
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "components": {}
    }

    overall_healthy = True

    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except Exception as e:
        overall_healthy = False
        logger.error(f"Database health check failed: {e}", exc_info=True)
        health_status["components"]["database"] = {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
            "error": type(e).__name__
        }

    health_status["components"]["catalog"] = {
        "status": "healthy",
        "criteria": len(catalog),
    }
    health_status["components"]["wizard"] = {
        "status": "healthy",
        "active_sessions": len(store),
    }
    health_status["components"]["advisor"] = {
        "status": "enabled" if settings.advisor_enabled else "disabled",
        "model": settings.yandex_gpt_model,
    }
    health_status["components"]["telegram"] = {
        "status": "enabled" if settings.telegram_enabled else "disabled",
    }

    if not overall_healthy:
        health_status["status"] = "unhealthy"
    return health_status
