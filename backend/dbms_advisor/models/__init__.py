"""
SQLAlchemy models
"""
from dbms_advisor.core.database import Base  # noqa: F401
from dbms_advisor.models.answer import Answer, AnswerSource  # noqa: F401
