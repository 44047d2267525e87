"""
Completed questionnaire stored in database
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from dbms_advisor.core.database import Base


class AnswerSource(str, Enum):
    """Where the session came from"""
    TELEGRAM = "telegram"
    API = "api"


class Answer(Base):
    """One row per completed wizard session"""
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)  # chat id for Telegram
    source = Column(String(20), nullable=False, default=AnswerSource.TELEGRAM.value)

    # Selected criteria, priorities, overrides and special values
    user_input = Column(JSON, nullable=True)

    algorithm_result = Column(Text, nullable=False)
    gpt_answer = Column(Text, nullable=True)
    match = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<Answer(id={self.id}, session_id={self.session_id}, result={self.algorithm_result}, match={self.match})>"
