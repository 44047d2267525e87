"""
AnswerService - durable record of completed sessions
"""
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from dbms_advisor.core.database import get_session_local
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import answers_saved_total
from dbms_advisor.models.answer import Answer, AnswerSource

logger = LoggingConfig.get_logger(__name__)


class AnswerService:
    """Writes one immutable row per completed session"""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    def record(
        self,
        session_id: str,
        user_input: Dict[str, Any],
        algorithm_result: str,
        gpt_answer: Optional[str],
        match: bool,
        source: AnswerSource = AnswerSource.TELEGRAM,
    ) -> Answer:
        """
        Persist a completed session

        Raises:
            SQLAlchemyError after rolling back
        """
        db = self.session_factory()
        try:
            answer = Answer(
                session_id=str(session_id),
                source=source.value,
                user_input=user_input,
                algorithm_result=algorithm_result,
                gpt_answer=gpt_answer or "",
                match=match,
            )
            db.add(answer)
            db.commit()
            db.refresh(answer)
            db.expunge(answer)

            answers_saved_total.labels(status="success").inc()
            logger.info(
                "Result saved",
                extra={
                    "session_id": str(session_id),
                    "algorithm_result": algorithm_result,
                    "gpt_answer_present": bool(gpt_answer),
                    "match": match,
                }
            )
            return answer
        except Exception as e:
            db.rollback()
            answers_saved_total.labels(status="error").inc()
            logger.error(f"Error saving result for session {session_id}: {e}", exc_info=True)
            raise
        finally:
            db.close()

    def count(self) -> int:
        db = self.session_factory()
        try:
            return db.query(func.count(Answer.id)).scalar() or 0
        finally:
            db.close()
