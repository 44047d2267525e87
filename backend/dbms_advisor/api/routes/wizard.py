"""
HTTP access to the checklist wizard (same controller as the Telegram bot)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator

from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.wizard_engine import WizardController
from dbms_advisor.core.wizard_prompts import Prompt
from dbms_advisor.models.answer import AnswerSource
from dbms_advisor.services.wizard_service import get_wizard_controller

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(prefix="/api/wizard", tags=["wizard"])

# HTTP sessions never collide with Telegram chat ids
SESSION_PREFIX = "api:"


class WizardInput(BaseModel):
    """Either a button token or free text"""
    action: Optional[str] = Field(default=None, description="Callback token of a choice")
    text: Optional[str] = Field(default=None, description="Free text or command, e.g. /start")

    @model_validator(mode="after")
    def _exactly_one(self) -> "WizardInput":
        if (self.action is None) == (self.text is None):
            raise ValueError("exactly one of 'action' or 'text' is required")
        return self


class WizardOutput(BaseModel):
    prompts: List[Prompt]
    session_closed: bool
    conversation_reset: bool


@router.post("/{session_id}/actions", response_model=WizardOutput)
async def wizard_action(
    session_id: str,
    body: WizardInput,
    controller: WizardController = Depends(get_wizard_controller),
):
    sid = f"{SESSION_PREFIX}{session_id}"
    if body.text is not None:
        reply = await controller.handle_text(sid, body.text, source=AnswerSource.API)
    else:
        reply = await controller.handle_action(sid, body.action)

    return WizardOutput(
        prompts=reply.prompts,
        session_closed=reply.session_closed,
        conversation_reset=reply.conversation_reset,
    )
