# ---------- routes/coach_routes.py ----------
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from errors import GENERIC_ERROR_MESSAGE, NotFoundError, ValidationError
from services.chat_service import CoachService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/coach", tags=["Coach"])


# ── Pydantic schemas ──────────────────────────────────────────────
class ChatRequest(BaseModel):
    message: str
    conversation_id: Optional[int] = None


class ChatMetrics(BaseModel):
    tool_iterations: int
    read_tools: int
    write_tools: int
    crisis_detected: bool
    autonomy_score: int


class ChatResponse(BaseModel):
    conversation_id: Optional[int] = None
    role: str = "assistant"
    content: str
    metrics: ChatMetrics
    lane: str
    tools_used: list[str] = Field(default_factory=list)
    response_time_ms: int


def get_coach_service(db: Session = Depends(get_db)) -> CoachService:
    return CoachService(db)


# ── Routes ────────────────────────────────────────────────────────
@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    user_id: int = Depends(get_current_user),
    service: CoachService = Depends(get_coach_service),
):
    """Run one coach turn."""
    try:
        return await service.handle_turn(user_id, body.message, body.conversation_id)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid message")
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except Exception:
        logger.exception("Chat request failed")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR_MESSAGE)


@router.get("/conversations")
async def list_conversations(
    user_id: int = Depends(get_current_user),
    service: CoachService = Depends(get_coach_service),
):
    return {"status": "success", "data": service.list_conversations(user_id)}


@router.get("/conversations/{conversation_id}/messages")
async def conversation_messages(
    conversation_id: int,
    user_id: int = Depends(get_current_user),
    service: CoachService = Depends(get_coach_service),
):
    try:
        return {"status": "success", "data": service.get_messages(user_id, conversation_id)}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user),
    service: CoachService = Depends(get_coach_service),
):
    try:
        service.delete_conversation(user_id, conversation_id)
        return {"status": "success"}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
