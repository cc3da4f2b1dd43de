from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

import gift_finder

router = APIRouter(prefix="/api/chatbot", tags=["chatbot"])


class ProcessIn(BaseModel):
    user_input: Any = None
    current_state: Optional[str] = None
    conversation_data: Dict[str, Any] = Field(default_factory=dict)


@router.post("/start")
def start_conversation():
    return {"success": True, **gift_finder.start()}


@router.post("/process")
def process_input(payload: ProcessIn):
    if payload.user_input in (None, "") or not payload.current_state:
        raise HTTPException(status_code=400, detail="user_input and current_state are required")
    try:
        result = gift_finder.process(payload.user_input, payload.current_state, payload.conversation_data)
    except gift_finder.InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


@router.get("/state")
def conversation_states():
    return {"success": True, "states": gift_finder.STATES, "options": gift_finder.OPTIONS}


@router.post("/reset")
def reset_conversation():
    return {"success": True, "message": "Conversation reset", **gift_finder.start()}
