from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class HistoryItem(BaseModel):
    role: str
    content: str


class AIRequest(BaseModel):
    message: str
    conversation_history: List[HistoryItem] = []


class AIResponse(BaseModel):
    response: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    rag_context: Optional[Dict[str, Any]] = None
    requires_confirmation: bool = False
    requires_auth: Optional[bool] = None
    message: Optional[str] = None


class HistoryCreate(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class ChatMessageRead(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True
