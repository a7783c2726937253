from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import List, Optional

from core.config import CHAT_HISTORY_LIMIT, CHAT_MODEL_PRIMARY, CHAT_MODEL_FALLBACK, LLM_PROVIDER
from core.database import get_db
from db.database import AsyncSessionLocal
from db.models import ChatMessage, User
from api.schemas.ai import AIRequest, AIResponse, HistoryCreate, ChatMessageRead
from api.dependencies import get_current_user, get_optional_user
from services import assistant
from services.chat_model import get_chat_model
from services.rag_context import get_expense_suggestions

router = APIRouter(prefix="/ai", tags=["AI Assistant"])


@router.get("")
async def assistant_status(user: Optional[User] = Depends(get_optional_user)):
    return {
        "status": "AI Assistant is ready",
        "model": CHAT_MODEL_PRIMARY,
        "fallback": CHAT_MODEL_FALLBACK,
        "provider": LLM_PROVIDER,
        "authenticated": user is not None,
        "user_id": user.id if user else None,
    }


@router.post("", response_model=AIResponse, response_model_exclude_none=True)
async def chat(
    req: AIRequest,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    llm=Depends(get_chat_model),
):
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    if user is None:
        return await assistant.answer_anonymous(llm, req.message, req.conversation_history)

    return await assistant.answer(db, llm, user.id, req.message, req.conversation_history)


@router.post("/stream")
async def chat_stream(
    req: AIRequest,
    user: User = Depends(get_current_user),
    llm=Depends(get_chat_model),
):
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    user_id = user.id

    async def event_generator():
        # the request scoped session is gone once the response starts streaming
        async with AsyncSessionLocal() as session:
            async for event in assistant.stream_answer(
                session, llm, user_id, req.message, req.conversation_history
            ):
                yield event

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


# ---------- history ----------
@router.get("/history", response_model=List[ChatMessageRead])
async def get_history(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.user_id == user.id)
        .order_by(ChatMessage.created_at.desc())
        .limit(CHAT_HISTORY_LIMIT)
    )
    res = await db.execute(stmt)
    # newest N, returned oldest first
    return list(reversed(res.scalars().all()))


@router.post("/history", response_model=ChatMessageRead, status_code=201)
async def add_history_message(
    body: HistoryCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not body.role or not body.content:
        raise HTTPException(status_code=400, detail="Role and content are required")

    if body.role not in ("user", "assistant"):
        raise HTTPException(status_code=400, detail='Role must be "user" or "assistant"')

    message = ChatMessage(role=body.role, content=body.content, user_id=user.id)
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message


@router.delete("/history")
async def clear_history(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await db.execute(delete(ChatMessage).where(ChatMessage.user_id == user.id))
    await db.commit()
    return {"success": True, "message": "Chat history cleared"}


@router.get("/suggestions")
async def suggestions(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"suggestions": await get_expense_suggestions(db, user.id)}
