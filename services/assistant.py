"""
Chat orchestration for the AI assistant.

Authenticated turns run in two passes:

1. SQL pass: the model sees the caller's books / categories and the rule
   documents and may answer with a ```sql block. INSERT, UPDATE and SELECT
   blocks are guarded and executed; the reply is replaced by the outcome.
2. General pass (only when the SQL pass produced no SQL): a RAG prompt with
   the user's spending context. A SELECT it produces is executed too.

Both messages of every authenticated exchange are stored as ChatMessage rows.
"""
import json
import time

from fastapi import HTTPException
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import CHAT_MODEL_PRIMARY
from db.models import ChatMessage
from services.currency import check_currency_compatibility
from services.prompts import (
    ANONYMOUS_SYSTEM_PROMPT,
    AUTH_REQUIRED_NOTICE,
    HELPER_PHRASES,
    render_general_prompt,
    render_sql_prompt,
)
from services.rag_context import (
    build_user_data_block,
    get_context,
    load_user_books,
    load_user_categories,
)
from services.result_formatter import extract_record_values, format_select_report
from services.sql_executor import execute_insert, execute_select, execute_update
from services.sql_guard import classify, extract_sql, resolve_book_names, strip_sql_blocks

NO_OPERATION_WARNING = (
    "⚠️ **No database operation performed.** The AI generated a success message without "
    "creating the required SQL query.\n\nFor creation requests, you must provide all required "
    "information and generate the SQL query in code blocks first. Please try your request again "
    'with complete details like "Add expense $50 for groceries in the Food category".'
)

SUCCESS_CLAIMS = ("successfully added", "✅", "created", "added")

EMPTY_REPLY = "I apologize, but I could not generate a response."


# ------------------------------------------------------------------
# Model calls
# ------------------------------------------------------------------
def history_to_messages(history) -> list:
    messages = []
    for item in history or []:
        if item.role == "user":
            messages.append(HumanMessage(content=item.content))
        elif item.role == "assistant":
            messages.append(AIMessage(content=item.content))
    return messages


def build_messages(system_prompt: str, history, message: str) -> list:
    return [
        SystemMessage(content=system_prompt),
        *history_to_messages(history),
        HumanMessage(content=message),
    ]


def _usage(reply) -> dict | None:
    usage = getattr(reply, "usage_metadata", None)
    if usage:
        return dict(usage)
    return (getattr(reply, "response_metadata", None) or {}).get("token_usage")


async def call_model(llm, system_prompt: str, history, message: str) -> tuple[str, dict | None]:
    try:
        reply = await llm.ainvoke(build_messages(system_prompt, history, message))
    except Exception as e:
        logger.exception(f"Chat model call failed: {e}")
        raise HTTPException(status_code=502, detail=f"AI provider error: {e}")

    content = reply.content if isinstance(reply.content, str) else str(reply.content)
    return content or EMPTY_REPLY, _usage(reply)


# ------------------------------------------------------------------
# Reply helpers
# ------------------------------------------------------------------
def clean_reply(text: str) -> str:
    text = strip_sql_blocks(text)
    for phrase in HELPER_PHRASES:
        text = text.replace(phrase, "")
    return text.strip()


def is_fake_success(reply: str, message: str, had_sql: bool) -> bool:
    """A success claim for an add/create request although no SQL was produced."""
    if had_sql:
        return False

    lowered_message = message.lower()
    if "add" not in lowered_message and "create" not in lowered_message:
        return False

    lowered = reply.lower()
    return any(claim in lowered for claim in SUCCESS_CLAIMS)


async def save_exchange(db: AsyncSession, user_id: str, message: str, reply: str) -> None:
    try:
        db.add(ChatMessage(role="user", content=message, user_id=user_id))
        db.add(ChatMessage(role="assistant", content=reply, user_id=user_id))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error saving chat message for user {user_id}: {e}")


async def _run_select(db, sql, user_id, books, categories) -> dict:
    result = await execute_select(db, resolve_book_names(sql, books), user_id)
    if result["success"] and result["data"]:
        result["report"] = format_select_report(result["data"], books, categories)
    elif result["success"]:
        result["report"] = "📊 Found 0 records"
    return result


async def handle_generated_sql(
    db: AsyncSession,
    user_id: str,
    message: str,
    reply: str,
    sql: str,
    books,
    categories,
) -> str:
    """Run the statement the SQL pass produced and turn the outcome into the chat reply."""
    kind = classify(sql)
    lowered = sql.lower()

    if kind == "insert":
        logger.info(f"AI SQL flow: INSERT for user {user_id}")

        if "into expenses" in lowered and books:
            currency_check = check_currency_compatibility(message, books)
            if not currency_check["compatible"]:
                return currency_check["message"]

        # book inserts keep their literal name so the duplicate check can see it
        if "into books" not in lowered:
            sql = resolve_book_names(sql, books)

        result = await execute_insert(db, sql, user_id, books, categories)
        if not result["success"]:
            return f"❌ {result['error']}"

        values = extract_record_values(sql, books, categories)
        return f"✅ {result['message']}: {values}" if values else f"✅ {result['message']}"

    if kind == "update":
        logger.info(f"AI SQL flow: UPDATE for user {user_id}")
        result = await execute_update(db, resolve_book_names(sql, books), user_id)
        return f"✅ {result['message']}" if result["success"] else f"❌ {result['error']}"

    if kind == "select":
        logger.info(f"AI SQL flow: SELECT for user {user_id}")
        result = await _run_select(db, sql, user_id, books, categories)
        if result["success"]:
            return result["report"]
        return f"{clean_reply(reply)}\n\n❌ Query execution failed: {result['error']}".strip()

    logger.warning(f"AI SQL flow: unsupported statement for user {user_id}")
    return clean_reply(reply)


# ------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------
async def answer_anonymous(llm, message: str, history) -> dict:
    content, usage = await call_model(llm, ANONYMOUS_SYSTEM_PROMPT.strip(), history, message)
    return {
        "response": content,
        "model": CHAT_MODEL_PRIMARY,
        "usage": usage,
        "requires_auth": True,
        "message": AUTH_REQUIRED_NOTICE,
        "requires_confirmation": False,
    }


async def answer(db: AsyncSession, llm, user_id: str, message: str, history) -> dict:
    books = await load_user_books(db, user_id)
    categories = await load_user_categories(db, books)
    context = await get_context(db, user_id, message)

    # ---- pass 1: SQL generation ----
    sql_prompt = render_sql_prompt(user_id, build_user_data_block(books, categories), context)
    content, usage = await call_model(llm, sql_prompt, history, message)

    sql = extract_sql(content)
    if sql:
        reply = await handle_generated_sql(db, user_id, message, content, sql, books, categories)
        await save_exchange(db, user_id, message, reply)
        return {
            "response": reply,
            "model": CHAT_MODEL_PRIMARY,
            "usage": usage,
            "requires_confirmation": False,
        }

    # ---- pass 2: general RAG answer ----
    general_prompt = render_general_prompt(context, message)
    content, usage = await call_model(llm, general_prompt, history, message)

    reply = content
    sql = extract_sql(content)
    if sql:
        result = await _run_select(db, sql, user_id, books, categories)
        if result["success"]:
            reply = result["report"]
        else:
            reply = f"{strip_sql_blocks(content)}\n\n❌ {result['error']}"

    reply = clean_reply(reply)
    if is_fake_success(reply, message, had_sql=sql is not None):
        logger.warning(f"AI claimed success without SQL for user {user_id}")
        reply = NO_OPERATION_WARNING

    await save_exchange(db, user_id, message, reply)

    return {
        "response": reply,
        "model": CHAT_MODEL_PRIMARY,
        "usage": usage,
        "rag_context": {
            "relevant_docs": [d.model_dump() for d in context.relevant_docs],
            "user_context": context.user_context,
        },
        "requires_confirmation": False,
    }


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_answer(db: AsyncSession, llm, user_id: str, message: str, history):
    """
    Server-sent events for a streamed reply.

    Events: ``timing`` on the first token, ``content`` per chunk,
    ``timing-final`` and ``done`` (full text) at the end, ``error`` on failure.
    Timings are in milliseconds.
    """
    started = time.perf_counter()

    def elapsed(since: float) -> int:
        return int((time.perf_counter() - since) * 1000)

    context_start = time.perf_counter()
    books = await load_user_books(db, user_id)
    categories = await load_user_categories(db, books)
    user_context_ms = elapsed(context_start)

    rag_start = time.perf_counter()
    context = await get_context(db, user_id, message)
    rag_ms = elapsed(rag_start)

    prompt = render_sql_prompt(user_id, build_user_data_block(books, categories), context)
    messages = build_messages(prompt, history, message)

    timing = {"user_context_building": user_context_ms, "rag_context": rag_ms}
    full_response = ""

    try:
        api_start = time.perf_counter()
        first_token = True

        async for chunk in llm.astream(messages):
            token = chunk.content if isinstance(chunk.content, str) else ""
            if not token:
                continue

            if first_token:
                first_token = False
                timing["first_token_time"] = elapsed(api_start)
                yield _sse({"type": "timing", "timing": dict(timing)})

            full_response += token
            yield _sse({"type": "content", "content": token})

        timing["ai_api_call"] = elapsed(api_start)
        timing["total_time"] = elapsed(started)
        yield _sse({"type": "timing-final", "timing": dict(timing)})
        yield _sse({"type": "done", "full_response": full_response})

    except Exception as e:
        logger.exception(f"Streaming error for user {user_id}: {e}")
        yield _sse({"type": "error", "error": str(e) or "Streaming failed"})
        return

    await save_exchange(db, user_id, message, full_response)
