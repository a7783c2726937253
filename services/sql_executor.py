"""
Runs guarded model SQL against the caller's data.

INSERT  -> parsed, checked for ownership and valid values, then bound through
           a SQLAlchemy Core insert on the mapped table.
UPDATE  -> resolved to one row the caller owns, whose soft delete flag is set.
SELECT  -> scoped to the caller and executed as text.

Every function returns a plain dict: ``success`` plus ``message`` / ``data``
on success, ``error`` on failure. Nothing here raises into the chat flow.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import Boolean, Date, DateTime, Float, insert, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Book, Category, Expense
from services.currency import PAYMENT_METHODS, VALID_CURRENCIES
from services.reports import is_future_date, utc_today
from services.sql_guard import (
    SOFT_DELETE_FLAG,
    SqlGuardError,
    UpdateTarget,
    check_statement,
    find_duplicate_book,
    normalize_functions,
    parse_insert,
    parse_update_target,
    scope_select,
)

MODELS = {"books": Book, "categories": Category, "expenses": Expense}

_FUNCTION_MARKERS = {"UUID()", "NOW()", "CURDATE()"}


def _coerce(column, value: Any) -> Any:
    if value is None:
        return None

    col_type = column.type
    try:
        if isinstance(col_type, Date):
            return date.fromisoformat(str(value)[:10])
        if isinstance(col_type, DateTime):
            return datetime.fromisoformat(str(value))
        if isinstance(col_type, Boolean):
            return bool(value)
        if isinstance(col_type, Float):
            return float(value)
    except ValueError:
        raise SqlGuardError(f"Invalid value for {column.name}: {value}")

    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_insert_row(model, raw: dict[str, Any]) -> dict[str, Any]:
    """Map parsed VALUES onto the model's columns; ids and timestamps come from defaults."""
    columns = model.__table__.columns
    row: dict[str, Any] = {}

    for name, value in raw.items():
        if name not in columns:
            raise SqlGuardError(f"Unknown column for {model.__tablename__}: {name}")
        if name == "id":
            continue
        if isinstance(value, str) and value in _FUNCTION_MARKERS:
            if isinstance(columns[name].type, Date):
                row[name] = utc_today()
            continue
        row[name] = _coerce(columns[name], value)

    return row


def _check_book_row(row: dict, user_id: str) -> None:
    if not row.get("name"):
        raise SqlGuardError("Missing required field: name")

    owner = row.setdefault("user_id", user_id)
    if owner != user_id:
        raise SqlGuardError("You can only create books for your own account")

    currency = (row.get("currency") or "USD").upper()
    if currency not in VALID_CURRENCIES:
        raise SqlGuardError(
            f"Invalid currency code: {currency}. Valid currencies: {', '.join(VALID_CURRENCIES)}"
        )
    row["currency"] = currency
    row["is_archived"] = False


def _check_category_row(row: dict, books) -> None:
    if not row.get("name"):
        raise SqlGuardError("Missing required field: name")

    if not any(b.id == row.get("book_id") for b in books):
        raise SqlGuardError("Book not found or access denied")

    row["is_default"] = False
    row["is_disabled"] = False


def _check_expense_row(row: dict, categories) -> None:
    if not any(c.id == row.get("category_id") for c in categories):
        raise SqlGuardError("Category not found or access denied")

    amount = row.get("amount")
    if amount is None or amount <= 0:
        raise SqlGuardError("Amount must be positive")

    row.setdefault("date", utc_today())
    if row["date"] is None:
        row["date"] = utc_today()
    if is_future_date(row["date"]):
        raise SqlGuardError("Expense date cannot be in the future")

    method = row.get("payment_method") or "Other"
    if method not in PAYMENT_METHODS:
        raise SqlGuardError(
            f"Invalid payment method: {method}. Valid payment methods: {', '.join(PAYMENT_METHODS)}"
        )
    row["payment_method"] = method
    row.setdefault("description", "")
    row["is_disabled"] = False


async def execute_insert(
    db: AsyncSession,
    sql: str,
    user_id: str,
    books,
    categories,
) -> dict:
    try:
        statement = check_statement(sql, "insert")

        if find_duplicate_book(statement, books):
            raise SqlGuardError("Book already exists")

        table, columns, values = parse_insert(statement)
        model = MODELS.get(table)
        if model is None:
            raise SqlGuardError("INSERT queries are only allowed for books, categories and expenses")

        row = build_insert_row(model, dict(zip(columns, values)))
        if table == "books":
            _check_book_row(row, user_id)
        elif table == "categories":
            _check_category_row(row, books)
        else:
            _check_expense_row(row, categories)

        await db.execute(insert(model).values(**row))
        await db.commit()

        logger.info(f"AI insert into {table} for user {user_id}")
        return {"success": True, "message": "Successfully added"}

    except SqlGuardError as e:
        logger.warning(f"AI insert refused for user {user_id}: {e}")
        return {"success": False, "error": str(e), "message": "Failed to execute INSERT query"}

    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"AI insert failed for user {user_id}: {e}")
        return {"success": False, "error": str(getattr(e, "orig", e)), "message": "Failed to execute INSERT query"}


async def find_update_row(db: AsyncSession, target: UpdateTarget, user_id: str):
    model = MODELS[target.table]
    flag = getattr(model, SOFT_DELETE_FLAG[target.table])

    stmt = select(model)
    if model is Book:
        stmt = stmt.where(Book.user_id == user_id)
    elif model is Category:
        stmt = stmt.join(Category.book).where(Book.user_id == user_id)
    else:
        stmt = stmt.join(Expense.category).join(Category.book).where(Book.user_id == user_id)

    if target.record_id:
        stmt = stmt.where(model.id == target.record_id)
    else:
        stmt = stmt.where(flag.is_(False)).order_by(model.created_at.desc()).limit(1)

    res = await db.execute(stmt)
    return res.scalars().first()


async def execute_update(db: AsyncSession, sql: str, user_id: str) -> dict:
    try:
        statement = check_statement(sql, "update")
        target = parse_update_target(statement, user_id)

        row = await find_update_row(db, target, user_id)
        affected = 0
        if row is not None:
            setattr(row, SOFT_DELETE_FLAG[target.table], True)
            await db.commit()
            affected = 1

        logger.info(f"AI update on {target.table} for user {user_id}: {affected} row(s)")
        return {
            "success": True,
            "message": f"Successfully updated {affected} record(s)",
            "affected_rows": affected,
        }

    except SqlGuardError as e:
        logger.warning(f"AI update refused for user {user_id}: {e}")
        return {"success": False, "error": str(e), "message": "Failed to execute UPDATE query"}

    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"AI update failed for user {user_id}: {e}")
        return {"success": False, "error": str(getattr(e, "orig", e)), "message": "Failed to execute UPDATE query"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


async def execute_select(db: AsyncSession, sql: str, user_id: str) -> dict:
    try:
        statement = check_statement(sql, "select")
        scoped = scope_select(normalize_functions(statement), user_id)

        # colons inside literals ('10:30') must not be read as bind parameters
        result = await db.execute(text(scoped.replace(":", "\\:")))
        keys = list(result.keys())

        rows = []
        for values in result.all():
            # joined "*" selects repeat column names, the first table wins
            row: dict[str, Any] = {}
            for key, value in zip(keys, values):
                row.setdefault(key, _jsonable(value))
            rows.append(row)
        return {"success": True, "data": rows, "row_count": len(rows)}

    except SqlGuardError as e:
        logger.warning(f"AI select refused for user {user_id}: {e}")
        return {"success": False, "error": str(e)}

    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"AI select failed for user {user_id}: {e}")
        return {"success": False, "error": str(getattr(e, "orig", e))}
