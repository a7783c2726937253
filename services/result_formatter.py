from datetime import date, datetime
from typing import Any

from loguru import logger

from services.currency import CURRENCY_SYMBOLS
from services.sql_guard import SqlGuardError, parse_insert

_FUNCTION_MARKERS = {"UUID()", "NOW()", "CURDATE()"}

_HIDDEN_COLUMNS = {
    "id", "user_id", "book_id", "category_id",
    "is_disabled", "is_archived", "created_at", "updated_at",
}


def extract_record_values(sql: str, books, categories) -> str:
    """
    "key: value" summary of an inserted row.

    category_id / book_id are shown as the category / book name, every other
    id column and the UUID()/NOW()/CURDATE() placeholders are left out.
    """
    try:
        _, columns, values = parse_insert(sql)
    except SqlGuardError as e:
        logger.warning(f"Could not read inserted values: {e}")
        return ""

    record: dict[str, Any] = {}
    for column, value in zip(columns, values):
        if isinstance(value, str) and value in _FUNCTION_MARKERS:
            continue

        if column == "category_id":
            category = next((c for c in categories if c.id == value), None)
            if category:
                record["category"] = category.name
            continue

        if column == "book_id":
            book = next((b for b in books if b.id == value), None)
            if book:
                record["book"] = book.name
            continue

        if column.endswith("id"):
            continue

        if isinstance(value, float) and value.is_integer() and column != "amount":
            value = int(value)
        elif isinstance(value, float):
            value = f"{value:.2f}"
        elif isinstance(value, bool):
            value = str(value).lower()

        record[column] = value

    return ", ".join(f"{k}: {v}" for k, v in record.items())


def _as_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10] if value else ""


def _format_amount(amount: Any, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return f"{symbol}{float(amount or 0):.2f}"


def _expense_line(index: int, row: dict, books, categories) -> str:
    category_name = row.get("category_name") or row.get("category") or ""
    if not category_name and row.get("category_id"):
        category = next((c for c in categories if c.id == row["category_id"]), None)
        category_name = category.name if category else "Unknown"

    book_name = row.get("book_name") or row.get("book") or ""
    currency = row.get("book_currency") or row.get("currency") or ""
    if not currency and row.get("book_id"):
        book = next((b for b in books if b.id == row["book_id"]), None)
        if book:
            book_name = book_name or book.name
            currency = book.currency

    line = f"{index}. {_format_amount(row.get('amount'), currency or 'USD')}"
    if row.get("description"):
        line += f' for "{row["description"]}"'
    if category_name:
        line += f" [{category_name}]"
    if book_name:
        line += f" in {book_name}"
    if row.get("payment_method"):
        line += f" via {row['payment_method']}"
    if row.get("date"):
        line += f" on {_as_date(row['date'])}"
    return line


def _book_line(index: int, row: dict) -> str:
    line = f"{index}. Book: {row.get('name') or row.get('book_name') or 'Unknown'}"
    if row.get("currency"):
        line += f" with currency {row['currency']}"
    return line


def _category_line(index: int, row: dict, books) -> str:
    name = row.get("name") or row.get("category_name") or "Unknown"
    book_name = row.get("book_name")
    if not book_name and row.get("book_id"):
        book = next((b for b in books if b.id == row["book_id"]), None)
        book_name = book.name if book else None

    suffix = f" in {book_name} book" if book_name else ""
    return f"{index}. Category: {name}{suffix}"


def _generic_line(index: int, row: dict) -> str | None:
    parts = []
    for key, value in row.items():
        if key in _HIDDEN_COLUMNS or value is None:
            continue
        if key == "amount" and isinstance(value, (int, float)):
            parts.append(f"${value:.2f}")
        elif key == "date":
            parts.append(_as_date(value))
        elif isinstance(value, float):
            parts.append(f"{value:.2f}")
        else:
            parts.append(str(value))

    if not parts:
        return None
    return f"{index}. {', '.join(parts)}"


def format_select_report(rows: list[dict], books, categories) -> str:
    """Human readable listing of SELECT rows, ids left out."""
    if not rows:
        return "No records found"

    first = rows[0]
    is_expense = "amount" in first or "category_id" in first or "category_name" in first
    is_book = "currency" in first or ("name" in first and "book_id" not in first)
    is_category = ("book_id" in first or "category_name" in first) and "amount" not in first

    lines = [f"📊 Found {len(rows)} record{'s' if len(rows) != 1 else ''}:"]
    for i, row in enumerate(rows, start=1):
        if is_expense:
            line = _expense_line(i, row, books, categories)
        elif is_book:
            line = _book_line(i, row)
        elif is_category:
            line = _category_line(i, row, books)
        else:
            line = _generic_line(i, row)

        if line:
            lines.append(f"  {line}")

    return "\n".join(lines)
