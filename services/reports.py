"""
Report aggregation.

Every report re-fetches the caller's active expenses (expense enabled,
category enabled, book not archived) and reduces them in memory.
"""
import csv
import io
from datetime import date, datetime, timezone
from urllib.parse import quote

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.models import Book, Category, Expense


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_future_date(day: date) -> bool:
    """After today in UTC. Expense forms and assistant inserts both check this."""
    return day > utc_today()


def get_month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def serialize_expense(e: Expense) -> dict:
    category = e.category
    book = category.book if category is not None else None
    return {
        "id": e.id,
        "amount": e.amount,
        "date": e.date.isoformat(),
        "description": e.description or "",
        "payment_method": e.payment_method,
        "is_disabled": e.is_disabled,
        "category": {"id": category.id, "name": category.name} if category else None,
        "book": (
            {"id": book.id, "name": book.name, "currency": book.currency}
            if book else None
        ),
    }


async def active_expenses(db: AsyncSession, user_id: str, *criteria):
    stmt = (
        select(Expense)
        .join(Expense.category)
        .join(Category.book)
        .options(selectinload(Expense.category).selectinload(Category.book))
        .where(
            Expense.is_disabled.is_(False),
            Category.is_disabled.is_(False),
            Book.user_id == user_id,
            Book.is_archived.is_(False),
            *criteria,
        )
        .order_by(Expense.date.desc(), Expense.created_at.desc())
    )
    res = await db.execute(stmt)
    return res.scalars().all()


# ---------- reducers ----------
def group_by_month(expenses) -> list[dict]:
    buckets: dict[str, dict] = {}
    for e in expenses:
        key = get_month_key(e.date)
        bucket = buckets.setdefault(key, {"month": key, "total": 0.0, "count": 0, "expenses": []})
        bucket["total"] += e.amount
        bucket["count"] += 1
        bucket["expenses"].append(serialize_expense(e))

    return sorted(buckets.values(), key=lambda b: b["month"], reverse=True)


def merge_categories(categories) -> list[dict]:
    """
    Sum active expenses per category and merge categories sharing a name
    (case-insensitive) across books. Zero totals are skipped.
    """
    merged: dict[str, dict] = {}
    for cat in categories:
        active = [e for e in cat.expenses if not e.is_disabled]
        total = sum(e.amount for e in active)
        if total <= 0:
            continue

        key = cat.name.lower()
        entry = merged.setdefault(key, {
            "category": cat.name,
            "category_id": key,
            "total": 0.0,
            "count": 0,
            "books": [],
        })
        entry["total"] += total
        entry["count"] += len(active)
        if cat.book.name not in entry["books"]:
            entry["books"].append(cat.book.name)

    breakdown = [
        {
            "category": e["category"],
            "category_id": e["category_id"],
            "total": e["total"],
            "count": e["count"],
            "book": ", ".join(e["books"]),
        }
        for e in merged.values()
    ]
    return sorted(breakdown, key=lambda b: b["total"], reverse=True)


def group_by_category(expenses) -> list[dict]:
    groups: dict[str, dict] = {}
    for e in expenses:
        name = e.category.name
        group = groups.setdefault(name, {"name": name, "total": 0.0, "count": 0, "expenses": []})
        group["total"] += e.amount
        group["count"] += 1
        group["expenses"].append(serialize_expense(e))

    return sorted(groups.values(), key=lambda g: g["total"], reverse=True)


# ---------- reports ----------
async def monthly_summary(db: AsyncSession, user_id: str, book_id: str | None = None) -> list[dict]:
    criteria = [Category.book_id == book_id] if book_id else []
    expenses = await active_expenses(db, user_id, *criteria)
    return group_by_month(expenses)


async def category_breakdown(db: AsyncSession, user_id: str, book_id: str | None = None) -> list[dict]:
    stmt = (
        select(Category)
        .join(Category.book)
        .options(
            selectinload(Category.book),
            selectinload(Category.expenses),
        )
        .where(
            Category.is_disabled.is_(False),
            Book.user_id == user_id,
            Book.is_archived.is_(False),
        )
        .order_by(Category.created_at)
    )
    if book_id:
        stmt = stmt.where(Category.book_id == book_id)

    res = await db.execute(stmt)
    return merge_categories(res.scalars().all())


async def book_summary(db: AsyncSession, user_id: str, book_id: str) -> dict:
    stmt = (
        select(Book)
        .options(selectinload(Book.categories).selectinload(Category.expenses))
        .where(Book.id == book_id, Book.user_id == user_id, Book.is_archived.is_(False))
    )
    res = await db.execute(stmt)
    book = res.scalar_one_or_none()

    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    categories = [c for c in book.categories if not c.is_disabled]
    expenses = [e for c in categories for e in c.expenses if not e.is_disabled]

    return {
        "book_name": book.name,
        "total_expenses": sum(e.amount for e in expenses),
        "total_categories": len(categories),
        "total_transactions": len(expenses),
        "currency": book.currency,
    }


async def detailed_report(
    db: AsyncSession,
    user_id: str,
    book_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    categories: list[str] | None = None,
) -> dict:
    criteria = [Category.book_id == book_id]
    if start_date:
        criteria.append(Expense.date >= start_date)
    if end_date:
        criteria.append(Expense.date <= end_date)
    if categories:
        criteria.append(Category.id.in_(categories))

    expenses = await active_expenses(db, user_id, *criteria)

    return {
        "expenses": [serialize_expense(e) for e in expenses],
        "total_amount": sum(e.amount for e in expenses),
        "currency": expenses[0].category.book.currency if expenses else "USD",
        "categories": group_by_category(expenses),
    }


# ---------- csv ----------
def _render_csv(rows: list[list]) -> str:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def expenses_csv(report: dict) -> str:
    if not report["expenses"]:
        raise HTTPException(status_code=404, detail="There are no expenses to export")

    currency = report["currency"] or "USD"
    rows = [["Date", "Category", "Description", "Payment Method", "Amount", "Currency"]]
    for e in report["expenses"]:
        rows.append([
            e["date"],
            e["category"]["name"],
            e["description"] or "",
            e["payment_method"] or "",
            f"{e['amount']:.2f}",
            currency,
        ])
    rows.append([])
    rows.append(["TOTAL", "", "", "", f"{report['total_amount']:.2f}", currency])
    return _render_csv(rows)


def category_breakdown_csv(report: dict) -> str:
    if not report["expenses"]:
        raise HTTPException(status_code=404, detail="There are no expenses to export")

    currency = report["currency"] or "USD"
    rows = [["Category", "Transaction Count", "Total Amount", "Currency"]]
    for c in report["categories"]:
        rows.append([c["name"], str(c["count"]), f"{c['total']:.2f}", currency])
    rows.append([])
    rows.append(["TOTAL", str(len(report["expenses"])), f"{report['total_amount']:.2f}", currency])
    return _render_csv(rows)


def export_filename(book_name: str, kind: str, today: date | None = None) -> str:
    today = today or utc_today()
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in book_name)
    return f"{safe}_{kind}_{today.isoformat()}.csv"


def content_disposition(filename: str) -> str:
    """
    Attachment header for ``filename``.

    Header values are latin-1 on the wire, so non-ASCII names go into the
    RFC 5987 ``filename*`` parameter with an ASCII ``filename`` fallback.
    """
    fallback = "".join(ch if ch.isascii() else "_" for ch in filename)
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
