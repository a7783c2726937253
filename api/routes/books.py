from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import List
from core.database import get_db
from db.models import Book, Category, Expense, User
from api.schemas.book import BookCreate, BookUpdate, BookRead
from api.dependencies import get_current_user
from services.ownership import get_owned_book
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["Books"])

DUPLICATE_BOOK = "A book with this name already exists"


def _active_tree():
    """Load options: active categories of a book and their active expenses."""
    return (
        selectinload(Book.categories.and_(Category.is_disabled.is_(False)))
        .selectinload(Category.expenses.and_(Expense.is_disabled.is_(False)))
    )


def _serialize_book(book: Book) -> dict:
    categories = sorted(book.categories, key=lambda c: c.name.lower())
    return {
        **BookRead.model_validate(book).model_dump(),
        "categories": [
            {
                "id": c.id,
                "name": c.name,
                "description": c.description,
                "icon": c.icon,
                "color": c.color,
                "expenses": [
                    {
                        "id": e.id,
                        "amount": e.amount,
                        "date": e.date.isoformat(),
                        "description": e.description or "",
                        "payment_method": e.payment_method,
                        "category": {"id": c.id, "name": c.name, "color": c.color},
                    }
                    for e in sorted(c.expenses, key=lambda e: e.date, reverse=True)
                ],
            }
            for c in categories
        ],
    }


async def _name_taken(db: AsyncSession, user_id: str, name: str, exclude_id: str | None = None) -> bool:
    stmt = select(Book.id).where(Book.user_id == user_id, Book.name == name)
    if exclude_id:
        stmt = stmt.where(Book.id != exclude_id)
    res = await db.execute(stmt)
    return res.first() is not None


# ---------- create ----------
@router.post("", response_model=BookRead, status_code=201)
async def create_book(
    body: BookCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if await _name_taken(db, user.id, body.name):
        raise HTTPException(status_code=409, detail=DUPLICATE_BOOK)

    book = Book(
        name=body.name,
        description=body.description,
        currency=body.currency,
        user_id=user.id,
    )
    db.add(book)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=DUPLICATE_BOOK)

    await db.refresh(book)
    logger.info("Book %s created for user %s", book.id, user.id)
    return book


# ---------- list ----------
@router.get("")
async def list_books(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = (
        select(Book)
        .options(_active_tree())
        .where(Book.user_id == user.id, Book.is_archived.is_(False))
        .order_by(Book.created_at.desc())
    )
    res = await db.execute(stmt)
    return [_serialize_book(b) for b in res.scalars().all()]


@router.get("/archived", response_model=List[BookRead])
async def list_archived_books(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = (
        select(Book)
        .where(Book.user_id == user.id, Book.is_archived.is_(True))
        .order_by(Book.updated_at.desc())
    )
    res = await db.execute(stmt)
    return res.scalars().all()


# ---------- single book + summary ----------
@router.get("/{book_id}")
async def get_book(
    book_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = (
        select(Book)
        .options(_active_tree())
        .where(Book.id == book_id, Book.user_id == user.id, Book.is_archived.is_(False))
    )
    res = await db.execute(stmt)
    book = res.scalar_one_or_none()

    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    expenses = [e for c in book.categories for e in c.expenses]

    return {
        "book": _serialize_book(book),
        "summary": {
            "total_expenses": sum(e.amount for e in expenses),
            "total_categories": len(book.categories),
            "total_expenses_count": len(expenses),
        },
    }


# ---------- update ----------
@router.put("/{book_id}", response_model=BookRead)
async def update_book(
    book_id: str,
    body: BookUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    book = await get_owned_book(db, book_id, user.id, detail="Book not found")

    if book.is_archived:
        raise HTTPException(status_code=400, detail="Cannot edit archived books. Restore the book first.")

    if await _name_taken(db, user.id, body.name, exclude_id=book.id):
        raise HTTPException(status_code=409, detail=DUPLICATE_BOOK)

    book.name = body.name
    book.description = body.description
    book.currency = body.currency

    await db.commit()
    await db.refresh(book)
    return book


# ---------- lifecycle ----------
@router.post("/{book_id}/archive")
async def archive_book(
    book_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    book = await get_owned_book(db, book_id, user.id)
    book.is_archived = True
    await db.commit()

    logger.info("Book %s archived", book.id)
    return {"success": True, "message": "Book archived successfully"}


@router.post("/{book_id}/restore")
async def restore_book(
    book_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    book = await get_owned_book(db, book_id, user.id)
    book.is_archived = False
    await db.commit()

    return {"success": True, "message": "Book restored successfully"}


@router.delete("/{book_id}")
async def permanent_delete_book(
    book_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    res = await db.execute(
        select(Book)
        .options(selectinload(Book.categories).selectinload(Category.expenses))
        .where(Book.id == book_id, Book.user_id == user.id)
    )
    book = res.scalar_one_or_none()

    if not book:
        raise HTTPException(status_code=404, detail="Book not found or access denied")

    if not book.is_archived:
        raise HTTPException(status_code=400, detail="Only archived books can be permanently deleted")

    # categories and expenses are loaded so the ORM cascade removes them too
    await db.delete(book)
    await db.commit()

    logger.info("Book %s permanently deleted", book_id)
    return {"success": True, "message": "Book permanently deleted"}
