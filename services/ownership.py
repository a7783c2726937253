from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from db.models import Book, Category, Expense


async def get_owned_book(
    db: AsyncSession,
    book_id: str,
    user_id: str,
    detail: str = "Book not found or access denied",
) -> Book:
    res = await db.execute(
        select(Book).where(Book.id == book_id, Book.user_id == user_id)
    )
    book = res.scalar_one_or_none()

    if not book:
        raise HTTPException(status_code=404, detail=detail)

    return book


async def get_owned_category(
    db: AsyncSession,
    category_id: str,
    user_id: str,
    default_detail: str = "Cannot edit default categories",
) -> Category:
    """
    Walk Category -> Book -> User.

    Default categories have no book and are rejected with ``default_detail``;
    the caller picks the wording for the action being refused.
    """
    res = await db.execute(
        select(Category)
        .options(selectinload(Category.book))
        .where(Category.id == category_id)
    )
    category = res.scalar_one_or_none()

    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    if category.is_default or category.book is None:
        raise HTTPException(status_code=400, detail=default_detail)

    if category.book.user_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")

    return category


async def get_category_for_expense(
    db: AsyncSession,
    category_id: str,
    user_id: str,
) -> Category:
    """Resolve the category an expense is filed under (create / move)."""
    res = await db.execute(
        select(Category)
        .options(selectinload(Category.book))
        .where(Category.id == category_id)
    )
    category = res.scalar_one_or_none()

    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    # default categories are templates, expenses need a real book
    if category.book is None:
        raise HTTPException(status_code=400, detail="Invalid category selected")

    if category.book.user_id != user_id:
        raise HTTPException(status_code=404, detail="Category not found or access denied")

    return category


async def get_owned_expense(
    db: AsyncSession,
    expense_id: str,
    user_id: str,
) -> Expense:
    """Walk Expense -> Category -> Book -> User."""
    res = await db.execute(
        select(Expense)
        .options(selectinload(Expense.category).selectinload(Category.book))
        .where(Expense.id == expense_id)
    )
    expense = res.scalar_one_or_none()

    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    if expense.category is None or expense.category.book is None:
        raise HTTPException(
            status_code=400,
            detail="Invalid expense - category has no associated book",
        )

    if expense.category.book.user_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")

    return expense
