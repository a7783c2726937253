from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_, and_
from sqlalchemy.orm import selectinload
from typing import Optional
import json
import logging

from core.database import get_db
from core.config import DEFAULT_CATEGORIES_PATH
from db.models import Book, Category, Expense, User
from api.schemas.category import CategoryCreate, CategoryUpdate, CategoryRead, AddDefaultCategory
from api.dependencies import get_current_user
from services.ownership import get_owned_book, get_owned_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["Categories"])


def _serialize_category(category: Category, expense_count: int | None = None) -> dict:
    data = CategoryRead.model_validate(category).model_dump()
    book = category.book
    data["book"] = {"id": book.id, "name": book.name, "currency": book.currency} if book else None
    if expense_count is not None:
        data["expense_count"] = expense_count
    return data


async def _expense_count(db: AsyncSession, category_id: str) -> int:
    res = await db.execute(
        select(func.count(Expense.id)).where(Expense.category_id == category_id)
    )
    return res.scalar_one()


def _ensure_book_active(category: Category, detail: str) -> None:
    if category.book.is_archived:
        raise HTTPException(status_code=400, detail=detail)


# ---------- create ----------
@router.post("", status_code=201)
async def create_category(
    body: CategoryCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    fields = dict(
        name=body.name,
        description=body.description,
        icon=body.icon,
        color=body.color,
    )

    if body.is_default:
        category = Category(**fields, is_default=True, book_id=None)
        db.add(category)
        await db.commit()
        return {"success": True, "categories": [category.id]}

    book_ids = list(dict.fromkeys(body.book_ids))
    if not book_ids:
        raise HTTPException(status_code=400, detail="At least one book is required for non-default categories")

    res = await db.execute(
        select(Book.id).where(
            Book.id.in_(book_ids),
            Book.user_id == user.id,
            Book.is_archived.is_(False),
        )
    )
    if len(res.all()) != len(book_ids):
        raise HTTPException(status_code=404, detail="One or more books not found or access denied")

    # one row per book
    created = [Category(**fields, is_default=False, book_id=book_id) for book_id in book_ids]
    db.add_all(created)
    await db.commit()

    logger.info("Category %r created in %d book(s)", body.name, len(created))
    return {"success": True, "categories": [c.id for c in created]}


# ---------- list ----------
@router.get("")
async def list_categories(
    book_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    owned = [Book.user_id == user.id, Book.is_archived.is_(False)]
    if book_id:
        owned.append(Book.id == book_id)

    stmt = (
        select(Category)
        .outerjoin(Category.book)
        .options(selectinload(Category.book), selectinload(Category.expenses))
        .where(
            Category.is_disabled.is_(False),
            or_(
                Category.is_default.is_(True),
                and_(Category.is_default.is_(False), *owned),
            ),
        )
        .order_by(Category.is_default.desc(), Category.name.asc())
    )
    res = await db.execute(stmt)
    return [_serialize_category(c, len(c.expenses)) for c in res.scalars().all()]


# ---------- defaults ----------
@router.post("/seed", summary="Seed the built-in default categories")
async def seed_default_categories(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not DEFAULT_CATEGORIES_PATH.exists():
        raise HTTPException(status_code=404, detail="default_categories.json file not found")

    with open(DEFAULT_CATEGORIES_PATH, "r", encoding="utf-8") as f:
        defaults = json.load(f)

    inserted = 0
    for item in defaults:
        res = await db.execute(
            select(Category.id).where(
                Category.name == item["name"],
                Category.is_default.is_(True),
            )
        )
        if res.first():
            continue

        db.add(Category(
            name=item["name"],
            description=item.get("description", ""),
            icon=item.get("icon", ""),
            is_default=True,
            book_id=None,
        ))
        inserted += 1

    await db.commit()

    logger.info("Seeded %d default categories", inserted)
    return {"status": "success", "inserted": inserted, "total": len(defaults)}


@router.post("/defaults/add", status_code=201)
async def add_default_category_to_book(
    body: AddDefaultCategory,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    res = await db.execute(
        select(Category).where(
            Category.id == body.default_category_id,
            Category.is_default.is_(True),
        )
    )
    default = res.scalar_one_or_none()
    if not default:
        raise HTTPException(status_code=404, detail="Default category not found")

    book = await get_owned_book(db, body.book_id, user.id)
    if book.is_archived:
        raise HTTPException(status_code=400, detail="Cannot add categories to archived books")

    res = await db.execute(
        select(Category.id).where(
            Category.name == default.name,
            Category.book_id == book.id,
            Category.is_default.is_(False),
            Category.is_disabled.is_(False),
        )
    )
    if res.first():
        raise HTTPException(status_code=400, detail="This category already exists in the book")

    copy = Category(
        name=default.name,
        description=default.description,
        icon=default.icon,
        book_id=book.id,
        is_default=False,
    )
    db.add(copy)
    await db.commit()

    return {"success": True, "category_id": copy.id}


# ---------- single category ----------
@router.get("/{category_id}")
async def get_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(db, category_id, user.id)
    return _serialize_category(category)


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    body: CategoryUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(db, category_id, user.id)
    _ensure_book_active(category, "Cannot edit categories from archived books")

    if category.is_disabled:
        raise HTTPException(status_code=400, detail="Cannot edit disabled categories. Restore it first.")

    category.name = body.name
    category.description = body.description
    category.icon = body.icon
    category.color = body.color
    await db.commit()

    return _serialize_category(category)


# ---------- lifecycle ----------
@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(
        db, category_id, user.id, default_detail="Cannot delete default categories"
    )
    _ensure_book_active(category, "Cannot delete categories from archived books")

    if await _expense_count(db, category.id):
        raise HTTPException(
            status_code=400,
            detail="Cannot delete category with existing expenses. Use disable instead.",
        )

    await db.execute(delete(Category).where(Category.id == category.id))
    await db.commit()
    return {"success": True}


@router.post("/{category_id}/disable")
async def disable_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(
        db, category_id, user.id, default_detail="Cannot disable default categories"
    )
    _ensure_book_active(category, "Cannot disable categories from archived books")

    category.is_disabled = True
    await db.commit()
    return {"success": True}


@router.post("/{category_id}/restore")
async def restore_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(
        db, category_id, user.id, default_detail="Cannot restore default categories"
    )
    _ensure_book_active(category, "Cannot restore categories from archived books")

    category.is_disabled = False
    await db.commit()
    return {"success": True}


@router.delete("/{category_id}/permanent")
async def permanent_delete_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_owned_category(
        db, category_id, user.id, default_detail="Cannot permanently delete default categories"
    )

    if await _expense_count(db, category.id):
        raise HTTPException(
            status_code=400,
            detail="Cannot permanently delete category with existing expenses. Delete expenses first.",
        )

    await db.execute(delete(Category).where(Category.id == category.id))
    await db.commit()

    logger.info("Category %s permanently deleted", category_id)
    return {"success": True}
