from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete
from datetime import date
from typing import Optional
import logging

from core.database import get_db
from db.models import Category, Expense, User
from api.schemas.expense import ExpenseCreate, ExpenseUpdate
from api.dependencies import get_current_user
from services.ownership import get_category_for_expense, get_owned_expense
from services.reports import active_expenses, is_future_date, serialize_expense

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/expenses", tags=["Expenses"])


def _check_values(amount: float, spent_on: date) -> None:
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")
    if is_future_date(spent_on):
        raise HTTPException(status_code=400, detail="Expense date cannot be in the future")


async def _active_owned_expense(db: AsyncSession, expense_id: str, user_id: str, detail: str) -> Expense:
    expense = await get_owned_expense(db, expense_id, user_id)
    if expense.category.book.is_archived:
        raise HTTPException(status_code=400, detail=detail)
    return expense


# ---------- create ----------
@router.post("", status_code=201)
async def create_expense(
    body: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = await get_category_for_expense(db, body.category_id, user.id)
    if category.book.is_archived:
        raise HTTPException(status_code=400, detail="Cannot create expenses for archived books")

    _check_values(body.amount, body.date)

    expense = Expense(
        amount=body.amount,
        date=body.date,
        description=body.description or "",
        payment_method=body.payment_method,
        category=category,
    )
    db.add(expense)
    await db.commit()

    logger.info("Expense %s created in category %s", expense.id, category.id)
    return serialize_expense(expense)


# ---------- list ----------
@router.get("")
async def list_expenses(
    category_id: Optional[str] = Query(None),
    book_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    criteria = []
    if category_id:
        criteria.append(Expense.category_id == category_id)
    if book_id:
        criteria.append(Category.book_id == book_id)

    expenses = await active_expenses(db, user.id, *criteria)
    return [serialize_expense(e) for e in expenses]


# ---------- single expense ----------
@router.get("/{expense_id}")
async def get_expense(
    expense_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await _active_owned_expense(
        db, expense_id, user.id, "Cannot access expenses from archived books"
    )
    return serialize_expense(expense)


@router.put("/{expense_id}")
async def update_expense(
    expense_id: str,
    body: ExpenseUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await _active_owned_expense(
        db, expense_id, user.id, "Cannot edit expenses from archived books"
    )

    if expense.is_disabled:
        raise HTTPException(status_code=400, detail="Cannot edit disabled expenses. Restore it first.")

    if body.category_id != expense.category_id:
        category = await get_category_for_expense(db, body.category_id, user.id)
        if category.book.is_archived:
            raise HTTPException(status_code=400, detail="Cannot move expenses to archived books")
        expense.category = category

    _check_values(body.amount, body.date)

    expense.amount = body.amount
    expense.date = body.date
    expense.description = body.description or ""
    expense.payment_method = body.payment_method
    await db.commit()

    return serialize_expense(expense)


# ---------- lifecycle ----------
@router.delete("/{expense_id}")
async def delete_expense(
    expense_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await _active_owned_expense(
        db, expense_id, user.id, "Cannot delete expenses from archived books"
    )

    await db.execute(delete(Expense).where(Expense.id == expense.id))
    await db.commit()
    return {"success": True}


@router.post("/{expense_id}/disable")
async def disable_expense(
    expense_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await _active_owned_expense(
        db, expense_id, user.id, "Cannot disable expenses from archived books"
    )
    expense.is_disabled = True
    await db.commit()
    return {"success": True}


@router.post("/{expense_id}/restore")
async def restore_expense(
    expense_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await _active_owned_expense(
        db, expense_id, user.id, "Cannot restore expenses from archived books"
    )
    expense.is_disabled = False
    await db.commit()
    return {"success": True}


@router.delete("/{expense_id}/permanent")
async def permanent_delete_expense(
    expense_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    expense = await get_owned_expense(db, expense_id, user.id)

    await db.execute(delete(Expense).where(Expense.id == expense.id))
    await db.commit()

    logger.info("Expense %s permanently deleted", expense_id)
    return {"success": True}
