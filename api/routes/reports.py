from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from core.database import get_db
from db.models import User
from api.schemas.report import DetailedReportRequest
from api.dependencies import get_current_user
from services.ownership import get_owned_book
from services import reports

router = APIRouter(prefix="/reports", tags=["Reports"])


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": reports.content_disposition(filename)},
    )


@router.get("/monthly")
async def monthly_summary(
    book_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await reports.monthly_summary(db, user.id, book_id)


@router.get("/categories")
async def category_breakdown(
    book_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await reports.category_breakdown(db, user.id, book_id)


@router.get("/books/{book_id}/summary")
async def book_summary(
    book_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await reports.book_summary(db, user.id, book_id)


@router.post("/detailed")
async def detailed_report(
    body: DetailedReportRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await get_owned_book(db, body.book_id, user.id, detail="Book not found")
    return await reports.detailed_report(
        db, user.id, body.book_id, body.start_date, body.end_date, body.categories
    )


# ---------- csv exports ----------
@router.post("/detailed/csv")
async def export_expenses_csv(
    body: DetailedReportRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    book = await get_owned_book(db, body.book_id, user.id, detail="Book not found")
    report = await reports.detailed_report(
        db, user.id, book.id, body.start_date, body.end_date, body.categories
    )
    return _csv_response(
        reports.expenses_csv(report),
        reports.export_filename(book.name, "expenses"),
    )


@router.post("/detailed/categories/csv")
async def export_category_breakdown_csv(
    body: DetailedReportRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    book = await get_owned_book(db, body.book_id, user.id, detail="Book not found")
    report = await reports.detailed_report(
        db, user.id, book.id, body.start_date, body.end_date, body.categories
    )
    return _csv_response(
        reports.category_breakdown_csv(report),
        reports.export_filename(book.name, "category_breakdown"),
    )
