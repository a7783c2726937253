from datetime import date
from typing import List, Optional
from pydantic import BaseModel


class DetailedReportRequest(BaseModel):
    book_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    categories: List[str] = []
