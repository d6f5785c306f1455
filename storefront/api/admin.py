from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, ok
from storefront.core.auth import require_roles
from storefront.services import reporting

router = APIRouter(dependencies=[Depends(require_roles("admin", "manager"))])  # mounted at /api/admin


@router.get("/stats/revenue/export")
def export_revenue(period: str = "daily", format: str = "csv",
                   date_from: Optional[date] = Query(default=None, alias="from"),
                   date_to: Optional[date] = Query(default=None, alias="to"),
                   db: Session = Depends(get_db)):
    content, media_type, filename = reporting.export_revenue(db, period, format, date_from, date_to)
    return Response(content=content, media_type=media_type,
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.get("/stats/revenue/{period}")
def revenue(period: str,
            date_from: Optional[date] = Query(default=None, alias="from"),
            date_to: Optional[date] = Query(default=None, alias="to"),
            db: Session = Depends(get_db)):
    return ok(reporting.revenue(db, period, date_from, date_to))


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db)):
    return ok(reporting.dashboard(db))
