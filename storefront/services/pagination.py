from sqlalchemy import func, select
from sqlalchemy.orm import Session


def paginate(db: Session, stmt, page: int, limit: int, max_limit: int = 100):
    """Rows for one page plus ``{page, limit, total, pages}``."""
    page, limit = max(page, 1), min(max(limit, 1), max_limit)
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()
    return rows, {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}
