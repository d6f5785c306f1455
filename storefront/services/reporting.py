"""Revenue aggregation over paid orders.

An order counts as revenue when it was paid online and not cancelled, or
when it is a cash-on-delivery order that was delivered; refunded orders
never count.
"""
from datetime import date, datetime, time, timedelta
from io import BytesIO
from typing import Optional

import pandas as pd
from sqlalchemy import and_, extract, func, or_, select
from sqlalchemy.orm import Session

from storefront.core.errors import ValidationFailed
from storefront.db.models import Order, OrderStatus, PaymentMethod, PaymentStatus, Product, User, utcnow

PERIODS = ("daily", "monthly", "yearly")

DEFAULT_WINDOW_DAYS = {"daily": 30, "monthly": 365, "yearly": 5 * 365}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def paid_order_filter():
    return and_(
        or_(
            and_(Order.payment_status == PaymentStatus.PAID.value, Order.status != OrderStatus.CANCELLED.value),
            and_(Order.payment_method == PaymentMethod.COD.value, Order.status == OrderStatus.DELIVERED.value),
        ),
        Order.payment_status != PaymentStatus.REFUNDED.value,
        Order.status != OrderStatus.REFUNDED.value,
    )


def resolve_range(period: str, date_from: Optional[date] = None, date_to: Optional[date] = None,
                  today: Optional[date] = None) -> tuple[datetime, datetime]:
    if period not in PERIODS:
        raise ValidationFailed("period must be one of daily, monthly, yearly")
    today = today or utcnow().date()
    end_day = date_to or today
    start_day = date_from or (end_day - timedelta(days=DEFAULT_WINDOW_DAYS[period] - 1))
    if start_day > end_day:
        raise ValidationFailed("'from' must not be after 'to'")
    return datetime.combine(start_day, time.min), datetime.combine(end_day, time.max)


def _group_columns(period: str):
    cols = [extract("year", Order.created_at).label("year")]
    if period in ("daily", "monthly"):
        cols.append(extract("month", Order.created_at).label("month"))
    if period == "daily":
        cols.append(extract("day", Order.created_at).label("day"))
    return cols


def _item(period: str, row) -> dict:
    year = int(row.year)
    revenue, orders = int(row.revenue or 0), int(row.orders or 0)
    if period == "daily":
        key = {"date": f"{year:04d}-{int(row.month):02d}-{int(row.day):02d}"}
    elif period == "monthly":
        month = int(row.month)
        key = {"year": year, "month": month, "label": f"{month:02d}/{year:04d}"}
    else:
        key = {"year": year}
    return {**key, "revenue": revenue, "orders": orders}


def revenue(db: Session, period: str, date_from: Optional[date] = None, date_to: Optional[date] = None) -> dict:
    start, end = resolve_range(period, date_from, date_to)
    cols = _group_columns(period)
    stmt = (
        select(*cols,
               func.coalesce(func.sum(Order.total_amount), 0).label("revenue"),
               func.count(Order.id).label("orders"))
        .where(paid_order_filter(), Order.created_at >= start, Order.created_at <= end)
        .group_by(*cols)
        .order_by(*cols)
    )
    items = [_item(period, row) for row in db.execute(stmt)]
    return {
        "from": start.date().isoformat(),
        "to": end.date().isoformat(),
        "items": items,
        "summary": {
            "totalRevenue": sum(i["revenue"] for i in items),
            "totalOrders": sum(i["orders"] for i in items),
        },
    }


def revenue_frame(report: dict, period: str) -> pd.DataFrame:
    label = {"daily": "date", "monthly": "label", "yearly": "year"}[period]
    df = pd.DataFrame(
        [{"Period": str(i[label]), "Orders": i["orders"], "Revenue": i["revenue"]} for i in report["items"]],
        columns=["Period", "Orders", "Revenue"],
    )
    total = pd.DataFrame([{"Period": "TOTAL",
                           "Orders": report["summary"]["totalOrders"],
                           "Revenue": report["summary"]["totalRevenue"]}])
    return pd.concat([df, total], ignore_index=True)


def export_revenue(db: Session, period: str, fmt: str = "csv", date_from: Optional[date] = None,
                   date_to: Optional[date] = None) -> tuple[bytes, str, str]:
    """(content, media type, filename) for a revenue report download."""
    if fmt not in ("csv", "xlsx"):
        raise ValidationFailed("format must be csv or xlsx")
    report = revenue(db, period, date_from, date_to)
    df = revenue_frame(report, period)
    stamp = utcnow().strftime("%Y%m%d_%H%M%S")
    if fmt == "csv":
        return df.to_csv(index=False).encode("utf-8"), "text/csv", f"revenue_{period}_{stamp}.csv"
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Revenue")
    return output.getvalue(), XLSX_MEDIA_TYPE, f"revenue_{period}_{stamp}.xlsx"


def dashboard(db: Session) -> dict:
    by_status = dict(db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)).all())
    total_revenue = db.execute(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(paid_order_filter())
    ).scalar_one()
    recent = db.execute(select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5)).scalars().all()
    return {
        "users": db.execute(select(func.count(User.id))).scalar_one(),
        "products": db.execute(select(func.count(Product.id)).where(Product.is_active.is_(True))).scalar_one(),
        "orders": sum(by_status.values()),
        "ordersByStatus": {s.value: by_status.get(s.value, 0) for s in OrderStatus},
        "totalRevenue": int(total_revenue or 0),
        "recentOrders": [
            {"id": o.id, "orderNumber": o.order_number, "status": o.status,
             "paymentStatus": o.payment_status, "totalAmount": o.total_amount, "createdAt": o.created_at}
            for o in recent
        ],
    }
