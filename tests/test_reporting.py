"""Tests for revenue aggregation, export and the dashboard."""

from datetime import date, datetime
from io import BytesIO

import pandas as pd
import pytest

from conftest import auth_header
from storefront.core.errors import ValidationFailed
from storefront.db.models import Order
from storefront.services import reporting

_seq = iter(range(1, 10_000))


def order(db, user, total, created_at, status="processing", payment_status="paid", method="stripe"):
    n = next(_seq)
    obj = Order(order_number=f"ORD-TEST-{n:05d}", user_id=user.id, status=status, payment_status=payment_status,
                payment_method=method, subtotal=total, total_amount=total, shipping_address={},
                created_at=created_at)
    db.add(obj)
    db.commit()
    return obj


@pytest.fixture
def ledger(db, customer):
    order(db, customer, 100_000, datetime(2026, 9, 1, 10))
    order(db, customer, 200_000, datetime(2026, 9, 1, 18))
    order(db, customer, 300_000, datetime(2026, 9, 2, 9), status="delivered", payment_status="pending", method="cod")
    order(db, customer, 400_000, datetime(2026, 9, 2, 9), status="refunded", payment_status="refunded")
    order(db, customer, 500_000, datetime(2026, 9, 2, 9), status="cancelled", payment_status="paid")
    order(db, customer, 600_000, datetime(2026, 9, 3, 9), status="pending", payment_status="pending", method="cod")
    order(db, customer, 700_000, datetime(2025, 12, 31, 23))


class TestRevenue:
    def test_daily(self, db, ledger):
        report = reporting.revenue(db, "daily", date(2026, 9, 1), date(2026, 9, 30))
        assert report["items"] == [
            {"date": "2026-09-01", "revenue": 300_000, "orders": 2},
            {"date": "2026-09-02", "revenue": 300_000, "orders": 1},
        ]
        assert report["summary"] == {"totalRevenue": 600_000, "totalOrders": 2 + 1}

    def test_to_includes_whole_day(self, db, ledger):
        report = reporting.revenue(db, "daily", date(2026, 9, 1), date(2026, 9, 1))
        assert report["summary"]["totalRevenue"] == 300_000

    def test_monthly(self, db, ledger):
        report = reporting.revenue(db, "monthly", date(2025, 1, 1), date(2026, 12, 31))
        assert report["items"] == [
            {"year": 2025, "month": 12, "label": "12/2025", "revenue": 700_000, "orders": 1},
            {"year": 2026, "month": 9, "label": "09/2026", "revenue": 600_000, "orders": 3},
        ]

    def test_yearly(self, db, ledger):
        report = reporting.revenue(db, "yearly", date(2025, 1, 1), date(2026, 12, 31))
        assert [(i["year"], i["revenue"]) for i in report["items"]] == [(2025, 700_000), (2026, 600_000)]

    def test_default_window(self):
        start, end = reporting.resolve_range("daily", today=date(2026, 10, 18))
        assert start == datetime(2026, 9, 19)
        assert end.date() == date(2026, 10, 18)

    def test_bad_period(self):
        with pytest.raises(ValidationFailed):
            reporting.resolve_range("weekly")

    def test_inverted_range(self):
        with pytest.raises(ValidationFailed):
            reporting.resolve_range("daily", date(2026, 9, 2), date(2026, 9, 1))


class TestExport:
    def test_csv_has_total_row(self, db, ledger):
        content, media_type, filename = reporting.export_revenue(db, "daily", "csv", date(2026, 9, 1),
                                                                 date(2026, 9, 30))
        assert media_type == "text/csv"
        assert filename.endswith(".csv")
        df = pd.read_csv(BytesIO(content))
        assert list(df.columns) == ["Period", "Orders", "Revenue"]
        assert df.iloc[-1].tolist() == ["TOTAL", 3, 600_000]

    def test_xlsx(self, db, ledger):
        content, media_type, _ = reporting.export_revenue(db, "monthly", "xlsx", date(2026, 1, 1),
                                                          date(2026, 12, 31))
        assert media_type == reporting.XLSX_MEDIA_TYPE
        df = pd.read_excel(BytesIO(content), engine="openpyxl")
        assert df.iloc[-1]["Period"] == "TOTAL"
        assert df.iloc[-1]["Revenue"] == 600_000

    def test_export_endpoint(self, client, admin, ledger):
        response = client.get("/api/admin/stats/revenue/export",
                              params={"period": "daily", "format": "csv", "from": "2026-09-01", "to": "2026-09-30"},
                              headers=auth_header(admin))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert response.text.strip().splitlines()[-1] == "TOTAL,3,600000"


class TestAdminEndpoints:
    def test_revenue_requires_manager(self, client, customer):
        response = client.get("/api/admin/stats/revenue/daily", headers=auth_header(customer))
        assert response.status_code == 403

    def test_revenue(self, client, admin, ledger):
        response = client.get("/api/admin/stats/revenue/daily", params={"from": "2026-09-01", "to": "2026-09-30"},
                              headers=auth_header(admin))
        assert response.status_code == 200
        assert response.json()["data"]["summary"]["totalRevenue"] == 600_000

    def test_dashboard(self, client, admin, ledger):
        data = client.get("/api/admin/dashboard", headers=auth_header(admin)).json()["data"]
        assert data["orders"] == 7
        assert data["ordersByStatus"]["cancelled"] == 1
        assert data["totalRevenue"] == 1_300_000
        assert len(data["recentOrders"]) == 5
