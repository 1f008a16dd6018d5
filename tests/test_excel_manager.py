"""
Tests for the Excel order ledger and the event dispatcher

Writes real workbooks (pandas + openpyxl) into a temporary directory.
"""
import json
from unittest.mock import patch

import pytest
from filelock import Timeout

from menumaker.core.config import get_settings
from menumaker.domain import DeliveryType, Order, OrderLine, OrderStatus
from menumaker.services.events import CeleryOrderEventDispatcher, status_event_name
from menumaker.services.excel_manager import ExcelManager, LedgerExportError, ledger_row
from menumaker.tasks import export_order_to_excel


def make_order(order_id="ord-1", **overrides):
    values = {
        "id": order_id,
        "business_id": "biz-1",
        "customer_name": "Asha Rao",
        "customer_phone": "+919812345678",
        "delivery_type": DeliveryType.DELIVERY,
        "delivery_address": "12 MG Road",
        "lines": [OrderLine("dish-paneer", 2, 25000, "Paneer Tikka")],
        "subtotal_cents": 50000,
        "delivery_fee_cents": 5000,
        "discount_cents": 5000,
        "total_cents": 50000,
        "currency": "INR",
    }
    values.update(overrides)
    return Order(**values)


class TestLedgerRow:
    """Test flattening orders into ledger rows"""

    def test_row_fields(self):
        row = ledger_row(make_order())

        assert row["order_id"] == "ord-1"
        assert row["delivery_type"] == "delivery"
        assert row["order_status"] == "pending"
        assert json.loads(row["items"]) == [
            {"dish_id": "dish-paneer", "quantity": 2, "unit_price_cents": 25000}
        ]
        assert set(row) | {"exported_at"} == set(ExcelManager.ORDER_COLUMNS)


class TestExcelManager:
    """Test appending to the Excel ledger"""

    def test_export_appends_rows(self, tmp_path):
        first = ExcelManager.export_order(ledger_row(make_order("ord-1")), data_dir=tmp_path)
        second = ExcelManager.export_order(ledger_row(make_order("ord-2")), data_dir=tmp_path)

        assert first["success"] is True
        assert second["exported_at"] is not None

        rows = ExcelManager.get_all_orders(data_dir=tmp_path)
        assert [row["order_id"] for row in rows] == ["ord-1", "ord-2"]
        assert all(
            row["total_cents"] == row["subtotal_cents"] - row["discount_cents"] + row["delivery_fee_cents"]
            for row in rows
        )

    def test_missing_ledger_is_empty(self, tmp_path):
        assert ExcelManager.get_all_orders(data_dir=tmp_path) == []

    def test_clear_all(self, tmp_path):
        ExcelManager.export_order(ledger_row(make_order()), data_dir=tmp_path)

        ExcelManager.clear_all(data_dir=tmp_path)

        assert ExcelManager.get_all_orders(data_dir=tmp_path) == []


class TestCeleryOrderEventDispatcher:
    """Test task queueing without a broker"""

    def test_order_created_queues_export_and_event(self):
        order = make_order()

        with patch("menumaker.tasks.export_order_to_excel.delay") as export, \
                patch("menumaker.tasks.publish_order_event.delay") as publish:
            CeleryOrderEventDispatcher().order_created(order)

        export.assert_called_once_with(ledger_row(order))
        publish.assert_called_once_with("order.created", order.to_dict())

    def test_confirmation_event(self):
        order = make_order(status=OrderStatus.CONFIRMED)

        with patch("menumaker.tasks.publish_order_event.delay") as publish:
            CeleryOrderEventDispatcher().order_status_changed(order, OrderStatus.PENDING)

        event, payload = publish.call_args.args
        assert event == "order.confirmed"
        assert payload["from"] == "pending"
        assert payload["to"] == "confirmed"

    def test_broker_outage_does_not_raise(self):
        with patch("menumaker.tasks.export_order_to_excel.delay", side_effect=ConnectionError("broker down")):
            CeleryOrderEventDispatcher().order_created(make_order())

    def test_status_event_names(self):
        assert status_event_name(OrderStatus.CONFIRMED) == "order.confirmed"
        assert status_event_name(OrderStatus.CANCELLED) == "order.status_changed"


class TestExportTask:
    """Test the Celery export task retries unwritten ledger rows"""

    def test_lock_timeout_reports_failure(self, tmp_path):
        with patch("menumaker.services.excel_manager.FileLock") as file_lock:
            file_lock.return_value.__enter__.side_effect = Timeout(str(tmp_path / "orders.xlsx.lock"))
            result = ExcelManager.export_order(ledger_row(make_order()), data_dir=tmp_path)

        assert result["success"] is False
        assert result["message"].startswith("Lock timeout")

    def test_failed_export_raises_for_retry(self):
        failed = {"success": False, "message": "Lock timeout (10s)", "order_id": "ord-1", "exported_at": None}

        with patch("menumaker.tasks.ExcelManager.export_order", return_value=failed):
            with pytest.raises(LedgerExportError):
                export_order_to_excel(ledger_row(make_order()))

    def test_successful_export_returns_result(self):
        exported = {"success": True, "message": "Order ord-1 exported", "order_id": "ord-1", "exported_at": "now"}

        with patch("menumaker.tasks.ExcelManager.export_order", return_value=exported):
            result = export_order_to_excel(ledger_row(make_order()))

        assert result["success"] is True
        assert "processing_time_seconds" in result


class TestLedgerLocation:
    """Test the ledger path comes from settings"""

    def test_ledger_path_follows_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path))
        monkeypatch.setenv("EXCEL_FILENAME", "ledger.xlsx")
        get_settings.cache_clear()
        try:
            assert ExcelManager.ledger_path() == tmp_path / "ledger.xlsx"
        finally:
            get_settings.cache_clear()

    def test_verify_script_accepts_exported_ledger(self, tmp_path):
        from scripts.verify import verify_excel

        ExcelManager.export_order(ledger_row(make_order("ord-1")), data_dir=tmp_path)
        ExcelManager.export_order(ledger_row(make_order("ord-2")), data_dir=tmp_path)

        assert verify_excel(str(ExcelManager.ledger_path(tmp_path))) is True

    def test_verify_script_flags_duplicates(self, tmp_path):
        from scripts.verify import verify_excel

        for _ in range(2):
            ExcelManager.export_order(ledger_row(make_order("ord-1")), data_dir=tmp_path)

        assert verify_excel(str(ExcelManager.ledger_path(tmp_path))) is False
