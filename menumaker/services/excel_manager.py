"""
Excel Order Ledger with Concurrency Control

Appends every created order to an Excel ledger. Celery workers run exports
in parallel, so each read-modify-write of the workbook happens under a
file lock.

Version: 1.0.0
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from menumaker.core.config import get_settings
from menumaker.domain import Order

logger = logging.getLogger(__name__)


class LedgerExportError(Exception):
    """A ledger row could not be written; the export task retries on it."""


def ledger_row(order: Order) -> dict[str, Any]:
    """Flatten an order into one ledger row (JSON-serializable for Celery)."""
    return {
        "order_id": order.id,
        "business_id": order.business_id,
        "date_time": order.created_at.isoformat(),
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_email": order.customer_email,
        "delivery_type": order.delivery_type.value,
        "delivery_address": order.delivery_address,
        "items": json.dumps([
            {"dish_id": line.dish_id, "quantity": line.quantity, "unit_price_cents": line.unit_price_cents}
            for line in order.lines
        ]),
        "subtotal_cents": order.subtotal_cents,
        "discount_cents": order.discount_cents,
        "delivery_fee_cents": order.delivery_fee_cents,
        "total_cents": order.total_cents,
        "currency": order.currency,
        "coupon_id": order.coupon_id,
        "order_status": order.status.value,
    }


class ExcelManager:
    """Thread- and process-safe Excel ledger writer."""

    ORDER_COLUMNS = [
        "order_id",
        "business_id",
        "date_time",
        "customer_name",
        "customer_phone",
        "customer_email",
        "delivery_type",
        "delivery_address",
        "items",
        "subtotal_cents",
        "discount_cents",
        "delivery_fee_cents",
        "total_cents",
        "currency",
        "coupon_id",
        "order_status",
        "exported_at",
    ]

    @classmethod
    def _paths(cls, data_dir: Optional[Path] = None) -> tuple[Path, Path]:
        settings = get_settings()
        data_dir = Path(data_dir or settings.data_directory)
        ledger = data_dir / settings.excel_filename
        return ledger, ledger.with_name(ledger.name + ".lock")

    @classmethod
    def ledger_path(cls, data_dir: Optional[Path] = None) -> Path:
        """Workbook location from DATA_DIRECTORY and EXCEL_FILENAME."""
        ledger, _ = cls._paths(data_dir)
        return ledger

    @classmethod
    def _load_or_create_df(cls, file_path: Path) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            return pd.read_excel(file_path, engine="openpyxl")
        return pd.DataFrame(columns=cls.ORDER_COLUMNS)

    @classmethod
    def export_order(cls, order_data: dict[str, Any], data_dir: Optional[Path] = None) -> dict[str, Any]:
        """
        Append one order to the ledger under the file lock.

        Args:
            order_data: Row produced by `ledger_row`
            data_dir: Override of the configured data directory

        Returns:
            dict: success flag, message, order id and export time
        """
        ledger, lock_path = cls._paths(data_dir)
        ledger.parent.mkdir(parents=True, exist_ok=True)

        order_id = order_data.get("order_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(lock_path), timeout=get_settings().excel_lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for Order {order_id}")

                df = cls._load_or_create_df(ledger)

                export_time = datetime.now().isoformat()
                new_row = {column: order_data.get(column) for column in cls.ORDER_COLUMNS}
                new_row["exported_at"] = export_time

                new_df = pd.DataFrame([new_row], columns=cls.ORDER_COLUMNS)
                df = new_df if df.empty else pd.concat([df, new_df], ignore_index=True)
                df.to_excel(str(ledger), index=False, engine="openpyxl")

                logger.info(f"Order {order_id} exported to Excel")

                result["success"] = True
                result["message"] = f"Order {order_id} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({get_settings().excel_lock_timeout}s)"
            logger.error(f"Lock timeout for Order {order_id}")

        return result

    @classmethod
    def get_all_orders(cls, data_dir: Optional[Path] = None) -> list[dict[str, Any]]:
        """Get all ledger rows."""
        ledger, _ = cls._paths(data_dir)
        if not ledger.exists():
            return []
        df = pd.read_excel(ledger, engine="openpyxl")
        return df.to_dict("records")

    @classmethod
    def clear_all(cls, data_dir: Optional[Path] = None) -> bool:
        """Delete the ledger and its lock file."""
        for path in cls._paths(data_dir):
            if path.exists():
                path.unlink()
        logger.info("Excel ledger cleared")
        return True
