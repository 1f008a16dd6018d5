"""
Excel Ledger Verification Script

Verifies data integrity of the Excel order ledger after a simulation:
no duplicate order ids, and every row satisfies
total = subtotal - discount + delivery fee with a non-negative total.

Run from project root: python scripts/verify.py [path/to/orders.xlsx]
Without a path, checks the ledger configured by DATA_DIRECTORY and
EXCEL_FILENAME.

Version: 1.0.0
"""

import os
import sys
from datetime import datetime

import pandas as pd

from menumaker.services.excel_manager import ExcelManager

EXCEL_FILE = str(ExcelManager.ledger_path())

REQUIRED_COLUMNS = [
    "order_id",
    "business_id",
    "subtotal_cents",
    "discount_cents",
    "delivery_fee_cents",
    "total_cents",
    "order_status",
]


def find_total_mismatches(df: pd.DataFrame) -> pd.DataFrame:
    """Rows whose total breaks the pricing invariant."""
    expected = df["subtotal_cents"] - df["discount_cents"] + df["delivery_fee_cents"]
    return df[(df["total_cents"] != expected) | (df["total_cents"] < 0)]


def verify_excel(excel_file: str = EXCEL_FILE) -> bool:
    """Verify ledger integrity after simulation."""

    print("=" * 60)
    print("🔍 EXCEL LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {excel_file}")
    print("=" * 60)

    if not os.path.exists(excel_file):
        print("\n❌ Excel file not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    df = pd.read_excel(excel_file, engine="openpyxl")
    print(f"\n✅ File loaded successfully!")

    print(f"\n📊 STATISTICS:")
    print(f"   Total Orders: {len(df)}")
    print(f"   Businesses: {df['business_id'].nunique() if 'business_id' in df.columns else 0}")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n❌ Missing Columns: {missing}")
        return False
    print(f"\n✅ All required columns present")

    ok = True

    duplicates = int(df["order_id"].duplicated().sum())
    if duplicates > 0:
        print(f"\n❌ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print(f"✅ No duplicate order IDs")

    mismatches = find_total_mismatches(df)
    if len(mismatches) > 0:
        print(f"\n❌ {len(mismatches)} rows break total = subtotal - discount + delivery fee:")
        print(mismatches[["order_id", "subtotal_cents", "discount_cents", "delivery_fee_cents", "total_cents"]]
              .head(10).to_string(index=False))
        ok = False
    else:
        print(f"✅ Every total adds up")

    if len(df) > 0:
        print(f"\n💰 REVENUE (cents):")
        print(f"   Total: {int(df['total_cents'].sum())}")
        print(f"   Average: {int(df['total_cents'].mean())}")

        print(f"\n📋 RECENT ORDERS:")
        print("-" * 60)
        cols = ["order_id", "customer_name", "total_cents", "order_status"]
        cols = [c for c in cols if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION PASSED" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else EXCEL_FILE
    sys.exit(0 if verify_excel(path) else 1)
