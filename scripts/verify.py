"""
Verification Log Report

Summarizes the integrity sweep log written by the reverify_recent_snapshots
Celery task and lists the snapshot workbooks exported so far.
Run from project root: python scripts/verify.py
"""

from datetime import datetime

import pandas as pd

from menu_ledger.services.excel_manager import ExcelManager


def report() -> bool:
    manager = ExcelManager()

    print("=" * 60)
    print("🔍 INTEGRITY SWEEP REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {manager.verification_log_file}")
    print("=" * 60)

    rows = manager.get_verification_log()
    if not rows:
        print("\n❌ No verification results logged yet.")
        print("   Start Celery beat or run the reverify_recent_snapshots task.")
        return False

    df = pd.DataFrame(rows)
    failures = df[~df["is_valid"].astype(bool)]

    print("\n📊 STATISTICS:")
    print(f"   Checks logged: {len(df)}")
    print(f"   Distinct snapshots: {df['snapshot_id'].nunique()}")
    print(f"   Sweeps: {df['logged_at'].nunique()}")

    if failures.empty:
        print("\n✅ No integrity failures recorded")
    else:
        print(f"\n❌ {len(failures)} integrity failure(s):")
        print("-" * 60)
        print(failures[["snapshot_id", "stored_hash", "computed_hash", "verified_at"]].to_string(index=False))

    workbooks = sorted(manager.data_dir.glob("snapshot_*.xlsx"))
    print(f"\n📋 SNAPSHOT WORKBOOKS: {len(workbooks)}")
    for path in workbooks[-5:]:
        print(f"   {path.name}")

    print("\n" + "=" * 60)
    return failures.empty


if __name__ == "__main__":
    raise SystemExit(0 if report() else 1)
