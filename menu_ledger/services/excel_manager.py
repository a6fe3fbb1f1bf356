"""
Excel File Manager with Concurrency Control

Process-safe Excel output for auditors:
- Snapshot compliance exports (one workbook per snapshot version)
- Organization price history extracts
- Re-verification sweep log (appended on every sweep)

Every write happens under a FileLock so concurrent Celery workers never
interleave writes to the same workbook.

Version: 1.0.0
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from menu_ledger.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Writes compliance workbooks below the data directory."""

    SUMMARY_COLUMNS = ["field", "value"]

    CATEGORY_COLUMNS = ["id", "name", "slug", "parent_id", "sort_order"]

    ITEM_COLUMNS = [
        "id",
        "name",
        "category_id",
        "price",
        "currency",
        "description",
        "allergens",
        "sort_order",
    ]

    PRICE_HISTORY_COLUMNS = [
        "fact_id",
        "item_id",
        "price",
        "currency",
        "reason",
        "recorded_by",
        "recorded_at",
    ]

    VERIFICATION_LOG_COLUMNS = [
        "snapshot_id",
        "is_valid",
        "stored_hash",
        "computed_hash",
        "verified_at",
        "logged_at",
    ]

    def __init__(self, data_dir: Optional[str] = None, lock_timeout: Optional[int] = None):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.data_directory)
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.export_lock_timeout

    @property
    def verification_log_file(self) -> Path:
        return self.data_dir / "verification_log.xlsx"

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _lock_for(self, file_path: Path) -> FileLock:
        return FileLock(str(file_path) + ".lock", timeout=self.lock_timeout)

    @staticmethod
    def _load_or_create_df(file_path: Path, columns: list) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
                return pd.DataFrame(columns=columns)
        return pd.DataFrame(columns=columns)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # =========================================================================
    # SNAPSHOT EXPORT
    # =========================================================================

    def export_snapshot(self, document: dict[str, Any]) -> dict[str, Any]:
        """
        Write one compliance export document to its own workbook.

        Sheets: Summary (identity, hashes, verification), Categories, Items.
        """
        self._ensure_data_dir()

        snapshot_id = document.get("snapshot_id", "unknown")
        file_path = self.data_dir / (
            f"snapshot_{document.get('organization_id')}_v{document.get('version')}.xlsx"
        )
        result = {
            "success": False,
            "message": "",
            "snapshot_id": snapshot_id,
            "path": None,
            "exported_at": None,
        }

        verification = document.get("verification", {})
        content = document.get("content", {})
        summary = pd.DataFrame(
            [
                ("snapshot_id", snapshot_id),
                ("organization_id", document.get("organization_id")),
                ("organization_name", content.get("organization", {}).get("name")),
                ("version", document.get("version")),
                ("created_at", document.get("created_at")),
                ("published_by", document.get("published_by")),
                ("hash", document.get("hash")),
                ("verification_is_valid", verification.get("is_valid")),
                ("verification_stored_hash", verification.get("stored_hash")),
                ("verification_computed_hash", verification.get("computed_hash")),
                ("integrity_failure", document.get("integrity_failure")),
                ("exported_at", document.get("exported_at")),
            ],
            columns=self.SUMMARY_COLUMNS,
        )
        categories = pd.DataFrame(content.get("categories", []), columns=self.CATEGORY_COLUMNS)
        items = pd.DataFrame(
            [
                {**item, "allergens": ", ".join(item.get("allergens") or [])}
                for item in content.get("items", [])
            ],
            columns=self.ITEM_COLUMNS,
        )

        try:
            with self._lock_for(file_path):
                logger.debug(f"Lock acquired for snapshot {snapshot_id}")

                with pd.ExcelWriter(str(file_path), engine="openpyxl") as writer:
                    summary.to_excel(writer, sheet_name="Summary", index=False)
                    categories.to_excel(writer, sheet_name="Categories", index=False)
                    items.to_excel(writer, sheet_name="Items", index=False)

                export_time = self._now()
                logger.info(f"Snapshot {snapshot_id} exported to {file_path}")

                result["success"] = True
                result["message"] = f"Snapshot {snapshot_id} exported"
                result["path"] = str(file_path)
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for snapshot {snapshot_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting snapshot {snapshot_id}")

        return result

    # =========================================================================
    # PRICE HISTORY EXPORT
    # =========================================================================

    def export_price_history(self, export: dict[str, Any]) -> dict[str, Any]:
        """Write an organization price history extract to a workbook."""
        self._ensure_data_dir()

        organization_id = export.get("organization_id", "unknown")
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        file_path = self.data_dir / f"price_history_{organization_id}_{stamp}.xlsx"
        result = {
            "success": False,
            "message": "",
            "organization_id": organization_id,
            "path": None,
            "row_count": 0,
        }

        df = pd.DataFrame(export.get("entries", []), columns=self.PRICE_HISTORY_COLUMNS)
        try:
            with self._lock_for(file_path):
                df.to_excel(str(file_path), index=False, sheet_name="Price History", engine="openpyxl")

            result["success"] = True
            result["message"] = f"{len(df)} price entries exported"
            result["path"] = str(file_path)
            result["row_count"] = len(df)
            logger.info(f"Price history of {organization_id} exported to {file_path}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for price history of {organization_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting price history of {organization_id}")

        return result

    # =========================================================================
    # VERIFICATION LOG
    # =========================================================================

    def append_verification_log(self, results: list[dict[str, Any]]) -> dict[str, Any]:
        """Append sweep results to the running verification log."""
        self._ensure_data_dir()

        result = {"success": False, "message": "", "appended": 0}
        if not results:
            result["success"] = True
            result["message"] = "Nothing to log"
            return result

        try:
            with self._lock_for(self.verification_log_file):
                df = self._load_or_create_df(self.verification_log_file, self.VERIFICATION_LOG_COLUMNS)

                logged_at = self._now()
                rows = [{**r, "logged_at": logged_at} for r in results]
                new_rows = pd.DataFrame(rows, columns=self.VERIFICATION_LOG_COLUMNS)
                df = new_rows if df.empty else pd.concat([df, new_rows], ignore_index=True)
                df.to_excel(str(self.verification_log_file), index=False, engine="openpyxl")

            result["success"] = True
            result["message"] = f"{len(rows)} verification results logged"
            result["appended"] = len(rows)

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error("Lock timeout for verification log")

        except Exception as e:
            result["message"] = str(e)
            logger.exception("Error appending verification log")

        return result

    def get_verification_log(self) -> list[dict[str, Any]]:
        """Read back every logged verification result."""
        if not self.verification_log_file.exists():
            return []
        try:
            df = pd.read_excel(self.verification_log_file, engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading verification log: {e}")
            return []
