"""Scan decision telemetry: one row per scan decision plus rolling summary rates."""

import csv
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..utils.config import resolve_data_path, settings
from ..utils.log import get_logger

DEFAULT_SUMMARY_DAYS = 7

EXPORT_HEADER = [
    "id",
    "created_at",
    "engine",
    "status",
    "matched_by",
    "confidence",
    "latency_ms",
    "false_positive",
]


@dataclass(frozen=True)
class ScanMetricsSummary:
    total: int
    matched: int
    ambiguous: int
    false_positive: int
    direct_match_rate: float
    ambiguous_rate: float
    false_positive_rate: float
    avg_latency_ms: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanMetricsStore:
    """SQLite store for scan decision metrics."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.logger = get_logger(__name__)
        self.db_path = resolve_data_path(str(db_path or settings.METRICS_DB_PATH))
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS scan_metrics (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        created_at TEXT NOT NULL,
                        engine TEXT NOT NULL,
                        status TEXT NOT NULL,
                        matched_by TEXT,
                        confidence REAL,
                        latency_ms INTEGER,
                        false_positive INTEGER DEFAULT 0
                    )
                """
                )
                conn.commit()
        except Exception as e:
            self.logger.error("Error initializing metrics database", error=str(e))
            raise

    def record(
        self,
        engine: Optional[str] = None,
        status: Optional[str] = None,
        matched_by: Optional[str] = None,
        confidence: Optional[float] = None,
        latency_ms: Optional[float] = None,
        false_positive: bool = False,
    ) -> None:
        """Insert one metric row. Failures are logged and never propagate."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO scan_metrics
                    (created_at, engine, status, matched_by, confidence, latency_ms, false_positive)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        _utc_now().isoformat(),
                        str(engine if engine is not None else "unknown"),
                        str(status if status is not None else "unknown"),
                        None if matched_by is None else str(matched_by),
                        None if confidence is None else float(confidence),
                        None if latency_ms is None else int(round(float(latency_ms))),
                        1 if false_positive else 0,
                    ),
                )
                conn.commit()
        except Exception as e:
            self.logger.warning("Scan metric not recorded", status=status, error=str(e))

    def summary(self, since_days: int = DEFAULT_SUMMARY_DAYS) -> ScanMetricsSummary:
        try:
            days = max(1, int(since_days or DEFAULT_SUMMARY_DAYS))
        except (TypeError, ValueError):
            days = DEFAULT_SUMMARY_DAYS
        since = (_utc_now() - timedelta(days=days)).isoformat()

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            totals = conn.execute(
                """
                SELECT
                    COUNT(1) AS total,
                    SUM(CASE WHEN status = 'matched' THEN 1 ELSE 0 END) AS matched,
                    SUM(CASE WHEN status = 'ambiguous' THEN 1 ELSE 0 END) AS ambiguous,
                    SUM(CASE WHEN false_positive = 1 THEN 1 ELSE 0 END) AS false_positive,
                    AVG(latency_ms) AS avg_latency_ms
                FROM scan_metrics
                WHERE created_at >= ?
            """,
                (since,),
            ).fetchone()

        total = int(totals["total"] or 0)
        matched = int(totals["matched"] or 0)
        ambiguous = int(totals["ambiguous"] or 0)
        false_positive = int(totals["false_positive"] or 0)
        avg_latency = totals["avg_latency_ms"]

        return ScanMetricsSummary(
            total=total,
            matched=matched,
            ambiguous=ambiguous,
            false_positive=false_positive,
            direct_match_rate=matched / total if total else 0.0,
            ambiguous_rate=ambiguous / total if total else 0.0,
            false_positive_rate=false_positive / total if total else 0.0,
            avg_latency_ms=None if avg_latency is None else int(round(avg_latency)),
        )

    def export_csv(self, csv_path: Union[str, Path], since_days: int = DEFAULT_SUMMARY_DAYS) -> int:
        """Write the raw metric rows of the window to a CSV file; returns the row count."""
        since = (_utc_now() - timedelta(days=max(1, int(since_days)))).isoformat()
        csv_path = Path(csv_path)
        csv_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM scan_metrics WHERE created_at >= ? ORDER BY id",
                (since,),
            ).fetchall()

        with open(csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=EXPORT_HEADER)
            writer.writeheader()
            for row in rows:
                writer.writerow({key: row[key] for key in EXPORT_HEADER})

        self.logger.info("Scan metrics exported", csv_path=str(csv_path), rows=len(rows))
        return len(rows)


_metrics_store: Optional[ScanMetricsStore] = None


def get_metrics_store() -> ScanMetricsStore:
    global _metrics_store
    if _metrics_store is None:
        _metrics_store = ScanMetricsStore()
    return _metrics_store
