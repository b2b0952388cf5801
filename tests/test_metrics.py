"""Tests for scan decision metrics."""

import csv
import sqlite3

import pytest
from unittest.mock import patch

from cardscan.store.metrics import EXPORT_HEADER, ScanMetricsStore


class TestScanMetricsStore:
    """Test recording and summarising scan decisions."""

    def test_empty_summary(self, metrics_store):
        summary = metrics_store.summary()

        assert summary.total == 0
        assert summary.direct_match_rate == 0.0
        assert summary.ambiguous_rate == 0.0
        assert summary.avg_latency_ms is None

    def test_summary_rates(self, metrics_store):
        metrics_store.record(engine="hybrid_hash", status="matched", matched_by="fingerprint_exact",
                             confidence=0.97, latency_ms=100)
        metrics_store.record(engine="hybrid_hash", status="matched", matched_by="fingerprint_confident",
                             confidence=0.9, latency_ms=200, false_positive=True)
        metrics_store.record(engine="hybrid_hash", status="ambiguous", matched_by="fingerprint_ambiguous",
                             confidence=0.7, latency_ms=300)
        metrics_store.record(engine="hybrid_hash", status="none", latency_ms=400)

        summary = metrics_store.summary(since_days=7)

        assert summary.total == 4
        assert summary.matched == 2
        assert summary.ambiguous == 1
        assert summary.false_positive == 1
        assert summary.direct_match_rate == pytest.approx(0.5)
        assert summary.ambiguous_rate == pytest.approx(0.25)
        assert summary.false_positive_rate == pytest.approx(0.25)
        assert summary.avg_latency_ms == 250
        assert summary.to_dict()["total"] == 4

    def test_missing_fields_default_to_unknown(self, metrics_store):
        metrics_store.record()

        with sqlite3.connect(metrics_store.db_path) as conn:
            row = conn.execute("SELECT engine, status, matched_by, latency_ms FROM scan_metrics").fetchone()
        assert row == ("unknown", "unknown", None, None)

    def test_invalid_window_uses_default(self, metrics_store):
        metrics_store.record(status="matched")
        assert metrics_store.summary(since_days="soon").total == 1
        assert metrics_store.summary(since_days=0).total == 1

    def test_old_rows_fall_outside_window(self, metrics_store):
        with sqlite3.connect(metrics_store.db_path) as conn:
            conn.execute(
                "INSERT INTO scan_metrics (created_at, engine, status) VALUES (?, ?, ?)",
                ("2000-01-01T00:00:00+00:00", "hybrid_hash", "matched"),
            )
            conn.commit()
        metrics_store.record(status="none")

        assert metrics_store.summary(since_days=7).total == 1

    def test_record_failure_is_swallowed(self, metrics_store):
        """Test that a broken database never interrupts scanning."""
        with patch('cardscan.store.metrics.sqlite3.connect', side_effect=sqlite3.OperationalError("locked")):
            metrics_store.record(status="matched")
        assert metrics_store.summary().total == 0

    def test_export_csv(self, metrics_store, temp_dirs):
        metrics_store.record(engine="hybrid_hash", status="matched", matched_by="fingerprint_exact",
                             confidence=0.97, latency_ms=123.6)
        metrics_store.record(engine="legacy_ocr", status="none")
        export_path = temp_dirs['temp_dir'] / "exports" / "metrics.csv"

        count = metrics_store.export_csv(export_path)

        assert count == 2
        with open(export_path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert list(rows[0].keys()) == EXPORT_HEADER
        assert rows[0]["matched_by"] == "fingerprint_exact"
        assert rows[0]["latency_ms"] == "124"
        assert rows[1]["engine"] == "legacy_ocr"

    def test_separate_databases(self, temp_dirs):
        first = ScanMetricsStore(temp_dirs['cache_dir'] / "a.db")
        second = ScanMetricsStore(temp_dirs['cache_dir'] / "b.db")
        first.record(status="matched")
        assert second.summary().total == 0
