"""Storage package for the local card catalog and scan metrics."""

from .catalog import CatalogStore, get_catalog_store, normalize_catalog_name
from .metrics import ScanMetricsStore, ScanMetricsSummary, get_metrics_store

__all__ = [
    "CatalogStore",
    "get_catalog_store",
    "normalize_catalog_name",
    "ScanMetricsStore",
    "ScanMetricsSummary",
    "get_metrics_store",
]
