"""Card Scanner - identify trading cards by perceptual fingerprint with a text-recognition fallback."""

__version__ = "1.0.0"
__author__ = "Card Scanner Team"
__description__ = "Fingerprint-first trading card identification against a local catalog"

from .core.types import Ambiguous, FrameMeta, Matched, NoMatch, ScanResult
from .fingerprint.extractor import FingerprintExtractor
from .match.resolver import FingerprintResolver
from .match.text_resolver import CatalogTextResolver
from .scan.controller import ScanCycleController
from .scan.orchestrator import ScanOrchestrator
from .store.catalog import CatalogStore, get_catalog_store
from .store.metrics import ScanMetricsStore, get_metrics_store
from .utils.config import settings

# Core functionality imports
from .utils.log import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__description__",
    # Core components
    "configure_logging",
    "get_logger",
    "settings",
    "FrameMeta",
    "Matched",
    "Ambiguous",
    "NoMatch",
    "ScanResult",
    "FingerprintExtractor",
    "FingerprintResolver",
    "CatalogTextResolver",
    "ScanOrchestrator",
    "ScanCycleController",
    "CatalogStore",
    "get_catalog_store",
    "ScanMetricsStore",
    "get_metrics_store",
]
