"""Configuration and settings management."""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path

SCANNER_ENGINE_HYBRID = "hybrid_hash"
SCANNER_ENGINE_LEGACY = "legacy_ocr"


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Local catalog and telemetry
    CATALOG_DB_PATH: str = "cache/cards-catalog.db"
    METRICS_DB_PATH: str = "cache/scan-metrics.db"

    # Camera settings
    CAMERA_INDEX: int = 0

    # OCR settings
    TESSERACT_PATH: Optional[str] = None

    # Scanner
    SCANNER_ENGINE: str = SCANNER_ENGINE_HYBRID
    MULTILINGUAL_FALLBACK: bool = False
    MAX_VARIANTS: int = 5
    HASH_WORKERS: int = 1
    BLUR_VARIANCE_FLOOR: float = 15.0
    QUAD_RECTIFY_ENABLED: bool = False

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "INFO"
        return v

    @field_validator('CATALOG_DB_PATH', mode='before')
    @classmethod
    def validate_catalog_path(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "cache/cards-catalog.db"
        return v

    @field_validator('METRICS_DB_PATH', mode='before')
    @classmethod
    def validate_metrics_path(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "cache/scan-metrics.db"
        return v

    @field_validator('TESSERACT_PATH', mode='before')
    @classmethod
    def validate_tesseract_path(cls, v):
        """Convert empty/whitespace strings to None."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('SCANNER_ENGINE', mode='before')
    @classmethod
    def validate_engine(cls, v):
        """Anything that is not the hash engine falls back to text-only scanning."""
        return normalize_engine(v)

    @field_validator('MULTILINGUAL_FALLBACK', mode='before')
    @classmethod
    def validate_multilingual(cls, v):
        return normalize_boolean(v, False)

    @field_validator('MAX_VARIANTS', mode='after')
    @classmethod
    def validate_max_variants(cls, v):
        """Variant count is bounded by the seven jitter seeds."""
        return max(1, min(7, v))

    @field_validator('HASH_WORKERS', mode='after')
    @classmethod
    def validate_hash_workers(cls, v):
        return max(1, v)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


def normalize_engine(value) -> str:
    raw = str(value if value is not None else "").strip().lower()
    if raw == SCANNER_ENGINE_HYBRID:
        return SCANNER_ENGINE_HYBRID
    return SCANNER_ENGINE_LEGACY


def normalize_boolean(value, fallback: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    return fallback


# Global settings instance
settings = Settings()


def project_root() -> Path:
    return Path(__file__).parent.parent.parent


def resolve_data_path(path: str) -> Path:
    """Resolve a settings path relative to the project root unless it is absolute."""
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return project_root() / candidate


def ensure_cache_dir():
    """Ensure the directories holding the catalog and metrics databases exist."""
    for db_path in (settings.CATALOG_DB_PATH, settings.METRICS_DB_PATH):
        resolve_data_path(db_path).parent.mkdir(parents=True, exist_ok=True)


def resolve_tesseract_path() -> str:
    """Get Tesseract path, with fallback to common locations."""
    if settings.TESSERACT_PATH and Path(settings.TESSERACT_PATH).exists():
        return settings.TESSERACT_PATH

    # Try to find tesseract in PATH
    import shutil
    tesseract_path = shutil.which("tesseract")
    if tesseract_path:
        return tesseract_path

    common_paths = [
        "/opt/homebrew/bin/tesseract",  # Apple Silicon Homebrew
        "/usr/local/bin/tesseract",     # Intel Homebrew
        "/usr/bin/tesseract",           # System package
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    raise FileNotFoundError(
        "Tesseract not found. Install it (e.g. brew install tesseract) or set TESSERACT_PATH"
    )
