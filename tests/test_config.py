"""Unit tests for configuration management."""

import os
from pathlib import Path

import pytest
from unittest.mock import patch

from cardscan.utils.config import (
    SCANNER_ENGINE_HYBRID,
    SCANNER_ENGINE_LEGACY,
    Settings,
    ensure_cache_dir,
    normalize_boolean,
    normalize_engine,
    project_root,
    resolve_data_path,
    resolve_tesseract_path,
)


class TestSettings:
    """Test Settings class configuration."""

    def test_settings_default_values(self):
        """Test that Settings has correct default values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "INFO"
        assert settings.CATALOG_DB_PATH == "cache/cards-catalog.db"
        assert settings.METRICS_DB_PATH == "cache/scan-metrics.db"
        assert settings.CAMERA_INDEX == 0
        assert settings.TESSERACT_PATH is None
        assert settings.SCANNER_ENGINE == SCANNER_ENGINE_HYBRID
        assert settings.MULTILINGUAL_FALLBACK is False
        assert settings.MAX_VARIANTS == 5
        assert settings.HASH_WORKERS == 1
        assert settings.QUAD_RECTIFY_ENABLED is False

    def test_settings_from_environment(self):
        """Test that Settings can be configured from environment variables."""
        with patch.dict(os.environ, {
            "LOG_LEVEL": "DEBUG",
            "CATALOG_DB_PATH": "custom/catalog.db",
            "CAMERA_INDEX": "1",
            "SCANNER_ENGINE": "legacy_ocr",
            "MULTILINGUAL_FALLBACK": "yes",
            "HASH_WORKERS": "4",
        }):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.CATALOG_DB_PATH == "custom/catalog.db"
        assert settings.CAMERA_INDEX == 1
        assert settings.SCANNER_ENGINE == SCANNER_ENGINE_LEGACY
        assert settings.MULTILINGUAL_FALLBACK is True
        assert settings.HASH_WORKERS == 4

    def test_settings_case_insensitive(self):
        with patch.dict(os.environ, {"log_level": "WARNING", "metrics_db_path": "test/metrics.db"}):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "WARNING"
        assert settings.METRICS_DB_PATH == "test/metrics.db"

    def test_empty_values_fall_back(self):
        with patch.dict(os.environ, {"LOG_LEVEL": " ", "CATALOG_DB_PATH": "", "TESSERACT_PATH": ""}):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "INFO"
        assert settings.CATALOG_DB_PATH == "cache/cards-catalog.db"
        assert settings.TESSERACT_PATH is None

    @pytest.mark.parametrize("raw,expected", [("0", 1), ("3", 3), ("12", 7)])
    def test_max_variants_is_clamped(self, raw, expected):
        with patch.dict(os.environ, {"MAX_VARIANTS": raw}):
            assert Settings(_env_file=None).MAX_VARIANTS == expected

    def test_settings_validation(self):
        """Test that Settings validates input types."""
        with patch.dict(os.environ, {"CAMERA_INDEX": "not_a_number"}):
            with pytest.raises(ValueError):
                Settings(_env_file=None)


class TestNormalizers:
    @pytest.mark.parametrize("raw,expected", [
        ("hybrid_hash", SCANNER_ENGINE_HYBRID),
        (" HYBRID_HASH ", SCANNER_ENGINE_HYBRID),
        ("legacy_ocr", SCANNER_ENGINE_LEGACY),
        ("anything", SCANNER_ENGINE_LEGACY),
        (None, SCANNER_ENGINE_LEGACY),
    ])
    def test_normalize_engine(self, raw, expected):
        assert normalize_engine(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        (True, True), ("on", True), ("1", True), ("false", False), ("off", False), ("maybe", False), (None, False),
    ])
    def test_normalize_boolean(self, raw, expected):
        assert normalize_boolean(raw) is expected

    def test_normalize_boolean_fallback(self):
        assert normalize_boolean("maybe", True) is True


class TestPaths:
    """Test data path resolution and cache directory creation."""

    def test_relative_paths_resolve_under_project_root(self):
        assert resolve_data_path("cache/cards-catalog.db") == project_root() / "cache" / "cards-catalog.db"

    def test_absolute_paths_are_kept(self, tmp_path):
        assert resolve_data_path(str(tmp_path / "x.db")) == tmp_path / "x.db"

    def test_ensure_cache_dir_creates_directories(self, tmp_path):
        with patch('cardscan.utils.config.settings') as mock_settings:
            mock_settings.CATALOG_DB_PATH = str(tmp_path / "catalog" / "cards.db")
            mock_settings.METRICS_DB_PATH = str(tmp_path / "metrics" / "scan.db")

            ensure_cache_dir()

        assert (tmp_path / "catalog").is_dir()
        assert (tmp_path / "metrics").is_dir()


class TestTesseractPath:
    """Test Tesseract path resolution."""

    def test_resolve_tesseract_path_from_settings(self, tmp_path):
        tesseract = tmp_path / "tesseract"
        tesseract.write_text("")
        with patch('cardscan.utils.config.settings') as mock_settings:
            mock_settings.TESSERACT_PATH = str(tesseract)
            assert resolve_tesseract_path() == str(tesseract)

    def test_resolve_tesseract_path_from_which(self):
        with patch('cardscan.utils.config.settings') as mock_settings:
            mock_settings.TESSERACT_PATH = None
            with patch('shutil.which', return_value="/usr/bin/tesseract"):
                assert resolve_tesseract_path() == "/usr/bin/tesseract"

    def test_resolve_tesseract_path_not_found(self):
        with patch('cardscan.utils.config.settings') as mock_settings:
            mock_settings.TESSERACT_PATH = None
            with patch('shutil.which', return_value=None):
                with patch.object(Path, 'exists', return_value=False):
                    with pytest.raises(FileNotFoundError) as exc_info:
                        resolve_tesseract_path()

        assert "Tesseract not found" in str(exc_info.value)
