"""Tests for building the fingerprint catalog from reference images."""

import cv2
import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

from cardscan.core.types import RegionFrame
from cardscan.fingerprint.extractor import FingerprintExtractor
from cardscan.reference.build_index import app, build_catalog_index, load_manifest
from cardscan.store.catalog import META_CATALOG_SOURCE, META_CATALOG_VERSION
from cardscan.utils.error_handler import ConfigurationError


@pytest.fixture
def reference_manifest(temp_dirs, textured_card):
    """Manifest with two readable images and one missing image."""
    images_dir = temp_dirs['images_dir']
    cv2.imwrite(str(images_dir / "bolt.png"), textured_card)
    cv2.imwrite(str(images_dir / "ring.png"), np.ascontiguousarray(textured_card[::-1]))

    manifest_path = temp_dirs['temp_dir'] / "manifest.csv"
    pd.DataFrame([
        {"id": "bolt-2x2", "name": "Lightning Bolt", "set_code": "2x2", "collector_number": "117",
         "image_path": "images/bolt.png", "aliases": "Blitzschlag|Foudre"},
        {"id": "ring-blc", "name": "Sol Ring", "set_code": "blc", "collector_number": "96",
         "image_path": str(images_dir / "ring.png"), "aliases": ""},
        {"id": "ghost-dom", "name": "Ghost Card", "set_code": "dom", "collector_number": "1",
         "image_path": "images/missing.png", "aliases": ""},
    ]).to_csv(manifest_path, index=False)
    return manifest_path


class TestLoadManifest:
    def test_missing_required_columns(self, temp_dirs):
        path = temp_dirs['temp_dir'] / "bad.csv"
        pd.DataFrame([{"id": "a", "name": "A"}]).to_csv(path, index=False)

        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(path)
        assert "image_path" in exc_info.value.message

    def test_optional_columns_are_added(self, reference_manifest):
        manifest = load_manifest(reference_manifest)
        assert "lang" in manifest.columns
        assert "art_variant" in manifest.columns
        assert len(manifest) == 3

    def test_duplicate_printings_keep_last(self, temp_dirs):
        path = temp_dirs['temp_dir'] / "dupes.csv"
        pd.DataFrame([
            {"id": "a", "name": "First", "set_code": "x", "collector_number": "1", "image_path": "a.png"},
            {"id": "a", "name": "Second", "set_code": "x", "collector_number": "1", "image_path": "a.png"},
        ]).to_csv(path, index=False)

        manifest = load_manifest(path)
        assert list(manifest["name"]) == ["Second"]


class TestBuildCatalogIndex:
    """Test fingerprinting a manifest into the catalog."""

    def test_build_counts(self, reference_manifest, catalog_store):
        stats = build_catalog_index(reference_manifest, catalog_store, source="unit-test")

        assert stats == {"cards": 3, "fingerprints": 2, "skipped": 1}
        assert catalog_store.stats()["catalog_card_fingerprint"] == 2
        assert catalog_store.stats()["catalog_name_alias"] == 2
        assert catalog_store.get_meta(META_CATALOG_SOURCE) == "unit-test"
        assert catalog_store.get_meta(META_CATALOG_VERSION)

    def test_stored_fingerprint_matches_extractor(self, reference_manifest, catalog_store, textured_card):
        build_catalog_index(reference_manifest, catalog_store)
        expected = FingerprintExtractor().fingerprint_image(textured_card)

        rows = catalog_store.search_fingerprint_candidates_by_bucket(expected.bucket16, neighbor_range=0)
        row = next(row for row in rows if row.card_id == "bolt-2x2")
        assert (row.phash_hi, row.phash_lo, row.dhash_hi, row.dhash_lo) == (
            expected.phash_hi, expected.phash_lo, expected.dhash_hi, expected.dhash_lo
        )
        assert row.set_code == "2x2"

    def test_aliases_are_searchable(self, reference_manifest, catalog_store):
        build_catalog_index(reference_manifest, catalog_store)
        rows = catalog_store.search_by_name_normalized("foudre", allow_prefix=False, allow_contains=False)
        assert [card.id for card in rows] == ["bolt-2x2"]

    def test_artwork_region(self, reference_manifest, catalog_store, textured_card):
        build_catalog_index(reference_manifest, catalog_store, region=RegionFrame.artwork())
        artwork = FingerprintExtractor().fingerprint_image(textured_card, RegionFrame.artwork())

        rows = catalog_store.search_fingerprint_candidates_by_bucket(artwork.bucket16, neighbor_range=0)
        assert "bolt-2x2" in {row.card_id for row in rows}

    def test_rebuild_is_idempotent(self, reference_manifest, catalog_store):
        build_catalog_index(reference_manifest, catalog_store)
        build_catalog_index(reference_manifest, catalog_store)
        assert catalog_store.stats()["catalog_card_fingerprint"] == 2
        assert catalog_store.stats()["catalog_cards"] == 3


class TestBuildIndexScript:
    def test_script_entry_point(self, reference_manifest, temp_dirs):
        db_path = temp_dirs['cache_dir'] / "script.db"
        result = CliRunner().invoke(app, ["--manifest", str(reference_manifest), "--db", str(db_path)])

        assert result.exit_code == 0
        assert db_path.exists()
