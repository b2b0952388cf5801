"""Tests for the SQLite card catalog."""

import sqlite3

import pytest
from unittest.mock import patch

from cardscan.core.types import CardRow, Fingerprint
from cardscan.store.catalog import (
    META_CATALOG_VERSION,
    CatalogStore,
    escape_like,
    normalize_catalog_name,
)
from cardscan.utils.error_handler import CatalogError


def make_fingerprint(bucket16, phash_lo=0):
    return Fingerprint(
        phash_hi=(bucket16 << 16) | 0x0001,
        phash_lo=phash_lo,
        dhash_hi=0x0F0F0F0F,
        dhash_lo=0xF0F0F0F0,
        bucket16=bucket16,
    )


class TestNameNormalization:
    def test_normalize_catalog_name(self):
        assert normalize_catalog_name("Séance, the Ritual!") == "seance the ritual"
        assert normalize_catalog_name("  Jace's   Ruse ") == "jace s ruse"
        assert normalize_catalog_name(None) == ""

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestCatalogStore:
    """Test CatalogStore reads and writes."""

    def test_initializes_schema(self, catalog_store):
        with sqlite3.connect(catalog_store.db_path) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"catalog_cards", "catalog_name_alias", "catalog_card_fingerprint", "catalog_meta"} <= tables

    def test_init_failure_raises_catalog_error(self, temp_dirs):
        with patch('cardscan.store.catalog.sqlite3.connect', side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(CatalogError):
                CatalogStore(temp_dirs['cache_dir'] / "broken.db")

    def test_upsert_and_get_card(self, catalog_store, sample_cards):
        assert catalog_store.upsert_cards(sample_cards) == 4
        card = catalog_store.get_card("sol-ring-blc")
        assert card.name == "Sol Ring"
        assert card.set_code == "blc"
        assert catalog_store.get_card("missing") is None

    def test_upsert_replaces_card(self, catalog_store):
        catalog_store.upsert_card(CardRow(id="a", name="Old Name", set_code="ABC"))
        catalog_store.upsert_card(CardRow(id="a", name="New Name", set_code="ABC"))
        assert catalog_store.get_card("a").name == "New Name"
        assert catalog_store.stats()["catalog_cards"] == 1

    def test_upsert_skips_nameless_cards(self, catalog_store):
        assert catalog_store.upsert_cards([CardRow(id="a", name="!!!")]) == 0

    def test_find_by_set_collector(self, catalog_store, sample_cards):
        catalog_store.upsert_cards(sample_cards + [
            CardRow(id="padded", name="Padded", set_code="xyz", collector_number="0007"),
        ])
        assert [card.id for card in catalog_store.find_by_set_collector("blc", "96")] == ["sol-ring-blc"]
        assert [card.id for card in catalog_store.find_by_set_collector("BLC", "96")] == ["sol-ring-blc"]
        assert [card.id for card in catalog_store.find_by_set_collector("xyz", "0007")] == ["padded"]
        assert catalog_store.find_by_set_collector("", "96") == []

    def test_find_by_set_collector_newest_first(self, catalog_store):
        catalog_store.upsert_cards([
            CardRow(id="old", name="Island", set_code="dom", collector_number="250", released_at="2018-01-01"),
            CardRow(id="new", name="Island", set_code="dom", collector_number="250", released_at="2020-01-01"),
        ])
        assert [card.id for card in catalog_store.find_by_set_collector("dom", "250")] == ["new", "old"]

    def test_name_search_tiers(self, catalog_store, sample_cards):
        catalog_store.upsert_cards(sample_cards)

        exact = catalog_store.search_by_name_normalized("sol ring", allow_prefix=False, allow_contains=False)
        assert {card.id for card in exact} == {"sol-ring-blc", "sol-ring-cmm"}

        prefix = catalog_store.search_by_name_normalized("Llanowar", allow_prefix=True, allow_contains=False)
        assert [card.id for card in prefix] == ["llanowar-elves-dom"]

        assert catalog_store.search_by_name_normalized("bolt", allow_prefix=True, allow_contains=False) == []
        contains = catalog_store.search_by_name_normalized("bolt", allow_prefix=False, allow_contains=True)
        assert [card.id for card in contains] == ["lightning-bolt-2x2"]

    def test_name_search_limit_is_clamped(self, catalog_store):
        catalog_store.upsert_cards([CardRow(id=f"g{i}", name=f"Goblin {i}") for i in range(60)])
        assert len(catalog_store.search_by_name_normalized("goblin", limit=500)) == 50
        assert len(catalog_store.search_by_name_normalized("goblin", limit=0)) == 12

    def test_alias_search(self, catalog_store, sample_cards):
        catalog_store.upsert_cards(sample_cards)
        catalog_store.add_alias("lightning-bolt-2x2", "Blitzschlag")
        catalog_store.add_alias("lightning-bolt-2x2", "Blitzschlag")

        rows = catalog_store.search_by_name_normalized("blitzschlag", allow_prefix=False, allow_contains=False)
        assert [card.id for card in rows] == ["lightning-bolt-2x2"]
        assert catalog_store.stats()["catalog_name_alias"] == 1

    def test_meta_round_trip(self, catalog_store):
        assert catalog_store.get_meta(META_CATALOG_VERSION) is None
        catalog_store.set_meta(META_CATALOG_VERSION, "2026-10-01")
        assert catalog_store.get_meta(META_CATALOG_VERSION) == "2026-10-01"


class TestFingerprintShortlist:
    """Test bucket shortlisting."""

    def test_exact_bucket_rows(self, catalog_store):
        catalog_store.upsert_cards([CardRow(id="a", name="Alpha")])
        catalog_store.add_fingerprint("a", make_fingerprint(0x1234), set_code="BLC", collector_number="96")

        rows = catalog_store.search_fingerprint_candidates_by_bucket(0x1234)
        assert len(rows) == 1
        assert rows[0].card_id == "a"
        assert rows[0].name == "Alpha"
        assert rows[0].set_code == "blc"
        assert rows[0].phash_hi == (0x1234 << 16) | 1
        assert rows[0].dhash_lo == 0xF0F0F0F0

    def test_neighbour_buckets_fill_shortlist(self, catalog_store):
        catalog_store.add_fingerprint("same", make_fingerprint(0x1000))
        catalog_store.add_fingerprint("below", make_fingerprint(0x0FFF))
        catalog_store.add_fingerprint("above", make_fingerprint(0x1001))
        catalog_store.add_fingerprint("far", make_fingerprint(0x1003))

        rows = catalog_store.search_fingerprint_candidates_by_bucket(0x1000, neighbor_range=1)
        assert rows[0].card_id == "same"
        assert {row.card_id for row in rows} == {"same", "below", "above"}

    def test_neighbours_skipped_when_bucket_is_full(self, catalog_store):
        for i in range(3):
            catalog_store.add_fingerprint(f"same-{i}", make_fingerprint(0x2000, phash_lo=i))
        catalog_store.add_fingerprint("neighbour", make_fingerprint(0x2001))

        rows = catalog_store.search_fingerprint_candidates_by_bucket(0x2000, limit=3)
        assert {row.card_id for row in rows} == {"same-0", "same-1", "same-2"}

    def test_hint_rows_come_first(self, catalog_store):
        catalog_store.add_fingerprint("other", make_fingerprint(0x3000), set_code="cmm", collector_number="410")
        catalog_store.add_fingerprint("hinted", make_fingerprint(0x3000), set_code="blc", collector_number="96")

        rows = catalog_store.search_fingerprint_candidates_by_bucket(0x3000, set_code="BLC", collector_number="0096")
        assert rows[0].card_id == "hinted"

    def test_add_fingerprint_replaces_printing(self, catalog_store):
        catalog_store.add_fingerprint("a", make_fingerprint(0x4000))
        catalog_store.add_fingerprint("a", make_fingerprint(0x4001))
        catalog_store.add_fingerprint("a", make_fingerprint(0x4002), lang="ja")

        assert catalog_store.stats()["catalog_card_fingerprint"] == 2
        assert catalog_store.search_fingerprint_candidates_by_bucket(0x4000, neighbor_range=0) == []

    def test_search_failure_returns_empty(self, catalog_store):
        with patch.object(catalog_store, '_connect', side_effect=sqlite3.OperationalError("gone")):
            assert catalog_store.search_fingerprint_candidates_by_bucket(1) == []
            assert catalog_store.find_by_set_collector("blc", "96") == []
            assert catalog_store.search_by_name_normalized("sol ring") == []

    def test_write_failure_raises(self, catalog_store):
        with patch('cardscan.store.catalog.sqlite3.connect', side_effect=sqlite3.OperationalError("readonly")):
            with pytest.raises(CatalogError):
                catalog_store.add_fingerprint("a", make_fingerprint(1))
