"""Pytest configuration and shared fixtures for card scanner tests."""

import pytest
import tempfile
import shutil
from pathlib import Path

import cv2
import numpy as np

from cardscan.core.types import CardRow, CatalogFingerprintRow, Fingerprint
from cardscan.store.catalog import CatalogStore
from cardscan.store.metrics import ScanMetricsStore


class InMemoryCatalog:
    """Catalog repository double that records every lookup."""

    def __init__(self, fingerprints=None, cards=None):
        self.fingerprints = list(fingerprints or [])
        self.cards = list(cards or [])
        self.bucket_calls = []
        self.set_collector_calls = []
        self.name_calls = []

    def search_fingerprint_candidates_by_bucket(self, bucket16, *, set_code="", collector_number="",
                                                limit=72, neighbor_range=1):
        self.bucket_calls.append({
            "bucket16": bucket16,
            "set_code": set_code,
            "collector_number": collector_number,
            "limit": limit,
            "neighbor_range": neighbor_range,
        })
        return self.fingerprints[:limit]

    def find_by_set_collector(self, set_code, collector_number):
        self.set_collector_calls.append((set_code, collector_number))
        return [
            card for card in self.cards
            if (card.set_code or "").lower() == set_code
            and (card.collector_number or "").lstrip("0") == collector_number.lstrip("0")
        ]

    def search_by_name_normalized(self, name, *, allow_prefix=True, allow_contains=True, limit=12):
        self.name_calls.append((name, allow_prefix, allow_contains))
        needle = name.lower()
        exact = [card for card in self.cards if card.name.lower() == needle]
        if exact:
            return exact[:limit]
        if allow_prefix:
            prefix = [card for card in self.cards if card.name.lower().startswith(needle)]
            if prefix:
                return prefix[:limit]
        if allow_contains:
            return [card for card in self.cards if needle in card.name.lower()][:limit]
        return []


@pytest.fixture(scope="function")
def temp_dirs():
    """Create temporary directories for each test function."""
    temp_dir = Path(tempfile.mkdtemp())
    cache_dir = temp_dir / "cache"
    images_dir = temp_dir / "images"
    cache_dir.mkdir()
    images_dir.mkdir()

    yield {
        'temp_dir': temp_dir,
        'cache_dir': cache_dir,
        'images_dir': images_dir
    }

    # Cleanup
    shutil.rmtree(temp_dir)


@pytest.fixture(scope="function")
def catalog_store(temp_dirs):
    """Empty SQLite catalog in a temporary directory."""
    return CatalogStore(temp_dirs['cache_dir'] / "catalog.db")


@pytest.fixture(scope="function")
def metrics_store(temp_dirs):
    """Empty metrics store in a temporary directory."""
    return ScanMetricsStore(temp_dirs['cache_dir'] / "metrics.db")


@pytest.fixture(scope="function")
def memory_catalog():
    """Factory for in-memory catalog repositories."""
    return InMemoryCatalog


@pytest.fixture(scope="function")
def sample_fingerprint():
    """Fingerprint with fixed hash halves."""
    return Fingerprint(
        phash_hi=0x12345678,
        phash_lo=0x9ABCDEF0,
        dhash_hi=0x0F0F0F0F,
        dhash_lo=0xF0F0F0F0,
        bucket16=0x1234,
    )


@pytest.fixture(scope="function")
def fingerprint_row():
    """Factory building catalog rows at a chosen bit distance from sample_fingerprint."""
    def make_row(card_id, phash_flips=0, dhash_flips=0, set_code="blc", collector_number="1", name=None):
        phash_lo = 0x9ABCDEF0 ^ ((1 << phash_flips) - 1)
        dhash_lo = 0xF0F0F0F0 ^ ((1 << dhash_flips) - 1)
        return CatalogFingerprintRow(
            card_id=card_id,
            set_code=set_code,
            collector_number=collector_number,
            phash_hi=0x12345678,
            phash_lo=phash_lo,
            dhash_hi=0x0F0F0F0F,
            dhash_lo=dhash_lo,
            bucket16=0x1234,
            name=name or card_id,
        )
    return make_row


@pytest.fixture(scope="function")
def sample_cards():
    """A few catalog cards, two sharing a name across printings."""
    return [
        CardRow(id="sol-ring-blc", name="Sol Ring", set_code="blc", collector_number="96",
                released_at="2024-07-26"),
        CardRow(id="sol-ring-cmm", name="Sol Ring", set_code="cmm", collector_number="410",
                released_at="2023-08-04"),
        CardRow(id="lightning-bolt-2x2", name="Lightning Bolt", set_code="2x2", collector_number="117",
                released_at="2022-07-08"),
        CardRow(id="llanowar-elves-dom", name="Llanowar Elves", set_code="dom", collector_number="168",
                released_at="2018-04-27"),
    ]


@pytest.fixture(scope="function")
def textured_card():
    """Deterministic BGR card image with enough edge detail to pass the blur gate."""
    rng = np.random.default_rng(7)
    blocks = rng.integers(0, 256, size=(22, 16, 3), dtype=np.uint8)
    image = cv2.resize(blocks, (256, 352), interpolation=cv2.INTER_NEAREST)
    cv2.rectangle(image, (20, 60), (236, 220), (255, 255, 255), 3)
    cv2.circle(image, (128, 140), 50, (0, 0, 0), 4)
    return image


@pytest.fixture(scope="function")
def framed_photo(textured_card):
    """Camera-like frame with the card placed inside the default card frame."""
    frame = np.full((1000, 1000, 3), 90, dtype=np.uint8)
    # default frame: left 0.18, top 0.22, width 0.64, height from the 63:88 aspect
    card_w = 640
    card_h = int(round(card_w * 88 / 63))
    card_h = min(card_h, 1000 - 220)
    card = cv2.resize(textured_card, (card_w, card_h), interpolation=cv2.INTER_NEAREST)
    frame[220:220 + card_h, 180:180 + card_w] = card
    return frame


# Configure pytest options
def pytest_configure(config):
    """Configure pytest with custom options."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Mark integration tests
        if "integration" in item.name.lower() or "Integration" in str(item.cls):
            item.add_marker(pytest.mark.integration)

        # Mark slow tests
        if any(slow_indicator in item.name.lower() for slow_indicator in ['performance', 'bulk', 'end_to_end']):
            item.add_marker(pytest.mark.slow)

        # Mark unit tests (default)
        if not item.get_closest_marker('integration') and not item.get_closest_marker('slow'):
            item.add_marker(pytest.mark.unit)
