"""Build the local fingerprint catalog from a manifest of reference card images."""

from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import cv2
import pandas as pd
from typer import Option, Typer

from ..core.types import CardRow, RegionFrame
from ..fingerprint.extractor import FingerprintExtractor
from ..store.catalog import (
    META_CATALOG_SOURCE,
    META_CATALOG_UPDATED_AT,
    META_CATALOG_VERSION,
    CatalogStore,
)
from ..utils.config import ensure_cache_dir
from ..utils.error_handler import ConfigurationError
from ..utils.log import configure_logging, get_logger
from ..utils.validation import validate_file_path

app = Typer()

REQUIRED_COLUMNS = ("id", "name", "set_code", "collector_number", "image_path")
OPTIONAL_COLUMNS = ("mana_cost", "type_line", "released_at", "lang", "art_variant", "aliases")
ALIAS_SEPARATOR = "|"


def _cell(row, column: str) -> Optional[str]:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def load_manifest(manifest_path: Path) -> pd.DataFrame:
    """
    Read the reference manifest (CSV).

    Required columns: id, name, set_code, collector_number, image_path.
    Optional: mana_cost, type_line, released_at, lang, art_variant and
    aliases ("|"-separated alternative names).
    """
    manifest = pd.read_csv(manifest_path, dtype=str, keep_default_na=False)
    missing = [column for column in REQUIRED_COLUMNS if column not in manifest.columns]
    if missing:
        raise ConfigurationError(
            f"Manifest is missing columns: {', '.join(missing)}",
            {"manifest": str(manifest_path)},
        )
    for column in OPTIONAL_COLUMNS:
        if column not in manifest.columns:
            manifest[column] = ""
    return manifest.drop_duplicates(subset=["id", "lang", "art_variant"], keep="last")


def build_catalog_index(
    manifest_path: Path,
    store: CatalogStore,
    extractor: Optional[FingerprintExtractor] = None,
    region: RegionFrame = None,
    source: str = "manifest",
) -> Dict[str, int]:
    """
    Fingerprint every manifest image and write cards, aliases and fingerprints.

    Image paths are resolved relative to the manifest's directory. Rows whose
    image is missing or unreadable are counted as skipped.

    Returns:
        Counts of cards, fingerprints and skipped rows
    """
    log = get_logger("build_index")
    extractor = extractor or FingerprintExtractor()
    region = region or RegionFrame.full_card()
    manifest_path = Path(manifest_path)
    manifest = load_manifest(manifest_path)

    cards = []
    for _, row in manifest.iterrows():
        if _cell(row, "id") and _cell(row, "name"):
            cards.append(CardRow(
                id=_cell(row, "id"),
                name=_cell(row, "name"),
                set_code=_cell(row, "set_code"),
                collector_number=_cell(row, "collector_number"),
                mana_cost=_cell(row, "mana_cost"),
                type_line=_cell(row, "type_line"),
                released_at=_cell(row, "released_at"),
            ))
    card_count = store.upsert_cards(cards)

    fingerprints = 0
    skipped = 0
    for _, row in manifest.iterrows():
        card_id = _cell(row, "id")
        if not card_id:
            skipped += 1
            continue

        for alias in (_cell(row, "aliases") or "").split(ALIAS_SEPARATOR):
            if alias.strip():
                store.add_alias(card_id, alias)

        image_path = Path(_cell(row, "image_path") or "")
        if not image_path.is_absolute():
            image_path = manifest_path.parent / image_path
        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR) if image_path.is_file() else None
        if image is None:
            log.warning("Reference image unavailable", card_id=card_id, image_path=str(image_path))
            skipped += 1
            continue

        fingerprint = extractor.fingerprint_image(image, region)
        if fingerprint is None:
            log.warning("Reference image too small to fingerprint", card_id=card_id)
            skipped += 1
            continue

        store.add_fingerprint(
            card_id,
            fingerprint,
            set_code=_cell(row, "set_code"),
            collector_number=_cell(row, "collector_number"),
            lang=_cell(row, "lang") or "en",
            art_variant=_cell(row, "art_variant") or "",
        )
        fingerprints += 1

    now = datetime.now()
    store.set_meta(META_CATALOG_VERSION, now.strftime("%Y-%m-%d"))
    store.set_meta(META_CATALOG_SOURCE, source)
    store.set_meta(META_CATALOG_UPDATED_AT, now.isoformat())

    stats = {"cards": card_count, "fingerprints": fingerprints, "skipped": skipped}
    log.info("Catalog index built", manifest=str(manifest_path), **stats)
    return stats


@app.command()
def main(
    manifest: Path = Option(..., "--manifest", "-m", help="CSV manifest of reference images"),
    db_path: Optional[str] = Option(None, "--db", help="Catalog database path"),
    artwork_only: bool = Option(False, "--artwork-only", help="Fingerprint the artwork box instead of the full card"),
):
    """Build the reference fingerprint catalog."""
    configure_logging()
    ensure_cache_dir()
    manifest_path = validate_file_path(manifest, must_exist=True)
    region = RegionFrame.artwork() if artwork_only else RegionFrame.full_card()
    build_catalog_index(manifest_path, CatalogStore(db_path), region=region)


if __name__ == "__main__":
    app()
