"""SQLite catalog of cards, name aliases and reference fingerprints."""

import re
import sqlite3
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..core.constants import SHORTLIST_LIMIT, SHORTLIST_NEIGHBOR_RANGE
from ..core.types import CardRow, CatalogFingerprintRow, Fingerprint
from ..ocr.regexes import normalize_collector_number, normalize_set_code
from ..utils.config import resolve_data_path, settings
from ..utils.error_handler import CatalogError
from ..utils.log import get_logger

SET_COLLECTOR_LIMIT = 20
NAME_SEARCH_DEFAULT_LIMIT = 12
NAME_SEARCH_MAX_LIMIT = 50

META_CATALOG_VERSION = "catalog_version"
META_CATALOG_SOURCE = "catalog_source"
META_CATALOG_UPDATED_AT = "catalog_updated_at"

_CARD_COLUMNS = "c.id, c.name, c.set_code, c.collector_number, c.mana_cost, c.type_line, c.released_at"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS catalog_cards (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    name_norm TEXT NOT NULL,
    set_code TEXT,
    collector_number TEXT,
    mana_cost TEXT,
    type_line TEXT,
    released_at TEXT
);
CREATE TABLE IF NOT EXISTS catalog_name_alias (
    alias_norm TEXT NOT NULL,
    card_id TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS catalog_card_fingerprint (
    card_id TEXT NOT NULL,
    set_code TEXT,
    collector_number TEXT,
    lang TEXT,
    art_variant TEXT,
    phash_hi INTEGER NOT NULL,
    phash_lo INTEGER NOT NULL,
    dhash_hi INTEGER NOT NULL,
    dhash_lo INTEGER NOT NULL,
    bucket16 INTEGER NOT NULL,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS catalog_meta (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT
);
CREATE INDEX IF NOT EXISTS idx_catalog_cards_name_norm ON catalog_cards(name_norm);
CREATE INDEX IF NOT EXISTS idx_catalog_cards_set_collector ON catalog_cards(set_code, collector_number);
CREATE INDEX IF NOT EXISTS idx_catalog_name_alias_norm ON catalog_name_alias(alias_norm);
CREATE INDEX IF NOT EXISTS idx_catalog_name_alias_card ON catalog_name_alias(card_id);
CREATE INDEX IF NOT EXISTS idx_fingerprint_bucket16 ON catalog_card_fingerprint(bucket16);
CREATE INDEX IF NOT EXISTS idx_fingerprint_set_collector ON catalog_card_fingerprint(set_code, collector_number);
CREATE INDEX IF NOT EXISTS idx_fingerprint_card_id ON catalog_card_fingerprint(card_id);
"""


def normalize_catalog_name(value) -> str:
    """
    Lowercase, strip accents and collapse non-alphanumerics to single spaces.

    Examples:
        >>> normalize_catalog_name("Séance, the Ritual!")
        'seance the ritual'
    """
    if not isinstance(value, str):
        return ""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return re.sub(r"[^a-z0-9]+", " ", stripped).strip()


def escape_like(value: str) -> str:
    return re.sub(r"([%_\\])", r"\\\1", value)


def _lower_or_none(value) -> Optional[str]:
    text = str(value if value is not None else "").strip().lower()
    return text or None


def _card_from_row(row: sqlite3.Row) -> CardRow:
    return CardRow(
        id=row["id"],
        name=row["name"],
        set_code=row["set_code"],
        collector_number=row["collector_number"],
        mana_cost=row["mana_cost"],
        type_line=row["type_line"],
        released_at=row["released_at"],
    )


def _fingerprint_from_row(row: sqlite3.Row) -> CatalogFingerprintRow:
    return CatalogFingerprintRow(
        card_id=row["card_id"],
        set_code=row["set_code"],
        collector_number=row["collector_number"],
        phash_hi=row["phash_hi"],
        phash_lo=row["phash_lo"],
        dhash_hi=row["dhash_hi"],
        dhash_lo=row["dhash_lo"],
        bucket16=row["bucket16"],
        lang=row["lang"] or "en",
        art_variant=row["art_variant"] or "",
        name=row["name"],
    )


class CatalogStore:
    """SQLite-backed catalog repository used by the fingerprint and text resolvers."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.logger = get_logger(__name__)
        self.db_path = resolve_data_path(str(db_path or settings.CATALOG_DB_PATH))
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executescript(_SCHEMA)
                conn.commit()
            self.logger.info("Catalog database initialized", db_path=str(self.db_path))
        except Exception as e:
            self.logger.error("Error initializing catalog database", error=str(e))
            raise CatalogError("Catalog database could not be initialized", {"db_path": str(self.db_path)}) from e

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # Reads

    def search_fingerprint_candidates_by_bucket(
        self,
        bucket16: int,
        *,
        set_code: str = "",
        collector_number: str = "",
        limit: int = SHORTLIST_LIMIT,
        neighbor_range: int = SHORTLIST_NEIGHBOR_RANGE,
    ) -> List[CatalogFingerprintRow]:
        """
        Shortlist reference fingerprints for a bucket.

        Exact-bucket rows come first, those agreeing with the set/collector hint
        ahead of the rest. Neighbouring buckets are only read when the exact
        bucket holds fewer than ``limit`` rows.
        """
        bucket = int(bucket16) & 0xFFFF
        limit = max(1, int(limit))
        hint_set = normalize_set_code(set_code)
        hint_collector = normalize_collector_number(collector_number)
        raw_collector = str(collector_number or "").strip().lower()

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT f.*, c.name AS name
                    FROM catalog_card_fingerprint f
                    LEFT JOIN catalog_cards c ON c.id = f.card_id
                    WHERE f.bucket16 = ?
                    ORDER BY CASE
                        WHEN f.set_code = ? AND (f.collector_number = ? OR f.collector_number = ?) THEN 0
                        WHEN f.set_code = ? THEN 1
                        ELSE 2
                    END, f.rowid
                    LIMIT ?
                    """,
                    (bucket, hint_set, hint_collector, raw_collector, hint_set, limit),
                ).fetchall()

                remaining = limit - len(rows)
                neighbours = [
                    bucket + offset
                    for distance in range(1, max(0, int(neighbor_range)) + 1)
                    for offset in (-distance, distance)
                    if 0 <= bucket + offset <= 0xFFFF
                ]
                if remaining > 0 and neighbours:
                    placeholders = ", ".join("?" for _ in neighbours)
                    rows += conn.execute(
                        f"""
                        SELECT f.*, c.name AS name
                        FROM catalog_card_fingerprint f
                        LEFT JOIN catalog_cards c ON c.id = f.card_id
                        WHERE f.bucket16 IN ({placeholders})
                        ORDER BY ABS(f.bucket16 - ?), f.rowid
                        LIMIT ?
                        """,
                        (*neighbours, bucket, remaining),
                    ).fetchall()

            self.logger.debug("Fingerprint shortlist", bucket16=bucket, rows=len(rows))
            return [_fingerprint_from_row(row) for row in rows]

        except Exception as e:
            self.logger.error("Error searching fingerprint bucket", bucket16=bucket, error=str(e))
            return []

    def find_by_set_collector(self, set_code: str, collector_number: str) -> List[CardRow]:
        set_value = str(set_code or "").strip().lower()
        collector_raw = str(collector_number or "").strip().lower()
        if not set_value or not collector_raw:
            return []

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_CARD_COLUMNS}
                    FROM catalog_cards c
                    WHERE c.set_code = ?
                      AND (c.collector_number = ? OR c.collector_number = ?)
                    ORDER BY c.released_at DESC
                    LIMIT ?
                    """,
                    (set_value, collector_raw, normalize_collector_number(collector_raw), SET_COLLECTOR_LIMIT),
                ).fetchall()
            return [_card_from_row(row) for row in rows]

        except Exception as e:
            self.logger.error(
                "Error finding card by set/collector",
                set_code=set_value,
                collector_number=collector_raw,
                error=str(e),
            )
            return []

    def search_by_name_normalized(
        self,
        name: str,
        *,
        allow_prefix: bool = True,
        allow_contains: bool = True,
        limit: int = NAME_SEARCH_DEFAULT_LIMIT,
    ) -> List[CardRow]:
        """
        Search card names and aliases: exact, then prefix, then contains.

        The first tier that returns rows wins; prefix and contains tiers only
        run when allowed.
        """
        normalized = normalize_catalog_name(name)
        if not normalized:
            return []
        try:
            limit = max(1, min(NAME_SEARCH_MAX_LIMIT, int(limit or NAME_SEARCH_DEFAULT_LIMIT)))
        except (TypeError, ValueError):
            limit = NAME_SEARCH_DEFAULT_LIMIT

        tiers = [("=", normalized)]
        if allow_prefix:
            tiers.append(("LIKE", f"{escape_like(normalized)}%"))
        if allow_contains:
            tiers.append(("LIKE", f"%{escape_like(normalized)}%"))

        try:
            with self._connect() as conn:
                for operator, pattern in tiers:
                    escape = " ESCAPE '\\'" if operator == "LIKE" else ""
                    rows = conn.execute(
                        f"""
                        SELECT {_CARD_COLUMNS}
                        FROM catalog_cards c
                        WHERE c.name_norm {operator} ?{escape}
                           OR c.id IN (
                               SELECT a.card_id FROM catalog_name_alias a
                               WHERE a.alias_norm {operator} ?{escape}
                           )
                        ORDER BY CASE WHEN c.name_norm = ? THEN 0 ELSE 1 END, c.released_at DESC
                        LIMIT ?
                        """,
                        (pattern, pattern, normalized, limit),
                    ).fetchall()
                    if rows:
                        return [_card_from_row(row) for row in rows]
            return []

        except Exception as e:
            self.logger.error("Error searching card names", name=normalized, error=str(e))
            return []

    def get_card(self, card_id: str) -> Optional[CardRow]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_CARD_COLUMNS} FROM catalog_cards c WHERE c.id = ? LIMIT 1",
                    (card_id,),
                ).fetchone()
            return _card_from_row(row) if row else None
        except Exception as e:
            self.logger.error("Error getting card", card_id=card_id, error=str(e))
            return None

    def get_meta(self, key: str) -> Optional[str]:
        if not key:
            return None
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM catalog_meta WHERE key = ? LIMIT 1", (key,)).fetchone()
            return row["value"] if row else None
        except Exception as e:
            self.logger.error("Error reading catalog meta", key=key, error=str(e))
            return None

    def stats(self) -> Dict[str, int]:
        """Row counts per table."""
        counts = {}
        try:
            with self._connect() as conn:
                for table in ("catalog_cards", "catalog_name_alias", "catalog_card_fingerprint"):
                    counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        except Exception as e:
            self.logger.error("Error counting catalog rows", error=str(e))
        return counts

    # Writes

    def upsert_cards(self, cards: Iterable[CardRow]) -> int:
        """Insert or replace catalog cards; set codes are stored lowercase."""
        payload = [
            (
                card.id,
                card.name,
                normalize_catalog_name(card.name),
                _lower_or_none(card.set_code),
                _lower_or_none(card.collector_number),
                card.mana_cost,
                card.type_line,
                card.released_at,
            )
            for card in cards
            if card.id and normalize_catalog_name(card.name)
        ]
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO catalog_cards
                    (id, name, name_norm, set_code, collector_number, mana_cost, type_line, released_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    payload,
                )
                conn.commit()
            self.logger.debug("Cards upserted", count=len(payload))
            return len(payload)

        except Exception as e:
            self.logger.error("Error upserting cards", count=len(payload), error=str(e))
            raise CatalogError("Cards could not be written", {"count": len(payload)}) from e

    def upsert_card(self, card: CardRow) -> None:
        self.upsert_cards([card])

    def add_alias(self, card_id: str, alias: str) -> None:
        alias_norm = normalize_catalog_name(alias)
        if not card_id or not alias_norm:
            return
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    "DELETE FROM catalog_name_alias WHERE card_id = ? AND alias_norm = ?",
                    (card_id, alias_norm),
                )
                conn.execute(
                    "INSERT INTO catalog_name_alias (alias_norm, card_id) VALUES (?, ?)",
                    (alias_norm, card_id),
                )
                conn.commit()
        except Exception as e:
            self.logger.error("Error adding alias", card_id=card_id, alias=alias_norm, error=str(e))
            raise CatalogError("Alias could not be written", {"card_id": card_id}) from e

    def add_fingerprint(
        self,
        card_id: str,
        fingerprint: Fingerprint,
        set_code: Optional[str] = None,
        collector_number: Optional[str] = None,
        lang: str = "en",
        art_variant: str = "",
    ) -> None:
        """Store the reference fingerprint of one card printing, replacing any previous one."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    DELETE FROM catalog_card_fingerprint
                    WHERE card_id = ? AND IFNULL(lang, '') = ? AND IFNULL(art_variant, '') = ?
                    """,
                    (card_id, lang or "", art_variant or ""),
                )
                conn.execute(
                    """
                    INSERT INTO catalog_card_fingerprint
                    (card_id, set_code, collector_number, lang, art_variant,
                     phash_hi, phash_lo, dhash_hi, dhash_lo, bucket16, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        card_id,
                        _lower_or_none(set_code),
                        _lower_or_none(collector_number),
                        lang or "",
                        art_variant or "",
                        int(fingerprint.phash_hi),
                        int(fingerprint.phash_lo),
                        int(fingerprint.dhash_hi),
                        int(fingerprint.dhash_lo),
                        int(fingerprint.bucket16),
                        datetime.now().isoformat(),
                    ),
                )
                conn.commit()
            self.logger.debug("Fingerprint stored", card_id=card_id, bucket16=fingerprint.bucket16)

        except Exception as e:
            self.logger.error("Error storing fingerprint", card_id=card_id, error=str(e))
            raise CatalogError("Fingerprint could not be written", {"card_id": card_id}) from e

    def set_meta(self, key: str, value) -> None:
        if not key:
            return
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO catalog_meta (key, value) VALUES (?, ?)",
                    (key, None if value is None else str(value)),
                )
                conn.commit()
        except Exception as e:
            self.logger.error("Error writing catalog meta", key=key, error=str(e))
            raise CatalogError("Catalog meta could not be written", {"key": key}) from e


_catalog_store: Optional[CatalogStore] = None


def get_catalog_store() -> CatalogStore:
    """Process-wide store on the configured database path, opened on first use."""
    global _catalog_store
    if _catalog_store is None:
        _catalog_store = CatalogStore()
    return _catalog_store
