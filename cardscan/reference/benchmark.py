"""Time the fingerprint resolver against a crowded bucket of near-duplicate decoys."""

import random
import time
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table
from typer import Option, Typer

from ..core.types import CatalogFingerprintRow, Fingerprint
from ..fingerprint.hashing import derive_bucket16, split_hex64_to_hi_lo
from ..match.resolver import FingerprintResolver
from ..ocr.regexes import first_edition_hint
from ..utils.log import configure_logging, get_logger

app = Typer()
console = Console()
log = get_logger(__name__)

PHASH_HEX = "0f0f0f0f0f0f0f0f"
DHASH_HEX = "f0f0f0f0f0f0f0f0"
EDITION_TEXT = "M 0096 BLC EN"
TARGET_ID = "target"
DECOY_COUNT = 70
# decoy halves differ from the target by XOR with 0..6
DECOY_JITTER = 7


class SyntheticBucket:
    """Catalog repository whose every bucket lookup returns the same decoys plus the target."""

    def __init__(self, rows: List[CatalogFingerprintRow]):
        self.rows = rows

    def search_fingerprint_candidates_by_bucket(self, bucket16, *, set_code="", collector_number="",
                                                limit=72, neighbor_range=1):
        return self.rows[:limit]

    def find_by_set_collector(self, set_code, collector_number):
        return []

    def search_by_name_normalized(self, name, *, allow_prefix=True, allow_contains=True, limit=12):
        return []


def target_fingerprint() -> Fingerprint:
    phash_hi, phash_lo = split_hex64_to_hi_lo(PHASH_HEX)
    dhash_hi, dhash_lo = split_hex64_to_hi_lo(DHASH_HEX)
    return Fingerprint(phash_hi, phash_lo, dhash_hi, dhash_lo, bucket16=derive_bucket16(phash_hi))


def build_rows(fingerprint: Fingerprint, decoys: int = DECOY_COUNT, seed: Optional[int] = None) -> List[CatalogFingerprintRow]:
    """Decoys within a few bits of ``fingerprint`` in set 'set', then the exact target in blc #96."""
    rng = random.Random(seed)
    rows = [
        CatalogFingerprintRow(
            card_id=f"cand-{i}",
            name=f"Candidate {i}",
            set_code="set",
            collector_number=str(i + 1),
            phash_hi=fingerprint.phash_hi ^ rng.randrange(DECOY_JITTER),
            phash_lo=fingerprint.phash_lo ^ rng.randrange(DECOY_JITTER),
            dhash_hi=fingerprint.dhash_hi ^ rng.randrange(DECOY_JITTER),
            dhash_lo=fingerprint.dhash_lo ^ rng.randrange(DECOY_JITTER),
            bucket16=fingerprint.bucket16,
        )
        for i in range(decoys)
    ]
    rows.append(CatalogFingerprintRow(
        card_id=TARGET_ID,
        name="Target Card",
        set_code="blc",
        collector_number="96",
        phash_hi=fingerprint.phash_hi,
        phash_lo=fingerprint.phash_lo,
        dhash_hi=fingerprint.dhash_hi,
        dhash_lo=fingerprint.dhash_lo,
        bucket16=fingerprint.bucket16,
    ))
    return rows


def run_benchmark(iterations: int = 1000, decoys: int = DECOY_COUNT, seed: Optional[int] = None) -> Dict[str, float]:
    """
    Resolve the target fingerprint ``iterations`` times with the footer hint "M 0096 BLC EN".

    Returns:
        Dictionary with iterations, matched, total_ms and avg_ms
    """
    if iterations < 1:
        raise ValueError("iterations must be at least 1")

    fingerprint = target_fingerprint()
    resolver = FingerprintResolver(SyntheticBucket(build_rows(fingerprint, decoys, seed)))
    hint = first_edition_hint(EDITION_TEXT)

    matched = 0
    started = time.perf_counter()
    for _ in range(iterations):
        result = resolver.resolve(fingerprint, edition_hint=hint)
        if result.status == "matched" and result.card_id == TARGET_ID:
            matched += 1
    total_ms = (time.perf_counter() - started) * 1000

    stats = {
        "iterations": iterations,
        "matched": matched,
        "total_ms": round(total_ms, 2),
        "avg_ms": round(total_ms / iterations, 4),
    }
    log.info("Resolver benchmark finished", decoys=decoys, **stats)
    return stats


@app.command()
def main(
    iterations: int = Option(1000, "--iterations", "-n", help="Resolver calls to time"),
    decoys: int = Option(DECOY_COUNT, "--decoys", help="Near-duplicate rows sharing the target's bucket"),
    seed: Optional[int] = Option(None, "--seed", help="Seed for decoy jitter"),
):
    """Benchmark fingerprint resolution against a crowded bucket."""
    configure_logging()
    stats = run_benchmark(iterations, decoys, seed)

    table = Table(title="Fingerprint Resolver Benchmark")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Iterations", str(stats["iterations"]))
    table.add_row("Matched", str(stats["matched"]))
    table.add_row("Total ms", f"{stats['total_ms']:.2f}")
    table.add_row("Avg ms/query", f"{stats['avg_ms']:.4f}")
    console.print(table)


if __name__ == "__main__":
    app()
