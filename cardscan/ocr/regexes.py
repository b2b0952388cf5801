"""Regex patterns and normalisers for card text extraction."""

import re
from typing import Callable, Iterable, List, Optional

from ..core.types import CardRow, EditionHint

OCR_STOPWORDS = frozenset({
    "legendary",
    "creature",
    "sorcery",
    "instant",
    "artifact",
    "enchantment",
    "planeswalker",
    "battle",
    "land",
    "token",
    "basic",
    "snow",
    "tribal",
    "emblem",
    "counter",
    "power",
    "toughness",
})

# "blc-96", "blc / 96"
SET_DASH_COLLECTOR_PATTERN = re.compile(r"\b([a-z0-9]{2,6})\s*[-/]\s*([0-9]{1,4}[a-z]?)\b")
# "blc 96", "blc 96/350"
SET_SPACE_COLLECTOR_PATTERN = re.compile(
    r"\b([a-z0-9]{2,6})\s+([0-9]{1,4}[a-z]?)\s*(?:/\s*[0-9]{1,4})?\b"
)
# "0096 blc", "96 blc-en"
COLLECTOR_SET_PATTERN = re.compile(
    r"\b([0-9]{1,4}[a-z]?)\s+([a-z0-9]{2,6}(?:[-_][a-z0-9]{2,4})?)\b"
)
# rarity letter first: "m 0096 blc"
RARITY_COLLECTOR_SET_PATTERN = re.compile(
    r"\b([curmsl])\s*([0-9]{1,4}[a-z]?)\s+([a-z0-9]{2,6}(?:[-_][a-z0-9]{2,4})?)\b"
)
SET_CODE_HINT_PATTERN = re.compile(r"\b([a-z0-9]{2,6}(?:[-_][a-z0-9]{2,4})?)\b")
COLLECTOR_HINT_PATTERN = re.compile(r"\b([0-9]{1,4}[a-z]?)\b")
COLLECTOR_NUMBER_PATTERN = re.compile(r"^0*([0-9]+)([a-z]?)$")
EDITION_LINE_PATTERN = re.compile(r"^[a-z0-9]{2,6}\s*[/-]\s*[0-9]{1,4}[a-z]?$", re.IGNORECASE)

MAX_SET_COLLECTOR_CANDIDATES = 16
MAX_NAME_CANDIDATES = 14
MAX_SET_HINTS = 12
MAX_COLLECTOR_HINTS = 16
MAX_NAME_LINE_LENGTH = 42


def normalize_collector_number(value) -> str:
    """
    Normalise a collector number: strip "#", drop leading zeros, keep a one-letter suffix.

    Examples:
        >>> normalize_collector_number("#0096")
        '96'
        >>> normalize_collector_number("012a")
        '12a'
        >>> normalize_collector_number("SWSH001")
        'swsh001'
    """
    raw = str(value if value is not None else "").strip().lower()
    raw = re.sub(r"^#", "", raw)
    if not raw:
        return ""
    match = COLLECTOR_NUMBER_PATTERN.match(raw)
    if not match:
        return raw
    return f"{int(match.group(1))}{match.group(2)}"


def normalize_set_code(value) -> str:
    """
    Normalise a set code to 2-6 lowercase alphanumerics; anything else becomes "".

    Examples:
        >>> normalize_set_code("BLC-EN")
        'blc'
        >>> normalize_set_code("x")
        ''
    """
    raw = str(value if value is not None else "").strip().lower()
    if not raw:
        return ""
    base = re.split(r"[-_/]", raw)[0] or raw
    compact = re.sub(r"[^a-z0-9]", "", base)
    if len(compact) < 2 or len(compact) > 6:
        return ""
    return compact


def unique_by_key(items: Iterable, key: Callable) -> List:
    seen = set()
    unique = []
    for item in items:
        item_key = key(item)
        if item_key in seen:
            continue
        seen.add(item_key)
        unique.append(item)
    return unique


def build_set_collector_candidates(raw_text: Optional[str]) -> List[EditionHint]:
    """
    Extract (set code, collector number) pairs from footer or card text.

    Returns:
        Normalised, de-duplicated pairs with both parts present, in pattern order
    """
    if not isinstance(raw_text, str):
        return []

    text = raw_text.lower()
    pairs = []
    for match in SET_DASH_COLLECTOR_PATTERN.finditer(text):
        pairs.append((match.group(1), match.group(2)))
    for match in SET_SPACE_COLLECTOR_PATTERN.finditer(text):
        pairs.append((match.group(1), match.group(2)))
    for match in COLLECTOR_SET_PATTERN.finditer(text):
        pairs.append((match.group(2), match.group(1)))
    for match in RARITY_COLLECTOR_SET_PATTERN.finditer(text):
        pairs.append((match.group(3), match.group(2)))

    hints = [
        EditionHint(
            set_code=normalize_set_code(set_code),
            collector_number=normalize_collector_number(collector),
            edition_text=raw_text,
        )
        for set_code, collector in pairs
    ]
    hints = [hint for hint in hints if hint.set_code and hint.collector_number]
    hints = unique_by_key(hints, lambda hint: f"{hint.set_code}:{hint.collector_number}")
    return hints[:MAX_SET_COLLECTOR_CANDIDATES]


def build_set_code_hints(raw_text: Optional[str]) -> List[str]:
    if not isinstance(raw_text, str):
        return []
    hints = []
    for match in SET_CODE_HINT_PATTERN.finditer(raw_text.lower()):
        code = normalize_set_code(match.group(1))
        if code:
            hints.append(code)
    return unique_by_key(hints, lambda value: value)[:MAX_SET_HINTS]


def build_collector_hints(raw_text: Optional[str]) -> List[str]:
    if not isinstance(raw_text, str):
        return []
    hints = []
    for match in COLLECTOR_HINT_PATTERN.finditer(raw_text.lower().replace("#", " ")):
        collector = normalize_collector_number(match.group(1))
        if collector:
            hints.append(collector)
    return unique_by_key(hints, lambda value: value)[:MAX_COLLECTOR_HINTS]


def sanitize_line(value: str) -> str:
    value = re.sub("[‘’]", "'", value)
    value = re.sub(r"[^\w,'\-:/\s]|_", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def is_likely_card_name_line(value: str) -> bool:
    if not value or len(value) < 2 or len(value) > MAX_NAME_LINE_LENGTH:
        return False
    if value.isdigit():
        return False
    if EDITION_LINE_PATTERN.match(value):
        return False
    first_word = value.split(" ")[0].lower()
    return bool(first_word) and first_word not in OCR_STOPWORDS


def to_title_case(value: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in value.lower().split(" ") if part)


def build_name_candidates(raw_text: Optional[str]) -> List[str]:
    """
    Turn OCR output into card-name guesses, most likely first.

    Each plausible line yields itself and a title-cased copy; split cards
    ("Fire // Ice") also yield their first half.
    """
    if not isinstance(raw_text, str):
        return []

    lines = [sanitize_line(line) for line in raw_text.split("\n")]
    lines = [line for line in lines if is_likely_card_name_line(line)]

    candidates = []
    for line in lines:
        candidates.append(line)
        candidates.append(to_title_case(line))
        split_card = line.split(" // ")[0]
        if split_card and split_card != line:
            candidates.append(split_card)
            candidates.append(to_title_case(split_card))

    return unique_by_key(candidates, lambda entry: entry.lower())[:MAX_NAME_CANDIDATES]


def edition_hints_from(set_code: str = "", collector_number: str = "",
                       edition_text: str = "") -> List[EditionHint]:
    """Normalised hints from an explicit pair plus every pair found in the edition text."""
    hints = []
    if set_code or collector_number:
        hints.append(EditionHint(
            set_code=normalize_set_code(set_code),
            collector_number=normalize_collector_number(collector_number),
            edition_text=edition_text or "",
        ))
    hints.extend(build_set_collector_candidates(edition_text or ""))
    return [hint for hint in hints if hint.set_code or hint.collector_number]


def row_matches_hint(set_code, collector_number, hint: EditionHint) -> bool:
    row_set = normalize_set_code(set_code)
    row_collector = normalize_collector_number(collector_number)
    if hint.set_code and hint.collector_number:
        return row_set == hint.set_code and row_collector == hint.collector_number
    if hint.set_code:
        return row_set == hint.set_code
    if hint.collector_number:
        return row_collector == hint.collector_number
    return False


def row_matches_edition_text(row: CardRow, edition_text: Optional[str]) -> bool:
    if row is None or not isinstance(edition_text, str) or not edition_text.strip():
        return False
    set_hints = build_set_code_hints(edition_text)
    collector_hints = build_collector_hints(edition_text)
    row_set = normalize_set_code(row.set_code)
    row_collector = normalize_collector_number(row.collector_number)

    if set_hints and collector_hints:
        return row_set in set_hints and row_collector in collector_hints
    if set_hints:
        return row_set in set_hints
    if collector_hints:
        return row_collector in collector_hints
    return False


def disambiguate_by_edition_text(rows: List[CardRow], edition_text: Optional[str]) -> Optional[CardRow]:
    """Pick the single row matching the edition text's set/collector hints, if any."""
    if len(rows) < 2 or not isinstance(edition_text, str) or not edition_text.strip():
        return None

    set_hints = build_set_code_hints(edition_text)
    collector_hints = build_collector_hints(edition_text)
    keyed = [
        (row, normalize_set_code(row.set_code), normalize_collector_number(row.collector_number))
        for row in rows
    ]

    if set_hints and collector_hints:
        for set_hint in set_hints:
            for collector_hint in collector_hints:
                hits = [row for row, row_set, row_collector in keyed
                        if row_set == set_hint and row_collector == collector_hint]
                if len(hits) == 1:
                    return hits[0]

    for set_hint in set_hints:
        hits = [row for row, row_set, _ in keyed if row_set == set_hint]
        if len(hits) == 1:
            return hits[0]

    for collector_hint in collector_hints:
        hits = [row for row, _, row_collector in keyed if row_collector == collector_hint]
        if len(hits) == 1:
            return hits[0]

    return None


def first_edition_hint(raw_text: Optional[str]) -> EditionHint:
    """First set/collector pair of the text, or an empty hint."""
    candidates = build_set_collector_candidates(raw_text or "")
    if not candidates:
        return EditionHint(edition_text=raw_text or "")
    return candidates[0]
