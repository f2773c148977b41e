"""Reuse of prior manual corrections on freshly parsed lines.

A feedback entry records that a reviewer assigned a catalog product to a
line the parser had read as ``detected_description``/``detected_sku``.
Lookups are keyed on normalized values:

- SKU: trimmed and lower-cased
- description: diacritics folded, lower-cased, non-alphanumerics collapsed
  to single spaces, in several variants (see ``description_key_variants``)

Matching strategies, first match wins: exact SKU, exact description+SKU,
exact description, then an edit-distance search over all entries.
"""

import logging
import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

import Levenshtein

from services.parsing.schema import InvoiceLineDraft, ParserFeedbackEntry
from services.parsing.text import merge_warnings

logger = logging.getLogger(__name__)

MatchStrategy = Literal["sku", "combined", "description", "fuzzy"]

EXACT_MATCH_CONFIDENCE = 0.96
FUZZY_MATCH_CONFIDENCE = 0.90

MANUALLY_ASSIGNED = "manually assigned"
FUZZY_MATCH_TAG = "fuzzy match"
TEXT_MATCH_TAG = "text-based match"
TEXT_MATCH_WARNING = "text-based feedback match"
FUZZY_MATCH_WARNING = "fuzzy feedback match"

# Leading textual tokens used for the short description key
SHORT_KEY_TOKENS = 4

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_HAS_LETTER = re.compile(r"[a-z]")
_EPOCH = datetime.min.replace(tzinfo=UTC)


def normalize_description(value: str | None) -> str:
    """Fold diacritics, lower-case and collapse non-alphanumerics ("Käse-Brot" -> "kase brot")."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    folded = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_ALNUM.sub(" ", folded.lower()).strip()


def description_key_variants(value: str | None) -> list[str]:
    """Lookup keys for a description.

    Variants, deduplicated in this order: the full normalized text, only the
    tokens containing a letter, and the first four of those tokens. The
    latter two make keys robust against quantities and prices that ended up
    in a raw source span.
    """
    tokens = normalize_description(value).split()
    if not tokens:
        return []
    keys = [" ".join(tokens)]
    textual = [token for token in tokens if _HAS_LETTER.search(token)]
    if textual:
        keys.append(" ".join(textual))
        keys.append(" ".join(textual[:SHORT_KEY_TOKENS]))
    return list(dict.fromkeys(keys))


def normalize_sku(value: str | None) -> str:
    return value.strip().lower() if value else ""


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insertions, deletions, substitutions all cost 1)."""
    return Levenshtein.distance(a, b)


def fuzzy_threshold(a: str, b: str) -> int:
    """Accepted edit distance: 20 % of the longer string, but at least 2."""
    return max(2, int(max(len(a), len(b)) * 0.2))


@dataclass
class FeedbackLookup:
    """Indices over one supplier's feedback snapshot."""

    by_sku: dict[str, list[ParserFeedbackEntry]] = field(default_factory=dict)
    by_combined: dict[str, list[ParserFeedbackEntry]] = field(default_factory=dict)
    by_description: dict[str, list[ParserFeedbackEntry]] = field(default_factory=dict)
    entries: list[ParserFeedbackEntry] = field(default_factory=list)


@dataclass(frozen=True)
class FeedbackMatch:
    entry: ParserFeedbackEntry
    strategy: MatchStrategy


@dataclass(frozen=True)
class FeedbackResult:
    """Lines after feedback application plus document level parser warnings."""

    items: list[InvoiceLineDraft]
    warnings: tuple[str, ...] = ()


def _combined_key(description_key: str, sku_key: str) -> str:
    return f"{description_key}__{sku_key}"


def _add(index: dict[str, list[ParserFeedbackEntry]], key: str, entry: ParserFeedbackEntry) -> None:
    bucket = index.setdefault(key, [])
    if entry not in bucket:
        bucket.append(entry)


def build_feedback_lookup(feedback: Iterable[ParserFeedbackEntry] | None) -> FeedbackLookup:
    """Index feedback entries by SKU, description+SKU and description.

    Entries with neither a usable description nor a SKU are ignored.
    """
    lookup = FeedbackLookup()
    for entry in feedback or ():
        description_keys = description_key_variants(entry.detected_description)
        sku_key = normalize_sku(entry.detected_sku)
        if not description_keys and not sku_key:
            continue

        if sku_key:
            _add(lookup.by_sku, sku_key, entry)
        for key in description_keys:
            _add(lookup.by_description, key, entry)
            if sku_key:
                _add(lookup.by_combined, _combined_key(key, sku_key), entry)
        lookup.entries.append(entry)
    return lookup


def pick_preferred_entry(entries: Sequence[ParserFeedbackEntry] | None) -> ParserFeedbackEntry | None:
    """Prefer entries with a concrete product assignment, then the most recently updated.

    On a full tie the earlier entry is kept.
    """
    best: ParserFeedbackEntry | None = None
    for entry in entries or ():
        if best is None:
            best = entry
            continue
        best_has_product = best.assigned_product_id is not None
        entry_has_product = entry.assigned_product_id is not None
        if best_has_product != entry_has_product:
            if entry_has_product:
                best = entry
            continue
        if _timestamp(entry) > _timestamp(best):
            best = entry
    return best


def _timestamp(entry: ParserFeedbackEntry) -> datetime:
    updated_at = entry.updated_at
    if updated_at is None:
        return _EPOCH
    return updated_at if updated_at.tzinfo else updated_at.replace(tzinfo=UTC)


def _candidate_keys(line: InvoiceLineDraft) -> list[str]:
    keys = description_key_variants(line.source.raw) + description_key_variants(line.product_name)
    return list(dict.fromkeys(key for key in keys if key))


def find_feedback_match(line: InvoiceLineDraft, lookup: FeedbackLookup) -> FeedbackMatch | None:
    """Find the feedback entry for a line using the strategies in priority order."""
    if not lookup.entries:
        return None
    sku_key = normalize_sku(line.product_sku)
    candidate_keys = _candidate_keys(line)

    if sku_key:
        entry = pick_preferred_entry(lookup.by_sku.get(sku_key))
        if entry is not None:
            return FeedbackMatch(entry, "sku")
        for key in candidate_keys:
            entry = pick_preferred_entry(lookup.by_combined.get(_combined_key(key, sku_key)))
            if entry is not None:
                return FeedbackMatch(entry, "combined")

    for key in candidate_keys:
        entry = pick_preferred_entry(lookup.by_description.get(key))
        if entry is not None:
            return FeedbackMatch(entry, "description")

    best: tuple[int, ParserFeedbackEntry] | None = None
    for entry in lookup.entries:
        for entry_key in description_key_variants(entry.detected_description):
            for key in candidate_keys:
                distance = levenshtein_distance(key, entry_key)
                if distance <= fuzzy_threshold(key, entry_key) and (best is None or distance < best[0]):
                    best = (distance, entry)
    if best is None:
        return None
    return FeedbackMatch(best[1], "fuzzy")


def is_already_applied(line: InvoiceLineDraft, entry: ParserFeedbackEntry) -> bool:
    """Whether applying ``entry`` would leave every field it specifies unchanged."""
    return (
        (entry.assigned_product_id is None or line.product_id == entry.assigned_product_id)
        and (entry.assigned_product_sku is None or line.product_sku == entry.assigned_product_sku)
        and (entry.assigned_product_name is None or line.product_name == entry.assigned_product_name)
        and (entry.assigned_uom is None or line.uom == entry.assigned_uom)
    )


def apply_match(line: InvoiceLineDraft, match: FeedbackMatch) -> InvoiceLineDraft:
    """Rewrite a line from its feedback entry and tag its provenance."""
    entry = match.entry
    is_fuzzy = match.strategy == "fuzzy"
    tags = [MANUALLY_ASSIGNED]
    if is_fuzzy:
        tags.append(FUZZY_MATCH_TAG)
    if match.strategy == "description":
        tags.append(TEXT_MATCH_TAG)

    update: dict[str, object] = {
        "confidence": max(line.confidence, FUZZY_MATCH_CONFIDENCE if is_fuzzy else EXACT_MATCH_CONFIDENCE),
        "issues": merge_warnings(line.issues, tags),
    }
    if entry.assigned_product_id is not None:
        update["product_id"] = entry.assigned_product_id
    if entry.assigned_product_sku:
        update["product_sku"] = entry.assigned_product_sku
    if entry.assigned_product_name:
        update["product_name"] = entry.assigned_product_name
    if entry.assigned_uom:
        update["uom"] = entry.assigned_uom
    return line.model_copy(update=update)


def feedback_for_supplier(
    feedback: Iterable[ParserFeedbackEntry] | None, supplier: str
) -> list[ParserFeedbackEntry]:
    """Restrict a feedback snapshot to one supplier.

    Names are compared normalized, and a name that extends the other by
    whole words still matches ("Meyer & Horn GmbH" vs "meyer & horn").
    """
    wanted = normalize_description(supplier)
    entries = list(feedback or ())
    kept = [entry for entry in entries if same_supplier(normalize_description(entry.supplier), wanted)]
    dropped = len(entries) - len(kept)
    if dropped:
        logger.info(f"Ignored {dropped} feedback entry(ies) not matching supplier '{supplier}'")
    return kept


def same_supplier(first: str, second: str) -> bool:
    """Whether two normalized supplier names match, allowing a trailing word suffix on either."""
    if first == second:
        return True
    if not first or not second:
        return False
    return first.startswith(f"{second} ") or second.startswith(f"{first} ")


def apply_feedback(
    items: Sequence[InvoiceLineDraft], feedback: Sequence[ParserFeedbackEntry] | None
) -> FeedbackResult:
    """Apply prior corrections to product lines.

    Surcharge and shipping lines are never touched. A match that would not
    change any field is skipped, so applying the same feedback twice is a
    no-op.

    Args:
        items: Parsed lines in document order
        feedback: Feedback snapshot for the supplier

    Returns:
        FeedbackResult with rewritten lines (same order) and summary warnings
    """
    if not feedback:
        return FeedbackResult(items=list(items))

    lookup = build_feedback_lookup(feedback)
    applied = text_matches = fuzzy_matches = 0
    result: list[InvoiceLineDraft] = []

    for item in items:
        match = find_feedback_match(item, lookup) if item.line_type == "product" else None
        if match is None or is_already_applied(item, match.entry):
            result.append(item)
            continue

        applied += 1
        if match.strategy == "description":
            text_matches += 1
        elif match.strategy == "fuzzy":
            fuzzy_matches += 1
        logger.debug(f"Feedback ({match.strategy}) applied to line {item.line_no}")
        result.append(apply_match(item, match))

    if applied:
        logger.info(f"Applied feedback to {applied} of {len(result)} line(s)")

    warnings = [
        warning
        for warning, count in (
            (MANUALLY_ASSIGNED, applied),
            (TEXT_MATCH_WARNING, text_matches),
            (FUZZY_MATCH_WARNING, fuzzy_matches),
        )
        if count
    ]
    return FeedbackResult(items=result, warnings=tuple(warnings))
