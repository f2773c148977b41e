"""Unit tests for the feedback matcher.

Tests cover:
- Key normalization and edit distance
- Strategy priority (SKU, description, fuzzy)
- Preferred entry selection
- Provenance tags, confidence and idempotence
- Supplier scoping of feedback snapshots
"""

import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from services.parsing.feedback import (
    EXACT_MATCH_CONFIDENCE,
    FUZZY_MATCH_CONFIDENCE,
    FUZZY_MATCH_TAG,
    FUZZY_MATCH_WARNING,
    MANUALLY_ASSIGNED,
    TEXT_MATCH_TAG,
    TEXT_MATCH_WARNING,
    apply_feedback,
    build_feedback_lookup,
    description_key_variants,
    feedback_for_supplier,
    find_feedback_match,
    fuzzy_threshold,
    levenshtein_distance,
    normalize_description,
    pick_preferred_entry,
    same_supplier,
)
from services.parsing.schema import InvoiceLineDraft, LineSource, ParserFeedbackEntry

SUPPLIER = "Meyer & Horn"


def make_line(**overrides: Any) -> InvoiceLineDraft:
    values: dict[str, Any] = {
        "line_no": 1,
        "product_sku": "SKU-9",
        "product_name": "Kaffeebohnen 250g",
        "qty": 10,
        "uom": "KG",
        "unit_price_net": 3.5,
        "tax_rate_percent": 7,
        "line_total_net": 35.0,
        "confidence": 0.78,
        "source": LineSource(raw=None, template_hint="meyer_horn"),
    }
    values.update(overrides)
    return InvoiceLineDraft(**values)


def make_entry(**overrides: Any) -> ParserFeedbackEntry:
    values: dict[str, Any] = {"supplier": SUPPLIER, "detected_description": "Kaffeebohnen 250g"}
    values.update(overrides)
    return ParserFeedbackEntry(**values)


# --- Normalization ---


def test_normalize_description() -> None:
    """Test diacritic folding, lower-casing and separator collapsing."""
    assert normalize_description("Käse-Brot  (Vollkorn)") == "kase brot vollkorn"
    assert normalize_description(None) == ""


def test_description_key_variants() -> None:
    """Test full, textual-only and short keys."""
    keys = description_key_variants("Kaffee Crema 12 KG 14,50")

    assert keys == ["kaffee crema 12 kg 14 50", "kaffee crema kg"]


def test_description_key_variants_short_key() -> None:
    """Test that the short key keeps the first four textual tokens."""
    keys = description_key_variants("Bio Kaffee Crema ganze Bohne")

    assert keys == ["bio kaffee crema ganze bohne", "bio kaffee crema ganze"]


@pytest.mark.parametrize(
    ("a", "b", "distance"),
    [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "abc", 0),
        ("kaffee crema", "kaffee cremma", 1),
    ],
)
def test_levenshtein_distance(a: str, b: str, distance: int) -> None:
    """Test classic edit distance."""
    assert levenshtein_distance(a, b) == distance


def test_fuzzy_threshold() -> None:
    """Test the relative tolerance with a floor of two edits."""
    assert fuzzy_threshold("abc", "abcd") == 2
    assert fuzzy_threshold("a" * 20, "b" * 25) == 5


# --- Matching ---


def test_sku_match_wins_over_fuzzy_description() -> None:
    """Test that an exact SKU match is preferred over a fuzzy description match."""
    by_sku = make_entry(
        detected_description="Etwas ganz anderes", detected_sku=" sku-9 ", assigned_product_id=1
    )
    by_text = make_entry(detected_description="Kaffeebohnen 250gr", assigned_product_id=2)
    lookup = build_feedback_lookup([by_text, by_sku])

    match = find_feedback_match(make_line(), lookup)

    assert match is not None
    assert match.strategy == "sku"
    assert match.entry.assigned_product_id == 1


def test_description_match() -> None:
    """Test exact description match for lines without a SKU."""
    lookup = build_feedback_lookup([make_entry(assigned_product_id=5)])

    match = find_feedback_match(make_line(product_sku=None), lookup)

    assert match is not None
    assert match.strategy == "description"


def test_description_match_via_raw_source() -> None:
    """Test that keys derived from the raw source span are tried too."""
    entry = make_entry(detected_description="SKU Kaffeebohnen 250g KG", assigned_product_id=5)
    line = make_line(
        product_sku=None,
        product_name="Bohnen",
        source=LineSource(raw="1 SKU-9 Kaffeebohnen 250g 10 KG 3,50 2% 35,00"),
    )

    match = find_feedback_match(line, build_feedback_lookup([entry]))

    assert match is not None
    assert match.strategy == "description"


def test_fuzzy_match() -> None:
    """Test edit distance fallback."""
    entry = make_entry(detected_description="Kaffeebohnen Cremma", assigned_product_id=3)
    lookup = build_feedback_lookup([entry])

    match = find_feedback_match(make_line(product_sku=None, product_name="Kaffeebohnen Crema"), lookup)

    assert match is not None
    assert match.strategy == "fuzzy"


def test_no_match_for_distant_description() -> None:
    """Test that unrelated descriptions do not match."""
    lookup = build_feedback_lookup([make_entry(detected_description="Tee Assam", assigned_product_id=3)])

    assert find_feedback_match(make_line(product_sku=None, product_name="Kaffeebohnen Crema"), lookup) is None


def test_entries_without_keys_are_ignored() -> None:
    """Test that entries with neither description nor SKU are not indexed."""
    lookup = build_feedback_lookup([make_entry(detected_description="  --  ")])

    assert lookup.entries == []


# --- Preferred entries ---


def test_pick_preferred_entry_prefers_product_assignment() -> None:
    """Test that a concrete product assignment beats a newer entry without one."""
    newer = make_entry(updated_at=datetime(2024, 5, 1, tzinfo=UTC))
    assigned = make_entry(assigned_product_id=5, updated_at=datetime(2023, 1, 1, tzinfo=UTC))

    assert pick_preferred_entry([newer, assigned]) is assigned


def test_pick_preferred_entry_prefers_latest_update() -> None:
    """Test that the most recent entry wins; naive timestamps count as UTC."""
    older = make_entry(assigned_product_id=6, updated_at=datetime(2024, 6, 1, 12, tzinfo=UTC))
    newer = make_entry(assigned_product_id=7, updated_at=datetime(2024, 6, 2))

    assert pick_preferred_entry([older, newer]) is newer
    assert pick_preferred_entry([]) is None


# --- Application ---


def test_apply_feedback_rewrites_product_lines() -> None:
    """Test field rewrites, provenance tags and confidence for a text match."""
    entry = make_entry(
        assigned_product_id=42,
        assigned_product_sku="KB-250",
        assigned_product_name="Kaffeebohnen Crema 250g",
        assigned_uom="KG",
    )
    surcharge = make_line(line_no=2, line_type="surcharge", product_sku=None)

    result = apply_feedback([make_line(product_sku=None), surcharge], [entry])

    line, untouched = result.items
    assert line.product_id == 42
    assert line.product_sku == "KB-250"
    assert line.product_name == "Kaffeebohnen Crema 250g"
    assert line.confidence == EXACT_MATCH_CONFIDENCE
    assert line.issues == (MANUALLY_ASSIGNED, TEXT_MATCH_TAG)
    assert untouched == surcharge
    assert result.warnings == (MANUALLY_ASSIGNED, TEXT_MATCH_WARNING)


def test_apply_feedback_fuzzy_tags() -> None:
    """Test tags and confidence of a fuzzy match."""
    entry = make_entry(detected_description="Kaffeebohnen Cremma", assigned_product_id=3)

    result = apply_feedback([make_line(product_sku=None, product_name="Kaffeebohnen Crema")], [entry])

    line = result.items[0]
    assert line.confidence == FUZZY_MATCH_CONFIDENCE
    assert FUZZY_MATCH_TAG in line.issues
    assert FUZZY_MATCH_WARNING in result.warnings


def test_apply_feedback_keeps_higher_confidence() -> None:
    """Test that feedback never lowers a line's confidence."""
    entry = make_entry(detected_sku="SKU-9", assigned_product_id=3)

    result = apply_feedback([make_line(confidence=0.99)], [entry])

    assert result.items[0].confidence == 0.99


def test_apply_feedback_is_idempotent() -> None:
    """Test that re-applying the same feedback changes nothing."""
    entry = make_entry(detected_sku="SKU-9", assigned_product_id=3, assigned_uom="KG")
    first = apply_feedback([make_line()], [entry])

    second = apply_feedback(first.items, [entry])

    assert second.items == first.items
    assert second.warnings == ()


def test_apply_feedback_without_feedback() -> None:
    """Test that an empty snapshot leaves lines untouched."""
    line = make_line()

    result = apply_feedback([line], [])

    assert result.items == [line]
    assert result.warnings == ()


def test_feedback_for_supplier() -> None:
    """Test case-insensitive supplier filtering."""
    own = make_entry(supplier=" meyer & horn ")
    other = make_entry(supplier="Beyers")

    assert feedback_for_supplier([own, other], SUPPLIER) == [own]
    assert feedback_for_supplier(None, SUPPLIER) == []


def test_feedback_for_supplier_tolerates_legal_form() -> None:
    """Test that a legal form suffix on either side still matches."""
    with_suffix = make_entry(supplier="Meyer & Horn GmbH")
    plain = make_entry(supplier="Meyer & Horn")

    assert feedback_for_supplier([with_suffix], "Meyer & Horn") == [with_suffix]
    assert feedback_for_supplier([plain], "Meyer & Horn GmbH & Co. KG") == [plain]


def test_feedback_for_supplier_logs_dropped_entries(caplog: pytest.LogCaptureFixture) -> None:
    """Test that entries of other suppliers are counted in the log."""
    entries = [make_entry(), make_entry(supplier="Beyers"), make_entry(supplier="Meyerhof")]

    with caplog.at_level(logging.INFO):
        kept = feedback_for_supplier(entries, SUPPLIER)

    assert kept == [entries[0]]
    assert "Ignored 2 feedback entry(ies) not matching supplier 'Meyer & Horn'" in caplog.text


@pytest.mark.parametrize(
    ("first", "second", "expected"),
    [
        ("meyer horn", "meyer horn", True),
        ("meyer horn gmbh", "meyer horn", True),
        ("meyer horn", "meyer", True),
        ("meyer horn", "meyerhof", False),
        ("beyers", "meyer horn", False),
        ("", "meyer horn", False),
        ("", "", True),
    ],
)
def test_same_supplier(first: str, second: str, expected: bool) -> None:
    """Test whole-word prefix matching of normalized supplier names."""
    assert same_supplier(first, second) is expected
