from datetime import datetime

from enricher.utils.hexacle import (
    MAX_HASH_LENGTH,
    compute_hexacle_hash,
    compute_salted_hash,
    sanitize_hexacle,
)


def test_hash_concatenates_and_normalizes_address_parts():
    assert compute_hexacle_hash("12", "Rue de Paris", "Paris", "75001") == "12RUEDEPARISPARIS75001"


def test_hash_strips_separators_and_whitespace():
    assert compute_hexacle_hash(" 3-5 ", "Av. J.-B. Clément", "Saint-Denis", "93 200") == "35AVJBCLÉMENTSAINTDENIS93200"


def test_hash_is_deterministic():
    first = compute_hexacle_hash("7", "Place Bellecour", "Lyon", "69002")
    second = compute_hexacle_hash("7", "Place Bellecour", "Lyon", "69002")
    assert first == second


def test_missing_parts_count_as_empty():
    assert compute_hexacle_hash(None, "Rue Haute", None, "59000") == "RUEHAUTE59000"
    assert compute_hexacle_hash(None, None, None, None) == ""


def test_hash_is_truncated():
    value = compute_hexacle_hash("1", "A" * 400, "B", "C")
    assert len(value) == MAX_HASH_LENGTH


def test_sanitize_is_idempotent():
    once = sanitize_hexacle(" 12 rue de l'Église - Bât. A : 2 ")
    assert sanitize_hexacle(once) == once
    assert once == "12RUEDEL'ÉGLISEBÂTA2"


def test_salted_hash_varies_with_time():
    parts = ("12", "Rue de Paris", "Paris", "75001")
    early = compute_salted_hash(*parts, now=datetime(2024, 1, 1, 10, 0, 0))
    late = compute_salted_hash(*parts, now=datetime(2024, 1, 1, 10, 0, 1))
    assert early != late
    assert early.endswith(compute_hexacle_hash(*parts))
    assert early.startswith("20240101T100000")
