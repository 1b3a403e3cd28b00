from decimal import Decimal

import pytest

from numis_archive.domain import Banknote, clean_text, normalize_value, parse_value
from numis_archive.domain.normalize import format_value


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("€ 1.250,50", "1250.50"),
        ("approx. 35 EUR", "35"),
        ("12.5", "12.5"),
        ("1,000", "1000"),
        ("12,345.67", "12345.67"),
        ("cerca de 12,50 €", "12.50"),
        ("sem valor", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_value_extracts_first_number(raw, expected):
    assert normalize_value(raw) == expected


def test_clean_text_coerces_model_output():
    assert clean_text(True) == "Sim"
    assert clean_text(False) == "Não"
    assert clean_text(3.0) == "3"
    assert clean_text(["Banco", "", "Central"]) == "Banco, Central"
    assert clean_text("  Banco   de  Portugal ") == "Banco de Portugal"
    assert clean_text(None) == ""


def test_parse_and_format_value():
    assert parse_value("12,5") == Decimal("12.5")
    assert parse_value("abc") is None
    assert parse_value("  ") is None
    assert parse_value("NaN") is None
    assert format_value(Decimal("35.00")) == "35"
    assert format_value(Decimal("12.5")) == "12.50"
    assert format_value(Decimal("0.125")) == "0.13"


@pytest.mark.parametrize("raw", ["1e30", "1E-2", "Infinity", "-inf", "sNaN", "0x10", "1_000"])
def test_parse_value_rejects_non_plain_numbers(raw):
    assert parse_value(raw) is None


def test_format_value_handles_numbers_beyond_context_precision():
    huge = "1" + "0" * 40
    assert format_value(Decimal(huge)) == huge
    assert format_value(Decimal(huge + ".005")) == huge + ".01"


def test_banknote_from_dict_ignores_unknown_keys_and_slots():
    note = Banknote.from_dict(
        {
            "id": "abc",
            "country": "Brasil",
            "pickId": "P-243",
            "extra": "ignored",
            "images": {"front": "data:image/png;base64,AAAA", "bogus": "x", "back": ""},
            "createdAt": "1700000000000",
        }
    )
    assert note.id == "abc"
    assert note.pick_id == "P-243"
    assert note.images == {"front": "data:image/png;base64,AAAA"}
    assert note.created_at == 1700000000000
    # Defaults for a fresh record
    assert (note.type, note.material, note.grade) == ("Circulação", "Papel", "UNC")


def test_banknote_dict_and_summary_use_json_keys():
    note = Banknote(id="n1", denomination="1000", currency="Escudos", images={"back": "data:image/png;base64,AAAA"})
    record = note.to_dict()
    assert record["id"] == "n1"
    assert "issueDate" in record and "estimatedValue" in record
    assert record["images"] == {"back": "data:image/png;base64,AAAA"}
    assert note.summary()["images"] == ["back"]
    assert note.title == "1000 Escudos"
    assert Banknote().title == "?"


def test_fresh_records_get_distinct_ids():
    assert Banknote().id != Banknote().id
