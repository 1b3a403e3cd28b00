from numis_archive.catalog.query import collection_stats, filter_notes, matches_search
from numis_archive.domain import Banknote


def _notes():
    return [
        Banknote(id="pt", country="Portugal", currency="Escudos", denomination="1000", pick_id="P-175",
                 estimated_value="25", grade="VF", created_at=100),
        Banknote(id="br", country="Brasil", currency="Cruzeiros", denomination="50", pick_id="P-190",
                 estimated_value="", material="Polímero", created_at=300),
        Banknote(id="au", country="Austrália", currency="Dollars", denomination="5", pick_id="P-57",
                 estimated_value="2.5", material="Polímero", created_at=200),
    ]


def test_default_order_is_newest_first():
    assert [n.id for n in filter_notes(_notes())] == ["br", "au", "pt"]


def test_search_is_case_insensitive_over_known_fields():
    notes = _notes()
    assert [n.id for n in filter_notes(notes, "BRA")] == ["br"]
    assert [n.id for n in filter_notes(notes, "p-17")] == ["pt"]
    assert [n.id for n in filter_notes(notes, "dollars")] == ["au"]
    assert [n.id for n in filter_notes(notes, "1000")] == ["pt"]
    # grade is not searchable
    assert filter_notes(notes, "VF") == []
    assert len(filter_notes(notes, "   ")) == 3


def test_matches_search_empty_needle_matches_all():
    assert matches_search(Banknote(), "")


def test_filters_combine_with_search():
    notes = _notes()
    assert [n.id for n in filter_notes(notes, material="polímero")] == ["br", "au"]
    assert [n.id for n in filter_notes(notes, "a", material="Polímero", country="Brasil")] == ["br"]
    assert [n.id for n in filter_notes(notes, grade="VF")] == ["pt"]


def test_value_sort_keeps_blanks_last_in_both_directions():
    notes = _notes()
    assert [n.id for n in filter_notes(notes, sort="estimated_value", direction="asc")] == ["au", "pt", "br"]
    assert [n.id for n in filter_notes(notes, sort="estimated_value", direction="desc")] == ["pt", "au", "br"]


def test_denomination_sort_is_numeric():
    assert [n.id for n in filter_notes(_notes(), sort="denomination", direction="asc")] == ["au", "br", "pt"]


def test_unknown_sort_falls_back_to_created_at():
    assert [n.id for n in filter_notes(_notes(), sort="bogus", direction="asc")] == ["pt", "au", "br"]


def test_collection_stats():
    stats = collection_stats(_notes())
    assert stats == {
        "total": 3,
        "countries": 3,
        "total_estimated_value": "27.50",
        "valued_notes": 2,
    }
    assert collection_stats([])["total_estimated_value"] == "0"


def test_collection_stats_skips_values_it_cannot_read():
    notes = _notes() + [
        Banknote(id="exp", country="Angola", estimated_value="1e30"),
        Banknote(id="nan", country="Angola", estimated_value="NaN"),
    ]
    stats = collection_stats(notes)
    assert stats["total_estimated_value"] == "27.50"
    assert stats["valued_notes"] == 2

    huge = collection_stats([Banknote(estimated_value="1" + "0" * 40)])
    assert huge["valued_notes"] == 1
    assert huge["total_estimated_value"].startswith("1000")
