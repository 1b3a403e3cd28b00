import pytest

from numis_archive.catalog import form
from numis_archive.catalog.form import FormValidationError
from numis_archive.domain import Banknote

IMG = "data:image/png;base64,iVBORw0KGgo="


def _valid(**overrides):
    base = dict(country="Portugal", currency="Escudos", denomination="100")
    base.update(overrides)
    return Banknote(**base)


def test_new_note_uses_defaults_and_initial_values():
    note = form.new_note({"country": "Angola", "grade": "XF"})
    assert note.country == "Angola"
    assert note.grade == "XF"
    assert note.material == "Papel"
    assert note.type == "Circulação"
    assert note.images == {}


def test_apply_changes_accepts_json_keys_and_attribute_names():
    note = _valid()
    updated = form.apply_changes(note, {"pickId": " P-1 ", "issue_date": "1961", "comments": "  linha 1\nlinha 2 "})
    assert updated.pick_id == "P-1"
    assert updated.issue_date == "1961"
    assert updated.comments == "linha 1\nlinha 2"
    # original untouched
    assert note.pick_id == ""


def test_apply_changes_never_touches_identity():
    note = _valid(created_at=5)
    updated = form.apply_changes(note, {"id": "other", "createdAt": 9, "images": {"front": IMG}})
    assert updated.id == note.id
    assert updated.created_at == 5
    assert updated.images == {}


def test_apply_changes_rejects_unknown_fields():
    with pytest.raises(FormValidationError) as info:
        form.apply_changes(_valid(), {"colour": "blue"})
    assert info.value.errors == ["unknown field: colour"]


def test_set_and_remove_image():
    note = form.set_image(_valid(), "detail1", IMG)
    assert note.images == {"detail1": IMG}
    assert form.remove_image(note, "detail1").images == {}
    with pytest.raises(FormValidationError):
        form.set_image(note, "side", IMG)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Polímero", "Polímero"),
        ("polymer", "Polímero"),
        ("Paper", "Papel"),
        ("cotton paper", "Papel"),
        ("Hybrid", "Híbrido"),
        ("híbrido", "Híbrido"),
        ("metal", None),
        ("", None),
    ],
)
def test_coerce_material(raw, expected):
    assert form.coerce_material(raw) == expected


def test_merge_extraction_fills_without_erasing():
    note = _valid(authority="Banco de Portugal")
    merged = form.merge_extraction(
        note,
        {
            "country": "Portugal",
            "authority": "",
            "pickId": "P-163",
            "material": "paper",
            "grade": "xf",
            "estimatedValue": "cerca de 12,50 €",
            "unrelated": "x",
            "id": "hijack",
        },
    )
    assert merged.id == note.id
    assert merged.authority == "Banco de Portugal"
    assert merged.pick_id == "P-163"
    assert merged.material == "Papel"
    assert merged.grade == "XF"
    assert merged.estimated_value == "12.50"


def test_merge_extraction_drops_invalid_choices():
    merged = form.merge_extraction(_valid(), {"grade": "MS65", "material": "metal", "estimatedValue": "n/a"})
    assert merged.grade == "UNC"
    assert merged.material == "Papel"
    assert merged.estimated_value == ""
    note = _valid()
    assert form.merge_extraction(note, None) is note


def test_autofill_source_prefers_front_then_back():
    with pytest.raises(FormValidationError) as info:
        form.autofill_source(_valid())
    assert info.value.errors == ["Load the front image first."]
    assert form.autofill_source(_valid(images={"back": "b"})) == "b"
    assert form.autofill_source(_valid(images={"back": "b", "front": "f"})) == "f"


def test_validate_reports_every_problem():
    note = Banknote(grade="MS", material="Ouro", estimated_value="abc", images={"front": "data:image/png,raw"})
    with pytest.raises(FormValidationError) as info:
        form.validate(note)
    errors = info.value.errors
    assert "country is required" in errors
    assert "currency is required" in errors
    assert "denomination is required" in errors
    assert any(e.startswith("grade must be one of") for e in errors)
    assert any(e.startswith("material must be one of") for e in errors)
    assert "estimatedValue must be a number" in errors
    assert any(e.startswith("images.front:") for e in errors)


def test_validate_rejects_negative_values_and_normalizes_numbers():
    with pytest.raises(FormValidationError):
        form.validate(_valid(estimated_value="-3"))
    ok = form.validate(_valid(estimated_value="12,5"))
    assert ok.estimated_value == "12.50"
    assert form.validate(_valid(estimated_value="")).estimated_value == ""


def test_validate_rejects_exponent_notation_and_keeps_huge_plain_values():
    with pytest.raises(FormValidationError) as info:
        form.validate(_valid(estimated_value="1e30"))
    assert "estimatedValue must be a number" in info.value.errors
    huge = "9" * 35
    assert form.validate(_valid(estimated_value=huge)).estimated_value == huge
