from __future__ import annotations

import json
from pathlib import Path

import pytest
from PIL import Image

from numis_archive.catalog import CatalogDatabase
from numis_archive.catalog.images import image_size
from numis_archive.cli.main import main


@pytest.fixture()
def env(tmp_path: Path, monkeypatch):
    for key in ("NUMIS_AI_BACKEND", "OPEN_ROUTER_API_KEY", "OPENAI_API_KEY", "NUMIS_DB_PATH"):
        monkeypatch.delenv(key, raising=False)
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    db = tmp_path / "notes.sqlite3"
    return tmp_path, ["--root", str(tmp_path), "--db", str(db)], db


def _add(capsys, base, *extra: str) -> str:
    code = main(base + ["add", "--set", "country=Brasil", "--set", "currency=Cruzeiros", "--set", "denomination=100", *extra])
    assert code == 0
    return capsys.readouterr().out.strip()


def test_add_list_show_edit_delete(env, capsys, monkeypatch):
    tmp_path, base, db = env
    front = tmp_path / "front.png"
    Image.new("RGB", (8, 4), (200, 10, 10)).save(front)

    note_id = _add(capsys, base, "--front", str(front), "--set", "grade=VF")
    assert note_id

    assert main(base + ["list", "--json"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [n["id"] for n in listed] == [note_id]
    assert listed[0]["images"] == ["front"]
    assert listed[0]["grade"] == "VF"

    assert main(base + ["list", "--search", "cruz"]) == 0
    assert note_id in capsys.readouterr().out

    assert main(base + ["edit", note_id, "--set", "estimatedValue=12,5", "--set", "pickId=P-100"]) == 0
    capsys.readouterr()
    assert main(base + ["show", note_id, "--export-images", str(tmp_path / "imgs")]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["estimatedValue"] == "12.50"
    assert shown["pickId"] == "P-100"
    assert (tmp_path / "imgs" / f"{note_id}-front.png").is_file()

    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert main(base + ["delete", note_id]) == 1
    assert CatalogDatabase(db_path=str(db)).count() == 1
    assert main(base + ["delete", note_id, "--yes"]) == 0
    assert CatalogDatabase(db_path=str(db)).count() == 0


def test_rotate_command(env, capsys):
    tmp_path, base, db = env
    back = tmp_path / "back.png"
    Image.new("RGB", (8, 4), (0, 0, 0)).save(back)
    note_id = _add(capsys, base, "--back", str(back))

    assert main(base + ["rotate", note_id, "--slot", "back", "--degrees", "90"]) == 0
    stored = CatalogDatabase(db_path=str(db)).get(note_id)
    assert image_size(stored.images["back"]) == (4, 8)

    assert main(base + ["rotate", note_id, "--slot", "front"]) == 2


def test_export_import_and_stats(env, capsys):
    tmp_path, base, db = env
    _add(capsys, base, "--set", "estimatedValue=4")

    assert main(base + ["export", "--output-dir", str(tmp_path / "backups")]) == 0
    path = Path(capsys.readouterr().out.strip())
    assert path.name.startswith("backup-numismatica-")
    records = json.loads(path.read_text(encoding="utf-8"))
    assert records[0]["country"] == "Brasil"

    records.append({"id": "extra", "country": "Angola", "currency": "Kwanzas", "denomination": "5"})
    path.write_text(json.dumps(records), encoding="utf-8")
    assert main(base + ["import", str(path), "--yes"]) == 0
    assert capsys.readouterr().out.strip() == "2"

    assert main(base + ["stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats == {"total": 2, "countries": 2, "total_estimated_value": "4", "valued_notes": 1}

    bad = tmp_path / "bad.json"
    bad.write_text('{"not": "a list"}', encoding="utf-8")
    assert main(base + ["import", str(bad), "--yes"]) == 1


def test_error_exit_codes(env, capsys):
    tmp_path, base, _ = env
    assert main(base + ["show", "missing"]) == 4
    assert main(base + ["add", "--set", "country=Brasil"]) == 2
    assert main(base + ["add", "--set", "novalue"]) == 1

    image = tmp_path / "note.png"
    Image.new("RGB", (2, 2)).save(image)
    assert main(base + ["extract", "--image", str(image)]) == 3


def test_init_prints_db_path(env, capsys):
    _, base, db = env
    assert main(base + ["init"]) == 0
    assert capsys.readouterr().out.strip() == str(db)
