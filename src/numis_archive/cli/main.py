from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Dict, List, Optional, Sequence

from ..catalog import form
from ..catalog.ai import BanknoteAIService
from ..catalog.ai_clients import AIConfigurationError, AIServiceError
from ..catalog.backup import BackupFormatError, read_backup, write_backup
from ..catalog.constants import GRADE_CHOICES, MATERIAL_CHOICES, ROTATION_CHOICES, SORT_CHOICES
from ..catalog.db import CatalogDatabase, CatalogStorageError
from ..catalog.form import FormValidationError
from ..catalog.gallery import gallery_entries
from ..catalog.images import ImageDataError, load_image_file, write_image
from ..catalog.service import CatalogService, NoteNotFoundError
from ..config import load_db_path
from ..domain.models import IMAGE_SLOTS, Banknote
from ..logging import get_logger, set_level
from ..paths import expand_abs

LOG = get_logger("cli-main")

# Exceptions reported as a failed command rather than a traceback.
_EXPECTED_ERRORS = (
    FormValidationError,
    NoteNotFoundError,
    BackupFormatError,
    AIServiceError,
    CatalogStorageError,
    ImageDataError,
    OSError,
    ValueError,
)


def _build_service(ns: argparse.Namespace, *, with_ai: bool = False) -> CatalogService:
    root = expand_abs(ns.root) if ns.root else os.getcwd()
    db_path = ns.db or load_db_path(root)
    db = CatalogDatabase(root_dir=root, db_path=expand_abs(db_path) if db_path else None)
    ai = BanknoteAIService.from_settings(dotenv_dir=root) if with_ai else None
    return CatalogService(db, ai)


def _confirm(question: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes", "s", "sim"}


def _parse_assignments(values: Optional[List[str]]) -> Dict[str, str]:
    changes: Dict[str, str] = {}
    for raw in values or []:
        if "=" not in raw:
            raise ValueError(f"--set expects key=value, got {raw!r}")
        key, value = raw.split("=", 1)
        changes[key.strip()] = value
    return changes


def _image_args(ns: argparse.Namespace) -> Dict[str, str]:
    images: Dict[str, str] = {}
    for slot in IMAGE_SLOTS:
        path = getattr(ns, slot, None)
        if path:
            images[slot] = load_image_file(expand_abs(path))
    return images


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _format_row(note: Banknote) -> str:
    value = f"€{note.estimated_value}" if note.estimated_value else "-"
    slots = ",".join(s for s in IMAGE_SLOTS if note.images.get(s)) or "-"
    return "\t".join(
        [
            note.id,
            note.pick_id or "SEM PICK",
            note.country,
            note.title,
            note.issue_date or "Data Indefinida",
            note.grade,
            value,
            slots,
        ]
    )


def _add_image_flags(p: argparse.ArgumentParser) -> None:
    for slot in IMAGE_SLOTS:
        p.add_argument(f"--{slot}", metavar="IMAGE", help=f"Image file for the {slot} slot")


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="numis-archive",
        description="Catalog collectible banknotes: records, images, backups and AI-assisted metadata.",
    )
    parser.add_argument("--root", help="Project root holding var/ and .env (default: current directory)")
    parser.add_argument("--db", help="Explicit SQLite file (overrides NUMIS_DB_PATH)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL for this run")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_cmd = subparsers.add_parser("init", help="Create/ensure the catalog database exists")

    def _init(ns: argparse.Namespace) -> int:
        path = _build_service(ns).init_database()
        print(path)
        return 0

    init_cmd.set_defaults(handler=_init)

    list_cmd = subparsers.add_parser("list", help="List catalogued notes (newest first)")
    list_cmd.add_argument("--search", default="", help="Match country, currency, pick or denomination")
    list_cmd.add_argument("--sort", choices=SORT_CHOICES, default="created_at")
    list_cmd.add_argument("--direction", choices=["asc", "desc"], default="desc")
    list_cmd.add_argument("--country")
    list_cmd.add_argument("--grade", choices=GRADE_CHOICES)
    list_cmd.add_argument("--material", choices=MATERIAL_CHOICES)
    list_cmd.add_argument("--json", action="store_true", help="Print JSON summaries instead of rows")

    def _list(ns: argparse.Namespace) -> int:
        svc = _build_service(ns)
        notes = svc.list_notes(
            ns.search,
            sort=ns.sort,
            direction=ns.direction,
            country=ns.country,
            grade=ns.grade,
            material=ns.material,
        )
        if ns.json:
            _print_json([n.summary() for n in notes])
            return 0
        for note in notes:
            print(_format_row(note))
        LOG.info("Catálogo Atual (%d)", len(notes))
        return 0

    list_cmd.set_defaults(handler=_list)

    show_cmd = subparsers.add_parser("show", help="Show one record")
    show_cmd.add_argument("id")
    show_cmd.add_argument("--export-images", metavar="DIR", help="Write the record's images into DIR")

    def _show(ns: argparse.Namespace) -> int:
        note = _build_service(ns).get_note(ns.id)
        _print_json(note.summary())
        if ns.export_images:
            outdir = expand_abs(ns.export_images)
            for entry in gallery_entries(note):
                ext = entry.image.split(";", 1)[0].split("/")[-1] or "png"
                path = write_image(entry.image, os.path.join(outdir, f"{note.id}-{entry.slot}.{ext}"))
                LOG.info("%s -> %s", entry.label, path)
        return 0

    show_cmd.set_defaults(handler=_show)

    add_cmd = subparsers.add_parser("add", help="Register a new note")
    add_cmd.add_argument("--json", dest="json_file", help="JSON file with the record (backup keys)")
    add_cmd.add_argument("--set", action="append", metavar="KEY=VALUE", help="Field value, e.g. country=Brasil")
    _add_image_flags(add_cmd)
    add_cmd.add_argument("--autofill", action="store_true", help="Fill fields from the front/back image via AI first")

    def _add(ns: argparse.Namespace) -> int:
        svc = _build_service(ns, with_ai=ns.autofill)
        data: Dict[str, object] = {}
        if ns.json_file:
            with open(expand_abs(ns.json_file), "r", encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError("--json file must contain one JSON object")
            data.update(loaded)
        note = form.new_note(data)
        for slot, data_url in _image_args(ns).items():
            note = form.set_image(note, slot, data_url)
        if ns.autofill:
            note = svc.autofill(note)
        note = form.apply_changes(note, _parse_assignments(ns.set))
        saved = svc.add_note(note.to_dict())
        print(saved.id)
        return 0

    add_cmd.set_defaults(handler=_add)

    edit_cmd = subparsers.add_parser("edit", help="Edit an existing note")
    edit_cmd.add_argument("id")
    edit_cmd.add_argument("--set", action="append", metavar="KEY=VALUE")
    _add_image_flags(edit_cmd)
    edit_cmd.add_argument("--remove-image", action="append", choices=IMAGE_SLOTS, default=[])
    edit_cmd.add_argument("--autofill", action="store_true")

    def _edit(ns: argparse.Namespace) -> int:
        svc = _build_service(ns, with_ai=ns.autofill)
        note = svc.get_note(ns.id)
        for slot, data_url in _image_args(ns).items():
            note = form.set_image(note, slot, data_url)
        for slot in ns.remove_image:
            note = form.remove_image(note, slot)
        if ns.autofill:
            note = svc.autofill(note)
        note = form.apply_changes(note, _parse_assignments(ns.set))
        svc.save_note(note)
        LOG.info("Saved %s", note.id)
        return 0

    edit_cmd.set_defaults(handler=_edit)

    delete_cmd = subparsers.add_parser("delete", help="Delete a note permanently")
    delete_cmd.add_argument("id")
    delete_cmd.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    def _delete(ns: argparse.Namespace) -> int:
        svc = _build_service(ns)
        note = svc.get_note(ns.id)
        if not _confirm(f"Delete {note.title} ({note.country}) permanently?", ns.yes):
            LOG.info("Delete cancelled.")
            return 1
        svc.delete_note(ns.id)
        return 0

    delete_cmd.set_defaults(handler=_delete)

    stats_cmd = subparsers.add_parser("stats", help="Collection totals")

    def _stats(ns: argparse.Namespace) -> int:
        _print_json(_build_service(ns).stats())
        return 0

    stats_cmd.set_defaults(handler=_stats)

    export_cmd = subparsers.add_parser("export", help="Write a JSON backup of the whole catalog")
    export_cmd.add_argument("--output-dir", default=".", help="Directory for backup-numismatica-<date>.json")

    def _export(ns: argparse.Namespace) -> int:
        svc = _build_service(ns)
        path = write_backup(svc.list_notes(), expand_abs(ns.output_dir))
        print(path)
        return 0

    export_cmd.set_defaults(handler=_export)

    import_cmd = subparsers.add_parser("import", help="Replace the catalog with a JSON backup")
    import_cmd.add_argument("file")
    import_cmd.add_argument("--yes", action="store_true")

    def _import(ns: argparse.Namespace) -> int:
        svc = _build_service(ns)
        notes = read_backup(expand_abs(ns.file))
        if not _confirm(f"Replace the current catalog ({svc.db.count()} notes) with {len(notes)} imported notes?", ns.yes):
            LOG.info("Import cancelled.")
            return 1
        count = svc.db.replace_all(notes)
        print(count)
        return 0

    import_cmd.set_defaults(handler=_import)

    extract_cmd = subparsers.add_parser("extract", help="Identify a banknote image via AI (no DB writes)")
    extract_cmd.add_argument("--image", required=True)

    def _extract(ns: argparse.Namespace) -> int:
        svc = _build_service(ns, with_ai=True)
        data = svc.extract(load_image_file(expand_abs(ns.image)))
        if not data:
            LOG.error("Extraction produced no data.")
            return 1
        _print_json(data)
        return 0

    extract_cmd.set_defaults(handler=_extract)

    estimate_cmd = subparsers.add_parser("estimate", help="Ask the AI for the market value in EUR")
    estimate_cmd.add_argument("id")
    estimate_cmd.add_argument("--save", action="store_true", help="Store the value on the record")

    def _estimate(ns: argparse.Namespace) -> int:
        value = _build_service(ns, with_ai=True).estimate_value(ns.id, save=ns.save)
        if value is None:
            LOG.error("No value estimate available.")
            return 1
        print(value)
        return 0

    estimate_cmd.set_defaults(handler=_estimate)

    history_cmd = subparsers.add_parser("history", help="Historical facts and rarity via AI")
    history_cmd.add_argument("id")

    def _history(ns: argparse.Namespace) -> int:
        context = _build_service(ns, with_ai=True).historical_context(ns.id)
        print(context.text)
        for source in context.sources:
            print(f"- {source['title']}: {source['uri']}")
        return 0

    history_cmd.set_defaults(handler=_history)

    rotate_cmd = subparsers.add_parser("rotate", help="Rotate a stored image")
    rotate_cmd.add_argument("id")
    rotate_cmd.add_argument("--slot", choices=IMAGE_SLOTS, required=True)
    rotate_cmd.add_argument("--degrees", type=int, choices=ROTATION_CHOICES, default=90)

    def _rotate(ns: argparse.Namespace) -> int:
        _build_service(ns).rotate_note_image(ns.id, ns.slot, ns.degrees)
        return 0

    rotate_cmd.set_defaults(handler=_rotate)

    edit_image_cmd = subparsers.add_parser("edit-image", help="Edit a stored image with an AI instruction")
    edit_image_cmd.add_argument("id")
    edit_image_cmd.add_argument("--slot", choices=IMAGE_SLOTS, required=True)
    edit_image_cmd.add_argument("--prompt", required=True)

    def _edit_image(ns: argparse.Namespace) -> int:
        _build_service(ns, with_ai=True).edit_note_image(ns.id, ns.slot, ns.prompt)
        return 0

    edit_image_cmd.set_defaults(handler=_edit_image)

    serve_cmd = subparsers.add_parser("serve", help="Run the catalog API and optional static frontend")
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8001)
    serve_cmd.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve_cmd.add_argument("--uvicorn-log-level", default="info")
    serve_cmd.add_argument("--static-dir", help="Override static frontend directory relative to project root")
    serve_cmd.add_argument("--api-only", action="store_true", help="Serve JSON API without static frontend")
    serve_cmd.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..catalog.frontend import create_app
        import uvicorn

        root = expand_abs(ns.root) if ns.root else os.getcwd()
        db_path = ns.db or load_db_path(root)
        app = create_app(
            root_dir=root,
            db=CatalogDatabase(root_dir=root, db_path=expand_abs(db_path)) if db_path else None,
            static_dir=ns.static_dir,
            allow_origins=ns.allow_origins,
            serve_static=not ns.api_only,
        )
        uvicorn.run(
            app,
            host=ns.host,
            port=ns.port,
            reload=ns.reload,
            log_level=ns.uvicorn_log_level,
        )
        return 0

    serve_cmd.set_defaults(handler=_serve)

    args = parser.parse_args(provided)
    if args.log_level:
        set_level(args.log_level)
    LOG.debug("CLI invoked with arguments: %s", provided)
    try:
        code = args.handler(args)
    except AIConfigurationError as exc:
        LOG.error("%s", exc)
        return 3
    except NoteNotFoundError as exc:
        LOG.error("Banknote not found: %s", exc.args[0] if exc.args else exc)
        return 4
    except FormValidationError as exc:
        for problem in exc.errors:
            LOG.error("Invalid: %s", problem)
        return 2
    except _EXPECTED_ERRORS as exc:
        LOG.error("%s failed: %s", args.command, exc)
        return 1
    LOG.debug("Subcommand '%s' finished with exit code %s.", args.command, code)
    return code


if __name__ == "__main__":
    sys.exit(main())
