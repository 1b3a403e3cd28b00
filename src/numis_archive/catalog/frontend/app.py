from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ...logging import get_logger
from ...paths import find_project_root
from ..ai import BanknoteAIService
from ..ai_clients import AIConfigurationError, AIServiceError
from ..backup import BackupFormatError, backup_filename
from ..constants import GRADE_CHOICES, GRADE_LABELS, IMAGE_SLOTS, MATERIAL_CHOICES, SLOT_LABELS, SORT_CHOICES
from ..db import CatalogDatabase, CatalogStorageError
from ..form import FormValidationError
from ..gallery import gallery_entries
from ..service import CatalogService, NoteNotFoundError


LOG = get_logger("catalog-frontend")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "numis-ui", "dist")


def _parse_bool(value: Optional[str], *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _error(status: int, detail: str, **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"detail": detail}
    payload.update(extra)
    return JSONResponse(payload, status_code=status)


def create_app(
    root_dir: Optional[str] = None,
    *,
    db: Optional[CatalogDatabase] = None,
    ai: Optional[BanknoteAIService] = None,
    enable_ai: bool = True,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = True,
) -> Starlette:
    """Create a Starlette app exposing the catalog API and optional frontend."""

    project_root = find_project_root(root_dir)
    db = db or CatalogDatabase(root_dir=project_root)
    if ai is None and enable_ai:
        try:
            ai = BanknoteAIService.from_settings(dotenv_dir=project_root)
        except AIConfigurationError as exc:
            LOG.warning("AI features disabled: %s", exc)
            ai = None
    service = CatalogService(db, ai)

    resolved_static_dir: Optional[str] = None
    if serve_static:
        if static_dir is not None:
            candidate = os.path.abspath(os.path.join(project_root, static_dir))
        else:
            candidate = os.path.abspath(os.path.join(project_root, DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)
    else:
        LOG.info("Static frontend serving disabled (API only mode).")

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path, "ai": service.ai is not None})

    async def options(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "grades": [{"value": g, "label": GRADE_LABELS[g]} for g in GRADE_CHOICES],
                "materials": list(MATERIAL_CHOICES),
                "slots": [{"slot": s, "label": SLOT_LABELS[s]} for s in IMAGE_SLOTS],
                "sort": list(SORT_CHOICES),
            }
        )

    async def list_notes(request: Request) -> JSONResponse:
        qp = request.query_params
        notes = service.list_notes(
            qp.get("search") or "",
            sort=qp.get("sort") or "created_at",
            direction=qp.get("direction") or "desc",
            country=qp.get("country") or None,
            grade=qp.get("grade") or None,
            material=qp.get("material") or None,
        )
        full = _parse_bool(qp.get("full"))
        items = [n.to_dict() if full else n.summary() for n in notes]
        return JSONResponse({"total": len(items), "items": items})

    async def create_note(request: Request) -> JSONResponse:
        body = await _json_body(request)
        note = service.add_note(body)
        return JSONResponse(note.to_dict(), status_code=201)

    async def note_detail(request: Request) -> JSONResponse:
        note = service.get_note(request.path_params["note_id"])
        return JSONResponse(note.to_dict())

    async def update_note(request: Request) -> JSONResponse:
        body = await _json_body(request)
        note = service.update_note(request.path_params["note_id"], body)
        return JSONResponse(note.to_dict())

    async def delete_note(request: Request) -> Response:
        service.delete_note(request.path_params["note_id"])
        return Response(status_code=204)

    async def stats(_: Request) -> JSONResponse:
        return JSONResponse(service.stats())

    async def export(_: Request) -> Response:
        return Response(
            service.export_json(),
            media_type="application/json; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
        )

    async def import_backup(request: Request) -> JSONResponse:
        if not _parse_bool(request.query_params.get("replace")):
            raise HTTPException(status_code=409, detail="Import replaces the whole catalog; repeat with ?replace=true")
        raw = await request.body()
        count = service.import_json(raw.decode("utf-8"))
        return JSONResponse({"imported": count})

    async def gallery(request: Request) -> JSONResponse:
        note = service.get_note(request.path_params["note_id"])
        include_images = _parse_bool(request.query_params.get("images"), default=True)
        entries = [e.as_dict(include_image=include_images) for e in gallery_entries(note)]
        return JSONResponse({"id": note.id, "entries": entries})

    async def rotate(request: Request) -> JSONResponse:
        body = await _json_body(request)
        degrees = _parse_int(body.get("degrees"))
        if degrees is None:
            raise HTTPException(status_code=400, detail="degrees must be an integer")
        note = await run_in_threadpool(
            service.rotate_note_image, request.path_params["note_id"], request.path_params["slot"], degrees
        )
        return JSONResponse(note.to_dict())

    async def edit_image(request: Request) -> JSONResponse:
        body = await _json_body(request)
        prompt = str(body.get("prompt") or "").strip()
        if not prompt:
            raise HTTPException(status_code=400, detail="prompt is required")
        note = await run_in_threadpool(
            service.edit_note_image, request.path_params["note_id"], request.path_params["slot"], prompt
        )
        return JSONResponse(note.to_dict())

    async def extract(request: Request) -> JSONResponse:
        body = await _json_body(request)
        image = body.get("image")
        if not isinstance(image, str) or not image:
            raise HTTPException(status_code=400, detail="image (data URL) is required")
        data = await run_in_threadpool(service.extract, image)
        return JSONResponse({"data": data or {}})

    async def estimate(request: Request) -> JSONResponse:
        save = _parse_bool(request.query_params.get("save"))
        value = await run_in_threadpool(service.estimate_value, request.path_params["note_id"], save=save)
        return JSONResponse({"estimatedValue": value, "saved": bool(value and save)})

    async def history(request: Request) -> JSONResponse:
        context = await run_in_threadpool(service.historical_context, request.path_params["note_id"])
        return JSONResponse(context.as_dict())

    async def on_not_found(_: Request, exc: Exception) -> JSONResponse:
        return _error(404, "Banknote not found")

    async def on_validation(_: Request, exc: Exception) -> JSONResponse:
        errors = getattr(exc, "errors", None) or [str(exc)]
        return _error(400, "Validation failed", errors=errors)

    async def on_bad_request(_: Request, exc: Exception) -> JSONResponse:
        return _error(400, str(exc))

    async def on_ai_config(_: Request, exc: Exception) -> JSONResponse:
        return _error(503, str(exc))

    async def on_ai_failure(_: Request, exc: Exception) -> JSONResponse:
        return _error(502, str(exc))

    async def on_storage(_: Request, exc: Exception) -> JSONResponse:
        LOG.error("Storage failure: %s", exc)
        return _error(500, "Catalog storage failure")

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/options", options, methods=["GET"]),
        Route("/api/notes", list_notes, methods=["GET"]),
        Route("/api/notes", create_note, methods=["POST"]),
        Route("/api/notes/{note_id:str}", note_detail, methods=["GET"]),
        Route("/api/notes/{note_id:str}", update_note, methods=["PUT"]),
        Route("/api/notes/{note_id:str}", delete_note, methods=["DELETE"]),
        Route("/api/notes/{note_id:str}/gallery", gallery, methods=["GET"]),
        Route("/api/notes/{note_id:str}/images/{slot:str}/rotate", rotate, methods=["POST"]),
        Route("/api/notes/{note_id:str}/images/{slot:str}/edit", edit_image, methods=["POST"]),
        Route("/api/notes/{note_id:str}/estimate", estimate, methods=["POST"]),
        Route("/api/notes/{note_id:str}/history", history, methods=["GET"]),
        Route("/api/stats", stats, methods=["GET"]),
        Route("/api/export", export, methods=["GET"]),
        Route("/api/import", import_backup, methods=["POST"]),
        Route("/api/extract", extract, methods=["POST"]),
    ]

    exception_handlers = {
        NoteNotFoundError: on_not_found,
        FormValidationError: on_validation,
        BackupFormatError: on_bad_request,
        ValueError: on_bad_request,
        AIConfigurationError: on_ai_config,
        AIServiceError: on_ai_failure,
        CatalogStorageError: on_storage,
    }

    app = Starlette(debug=False, routes=routes, exception_handlers=exception_handlers)

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    if "*" in origins:
        cors_allow_origins = ["*"]
    else:
        cors_allow_origins = origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if resolved_static_dir:
        app.mount("/", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")
    else:
        async def api_only(_: Request) -> JSONResponse:
            return JSONResponse({"detail": "NumisArchive API is running. Static frontend not served."})

        app.add_route("/", api_only, methods=["GET"])

    return app


__all__ = ["create_app"]
