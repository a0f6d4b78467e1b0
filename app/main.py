"""FastAPI app: model management and generic record CRUD for published models."""

from __future__ import annotations

import logging
import re
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import anyio
from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from access_decision import SUPER_ROLE, authorize, needs_target_record
from app import db
from app.auth import AuthMiddleware, JwtAuthProvider, StaticAuthProvider
from app.settings import Settings
from app.stores import MemoryRecordStore
from app.stores_db import DbDescriptorStore, DbRecordStore, ensure_schema
from descriptor_store import FileDescriptorStore
from model_errors import Forbidden, InvalidRecord, InvalidSchema, ModelError, RecordNotFound, Unauthenticated
from model_registry import ModelRegistry
from record_service import RecordService


logger = logging.getLogger("modelkit")
logging.basicConfig(level=logging.INFO)

RESERVED_MODEL_NAMES = {"models", "auth"}
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")

router = APIRouter()


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "error": message,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(data: Any, status: int = 200, **extra: Any) -> JSONResponse:
    body = {"ok": True, "data": data, **extra, "errors": [], "warnings": []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _run(func, *args):
    return await anyio.to_thread.run_sync(func, *args)


async def _read_json(request: Request, error_cls=InvalidRecord) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise error_cls("Request body must be valid JSON", path="$") from None


def _registry(request: Request) -> ModelRegistry:
    return request.app.state.registry


def _records(request: Request) -> RecordService:
    return request.app.state.records


def _resolve_actor(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if not isinstance(user, dict) or not user.get("id"):
        raise Unauthenticated("Authentication required", path="Authorization")
    return user


def _require_admin(actor: dict) -> None:
    if actor.get("role") != SUPER_ROLE:
        raise Forbidden("Admin role required", detail={"role": actor.get("role")})


def _model_summary(model: dict) -> dict:
    return {
        "name": model.get("name"),
        "tableName": model.get("tableName"),
        "fieldCount": len(model.get("fields") or []),
        "ownerField": model.get("ownerField"),
        "timestamps": model.get("timestamps"),
        "createdAt": model.get("createdAt"),
        "updatedAt": model.get("updatedAt"),
    }


async def _authorize_operation(request: Request, model_name: str, operation: str, record_id: str | None = None) -> tuple[dict, dict]:
    actor = _resolve_actor(request)
    model = _registry(request).require(model_name)
    target = None
    if record_id is not None and needs_target_record(model, actor.get("role"), operation):
        target = await _run(_records(request).find_by_id, model_name, record_id)
        if target is None:
            raise RecordNotFound("Record not found", path="id")
    authorize(actor, model, operation, target)
    return actor, model


@router.get("/health")
async def health(request: Request) -> dict:
    return {"ok": True, "models": _registry(request).count()}


@router.get("/api/auth/me")
async def whoami(request: Request) -> JSONResponse:
    actor = _resolve_actor(request)
    return _ok_response({"id": actor.get("id"), "role": actor.get("role"), "email": actor.get("email")})


@router.get("/api/models")
async def list_models(request: Request) -> JSONResponse:
    _resolve_actor(request)
    models = [_model_summary(m) for m in _registry(request).get_all()]
    return _ok_response(models, count=len(models))


@router.get("/api/models/{name}")
async def get_model(request: Request, name: str) -> JSONResponse:
    _resolve_actor(request)
    return _ok_response(_registry(request).require(name))


@router.post("/api/models")
async def publish_model(request: Request) -> JSONResponse:
    actor = _resolve_actor(request)
    _require_admin(actor)
    body = await _read_json(request, InvalidSchema)
    name = body.get("name") if isinstance(body, dict) else None
    if isinstance(name, str) and name.lower() in RESERVED_MODEL_NAMES:
        raise InvalidSchema(f"Model name '{name}' is reserved", path="name")
    model = await _run(_registry(request).publish, body)
    logger.info("model_published name=%s actor=%s", model["name"], actor.get("id"))
    return _ok_response(model, status=201, message=f"Model '{model['name']}' published successfully")


@router.put("/api/models/{name}")
async def update_model(request: Request, name: str) -> JSONResponse:
    actor = _resolve_actor(request)
    _require_admin(actor)
    body = await _read_json(request, InvalidSchema)
    model = await _run(_registry(request).update, name, body)
    logger.info("model_updated name=%s actor=%s", model["name"], actor.get("id"))
    return _ok_response(model, message=f"Model '{name}' updated successfully")


@router.delete("/api/models/{name}")
async def delete_model(request: Request, name: str) -> JSONResponse:
    actor = _resolve_actor(request)
    _require_admin(actor)
    await _run(_registry(request).delete, name)
    return _ok_response({"deleted": True, "name": name}, message=f"Model '{name}' deleted successfully")


@router.post("/api/{model_name}")
async def create_record(request: Request, model_name: str) -> JSONResponse:
    actor, model = await _authorize_operation(request, model_name, "create")
    payload = await _read_json(request)
    record = await _run(_records(request).create, model_name, payload, actor.get("id"), model, actor.get("role"))
    return _ok_response(record, status=201)


@router.get("/api/{model_name}")
async def list_records(request: Request, model_name: str) -> JSONResponse:
    actor, model = await _authorize_operation(request, model_name, "read")
    records = await _run(_records(request).find_all, model_name, actor.get("id"), actor.get("role"), model)
    return _ok_response(records, count=len(records))


@router.get("/api/{model_name}/{record_id}")
async def get_record(request: Request, model_name: str, record_id: str) -> JSONResponse:
    await _authorize_operation(request, model_name, "read", record_id)
    record = await _run(_records(request).find_by_id, model_name, record_id)
    if record is None:
        raise RecordNotFound("Record not found", path="id")
    return _ok_response(record)


@router.put("/api/{model_name}/{record_id}")
async def update_record(request: Request, model_name: str, record_id: str) -> JSONResponse:
    actor, model = await _authorize_operation(request, model_name, "update", record_id)
    payload = await _read_json(request)
    record = await _run(_records(request).update, model_name, record_id, payload, model, actor.get("role"))
    return _ok_response(record)


@router.delete("/api/{model_name}/{record_id}")
async def delete_record(request: Request, model_name: str, record_id: str) -> JSONResponse:
    await _authorize_operation(request, model_name, "delete", record_id)
    await _run(_records(request).delete, model_name, record_id)
    return _ok_response({"deleted": True, "id": record_id}, message="Record deleted successfully")


async def model_error_handler(request: Request, exc: ModelError) -> JSONResponse:
    if exc.status >= 500:
        logger.error("request_failed path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=exc.status)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", status=500)


def _install_http_middleware(app: FastAPI, settings: Settings) -> None:
    cors_origins = settings.cors_origins

    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        db.reset_db_stats()
        start = time.perf_counter()
        response = await call_next(request)
        total_ms = (time.perf_counter() - start) * 1000
        auth_ms = getattr(request.state, "auth_ms", 0.0)
        db_stats = db.get_db_stats()
        route = request.scope.get("route")
        route_name = getattr(route, "name", None) or "unknown"
        logger.info(
            "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f db_ms=%.1f db_q=%s",
            request.method,
            request.url.path,
            response.status_code,
            route_name,
            total_ms,
            auth_ms,
            db_stats.get("total_ms", 0.0),
            db_stats.get("queries", 0),
        )
        if total_ms >= settings.req_slow_ms:
            logger.warning("slow_request method=%s path=%s route=%s total_ms=%.1f", request.method, request.url.path, route_name, total_ms)
        return response

    @app.middleware("http")
    async def local_cors_middleware(request: Request, call_next):
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            response = JSONResponse({}, status_code=200)
        else:
            response = await call_next(request)
        normalized = origin.rstrip("/") if isinstance(origin, str) else None
        if normalized and (normalized in cors_origins or _LOCAL_CORS_REGEX.match(normalized)):
            response.headers.setdefault("Access-Control-Allow-Origin", origin)
            response.headers.setdefault("Access-Control-Allow-Credentials", "true")
            response.headers.setdefault("Access-Control-Allow-Headers", "*")
            response.headers.setdefault("Access-Control-Allow-Methods", "*")
            response.headers.setdefault("Vary", "Origin")
        return response


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if app.state.settings.use_db:
        await _run(ensure_schema)
    result = await _run(app.state.registry.load_all)
    app.state.load_result = result
    for name, error in result.failures:
        logger.warning("model_skipped name=%s error=%s", name, error)
    logger.info("startup models_loaded=%s auth_disabled=%s use_db=%s", len(result.loaded), app.state.settings.disable_auth, app.state.settings.use_db)
    yield


def create_app(
    settings: Settings | None = None,
    *,
    descriptor_store=None,
    record_store=None,
    auth_provider=None,
) -> FastAPI:
    """Composition root: every collaborator may be injected, the rest come from settings."""
    settings = settings or Settings.from_env()
    if settings.use_db:
        db.configure(settings.database_url, settings.db_pool_min, settings.db_pool_max)
    if descriptor_store is None:
        descriptor_store = DbDescriptorStore() if settings.use_db else FileDescriptorStore(settings.models_dir)
    if record_store is None:
        record_store = DbRecordStore() if settings.use_db else MemoryRecordStore()
    if auth_provider is None:
        if settings.disable_auth:
            auth_provider = StaticAuthProvider()
        else:
            auth_provider = JwtAuthProvider(
                secret=settings.jwt_secret,
                jwks_url=settings.jwks_url,
                audience=settings.jwt_audience,
                issuer=settings.jwt_issuer,
            )

    app = FastAPI(title="modelkit", lifespan=_lifespan)
    app.state.settings = settings
    app.state.registry = ModelRegistry(descriptor_store)
    app.state.records = RecordService(record_store)
    app.state.load_result = None
    app.include_router(router)
    app.add_exception_handler(ModelError, model_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_middleware(AuthMiddleware, provider=auth_provider)
    _install_http_middleware(app, settings)
    return app


app = create_app()
