"""Entry point for the StashMirror FastAPI service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import CacheNotReadyError, FilterValidationError, QueryTimeoutError
from .models import QuerySpec
from .query.engine import QueryEngine
from .services.counters import CounterService
from .services.exclusions import ExclusionService
from .services.inheritance import InheritanceProcessor
from .services.scheduler import SyncScheduler
from .services.stash import StashClient
from .services.sync import SyncService

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    stash_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    stash = StashClient(settings, stash_http_client)
    exclusions = ExclusionService(database.session_factory)
    sync_service = SyncService(
        database.session_factory,
        stash,
        settings,
        inheritance=InheritanceProcessor(database.session_factory),
        counters=CounterService(database.session_factory),
        exclusions=exclusions,
    )
    scheduler = SyncScheduler(sync_service, settings)
    query_engine = QueryEngine(database.session_factory, settings)

    fastapi_app.state.database = database
    fastapi_app.state.query_engine = query_engine
    fastapi_app.state.exclusions = exclusions
    fastapi_app.state.scheduler = scheduler
    await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await scheduler.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Local mirror of a Stash media library with per-user queries",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_query_engine(fastapi_app: FastAPI) -> QueryEngine:
    engine = getattr(fastapi_app.state, "query_engine", None)
    if not isinstance(engine, QueryEngine):
        raise RuntimeError("Query engine not initialised")
    return engine


def get_scheduler(fastapi_app: FastAPI) -> SyncScheduler:
    scheduler = getattr(fastapi_app.state, "scheduler", None)
    if not isinstance(scheduler, SyncScheduler):
        raise RuntimeError("Sync scheduler not initialised")
    return scheduler


def get_exclusions(fastapi_app: FastAPI) -> ExclusionService:
    service = getattr(fastapi_app.state, "exclusions", None)
    if not isinstance(service, ExclusionService):
        raise RuntimeError("Exclusion service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/library/{entity_type}")
    async def library_query(request: Request, entity_type: str) -> JSONResponse:
        engine = get_query_engine(fastapi_app)
        payload = await _json_body(request)
        user_id, role = _identity(request)
        payload["user_id"] = user_id
        payload["role"] = role
        payload.pop("userId", None)
        if "per_page" not in payload and "perPage" not in payload:
            payload["per_page"] = settings.default_page_size
        try:
            spec = QuerySpec.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc

        ids_only = _coerce_bool(request.query_params.get("ids"))
        try:
            if ids_only:
                result = await engine.execute_ids(entity_type, spec)
            else:
                result = await engine.execute(entity_type, spec)
        except FilterValidationError as exc:
            raise HTTPException(
                status_code=400, detail={"field": exc.field, "message": exc.message}
            ) from exc
        except CacheNotReadyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except QueryTimeoutError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.post("/api/sync/full")
    async def trigger_full_sync() -> JSONResponse:
        scheduler = get_scheduler(fastapi_app)
        started = scheduler.trigger_full_sync()
        return _trigger_response(started, scheduler)

    @fastapi_app.post("/api/sync/incremental")
    async def trigger_incremental_sync(request: Request) -> JSONResponse:
        scheduler = get_scheduler(fastapi_app)
        since = request.query_params.get("since") or None
        started = scheduler.trigger_incremental_sync(since)
        return _trigger_response(started, scheduler)

    @fastapi_app.get("/api/sync/status")
    async def sync_status() -> JSONResponse:
        scheduler = get_scheduler(fastapi_app)
        return JSONResponse(scheduler.get_sync_status().to_payload())

    @fastapi_app.post("/api/hidden/{entity_type}/{entity_id}")
    async def hide_entity(request: Request, entity_type: str, entity_id: str) -> JSONResponse:
        user_id, _ = _identity(request)
        service = get_exclusions(fastapi_app)
        await _visibility_call(service.hide, user_id, entity_type, entity_id)
        return JSONResponse({"hidden": True, "entityType": entity_type, "id": entity_id})

    @fastapi_app.delete("/api/hidden/{entity_type}/{entity_id}")
    async def unhide_entity(request: Request, entity_type: str, entity_id: str) -> JSONResponse:
        user_id, _ = _identity(request)
        service = get_exclusions(fastapi_app)
        await _visibility_call(service.unhide, user_id, entity_type, entity_id)
        return JSONResponse({"hidden": False, "entityType": entity_type, "id": entity_id})

    @fastapi_app.post("/api/restrictions/{user_id}/{entity_type}/{entity_id}")
    async def restrict_entity(
        request: Request, user_id: int, entity_type: str, entity_id: str
    ) -> JSONResponse:
        _require_admin(request)
        service = get_exclusions(fastapi_app)
        await _visibility_call(service.restrict, user_id, entity_type, entity_id)
        return JSONResponse(
            {"restricted": True, "userId": user_id, "entityType": entity_type, "id": entity_id}
        )

    @fastapi_app.delete("/api/restrictions/{user_id}/{entity_type}/{entity_id}")
    async def unrestrict_entity(
        request: Request, user_id: int, entity_type: str, entity_id: str
    ) -> JSONResponse:
        _require_admin(request)
        service = get_exclusions(fastapi_app)
        await _visibility_call(service.unrestrict, user_id, entity_type, entity_id)
        return JSONResponse(
            {"restricted": False, "userId": user_id, "entityType": entity_type, "id": entity_id}
        )


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _identity(request: Request) -> tuple[int, str]:
    """Read the caller identity injected by the fronting auth layer."""

    raw_user = request.headers.get("x-user-id", "").strip()
    user_id = _coerce_int(raw_user, default=0)
    if user_id is None:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    role = request.headers.get("x-user-role", "").strip().upper() or "USER"
    if role not in {"USER", "ADMIN"}:
        raise HTTPException(status_code=400, detail="Invalid X-User-Role header")
    return user_id, role


def _require_admin(request: Request) -> None:
    _, role = _identity(request)
    if role != "ADMIN":
        raise HTTPException(status_code=403, detail="Administrator role required")


async def _visibility_call(method, user_id: int, entity_type: str, entity_id: str) -> None:
    try:
        await method(user_id, entity_type, entity_id)
    except FilterValidationError as exc:
        raise HTTPException(
            status_code=400, detail={"field": exc.field, "message": exc.message}
        ) from exc


def _trigger_response(started: bool, scheduler: SyncScheduler) -> JSONResponse:
    status = scheduler.get_sync_status().to_payload()
    if not started:
        logger.info("Sync trigger ignored, a sync is already running")
        return JSONResponse(
            {"started": False, "reason": "already running", "status": status},
            status_code=409,
        )
    return JSONResponse({"started": True, "status": status}, status_code=202)


def _coerce_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_int(value: Any, *, default: int | None = None) -> int | None:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
