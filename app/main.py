"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import json
import logging
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import quote

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .exceptions import (
    CatalogNotFoundError,
    DuplicateCatalogError,
    InvalidManifestError,
    UserExistsError,
    UserNotFoundError,
)
from .models import CatalogCreate, CatalogOrder, CatalogUpdate, UserCreate
from .services.addons import AddonClient
from .services.manifest import ManifestBuilder
from .services.registrations import RegistrationService
from .services.router import CatalogRouter

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
NO_CACHE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}
ADDON_HEADERS: dict[str, str] = {**NO_CACHE_HEADERS, **CORS_HEADERS}

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    upstream_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.upstream_timeout_seconds,
                connect=settings.upstream_connect_timeout_seconds,
            ),
            follow_redirects=True,
            headers={"Accept": "application/json"},
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    addon_client = AddonClient(upstream_client)
    fastapi_app.state.database = database
    fastapi_app.state.addon_client = addon_client
    fastapi_app.state.registration_service = RegistrationService(
        database.session_factory, addon_client
    )
    fastapi_app.state.catalog_router = CatalogRouter(addon_client)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Combine Stremio catalog addons into one unified manifest",
        version=settings.addon_version,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    fastapi_app.state.manifest_builder = ManifestBuilder(settings)

    register_routes(fastapi_app)
    return fastapi_app


def get_registration_service(app: FastAPI) -> RegistrationService:
    service = getattr(app.state, "registration_service", None)
    if not isinstance(service, RegistrationService):
        raise RuntimeError("Registration service not initialised")
    return service


def get_catalog_router(app: FastAPI) -> CatalogRouter:
    router = getattr(app.state, "catalog_router", None)
    if not isinstance(router, CatalogRouter):
        raise RuntimeError("Catalog router not initialised")
    return router


def get_addon_client(app: FastAPI) -> AddonClient:
    client = getattr(app.state, "addon_client", None)
    if not isinstance(client, AddonClient):
        raise RuntimeError("Addon client not initialised")
    return client


def get_manifest_builder(app: FastAPI) -> ManifestBuilder:
    builder = getattr(app.state, "manifest_builder", None)
    if not isinstance(builder, ManifestBuilder):
        builder = ManifestBuilder(settings)
        app.state.manifest_builder = builder
    return builder


def register_routes(fastapi_app: FastAPI) -> None:
    register_api_routes(fastapi_app)
    register_addon_routes(fastapi_app)


def register_addon_routes(fastapi_app: FastAPI) -> None:
    async def _catalog_endpoint(
        user_id: str,
        content_type: str,
        catalog_id: str,
        extra: str | None = None,
    ) -> JSONResponse:
        if not (user_id.strip() and content_type.strip() and catalog_id.strip()):
            raise HTTPException(
                status_code=400,
                detail="Missing required parameters",
                headers=CORS_HEADERS,
            )
        service = get_registration_service(fastapi_app)
        router = get_catalog_router(fastapi_app)
        try:
            registrations = await service.active_registrations(user_id)
            payload = await router.route(
                registrations, content_type, catalog_id, extra=extra
            )
        except UserNotFoundError as exc:
            raise HTTPException(
                status_code=404, detail="User not found", headers=CORS_HEADERS
            ) from exc
        except Exception:
            logger.exception(
                "Error handling catalog request %s/%s for user %s",
                content_type,
                catalog_id,
                user_id,
            )
            return JSONResponse(
                {"error": "Internal server error", "metas": []},
                status_code=500,
                headers=ADDON_HEADERS,
            )
        return JSONResponse(payload, headers=ADDON_HEADERS)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/manifest.json")
    async def default_manifest() -> JSONResponse:
        builder = get_manifest_builder(fastapi_app)
        return JSONResponse(builder.default(), headers=ADDON_HEADERS)

    @fastapi_app.get("/{user_id}/manifest.json")
    async def user_manifest(user_id: str) -> JSONResponse:
        if not user_id.strip():
            raise HTTPException(
                status_code=400, detail="User ID is required", headers=CORS_HEADERS
            )
        builder = get_manifest_builder(fastapi_app)
        service = get_registration_service(fastapi_app)
        try:
            registrations = await service.active_registrations(user_id)
            manifest = builder.for_user(user_id, registrations)
        except UserNotFoundError:
            logger.info("Manifest requested for unknown user %s", user_id)
            manifest = builder.user_not_found(user_id)
        except Exception:
            logger.exception("Error generating manifest for user %s", user_id)
            return JSONResponse(
                {"error": "Internal server error"},
                status_code=500,
                headers=CORS_HEADERS,
            )
        return JSONResponse(manifest, headers=ADDON_HEADERS)

    @fastapi_app.get("/{user_id}/catalog/{content_type}/{catalog_id}.json")
    async def catalog(user_id: str, content_type: str, catalog_id: str) -> JSONResponse:
        return await _catalog_endpoint(user_id, content_type, catalog_id)

    @fastapi_app.get("/{user_id}/catalog/{content_type}/{catalog_id}/{extra}.json")
    async def catalog_with_extra(
        user_id: str, content_type: str, catalog_id: str, extra: str, request: Request
    ) -> JSONResponse:
        return await _catalog_endpoint(
            user_id, content_type, catalog_id, extra=_raw_extra(request, extra) or None
        )

    @fastapi_app.get("/{user_id}/catalog/{remainder:path}")
    async def malformed_catalog(user_id: str, remainder: str) -> JSONResponse:
        raise HTTPException(
            status_code=400,
            detail="Missing required parameters",
            headers=CORS_HEADERS,
        )


def _raw_extra(request: Request, extra: str) -> str:
    """Return the extra segment still percent-encoded as the client sent it.

    Starlette decodes path parameters, which would turn an encoded ``&``
    inside a value into a separator once forwarded upstream.
    """

    raw_path = request.scope.get("raw_path")
    if isinstance(raw_path, bytes):
        segment = raw_path.split(b"?", 1)[0].rsplit(b"/", 1)[-1].decode("latin-1")
        if segment.endswith(".json"):
            return segment[: -len(".json")]
    return quote(extra, safe="=&")


def register_api_routes(fastapi_app: FastAPI) -> None:
    async def _read_body(request: Request, model: type[BaseModel]) -> Any:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc

    @fastapi_app.post("/api/users", status_code=201)
    async def create_user(request: Request) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        body: UserCreate = await _read_body(request, UserCreate)
        user_id = body.user_id or secrets.token_urlsafe(12)
        try:
            await service.create_user(user_id)
        except UserExistsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"userId": user_id}

    @fastapi_app.post("/api/manifests/preview")
    async def preview_manifest(request: Request) -> dict[str, Any]:
        addons = get_addon_client(fastapi_app)
        body: CatalogCreate = await _read_body(request, CatalogCreate)
        try:
            manifest = await addons.fetch_manifest(str(body.manifest_url))
        except InvalidManifestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"manifest": manifest.to_document(), "isValid": True}

    @fastapi_app.get("/api/users/{user_id}")
    async def get_user(user_id: str) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        if not await service.user_exists(user_id):
            raise HTTPException(status_code=404, detail="User not found")
        return {"userId": user_id, "exists": True}

    @fastapi_app.get("/api/users/{user_id}/catalogs")
    async def list_catalogs(user_id: str) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        try:
            registrations = await service.list_catalogs(user_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        return {"catalogs": [entry.to_payload() for entry in registrations]}

    @fastapi_app.post("/api/users/{user_id}/catalogs", status_code=201)
    async def add_catalog(user_id: str, request: Request) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        body: CatalogCreate = await _read_body(request, CatalogCreate)
        try:
            registration = await service.add_catalog(user_id, str(body.manifest_url))
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except DuplicateCatalogError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except InvalidManifestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "catalog": registration.to_payload()}

    @fastapi_app.put("/api/users/{user_id}/catalogs/order")
    async def reorder_catalogs(user_id: str, request: Request) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        body: CatalogOrder = await _read_body(request, CatalogOrder)
        try:
            await service.reorder(user_id, body.catalog_ids)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True}

    @fastapi_app.patch("/api/users/{user_id}/catalogs/{catalog_id}")
    async def update_catalog(
        user_id: str, catalog_id: int, request: Request
    ) -> dict[str, Any]:
        service = get_registration_service(fastapi_app)
        body: CatalogUpdate = await _read_body(request, CatalogUpdate)
        try:
            registration = await service.update_catalog(
                user_id,
                catalog_id,
                name=body.name,
                status=body.status,
                randomized=body.randomized,
            )
        except CatalogNotFoundError as exc:
            raise HTTPException(
                status_code=404, detail="Catalog not found or unauthorized"
            ) from exc
        except InvalidManifestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "catalog": registration.to_payload()}

    @fastapi_app.delete("/api/users/{user_id}/catalogs/{catalog_id}")
    async def remove_catalog(user_id: str, catalog_id: int) -> Response:
        service = get_registration_service(fastapi_app)
        try:
            await service.remove_catalog(user_id, catalog_id)
        except CatalogNotFoundError as exc:
            raise HTTPException(
                status_code=404, detail="Catalog not found or unauthorized"
            ) from exc
        return Response(status_code=204)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
