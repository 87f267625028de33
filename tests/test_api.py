from __future__ import annotations

from typing import Any, cast

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.exceptions import (
    CatalogNotFoundError,
    DuplicateCatalogError,
    UserExistsError,
    UserNotFoundError,
)
from app.main import register_routes
from app.models import CatalogRegistration, UpstreamManifest
from app.services.addons import AddonClient
from app.services.registrations import RegistrationService
from app.services.router import CatalogRouter


def _registration(
    addon_id: str, display_name: str, *, randomized: bool = False, record_id: int = 1
) -> CatalogRegistration:
    manifest = UpstreamManifest.model_validate(
        {
            "id": addon_id,
            "resources": ["catalog"],
            "types": ["movie"],
            "catalogs": [{"type": "movie", "id": "top", "name": "Top"}],
        }
    )
    return CatalogRegistration(
        manifest_url=f"https://{addon_id}.example.com/manifest.json",
        display_name=display_name,
        original_manifest=manifest,
        randomized=randomized,
        record_id=record_id,
    )


class DummyRegistrationService(RegistrationService):
    """In-memory stand-in for the database-backed service."""

    def __init__(self, users: dict[str, list[CatalogRegistration]]) -> None:
        # Deliberately skip super().__init__ to avoid touching a database.
        self.users = users
        self.fail_with: Exception | None = None
        self.reordered: list[int] | None = None

    async def create_user(self, user_id: str) -> None:
        if user_id in self.users:
            raise UserExistsError(f"User {user_id} already exists")
        self.users[user_id] = []

    async def user_exists(self, user_id: str) -> bool:
        return user_id in self.users

    async def active_registrations(self, user_id: str) -> list[CatalogRegistration]:
        if self.fail_with is not None:
            raise self.fail_with
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        return [entry for entry in self.users[user_id] if entry.is_active]

    async def list_catalogs(self, user_id: str) -> list[CatalogRegistration]:
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        return list(self.users[user_id])

    async def add_catalog(self, user_id: str, manifest_url: str) -> CatalogRegistration:
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        if any(entry.manifest_url == manifest_url for entry in self.users[user_id]):
            raise DuplicateCatalogError("This catalog is already added")
        registration = _registration("com.added", "Added", record_id=100)
        registration.manifest_url = manifest_url
        self.users[user_id].append(registration)
        return registration

    async def update_catalog(self, user_id, catalog_id, *, name=None, status=None, randomized=None):
        for entry in self.users.get(user_id, []):
            if entry.record_id == catalog_id:
                if name is not None:
                    entry.display_name = name
                if status is not None:
                    entry.status = status
                if randomized is not None:
                    entry.randomized = randomized
                return entry
        raise CatalogNotFoundError(catalog_id)

    async def reorder(self, user_id: str, catalog_ids) -> None:
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        known = {entry.record_id for entry in self.users[user_id]}
        if any(cid not in known for cid in catalog_ids):
            raise ValueError("Some catalogs don't belong to this user")
        self.reordered = list(catalog_ids)

    async def remove_catalog(self, user_id: str, catalog_id: int) -> None:
        entries = self.users.get(user_id, [])
        for entry in entries:
            if entry.record_id == catalog_id:
                entries.remove(entry)
                return
        raise CatalogNotFoundError(catalog_id)


class DummyAddonClient(AddonClient):
    def __init__(self, metas: list[dict[str, Any]] | None) -> None:
        super().__init__(cast(httpx.AsyncClient, object()))
        self.metas = metas
        self.calls: list[tuple[str, str, str, str | None]] = []

    async def fetch_catalog(self, endpoint, content_type, inner_id, *, extra=None):
        self.calls.append((endpoint, content_type, inner_id, extra))
        if self.metas is None:
            return None
        return [dict(meta) for meta in self.metas]


def _client(
    service: DummyRegistrationService, addon_client: AddonClient | None = None
) -> tuple[TestClient, Any]:
    addons = addon_client or DummyAddonClient([{"id": "tt1", "type": "movie", "name": "One"}])
    app = FastAPI()
    register_routes(app)
    app.state.registration_service = service
    app.state.addon_client = addons
    app.state.catalog_router = CatalogRouter(addons)
    return TestClient(app), addons


def test_user_manifest_combines_active_registrations() -> None:
    service = DummyRegistrationService(
        {
            "user-1": [
                _registration("com.alpha", "Alpha Picks"),
                _registration("com.beta", "Beta Picks", record_id=2),
            ]
        }
    )
    client, _ = _client(service)

    response = client.get("/user-1/manifest.json")

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == "aiocatalogs-unified-user-1"
    assert payload["resources"] == ["catalog"]
    assert [entry["id"] for entry in payload["catalogs"]] == ["com.alpha-top", "com.beta-top"]
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate, max-age=0"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, OPTIONS"


def test_user_manifest_for_unknown_user_is_configuration_variant() -> None:
    client, _ = _client(DummyRegistrationService({}))

    response = client.get("/ghost/manifest.json")

    assert response.status_code == 200
    payload = response.json()
    assert payload["catalogs"] == []
    assert payload["behaviorHints"]["configurationRequired"] is True
    assert "not found" in payload["name"].lower()


def test_user_manifest_without_active_catalogs() -> None:
    inactive = _registration("com.alpha", "Alpha")
    inactive.status = "inactive"
    client, _ = _client(DummyRegistrationService({"user-1": [inactive]}))

    payload = client.get("/user-1/manifest.json").json()

    assert payload["resources"] == []
    assert payload["catalogs"] == []
    assert payload["behaviorHints"] == {"configurable": True, "configurationRequired": True}


def test_user_manifest_internal_error_is_generic() -> None:
    service = DummyRegistrationService({"user-1": []})
    service.fail_with = RuntimeError("database exploded")
    client, _ = _client(service)

    response = client.get("/user-1/manifest.json")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_default_manifest() -> None:
    client, _ = _client(DummyRegistrationService({}))

    response = client.get("/manifest.json")

    assert response.status_code == 200
    assert response.json()["behaviorHints"]["configurationRequired"] is True


def test_catalog_endpoint_routes_and_tags() -> None:
    service = DummyRegistrationService(
        {
            "user-1": [
                _registration("com.alpha", "Alpha Picks"),
                _registration("com.beta", "Beta Picks", record_id=2),
            ]
        }
    )
    client, addons = _client(service)

    response = client.get("/user-1/catalog/movie/com.beta-top.json")

    assert response.status_code == 200
    assert response.json() == {
        "metas": [{"id": "tt1", "type": "movie", "name": "One", "sourceAddon": "Beta Picks"}]
    }
    assert addons.calls == [("https://com.beta.example.com/", "movie", "top", None)]
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate, max-age=0"
    assert response.headers["access-control-allow-origin"] == "*"


def test_catalog_endpoint_forwards_extra() -> None:
    service = DummyRegistrationService({"user-1": [_registration("com.alpha", "Alpha")]})
    client, addons = _client(service)

    response = client.get("/user-1/catalog/movie/com.alpha-top/skip=100.json")

    assert response.status_code == 200
    assert addons.calls == [("https://com.alpha.example.com/", "movie", "top", "skip=100")]


def test_catalog_endpoint_unknown_catalog_is_empty() -> None:
    service = DummyRegistrationService({"user-1": [_registration("com.alpha", "Alpha")]})
    client, addons = _client(service)

    response = client.get("/user-1/catalog/series/com.gone-top.json")

    assert response.status_code == 200
    assert response.json() == {"metas": []}
    assert addons.calls == []


def test_catalog_endpoint_upstream_failure_is_empty() -> None:
    service = DummyRegistrationService({"user-1": [_registration("com.alpha", "Alpha")]})
    client, _ = _client(service, DummyAddonClient(None))

    response = client.get("/user-1/catalog/movie/com.alpha-top.json")

    assert response.status_code == 200
    assert response.json() == {"metas": []}


def test_catalog_endpoint_unknown_user_is_404() -> None:
    client, _ = _client(DummyRegistrationService({}))

    response = client.get("/ghost/catalog/movie/com.alpha-top.json")

    assert response.status_code == 404
    assert response.headers["access-control-allow-origin"] == "*"


def test_catalog_endpoint_blank_parameter_is_400() -> None:
    client, _ = _client(DummyRegistrationService({"user-1": []}))

    response = client.get("/user-1/catalog/%20/com.alpha-top.json")

    assert response.status_code == 400


def test_catalog_endpoint_internal_error_is_500() -> None:
    service = DummyRegistrationService({"user-1": []})
    service.fail_with = RuntimeError("boom")
    client, _ = _client(service)

    response = client.get("/user-1/catalog/movie/com.alpha-top.json")

    assert response.status_code == 500
    assert "boom" not in response.text
    assert response.json()["metas"] == []


def test_api_user_lifecycle() -> None:
    service = DummyRegistrationService({})
    client, _ = _client(service)

    created = client.post("/api/users", json={"userId": "user-1"})
    duplicate = client.post("/api/users", json={"userId": "user-1"})
    generated = client.post("/api/users", json={})

    assert created.status_code == 201
    assert created.json() == {"userId": "user-1"}
    assert duplicate.status_code == 409
    assert generated.status_code == 201
    assert generated.json()["userId"] in service.users
    assert client.get("/api/users/user-1").status_code == 200
    assert client.get("/api/users/ghost").status_code == 404


def test_api_catalog_management() -> None:
    service = DummyRegistrationService({"user-1": [_registration("com.alpha", "Alpha")]})
    client, _ = _client(service)

    added = client.post(
        "/api/users/user-1/catalogs",
        json={"manifestUrl": "https://new.example.com/manifest.json"},
    )
    duplicate = client.post(
        "/api/users/user-1/catalogs",
        json={"manifestUrl": "https://new.example.com/manifest.json"},
    )
    invalid = client.post("/api/users/user-1/catalogs", json={"manifestUrl": "not a url"})
    renamed = client.patch(
        "/api/users/user-1/catalogs/1", json={"name": "Renamed", "randomized": True}
    )
    missing = client.patch("/api/users/user-1/catalogs/99", json={"name": "x"})
    reordered = client.put("/api/users/user-1/catalogs/order", json={"catalogIds": [1]})
    foreign = client.put("/api/users/user-1/catalogs/order", json={"catalogIds": [42]})
    listing = client.get("/api/users/user-1/catalogs")
    removed = client.delete("/api/users/user-1/catalogs/1")

    assert added.status_code == 201
    assert added.json()["catalog"]["manifestUrl"] == "https://new.example.com/manifest.json"
    assert duplicate.status_code == 409
    assert invalid.status_code == 400
    assert renamed.status_code == 200
    assert renamed.json()["catalog"]["name"] == "Renamed"
    assert renamed.json()["catalog"]["randomized"] is True
    assert missing.status_code == 404
    assert reordered.status_code == 200
    assert service.reordered == [1]
    assert foreign.status_code == 400
    assert [entry["name"] for entry in listing.json()["catalogs"]] == ["Renamed", "Added"]
    assert removed.status_code == 204
    assert client.get("/api/users/ghost/catalogs").status_code == 404


def test_catalog_endpoint_keeps_extra_encoding_upstream() -> None:
    raw_paths: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raw_paths.append(request.url.raw_path)
        return httpx.Response(200, json={"metas": [{"id": "tt1", "type": "movie"}]})

    addons = AddonClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    service = DummyRegistrationService({"user-1": [_registration("com.alpha", "Alpha")]})
    client, _ = _client(service, addons)

    response = client.get(
        "/user-1/catalog/movie/com.alpha-top/genre=Action%20%26%20Adventure&skip=20.json"
    )

    assert response.status_code == 200
    assert response.json()["metas"][0]["sourceAddon"] == "Alpha"
    assert raw_paths == [b"/catalog/movie/top/genre=Action%20%26%20Adventure&skip=20.json"]


def test_catalog_endpoint_empty_segment_is_400() -> None:
    client, addons = _client(DummyRegistrationService({"user-1": []}))

    empty_id = client.get("/user-1/catalog/movie/.json")
    empty_type = client.get("/user-1/catalog//com.alpha-top.json")

    assert empty_id.status_code == 400
    assert empty_id.headers["access-control-allow-origin"] == "*"
    assert empty_type.status_code == 400
    assert addons.calls == []


def test_api_manifest_preview() -> None:
    manifests = {
        "https://alpha.example.com/manifest.json": {
            "id": "com.alpha",
            "name": "Alpha",
            "resources": ["catalog"],
            "types": ["movie"],
            "catalogs": [{"type": "movie", "id": "top", "name": "Top"}],
        },
        "https://broken.example.com/manifest.json": {"name": "no id"},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        payload = manifests.get(str(request.url))
        if payload is None:
            return httpx.Response(404, request=request)
        return httpx.Response(200, json=payload, request=request)

    service = DummyRegistrationService({})
    addons = AddonClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    client, _ = _client(service, addons)

    preview = client.post(
        "/api/manifests/preview", json={"url": "https://alpha.example.com/manifest.json"}
    )
    broken = client.post(
        "/api/manifests/preview", json={"url": "https://broken.example.com/manifest.json"}
    )
    missing = client.post(
        "/api/manifests/preview", json={"url": "https://gone.example.com/manifest.json"}
    )
    not_a_url = client.post("/api/manifests/preview", json={"url": "nope"})

    assert preview.status_code == 200
    assert preview.json()["isValid"] is True
    assert preview.json()["manifest"]["catalogs"] == [
        {"type": "movie", "id": "top", "name": "Top"}
    ]
    assert broken.status_code == 400
    assert broken.json()["detail"] == "Invalid manifest structure"
    assert missing.status_code == 400
    assert missing.json()["detail"].startswith("Failed to fetch manifest: 404")
    assert not_a_url.status_code == 400
    assert service.users == {}
