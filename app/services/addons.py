"""HTTP client for talking to upstream Stremio catalog addons."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..exceptions import InvalidManifestError
from ..models import UpstreamManifest

logger = logging.getLogger(__name__)


class AddonClient:
    """Fetches manifests and catalog pages from upstream addons."""

    _CATALOG_PATH = "catalog/{type}/{id}.json"
    _CATALOG_EXTRA_PATH = "catalog/{type}/{id}/{extra}.json"

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._client = http_client

    def catalog_url(
        self,
        endpoint: str,
        content_type: str,
        inner_id: str,
        extra: str | None = None,
    ) -> str:
        """Build the upstream catalog URL below ``endpoint`` (ends with ``/``)."""

        if extra:
            path = self._CATALOG_EXTRA_PATH.format(
                type=content_type, id=inner_id, extra=extra
            )
        else:
            path = self._CATALOG_PATH.format(type=content_type, id=inner_id)
        return f"{endpoint}{path}"

    async def fetch_catalog(
        self,
        endpoint: str,
        content_type: str,
        inner_id: str,
        *,
        extra: str | None = None,
    ) -> list[dict[str, Any]] | None:
        """Return the ``metas`` list of an upstream catalog, or ``None``.

        Any failure (transport error, non-2xx status, malformed body) is
        logged and reported as ``None``; nothing is raised to the caller.
        """

        url = self.catalog_url(endpoint, content_type, inner_id, extra)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Upstream catalog %s answered %s", url, exc.response.status_code
            )
            return None
        except httpx.HTTPError as exc:
            logger.warning("Upstream catalog request to %s failed: %s", url, exc)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Upstream catalog %s returned invalid JSON", url)
            return None

        metas = payload.get("metas") if isinstance(payload, dict) else None
        if not isinstance(metas, list):
            logger.warning("Upstream catalog %s returned no metas list", url)
            return None
        return [meta for meta in metas if isinstance(meta, dict)]

    async def fetch_manifest(self, manifest_url: str) -> UpstreamManifest:
        """Download and validate an addon manifest."""

        try:
            response = await self._client.get(manifest_url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise InvalidManifestError(
                f"Failed to fetch manifest: {status} {exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            raise InvalidManifestError(f"Failed to fetch manifest: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidManifestError("Manifest is not valid JSON") from exc
        if not isinstance(data, dict):
            raise InvalidManifestError("Invalid manifest structure")

        try:
            return UpstreamManifest.model_validate(data)
        except ValidationError as exc:
            raise InvalidManifestError("Invalid manifest structure") from exc
