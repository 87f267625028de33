"""Route combined catalog requests back to the addon that owns them."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Sequence

from ..models import CatalogRegistration, UpstreamCatalog
from ..utils import addon_base_url, inner_id_fragment, shuffled
from .addons import AddonClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedCatalog:
    """The registration and inner catalog a composite id points at."""

    registration: CatalogRegistration
    catalog: UpstreamCatalog

    @property
    def inner_id(self) -> str:
        return self.catalog.id

    @property
    def endpoint(self) -> str:
        return addon_base_url(self.registration.manifest_url)


def empty_catalog() -> dict[str, list[dict[str, Any]]]:
    return {"metas": []}


class CatalogRouter:
    """Resolves composite catalog ids and proxies the upstream catalog."""

    def __init__(
        self, addon_client: AddonClient, *, rng: random.Random | None = None
    ) -> None:
        self._addons = addon_client
        self._rng = rng

    @staticmethod
    def resolve(
        registrations: Sequence[CatalogRegistration],
        content_type: str,
        composite_id: str,
    ) -> ResolvedCatalog | None:
        """Find the first registration and inner catalog matching the id.

        An inner catalog matches when it has the requested type and its id
        is contained in whatever follows ``{addon_id}-``. Registrations are
        tried in the order given and the first hit wins.
        """

        for registration in registrations:
            fragment = inner_id_fragment(composite_id, registration.addon_id)
            if fragment is None:
                continue
            for inner in registration.original_manifest.catalogs:
                if inner.type == content_type and inner.id in fragment:
                    return ResolvedCatalog(registration=registration, catalog=inner)
        return None

    async def route(
        self,
        registrations: Sequence[CatalogRegistration],
        content_type: str,
        composite_id: str,
        *,
        extra: str | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Return ``{"metas": [...]}`` for a combined catalog request."""

        resolved = self.resolve(registrations, content_type, composite_id)
        if resolved is None:
            logger.info(
                "No matching catalog found for catalogId: %s, type: %s",
                composite_id,
                content_type,
            )
            return empty_catalog()

        metas = await self._addons.fetch_catalog(
            resolved.endpoint, content_type, resolved.inner_id, extra=extra
        )
        if not metas:
            return empty_catalog()

        source = resolved.registration.display_name
        for meta in metas:
            meta["sourceAddon"] = source

        if resolved.registration.randomized and len(metas) > 1:
            metas = shuffled(metas, self._rng)
        return {"metas": metas}
