"""Combine a user's registered addons into one unified manifest."""

from __future__ import annotations

import logging
import random
from typing import Any, Sequence

from ..config import Settings
from ..models import CatalogRegistration, UpstreamCatalog
from ..utils import composite_catalog_id, shuffled, unique_extend

logger = logging.getLogger(__name__)

DEFAULT_TYPES: tuple[str, ...] = ("movie", "series")


def compose(
    registrations: Sequence[CatalogRegistration],
    *,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Return the catalog-bearing part of the combined manifest.

    ``registrations`` must already contain only active entries sorted by
    ``order``; they are used as given.
    """

    if not registrations:
        return {
            "resources": [],
            "types": [],
            "idPrefixes": [],
            "catalogs": [],
            "behaviorHints": {"configurable": True, "configurationRequired": True},
        }

    types: list[str] = []
    id_prefixes: list[str] = []
    catalogs: list[dict[str, Any]] = []

    for registration in registrations:
        manifest = registration.original_manifest
        unique_extend(types, manifest.types)
        unique_extend(id_prefixes, manifest.id_prefixes)
        for inner in manifest.catalogs:
            catalogs.append(
                _combined_descriptor(registration, inner, rng=rng)
            )

    return {
        "resources": ["catalog"],
        "types": types,
        "idPrefixes": id_prefixes,
        "catalogs": catalogs,
        "behaviorHints": {"configurable": True, "configurationRequired": False},
    }


def _combined_descriptor(
    registration: CatalogRegistration,
    inner: UpstreamCatalog,
    *,
    rng: random.Random | None,
) -> dict[str, Any]:
    descriptor = inner.to_descriptor()
    descriptor["id"] = composite_catalog_id(registration.addon_id, inner.id)
    descriptor["name"] = registration.display_name
    if registration.randomized and inner.genres:
        descriptor["genres"] = shuffled(inner.genres, rng)
    return descriptor


class ManifestBuilder:
    """Wraps composed catalogs in the document-level manifest fields."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def for_user(
        self,
        user_id: str,
        registrations: Sequence[CatalogRegistration],
        *,
        rng: random.Random | None = None,
    ) -> dict[str, Any]:
        """Return the unified manifest served at ``/{user_id}/manifest.json``."""

        count = len(registrations)
        if count:
            description = (
                f"Unified catalog combining {count} addon{'s' if count > 1 else ''}"
            )
        else:
            description = "No active catalogs yet. Add some from the dashboard."
            logger.info("User %s has no active catalogs", user_id)
        manifest = self._envelope(
            manifest_id=f"aiocatalogs-unified-{user_id}",
            name=f"{self._settings.app_name} - Unified",
            description=description,
        )
        manifest.update(compose(registrations, rng=rng))
        return manifest

    def user_not_found(self, user_id: str) -> dict[str, Any]:
        """Return the variant served when ``user_id`` does not resolve."""

        manifest = self._envelope(
            manifest_id=f"aiocatalogs-unified-{user_id}",
            name=f"{self._settings.app_name} - User not found",
            description=(
                "This configuration link is not valid any more. "
                "Create a new one to continue."
            ),
        )
        manifest.update(
            {
                "resources": [],
                "types": [],
                "idPrefixes": [],
                "catalogs": [],
                "behaviorHints": {
                    "configurable": True,
                    "configurationRequired": True,
                },
            }
        )
        return manifest

    def default(self) -> dict[str, Any]:
        """Return the root manifest that asks clients to configure first."""

        manifest = self._envelope(
            manifest_id="aiocatalogs-default",
            name=self._settings.app_name,
            description=self._settings.addon_description,
        )
        manifest.update(
            {
                "resources": ["catalog"],
                "types": list(DEFAULT_TYPES),
                "idPrefixes": [],
                "catalogs": [],
                "behaviorHints": {
                    "configurable": True,
                    "configurationRequired": True,
                },
            }
        )
        return manifest

    def _envelope(
        self, *, manifest_id: str, name: str, description: str
    ) -> dict[str, Any]:
        manifest: dict[str, Any] = {
            "id": manifest_id,
            "version": self._settings.addon_version,
            "name": name,
            "description": description,
        }
        if self._settings.addon_logo_url is not None:
            manifest["logo"] = str(self._settings.addon_logo_url)
        if self._settings.addon_background_url is not None:
            manifest["background"] = str(self._settings.addon_background_url)
        return manifest
