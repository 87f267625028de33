"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.models import CatalogRegistration, UpstreamManifest  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def make_registration() -> Callable[..., CatalogRegistration]:
    """Return a factory building registrations from plain manifest dicts."""

    def factory(
        addon_id: str,
        catalogs: list[dict[str, Any]] | None = None,
        *,
        display_name: str = "Picks",
        manifest_url: str | None = None,
        randomized: bool = False,
        order: int = 0,
        **manifest_fields: Any,
    ) -> CatalogRegistration:
        manifest = {
            "id": addon_id,
            "version": "1.0.0",
            "name": addon_id,
            "resources": ["catalog"],
            "types": ["movie"],
            "catalogs": catalogs if catalogs is not None else [],
            **manifest_fields,
        }
        return CatalogRegistration(
            manifest_url=manifest_url or f"https://{addon_id}.example.com/manifest.json",
            display_name=display_name,
            original_manifest=UpstreamManifest.model_validate(manifest),
            randomized=randomized,
            order=order,
        )

    return factory
