"""Pydantic models describing addon manifests and API payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    field_validator,
)

CatalogStatus = Literal["active", "inactive"]


class UpstreamCatalog(BaseModel):
    """A catalog descriptor declared inside an upstream addon manifest."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    id: str
    name: str = ""
    genres: list[str] | None = None
    extra_options: list[Any] | None = Field(default=None, alias="extra")
    extra_supported: list[str] | None = Field(default=None, alias="extraSupported")

    @field_validator("name", mode="before")
    @classmethod
    def _none_name_is_blank(cls, value: object) -> object:
        return "" if value is None else value

    def to_descriptor(self) -> dict[str, Any]:
        """Return the descriptor exactly as the upstream declared it."""

        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class UpstreamManifest(BaseModel):
    """The subset of a Stremio addon manifest the aggregator relies on.

    Unknown keys are preserved so the manifest can be stored verbatim.
    Missing or ``null`` list fields are treated as empty lists.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    version: str | None = None
    name: str = ""
    description: str = ""
    logo: str | None = None
    resources: list[Any] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    id_prefixes: list[str] = Field(default_factory=list, alias="idPrefixes")
    catalogs: list[UpstreamCatalog] = Field(default_factory=list)

    @field_validator("resources", "types", "id_prefixes", mode="before")
    @classmethod
    def _none_is_empty(cls, value: object) -> object:
        if value is None:
            return []
        return value

    @field_validator("name", "description", mode="before")
    @classmethod
    def _none_text_is_blank(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("catalogs", mode="before")
    @classmethod
    def _drop_non_mapping_catalogs(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, list):
            return [entry for entry in value if isinstance(entry, dict)]
        return value

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Manifest id may not be blank")
        return value

    def provides_catalogs(self) -> bool:
        """Return whether the addon advertises the ``catalog`` resource."""

        for resource in self.resources:
            if resource == "catalog":
                return True
            if isinstance(resource, dict) and resource.get("name") == "catalog":
                return True
        return False

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


@dataclass
class CatalogRegistration:
    """Read-only snapshot of a user's registered addon."""

    manifest_url: str
    display_name: str
    original_manifest: UpstreamManifest
    status: CatalogStatus = "active"
    randomized: bool = False
    order: int = 0
    record_id: int | None = None
    description: str = ""

    @property
    def addon_id(self) -> str:
        return self.original_manifest.id

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "manifestUrl": self.manifest_url,
            "name": self.display_name,
            "description": self.description,
            "status": self.status,
            "randomized": self.randomized,
            "order": self.order,
            "addonId": self.addon_id,
            "catalogCount": len(self.original_manifest.catalogs),
        }


class UserCreate(BaseModel):
    """Body of ``POST /api/users``; a random id is issued when omitted."""

    user_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("userId", "user_id"),
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value


class CatalogCreate(BaseModel):
    """Body of ``POST /api/users/{user_id}/catalogs``."""

    manifest_url: HttpUrl = Field(
        validation_alias=AliasChoices("manifestUrl", "manifest_url", "url")
    )


class CatalogUpdate(BaseModel):
    """Partial update applied to a registration."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    status: CatalogStatus | None = None
    randomized: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value


class CatalogOrder(BaseModel):
    """Full ordering of a user's registrations, first entry first."""

    catalog_ids: list[int] = Field(
        validation_alias=AliasChoices("catalogIds", "catalog_ids")
    )
