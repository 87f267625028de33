"""Persistence of users and their registered catalog addons."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CatalogRecord, UserConfig
from ..exceptions import (
    CatalogNotFoundError,
    DuplicateCatalogError,
    InvalidManifestError,
    UserExistsError,
    UserNotFoundError,
)
from ..models import CatalogRegistration, CatalogStatus, UpstreamManifest
from .addons import AddonClient

logger = logging.getLogger(__name__)


class RegistrationService:
    """Reads and edits the catalog registrations of each user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        addon_client: AddonClient,
    ) -> None:
        self._session_factory = session_factory
        self._addons = addon_client

    async def create_user(self, user_id: str) -> None:
        async with self._session_factory() as session:
            if await self._user_exists(session, user_id):
                raise UserExistsError(f"User {user_id} already exists")
            session.add(UserConfig(user_id=user_id))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise UserExistsError(f"User {user_id} already exists") from exc
        logger.info("Created user %s", user_id)

    async def user_exists(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            return await self._user_exists(session, user_id)

    async def active_registrations(self, user_id: str) -> list[CatalogRegistration]:
        """Return the user's active registrations ordered by ``order``.

        Raises ``UserNotFoundError`` when the user is unknown.
        """

        return await self._load(user_id, status="active")

    async def list_catalogs(self, user_id: str) -> list[CatalogRegistration]:
        """Return every registration of the user regardless of status."""

        return await self._load(user_id)

    async def add_catalog(
        self, user_id: str, manifest_url: str
    ) -> CatalogRegistration:
        """Fetch ``manifest_url`` and append it to the user's registrations."""

        async with self._session_factory() as session:
            if not await self._user_exists(session, user_id):
                raise UserNotFoundError(f"User {user_id} not found")
            duplicate = await session.scalar(
                select(CatalogRecord.id).where(
                    CatalogRecord.user_id == user_id,
                    CatalogRecord.manifest_url == manifest_url,
                )
            )
        if duplicate is not None:
            raise DuplicateCatalogError("This catalog is already added")

        manifest = await self._addons.fetch_manifest(manifest_url)
        if not manifest.provides_catalogs():
            raise InvalidManifestError(
                "This addon doesn't provide catalog resources"
            )

        async with self._session_factory() as session:
            max_order = await session.scalar(
                select(func.max(CatalogRecord.order)).where(
                    CatalogRecord.user_id == user_id
                )
            )
            record = CatalogRecord(
                user_id=user_id,
                manifest_url=manifest_url,
                name=manifest.name or manifest.id,
                description=manifest.description or "",
                original_manifest=manifest.to_document(),
                status="active",
                randomized=False,
                order=(max_order if max_order is not None else -1) + 1,
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateCatalogError("This catalog is already added") from exc
            logger.info(
                "User %s registered %s (%s)", user_id, manifest.id, manifest_url
            )
            return self._to_registration(record, manifest)

    async def update_catalog(
        self,
        user_id: str,
        catalog_id: int,
        *,
        name: str | None = None,
        status: CatalogStatus | None = None,
        randomized: bool | None = None,
    ) -> CatalogRegistration:
        async with self._session_factory() as session:
            record = await self._owned_record(session, user_id, catalog_id)
            if name is not None:
                record.name = name
            if status is not None:
                record.status = status
            if randomized is not None:
                record.randomized = randomized
            record.updated_at = datetime.utcnow()
            registration = self._record_to_registration(record)
            if registration is None:
                await session.rollback()
                raise InvalidManifestError(
                    f"Stored manifest for catalog {catalog_id} is invalid"
                )
            await session.commit()
        return registration

    async def reorder(self, user_id: str, catalog_ids: Sequence[int]) -> None:
        """Set ``order`` to each id's position in ``catalog_ids``."""

        async with self._session_factory() as session:
            if not await self._user_exists(session, user_id):
                raise UserNotFoundError(f"User {user_id} not found")
            result = await session.execute(
                select(CatalogRecord).where(CatalogRecord.user_id == user_id)
            )
            records = {record.id: record for record in result.scalars()}
            unknown = [cid for cid in catalog_ids if cid not in records]
            if unknown:
                raise ValueError("Some catalogs don't belong to this user")
            if len(set(catalog_ids)) != len(catalog_ids):
                raise ValueError("Catalog ids must not repeat")
            now = datetime.utcnow()
            for position, catalog_id in enumerate(catalog_ids):
                record = records[catalog_id]
                record.order = position
                record.updated_at = now
            await session.commit()

    async def remove_catalog(self, user_id: str, catalog_id: int) -> None:
        async with self._session_factory() as session:
            record = await self._owned_record(session, user_id, catalog_id)
            await session.delete(record)
            await session.commit()
        logger.info("User %s removed catalog %s", user_id, catalog_id)

    async def _load(
        self, user_id: str, *, status: CatalogStatus | None = None
    ) -> list[CatalogRegistration]:
        async with self._session_factory() as session:
            if not await self._user_exists(session, user_id):
                raise UserNotFoundError(f"User {user_id} not found")
            stmt = select(CatalogRecord).where(CatalogRecord.user_id == user_id)
            if status is not None:
                stmt = stmt.where(CatalogRecord.status == status)
            stmt = stmt.order_by(CatalogRecord.order, CatalogRecord.id)
            result = await session.execute(stmt)
            records = result.scalars().all()

        registrations: list[CatalogRegistration] = []
        for record in records:
            registration = self._record_to_registration(record)
            if registration is not None:
                registrations.append(registration)
        return registrations

    @staticmethod
    async def _user_exists(session: AsyncSession, user_id: str) -> bool:
        found = await session.scalar(
            select(UserConfig.id).where(UserConfig.user_id == user_id)
        )
        return found is not None

    async def _owned_record(
        self, session: AsyncSession, user_id: str, catalog_id: int
    ) -> CatalogRecord:
        record = await session.scalar(
            select(CatalogRecord).where(
                CatalogRecord.id == catalog_id,
                CatalogRecord.user_id == user_id,
            )
        )
        if record is None:
            raise CatalogNotFoundError("Catalog not found or unauthorized")
        return record

    def _record_to_registration(
        self, record: CatalogRecord
    ) -> CatalogRegistration | None:
        try:
            manifest = UpstreamManifest.model_validate(record.original_manifest)
        except ValidationError as exc:
            logger.warning(
                "Stored manifest for catalog %s of user %s is invalid: %s",
                record.id,
                record.user_id,
                exc,
            )
            return None
        return self._to_registration(record, manifest)

    @staticmethod
    def _to_registration(
        record: CatalogRecord, manifest: UpstreamManifest
    ) -> CatalogRegistration:
        return CatalogRegistration(
            manifest_url=record.manifest_url,
            display_name=record.name,
            original_manifest=manifest,
            status="active" if record.status == "active" else "inactive",
            randomized=bool(record.randomized),
            order=record.order,
            record_id=record.id,
            description=record.description or "",
        )
