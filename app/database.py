"""Database utilities for the AIOCatalogs service."""

from __future__ import annotations

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on old tables."""

        inspector = inspect(sync_connection)
        if "catalogs" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("catalogs")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "description",
            "ALTER TABLE catalogs ADD COLUMN description TEXT DEFAULT ''",
            "UPDATE catalogs SET description = '' WHERE description IS NULL",
        )
        _ensure_column(
            "randomized",
            "ALTER TABLE catalogs ADD COLUMN randomized BOOLEAN DEFAULT 0",
            "UPDATE catalogs SET randomized = 0 WHERE randomized IS NULL",
        )
        _ensure_column(
            "order",
            'ALTER TABLE catalogs ADD COLUMN "order" INTEGER DEFAULT 0',
            'UPDATE catalogs SET "order" = id',
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
