"""
SQLAlchemy implementation of the DataAccess port.

Each call runs in its own short transaction on a pooled connection.
Driver and SQL errors surface as TransientStoreException.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import Table, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import Executable

from ...application.interfaces import DataAccess
from ...domain.exceptions import TransientStoreException

logger = logging.getLogger(__name__)


class SQLAlchemyDataAccess(DataAccess):
    """
    DataAccess backed by an async SQLAlchemy engine.

    Works with PostgreSQL (asyncpg) in production and SQLite (aiosqlite)
    for local runs and tests.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncConnection]:
        try:
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error(f"Database {operation} failed: {e}")
            raise TransientStoreException(operation, str(e), e) from e

    @staticmethod
    async def _run(conn: AsyncConnection, statement: Executable, params: Optional[Mapping[str, Any]]):
        if params is None:
            return await conn.execute(statement)
        return await conn.execute(statement, dict(params))

    async def query(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        async with self._transaction("query") as conn:
            result = await self._run(conn, statement, params)
            return [dict(row) for row in result.mappings().all()]

    async def query_one(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        async with self._transaction("query_one") as conn:
            result = await self._run(conn, statement, params)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def insert(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> int:
        async with self._transaction("insert") as conn:
            result = await self._run(conn, statement, params)
            if result.is_insert and result.inserted_primary_key:
                return int(result.inserted_primary_key[0])
            return int(result.lastrowid)

    async def execute(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> int:
        async with self._transaction("execute") as conn:
            result = await self._run(conn, statement, params)
            return result.rowcount

    async def table_exists(self, table_name: str) -> bool:
        async with self._transaction("table_exists") as conn:
            return await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).has_table(table_name)
            )

    async def ensure_table(self, table: Table) -> None:
        async with self._transaction("ensure_table") as conn:
            await conn.run_sync(table.create, checkfirst=True)
        logger.info(f"Ensured table {table.name} exists")
