"""
Connection wrappers handed to database nodes.

Each wrapper connects lazily on first use and can be disconnected and
reused; database nodes disconnect in a `finally` after every query.
Blocking drivers (PyMySQL, PyMongo) run in a worker thread.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg
import pymongo
import pymysql
import pymysql.cursors
import redis.asyncio as aioredis
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Driver values (Decimal, datetime, ObjectId, ...) to JSON-safe values."""
    return json.loads(json.dumps(value, default=str))


@dataclass
class QueryResult:
    """Rows of a statement that returns rows, else only the affected row count."""
    rows: Optional[List[Dict[str, Any]]]
    row_count: int


class PostgresCredential:
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._connection: Optional[psycopg.AsyncConnection] = None

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await psycopg.AsyncConnection.connect(
                host=self.config.get("host"),
                port=self.config.get("port", 5432),
                dbname=self.config.get("database"),
                user=self.config.get("user"),
                password=self.config.get("password"),
                sslmode="require" if self.config.get("ssl") else "prefer",
                autocommit=True,
                row_factory=dict_row,
            )

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        await self.connect()
        async with self._connection.cursor() as cursor:
            await cursor.execute(sql, params)
            if cursor.description is None:
                return QueryResult(rows=None, row_count=cursor.rowcount)
            rows = await cursor.fetchall()
            return QueryResult(rows=to_jsonable(rows), row_count=cursor.rowcount)

    async def disconnect(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None


class MySQLCredential:
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._connection: Optional[pymysql.connections.Connection] = None

    def _connect_sync(self) -> pymysql.connections.Connection:
        return pymysql.connect(
            host=self.config.get("host"),
            port=int(self.config.get("port", 3306)),
            database=self.config.get("database"),
            user=self.config.get("user"),
            password=self.config.get("password") or "",
            cursorclass=pymysql.cursors.DictCursor,
            autocommit=True,
        )

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await asyncio.to_thread(self._connect_sync)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[Any, Any]:
        """Returns `(rows, fields)` for row-returning statements, `(result header, None)` otherwise."""
        await self.connect()

        def _run() -> Tuple[Any, Any]:
            with self._connection.cursor() as cursor:
                affected = cursor.execute(sql, params)
                if cursor.description is None:
                    return {"affectedRows": affected, "insertId": cursor.lastrowid}, None
                fields = [column[0] for column in cursor.description]
                return to_jsonable(list(cursor.fetchall())), fields

        return await asyncio.to_thread(_run)

    async def disconnect(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await asyncio.to_thread(connection.close)


class MongoDBCredential:
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.db_name = config.get("database")
        self._client: Optional[pymongo.MongoClient] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = await asyncio.to_thread(pymongo.MongoClient, self.config.get("connectionString"))

    async def get_db(self):
        await self.connect()
        return self._client[self.db_name]

    async def collection(self, name: str):
        """A PyMongo collection; its methods block, call them through asyncio.to_thread."""
        db = await self.get_db()
        return db[name]

    async def disconnect(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)


class RedisCredential:
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._client: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.Redis(
                host=self.config.get("host", "localhost"),
                port=int(self.config.get("port", 6379)),
                password=self.config.get("password") or None,
                db=int(self.config.get("database") or 0),
                decode_responses=True,
            )

    async def get(self, key: str) -> Optional[str]:
        await self.connect()
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> Any:
        await self.connect()
        return await self._client.set(key, value)

    async def disconnect(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()


CredentialClient = Any

CLIENT_TYPES = {
    "postgres": PostgresCredential,
    "mysql": MySQLCredential,
    "mongodb": MongoDBCredential,
    "redis": RedisCredential,
}
