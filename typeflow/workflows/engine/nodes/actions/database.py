"""
Database nodes: postgres, mysql, mongodb and redis.

Query, key and value strings may contain `{{ $json.path }}` placeholders,
resolved against the first input item. The client is found by type among
the organization's credentials and is always disconnected afterwards.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Type

import pymongo.results

from typeflow.credentials.clients import (
    MongoDBCredential,
    MySQLCredential,
    PostgresCredential,
    RedisCredential,
    to_jsonable,
)
from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.errors import NodeConfigurationError
from typeflow.workflows.engine.expressions.resolver import interpolate_json_placeholders
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import DatabaseConfig, MongoDBConfig, RedisConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)


def interpolate(template: str, items: List[ExecutionItem]) -> str:
    return interpolate_json_placeholders(template, items[0].json_data if items else {})


class DatabaseNode(BaseNode):
    client_class: Type = object
    display_name = ""

    async def get_client(self, ctx: NodeContext, config: DatabaseConfig) -> Any:
        if not config.credential_id:
            raise NodeConfigurationError(f"No credential configured for {self.display_name} node")
        credentials = await ctx.get_credentials()
        for client in credentials.values():
            if isinstance(client, self.client_class):
                return client
        raise NodeConfigurationError(f"{self.display_name} credential not found")

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        config = self.parse_config(ctx.node)
        client = await self.get_client(ctx, config)
        try:
            return await self.run(client, config, items)
        finally:
            await client.disconnect()

    async def run(self, client: Any, config: Any, items: List[ExecutionItem]) -> List[ExecutionItem]:
        raise NotImplementedError


@NodeRegistry.register
class PostgresNode(DatabaseNode):
    kinds = (NodeKind.POSTGRES,)
    config_model = DatabaseConfig
    client_class = PostgresCredential
    display_name = "PostgreSQL"

    async def run(self, client: PostgresCredential, config: DatabaseConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
        result = await client.query(interpolate(config.query or "", items))
        if isinstance(result.rows, list):
            return [make_item(row) for row in result.rows]
        return [make_item({"rowCount": result.row_count, "success": True})]


@NodeRegistry.register
class MySQLNode(DatabaseNode):
    kinds = (NodeKind.MYSQL,)
    config_model = DatabaseConfig
    client_class = MySQLCredential
    display_name = "MySQL"

    async def run(self, client: MySQLCredential, config: DatabaseConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
        rows, _ = await client.query(interpolate(config.query or "", items))
        if isinstance(rows, list):
            return [make_item(row) for row in rows]
        return [make_item({"result": rows, "success": True})]


def _mongo_result(result: Any) -> Any:
    """Driver result objects as plain JSON."""
    if isinstance(result, pymongo.results.InsertOneResult):
        return {"acknowledged": result.acknowledged, "insertedId": str(result.inserted_id)}
    if isinstance(result, pymongo.results.InsertManyResult):
        return {"acknowledged": result.acknowledged, "insertedIds": [str(i) for i in result.inserted_ids]}
    if isinstance(result, pymongo.results.UpdateResult):
        return {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedId": str(result.upserted_id) if result.upserted_id is not None else None,
        }
    if isinstance(result, pymongo.results.DeleteResult):
        return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}
    return to_jsonable(result)


def run_mongo_operation(collection: Any, operation: str, query: Any) -> Any:
    """Blocking; call through a worker thread."""
    as_list = query if isinstance(query, list) else [query]
    if operation == "findOne":
        return collection.find_one(query)
    if operation == "insertOne":
        return collection.insert_one(query)
    if operation == "insertMany":
        return collection.insert_many(as_list)
    if operation == "updateOne":
        return collection.update_one(query.get("filter") or {}, query.get("update") or {})
    if operation == "updateMany":
        return collection.update_many(query.get("filter") or {}, query.get("update") or {})
    if operation == "deleteOne":
        return collection.delete_one(query)
    if operation == "deleteMany":
        return collection.delete_many(query)
    if operation == "aggregate":
        return list(collection.aggregate(as_list))
    return list(collection.find(query))


@NodeRegistry.register
class MongoDBNode(DatabaseNode):
    kinds = (NodeKind.MONGODB,)
    config_model = MongoDBConfig
    client_class = MongoDBCredential
    display_name = "MongoDB"

    async def run(self, client: MongoDBCredential, config: MongoDBConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
        collection = await client.collection(config.collection or "default")
        query_text = interpolate(config.query or "{}", items)
        try:
            query = json.loads(query_text)
        except ValueError as e:
            raise NodeConfigurationError(f"Invalid MongoDB query JSON: {e}") from e

        result = _mongo_result(await asyncio.to_thread(run_mongo_operation, collection, config.operation or "find", query))
        if isinstance(result, list):
            return [make_item(doc) for doc in result]
        return [make_item(result)]


@NodeRegistry.register
class RedisNode(DatabaseNode):
    kinds = (NodeKind.REDIS,)
    config_model = RedisConfig
    client_class = RedisCredential
    display_name = "Redis"

    async def run(self, client: RedisCredential, config: RedisConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
        key = interpolate(config.key or "", items)
        value = interpolate(config.value or "", items)

        if config.operation == "set":
            result: Any = await client.set(key, value)
        else:
            result = await client.get(key)
        return [make_item({"key": key, "result": result})]
