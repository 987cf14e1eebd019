"""Document store access for the channel directory.

The repositories only talk to a :class:`DocumentStore`: a named-collection
store with index/get/exists/search/count/bulk/delete primitives and a
``refresh`` flag that makes a write visible to the caller's next read.

:class:`MongoDocumentStore` implements it on MongoDB. Documents are keyed by
``_id`` (the entity name) and ``_id`` is stripped from everything returned.
``refresh=True`` writes with majority write concern; reads go to the primary,
so an acknowledged refreshed write is visible to the next read. It gives no
isolation against concurrent writers.

Queries are MongoDB filter documents. Only ``$and``, ``$or``, ``$nor``,
``$regex``/``$options``, ``$elemMatch``, ``$in``, ``$gt`` and plain equality
are used by the repositories.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

from pymongo import ASCENDING, DeleteOne, MongoClient, ReplaceOne
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import BulkWriteError, PyMongoError
from pymongo.write_concern import WriteConcern

from ..exceptions import StoreError

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
NOT_FOUND = "not_found"


@dataclass
class BulkOperation:
    """One item of a bulk request: ``index`` (upsert) or ``delete``."""
    action: str
    collection: str
    id: str
    document: Optional[dict[str, Any]] = None

    @classmethod
    def index(cls, collection: str, id: str, document: dict[str, Any]) -> "BulkOperation":
        return cls("index", collection, id, document)

    @classmethod
    def delete(cls, collection: str, id: str) -> "BulkOperation":
        return cls("delete", collection, id)


@dataclass
class BulkItem:
    """Outcome of one bulk operation; ``error`` holds the failure reason."""
    id: str
    action: str
    error: Optional[str] = None


@dataclass
class BulkResponse:
    items: list[BulkItem] = field(default_factory=list)

    @property
    def errors(self) -> bool:
        return any(item.error for item in self.items)

    def failed_items(self) -> list[BulkItem]:
        return [item for item in self.items if item.error]


class DocumentStore(Protocol):
    """Primitives the repositories need from a document store."""

    def index(self, collection: str, id: str, document: dict[str, Any], refresh: bool = True) -> str: ...
    def get(self, collection: str, id: str) -> Optional[dict[str, Any]]: ...
    def exists(self, collection: str, id: str) -> bool: ...
    def search(
        self,
        collection: str,
        query: dict[str, Any],
        sort: str = "name",
        size: int = 10000,
        search_after: Optional[str] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...
    def count(self, collection: str, query: dict[str, Any]) -> int: ...
    def bulk(self, operations: list[BulkOperation], refresh: bool = True) -> BulkResponse: ...
    def delete(self, collection: str, id: str, refresh: bool = True) -> str: ...


class MongoDocumentStore:
    """MongoDB-backed :class:`DocumentStore`.

    Usage:
        store = MongoDocumentStore("mongodb://...", "channelfinder")
        store.connect()
        store.index("cf_tags", "alarm", {"name": "alarm", "owner": "ops"})
        store.get("cf_tags", "alarm")
    """

    def __init__(self, connection_string: str, database: str = "channelfinder"):
        """Initialize store settings.

        Args:
            connection_string: MongoDB connection URL
            database: Database name
        """
        self.connection_string = connection_string
        self.database_name = database
        self._client: Optional[MongoClient] = None
        self._db: Optional[Database] = None

    def connect(self) -> None:
        """Establish connection to MongoDB."""
        self._client = MongoClient(self.connection_string)
        self._db = self._client[self.database_name]
        logger.info(f"Connected to MongoDB: {self.database_name}")

    def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None

    def _collection(self, name: str, refresh: bool = False) -> Collection:
        if self._db is None:
            raise RuntimeError("Not connected to MongoDB")
        collection = self._db[name]
        if refresh:
            return collection.with_options(write_concern=WriteConcern(w="majority"))
        return collection

    @contextmanager
    def _translate_errors(self, operation: str, collection: str, id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except PyMongoError as e:
            target = f"{collection}/{id}" if id is not None else collection
            logger.error(f"MongoDB {operation} failed for {target}: {e}")
            raise StoreError(f"Failed to {operation} {target}: {e}") from e

    def ensure_indexes(self, collection: str, fields: list[str]) -> None:
        """Create ascending single-field indexes (no-op for existing ones)."""
        with self._translate_errors("create indexes on", collection):
            coll = self._collection(collection)
            for name in fields:
                coll.create_index([(name, ASCENDING)])

    def index(self, collection: str, id: str, document: dict[str, Any], refresh: bool = True) -> str:
        """Upsert ``document`` under ``id``.

        Returns:
            "created" or "updated"
        """
        with self._translate_errors("index", collection, id):
            result = self._collection(collection, refresh).replace_one(
                {"_id": id}, {**document, "_id": id}, upsert=True
            )
        if result.upserted_id is not None:
            return CREATED
        if result.matched_count > 0:
            return UPDATED
        raise StoreError(f"Write of {collection}/{id} was not acknowledged")

    def get(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        with self._translate_errors("get", collection, id):
            return self._collection(collection).find_one({"_id": id}, {"_id": 0})

    def exists(self, collection: str, id: str) -> bool:
        with self._translate_errors("check existence of", collection, id):
            return self._collection(collection).count_documents({"_id": id}, limit=1) > 0

    def search(
        self,
        collection: str,
        query: dict[str, Any],
        sort: str = "name",
        size: int = 10000,
        search_after: Optional[str] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return up to ``size`` documents sorted ascending by ``sort``.

        Args:
            collection: Collection name
            query: MongoDB filter
            sort: Field to sort by (also the cursor field)
            size: Maximum number of documents
            search_after: Only documents whose ``sort`` field is strictly greater
            offset: Number of matching documents to skip

        Returns:
            List of documents without ``_id``
        """
        if search_after is not None:
            query = {"$and": [query, {sort: {"$gt": search_after}}]} if query else {sort: {"$gt": search_after}}

        with self._translate_errors("search", collection):
            cursor = (
                self._collection(collection)
                .find(query, {"_id": 0})
                .sort(sort, ASCENDING)
                .skip(offset)
                .limit(size)
            )
            return list(cursor)

    def count(self, collection: str, query: dict[str, Any]) -> int:
        with self._translate_errors("count", collection):
            return self._collection(collection).count_documents(query)

    def bulk(self, operations: list[BulkOperation], refresh: bool = True) -> BulkResponse:
        """Run ``operations`` unordered, grouped per collection.

        Per-item failures are reported on the response, not raised.
        """
        items = [BulkItem(id=op.id, action=op.action) for op in operations]

        by_collection: dict[str, list[int]] = {}
        for position, op in enumerate(operations):
            by_collection.setdefault(op.collection, []).append(position)

        for collection, positions in by_collection.items():
            requests = []
            for position in positions:
                op = operations[position]
                if op.action == "index":
                    requests.append(ReplaceOne({"_id": op.id}, {**op.document, "_id": op.id}, upsert=True))
                elif op.action == "delete":
                    requests.append(DeleteOne({"_id": op.id}))
                else:
                    raise ValueError(f"Unknown bulk action: {op.action}")

            try:
                self._collection(collection, refresh).bulk_write(requests, ordered=False)
            except BulkWriteError as e:
                for write_error in e.details.get("writeErrors", []):
                    item = items[positions[write_error["index"]]]
                    item.error = write_error.get("errmsg", "unknown error")
                concern_errors = e.details.get("writeConcernErrors", [])
                if concern_errors:
                    reason = concern_errors[0].get("errmsg", "write concern not satisfied")
                    logger.error(f"MongoDB bulk write to {collection} missed its write concern: {reason}")
                    raise StoreError(f"Failed to bulk write to {collection}: {reason}") from e
            except PyMongoError as e:
                logger.error(f"MongoDB bulk write to {collection} failed: {e}")
                raise StoreError(f"Failed to bulk write to {collection}: {e}") from e

        return BulkResponse(items=items)

    def delete(self, collection: str, id: str, refresh: bool = True) -> str:
        """Delete the document ``id``.

        Returns:
            "deleted" or "not_found"
        """
        with self._translate_errors("delete", collection, id):
            result = self._collection(collection, refresh).delete_one({"_id": id})
        return DELETED if result.deleted_count > 0 else NOT_FOUND
