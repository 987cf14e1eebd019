"""
Shared fixtures and an in-memory document store for repository tests.
"""
import copy
import re
from typing import Any, Optional

import pytest

from channelfinder.exceptions import StoreError
from channelfinder.models import Channel, Property, Tag
from channelfinder.services.channels import ChannelRepository
from channelfinder.services.properties import PropertyRepository
from channelfinder.services.store import (
    CREATED,
    DELETED,
    NOT_FOUND,
    UPDATED,
    BulkItem,
    BulkOperation,
    BulkResponse,
)
from channelfinder.services.tags import TagRepository


def _match_value(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for op, arg in condition.items():
            if op == "$options":
                continue
            if op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
            elif op == "$in":
                if value not in arg:
                    return False
            elif op == "$gt":
                if value is None or not value > arg:
                    return False
            elif op == "$elemMatch":
                if not isinstance(value, list) or not any(matches(item, arg) for item in value):
                    return False
            else:
                raise ValueError(f"Unsupported operator in test store: {op}")
        return True
    return value == condition


def matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB filters the repositories produce."""
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, q) for q in condition):
                return False
        elif key == "$or":
            if not any(matches(document, q) for q in condition):
                return False
        elif key == "$nor":
            if any(matches(document, q) for q in condition):
                return False
        elif not _match_value(document.get(key), condition):
            return False
    return True


class InMemoryDocumentStore:
    """DocumentStore kept in dicts, with hooks for injecting failures.

    Attributes:
        failing_ids: ids whose bulk items report an error instead of being written
        fail_bulk_call: 1-based number of the bulk call that raises StoreError
        bulk_calls: operations of every bulk call, in order
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.failing_ids: set[str] = set()
        self.fail_bulk_call: Optional[int] = None
        self.bulk_calls: list[list[BulkOperation]] = []
        self.connected = False

    # lifecycle, mirrors MongoDocumentStore

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def ensure_indexes(self, collection: str, fields: list[str]) -> None:
        self.collections.setdefault(collection, {})

    # DocumentStore

    def _docs(self, collection: str) -> dict[str, dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    def index(self, collection: str, id: str, document: dict[str, Any], refresh: bool = True) -> str:
        docs = self._docs(collection)
        result = UPDATED if id in docs else CREATED
        docs[id] = copy.deepcopy(document)
        return result

    def get(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        document = self._docs(collection).get(id)
        return copy.deepcopy(document) if document is not None else None

    def exists(self, collection: str, id: str) -> bool:
        return id in self._docs(collection)

    def search(self, collection, query, sort="name", size=10000, search_after=None, offset=0):
        hits = [doc for doc in self._docs(collection).values() if matches(doc, query)]
        if search_after is not None:
            hits = [doc for doc in hits if doc[sort] > search_after]
        hits.sort(key=lambda doc: doc[sort])
        return copy.deepcopy(hits[offset:offset + size])

    def count(self, collection: str, query: dict[str, Any]) -> int:
        return sum(1 for doc in self._docs(collection).values() if matches(doc, query))

    def bulk(self, operations: list[BulkOperation], refresh: bool = True) -> BulkResponse:
        self.bulk_calls.append(list(operations))
        if self.fail_bulk_call is not None and len(self.bulk_calls) == self.fail_bulk_call:
            raise StoreError("Connection reset by peer")

        items = []
        for op in operations:
            if op.id in self.failing_ids:
                items.append(BulkItem(id=op.id, action=op.action, error=f"mapper_parsing_exception for {op.id}"))
                continue
            if op.action == "index":
                self._docs(op.collection)[op.id] = copy.deepcopy(op.document)
            else:
                self._docs(op.collection).pop(op.id, None)
            items.append(BulkItem(id=op.id, action=op.action))
        return BulkResponse(items=items)

    def delete(self, collection: str, id: str, refresh: bool = True) -> str:
        return DELETED if self._docs(collection).pop(id, None) is not None else NOT_FOUND


@pytest.fixture
def store():
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def channel_repository(store):
    return ChannelRepository(store, "channelfinder", query_size=100)


@pytest.fixture
def tag_repository(store, channel_repository):
    """Tag repository rewriting two channels per bulk request."""
    return TagRepository(store, channel_repository, "cf_tags", cascade_page_size=2)


@pytest.fixture
def property_repository(store, channel_repository):
    """Property repository rewriting two channels per bulk request."""
    return PropertyRepository(store, channel_repository, "cf_properties", cascade_page_size=2)


@pytest.fixture
def alarm_tag():
    return Tag(name="alarm", owner="ops")


@pytest.fixture
def archived_tag():
    return Tag(name="archived", owner="ops")


@pytest.fixture
def location_property():
    return Property(name="location", owner="physics")


@pytest.fixture
def populated(tag_repository, property_repository, channel_repository, alarm_tag, archived_tag, location_property):
    """Five channels carrying "alarm", two of them also "archived", all with a location.

    Returns:
        List of channel names
    """
    tag_repository.index_all([alarm_tag, archived_tag])
    property_repository.index_all([location_property, Property(name="device", owner="physics")])

    names = [f"SR:C0{i}-MG" for i in range(1, 6)]
    channels = []
    for i, name in enumerate(names, start=1):
        channel = Channel(
            name=name,
            owner="cf",
            tags=[Tag(name="alarm", owner="ops")],
            properties=[
                Property(name="location", owner="physics", value=f"cell-{i}"),
                Property(name="device", owner="physics", value="quad"),
            ],
        )
        if i <= 2:
            channel.tags.append(Tag(name="archived", owner="ops"))
        channels.append(channel)
    channel_repository.index_all(channels)
    return names
