"""Generic CRUD over one document collection.

Tag, property and channel repositories each own a ``DocumentRepository``
parameterized by their entity model and add their own cascade logic on top.
"""

import logging
from typing import Generic, Iterable, Optional, Type, TypeVar, Union

from ..exceptions import BulkWriteFailure, StoreError, UnsupportedOperation
from ..models import Channel, Property, Tag
from .store import CREATED, DELETED, UPDATED, BulkOperation, BulkResponse, DocumentStore

logger = logging.getLogger(__name__)

Entity = TypeVar("Entity", bound=Union[Tag, Property, Channel])

DELETE_ALL_NOT_SUPPORTED = "Delete all is not supported"


def check_bulk_response(response: BulkResponse, description: str) -> None:
    """Raise if any bulk item failed, after logging every failure reason.

    Args:
        response: Response of the bulk call
        description: What the bulk call did, used in log and error messages

    Raises:
        BulkWriteFailure: if any item reported an error
    """
    if not response.errors:
        return

    failed = response.failed_items()
    logger.error(f"Bulk request had errors: {description} ({len(failed)} of {len(response.items)} items failed)")
    for item in failed:
        logger.error(f"  {item.action} {item.id}: {item.error}")

    raise BulkWriteFailure(
        f"Failed to {description}: {len(failed)} item(s) reported errors",
        reasons=[f"{item.id}: {item.error}" for item in failed],
    )


class DocumentRepository(Generic[Entity]):
    """Index/find/delete for one entity kind, keyed by entity name.

    Every write refreshes, so the entity returned by a write is read back
    from the store.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        model: Type[Entity],
        kind: str,
        query_size: int = 10000,
    ):
        """
        Args:
            store: Document store
            collection: Collection holding this entity kind
            model: Pydantic model documents are parsed into
            kind: Human-readable entity name for logs and errors ("tag", ...)
            query_size: Maximum number of documents fetched by one search
        """
        self.store = store
        self.collection = collection
        self.model = model
        self.kind = kind
        self.query_size = query_size

    def save(self, entity: Entity) -> Entity:
        """Upsert one entity and return it as stored."""
        try:
            result = self.store.index(self.collection, entity.name, entity.to_document(), refresh=True)
        except StoreError:
            logger.error(f"Failed to update/save {self.kind}: {entity.name}")
            raise

        if result not in (CREATED, UPDATED):
            raise StoreError(f"Failed to update/save {self.kind}: {entity.name} (result: {result})")

        logger.debug(f"{result.capitalize()} {self.kind}: {entity.name}")
        return self.find_by_id(entity.name)

    index = save

    def save_all(self, entities: Iterable[Entity]) -> list[Entity]:
        """Upsert a batch in one bulk request.

        Raises:
            BulkWriteFailure: if any item fails; nothing is returned
        """
        entities = list(entities)
        if not entities:
            return []

        names = [entity.name for entity in entities]
        self.write_all(entities, f"index {self.kind}s {names}")
        return self.find_all_by_id(names)

    index_all = save_all

    def write_all(self, entities: list[Entity], description: str) -> None:
        """Bulk upsert ``entities`` with refresh, without reading them back.

        Raises:
            BulkWriteFailure: if any item fails
            StoreError: if the bulk call itself fails
        """
        operations = [
            BulkOperation.index(self.collection, entity.name, entity.to_document())
            for entity in entities
        ]

        try:
            response = self.store.bulk(operations, refresh=True)
        except StoreError:
            logger.error(f"Failed to {description}")
            raise

        check_bulk_response(response, description)
        logger.info(f"Indexed {len(entities)} {self.kind}(s)")

    def find_by_id(self, name: str) -> Optional[Entity]:
        document = self.store.get(self.collection, name)
        if document is None:
            logger.debug(f"{self.kind.capitalize()} not found: {name}")
            return None
        return self.model.model_validate(document)

    def exists_by_id(self, name: str) -> bool:
        return self.store.exists(self.collection, name)

    def find_all(self) -> list[Entity]:
        documents = self.store.search(self.collection, {}, sort="name", size=self.query_size)
        return [self.model.model_validate(doc) for doc in documents]

    def find_all_by_id(self, names: Iterable[str]) -> list[Entity]:
        names = list(dict.fromkeys(names))
        if not names:
            return []
        documents = self.store.search(
            self.collection,
            {"name": {"$in": names}},
            sort="name",
            size=max(len(names), 1),
        )
        return [self.model.model_validate(doc) for doc in documents]

    def delete_by_id(self, name: str) -> bool:
        """Delete one document.

        Returns:
            True if a document was deleted, False if it did not exist
        """
        try:
            result = self.store.delete(self.collection, name, refresh=True)
        except StoreError:
            logger.error(f"Failed to delete {self.kind}: {name}")
            raise

        if result == DELETED:
            logger.info(f"Deleted {self.kind}: {name}")
            return True
        logger.info(f"{self.kind.capitalize()} {name} was already absent")
        return False

    def delete_all(self, names: Optional[Iterable[str]] = None) -> None:
        raise UnsupportedOperation(DELETE_ALL_NOT_SUPPORTED)
