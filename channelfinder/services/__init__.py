"""Repository layer for channels, tags and properties."""

from .channels import ChannelRepository
from .properties import PropertyRepository
from .store import DocumentStore, MongoDocumentStore
from .tags import TagRepository

__all__ = [
    "ChannelRepository",
    "DocumentStore",
    "MongoDocumentStore",
    "PropertyRepository",
    "TagRepository",
]
