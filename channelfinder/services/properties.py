"""Property repository.

Works like the tag repository, with two differences in how channels are
touched:

- removal from a channel compares property names case-sensitively (tags
  compare case-insensitively). The referrer search itself ignores case, so a
  channel holding "Location" is visited when "location" is deleted but keeps
  its property.
- updates carry per-channel values: every channel listed in the payload gets
  the property attached or its value replaced. Channels not listed keep
  whatever they had.
"""

import logging
from typing import Iterable, Optional

from ..exceptions import InvalidRequest, NotFoundError, StoreError
from ..models import Channel, Property
from .channels import ChannelRepository, property_query
from .documents import DocumentRepository
from .store import DocumentStore

logger = logging.getLogger(__name__)


def channel_values(prop: Property) -> dict[str, str]:
    """Map each channel listed in a property payload to its value.

    A channel's own entry for the property wins over the payload's
    top-level ``value``.

    Raises:
        InvalidRequest: if a listed channel has no value for the property
    """
    values: dict[str, str] = {}
    for channel in prop.channels:
        entry = channel.get_property(prop.name)
        value = entry.value if entry is not None and entry.value is not None else prop.value
        if value is None:
            raise InvalidRequest(
                f"The property {prop.name} has no value for channel {channel.name}"
            )
        values[channel.name] = value
    return values


class PropertyRepository:
    """Property CRUD plus propagation of property changes into channels."""

    def __init__(
        self,
        store: DocumentStore,
        channels: ChannelRepository,
        collection: str = "cf_properties",
        cascade_page_size: int = 10000,
    ):
        """
        Args:
            store: Document store
            channels: Repository of the channels that embed properties
            collection: Property collection name
            cascade_page_size: Channels rewritten per bulk request during cascades
        """
        self.channels = channels
        self.cascade_page_size = cascade_page_size
        self.documents = DocumentRepository(store, collection, Property, "property", channels.query_size)

    def index(self, prop: Property) -> Property:
        """Upsert a property document (``value`` and ``channels`` are not stored)."""
        return self.documents.save(prop)

    save = index

    def index_all(self, props: Iterable[Property]) -> list[Property]:
        """Upsert properties in one bulk request.

        Raises:
            BulkWriteFailure: if any property failed to index
        """
        return self.documents.save_all(props)

    save_all = index_all

    def find_by_id(self, name: str, with_channels: bool = False) -> Optional[Property]:
        """Get a property, optionally with the channels exposing it.

        Each returned channel carries only this property, with its own value.
        """
        prop = self.documents.find_by_id(name)
        if prop is None:
            return None
        logger.debug(f"Property found: {prop.name}")
        if with_channels:
            channels = self.channels.find_matching(property_query(prop.name))
            for channel in channels:
                channel.tags = []
                channel.properties = [p for p in channel.properties if p.name == prop.name]
            prop.channels = [channel for channel in channels if channel.properties]
        return prop

    def exists_by_id(self, name: str) -> bool:
        return self.documents.exists_by_id(name)

    def find_all(self) -> list[Property]:
        return self.documents.find_all()

    def find_all_by_id(self, names: Iterable[str]) -> list[Property]:
        return self.documents.find_all_by_id(names)

    def delete_by_id(self, name: str) -> int:
        """Delete a property and remove it from every channel.

        Returns:
            Number of channels rewritten
        """
        self.documents.delete_by_id(name)
        return self.reconcile(name)

    def delete(self, prop: Property) -> int:
        return self.delete_by_id(prop.name)

    def delete_all(self, names: Optional[Iterable[str]] = None) -> None:
        self.documents.delete_all(names)

    def reconcile(self, name: str) -> int:
        """Remove property ``name`` from every channel that still carries it.

        Returns:
            Number of channels rewritten
        """
        rewritten = 0
        try:
            for page in self.channels.scan(property_query(name), self.cascade_page_size):
                changed = [channel for channel in page if channel.remove_property(name)]
                self.channels.rewrite(changed, f"remove property {name} from {len(changed)} channel(s)")
                rewritten += len(changed)
        except StoreError:
            logger.error(f"Failed to delete property {name} from channels after rewriting {rewritten}")
            raise

        if rewritten:
            logger.info(f"Removed property {name} from {rewritten} channel(s)")
        return rewritten

    def attach(self, prop: Property, values: dict[str, str]) -> list[Channel]:
        """Set the stored property on each channel in ``values`` to its value.

        Raises:
            NotFoundError: if the property or any channel does not exist
        """
        stored = self.documents.find_by_id(prop.name)
        if stored is None:
            raise NotFoundError("property", prop.name)

        channels = self.channels.require_all(values)
        if not channels:
            return []
        for channel in channels:
            channel.add_property(Property(name=stored.name, owner=stored.owner, value=values[channel.name]))
        self.channels.rewrite(channels, f"set property {stored.name} on {len(channels)} channel(s)")
        return channels

    def detach(self, name: str, channel_name: str) -> Channel:
        """Remove a property from a single channel, keeping the property itself.

        Raises:
            NotFoundError: if the property or the channel does not exist
        """
        if not self.exists_by_id(name):
            raise NotFoundError("property", name)
        channel = self.channels.find_by_id(channel_name)
        if channel is None:
            raise NotFoundError("channel", channel_name)
        if channel.remove_property(name):
            return self.channels.save(channel)
        return channel

    def create(self, prop: Property) -> Property:
        """Create or replace a property so that it sits on exactly the payload's channels.

        Values and channels are checked before any channel loses the property.
        """
        values = channel_values(prop)
        self.channels.require_all(values)
        if self.exists_by_id(prop.name):
            self.delete_by_id(prop.name)
        created = self.index(prop)
        self.attach(prop, values)
        return created

    def update(self, prop: Property) -> Property:
        """Save a property and set it on the payload's channels (additive)."""
        values = channel_values(prop)
        self.channels.require_all(values)
        updated = self.save(prop)
        self.attach(prop, values)
        return updated

    def create_all(self, props: list[Property]) -> list[Property]:
        values = [channel_values(prop) for prop in props]
        self.channels.require_all(name for prop_values in values for name in prop_values)
        for prop in props:
            if self.exists_by_id(prop.name):
                self.delete_by_id(prop.name)
        created = self.index_all(props)
        for prop, prop_values in zip(props, values):
            self.attach(prop, prop_values)
        return created

    def update_all(self, props: list[Property]) -> list[Property]:
        values = [channel_values(prop) for prop in props]
        self.channels.require_all(name for prop_values in values for name in prop_values)
        updated = self.save_all(props)
        for prop, prop_values in zip(props, values):
            self.attach(prop, prop_values)
        return updated
