"""Tag repository.

Tags live in their own collection, but every channel carrying a tag embeds a
copy of it. Deleting a tag therefore has to rewrite all of those channels:

    delete tag document
      -> search channels carrying the tag (one page)
      -> remove the tag from each, bulk rewrite the page
      -> search again after the last rewritten name, until a page comes back empty

There is no transaction around this. If a store call fails midway the tag is
already gone and some channels still carry it; calling ``delete_by_id`` (or
``reconcile``) again finishes the job, since referrers are recomputed from
scratch on every call. Two concurrent deletes of the same tag converge the
same way. A cascade racing with another write to the same channel can lose
that write, because channels are rewritten whole.
"""

import logging
from typing import Iterable, Optional

from ..exceptions import NotFoundError, StoreError
from ..models import Channel, Tag
from .channels import ChannelRepository, tag_query
from .documents import DocumentRepository
from .store import DocumentStore

logger = logging.getLogger(__name__)


class TagRepository:
    """Tag CRUD plus propagation of tag changes into channels."""

    def __init__(
        self,
        store: DocumentStore,
        channels: ChannelRepository,
        collection: str = "cf_tags",
        cascade_page_size: int = 10000,
    ):
        """
        Args:
            store: Document store
            channels: Repository of the channels that embed tags
            collection: Tag collection name
            cascade_page_size: Channels rewritten per bulk request during cascades
        """
        self.channels = channels
        self.cascade_page_size = cascade_page_size
        self.documents = DocumentRepository(store, collection, Tag, "tag", channels.query_size)

    def index(self, tag: Tag) -> Tag:
        """Upsert a tag document (its ``channels`` are not stored)."""
        return self.documents.save(tag)

    save = index

    def index_all(self, tags: Iterable[Tag]) -> list[Tag]:
        """Upsert tags in one bulk request.

        Raises:
            BulkWriteFailure: if any tag failed to index
        """
        return self.documents.save_all(tags)

    save_all = index_all

    def find_by_id(self, name: str, with_channels: bool = False) -> Optional[Tag]:
        """Get a tag, optionally with the channels currently carrying it."""
        tag = self.documents.find_by_id(name)
        if tag is None:
            return None
        logger.debug(f"Tag found: {tag.name}")
        if with_channels:
            tag.channels = self.channels.find_matching(tag_query(tag.name))
        return tag

    def exists_by_id(self, name: str) -> bool:
        return self.documents.exists_by_id(name)

    def find_all(self) -> list[Tag]:
        return self.documents.find_all()

    def find_all_by_id(self, names: Iterable[str]) -> list[Tag]:
        return self.documents.find_all_by_id(names)

    def delete_by_id(self, name: str) -> int:
        """Delete a tag and remove it from every channel.

        Deleting a tag that no longer exists still cleans up channels, so
        repeating a failed delete repairs what the first attempt left behind.

        Returns:
            Number of channels rewritten
        """
        self.documents.delete_by_id(name)
        return self.reconcile(name)

    def delete(self, tag: Tag) -> int:
        return self.delete_by_id(tag.name)

    def delete_all(self, names: Optional[Iterable[str]] = None) -> None:
        self.documents.delete_all(names)

    def reconcile(self, name: str) -> int:
        """Remove tag ``name`` from every channel that still carries it.

        Safe to call at any time; a no-op when no channel carries the tag.

        Returns:
            Number of channels rewritten
        """
        rewritten = 0
        try:
            for page in self.channels.scan(tag_query(name), self.cascade_page_size):
                for channel in page:
                    channel.remove_tag(name)
                self.channels.rewrite(page, f"remove tag {name} from {len(page)} channel(s)")
                rewritten += len(page)
        except StoreError:
            logger.error(f"Failed to delete tag {name} from channels after rewriting {rewritten}")
            raise

        if rewritten:
            logger.info(f"Removed tag {name} from {rewritten} channel(s)")
        return rewritten

    def attach(self, tag: Tag, channel_names: Iterable[str]) -> list[Channel]:
        """Add a stored tag to the named channels; other channels are untouched.

        Raises:
            NotFoundError: if the tag or any channel does not exist
        """
        stored = self.documents.find_by_id(tag.name)
        if stored is None:
            raise NotFoundError("tag", tag.name)

        channels = self.channels.require_all(channel_names)
        if not channels:
            return []
        for channel in channels:
            channel.add_tag(stored)
        self.channels.rewrite(channels, f"add tag {stored.name} to {len(channels)} channel(s)")
        return channels

    def detach(self, name: str, channel_name: str) -> Channel:
        """Remove a tag from a single channel, keeping the tag itself.

        Raises:
            NotFoundError: if the tag or the channel does not exist
        """
        if not self.exists_by_id(name):
            raise NotFoundError("tag", name)
        channel = self.channels.find_by_id(channel_name)
        if channel is None:
            raise NotFoundError("channel", channel_name)
        if channel.remove_tag(name):
            return self.channels.save(channel)
        return channel

    def create(self, tag: Tag) -> Tag:
        """Create or replace a tag so that it sits on exactly the payload's channels.

        An existing tag of the same name is first removed from all channels.
        The payload's channels are checked before anything is removed.
        """
        names = _channel_names(tag)
        self.channels.require_all(names)
        if self.exists_by_id(tag.name):
            self.delete_by_id(tag.name)
        created = self.index(tag)
        self.attach(tag, names)
        return created

    def update(self, tag: Tag) -> Tag:
        """Save a tag and add it to the payload's channels (additive)."""
        names = _channel_names(tag)
        self.channels.require_all(names)
        updated = self.save(tag)
        self.attach(tag, names)
        return updated

    def create_all(self, tags: list[Tag]) -> list[Tag]:
        self.channels.require_all(name for tag in tags for name in _channel_names(tag))
        for tag in tags:
            if self.exists_by_id(tag.name):
                self.delete_by_id(tag.name)
        created = self.index_all(tags)
        for tag in tags:
            self.attach(tag, _channel_names(tag))
        return created

    def update_all(self, tags: list[Tag]) -> list[Tag]:
        self.channels.require_all(name for tag in tags for name in _channel_names(tag))
        updated = self.save_all(tags)
        for tag in tags:
            self.attach(tag, _channel_names(tag))
        return updated


def _channel_names(tag: Tag) -> list[str]:
    return [channel.name for channel in tag.channels]
