"""
Tests for the tag repository and the tag delete cascade.
"""
import pytest

from channelfinder.exceptions import BulkWriteFailure, NotFoundError, StoreError, UnsupportedOperation
from channelfinder.models import Channel, Tag


def _names(channels):
    return [channel.name for channel in channels]


class TestTagCrud:
    """Basic tag storage."""

    def test_index_returns_stored_tag(self, tag_repository):
        tag = tag_repository.index(Tag(name="alarm", owner="ops", channels=[Channel(name="c1")]))

        assert tag.name == "alarm"
        assert tag.owner == "ops"
        assert tag.channels == []

    def test_index_all_returns_sorted_tags(self, tag_repository):
        tags = tag_repository.index_all([Tag(name="b", owner="ops"), Tag(name="a", owner="ops")])

        assert [tag.name for tag in tags] == ["a", "b"]

    def test_index_all_fails_when_any_item_fails(self, tag_repository, store):
        store.failing_ids = {"broken"}

        with pytest.raises(BulkWriteFailure) as excinfo:
            tag_repository.index_all([
                Tag(name="a", owner="ops"),
                Tag(name="broken", owner="ops"),
                Tag(name="c", owner="ops"),
            ])

        assert len(excinfo.value.reasons) == 1
        assert "broken" in excinfo.value.reasons[0]

    def test_index_all_logs_failures(self, tag_repository, store, caplog):
        store.failing_ids = {"broken"}

        with pytest.raises(BulkWriteFailure):
            tag_repository.index_all([Tag(name="broken", owner="ops")])

        assert "Bulk request had errors" in caplog.text
        assert "mapper_parsing_exception for broken" in caplog.text

    def test_find_by_id_missing(self, tag_repository):
        assert tag_repository.find_by_id("nope") is None

    def test_find_by_id_with_channels(self, tag_repository, populated):
        tag = tag_repository.find_by_id("archived", with_channels=True)

        assert _names(tag.channels) == populated[:2]

    def test_find_by_id_without_channels(self, tag_repository, populated):
        tag = tag_repository.find_by_id("archived")

        assert tag.channels == []

    def test_find_all(self, tag_repository, populated):
        assert [tag.name for tag in tag_repository.find_all()] == ["alarm", "archived"]

    def test_delete_all_is_disabled(self, tag_repository):
        with pytest.raises(UnsupportedOperation):
            tag_repository.delete_all(["alarm"])


class TestTagDeleteCascade:
    """Deleting a tag removes it from every channel."""

    def test_delete_removes_tag_from_all_channels(self, tag_repository, channel_repository, populated):
        rewritten = tag_repository.delete_by_id("alarm")

        assert rewritten == 5
        assert tag_repository.find_by_id("alarm") is None
        assert channel_repository.search({"~tag": "alarm"}) == []

    def test_cascade_walks_pages(self, tag_repository, store, populated):
        store.bulk_calls.clear()

        tag_repository.delete_by_id("alarm")

        # page size 2 over 5 referring channels
        assert [len(call) for call in store.bulk_calls] == [2, 2, 1]

    def test_cascade_keeps_other_data(self, tag_repository, channel_repository, populated):
        tag_repository.delete_by_id("alarm")

        channel = channel_repository.find_by_id(populated[0])
        assert [tag.name for tag in channel.tags] == ["archived"]
        assert [(p.name, p.value) for p in channel.properties] == [("location", "cell-1"), ("device", "quad")]

    def test_cascade_matches_tag_name_ignoring_case(self, tag_repository, channel_repository, store):
        tag_repository.index(Tag(name="Alarm", owner="ops"))
        store.index("channelfinder", "c1", {
            "name": "c1", "owner": "cf", "tags": [{"name": "ALARM", "owner": "ops"}], "properties": [],
        })

        tag_repository.delete_by_id("Alarm")

        assert channel_repository.find_by_id("c1").tags == []

    def test_delete_is_idempotent(self, tag_repository, store, populated):
        tag_repository.delete_by_id("alarm")
        store.bulk_calls.clear()

        rewritten = tag_repository.delete_by_id("alarm")

        assert rewritten == 0
        assert store.bulk_calls == []

    def test_delete_unknown_tag(self, tag_repository):
        assert tag_repository.delete_by_id("never-existed") == 0

    def test_failed_cascade_surfaces_and_retry_repairs(self, tag_repository, channel_repository, store, populated):
        store.bulk_calls.clear()
        store.fail_bulk_call = 2

        with pytest.raises(StoreError):
            tag_repository.delete_by_id("alarm")

        # tag is gone, the first page was cleaned, the rest still carry it
        assert tag_repository.find_by_id("alarm") is None
        assert len(channel_repository.search({"~tag": "alarm"})) == 3

        store.fail_bulk_call = None
        tag_repository.delete_by_id("alarm")

        assert channel_repository.search({"~tag": "alarm"}) == []

    def test_bulk_item_error_aborts_cascade(self, tag_repository, channel_repository, store, populated):
        store.failing_ids = {populated[0]}

        with pytest.raises(BulkWriteFailure):
            tag_repository.delete_by_id("alarm")

        assert channel_repository.find_by_id(populated[0]).has_tag("alarm")

    def test_reconcile_cleans_leftover_references(self, tag_repository, channel_repository, store, populated):
        store.delete("cf_tags", "archived")

        assert tag_repository.reconcile("archived") == 2
        assert channel_repository.search({"~tag": "archived"}) == []


class TestTagChannelAssociation:
    """Adding tags to and removing them from channels."""

    def test_attach_is_additive(self, tag_repository, channel_repository, populated):
        tag_repository.index(Tag(name="spare", owner="ops"))
        tag_repository.attach(Tag(name="spare"), [populated[0]])
        tag_repository.attach(Tag(name="spare"), [populated[1]])

        assert _names(channel_repository.search({"~tag": "spare"})) == populated[:2]

    def test_attach_copies_stored_owner(self, tag_repository, channel_repository, populated):
        tag_repository.index(Tag(name="spare", owner="ops"))

        tag_repository.attach(Tag(name="spare", owner="someone-else"), [populated[0]])

        tags = {tag.name: tag for tag in channel_repository.find_by_id(populated[0]).tags}
        assert tags["spare"].owner == "ops"

    def test_attach_unknown_channel(self, tag_repository, populated):
        with pytest.raises(NotFoundError, match="no-such-channel"):
            tag_repository.attach(Tag(name="alarm"), ["no-such-channel"])

    def test_attach_unknown_tag(self, tag_repository, populated):
        with pytest.raises(NotFoundError, match="tag"):
            tag_repository.attach(Tag(name="missing"), [populated[0]])

    def test_detach_single_channel(self, tag_repository, channel_repository, populated):
        tag_repository.detach("alarm", populated[0])

        assert not channel_repository.find_by_id(populated[0]).has_tag("alarm")
        assert tag_repository.find_by_id("alarm") is not None
        assert len(channel_repository.search({"~tag": "alarm"})) == 4

    def test_detach_unknown_channel(self, tag_repository):
        with pytest.raises(NotFoundError):
            tag_repository.detach("alarm", "nope")

    def test_create_is_exclusive(self, tag_repository, channel_repository, populated):
        tag_repository.create(Tag(name="alarm", owner="ops", channels=[Channel(name=populated[4])]))

        assert _names(channel_repository.search({"~tag": "alarm"})) == [populated[4]]

    def test_update_is_additive(self, tag_repository, channel_repository, populated):
        tag_repository.update(Tag(name="archived", owner="ops", channels=[Channel(name=populated[4])]))

        assert _names(channel_repository.search({"~tag": "archived"})) == [populated[0], populated[1], populated[4]]

    def test_delete_by_entity(self, tag_repository, channel_repository, populated):
        tag_repository.delete(Tag(name="archived"))

        assert tag_repository.exists_by_id("archived") is False
        assert channel_repository.count({"~tag": "archived"}) == 0

    def test_failed_create_keeps_existing_channels(self, tag_repository, channel_repository, populated):
        with pytest.raises(NotFoundError, match="ghost"):
            tag_repository.create(Tag(name="alarm", owner="ops", channels=[Channel(name="ghost")]))

        assert _names(channel_repository.search({"~tag": "alarm"})) == populated

    def test_failed_create_all_keeps_existing_channels(self, tag_repository, channel_repository, populated):
        with pytest.raises(NotFoundError):
            tag_repository.create_all([
                Tag(name="archived", owner="ops", channels=[Channel(name=populated[4])]),
                Tag(name="alarm", owner="ops", channels=[Channel(name="ghost")]),
            ])

        assert _names(channel_repository.search({"~tag": "alarm"})) == populated
        assert _names(channel_repository.search({"~tag": "archived"})) == populated[:2]

    def test_failed_update_leaves_channels_untouched(self, tag_repository, channel_repository, populated):
        with pytest.raises(NotFoundError, match="ghost"):
            tag_repository.update(Tag(name="archived", owner="ops", channels=[
                Channel(name=populated[4]),
                Channel(name="ghost"),
            ]))

        assert _names(channel_repository.search({"~tag": "archived"})) == populated[:2]
        assert tag_repository.find_by_id("archived").owner == "ops"

    def test_detach_unknown_tag(self, tag_repository, populated):
        with pytest.raises(NotFoundError, match="tag"):
            tag_repository.detach("missing", populated[0])
