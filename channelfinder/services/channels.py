"""Channel repository: the aggregate root and its search.

Search parameters arrive as a multi-value map (the REST query string):

    ~name=SR*,BR*          channel name globs, OR-ed
    ~tag=alarm|archive     tag name globs; values in one key OR-ed, repeated keys AND-ed
    ~size=100  ~from=0     page size (capped) and offset
    ~search_after=SR:C03   cursor: only channels named strictly after it
    location=SR*           property "location" with a value matching SR*
    location!=SR*          channels without such a property value

Globs understand ``*`` and ``?`` and match case-insensitively. Results are
always sorted ascending by channel name, which keeps ``~search_after``
pagination from skipping or repeating channels.
"""

import logging
import re
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from ..exceptions import InvalidRequest, NotFoundError
from ..models import Channel, SearchResult
from .documents import DocumentRepository
from .store import DocumentStore

logger = logging.getLogger(__name__)

NAME_PARAM = "~name"
TAG_PARAM = "~tag"
SIZE_PARAM = "~size"
FROM_PARAM = "~from"
SEARCH_AFTER_PARAM = "~search_after"
TRACK_TOTAL_HITS_PARAM = "~track_total_hits"

PAGING_PARAMS = {SIZE_PARAM, FROM_PARAM, SEARCH_AFTER_PARAM, TRACK_TOTAL_HITS_PARAM}

SearchParams = Mapping[str, Union[str, list[str]]]


def glob_to_regex(pattern: str) -> str:
    """Translate a ``*``/``?`` glob into an anchored regular expression."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "^" + "".join(parts) + "$"


def _matches(pattern: str) -> dict[str, str]:
    return {"$regex": glob_to_regex(pattern), "$options": "i"}


def _split(values: list[str], separators: str) -> list[str]:
    patterns = []
    for value in values:
        patterns.extend(p for p in re.split(separators, value.strip()) if p)
    return patterns


def normalize_params(params: Optional[SearchParams]) -> dict[str, list[str]]:
    """Turn single values into one-element lists and copy the map."""
    normalized: dict[str, list[str]] = {}
    for key, value in (params or {}).items():
        normalized[key] = [value] if isinstance(value, str) else list(value)
    return normalized


def build_query(params: dict[str, list[str]]) -> dict[str, Any]:
    """Build the store filter for a normalized search parameter map.

    Raises:
        InvalidRequest: on an unknown ``~`` parameter
    """
    clauses: list[dict[str, Any]] = []

    for key, values in params.items():
        if key == NAME_PARAM:
            patterns = _split(values, r"[,|\s]+")
            if patterns:
                clauses.append({"$or": [{"name": _matches(p)} for p in patterns]})

        elif key == TAG_PARAM:
            # each occurrence of ~tag must match
            for value in values:
                patterns = _split([value], r"[,|]+")
                if patterns:
                    clauses.append({"$or": [
                        {"tags": {"$elemMatch": {"name": _matches(p)}}} for p in patterns
                    ]})

        elif key in PAGING_PARAMS:
            continue

        elif key.startswith("~"):
            raise InvalidRequest(f"Unknown search parameter: {key}")

        else:
            negate = key.endswith("!")
            property_name = key[:-1] if negate else key
            patterns = _split(values, r"[,|]+") or ["*"]
            alternatives = []
            for p in patterns:
                element: dict[str, Any] = {"name": _matches(property_name)}
                if p != "*":
                    element["value"] = _matches(p)
                alternatives.append({"properties": {"$elemMatch": element}})
            clauses.append({"$nor": alternatives} if negate else {"$or": alternatives})

    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _exact(name: str) -> dict[str, str]:
    return {"$regex": "^" + re.escape(name) + "$", "$options": "i"}


def tag_query(tag_name: str) -> dict[str, Any]:
    """Channels carrying the tag, name compared case-insensitively."""
    return {"tags": {"$elemMatch": {"name": _exact(tag_name)}}}


def property_query(property_name: str) -> dict[str, Any]:
    """Channels carrying the property, name compared case-insensitively."""
    return {"properties": {"$elemMatch": {"name": _exact(property_name)}}}


class ChannelRepository:
    """Stores channels and answers channel searches.

    Channels are the aggregate root: deleting one needs no cascade because
    nothing embeds a channel.
    """

    def __init__(self, store: DocumentStore, collection: str = "channelfinder", query_size: int = 10000):
        """
        Args:
            store: Document store
            collection: Channel collection name
            query_size: Default and maximum number of channels per search
        """
        self.store = store
        self.collection = collection
        self.query_size = query_size
        self.documents = DocumentRepository(store, collection, Channel, "channel", query_size)

    # CRUD

    def find_by_id(self, name: str) -> Optional[Channel]:
        return self.documents.find_by_id(name)

    def exists_by_id(self, name: str) -> bool:
        return self.documents.exists_by_id(name)

    def find_all(self) -> list[Channel]:
        """First ``query_size`` channels in name order."""
        return self.documents.find_all()

    def find_all_by_id(self, names: Iterable[str]) -> list[Channel]:
        return self.documents.find_all_by_id(names)

    def require_all(self, names: Iterable[str]) -> list[Channel]:
        """Load the named channels.

        Raises:
            NotFoundError: if any of them does not exist
        """
        names = list(dict.fromkeys(names))
        if not names:
            return []
        channels = self.find_all_by_id(names)
        found = {channel.name for channel in channels}
        for name in names:
            if name not in found:
                raise NotFoundError("channel", name)
        return channels

    def save(self, channel: Channel) -> Channel:
        """Upsert ``channel``, replacing its tags and properties exactly as given."""
        return self.documents.save(channel)

    index = save

    def save_all(self, channels: Iterable[Channel]) -> list[Channel]:
        return self.documents.save_all(channels)

    index_all = save_all

    def rewrite(self, channels: list[Channel], description: str) -> None:
        """Bulk rewrite channels (full replace) without reading them back."""
        if channels:
            self.documents.write_all(channels, description)

    def delete_by_id(self, name: str) -> bool:
        return self.documents.delete_by_id(name)

    def delete(self, channel: Channel) -> bool:
        return self.delete_by_id(channel.name)

    def delete_all(self, names: Optional[Iterable[str]] = None) -> None:
        self.documents.delete_all(names)

    # search

    def _page_size(self, params: dict[str, list[str]]) -> int:
        if SIZE_PARAM not in params:
            return self.query_size
        try:
            size = int(params[SIZE_PARAM][-1])
        except ValueError:
            raise InvalidRequest(f"Invalid {SIZE_PARAM}: {params[SIZE_PARAM][-1]}")
        if size < 0:
            raise InvalidRequest(f"Invalid {SIZE_PARAM}: {size}")
        return min(size, self.query_size)

    def _offset(self, params: dict[str, list[str]]) -> int:
        if FROM_PARAM not in params:
            return 0
        try:
            offset = int(params[FROM_PARAM][-1])
        except ValueError:
            raise InvalidRequest(f"Invalid {FROM_PARAM}: {params[FROM_PARAM][-1]}")
        if offset < 0:
            raise InvalidRequest(f"Invalid {FROM_PARAM}: {offset}")
        return offset

    def _search(
        self,
        query: dict[str, Any],
        size: int,
        search_after: Optional[str] = None,
        offset: int = 0,
    ) -> list[Channel]:
        if size == 0:
            return []
        documents = self.store.search(
            self.collection,
            query,
            sort="name",
            size=size,
            search_after=search_after,
            offset=offset,
        )
        return [Channel.model_validate(doc) for doc in documents]

    def search(self, params: Optional[SearchParams] = None) -> list[Channel]:
        """Return one page of channels matching ``params``, sorted by name."""
        params = normalize_params(params)
        query = build_query(params)
        search_after = params[SEARCH_AFTER_PARAM][-1] if params.get(SEARCH_AFTER_PARAM) else None

        channels = self._search(query, self._page_size(params), search_after, self._offset(params))
        logger.debug(f"Channel search {params} returned {len(channels)} channel(s)")
        return channels

    def count(self, params: Optional[SearchParams] = None) -> int:
        """Number of channels matching ``params``, ignoring paging."""
        return self.store.count(self.collection, build_query(normalize_params(params)))

    def search_with_count(self, params: Optional[SearchParams] = None) -> SearchResult:
        """One page of matches plus the total number of matches."""
        return SearchResult(count=self.count(params), channels=self.search(params))

    def find_matching(self, query: dict[str, Any]) -> list[Channel]:
        """First ``query_size`` channels matching a prebuilt store query."""
        return self._search(query, self.query_size)

    def scan(self, query: dict[str, Any], page_size: Optional[int] = None) -> Iterator[list[Channel]]:
        """Yield every channel matching ``query``, one page at a time.

        Each page is fetched after the previous one has been consumed, with
        the last channel name of the previous page as the cursor. Channels
        the caller rewrote so that they no longer match simply drop out.
        """
        size = page_size or self.query_size
        cursor = None

        while True:
            page = self._search(query, size, search_after=cursor)
            if not page:
                return
            yield page
            cursor = page[-1].name
