"""HTTP client for the ChannelFinder REST API.

Talks to a running service instead of the document store, for scripts and
other services that should not hold store credentials.

API endpoints used (prefix ``/resources``):
- GET/PUT/DELETE   /channels/{name}, GET /channels?<search params>
- GET/PUT/POST/DELETE /tags/{name}, PUT/DELETE /tags/{name}/{channel}
- GET/PUT/POST/DELETE /properties/{name}, PUT/DELETE /properties/{name}/{channel}
"""

import logging
from typing import Any, Optional

import httpx

from ..models import Channel, Property, Tag

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8080"


class ChannelFinderHttpClient:
    """Reads and writes channels, tags and properties over HTTP.

    Reads return ``None`` (or an empty list) when the entity is missing or the
    request fails; writes return ``True`` on success. Failures are logged.

    Usage:
        client = ChannelFinderHttpClient("http://channelfinder:8080")
        client.connect()
        client.set_tag(Tag(name="alarm", owner="ops"))
        client.add_tag("alarm", "SR:C01-MG:G02A{Quad:1}Fld-I")
        client.find_channels({"~tag": "alarm"})
        client.close()
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize HTTP client settings.

        Args:
            api_url: Base URL of the ChannelFinder service
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (e.g. a mock transport)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.Client] = None

    def connect(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.Client(
            base_url=f"{self.api_url}/resources",
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "User-Agent": "ChannelFinder-Client/1.0",
                "Accept": "application/json",
            },
        )
        logger.info(f"HTTP client initialized for {self.api_url}")

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def _require_client(self) -> httpx.Client:
        if not self._client:
            raise RuntimeError("Not connected - call connect() first")
        return self._client

    def _get(self, path: str, params: Optional[Any] = None) -> Optional[Any]:
        client = self._require_client()
        try:
            response = client.get(path, params=params)
        except httpx.RequestError as e:
            logger.error(f"HTTP error getting {path}: {e}")
            return None

        if response.status_code == 200:
            return response.json()
        if response.status_code != 404:
            logger.warning(f"Unexpected status {response.status_code} getting {path}")
        return None

    def _write(self, method: str, path: str, payload: Optional[Any] = None) -> bool:
        client = self._require_client()
        try:
            response = client.request(method, path, json=payload)
        except httpx.RequestError as e:
            logger.error(f"HTTP error on {method} {path}: {e}")
            return False

        if response.is_success:
            logger.debug(f"{method} {path} -> {response.status_code}")
            return True
        logger.error(f"Failed {method} {path}: {response.status_code} - {response.text}")
        return False

    # channels

    def find_channels(self, params: Optional[dict[str, Any]] = None) -> list[Channel]:
        """Search channels with ChannelFinder query parameters."""
        data = self._get("/channels", params=params)
        return [Channel.model_validate(item) for item in data or []]

    def count_channels(self, params: Optional[dict[str, Any]] = None) -> Optional[int]:
        data = self._get("/channels/count", params=params)
        return int(data) if data is not None else None

    def get_channel(self, name: str) -> Optional[Channel]:
        data = self._get(f"/channels/{name}")
        return Channel.model_validate(data) if data is not None else None

    def set_channel(self, channel: Channel) -> bool:
        return self._write("PUT", f"/channels/{channel.name}", channel.model_dump())

    def set_channels(self, channels: list[Channel]) -> bool:
        return self._write("PUT", "/channels", [channel.model_dump() for channel in channels])

    def delete_channel(self, name: str) -> bool:
        return self._write("DELETE", f"/channels/{name}")

    # tags

    def get_tag(self, name: str, with_channels: bool = False) -> Optional[Tag]:
        data = self._get(f"/tags/{name}", params={"withChannels": str(with_channels).lower()})
        return Tag.model_validate(data) if data is not None else None

    def list_tags(self) -> list[Tag]:
        return [Tag.model_validate(item) for item in self._get("/tags") or []]

    def set_tag(self, tag: Tag) -> bool:
        """Create or replace a tag on exactly ``tag.channels``."""
        return self._write("PUT", f"/tags/{tag.name}", tag.model_dump())

    def update_tag(self, tag: Tag) -> bool:
        """Save a tag and add it to ``tag.channels``."""
        return self._write("POST", f"/tags/{tag.name}", tag.model_dump())

    def add_tag(self, name: str, channel_name: str) -> bool:
        return self._write("PUT", f"/tags/{name}/{channel_name}")

    def remove_tag(self, name: str, channel_name: str) -> bool:
        return self._write("DELETE", f"/tags/{name}/{channel_name}")

    def delete_tag(self, name: str) -> bool:
        return self._write("DELETE", f"/tags/{name}")

    # properties

    def get_property(self, name: str, with_channels: bool = False) -> Optional[Property]:
        data = self._get(f"/properties/{name}", params={"withChannels": str(with_channels).lower()})
        return Property.model_validate(data) if data is not None else None

    def list_properties(self) -> list[Property]:
        return [Property.model_validate(item) for item in self._get("/properties") or []]

    def set_property(self, prop: Property) -> bool:
        """Create or replace a property on exactly ``prop.channels``."""
        return self._write("PUT", f"/properties/{prop.name}", prop.model_dump())

    def update_property(self, prop: Property) -> bool:
        """Save a property and set it on ``prop.channels``."""
        return self._write("POST", f"/properties/{prop.name}", prop.model_dump())

    def add_property(self, name: str, channel_name: str, value: str) -> bool:
        return self._write(
            "PUT",
            f"/properties/{name}/{channel_name}",
            {"name": name, "value": value},
        )

    def remove_property(self, name: str, channel_name: str) -> bool:
        return self._write("DELETE", f"/properties/{name}/{channel_name}")

    def delete_property(self, name: str) -> bool:
        return self._write("DELETE", f"/properties/{name}")
