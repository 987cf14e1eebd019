"""
ChannelFinder directory service.

FastAPI application exposing channels, tags and properties under
``/resources``. Handlers only translate HTTP to repository calls; all
consistency work (cascading tag/property changes into channels) happens in
the repositories.

Run with:
    uvicorn channelfinder.api.main:app --port 8080
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Settings, configure_logging
from ..exceptions import (
    ChannelFinderError,
    InvalidRequest,
    NotFoundError,
    UnsupportedOperation,
)
from ..models import Channel, Property, SearchResult, Tag
from ..services.channels import ChannelRepository
from ..services.properties import PropertyRepository
from ..services.store import MongoDocumentStore
from ..services.tags import TagRepository

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Global instances
settings: Optional[Settings] = None
store: Optional[MongoDocumentStore] = None
channel_repository: Optional[ChannelRepository] = None
tag_repository: Optional[TagRepository] = None
property_repository: Optional[PropertyRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Connects the document store, makes sure lookup indexes exist and wires
    the three repositories together.
    """
    global settings, store, channel_repository, tag_repository, property_repository

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    store = MongoDocumentStore(settings.mongodb_url, settings.mongodb_database)
    store.connect()
    store.ensure_indexes(settings.tag_collection, ["name"])
    store.ensure_indexes(settings.property_collection, ["name"])
    store.ensure_indexes(settings.channel_collection, ["name", "tags.name", "properties.name"])

    channel_repository = ChannelRepository(store, settings.channel_collection, settings.query_size)
    tag_repository = TagRepository(
        store, channel_repository, settings.tag_collection, settings.cascade_page_size
    )
    property_repository = PropertyRepository(
        store, channel_repository, settings.property_collection, settings.cascade_page_size
    )
    logger.info("ChannelFinder service started")

    yield

    # Cleanup
    store.close()


app = FastAPI(
    title="ChannelFinder API",
    description="Directory service for channels with tags and properties",
    version=API_VERSION,
    lifespan=lifespan
)


# Error mapping

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UnsupportedOperation)
async def unsupported_handler(request: Request, exc: UnsupportedOperation):
    return JSONResponse(status_code=405, content={"detail": str(exc)})


@app.exception_handler(ChannelFinderError)
async def internal_error_handler(request: Request, exc: ChannelFinderError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _check_name(path_name: str, body_name: str, kind: str) -> None:
    if path_name != body_name:
        raise InvalidRequest(
            f"The {kind} name in the path ({path_name}) does not match the payload ({body_name})"
        )


def _validate_channels(channels: list[Channel]) -> None:
    """Reject channels referencing unknown tags/properties; copy stored owners in.

    Raises:
        InvalidRequest: on an unknown tag or property, or a property without value
    """
    tag_names = {tag.name for channel in channels for tag in channel.tags}
    property_names = {prop.name for channel in channels for prop in channel.properties}
    tags = {tag.name: tag for tag in tag_repository.find_all_by_id(tag_names)}
    props = {prop.name: prop for prop in property_repository.find_all_by_id(property_names)}

    for channel in channels:
        for tag in channel.tags:
            if tag.name not in tags:
                raise InvalidRequest(f"The tag with the name {tag.name} does not exist")
            tag.owner = tags[tag.name].owner
        for prop in channel.properties:
            if prop.name not in props:
                raise InvalidRequest(f"The property with the name {prop.name} does not exist")
            if prop.value is None or prop.value == "":
                raise InvalidRequest(
                    f"The property {prop.name} on channel {channel.name} has no value"
                )
            prop.owner = props[prop.name].owner


def _search_params(request: Request) -> dict[str, list[str]]:
    params: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        params.setdefault(key, []).append(value)
    return params


# =============================================================================
# Tags
# =============================================================================

@app.get("/resources/tags", response_model=list[Tag])
def list_tags():
    return tag_repository.find_all()


@app.get("/resources/tags/{tag_name}", response_model=Tag)
def read_tag(tag_name: str, withChannels: bool = True):
    """Get a tag, by default with the channels carrying it."""
    tag = tag_repository.find_by_id(tag_name, with_channels=withChannels)
    if tag is None:
        raise NotFoundError("tag", tag_name)
    return tag


@app.put("/resources/tags/{tag_name}", response_model=Tag)
def create_tag(tag_name: str, tag: Tag):
    """Create a tag and put it on exactly the channels listed in the payload."""
    _check_name(tag_name, tag.name, "tag")
    return tag_repository.create(tag)


@app.put("/resources/tags", response_model=list[Tag])
def create_tags(tags: list[Tag]):
    return tag_repository.create_all(tags)


@app.post("/resources/tags/{tag_name}", response_model=Tag)
def update_tag(tag_name: str, tag: Tag):
    """Update a tag and add it to the channels listed in the payload."""
    _check_name(tag_name, tag.name, "tag")
    return tag_repository.update(tag)


@app.post("/resources/tags", response_model=list[Tag])
def update_tags(tags: list[Tag]):
    return tag_repository.update_all(tags)


@app.put("/resources/tags/{tag_name}/{channel_name}", response_model=Tag)
def add_tag_to_channel(tag_name: str, channel_name: str):
    tag = tag_repository.find_by_id(tag_name)
    if tag is None:
        raise NotFoundError("tag", tag_name)
    tag.channels = tag_repository.attach(tag, [channel_name])
    return tag


@app.delete("/resources/tags/{tag_name}/{channel_name}")
def remove_tag_from_channel(tag_name: str, channel_name: str):
    tag_repository.detach(tag_name, channel_name)
    return {"status": "removed", "tag": tag_name, "channel": channel_name}


@app.delete("/resources/tags")
def delete_all_tags():
    tag_repository.delete_all()


@app.delete("/resources/tags/{tag_name}")
def delete_tag(tag_name: str):
    """Delete a tag and remove it from every channel."""
    rewritten = tag_repository.delete_by_id(tag_name)
    return {"status": "deleted", "tag": tag_name, "channels_updated": rewritten}


# =============================================================================
# Properties
# =============================================================================

@app.get("/resources/properties", response_model=list[Property])
def list_properties():
    return property_repository.find_all()


@app.get("/resources/properties/{property_name}", response_model=Property)
def read_property(property_name: str, withChannels: bool = True):
    """Get a property, by default with each channel's value for it."""
    prop = property_repository.find_by_id(property_name, with_channels=withChannels)
    if prop is None:
        raise NotFoundError("property", property_name)
    return prop


@app.put("/resources/properties/{property_name}", response_model=Property)
def create_property(property_name: str, prop: Property):
    """Create a property and set it on exactly the channels listed in the payload."""
    _check_name(property_name, prop.name, "property")
    return property_repository.create(prop)


@app.put("/resources/properties", response_model=list[Property])
def create_properties(props: list[Property]):
    return property_repository.create_all(props)


@app.post("/resources/properties/{property_name}", response_model=Property)
def update_property(property_name: str, prop: Property):
    """Update a property and set it on the channels listed in the payload."""
    _check_name(property_name, prop.name, "property")
    return property_repository.update(prop)


@app.post("/resources/properties", response_model=list[Property])
def update_properties(props: list[Property]):
    return property_repository.update_all(props)


@app.put("/resources/properties/{property_name}/{channel_name}", response_model=Property)
def add_property_to_channel(property_name: str, channel_name: str, prop: Property):
    """Set the property on one channel; the value comes from the payload."""
    _check_name(property_name, prop.name, "property")
    if prop.value is None or prop.value == "":
        raise InvalidRequest(f"The property {property_name} has no value for channel {channel_name}")
    stored = property_repository.find_by_id(property_name)
    if stored is None:
        raise NotFoundError("property", property_name)
    stored.channels = property_repository.attach(stored, {channel_name: prop.value})
    return stored


@app.delete("/resources/properties/{property_name}/{channel_name}")
def remove_property_from_channel(property_name: str, channel_name: str):
    property_repository.detach(property_name, channel_name)
    return {"status": "removed", "property": property_name, "channel": channel_name}


@app.delete("/resources/properties")
def delete_all_properties():
    property_repository.delete_all()


@app.delete("/resources/properties/{property_name}")
def delete_property(property_name: str):
    """Delete a property and remove it from every channel."""
    rewritten = property_repository.delete_by_id(property_name)
    return {"status": "deleted", "property": property_name, "channels_updated": rewritten}


# =============================================================================
# Channels
# =============================================================================

@app.get("/resources/channels", response_model=list[Channel])
def search_channels(request: Request):
    """Search channels; see ``channelfinder.services.channels`` for parameters."""
    return channel_repository.search(_search_params(request))


@app.get("/resources/channels/count", response_model=int)
def count_channels(request: Request):
    return channel_repository.count(_search_params(request))


@app.get("/resources/channels/combined", response_model=SearchResult)
def search_channels_combined(request: Request):
    """One page of matching channels plus the total number of matches."""
    return channel_repository.search_with_count(_search_params(request))


@app.get("/resources/channels/{channel_name}", response_model=Channel)
def read_channel(channel_name: str):
    channel = channel_repository.find_by_id(channel_name)
    if channel is None:
        raise NotFoundError("channel", channel_name)
    return channel


@app.put("/resources/channels/{channel_name}", response_model=Channel)
def create_channel(channel_name: str, channel: Channel):
    """Create or replace a channel with exactly the tags/properties given."""
    _check_name(channel_name, channel.name, "channel")
    _validate_channels([channel])
    return channel_repository.index(channel)


@app.post("/resources/channels/{channel_name}", response_model=Channel)
def update_channel(channel_name: str, channel: Channel):
    _check_name(channel_name, channel.name, "channel")
    _validate_channels([channel])
    return channel_repository.save(channel)


@app.put("/resources/channels", response_model=list[Channel])
def create_channels(channels: list[Channel]):
    _validate_channels(channels)
    return channel_repository.index_all(channels)


@app.post("/resources/channels", response_model=list[Channel])
def update_channels(channels: list[Channel]):
    _validate_channels(channels)
    return channel_repository.save_all(channels)


@app.delete("/resources/channels")
def delete_all_channels():
    channel_repository.delete_all()


@app.delete("/resources/channels/{channel_name}")
def delete_channel(channel_name: str):
    if not channel_repository.delete_by_id(channel_name):
        raise NotFoundError("channel", channel_name)
    return {"status": "deleted", "channel": channel_name}


# =============================================================================
# Service
# =============================================================================

@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "database": settings.mongodb_database if settings else None,
    }


@app.get("/")
def root():
    """API info and available endpoints."""
    return {
        "name": "ChannelFinder API",
        "version": API_VERSION,
        "endpoints": {
            "tags": "GET|PUT|POST /resources/tags[/{name}], DELETE /resources/tags/{name}",
            "tag_channel": "PUT|DELETE /resources/tags/{name}/{channel}",
            "properties": "GET|PUT|POST /resources/properties[/{name}], DELETE /resources/properties/{name}",
            "property_channel": "PUT|DELETE /resources/properties/{name}/{channel}",
            "channels": "GET|PUT|POST /resources/channels[/{name}], DELETE /resources/channels/{name}",
            "channel_count": "GET /resources/channels/count",
            "channel_combined": "GET /resources/channels/combined",
            "health": "GET /health",
        },
    }
