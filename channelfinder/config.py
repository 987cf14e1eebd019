"""Service configuration read from environment variables.

A ``.env`` file in the working directory is loaded first (local development).

Environment variables:
    MONGODB_URL - MongoDB connection URL (default: mongodb://localhost:27017)
    MONGODB_DATABASE - Database name (default: channelfinder)
    CF_TAG_COLLECTION - Tag collection (default: cf_tags)
    CF_PROPERTY_COLLECTION - Property collection (default: cf_properties)
    CF_CHANNEL_COLLECTION - Channel collection (default: channelfinder)
    CF_QUERY_SIZE - Default and maximum search page size (default: 10000)
    CF_CASCADE_PAGE_SIZE - Page size used when rewriting referring channels (default: 10000)
    LOG_LEVEL - Root log level (default: INFO)
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _int_setting(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the store, repositories and logging."""
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "channelfinder"
    tag_collection: str = "cf_tags"
    property_collection: str = "cf_properties"
    channel_collection: str = "channelfinder"
    query_size: int = 10000
    cascade_page_size: int = 10000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ`` after loading ``.env``)."""
        if env is None:
            load_dotenv()
            env = os.environ

        return cls(
            mongodb_url=env.get("MONGODB_URL", cls.mongodb_url),
            mongodb_database=env.get("MONGODB_DATABASE", cls.mongodb_database),
            tag_collection=env.get("CF_TAG_COLLECTION", cls.tag_collection),
            property_collection=env.get("CF_PROPERTY_COLLECTION", cls.property_collection),
            channel_collection=env.get("CF_CHANNEL_COLLECTION", cls.channel_collection),
            query_size=_int_setting(env, "CF_QUERY_SIZE", cls.query_size),
            cascade_page_size=_int_setting(env, "CF_CASCADE_PAGE_SIZE", cls.cascade_page_size),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the service's format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
