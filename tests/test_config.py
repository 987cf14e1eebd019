"""
Tests for environment-based settings.
"""
import pytest

from channelfinder.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.mongodb_database == "channelfinder"
        assert settings.tag_collection == "cf_tags"
        assert settings.property_collection == "cf_properties"
        assert settings.channel_collection == "channelfinder"
        assert settings.query_size == 10000
        assert settings.cascade_page_size == 10000

    def test_overrides(self):
        settings = Settings.from_env({
            "MONGODB_URL": "mongodb://db:27017",
            "CF_TAG_COLLECTION": "tags",
            "CF_CASCADE_PAGE_SIZE": "2",
            "LOG_LEVEL": "debug",
        })

        assert settings.mongodb_url == "mongodb://db:27017"
        assert settings.tag_collection == "tags"
        assert settings.cascade_page_size == 2
        assert settings.log_level == "DEBUG"

    def test_invalid_integer(self):
        with pytest.raises(ValueError, match="CF_QUERY_SIZE"):
            Settings.from_env({"CF_QUERY_SIZE": "lots"})

    def test_non_positive_integer(self):
        with pytest.raises(ValueError, match="positive"):
            Settings.from_env({"CF_CASCADE_PAGE_SIZE": "0"})
