"""Entity models for channels, tags and properties.

Channels embed denormalized copies of their tags and properties:

    {
        "name": "SR:C01-MG:G02A{Quad:1}Fld-I",
        "owner": "cf-channels",
        "tags": [{"name": "alarm", "owner": "cf-tags"}],
        "properties": [{"name": "location", "owner": "cf-props", "value": "SR"}]
    }

Tags and properties are stored as ``{"name", "owner"}`` only. Their
``channels`` lists are computed on read and never persisted.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer


class Tag(BaseModel):
    """A named label attachable to channels."""
    name: str
    owner: Optional[str] = None
    channels: list["Channel"] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        """Document stored in the tag collection (also the embedded form)."""
        return {"name": self.name, "owner": self.owner}


class Property(BaseModel):
    """A named attribute with a per-channel value."""
    name: str
    owner: Optional[str] = None
    value: Optional[str] = None
    channels: list["Channel"] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        """Document stored in the property collection."""
        return {"name": self.name, "owner": self.owner}

    def to_reference(self) -> dict[str, Any]:
        """Form embedded in a channel document."""
        return {"name": self.name, "owner": self.owner, "value": self.value}


class Channel(BaseModel):
    """Aggregate root owning a set of tags and a list of property values."""
    name: str
    owner: Optional[str] = None
    tags: list[Tag] = Field(default_factory=list)
    properties: list[Property] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "owner": self.owner,
            "tags": [tag.to_document() for tag in self.tags],
            "properties": [prop.to_reference() for prop in self.properties],
        }

    # embedded references are serialized without their own channel lists
    @field_serializer("tags")
    def _serialize_tags(self, tags: list[Tag]) -> list[dict[str, Any]]:
        return [tag.to_document() for tag in tags]

    @field_serializer("properties")
    def _serialize_properties(self, properties: list[Property]) -> list[dict[str, Any]]:
        return [prop.to_reference() for prop in properties]

    def has_tag(self, tag_name: str) -> bool:
        return any(tag.name.lower() == tag_name.lower() for tag in self.tags)

    def add_tag(self, tag: Tag) -> None:
        """Attach ``tag``, replacing an existing tag of the same name."""
        self.remove_tag(tag.name)
        self.tags.append(Tag(name=tag.name, owner=tag.owner))

    def remove_tag(self, tag_name: str) -> bool:
        """Remove the tag, matching its name case-insensitively.

        Returns:
            True if a tag was removed
        """
        kept = [tag for tag in self.tags if tag.name.lower() != tag_name.lower()]
        removed = len(kept) != len(self.tags)
        self.tags = kept
        return removed

    def get_property(self, property_name: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.name == property_name:
                return prop
        return None

    def add_property(self, prop: Property) -> None:
        """Attach ``prop`` or replace the value of the same-named property in place."""
        embedded = Property(name=prop.name, owner=prop.owner, value=prop.value)
        for i, existing in enumerate(self.properties):
            if existing.name == prop.name:
                self.properties[i] = embedded
                return
        self.properties.append(embedded)

    def remove_property(self, property_name: str) -> bool:
        """Remove the property, matching its name case-sensitively.

        Returns:
            True if a property was removed
        """
        kept = [prop for prop in self.properties if prop.name != property_name]
        removed = len(kept) != len(self.properties)
        self.properties = kept
        return removed


class SearchResult(BaseModel):
    """A page of channels plus the total number of matches."""
    count: int
    channels: list[Channel]


Tag.model_rebuild()
Channel.model_rebuild()
Property.model_rebuild()
