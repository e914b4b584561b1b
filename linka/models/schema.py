# schema.py
"""
Normalized schema models produced by the schema adapter.
One RawTable per provider database, one RawRelation per relation property.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PropertyKind(str, Enum):
    """Closed set of property kinds the graph understands. Anything else is UNKNOWN."""
    TITLE = "title"
    SELECT = "select"
    RELATION = "relation"
    RICH_TEXT = "rich_text"
    DATE = "date"
    URL = "url"
    EMAIL = "email"
    PEOPLE = "people"
    STATUS = "status"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, type_name: str) -> "PropertyKind":
        try:
            return cls(type_name)
        except ValueError:
            return cls.UNKNOWN


class TableProperty(BaseModel):
    """A single schema property, flattened to {name, type}."""
    name: str = Field(..., description="Property name as shown in the provider")
    type: str = Field(..., description="Raw provider type string (filters match on this)")
    relation_target: Optional[str] = Field(
        None, exclude=True, description="Target database id, relation properties only"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def kind(self) -> PropertyKind:
        return PropertyKind.from_type(self.type)

    @property
    def is_relation(self) -> bool:
        return self.kind is PropertyKind.RELATION and bool(self.relation_target)


class RawTable(BaseModel):
    """
    One provider database. `id` is the stable external identifier and the join
    key used by positions, colours, filters and relations.
    """
    id: str
    title: str
    properties: List[TableProperty] = Field(default_factory=list)
    color: Optional[str] = None
    url: Optional[str] = None
    icon: Optional[str] = None
    created_time: Optional[str] = Field(None, alias="createdTime")
    last_edited_time: Optional[str] = Field(None, alias="lastEditedTime")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class RawRelation(BaseModel):
    """Directed reference from one table's relation property to another table."""
    source: str
    target: str
    label: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SchemaSnapshot(BaseModel):
    """Result of one schema sync pass. Rebuilt wholesale, never patched."""
    databases: List[RawTable] = Field(default_factory=list)
    relations: List[RawRelation] = Field(default_factory=list)
