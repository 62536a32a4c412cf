"""
Document shapes persisted by the storage engine.

Field aliases give the on-disk names (``_id``, ``list``, ``listID``) while the
Python attributes stay readable.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from raincache_docstore.namespace import namespace_prefixes


class Entry(BaseModel):
    """A key-value document. List entries carry ``value=None``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = Field(default=None, alias="_id")
    key: str
    value: Any = None
    is_list: bool = Field(default=False, alias="list")
    namespaces: list[str] = Field(default_factory=list)

    @classmethod
    def new(cls, key: str, value: Any = None, *, is_list: bool = False) -> "Entry":
        """Build an unsaved entry with its namespace prefixes computed."""
        return cls(key=key, value=value, is_list=is_list, namespaces=namespace_prefixes(key))

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"} if self.id is None else set())


class ListElement(BaseModel):
    """One member of a list entry."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = Field(default=None, alias="_id")
    list_id: str = Field(alias="listID")
    value: Any

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"} if self.id is None else set())
