"""
Collection/field metadata as seen by the grant engine.

The engine only needs to know, per field, whether it is an association, of
which kind, and what it points at. `SqlSchemaProvider` answers that from the
`acl_collections` / `acl_fields` tables; anything implementing
`SchemaProvider` can stand in for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Session, relationship

from grantsync.models.base import Base


class Collection(Base):
    __tablename__ = "acl_collections"

    name = Column(String(100), primary_key=True)
    title = Column(String(255))

    fields = relationship(
        "CollectionField",
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="CollectionField.id",
    )


class CollectionField(Base):
    __tablename__ = "acl_fields"
    __table_args__ = (UniqueConstraint("collection_name", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_name = Column(
        String(100), ForeignKey("acl_collections.name", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(100), nullable=False)
    # Association kind for relation fields (linkTo, attachments, subTable, ...),
    # plain UI interface name otherwise.
    interface = Column(String(50))
    target = Column(String(100))

    collection = relationship("Collection", back_populates="fields")


@dataclass(frozen=True)
class FieldInfo:
    name: str
    kind: Optional[str] = None
    target: Optional[str] = None


class SchemaProvider(Protocol):
    def get_fields(self, collection: str) -> Dict[str, FieldInfo]:
        ...


class SqlSchemaProvider:
    """Reads field metadata through the caller's session; memoized per instance."""

    def __init__(self, session: Session):
        self.session = session
        self._cache: Dict[str, Dict[str, FieldInfo]] = {}

    def get_fields(self, collection: str) -> Dict[str, FieldInfo]:
        cached = self._cache.get(collection)
        if cached is not None:
            return cached
        rows = (
            self.session.query(CollectionField)
            .filter(CollectionField.collection_name == collection)
            .all()
        )
        fields = {
            row.name: FieldInfo(name=row.name, kind=row.interface, target=row.target)
            for row in rows
        }
        self._cache[collection] = fields
        return fields


class StaticSchemaProvider:
    def __init__(self, collections: Dict[str, Dict[str, FieldInfo]]):
        self._collections = collections

    def get_fields(self, collection: str) -> Dict[str, FieldInfo]:
        return dict(self._collections.get(collection, {}))
