from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from grantsync.models.base import Base


class Role(Base):
    """
    A named principal grouping that owns resource grants.
    e.g. "admin", "member"
    """

    __tablename__ = "acl_roles"

    name = Column(String(100), primary_key=True)
    title = Column(String(255))
    hidden = Column(Boolean, default=False, nullable=False)
    default = Column(Boolean, default=False, nullable=False)

    # Role-level policy for resources without their own action config,
    # e.g. {"actions": ["view", "update:own"]}
    strategy = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    resources = relationship(
        "RoleResource",
        back_populates="role",
        cascade="all, delete-orphan",
        order_by="RoleResource.name",
    )


class RoleResource(Base):
    """Per-role configuration of one collection."""

    __tablename__ = "acl_roles_resources"
    __table_args__ = (UniqueConstraint("role_name", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_name = Column(
        String(100), ForeignKey("acl_roles.name", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(100), nullable=False)  # collection name
    using_actions_config = Column(Boolean, default=False, nullable=False)

    role = relationship("Role", back_populates="resources")
    actions = relationship(
        "RoleResourceAction",
        back_populates="resource",
        cascade="all, delete-orphan",
        order_by="RoleResourceAction.name",
    )


class RoleResourceScope(Base):
    """Reusable row filter, e.g. "Own records". `scope` is never interpreted here."""

    __tablename__ = "acl_roles_resources_scopes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    resource_name = Column(String(100), nullable=True)
    scope = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)


class RoleResourceAction(Base):
    __tablename__ = "acl_roles_resources_actions"
    __table_args__ = (UniqueConstraint("resource_id", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(
        Integer, ForeignKey("acl_roles_resources.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(100), nullable=False)
    # Field names this grant covers; NULL or [] covers every field.
    fields = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    scope_id = Column(
        Integer, ForeignKey("acl_roles_resources_scopes.id", ondelete="SET NULL"), nullable=True
    )

    resource = relationship("RoleResource", back_populates="actions")
    scope = relationship("RoleResourceScope")
