"""Role database model and the fixed role enumeration."""

from enum import Enum

from sqlalchemy import Column, Integer, String

from .base import Base


class RoleName(str, Enum):
    """Roles known to the system. Created once at startup, never deleted."""

    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"

    @property
    def description(self) -> str:
        if self is RoleName.ADMIN:
            return "Administrator with full permissions"
        return "Standard user with basic permissions"


class RoleModel(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
