"""User database model.

This module defines the User database model using SQLAlchemy. The user row is
the system of record; credentials and role assignments hang off it through
explicit foreign keys.
"""

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import Base


class UserModel(Base):
    """User database model."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    department_id = Column(
        Integer, ForeignKey("departments.id"), index=True, nullable=False
    )
    create_at = Column(String, nullable=False)  # ISO format string

    department = relationship("DepartmentModel", back_populates="users", lazy="joined")
    credentials = relationship(
        "UserCredentialsModel",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    user_roles = relationship(
        "UserRoleModel",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def role_names(self):
        return sorted(ur.role.name for ur in self.user_roles)

    def has_role(self, role_name: str) -> bool:
        return any(ur.role.name == role_name for ur in self.user_roles)
