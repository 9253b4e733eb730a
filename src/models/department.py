from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from .base import Base


class DepartmentModel(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    # Unique by convention only; lookups by name take the first match.
    name = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)

    users = relationship("UserModel", back_populates="department")
