"""User schema definitions.

Request bodies, the public user projection returned by every endpoint, and the
search document stored in the secondary index. None of these models carries a
password digest.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    local, _, domain = value.partition("@")
    if not local or not domain or "." not in domain:
        raise ValueError("Email should be valid")
    return value


def _total_pages(total: int, size: int) -> int:
    return math.ceil(total / size) if size else 0


class UserInfo(BaseModel):
    """Public projection of a user. This is also the cached snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    username: Optional[str] = None
    name: str
    email: str
    department_id: int = Field(alias="departmentId")
    department_name: str = Field(alias="departmentName")
    roles: List[str] = Field(default_factory=list)


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1, description="Login name, globally unique.")
    password: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str
    department_id: int = Field(alias="departmentId")
    roles: Optional[List[str]] = Field(
        default=None,
        description='Role names like "ROLE_USER", "ROLE_ADMIN". Defaults to ROLE_USER.',
    )

    @field_validator("username", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        return _check_email(value)


class UpdateUserRequest(BaseModel):
    """Partial update. Absent fields are left untouched."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    department_id: Optional[int] = Field(default=None, alias="departmentId")
    password: Optional[str] = None
    roles: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_department(cls, data: Any) -> Any:
        """Accept both ``"departmentId": 2`` and ``"department": {"id": 2}``."""
        if isinstance(data, dict):
            department = data.get("department")
            if isinstance(department, dict) and department.get("id") is not None:
                data = dict(data)
                data["departmentId"] = int(department["id"])
        return data

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)


class RoleUpdateRequest(BaseModel):
    roles: List[str] = Field(min_length=1, description="At least one role is required")


class DepartmentInfo(BaseModel):
    id: int
    name: str
    description: Optional[str] = None


class CreateDepartmentRequest(BaseModel):
    name: str = Field(min_length=1, description="Department name is required")
    description: Optional[str] = None


class UserSearchDocument(BaseModel):
    """Denormalised projection held by the search index."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    email: str
    department_name: str = Field(default="", alias="departmentName")


class PagedUserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: List[UserInfo]
    page: int
    size: int
    total_elements: int = Field(alias="totalElements")
    total_pages: int = Field(alias="totalPages")

    @classmethod
    def build(cls, content: List[UserInfo], page: int, size: int, total: int) -> "PagedUserResponse":
        return cls(
            content=content,
            page=page,
            size=size,
            total_elements=total,
            total_pages=_total_pages(total, size),
        )

    @classmethod
    def empty(cls, page: int, size: int) -> "PagedUserResponse":
        return cls.build([], page, size, 0)


class PagedSearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: List[UserSearchDocument]
    page: int
    size: int
    total_elements: int = Field(alias="totalElements")
    total_pages: int = Field(alias="totalPages")

    @classmethod
    def build(
        cls, content: List[UserSearchDocument], page: int, size: int, total: int
    ) -> "PagedSearchResponse":
        return cls(
            content=content,
            page=page,
            size=size,
            total_elements=total,
            total_pages=_total_pages(total, size),
        )


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    user: UserInfo
    token: str


class CurrentUserResponse(BaseModel):
    user: UserInfo


class HealthResponse(BaseModel):
    status: str
    cache: Dict[str, Any]
    search_enabled: bool
