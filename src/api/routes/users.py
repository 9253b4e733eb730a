"""User management routes.

Static paths (``/paged``, ``/search``, ``/departments`` ...) are declared
before ``/{user_id}`` so they are matched first.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.routes.auth import get_current_user, require_admin
from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.dependencies import UserManagerDep
from core.exceptions import (
    DepartmentNotFoundError,
    InvalidOperationError,
    UserAlreadyExistsError,
    UserDirectoryError,
    UserNotFoundError,
)
from models.role import RoleName
from schemas.user import (
    CreateDepartmentRequest,
    CreateUserRequest,
    DepartmentInfo,
    PagedSearchResponse,
    PagedUserResponse,
    RoleUpdateRequest,
    UpdateUserRequest,
    UserInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])

PageParam = Query(0, ge=0, description="Page number (0-indexed)")
SizeParam = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Number of users per page")


def _http_error(exc: UserDirectoryError) -> HTTPException:
    if isinstance(exc, UserNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UserAlreadyExistsError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (InvalidOperationError, DepartmentNotFoundError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("Unhandled user directory error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=List[UserInfo], summary="List users")
def list_users(
    user_manager: UserManagerDep,
    page: int = PageParam,
    size: int = SizeParam,
    current_user: UserInfo = Depends(get_current_user),
) -> List[UserInfo]:
    return user_manager.list_users(page, size)


@router.get("/paged", response_model=PagedUserResponse, summary="List users with paging metadata")
def list_users_paged(
    user_manager: UserManagerDep,
    page: int = PageParam,
    size: int = SizeParam,
    current_user: UserInfo = Depends(get_current_user),
) -> PagedUserResponse:
    return user_manager.list_users_paged(page, size)


@router.get("/search", response_model=PagedUserResponse, summary="Search users")
def search_users(
    user_manager: UserManagerDep,
    query: str = Query("", description="Search query string (handles typos)"),
    page: int = PageParam,
    size: int = SizeParam,
) -> PagedUserResponse:
    """Search users by name, email or department, tolerating typos.

    An empty query returns all users in ID order. When the search index is
    unavailable the result is an empty page, never an error.
    """
    return user_manager.search_users(query, page, size)


@router.get(
    "/fuzzy-search",
    response_model=PagedSearchResponse,
    summary="Raw search index results",
)
def fuzzy_search(
    user_manager: UserManagerDep,
    query: str = Query(..., min_length=1, description="Search query (handles typos)"),
    page: int = PageParam,
    size: int = SizeParam,
    current_user: UserInfo = Depends(get_current_user),
) -> PagedSearchResponse:
    return user_manager.fuzzy_search_documents(query, page, size)


@router.post("/reindex", summary="Rebuild the search index")
def reindex(
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(require_admin),
) -> dict:
    count = user_manager.reindex_all_users()
    logger.info("Reindex of %d users requested by %s", count, current_user.username)
    return {"success": True, "count": count, "message": f"Reindexed {count} users"}


@router.get("/departments", response_model=List[DepartmentInfo], summary="List departments")
def list_departments(
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(get_current_user),
) -> List[DepartmentInfo]:
    return user_manager.list_departments()


@router.post("/departments", response_model=DepartmentInfo, summary="Create department")
def create_department(
    req: CreateDepartmentRequest,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(require_admin),
) -> DepartmentInfo:
    if not req.name.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Department name is required",
        )
    return user_manager.create_department(req)


@router.get("/{user_id}", response_model=UserInfo, summary="Get user by ID")
def get_user(
    user_id: int,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(get_current_user),
) -> UserInfo:
    """Get a user, checking the cache first."""
    try:
        return user_manager.get_user(user_id)
    except UserNotFoundError as e:
        raise _http_error(e)


@router.post("", response_model=UserInfo, summary="Create user")
def create_user(
    req: CreateUserRequest,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(require_admin),
) -> UserInfo:
    try:
        return user_manager.create_user(req)
    except UserDirectoryError as e:
        raise _http_error(e)


@router.put("/{user_id}", response_model=UserInfo, summary="Update user")
def update_user(
    user_id: int,
    req: UpdateUserRequest,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(get_current_user),
) -> UserInfo:
    """Update a user and refresh its cached snapshot.

    Users may update themselves; anyone else requires the admin role, as does
    changing roles.
    """
    is_admin = RoleName.ADMIN.value in current_user.roles
    if current_user.id != user_id and not is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only update your own account.",
        )
    if req.roles and not is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can change roles.",
        )
    try:
        return user_manager.update_user(user_id, req)
    except UserDirectoryError as e:
        raise _http_error(e)


@router.patch("/{user_id}/roles", response_model=UserInfo, summary="Update user roles")
def update_user_roles(
    user_id: int,
    req: RoleUpdateRequest,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(require_admin),
) -> UserInfo:
    try:
        return user_manager.update_user_roles(user_id, req.roles)
    except UserDirectoryError as e:
        raise _http_error(e)


@router.delete("/{user_id}", summary="Delete user")
def delete_user(
    user_id: int,
    user_manager: UserManagerDep,
    current_user: UserInfo = Depends(require_admin),
) -> dict:
    try:
        user_manager.delete_user(user_id)
    except UserDirectoryError as e:
        raise _http_error(e)
    return {"success": True, "message": f"User {user_id} deleted"}
