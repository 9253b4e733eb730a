"""User management utilities.

This module keeps a user coherent across three stores: the SQL database (the
system of record), the lookaside user cache and the search index. Every write
goes to the database first; the cache is written or evicted second and the
index update is handed to the background worker last. Every read consults the
cache first. Cache and index failures are logged and never reach the caller.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

import pytz
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import BOOTSTRAP_ADMIN_USERNAME
from core.exceptions import (
    DependencyUnavailableError,
    DepartmentNotFoundError,
    InvalidOperationError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from models.department import DepartmentModel
from models.role import RoleModel, RoleName
from models.user import UserModel
from models.user_credentials import UserCredentialsModel
from models.user_role import UserRoleModel
from schemas.user import (
    CreateDepartmentRequest,
    CreateUserRequest,
    DepartmentInfo,
    PagedSearchResponse,
    PagedUserResponse,
    UpdateUserRequest,
    UserInfo,
)
from utils.converters import (
    model_to_department_info,
    model_to_search_document,
    model_to_user_info,
    models_to_user_infos,
)
from utils.index_worker import IndexWorker
from utils.passwords import hash_password, verify_password
from utils.search_index import UserSearchIndex
from utils.user_cache import UserCache

logger = logging.getLogger(__name__)


class UserManager:
    """Coordinates user reads and writes across database, cache and index."""

    def __init__(
        self,
        db: Session,
        cache: Optional[UserCache] = None,
        worker: Optional[IndexWorker] = None,
        index: Optional[UserSearchIndex] = None,
    ):
        """Initialize UserManager.

        Args:
            db: Request-scoped SQLAlchemy Session.
            cache: Shared user cache. ``None`` disables caching.
            worker: Shared background index worker. ``None`` disables index
                updates.
            index: Shared search index used for fuzzy reads. ``None`` makes
                every non-empty search return an empty page.
        """
        self.db = db
        self.cache = cache
        self.worker = worker
        self.index = index

    # ------------------------------------------------------------------
    # Cache and index side effects (never raise)
    # ------------------------------------------------------------------
    def _cache_read(self, user_id: int) -> Optional[UserInfo]:
        if self.cache is None:
            return None
        try:
            return self.cache.get_cached_user(user_id)
        except DependencyUnavailableError as exc:
            logger.warning("Cache read failed for user %s, falling back to database: %s", user_id, exc)
            return None

    def _cache_write(self, user: UserInfo) -> None:
        if self.cache is None:
            return
        try:
            self.cache.cache_user(user)
        except DependencyUnavailableError as exc:
            logger.warning("Failed to cache user %s: %s", user.id, exc)

    def _cache_evict(self, user_id: int) -> None:
        if self.cache is None:
            return
        try:
            self.cache.evict_user(user_id)
            logger.info("User %s evicted from cache", user_id)
        except DependencyUnavailableError as exc:
            logger.warning("Failed to evict user %s from cache: %s", user_id, exc)

    def _index_upsert(self, model: UserModel) -> None:
        if self.worker is None:
            return
        try:
            self.worker.submit_upsert(model_to_search_document(model))
        except RuntimeError as exc:
            logger.warning("Failed to enqueue index update for user %s: %s", model.id, exc)

    def _index_delete(self, user_id: int) -> None:
        if self.worker is None:
            return
        try:
            self.worker.submit_delete(user_id)
        except RuntimeError as exc:
            logger.warning("Failed to enqueue index delete for user %s: %s", user_id, exc)

    # ------------------------------------------------------------------
    # Database helpers
    # ------------------------------------------------------------------
    def _get_model(self, user_id: int) -> UserModel:
        model = self.db.query(UserModel).filter(UserModel.id == user_id).first()
        if model is None:
            raise UserNotFoundError(user_id)
        return model

    def _get_department_model(self, department_id: Optional[int]) -> DepartmentModel:
        if department_id is None:
            raise InvalidOperationError("Department ID cannot be null")
        department = (
            self.db.query(DepartmentModel)
            .filter(DepartmentModel.id == department_id)
            .first()
        )
        if department is None:
            raise DepartmentNotFoundError(department_id)
        return department

    def _resolve_roles(self, role_names: Iterable[str]) -> List[RoleModel]:
        roles = []
        for role_name in sorted(set(role_names)):
            role = self.db.query(RoleModel).filter(RoleModel.name == role_name).first()
            if role is None:
                raise InvalidOperationError(f"Role not found: {role_name}")
            roles.append(role)
        return roles

    def _replace_roles(self, model: UserModel, role_names: Iterable[str]) -> None:
        roles = self._resolve_roles(role_names)
        model.user_roles.clear()
        # Orphaned rows must be gone before re-inserting the same (user, role) pair
        self.db.flush()
        for role in roles:
            model.user_roles.append(UserRoleModel(role=role))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_user(self, user_id: int) -> UserInfo:
        """Get a user by ID, serving from cache when possible.

        A cached snapshot may be up to the cache TTL old. On a miss the
        database row is read and written back to the cache.

        Raises:
            UserNotFoundError: If the user does not exist in the database.
        """
        cached = self._cache_read(user_id)
        if cached is not None:
            return cached

        logger.info("Fetching user %s from database", user_id)
        user = model_to_user_info(self._get_model(user_id))
        self._cache_write(user)
        return user

    def get_user_by_username(self, username: str) -> Optional[UserInfo]:
        credentials = (
            self.db.query(UserCredentialsModel)
            .filter(UserCredentialsModel.username == username)
            .first()
        )
        if credentials is None:
            return None
        return model_to_user_info(credentials.user)

    def authenticate(self, username: str, password: str) -> Optional[UserInfo]:
        """Check a username and password against the stored digest.

        Returns:
            The user's projection if the password matches, None otherwise.
        """
        credentials = (
            self.db.query(UserCredentialsModel)
            .filter(UserCredentialsModel.username == username)
            .first()
        )
        if credentials is None or not verify_password(password, credentials.password_hash):
            return None
        return model_to_user_info(credentials.user)

    def count_users(self) -> int:
        return self.db.query(UserModel).count()

    def list_users(self, page: int, size: int) -> List[UserInfo]:
        models = (
            self.db.query(UserModel)
            .order_by(UserModel.id.asc())
            .offset(page * size)
            .limit(size)
            .all()
        )
        return models_to_user_infos(models)

    def list_users_paged(self, page: int, size: int) -> PagedUserResponse:
        return PagedUserResponse.build(
            self.list_users(page, size), page, size, self.count_users()
        )

    def search_users(self, query: Optional[str], page: int, size: int) -> PagedUserResponse:
        """Search users.

        An empty query lists users from the database ordered by ID. Anything
        else goes to the search index and the matching IDs are loaded from the
        database in relevance order. Hits on the page for users no longer in
        the database are left out and subtracted from ``total_elements``. If
        the index is disabled or fails, an empty page is returned instead of
        an error.
        """
        if not query or not query.strip():
            return self.list_users_paged(page, size)

        if self.index is None:
            logger.warning("Search index disabled; returning empty results for: %s", query)
            return PagedUserResponse.empty(page, size)
        try:
            documents, total = self.index.fuzzy_search(query, page, size)
        except DependencyUnavailableError as exc:
            logger.error("Fuzzy search failed for %r: %s", query, exc)
            return PagedUserResponse.empty(page, size)

        ids = [doc.id for doc in documents]
        by_id = {
            model.id: model
            for model in self.db.query(UserModel).filter(UserModel.id.in_(ids)).all()
        } if ids else {}
        # Documents whose user has since been deleted are dropped from the page
        # and from the total
        content = [model_to_user_info(by_id[i]) for i in ids if i in by_id]
        return PagedUserResponse.build(content, page, size, total - (len(ids) - len(content)))

    def fuzzy_search_documents(self, query: str, page: int, size: int) -> PagedSearchResponse:
        """Raw search index results, without loading users from the database."""
        documents, total = [], 0
        if self.index is None:
            logger.warning("Fuzzy search not available - search index disabled")
        else:
            try:
                documents, total = self.index.fuzzy_search(query, page, size)
            except DependencyUnavailableError as exc:
                logger.error("Fuzzy search failed for %r: %s", query, exc)
        return PagedSearchResponse.build(documents, page, size, total)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_user(self, req: CreateUserRequest) -> UserInfo:
        """Create a user with credentials and roles.

        The user, credentials and role rows are committed in one transaction.
        Only after the commit is the snapshot cached and the index update
        queued, so a failed write leaves cache and index untouched.

        Args:
            req: Validated creation request. Roles default to ROLE_USER.

        Returns:
            The created user's projection.

        Raises:
            DepartmentNotFoundError: If the department does not exist.
            InvalidOperationError: If a role name is unknown.
            UserAlreadyExistsError: If the email or username is taken.
        """
        logger.info(
            "Creating user: username=%s, name=%s, email=%s, departmentId=%s, roles=%s",
            req.username, req.name, req.email, req.department_id, req.roles,
        )
        try:
            department = self._get_department_model(req.department_id)
            roles = self._resolve_roles(req.roles or [RoleName.USER.value])
            model = UserModel(
                name=req.name,
                email=req.email,
                department=department,
                create_at=datetime.now(pytz.utc).isoformat(),
            )
            model.credentials = UserCredentialsModel(
                username=req.username, password_hash=hash_password(req.password)
            )
            for role in roles:
                model.user_roles.append(UserRoleModel(role=role))
            self.db.add(model)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise UserAlreadyExistsError(
                f"User '{req.username}' or email '{req.email}' already exists"
            ) from e
        except (DepartmentNotFoundError, InvalidOperationError):
            self.db.rollback()
            raise
        self.db.refresh(model)

        user = model_to_user_info(model)
        self._cache_write(user)
        self._index_upsert(model)
        logger.info("Created user: %s with roles: %s", req.username, user.roles)
        return user

    def update_user(self, user_id: int, req: UpdateUserRequest) -> UserInfo:
        """Apply a partial update and overwrite the cached snapshot.

        Raises:
            UserNotFoundError: If the user does not exist.
            DepartmentNotFoundError: If the new department does not exist.
            InvalidOperationError: If a role name is unknown.
            UserAlreadyExistsError: If the new email is taken.
        """
        logger.info("Attempting to update user with ID: %s", user_id)
        model = self._get_model(user_id)
        old_name, old_email = model.name, model.email
        try:
            if req.name is not None:
                model.name = req.name
            if req.email is not None:
                model.email = req.email
            if req.department_id is not None:
                model.department = self._get_department_model(req.department_id)
            if req.password:
                if model.credentials is None:
                    raise InvalidOperationError(f"User {user_id} has no credentials")
                model.credentials.password_hash = hash_password(req.password)
            if req.roles:
                self._replace_roles(model, req.roles)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise UserAlreadyExistsError(f"Email '{req.email}' already exists") from e
        except (DepartmentNotFoundError, InvalidOperationError):
            self.db.rollback()
            raise
        self.db.refresh(model)

        user = model_to_user_info(model)
        logger.info(
            "User updated successfully - ID: %s, Old: [name=%s, email=%s], New: [name=%s, email=%s, dept=%s]",
            user_id, old_name, old_email, user.name, user.email, user.department_name,
        )
        self._cache_write(user)
        self._index_upsert(model)
        return user

    def update_user_roles(self, user_id: int, role_names: List[str]) -> UserInfo:
        """Replace a user's roles.

        Raises:
            UserNotFoundError: If the user does not exist.
            InvalidOperationError: If a role name is unknown.
        """
        logger.info("Attempting to update roles for user with ID: %s", user_id)
        model = self._get_model(user_id)
        old_roles = model.role_names
        try:
            self._replace_roles(model, role_names)
            self.db.commit()
        except InvalidOperationError:
            self.db.rollback()
            raise
        self.db.refresh(model)

        user = model_to_user_info(model)
        logger.info(
            "User roles updated successfully - ID: %s, Old roles: %s, New roles: %s",
            user_id, old_roles, user.roles,
        )
        self._cache_write(user)
        return user

    def delete_user(self, user_id: int) -> None:
        """Delete a user, then evict it from cache and index.

        Raises:
            UserNotFoundError: If the user does not exist.
            InvalidOperationError: If the user is the bootstrap admin.
        """
        logger.info("Attempting to delete user with ID: %s", user_id)
        model = self._get_model(user_id)
        if model.credentials is not None and model.credentials.username == BOOTSTRAP_ADMIN_USERNAME:
            logger.warning("Attempted to delete admin user - operation blocked")
            raise InvalidOperationError("Cannot delete the admin user")

        name = model.name
        # Credentials and role assignments go with the user via cascade
        self.db.delete(model)
        self.db.commit()
        logger.info("User deleted successfully - ID: %s, Name: %s", user_id, name)

        self._cache_evict(user_id)
        self._index_delete(user_id)

    def reindex_all_users(self) -> int:
        """Queue a full rebuild of the search index from the database.

        Returns:
            Number of users queued, or 0 when indexing is disabled.
        """
        if self.worker is None:
            logger.warning("Reindex not available - search index disabled")
            return 0
        models = self.db.query(UserModel).order_by(UserModel.id.asc()).all()
        documents = [model_to_search_document(m) for m in models]
        if not self.worker.submit_reindex(documents):
            return 0
        return len(documents)

    # ------------------------------------------------------------------
    # Departments
    # ------------------------------------------------------------------
    def list_departments(self) -> List[DepartmentInfo]:
        models = self.db.query(DepartmentModel).order_by(DepartmentModel.id.asc()).all()
        return [model_to_department_info(m) for m in models]

    def get_department(self, department_id: int) -> DepartmentInfo:
        return model_to_department_info(self._get_department_model(department_id))

    def create_department(self, req: CreateDepartmentRequest) -> DepartmentInfo:
        model = DepartmentModel(name=req.name.strip(), description=req.description)
        self.db.add(model)
        self.db.commit()
        self.db.refresh(model)
        logger.info("Created department: %s", model.name)
        return model_to_department_info(model)
