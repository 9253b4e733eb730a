"""Startup reconciliation of roles, credentials and the admin account.

``BootstrapReconciler.run()`` is called once before the API accepts requests.
It runs four phases, each in its own transaction and each safe to repeat on
every startup:

1. ensure the fixed roles exist;
2. give legacy users without credentials or roles a username, a default
   password and a role;
3. make sure exactly one ``admin`` account exists with the admin role and
   the known bootstrap password;
4. seed sample departments and users into an otherwise empty database.

Database errors abort startup with ``BootstrapError``. Search index updates
are queued on the index worker and never fail the bootstrap.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import pytz
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    BOOTSTRAP_ADMIN_DEPARTMENT,
    BOOTSTRAP_ADMIN_EMAIL,
    BOOTSTRAP_ADMIN_NAME,
    BOOTSTRAP_ADMIN_PASSWORD,
    BOOTSTRAP_ADMIN_USERNAME,
    DEFAULT_USER_PASSWORD,
    RESET_ADMIN_PASSWORD_ON_STARTUP,
    SEED_SAMPLE_DATA,
)
from core.exceptions import BootstrapError, DependencyUnavailableError
from models.department import DepartmentModel
from models.role import RoleModel, RoleName
from models.user import UserModel
from models.user_credentials import UserCredentialsModel
from models.user_role import UserRoleModel
from schemas.user import UserSearchDocument
from utils.converters import model_to_search_document
from utils.index_worker import IndexWorker
from utils.passwords import hash_password, verify_password
from utils.user_cache import UserCache

logger = logging.getLogger(__name__)

SAMPLE_DEPARTMENTS = (
    ("Engineering", "Software development and technical teams"),
    ("Marketing", "Marketing and brand management"),
    ("Sales", "Sales and business development"),
    ("HR", "Human resources and recruitment"),
    ("Security", "Security and risk management"),
    ("Photography", "Photography and media"),
    ("Legal", "Legal and compliance"),
    ("Journalism", "News and reporting"),
    ("Leadership", "Executive leadership"),
    ("Research", "Research and development"),
    ("Operations", "Operations and logistics"),
)

SAMPLE_TEST_USER = ("Test User", "test.user@example.com", "Engineering", "testuser")

SAMPLE_USERS = (
    ("John Doe", "john.doe@example.com", "Engineering"),
    ("Jane Smith", "jane.smith@example.com", "Marketing"),
    ("Bob Johnson", "bob.johnson@example.com", "Sales"),
    ("Alice Brown", "alice.brown@example.com", "HR"),
    ("Charlie Wilson", "charlie.wilson@example.com", "Engineering"),
    ("Tony Stark", "tony.stark@example.com", "Engineering"),
    ("Bruce Wayne", "bruce.wayne@example.com", "Security"),
    ("Peter Parker", "peter.parker@example.com", "Photography"),
    ("Diana Prince", "diana.prince@example.com", "Legal"),
    ("Clark Kent", "clark.kent@example.com", "Journalism"),
    ("Natasha Romanoff", "natasha.romanoff@example.com", "Security"),
    ("Steve Rogers", "steve.rogers@example.com", "Leadership"),
    ("Wanda Maximoff", "wanda.maximoff@example.com", "Research"),
    ("Scott Lang", "scott.lang@example.com", "Engineering"),
    ("Carol Danvers", "carol.danvers@example.com", "Operations"),
)

_DEPARTMENT_DESCRIPTIONS = dict(SAMPLE_DEPARTMENTS)


def _now() -> str:
    return datetime.now(pytz.utc).isoformat()


def generate_unique_username(
    db: Session, base_username: str, reserved: Tuple[str, ...] = ()
) -> str:
    """Return ``base_username``, or the first free ``base_username<N>``.

    Suffixes start at 1. Names in ``reserved`` are treated as taken.
    Credentials added earlier in the same transaction must already be
    flushed to be seen.
    """
    username = base_username
    suffix = 1
    while username in reserved or (
        db.query(UserCredentialsModel.id)
        .filter(UserCredentialsModel.username == username)
        .first()
        is not None
    ):
        username = f"{base_username}{suffix}"
        suffix += 1
    return username


def _get_role(db: Session, role_name: RoleName) -> RoleModel:
    role = db.query(RoleModel).filter(RoleModel.name == role_name.value).first()
    if role is None:
        raise BootstrapError(f"{role_name.value} not found")
    return role


def _find_or_create_department(db: Session, name: str) -> DepartmentModel:
    department = (
        db.query(DepartmentModel)
        .filter(DepartmentModel.name == name)
        .order_by(DepartmentModel.id.asc())
        .first()
    )
    if department is None:
        logger.info("%s department not found, creating it...", name)
        department = DepartmentModel(name=name, description=_DEPARTMENT_DESCRIPTIONS.get(name))
        db.add(department)
        db.flush()
    return department


def _is_admin_sentinel(user: UserModel) -> bool:
    return user.email == BOOTSTRAP_ADMIN_EMAIL or user.name == BOOTSTRAP_ADMIN_NAME


class BootstrapReconciler:
    """Idempotent startup procedure for the user store."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cache: Optional[UserCache] = None,
        worker: Optional[IndexWorker] = None,
        reset_admin_password: bool = RESET_ADMIN_PASSWORD_ON_STARTUP,
        seed_sample_data: bool = SEED_SAMPLE_DATA,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.worker = worker
        self.reset_admin_password = reset_admin_password
        self.seed_sample_data = seed_sample_data

    def run(self) -> Dict[str, int]:
        """Run all phases in order.

        Returns:
            Counts of what each phase changed.

        Raises:
            BootstrapError: If any phase fails against the database.
        """
        logger.info("Starting bootstrap reconciliation")
        report = {
            "roles_created": self._run_phase("ensure roles", self.ensure_roles),
            "users_migrated": self._run_phase("migrate legacy users", self.migrate_legacy_users),
        }
        if report["users_migrated"]:
            self._evict_cached_users()

        admin_documents = self._run_phase("ensure bootstrap admin", self.ensure_bootstrap_admin)
        report["admin_created"] = len(admin_documents)
        for document in admin_documents:
            self._enqueue(lambda: self.worker.submit_upsert(document))

        report["sample_users_created"] = 0
        if self.seed_sample_data:
            seeded = self._run_phase("seed sample data", self.seed_sample)
            report["sample_users_created"] = len(seeded)
            if seeded:
                all_documents = self._run_phase("collect search documents", self._all_documents)
                self._enqueue(lambda: self.worker.submit_reindex(all_documents))

        logger.info("Bootstrap reconciliation complete: %s", report)
        return report

    def _run_phase(self, name: str, phase: Callable[[Session], object]):
        db = self.session_factory()
        try:
            result = phase(db)
            db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Bootstrap phase '%s' failed: %s", name, exc)
            raise BootstrapError(f"Bootstrap phase '{name}' failed: {exc}") from exc
        finally:
            db.close()

    def _enqueue(self, submit: Callable[[], bool]) -> None:
        if self.worker is None:
            return
        try:
            submit()
        except RuntimeError as exc:
            logger.warning("Failed to enqueue search index update during bootstrap: %s", exc)

    def _evict_cached_users(self) -> None:
        if self.cache is None:
            return
        try:
            self.cache.evict_all_users()
        except DependencyUnavailableError as exc:
            logger.warning("Failed to clear user cache after migration: %s", exc)

    @staticmethod
    def _all_documents(db: Session) -> List[UserSearchDocument]:
        models = db.query(UserModel).order_by(UserModel.id.asc()).all()
        return [model_to_search_document(m) for m in models]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def ensure_roles(self, db: Session) -> int:
        created = 0
        for role_name in RoleName:
            exists = db.query(RoleModel.id).filter(RoleModel.name == role_name.value).first()
            if exists is None:
                db.add(RoleModel(name=role_name.value, description=role_name.description))
                created += 1
                logger.info("Created %s", role_name.value)
        return created

    def migrate_legacy_users(self, db: Session) -> int:
        logger.info("Checking for users without authentication fields...")
        legacy_users = [
            user
            for user in db.query(UserModel).order_by(UserModel.id.asc()).all()
            if user.credentials is None or not user.user_roles
        ]
        if not legacy_users:
            logger.info("All users have authentication fields. No migration needed.")
            return 0

        logger.info(
            "Found %d users without authentication fields. Starting migration...",
            len(legacy_users),
        )
        user_role = _get_role(db, RoleName.USER)
        admin_role = _get_role(db, RoleName.ADMIN)

        for user in legacy_users:
            if user.credentials is None:
                base_username = user.email.split("@")[0]
                # Only the admin sentinel may take the bootstrap admin username
                reserved = () if _is_admin_sentinel(user) else (BOOTSTRAP_ADMIN_USERNAME,)
                username = generate_unique_username(db, base_username, reserved)
                user.credentials = UserCredentialsModel(
                    username=username, password_hash=hash_password(DEFAULT_USER_PASSWORD)
                )
                db.flush()
                logger.info("Created credentials for user: %s (email: %s)", username, user.email)

            if not user.user_roles:
                if _is_admin_sentinel(user):
                    user.user_roles.append(UserRoleModel(role=admin_role))
                    logger.info("Assigned ROLE_ADMIN to admin user: %s", user.email)
                else:
                    user.user_roles.append(UserRoleModel(role=user_role))
                    logger.info("Assigned ROLE_USER to user: %s", user.email)

        logger.info(
            "Migration complete: %d users updated with authentication fields",
            len(legacy_users),
        )
        return len(legacy_users)

    def ensure_bootstrap_admin(self, db: Session) -> List[UserSearchDocument]:
        """Make sure the ``admin`` account exists and is usable.

        Returns:
            Search documents to index; non-empty only when the account was
            created in this run.
        """
        admin_role = _get_role(db, RoleName.ADMIN)
        credentials = (
            db.query(UserCredentialsModel)
            .filter(UserCredentialsModel.username == BOOTSTRAP_ADMIN_USERNAME)
            .first()
        )
        if credentials is not None:
            logger.info("Admin user already exists. Verifying admin role and password...")
            self._repair_admin(db, credentials, admin_role)
            return []

        logger.info("Creating bootstrap admin user...")
        department = _find_or_create_department(db, BOOTSTRAP_ADMIN_DEPARTMENT)
        admin = db.query(UserModel).filter(UserModel.email == BOOTSTRAP_ADMIN_EMAIL).first()
        if admin is None:
            admin = UserModel(
                name=BOOTSTRAP_ADMIN_NAME,
                email=BOOTSTRAP_ADMIN_EMAIL,
                department=department,
                create_at=_now(),
            )
            db.add(admin)
        password_hash = hash_password(BOOTSTRAP_ADMIN_PASSWORD)
        if admin.credentials is None:
            admin.credentials = UserCredentialsModel(
                username=BOOTSTRAP_ADMIN_USERNAME, password_hash=password_hash
            )
        else:
            # An account with the admin email exists under another username
            admin.credentials.username = BOOTSTRAP_ADMIN_USERNAME
            admin.credentials.password_hash = password_hash
        admin.user_roles.clear()
        db.flush()
        admin.user_roles.append(UserRoleModel(role=admin_role))
        db.flush()

        self._evict_cached_user(admin.id)
        logger.info(
            "Bootstrap admin created - username: %s, role: %s",
            BOOTSTRAP_ADMIN_USERNAME,
            RoleName.ADMIN.value,
        )
        return [model_to_search_document(admin)]

    def _repair_admin(
        self, db: Session, credentials: UserCredentialsModel, admin_role: RoleModel
    ) -> None:
        admin = credentials.user
        changed = False
        if not admin.has_role(RoleName.ADMIN.value):
            logger.info("Admin user exists but doesn't have ROLE_ADMIN. Fixing...")
            admin.user_roles.clear()
            db.flush()
            admin.user_roles.append(UserRoleModel(role=admin_role))
            changed = True
            logger.info("Admin role fixed - username: %s now has ROLE_ADMIN", credentials.username)
        else:
            logger.info("Admin user already has ROLE_ADMIN.")

        if verify_password(BOOTSTRAP_ADMIN_PASSWORD, credentials.password_hash):
            logger.info("Admin password already matches the bootstrap password.")
        elif self.reset_admin_password:
            logger.warning("Resetting admin password to the bootstrap password")
            credentials.password_hash = hash_password(BOOTSTRAP_ADMIN_PASSWORD)
        else:
            logger.info("Admin password differs from the bootstrap password; reset disabled")

        if changed:
            db.flush()
            self._evict_cached_user(admin.id)

    def _evict_cached_user(self, user_id: int) -> None:
        if self.cache is None:
            return
        try:
            self.cache.evict_user(user_id)
        except DependencyUnavailableError as exc:
            logger.warning("Failed to evict user %s from cache: %s", user_id, exc)

    def seed_sample(self, db: Session) -> List[int]:
        """Create sample departments and users in an otherwise empty database.

        Skipped when any user besides the admin, or any department besides
        the admin's department, already exists.

        Returns:
            IDs of the created users.
        """
        user_count = db.query(UserModel).count()
        other_departments = (
            db.query(DepartmentModel)
            .filter(DepartmentModel.name != BOOTSTRAP_ADMIN_DEPARTMENT)
            .count()
        )
        if user_count > 1 or other_departments > 0:
            logger.info(
                "Database already contains %d users and %d other departments. "
                "Skipping sample data initialization.",
                user_count,
                other_departments,
            )
            return []

        logger.info("Database is empty. Initializing sample data...")
        departments = {
            name: _find_or_create_department(db, name) for name, _ in SAMPLE_DEPARTMENTS
        }
        user_role = _get_role(db, RoleName.USER)

        created = []
        name, email, department_name, username = SAMPLE_TEST_USER
        created.append(
            self._create_sample_user(db, name, email, departments[department_name], user_role, username)
        )
        logger.info("Created test regular user - username: %s", username)

        for name, email, department_name in SAMPLE_USERS:
            created.append(
                self._create_sample_user(db, name, email, departments[department_name], user_role)
            )

        logger.info(
            "Sample data initialized successfully: %d users and %d departments created",
            len(created),
            len(departments),
        )
        return [user.id for user in created]

    @staticmethod
    def _create_sample_user(
        db: Session,
        name: str,
        email: str,
        department: DepartmentModel,
        role: RoleModel,
        username: Optional[str] = None,
    ) -> UserModel:
        user = UserModel(name=name, email=email, department=department, create_at=_now())
        user.credentials = UserCredentialsModel(
            username=generate_unique_username(
                db, username or email.split("@")[0], (BOOTSTRAP_ADMIN_USERNAME,)
            ),
            password_hash=hash_password(DEFAULT_USER_PASSWORD),
        )
        user.user_roles.append(UserRoleModel(role=role))
        db.add(user)
        db.flush()
        return user
