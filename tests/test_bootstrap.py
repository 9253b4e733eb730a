import pytest
from sqlalchemy.orm import sessionmaker

from core.database import build_engine
from core.exceptions import BootstrapError
from models.department import DepartmentModel
from models.role import RoleModel, RoleName
from models.user import UserModel
from models.user_credentials import UserCredentialsModel
from models.user_role import UserRoleModel
from schemas.user import UserInfo
from utils.bootstrap import SAMPLE_USERS, BootstrapReconciler, generate_unique_username
from utils.index_worker import IndexWorker
from utils.passwords import hash_password, verify_password
from utils.search_index import UserSearchIndex


def _department(db, name="Engineering") -> DepartmentModel:
    department = DepartmentModel(name=name, description=f"{name} team")
    db.add(department)
    db.flush()
    return department


def _legacy_user(db, name, email, department) -> UserModel:
    user = UserModel(name=name, email=email, department=department, create_at="2024-01-01T00:00:00+00:00")
    db.add(user)
    db.flush()
    return user


def _credentials(db, username):
    return (
        db.query(UserCredentialsModel)
        .filter(UserCredentialsModel.username == username)
        .one_or_none()
    )


def test_generate_unique_username_appends_increasing_suffix(db):
    department = _department(db)
    for i, username in enumerate(["jane", "jane1", "jane2"]):
        user = _legacy_user(db, f"Jane {i}", f"jane{i}@example.com", department)
        db.add(UserCredentialsModel(user_id=user.id, username=username, password_hash="x"))
    db.flush()

    assert generate_unique_username(db, "jane") == "jane3"
    assert generate_unique_username(db, "joan") == "joan"


def test_migration_assigns_unique_usernames_from_email(session_factory, db):
    department = _department(db)
    for email in ("john.doe@example.com", "john.doe@corp.example.com", "john.doe@other.example.org"):
        _legacy_user(db, "John Doe", email, department)
    db.commit()

    report = BootstrapReconciler(session_factory).run()
    db.expire_all()

    assert report["users_migrated"] == 3
    usernames = [
        user.credentials.username
        for user in db.query(UserModel).filter(UserModel.name == "John Doe").order_by(UserModel.id)
    ]
    assert usernames == ["john.doe", "john.doe1", "john.doe2"]
    legacy = db.query(UserModel).filter(UserModel.name == "John Doe").first()
    assert legacy.role_names == ["ROLE_USER"]
    assert verify_password("password123", legacy.credentials.password_hash)


def test_migration_gives_admin_sentinel_the_admin_role(session_factory, db):
    department = _department(db, "Leadership")
    _legacy_user(db, "System Administrator", "sysadmin@example.com", department)
    db.commit()

    BootstrapReconciler(session_factory).run()
    db.expire_all()

    sentinel = db.query(UserModel).filter(UserModel.email == "sysadmin@example.com").one()
    assert sentinel.role_names == ["ROLE_ADMIN"]


def test_migration_reserves_admin_username_for_the_admin_account(session_factory, db):
    department = _department(db, "Partners")
    _legacy_user(db, "Partner Admin", "admin@partner.org", department)
    _legacy_user(db, "System Administrator", "admin@example.com", department)
    db.commit()

    BootstrapReconciler(session_factory).run()
    db.expire_all()

    admin = _credentials(db, "admin").user
    assert admin.email == "admin@example.com"
    assert admin.role_names == ["ROLE_ADMIN"]
    partner = db.query(UserModel).filter(UserModel.email == "admin@partner.org").one()
    assert partner.credentials.username == "admin1"
    assert partner.role_names == ["ROLE_USER"]
    assert verify_password("password123", partner.credentials.password_hash)
    admins = [user for user in db.query(UserModel).all() if user.has_role("ROLE_ADMIN")]
    assert len(admins) == 1


def test_migration_evicts_cached_users(session_factory, db, cache):
    department = _department(db)
    user = _legacy_user(db, "John Doe", "john.doe@example.com", department)
    db.commit()
    cache.cache_user(
        UserInfo(id=user.id, name="John Doe", email="john.doe@example.com",
                 department_id=department.id, department_name="Engineering")
    )

    BootstrapReconciler(session_factory, cache=cache).run()

    assert cache.get_cached_user(user.id) is None


def test_fresh_database_gets_roles_admin_and_sample_data(session_factory, db, worker, index):
    report = BootstrapReconciler(session_factory, worker=worker, seed_sample_data=True).run()
    worker.drain(timeout=10)

    assert report["roles_created"] == 2
    assert report["admin_created"] == 1
    assert report["sample_users_created"] == len(SAMPLE_USERS) + 1
    admin = _credentials(db, "admin").user
    assert admin.role_names == ["ROLE_ADMIN"]
    assert admin.department.name == "Leadership"
    assert _credentials(db, "testuser") is not None
    assert _credentials(db, "john.doe") is not None
    assert db.query(DepartmentModel).filter(DepartmentModel.name == "Leadership").count() == 1
    assert index.count() == db.query(UserModel).count()


def test_bootstrap_is_idempotent(session_factory, db):
    reconciler = BootstrapReconciler(session_factory, seed_sample_data=True)
    reconciler.run()
    counts = (
        db.query(UserModel).count(),
        db.query(DepartmentModel).count(),
        db.query(UserRoleModel).count(),
    )

    second = reconciler.run()

    assert second == {
        "roles_created": 0,
        "users_migrated": 0,
        "admin_created": 0,
        "sample_users_created": 0,
    }
    assert db.query(RoleModel).count() == 2
    assert db.query(UserCredentialsModel).filter_by(username="admin").count() == 1
    assert (
        db.query(UserModel).count(),
        db.query(DepartmentModel).count(),
        db.query(UserRoleModel).count(),
    ) == counts


def test_sample_data_skipped_when_other_data_exists(session_factory, db):
    _department(db, "Finance")
    db.commit()

    report = BootstrapReconciler(session_factory, seed_sample_data=True).run()

    assert report["sample_users_created"] == 0
    assert db.query(UserModel).count() == 1


def test_admin_recovery_resets_password_and_role(session_factory, db):
    BootstrapReconciler(session_factory).run()
    admin_credentials = _credentials(db, "admin")
    admin_credentials.password_hash = hash_password("operator-chose-this")
    admin = admin_credentials.user
    user_role = db.query(RoleModel).filter(RoleModel.name == RoleName.USER.value).one()
    admin.user_roles.clear()
    db.flush()
    admin.user_roles.append(UserRoleModel(role=user_role))
    db.commit()

    BootstrapReconciler(session_factory).run()
    db.expire_all()

    admin_credentials = _credentials(db, "admin")
    assert verify_password("admin123", admin_credentials.password_hash)
    assert admin_credentials.user.role_names == ["ROLE_ADMIN"]


def test_admin_password_kept_when_reset_disabled(session_factory, db):
    BootstrapReconciler(session_factory).run()
    _credentials(db, "admin").password_hash = hash_password("operator-chose-this")
    db.commit()

    BootstrapReconciler(session_factory, reset_admin_password=False).run()
    db.expire_all()

    assert verify_password("operator-chose-this", _credentials(db, "admin").password_hash)


def test_database_failure_is_fatal():
    # Tables were never created on this engine
    empty_engine = build_engine("sqlite://")
    factory = sessionmaker(autocommit=False, autoflush=False, bind=empty_engine)

    with pytest.raises(BootstrapError):
        BootstrapReconciler(factory).run()
    empty_engine.dispose()


def test_index_failure_is_not_fatal(session_factory, db):
    broken_worker = IndexWorker(UserSearchIndex(":memory:")).start()
    try:
        report = BootstrapReconciler(session_factory, worker=broken_worker, seed_sample_data=True).run()
        broken_worker.drain(timeout=10)
    finally:
        broken_worker.stop()

    assert report["admin_created"] == 1
    assert _credentials(db, "admin") is not None
