"""Conversion utilities between ORM rows and public schemas.

Every field that leaves the service is listed by hand here. The password
digest lives on ``UserCredentialsModel`` and is never read by these functions.
"""

from typing import List

from models.department import DepartmentModel
from models.user import UserModel
from schemas.user import DepartmentInfo, UserInfo, UserSearchDocument


def model_to_user_info(model: UserModel) -> UserInfo:
    """Convert a UserModel to the public UserInfo projection.

    Args:
        model: UserModel instance with department, credentials and roles loaded.

    Returns:
        UserInfo instance.
    """
    return UserInfo(
        id=model.id,
        username=model.credentials.username if model.credentials else None,
        name=model.name,
        email=model.email,
        department_id=model.department_id,
        department_name=model.department.name if model.department else "",
        roles=list(model.role_names),
    )


def models_to_user_infos(models: List[UserModel]) -> List[UserInfo]:
    return [model_to_user_info(m) for m in models]


def model_to_search_document(model: UserModel) -> UserSearchDocument:
    """Convert a UserModel to the document stored in the search index."""
    return UserSearchDocument(
        id=model.id,
        name=model.name,
        email=model.email,
        department_name=model.department.name if model.department else "",
    )


def model_to_department_info(model: DepartmentModel) -> DepartmentInfo:
    return DepartmentInfo(id=model.id, name=model.name, description=model.description)
