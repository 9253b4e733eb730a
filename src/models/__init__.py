from .base import Base
from .department import DepartmentModel
from .role import RoleModel
from .user import UserModel
from .user_credentials import UserCredentialsModel
from .user_role import UserRoleModel

__all__ = [
    "Base",
    "DepartmentModel",
    "RoleModel",
    "UserModel",
    "UserCredentialsModel",
    "UserRoleModel",
]
