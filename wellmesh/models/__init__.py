# WellMesh Models
from wellmesh.models.base import BaseModel
from wellmesh.models.refresh_token import RefreshToken
from wellmesh.models.user import Role, User

__all__ = [
    "BaseModel",
    "RefreshToken",
    "Role",
    "User",
]
