"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .vlog import VlogModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "VlogModel",
]
