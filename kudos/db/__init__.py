from .models import CreateUserData, PublicUser, UpdateUserData, User, UserFilter
from .repository import JsonUserRepository, UserRepository

__all__ = [
    "CreateUserData",
    "PublicUser",
    "UpdateUserData",
    "User",
    "UserFilter",
    "JsonUserRepository",
    "UserRepository",
]
