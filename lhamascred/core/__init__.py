"""Core module - config, database, dependencies, exceptions."""

from lhamascred.core.config import get_settings, Settings
from lhamascred.core.database import Database, get_db
from lhamascred.core.dependencies import get_current_user, get_current_user_optional
from lhamascred.core.exceptions import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    ForbiddenException,
    BadRequestException,
    ConflictException,
)

__all__ = [
    "get_settings",
    "Settings",
    "Database",
    "get_db",
    "get_current_user",
    "get_current_user_optional",
    "AppException",
    "NotFoundException",
    "UnauthorizedException",
    "ForbiddenException",
    "BadRequestException",
    "ConflictException",
]
