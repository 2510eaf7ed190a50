"""Authentication service - JWT handling, password hashing, user operations."""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from lhamascred.core.config import get_settings
from lhamascred.core.database import Database
from lhamascred.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
from lhamascred.auth.models import UserCreate, UserResponse, TokenResponse
from lhamascred.providers.base import PROVIDER_CREDENTIAL_FIELDS

settings = get_settings()
logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

LOGIN_BLOCKED_MESSAGES = {
    "pending": "Your account is waiting for administrator approval.",
    "rejected": "Your account request was rejected.",
    "inactive": "Your account is inactive. Contact an administrator.",
}


def configured_providers(credentials: Optional[Dict[str, str]]) -> List[str]:
    """Providers for which every required credential field is filled in."""
    credentials = credentials or {}
    return [
        provider
        for provider, fields in PROVIDER_CREDENTIAL_FIELDS.items()
        if all((credentials.get(f) or "").strip() for f in fields)
    ]


class AuthService:
    """Handles authentication and user operations."""

    # ==================== Password & Token ====================

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def create_access_token(user_id: str, email: str) -> str:
        """Create a JWT access token."""
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
        payload = {
            "sub": user_id,
            "email": email,
            "exp": expire,
            "iat": datetime.utcnow(),
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Optional[dict]:
        """Decode and validate a JWT token."""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    # ==================== User Operations ====================

    @classmethod
    def _get_collection(cls):
        return Database.get_collection("users")

    @staticmethod
    def to_response(user: dict) -> UserResponse:
        return UserResponse(
            id=str(user["_id"]),
            email=user["email"],
            name=user.get("name") or user["email"].split("@")[0],
            role=user.get("role") or "user",
            status=user.get("status") or "pending",
            team_id=user.get("team_id"),
            configured_providers=configured_providers(user.get("credentials")),
            created_at=user["created_at"],
        )

    @classmethod
    async def register(cls, user_data: UserCreate) -> UserResponse:
        """Register a new user. The account starts as pending."""
        users = cls._get_collection()

        email = user_data.email.lower()
        if await users.find_one({"email": email}):
            raise ConflictException("Email already registered")

        user_doc = {
            "email": email,
            "password_hash": cls.hash_password(user_data.password),
            "name": user_data.name,
            "role": "user",
            "status": "pending",
            "team_id": None,
            "credentials": {},
            "created_at": datetime.utcnow(),
        }

        try:
            result = await users.insert_one(user_doc)
        except DuplicateKeyError:
            raise ConflictException("Email already registered")

        user_doc["_id"] = result.inserted_id
        logger.info(f"New signup pending approval: {email}")
        return cls.to_response(user_doc)

    @classmethod
    async def login(cls, email: str, password: str) -> TokenResponse:
        """Login with email and password. Only active accounts get a token."""
        user = await cls._get_collection().find_one({"email": email.lower()})

        if not user or not user.get("password_hash"):
            raise UnauthorizedException("Invalid email or password")
        if not cls.verify_password(password, user["password_hash"]):
            raise UnauthorizedException("Invalid email or password")

        user_status = user.get("status") or "pending"
        if user_status != "active":
            raise ForbiddenException(LOGIN_BLOCKED_MESSAGES.get(user_status, "Account not active."))

        token = cls.create_access_token(str(user["_id"]), user["email"])
        return TokenResponse(access_token=token, user=cls.to_response(user))

    @classmethod
    async def get_user_doc(cls, user_id: str) -> dict:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            raise NotFoundException("User not found")

        user = await cls._get_collection().find_one({"_id": oid})
        if not user:
            raise NotFoundException("User not found")
        return user

    @classmethod
    async def get_user_by_id(cls, user_id: str) -> UserResponse:
        return cls.to_response(await cls.get_user_doc(user_id))

    @classmethod
    async def get_provider_credentials(cls, user_id: str) -> Dict[str, str]:
        user = await cls.get_user_doc(user_id)
        return dict(user.get("credentials") or {})

    @classmethod
    async def update_provider_credentials(cls, user_id: str, updates: Dict[str, str]) -> UserResponse:
        """Merge credential fields into the user document."""
        await cls.get_user_doc(user_id)

        set_fields = {f"credentials.{key}": (value or "").strip() for key, value in updates.items()}
        if not set_fields:
            return await cls.get_user_by_id(user_id)

        user = await cls._get_collection().find_one_and_update(
            {"_id": ObjectId(user_id)},
            {"$set": set_fields},
            return_document=ReturnDocument.AFTER,
        )
        logger.info(f"Provider credentials updated for user {user_id}: {sorted(updates)}")
        return cls.to_response(user)

    # ==================== Administration ====================

    @classmethod
    async def list_users(
        cls,
        *,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[UserResponse]:
        query = {"status": status} if status else {}
        cursor = cls._get_collection().find(query).sort("created_at", -1).skip(max(0, skip)).limit(limit)
        return [cls.to_response(u) for u in await cursor.to_list(length=limit)]

    @classmethod
    async def update_user(cls, user_id: str, updates: Dict[str, Optional[str]]) -> UserResponse:
        """Change status, role or team of a user (approval, promotion, deactivation)."""
        await cls.get_user_doc(user_id)
        if not updates:
            return await cls.get_user_by_id(user_id)

        user = await cls._get_collection().find_one_and_update(
            {"_id": ObjectId(user_id)},
            {"$set": {**updates, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info(f"User {user['email']} updated by admin: {updates}")
        return cls.to_response(user)
