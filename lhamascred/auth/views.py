"""Authentication API routes."""

from fastapi import APIRouter, Depends

from lhamascred.core.dependencies import get_current_user
from lhamascred.auth.models import (
    UserCreate,
    UserLogin,
    UserResponse,
    SignupResponse,
    TokenResponse,
    ProviderCredentialsUpdate,
)
from lhamascred.auth.service import AuthService

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=SignupResponse, status_code=201)
async def register(user_data: UserCreate):
    """
    Request a new account with email/password.

    The account is created as `pending` and cannot log in until an
    administrator approves it.
    """
    user = await AuthService.register(user_data)
    return SignupResponse(
        message="Account created. Wait for an administrator to approve it.",
        user=user,
    )


@router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin):
    """
    Login with email and password.

    Returns access token and user info on success.
    """
    return await AuthService.login(credentials.email, credentials.password)


@router.get("/me", response_model=UserResponse)
async def get_profile(current_user: dict = Depends(get_current_user)):
    """Get current user's profile."""
    return await AuthService.get_user_by_id(current_user["id"])


@router.put("/me/credentials", response_model=UserResponse)
async def update_credentials(
    updates: ProviderCredentialsUpdate,
    current_user: dict = Depends(get_current_user),
):
    """
    Store the caller's V8 / Facta / C6 API credentials.

    Secrets are never returned; the response lists which providers are fully
    configured.
    """
    return await AuthService.update_provider_credentials(
        current_user["id"], updates.model_dump(exclude_none=True)
    )
