"""Authentication endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.database import get_db
from mbee.schemas.auth import LoginRequest, TokenResponse
from mbee.services.auth_service import AuthService

router = APIRouter()


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
async def login(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """User login endpoint.

    Exchanges a username and password for a bearer access token.

    Args:
        login_data: Login credentials (username, password)
        db: Database session

    Returns:
        TokenResponse with the access token

    Raises:
        AuthenticationError: 401 if credentials are invalid
    """
    service = AuthService(db)
    access_token, expires_in, _ = await service.login(login_data.username, login_data.password)
    return TokenResponse(access_token=access_token, expires_in=expires_in)
