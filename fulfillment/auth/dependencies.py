from fastapi import HTTPException, status, Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from fulfillment.auth.jwt_validator import jwt_validator
import logging

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _authenticate(token: str) -> dict:
    payload = jwt_validator.verify_token(token)
    user = jwt_validator.claims_to_user(payload)

    if not user["user_id"]:
        logger.warning("Token missing user_id claim")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing user_id claim"
        )
    if not user["email"]:
        logger.warning("Token missing email claim")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing email claim"
        )

    logger.debug(f"Authenticated user {user['user_id']} ({user['account_type']})")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)
) -> dict:
    """Dependency for endpoints that require a signed-in user"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing"
        )
    return _authenticate(credentials.credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)
) -> Optional[dict]:
    """Dependency for endpoints open to guests; None when no token was sent"""
    if not credentials:
        return None
    return _authenticate(credentials.credentials)


async def require_admin(
    current_user: dict = Depends(get_current_user)
) -> dict:
    """Dependency to require ADMIN account type"""
    if current_user.get("account_type") != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Requires ADMIN account type"
        )
    return current_user
