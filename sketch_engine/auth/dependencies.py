"""
Bearer-token guard for generation and session routes.

Disabled unless REQUIRE_AUTH is set; then every guarded request needs an
HS256 (by default) JWT signed with JWT_SECRET.
"""
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from logging_config import logger

security = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Rejected credential; rendered as a 401 envelope by the app"""

    def __init__(self, error: str, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.error = error
        self.message = message
        self.code = code

    def to_json(self) -> dict:
        body = {"success": False, "error": self.error, "message": self.message}
        if self.code:
            body["code"] = self.code
        return body


def verify_token(token: str) -> dict:
    """Decode and verify a bearer token, returning its claims"""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError(
            "Token expired",
            "Your session has expired. Please refresh your token.",
            code="TOKEN_EXPIRED"
        )
    except jwt.PyJWTError:
        raise AuthError("Invalid token", "The provided token is invalid")


async def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[dict]:
    """
    Dependency for guarded routes.

    Returns:
        The token claims, or None when auth is disabled
    """
    if not settings.REQUIRE_AUTH:
        return None

    if credentials is None or not credentials.credentials:
        raise AuthError("Authentication required", "Please provide a valid access token")

    claims = verify_token(credentials.credentials)
    logger.debug("Authenticated request", subject=claims.get("sub"))
    return claims
