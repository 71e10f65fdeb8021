from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
import logging

from convene.config import get_jwt_secret
from convene.errors import Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def decode_organizer_token(token: str) -> dict:
    """
    Decode an organizer bearer token.

    With JWT_SECRET set the HS256 signature and expiry are verified. Without it
    the claims are read unverified, for local development behind a front end
    that has already authenticated the user.
    """
    secret = get_jwt_secret()
    if secret:
        return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
    return jwt.get_unverified_claims(token)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Return the organizer user id (``sub`` claim) of the bearer token."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Missing bearer token")

    try:
        payload = decode_organizer_token(credentials.credentials)
    except JWTError as e:
        logger.warning("Token verification failed: %s", e)
        raise Unauthorized("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token missing user_id")
        raise Unauthorized("Invalid token: no user_id found")

    logger.debug("Authenticated organizer: %s", user_id)
    return user_id
