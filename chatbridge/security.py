# chatbridge/security.py

"""
JWT (JSON Web Token) issuing and validation for the router service.

Clients exchange the shared API key (`CHATBRIDGE_API_KEY`) for a short-lived
HS256 token at `/v1/token`; the chat and embedding endpoints require it as a
bearer token.

Requires a shared secret key, configured via `.env` as `JWT_SECRET_KEY`.
"""

import datetime

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatbridge.config import settings

# Ensure the service is configured correctly at startup
if not settings.jwt_secret_key:
    raise RuntimeError("JWT_SECRET_KEY not set in environment")

ALGORITHM = "HS256"
TOKEN_TTL = datetime.timedelta(minutes=60)

# HTTPBearer ensures the Authorization header is present and formatted properly
bearer_scheme = HTTPBearer(auto_error=True)


def issue_token(subject: str = "router-client") -> str:
    exp = datetime.datetime.now(datetime.timezone.utc) + TOKEN_TTL
    return jwt.encode({"sub": subject, "exp": exp}, settings.jwt_secret_key, algorithm=ALGORITHM)


async def verify_jwt(
    creds: HTTPAuthorizationCredentials = Security(bearer_scheme)
):
    """
    Verifies a JWT provided in the Authorization header.

    Returns:
        dict: The decoded JWT payload if valid.

    Raises:
        HTTPException(403): If the token is invalid, malformed, or expired.
    """
    try:
        payload = jwt.decode(
            creds.credentials,
            settings.jwt_secret_key,
            algorithms=[ALGORITHM]
        )
    except jwt.PyJWTError:
        raise HTTPException(403, detail="Invalid or expired token")

    return payload
