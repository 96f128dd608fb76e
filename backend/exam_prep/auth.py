"""Identity and contest resolution dependencies.

Callers authenticate with a bearer JWT carrying a `user_id` (or `sub`)
claim. The contest a request operates on comes from the `X-Concurso-Id`
header, falling back to a `concurso_id` claim in the token.

Failures raise domain errors (`UNAUTHORIZED`, `INVALID_TOKEN`,
`CONCURSO_REQUIRED`) so they render through the standard response
envelope.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .errors import ContestRequiredError, InvalidTokenError, UnauthorizedError

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, concurso_id: Optional[str] = None, expire_hours: int = 24) -> str:
    """Sign a token for `user_id` with an optional `concurso_id` claim."""
    expire = datetime.now(timezone.utc) + timedelta(hours=expire_hours)
    payload = {"user_id": user_id, "exp": int(expire.timestamp())}
    if concurso_id:
        payload["concurso_id"] = concurso_id
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success. An expired, malformed or badly
    signed token raises `InvalidTokenError`.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise InvalidTokenError("token expired")
    except jwt.InvalidTokenError:
        raise InvalidTokenError("invalid token")


def get_token_claims(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> dict:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("not authenticated")
    return decode_token(credentials.credentials)


def get_current_user_id(claims: dict = Depends(get_token_claims)) -> str:
    """FastAPI dependency returning the authenticated user's id."""
    user_id = claims.get("user_id") or claims.get("sub")
    if not user_id:
        raise UnauthorizedError("invalid token payload")
    return str(user_id)


def get_contest_id(request: Request, claims: dict = Depends(get_token_claims)) -> str:
    """FastAPI dependency returning the contest the request is scoped to."""
    contest_id = request.headers.get("X-Concurso-Id") or claims.get("concurso_id")
    if not contest_id or not str(contest_id).strip():
        raise ContestRequiredError()
    return str(contest_id).strip()
