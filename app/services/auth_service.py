from __future__ import annotations

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.services.access_tokens import InvalidAccessTokenError, verify_access_token

logger = logging.getLogger(__name__)

_HTTP_BEARER = HTTPBearer(auto_error=False)


class AuthService:
    """Resolves the calling user from a product-issued bearer token.

    Issuing tokens and managing accounts belong to the surrounding product;
    this service only verifies signatures and reads the subject claim.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def get_current_user_from_token(self, access_token: str) -> CurrentUserResponse | None:
        try:
            claims = verify_access_token(
                access_token,
                self.settings.auth_secret_key,
                leeway_seconds=self.settings.auth_token_leeway_seconds,
            )
        except InvalidAccessTokenError as exc:
            logger.info("Rejected caller token reason=%s", exc)
            return None

        email = claims.get("email")
        role = claims.get("role")
        return CurrentUserResponse(
            id=claims["sub"].strip(),
            email=email if isinstance(email, str) else None,
            role=role if isinstance(role, str) and role.strip() else "user",
        )


def resolve_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> CurrentUserResponse | None:
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    return AuthService().get_current_user_from_token(credentials.credentials)
