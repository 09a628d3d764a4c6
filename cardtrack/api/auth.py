"""
Bearer-token authentication for collection endpoints.

Token issuance is external. This module only turns an
`Authorization: Bearer <token>` header into an owner id through a
TokenVerifier, which deployments replace via dependency overrides.
"""

from typing import Annotated, Protocol

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cardtrack.config import settings

_bearer = HTTPBearer(auto_error=False)


class TokenVerifier(Protocol):
    """Resolves a bearer token to the owner id it was issued for."""

    async def verify(self, token: str) -> str | None: ...


class StaticTokenVerifier:
    """Verifier backed by a fixed token -> owner map."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = tokens

    async def verify(self, token: str) -> str | None:
        return self.tokens.get(token)


def get_token_verifier() -> TokenVerifier:
    """Dependency providing the configured token verifier."""
    return StaticTokenVerifier(settings.api_tokens)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> str:
    """
    Dependency resolving the authenticated owner id.

    Raises 401 when the header is missing or the token is not recognized.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = await verifier.verify(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
