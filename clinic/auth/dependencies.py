from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic.auth.tokens import TokenAuthority, TokenClaims, TokenSettings
from clinic.core.errors import Forbidden, InvalidToken
from clinic.models.user import Role

security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_authority() -> TokenAuthority:
    return TokenAuthority(TokenSettings.from_config())


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    authority: TokenAuthority = Depends(get_token_authority),
) -> TokenClaims:
    if credentials is None or not credentials.credentials:
        raise InvalidToken("Missing bearer token.")
    return authority.decode(credentials.credentials)


def require_roles(*roles: Role):
    """Build a dependency that admits only principals holding one of ``roles``."""
    allowed = frozenset(roles)

    def dependency(principal: TokenClaims = Depends(get_current_principal)) -> TokenClaims:
        if principal.role not in allowed:
            raise Forbidden()
        return principal

    return dependency


def ensure_self_or_admin(principal: TokenClaims, role: Role, user_id: int) -> None:
    if principal.role == Role.ADMIN:
        return
    if principal.role == role and principal.user_id == user_id:
        return
    raise Forbidden()
