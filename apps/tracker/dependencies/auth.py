from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.tracker.domain.models import Actor, Role


class User:
    """Authenticated caller as resolved from the bearer token."""

    def __init__(self, username: str, role: Role):
        self.username = username
        self.role = role

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    def as_actor(self) -> Actor:
        return Actor(id=self.username, role=self.role)


TOKEN_USER_MAP: dict[str, tuple[str, Role]] = {
    "admin-token": ("admin", Role.ADMIN),
    "manager-token": ("manager", Role.MANAGER),
    "support-token": ("support", Role.SUPPORT),
    "developer-token": ("developer", Role.DEVELOPER),
    "qa-token": ("qa", Role.QA),
    "client-token": ("client", Role.CLIENT),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    username, role = TOKEN_USER_MAP[token]
    return User(username=username, role=role)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Static token lookup standing in for an identity provider.

    The RBAC middleware usually resolves the user first; the result is cached on
    ``request.state`` so the lookup runs once per request.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(*roles: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds one of the given roles."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


async def get_current_actor(user: Annotated[User, Depends(get_current_user)]) -> Actor:
    return user.as_actor()


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
