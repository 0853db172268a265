from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from tutordesk.core.auth import Principal
from tutordesk.core.config import Settings, get_settings

TUTOR_SCOPES = {
    "requirements:read",
    "requirements:respond",
    "messages:read",
    "messages:write",
    "notifications:read",
    "metrics:read",
}

ROLE_SCOPES: dict[str, set[str]] = {
    "student": {"messages:read", "messages:write", "notifications:read"},
    "tutor": TUTOR_SCOPES,
    "admin": set(TUTOR_SCOPES),
}
DEFAULT_ROLE = "student"
# user_metadata is writable by the user, so only these roles are honoured from it.
SELF_ASSIGNABLE_ROLES = {"student", "tutor"}


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="human auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    return await resolve_principal(token, settings)


async def resolve_principal(token: str | None, settings: Settings) -> Principal:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)

    return Principal(
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES.get(role, ROLE_SCOPES[DEFAULT_ROLE])),
        actor_id=user_id,
    )


def require_scopes_or_403(principal: Principal, required: set[str]) -> str:
    try:
        principal.require_scopes(required)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")
    return principal.actor_id


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        role = app_metadata.get("role")
        if isinstance(role, str) and role:
            return role

    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        role = user_metadata.get("role")
        if isinstance(role, str) and role in SELF_ASSIGNABLE_ROLES:
            return role

    return DEFAULT_ROLE
