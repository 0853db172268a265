from dataclasses import dataclass


class AuthRequiredError(Exception):
    """Raised when a dashboard operation runs without an authenticated user."""


@dataclass(slots=True)
class Principal:
    subject: str
    scopes: set[str]
    role: str | None = None
    actor_id: str | None = None

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def require_user_id(user_id: str | None) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise AuthRequiredError("an authenticated user is required")
    return user_id.strip()
