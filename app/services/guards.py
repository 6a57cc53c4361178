from app.core.deps import CurrentUser
from app.core.exceptions import ForbiddenError, ValidationError


def require_admin(principal: CurrentUser) -> None:
    if not principal.is_admin:
        raise ForbiddenError("Admin access required")


def require_approved(principal: CurrentUser) -> None:
    if not principal.is_approved:
        raise ForbiddenError("Account not eligible")


def require_text(value: str | None, field: str, message: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(message, field=field)
    return cleaned
