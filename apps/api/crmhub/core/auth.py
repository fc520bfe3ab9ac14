import logging
from dataclasses import dataclass, field

from jose import ExpiredSignatureError, JWTError, jwt
from starlette.requests import Request

from crmhub.core.config import get_settings

logger = logging.getLogger("crmhub.auth")

ANONYMOUS_SUBJECT = "anonymous"


@dataclass
class AuthUser:
    """Claims taken from the bearer token; ``roles`` may carry role types or permission names."""

    sub: str
    roles: list[str] = field(default_factory=list)
    email: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS_SUBJECT


def bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def decode_token(token: str) -> AuthUser:
    settings = get_settings()
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if not subject:
        raise JWTError("token has no subject")
    roles = payload.get("roles", [])
    if isinstance(roles, str):
        roles = [roles]
    elif not isinstance(roles, list):
        roles = []
    email = payload.get("email")
    return AuthUser(sub=str(subject), roles=[str(role) for role in roles], email=str(email) if email else None)


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if not token:
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest_user"])

    try:
        user = decode_token(token)
    except ExpiredSignatureError:
        logger.info("auth.token_expired", extra={"path": request.url.path})
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest_user"])
    except JWTError as exc:
        logger.warning("auth.token_rejected", extra={"path": request.url.path, "error": str(exc)})
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest_user"])

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = user.sub
    return user
