from dataclasses import dataclass
from datetime import timedelta
from functools import wraps
from typing import Iterable, Optional

import bcrypt
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    get_jwt_identity,
    verify_jwt_in_request,
)

from .responses import fail

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ALLOWED_ROLES = {ROLE_USER, ROLE_ADMIN}


@dataclass(frozen=True)
class Identity:
    id: str
    role: str = ROLE_USER


def normalize_role(value) -> str:
    normalized = str(value or "").strip().upper()
    return normalized if normalized in ALLOWED_ROLES else ROLE_USER


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except ValueError:
        return False


def issue_token(user_document) -> str:
    return create_access_token(
        identity=str(user_document["_id"]),
        additional_claims={"role": normalize_role(user_document.get("role"))},
    )


def has_required_role(identity: Optional[Identity], roles: Iterable[str]) -> bool:
    required = {normalize_role(role) for role in roles if role}
    if not required:
        return True
    if identity is None:
        return False
    return identity.role in required


def resolve_identity() -> Optional[Identity]:
    """Return the caller's identity, or None when no token was sent.

    An invalid or expired token still raises and is answered with 401.
    """
    verify_jwt_in_request(optional=True)
    user_id = get_jwt_identity()
    if not user_id:
        return None
    return Identity(id=str(user_id), role=normalize_role(get_jwt().get("role")))


def with_identity(required: bool = False, roles: Iterable[str] = ()):
    roles = tuple(roles)

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            identity = resolve_identity()
            if identity is None and (required or roles):
                return fail("Authentication required", 401)
            if not has_required_role(identity, roles):
                return fail("Forbidden resource", 403)
            return view(*args, identity=identity, **kwargs)

        return wrapper

    return decorator


def init_identity(app) -> JWTManager:
    app.config.setdefault(
        "JWT_ACCESS_TOKEN_EXPIRES",
        timedelta(minutes=int(app.config.get("JWT_EXPIRES_MIN", 60))),
    )
    app.config.setdefault("JWT_TOKEN_LOCATION", ["headers", "cookies", "query_string"])
    app.config.setdefault("JWT_ACCESS_COOKIE_NAME", "access_token")
    app.config.setdefault("JWT_QUERY_STRING_NAME", "token")
    app.config.setdefault("JWT_COOKIE_CSRF_PROTECT", False)

    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return fail("Authentication required", 401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        app.logger.info("Rejected invalid token: %s", reason)
        return fail("Invalid token", 401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return fail("Token has expired", 401)

    return jwt
