"""Access gate: bearer-token issuance and route guards."""
from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask_jwt_extended import JWTManager, create_access_token, get_jwt, get_jwt_identity, verify_jwt_in_request

from models import ROLE_ADMIN, ROLE_STUDENT, ROLES, User
from services.errors import ForbiddenError, UnauthorizedError

# JWT extension instance (initialized by app)
jwt = JWTManager()


@dataclass(frozen=True)
class Actor:
    """Verified caller identity handed to every service operation."""

    subject_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def issue_token(user: User) -> str:
    return create_access_token(identity=str(user.id), additional_claims={'role': user.role})


def current_actor() -> Actor:
    verify_jwt_in_request()
    role = get_jwt().get('role')
    try:
        subject_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        raise UnauthorizedError('Token is not valid')
    if role not in ROLES:
        raise UnauthorizedError('Token is not valid')
    return Actor(subject_id=subject_id, role=role)


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        current_actor()
        return view(*args, **kwargs)

    return wrapped


def roles_required(*roles: str):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if current_actor().role not in roles:
                raise ForbiddenError()
            return view(*args, **kwargs)

        return wrapped

    return decorator


admin_required = roles_required(ROLE_ADMIN)
student_required = roles_required(ROLE_STUDENT)


def require_role(actor: Actor, *roles: str) -> None:
    """Raise unless ``actor`` holds one of ``roles``."""
    if actor is None:
        raise UnauthorizedError()
    if actor.role not in roles:
        raise ForbiddenError()
