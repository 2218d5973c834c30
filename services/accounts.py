"""Account registration, credential checks and the student approval gate."""
from __future__ import annotations

from typing import List

from flask import current_app
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from models import ROLE_ADMIN, ROLE_STUDENT, ROLES, User
from services.auth import Actor, require_role
from services.base import TransactionalService
from services.errors import ForbiddenError, NotApproved, NotFoundError, UnauthorizedError, UserExists, ValidationError
from services.store import RecordStore


def _normalize_email(email) -> str:
    if not isinstance(email, str) or '@' not in email:
        raise ValidationError('A valid email is required')
    return email.strip().lower()


class AccountService(TransactionalService):
    def __init__(self, session=None):
        super().__init__(session)
        self.users = RecordStore(User, self.session)

    def register(self, *, name, email, password, role=None, allow_admin: bool = False) -> User:
        """Create an account. Students wait for approval, admins are approved at once."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('name is required')
        email = _normalize_email(email)
        if not isinstance(password, str) or not password:
            raise ValidationError('password is required')
        role = role.strip().lower() if isinstance(role, str) and role.strip() else role or ROLE_STUDENT
        if role not in ROLES:
            raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
        if role == ROLE_ADMIN and not allow_admin:
            raise ForbiddenError('Admin registration is disabled')

        with self._transaction('Registration'):
            if self.users.count(User.email == email):
                raise UserExists()
            user = User(
                name=name.strip(),
                email=email,
                password_hash=generate_password_hash(password),
                role=role,
                is_approved=role == ROLE_ADMIN,
            )
            try:
                self.users.add(user)
            except IntegrityError as exc:
                raise UserExists() from exc
        current_app.logger.info('Registered %s account %s', role, user.id)
        return user

    def authenticate(self, *, email, password) -> User:
        if not isinstance(email, str) or not isinstance(password, str):
            raise UnauthorizedError('Invalid credentials')
        with self._reading('Login'):
            user = self.users.find_one(User.email == email.strip().lower())
        if not user or not check_password_hash(user.password_hash, password):
            raise UnauthorizedError('Invalid credentials')
        if user.role == ROLE_STUDENT and not user.is_approved:
            raise NotApproved()
        return user

    def approve(self, *, actor: Actor, user_id: int) -> User:
        require_role(actor, ROLE_ADMIN)
        with self._transaction('Approval'):
            user = self.users.get(user_id)
            if not user:
                raise NotFoundError('User not found')
            if not user.is_approved:
                user.is_approved = True
                current_app.logger.info('User %s approved by admin %s', user_id, actor.subject_id)
        return user

    def list_students(self, *, actor: Actor) -> List[User]:
        require_role(actor, ROLE_ADMIN)
        with self._reading('Student listing'):
            return self.users.find_all(User.role == ROLE_STUDENT, order_by=(User.name, User.id))
