"""Shared transaction handling for the service classes."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import db
from services.errors import LibraryServiceError, StorageError


class TransactionalService:
    """Holds the injected session and wraps each operation in one transaction."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session if session is not None else db.session

    @contextmanager
    def _transaction(self, action: str):
        try:
            yield
            self.session.commit()
        except LibraryServiceError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            current_app.logger.exception('%s transaction failed: %s', action, exc)
            self.session.rollback()
            raise StorageError(f'{action} failed, please try again later.') from exc

    @contextmanager
    def _reading(self, action: str):
        try:
            yield
        except SQLAlchemyError as exc:
            current_app.logger.exception('%s query failed: %s', action, exc)
            self.session.rollback()
            raise StorageError(f'{action} failed, please try again later.') from exc
