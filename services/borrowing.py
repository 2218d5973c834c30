"""Borrowing domain service logic."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import LOAN_BORROWED, LOAN_RETURNED, ROLE_ADMIN, ROLE_STUDENT, Book, Loan, utcnow
from services.auth import Actor, require_role
from services.base import TransactionalService
from services.errors import (
    AlreadyBorrowed,
    AlreadyReturned,
    BookUnavailable,
    ForbiddenError,
    NotFoundError,
)
from services.store import Page, RecordStore

ACTIVE_LOAN_CONSTRAINT = 'uq_loan_active_student_book'


def _is_duplicate_active_loan(exc: IntegrityError) -> bool:
    # SQLite reports the columns, PostgreSQL and MySQL report the constraint name
    detail = str(exc.orig)
    return ACTIVE_LOAN_CONSTRAINT in detail or 'loan_record.active_book_id' in detail


@dataclass(frozen=True)
class BorrowResult:
    loan: Loan
    book: Optional[Book]


class BorrowService(TransactionalService):
    """Moves copies between the shelf and the loan ledger.

    The copy counter is only ever changed through conditional UPDATEs
    (``available_copies > 0`` on borrow, ``available_copies < total_copies``
    on return) issued in the same transaction as the ledger write, so two
    borrowers racing for the last copy cannot both succeed and a failed
    ledger write never leaves a decremented book behind.
    """

    def __init__(self, session=None):
        super().__init__(session)
        self.books = RecordStore(Book, self.session)
        self.loans = RecordStore(Loan, self.session)

    def borrow(self, *, actor: Actor, book_id: int) -> BorrowResult:
        require_role(actor, ROLE_STUDENT)
        with self._transaction('Borrow'):
            book = self.books.get(book_id)
            if not book or book.available_copies < 1:
                raise BookUnavailable()
            active = self.loans.count(
                Loan.student_id == actor.subject_id,
                Loan.book_id == book_id,
                Loan.status == LOAN_BORROWED,
            )
            if active:
                raise AlreadyBorrowed()

            # Reserve inventory
            reserved = self.books.update(
                Book.id == book_id,
                Book.available_copies > 0,
                available_copies=Book.available_copies - 1,
            )
            if reserved != 1:
                raise BookUnavailable()

            loan = Loan(
                student_id=actor.subject_id,
                book_id=book_id,
                active_book_id=book_id,
                issue_date=utcnow(),
                status=LOAN_BORROWED,
                due_amount=0.0,
            )
            try:
                self.loans.add(loan)
            except IntegrityError as exc:
                if _is_duplicate_active_loan(exc):
                    raise AlreadyBorrowed() from exc
                raise
        current_app.logger.info('Student %s borrowed book %s (loan %s)', actor.subject_id, book_id, loan.id)
        return BorrowResult(loan=loan, book=book)

    def return_loan(self, *, actor: Actor, loan_id: int) -> BorrowResult:
        require_role(actor, ROLE_STUDENT, ROLE_ADMIN)
        with self._transaction('Return'):
            loan = self.loans.get(loan_id)
            if not loan:
                raise NotFoundError('Record not found')
            if loan.student_id != actor.subject_id and not actor.is_admin:
                raise ForbiddenError('You can only return your own loans')
            if loan.status == LOAN_RETURNED:
                raise AlreadyReturned()

            closed = self.loans.update(
                Loan.id == loan_id,
                Loan.status == LOAN_BORROWED,
                status=LOAN_RETURNED,
                return_date=utcnow(),
                active_book_id=None,
            )
            if closed != 1:
                raise AlreadyReturned()

            # Release inventory
            book = self.books.get(loan.book_id) if loan.book_id is not None else None
            if book is None:
                current_app.logger.warning('Loan %s returned but its book no longer exists', loan_id)
            else:
                released = self.books.update(
                    Book.id == book.id,
                    Book.available_copies < Book.total_copies,
                    available_copies=Book.available_copies + 1,
                )
                if released != 1:
                    current_app.logger.warning('Book %s already has all copies on the shelf', book.id)
        current_app.logger.info('Loan %s returned by user %s', loan_id, actor.subject_id)
        return BorrowResult(loan=loan, book=book)

    def my_loans(self, *, actor: Actor) -> List[Loan]:
        require_role(actor, ROLE_STUDENT)
        with self._reading('Loan lookup'):
            return self.loans.find_all(
                Loan.student_id == actor.subject_id,
                order_by=(Loan.issue_date.desc(), Loan.id.desc()),
            )

    def active_loans(self, *, actor: Actor, page: int = 1, limit: int = 10) -> Page[Loan]:
        require_role(actor, ROLE_ADMIN)
        with self._reading('Loan lookup'):
            return self.loans.find(
                Loan.status == LOAN_BORROWED,
                page=page,
                limit=limit,
                order_by=(Loan.issue_date.desc(), Loan.id.desc()),
            )
