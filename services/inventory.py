"""Book inventory management (admin edits and catalogue listings)."""
from __future__ import annotations

from typing import Optional

from flask import current_app

from models import LOAN_BORROWED, ROLE_ADMIN, Book, Loan
from services.auth import Actor, require_role
from services.base import TransactionalService
from services.errors import BookInUse, InvalidStateError, NotFoundError, ValidationError
from services.store import Page, RecordStore


def _clean_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required')
    return value.strip()


def _clean_copies(value) -> int:
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError('totalCopies must be an integer')
    if value < 0:
        raise ValidationError('totalCopies cannot be negative')
    return value


def _copies_shift(total_copies: int):
    """Criterion and SET values that move a book to a new total.

    SET expressions read the pre-update row; ``available_copies`` is listed
    first so MySQL computes the delta before ``total_copies`` changes.
    """
    delta = total_copies - Book.total_copies
    values = {'available_copies': Book.available_copies + delta, 'total_copies': total_copies}
    return Book.available_copies + delta >= 0, values


def _escape_like(term: str) -> str:
    return term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class InventoryService(TransactionalService):
    def __init__(self, session=None):
        super().__init__(session)
        self.books = RecordStore(Book, self.session)
        self.loans = RecordStore(Loan, self.session)

    def create_book(self, *, actor: Actor, title, author, total_copies) -> Book:
        require_role(actor, ROLE_ADMIN)
        title = _clean_text(title, 'title')
        author = _clean_text(author, 'author')
        total_copies = _clean_copies(total_copies)
        with self._transaction('Add book'):
            book = self.books.add(
                Book(title=title, author=author, total_copies=total_copies, available_copies=total_copies)
            )
        current_app.logger.info('Book %s added with %s copies', book.id, total_copies)
        return book

    def update_book(
        self,
        *,
        actor: Actor,
        book_id: int,
        title=None,
        author=None,
        total_copies=None,
    ) -> Book:
        """Edit a book; a new total shifts the available count by the same delta.

        The shift is one conditional UPDATE, so it cannot interleave with a
        borrow and push ``available_copies`` below zero.
        """
        require_role(actor, ROLE_ADMIN)
        values = {}
        if title is not None:
            values['title'] = _clean_text(title, 'title')
        if author is not None:
            values['author'] = _clean_text(author, 'author')
        if total_copies is not None:
            total_copies = _clean_copies(total_copies)
        with self._transaction('Update book'):
            book = self.books.get(book_id)
            if not book:
                raise NotFoundError('Book not found')
            criteria = [Book.id == book_id]
            if total_copies is not None:
                criterion, shift = _copies_shift(total_copies)
                criteria.append(criterion)
                values = {**shift, **values}
            if values:
                matched = self.books.update(*criteria, **values)
                if matched != 1 and total_copies is not None:
                    raise InvalidStateError('Cannot reduce copies below currently borrowed amount')
                if matched != 1:
                    raise NotFoundError('Book not found')
        current_app.logger.info('Book %s updated: %s', book_id, sorted(values))
        return book

    def delete_book(self, *, actor: Actor, book_id: int) -> None:
        require_role(actor, ROLE_ADMIN)
        with self._transaction('Delete book'):
            book = self.books.get(book_id)
            if not book:
                raise NotFoundError('Book not found')
            if self.loans.count(Loan.book_id == book_id, Loan.status == LOAN_BORROWED):
                raise BookInUse()
            # keep loan history, drop the reference
            self.loans.update(Loan.book_id == book_id, book_id=None)
            self.books.delete_by_id(book_id)
        current_app.logger.info('Book %s deleted', book_id)

    def get_book(self, book_id: int) -> Book:
        with self._reading('Book lookup'):
            book = self.books.get(book_id)
        if not book:
            raise NotFoundError('Book not found')
        return book

    def list_books(self, *, actor: Actor, page: int = 1, limit: int = 10) -> Page[Book]:
        require_role(actor, ROLE_ADMIN)
        with self._reading('Book listing'):
            return self.books.find(page=page, limit=limit)

    def list_available_books(self, *, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Page[Book]:
        criteria = [Book.available_copies > 0]
        if search:
            like_value = f"%{_escape_like(search.strip())}%"
            criteria.append(Book.title.ilike(like_value, escape='\\') | Book.author.ilike(like_value, escape='\\'))
        with self._reading('Book listing'):
            return self.books.find(*criteria, page=page, limit=limit, order_by=(Book.title, Book.id))
