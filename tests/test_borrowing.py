import random

import pytest
from sqlalchemy.dialects import mysql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import CreateTable

from models import LOAN_BORROWED, LOAN_RETURNED, ROLE_STUDENT, Book, Loan, db
from services.auth import Actor
from services.borrowing import BorrowService
from services.errors import (
    AlreadyBorrowed,
    AlreadyReturned,
    BookUnavailable,
    ForbiddenError,
    NotFoundError,
    StorageError,
)
from services.store import RecordStore


@pytest.fixture
def service(app):
    return BorrowService()


def test_borrow_and_return_lifecycle(service, student_actor, make_book):
    book = make_book(total=3)
    book_id = book.id

    result = service.borrow(actor=student_actor, book_id=book_id)
    loan_id = result.loan.id
    assert db.session.get(Book, book_id).available_copies == 2
    loan = db.session.get(Loan, loan_id)
    assert loan.status == LOAN_BORROWED
    assert loan.student_id == student_actor.subject_id
    assert loan.due_amount == 0
    assert loan.return_date is None

    with pytest.raises(AlreadyBorrowed):
        service.borrow(actor=student_actor, book_id=book_id)
    assert db.session.get(Book, book_id).available_copies == 2

    service.return_loan(actor=student_actor, loan_id=loan_id)
    assert db.session.get(Book, book_id).available_copies == 3
    loan = db.session.get(Loan, loan_id)
    assert loan.status == LOAN_RETURNED
    assert loan.return_date is not None
    assert loan.return_date >= loan.issue_date

    with pytest.raises(AlreadyReturned):
        service.return_loan(actor=student_actor, loan_id=loan_id)
    assert db.session.get(Book, book_id).available_copies == 3


def test_borrow_without_copies_changes_nothing(service, student_actor, make_book):
    book = make_book(total=2, available=0)
    book_id = book.id

    with pytest.raises(BookUnavailable):
        service.borrow(actor=student_actor, book_id=book_id)

    book = db.session.get(Book, book_id)
    assert (book.total_copies, book.available_copies) == (2, 0)
    assert Loan.query.count() == 0


def test_borrow_missing_book_is_unavailable(service, student_actor):
    with pytest.raises(BookUnavailable):
        service.borrow(actor=student_actor, book_id=999)


def test_last_copy_goes_to_first_borrower(service, make_user, make_book):
    book = make_book(total=1)
    first = make_user()
    second = make_user()

    service.borrow(actor=Actor(first.id, ROLE_STUDENT), book_id=book.id)
    with pytest.raises(BookUnavailable):
        service.borrow(actor=Actor(second.id, ROLE_STUDENT), book_id=book.id)
    assert db.session.get(Book, book.id).available_copies == 0


def test_borrow_again_after_return(service, student_actor, make_book):
    book = make_book(total=1)
    first = service.borrow(actor=student_actor, book_id=book.id)
    service.return_loan(actor=student_actor, loan_id=first.loan.id)

    second = service.borrow(actor=student_actor, book_id=book.id)
    assert second.loan.id != first.loan.id
    assert Loan.query.filter_by(student_id=student_actor.subject_id).count() == 2


def test_admin_cannot_borrow(service, admin_actor, make_book):
    book = make_book()
    with pytest.raises(ForbiddenError):
        service.borrow(actor=admin_actor, book_id=book.id)


def test_return_unknown_loan(service, student_actor):
    with pytest.raises(NotFoundError):
        service.return_loan(actor=student_actor, loan_id=12345)


def test_student_cannot_return_someone_elses_loan(service, make_user, make_book, admin_actor):
    book = make_book(total=2)
    owner = make_user()
    other = make_user()
    loan_id = service.borrow(actor=Actor(owner.id, ROLE_STUDENT), book_id=book.id).loan.id

    with pytest.raises(ForbiddenError):
        service.return_loan(actor=Actor(other.id, ROLE_STUDENT), loan_id=loan_id)
    assert db.session.get(Loan, loan_id).status == LOAN_BORROWED

    service.return_loan(actor=admin_actor, loan_id=loan_id)
    assert db.session.get(Loan, loan_id).status == LOAN_RETURNED
    assert db.session.get(Book, book.id).available_copies == 2


def test_return_tolerates_missing_book(service, student_actor, make_book):
    book = make_book(total=1)
    loan_id = service.borrow(actor=student_actor, book_id=book.id).loan.id
    Book.query.filter_by(id=book.id).delete()
    db.session.commit()

    result = service.return_loan(actor=student_actor, loan_id=loan_id)
    assert result.book is None
    assert db.session.get(Loan, loan_id).status == LOAN_RETURNED


def test_storage_rejects_second_active_loan_for_same_pair(student, make_book):
    book = make_book(total=5)
    db.session.add(Loan(student_id=student.id, book_id=book.id, active_book_id=book.id, status=LOAN_BORROWED))
    db.session.commit()

    db.session.add(Loan(student_id=student.id, book_id=book.id, active_book_id=book.id, status=LOAN_BORROWED))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    db.session.add(Loan(student_id=student.id, book_id=book.id, status=LOAN_RETURNED))
    db.session.add(Loan(student_id=student.id, book_id=book.id, status=LOAN_RETURNED))
    db.session.commit()
    assert Loan.query.count() == 3


def test_active_loan_key_is_a_plain_unique_constraint_on_mysql():
    ddl = str(CreateTable(Loan.__table__).compile(dialect=mysql.dialect()))
    assert 'CONSTRAINT uq_loan_active_student_book UNIQUE (student_id, active_book_id)' in ddl


def test_return_clears_active_key_so_the_book_can_be_borrowed_again(service, student_actor, make_book):
    book = make_book(total=1)
    first = service.borrow(actor=student_actor, book_id=book.id).loan.id
    assert db.session.get(Loan, first).active_book_id == book.id

    service.return_loan(actor=student_actor, loan_id=first)
    assert db.session.get(Loan, first).active_book_id is None

    second = service.borrow(actor=student_actor, book_id=book.id).loan.id
    assert second != first
    assert db.session.get(Loan, second).active_book_id == book.id


def _failing_add(message):
    def _add(self, record):
        raise IntegrityError('INSERT INTO loan_record', {}, Exception(message))

    return _add


def test_foreign_key_failure_on_borrow_is_a_storage_error(service, student_actor, make_book, monkeypatch):
    book = make_book(total=2)
    book_id = book.id
    monkeypatch.setattr(RecordStore, 'add', _failing_add('FOREIGN KEY constraint failed'))

    with pytest.raises(StorageError):
        service.borrow(actor=student_actor, book_id=book_id)
    assert db.session.get(Book, book_id).available_copies == 2


def test_duplicate_key_failure_on_borrow_is_already_borrowed(service, student_actor, make_book, monkeypatch):
    book = make_book(total=2)
    book_id = book.id
    monkeypatch.setattr(
        RecordStore,
        'add',
        _failing_add("Duplicate entry '1-1' for key 'loan_record.uq_loan_active_student_book'"),
    )

    with pytest.raises(AlreadyBorrowed):
        service.borrow(actor=student_actor, book_id=book_id)
    assert db.session.get(Book, book_id).available_copies == 2


def test_my_loans_lists_only_own_loans_newest_first(service, student_actor, make_user, make_book):
    first_book = make_book(title='Dune')
    second_book = make_book(title='Emma', author='Jane Austen')
    other = make_user()

    service.borrow(actor=student_actor, book_id=first_book.id)
    service.borrow(actor=student_actor, book_id=second_book.id)
    service.borrow(actor=Actor(other.id, ROLE_STUDENT), book_id=first_book.id)

    loans = service.my_loans(actor=student_actor)
    assert [loan.book.title for loan in loans] == ['Emma', 'Dune']
    assert all(loan.student_id == student_actor.subject_id for loan in loans)


def test_active_loans_for_admin(service, student_actor, admin_actor, make_book):
    books = [make_book(title=f'Book {i}') for i in range(3)]
    loan_ids = [service.borrow(actor=student_actor, book_id=b.id).loan.id for b in books]
    service.return_loan(actor=student_actor, loan_id=loan_ids[0])

    page = service.active_loans(actor=admin_actor, page=1, limit=10)
    assert page.total == 2
    assert {loan.id for loan in page.items} == set(loan_ids[1:])

    with pytest.raises(ForbiddenError):
        service.active_loans(actor=student_actor)


def test_copy_counts_stay_in_bounds(service, make_user, make_book):
    rng = random.Random(7)
    books = [make_book(total=rng.randint(0, 3), title=f'Book {i}') for i in range(4)]
    book_ids = [b.id for b in books]
    actors = [Actor(make_user().id, ROLE_STUDENT) for _ in range(5)]
    open_loans = []

    for _ in range(60):
        if open_loans and rng.random() < 0.4:
            actor, loan_id = open_loans.pop(rng.randrange(len(open_loans)))
            service.return_loan(actor=actor, loan_id=loan_id)
        else:
            actor = rng.choice(actors)
            try:
                result = service.borrow(actor=actor, book_id=rng.choice(book_ids))
            except (BookUnavailable, AlreadyBorrowed):
                pass
            else:
                open_loans.append((actor, result.loan.id))
        for book in Book.query.all():
            assert 0 <= book.available_copies <= book.total_copies
            on_loan = Loan.query.filter_by(book_id=book.id, status=LOAN_BORROWED).count()
            assert book.total_copies - book.available_copies == on_loan
