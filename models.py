import datetime
from datetime import timezone
from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy instance (initialized by app)
db = SQLAlchemy()

ROLE_STUDENT = 'student'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_STUDENT, ROLE_ADMIN)

LOAN_BORROWED = 'borrowed'
LOAN_RETURNED = 'returned'


def utcnow():
    return datetime.datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class Book(db.Model):
    __tablename__ = 'book'
    __table_args__ = (
        db.CheckConstraint('total_copies >= 0', name='ck_book_total_non_negative'),
        db.CheckConstraint('available_copies >= 0', name='ck_book_available_non_negative'),
        db.CheckConstraint('available_copies <= total_copies', name='ck_book_available_within_total'),
    )
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255), nullable=False)
    total_copies = db.Column(db.Integer, nullable=False, default=0)
    available_copies = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'total_copies': self.total_copies,
            'available_copies': self.available_copies,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_STUDENT)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'is_approved': self.is_approved,
            'created_at': _isoformat(self.created_at),
        }


class Loan(db.Model):
    """One borrow event. Status moves from borrowed to returned exactly once."""

    __tablename__ = 'loan_record'
    __table_args__ = (
        db.CheckConstraint("status IN ('borrowed', 'returned')", name='ck_loan_status'),
        db.CheckConstraint(
            "(status = 'borrowed' AND active_book_id IS NOT NULL) OR (status = 'returned' AND active_book_id IS NULL)",
            name='ck_loan_active_key',
        ),
        # at most one open loan per (student, book); returned loans hold NULL
        db.UniqueConstraint('student_id', 'active_book_id', name='uq_loan_active_student_book'),
    )
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id', ondelete='SET NULL'), nullable=True, index=True)
    active_book_id = db.Column(db.Integer, nullable=True)
    student = db.relationship('User', backref=db.backref('loans', lazy='dynamic'))
    book = db.relationship('Book', backref=db.backref('loans', lazy='dynamic', passive_deletes=True))
    # use timezone-aware UTC timestamps
    issue_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    return_date = db.Column(db.DateTime, nullable=True)
    due_amount = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(16), nullable=False, default=LOAN_BORROWED)

    def to_dict(self, include_book=False, include_student=False):
        data = {
            'id': self.id,
            'student_id': self.student_id,
            'book_id': self.book_id,
            'issue_date': _isoformat(self.issue_date),
            'return_date': _isoformat(self.return_date),
            'due_amount': self.due_amount,
            'status': self.status,
        }
        if include_book:
            book = self.book
            data['book'] = {'id': book.id, 'title': book.title, 'author': book.author} if book else None
        if include_student:
            student = self.student
            data['student'] = {'id': student.id, 'name': student.name, 'email': student.email} if student else None
        return data
