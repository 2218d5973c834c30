import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import ROLE_ADMIN, ROLE_STUDENT, Book, User, db
from services.auth import Actor, issue_token


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(role=ROLE_STUDENT, approved=True, name=None, email=None, password='secret'):
        counter['n'] += 1
        user = User(
            name=name or f'{role.title()} {counter["n"]}',
            email=email or f'{role}{counter["n"]}@example.com',
            password_hash=generate_password_hash(password),
            role=role,
            is_approved=approved,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_book(app):
    def _make(total=3, available=None, title='Dune', author='Frank Herbert'):
        book = Book(
            title=title,
            author=author,
            total_copies=total,
            available_copies=total if available is None else available,
        )
        db.session.add(book)
        db.session.commit()
        return book

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN, name='Admin', email='admin@example.com')


@pytest.fixture
def student(make_user):
    return make_user(name='Alice', email='alice@example.com')


@pytest.fixture
def admin_actor(admin):
    return Actor(subject_id=admin.id, role=ROLE_ADMIN)


@pytest.fixture
def student_actor(student):
    return Actor(subject_id=student.id, role=ROLE_STUDENT)


@pytest.fixture
def auth_header(app):
    def _header(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}

    return _header
