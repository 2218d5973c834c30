from __future__ import annotations

import os

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config import BaseConfig, config_by_name
from models import ROLE_ADMIN, ROLE_STUDENT, db
from services.accounts import AccountService
from services.auth import (
    admin_required,
    current_actor,
    issue_token,
    jwt,
    login_required,
    roles_required,
    student_required,
)
from services.borrowing import BorrowService
from services.errors import LibraryServiceError, ValidationError
from services.inventory import InventoryService


def respond(status: int, message: str, data=None, error_code: str | None = None):
    """Uniform response envelope used by every endpoint and error handler."""
    success = 200 <= status < 300
    payload = {
        'success': success,
        'message': message,
        'data': data,
        'errorCode': None if success else (error_code or str(status)),
    }
    return jsonify(payload), status


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f'{field} must be an integer')


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _first(body: dict, *keys):
    for key in keys:
        if key in body:
            return body[key]
    return None


def _load_config(app: Flask, config_name: str | None, test_config: dict | None) -> None:
    resolved_name = config_name or os.environ.get('FLASK_CONFIG', 'development')
    config_cls = config_by_name.get(resolved_name, BaseConfig)
    app.config.from_object(config_cls)
    if test_config:
        app.config.update(test_config)


def create_app(config_name: str | None = None, test_config: dict | None = None):
    if isinstance(config_name, dict) and test_config is None:
        test_config = config_name
        config_name = None
    app = Flask(__name__)
    _load_config(app, config_name, test_config)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    db.init_app(app)
    jwt.init_app(app)
    account_service = AccountService()
    borrow_service = BorrowService()
    inventory_service = InventoryService()

    def page_args():
        default_limit = app.config['DEFAULT_PAGE_SIZE']
        try:
            page = int(request.args.get('page', 1))
        except (TypeError, ValueError):
            page = 1
        try:
            limit = int(request.args.get('limit', default_limit))
        except (TypeError, ValueError):
            limit = default_limit
        if page < 1:
            page = 1
        if limit < 1:
            limit = default_limit
        return page, min(limit, app.config['MAX_PAGE_SIZE'])

    @jwt.unauthorized_loader
    def missing_token(reason):
        return respond(401, 'No token, authorization denied', error_code='unauthorized')

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return respond(401, 'Token is not valid', error_code='unauthorized')

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return respond(401, 'Token has expired', error_code='token_expired')

    @app.errorhandler(LibraryServiceError)
    def handle_service_error(exc: LibraryServiceError):
        return respond(exc.status_code, exc.message, error_code=exc.error_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return respond(exc.code or 500, exc.description or exc.name, error_code=exc.name.lower().replace(' ', '_'))

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception('Unhandled error on %s %s: %s', request.method, request.path, exc)
        db.session.rollback()
        return respond(500, 'Internal Server Error', error_code='internal_error')

    @app.after_request
    def finish_response(response):
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('Referrer-Policy', 'no-referrer')
        app.logger.info('%s %s -> %s', request.method, request.path, response.status_code)
        return response

    @app.cli.command('init-db')
    def init_db():
        """Create tables for the configured database."""
        db.create_all()
        click.echo(f"Initialized database ({app.config['SQLALCHEMY_DATABASE_URI']})")

    @app.route('/')
    def index():
        return respond(200, 'Library Management System API')

    @app.route('/auth/register', methods=['POST'])
    def register():
        body = _json_body()
        user = account_service.register(
            name=body.get('name'),
            email=body.get('email'),
            password=body.get('password'),
            role=body.get('role'),
            allow_admin=app.config['ALLOW_ADMIN_REGISTRATION'],
        )
        if user.is_approved:
            return respond(201, 'User registered successfully', {'user': user.to_dict(), 'token': issue_token(user)})
        return respond(201, 'User registered, waiting for admin approval', {'user': user.to_dict(), 'token': None})

    @app.route('/auth/login', methods=['POST'])
    def login():
        body = _json_body()
        user = account_service.authenticate(email=body.get('email'), password=body.get('password'))
        return respond(200, 'Login successful', {'user': user.to_dict(), 'token': issue_token(user)})

    @app.route('/books', methods=['GET'])
    @admin_required
    def list_books():
        page, limit = page_args()
        result = inventory_service.list_books(actor=current_actor(), page=page, limit=limit)
        return respond(200, 'Books', result.to_dict())

    @app.route('/books/<int:book_id>', methods=['GET'])
    @login_required
    def get_book(book_id: int):
        return respond(200, 'Book', inventory_service.get_book(book_id).to_dict())

    @app.route('/books', methods=['POST'])
    @admin_required
    def add_book():
        body = _json_body()
        total = _first(body, 'totalCopies', 'total_copies')
        if total is None:
            raise ValidationError('totalCopies is required')
        book = inventory_service.create_book(
            actor=current_actor(),
            title=body.get('title'),
            author=body.get('author'),
            total_copies=_as_int(total, 'totalCopies'),
        )
        return respond(201, 'Book added successfully', book.to_dict())

    @app.route('/books/<int:book_id>', methods=['PUT'])
    @admin_required
    def update_book(book_id: int):
        body = _json_body()
        total = _first(body, 'totalCopies', 'total_copies')
        book = inventory_service.update_book(
            actor=current_actor(),
            book_id=book_id,
            title=body.get('title'),
            author=body.get('author'),
            total_copies=_as_int(total, 'totalCopies') if total is not None else None,
        )
        return respond(200, 'Book updated', book.to_dict())

    @app.route('/books/<int:book_id>', methods=['DELETE'])
    @admin_required
    def delete_book(book_id: int):
        inventory_service.delete_book(actor=current_actor(), book_id=book_id)
        return respond(200, 'Book deleted successfully')

    @app.route('/available-books', methods=['GET'])
    @login_required
    def available_books():
        page, limit = page_args()
        result = inventory_service.list_available_books(page=page, limit=limit, search=request.args.get('q'))
        return respond(200, 'Available books', result.to_dict())

    @app.route('/borrow', methods=['POST'])
    @student_required
    def borrow():
        book_id = _first(_json_body(), 'bookId', 'book_id')
        if book_id is None:
            raise ValidationError('bookId is required')
        result = borrow_service.borrow(actor=current_actor(), book_id=_as_int(book_id, 'bookId'))
        return respond(201, 'Book borrowed successfully', result.loan.to_dict(include_book=True))

    @app.route('/return', methods=['POST'])
    @roles_required(ROLE_STUDENT, ROLE_ADMIN)
    def return_book():
        loan_id = _first(_json_body(), 'loanId', 'loan_id')
        if loan_id is None:
            raise ValidationError('loanId is required')
        result = borrow_service.return_loan(actor=current_actor(), loan_id=_as_int(loan_id, 'loanId'))
        return respond(200, 'Book returned', result.loan.to_dict(include_book=True))

    @app.route('/my-loans', methods=['GET'])
    @student_required
    def my_loans():
        loans = borrow_service.my_loans(actor=current_actor())
        return respond(200, 'My books', [loan.to_dict(include_book=True) for loan in loans])

    @app.route('/borrowed-books', methods=['GET'])
    @admin_required
    def borrowed_books():
        page, limit = page_args()
        result = borrow_service.active_loans(actor=current_actor(), page=page, limit=limit)
        return respond(
            200,
            'Borrowed books',
            result.to_dict(lambda loan: loan.to_dict(include_book=True, include_student=True)),
        )

    @app.route('/students', methods=['GET'])
    @admin_required
    def list_students():
        students = account_service.list_students(actor=current_actor())
        return respond(200, 'Students', [student.to_dict() for student in students])

    @app.route('/approve/<int:user_id>', methods=['PUT'])
    @admin_required
    def approve_user(user_id: int):
        user = account_service.approve(actor=current_actor(), user_id=user_id)
        return respond(200, 'User approved successfully', user.to_dict())

    return app


if __name__ == '__main__':
    application = create_app()
    with application.app_context():
        db.create_all()
    application.run(debug=application.config.get('DEBUG', False))
