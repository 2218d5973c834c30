"""Error taxonomy shared by the service layer and the HTTP boundary."""
from __future__ import annotations


class LibraryServiceError(RuntimeError):
    """Base class for every failure a service operation can report.

    ``status_code`` and ``error_code`` let the HTTP layer build the response
    envelope without inspecting the message.
    """

    status_code = 500
    error_code = 'internal_error'
    default_message = 'Internal Server Error'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LibraryServiceError):
    status_code = 400
    error_code = 'invalid_input'
    default_message = 'Invalid input'


class InvalidStateError(LibraryServiceError):
    status_code = 400
    error_code = 'invalid_state'
    default_message = 'Operation not allowed in the current state'


class UnauthorizedError(LibraryServiceError):
    status_code = 401
    error_code = 'unauthorized'
    default_message = 'Authentication required'


class ForbiddenError(LibraryServiceError):
    status_code = 403
    error_code = 'forbidden'
    default_message = 'Access denied: Insufficient permissions'


class NotApproved(ForbiddenError):
    error_code = 'not_approved'
    default_message = 'Account not approved'


class NotFoundError(LibraryServiceError):
    status_code = 404
    error_code = 'not_found'
    default_message = 'Not found'


class ConflictError(LibraryServiceError):
    status_code = 409
    error_code = 'conflict'
    default_message = 'Conflict'


class BookUnavailable(ConflictError):
    error_code = 'book_unavailable'
    default_message = 'Book not available'


class AlreadyBorrowed(ConflictError):
    error_code = 'already_borrowed'
    default_message = 'You have already borrowed this book'


class AlreadyReturned(ConflictError):
    error_code = 'already_returned'
    default_message = 'Already returned'


class UserExists(ConflictError):
    error_code = 'user_exists'
    default_message = 'User already exists'


class BookInUse(ConflictError):
    error_code = 'book_in_use'
    default_message = 'Book has active loans and cannot be deleted'


class StorageError(LibraryServiceError):
    """Database failure; the message is safe to show to clients."""
