"""Service layer package for encapsulating business logic."""

from .accounts import AccountService  # noqa: F401
from .auth import Actor, admin_required, current_actor, issue_token, login_required, student_required  # noqa: F401
from .borrowing import BorrowResult, BorrowService  # noqa: F401
from .errors import LibraryServiceError  # noqa: F401
from .inventory import InventoryService  # noqa: F401
