"""Error taxonomy for the circulation engine.

Every error carries the offending identifier so callers (HTTP layer, CLI)
can report exactly what was rejected. Three families exist:

- ``NotFoundError``: a referenced entity is absent.
- ``ConflictError``: a business rule rejected the operation (book on loan,
  issue already returned, duplicate identifier).
- ``ReferentialIntegrityError``: a write would break a reference between
  records.

None of them are transient, so nothing in the package retries them.
"""

from __future__ import annotations

from typing import Optional


class CirculationError(Exception):
    """Base class for all circulation errors."""

    code = "circulation_error"

    def __init__(self, message: str, identifier: Optional[str] = None) -> None:
        super().__init__(message)
        self.identifier = identifier


# ------------------------- Not found ------------------------- #
class NotFoundError(CirculationError, LookupError):
    code = "not_found"


class BookNotFoundError(NotFoundError):
    code = "book_not_found"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book {book_id} not found.", book_id)


class MemberNotFoundError(NotFoundError):
    code = "member_not_found"

    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member {member_id} not found.", member_id)


class EmployeeNotFoundError(NotFoundError):
    code = "employee_not_found"

    def __init__(self, employee_id: str) -> None:
        super().__init__(f"Employee {employee_id} not found.", employee_id)


class BranchNotFoundError(NotFoundError):
    code = "branch_not_found"

    def __init__(self, branch_id: str) -> None:
        super().__init__(f"Branch {branch_id} not found.", branch_id)


class IssueNotFoundError(NotFoundError):
    code = "issue_not_found"

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue {issue_id} not found.", issue_id)


class ReturnNotFoundError(NotFoundError):
    code = "return_not_found"

    def __init__(self, return_id: str) -> None:
        super().__init__(f"Return {return_id} not found.", return_id)


# ------------------------- Conflicts ------------------------- #
class ConflictError(CirculationError):
    code = "conflict"


class AlreadyOnLoanError(ConflictError):
    """Raised by the availability controller on Available -> OnLoan when the book is already out."""

    code = "already_on_loan"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book {book_id} is already on loan.", book_id)


class NotOnLoanError(ConflictError):
    """Raised by the availability controller on OnLoan -> Available when the book is already in."""

    code = "not_on_loan"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book {book_id} is not on loan.", book_id)


class BookUnavailableError(ConflictError):
    code = "book_unavailable"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book {book_id} is not available for issue.", book_id)


class AlreadyReturnedError(ConflictError):
    code = "already_returned"

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue {issue_id} has already been returned.", issue_id)


class IssueVoidedError(ConflictError):
    code = "issue_voided"

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue {issue_id} has been voided.", issue_id)


class DuplicateIdError(ConflictError):
    code = "duplicate_id"
    kind = "Record"

    def __init__(self, identifier: str) -> None:
        super().__init__(f"{self.kind} id {identifier} is already in use.", identifier)


class DuplicateIssueIdError(DuplicateIdError):
    code = "duplicate_issue_id"
    kind = "Issue"


class DuplicateReturnIdError(DuplicateIdError):
    code = "duplicate_return_id"
    kind = "Return"


class DuplicateBookIdError(DuplicateIdError):
    code = "duplicate_book_id"
    kind = "Book"


class DuplicateMemberIdError(DuplicateIdError):
    code = "duplicate_member_id"
    kind = "Member"


class DuplicateEmployeeIdError(DuplicateIdError):
    code = "duplicate_employee_id"
    kind = "Employee"


class DuplicateBranchIdError(DuplicateIdError):
    code = "duplicate_branch_id"
    kind = "Branch"


class ConcurrentModificationError(ConflictError):
    """Another writer held the book or issue longer than the configured lock timeout."""

    code = "concurrent_modification"

    def __init__(self, identifier: str) -> None:
        super().__init__(f"{identifier} is being modified by another operation.", identifier)


# ------------------------- Integrity ------------------------- #
class ReferentialIntegrityError(CirculationError):
    code = "referential_integrity"
