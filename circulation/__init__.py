"""Library circulation engine.

Modules:
- models: Book, Member, Employee, Branch, IssueRecord, ReturnRecord
- database: SQLite connections, transactions and schema
- catalog / directory: book records and member/employee/branch records
- ledgers: append-only issue and return ledgers
- availability: the per-book available/on-loan state machine
- engine: atomic issue, return, delete and void
- fines: overdue, fine, high-risk and active-member calculations
- reports: rebuildable summary tables
- library: the facade wiring all of the above
"""

from circulation.errors import (
    CirculationError,
    ConflictError,
    NotFoundError,
    ReferentialIntegrityError,
)
from circulation.models import (
    Availability,
    Book,
    Branch,
    Employee,
    IssueRecord,
    Member,
    ReturnCondition,
    ReturnRecord,
)
from circulation.engine import CirculationEngine, CirculationEvent
from circulation.fines import FineCalculator, OverdueEntry
from circulation.library import Library

__all__ = [
    "CirculationError",
    "ConflictError",
    "NotFoundError",
    "ReferentialIntegrityError",
    "Availability",
    "Book",
    "Branch",
    "Employee",
    "IssueRecord",
    "Member",
    "ReturnCondition",
    "ReturnRecord",
    "CirculationEngine",
    "CirculationEvent",
    "FineCalculator",
    "OverdueEntry",
    "Library",
]
