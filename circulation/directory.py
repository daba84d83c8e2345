"""Member, employee and branch records.

The engine only reads from here. Branch and employee reference each other
(a branch's manager is one of its employees, employees belong to a
branch), so a branch is created without a manager, its employees are added,
and the manager link is set afterwards with :meth:`DirectoryStore.set_branch_manager`.
"""

import logging
import sqlite3
from datetime import date
from typing import List, Optional

from circulation.database import connection
from circulation.errors import (
    BranchNotFoundError,
    DuplicateBranchIdError,
    DuplicateEmployeeIdError,
    DuplicateMemberIdError,
    EmployeeNotFoundError,
    MemberNotFoundError,
    ReferentialIntegrityError,
)
from circulation.models import Branch, Employee, Member

logger = logging.getLogger(__name__)


class DirectoryStore:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Members ------------------------- #
    def add_member(self, member: Member) -> Member:
        if not member.member_id:
            raise ValueError("Member id cannot be empty.")
        if member.registration_date is None:
            member.registration_date = date.today()
        with connection(self.db_file) as c:
            try:
                c.execute(
                    "INSERT INTO members (member_id, name, address, registration_date) VALUES (?, ?, ?, ?)",
                    (member.member_id, member.name, member.address, member.registration_date.isoformat()),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateMemberIdError(member.member_id) from e
                raise
        logger.info(f"Member registered: {member.member_id}")
        return member

    def find_member(self, member_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Member]:
        with connection(self.db_file, conn) as c:
            row = c.execute(
                "SELECT member_id, name, address, registration_date FROM members WHERE member_id = ?",
                (member_id,),
            ).fetchone()
            return Member.from_dict(dict(row)) if row else None

    def get_member(self, member_id: str, conn: Optional[sqlite3.Connection] = None) -> Member:
        member = self.find_member(member_id, conn)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def list_members(self) -> List[Member]:
        with connection(self.db_file) as c:
            rows = c.execute(
                "SELECT member_id, name, address, registration_date FROM members ORDER BY member_id"
            ).fetchall()
            return [Member.from_dict(dict(row)) for row in rows]

    def update_member_address(self, member_id: str, address: str) -> Member:
        """Administrative correction; the address is the only mutable member field."""
        address = (address or "").strip()
        if not address:
            raise ValueError("Address cannot be empty.")
        with connection(self.db_file) as c:
            cursor = c.execute("UPDATE members SET address = ? WHERE member_id = ?", (address, member_id))
            if cursor.rowcount == 0:
                raise MemberNotFoundError(member_id)
        return self.get_member(member_id)

    # ------------------------- Branches ------------------------- #
    def add_branch(self, branch: Branch) -> Branch:
        if not branch.branch_id:
            raise ValueError("Branch id cannot be empty.")
        if branch.manager_id is not None:
            raise ValueError("Create the branch first, then set its manager with set_branch_manager.")
        with connection(self.db_file) as c:
            try:
                c.execute(
                    "INSERT INTO branches (branch_id, manager_id, address, contact) VALUES (?, NULL, ?, ?)",
                    (branch.branch_id, branch.address, branch.contact),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateBranchIdError(branch.branch_id) from e
                raise
        logger.info(f"Branch added: {branch.branch_id}")
        return branch

    def find_branch(self, branch_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Branch]:
        with connection(self.db_file, conn) as c:
            row = c.execute(
                "SELECT branch_id, manager_id, address, contact FROM branches WHERE branch_id = ?",
                (branch_id,),
            ).fetchone()
            return Branch.from_dict(dict(row)) if row else None

    def get_branch(self, branch_id: str, conn: Optional[sqlite3.Connection] = None) -> Branch:
        branch = self.find_branch(branch_id, conn)
        if branch is None:
            raise BranchNotFoundError(branch_id)
        return branch

    def list_branches(self) -> List[Branch]:
        with connection(self.db_file) as c:
            rows = c.execute(
                "SELECT branch_id, manager_id, address, contact FROM branches ORDER BY branch_id"
            ).fetchall()
            return [Branch.from_dict(dict(row)) for row in rows]

    def set_branch_manager(self, branch_id: str, employee_id: str) -> Branch:
        """Point a branch at its manager, who must already work at that branch."""
        with connection(self.db_file) as c:
            self.get_branch(branch_id, c)
            employee = self.get_employee(employee_id, c)
            if employee.branch_id != branch_id:
                raise ReferentialIntegrityError(
                    f"Employee {employee_id} works at branch {employee.branch_id}, not {branch_id}.",
                    employee_id,
                )
            c.execute("UPDATE branches SET manager_id = ? WHERE branch_id = ?", (employee_id, branch_id))
            logger.info(f"Branch {branch_id} manager set to {employee_id}")
            return self.get_branch(branch_id, c)

    # ------------------------- Employees ------------------------- #
    def add_employee(self, employee: Employee) -> Employee:
        if not employee.employee_id:
            raise ValueError("Employee id cannot be empty.")
        if employee.salary < 0:
            raise ValueError(f"Salary cannot be negative: {employee.salary}")
        with connection(self.db_file) as c:
            self.get_branch(employee.branch_id, c)
            if employee.manager_id is not None:
                self._check_manager(employee.employee_id, employee.branch_id, employee.manager_id, c)
            try:
                c.execute(
                    """
                    INSERT INTO employees (employee_id, name, position, salary, branch_id, manager_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (employee.employee_id, employee.name, employee.position, str(employee.salary),
                     employee.branch_id, employee.manager_id),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateEmployeeIdError(employee.employee_id) from e
                raise
        logger.info(f"Employee added: {employee.employee_id} at branch {employee.branch_id}")
        return employee

    def find_employee(self, employee_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Employee]:
        with connection(self.db_file, conn) as c:
            row = c.execute(
                """
                SELECT employee_id, name, position, salary, branch_id, manager_id
                FROM employees WHERE employee_id = ?
                """,
                (employee_id,),
            ).fetchone()
            return Employee.from_dict(dict(row)) if row else None

    def get_employee(self, employee_id: str, conn: Optional[sqlite3.Connection] = None) -> Employee:
        employee = self.find_employee(employee_id, conn)
        if employee is None:
            raise EmployeeNotFoundError(employee_id)
        return employee

    def list_employees(self, branch_id: Optional[str] = None) -> List[Employee]:
        query = "SELECT employee_id, name, position, salary, branch_id, manager_id FROM employees"
        params: tuple = ()
        if branch_id:
            query += " WHERE branch_id = ?"
            params = (branch_id,)
        with connection(self.db_file) as c:
            rows = c.execute(query + " ORDER BY employee_id", params).fetchall()
            return [Employee.from_dict(dict(row)) for row in rows]

    def set_employee_manager(self, employee_id: str, manager_id: Optional[str]) -> Employee:
        """Set (or clear, with None) the employee an employee reports to."""
        with connection(self.db_file) as c:
            employee = self.get_employee(employee_id, c)
            if manager_id is not None:
                self._check_manager(employee_id, employee.branch_id, manager_id, c)
            c.execute("UPDATE employees SET manager_id = ? WHERE employee_id = ?", (manager_id, employee_id))
            return self.get_employee(employee_id, c)

    def _check_manager(self, employee_id: str, branch_id: str, manager_id: str, conn: sqlite3.Connection) -> None:
        if manager_id == employee_id:
            raise ReferentialIntegrityError(f"Employee {employee_id} cannot manage themselves.", employee_id)
        manager = self.get_employee(manager_id, conn)
        if manager.branch_id != branch_id:
            raise ReferentialIntegrityError(
                f"Manager {manager_id} works at branch {manager.branch_id}, not {branch_id}.",
                manager_id,
            )
        # walk up the chain so a reporting cycle can't be created
        seen = {employee_id}
        current: Optional[Employee] = manager
        while current is not None:
            if current.employee_id in seen:
                raise ReferentialIntegrityError(
                    f"Setting {manager_id} as manager of {employee_id} creates a reporting cycle.",
                    manager_id,
                )
            seen.add(current.employee_id)
            current = self.find_employee(current.manager_id, conn) if current.manager_id else None
