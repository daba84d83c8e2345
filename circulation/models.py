from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


class Availability(str, Enum):
    AVAILABLE = "available"
    ON_LOAN = "on-loan"


class ReturnCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    LOST = "lost"

    @classmethod
    def parse(cls, raw: "ReturnCondition | str") -> "ReturnCondition":
        """Accept an enum member or its name/value in any case ('Damaged', 'LOST')."""
        if isinstance(raw, cls):
            return raw
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown return condition '{raw}'. Allowed: {allowed}") from None


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class Book:
    """A single copy in the catalog."""

    book_id: str
    title: str
    category: str
    rental_price: Decimal
    author: str
    publisher: str
    availability: Availability = Availability.AVAILABLE

    def __post_init__(self) -> None:
        self.book_id = self.book_id.strip()
        self.title = self.title.strip()
        self.rental_price = _as_decimal(self.rental_price)
        self.availability = Availability(self.availability)

    @property
    def available(self) -> bool:
        return self.availability is Availability.AVAILABLE

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.book_id})"

    def to_dict(self) -> dict:
        return {
            "book_id": self.book_id,
            "title": self.title,
            "category": self.category,
            "rental_price": str(self.rental_price),
            "author": self.author,
            "publisher": self.publisher,
            "availability": self.availability.value,
            "available": self.available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite keeps the flag as 0/1
        availability = data.get("availability")
        if availability is None:
            availability = Availability.AVAILABLE if data.get("available", 1) else Availability.ON_LOAN
        return Book(
            book_id=data["book_id"],
            title=data["title"],
            category=data.get("category") or "",
            rental_price=data.get("rental_price") or 0,
            author=data.get("author") or "",
            publisher=data.get("publisher") or "",
            availability=availability,
        )


@dataclass
class Member:
    member_id: str
    name: str
    address: str
    registration_date: date

    def __post_init__(self) -> None:
        self.registration_date = _as_date(self.registration_date)

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "name": self.name,
            "address": self.address,
            "registration_date": self.registration_date.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            member_id=data["member_id"],
            name=data["name"],
            address=data.get("address") or "",
            registration_date=data["registration_date"],
        )


@dataclass
class Employee:
    employee_id: str
    name: str
    position: str
    salary: Decimal
    branch_id: str
    manager_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.salary = _as_decimal(self.salary)

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "name": self.name,
            "position": self.position,
            "salary": str(self.salary),
            "branch_id": self.branch_id,
            "manager_id": self.manager_id,
        }

    @staticmethod
    def from_dict(data: dict) -> "Employee":
        return Employee(
            employee_id=data["employee_id"],
            name=data["name"],
            position=data.get("position") or "",
            salary=data.get("salary") or 0,
            branch_id=data["branch_id"],
            manager_id=data.get("manager_id"),
        )


@dataclass
class Branch:
    branch_id: str
    address: str
    contact: str
    manager_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "address": self.address,
            "contact": self.contact,
            "manager_id": self.manager_id,
        }

    @staticmethod
    def from_dict(data: dict) -> "Branch":
        return Branch(
            branch_id=data["branch_id"],
            address=data.get("address") or "",
            contact=data.get("contact") or "",
            manager_id=data.get("manager_id"),
        )


@dataclass
class IssueRecord:
    """One issuance event. Immutable once written, apart from an administrative void."""

    issue_id: str
    member_id: str
    employee_id: str
    book_id: str
    book_title: str
    issue_date: date
    voided_on: Optional[date] = None
    void_reason: Optional[str] = None

    def __post_init__(self) -> None:
        self.issue_date = _as_date(self.issue_date)
        self.voided_on = _as_date(self.voided_on)

    @property
    def voided(self) -> bool:
        return self.voided_on is not None

    def to_dict(self) -> dict:
        return {
            "issue_id": self.issue_id,
            "member_id": self.member_id,
            "employee_id": self.employee_id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "issue_date": self.issue_date.isoformat(),
            "voided_on": self.voided_on.isoformat() if self.voided_on else None,
            "void_reason": self.void_reason,
        }

    @staticmethod
    def from_dict(data: dict) -> "IssueRecord":
        return IssueRecord(
            issue_id=data["issue_id"],
            member_id=data["member_id"],
            employee_id=data["employee_id"],
            book_id=data["book_id"],
            book_title=data.get("book_title") or "",
            issue_date=data["issue_date"],
            voided_on=data.get("voided_on"),
            void_reason=data.get("void_reason"),
        )


@dataclass
class ReturnRecord:
    return_id: str
    issue_id: str
    book_title: str
    return_date: date
    condition: ReturnCondition = ReturnCondition.GOOD

    def __post_init__(self) -> None:
        self.return_date = _as_date(self.return_date)
        self.condition = ReturnCondition.parse(self.condition)

    def to_dict(self) -> dict:
        return {
            "return_id": self.return_id,
            "issue_id": self.issue_id,
            "book_title": self.book_title,
            "return_date": self.return_date.isoformat(),
            "condition": self.condition.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "ReturnRecord":
        return ReturnRecord(
            return_id=data["return_id"],
            issue_id=data["issue_id"],
            book_title=data.get("book_title") or "",
            return_date=data["return_date"],
            condition=data.get("condition") or ReturnCondition.GOOD,
        )
