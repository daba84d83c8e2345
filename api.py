import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from circulation.errors import (
    CirculationError,
    ConflictError,
    NotFoundError,
    ReferentialIntegrityError,
)
from circulation.library import Library
from circulation.models import Book, Branch, Employee, Member, ReturnCondition
from config import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_library: Optional[Library] = None


def get_library() -> Library:
    """Dependency returning the process-wide Library; tests override it."""
    global _library
    if _library is None:
        _library = Library()
    return _library


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.app_name} {settings.app_version} started")
    try:
        yield
    finally:
        if _library is not None:
            _library.close()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key for write endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def _http_error(exc: Exception) -> HTTPException:
    """Map circulation errors onto HTTP status codes."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, (ConflictError, ReferentialIntegrityError)):
        status = 409
    else:
        status = 400
    code = getattr(exc, "code", "invalid")
    identifier = getattr(exc, "identifier", None)
    if status != 404:
        logger.warning(f"Rejected ({code}): {exc}")
    return HTTPException(status_code=status, detail={"detail": str(exc), "code": code, "identifier": identifier})


# --- Models ---
class BookModel(BaseModel):
    book_id: str
    title: str
    category: str = ""
    rental_price: Decimal = Field(default=Decimal("0"), ge=0)
    author: str = ""
    publisher: str = ""


class BookOut(BookModel):
    availability: str
    available: bool


class MemberModel(BaseModel):
    member_id: str
    name: str
    address: str = ""
    registration_date: Optional[date] = None


class AddressUpdateModel(BaseModel):
    address: str


class BranchModel(BaseModel):
    branch_id: str
    address: str = ""
    contact: str = ""


class BranchOut(BranchModel):
    manager_id: Optional[str] = None


class EmployeeModel(BaseModel):
    employee_id: str
    name: str
    position: str = ""
    salary: Decimal = Field(default=Decimal("0"), ge=0)
    branch_id: str
    manager_id: Optional[str] = None


class ManagerModel(BaseModel):
    manager_id: Optional[str] = None


class IssueCreateModel(BaseModel):
    issue_id: str
    book_id: str
    member_id: str
    employee_id: str
    issue_date: Optional[date] = None


class IssueOut(BaseModel):
    issue_id: str
    member_id: str
    employee_id: str
    book_id: str
    book_title: str
    issue_date: date
    voided_on: Optional[date] = None
    void_reason: Optional[str] = None


class ReturnCreateModel(BaseModel):
    return_id: str
    return_date: Optional[date] = None
    condition: ReturnCondition = ReturnCondition.GOOD


class ReturnOut(BaseModel):
    return_id: str
    issue_id: str
    book_title: str
    return_date: date
    condition: ReturnCondition


class VoidModel(BaseModel):
    reason: str
    voided_on: Optional[date] = None


class FineOut(BaseModel):
    issue_id: str
    returned: bool
    overdue: bool
    days_overdue: int
    fine: Decimal


class OverdueOut(BaseModel):
    issue_id: str
    member_id: str
    book_id: str
    book_title: str
    issue_date: date
    days_overdue: int
    fine: Decimal


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health endpoint with basic circulation counts."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **library.get_statistics(),
    }


# --- Books ---
@app.get("/books", response_model=List[BookOut])
def list_books(category: Optional[str] = None, q: Optional[str] = None,
               library: Library = Depends(get_library)):
    books = library.catalog.search_books(q) if q else library.list_books(category)
    if q and category:
        books = [b for b in books if b.category == category]
    return [b.to_dict() for b in books]


@app.get("/books/{book_id}", response_model=BookOut)
def get_book(book_id: str, library: Library = Depends(get_library)):
    try:
        return library.catalog.get_book(book_id).to_dict()
    except CirculationError as e:
        raise _http_error(e)


@app.post("/books", response_model=BookOut, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookModel, library: Library = Depends(get_library)):
    try:
        book = library.add_book(Book(**payload.model_dump()))
    except (CirculationError, ValueError) as e:
        raise _http_error(e)
    return book.to_dict()


# --- Members ---
@app.post("/members", status_code=201, dependencies=[Depends(get_api_key)])
def add_member(payload: MemberModel, library: Library = Depends(get_library)):
    try:
        member = library.add_member(Member(**payload.model_dump()))
    except (CirculationError, ValueError) as e:
        raise _http_error(e)
    return member.to_dict()


@app.get("/members/{member_id}")
def get_member(member_id: str, library: Library = Depends(get_library)):
    try:
        member = library.directory.get_member(member_id)
    except CirculationError as e:
        raise _http_error(e)
    data = member.to_dict()
    data["high_risk"] = library.is_high_risk_member(member_id)
    return data


@app.patch("/members/{member_id}/address", dependencies=[Depends(get_api_key)])
def update_member_address(member_id: str, payload: AddressUpdateModel, library: Library = Depends(get_library)):
    try:
        return library.directory.update_member_address(member_id, payload.address).to_dict()
    except (CirculationError, ValueError) as e:
        raise _http_error(e)


# --- Branches & employees ---
@app.post("/branches", response_model=BranchOut, status_code=201, dependencies=[Depends(get_api_key)])
def add_branch(payload: BranchModel, library: Library = Depends(get_library)):
    try:
        return library.add_branch(Branch(**payload.model_dump())).to_dict()
    except (CirculationError, ValueError) as e:
        raise _http_error(e)


@app.put("/branches/{branch_id}/manager", response_model=BranchOut, dependencies=[Depends(get_api_key)])
def set_branch_manager(branch_id: str, payload: ManagerModel, library: Library = Depends(get_library)):
    if not payload.manager_id:
        raise HTTPException(status_code=422, detail="manager_id is required")
    try:
        return library.directory.set_branch_manager(branch_id, payload.manager_id).to_dict()
    except CirculationError as e:
        raise _http_error(e)


@app.post("/employees", status_code=201, dependencies=[Depends(get_api_key)])
def add_employee(payload: EmployeeModel, library: Library = Depends(get_library)):
    try:
        return library.add_employee(Employee(**payload.model_dump())).to_dict()
    except (CirculationError, ValueError) as e:
        raise _http_error(e)


@app.put("/employees/{employee_id}/manager", dependencies=[Depends(get_api_key)])
def set_employee_manager(employee_id: str, payload: ManagerModel, library: Library = Depends(get_library)):
    try:
        return library.directory.set_employee_manager(employee_id, payload.manager_id).to_dict()
    except CirculationError as e:
        raise _http_error(e)


# --- Issues ---
@app.post("/issues", response_model=IssueOut, status_code=201, dependencies=[Depends(get_api_key)])
def issue_book(payload: IssueCreateModel, library: Library = Depends(get_library)):
    try:
        record = library.issue_book(payload.book_id, payload.member_id, payload.employee_id,
                                    payload.issue_id, payload.issue_date)
    except (CirculationError, ValueError) as e:
        raise _http_error(e)
    return record.to_dict()


@app.get("/issues", response_model=List[IssueOut])
def list_issues(member_id: Optional[str] = None, employee_id: Optional[str] = None,
                book_id: Optional[str] = None, open_only: bool = False,
                library: Library = Depends(get_library)):
    if open_only:
        records = library.issues.list_open()
    elif member_id:
        records = library.issues.list_by_member(member_id)
    elif employee_id:
        records = library.issues.list_by_employee(employee_id)
    elif book_id:
        records = library.issues.list_by_book(book_id)
    else:
        records = library.issues.list_all()
    # remaining filters narrow whatever the first one selected
    records = [
        r for r in records
        if (member_id is None or r.member_id == member_id)
        and (employee_id is None or r.employee_id == employee_id)
        and (book_id is None or r.book_id == book_id)
    ]
    return [r.to_dict() for r in records]


@app.get("/issues/{issue_id}", response_model=IssueOut)
def get_issue(issue_id: str, library: Library = Depends(get_library)):
    try:
        return library.issues.get(issue_id).to_dict()
    except CirculationError as e:
        raise _http_error(e)


@app.delete("/issues/{issue_id}", dependencies=[Depends(get_api_key)])
def delete_issue(issue_id: str, library: Library = Depends(get_library)):
    try:
        library.delete_issue(issue_id)
    except CirculationError as e:
        raise _http_error(e)
    return {"message": f"Issue {issue_id} deleted."}


@app.post("/issues/{issue_id}/void", response_model=IssueOut, dependencies=[Depends(get_api_key)])
def void_issue(issue_id: str, payload: VoidModel, library: Library = Depends(get_library)):
    try:
        return library.void_issue(issue_id, payload.reason, payload.voided_on).to_dict()
    except (CirculationError, ValueError) as e:
        raise _http_error(e)


@app.post("/issues/{issue_id}/return", response_model=ReturnOut, status_code=201,
          dependencies=[Depends(get_api_key)])
def return_book(issue_id: str, payload: ReturnCreateModel, library: Library = Depends(get_library)):
    try:
        record = library.return_book(issue_id, payload.return_id, payload.return_date, payload.condition)
    except (CirculationError, ValueError) as e:
        raise _http_error(e)
    return record.to_dict()


@app.get("/issues/{issue_id}/fine", response_model=FineOut)
def get_fine(issue_id: str, as_of: Optional[date] = Query(None, description="Defaults to today"),
             library: Library = Depends(get_library)):
    try:
        return library.fine_for(issue_id, as_of)
    except CirculationError as e:
        raise _http_error(e)


# --- Reports ---
@app.get("/reports/overdue", response_model=List[OverdueOut])
def overdue_report(as_of: Optional[date] = None, library: Library = Depends(get_library)):
    return [e.to_dict() for e in library.overdue_report(as_of)]


@app.get("/reports/high-risk-members", response_model=List[str])
def high_risk_members(library: Library = Depends(get_library)):
    return library.high_risk_members()


@app.get("/reports/active-members", response_model=List[str])
def active_members(as_of: Optional[date] = None, window_days: Optional[int] = Query(None, ge=0),
                   library: Library = Depends(get_library)):
    return library.active_members(as_of, window_days)


@app.get("/reports/fines-by-member")
def fines_by_member(as_of: Optional[date] = None, library: Library = Depends(get_library)) -> Dict[str, str]:
    return {member_id: str(total) for member_id, total in library.fines_by_member(as_of).items()}


@app.get("/reports/availability-check")
def availability_check(library: Library = Depends(get_library)):
    mismatched = library.verify_availability()
    return {"consistent": not mismatched, "mismatched": mismatched}


@app.post("/reports/materialize", dependencies=[Depends(get_api_key)])
def materialize_reports(as_of: Optional[date] = None, library: Library = Depends(get_library)):
    return library.materialize_reports(as_of)
