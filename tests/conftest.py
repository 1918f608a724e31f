"""
Shared pytest fixtures for the project tracking test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - factory: ORM helpers for master data and items
    - org: department QA with approvers A (order 1) and B (order 2), an owner
      and a submitter, plus one project and one APQP item owned by QA
"""

from types import SimpleNamespace

import pytest

from app import create_app
from app.models import db as _db
from app.models.organization import Department, User, WorkflowStep
from app.models.project import ItemDetail, Project


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


class _Factory:
    """Thin ORM helpers; every call commits so ids are usable immediately."""

    def __init__(self):
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def department(self, code=None, name=None):
        n = self._next()
        dept = Department(code=code or f"D{n}", name=name or f"Department {n}")
        _db.session.add(dept)
        _db.session.commit()
        return dept

    def user(self, department=None, emp_code=None, email="auto", status="active", first_name=None):
        n = self._next()
        emp_code = emp_code or f"E{n:04d}"
        user = User(
            emp_code=emp_code,
            first_name=first_name or f"First{n}",
            last_name=f"Last{n}",
            email=f"{emp_code.lower()}@example.com" if email == "auto" else email,
            department_id=department.id if department else None,
            status=status,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    def step(self, department, approver, order, status="active"):
        step = WorkflowStep(
            department_id=department.id,
            approver_id=approver.id,
            step_order=order,
            status=status,
            created_by="admin",
        )
        _db.session.add(step)
        _db.session.commit()
        return step

    def project(self, code=None):
        n = self._next()
        proj = Project(
            code=code or f"PRJ-{n:03d}",
            part_no=f"PN-{n}",
            part_name=f"Bracket {n}",
            model="MX-5",
        )
        _db.session.add(proj)
        _db.session.commit()
        return proj

    def item(self, project, department=None, owner=None, reference_id=1, item_type="apqp",
             name=None, line_code=None, lifecycle_status="inprogress"):
        n = self._next()
        item = ItemDetail(
            project_id=project.id,
            reference_id=reference_id,
            item_type=item_type,
            item_name=name or f"Deliverable {n}",
            department_id=department.id if department else None,
            owner_id=owner.id if owner else None,
            line_code=line_code,
            lifecycle_status=lifecycle_status,
            created_by="planner",
        )
        _db.session.add(item)
        _db.session.commit()
        return item


@pytest.fixture()
def factory():
    return _Factory()


@pytest.fixture()
def org(factory):
    """Department QA with a two-step workflow (A then B) and one item."""
    qa = factory.department(code="QA", name="Quality Assurance")
    approver_a = factory.user(qa, emp_code="A001", first_name="Ada")
    approver_b = factory.user(qa, emp_code="B001", first_name="Ben")
    owner = factory.user(qa, emp_code="O001", first_name="Olga")
    submitter = factory.user(qa, emp_code="S001", first_name="Sam")
    factory.step(qa, approver_a, 1)
    factory.step(qa, approver_b, 2)
    project = factory.project(code="PRJ-100")
    item = factory.item(project, department=qa, owner=owner, name="Process Flow Chart")
    return SimpleNamespace(
        dept=qa,
        a=approver_a,
        b=approver_b,
        owner=owner,
        submitter=submitter,
        project=project,
        item=item,
    )
