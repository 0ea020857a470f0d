"""
Shared pytest fixtures for the Academic Evidence Portfolio test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / instructor / verifier / subject: directory rows
    - template: default structure template, seeded
    - cycle: AcademicCycle in ``preparing``
    - active_cycle: the same cycle moved to ``active`` through the service
    - assignment / verifier_assignment: registry rows in the active cycle
    - portfolio: generated root PortfolioNode for ``assignment``
    - headers: builds identity headers for API calls

Fixtures COMMIT their rows. Services roll back on failure, and a rollback
must never wipe the fixture data a test is asserting against.
"""

from datetime import date

import pytest

from evidence_portfolio import create_app
from evidence_portfolio.models import db as _db
from evidence_portfolio.models.assignment import TeachingAssignment, VerifierAssignment
from evidence_portfolio.models.cycle import AcademicCycle
from evidence_portfolio.models.directory import Subject, User
from evidence_portfolio.models.portfolio import PortfolioNode
from evidence_portfolio.services import cycle_service, portfolio_service, template_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


def _reset_schema(recreate=True):
    """Drop (and optionally recreate) every table with SQLite FK checks off.

    portfolio_nodes references itself with ON DELETE RESTRICT, so DROP TABLE
    fails while the connect-time ``PRAGMA foreign_keys=ON`` is in force.
    The pragma is ignored inside a transaction, so the session is released
    first and the statements run on a fresh connection.
    """
    _db.session.remove()
    with _db.engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        _db.metadata.drop_all(conn)
        if recreate:
            _db.metadata.create_all(conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _reset_schema(recreate=False)


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _reset_schema()


@pytest.fixture()
def reset_schema():
    """The per-test cleanup, callable mid-test."""
    return _reset_schema


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


def _commit(obj):
    _db.session.add(obj)
    _db.session.commit()
    return obj


# ── Directory fixtures ───────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return _commit(User(email="admin@uni.edu", full_name="Ada Admin", role="administrator"))


@pytest.fixture()
def instructor():
    return _commit(User(email="ines@uni.edu", full_name="Ines Instructor", role="instructor"))


@pytest.fixture()
def verifier():
    return _commit(User(email="vera@uni.edu", full_name="Vera Verifier", role="verifier"))


@pytest.fixture()
def subject():
    return _commit(Subject(code="CS101", name="Algorithms", credits=4))


@pytest.fixture()
def template():
    """Seed the default five-section template."""
    template_service.seed_default_template()
    _db.session.commit()
    return template_service.get_active_template()


# ── Cycle & registry fixtures ────────────────────────────────────────────


@pytest.fixture()
def cycle(admin):
    return _commit(AcademicCycle(
        name="2025-I",
        start_date=date(2025, 3, 1),
        end_date=date(2025, 7, 31),
        period_label="2025-I",
        year=2025,
        state="preparing",
        created_by=admin.id,
    ))


@pytest.fixture()
def active_cycle(cycle, admin):
    """Cycle walked preparing → initializing → active, so data_intake is on."""
    cycle_service.transition_cycle(cycle.id, "initializing", admin.id)
    cycle_service.transition_cycle(cycle.id, "active", admin.id)
    return _db.session.get(AcademicCycle, cycle.id)


@pytest.fixture()
def assignment(active_cycle, instructor, subject):
    return _commit(TeachingAssignment(
        instructor_id=instructor.id,
        subject_id=subject.id,
        cycle_id=active_cycle.id,
        group_label="A",
    ))


@pytest.fixture()
def verifier_assignment(active_cycle, verifier, instructor):
    return _commit(VerifierAssignment(
        verifier_id=verifier.id,
        instructor_id=instructor.id,
        cycle_id=active_cycle.id,
    ))


@pytest.fixture()
def headers():
    """headers(user) → identity headers; role defaults to the user's role."""
    def _headers(user, role=None):
        return {"X-User-Id": str(user.id), "X-User-Role": role or user.role}
    return _headers


@pytest.fixture()
def portfolio(template, assignment, admin):
    """Generated root for ``assignment``. Generation opens document_management + verification."""
    result = portfolio_service.generate_for_assignment(assignment.id, admin.id)
    return _db.session.get(PortfolioNode, result["root"]["id"])
