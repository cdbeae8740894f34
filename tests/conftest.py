"""
Shared pytest fixtures for the Accreditation Management Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / admin / institute_user / reviewer / auditor: entity factories
    - auth_headers: bearer header for a user
    - make_file / uploaded_document: upload helpers backed by a tmp folder
"""

import io

import pytest
from werkzeug.datastructures import FileStorage

from accredit import create_app
from accredit.models import db as _db
from accredit.models.assessor import Auditor, Reviewer
from accredit.models.auth import User
from accredit.models.institute import Institute
from accredit.services.jwt_service import generate_access_token
from accredit.utils.crypto import hash_password

DEFAULT_PASSWORD = "Password123!"


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
def session(app, _setup_db, tmp_path):
    """Per-test: app context, private upload folder, rollback + recreate tables."""
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    app.extensions.pop("blob_storage", None)
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    app.extensions.pop("blob_storage", None)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Entity factories ─────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: ``make_user(role, status="active", email=None, name=None)``."""
    counter = {"n": 0}

    def _make(role="institute", status="active", email=None, name=None, password=DEFAULT_PASSWORD):
        counter["n"] += 1
        user = User(
            name=name or f"{role.capitalize()} User {counter['n']}",
            email=email or f"{role}{counter['n']}@example.org",
            password_hash=hash_password(password),
            role=role,
            status=status,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin", name="Ada Admin")


@pytest.fixture()
def institute_user(make_user):
    """An active institute user linked to an institute with a contact mailbox."""
    user = make_user("institute", name="Ines Institute")
    institute = Institute(
        name="Northfield University",
        code="NFU",
        type="university",
        email="registrar@northfield.example.org",
        administrator_id=user.id,
        status="active",
    )
    _db.session.add(institute)
    _db.session.flush()
    user.institute_id = institute.id
    _db.session.commit()
    return user


@pytest.fixture()
def reviewer(make_user):
    """Reviewer profile (capacity 10) for an active reviewer user."""
    user = make_user("reviewer", name="Rita Reviewer")
    profile = Reviewer(user_id=user.id, specialization=["academic"], workload_maximum=10)
    _db.session.add(profile)
    _db.session.commit()
    return profile


@pytest.fixture()
def auditor(make_user):
    """Auditor profile (capacity 8) for an active auditor user."""
    user = make_user("auditor", name="Otto Auditor")
    profile = Auditor(
        user_id=user.id, license_number="LIC-0001", specialization=["compliance"], workload_maximum=8,
    )
    _db.session.add(profile)
    _db.session.commit()
    return profile


@pytest.fixture()
def auth_headers():
    """``auth_headers(user)`` → Authorization header with a fresh access token."""

    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}

    return _headers


# ── Upload helpers ───────────────────────────────────────────────────────


def _file_storage(name="self-study.pdf", content=b"%PDF-1.4 accreditation evidence", mimetype="application/pdf"):
    return FileStorage(stream=io.BytesIO(content), filename=name, content_type=mimetype)


@pytest.fixture()
def make_file():
    """Factory for in-memory uploads: ``make_file(name=..., content=...)``."""
    return _file_storage


@pytest.fixture()
def uploaded_document(institute_user):
    """A freshly uploaded document owned by ``institute_user``."""
    from accredit.services.document_lifecycle import upload_document

    return upload_document(
        institute_user,
        _file_storage(),
        {"title": "Self-Study Report 2026", "type": "accreditation_application", "priority": "high"},
    )
