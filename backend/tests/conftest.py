"""
Shared fixtures: in-memory database, data factory and API client
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("BOOTSTRAP_API_KEY", None)

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from facility_ledger.core.database import get_db, init_db
from facility_ledger.main import app
from facility_ledger.models import (
    AccountingNote, ApiKey, Invoice, InvoiceType, OperationalUnit, PMAdvance, Project,
    Staff, StaffAdvance, StaffProjectAssignment, UnitExpense, User, UserRole
)

API_KEY = "test-accountant-key-0123456789abcdef"
ACCOUNTANT_PHONE = "+201000000001"
WEBHOOK_URL = "/api/v1/webhooks/accountants"


class LedgerFactory:
    """Creates committed rows for tests"""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, name="Mona", role=UserRole.ACCOUNTANT.value, phone=ACCOUNTANT_PHONE, is_active=True):
        return self._save(User(name=name, role=role, whatsapp_phone=phone, is_active=is_active))

    def api_key(self, key=API_KEY, role=UserRole.ACCOUNTANT.value, is_active=True):
        return self._save(ApiKey(name=f"{role.lower()} key", key=key, role=role, is_active=is_active))

    def project(self, name="Nile Towers"):
        return self._save(Project(name=name))

    def unit(self, project, code="A-101", name=None):
        return self._save(OperationalUnit(code=code, name=name or f"Unit {code}", project_id=project.id))

    def staff(self, name, salary="5000", unit=None, project=None, is_active=True):
        staff = Staff(name=name, salary=Decimal(salary), unit_id=unit.id if unit else None, is_active=is_active)
        if project is not None:
            staff.project_assignments.append(StaffProjectAssignment(project_id=project.id))
        return self._save(staff)

    def staff_advance(self, staff, amount, status="PENDING", note=None, date=None):
        return self._save(StaffAdvance(
            staff_id=staff.id,
            amount=Decimal(amount),
            status=status,
            note=note,
            date=date or datetime.utcnow()
        ))

    def pm_advance(self, staff, amount, project=None):
        return self._save(PMAdvance(
            staff_id=staff.id,
            project_id=project.id if project else None,
            amount=Decimal(amount),
            remaining_amount=Decimal(amount)
        ))

    def note(self, unit, amount, description="Lobby lamps", source_type="OFFICE_FUND", pm_advance=None,
             status="PENDING", created_at=None):
        return self._save(AccountingNote(
            unit_id=unit.id if unit else None,
            project_id=unit.project_id if unit else None,
            description=description,
            amount=Decimal(amount),
            source_type=source_type,
            pm_advance_id=pm_advance.id if pm_advance else None,
            status=status,
            created_at=created_at or datetime.utcnow()
        ))

    def invoice(self, unit, amount, number="INV-00001"):
        return self._save(Invoice(
            invoice_number=number,
            type=InvoiceType.CLAIM.value,
            unit_id=unit.id,
            amount=Decimal(amount),
            total_paid=Decimal("0.00"),
            remaining_balance=Decimal(amount),
            is_paid=False
        ))

    def unit_expense(self, unit, amount, description, source_type="OTHER", date=None):
        return self._save(UnitExpense(
            unit_id=unit.id,
            amount=Decimal(amount),
            description=description,
            source_type=source_type,
            date=date or datetime.utcnow()
        ))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return LedgerFactory(db)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def accountant(factory):
    return factory.user()


@pytest.fixture
def api_key(factory):
    return factory.api_key()


@pytest.fixture
def call_action(client, api_key, accountant, db):
    """POST one accountant action and return the response"""
    def call(action, payload, sender_phone=ACCOUNTANT_PHONE, key=API_KEY):
        response = client.post(
            WEBHOOK_URL,
            json={"action": action, "senderPhone": sender_phone, "payload": payload},
            headers={"x-api-key": key}
        )
        db.expire_all()
        return response
    return call
