"""
Database Configuration
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

from facility_ledger.core.config import settings

# Get the properly formatted database URL
db_url = settings.database_url

# Create engine
engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Ensures the session is closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables"""
    # Import all models to register them with Base
    from facility_ledger.models import (
        User, ApiKey, WebhookLog, Project, OperationalUnit, Staff,
        StaffProjectAssignment, StaffAdvance, PMAdvance, AccountingNote,
        Invoice, Payment, OperationalExpense, UnitExpense, Payroll, PayrollItem
    )
    Base.metadata.create_all(bind=bind or engine)
