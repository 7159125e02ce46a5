"""
SQLAlchemy Models for the Facility Ledger
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from facility_ledger.core.database import Base


# ==================== ENUMS ====================

class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    RESIDENT = "RESIDENT"


class AdvanceStatus(enum.Enum):
    PENDING = "PENDING"
    DEDUCTED = "DEDUCTED"


class NoteStatus(enum.Enum):
    PENDING = "PENDING"
    CONVERTED = "CONVERTED"
    REJECTED = "REJECTED"


class FundingSource(enum.Enum):
    OFFICE_FUND = "OFFICE_FUND"
    PM_ADVANCE = "PM_ADVANCE"


class ExpenseSourceType(enum.Enum):
    TECHNICIAN_WORK = "TECHNICIAN_WORK"
    STAFF_WORK = "STAFF_WORK"
    ELECTRICITY = "ELECTRICITY"
    OTHER = "OTHER"


class InvoiceType(enum.Enum):
    CLAIM = "CLAIM"
    MANAGEMENT_SERVICE = "MANAGEMENT_SERVICE"


class PayrollStatus(enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


# ==================== IDENTITY & AUDIT ====================

class User(Base):
    """Back-office user; accountants are resolved by WhatsApp phone"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    role = Column(String(30), nullable=False, default=UserRole.ACCOUNTANT.value)
    whatsapp_phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_users_whatsapp_phone', 'whatsapp_phone'),
    )


class ApiKey(Base):
    """Pre-shared key used by the automation layer"""
    __tablename__ = 'api_keys'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    key = Column(String(255), nullable=False, unique=True)
    role = Column(String(30), nullable=False)
    is_active = Column(Boolean, default=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    webhook_logs = relationship("WebhookLog", back_populates="api_key")


class WebhookLog(Base):
    """Audit trail of every webhook call"""
    __tablename__ = 'webhook_logs'

    id = Column(Integer, primary_key=True)
    api_key_id = Column(Integer, ForeignKey('api_keys.id', ondelete='SET NULL'), nullable=True)
    event_type = Column(String(50), nullable=False)
    endpoint = Column(String(255), nullable=False)
    method = Column(String(10), nullable=False, default="POST")
    status_code = Column(Integer, nullable=False)
    action = Column(String(50), nullable=True)
    request_body = Column(Text, nullable=True)  # JSON string
    response_body = Column(Text, nullable=True)  # JSON string
    error_message = Column(Text, nullable=True)
    ip_address = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    api_key = relationship("ApiKey", back_populates="webhook_logs")

    __table_args__ = (
        Index('ix_webhook_logs_created_at', 'created_at'),
    )


# ==================== PROPERTY ====================

class Project(Base):
    """Compound / building project"""
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    units = relationship("OperationalUnit", back_populates="project", cascade="all, delete-orphan")


class OperationalUnit(Base):
    """Operational unit inside a project"""
    __tablename__ = 'operational_units'

    id = Column(Integer, primary_key=True)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="units")
    staff = relationship("Staff", back_populates="unit")

    __table_args__ = (
        UniqueConstraint('project_id', 'code', name='uq_unit_code_per_project'),
    )


# ==================== STAFF ====================

class Staff(Base):
    """Staff member paid through payroll"""
    __tablename__ = 'staff'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    salary = Column(Numeric(15, 2), default=Decimal("0.00"))
    is_active = Column(Boolean, default=True)
    unit_id = Column(Integer, ForeignKey('operational_units.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("OperationalUnit", back_populates="staff")
    project_assignments = relationship("StaffProjectAssignment", back_populates="staff", cascade="all, delete-orphan")
    advances = relationship("StaffAdvance", back_populates="staff", cascade="all, delete-orphan")
    pm_advances = relationship("PMAdvance", back_populates="staff")


class StaffProjectAssignment(Base):
    """Staff assigned to a project outside their home unit"""
    __tablename__ = 'staff_project_assignments'

    id = Column(Integer, primary_key=True)
    staff_id = Column(Integer, ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)

    # Relationships
    staff = relationship("Staff", back_populates="project_assignments")
    project = relationship("Project")

    __table_args__ = (
        UniqueConstraint('staff_id', 'project_id', name='uq_staff_project'),
    )


class StaffAdvance(Base):
    """Salary advance, deducted by the next paid payroll"""
    __tablename__ = 'staff_advances'

    id = Column(Integer, primary_key=True)
    staff_id = Column(Integer, ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    status = Column(String(20), nullable=False, default=AdvanceStatus.PENDING.value)
    note = Column(Text, nullable=True)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    deducted_from_payroll_id = Column(Integer, ForeignKey('payrolls.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    staff = relationship("Staff", back_populates="advances")
    deducted_from_payroll = relationship("Payroll", back_populates="deducted_advances")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_staff_advance_amount_positive'),
        Index('ix_staff_advances_staff_status', 'staff_id', 'status'),
    )


class PMAdvance(Base):
    """Cash float issued to a project manager"""
    __tablename__ = 'pm_advances'

    id = Column(Integer, primary_key=True)
    staff_id = Column(Integer, ForeignKey('staff.id', ondelete='CASCADE'), nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='SET NULL'), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    remaining_amount = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    staff = relationship("Staff", back_populates="pm_advances")
    project = relationship("Project")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_pm_advance_amount_positive'),
        CheckConstraint('remaining_amount >= 0', name='ck_pm_advance_remaining_non_negative'),
        CheckConstraint('remaining_amount <= amount', name='ck_pm_advance_remaining_le_amount'),
    )


# ==================== NOTES, INVOICES & EXPENSES ====================

class AccountingNote(Base):
    """Unconfirmed expense awaiting conversion to an invoice"""
    __tablename__ = 'accounting_notes'

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey('operational_units.id', ondelete='SET NULL'), nullable=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='SET NULL'), nullable=True)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    status = Column(String(20), nullable=False, default=NoteStatus.PENDING.value)
    source_type = Column(String(20), nullable=False, default=FundingSource.OFFICE_FUND.value)
    pm_advance_id = Column(Integer, ForeignKey('pm_advances.id', ondelete='SET NULL'), nullable=True)
    converted_to_expense_id = Column(Integer, ForeignKey('operational_expenses.id', ondelete='SET NULL', use_alter=True, name='fk_accounting_notes_converted_expense'), nullable=True)
    converted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("OperationalUnit")
    project = relationship("Project")
    pm_advance = relationship("PMAdvance")
    converted_to_expense = relationship("OperationalExpense", foreign_keys=[converted_to_expense_id])

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_accounting_note_amount_positive'),
        Index('ix_accounting_notes_status', 'status'),
    )


class Invoice(Base):
    """Invoice raised against a unit"""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(50), nullable=False, unique=True)
    type = Column(String(30), nullable=False, default=InvoiceType.CLAIM.value)
    unit_id = Column(Integer, ForeignKey('operational_units.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    total_paid = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    remaining_balance = Column(Numeric(15, 2), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    issued_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("OperationalUnit")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")
    operational_expenses = relationship("OperationalExpense", back_populates="claim_invoice")

    __table_args__ = (
        CheckConstraint('remaining_balance >= 0', name='ck_invoice_remaining_non_negative'),
    )


class Payment(Base):
    """Payment received against an invoice (append-only)"""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    recorded_by_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
    )


class OperationalExpense(Base):
    """Confirmed expense, billed to the unit through a claim invoice"""
    __tablename__ = 'operational_expenses'

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey('operational_units.id', ondelete='CASCADE'), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    source_type = Column(String(20), nullable=False, default=FundingSource.OFFICE_FUND.value)
    claim_invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True)
    pm_advance_id = Column(Integer, ForeignKey('pm_advances.id', ondelete='SET NULL'), nullable=True)
    recorded_by_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    converted_from_note_id = Column(Integer, ForeignKey('accounting_notes.id', ondelete='SET NULL'), nullable=True, unique=True)
    recorded_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    unit = relationship("OperationalUnit")
    claim_invoice = relationship("Invoice", back_populates="operational_expenses")
    pm_advance = relationship("PMAdvance")


class UnitExpense(Base):
    """Categorized cost recorded directly against a unit"""
    __tablename__ = 'unit_expenses'

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey('operational_units.id', ondelete='CASCADE'), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    source_type = Column(String(30), nullable=False, default=ExpenseSourceType.OTHER.value)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    recorded_by_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    pm_advance_id = Column(Integer, ForeignKey('pm_advances.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    unit = relationship("OperationalUnit")
    pm_advance = relationship("PMAdvance")

    __table_args__ = (
        Index('ix_unit_expenses_unit_date', 'unit_id', 'date'),
    )


# ==================== PAYROLL ====================

class Payroll(Base):
    """Monthly payroll run"""
    __tablename__ = 'payrolls'

    id = Column(Integer, primary_key=True)
    month = Column(String(7), nullable=False, unique=True)  # YYYY-MM
    total_gross = Column(Numeric(15, 2), default=Decimal("0.00"))
    total_advances = Column(Numeric(15, 2), default=Decimal("0.00"))
    total_net = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=PayrollStatus.PENDING.value)
    paid_at = Column(DateTime, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship("PayrollItem", back_populates="payroll", cascade="all, delete-orphan", order_by="PayrollItem.id")
    deducted_advances = relationship("StaffAdvance", back_populates="deducted_from_payroll")
    created_by_user = relationship("User")


class PayrollItem(Base):
    """Per-staff line of a payroll, snapshotted at creation"""
    __tablename__ = 'payroll_items'

    id = Column(Integer, primary_key=True)
    payroll_id = Column(Integer, ForeignKey('payrolls.id', ondelete='CASCADE'), nullable=False)
    staff_id = Column(Integer, ForeignKey('staff.id', ondelete='SET NULL'), nullable=True)
    name = Column(String(255), nullable=False)
    salary = Column(Numeric(15, 2), default=Decimal("0.00"))
    advances = Column(Numeric(15, 2), default=Decimal("0.00"))
    net = Column(Numeric(15, 2), default=Decimal("0.00"))

    # Relationships
    payroll = relationship("Payroll", back_populates="items")
    staff = relationship("Staff")
