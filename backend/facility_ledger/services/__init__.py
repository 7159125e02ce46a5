# Services Package
from facility_ledger.services.staff_resolution_service import StaffResolutionService
from facility_ledger.services.staff_advance_service import StaffAdvanceService
from facility_ledger.services.pm_advance_service import PMAdvanceService
from facility_ledger.services.invoice_service import InvoiceService
from facility_ledger.services.accounting_note_service import AccountingNoteService
from facility_ledger.services.payroll_service import PayrollService
from facility_ledger.services.expense_service import ExpenseService
from facility_ledger.services.audit_service import AuditService, WebhookEvent
from facility_ledger.services.action_dispatcher import ActionDispatcher

__all__ = [
    'StaffResolutionService',
    'StaffAdvanceService',
    'PMAdvanceService',
    'InvoiceService',
    'AccountingNoteService',
    'PayrollService',
    'ExpenseService',
    'AuditService',
    'WebhookEvent',
    'ActionDispatcher',
]
