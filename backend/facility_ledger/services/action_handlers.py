"""
Accountant action handlers

One function per action. Each receives the database session, the resolved
accountant and the validated payload, and returns an ActionResult. Errors
are raised as LedgerError subclasses; the dispatcher owns the transaction.
"""
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from facility_ledger.core.config import settings
from facility_ledger.core.exceptions import BusinessRuleError, InvalidPayloadError
from facility_ledger.models import User
from facility_ledger.schemas import (
    AccountantAction, ActionResult,
    CreatePMAdvancePayload, CreateStaffAdvancePayload, UpdateStaffAdvancePayload,
    DeleteStaffAdvancePayload, RecordAccountingNotePayload, PayInvoicePayload,
    CreatePayrollPayload, PayPayrollPayload, SearchStaffPayload,
    ListStaffAdvancesPayload, SearchAccountingNotesPayload, ListUnitExpensesPayload
)
from facility_ledger.services.accounting_note_service import (
    AccountingNoteService, serialize_note, serialize_expense
)
from facility_ledger.services.expense_search_service import analyze
from facility_ledger.services.expense_service import ExpenseService
from facility_ledger.services.filter_dsl import (
    parse_filter_dsl, UNIT_EXPENSE_FIELDS, STAFF_ADVANCE_FIELDS, ACCOUNTING_NOTE_FIELDS
)
from facility_ledger.services.formatting import format_currency
from facility_ledger.services.invoice_service import InvoiceService, serialize_invoice
from facility_ledger.services.payroll_service import PayrollService, serialize_payroll
from facility_ledger.services.pm_advance_service import PMAdvanceService, serialize_pm_advance
from facility_ledger.services.staff_advance_service import StaffAdvanceService, serialize_staff_advance
from facility_ledger.services.staff_resolution_service import StaffResolutionService

logger = logging.getLogger(__name__)

ActionHandler = Callable[[Session, User, Any], ActionResult]


def _ok(data: Any, message: str, en: str, ar: str, status_code: int = 200,
        suggestions: Optional[List[Dict[str, Any]]] = None,
        meta: Optional[Dict[str, Any]] = None) -> ActionResult:
    return ActionResult(
        success=True,
        status_code=status_code,
        data=data,
        message=message,
        human_readable={"en": en, "ar": ar},
        suggestions=suggestions,
        meta=meta
    )


def _limit(value: Optional[int]) -> int:
    return min(value or settings.LIST_DEFAULT_LIMIT, settings.LIST_MAX_LIMIT)


def _parse_dsl(text: Optional[str], fields, entity: str):
    result = parse_filter_dsl(text, fields, entity)
    if not result.ok:
        raise InvalidPayloadError(
            "Invalid filter expression",
            en="I could not understand the filter. Use conditions like: amount > 100 AND date >= 2024-01-01.",
            ar="لم أفهم الفلتر. استخدم شروطاً مثل: amount > 100 AND date >= 2024-01-01.",
            issues={"filterDsl": result.errors}
        )
    return result.expression


def _widen_search(prompt: str) -> Dict[str, Any]:
    return {"title": "Widen the search", "prompt": prompt}


# ==================== PM ADVANCES ====================

def handle_create_pm_advance(db: Session, accountant: User, payload: CreatePMAdvancePayload) -> ActionResult:
    match = StaffResolutionService(db).resolve_one(
        staff_id=payload.staff_id,
        staff_query=payload.staff_query
    )
    advance = PMAdvanceService(db).create(match.staff, payload.amount, payload.project_id, payload.notes)
    amount = format_currency(advance.amount)

    return _ok(
        serialize_pm_advance(advance),
        "PM advance created",
        en=f"Advance of {amount} recorded successfully.",
        ar=f"تم تسجيل عهدة بقيمة {amount} بنجاح.",
        status_code=201,
        meta={"staffMatch": {"staffId": match.staff.id, "score": match.score}}
    )


# ==================== STAFF ADVANCES ====================

def handle_create_staff_advance(db: Session, accountant: User, payload: CreateStaffAdvancePayload) -> ActionResult:
    match = StaffResolutionService(db).resolve_one(
        staff_id=payload.staff_id,
        staff_query=payload.staff_query,
        project_id=payload.project_id
    )
    advance, summary = StaffAdvanceService(db).create(match.staff, payload.amount, payload.note)
    amount = format_currency(advance.amount)

    return _ok(
        {"advance": serialize_staff_advance(advance), "staffSummary": summary},
        "Staff advance created",
        en=f"Staff advance of {amount} recorded successfully.",
        ar=f"تم تسجيل سلفة بقيمة {amount} بنجاح.",
        status_code=201,
        meta={"staffMatch": {"staffId": match.staff.id, "score": match.score}}
    )


def _target_advance(db: Session, service: StaffAdvanceService, payload):
    if payload.advance_id is not None:
        return service.resolve_advance(payload.advance_id, None)
    match = StaffResolutionService(db).resolve_one(
        staff_id=payload.staff_id,
        staff_query=payload.staff_query,
        project_id=payload.project_id,
        only_with_pending_advances=True
    )
    return service.resolve_advance(None, match.staff)


def handle_update_staff_advance(db: Session, accountant: User, payload: UpdateStaffAdvancePayload) -> ActionResult:
    changes = {
        name: getattr(payload, name)
        for name in ("amount", "note")
        if name in payload.model_fields_set
    }
    if changes.get("amount", 0) is None:
        changes.pop("amount")

    if not changes:
        raise BusinessRuleError(
            "No changes provided",
            en="Send a new amount or note to update the advance.",
            ar="أرسل قيمة أو ملاحظة جديدة لتعديل السلفة."
        )

    if "amount" in changes and changes["amount"] <= 0:
        raise BusinessRuleError(
            "Amount must be a positive number",
            en="Use a positive number for the advance amount.",
            ar="القيمة يجب أن تكون رقماً موجباً.",
            issues={"amount": changes["amount"]}
        )

    service = StaffAdvanceService(db)
    advance = _target_advance(db, service, payload)
    advance, summary = service.update(advance, changes)

    return _ok(
        {"advance": serialize_staff_advance(advance), "staffSummary": summary},
        "Staff advance updated",
        en="Staff advance updated successfully.",
        ar="تم تعديل السلفة بنجاح."
    )


def handle_delete_staff_advance(db: Session, accountant: User, payload: DeleteStaffAdvancePayload) -> ActionResult:
    service = StaffAdvanceService(db)
    advance = _target_advance(db, service, payload)
    deleted, summary = service.delete(advance)

    return _ok(
        {"advanceId": deleted["id"], "advance": deleted, "staffSummary": summary},
        "Staff advance deleted",
        en="Staff advance deleted successfully.",
        ar="تم حذف السلفة بنجاح."
    )


# ==================== NOTES & INVOICES ====================

def handle_record_accounting_note(db: Session, accountant: User, payload: RecordAccountingNotePayload) -> ActionResult:
    result = AccountingNoteService(db).convert(
        payload.note_id,
        accountant,
        source_type=payload.source_type.value if payload.source_type else None,
        pm_advance_id=payload.pm_advance_id
    )

    return _ok(
        {
            "note": serialize_note(result["note"]),
            "invoice": serialize_invoice(result["invoice"]),
            "expense": serialize_expense(result["expense"]),
            "pmAdvance": serialize_pm_advance(result["pmAdvance"]) if result["pmAdvance"] else None,
        },
        "Accounting note recorded",
        en="Accounting note converted to an invoice successfully.",
        ar="تم تحويل القيد إلى فاتورة بنجاح."
    )


def handle_pay_invoice(db: Session, accountant: User, payload: PayInvoicePayload) -> ActionResult:
    service = InvoiceService(db)
    invoice = service.resolve(payload.invoice_id, payload.invoice_number)
    invoice = service.record_payment(
        invoice,
        amount=payload.amount,
        mode=payload.mode,
        recorded_by_user_id=accountant.id
    )

    return _ok(
        serialize_invoice(invoice),
        "Invoice payment recorded",
        en="Invoice payment captured successfully.",
        ar="تم تسجيل دفعة الفاتورة بنجاح."
    )


# ==================== PAYROLL ====================

def handle_create_payroll(db: Session, accountant: User, payload: CreatePayrollPayload) -> ActionResult:
    service = PayrollService(db)
    payroll = service.create(payload.month, accountant)

    meta = None
    negative = service.negative_items(payroll)
    if negative:
        meta = {"warnings": [{
            "code": "NEGATIVE_NET",
            "message": "Pending advances exceed the salary for some staff members.",
            "items": negative,
        }]}

    return _ok(
        serialize_payroll(payroll),
        "Payroll generated",
        en="Payroll created and awaiting payment.",
        ar="تم إنشاء كشف الرواتب وجاهز للدفع.",
        status_code=201,
        meta=meta
    )


def handle_pay_payroll(db: Session, accountant: User, payload: PayPayrollPayload) -> ActionResult:
    service = PayrollService(db)
    payroll = service.resolve(payload.payroll_id, payload.month)
    payroll = service.pay(payroll)

    return _ok(
        serialize_payroll(payroll, include_deducted=True),
        "Payroll marked as paid",
        en="Payroll paid and pending advances deducted.",
        ar="تم دفع كشف الرواتب وخصم السلف المعلقة."
    )


# ==================== READ ACTIONS ====================

def handle_search_staff(db: Session, accountant: User, payload: SearchStaffPayload) -> ActionResult:
    resolution = StaffResolutionService(db).resolve(
        staff_id=payload.staff_id,
        staff_query=payload.query,
        project_id=payload.project_id,
        only_with_pending_advances=payload.only_with_pending_advances,
        limit=payload.limit
    )
    count = len(resolution.matches)

    suggestions = None
    if resolution.ambiguous:
        suggestions = [resolution.suggestion()]
    elif count == 0:
        suggestions = [_widen_search("No staff member matched. Try another spelling or drop the project filter.")]

    if resolution.chosen:
        en = f"Best match: {resolution.chosen.staff.name}."
        ar = f"أفضل تطابق: {resolution.chosen.staff.name}."
    else:
        en = f"Found {count} matching staff member(s)."
        ar = f"تم العثور على {count} موظف مطابق."

    return _ok(resolution.to_dict(), "Staff search completed", en=en, ar=ar, suggestions=suggestions)


def handle_list_staff_advances(db: Session, accountant: User, payload: ListStaffAdvancesPayload) -> ActionResult:
    extra_filter = _parse_dsl(payload.filter_dsl, STAFF_ADVANCE_FIELDS, "StaffAdvance")
    suggestions = []
    staff_ids = None
    resolution = None

    if payload.staff_id is not None or payload.staff_query:
        resolution = StaffResolutionService(db).resolve(
            staff_id=payload.staff_id,
            staff_query=payload.staff_query,
            project_id=payload.project_id
        )
        if resolution.chosen:
            staff_ids = [resolution.chosen.staff.id]
        else:
            staff_ids = [match.staff.id for match in resolution.matches]
            if resolution.ambiguous:
                suggestions.append(resolution.suggestion())

    result = StaffAdvanceService(db).list(
        staff_ids=staff_ids,
        project_id=payload.project_id,
        status=payload.status.value if payload.status else None,
        from_date=payload.from_date,
        to_date=payload.to_date,
        extra_filter=extra_filter,
        limit=_limit(payload.limit)
    )
    if resolution is not None:
        result["staffResolution"] = resolution.to_dict()

    totals = result["totals"]
    if totals["count"] == 0:
        suggestions.append(_widen_search("No advances matched. Try removing the status or date filters."))

    amount = format_currency(totals["amount"])
    return _ok(
        result,
        "Staff advances listed",
        en=f"Found {totals['count']} staff advance(s) totalling {amount}.",
        ar=f"تم العثور على {totals['count']} سلفة بإجمالي {amount}.",
        suggestions=suggestions or None
    )


def handle_search_accounting_notes(db: Session, accountant: User, payload: SearchAccountingNotesPayload) -> ActionResult:
    extra_filter = _parse_dsl(payload.filter_dsl, ACCOUNTING_NOTE_FIELDS, "AccountingNote")
    analysis = analyze(payload.search) if payload.search else None

    result = AccountingNoteService(db).search(
        analysis=analysis,
        status=payload.status.value if payload.status else None,
        source_type=payload.source_type.value if payload.source_type else None,
        unit_id=payload.unit_id,
        unit_code=payload.unit_code,
        project_id=payload.project_id,
        pm_advance_id=payload.pm_advance_id,
        from_date=payload.from_date,
        to_date=payload.to_date,
        extra_filter=extra_filter,
        limit=_limit(payload.limit)
    )

    totals = result["totals"]
    suggestions = None
    if totals["count"] == 0:
        suggestions = [_widen_search("No notes matched. Try fewer words or remove the status filter.")]

    amount = format_currency(totals["amount"])
    return _ok(
        result,
        "Accounting notes searched",
        en=f"Found {totals['count']} accounting note(s) totalling {amount}.",
        ar=f"تم العثور على {totals['count']} قيد محاسبي بإجمالي {amount}.",
        suggestions=suggestions,
        meta={"search": analysis.to_dict()} if analysis else None
    )


def handle_list_unit_expenses(db: Session, accountant: User, payload: ListUnitExpensesPayload) -> ActionResult:
    extra_filter = _parse_dsl(payload.filter_dsl, UNIT_EXPENSE_FIELDS, "UnitExpense")
    analysis = analyze(payload.search) if payload.search else None

    result = ExpenseService(db).list_unit_expenses(
        project_id=payload.project_id,
        unit_id=payload.unit_id,
        unit_code=payload.unit_code,
        source_types=[source.value for source in payload.source_types] if payload.source_types else None,
        analysis=analysis,
        from_date=payload.from_date,
        to_date=payload.to_date,
        extra_filter=extra_filter,
        limit=_limit(payload.limit)
    )

    totals = result["totals"]
    suggestions = None
    if totals["count"] == 0:
        suggestions = [_widen_search("No expenses matched. Try a wider date range or fewer keywords.")]

    amount = format_currency(totals["amount"])
    return _ok(
        result,
        "Unit expenses listed",
        en=f"Found {totals['count']} expense(s) totalling {amount}.",
        ar=f"تم العثور على {totals['count']} مصروف بإجمالي {amount}.",
        suggestions=suggestions,
        meta={"search": analysis.to_dict()} if analysis else None
    )


HANDLERS: Dict[AccountantAction, ActionHandler] = {
    AccountantAction.CREATE_PM_ADVANCE: handle_create_pm_advance,
    AccountantAction.CREATE_STAFF_ADVANCE: handle_create_staff_advance,
    AccountantAction.UPDATE_STAFF_ADVANCE: handle_update_staff_advance,
    AccountantAction.DELETE_STAFF_ADVANCE: handle_delete_staff_advance,
    AccountantAction.RECORD_ACCOUNTING_NOTE: handle_record_accounting_note,
    AccountantAction.PAY_INVOICE: handle_pay_invoice,
    AccountantAction.CREATE_PAYROLL: handle_create_payroll,
    AccountantAction.PAY_PAYROLL: handle_pay_payroll,
    AccountantAction.LIST_UNIT_EXPENSES: handle_list_unit_expenses,
    AccountantAction.SEARCH_STAFF: handle_search_staff,
    AccountantAction.LIST_STAFF_ADVANCES: handle_list_staff_advances,
    AccountantAction.SEARCH_ACCOUNTING_NOTES: handle_search_accounting_notes,
}

if set(HANDLERS) != set(AccountantAction):
    missing = set(AccountantAction) - set(HANDLERS)
    raise RuntimeError(f"Handlers missing for actions: {sorted(a.value for a in missing)}")
