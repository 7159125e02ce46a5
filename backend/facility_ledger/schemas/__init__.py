"""
Pydantic Schemas for Webhook Validation
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Any, ClassVar, Dict, List, Literal, Optional
from datetime import date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class AccountantAction(str, Enum):
    CREATE_PM_ADVANCE = "CREATE_PM_ADVANCE"
    CREATE_STAFF_ADVANCE = "CREATE_STAFF_ADVANCE"
    UPDATE_STAFF_ADVANCE = "UPDATE_STAFF_ADVANCE"
    DELETE_STAFF_ADVANCE = "DELETE_STAFF_ADVANCE"
    RECORD_ACCOUNTING_NOTE = "RECORD_ACCOUNTING_NOTE"
    PAY_INVOICE = "PAY_INVOICE"
    CREATE_PAYROLL = "CREATE_PAYROLL"
    PAY_PAYROLL = "PAY_PAYROLL"
    LIST_UNIT_EXPENSES = "LIST_UNIT_EXPENSES"
    SEARCH_STAFF = "SEARCH_STAFF"
    LIST_STAFF_ADVANCES = "LIST_STAFF_ADVANCES"
    SEARCH_ACCOUNTING_NOTES = "SEARCH_ACCOUNTING_NOTES"


class AdvanceStatusEnum(str, Enum):
    PENDING = "PENDING"
    DEDUCTED = "DEDUCTED"


class NoteStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONVERTED = "CONVERTED"
    REJECTED = "REJECTED"


class FundingSourceEnum(str, Enum):
    OFFICE_FUND = "OFFICE_FUND"
    PM_ADVANCE = "PM_ADVANCE"


class ExpenseSourceTypeEnum(str, Enum):
    TECHNICIAN_WORK = "TECHNICIAN_WORK"
    STAFF_WORK = "STAFF_WORK"
    ELECTRICITY = "ELECTRICITY"
    OTHER = "OTHER"


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# ==================== ENVELOPE ====================

class HumanReadable(BaseModel):
    en: str
    ar: str


class Suggestion(BaseModel):
    title: str
    prompt: str
    data: Optional[Dict[str, Any]] = None


class WebhookEnvelope(BaseModel):
    """Body accepted by POST /webhooks/accountants"""
    model_config = ConfigDict(populate_by_name=True)

    action: str
    sender_phone: str = Field(..., alias="senderPhone", min_length=1)
    payload: Dict[str, Any]


class ActionResult(BaseModel):
    """Outcome of a handler; serialized with camelCase keys"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status_code: int = Field(200, exclude=True)
    data: Optional[Any] = None
    message: Optional[str] = None
    human_readable: Optional[HumanReadable] = Field(None, alias="humanReadable")
    suggestions: Optional[List[Suggestion]] = None
    meta: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    issues: Optional[Dict[str, Any]] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== ACTION PAYLOADS ====================

class ActionPayload(BaseModel):
    """Base for every action payload; camelCase on the wire"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "The request payload is invalid.",
        "ar": "بيانات الطلب غير صالحة.",
    }


class StaffReference(ActionPayload):
    staff_id: Optional[int] = Field(None, alias="staffId")
    staff_query: Optional[str] = Field(None, alias="staffQuery", max_length=255)
    project_id: Optional[int] = Field(None, alias="projectId")

    @property
    def has_staff_reference(self) -> bool:
        return self.staff_id is not None or bool(self.staff_query)


class CreatePMAdvancePayload(StaffReference):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Please send staff id with a positive amount to create the PM advance.",
        "ar": "من فضلك أرسل رقم الموظف مع قيمة موجبة لتسجيل العهدة.",
    }

    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def require_staff(self):
        if not self.has_staff_reference:
            raise ValueError("staffId or staffQuery is required")
        return self


class CreateStaffAdvancePayload(StaffReference):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Staff id and a positive amount are required to create a staff advance.",
        "ar": "رقم الموظف وقيمة موجبة مطلوبان لتسجيل سلفة موظف.",
    }

    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    note: Optional[str] = None

    @model_validator(mode="after")
    def require_staff(self):
        if not self.has_staff_reference:
            raise ValueError("staffId or staffQuery is required")
        return self


class UpdateStaffAdvancePayload(StaffReference):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the advance id (or the staff member) with the new amount or note.",
        "ar": "أرسل رقم السلفة (أو الموظف) مع القيمة أو الملاحظة الجديدة.",
    }

    advance_id: Optional[int] = Field(None, alias="advanceId")
    amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    note: Optional[str] = None

    @model_validator(mode="after")
    def require_target(self):
        if self.advance_id is None and not self.has_staff_reference:
            raise ValueError("advanceId or a staff reference is required")
        return self


class DeleteStaffAdvancePayload(StaffReference):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the advance id (or the staff member) to delete the advance.",
        "ar": "أرسل رقم السلفة (أو الموظف) لحذف السلفة.",
    }

    advance_id: Optional[int] = Field(None, alias="advanceId")

    @model_validator(mode="after")
    def require_target(self):
        if self.advance_id is None and not self.has_staff_reference:
            raise ValueError("advanceId or a staff reference is required")
        return self


class RecordAccountingNotePayload(ActionPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the accounting note id to record it.",
        "ar": "أرسل رقم القيد المحاسبي لتسجيله.",
    }

    note_id: int = Field(..., alias="noteId")
    source_type: Optional[FundingSourceEnum] = Field(None, alias="sourceType")
    pm_advance_id: Optional[int] = Field(None, alias="pmAdvanceId")


class PayInvoicePayload(ActionPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the invoice id or number with the paid amount.",
        "ar": "أرسل رقم الفاتورة مع المبلغ المدفوع.",
    }

    invoice_id: Optional[int] = Field(None, alias="invoiceId")
    invoice_number: Optional[str] = Field(None, alias="invoiceNumber", max_length=50)
    amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    mode: Literal["pay", "mark-paid"] = Field("pay", alias="action")

    @model_validator(mode="after")
    def require_invoice(self):
        if self.invoice_id is None and not self.invoice_number:
            raise ValueError("invoiceId or invoiceNumber is required")
        return self


class CreatePayrollPayload(ActionPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the payroll month in YYYY-MM format.",
        "ar": "أرسل شهر المرتبات بصيغة YYYY-MM.",
    }

    month: str = Field(..., pattern=MONTH_PATTERN)


class PayPayrollPayload(ActionPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send the payroll id or its month (YYYY-MM) to pay it.",
        "ar": "أرسل رقم كشف الرواتب أو شهره (YYYY-MM) لدفعه.",
    }

    payroll_id: Optional[int] = Field(None, alias="payrollId")
    month: Optional[str] = Field(None, pattern=MONTH_PATTERN)

    @model_validator(mode="after")
    def require_payroll(self):
        if self.payroll_id is None and not self.month:
            raise ValueError("payrollId or month is required")
        return self


class ListPayload(ActionPayload):
    limit: Optional[int] = Field(None, ge=1)
    from_date: Optional[date] = Field(None, alias="fromDate")
    to_date: Optional[date] = Field(None, alias="toDate")
    filter_dsl: Optional[str] = Field(None, alias="filterDsl", max_length=500)

    @model_validator(mode="after")
    def check_date_range(self):
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("fromDate must be on or before toDate")
        return self


class SearchStaffPayload(ActionPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "Send a name or a staff id to search for.",
        "ar": "أرسل اسماً أو رقم موظف للبحث عنه.",
    }

    query: Optional[str] = Field(None, max_length=255)
    staff_id: Optional[int] = Field(None, alias="staffId")
    project_id: Optional[int] = Field(None, alias="projectId")
    only_with_pending_advances: bool = Field(False, alias="onlyWithPendingAdvances")
    limit: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def require_query(self):
        if self.staff_id is None and not self.query:
            raise ValueError("query or staffId is required")
        return self


class ListStaffAdvancesPayload(ListPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "The filters for listing staff advances are invalid.",
        "ar": "فلاتر عرض سلف الموظفين غير صالحة.",
    }

    staff_id: Optional[int] = Field(None, alias="staffId")
    staff_query: Optional[str] = Field(None, alias="staffQuery", max_length=255)
    project_id: Optional[int] = Field(None, alias="projectId")
    status: Optional[AdvanceStatusEnum] = None


class SearchAccountingNotesPayload(ListPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "The filters for searching accounting notes are invalid.",
        "ar": "فلاتر البحث في القيود المحاسبية غير صالحة.",
    }

    search: Optional[str] = Field(None, max_length=255)
    status: Optional[NoteStatusEnum] = None
    source_type: Optional[FundingSourceEnum] = Field(None, alias="sourceType")
    unit_id: Optional[int] = Field(None, alias="unitId")
    unit_code: Optional[str] = Field(None, alias="unitCode", max_length=50)
    project_id: Optional[int] = Field(None, alias="projectId")
    pm_advance_id: Optional[int] = Field(None, alias="pmAdvanceId")


class ListUnitExpensesPayload(ListPayload):
    invalid_message: ClassVar[Dict[str, str]] = {
        "en": "The filters for listing unit expenses are invalid.",
        "ar": "فلاتر عرض مصروفات الوحدات غير صالحة.",
    }

    project_id: Optional[int] = Field(None, alias="projectId")
    unit_id: Optional[int] = Field(None, alias="unitId")
    unit_code: Optional[str] = Field(None, alias="unitCode", max_length=50)
    source_types: Optional[List[ExpenseSourceTypeEnum]] = Field(None, alias="sourceTypes")
    search: Optional[str] = Field(None, max_length=255)


ACTION_PAYLOADS: Dict[AccountantAction, type] = {
    AccountantAction.CREATE_PM_ADVANCE: CreatePMAdvancePayload,
    AccountantAction.CREATE_STAFF_ADVANCE: CreateStaffAdvancePayload,
    AccountantAction.UPDATE_STAFF_ADVANCE: UpdateStaffAdvancePayload,
    AccountantAction.DELETE_STAFF_ADVANCE: DeleteStaffAdvancePayload,
    AccountantAction.RECORD_ACCOUNTING_NOTE: RecordAccountingNotePayload,
    AccountantAction.PAY_INVOICE: PayInvoicePayload,
    AccountantAction.CREATE_PAYROLL: CreatePayrollPayload,
    AccountantAction.PAY_PAYROLL: PayPayrollPayload,
    AccountantAction.LIST_UNIT_EXPENSES: ListUnitExpensesPayload,
    AccountantAction.SEARCH_STAFF: SearchStaffPayload,
    AccountantAction.LIST_STAFF_ADVANCES: ListStaffAdvancesPayload,
    AccountantAction.SEARCH_ACCOUNTING_NOTES: SearchAccountingNotesPayload,
}

if set(ACTION_PAYLOADS) != set(AccountantAction):
    missing = set(AccountantAction) - set(ACTION_PAYLOADS)
    raise RuntimeError(f"Payload models missing for actions: {sorted(a.value for a in missing)}")
