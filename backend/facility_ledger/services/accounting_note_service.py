"""
Accounting Note Service - convert pending notes into claim invoices
"""
from typing import Any, Dict, Optional
from datetime import datetime, date, timedelta
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from facility_ledger.models import (
    AccountingNote, NoteStatus, FundingSource, OperationalExpense, OperationalUnit, User
)
from facility_ledger.services.expense_search_service import SearchAnalysis, build_description_filter
from facility_ledger.services.formatting import to_decimal, iso
from facility_ledger.services.invoice_service import InvoiceService
from facility_ledger.services.pm_advance_service import PMAdvanceService

logger = logging.getLogger(__name__)


def serialize_note(note: AccountingNote) -> Dict[str, Any]:
    return {
        "id": note.id,
        "description": note.description,
        "amount": to_decimal(note.amount),
        "status": note.status,
        "sourceType": note.source_type,
        "unitId": note.unit_id,
        "unitCode": note.unit.code if note.unit else None,
        "projectId": note.project_id or (note.unit.project_id if note.unit else None),
        "pmAdvanceId": note.pm_advance_id,
        "convertedToExpenseId": note.converted_to_expense_id,
        "convertedAt": iso(note.converted_at),
        "createdAt": iso(note.created_at),
    }


def serialize_expense(expense: OperationalExpense) -> Dict[str, Any]:
    return {
        "id": expense.id,
        "unitId": expense.unit_id,
        "description": expense.description,
        "amount": to_decimal(expense.amount),
        "sourceType": expense.source_type,
        "claimInvoiceId": expense.claim_invoice_id,
        "pmAdvanceId": expense.pm_advance_id,
        "recordedByUserId": expense.recorded_by_user_id,
        "convertedFromNoteId": expense.converted_from_note_id,
        "recordedAt": iso(expense.recorded_at),
    }


class AccountingNoteService:
    def __init__(self, db: Session):
        self.db = db

    def lookup_query(self, for_update: bool = False):
        if for_update:
            return self.db.query(AccountingNote).with_for_update(of=AccountingNote)
        return self.db.query(AccountingNote).options(joinedload(AccountingNote.unit))

    def get_by_id(self, note_id: int, for_update: bool = False) -> Optional[AccountingNote]:
        return self.lookup_query(for_update).filter(AccountingNote.id == note_id).first()

    def convert(
        self,
        note_id: int,
        accountant: User,
        source_type: Optional[str] = None,
        pm_advance_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        PENDING -> CONVERTED.

        Creates the claim invoice and the operational expense and, for a PM
        advance source, draws the note amount from the advance. Every write
        happens in the caller's transaction.
        """
        note = self.get_by_id(note_id, for_update=True)
        if not note:
            raise NotFoundError(
                "Accounting note not found",
                en="I could not find an accounting note with that id.",
                ar="لم أعثر على قيد محاسبي بهذا المعرف.",
                issues={"noteId": note_id}
            )

        if note.status != NoteStatus.PENDING.value:
            raise ConflictError(
                "This note is already processed",
                en="The accounting note was already recorded earlier.",
                ar="تم تسجيل هذا القيد مسبقاً.",
                issues={"noteId": note.id, "status": note.status}
            )

        if note.unit is None:
            raise BusinessRuleError(
                "Accounting note is missing unit information",
                en="This note has no unit linked to it.",
                ar="لا يوجد وحدة مرتبطة بهذا القيد.",
                issues={"noteId": note.id}
            )

        resolved_source = source_type or note.source_type or FundingSource.OFFICE_FUND.value
        resolved_advance_id = pm_advance_id if pm_advance_id is not None else note.pm_advance_id
        amount = to_decimal(note.amount)
        pm_service = PMAdvanceService(self.db)
        pm_advance = None

        if resolved_source == FundingSource.PM_ADVANCE.value:
            if resolved_advance_id is None:
                raise BusinessRuleError(
                    "PM advance is required for PM source",
                    en="Select which PM advance should fund this expense.",
                    ar="حدد العهدة التي سيموّل منها هذا المصروف.",
                    issues={"noteId": note.id}
                )
            pm_advance = pm_service.get_by_id(resolved_advance_id, for_update=True)
            if not pm_advance:
                raise NotFoundError(
                    "PM advance not found",
                    en="I could not find that PM advance.",
                    ar="لم أعثر على هذه العهدة.",
                    issues={"pmAdvanceId": resolved_advance_id}
                )
        else:
            resolved_advance_id = None

        now = datetime.utcnow()
        claimed = self.db.query(AccountingNote).filter(
            AccountingNote.id == note.id,
            AccountingNote.status == NoteStatus.PENDING.value
        ).update({
            AccountingNote.status: NoteStatus.CONVERTED.value,
            AccountingNote.converted_at: now,
            AccountingNote.source_type: resolved_source,
            AccountingNote.pm_advance_id: resolved_advance_id,
            AccountingNote.updated_at: now
        }, synchronize_session=False)

        if claimed == 0:
            raise ConflictError(
                "This note is already processed",
                en="The accounting note was already recorded earlier.",
                ar="تم تسجيل هذا القيد مسبقاً.",
                issues={"noteId": note.id}
            )

        if pm_advance is not None:
            pm_service.draw(pm_advance, amount)

        invoice = InvoiceService(self.db).create_claim(note.unit, amount)

        expense = OperationalExpense(
            unit_id=note.unit_id,
            description=note.description,
            amount=amount,
            source_type=resolved_source,
            claim_invoice_id=invoice.id,
            pm_advance_id=resolved_advance_id,
            recorded_by_user_id=accountant.id,
            converted_from_note_id=note.id,
            recorded_at=now
        )
        self.db.add(expense)
        self.db.flush()

        self.db.refresh(note)
        note.converted_to_expense_id = expense.id
        self.db.flush()
        self.db.refresh(invoice)

        logger.info(
            f"Accounting note {note.id} converted to invoice {invoice.invoice_number} "
            f"(source={resolved_source}, pm_advance={resolved_advance_id})"
        )

        return {
            "note": note,
            "invoice": invoice,
            "expense": expense,
            "pmAdvance": pm_advance,
        }

    def search(
        self,
        analysis: Optional[SearchAnalysis] = None,
        status: Optional[str] = None,
        source_type: Optional[str] = None,
        unit_id: Optional[int] = None,
        unit_code: Optional[str] = None,
        project_id: Optional[int] = None,
        pm_advance_id: Optional[int] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        extra_filter=None,
        limit: int = 10
    ) -> Dict[str, Any]:
        query = self.db.query(AccountingNote)

        if status:
            query = query.filter(AccountingNote.status == status)
        if source_type:
            query = query.filter(AccountingNote.source_type == source_type)
        if unit_id is not None:
            query = query.filter(AccountingNote.unit_id == unit_id)
        if unit_code:
            query = query.filter(AccountingNote.unit.has(
                func.lower(OperationalUnit.code) == unit_code.strip().lower()
            ))
        if project_id is not None:
            query = query.filter(AccountingNote.unit.has(OperationalUnit.project_id == project_id))
        if pm_advance_id is not None:
            query = query.filter(AccountingNote.pm_advance_id == pm_advance_id)
        if from_date:
            query = query.filter(AccountingNote.created_at >= datetime.combine(from_date, datetime.min.time()))
        if to_date:
            query = query.filter(AccountingNote.created_at < datetime.combine(to_date + timedelta(days=1), datetime.min.time()))
        if analysis is not None:
            description_filter = build_description_filter(AccountingNote.description, analysis, include_matched=True)
            if description_filter is not None:
                query = query.filter(description_filter)
        if extra_filter is not None:
            query = query.filter(extra_filter)

        count, total = query.with_entities(
            func.count(AccountingNote.id),
            func.coalesce(func.sum(AccountingNote.amount), 0)
        ).one()

        by_status = {
            row_status: {"count": int(row_count), "amount": to_decimal(amount)}
            for row_status, row_count, amount in query.with_entities(
                AccountingNote.status, func.count(AccountingNote.id), func.sum(AccountingNote.amount)
            ).group_by(AccountingNote.status).all()
        }
        by_source = {
            row_source: {"count": int(row_count), "amount": to_decimal(amount)}
            for row_source, row_count, amount in query.with_entities(
                AccountingNote.source_type, func.count(AccountingNote.id), func.sum(AccountingNote.amount)
            ).group_by(AccountingNote.source_type).all()
        }

        notes = query.options(joinedload(AccountingNote.unit)).order_by(
            AccountingNote.created_at.desc(), AccountingNote.id.desc()
        ).limit(limit).all()

        return {
            "notes": [serialize_note(note) for note in notes],
            "totals": {
                "count": int(count or 0),
                "amount": to_decimal(total),
                "byStatus": by_status,
                "bySourceType": by_source,
            },
        }
