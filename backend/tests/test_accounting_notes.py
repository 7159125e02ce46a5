"""
Tests for converting accounting notes into claim invoices
"""
from decimal import Decimal

import pytest

from facility_ledger.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from facility_ledger.models import AccountingNote, Invoice, OperationalExpense
from facility_ledger.services.accounting_note_service import AccountingNoteService
from facility_ledger.services.expense_search_service import analyze


@pytest.fixture
def unit(factory):
    return factory.unit(factory.project())


class TestConvert:
    def test_office_fund_conversion(self, db, factory, unit, accountant):
        note = factory.note(unit, "300")

        result = AccountingNoteService(db).convert(note.id, accountant)
        db.commit()

        assert result["note"].status == "CONVERTED"
        assert result["note"].converted_at is not None
        assert result["note"].converted_to_expense_id == result["expense"].id
        assert result["invoice"].invoice_number == "CLM-00001"
        assert result["invoice"].amount == Decimal("300")
        assert result["invoice"].remaining_balance == Decimal("300")
        assert result["expense"].converted_from_note_id == note.id
        assert result["expense"].claim_invoice_id == result["invoice"].id
        assert result["expense"].recorded_by_user_id == accountant.id
        assert result["pmAdvance"] is None

    def test_already_converted(self, db, factory, unit, accountant):
        note = factory.note(unit, "300")
        service = AccountingNoteService(db)
        service.convert(note.id, accountant)
        db.commit()

        with pytest.raises(ConflictError) as exc_info:
            service.convert(note.id, accountant)
        assert exc_info.value.status_code == 409

    def test_missing_note(self, db, accountant):
        with pytest.raises(NotFoundError):
            AccountingNoteService(db).convert(404, accountant)

    def test_note_without_unit(self, db, factory, accountant):
        note = factory.note(None, "300")

        with pytest.raises(BusinessRuleError, match="missing unit"):
            AccountingNoteService(db).convert(note.id, accountant)

    def test_pm_source_needs_an_advance(self, db, factory, unit, accountant):
        note = factory.note(unit, "300")

        with pytest.raises(BusinessRuleError, match="PM advance is required"):
            AccountingNoteService(db).convert(note.id, accountant, source_type="PM_ADVANCE")

    def test_pm_advance_is_drawn_then_exhausted(self, db, factory, unit, accountant):
        manager = factory.staff("Hany Fathy")
        advance = factory.pm_advance(manager, "500")
        first = factory.note(unit, "300", source_type="PM_ADVANCE", pm_advance=advance)
        second = factory.note(unit, "300")
        service = AccountingNoteService(db)

        result = service.convert(first.id, accountant)
        db.commit()
        assert result["pmAdvance"].remaining_amount == Decimal("200")
        assert result["expense"].pm_advance_id == advance.id

        with pytest.raises(BusinessRuleError) as exc_info:
            service.convert(second.id, accountant, source_type="PM_ADVANCE", pm_advance_id=advance.id)
        db.rollback()

        assert exc_info.value.issues["remaining"] == Decimal("200.00")
        assert db.get(AccountingNote, second.id).status == "PENDING"
        assert db.query(Invoice).count() == 1
        assert db.query(OperationalExpense).count() == 1


class TestSearch:
    def test_search_by_arabic_description(self, db, factory, unit):
        factory.note(unit, "120", description="زينة رمضان")
        factory.note(unit, "80", description="لمبات المدخل")

        result = AccountingNoteService(db).search(analysis=analyze("زينه"))

        assert result["totals"]["count"] == 1
        assert result["totals"]["amount"] == Decimal("120.00")
        assert result["notes"][0]["description"] == "زينة رمضان"

    def test_totals_by_status_and_source(self, db, factory, unit):
        factory.note(unit, "100")
        factory.note(unit, "50", status="CONVERTED")
        factory.note(unit, "25", source_type="PM_ADVANCE")

        result = AccountingNoteService(db).search(limit=2)

        assert len(result["notes"]) == 2
        assert result["totals"]["count"] == 3
        assert result["totals"]["amount"] == Decimal("175.00")
        assert result["totals"]["byStatus"]["PENDING"]["count"] == 2
        assert result["totals"]["bySourceType"]["PM_ADVANCE"]["amount"] == Decimal("25.00")
