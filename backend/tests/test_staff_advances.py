"""
Tests for the staff advance lifecycle
"""
from datetime import datetime
from decimal import Decimal

import pytest

from facility_ledger.core.exceptions import AmbiguousMatchError, BusinessRuleError, NotFoundError
from facility_ledger.models import StaffAdvance
from facility_ledger.services.staff_advance_service import StaffAdvanceService


class TestMutations:
    def test_create_updates_pending_summary(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        factory.staff_advance(staff, "100")
        service = StaffAdvanceService(db)

        advance, summary = service.create(staff, Decimal("250"), "  rent help ")

        assert advance.status == "PENDING"
        assert advance.note == "rent help"
        assert summary == {"staffId": staff.id, "pendingCount": 2, "pendingAmount": Decimal("350.00")}

    def test_update_amount_and_note(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        advance = factory.staff_advance(staff, "100", note="old")
        service = StaffAdvanceService(db)

        advance, summary = service.update(advance, {"amount": Decimal("175"), "note": None})

        assert advance.amount == Decimal("175")
        assert advance.note is None
        assert summary["pendingAmount"] == Decimal("175.00")
        assert summary["pendingCount"] == 1

    def test_deducted_advance_cannot_be_edited_or_deleted(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        advance = factory.staff_advance(staff, "100", status="DEDUCTED")
        service = StaffAdvanceService(db)

        with pytest.raises(BusinessRuleError, match="Only pending advances can be edited"):
            service.update(advance, {"amount": Decimal("50")})
        with pytest.raises(BusinessRuleError, match="Cannot delete deducted advances"):
            service.delete(advance)

    def test_delete(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        advance = factory.staff_advance(staff, "100")
        factory.staff_advance(staff, "40")
        advance_id = advance.id

        data, summary = StaffAdvanceService(db).delete(advance)
        db.commit()

        assert data["id"] == advance_id
        assert summary == {"staffId": staff.id, "pendingCount": 1, "pendingAmount": Decimal("40.00")}
        assert db.get(StaffAdvance, advance_id) is None


class TestResolveAdvance:
    def test_single_pending_advance(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        factory.staff_advance(staff, "100", status="DEDUCTED")
        pending = factory.staff_advance(staff, "60")

        assert StaffAdvanceService(db).resolve_advance(None, staff).id == pending.id

    def test_several_pending_advances(self, db, factory):
        staff = factory.staff("Youssef Tarek")
        factory.staff_advance(staff, "100")
        factory.staff_advance(staff, "60")

        with pytest.raises(AmbiguousMatchError) as exc_info:
            StaffAdvanceService(db).resolve_advance(None, staff)

        assert len(exc_info.value.issues["advanceIds"]) == 2
        assert len(exc_info.value.suggestions[0]["data"]["options"]) == 2

    def test_no_pending_advance(self, db, factory):
        staff = factory.staff("Youssef Tarek")

        with pytest.raises(NotFoundError):
            StaffAdvanceService(db).resolve_advance(None, staff)

    def test_unknown_id(self, db):
        with pytest.raises(NotFoundError):
            StaffAdvanceService(db).resolve_advance(12345, None)


def test_list_totals_and_breakdown(db, factory):
    project = factory.project()
    unit = factory.unit(project)
    nour = factory.staff("Nour Salah", unit=unit)
    hala = factory.staff("Hala Magdy", unit=unit)
    factory.staff_advance(nour, "100", date=datetime(2024, 5, 1))
    factory.staff_advance(nour, "300", status="DEDUCTED", date=datetime(2024, 5, 2))
    factory.staff_advance(hala, "50", date=datetime(2024, 5, 3))
    factory.staff_advance(factory.staff("Outsider"), "999")

    result = StaffAdvanceService(db).list(project_id=project.id, limit=2)

    assert [row["amount"] for row in result["advances"]] == [Decimal("50.00"), Decimal("300.00")]
    assert result["totals"]["count"] == 3
    assert result["totals"]["amount"] == Decimal("450.00")
    assert result["totals"]["byStatus"]["DEDUCTED"] == {"count": 1, "amount": Decimal("300.00")}
    assert [entry["name"] for entry in result["byStaff"]] == ["Nour Salah", "Hala Magdy"]
