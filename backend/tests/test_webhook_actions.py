"""
End-to-end tests for the mutating accountant actions
"""
import pytest

from facility_ledger.models import AccountingNote, Invoice, PMAdvance, StaffAdvance


@pytest.fixture
def unit(factory):
    return factory.unit(factory.project(), code="B-204")


class TestPMAdvances:
    def test_create(self, call_action, db, factory):
        project = factory.project("Palm Hills")
        manager = factory.staff("Hany Fathy")

        response = call_action("CREATE_PM_ADVANCE", {
            "staffId": manager.id, "projectId": project.id, "amount": 500, "notes": "Cleaning supplies"
        })

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["amount"] == 500
        assert body["data"]["remainingAmount"] == 500
        assert body["data"]["project"]["name"] == "Palm Hills"
        assert body["humanReadable"]["en"] == "Advance of 500 recorded successfully."
        assert body["humanReadable"]["ar"] == "تم تسجيل عهدة بقيمة 500 بنجاح."
        assert db.query(PMAdvance).count() == 1

    def test_unknown_project(self, call_action, factory):
        manager = factory.staff("Hany Fathy")

        response = call_action("CREATE_PM_ADVANCE", {"staffId": manager.id, "projectId": 77, "amount": 500})

        assert response.status_code == 404
        assert response.json()["error"] == "Project not found"


class TestRecordAccountingNote:
    def test_pm_advance_is_drawn_then_rejected(self, call_action, db, factory, unit):
        manager = factory.staff("Hany Fathy")
        advance = factory.pm_advance(manager, "500")
        first = factory.note(unit, "300")
        second = factory.note(unit, "300")

        response = call_action("RECORD_ACCOUNTING_NOTE", {
            "noteId": first.id, "sourceType": "PM_ADVANCE", "pmAdvanceId": advance.id
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["note"]["status"] == "CONVERTED"
        assert data["invoice"]["invoiceNumber"] == "CLM-00001"
        assert data["invoice"]["remainingBalance"] == 300
        assert data["expense"]["convertedFromNoteId"] == first.id
        assert data["pmAdvance"]["remainingAmount"] == 200

        response = call_action("RECORD_ACCOUNTING_NOTE", {
            "noteId": second.id, "sourceType": "PM_ADVANCE", "pmAdvanceId": advance.id
        })

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Insufficient PM advance balance"
        assert body["issues"]["remaining"] == 200
        assert body["issues"]["needed"] == 300
        assert db.get(AccountingNote, second.id).status == "PENDING"
        assert db.get(PMAdvance, advance.id).remaining_amount == 200
        assert db.query(Invoice).count() == 1

    def test_already_recorded(self, call_action, factory, unit):
        note = factory.note(unit, "120")
        call_action("RECORD_ACCOUNTING_NOTE", {"noteId": note.id})

        response = call_action("RECORD_ACCOUNTING_NOTE", {"noteId": note.id})

        assert response.status_code == 409
        assert response.json()["humanReadable"]["en"] == "The accounting note was already recorded earlier."


class TestPayInvoice:
    def test_partial_full_then_overpay(self, call_action, factory, unit):
        factory.invoice(unit, "1000", number="INV-00010")

        first = call_action("PAY_INVOICE", {"invoiceNumber": "INV-00010", "amount": 400})
        assert first.status_code == 200
        assert first.json()["data"]["remainingBalance"] == 600
        assert first.json()["data"]["isPaid"] is False

        second = call_action("PAY_INVOICE", {"invoiceNumber": "INV-00010", "amount": 600})
        assert second.status_code == 200
        assert second.json()["data"]["isPaid"] is True
        assert len(second.json()["data"]["payments"]) == 2

        third = call_action("PAY_INVOICE", {"invoiceNumber": "INV-00010", "amount": 1})
        assert third.status_code == 400
        assert third.json()["error"] == "Payment exceeds remaining balance"

    def test_mark_paid(self, call_action, factory, unit):
        invoice = factory.invoice(unit, "250")

        response = call_action("PAY_INVOICE", {"invoiceId": invoice.id, "action": "mark-paid"})

        assert response.status_code == 200
        assert response.json()["data"]["totalPaid"] == 250
        assert response.json()["humanReadable"]["en"] == "Invoice payment captured successfully."


class TestStaffAdvances:
    def test_deducted_by_payroll_then_undeletable(self, call_action, db, factory):
        staff = factory.staff("Youssef Tarek", salary="4000")

        created = call_action("CREATE_STAFF_ADVANCE", {"staffQuery": "youssef", "amount": 250})
        assert created.status_code == 201
        assert created.json()["humanReadable"]["en"] == "Staff advance of 250 recorded successfully."
        assert created.json()["data"]["staffSummary"]["pendingCount"] == 1
        advance_id = created.json()["data"]["advance"]["id"]

        updated = call_action("UPDATE_STAFF_ADVANCE", {"staffQuery": "Youssef Tarek", "amount": 300})
        assert updated.status_code == 200
        assert updated.json()["data"]["advance"]["amount"] == 300
        assert updated.json()["data"]["staffSummary"]["pendingAmount"] == 300

        payroll = call_action("CREATE_PAYROLL", {"month": "2024-06"})
        assert payroll.status_code == 201
        assert payroll.json()["data"]["totalNet"] == 3700

        paid = call_action("PAY_PAYROLL", {"month": "2024-06"})
        assert paid.status_code == 200
        assert paid.json()["data"]["status"] == "PAID"
        assert [a["id"] for a in paid.json()["data"]["deductedAdvances"]] == [advance_id]

        deleted = call_action("DELETE_STAFF_ADVANCE", {"advanceId": advance_id})
        assert deleted.status_code == 400
        assert deleted.json()["error"] == "Cannot delete deducted advances"
        assert db.get(StaffAdvance, advance_id).status == "DEDUCTED"
        assert db.get(StaffAdvance, advance_id).staff_id == staff.id

    def test_ambiguous_staff_name(self, call_action, db, factory):
        factory.staff("Ahmed Ali")
        factory.staff("Ahmed Samir")

        response = call_action("CREATE_STAFF_ADVANCE", {"staffQuery": "Ahmed", "amount": 100})

        assert response.status_code == 409
        options = response.json()["suggestions"][0]["data"]["options"]
        assert [option["name"] for option in options] == ["Ahmed Ali", "Ahmed Samir"]
        assert db.query(StaffAdvance).count() == 0

    def test_exact_name_is_not_blocked_by_longer_name(self, call_action, db, factory):
        ali = factory.staff("Ahmed Ali")
        factory.staff("Ahmed Ali Hassan")

        response = call_action("CREATE_STAFF_ADVANCE", {"staffQuery": "Ahmed Ali", "amount": 100})

        assert response.status_code == 201
        assert db.query(StaffAdvance).one().staff_id == ali.id

    def test_update_requires_a_change(self, call_action, factory):
        advance = factory.staff_advance(factory.staff("Youssef Tarek"), "100")

        for payload in ({"advanceId": advance.id}, {"advanceId": advance.id, "amount": None}):
            response = call_action("UPDATE_STAFF_ADVANCE", payload)
            assert response.status_code == 400
            assert response.json()["humanReadable"]["en"] == "Send a new amount or note to update the advance."

    def test_update_rejects_non_positive_amount(self, call_action, factory):
        advance = factory.staff_advance(factory.staff("Youssef Tarek"), "100")

        response = call_action("UPDATE_STAFF_ADVANCE", {"advanceId": advance.id, "amount": 0})

        assert response.status_code == 400
        assert response.json()["humanReadable"]["ar"] == "القيمة يجب أن تكون رقماً موجباً."

    def test_update_clears_note(self, call_action, factory):
        advance = factory.staff_advance(factory.staff("Youssef Tarek"), "100", note="first week")

        response = call_action("UPDATE_STAFF_ADVANCE", {"advanceId": advance.id, "note": None})

        assert response.status_code == 200
        assert response.json()["data"]["advance"].get("note") is None
        assert response.json()["data"]["advance"]["amount"] == 100

    def test_delete_by_staff_needs_single_pending(self, call_action, db, factory):
        staff = factory.staff("Youssef Tarek")
        factory.staff_advance(staff, "100")
        factory.staff_advance(staff, "60")

        response = call_action("DELETE_STAFF_ADVANCE", {"staffId": staff.id})

        assert response.status_code == 409
        assert db.query(StaffAdvance).count() == 2

    def test_delete(self, call_action, db, factory):
        advance = factory.staff_advance(factory.staff("Youssef Tarek"), "100")

        response = call_action("DELETE_STAFF_ADVANCE", {"advanceId": advance.id})

        assert response.status_code == 200
        assert response.json()["data"]["staffSummary"]["pendingCount"] == 0
        assert db.query(StaffAdvance).count() == 0


class TestPayroll:
    def test_negative_net_warning(self, call_action, factory):
        staff = factory.staff("Mido Sami", salary="1000")
        factory.staff_advance(staff, "1500")

        response = call_action("CREATE_PAYROLL", {"month": "2024-07"})

        assert response.status_code == 201
        warning = response.json()["meta"]["warnings"][0]
        assert warning["code"] == "NEGATIVE_NET"
        assert warning["items"][0]["net"] == -500

    def test_duplicate_month(self, call_action, factory):
        factory.staff("Mido Sami")
        call_action("CREATE_PAYROLL", {"month": "2024-07"})

        response = call_action("CREATE_PAYROLL", {"month": "2024-07"})

        assert response.status_code == 400
        assert response.json()["error"] == "Payroll already exists"

    def test_pay_unknown_payroll(self, call_action):
        response = call_action("PAY_PAYROLL", {"payrollId": 41})

        assert response.status_code == 404
