"""
Tests for claim invoices and payments
"""
from decimal import Decimal

import pytest

from facility_ledger.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from facility_ledger.models import Invoice, Payment
from facility_ledger.services.invoice_service import InvoiceService, serialize_invoice


@pytest.fixture
def unit(factory):
    return factory.unit(factory.project())


class TestRecordPayment:
    def test_partial_full_then_overpay(self, db, factory, unit, accountant):
        invoice = factory.invoice(unit, "1000")
        service = InvoiceService(db)

        invoice = service.record_payment(service.resolve(invoice.id), Decimal("400"), "pay", accountant.id)
        assert invoice.total_paid == Decimal("400")
        assert invoice.remaining_balance == Decimal("600")
        assert invoice.is_paid is False

        invoice = service.record_payment(invoice, Decimal("600"), "pay", accountant.id)
        assert invoice.total_paid == Decimal("1000")
        assert invoice.remaining_balance == Decimal("0")
        assert invoice.is_paid is True

        with pytest.raises(BusinessRuleError) as exc_info:
            service.record_payment(invoice, Decimal("1"), "pay", accountant.id)
        assert exc_info.value.error == "Payment exceeds remaining balance"
        db.commit()
        db.expire_all()
        unchanged = db.get(Invoice, invoice.id)
        assert unchanged.total_paid == Decimal("1000")
        assert unchanged.remaining_balance == Decimal("0")
        assert db.query(Payment).filter(Payment.invoice_id == invoice.id).count() == 2

        data = serialize_invoice(invoice)
        assert [payment["amount"] for payment in data["payments"]] == [Decimal("600.00"), Decimal("400.00")]

    def test_mark_paid_settles_remaining_balance(self, db, factory, unit):
        invoice = factory.invoice(unit, "750.50")
        service = InvoiceService(db)
        service.record_payment(invoice, Decimal("100"))

        invoice = service.record_payment(invoice, None, "mark-paid")

        assert invoice.is_paid is True
        assert invoice.total_paid == Decimal("750.50")
        assert invoice.remaining_balance == Decimal("0")

    def test_mark_paid_on_paid_invoice(self, db, factory, unit):
        invoice = factory.invoice(unit, "100")
        service = InvoiceService(db)
        service.record_payment(invoice, None, "mark-paid")

        with pytest.raises(BusinessRuleError) as exc_info:
            service.record_payment(invoice, None, "mark-paid")
        assert exc_info.value.error == "Invoice is already paid"

    def test_amount_is_required_and_positive(self, db, factory, unit):
        invoice = factory.invoice(unit, "100")
        service = InvoiceService(db)

        with pytest.raises(BusinessRuleError, match="Payment amount is required"):
            service.record_payment(invoice, None, "pay")
        with pytest.raises(BusinessRuleError, match="Invalid payment amount"):
            service.record_payment(invoice, Decimal("0"), "pay")


class TestLookup:
    def test_resolve_by_number(self, db, factory, unit):
        invoice = factory.invoice(unit, "100", number="INV-00042")

        assert InvoiceService(db).resolve(invoice_number=" INV-00042 ").id == invoice.id

    def test_resolve_missing(self, db):
        with pytest.raises(NotFoundError):
            InvoiceService(db).resolve(invoice_id=999)

    def test_claim_numbers_are_sequential(self, db, unit):
        service = InvoiceService(db)

        first = service.create_claim(unit, Decimal("10"))
        second = service.create_claim(unit, Decimal("20"))

        assert first.invoice_number == "CLM-00001"
        assert second.invoice_number == "CLM-00002"
        assert second.remaining_balance == Decimal("20")

    def test_taken_claim_number_is_a_conflict(self, db, factory, unit):
        factory.invoice(unit, "10", number="CLM-00002")
        factory.invoice(unit, "10", number="CLM-00001")

        with pytest.raises(ConflictError) as exc_info:
            InvoiceService(db).create_claim(unit, Decimal("20"))
        db.rollback()

        assert exc_info.value.status_code == 409
        assert exc_info.value.issues == {"invoiceNumber": "CLM-00002"}
        assert db.query(Invoice).count() == 2
