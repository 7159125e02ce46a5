"""
Invoice Service - claim invoices and payments
"""
from typing import Any, Dict, Optional
from decimal import Decimal
from datetime import datetime
import logging

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.config import settings
from facility_ledger.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from facility_ledger.models import Invoice, InvoiceType, Payment, OperationalUnit
from facility_ledger.services.formatting import to_decimal, iso

logger = logging.getLogger(__name__)


def serialize_invoice(invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "invoiceNumber": invoice.invoice_number,
        "type": invoice.type,
        "unitId": invoice.unit_id,
        "unitCode": invoice.unit.code if invoice.unit else None,
        "amount": to_decimal(invoice.amount),
        "totalPaid": to_decimal(invoice.total_paid),
        "remainingBalance": to_decimal(invoice.remaining_balance),
        "isPaid": bool(invoice.is_paid),
        "issuedAt": iso(invoice.issued_at),
        "payments": [
            {"id": payment.id, "amount": to_decimal(payment.amount), "createdAt": iso(payment.created_at)}
            for payment in sorted(invoice.payments, key=lambda p: p.id, reverse=True)
        ],
        "expenses": [
            {
                "id": expense.id,
                "description": expense.description,
                "amount": to_decimal(expense.amount),
                "sourceType": expense.source_type,
                "date": iso(expense.recorded_at or expense.created_at),
            }
            for expense in invoice.operational_expenses
        ],
    }


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db

    def lookup_query(self, for_update: bool = False):
        """Locked reads take the invoice row only and lazy-load the unit"""
        if for_update:
            return self.db.query(Invoice).with_for_update(of=Invoice)
        return self.db.query(Invoice).options(joinedload(Invoice.unit))

    def get_by_id(self, invoice_id: int, for_update: bool = False) -> Optional[Invoice]:
        return self.lookup_query(for_update).filter(Invoice.id == invoice_id).first()

    def get_by_number(self, invoice_number: str, for_update: bool = False) -> Optional[Invoice]:
        return self.lookup_query(for_update).filter(
            Invoice.invoice_number == invoice_number.strip()
        ).first()

    def resolve(self, invoice_id: Optional[int] = None, invoice_number: Optional[str] = None) -> Invoice:
        invoice = None
        if invoice_id is not None:
            invoice = self.get_by_id(invoice_id, for_update=True)
        elif invoice_number:
            invoice = self.get_by_number(invoice_number, for_update=True)

        if not invoice:
            raise NotFoundError(
                "Invoice not found",
                en="I could not find an invoice with that id.",
                ar="لم أعثر على فاتورة بهذا المعرف.",
                issues={"invoiceId": invoice_id, "invoiceNumber": invoice_number}
            )
        return invoice

    def get_next_number(self, prefix: Optional[str] = None) -> str:
        """Next sequential invoice number for a prefix, e.g. CLM-00001"""
        prefix = prefix or settings.CLAIM_INVOICE_PREFIX
        last_invoice = self.db.query(Invoice).filter(
            Invoice.invoice_number.like(f"{prefix}-%")
        ).order_by(Invoice.id.desc()).first()

        if last_invoice:
            try:
                num = int(last_invoice.invoice_number.replace(f"{prefix}-", ""))
                return f"{prefix}-{num + 1:05d}"
            except ValueError:
                pass

        return f"{prefix}-00001"

    def create_claim(self, unit: OperationalUnit, amount: Decimal) -> Invoice:
        invoice_number = self.get_next_number()
        invoice = Invoice(
            invoice_number=invoice_number,
            type=InvoiceType.CLAIM.value,
            unit_id=unit.id,
            amount=amount,
            total_paid=Decimal("0.00"),
            remaining_balance=amount,
            is_paid=False,
            issued_at=datetime.utcnow()
        )
        self.db.add(invoice)
        try:
            self.db.flush()
        except IntegrityError:
            # Another conversion took the same number first
            raise ConflictError(
                "Invoice number already taken",
                en="Another invoice was issued at the same time. Please try again.",
                ar="تم إصدار فاتورة أخرى في نفس الوقت. حاول مرة أخرى.",
                issues={"invoiceNumber": invoice_number}
            )
        return invoice

    def record_payment(
        self,
        invoice: Invoice,
        amount: Optional[Decimal] = None,
        mode: str = "pay",
        recorded_by_user_id: Optional[int] = None
    ) -> Invoice:
        """
        Apply a payment. "mark-paid" pays the whole remaining balance.

        total_paid + remaining_balance == amount is kept by moving the same
        value between both columns in one conditional UPDATE.
        """
        remaining = to_decimal(invoice.remaining_balance)

        if mode == "mark-paid":
            payment_amount = remaining
        else:
            if amount is None:
                raise BusinessRuleError(
                    "Payment amount is required",
                    en="Send how much was paid towards the invoice.",
                    ar="أرسل المبلغ المدفوع للفاتورة."
                )
            payment_amount = to_decimal(amount)

        if payment_amount <= 0:
            if mode == "mark-paid":
                raise BusinessRuleError(
                    "Invoice is already paid",
                    en="This invoice is already fully paid.",
                    ar="هذه الفاتورة مدفوعة بالكامل.",
                    issues={"invoiceId": invoice.id, "remainingBalance": remaining}
                )
            raise BusinessRuleError(
                "Invalid payment amount",
                en="Payment amount must be a positive number.",
                ar="المبلغ المدفوع يجب أن يكون رقماً موجباً.",
                issues={"amount": payment_amount}
            )

        if payment_amount > remaining:
            raise BusinessRuleError(
                "Payment exceeds remaining balance",
                en="The payment is larger than the remaining balance.",
                ar="المبلغ المدفوع أكبر من الرصيد المتبقي.",
                issues={"amount": payment_amount, "remainingBalance": remaining}
            )

        updated = self.db.query(Invoice).filter(
            Invoice.id == invoice.id,
            Invoice.remaining_balance >= payment_amount
        ).update({
            Invoice.total_paid: Invoice.total_paid + payment_amount,
            Invoice.remaining_balance: Invoice.remaining_balance - payment_amount,
            Invoice.is_paid: case((Invoice.remaining_balance - payment_amount <= 0, True), else_=False),
            Invoice.updated_at: datetime.utcnow()
        }, synchronize_session=False)

        if updated == 0:
            raise ConflictError(
                "Invoice balance changed",
                en="The invoice balance changed while recording the payment. Please check it and try again.",
                ar="تغير رصيد الفاتورة أثناء تسجيل الدفعة. راجعها وحاول مرة أخرى.",
                issues={"invoiceId": invoice.id}
            )

        payment = Payment(
            invoice_id=invoice.id,
            amount=payment_amount,
            recorded_by_user_id=recorded_by_user_id
        )
        self.db.add(payment)
        self.db.flush()
        self.db.refresh(invoice)

        logger.info(
            f"Invoice {invoice.invoice_number} paid {payment_amount}, remaining {invoice.remaining_balance}"
        )
        return invoice
