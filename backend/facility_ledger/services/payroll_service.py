"""
Payroll Service - monthly payroll runs and advance deduction
"""
from typing import Any, Dict, List, Optional
from decimal import Decimal
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from facility_ledger.models import (
    Payroll, PayrollItem, PayrollStatus, Staff, StaffAdvance, AdvanceStatus, User
)
from facility_ledger.services.formatting import to_decimal, iso

logger = logging.getLogger(__name__)


def serialize_payroll(payroll: Payroll, include_deducted: bool = False) -> Dict[str, Any]:
    data = {
        "id": payroll.id,
        "month": payroll.month,
        "status": payroll.status,
        "totalGross": to_decimal(payroll.total_gross),
        "totalAdvances": to_decimal(payroll.total_advances),
        "totalNet": to_decimal(payroll.total_net),
        "paidAt": iso(payroll.paid_at),
        "createdBy": (
            {"id": payroll.created_by_user.id, "name": payroll.created_by_user.name}
            if payroll.created_by_user else None
        ),
        "items": [
            {
                "id": item.id,
                "staffId": item.staff_id,
                "name": item.name,
                "salary": to_decimal(item.salary),
                "advances": to_decimal(item.advances),
                "net": to_decimal(item.net),
            }
            for item in payroll.items
        ],
    }
    if include_deducted:
        data["deductedAdvances"] = [
            {
                "id": advance.id,
                "staffId": advance.staff_id,
                "staffName": advance.staff.name if advance.staff else None,
                "amount": to_decimal(advance.amount),
            }
            for advance in sorted(payroll.deducted_advances, key=lambda a: a.id)
        ]
    return data


class PayrollService:
    def __init__(self, db: Session):
        self.db = db

    def lookup_query(self, for_update: bool = False):
        if for_update:
            return self.db.query(Payroll).with_for_update(of=Payroll)
        return self.db.query(Payroll).options(joinedload(Payroll.items))

    def get_by_id(self, payroll_id: int, for_update: bool = False) -> Optional[Payroll]:
        return self.lookup_query(for_update).filter(Payroll.id == payroll_id).first()

    def get_by_month(self, month: str, for_update: bool = False) -> Optional[Payroll]:
        return self.lookup_query(for_update).filter(Payroll.month == month).first()

    def resolve(self, payroll_id: Optional[int] = None, month: Optional[str] = None) -> Payroll:
        payroll = None
        if payroll_id is not None:
            payroll = self.get_by_id(payroll_id, for_update=True)
        elif month:
            payroll = self.get_by_month(month, for_update=True)

        if not payroll:
            raise NotFoundError(
                "Payroll not found",
                en="I could not find a payroll with that id.",
                ar="لم أعثر على كشف رواتب بهذا المعرف.",
                issues={"payrollId": payroll_id, "month": month}
            )
        return payroll

    def create(self, month: str, created_by: User) -> Payroll:
        """
        Snapshot every active staff member for the month.

        net = salary - pending advances at creation time. A negative net is
        kept as is; the caller reports it as a warning.
        """
        if self.db.query(Payroll.id).filter(Payroll.month == month).first():
            raise self._duplicate(month)

        staff_members = self.db.query(Staff).options(
            joinedload(Staff.advances)
        ).filter(Staff.is_active == True).order_by(Staff.name, Staff.id).all()

        if not staff_members:
            raise BusinessRuleError(
                "No staff members found",
                en="No staff members are registered to build the payroll.",
                ar="لا يوجد موظفون مسجلون لإنشاء كشف الرواتب."
            )

        total_gross = Decimal("0.00")
        total_advances = Decimal("0.00")
        items: List[PayrollItem] = []

        for staff in staff_members:
            salary = to_decimal(staff.salary)
            advances = sum(
                (to_decimal(advance.amount) for advance in staff.advances
                 if advance.status == AdvanceStatus.PENDING.value),
                Decimal("0.00")
            )
            total_gross += salary
            total_advances += advances
            items.append(PayrollItem(
                staff_id=staff.id,
                name=staff.name,
                salary=salary,
                advances=advances,
                net=salary - advances
            ))

        payroll = Payroll(
            month=month,
            total_gross=total_gross,
            total_advances=total_advances,
            total_net=total_gross - total_advances,
            status=PayrollStatus.PENDING.value,
            created_by_user_id=created_by.id,
            items=items
        )
        self.db.add(payroll)
        try:
            self.db.flush()
        except IntegrityError:
            # Another request created the same month first
            raise self._duplicate(month)

        self.db.refresh(payroll)
        logger.info(f"Payroll {payroll.month} created with {len(items)} items, net {payroll.total_net}")
        return payroll

    @staticmethod
    def _duplicate(month: str) -> BusinessRuleError:
        return BusinessRuleError(
            "Payroll already exists",
            en="There is already a payroll for that month.",
            ar="يوجد كشف رواتب لهذا الشهر بالفعل.",
            issues={"month": month}
        )

    @staticmethod
    def negative_items(payroll: Payroll) -> List[Dict[str, Any]]:
        return [
            {"staffId": item.staff_id, "name": item.name, "net": to_decimal(item.net)}
            for item in payroll.items
            if to_decimal(item.net) < 0
        ]

    def pay(self, payroll: Payroll) -> Payroll:
        """
        PENDING -> PAID.

        Every PENDING advance of the payroll's staff at this moment becomes
        DEDUCTED and is linked to the payroll.
        """
        if payroll.status != PayrollStatus.PENDING.value:
            raise BusinessRuleError(
                "Payroll is already processed",
                en="This payroll was already marked as paid earlier.",
                ar="تم دفع هذا الكشف مسبقاً.",
                issues={"payrollId": payroll.id, "status": payroll.status}
            )

        now = datetime.utcnow()
        updated = self.db.query(Payroll).filter(
            Payroll.id == payroll.id,
            Payroll.status == PayrollStatus.PENDING.value
        ).update({
            Payroll.status: PayrollStatus.PAID.value,
            Payroll.paid_at: now,
            Payroll.updated_at: now
        }, synchronize_session=False)

        if updated == 0:
            raise ConflictError(
                "Payroll is already processed",
                en="This payroll was already marked as paid earlier.",
                ar="تم دفع هذا الكشف مسبقاً.",
                issues={"payrollId": payroll.id}
            )

        staff_ids = [item.staff_id for item in payroll.items if item.staff_id is not None]
        deducted = 0
        if staff_ids:
            deducted = self.db.query(StaffAdvance).filter(
                StaffAdvance.staff_id.in_(staff_ids),
                StaffAdvance.status == AdvanceStatus.PENDING.value
            ).update({
                StaffAdvance.status: AdvanceStatus.DEDUCTED.value,
                StaffAdvance.deducted_from_payroll_id: payroll.id,
                StaffAdvance.updated_at: now
            }, synchronize_session=False)

        self.db.flush()
        self.db.expire_all()
        payroll = self.get_by_id(payroll.id)
        logger.info(f"Payroll {payroll.month} paid, {deducted} advances deducted")
        return payroll
