"""
Tests for payroll generation and payment
"""
from decimal import Decimal

import pytest

from facility_ledger.core.exceptions import BusinessRuleError
from facility_ledger.models import StaffAdvance
from facility_ledger.services.payroll_service import PayrollService, serialize_payroll


@pytest.fixture
def staff_with_advances(factory):
    rana = factory.staff("Rana Adel", salary="5000")
    factory.staff_advance(rana, "300")
    factory.staff_advance(rana, "200")
    factory.staff_advance(rana, "1000", status="DEDUCTED")
    tamer = factory.staff("Tamer Ezz", salary="3000")
    factory.staff("Retired Person", salary="9000", is_active=False)
    return rana, tamer


class TestCreatePayroll:
    def test_snapshot_of_active_staff(self, db, accountant, staff_with_advances):
        rana, tamer = staff_with_advances

        payroll = PayrollService(db).create("2024-06", accountant)

        assert payroll.status == "PENDING"
        assert payroll.total_gross == Decimal("8000")
        assert payroll.total_advances == Decimal("500")
        assert payroll.total_net == Decimal("7500")
        items = {item.staff_id: item for item in payroll.items}
        assert set(items) == {rana.id, tamer.id}
        assert items[rana.id].advances == Decimal("500")
        assert items[rana.id].net == Decimal("4500")
        assert items[tamer.id].net == Decimal("3000")

    def test_one_payroll_per_month(self, db, accountant, staff_with_advances):
        service = PayrollService(db)
        service.create("2024-06", accountant)
        db.commit()

        with pytest.raises(BusinessRuleError, match="Payroll already exists"):
            service.create("2024-06", accountant)

    def test_requires_staff(self, db, accountant):
        with pytest.raises(BusinessRuleError, match="No staff members found"):
            PayrollService(db).create("2024-06", accountant)

    def test_negative_net_is_reported(self, db, factory, accountant):
        staff = factory.staff("Mido Sami", salary="1000")
        factory.staff_advance(staff, "1500")

        service = PayrollService(db)
        payroll = service.create("2024-07", accountant)

        assert service.negative_items(payroll) == [
            {"staffId": staff.id, "name": "Mido Sami", "net": Decimal("-500.00")}
        ]


class TestPayPayroll:
    def test_pay_deducts_pending_advances(self, db, accountant, staff_with_advances):
        rana, _ = staff_with_advances
        service = PayrollService(db)
        payroll = service.create("2024-06", accountant)
        db.commit()

        payroll = service.pay(service.resolve(month="2024-06"))
        db.commit()

        assert payroll.status == "PAID"
        assert payroll.paid_at is not None
        advances = db.query(StaffAdvance).filter(StaffAdvance.staff_id == rana.id).all()
        assert {advance.status for advance in advances} == {"DEDUCTED"}
        linked = [advance for advance in advances if advance.deducted_from_payroll_id == payroll.id]
        assert sorted(advance.amount for advance in linked) == [Decimal("200"), Decimal("300")]

        data = serialize_payroll(payroll, include_deducted=True)
        assert len(data["deductedAdvances"]) == 2

    def test_pay_leaves_staff_outside_payroll_untouched(self, db, factory, accountant, staff_with_advances):
        service = PayrollService(db)
        payroll = service.create("2024-06", accountant)
        db.commit()

        retired = factory.staff("Former Guard", salary="4000", is_active=False)
        retired_advance = factory.staff_advance(retired, "250")
        late_hire = factory.staff("Late Hire", salary="4000")
        late_advance = factory.staff_advance(late_hire, "150")

        service.pay(service.resolve(month="2024-06"))
        db.commit()
        db.expire_all()

        for advance_id in (retired_advance.id, late_advance.id):
            advance = db.get(StaffAdvance, advance_id)
            assert advance.status == "PENDING"
            assert advance.deducted_from_payroll_id is None
        assert {item.staff_id for item in payroll.items}.isdisjoint({retired.id, late_hire.id})

    def test_pay_twice(self, db, accountant, staff_with_advances):
        service = PayrollService(db)
        payroll = service.create("2024-06", accountant)
        payroll = service.pay(payroll)
        db.commit()

        with pytest.raises(BusinessRuleError, match="already processed"):
            service.pay(payroll)
