"""Integration tests describing end-to-end canteen ledger workflows.

These scenarios drive the business logic layer against a real workbook on
disk, persisting and reloading between steps the way the CLI does, and
finally run the CLI entry point itself.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from canteen_ledger import cli, core_logic, data_manager
from canteen_ledger.constants import DemandStatus, LineItemKind, PaymentType


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def test_credit_sale_and_payment_flow(runtime_context):
    """Sell on baki, collect part of it, and read the statement back from disk."""

    context = runtime_context
    member = core_logic.add_customer(context, uid="1042", name="Rahman")
    tea = core_logic.add_inventory_item(context, item_name="Tea", price=Decimal("10"), stock_quantity=20)
    context = _reload(context)

    core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            customer_id=member.customer_id,
            items=[core_logic.SaleLine(item_name="Tea", price=tea.price, quantity=3, item_id=tea.item_id)],
            payment_type=PaymentType.BAKI,
            timestamp=datetime(2024, 6, 3, 9),
        ),
    )
    core_logic.record_payment(
        context,
        core_logic.PaymentCommand(
            customer_id=member.customer_id,
            amount=Decimal("12.50"),
            timestamp=datetime(2024, 6, 4, 9),
        ),
    )
    context = _reload(context)

    stored = core_logic.get_customer(context, uid="1042")
    assert stored.total_baki == Decimal("17.5")
    assert core_logic.reconcile_balances(context) == {}

    view = core_logic.view_statement(context, "1042", now=datetime(2024, 6, 20, 22))
    assert view.statement.canteen_food_total == Decimal("30")
    assert view.statement.monthly_payments == Decimal("12.5")
    assert view.statement.previous_arrears == Decimal("0")


def test_demand_lifecycle_flow(runtime_context):
    """Place overnight pre-orders, approve one, and let the other expire."""

    context = runtime_context
    member = core_logic.add_customer(context, uid="CDT-20931", name="Karim")
    paratha = core_logic.add_inventory_item(context, item_name="Paratha", price=Decimal("20"), stock_quantity=1)
    egg = core_logic.add_inventory_item(context, item_name="Egg", price=Decimal("15"), stock_quantity=5)
    core_logic.set_daily_menu(context, [paratha.item_id, egg.item_id], effective_date=date(2024, 6, 14))
    context = _reload(context)

    night = datetime(2024, 6, 14, 22, 15)
    first = core_logic.place_demand(context, member.customer_id, paratha.item_id, now=night)
    second = core_logic.place_demand(context, member.customer_id, egg.item_id, now=night)
    context = _reload(context)

    core_logic.approve_demand(context, first.demand_id, timestamp=datetime(2024, 6, 15, 7, 30))
    context = _reload(context)

    view = core_logic.view_statement(context, member.uid, now=datetime(2024, 6, 15, 13))
    context = _reload(context)

    statuses = {demand.demand_id: demand.status for demand in view.demands}
    assert statuses == {
        first.demand_id: DemandStatus.FULFILLED.value,
        second.demand_id: DemandStatus.CANCELLED.value,
    }
    assert core_logic.get_demand(context, second.demand_id).status == DemandStatus.CANCELLED.value
    assert core_logic.get_inventory_item(context, paratha.item_id).stock_quantity == 0
    assert core_logic.get_customer(context, uid=member.uid).total_baki == Decimal("20")
    [sale] = core_logic.list_transactions(context)
    assert sale.note == "Approved Pre-order: Paratha"


def test_failed_operation_is_discarded_by_refresh(runtime_context):
    """A rejected payment followed by a refresh should leave disk untouched."""

    context = runtime_context
    member = core_logic.add_customer(context, uid="1042", name="Rahman")
    core_logic.record_fund_charge(
        context,
        core_logic.FundChargeCommand(customer_id=member.customer_id, kind=LineItemKind.UNIT_FUND),
    )
    context = _reload(context)

    core_logic.add_customer(context, uid="unsaved", name="Temp")
    with pytest.raises(core_logic.OverpaymentError):
        core_logic.record_payment(
            context,
            core_logic.PaymentCommand(customer_id=member.customer_id, amount=Decimal("150")),
        )
    context = core_logic.refresh_context(context)

    assert [customer.uid for customer in core_logic.list_customers(context)] == ["1042"]
    assert core_logic.get_customer(context, uid="1042").total_baki == Decimal("100")


def test_monthly_reports_flow(runtime_context):
    context = runtime_context
    officer = core_logic.add_customer(context, uid="1042", name="Rahman")
    cadet = core_logic.add_customer(context, uid="CDT-20931", name="Karim")
    june = datetime(2024, 6, 10, 12)
    for customer, quantity in ((officer, 2), (cadet, 5)):
        core_logic.record_sale(
            context,
            core_logic.SaleCommand(
                customer_id=customer.customer_id,
                items=[core_logic.SaleLine(item_name="Tea", price=Decimal("10"), quantity=quantity)],
                payment_type=PaymentType.BAKI,
                timestamp=june,
            ),
        )
    core_logic.record_payment(
        context,
        core_logic.PaymentCommand(customer_id=cadet.customer_id, amount=Decimal("50"), timestamp=june),
    )
    context = _reload(context)

    report = core_logic.generate_master_report(context, month=6, year=2024, car_wash=Decimal("50"))
    summary = core_logic.generate_monthly_summary(context, month=6, year=2024)

    assert [row.name for row in report.rows] == ["Karim", "Rahman Sir"]
    assert report.totals.canteen_bill == Decimal("70")
    assert report.totals.total == Decimal("120")
    assert summary.baki_added == Decimal("70")
    assert summary.collections == Decimal("50")
    assert summary.count == 3


def test_cli_sale_and_payment_flow(config_factory, capsys):
    """Drive the ledger purely through the CLI entry point."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main([*base, "add-customer", "--uid", "1042", "--name", "Rahman"]) == 0
    assert cli.main([*base, "add-item", "--name", "Tea", "--price", "10", "--stock", "30"]) == 0
    assert cli.main([*base, "sale", "--customer-id", "1", "--item", "1:4", "--payment-type", "Baki"]) == 0
    assert cli.main([*base, "pay", "--customer-id", "1", "--amount", "15"]) == 0
    assert cli.main([*base, "pay", "--customer-id", "1", "--amount", "500"]) == 2
    assert cli.main([*base, "pay", "--customer-id", "1", "--amount", "abc"]) == 2
    assert cli.main([*base, "sale", "--item", "1", "--payment-type", "Baki"]) == 2
    capsys.readouterr()

    assert cli.main([*base, "customers"]) == 0
    assert "25" in capsys.readouterr().out

    workbook = data_manager.open_workbook(bundle.workbook_path)
    [customer] = list(data_manager.iter_customers(workbook))
    assert customer.total_baki == Decimal("25")
    assert len(list(data_manager.iter_transactions(workbook))) == 2


def test_cli_fund_charge_and_reconcile_flow(config_factory, capsys):
    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main([*base, "add-customer", "--uid", "CDT-1", "--name", "Karim"]) == 0
    assert cli.main([*base, "fund-charge", "--customer-id", "1", "--kind", "car_wash"]) == 0
    assert cli.main([*base, "fund-charge", "--customer-id", "1", "--kind", "others"]) == 2

    workbook = data_manager.open_workbook(bundle.workbook_path)
    data_manager.update_customer(workbook, 1, field_values={"TotalBaki": Decimal("0")})
    data_manager.save_workbook(workbook, bundle.workbook_path)
    capsys.readouterr()

    assert cli.main([*base, "reconcile"]) == 0
    assert "1 balance(s) corrected" in capsys.readouterr().out

    workbook = data_manager.open_workbook(bundle.workbook_path)
    [customer] = list(data_manager.iter_customers(workbook))
    assert customer.total_baki == Decimal("50")
