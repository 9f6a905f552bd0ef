"""Read-only aggregations over the transaction log.

Everything here is a pure function of the rows it is handed: no workbook
access, no clock reads. Callers in :mod:`canteen_ledger.core_logic` load the
rows and pass ``now`` explicitly, which keeps repeated report runs over the
same data byte-for-byte identical.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence

from .constants import LineItemKind, PaymentType, TransactionType
from .data_manager import (
    CustomerRow,
    DemandRow,
    InventoryRow,
    TransactionRow,
)

ZERO = Decimal("0")

# Members whose uid is this short are staff/officers and get an honorific.
HONORIFIC_UID_MAX_LENGTH = 5
HONORIFIC_SUFFIX = " Sir"
ARREARS_EPSILON = Decimal("0.01")


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_ms(timestamp_ms: int) -> datetime:
    """Convert epoch millis to a naive local datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000)


def month_bounds(year: int, month: int) -> tuple[int, int]:
    """Return the inclusive ``(start_ms, end_ms)`` of a local calendar month.

    The end is the last millisecond of the month (``23:59:59.999`` on its last
    day).

    Raises:
        ValueError: If ``month`` is not in ``1..12``.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    start = datetime(year, month, 1)
    following = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return to_epoch_ms(start), to_epoch_ms(following) - 1


def month_label(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def display_name(customer: CustomerRow) -> str:
    if len(customer.uid) <= HONORIFIC_UID_MAX_LENGTH:
        return f"{customer.name}{HONORIFIC_SUFFIX}"
    return customer.name


def _in_window(transaction: TransactionRow, start_ms: int, end_ms: int) -> bool:
    return start_ms <= transaction.timestamp_ms <= end_ms


def _is_sale(transaction: TransactionRow) -> bool:
    return transaction.transaction_type == TransactionType.SALE.value


def _is_payment(transaction: TransactionRow) -> bool:
    return transaction.transaction_type == TransactionType.PAYMENT.value


def _price_by_name(inventory: Iterable[InventoryRow]) -> Dict[str, Decimal]:
    prices: Dict[str, Decimal] = {}
    for item in inventory:
        # first match wins when names collide
        prices.setdefault(item.item_name, item.price)
    return prices


@dataclass(frozen=True)
class FundTotals:
    unit_fund: Decimal = ZERO
    car_wash: Decimal = ZERO
    others: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.unit_fund + self.car_wash + self.others


@dataclass
class _Consumption:
    """Accumulator for one customer's monthly sale lines."""

    quantities: Dict[str, int] = field(default_factory=dict)
    historical_rates: Dict[str, Decimal] = field(default_factory=dict)
    funds: Dict[LineItemKind, Decimal] = field(default_factory=dict)

    def add(self, transaction: TransactionRow) -> None:
        for item in transaction.items:
            if item.kind.is_fund:
                self.funds[item.kind] = self.funds.get(item.kind, ZERO) + item.line_total
                continue
            self.quantities[item.item_name] = self.quantities.get(item.item_name, 0) + item.quantity
            self.historical_rates.setdefault(item.item_name, item.price)

    def rate_for(self, item_name: str, current_prices: Mapping[str, Decimal]) -> Decimal:
        """Current inventory price, else the first historical price seen."""
        if item_name in current_prices:
            return current_prices[item_name]
        return self.historical_rates.get(item_name, ZERO)

    def food_total(self, current_prices: Mapping[str, Decimal]) -> Decimal:
        return sum(
            (self.rate_for(name, current_prices) * qty for name, qty in self.quantities.items()),
            ZERO,
        )

    def fund_totals(self) -> FundTotals:
        return FundTotals(
            unit_fund=self.funds.get(LineItemKind.UNIT_FUND, ZERO),
            car_wash=self.funds.get(LineItemKind.CAR_WASH, ZERO),
            others=self.funds.get(LineItemKind.OTHERS, ZERO),
        )


def _consume(sales: Iterable[TransactionRow]) -> _Consumption:
    consumption = _Consumption()
    for transaction in sorted(sales, key=lambda t: (t.timestamp_ms, t.transaction_id or 0)):
        consumption.add(transaction)
    return consumption


# ---------------------------------------------------------------------------
# Monthly statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatementLine:
    item_name: str
    quantity: int
    rate: Decimal

    @property
    def total(self) -> Decimal:
        return self.rate * self.quantity


@dataclass(frozen=True)
class MonthlyStatement:
    """One member's bill for the current calendar month.

    ``previous_arrears`` is whatever the running balance held before this
    month's activity, so ``previous_arrears + total_calculated_this_month -
    monthly_payments`` always equals the current balance when prices have
    not changed.
    """

    month: int
    year: int
    lines: tuple[StatementLine, ...]
    canteen_food_total: Decimal
    funds: FundTotals
    total_calculated_this_month: Decimal
    monthly_payments: Decimal
    previous_arrears: Decimal
    grand_total: Decimal

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)


def build_monthly_statement(
    customer: CustomerRow,
    transactions: Iterable[TransactionRow],
    inventory: Iterable[InventoryRow],
    *,
    now: datetime,
) -> MonthlyStatement:
    """Build the current-month statement for ``customer``.

    Product lines are grouped by item name and priced at the current
    inventory price for that name, falling back to the first price the item
    was sold at this month when it is no longer stocked. Fund lines are
    summed at their charged amounts.

    Args:
        customer: The member whose running balance anchors the statement.
        transactions: The member's transactions; rows dated before the
            start of the current month are ignored.
        inventory: Current inventory, used for rate lookups.
        now: Reference moment; the month is the local calendar month of
            ``now``.
    """
    # open-ended: rows dated after this month still count toward it
    start_ms, _ = month_bounds(now.year, now.month)
    monthly = [t for t in transactions if t.timestamp_ms >= start_ms]
    consumption = _consume(t for t in monthly if _is_sale(t))
    prices = _price_by_name(inventory)

    lines = tuple(
        StatementLine(item_name=name, quantity=qty, rate=consumption.rate_for(name, prices))
        for name, qty in consumption.quantities.items()
    )
    food_total = consumption.food_total(prices)
    funds = consumption.fund_totals()
    total_this_month = food_total + funds.total
    payments = sum((t.total_amount for t in monthly if _is_payment(t)), ZERO)
    previous_arrears = customer.total_baki - (total_this_month - payments)

    return MonthlyStatement(
        month=now.month,
        year=now.year,
        lines=lines,
        canteen_food_total=food_total,
        funds=funds,
        total_calculated_this_month=total_this_month,
        monthly_payments=payments,
        previous_arrears=previous_arrears,
        grand_total=customer.total_baki,
    )


@dataclass(frozen=True)
class StatementView:
    """Everything a member's statement page shows."""

    customer: CustomerRow
    statement: MonthlyStatement
    demands: tuple[DemandRow, ...]
    history: tuple[TransactionRow, ...]
    daily_menu_items: tuple[InventoryRow, ...]
    ordering_open: bool

    @property
    def display_name(self) -> str:
        return display_name(self.customer)


# ---------------------------------------------------------------------------
# Master report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MasterReportRow:
    uid: str
    name: str
    item_consumption: Mapping[str, int]
    canteen_bill: Decimal
    paid: Decimal
    arrears: Decimal
    unit_fund: Decimal
    car_wash: Decimal
    total: Decimal


@dataclass(frozen=True)
class MasterReportTotals:
    item_consumption: Mapping[str, int]
    canteen_bill: Decimal
    paid: Decimal
    arrears: Decimal
    unit_fund: Decimal
    car_wash: Decimal
    total: Decimal


@dataclass(frozen=True)
class MasterReport:
    month: int
    year: int
    item_names: tuple[str, ...]
    rows: tuple[MasterReportRow, ...]
    totals: MasterReportTotals

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)


def build_master_report(
    customers: Iterable[CustomerRow],
    transactions: Iterable[TransactionRow],
    inventory: Iterable[InventoryRow],
    *,
    month: int,
    year: int,
    unit_fund: Decimal = ZERO,
    car_wash: Decimal = ZERO,
) -> MasterReport:
    """Produce the per-member matrix of consumption and dues for one month.

    ``unit_fund`` and ``car_wash`` are flat per-member charges entered at
    report time; they are added to each row's total but never written to the
    ledger. Members with no bill, no payment and no arrears for the month
    are left out.

    Raises:
        ValueError: If ``month`` is not in ``1..12``.
    """
    start_ms, end_ms = month_bounds(year, month)
    prices = _price_by_name(inventory)

    by_customer: Dict[int, List[TransactionRow]] = {}
    for transaction in transactions:
        if transaction.customer_id is None or not _in_window(transaction, start_ms, end_ms):
            continue
        by_customer.setdefault(transaction.customer_id, []).append(transaction)

    item_names = sorted(
        {
            item.item_name
            for rows in by_customer.values()
            for transaction in rows
            if _is_sale(transaction)
            for item in transaction.items
            if not item.kind.is_fund
        }
    )

    report_rows: List[MasterReportRow] = []
    for customer in sorted(customers, key=lambda c: c.name.lower()):
        monthly = by_customer.get(customer.customer_id, [])
        consumption = _consume(t for t in monthly if _is_sale(t))
        bill = consumption.food_total(prices)
        paid = sum((t.total_amount for t in monthly if _is_payment(t)), ZERO)
        arrears = customer.total_baki + paid - bill
        if bill == ZERO and paid == ZERO and abs(arrears) < ARREARS_EPSILON:
            continue
        report_rows.append(
            MasterReportRow(
                uid=customer.uid,
                name=display_name(customer),
                item_consumption={name: consumption.quantities.get(name, 0) for name in item_names},
                canteen_bill=bill,
                paid=paid,
                arrears=arrears,
                unit_fund=unit_fund,
                car_wash=car_wash,
                total=customer.total_baki + unit_fund + car_wash,
            )
        )

    totals = MasterReportTotals(
        item_consumption={
            name: sum(row.item_consumption[name] for row in report_rows) for name in item_names
        },
        canteen_bill=sum((row.canteen_bill for row in report_rows), ZERO),
        paid=sum((row.paid for row in report_rows), ZERO),
        arrears=sum((row.arrears for row in report_rows), ZERO),
        unit_fund=unit_fund * len(report_rows),
        car_wash=car_wash * len(report_rows),
        total=sum((row.total for row in report_rows), ZERO),
    )
    return MasterReport(
        month=month,
        year=year,
        item_names=tuple(item_names),
        rows=tuple(report_rows),
        totals=totals,
    )


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonthlySummary:
    month: int
    year: int
    sales: Decimal
    collections: Decimal
    baki_added: Decimal
    cash_received: Decimal
    ucb_received: Decimal
    count: int

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)


def build_monthly_summary(
    transactions: Iterable[TransactionRow],
    *,
    month: int,
    year: int,
) -> MonthlySummary:
    """Totals for one month across all members and walk-in guests.

    ``cash_received`` and ``ucb_received`` count money taken in that month,
    whether as an immediate sale or as a payment against baki.
    """
    start_ms, end_ms = month_bounds(year, month)
    sales = collections = baki_added = cash = ucb = ZERO
    count = 0
    for transaction in transactions:
        if not _in_window(transaction, start_ms, end_ms):
            continue
        count += 1
        amount = transaction.total_amount
        if _is_sale(transaction):
            sales += amount
            if transaction.payment_type == PaymentType.BAKI.value:
                baki_added += amount
        elif _is_payment(transaction):
            collections += amount
        if transaction.payment_type == PaymentType.CASH.value:
            cash += amount
        elif transaction.payment_type == PaymentType.UCB.value:
            ucb += amount
    return MonthlySummary(
        month=month,
        year=year,
        sales=sales,
        collections=collections,
        baki_added=baki_added,
        cash_received=cash,
        ucb_received=ucb,
        count=count,
    )


@dataclass(frozen=True)
class DashboardStats:
    sales_this_month: Decimal
    collections_this_month: Decimal
    outstanding_baki: Decimal
    daily_sales: tuple[tuple[date, Decimal], ...]


def build_dashboard_stats(
    customers: Iterable[CustomerRow],
    transactions: Sequence[TransactionRow],
    *,
    now: datetime,
    days: int = 7,
) -> DashboardStats:
    """Headline numbers plus sales per day for the last ``days`` days."""
    summary = build_monthly_summary(transactions, month=now.month, year=now.year)
    today = now.date()
    first_day = today - timedelta(days=days - 1)
    per_day: Dict[date, Decimal] = {first_day + timedelta(days=offset): ZERO for offset in range(days)}
    for transaction in transactions:
        if not _is_sale(transaction):
            continue
        day = from_epoch_ms(transaction.timestamp_ms).date()
        if day in per_day:
            per_day[day] += transaction.total_amount
    return DashboardStats(
        sales_this_month=summary.sales,
        collections_this_month=summary.collections,
        outstanding_baki=sum((customer.total_baki for customer in customers), ZERO),
        daily_sales=tuple(sorted(per_day.items())),
    )

