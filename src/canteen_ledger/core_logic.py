"""Business logic layer for the canteen ledger.

This module contains the rule engine that sits on top of the append-only
transaction log. It consumes the Data Access Layer (DAL) for all I/O while
ensuring every mutation passes through the domain rules:

* the balance engine, where a customer's ``TotalBaki`` is only ever written
  by recomputing it from the log after an append;
* the pre-order (demand) state machine and its ordering window;
* member, inventory and daily-menu management.

Every operation mutates the in-memory workbook only. Nothing becomes durable
until :func:`persist_context` saves the workbook in one step, and a failed
operation is discarded with :func:`refresh_context`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log, reporting
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    FUND_DEFAULT_AMOUNTS,
    FUND_ITEM_NAMES,
    DemandStatus,
    LineItemKind,
    PaymentType,
    TransactionType,
)


class LedgerError(Exception):
    """Base class for every error raised by the ledger."""


class ValidationError(LedgerError, ValueError):
    """Raised when input is rejected before anything is written."""


class OrderingClosedError(ValidationError):
    """Raised when a pre-order is placed outside the ordering window."""


class OverpaymentError(ValidationError):
    """Raised when a payment exceeds the customer's outstanding balance."""


class NotFoundError(LedgerError, LookupError):
    """Raised when a referenced customer, item, demand or transaction is unknown."""


class ConflictError(LedgerError):
    """Raised when a write conflicts with stored state."""


class TransientIOError(LedgerError):
    """Raised when the ledger workbook cannot be read or written."""


@dataclass(frozen=True)
class OrderingWindow:
    """Daily local-time band during which pre-orders are accepted.

    The window opens at ``open_hour`` and closes at ``close_hour``. When
    ``open_hour > close_hour`` it wraps past midnight (20 to 12 means
    ``hour >= 20 or hour < 12``). Outside the window pending demands are
    considered stale and are expired.
    """

    open_hour: int
    close_hour: int

    def is_open(self, moment: datetime) -> bool:
        hour = moment.hour
        if self.open_hour > self.close_hour:
            return hour >= self.open_hour or hour < self.close_hour
        return self.open_hour <= hour < self.close_hour

    def is_auto_expire(self, moment: datetime) -> bool:
        return not self.is_open(moment)

    @classmethod
    def from_settings(cls, settings: data_manager.ConfigSettings) -> "OrderingWindow":
        return cls(open_hour=settings.order_open_hour, close_hour=settings.order_close_hour)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def ordering_window(self) -> OrderingWindow:
        return OrderingWindow.from_settings(self.settings)


@dataclass(frozen=True)
class SaleLine:
    """One requested line of a sale, priced by the caller at checkout."""

    item_name: str
    price: Decimal
    quantity: int = 1
    item_id: Optional[int] = None
    kind: LineItemKind = LineItemKind.PRODUCT


@dataclass(frozen=True)
class SaleCommand:
    """User intent for creating a ``sale`` transaction."""

    customer_id: Optional[int]
    items: Sequence[SaleLine]
    payment_type: PaymentType
    timestamp: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for recording money received against a customer's baki."""

    customer_id: int
    amount: Decimal
    payment_type: PaymentType = PaymentType.CASH
    timestamp: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class FundChargeCommand:
    """User intent for charging a fund line (Unit Fund, Car Wash, Others)."""

    customer_id: int
    kind: LineItemKind
    amount: Optional[Decimal] = None
    timestamp: Optional[datetime] = None
    note: Optional[str] = None


def _resolve_now(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current local wall-clock time.

    The ordering window and the month boundaries are defined on the canteen's
    local clock, so naive local datetimes are used throughout.
    """

    return candidate if candidate is not None else datetime.now()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customers")
    if "all" not in bucket:
        all_customers = list(data_manager.iter_customers(context.workbook))
        bucket["all"] = all_customers
        bucket["by_id"] = {customer.customer_id: customer for customer in all_customers}
        bucket["by_uid"] = {customer.uid: customer for customer in all_customers}
        log.debug("Populated customers cache with %d entries", len(all_customers))
    return bucket


def _ensure_inventory_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "inventory")
    if "all" not in bucket:
        all_items = list(data_manager.iter_inventory(context.workbook))
        bucket["all"] = all_items
        bucket["by_id"] = {item.item_id: item for item in all_items}
        log.debug("Populated inventory cache with %d entries", len(all_items))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand.

    Transactions are immutable after creation, so the full list and the
    ``by_id`` map stay valid until the next append invalidates the bucket.
    """

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        TransientIOError: If the workbook exists but cannot be read.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    try:
        workbook = data_manager.open_workbook(settings.data_file)
    except FileNotFoundError:
        raise
    except OSError as exc:
        log.error("Unable to read workbook '%s': %s", settings.data_file, exc)
        raise TransientIOError(f"Unable to read workbook: {exc}") from exc
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist every in-memory change of the context in a single save.

    This is the commit point of the ledger: all rows touched by an operation
    (transaction, line items, balance, stock, demand status) reach disk
    together or not at all.

    Raises:
        TransientIOError: If the workbook file cannot be written, for
            example because it is open in Excel.
    """
    try:
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except OSError as exc:
        log.error("Unable to persist workbook '%s': %s", context.settings.data_file, exc)
        raise TransientIOError(f"Unable to write workbook: {exc}") from exc
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    """Return customers sorted by name, as shown on the member registry."""
    cache = _ensure_customers_cache(context)
    return sorted(cache["all"], key=lambda customer: customer.name.lower())


def list_inventory(context: RuntimeContext) -> List[data_manager.InventoryRow]:
    cache = _ensure_inventory_cache(context)
    return list(cache["all"])


def list_transactions(
    context: RuntimeContext,
    *,
    customer_id: Optional[int] = None,
) -> List[data_manager.TransactionRow]:
    """Return a snapshot of the transaction log in append order."""
    transactions = _ensure_transactions_cache(context)["all"]
    if customer_id is None:
        return list(transactions)
    return [transaction for transaction in transactions if transaction.customer_id == customer_id]


def list_demands(
    context: RuntimeContext,
    *,
    customer_id: Optional[int] = None,
    status: Optional[DemandStatus] = None,
) -> List[data_manager.DemandRow]:
    """Return demands oldest first, straight from the workbook.

    Demands change status in place, so they are never cached.
    """
    demands = data_manager.iter_demands(
        context.workbook,
        customer_id=customer_id,
        status=status.value if status is not None else None,
    )
    return sorted(demands, key=lambda demand: (demand.timestamp_ms, demand.demand_id))


def get_customer(
    context: RuntimeContext,
    *,
    customer_id: Optional[int] = None,
    uid: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Resolve a customer by id or by external uid.

    Raises:
        NotFoundError: If no customer matches.
    """
    cache = _ensure_customers_cache(context)
    if customer_id is not None:
        customer = cache["by_id"].get(customer_id)
    elif uid is not None:
        customer = cache["by_uid"].get(uid)
    else:
        raise ValidationError("A customer id or uid is required")
    if customer is None:
        log.warning("Customer lookup failed for id=%s uid=%s", customer_id, uid)
        raise NotFoundError(f"Unknown customer: {uid if customer_id is None else customer_id}")
    return customer


def get_inventory_item(context: RuntimeContext, item_id: int) -> data_manager.InventoryRow:
    cache = _ensure_inventory_cache(context)
    try:
        return cache["by_id"][item_id]
    except KeyError as exc:
        log.warning("Inventory lookup failed for id '%s'", item_id)
        raise NotFoundError(f"Unknown inventory item id: {item_id}") from exc


def get_transaction(context: RuntimeContext, transaction_id: int) -> data_manager.TransactionRow:
    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise NotFoundError(f"Unknown transaction id: {transaction_id}") from exc


def _fresh_customer(context: RuntimeContext, customer_id: int) -> data_manager.CustomerRow:
    # Mutations re-read straight from the workbook instead of trusting the cache.
    customer = data_manager.find_customer(context.workbook, customer_id=customer_id)
    if customer is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise NotFoundError(f"Unknown customer id: {customer_id}")
    return customer


def _fresh_inventory_item(context: RuntimeContext, item_id: int) -> data_manager.InventoryRow:
    for item in data_manager.iter_inventory(context.workbook):
        if item.item_id == item_id:
            return item
    log.warning("Inventory lookup failed for id '%s'", item_id)
    raise NotFoundError(f"Unknown inventory item id: {item_id}")


def get_demand(context: RuntimeContext, demand_id: int) -> data_manager.DemandRow:
    for demand in data_manager.iter_demands(context.workbook):
        if demand.demand_id == demand_id:
            return demand
    log.warning("Demand lookup failed for id '%s'", demand_id)
    raise NotFoundError(f"Unknown demand id: {demand_id}")


def list_customer_history(context: RuntimeContext, customer_id: int) -> List[data_manager.TransactionRow]:
    """Return one customer's transactions newest first."""
    get_customer(context, customer_id=customer_id)
    history = list_transactions(context, customer_id=customer_id)
    return sorted(history, key=lambda transaction: transaction.timestamp_ms, reverse=True)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a line quantity is a strictly positive integer.

    Raises:
        ValidationError: If ``quantity`` is not an integer or is below one.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_money_precision(amount: Decimal) -> None:
    """Reject amounts that are not finite or carry more than two decimals."""
    if not isinstance(amount, Decimal) or not amount.is_finite():
        log.error("Monetary value is not a finite decimal: %r", amount)
        raise ValidationError("Amount must be a finite decimal")
    if amount != amount.quantize(Decimal("0.01")):
        log.error("Monetary precision validation failed: %s", amount)
        raise ValidationError("Amount cannot have more than two decimal places")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero or over-precise.
    """
    require_money_precision(amount)
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")


def require_positive_money(amount: Decimal) -> None:
    require_money_precision(amount)
    if amount <= Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be greater than zero")


# ---------------------------------------------------------------------------
# Balance engine
# ---------------------------------------------------------------------------


def compute_balance(transactions: Iterable[data_manager.TransactionRow]) -> Decimal:
    """Derive an outstanding balance from transaction history.

    ``Σ(sale amounts paid on Baki) − Σ(payment amounts)``. Cash and UCB sales
    are settled on the spot and never touch the balance.
    """
    balance = Decimal("0")
    for transaction in transactions:
        if transaction.transaction_type == TransactionType.PAYMENT.value:
            balance -= transaction.total_amount
        elif transaction.payment_type == PaymentType.BAKI.value:
            balance += transaction.total_amount
    return balance


def _recompute_balance(context: RuntimeContext, customer_id: int) -> Decimal:
    """Rewrite a customer's materialized ``TotalBaki`` from the log.

    This is the only writer of ``TotalBaki``. It never applies a delta, so
    running it any number of times after an append yields the same value.
    """
    transactions = data_manager.iter_transactions(context.workbook, customer_id=customer_id)
    balance = compute_balance(transactions)
    data_manager.update_customer(context.workbook, customer_id, field_values={"TotalBaki": balance})
    return balance


def _append_and_reconcile(
    context: RuntimeContext,
    record: data_manager.TransactionRow,
) -> data_manager.TransactionRow:
    """Append ``record`` and refresh the owner's balance from the log.

    Every balance-affecting write goes through here.
    """
    transaction_id = data_manager.append_transaction(context.workbook, record)
    stored = replace(record, transaction_id=transaction_id)
    if stored.customer_id is not None:
        balance = _recompute_balance(context, stored.customer_id)
        log.debug("Customer %s balance recomputed to %s", stored.customer_id, balance)
    _invalidate_cache(context, "transactions", "customers")
    return stored


def reconcile_balances(context: RuntimeContext) -> Dict[int, tuple[Decimal, Decimal]]:
    """Recompute every customer's balance from the log and repair drift.

    Returns:
        dict[int, tuple[Decimal, Decimal]]: ``customer_id -> (stored,
            derived)`` for the rows that had to be corrected. An empty
            mapping means every stored balance already matched the log.
    """
    by_customer: Dict[int, List[data_manager.TransactionRow]] = {}
    for transaction in data_manager.iter_transactions(context.workbook):
        if transaction.customer_id is not None:
            by_customer.setdefault(transaction.customer_id, []).append(transaction)

    corrections: Dict[int, tuple[Decimal, Decimal]] = {}
    for customer in list(data_manager.iter_customers(context.workbook)):
        derived = compute_balance(by_customer.get(customer.customer_id, []))
        if derived != customer.total_baki:
            data_manager.update_customer(
                context.workbook, customer.customer_id, field_values={"TotalBaki": derived}
            )
            corrections[customer.customer_id] = (customer.total_baki, derived)
            log.warning(
                "Balance drift for customer '%s': stored=%s derived=%s",
                customer.uid,
                customer.total_baki,
                derived,
            )
    if corrections:
        _invalidate_cache(context, "customers")
    log.info("Reconciled balances (%d corrected)", len(corrections))
    return corrections


def build_sale_transaction(command: SaleCommand, *, timestamp: datetime) -> data_manager.TransactionRow:
    """Materialize a :class:`SaleCommand` into a DAL transaction row.

    Line prices are frozen into the row so later inventory price changes do
    not rewrite history.
    """
    items = tuple(
        data_manager.TransactionItemRow(
            item_id=line.item_id,
            item_name=line.item_name,
            price=line.price,
            quantity=line.quantity,
            kind=line.kind,
        )
        for line in command.items
    )
    total = sum((item.line_total for item in items), Decimal("0"))
    return data_manager.TransactionRow(
        transaction_id=None,
        customer_id=command.customer_id,
        items=items,
        total_amount=total,
        payment_type=command.payment_type.value,
        timestamp_ms=reporting.to_epoch_ms(timestamp),
        transaction_type=TransactionType.SALE.value,
        note=command.note,
    )


def build_payment_transaction(command: PaymentCommand, *, timestamp: datetime) -> data_manager.TransactionRow:
    return data_manager.TransactionRow(
        transaction_id=None,
        customer_id=command.customer_id,
        items=(),
        total_amount=command.amount,
        payment_type=command.payment_type.value,
        timestamp_ms=reporting.to_epoch_ms(timestamp),
        transaction_type=TransactionType.PAYMENT.value,
        note=command.note,
    )


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.TransactionRow:
    """Validate and append a ``sale`` transaction.

    A Baki sale raises the customer's balance by exactly its total through
    the single recompute path. Cash and UCB sales are recorded for reporting
    and leave the balance untouched. ``customer_id=None`` records a walk-in
    guest, which is only allowed for immediate-settlement payment types.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale request.

    Returns:
        data_manager.TransactionRow: Newly appended sale transaction.

    Raises:
        ValidationError: If the cart is empty, a line is malformed, the
            payment type is unsupported, or a Baki sale has no customer.
        NotFoundError: If ``command.customer_id`` is unknown.
    """
    if not isinstance(command.payment_type, PaymentType):
        log.error("Unsupported payment type provided: %s", command.payment_type)
        raise ValidationError(f"Unsupported payment type: {command.payment_type}")
    if command.payment_type is PaymentType.BAKI and command.customer_id is None:
        log.error("Baki sale attempted without a customer")
        raise ValidationError("A customer is required for Baki transactions")
    if not command.items:
        raise ValidationError("A sale needs at least one line item")
    for line in command.items:
        if not line.item_name.strip():
            raise ValidationError("Line items need a name")
        require_positive_quantity(line.quantity)
        require_nonnegative_money(line.price)
    if command.customer_id is not None:
        _fresh_customer(context, command.customer_id)

    timestamp = _resolve_now(command.timestamp)
    transaction = _append_and_reconcile(
        context, build_sale_transaction(command, timestamp=timestamp)
    )
    log.info(
        "Recorded sale #%s for customer %s (total=%s, payment=%s)",
        transaction.transaction_id,
        command.customer_id if command.customer_id is not None else "guest",
        transaction.total_amount,
        transaction.payment_type,
    )
    return transaction


def record_payment(context: RuntimeContext, command: PaymentCommand) -> data_manager.TransactionRow:
    """Append a ``payment`` that settles part or all of a customer's baki.

    The outstanding balance is derived from the log immediately before the
    write, and payments above it are refused, so a payment lowers the
    balance by exactly ``amount`` and never below zero.

    Raises:
        ValidationError: If the amount is not positive, has more than two
            decimals, or the payment type is ``Baki``.
        OverpaymentError: If ``amount`` exceeds the outstanding balance.
        NotFoundError: If the customer is unknown.
    """
    require_positive_money(command.amount)
    if not isinstance(command.payment_type, PaymentType) or command.payment_type is PaymentType.BAKI:
        log.error("Unsupported payment method provided: %s", command.payment_type)
        raise ValidationError(f"Payments must be received in Cash or UCB, not {command.payment_type}")
    customer = _fresh_customer(context, command.customer_id)
    outstanding = compute_balance(
        data_manager.iter_transactions(context.workbook, customer_id=command.customer_id)
    )
    if command.amount > outstanding:
        log.error(
            "Payment of %s exceeds outstanding balance %s for customer '%s'",
            command.amount,
            outstanding,
            customer.uid,
        )
        raise OverpaymentError(
            f"Payment {command.amount} exceeds outstanding balance {outstanding}"
        )

    timestamp = _resolve_now(command.timestamp)
    transaction = _append_and_reconcile(
        context, build_payment_transaction(command, timestamp=timestamp)
    )
    log.info(
        "Recorded payment #%s from customer '%s' (amount=%s, method=%s)",
        transaction.transaction_id,
        customer.uid,
        command.amount,
        command.payment_type.value,
    )
    return transaction


def record_fund_charge(context: RuntimeContext, command: FundChargeCommand) -> data_manager.TransactionRow:
    """Charge a fund line to a customer's baki.

    Funds default to their standard amount (Unit Fund 100, Car Wash 50);
    ``Others`` has no standard amount and must be given one.
    """
    if not command.kind.is_fund:
        raise ValidationError(f"{command.kind.value} is not a fund")
    amount = command.amount if command.amount is not None else FUND_DEFAULT_AMOUNTS[command.kind]
    require_positive_money(amount)
    sale = SaleCommand(
        customer_id=command.customer_id,
        items=[SaleLine(item_name=FUND_ITEM_NAMES[command.kind], price=amount, kind=command.kind)],
        payment_type=PaymentType.BAKI,
        timestamp=command.timestamp,
        note=command.note,
    )
    return record_sale(context, sale)


def record_demand_approval(
    context: RuntimeContext,
    demand_id: int,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Fulfil a pending demand as one unit.

    Every lookup happens before the first write, so a missing item or a
    demand that is no longer pending leaves the workbook untouched. The
    writes then happen in a fixed order: Baki sale at the item's current
    price, stock decrement floored at zero, status flip to ``fulfilled``.

    Returns:
        data_manager.TransactionRow: The sale recorded for the demand.

    Raises:
        NotFoundError: If the demand, its item, or its customer is gone.
        ConflictError: If the demand is already fulfilled or cancelled.
    """
    demand = get_demand(context, demand_id)
    _require_pending(demand)
    item = _fresh_inventory_item(context, demand.item_id)
    _fresh_customer(context, demand.customer_id)

    command = SaleCommand(
        customer_id=demand.customer_id,
        items=[SaleLine(item_name=item.item_name, price=item.price, quantity=1, item_id=item.item_id)],
        payment_type=PaymentType.BAKI,
        timestamp=timestamp,
        note=f"Approved Pre-order: {item.item_name}",
    )
    transaction = _append_and_reconcile(
        context, build_sale_transaction(command, timestamp=_resolve_now(timestamp))
    )

    if item.stock_quantity <= 0:
        log.warning("Approving demand #%s for '%s' with no stock left", demand_id, item.item_name)
    data_manager.update_inventory_item(
        context.workbook,
        item.item_id,
        field_values={"StockQuantity": max(0, item.stock_quantity - 1)},
    )
    data_manager.update_demand_status(context.workbook, demand_id, DemandStatus.FULFILLED.value)
    _invalidate_cache(context, "inventory")
    log.info(
        "Fulfilled demand #%s: sale #%s for '%s' at %s",
        demand_id,
        transaction.transaction_id,
        item.item_name,
        item.price,
    )
    return transaction


# ---------------------------------------------------------------------------
# Demand state machine
# ---------------------------------------------------------------------------


def _require_pending(demand: data_manager.DemandRow) -> None:
    if DemandStatus(demand.status).is_terminal:
        log.error("Demand #%s is already %s", demand.demand_id, demand.status)
        raise ConflictError(f"Demand #{demand.demand_id} is already {demand.status}")


def place_demand(
    context: RuntimeContext,
    customer_id: int,
    item_id: int,
    *,
    now: Optional[datetime] = None,
) -> data_manager.DemandRow:
    """Submit a pre-order while the ordering window is open.

    Only items on the daily menu in effect on the day of ``now`` can be
    ordered. Stock is not reserved here; it is only checked and decremented
    on approval.

    Raises:
        OrderingClosedError: Outside the ordering window. Nothing is written.
        NotFoundError: If the customer or item is unknown.
        ValidationError: If the item is not on the menu.
    """
    moment = _resolve_now(now)
    window = context.ordering_window
    if not window.is_open(moment):
        log.warning("Pre-order rejected at %s: ordering window closed", moment.strftime("%H:%M"))
        raise OrderingClosedError(
            f"Ordering is closed; it reopens at {window.open_hour:02d}:00"
        )
    customer = _fresh_customer(context, customer_id)
    item = _fresh_inventory_item(context, item_id)
    if item_id not in get_daily_menu(context, on_date=moment.date()):
        log.warning("Pre-order rejected: '%s' is not on the menu for %s", item.item_name, moment.date())
        raise ValidationError(f"{item.item_name} is not on today's menu")

    record = data_manager.DemandRow(
        demand_id=None,
        customer_id=customer_id,
        customer_name=customer.name,
        item_id=item_id,
        item_name=item.item_name,
        timestamp_ms=reporting.to_epoch_ms(moment),
        status=DemandStatus.PENDING.value,
    )
    demand_id = data_manager.append_demand(context.workbook, record)
    log.info("Placed demand #%s: customer '%s' wants '%s'", demand_id, customer.uid, item.item_name)
    return replace(record, demand_id=demand_id)


def approve_demand(
    context: RuntimeContext,
    demand_id: int,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Admin approval: ``pending -> fulfilled`` with its ledger side effects."""
    return record_demand_approval(context, demand_id, timestamp=timestamp)


def cancel_demand(context: RuntimeContext, demand_id: int) -> data_manager.DemandRow:
    """Reject or revoke a pending demand. No ledger side effects.

    Raises:
        NotFoundError: If the demand is unknown.
        ConflictError: If the demand already reached a terminal state.
    """
    demand = get_demand(context, demand_id)
    _require_pending(demand)
    data_manager.update_demand_status(context.workbook, demand_id, DemandStatus.CANCELLED.value)
    log.info("Cancelled demand #%s ('%s')", demand_id, demand.item_name)
    return replace(demand, status=DemandStatus.CANCELLED.value)


def expire_pending_demands(
    context: RuntimeContext,
    customer_id: int,
    *,
    now: Optional[datetime] = None,
) -> List[data_manager.DemandRow]:
    """Cancel a customer's stale pending demands outside the ordering window.

    Returns:
        list[data_manager.DemandRow]: The demands that were cancelled; empty
            while the window is open.
    """
    moment = _resolve_now(now)
    if not context.ordering_window.is_auto_expire(moment):
        return []
    expired = []
    for demand in list_demands(context, customer_id=customer_id, status=DemandStatus.PENDING):
        data_manager.update_demand_status(
            context.workbook, demand.demand_id, DemandStatus.CANCELLED.value
        )
        expired.append(replace(demand, status=DemandStatus.CANCELLED.value))
    if expired:
        log.info("Expired %d pending demand(s) for customer %s", len(expired), customer_id)
    return expired


def view_statement(
    context: RuntimeContext,
    uid: str,
    *,
    now: Optional[datetime] = None,
) -> reporting.StatementView:
    """Assemble a member's statement page.

    Stale demands are expired first and the demand list is read again
    afterwards, so the view never shows a pre-expiry ``pending`` row.
    """
    moment = _resolve_now(now)
    customer = data_manager.find_customer(context.workbook, uid=uid)
    if customer is None:
        log.warning("Statement requested for unknown uid '%s'", uid)
        raise NotFoundError(f"Unknown customer: {uid}")

    expire_pending_demands(context, customer.customer_id, now=moment)
    demands = sorted(
        data_manager.iter_demands(context.workbook, customer_id=customer.customer_id),
        key=lambda demand: demand.timestamp_ms,
        reverse=True,
    )
    transactions = list(
        data_manager.iter_transactions(context.workbook, customer_id=customer.customer_id)
    )
    inventory = list(data_manager.iter_inventory(context.workbook))
    statement = reporting.build_monthly_statement(customer, transactions, inventory, now=moment)

    return reporting.StatementView(
        customer=customer,
        statement=statement,
        demands=tuple(demands),
        history=tuple(sorted(transactions, key=lambda t: t.timestamp_ms, reverse=True)),
        daily_menu_items=tuple(get_daily_menu_items(context, on_date=moment.date())),
        ordering_open=context.ordering_window.is_open(moment),
    )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def generate_master_report(
    context: RuntimeContext,
    *,
    month: int,
    year: int,
    unit_fund: Decimal = Decimal("0"),
    car_wash: Decimal = Decimal("0"),
) -> reporting.MasterReport:
    """Build the fleet-wide report for ``month``/``year`` from the workbook."""
    start_ms, end_ms = reporting.month_bounds(year, month)
    report = reporting.build_master_report(
        list_customers(context),
        data_manager.iter_transactions(context.workbook, start_ms=start_ms, end_ms=end_ms),
        list_inventory(context),
        month=month,
        year=year,
        unit_fund=unit_fund,
        car_wash=car_wash,
    )
    log.info("Generated master report for %04d-%02d (%d rows)", year, month, len(report.rows))
    return report


def generate_monthly_summary(context: RuntimeContext, *, month: int, year: int) -> reporting.MonthlySummary:
    return reporting.build_monthly_summary(list_transactions(context), month=month, year=year)


def generate_dashboard_stats(
    context: RuntimeContext,
    *,
    now: Optional[datetime] = None,
) -> reporting.DashboardStats:
    return reporting.build_dashboard_stats(
        list_customers(context), list_transactions(context), now=_resolve_now(now)
    )


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


def _require_text(value: str, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required")
    return cleaned


def add_customer(
    context: RuntimeContext,
    *,
    uid: str,
    name: str,
    phone: str = "",
    email: str = "",
) -> data_manager.CustomerRow:
    """Register a new member with a zero balance.

    Raises:
        ValidationError: If ``uid`` or ``name`` is blank.
        ConflictError: If another member already uses ``uid``.
    """
    uid = _require_text(uid, "Member uid")
    name = _require_text(name, "Member name")
    if data_manager.find_customer(context.workbook, uid=uid) is not None:
        log.error("Member uid '%s' already exists", uid)
        raise ConflictError(f"Member uid already exists: {uid}")

    record = data_manager.CustomerRow(
        customer_id=None,
        uid=uid,
        name=name,
        phone=phone.strip(),
        email=email.strip(),
        total_baki=Decimal("0"),
    )
    customer_id = data_manager.upsert_customer(context.workbook, record)
    _invalidate_cache(context, "customers")
    log.info("Added member '%s' (%s) as #%s", uid, name, customer_id)
    return replace(record, customer_id=customer_id)


def update_customer(
    context: RuntimeContext,
    customer_id: int,
    *,
    uid: Optional[str] = None,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Edit a member's contact details. The balance is not editable."""
    customer = _fresh_customer(context, customer_id)
    changes: Dict[str, Any] = {}
    if uid is not None and uid.strip() != customer.uid:
        uid = _require_text(uid, "Member uid")
        clash = data_manager.find_customer(context.workbook, uid=uid)
        if clash is not None:
            raise ConflictError(f"Member uid already exists: {uid}")
        changes["UID"] = uid
    if name is not None:
        changes["Name"] = _require_text(name, "Member name")
    if phone is not None:
        changes["Phone"] = phone.strip()
    if email is not None:
        changes["Email"] = email.strip()
    if changes:
        data_manager.update_customer(context.workbook, customer_id, field_values=changes)
        _invalidate_cache(context, "customers")
        log.info("Updated member #%s: %s", customer_id, ", ".join(sorted(changes)))
    return _fresh_customer(context, customer_id)


def upsert_customers(context: RuntimeContext, records: Iterable[Mapping[str, Any]]) -> int:
    """Insert or update members keyed on ``uid``.

    ``records`` are already-parsed member mappings with ``uid``, ``name``,
    ``phone`` and ``email`` keys. Rows with a blank uid are skipped. The
    whole batch is checked before anything is written.

    Returns:
        int: Number of members inserted or updated.

    Raises:
        ConflictError: If the batch names the same uid twice.
    """
    batch: List[data_manager.CustomerRow] = []
    seen: set[str] = set()
    for record in records:
        uid = str(record.get("uid") or "").strip()
        if not uid:
            log.warning("Skipping member record without uid: %r", dict(record))
            continue
        if uid in seen:
            raise ConflictError(f"Duplicate uid in member batch: {uid}")
        seen.add(uid)
        batch.append(
            data_manager.CustomerRow(
                customer_id=None,
                uid=uid,
                name=str(record.get("name") or "Unknown").strip(),
                phone=str(record.get("phone") or "").strip(),
                email=str(record.get("email") or "").strip(),
                total_baki=Decimal("0"),
            )
        )

    for row in batch:
        data_manager.upsert_customer(context.workbook, row)
    _invalidate_cache(context, "customers")
    log.info("Upserted %d member(s)", len(batch))
    return len(batch)


def delete_customer(context: RuntimeContext, customer_id: int) -> None:
    """Purge a member.

    Pending demands are cancelled. Their transactions stay in the
    append-only log but no longer belong to any member row.
    """
    customer = _fresh_customer(context, customer_id)
    for demand in list_demands(context, customer_id=customer_id, status=DemandStatus.PENDING):
        data_manager.update_demand_status(
            context.workbook, demand.demand_id, DemandStatus.CANCELLED.value
        )
    data_manager.delete_customer(context.workbook, customer_id)
    _invalidate_cache(context, "customers")
    log.warning("Purged member '%s' (#%s)", customer.uid, customer_id)


# ---------------------------------------------------------------------------
# Inventory and daily menu
# ---------------------------------------------------------------------------


def add_inventory_item(
    context: RuntimeContext,
    *,
    item_name: str,
    price: Decimal,
    stock_quantity: int = 0,
    category: str = "General",
    image_url: Optional[str] = None,
) -> data_manager.InventoryRow:
    """Add a sellable item to the inventory."""
    item_name = _require_text(item_name, "Item name")
    require_nonnegative_money(price)
    if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0:
        raise ValidationError("Stock quantity must be a whole number of at least zero")

    record = data_manager.InventoryRow(
        item_id=None,
        item_name=item_name,
        price=price,
        stock_quantity=stock_quantity,
        category=category,
        image_url=image_url,
    )
    item_id = data_manager.upsert_inventory_item(context.workbook, record)
    _invalidate_cache(context, "inventory")
    log.info("Added inventory item '%s' as #%s (price=%s)", item_name, item_id, price)
    return replace(record, item_id=item_id)


def update_inventory_item(
    context: RuntimeContext,
    item_id: int,
    *,
    item_name: Optional[str] = None,
    price: Optional[Decimal] = None,
    stock_quantity: Optional[int] = None,
    category: Optional[str] = None,
    image_url: Optional[str] = None,
) -> data_manager.InventoryRow:
    """Edit an inventory item. Past transactions keep their frozen prices."""
    item = _fresh_inventory_item(context, item_id)
    if price is not None:
        require_nonnegative_money(price)
    if stock_quantity is not None and (
        isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0
    ):
        raise ValidationError("Stock quantity must be a whole number of at least zero")
    updated = replace(
        item,
        item_name=_require_text(item_name, "Item name") if item_name is not None else item.item_name,
        price=price if price is not None else item.price,
        stock_quantity=stock_quantity if stock_quantity is not None else item.stock_quantity,
        category=category if category is not None else item.category,
        image_url=image_url if image_url is not None else item.image_url,
    )
    data_manager.upsert_inventory_item(context.workbook, updated)
    _invalidate_cache(context, "inventory")
    log.info("Updated inventory item #%s", item_id)
    return updated


def delete_inventory_item(context: RuntimeContext, item_id: int) -> None:
    item = _fresh_inventory_item(context, item_id)
    data_manager.delete_inventory_item(context.workbook, item_id)
    _invalidate_cache(context, "inventory")
    log.info("Deleted inventory item '%s' (#%s)", item.item_name, item_id)


def set_daily_menu(
    context: RuntimeContext,
    item_ids: Iterable[int],
    *,
    effective_date: Optional[date] = None,
) -> data_manager.DailyMenuRow:
    """Publish the set of items open for pre-order from ``effective_date`` on."""
    ids = tuple(dict.fromkeys(item_ids))
    for item_id in ids:
        get_inventory_item(context, item_id)
    record = data_manager.DailyMenuRow(
        effective_date=effective_date or _resolve_now(None).date(),
        item_ids=ids,
    )
    data_manager.upsert_daily_menu(context.workbook, record)
    log.info("Daily menu for %s set to %s", record.effective_date, list(ids))
    return record


def get_daily_menu(context: RuntimeContext, *, on_date: Optional[date] = None) -> tuple[int, ...]:
    """Return the item ids of the menu in effect on ``on_date``."""
    on_date = on_date or _resolve_now(None).date()
    current: Optional[data_manager.DailyMenuRow] = None
    for menu in data_manager.iter_daily_menus(context.workbook):
        if menu.effective_date <= on_date and (current is None or menu.effective_date > current.effective_date):
            current = menu
    return current.item_ids if current is not None else ()


def get_daily_menu_items(
    context: RuntimeContext,
    *,
    on_date: Optional[date] = None,
) -> List[data_manager.InventoryRow]:
    """Return the inventory rows on the menu, skipping deleted items."""
    ids = set(get_daily_menu(context, on_date=on_date))
    return [item for item in list_inventory(context) if item.item_id in ids]


def toggle_daily_menu_item(
    context: RuntimeContext,
    item_id: int,
    *,
    on_date: Optional[date] = None,
) -> data_manager.DailyMenuRow:
    """Add ``item_id`` to today's menu, or remove it if already present."""
    on_date = on_date or _resolve_now(None).date()
    current = get_daily_menu(context, on_date=on_date)
    if item_id in current:
        updated = tuple(existing for existing in current if existing != item_id)
    else:
        updated = (*current, item_id)
    return set_daily_menu(context, updated, effective_date=on_date)
