"""Command-line entry points for the canteen ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the results of read commands. Keeping the CLI thin lets
tests and any other front-end reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import DemandStatus, LineItemKind, PaymentType


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="canteen-cli",
        description="Command-line tools for the canteen ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and payments."""
    specs = {
        "add-customer": register_add_customer_command(subparsers),
        "update-customer": register_update_customer_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "add-item": register_add_item_command(subparsers),
        "update-item": register_update_item_command(subparsers),
        "delete-item": register_delete_item_command(subparsers),
        "sale": register_sale_command(subparsers),
        "pay": register_pay_command(subparsers),
        "fund-charge": register_fund_charge_command(subparsers),
        "place-demand": register_place_demand_command(subparsers),
        "approve-demand": register_approve_demand_command(subparsers),
        "cancel-demand": register_cancel_demand_command(subparsers),
        "set-menu": register_set_menu_command(subparsers),
        "toggle-menu": register_toggle_menu_command(subparsers),
        "reconcile": register_reconcile_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "customers": register_customers_command(subparsers),
        "inventory": register_inventory_command(subparsers),
        "demands": register_demands_command(subparsers),
        "history": register_history_command(subparsers),
        "transaction": register_transaction_command(subparsers),
        "statement": register_statement_command(subparsers),
        "master-report": register_master_report_command(subparsers),
        "summary": register_summary_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--uid", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")

    return _simple_spec("add-customer", "Register a new member.", run_add_customer, arguments)


def register_update_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)
        parser.add_argument("--uid", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--email", default=None)

    return _simple_spec("update-customer", "Edit a member's contact details.", run_update_customer, arguments)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)

    return _simple_spec("delete-customer", "Purge a member.", run_delete_customer, arguments)


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--category", default="General")
        parser.add_argument("--image-url", default=None)

    return _simple_spec("add-item", "Add an item to the inventory.", run_add_item, arguments)


def register_update_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-item``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--item-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--price", default=None)
        parser.add_argument("--stock", type=int, default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--image-url", default=None)

    return _simple_spec("update-item", "Edit an inventory item.", run_update_item, arguments)


def register_delete_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--item-id", type=int, required=True)

    return _simple_spec("delete-item", "Remove an inventory item.", run_delete_item, arguments)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--customer-id",
            type=int,
            default=None,
            help="Member to charge; omit for a walk-in guest.",
        )
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="ITEM_ID[:QTY]",
            help="Inventory item to sell, repeatable.",
        )
        parser.add_argument(
            "--payment-type",
            choices=[member.value for member in PaymentType],
            required=True,
        )
        parser.add_argument("--note", default=None)

    return _simple_spec("sale", "Record a sale at current inventory prices.", run_sale, arguments)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--payment-type",
            choices=[PaymentType.CASH.value, PaymentType.UCB.value],
            default=PaymentType.CASH.value,
        )
        parser.add_argument("--note", default=None)

    return _simple_spec("pay", "Record a payment against a member's baki.", run_pay, arguments)


def register_fund_charge_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``fund-charge``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)
        parser.add_argument(
            "--kind",
            choices=[kind.value for kind in LineItemKind if kind.is_fund],
            required=True,
        )
        parser.add_argument("--amount", default=None, help="Defaults to the fund's standard amount.")
        parser.add_argument("--note", default=None)

    return _simple_spec("fund-charge", "Charge a fund to a member's baki.", run_fund_charge, arguments)


def register_place_demand_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)
        parser.add_argument("--item-id", type=int, required=True)

    return _simple_spec("place-demand", "Place a pre-order for a member.", run_place_demand, arguments)


def register_approve_demand_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--demand-id", type=int, required=True)

    return _simple_spec(
        "approve-demand", "Fulfil a pending pre-order as a Baki sale.", run_approve_demand, arguments
    )


def register_cancel_demand_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--demand-id", type=int, required=True)

    return _simple_spec("cancel-demand", "Reject a pending pre-order.", run_cancel_demand, arguments)


def register_set_menu_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-menu``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("item_ids", type=int, nargs="*", metavar="ITEM_ID")
        parser.add_argument("--date", dest="effective_date", type=date.fromisoformat, default=None)

    return _simple_spec("set-menu", "Publish the items open for pre-order.", run_set_menu, arguments)


def register_toggle_menu_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--item-id", type=int, required=True)

    return _simple_spec("toggle-menu", "Add or remove an item on today's menu.", run_toggle_menu, arguments)


def register_reconcile_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    return _simple_spec("reconcile", "Recompute every balance from the log.", run_reconcile)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    return _simple_spec("customers", "List members and their balances.", run_customers_report)


def register_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    return _simple_spec("inventory", "List inventory items.", run_inventory_report)


def register_demands_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, default=None)
        parser.add_argument("--status", choices=[status.value for status in DemandStatus], default=None)

    return _simple_spec("demands", "List pre-orders.", run_demands_report, arguments)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", type=int, required=True)

    return _simple_spec("history", "Show a member's transactions, newest first.", run_history_report, arguments)


def register_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--transaction-id", type=int, required=True)

    return _simple_spec("transaction", "Show one transaction with its lines.", run_transaction_report, arguments)


def register_statement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--uid", required=True)

    return _simple_spec("statement", "Show a member's statement for this month.", run_statement_report, arguments)


def _month_arguments(parser: argparse.ArgumentParser) -> None:
    today = date.today()
    parser.add_argument("--month", type=int, default=today.month)
    parser.add_argument("--year", type=int, default=today.year)


def register_master_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``master-report``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _month_arguments(parser)
        parser.add_argument("--unit-fund", default="0", help="Flat unit fund added to every member.")
        parser.add_argument("--car-wash", default="0", help="Flat car wash fee added to every member.")

    return _simple_spec("master-report", "Show the monthly report for all members.", run_master_report, arguments)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    return _simple_spec("summary", "Show monthly sales and collections.", run_summary_report, _month_arguments)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    return _simple_spec("dashboard", "Show headline numbers and last week's sales.", run_dashboard_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Argument translation
# ---------------------------------------------------------------------------


def parse_item_spec(raw: str) -> tuple[int, int]:
    """Split ``"ITEM_ID[:QTY]"`` into ``(item_id, quantity)``."""
    item_part, _, quantity_part = raw.partition(":")
    try:
        item_id = int(item_part)
        quantity = int(quantity_part) if quantity_part else 1
    except ValueError as exc:
        raise core_logic.ValidationError(f"Invalid item spec '{raw}', expected ITEM_ID[:QTY]") from exc
    return item_id, quantity


def translate_sale(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command priced from the inventory."""
    lines: List[core_logic.SaleLine] = []
    for raw in args.items:
        item_id, quantity = parse_item_spec(raw)
        item = core_logic.get_inventory_item(context, item_id)
        lines.append(
            core_logic.SaleLine(
                item_name=item.item_name,
                price=item.price,
                quantity=quantity,
                item_id=item.item_id,
            )
        )
    return core_logic.SaleCommand(
        customer_id=args.customer_id,
        items=lines,
        payment_type=PaymentType(args.payment_type),
        note=args.note,
    )


def translate_pay(args: argparse.Namespace) -> core_logic.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return core_logic.PaymentCommand(
        customer_id=args.customer_id,
        amount=Decimal(args.amount),
        payment_type=PaymentType(args.payment_type),
        note=args.note,
    )


def translate_fund_charge(args: argparse.Namespace) -> core_logic.FundChargeCommand:
    """Translate CLI args into a fund charge command object."""
    return core_logic.FundChargeCommand(
        customer_id=args.customer_id,
        kind=LineItemKind(args.kind),
        amount=Decimal(args.amount) if args.amount is not None else None,
        note=args.note,
    )


def translate_item_changes(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into inventory keyword arguments, skipping unset ones."""
    changes = {
        "item_name": args.name,
        "price": Decimal(args.price) if args.price is not None else None,
        "stock_quantity": args.stock,
        "category": args.category,
        "image_url": args.image_url,
    }
    return {key: value for key, value in changes.items() if value is not None}


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.add_customer(
        context, uid=args.uid, name=args.name, phone=args.phone, email=args.email
    )
    print(f"Added member #{customer.customer_id} ({customer.uid})")
    return 0


def run_update_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_customer(
        context,
        args.customer_id,
        uid=args.uid,
        name=args.name,
        phone=args.phone,
        email=args.email,
    )
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_customer(context, args.customer_id)
    return 0


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    payload = translate_item_changes(args)
    item = core_logic.add_inventory_item(context, **payload)
    print(f"Added item #{item.item_id} ({item.item_name})")
    return 0


def run_update_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_inventory_item(context, args.item_id, **translate_item_changes(args))
    return 0


def run_delete_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_inventory_item(context, args.item_id)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    transaction = core_logic.record_sale(context, translate_sale(context, args))
    print(f"Recorded sale #{transaction.transaction_id} for {transaction.total_amount}")
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    transaction = core_logic.record_payment(context, translate_pay(args))
    print(f"Recorded payment #{transaction.transaction_id} of {transaction.total_amount}")
    return 0


def run_fund_charge(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = core_logic.record_fund_charge(context, translate_fund_charge(args))
    print(f"Charged {transaction.total_amount} as sale #{transaction.transaction_id}")
    return 0


def run_place_demand(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    demand = core_logic.place_demand(context, args.customer_id, args.item_id)
    print(f"Placed demand #{demand.demand_id} for {demand.item_name}")
    return 0


def run_approve_demand(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = core_logic.approve_demand(context, args.demand_id)
    print(f"Approved demand #{args.demand_id} as sale #{transaction.transaction_id}")
    return 0


def run_cancel_demand(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.cancel_demand(context, args.demand_id)
    return 0


def run_set_menu(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.set_daily_menu(context, args.item_ids, effective_date=args.effective_date)
    return 0


def run_toggle_menu(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    menu = core_logic.toggle_daily_menu_item(context, args.item_id)
    print(f"Menu for {menu.effective_date}: {', '.join(str(i) for i in menu.item_ids) or '(empty)'}")
    return 0


def run_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    corrections = core_logic.reconcile_balances(context)
    for customer_id, (stored, derived) in sorted(corrections.items()):
        print(f"#{customer_id}: {stored} -> {derived}")
    print(f"{len(corrections)} balance(s) corrected")
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for customer in core_logic.list_customers(context):
        print(f"#{customer.customer_id:<4} {customer.uid:<10} {customer.name:<30} {customer.total_baki:>10}")
    return 0


def run_inventory_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for item in core_logic.list_inventory(context):
        print(f"#{item.item_id:<4} {item.item_name:<30} {item.price:>8} stock={item.stock_quantity}")
    return 0


def run_demands_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    status = DemandStatus(args.status) if args.status else None
    for demand in core_logic.list_demands(context, customer_id=args.customer_id, status=status):
        print(f"#{demand.demand_id:<4} {demand.customer_name:<30} {demand.item_name:<20} {demand.status}")
    return 0


def _format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")


def run_history_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for transaction in core_logic.list_customer_history(context, args.customer_id):
        print(
            f"{_format_timestamp(transaction.timestamp_ms)} "
            f"{transaction.transaction_type:<8} {transaction.payment_type:<5} {transaction.total_amount:>10}"
        )
    return 0


def run_transaction_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = core_logic.get_transaction(context, args.transaction_id)
    customer = "guest" if transaction.customer_id is None else f"customer #{transaction.customer_id}"
    print(
        f"#{transaction.transaction_id} {_format_timestamp(transaction.timestamp_ms)} "
        f"{transaction.transaction_type} {transaction.payment_type} ({customer})"
    )
    for item in transaction.items:
        print(f"  {item.item_name:<24} {item.quantity:>4} x {item.price:>8} = {item.line_total:>10}")
    print(f"  {'Total':<39} {transaction.total_amount:>10}")
    if transaction.note:
        print(f"  {transaction.note}")
    return 0


def run_statement_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a member's statement for the current month."""
    view = core_logic.view_statement(context, args.uid)
    statement = view.statement
    print(f"{context.settings.canteen_name} - {statement.label}")
    print(f"{view.display_name} ({view.customer.uid})")
    for line in statement.lines:
        print(f"  {line.item_name:<24} {line.quantity:>4} x {line.rate:>8} = {line.total:>10}")
    print(f"  {'Canteen food':<39} {statement.canteen_food_total:>10}")
    print(f"  {'Unit Fund':<39} {statement.funds.unit_fund:>10}")
    print(f"  {'Car Wash':<39} {statement.funds.car_wash:>10}")
    print(f"  {'Others':<39} {statement.funds.others:>10}")
    print(f"  {'Paid this month':<39} {statement.monthly_payments:>10}")
    print(f"  {'Previous arrears':<39} {statement.previous_arrears:>10}")
    print(f"  {'Total due':<39} {statement.grand_total:>10}")
    pending = [demand for demand in view.demands if demand.status == DemandStatus.PENDING.value]
    if pending:
        print(f"Pending pre-orders: {', '.join(demand.item_name for demand in pending)}")
    if context.settings.manager_name:
        print(f"Manager: {context.settings.manager_name} {context.settings.manager_phone}".rstrip())
    return 0


def run_master_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the fleet-wide report for one month."""
    report = core_logic.generate_master_report(
        context,
        month=args.month,
        year=args.year,
        unit_fund=Decimal(args.unit_fund),
        car_wash=Decimal(args.car_wash),
    )
    print(f"{context.settings.canteen_name} - {report.label}")
    print("\t".join(["UID", "Name", *report.item_names, "Bill", "Paid", "Arrears", "Unit Fund", "Car Wash", "Total"]))
    for row in report.rows:
        cells = [row.uid, row.name, *(str(row.item_consumption[name]) for name in report.item_names)]
        cells += [str(row.canteen_bill), str(row.paid), str(row.arrears), str(row.unit_fund), str(row.car_wash), str(row.total)]
        print("\t".join(cells))
    totals = report.totals
    cells = ["", "TOTAL", *(str(totals.item_consumption[name]) for name in report.item_names)]
    cells += [str(totals.canteen_bill), str(totals.paid), str(totals.arrears), str(totals.unit_fund), str(totals.car_wash), str(totals.total)]
    print("\t".join(cells))
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = core_logic.generate_monthly_summary(context, month=args.month, year=args.year)
    print(summary.label)
    print(f"  Sales:         {summary.sales}")
    print(f"  Collections:   {summary.collections}")
    print(f"  Baki added:    {summary.baki_added}")
    print(f"  Cash received: {summary.cash_received}")
    print(f"  UCB received:  {summary.ucb_received}")
    print(f"  Transactions:  {summary.count}")
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    stats = core_logic.generate_dashboard_stats(context)
    print(f"Sales this month:       {stats.sales_this_month}")
    print(f"Collections this month: {stats.collections_this_month}")
    print(f"Outstanding baki:       {stats.outstanding_baki}")
    for day, amount in stats.daily_sales:
        print(f"  {day.isoformat()} {amount:>10}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.TransientIOError):
        log.error("%s", error)
        return 4
    if isinstance(error, (core_logic.LedgerError, InvalidOperation)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
