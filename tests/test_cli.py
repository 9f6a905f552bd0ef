"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable

import pytest

from canteen_ledger import cli, core_logic
from canteen_ledger.constants import LineItemKind, PaymentType


WRITE_COMMANDS = {
    "add-customer",
    "update-customer",
    "delete-customer",
    "add-item",
    "update-item",
    "delete-item",
    "sale",
    "pay",
    "fund-charge",
    "place-demand",
    "approve-demand",
    "cancel-demand",
    "set-menu",
    "toggle-menu",
    "reconcile",
}

READ_COMMANDS = {
    "customers",
    "inventory",
    "demands",
    "history",
    "transaction",
    "statement",
    "master-report",
    "summary",
    "dashboard",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "canteen-cli"
    assert "canteen" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire both mutating and reporting commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.name == name


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS


def test_sale_command_parses_repeated_items():
    """The sale parser should collect every --item flag."""

    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(
        ["sale", "--customer-id", "3", "--item", "1:2", "--item", "4", "--payment-type", "Baki"]
    )
    assert args.command == "sale"
    assert args.customer_id == 3
    assert args.items == ["1:2", "4"]
    assert args.payment_type == "Baki"


def test_pay_command_rejects_baki_method():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    with pytest.raises(SystemExit):
        parser.parse_args(["pay", "--customer-id", "1", "--amount", "5", "--payment-type", "Baki"])


def test_fund_charge_command_only_offers_funds():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["fund-charge", "--customer-id", "1", "--kind", "car_wash"])
    assert args.amount is None
    with pytest.raises(SystemExit):
        parser.parse_args(["fund-charge", "--customer-id", "1", "--kind", "product"])


def test_set_menu_command_accepts_ids_and_date():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["set-menu", "1", "2", "--date", "2024-06-15"])
    assert args.item_ids == [1, 2]
    assert args.effective_date.isoformat() == "2024-06-15"


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_load_runtime_context_supports_defaults(monkeypatch, tmp_path):
    """load_runtime_context should resolve config.ini from the working directory."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[Dummy]\nkey=value\n")
    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_path
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.chdir(tmp_path)
    assert cli.load_runtime_context() is sentinel_context


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(runtime_context, command_table_entry):
    """dispatch_command should call the executor associated with the command."""

    command_name, spec = command_table_entry
    args = argparse.Namespace(command=command_name)
    result = cli.dispatch_command(runtime_context, args, {command_name: spec})
    assert result == 0
    assert spec.execute.__dict__["called"] is True


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    args = argparse.Namespace(command="unknown")
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, args, {})


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw, expected", [("7", (7, 1)), ("7:3", (7, 3))])
def test_parse_item_spec(raw, expected):
    assert cli.parse_item_spec(raw) == expected


def test_parse_item_spec_rejects_garbage():
    with pytest.raises(core_logic.ValidationError):
        cli.parse_item_spec("tea:two")


def test_translate_sale_prices_lines_from_inventory(seeded_context):
    """translate_sale should copy the current inventory name and price into each line."""

    ctx, tea = seeded_context.context, seeded_context.tea
    args = argparse.Namespace(
        customer_id=seeded_context.officer.customer_id,
        items=[f"{tea.item_id}:3"],
        payment_type="Baki",
        note=None,
    )

    command = cli.translate_sale(ctx, args)

    assert command.payment_type is PaymentType.BAKI
    [line] = command.items
    assert (line.item_id, line.item_name, line.price, line.quantity) == (tea.item_id, "Tea", Decimal("10"), 3)


def test_translate_pay_returns_payment_command():
    args = argparse.Namespace(customer_id=4, amount="12.50", payment_type="UCB", note="April")
    command = cli.translate_pay(args)
    assert command == core_logic.PaymentCommand(
        customer_id=4, amount=Decimal("12.50"), payment_type=PaymentType.UCB, note="April"
    )


def test_translate_fund_charge_keeps_default_amount():
    args = argparse.Namespace(customer_id=4, kind="unit_fund", amount=None, note=None)
    command = cli.translate_fund_charge(args)
    assert command.kind is LineItemKind.UNIT_FUND
    assert command.amount is None


def test_translate_item_changes_skips_unset_fields():
    args = argparse.Namespace(name=None, price="12", stock=None, category="Snacks", image_url=None)
    assert cli.translate_item_changes(args) == {"price": Decimal("12"), "category": "Snacks"}


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_sale_invokes_bll(runtime_context, monkeypatch, capsys):
    """run_sale should delegate to the business logic layer."""

    command = core_logic.SaleCommand(customer_id=None, items=[], payment_type=PaymentType.CASH)
    monkeypatch.setattr(cli, "translate_sale", lambda context, args: command)
    called = {}

    def fake_record(context, cmd):
        called["context"] = context
        called["cmd"] = cmd
        return core_logic.data_manager.TransactionRow(9, None, (), Decimal("30"), "Cash", 0, "sale")

    monkeypatch.setattr(cli.core_logic, "record_sale", fake_record)
    result = cli.run_sale(runtime_context, argparse.Namespace())
    assert result == 0
    assert called["context"] is runtime_context
    assert called["cmd"] is command
    assert "#9" in capsys.readouterr().out


def test_run_approve_demand_invokes_bll(runtime_context, monkeypatch):
    called = {}

    def fake_approve(context, demand_id):
        called["demand_id"] = demand_id
        return core_logic.data_manager.TransactionRow(1, 1, (), Decimal("10"), "Baki", 0, "sale")

    monkeypatch.setattr(cli.core_logic, "approve_demand", fake_approve)
    assert cli.run_approve_demand(runtime_context, argparse.Namespace(demand_id=5)) == 0
    assert called["demand_id"] == 5


def test_run_reconcile_reports_corrections(runtime_context, monkeypatch, capsys):
    monkeypatch.setattr(
        cli.core_logic,
        "reconcile_balances",
        lambda context: {2: (Decimal("10"), Decimal("0"))},
    )
    assert cli.run_reconcile(runtime_context, argparse.Namespace()) == 0
    out = capsys.readouterr().out
    assert "#2: 10 -> 0" in out
    assert "1 balance(s) corrected" in out


def test_run_statement_report_prints_breakdown(seeded_context, capsys):
    ctx, officer = seeded_context.context, seeded_context.officer
    core_logic.record_sale(
        ctx,
        core_logic.SaleCommand(
            officer.customer_id,
            [core_logic.SaleLine(item_name="Tea", price=Decimal("10"), quantity=3)],
            PaymentType.BAKI,
        ),
    )

    assert cli.run_statement_report(ctx, argparse.Namespace(uid=officer.uid)) == 0

    out = capsys.readouterr().out
    assert "Rahman Sir" in out
    assert "Tea" in out
    assert "Test Manager" in out


def test_run_transaction_report_prints_lines(seeded_context, capsys):
    ctx, officer = seeded_context.context, seeded_context.officer
    sale = core_logic.record_sale(
        ctx,
        core_logic.SaleCommand(
            officer.customer_id,
            [core_logic.SaleLine(item_name="Tea", price=Decimal("10"), quantity=3)],
            PaymentType.BAKI,
            note="Counter sale",
        ),
    )

    args = argparse.Namespace(transaction_id=sale.transaction_id)
    assert cli.run_transaction_report(ctx, args) == 0

    out = capsys.readouterr().out
    assert f"#{sale.transaction_id}" in out
    assert "Tea" in out
    assert "30" in out
    assert "Counter sale" in out

    with pytest.raises(core_logic.NotFoundError):
        cli.run_transaction_report(ctx, argparse.Namespace(transaction_id=99))


def test_run_master_report_prints_totals_row(seeded_context, capsys):
    ctx = seeded_context.context
    args = argparse.Namespace(month=6, year=2024, unit_fund="100", car_wash="0")
    assert cli.run_master_report(ctx, args) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[1].startswith("UID\tName")
    assert lines[-1].split("\t")[1] == "TOTAL"


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.ValidationError("invalid"), 2),
        (core_logic.OverpaymentError("too much"), 2),
        (core_logic.NotFoundError("missing"), 2),
        (core_logic.ConflictError("taken"), 2),
        (InvalidOperation("bad number"), 2),
        (FileNotFoundError("missing"), 3),
        (core_logic.TransientIOError("locked"), 4),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


def test_persist_workbook_saves_changes(runtime_context, monkeypatch):
    called = {}
    monkeypatch.setattr(cli.core_logic, "persist_context", lambda context: called.setdefault("context", context))
    cli.persist_workbook(runtime_context)
    assert called["context"] is runtime_context


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_persists_on_success(monkeypatch, runtime_context):
    """main should persist workbook changes when the command succeeds."""

    parser = _stub_parser(command="summary")
    command_table = {"summary": cli.CommandSpec("summary", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    persisted = {}
    monkeypatch.setattr(cli, "persist_workbook", lambda context: persisted.setdefault("context", context))

    assert cli.main(["summary"]) == 0
    assert persisted["context"] is runtime_context


def test_main_handles_bll_errors_without_persisting(monkeypatch, runtime_context):
    """main should surface business rule violations as non-zero exits."""

    parser = _stub_parser(command="pay")
    command_table = {"pay": cli.CommandSpec("pay", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.OverpaymentError("too much")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: (_ for _ in ()).throw(AssertionError("should not persist")))

    assert cli.main(["pay"]) == 2


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "customers"]) == 1


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "nope.ini"), "customers"]) == 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
