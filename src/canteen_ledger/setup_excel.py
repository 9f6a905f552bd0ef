"""Bootstrap an empty canteen ledger workbook.

Run it as ``canteen-setup-excel`` (or ``python -m canteen_ledger.setup_excel``)
next to a ``config.ini``; tests call :func:`create_master_workbook` directly.
"""

from __future__ import annotations

import argparse
import configparser
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import EXPECTED_SCHEMA_VERSION, SheetName

# Column order is the contract with data_manager's (de)serializers.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.CUSTOMERS.value: ["CustomerID", "UID", "Name", "Phone", "Email", "TotalBaki"],
    SheetName.INVENTORY.value: ["ItemID", "ItemName", "Price", "StockQuantity", "Category", "ImageURL"],
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "CustomerID",
        "TotalAmount",
        "PaymentType",
        "Timestamp",
        "TransactionType",
        "Note",
    ],
    SheetName.TRANSACTION_ITEMS.value: ["TransactionID", "ItemID", "ItemName", "Price", "Quantity", "Kind"],
    SheetName.DEMANDS.value: [
        "DemandID",
        "CustomerID",
        "CustomerName",
        "ItemID",
        "ItemName",
        "Timestamp",
        "Status",
    ],
    SheetName.DAILY_MENU.value: ["EffectiveDate", "ItemIDs"],
    SheetName.SETTINGS.value: ["Key", "Value"],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """The slice of ``config.ini`` the bootstrap needs."""

    data_file: Path
    canteen_name: str
    schema_version: str

    def seed_values(self) -> dict[str, Any]:
        """Settings rows written into a fresh workbook."""
        return {"canteenName": self.canteen_name, "schemaVersion": self.schema_version}


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` into :class:`SetupSettings`.

    ``DataFile`` is required; a relative path is resolved against the config
    file's directory. ``CanteenName`` and ``SchemaVersion`` fall back to
    defaults when missing.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        KeyError: If ``[System] DataFile`` is missing.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file = Path(data_file_raw)
    if not data_file.is_absolute():
        data_file = (config_path.parent / data_file).resolve()

    return SetupSettings(
        data_file=data_file,
        canteen_name=parser.get("System", "CanteenName", fallback="Canteen"),
        schema_version=parser.get("System", "SchemaVersion", fallback=EXPECTED_SCHEMA_VERSION),
    )


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    seed_settings: Optional[Mapping[str, Any]] = None,
    overwrite: bool = False,
) -> Path:
    """Write a workbook with one bold header row per ledger sheet.

    ``seed_settings`` entries are stored on the ``Settings`` sheet as JSON
    text, the same encoding ``data_manager.upsert_setting`` uses.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    # openpyxl always starts with a blank "Sheet".
    workbook.remove(workbook.active)

    header_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = header_font

    if seed_settings:
        settings_sheet = workbook[SheetName.SETTINGS.value]
        for key, value in seed_settings.items():
            settings_sheet.append([key, json.dumps(value)])

    workbook.save(destination)
    log.info("Created ledger workbook '%s' (%d sheets)", destination, len(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        seed_settings=settings.seed_values(),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="canteen-setup-excel",
        description="Create an empty canteen ledger workbook from config.ini",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace the workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Create the workbook named by the config; return a process exit code."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        log.error("%s", exc)
        print(f"[ERROR] {exc}\nRe-run with --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError, OSError) as exc:
        log.error("Workbook setup failed: %s", exc)
        print(f"[ERROR] {exc}")
        return 1

    print(f"[OK] Ledger workbook ready at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    sys.exit(main())
