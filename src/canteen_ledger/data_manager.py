"""Data access layer for the canteen ledger.

This module provides low-level helpers that read from and write to the ledger
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records, appending rows, and
   updating or deleting individual rows keyed by their identifier.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_ORDER_CLOSE_HOUR,
    DEFAULT_ORDER_OPEN_HOUR,
    LineItemKind,
    SheetName,
    kind_for_item_name,
)


CONFIG_FILE_NAME = "config.ini"
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
INVENTORY_SHEET = SheetName.INVENTORY.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
TRANSACTION_ITEMS_SHEET = SheetName.TRANSACTION_ITEMS.value
DEMANDS_SHEET = SheetName.DEMANDS.value
DAILY_MENU_SHEET = SheetName.DAILY_MENU.value
SETTINGS_SHEET = SheetName.SETTINGS.value
NEXT_ID_SETTING_PREFIX = "nextId:"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    canteen_name: str
    schema_version: str
    order_open_hour: int = DEFAULT_ORDER_OPEN_HOUR
    order_close_hour: int = DEFAULT_ORDER_CLOSE_HOUR
    manager_name: str = ""
    manager_phone: str = ""


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: Optional[int]
    uid: str
    name: str
    phone: str
    email: str
    total_baki: Decimal


@dataclass(frozen=True)
class InventoryRow:
    """In-memory view of a row from the ``Inventory`` sheet."""

    item_id: Optional[int]
    item_name: str
    price: Decimal
    stock_quantity: int
    category: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class TransactionItemRow:
    """One line of a transaction with its frozen historical price."""

    item_id: Optional[int]
    item_name: str
    price: Decimal
    quantity: int
    kind: LineItemKind = LineItemKind.PRODUCT

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class TransactionRow:
    """A ``Transactions`` row joined with its ``TransactionItems`` lines."""

    transaction_id: Optional[int]
    customer_id: Optional[int]
    items: tuple[TransactionItemRow, ...]
    total_amount: Decimal
    payment_type: str
    timestamp_ms: int
    transaction_type: str
    note: Optional[str] = None


@dataclass(frozen=True)
class DemandRow:
    """In-memory view of a row from the ``Demands`` sheet."""

    demand_id: Optional[int]
    customer_id: int
    customer_name: str
    item_id: int
    item_name: str
    timestamp_ms: int
    status: str


@dataclass(frozen=True)
class DailyMenuRow:
    """The set of inventory ids open for ordering from ``effective_date`` on."""

    effective_date: date
    item_ids: tuple[int, ...]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Required entries are validated later by
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` is mandatory. The ``[Ordering]`` section carries the hour
    boundaries of the pre-order window and ``[Branding]`` the manager contact
    shown on statements; both fall back to defaults when absent. Relative
    ``DataFile`` paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If an ordering hour is not an integer in ``0..23``.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        canteen_name = parser.get("System", "CanteenName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    open_hour = parser.getint("Ordering", "OrderOpenHour", fallback=DEFAULT_ORDER_OPEN_HOUR)
    close_hour = parser.getint("Ordering", "OrderCloseHour", fallback=DEFAULT_ORDER_CLOSE_HOUR)
    for label, hour in (("OrderOpenHour", open_hour), ("OrderCloseHour", close_hour)):
        if not 0 <= hour <= 23:
            raise ValueError(f"{label} must be between 0 and 23, got {hour}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        canteen_name=canteen_name,
        schema_version=schema_version,
        order_open_hour=open_hour,
        order_close_hour=close_hour,
        manager_name=parser.get("Branding", "ManagerName", fallback=""),
        manager_phone=parser.get("Branding", "ManagerPhone", fallback=""),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ledger ``.xlsx`` file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _header_map(workbook: Workbook, sheet_name: str) -> dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: object) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (object): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def next_id(workbook: Workbook, sheet_name: str, key_column: str) -> int:
    """Allocate the next integer identifier for ``sheet_name``.

    A high-water mark is kept on the ``Settings`` sheet under
    ``nextId:<sheet>``. It never goes down, so an id freed by deleting the
    last row is not handed out again while transactions or demands still
    reference it. Workbooks without the mark fall back to
    ``max(existing) + 1``.
    """

    header_map = _header_map(workbook, sheet_name)
    col = header_map[key_column] - 1
    highest = 0
    for raw in _iter_raw_rows(workbook, sheet_name):
        value = raw[col]
        if value is not None:
            highest = max(highest, int(value))

    mark_key = f"{NEXT_ID_SETTING_PREFIX}{sheet_name}"
    allocated = max(highest + 1, int(read_setting(workbook, mark_key, 1)))
    upsert_setting(workbook, mark_key, allocated + 1)
    return allocated


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: object,
    field_values: dict[str, Any],
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    header_map = _header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: object) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_int(raw: object) -> Optional[int]:
    return int(raw) if raw is not None and raw != "" else None


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over customer records stored on the ``Customers`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the ``Customers`` sheet.

    Yields:
        CustomerRow: One structured row per non-empty worksheet row.
    """

    for raw in _iter_raw_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def find_customer(
    workbook: Workbook,
    *,
    customer_id: Optional[int] = None,
    uid: Optional[str] = None,
) -> Optional[CustomerRow]:
    """Return the customer matching ``customer_id`` or ``uid``, if any."""

    if customer_id is None and uid is None:
        raise ValueError("Either customer_id or uid is required")
    for customer in iter_customers(workbook):
        if customer_id is not None and customer.customer_id == customer_id:
            return customer
        if uid is not None and customer.uid == uid:
            return customer
    return None


def upsert_customer(workbook: Workbook, record: CustomerRow) -> int:
    """Insert a customer or update the existing row that shares its ``uid``.

    Updates only touch the contact columns; ``CustomerID`` and the
    materialized ``TotalBaki`` are left as stored. Inserts allocate a new id
    and start the balance at ``record.total_baki``.

    Args:
        workbook (Workbook): Workbook containing the customers sheet.
        record (CustomerRow): Customer data keyed by ``uid``.

    Returns:
        int: Identifier of the inserted or updated row.
    """

    existing = find_customer(workbook, uid=record.uid)
    if existing is not None:
        _update_row(
            workbook,
            CUSTOMERS_SHEET,
            "UID",
            record.uid,
            {"Name": record.name, "Phone": record.phone, "Email": record.email},
        )
        return int(existing.customer_id)

    customer_id = next_id(workbook, CUSTOMERS_SHEET, "CustomerID")
    workbook[CUSTOMERS_SHEET].append(serialize_customer(replace(record, customer_id=customer_id)))
    return customer_id


def update_customer(workbook: Workbook, customer_id: int, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing customer.

    Raises:
        KeyError: If the customer or any referenced column cannot be found.
    """

    _update_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id, field_values)


def delete_customer(workbook: Workbook, customer_id: int) -> None:
    """Remove a customer row. Related rows are left to the caller."""

    _delete_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id)


def serialize_customer(record: CustomerRow) -> list[object]:
    return [record.customer_id, record.uid, record.name, record.phone, record.email, record.total_baki]


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    """Convert a raw worksheet row into a strongly typed customer record.

    The ``UID`` column is coerced to ``str`` because Excel happily turns
    numeric member ids into integers.
    """

    customer_id, uid, name, phone, email, total_baki = raw_row[:6]
    return CustomerRow(
        customer_id=_to_optional_int(customer_id),
        uid=_to_text(uid),
        name=_to_text(name),
        phone=_to_text(phone),
        email=_to_text(email),
        total_baki=_to_decimal(total_baki),
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def iter_inventory(workbook: Workbook) -> Iterable[InventoryRow]:
    """Iterate over the ``Inventory`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, INVENTORY_SHEET):
        yield deserialize_inventory_item(raw)


def upsert_inventory_item(workbook: Workbook, record: InventoryRow) -> int:
    """Insert a new inventory item or overwrite the row with the same id.

    Args:
        workbook (Workbook): Workbook containing the inventory sheet.
        record (InventoryRow): Item data. ``item_id=None`` requests an insert.

    Returns:
        int: Identifier of the written row.

    Raises:
        KeyError: If ``record.item_id`` is set but no such row exists.
    """

    if record.item_id is None:
        item_id = next_id(workbook, INVENTORY_SHEET, "ItemID")
        workbook[INVENTORY_SHEET].append(serialize_inventory_item(replace(record, item_id=item_id)))
        return item_id

    _update_row(
        workbook,
        INVENTORY_SHEET,
        "ItemID",
        record.item_id,
        {
            "ItemName": record.item_name,
            "Price": record.price,
            "StockQuantity": record.stock_quantity,
            "Category": record.category,
            "ImageURL": record.image_url,
        },
    )
    return record.item_id


def update_inventory_item(workbook: Workbook, item_id: int, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing inventory item."""

    _update_row(workbook, INVENTORY_SHEET, "ItemID", item_id, field_values)


def delete_inventory_item(workbook: Workbook, item_id: int) -> None:
    _delete_row(workbook, INVENTORY_SHEET, "ItemID", item_id)


def serialize_inventory_item(record: InventoryRow) -> list[object]:
    return [
        record.item_id,
        record.item_name,
        record.price,
        record.stock_quantity,
        record.category,
        record.image_url,
    ]


def deserialize_inventory_item(raw_row: Sequence[object]) -> InventoryRow:
    item_id, item_name, price, stock_quantity, category, image_url = raw_row[:6]
    return InventoryRow(
        item_id=_to_optional_int(item_id),
        item_name=_to_text(item_name),
        price=_to_decimal(price),
        stock_quantity=int(stock_quantity or 0),
        category=_to_text(category),
        image_url=(str(image_url) if image_url else None),
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def iter_transactions(
    workbook: Workbook,
    *,
    customer_id: Optional[int] = None,
    start_ms: Optional[int] = None,
    end_ms: Optional[int] = None,
) -> Iterable[TransactionRow]:
    """Stream transactions joined with their line items.

    Line items live on their own sheet and are grouped by ``TransactionID``
    before the header rows are walked, so each yielded
    :class:`TransactionRow` carries its complete ``items`` tuple.

    Args:
        workbook (Workbook): Workbook containing both transaction sheets.
        customer_id (int | None): Only yield transactions for this customer.
        start_ms (int | None): Inclusive lower bound on the epoch-millis
            timestamp.
        end_ms (int | None): Inclusive upper bound on the epoch-millis
            timestamp.

    Yields:
        TransactionRow: Normalized transactions in log order.
    """

    items_by_transaction: dict[int, list[TransactionItemRow]] = {}
    for raw in _iter_raw_rows(workbook, TRANSACTION_ITEMS_SHEET):
        transaction_id, item = deserialize_transaction_item(raw)
        items_by_transaction.setdefault(transaction_id, []).append(item)

    for raw in _iter_raw_rows(workbook, TRANSACTIONS_SHEET):
        transaction = deserialize_transaction(raw)
        if customer_id is not None and transaction.customer_id != customer_id:
            continue
        if start_ms is not None and transaction.timestamp_ms < start_ms:
            continue
        if end_ms is not None and transaction.timestamp_ms > end_ms:
            continue
        items = items_by_transaction.get(int(transaction.transaction_id), [])
        yield replace(transaction, items=tuple(items))


def append_transaction(workbook: Workbook, record: TransactionRow) -> int:
    """Append a transaction and its line items to the log.

    The header row goes to ``Transactions`` and one row per line goes to
    ``TransactionItems``. Numerical fields remain :class:`~decimal.Decimal`
    instances so Excel preserves precision when the workbook is saved.

    Args:
        workbook (Workbook): Workbook containing the transaction sheets.
        record (TransactionRow): Transaction to persist. ``transaction_id`` is
            ignored and allocated here.

    Returns:
        int: The allocated transaction identifier.
    """

    transaction_id = next_id(workbook, TRANSACTIONS_SHEET, "TransactionID")
    workbook[TRANSACTIONS_SHEET].append(
        serialize_transaction(replace(record, transaction_id=transaction_id))
    )
    items_sheet = workbook[TRANSACTION_ITEMS_SHEET]
    for item in record.items:
        items_sheet.append(serialize_transaction_item(transaction_id, item))
    return transaction_id


def serialize_transaction(record: TransactionRow) -> list[object]:
    return [
        record.transaction_id,
        record.customer_id,
        record.total_amount,
        record.payment_type,
        record.timestamp_ms,
        record.transaction_type,
        record.note,
    ]


def serialize_transaction_item(transaction_id: int, item: TransactionItemRow) -> list[object]:
    return [transaction_id, item.item_id, item.item_name, item.price, item.quantity, item.kind.value]


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a ``Transactions`` row into a record with no items attached."""

    (
        transaction_id,
        customer_id,
        total_amount,
        payment_type,
        timestamp,
        transaction_type,
        note,
    ) = raw_row[:7]
    return TransactionRow(
        transaction_id=_to_optional_int(transaction_id),
        customer_id=_to_optional_int(customer_id),
        items=(),
        total_amount=_to_decimal(total_amount),
        payment_type=_to_text(payment_type),
        timestamp_ms=int(timestamp or 0),
        transaction_type=_to_text(transaction_type),
        note=(str(note) if note is not None else None),
    )


def deserialize_transaction_item(raw_row: Sequence[object]) -> tuple[int, TransactionItemRow]:
    """Convert a ``TransactionItems`` row into ``(transaction_id, line)``.

    Rows written before the ``Kind`` column was filled are classified by
    their item name.
    """

    transaction_id, item_id, item_name, price, quantity, kind = raw_row[:6]
    name = _to_text(item_name)
    resolved_kind = LineItemKind(kind) if kind else kind_for_item_name(name)
    return int(transaction_id), TransactionItemRow(
        item_id=_to_optional_int(item_id),
        item_name=name,
        price=_to_decimal(price),
        quantity=int(quantity or 0),
        kind=resolved_kind,
    )


# ---------------------------------------------------------------------------
# Demands
# ---------------------------------------------------------------------------


def iter_demands(
    workbook: Workbook,
    *,
    customer_id: Optional[int] = None,
    status: Optional[str] = None,
) -> Iterable[DemandRow]:
    """Iterate over demands, optionally filtered by customer and status."""

    for raw in _iter_raw_rows(workbook, DEMANDS_SHEET):
        demand = deserialize_demand(raw)
        if customer_id is not None and demand.customer_id != customer_id:
            continue
        if status is not None and demand.status != status:
            continue
        yield demand


def append_demand(workbook: Workbook, record: DemandRow) -> int:
    """Append a demand and return its allocated identifier."""

    demand_id = next_id(workbook, DEMANDS_SHEET, "DemandID")
    workbook[DEMANDS_SHEET].append(serialize_demand(replace(record, demand_id=demand_id)))
    return demand_id


def update_demand_status(workbook: Workbook, demand_id: int, status: str) -> None:
    """Overwrite the ``Status`` cell of one demand.

    Raises:
        KeyError: If no demand has ``demand_id``.
    """

    _update_row(workbook, DEMANDS_SHEET, "DemandID", demand_id, {"Status": status})


def serialize_demand(record: DemandRow) -> list[object]:
    return [
        record.demand_id,
        record.customer_id,
        record.customer_name,
        record.item_id,
        record.item_name,
        record.timestamp_ms,
        record.status,
    ]


def deserialize_demand(raw_row: Sequence[object]) -> DemandRow:
    demand_id, customer_id, customer_name, item_id, item_name, timestamp, status = raw_row[:7]
    return DemandRow(
        demand_id=_to_optional_int(demand_id),
        customer_id=int(customer_id),
        customer_name=_to_text(customer_name),
        item_id=int(item_id),
        item_name=_to_text(item_name),
        timestamp_ms=int(timestamp or 0),
        status=_to_text(status),
    )


# ---------------------------------------------------------------------------
# Daily menu and settings
# ---------------------------------------------------------------------------


def iter_daily_menus(workbook: Workbook) -> Iterable[DailyMenuRow]:
    for raw in _iter_raw_rows(workbook, DAILY_MENU_SHEET):
        yield deserialize_daily_menu(raw)


def upsert_daily_menu(workbook: Workbook, record: DailyMenuRow) -> None:
    """Write the menu for ``record.effective_date``, replacing any existing one."""

    key = record.effective_date.isoformat()
    values = serialize_daily_menu(record)
    if locate_row(workbook, DAILY_MENU_SHEET, "EffectiveDate", key) is None:
        workbook[DAILY_MENU_SHEET].append(values)
    else:
        _update_row(workbook, DAILY_MENU_SHEET, "EffectiveDate", key, {"ItemIDs": values[1]})


def serialize_daily_menu(record: DailyMenuRow) -> list[object]:
    return [record.effective_date.isoformat(), ",".join(str(item_id) for item_id in record.item_ids)]


def deserialize_daily_menu(raw_row: Sequence[object]) -> DailyMenuRow:
    effective_date, item_ids = raw_row[:2]
    if isinstance(effective_date, date):
        # openpyxl may hand back a datetime if someone edited the cell by hand
        parsed = effective_date if type(effective_date) is date else effective_date.date()
    else:
        parsed = date.fromisoformat(str(effective_date))
    ids = tuple(int(part) for part in str(item_ids or "").split(",") if part.strip())
    return DailyMenuRow(effective_date=parsed, item_ids=ids)


def read_setting(workbook: Workbook, key: str, default: Any = None) -> Any:
    """Return the JSON-decoded value stored under ``key``."""

    for raw in _iter_raw_rows(workbook, SETTINGS_SHEET):
        if raw[0] == key:
            return json.loads(raw[1]) if raw[1] is not None else default
    return default


def upsert_setting(workbook: Workbook, key: str, value: Any) -> None:
    """Store ``value`` as JSON text under ``key``."""

    encoded = json.dumps(value)
    if locate_row(workbook, SETTINGS_SHEET, "Key", key) is None:
        workbook[SETTINGS_SHEET].append([key, encoded])
    else:
        _update_row(workbook, SETTINGS_SHEET, "Key", key, {"Value": encoded})
    log.debug("Stored setting '%s'", key)
