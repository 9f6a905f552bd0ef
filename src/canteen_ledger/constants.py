"""Enumerations shared across the canteen ledger modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), reporting and the CLI rely on a single source of truth for
critical identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Default ordering window: open from 20:00, through midnight, until 12:00.
DEFAULT_ORDER_OPEN_HOUR = 20
DEFAULT_ORDER_CLOSE_HOUR = 12


class PaymentType(str, Enum):
    """Enumerate supported payment mechanisms."""

    CASH = "Cash"
    UCB = "UCB"
    BAKI = "Baki"


class TransactionType(str, Enum):
    """Enumerate the canonical transaction types recorded in the ledger."""

    SALE = "sale"
    PAYMENT = "payment"


class DemandStatus(str, Enum):
    """Lifecycle states of a pre-order request."""

    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not DemandStatus.PENDING


class LineItemKind(str, Enum):
    """Discriminator attached to every transaction line at creation time."""

    PRODUCT = "product"
    UNIT_FUND = "unit_fund"
    CAR_WASH = "car_wash"
    OTHERS = "others"

    @property
    def is_fund(self) -> bool:
        return self is not LineItemKind.PRODUCT


# Display names of the fund lines; rows written without a kind are
# classified by these names.
FUND_ITEM_NAMES: dict[LineItemKind, str] = {
    LineItemKind.UNIT_FUND: "Unit Fund",
    LineItemKind.CAR_WASH: "Car Wash",
    LineItemKind.OTHERS: "Others",
}

FUND_DEFAULT_AMOUNTS: dict[LineItemKind, Decimal] = {
    LineItemKind.UNIT_FUND: Decimal("100"),
    LineItemKind.CAR_WASH: Decimal("50"),
    LineItemKind.OTHERS: Decimal("0"),
}


def kind_for_item_name(item_name: str) -> LineItemKind:
    """Classify a legacy line by its name."""
    for kind, name in FUND_ITEM_NAMES.items():
        if item_name == name:
            return kind
    return LineItemKind.PRODUCT


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    CUSTOMERS = "Customers"
    INVENTORY = "Inventory"
    TRANSACTIONS = "Transactions"
    TRANSACTION_ITEMS = "TransactionItems"
    DEMANDS = "Demands"
    DAILY_MENU = "DailyMenu"
    SETTINGS = "Settings"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_ORDER_OPEN_HOUR",
    "DEFAULT_ORDER_CLOSE_HOUR",
    "PaymentType",
    "TransactionType",
    "DemandStatus",
    "LineItemKind",
    "FUND_ITEM_NAMES",
    "FUND_DEFAULT_AMOUNTS",
    "kind_for_item_name",
    "SheetName",
]
