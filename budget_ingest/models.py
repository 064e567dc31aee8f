"""Core record types shared by the extraction, reconciliation and tree stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MACRO_STAGE = "MACRO_STAGE"
STAGE = "STAGE"
SUB_STAGE = "SUB_STAGE"
SERVICE = "SERVICE"

GROUP = "GROUP"
ITEM = "ITEM"

RESOURCE_KINDS = ("MT", "ST", "EQ")
CONSOLIDATED_COST_CENTER = "CONSOLIDATED"


@dataclass(frozen=True)
class RawLine:
    code: str
    description: str
    unit: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    total: float = 0.0
    origin_sheet: str = ""
    is_construction_cost: bool = True
    source_row: int | None = None


@dataclass(frozen=True)
class ClassifiedLine:
    code: str
    description: str
    unit: str
    quantity: float
    unit_price: float
    total: float
    origin_sheet: str
    is_construction_cost: bool
    is_group: bool
    item_type: str
    source_row: int | None = None
    absorbed_by: str | None = None

    @property
    def is_payable(self) -> bool:
        return not self.is_group and self.absorbed_by is None


@dataclass
class BudgetNode:
    id: str
    code: str
    description: str
    level: int = 0
    type: str = ITEM
    item_type: str = SERVICE
    resource_kind: str | None = None
    unit: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    total_value: float = 0.0
    budget_initial: float = 0.0
    budget_current: float = 0.0
    cost_center: str | None = None
    parent_id: str | None = None
    children: list["BudgetNode"] = field(default_factory=list)


@dataclass
class TransactionItem:
    id: str
    service_description: str
    accumulated_value: float
    budget_group_code: str | None = None
    date: str | None = None
    is_indirect_cost: bool = False
    classification_tag: str = ""
    document_number: str = ""
    group_name: str = ""
    origin_sheet: str = ""
    original_budget_id: str | None = None

    @property
    def logical_key(self) -> str:
        if self.budget_group_code:
            return f"{self.budget_group_code}-{self.service_description}"
        return self.id


@dataclass
class SheetReport:
    name: str
    status: str
    header_row: int | None = None
    roles: dict[str, int] = field(default_factory=dict)
    extracted: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "header_row": self.header_row,
            "roles": dict(self.roles),
            "extracted": self.extracted,
            "reason": self.reason,
        }
