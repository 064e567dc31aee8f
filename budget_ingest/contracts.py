"""Shared versioned contracts for budget-ingest JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from budget_ingest.models import TransactionItem
from budget_ingest.pipeline import BudgetResult, TransactionResult
from budget_ingest.tree import tree_to_records, tree_total

TOOL_NAME = "budget-ingest"

CONTRACT_VERSIONS = {
    "budget_ingest.budget": "1.0.0",
    "budget_ingest.transactions": "1.0.0",
    "budget_ingest.consolidation": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_path: Path | list[Path] | None,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    if isinstance(input_path, list):
        input_value: Any = [str(path) for path in input_path]
    else:
        input_value = str(input_path) if input_path else None
    return {
        "tool": TOOL_NAME,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": input_value,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def run_status(error: str | None, empty: bool) -> str:
    if error:
        return "failed"
    if empty:
        return "empty"
    return "ok"


def build_budget_payload(
    result: BudgetResult,
    *,
    input_path: Path | None = None,
    output_path: Path | None = None,
    partition_id: str | None = None,
) -> dict[str, Any]:
    reconciliation = result.reconciliation.to_dict() if result.reconciliation else None
    records = tree_to_records(result.roots, partition_id)
    return {
        "contract": build_contract("budget_ingest.budget"),
        "run_summary": build_run_summary(
            command="budget",
            input_path=input_path,
            status=run_status(result.error, not result.roots),
            output_path=output_path,
            warnings=result.warnings,
            metrics={
                "lines": len(result.lines),
                "nodes": len(records),
                "roots": len(result.roots),
                "total_value": result.total,
                "sheets_parsed": sum(1 for sheet in result.sheets if sheet.status == "parsed"),
                "sheets_skipped": sum(1 for sheet in result.sheets if sheet.status != "parsed"),
            },
        ),
        "cost_center": result.cost_center,
        "error": result.error,
        "sheets": [sheet.to_dict() for sheet in result.sheets],
        "reconciliation": reconciliation,
        "records": records,
    }


def transaction_to_dict(item: TransactionItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "service_description": item.service_description,
        "accumulated_value": item.accumulated_value,
        "budget_group_code": item.budget_group_code,
        "date": item.date,
        "is_indirect_cost": item.is_indirect_cost,
        "classification_tag": item.classification_tag,
        "document_number": item.document_number,
        "group_name": item.group_name,
        "origin_sheet": item.origin_sheet,
        "original_budget_id": item.original_budget_id,
    }


def build_transaction_payload(
    result: TransactionResult,
    *,
    input_path: Path | None = None,
    output_path: Path | None = None,
) -> dict[str, Any]:
    return {
        "contract": build_contract("budget_ingest.transactions"),
        "run_summary": build_run_summary(
            command="transactions",
            input_path=input_path,
            status=run_status(result.error, not result.items),
            output_path=output_path,
            warnings=result.warnings,
            metrics={
                "rows_read": result.raw_count,
                "items": len(result.items),
                "linked": sum(1 for item in result.items if item.original_budget_id),
                "indirect": sum(1 for item in result.items if item.is_indirect_cost),
                "total_value": result.total,
            },
        ),
        "error": result.error,
        "sheets": [sheet.to_dict() for sheet in result.sheets],
        "rescale": result.rescale.to_dict() if result.rescale else None,
        "items": [transaction_to_dict(item) for item in result.items],
    }


def build_consolidation_payload(
    roots,
    *,
    input_paths: list[Path],
    output_path: Path | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    records = tree_to_records(roots)
    return {
        "contract": build_contract("budget_ingest.consolidation"),
        "run_summary": build_run_summary(
            command="consolidate",
            input_path=input_paths,
            status=run_status(None, not roots),
            output_path=output_path,
            warnings=warnings,
            metrics={
                "partitions": len(input_paths),
                "nodes": len(records),
                "roots": len(roots),
                "total_value": tree_total(roots),
            },
        ),
        "records": records,
    }
