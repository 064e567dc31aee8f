from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from budget_ingest import __version__ as TOOL_VERSION
from budget_ingest.config import ConfigError, IngestConfig, config_to_dict, load_config
from budget_ingest.consolidate import consolidate_trees
from budget_ingest.contracts import (
    build_budget_payload,
    build_consolidation_payload,
    build_transaction_payload,
)
from budget_ingest.export import export_tree_xlsx
from budget_ingest.loader import ALL_FORMATS
from budget_ingest.models import BudgetNode
from budget_ingest.pipeline import ingest_budget, ingest_transactions
from budget_ingest.tree import TreeIntegrityError, tree_from_records

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_EMPTY_RESULT = 3

DEFAULT_CONFIG_PATH = "budget-ingest.json"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class BudgetIngestArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload) + "\n")


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError, json.JSONDecodeError, TreeIntegrityError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, (FileNotFoundError, ConfigError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def require_input(path_value: str) -> Path:
    input_path = Path(path_value)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    suffix = input_path.suffix.lower()
    if suffix not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    return input_path


def resolve_config(args: argparse.Namespace) -> IngestConfig:
    try:
        return load_config(getattr(args, "config", None))
    except ConfigError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def load_budget_payload(path: Path) -> list[BudgetNode]:
    if not path.exists():
        raise CliError(f"Budget payload not found: {path}", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CliError(f"Could not read budget payload {path}: {exc}", EXIT_PARSE_FAILED) from exc
    contract = payload.get("contract", {}) if isinstance(payload, dict) else {}
    if contract.get("name") not in {"budget_ingest.budget", "budget_ingest.consolidation"}:
        raise CliError(f"{path} is not a budget-ingest budget payload.", EXIT_PARSE_FAILED)
    try:
        return tree_from_records(payload.get("records", []))
    except TreeIntegrityError as exc:
        raise CliError(f"Invalid budget tree in {path}: {exc}", EXIT_PARSE_FAILED) from exc


def render_budget_text(payload: dict[str, Any]) -> str:
    summary = payload["run_summary"]
    metrics = summary["metrics"]
    lines = [
        "budget-ingest budget",
        f"Input: {summary['input_file']}",
        f"Status: {summary['status']}",
        f"Sheets parsed: {metrics['sheets_parsed']}",
        f"Sheets skipped: {metrics['sheets_skipped']}",
        f"Lines: {metrics['lines']}",
        f"Nodes: {metrics['nodes']}",
        f"Total: {metrics['total_value']:,.2f}",
    ]
    reconciliation = payload.get("reconciliation") or {}
    if reconciliation.get("ground_truth"):
        truth = reconciliation["ground_truth"]
        lines.append(f"Ground truth: {truth['value']:,.2f} ({truth['sheet']}, {truth['strategy']})")
    if reconciliation.get("applied"):
        lines.append(
            f"Ratio correction: {reconciliation['ratio']} "
            f"({reconciliation['before']:,.2f} -> {reconciliation['after']:,.2f})"
        )
    for sheet in payload["sheets"]:
        if sheet["status"] != "parsed":
            lines.append(f"- skipped '{sheet['name']}': {sheet['reason']}")
    if summary["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines) + "\n"


def render_transactions_text(payload: dict[str, Any]) -> str:
    summary = payload["run_summary"]
    metrics = summary["metrics"]
    lines = [
        "budget-ingest transactions",
        f"Input: {summary['input_file']}",
        f"Status: {summary['status']}",
        f"Rows read: {metrics['rows_read']}",
        f"Items after dedup: {metrics['items']}",
        f"Indirect: {metrics['indirect']}",
        f"Linked to budget: {metrics['linked']}",
        f"Total: {metrics['total_value']:,.2f}",
    ]
    rescale = payload.get("rescale") or {}
    if rescale.get("applied"):
        lines.append(f"Ratio correction: {rescale['ratio']} ({rescale['before']:,.2f} -> {rescale['after']:,.2f})")
    if summary["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines) + "\n"


def render_consolidation_text(payload: dict[str, Any]) -> str:
    metrics = payload["run_summary"]["metrics"]
    return (
        "budget-ingest consolidate\n"
        f"Partitions: {metrics['partitions']}\n"
        f"Nodes: {metrics['nodes']}\n"
        f"Total: {metrics['total_value']:,.2f}\n"
    )


def exit_code_for(payload: dict[str, Any]) -> int:
    status = payload["run_summary"]["status"]
    if status == "failed":
        return EXIT_PARSE_FAILED
    if status == "empty":
        return EXIT_EMPTY_RESULT
    return EXIT_SUCCESS


def emit_payload(args: argparse.Namespace, payload: dict[str, Any], text: str, output_path: Path | None) -> None:
    if output_path:
        write_json(output_path, payload)
    if args.json:
        print(json_dumps(payload))
    else:
        emit_human(text.rstrip(), quiet=args.quiet)
        if output_path:
            emit_human(f"Payload written: {output_path}", quiet=args.quiet)


def add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("--output", help="Write the JSON payload to this path")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = BudgetIngestArgumentParser(
        prog="budget-ingest",
        description="Turn ERP budget and cost-report spreadsheets into reconciled budget trees.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    budget = subparsers.add_parser("budget", help="Ingest a budget workbook into a cost-code tree.")
    budget.add_argument("input", help="Input spreadsheet path")
    budget.add_argument("--config", help="JSON keyword/threshold override (defaults to $BUDGET_INGEST_CONFIG)")
    budget.add_argument("--cost-center", dest="cost_center", help="Cost center stamped on every node")
    budget.add_argument("--partition-id", dest="partition_id", help="Partition id stored on the output records")
    budget.add_argument("--export-xlsx", dest="export_xlsx", help="Also write the tree to this .xlsx path")
    add_common_flags(budget)

    transactions = subparsers.add_parser("transactions", help="Ingest a cost report into deduplicated transactions.")
    transactions.add_argument("input", help="Input spreadsheet path")
    transactions.add_argument("--config", help="JSON keyword/threshold override (defaults to $BUDGET_INGEST_CONFIG)")
    transactions.add_argument("--budget", help="Budget payload JSON used to link transactions to budget nodes")
    add_common_flags(transactions)

    consolidate = subparsers.add_parser("consolidate", help="Sum several budget payloads into one tree.")
    consolidate.add_argument("payloads", nargs="+", help="Budget payload JSON files")
    consolidate.add_argument("--export-xlsx", dest="export_xlsx", help="Also write the tree to this .xlsx path")
    add_common_flags(consolidate)

    config = subparsers.add_parser("config", help="Generate or inspect configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write the active configuration as a starter file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_PATH, help="Config output path")
    config_init.add_argument("--config", help="Start from this override instead of the defaults")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_budget(args: argparse.Namespace) -> int:
    try:
        input_path = require_input(args.input)
        config = resolve_config(args)
        output_path = safe_output_path(Path(args.output)) if args.output else None
        export_path = safe_output_path(Path(args.export_xlsx)) if args.export_xlsx else None

        result = ingest_budget(input_path, config=config, cost_center=args.cost_center)
        payload = build_budget_payload(
            result,
            input_path=input_path,
            output_path=output_path,
            partition_id=args.partition_id,
        )
        if result.error:
            eprint(f"Could not ingest {input_path}: {result.error}")
        elif export_path and result.roots:
            export_tree_xlsx(result.roots, export_path)
            emit_human(f"Tree workbook written: {export_path}", quiet=args.quiet)
        emit_payload(args, payload, render_budget_text(payload), output_path)
        return exit_code_for(payload)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_transactions(args: argparse.Namespace) -> int:
    try:
        input_path = require_input(args.input)
        config = resolve_config(args)
        output_path = safe_output_path(Path(args.output)) if args.output else None
        budget = load_budget_payload(Path(args.budget)) if args.budget else None

        result = ingest_transactions(input_path, config=config, budget=budget)
        payload = build_transaction_payload(result, input_path=input_path, output_path=output_path)
        if result.error:
            eprint(f"Could not ingest {input_path}: {result.error}")
        emit_payload(args, payload, render_transactions_text(payload), output_path)
        return exit_code_for(payload)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_consolidate(args: argparse.Namespace) -> int:
    try:
        payload_paths = [Path(value) for value in args.payloads]
        output_path = safe_output_path(Path(args.output)) if args.output else None
        export_path = safe_output_path(Path(args.export_xlsx)) if args.export_xlsx else None

        trees = [load_budget_payload(path) for path in payload_paths]
        roots = consolidate_trees(trees)
        payload = build_consolidation_payload(roots, input_paths=payload_paths, output_path=output_path)
        if export_path and roots:
            export_tree_xlsx(roots, export_path)
            emit_human(f"Tree workbook written: {export_path}", quiet=args.quiet)
        emit_payload(args, payload, render_consolidation_text(payload), output_path)
        return exit_code_for(payload)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    config = resolve_config(args)
    write_json(config_path, config_to_dict(config))
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "budget":
            return run_budget(args)
        if args.command == "transactions":
            return run_transactions(args)
        if args.command == "consolidate":
            return run_consolidate(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
