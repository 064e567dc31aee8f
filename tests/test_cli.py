from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

from budget_ingest import __version__
from budget_ingest.config import CONFIG_ENV_VAR

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "budget_ingest.cli"]


def run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env.pop(CONFIG_ENV_VAR, None)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=env,
    )


def write_sheet(path: Path, title: str, rows: list[list]) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def write_budget(path: Path) -> Path:
    return write_sheet(
        path,
        "Orçamento",
        [
            ["CÓDIGO", "DESCRIÇÃO", "TOTAL"],
            ["01", "Obra", 3000],
            ["01.01", "Fundação", 1000],
            ["01.02", "Estrutura", 2000],
        ],
    )


def write_cost_report(path: Path) -> Path:
    rows = [["Cód. Tarefa", "Histórico", "Valor", "Data"]]
    rows += [["01.01", "Concreto", 400, "05/02/2024"], ["01.02", "Aço", 250, "06/02/2024"]]
    rows += [["09", "Sem orçamento", 50, "07/02/2024"], ["01.01", "Concreto", 300, "05/01/2024"]]
    return write_sheet(path, "Fev", rows)


class BudgetIngestCliTests(unittest.TestCase):
    def test_budget_json_stdout_contains_only_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            proc = run_cli("budget", str(budget), "--json", "--cost-center", "tower-a")

        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "budget_ingest.budget")
        self.assertEqual(payload["run_summary"]["status"], "ok")
        self.assertEqual(payload["run_summary"]["metrics"]["total_value"], 3000.0)
        self.assertEqual(payload["records"][0]["id"], "tower-a:01")

    def test_budget_human_summary_goes_to_stderr(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            proc = run_cli("budget", str(budget))

        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout, "")
        self.assertIn("Total: 3,000.00", proc.stderr)

    def test_budget_without_header_returns_exit_3(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            notes = write_sheet(Path(tmpdir) / "notes.xlsx", "Notas", [["Reunião"], ["Pauta", "Responsável"]])
            proc = run_cli("budget", str(notes))

        self.assertEqual(proc.returncode, 3)
        self.assertIn("Status: empty", proc.stderr)
        self.assertIn("header not found", proc.stderr)

    def test_unreadable_workbook_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            broken = Path(tmpdir) / "broken.xlsx"
            broken.write_bytes(b"not a workbook")
            proc = run_cli("budget", str(broken), "-q")

        self.assertEqual(proc.returncode, 2)
        self.assertIn("Could not ingest", proc.stderr)

    def test_missing_and_unsupported_input_return_exit_1(self):
        proc = run_cli("budget", "does-not-exist.xlsx")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

        with tempfile.TemporaryDirectory() as tmpdir:
            other = Path(tmpdir) / "budget.pdf"
            other.write_bytes(b"%PDF")
            proc = run_cli("budget", str(other))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unsupported file type '.pdf'", proc.stderr)

    def test_bad_arguments_return_exit_1(self):
        proc = run_cli("budget")
        self.assertEqual(proc.returncode, 1)

    def test_output_and_export_are_written_but_never_overwritten(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            output = Path(tmpdir) / "out" / "budget.json"
            export = Path(tmpdir) / "out" / "tree.xlsx"
            proc = run_cli("budget", str(budget), "--output", str(output), "--export-xlsx", str(export))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertTrue(output.exists())
            self.assertTrue(export.exists())
            self.assertIn("Payload written:", proc.stderr)
            payload = json.loads(output.read_text(encoding="utf-8"))
            self.assertEqual(payload["run_summary"]["output_file"], str(output))

            again = run_cli("budget", str(budget), "--output", str(output))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite", again.stderr)

    def test_transactions_link_to_budget_payload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            budget_json = Path(tmpdir) / "budget.json"
            self.assertEqual(run_cli("budget", str(budget), "--output", str(budget_json), "-q").returncode, 0)
            report = write_cost_report(Path(tmpdir) / "rdo.xlsx")
            proc = run_cli("transactions", str(report), "--budget", str(budget_json), "--json")

        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        metrics = payload["run_summary"]["metrics"]
        self.assertEqual(metrics["rows_read"], 4)
        self.assertEqual(metrics["items"], 3)
        self.assertEqual(metrics["linked"], 2)
        items = {item["budget_group_code"]: item for item in payload["items"]}
        self.assertEqual(items["01.01"]["accumulated_value"], 400.0)
        self.assertEqual(items["01.01"]["original_budget_id"], "node:01.01")
        self.assertEqual(items["01.01"]["date"], "2024-02-05")
        self.assertIsNone(items["09"]["original_budget_id"])

    def test_transactions_reject_non_budget_payload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            report = write_cost_report(Path(tmpdir) / "rdo.xlsx")
            bogus = Path(tmpdir) / "bogus.json"
            bogus.write_text(json.dumps({"contract": {"name": "something.else"}}), encoding="utf-8")
            proc = run_cli("transactions", str(report), "--budget", str(bogus))

        self.assertEqual(proc.returncode, 2)
        self.assertIn("is not a budget-ingest budget payload", proc.stderr)

    def test_consolidate_sums_partitions(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            first = Path(tmpdir) / "a.json"
            second = Path(tmpdir) / "b.json"
            run_cli("budget", str(budget), "--cost-center", "a", "--output", str(first), "-q")
            run_cli("budget", str(budget), "--cost-center", "b", "--output", str(second), "-q")
            proc = run_cli("consolidate", str(first), str(second), "--json")

        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["run_summary"]["metrics"]["total_value"], 6000.0)
        self.assertEqual({record["cost_center"] for record in payload["records"]}, {"CONSOLIDATED"})

    def test_config_init_writes_defaults_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "budget-ingest.json"
            proc = run_cli("config", "init", "--path", str(config_path))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            config = json.loads(config_path.read_text(encoding="utf-8"))
            self.assertEqual(config["thresholds"]["ground_truth_floor"], 1000000.0)
            self.assertIn("budget", config["profiles"])

            again = run_cli("config", "init", "--path", str(config_path))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite existing config", again.stderr)

            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            proc = run_cli("budget", str(budget), "--config", str(config_path), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)

    def test_yaml_config_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            budget = write_budget(Path(tmpdir) / "budget.xlsx")
            config_path = Path(tmpdir) / "config.yml"
            config_path.write_text("thresholds: {}\n", encoding="utf-8")
            proc = run_cli("budget", str(budget), "--config", str(config_path))

        self.assertEqual(proc.returncode, 1)
        self.assertIn("YAML configs are not supported yet", proc.stderr)

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), __version__)


if __name__ == "__main__":
    unittest.main()
