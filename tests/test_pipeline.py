from __future__ import annotations

import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from openpyxl import Workbook

from budget_ingest.config import DEFAULT_CONFIG, Thresholds
from budget_ingest.loader import workbook_from_rows
from budget_ingest.models import GROUP
from budget_ingest.pipeline import ingest_budget, ingest_transactions
from budget_ingest.tree import find_node, iter_nodes


def write_workbook(path: Path, sheets: dict[str, list[list]]) -> Path:
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


class BudgetPipelineTests(unittest.TestCase):
    def test_end_to_end_budget_tree(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "orcamento.xlsx",
                {
                    "Orçamento": [
                        ["CÓDIGO", "DESCRIÇÃO", "TOTAL"],
                        ["01", "Obra", 3000],
                        ["01.01", "Fundação", 1000],
                        ["01.02", "Estrutura", 2000],
                    ]
                },
            )
            result = ingest_budget(path)

        self.assertIsNone(result.error)
        self.assertEqual(len(result.roots), 1)
        root = result.roots[0]
        self.assertEqual(root.code, "01")
        self.assertEqual(root.type, GROUP)
        self.assertEqual(root.total_value, 3000.0)
        self.assertEqual([(child.code, child.total_value) for child in root.children], [("01.01", 1000.0), ("01.02", 2000.0)])
        self.assertEqual(result.sheets[0].status, "parsed")
        self.assertEqual(result.sheets[0].header_row, 0)
        self.assertEqual(result.warnings, [])

    def test_text_cells_and_blank_group_total(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "planilha.xlsx",
                {
                    "Planilha1": [
                        ["CÓDIGO", "DESCRIÇÃO", "TOTAL"],
                        ["01", "ESTRUTURA", ""],
                        ["01.01", "CONCRETO", "1000"],
                        ["01.02", "AÇO", "2000"],
                    ]
                },
            )
            result = ingest_budget(path)

        self.assertIsNone(result.error)
        self.assertEqual(len(result.roots), 1)
        root = result.roots[0]
        self.assertEqual((root.code, root.type, root.total_value), ("01", GROUP, 3000.0))
        self.assertEqual(
            [(child.code, child.total_value, child.type) for child in root.children],
            [("01.01", 1000.0, "ITEM"), ("01.02", 2000.0, "ITEM")],
        )

    def test_csv_budget_uses_numeric_text_fallback(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "orcamento.csv"
            path.write_text(
                "Código;Descrição;Observação\n01;Concreto armado;5000\n02;Alvenaria;7000\n",
                encoding="utf-8",
            )
            result = ingest_budget(path)

        self.assertIsNone(result.error)
        self.assertEqual([(root.code, root.total_value) for root in result.roots], [("01", 5000.0), ("02", 7000.0)])
        self.assertEqual(result.total, 12000.0)

    def test_deeply_nested_codes_build_a_tree(self):
        codes = ["1"]
        for _ in range(1199):
            codes.append(codes[-1] + ".1")
        rows = [["Código", "Descrição", "Total"]]
        rows += [[code, f"Etapa {depth}", None] for depth, code in enumerate(codes[:-1])]
        rows.append([codes[-1], "Serviço final", 250])
        result = ingest_budget(workbook_from_rows({"Obra": rows}))

        self.assertIsNone(result.error)
        self.assertEqual(len(result.roots), 1)
        self.assertEqual(result.total, 250.0)
        deepest = list(iter_nodes(result.roots))[-1]
        self.assertEqual(deepest.level, 1199)
        self.assertEqual(deepest.total_value, 250.0)

    def test_header_not_found_yields_no_lines(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "notes.xlsx",
                {"Notas": [["Reunião de obra"], ["Pauta", "Responsável"], ["Concreto", "João"]]},
            )
            result = ingest_budget(path)

        self.assertIsNone(result.error)
        self.assertEqual(result.lines, [])
        self.assertEqual(result.roots, [])
        self.assertEqual(result.sheets[0].status, "skipped")
        self.assertEqual(result.sheets[0].reason, "header not found")
        self.assertTrue(any("No budget lines" in warning for warning in result.warnings))

    def test_multi_sheet_budget_with_ground_truth_correction(self):
        summary = [[None] * 9 for _ in range(25)]
        summary[0][0] = "Resumo da Viabilidade"
        summary[19][6] = "Custo total da obra"
        summary[19][7] = 4_000_000
        detail = [
            ["Planilha orçamentária"],
            [],
            ["Item", "Discriminação", "Un", "Qtde", "Preço Unitário", "Preço Total"],
            ["01", "Infraestrutura", None, None, None, 1_000_000],
            ["01.01", "Estacas", "m", 100, 6000, 600_000],
            ["01.02", "Blocos", "m3", 50, 8000, 400_000],
            ["02", "Superestrutura", None, None, None, 1_000_000],
            ["TOTAL", None, None, None, None, 2_000_000],
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(Path(tmpdir) / "obra.xlsx", {"Orçamento": detail, "Viabilidade": summary})
            result = ingest_budget(path, cost_center="tower-a")

        self.assertIsNone(result.error)
        reconciliation = result.reconciliation
        self.assertEqual(reconciliation.ground_truth.value, 4_000_000)
        self.assertEqual(reconciliation.ground_truth.sheet, "Viabilidade")
        self.assertTrue(reconciliation.applied)
        self.assertEqual(reconciliation.before, 2_000_000)
        self.assertEqual(result.total, 4_000_000)
        estacas = find_node(result.roots, "tower-a:01.01")
        self.assertEqual(estacas.total_value, 1_200_000)
        self.assertTrue(all(node.cost_center == "tower-a" for node in iter_nodes(result.roots)))
        skipped = {sheet.name: sheet.status for sheet in result.sheets}
        self.assertEqual(skipped["Viabilidade"], "skipped")

    def test_corrupt_workbook_is_reported_not_raised(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.xlsx"
            path.write_bytes(b"not a zip file")
            with self.assertLogs("budget_ingest.pipeline", level="ERROR"):
                result = ingest_budget(path)

        self.assertIsNotNone(result.error)
        self.assertEqual(result.roots, [])
        self.assertTrue(result.warnings[0].startswith("Budget ingestion failed"))


class TransactionPipelineTests(unittest.TestCase):
    HEADER = ["Cód. Tarefa", "Histórico", "Nota", "Valor", "Data", "Sigla"]

    def _month(self, values: dict[str, float]) -> list[list]:
        rows = [["Relatório RDO"], [], self.HEADER]
        for code, value in values.items():
            rows.append([code, f"Serviço {code}", "NF", value, "10/01/2024", "DI" if code == "03" else "MT"])
        return rows

    def test_monthly_snapshots_are_deduplicated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "rdo.xlsx",
                {
                    "Jan": self._month({"01": 50, "02": 10, "03": 5}),
                    "Fev": self._month({"01": 80, "02": 10, "03": 5}),
                },
            )
            result = ingest_transactions(path)

        self.assertIsNone(result.error)
        self.assertEqual(result.raw_count, 6)
        by_code = {item.budget_group_code: item for item in result.items}
        self.assertEqual(len(by_code), 3)
        self.assertEqual(by_code["01"].accumulated_value, 80)
        self.assertEqual(by_code["01"].origin_sheet, "Fev")
        self.assertEqual(by_code["02"].origin_sheet, "Jan")
        self.assertTrue(by_code["03"].is_indirect_cost)
        self.assertEqual(result.total, 95)

    def test_linking_and_realized_correction(self):
        summary = [[None] * 8 for _ in range(60)]
        summary[54][5] = 1_900
        config = replace(DEFAULT_CONFIG, thresholds=Thresholds(ground_truth_floor=1_000))
        with tempfile.TemporaryDirectory() as tmpdir:
            budget_path = write_workbook(
                Path(tmpdir) / "orcamento.xlsx",
                {"Orçamento": [["Código", "Descrição", "Total"], ["01", "Obra", 900], ["02", "Acabamento", 100]]},
            )
            budget = ingest_budget(budget_path).roots
            rdo_path = write_workbook(
                Path(tmpdir) / "rdo.xlsx",
                {"Jan": self._month({"01": 800, "02": 150}), "Resumo Custo": summary},
            )
            result = ingest_transactions(rdo_path, config=config, budget=budget)

        self.assertTrue(result.rescale.applied)
        self.assertEqual(result.rescale.ratio, 2.0)
        by_code = {item.budget_group_code: item for item in result.items}
        self.assertEqual(by_code["01"].accumulated_value, 1600)
        self.assertEqual(by_code["01"].original_budget_id, "node:01")
        self.assertEqual(by_code["02"].original_budget_id, "node:02")

    def test_short_sheets_are_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(Path(tmpdir) / "rdo.xlsx", {"Jan": [self.HEADER, ["01", "x", "NF", 10, None, "MT"]]})
            result = ingest_transactions(path)

        self.assertEqual(result.items, [])
        self.assertEqual(result.sheets[0].reason, "fewer than 5 rows")


if __name__ == "__main__":
    unittest.main()
