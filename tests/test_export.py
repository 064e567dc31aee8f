from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook as openpyxl_load_workbook

from budget_ingest.export import EXPORT_HEADERS, SHEET_TITLE, export_tree_xlsx, tree_rows
from budget_ingest.models import BudgetNode
from budget_ingest.pipeline import ingest_budget
from budget_ingest.tree import build_tree, flatten


def sample_tree() -> list[BudgetNode]:
    values = {"01": 0, "01.01": 1250.75, "01.02": 749.25, "02": 300}
    return build_tree(
        [
            BudgetNode(
                id=f"tower-a:{code}",
                code=code,
                description=f"Etapa {code}",
                total_value=value,
                budget_initial=value,
                budget_current=value,
                cost_center="tower-a",
            )
            for code, value in values.items()
        ]
    )


class ExportTests(unittest.TestCase):
    def test_rows_are_parents_first(self):
        rows = tree_rows(sample_tree())
        self.assertEqual([row[0] for row in rows], ["01", "01.01", "01.02", "02"])
        self.assertEqual(rows[0][2], "GROUP")
        self.assertEqual(rows[0][-1], 2000.0)

    def test_workbook_layout(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = export_tree_xlsx(sample_tree(), Path(tmpdir) / "out" / "tree.xlsx")
            wb = openpyxl_load_workbook(path)
            ws = wb[SHEET_TITLE]
            header = [cell.value for cell in ws[1]]
            first_group_bold = ws["A2"].font.bold
            freeze = ws.freeze_panes
            wb.close()

        self.assertEqual(header, EXPORT_HEADERS)
        self.assertTrue(first_group_bold)
        self.assertEqual(freeze, "A2")

    def test_export_reimports_to_the_same_tree(self):
        original = sample_tree()
        with tempfile.TemporaryDirectory() as tmpdir:
            path = export_tree_xlsx(original, Path(tmpdir) / "tree.xlsx")
            result = ingest_budget(path, cost_center="tower-a")

        self.assertIsNone(result.error)
        self.assertIsNone(result.reconciliation.ground_truth)
        rebuilt = flatten(result.roots)
        self.assertEqual(
            [(node.code, node.total_value, node.type) for node in rebuilt],
            [(node.code, node.total_value, node.type) for node in flatten(original)],
        )
        self.assertEqual(result.total, 2300.0)


if __name__ == "__main__":
    unittest.main()
