"""Group detection and item-type assignment over the merged line list."""

from __future__ import annotations

from collections import defaultdict

from budget_ingest.codes import code_level
from budget_ingest.config import IngestConfig
from budget_ingest.models import MACRO_STAGE, SERVICE, STAGE, SUB_STAGE, ClassifiedLine, RawLine


def item_type_for_depth(depth: int) -> str:
    if depth == 0:
        return MACRO_STAGE
    if depth == 1:
        return STAGE
    return SUB_STAGE


def _descendants(code: str, codes: list[str]) -> list[str]:
    prefix = code + "."
    return [other for other in codes if other.startswith(prefix) and other != code]


def classify_lines(lines: list[RawLine], config: IngestConfig) -> list[ClassifiedLine]:
    """
    Decide which lines are groups and which carry payable money.

    A line with children is a group unless its direct children add up to less
    than ``group_payable_ratio`` of its own positive total. In that case the
    money lives on the group line itself: it becomes payable and all of its
    descendants are marked ``absorbed_by`` so the amount is not counted twice.
    """
    ratio = config.thresholds.group_payable_ratio
    codes = [line.code for line in lines]
    direct_sums: dict[str, float] = defaultdict(float)
    by_code_depth = [(line.code, code_level(line.code), line.total) for line in lines]

    payable_groups: list[str] = []
    group_flags: list[bool] = []
    for line in lines:
        descendants = _descendants(line.code, codes)
        if not descendants:
            group_flags.append(False)
            continue
        depth = code_level(line.code)
        prefix = line.code + "."
        children_sum = sum(
            total for code, level, total in by_code_depth if code.startswith(prefix) and level == depth + 1
        )
        direct_sums[line.code] = children_sum
        if line.total > 0 and children_sum < line.total * ratio:
            group_flags.append(False)
            payable_groups.append(line.code)
        else:
            group_flags.append(True)

    classified: list[ClassifiedLine] = []
    for line, is_group in zip(lines, group_flags):
        has_children = line.code in direct_sums
        absorbed_by = _nearest_payable_ancestor(line.code, payable_groups)
        classified.append(
            ClassifiedLine(
                code=line.code,
                description=line.description,
                unit=line.unit,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line.total,
                origin_sheet=line.origin_sheet,
                is_construction_cost=line.is_construction_cost,
                is_group=is_group,
                item_type=item_type_for_depth(code_level(line.code)) if has_children else SERVICE,
                source_row=line.source_row,
                absorbed_by=absorbed_by,
            )
        )
    return classified


def _nearest_payable_ancestor(code: str, payable_groups: list[str]) -> str | None:
    best: str | None = None
    for group in payable_groups:
        if code != group and code.startswith(group + ".") and (best is None or len(group) > len(best)):
            best = group
    return best


def payable_total(lines: list[ClassifiedLine]) -> float:
    return sum(line.total for line in lines if line.is_payable)
