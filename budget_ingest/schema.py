"""
Header-row and column-role inference.

A sheet from an ERP export rarely starts at A1: there are logos, titles and
filter summaries above the real header. The sniffer walks the first rows and
maps each header cell to a semantic role using the keyword rules of a
``SheetProfile``. The first row that carries the profile's required roles is
the header.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from budget_ingest.config import SheetProfile
from budget_ingest.shared import folded_cell

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeaderMatch:
    header_row_index: int
    role_to_column: dict[str, int] = field(default_factory=dict)

    def column(self, role: str) -> int | None:
        return self.role_to_column.get(role)

    def has(self, role: str) -> bool:
        return role in self.role_to_column


def classify_header_cell(text: str, profile: SheetProfile) -> str | None:
    """Return the first role whose rule matches an already folded header text."""
    if not text:
        return None
    for rule in profile.rules:
        if rule.matches(text):
            return rule.role
    return None


def map_row_roles(row: list[Any], profile: SheetProfile) -> dict[str, int]:
    # Later cells overwrite earlier ones for the same role.
    roles: dict[str, int] = {}
    for index, value in enumerate(row):
        role = classify_header_cell(folded_cell(value), profile)
        if role is not None:
            roles[role] = index
    return roles


def row_satisfies(roles: dict[str, int], profile: SheetProfile) -> bool:
    if not all(role in roles for role in profile.required_all):
        return False
    if profile.required_any and not any(role in roles for role in profile.required_any):
        return False
    return True


def sniff_header(rows: list[list[Any]], profile: SheetProfile) -> HeaderMatch | None:
    """Find the header row in the first ``profile.header_scan_rows`` rows, or None."""
    for index, row in enumerate(rows[: profile.header_scan_rows]):
        if not row:
            continue
        roles = map_row_roles(row, profile)
        if roles and row_satisfies(roles, profile):
            logger.debug("Header at row %d with roles %s", index, roles)
            return HeaderMatch(header_row_index=index, role_to_column=roles)
    return None
