"""Ordering and parent lookup for dot-delimited budget codes such as 01.02.MT."""

from __future__ import annotations

import re

from budget_ingest.models import RESOURCE_KINDS

RESOURCE_RANK = {kind: rank for rank, kind in enumerate(RESOURCE_KINDS, start=1)}
OTHER_RANK = 99
NATURAL_CHUNK_RE = re.compile(r"(\d+)")


def _natural_chunks(segment: str) -> tuple:
    chunks = []
    for part in NATURAL_CHUNK_RE.split(segment):
        if not part:
            continue
        if part.isdigit():
            chunks.append((0, int(part), part))
        else:
            chunks.append((1, 0, part))
    return tuple(chunks)


def _segment_key(segment: str) -> tuple:
    folded = segment.strip().upper()
    return (RESOURCE_RANK.get(folded, OTHER_RANK), _natural_chunks(folded), folded)


def code_sort_key(code: str) -> tuple:
    """
    Sort key for budget codes.

    Segments compare left to right. MT, ST and EQ segments sort first in that
    order, everything else sorts numerically where digits appear
    ("2" before "10"). A code that is a prefix of another sorts first because
    shorter tuples compare lower.
    """
    return tuple(_segment_key(segment) for segment in (code or "").strip().split("."))


def compare_codes(a: str, b: str) -> int:
    key_a = code_sort_key(a)
    key_b = code_sort_key(b)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


def sort_codes(codes) -> list[str]:
    return sorted(codes, key=code_sort_key)


def code_level(code: str) -> int:
    return code.count(".")


def parent_code(code: str) -> str | None:
    if "." not in code:
        return None
    return code.rsplit(".", 1)[0]


def last_segment(code: str) -> str:
    return code.rsplit(".", 1)[-1].strip().upper()


def resource_kind_for(code: str) -> str | None:
    segment = last_segment(code)
    return segment if segment in RESOURCE_RANK else None
