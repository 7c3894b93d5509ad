"""Merging and de-duplication of per-facility results."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from .models import ScanResult, SlotRecord


def dedupe(slots: Iterable[SlotRecord]) -> list[SlotRecord]:
    """Drop repeated slots, keeping the first occurrence and the original order."""
    seen: set[tuple[str, ...]] = set()
    unique: list[SlotRecord] = []
    for slot in slots:
        key = slot.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(slot)
    return unique


def aggregate(
    per_facility: Mapping[str, Sequence[SlotRecord]],
    *,
    reached_url: str,
    diagnostics: Optional[Mapping[str, Path]] = None,
    skipped: Sequence[str] = (),
) -> ScanResult:
    """Concatenate results in facility order and de-duplicate them."""
    merged: list[SlotRecord] = []
    for slots in per_facility.values():
        merged.extend(slots)
    return ScanResult(
        slots=tuple(dedupe(merged)),
        reached_url=reached_url,
        diagnostics=dict(diagnostics or {}),
        facilities_scanned=tuple(per_facility.keys()),
        facilities_skipped=tuple(skipped),
    )
