"""Turn a time-slot availability page into :class:`SlotRecord` objects.

The site's tables change shape between facilities and seasons, so nothing is
addressed by class names. Each table is read positionally: header rows give
time labels per column, the first cell of a data row names the court, and any
cell holding an available marker becomes a slot.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Sequence

import structlog
from bs4 import BeautifulSoup, Tag

from .models import Facility, SlotRecord
from .navigation import normalise_whitespace
from .regions import NON_CONTENT_TAGS, REFERENCE_TAGS, facility_for_element

LOGGER = structlog.get_logger(__name__)

AVAILABLE_MARKERS: tuple[str, ...] = ("○", "◯")

TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}(?:[-‐－~〜～]\d{1,2}:\d{2})?$")
DATE_PATTERN = re.compile(r"\d{1,2}月\s*\d{1,2}日\s*[(（]\s*\S\s*[)）]")

# How far up the tree to look for a date heading before using the whole page.
MAX_DATE_ANCESTORS = 8

# A cross-link or facility picker between heading and table does not start a new region.
REGION_IGNORED_TAGS = NON_CONTENT_TAGS | REFERENCE_TAGS


class ExtractionMode(str, Enum):
    ALIGNED = "aligned"
    ROW = "row"


def _cell_text(cell: Tag) -> str:
    return normalise_whitespace(cell.get_text(" "))


def _marker_of(cell: Tag, markers: Sequence[str]) -> Optional[str]:
    text = _cell_text(cell)
    if text in markers:
        return text
    if not text:
        for img in cell.find_all("img"):
            alt = normalise_whitespace(str(img.get("alt") or ""))
            if alt in markers:
                return alt
    return None


def _time_label(text: str) -> Optional[str]:
    compact = re.sub(r"\s+", "", text)
    return compact if TIME_PATTERN.match(compact) else None


def _own_rows(table: Tag) -> list[Tag]:
    # Rows of nested tables are read when the nested table itself is visited.
    return [row for row in table.find_all("tr") if row.find_parent("table") is table]


def _positioned_cells(row: Tag) -> list[tuple[int, Tag]]:
    """Cells of ``row`` with their starting column, honouring colspan."""
    cells: list[tuple[int, Tag]] = []
    column = 0
    for cell in row.find_all(["th", "td"], recursive=False):
        cells.append((column, cell))
        try:
            span = int(cell.get("colspan") or 1)
        except ValueError:
            span = 1
        column += max(span, 1)
    return cells


def _match_date(text: str) -> Optional[str]:
    match = DATE_PATTERN.search(text or "")
    if not match:
        return None
    return re.sub(r"\s+", "", match.group(0))


def nearest_date(table: Tag, document_text: str) -> str:
    """
    Date heading for ``table``.

    The table's own text wins, then the closest preceding sibling while
    walking up the ancestors, then the first date anywhere on the page.
    """
    own = _match_date(_cell_text(table))
    if own:
        return own
    node: Optional[Tag] = table
    for _ in range(MAX_DATE_ANCESTORS):
        if node is None or node.name == "[document]":
            break
        for sibling in node.previous_siblings:
            text = sibling.get_text(" ") if isinstance(sibling, Tag) else str(sibling)
            found = _match_date(text)
            if found:
                return found
        node = node.parent
    return _match_date(document_text) or ""


def _header_index(rows: list[Tag], markers: Sequence[str]) -> dict[int, str]:
    index: dict[int, str] = {}
    for row in rows:
        positioned = _positioned_cells(row)
        if any(_marker_of(cell, markers) for _, cell in positioned):
            continue
        for column, cell in positioned:
            label = _time_label(_cell_text(cell))
            if label:
                index[column] = label
    return index


def extract_slots(
    html: str,
    facility: Facility,
    facilities: Sequence[Facility] = (),
    *,
    markers: Sequence[str] = AVAILABLE_MARKERS,
    mode: ExtractionMode = ExtractionMode.ALIGNED,
    require_owner: bool = False,
) -> list[SlotRecord]:
    """
    Extract every available slot on the page that belongs to ``facility``.

    Marks under another configured facility's heading are skipped. With
    ``require_owner`` a mark must sit under ``facility``'s own heading, for pages
    that were not opened from one of its calendar cells.
    """
    soup = BeautifulSoup(html, "html.parser")
    known = tuple(facilities) or (facility,)
    document_text = normalise_whitespace(soup.get_text(" "))
    records: list[SlotRecord] = []
    foreign = 0

    tables = soup.find_all("table")
    if not tables:
        LOGGER.info("extract.no_tables", facility=facility.key)
        return records

    for table in tables:
        rows = _own_rows(table)
        headers = _header_index(rows, markers)
        table_mode = mode
        if mode is ExtractionMode.ALIGNED and not headers:
            table_mode = ExtractionMode.ROW
        table_date: Optional[str] = None

        for row in rows:
            positioned = _positioned_cells(row)
            if not positioned:
                continue
            marked = []
            for column, cell in positioned[1:]:
                marker = _marker_of(cell, markers)
                if marker:
                    marked.append((column, cell, marker))
            if not marked:
                continue
            court = _cell_text(positioned[0][1]) if not _marker_of(positioned[0][1], markers) else ""

            owned = []
            for column, cell, marker in marked:
                owner = facility_for_element(cell, known, ignored=REGION_IGNORED_TAGS)
                if owner is None and require_owner:
                    foreign += 1
                    continue
                if owner is not None and owner.key != facility.key:
                    LOGGER.debug("extract.foreign_region", facility=facility.key, owner=owner.key)
                    foreign += 1
                    continue
                owned.append((column, marker))
            if not owned:
                continue

            if table_date is None:
                table_date = nearest_date(table, document_text)

            if table_mode is ExtractionMode.ROW:
                records.append(
                    SlotRecord(
                        facility=facility.key,
                        date=table_date,
                        court=court,
                        time="",
                        raw_marker=owned[0][1],
                        raw_line=_cell_text(row),
                    )
                )
                continue

            for column, marker in owned:
                records.append(
                    SlotRecord(
                        facility=facility.key,
                        date=table_date,
                        court=court,
                        time=headers.get(column, ""),
                        raw_marker=marker,
                    )
                )

    if foreign and not records and not require_owner:
        # Opened from this facility's own cell, yet every mark sits elsewhere.
        LOGGER.warning("extract.marks_not_owned", facility=facility.key, marks=foreign)
    LOGGER.info("extract.done", facility=facility.key, tables=len(tables), slots=len(records))
    return records
