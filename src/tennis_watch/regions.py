"""Per-region facility attribution.

A page may list several facilities. Anything on it (a marked calendar cell, a
slot table cell) belongs to the facility whose name appears closest *before* it
in document order. Attributing every mark on a page to whichever facility name
happens to be present is not allowed.
"""

from __future__ import annotations

from typing import Optional, Sequence

from bs4 import BeautifulSoup
from bs4.element import Comment, NavigableString, PageElement

from .models import Facility, match_facility
from .navigation import element_text, interactive_elements, normalise_whitespace

NON_CONTENT_TAGS = frozenset({"script", "style", "noscript", "title", "template"})

# Cross-links, menus and pickers mention facilities without opening their region.
REFERENCE_TAGS = frozenset({"a", "button", "select", "option", "nav", "label"})


def _is_content_string(node: PageElement, ignored: frozenset[str]) -> bool:
    if not isinstance(node, NavigableString) or isinstance(node, Comment):
        return False
    return not any(parent.name in ignored for parent in node.parents)


def facility_for_element(
    element: PageElement,
    facilities: Sequence[Facility],
    *,
    ignored: frozenset[str] = NON_CONTENT_TAGS,
) -> Optional[Facility]:
    """
    Return the facility named nearest before ``element``, or ``None``.

    Text inside any tag listed in ``ignored`` (at any depth) never names a region.
    """
    ordered = tuple(facilities)
    for node in element.previous_elements:
        if not _is_content_string(node, ignored):
            continue
        text = str(node)
        if not text.strip():
            continue
        facility = match_facility(text, ordered)
        if facility is not None:
            return facility
    return None


def facility_presence(page_text: str, facilities: Sequence[Facility]) -> dict[str, bool]:
    """Which facilities are mentioned anywhere on the page."""
    return {facility.key: facility.matches(page_text or "") for facility in facilities}


def marked_element_indices(
    html: str,
    facility: Facility,
    facilities: Sequence[Facility],
    markers: Sequence[str],
) -> list[int]:
    """
    Interactive elements carrying an availability marker inside ``facility``'s region.

    Indices refer to document order among all interactive elements, the same
    addressing used when clicking navigation candidates.
    """
    soup = BeautifulSoup(html, "html.parser")
    wanted = set(markers)
    indices: list[int] = []
    for index, tag in interactive_elements(soup):
        if element_text(tag) not in wanted:
            continue
        owner = facility_for_element(tag, facilities)
        if owner is not None and owner.key == facility.key:
            indices.append(index)
    return indices


def static_mark_count(
    html: str,
    facility: Facility,
    facilities: Sequence[Facility],
    markers: Sequence[str],
) -> int:
    """
    Markers inside ``facility``'s region that are not clickable.

    Some calendar layouts show availability as plain text or images; those
    can only be followed up through the time-slot view.
    """
    soup = BeautifulSoup(html, "html.parser")
    wanted = set(markers)
    ignored = NON_CONTENT_TAGS | REFERENCE_TAGS
    marks: list[PageElement] = []
    for node in soup.find_all(string=True):
        if _is_content_string(node, ignored) and normalise_whitespace(str(node)) in wanted:
            marks.append(node)
    for img in soup.find_all("img"):
        if normalise_whitespace(str(img.get("alt") or "")) in wanted and not img.find_parent(sorted(REFERENCE_TAGS)):
            marks.append(img)

    count = 0
    for mark in marks:
        owner = facility_for_element(mark, facilities)
        if owner is not None and owner.key == facility.key:
            count += 1
    return count
