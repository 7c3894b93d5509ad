"""Heuristic element selection for pages where direct URLs are unreliable.

A :class:`NavigationTarget` describes where we want to go in terms of hints
rather than selectors. Every interactive element on the page is scored against
it and the best one is clicked through the browser collaborator, addressed by
its position among all interactive elements in document order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping, Optional, Protocol
from urllib.parse import urldefrag, urljoin

import structlog
from bs4 import BeautifulSoup, Tag

LOGGER = structlog.get_logger(__name__)

INTERACTIVE_SELECTOR = "a, button, input[type=submit], input[type=button], input[type=image]"

URL_MATCH_SCORE = 100
HANDLER_MATCH_SCORE = 50
CLICKABLE_TAG_SCORE = 10
DEFAULT_THRESHOLD = 20


class TagKind(str, Enum):
    LINK = "link"
    BUTTON = "button"
    INPUT = "input"


@dataclass(frozen=True)
class NavigationTarget:
    """A semantic destination, independent of the exact markup."""

    label: str
    url_hint: Optional[str] = None
    text_hints: Mapping[str, int] = field(default_factory=dict)
    must_not_match: tuple[str, ...] = ()
    handler_hints: tuple[str, ...] = ()
    threshold: int = DEFAULT_THRESHOLD


@dataclass(frozen=True)
class ElementCandidate:
    """An interactive element scored against a target."""

    index: int
    tag_kind: TagKind
    text: str
    href: Optional[str]
    onclick_hint: Optional[str]
    score: int


class Clicker(Protocol):
    async def click_nth(self, selector: str, index: int) -> None: ...


def normalise_whitespace(text: str) -> str:
    """Collapse repeated whitespace into single spaces."""
    return re.sub(r"\s+", " ", text or "").strip()


def element_text(tag: Tag) -> str:
    """Visible label of an interactive element, including image alt text."""
    if tag.name == "input":
        return normalise_whitespace(str(tag.get("value") or tag.get("alt") or ""))
    parts = [tag.get_text(" ")]
    parts.extend(str(img.get("alt") or "") for img in tag.find_all("img"))
    return normalise_whitespace(" ".join(parts))


def interactive_elements(soup: BeautifulSoup) -> Iterator[tuple[int, Tag]]:
    """Yield ``(index, tag)`` for every interactive element in document order."""
    yield from enumerate(soup.select(INTERACTIVE_SELECTOR))


def _tag_kind(tag: Tag) -> TagKind:
    if tag.name == "a":
        return TagKind.LINK
    if tag.name == "button":
        return TagKind.BUTTON
    return TagKind.INPUT


def _same_url(href: str, base_url: str, url_hint: str) -> bool:
    if not href or href.lower().startswith("javascript:"):
        return False
    resolved, _ = urldefrag(urljoin(base_url or "", href))
    wanted, _ = urldefrag(url_hint)
    return resolved.split("?", 1)[0] == wanted.split("?", 1)[0]


def score_element(tag: Tag, text: str, base_url: str, target: NavigationTarget) -> int:
    """Sum the weighted signals linking ``tag`` to ``target``."""
    score = 0
    href = str(tag.get("href") or "")
    onclick = str(tag.get("onclick") or "")
    if target.url_hint and _same_url(href, base_url, target.url_hint):
        score += URL_MATCH_SCORE
    if onclick and any(hint in onclick for hint in target.handler_hints):
        score += HANDLER_MATCH_SCORE
    for hint, weight in target.text_hints.items():
        if hint in text:
            score += weight
    if tag.name in ("a", "button"):
        score += CLICKABLE_TAG_SCORE
    return score


def rank_candidates(html: str, base_url: str, target: NavigationTarget) -> list[ElementCandidate]:
    """Return every non-excluded element that clears the target's threshold, best first."""
    soup = BeautifulSoup(html, "html.parser")
    candidates: list[ElementCandidate] = []
    for index, tag in interactive_elements(soup):
        text = element_text(tag)
        if any(pattern in text for pattern in target.must_not_match):
            continue
        score = score_element(tag, text, base_url, target)
        if score < target.threshold:
            continue
        candidates.append(
            ElementCandidate(
                index=index,
                tag_kind=_tag_kind(tag),
                text=text,
                href=tag.get("href"),
                onclick_hint=tag.get("onclick"),
                score=score,
            )
        )
    # sorted() is stable, so equal scores keep document order.
    return sorted(candidates, key=lambda candidate: candidate.score, reverse=True)


def find_best_candidate(html: str, base_url: str, target: NavigationTarget) -> Optional[ElementCandidate]:
    """Pick the highest scoring element for ``target``, or ``None`` if nothing qualifies."""
    ranked = rank_candidates(html, base_url, target)
    if not ranked:
        LOGGER.info("navigation.no_candidate", target=target.label, url=base_url)
        return None
    best = ranked[0]
    LOGGER.info(
        "navigation.candidate",
        target=target.label,
        text=best.text,
        href=best.href,
        score=best.score,
        runner_up=ranked[1].score if len(ranked) > 1 else None,
    )
    return best


async def click_candidate(clicker: Clicker, candidate: ElementCandidate) -> None:
    """Activate the element; the clicker waits for the resulting page to settle."""
    await clicker.click_nth(INTERACTIVE_SELECTOR, candidate.index)
