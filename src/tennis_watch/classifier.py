"""Page classification and route matching for the reservation site.

The site's error pages are served with unreliable status codes and markup, so
the decision is made on decoded page text. Route fragments live here as well;
they are the only strings that need touching if the site moves its pages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PageState(str, Enum):
    UNKNOWN = "unknown"
    VALID = "valid"
    SOFT_ERROR = "soft_error"
    HARD_BLOCK = "hard_block"


BLOCKING_STATUSES = frozenset({403, 429})

BLOCK_KEYWORDS: tuple[str, ...] = (
    "アクセスが集中",
    "アクセスが制限",
    "access concentrated",
    "too many requests",
)

ERROR_KEYWORDS: tuple[str, ...] = BLOCK_KEYWORDS + (
    "エラーが発生",
    "エラー",
    "error",
    "無効",
    "invalid",
    "forbidden",
    "不正な操作",
    "タイムアウト",
    "有効期限が切れ",
    "ホームへ戻る",
    "トップページへ戻る",
    "go back home",
)


@dataclass(frozen=True)
class ClassifierRules:
    """Keyword sets used by :func:`classify`."""

    error_keywords: tuple[str, ...] = ERROR_KEYWORDS
    block_keywords: tuple[str, ...] = BLOCK_KEYWORDS


DEFAULT_RULES = ClassifierRules()


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    # Japanese keywords are unaffected by casefold.
    return any(keyword.casefold() in text for keyword in keywords)


def classify(page_text: str, http_status: Optional[int], rules: ClassifierRules = DEFAULT_RULES) -> PageState:
    """Classify already-fetched page text. Pure; never touches the network."""
    if http_status in BLOCKING_STATUSES:
        return PageState.HARD_BLOCK
    if http_status is not None and 500 <= http_status <= 599:
        return PageState.HARD_BLOCK

    folded = (page_text or "").casefold()
    if _contains_any(folded, rules.block_keywords):
        return PageState.HARD_BLOCK
    if _contains_any(folded, rules.error_keywords):
        return PageState.SOFT_ERROR
    return PageState.VALID


@dataclass(frozen=True)
class SiteRoutes:
    """URL path fragments identifying the pages the engine cares about."""

    calendar: str = "WgR_ShisetsubetsuAkiJoukyou"
    detail: str = "WgR_JikantaibetsuAkiJoukyou"
    error: str = "/Web/Error/"

    def is_error_url(self, url: str) -> bool:
        return self.error in (url or "")

    def is_calendar(self, url: str) -> bool:
        return self.calendar in (url or "") and not self.is_error_url(url)

    def is_detail(self, url: str) -> bool:
        return self.detail in (url or "") and not self.is_error_url(url)


def classify_page(page_text: str, http_status: Optional[int], url: str, routes: SiteRoutes,
                  rules: ClassifierRules = DEFAULT_RULES) -> PageState:
    """Classify a loaded page, treating a redirect to the error route as a soft error."""
    state = classify(page_text, http_status, rules)
    if state is PageState.VALID and routes.is_error_url(url):
        return PageState.SOFT_ERROR
    return state


__all__ = [
    "ClassifierRules",
    "DEFAULT_RULES",
    "PageState",
    "SiteRoutes",
    "classify",
    "classify_page",
]
