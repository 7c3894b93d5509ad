from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from tennis_watch.browser import NavigationOutcome
from tennis_watch.errors import NotificationError


@dataclass
class FakeResponse:
    html: str
    status: Optional[int] = 200
    url: Optional[str] = None  # final URL after a redirect


Handler = Union[FakeResponse, Callable[[str], FakeResponse]]


class FakeDriver:
    """In-memory stand-in for a browser page.

    ``routes`` maps absolute URLs to a response or to a callable receiving how
    the page was reached (``"goto"``, ``"click"`` or ``"back"``). Clickable
    elements navigate to their ``data-goto`` attribute, falling back to ``href``.
    """

    def __init__(self, routes: dict[str, Handler]):
        self.routes = routes
        self.gotos: list[str] = []
        self.clicks: list[tuple[int, str]] = []
        self.backs = 0
        self.screenshots: list[Path] = []
        self._history: list[str] = []
        self._url = "about:blank"
        self._html = "<html><body></body></html>"

    @property
    def url(self) -> str:
        return self._url

    def _serve(self, url: str, via: str) -> NavigationOutcome:
        handler = self.routes.get(url)
        if handler is None:
            response = FakeResponse("<html><body><p>404 Not Found error</p></body></html>", status=404)
        elif callable(handler):
            response = handler(via)
        else:
            response = handler
        self._url = response.url or url
        self._html = response.html
        self._history.append(self._url)
        return NavigationOutcome(status=response.status, url=self._url)

    async def goto(self, url: str) -> NavigationOutcome:
        self.gotos.append(url)
        return self._serve(url, "goto")

    async def go_back(self) -> NavigationOutcome:
        self.backs += 1
        if len(self._history) < 2:
            raise RuntimeError("no history to go back to")
        self._history.pop()
        previous = self._history.pop()
        return self._serve(previous, "back")

    async def click_nth(self, selector: str, index: int) -> None:
        soup = BeautifulSoup(self._html, "html.parser")
        element = soup.select(selector)[index]
        self.clicks.append((index, element.get_text(" ", strip=True) or str(element.get("value") or "")))
        target = element.get("data-goto") or element.get("href")
        if target and not str(target).startswith("javascript:"):
            self._serve(urljoin(self._url, str(target)), "click")

    async def content(self) -> str:
        return self._html

    async def text(self) -> str:
        return BeautifulSoup(self._html, "html.parser").get_text(" ")

    async def screenshot(self, path: Path) -> None:
        path.write_bytes(b"\x89PNG fake")
        self.screenshots.append(path)

    async def wait(self, milliseconds: int) -> None:
        return None


class RecordingMailer:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    async def send(self, subject: str, body: str, to: str) -> str:
        if self.fail:
            raise NotificationError("mail service unavailable")
        self.sent.append((subject, body, to))
        return f"msg-{len(self.sent)}"


async def no_sleep(_seconds: float) -> None:
    return None
