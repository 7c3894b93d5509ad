"""Screenshots and HTML snapshots written at checkpoints for post-run debugging."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import structlog

LOGGER = structlog.get_logger(__name__)


class Snapshotable(Protocol):
    async def content(self) -> str: ...

    async def screenshot(self, path: Path) -> None: ...


class ArtifactStore:
    """Write-only store; a failed capture never interrupts the run."""

    def __init__(self, root: Path, *, run_stamp: Optional[str] = None):
        stamp = run_stamp or datetime.now().strftime("%Y%m%d-%H%M%S")
        self.directory = Path(root) / stamp
        self.captured: dict[str, Path] = {}

    async def capture(self, driver: Snapshotable, label: str) -> dict[str, Path]:
        paths = {
            f"{label}.png": self.directory / f"{label}.png",
            f"{label}.html": self.directory / f"{label}.html",
        }
        written: dict[str, Path] = {}
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("artifacts.mkdir_failed", directory=str(self.directory), error=str(exc))
            return written

        try:
            await driver.screenshot(paths[f"{label}.png"])
            written[f"{label}.png"] = paths[f"{label}.png"]
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("artifacts.screenshot_failed", label=label, error=str(exc))

        try:
            html = await driver.content()
            paths[f"{label}.html"].write_text(html, encoding="utf-8")
            written[f"{label}.html"] = paths[f"{label}.html"]
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("artifacts.html_failed", label=label, error=str(exc))

        self.captured.update(written)
        LOGGER.info("artifacts.captured", label=label, files=sorted(written))
        return written
