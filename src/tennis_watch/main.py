"""Entry point for the tennis availability watcher."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import structlog

from .artifacts import ArtifactStore
from .browser import PlaywrightDriver
from .config import Settings
from .engine import AvailabilityEngine
from .mailer import ResendMailer, mask_address
from .models import ScanResult
from .notify import Notifier

EXIT_OK = 0
EXIT_SCAN_FAILED = 1
EXIT_BAD_CONFIG = 2


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog + stdlib logging."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.EventRenamer("event"),
            structlog.processors.DictRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


LOGGER = structlog.get_logger(__name__)


def build_notifier(settings: Settings) -> Notifier:
    """Wire the mail collaborator; mail is skipped when credentials are missing."""
    mailer: Optional[ResendMailer] = None
    if settings.mail_enabled:
        mailer = ResendMailer(settings.resend_api_key.get_secret_value(), settings.mail_from)
    return Notifier(
        mailer,
        settings.notify_email,
        notify_on_error=settings.notify_on_error,
        heartbeat_hour=settings.heartbeat_hour,
        timezone=settings.timezone,
    )


async def scan(settings: Settings) -> ScanResult:
    """Run one scan in a fresh browser context."""
    config = settings.engine_config()
    artifacts = ArtifactStore(settings.artifacts_dir)
    async with PlaywrightDriver(
        headless=settings.headless,
        timeout_seconds=settings.nav_timeout_seconds,
        proxy=settings.proxy,
        timezone=settings.timezone,
    ) as driver:
        engine = AvailabilityEngine(driver, config, artifacts)
        return await engine.run()


async def run(settings: Settings, notifier: Notifier) -> int:
    """Scan, notify and return the process exit status."""
    try:
        result = await scan(settings)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("watch.failed", error=f"{type(exc).__name__}: {exc}")
        await notifier.notify_failure(exc)
        return EXIT_SCAN_FAILED

    for slot in result.slots:
        LOGGER.info("watch.slot", facility=slot.facility, date=slot.date, court=slot.court, time=slot.time)
    await notifier.notify_scan(result)
    return EXIT_OK


def cli() -> None:
    """Console script entrypoint."""
    configure_logging()

    try:
        settings = Settings()
    except Exception as exc:  # pragma: no cover - startup validation
        LOGGER.exception("settings.error", error=str(exc))
        raise SystemExit(EXIT_BAD_CONFIG) from exc

    LOGGER.info(
        "watch.start",
        base_url=settings.base_url,
        notify_email=mask_address(settings.notify_email) if settings.notify_email else "(missing)",
        notify_on_error=settings.notify_on_error,
    )
    raise SystemExit(asyncio.run(run(settings, build_notifier(settings))))


if __name__ == "__main__":  # pragma: no cover
    cli()
