"""Message formatting and the notification policy."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import structlog

from .errors import NotificationError, RetryExhausted, ScanError
from .mailer import Mailer, mask_address
from .models import ScanResult, SlotRecord

LOGGER = structlog.get_logger(__name__)

SLOTS_MARKER = "🎾"
FAILURE_MARKER = "⚠️"
UNKNOWN_DATE = "日付不明"
UNKNOWN_COURT = "コート不明"


def group_slots(slots: tuple[SlotRecord, ...]) -> dict[str, dict[str, list[SlotRecord]]]:
    """Group slots by facility, then date, keeping first-seen order."""
    grouped: dict[str, dict[str, list[SlotRecord]]] = {}
    for slot in slots:
        by_date = grouped.setdefault(slot.facility, {})
        by_date.setdefault(slot.date or UNKNOWN_DATE, []).append(slot)
    return grouped


def format_slot(slot: SlotRecord) -> str:
    """Format a single slot line."""
    if slot.is_fallback:
        return f"- {slot.raw_line}"
    pieces = [slot.court or UNKNOWN_COURT]
    if slot.time:
        pieces.append(slot.time)
    return f"- {' '.join(pieces)}"


def format_slots_message(result: ScanResult) -> tuple[str, str]:
    """Build the subject and body announcing open slots."""
    grouped = group_slots(result.slots)
    subject = f"{SLOTS_MARKER} テニスコート空きあり ({len(result.slots)}件): {', '.join(grouped)}"
    lines: list[str] = ["目黒区のテニスコートに空きが見つかりました。", ""]
    for facility, by_date in grouped.items():
        lines.append(f"■ {facility}")
        for date, slots in by_date.items():
            lines.append(f"  ◆ {date}")
            lines.extend(f"    {format_slot(slot)}" for slot in slots)
        lines.append("")
    lines.append(f"確認URL: {result.reached_url}")
    return subject, "\n".join(lines).strip()


def format_heartbeat_message(result: ScanResult) -> tuple[str, str]:
    subject = f"{SLOTS_MARKER} テニス空き確認: 空きなし"
    body = "\n".join(
        [
            "定期確認は正常に動作しています。現在、対象施設に空きはありません。",
            f"確認施設: {', '.join(result.facilities_scanned) or '-'}",
            f"確認URL: {result.reached_url}",
        ]
    )
    return subject, body


def format_failure_message(error: BaseException) -> tuple[str, str]:
    """Build the subject and body reporting a failed run."""
    subject = f"{FAILURE_MARKER} テニス空き確認エラー: {type(error).__name__}"
    lines = [
        "空き状況の確認に失敗しました。確認が必要です。",
        "",
        f"エラー: {type(error).__name__}: {error}",
    ]
    if isinstance(error, RetryExhausted) and error.last_error is not None:
        lines.append(f"最後の失敗: {type(error.last_error).__name__}: {error.last_error}")
    if isinstance(error, ScanError):
        lines.append(f"URL: {error.url or '(不明)'}")
        if error.diagnostics:
            lines.append("")
            lines.append("診断ファイル:")
            lines.extend(f"- {name}: {path}" for name, path in sorted(error.diagnostics.items()))
    return subject, "\n".join(lines)


class Notifier:
    """Decides what to send and hands it to the mail collaborator."""

    def __init__(
        self,
        mailer: Optional[Mailer],
        recipient: Optional[str],
        *,
        notify_on_error: bool = False,
        heartbeat_hour: Optional[int] = None,
        timezone: str = "Asia/Tokyo",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._mailer = mailer
        self._recipient = recipient
        self._notify_on_error = notify_on_error
        self._heartbeat_hour = heartbeat_hour
        self._zone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(tz=self._zone))

    async def notify_scan(self, result: ScanResult) -> bool:
        """Send the availability mail; returns True when a message went out."""
        if result.has_slots:
            subject, body = format_slots_message(result)
            return await self._dispatch(subject, body)
        if self._heartbeat_hour is not None and self._clock().hour == self._heartbeat_hour:
            subject, body = format_heartbeat_message(result)
            return await self._dispatch(subject, body)
        LOGGER.info("notify.no_slots")
        return False

    async def notify_failure(self, error: BaseException) -> bool:
        if not self._notify_on_error:
            LOGGER.info("notify.failure_skipped", reason="NOTIFY_ON_ERROR disabled")
            return False
        subject, body = format_failure_message(error)
        return await self._dispatch(subject, body)

    async def _dispatch(self, subject: str, body: str) -> bool:
        if self._mailer is None or not self._recipient:
            LOGGER.warning("notify.skipped", reason="mail API key or recipient missing", subject=subject)
            return False
        try:
            await self._mailer.send(subject, body, self._recipient)
        except NotificationError as exc:
            LOGGER.error("notify.failed", to=mask_address(self._recipient), error=str(exc))
            return False
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("notify.mailer_crashed", to=mask_address(self._recipient), error=str(exc))
            return False
        return True
