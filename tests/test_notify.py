from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from tennis_watch.errors import NavigationMismatch, RetryExhausted
from tennis_watch.models import ScanResult, SlotRecord
from tennis_watch.notify import (
    Notifier,
    format_failure_message,
    format_slots_message,
    group_slots,
)
from tests.helpers import RecordingMailer

CAL = "https://resv.example.jp/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou"

SLOTS = (
    SlotRecord("駒場", "1月21日(水)", "A面", "9:00-11:00"),
    SlotRecord("碑文谷", "1月22日(木)", "A面", "9:00-11:00"),
    SlotRecord("駒場", "1月22日(木)", "B面", "13:00-15:00"),
    SlotRecord("駒場", "1月21日(水)", "B面", "11:00-13:00"),
    SlotRecord("碑文谷", "", "C面", "", raw_line="C面 ○ ×"),
)


def scan_result(slots=SLOTS) -> ScanResult:
    return ScanResult(slots=tuple(slots), reached_url=CAL, facilities_scanned=("駒場", "碑文谷"))


def test_group_by_facility_then_date_in_first_seen_order() -> None:
    grouped = group_slots(SLOTS)

    assert list(grouped) == ["駒場", "碑文谷"]
    assert list(grouped["駒場"]) == ["1月21日(水)", "1月22日(木)"]
    assert [s.court for s in grouped["駒場"]["1月21日(水)"]] == ["A面", "B面"]
    assert list(grouped["碑文谷"]) == ["1月22日(木)", "日付不明"]


def test_slots_message_layout() -> None:
    subject, body = format_slots_message(scan_result())

    assert subject == "🎾 テニスコート空きあり (5件): 駒場, 碑文谷"
    assert body.splitlines() == [
        "目黒区のテニスコートに空きが見つかりました。",
        "",
        "■ 駒場",
        "  ◆ 1月21日(水)",
        "    - A面 9:00-11:00",
        "    - B面 11:00-13:00",
        "  ◆ 1月22日(木)",
        "    - B面 13:00-15:00",
        "",
        "■ 碑文谷",
        "  ◆ 1月22日(木)",
        "    - A面 9:00-11:00",
        "  ◆ 日付不明",
        "    - C面 ○ ×",
        "",
        f"確認URL: {CAL}",
    ]


@pytest.mark.asyncio
async def test_slots_trigger_exactly_one_mail() -> None:
    mailer = RecordingMailer()
    notifier = Notifier(mailer, "me@example.com")

    sent = await notifier.notify_scan(scan_result())

    assert sent is True
    assert len(mailer.sent) == 1
    subject, body, to = mailer.sent[0]
    assert "🎾" in subject
    assert to == "me@example.com"
    assert body.index("■ 駒場") < body.index("  ◆ 1月22日(木)") < body.index("■ 碑文谷")


@pytest.mark.asyncio
async def test_empty_result_sends_nothing() -> None:
    mailer = RecordingMailer()
    notifier = Notifier(mailer, "me@example.com", heartbeat_hour=7, clock=lambda: datetime(2026, 1, 20, 12, 0))

    assert await notifier.notify_scan(scan_result(())) is False
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_heartbeat_at_configured_hour() -> None:
    mailer = RecordingMailer()
    notifier = Notifier(mailer, "me@example.com", heartbeat_hour=7, clock=lambda: datetime(2026, 1, 20, 7, 30))

    assert await notifier.notify_scan(scan_result(())) is True
    subject, body, _ = mailer.sent[0]
    assert "空きなし" in subject
    assert "駒場, 碑文谷" in body


@pytest.mark.asyncio
async def test_missing_credentials_skip_mail() -> None:
    notifier = Notifier(None, None)
    assert await notifier.notify_scan(scan_result()) is False


@pytest.mark.asyncio
async def test_mail_failure_is_reported_not_raised() -> None:
    notifier = Notifier(RecordingMailer(fail=True), "me@example.com", notify_on_error=True)

    assert await notifier.notify_scan(scan_result()) is False
    assert await notifier.notify_failure(RuntimeError("boom")) is False


def test_failure_message_includes_url_cause_and_artifacts(tmp_path: Path) -> None:
    cause = NavigationMismatch("CALENDAR(direct)", "page classified as soft_error", url=CAL)
    error = RetryExhausted("CALENDAR(direct)", 5, cause)
    error.diagnostics = {"99_error.png": tmp_path / "99_error.png"}

    subject, body = format_failure_message(error)

    assert subject == "⚠️ テニス空き確認エラー: RetryExhausted"
    assert "最後の失敗: NavigationMismatch: CALENDAR(direct): page classified as soft_error" in body
    assert f"URL: {CAL}" in body
    assert f"- 99_error.png: {tmp_path / '99_error.png'}" in body


@pytest.mark.asyncio
async def test_failure_mail_respects_toggle() -> None:
    mailer = RecordingMailer()

    assert await Notifier(mailer, "me@example.com").notify_failure(RuntimeError("boom")) is False
    assert mailer.sent == []

    assert await Notifier(mailer, "me@example.com", notify_on_error=True).notify_failure(RuntimeError("boom"))
    assert mailer.sent[0][0].startswith("⚠️")


class CrashingMailer:
    async def send(self, subject: str, body: str, to: str) -> str:
        raise AttributeError("'list' object has no attribute 'get'")


@pytest.mark.asyncio
async def test_unexpected_mailer_errors_do_not_escape() -> None:
    notifier = Notifier(CrashingMailer(), "me@example.com", notify_on_error=True)

    assert await notifier.notify_scan(scan_result()) is False
    assert await notifier.notify_failure(RuntimeError("boom")) is False
